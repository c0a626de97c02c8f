from __future__ import annotations

import logging
from typing import Any, Optional

from flask import Flask, g, request

import audit
from app.middlewares.logging import client_ip, elapsed_ms

log = logging.getLogger("audit")


def request_email() -> str:
    return str(request.headers.get("X-User-Email") or request.args.get("email") or "").strip()


def enrich_user() -> Optional[dict[str, Any]]:
    """User dict for the current request; the route may already have resolved it."""
    user = getattr(g, "auth_user", None)
    if user:
        return user

    email = request_email()
    if not email:
        return None

    from auth import lookup_user
    from db import SessionLocal

    db = SessionLocal()
    try:
        return lookup_user(db, email)
    finally:
        db.close()


def _request_body() -> Any:
    if request.method in {"GET", "HEAD", "OPTIONS"}:
        return None
    body = request.get_json(silent=True)
    if body is not None:
        return body
    if request.form:
        return request.form.to_dict()
    return request.get_data(as_text=True) or None


def _response_body(resp) -> Any:
    if resp.direct_passthrough or not resp.is_json:
        return None
    return resp.get_json(silent=True)


def init_audit_capture(app: Flask) -> None:
    cfg = app.config["CFG"]

    @app.after_request
    def _capture(resp):
        if not cfg.AUDIT_ENABLED or audit.should_exclude(request.path):
            return resp
        try:
            audit.log_api_request(
                cfg=cfg,
                correlation_id=getattr(g, "request_id", ""),
                method=request.method,
                path=request.path,
                full_path=request.full_path,
                headers=dict(request.headers),
                body=_request_body(),
                query=request.args.to_dict(),
                status_code=resp.status_code,
                response_body=_response_body(resp),
                response_time_ms=elapsed_ms(),
                ip=client_ip(),
                user_agent=str(request.headers.get("User-Agent") or ""),
                user=enrich_user(),
                user_email=request_email(),
                error=getattr(g, "audit_error", None),
            )
        except Exception:
            log.exception("audit capture failed request_id=%s", getattr(g, "request_id", ""))
        return resp
