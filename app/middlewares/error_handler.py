from __future__ import annotations

import logging

from flask import Flask, current_app, g, request
from werkzeug.exceptions import HTTPException

import audit
from app.middlewares.audit import enrich_user, request_email
from utils import ApiError, err


def _with_request_id(payload: dict) -> dict:
    if getattr(g, "request_id", None):
        payload["request_id"] = g.request_id
    return payload


def init_error_handlers(app: Flask) -> None:
    @app.errorhandler(ApiError)
    def _api_error(e: ApiError):
        g.audit_error = e
        body, _ = err(e.code, e.message)
        return _with_request_id(body), e.http_status

    @app.errorhandler(HTTPException)
    def _http_error(e: HTTPException):
        status = int(e.code or 500)
        payload = {"ok": False, "error": {"code": f"HTTP_{status}", "message": str(e.description or "HTTP error")}}
        return _with_request_id(payload), status

    @app.errorhandler(Exception)
    def _unhandled(e: Exception):
        logging.getLogger("app").exception("Unhandled exception request_id=%s", getattr(g, "request_id", ""))
        g.audit_error = e

        cfg = current_app.config["CFG"]
        if cfg.AUDIT_ENABLED:
            try:
                audit.log_error(
                    e,
                    correlation_id=getattr(g, "request_id", ""),
                    method=request.method,
                    endpoint=request.path,
                    user=enrich_user(),
                    user_email=request_email(),
                )
            except Exception:
                logging.getLogger("audit").exception("error audit failed")

        body, _ = err("INTERNAL", "Unexpected error")
        return _with_request_id(body), 500
