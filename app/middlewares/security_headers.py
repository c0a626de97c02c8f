from __future__ import annotations

from flask import Flask, request

_STATIC_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "Referrer-Policy": "no-referrer",
}


def init_security_headers(app: Flask) -> None:
    @app.after_request
    def _headers(resp):
        for name, value in _STATIC_HEADERS.items():
            resp.headers.setdefault(name, value)

        # Consolidation, activity and audit payloads are per-user admin data.
        if (request.path or "").startswith("/api/"):
            resp.headers.setdefault("Cache-Control", "no-store")

        cfg = app.config.get("CFG")
        forwarded_https = str(request.headers.get("X-Forwarded-Proto") or "").lower() == "https"
        if getattr(cfg, "IS_PRODUCTION", False) and (request.is_secure or forwarded_https):
            resp.headers.setdefault("Strict-Transport-Security", "max-age=31536000; includeSubDomains")

        return resp
