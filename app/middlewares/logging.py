from __future__ import annotations

import json
import logging
import time
from typing import Any

from flask import Flask, g, request


def client_ip() -> str:
    ip = request.headers.get("X-Forwarded-For", request.remote_addr or "")
    if ip and "," in ip:
        ip = ip.split(",", 1)[0].strip()
    return ip or ""


def elapsed_ms() -> int | None:
    start = getattr(g, "start_ts", None)
    if not isinstance(start, (int, float)):
        return None
    return int((time.monotonic() - start) * 1000)


def init_request_logging(app: Flask) -> None:
    logger = logging.getLogger("app.request")

    @app.after_request
    def _log(resp):
        data: dict[str, Any] = {
            "type": "request",
            "request_id": getattr(g, "request_id", ""),
            "method": request.method,
            "path": request.path,
            "status": resp.status_code,
            "latency_ms": elapsed_ms(),
            "ip": client_ip(),
        }
        user = getattr(g, "auth_user", None)
        if user:
            data["user"] = user.get("email")

        if resp.status_code >= 500:
            logger.error(json.dumps(data, separators=(",", ":")))
        else:
            logger.info(json.dumps(data, separators=(",", ":")))
        return resp
