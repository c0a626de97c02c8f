from __future__ import annotations

import re
import time

from flask import Flask, g, request

from utils import new_uuid

_VALID_ID = re.compile(r"^[A-Za-z0-9._:-]{1,64}$")


def init_request_id(app: Flask) -> None:
    @app.before_request
    def _set_request_id():
        incoming = str(request.headers.get("X-Request-ID") or "").strip()
        # The id is echoed into headers and audit rows; only accept sane values.
        g.request_id = incoming if _VALID_ID.match(incoming) else new_uuid()
        g.start_ts = time.monotonic()

    @app.after_request
    def _add_header(resp):
        rid = getattr(g, "request_id", "")
        if rid:
            resp.headers["X-Request-ID"] = rid
        return resp
