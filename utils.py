from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any, Optional

from dateutil import parser as dt_parser

ALLOWED_ERROR_CODES = {
    "BAD_REQUEST",
    "AUTH_INVALID",
    "FORBIDDEN",
    "NOT_FOUND",
    "CONFLICT",
    "INTERNAL",
}

_CODE_MAP = {
    "BAD_JSON": "BAD_REQUEST",
    "VALIDATION": "BAD_REQUEST",
    "AUTH_REQUIRED": "AUTH_INVALID",
    "RBAC_DENIED": "FORBIDDEN",
    "INVALID_TRANSITION": "CONFLICT",
    "VERDICT_LOCKED": "CONFLICT",
    "UNKNOWN_ERROR": "INTERNAL",
}


def map_error_code(code: str) -> str:
    c = str(code or "").upper().strip()
    if c in ALLOWED_ERROR_CODES:
        return c
    return _CODE_MAP.get(c, "INTERNAL")


_DEFAULT_HTTP_STATUS = {
    "BAD_REQUEST": 400,
    "AUTH_INVALID": 401,
    "FORBIDDEN": 403,
    "NOT_FOUND": 404,
    "CONFLICT": 409,
    "INTERNAL": 500,
}


class ApiError(Exception):
    def __init__(self, code: str, message: str, http_status: int | None = None):
        super().__init__(message)
        self.code = map_error_code(code)
        self.message = str(message or "")
        self.http_status = int(http_status or _DEFAULT_HTTP_STATUS.get(self.code, 500))


def ok(data: Any, http_status: int = 200):
    return {"ok": True, "data": data}, http_status


def err(code: str, message: str, http_status: int = 200):
    return {"ok": False, "error": {"code": map_error_code(code), "message": str(message or "")}}, http_status


def utc_now() -> datetime:
    # Stored naive; every timestamp column holds UTC.
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_iso_utc(dt: Optional[datetime]) -> str:
    if dt is None:
        return ""
    x = dt.replace(tzinfo=timezone.utc) if dt.tzinfo is None else dt.astimezone(timezone.utc)
    x = x.replace(microsecond=(x.microsecond // 1000) * 1000)
    return x.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def iso_utc_now() -> str:
    return to_iso_utc(utc_now())


def parse_datetime_maybe(value: Any) -> Optional[datetime]:
    """Parse loose user input into a naive UTC datetime (None when unparseable)."""
    if value is None:
        return None
    if isinstance(value, datetime):
        dt = value
    else:
        s = str(value or "").strip()
        if not s:
            return None
        try:
            dt = dt_parser.parse(s)
        except (ValueError, OverflowError):
            return None

    if dt.tzinfo is None:
        return dt
    return dt.astimezone(timezone.utc).replace(tzinfo=None)


def normalize_string(value: Any) -> str:
    return ("" if value is None else str(value)).strip()


def new_uuid() -> str:
    return str(uuid.uuid4())


def as_int_or_none(value: Any) -> Optional[int]:
    s = str(value if value is not None else "").strip()
    if not s:
        return None
    try:
        return int(s)
    except ValueError:
        return None


def page_params(data: dict | None, *, default_size: int = 100, max_size: int = 500) -> tuple[int, int]:
    data = data or {}
    page = as_int_or_none(data.get("page")) or 1
    page_size = as_int_or_none(data.get("pageSize")) or default_size
    return max(1, page), max(1, min(max_size, page_size))


def parse_bool_maybe(value: Any) -> Optional[bool]:
    if isinstance(value, bool):
        return value
    s = str(value if value is not None else "").strip().lower()
    if s in {"1", "true", "yes", "y"}:
        return True
    if s in {"0", "false", "no", "n"}:
        return False
    return None
