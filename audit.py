from __future__ import annotations

import json
import logging
from datetime import timedelta
from typing import Any, Mapping, Optional

from sqlalchemy import case, func, select
from sqlalchemy.exc import SQLAlchemyError

from models import AuditLog
from utils import ApiError, as_int_or_none, page_params, parse_bool_maybe, parse_datetime_maybe, to_iso_utc, utc_now

log = logging.getLogger("audit")

API_REQUEST = "API_REQUEST"
USER_ACTION = "USER_ACTION"
ERROR = "ERROR"
JOB = "JOB"
ACTION_TYPES = (API_REQUEST, USER_ACTION, ERROR, JOB)

REDACTED = "[REDACTED]"
TRUNCATED_SUFFIX = "... [TRUNCATED]"

EXCLUDED_PATHS = {"/health", "/version", "/favicon.ico"}
STATIC_EXTENSIONS = (".css", ".js", ".png", ".jpg", ".jpeg", ".gif", ".ico", ".svg", ".woff", ".woff2", ".ttf", ".otf")

SENSITIVE_HEADERS = {"authorization", "cookie", "x-api-key", "x-auth-token", "x-internal-token"}
SENSITIVE_BODY_KEYS = {"password", "token", "secret", "key", "auth"}
# Compound names like `sessionToken` or `client_secret`.
_SENSITIVE_FRAGMENTS = ("password", "secret", "token")


def should_exclude(path: str) -> bool:
    p = str(path or "")
    if p in EXCLUDED_PATHS:
        return True
    return p.lower().endswith(STATIC_EXTENSIONS)


def sanitize_headers(headers: Mapping[str, Any] | None) -> dict[str, Any]:
    out: dict[str, Any] = {}
    for k, v in (headers or {}).items():
        name = str(k).lower()
        out[name] = REDACTED if name in SENSITIVE_HEADERS else v
    return out


def _is_sensitive_key(key: Any) -> bool:
    k = str(key or "").lower()
    return k in SENSITIVE_BODY_KEYS or any(f in k for f in _SENSITIVE_FRAGMENTS)


def sanitize_body(body: Any) -> Any:
    """Copy of `body` with sensitive keys redacted at any depth."""
    if isinstance(body, dict):
        return {k: (REDACTED if _is_sensitive_key(k) and v not in (None, "") else sanitize_body(v)) for k, v in body.items()}
    if isinstance(body, list):
        return [sanitize_body(x) for x in body]
    return body


def truncate_body(body: Any, max_size: int) -> Any:
    if body is None or body == "":
        return body
    if isinstance(body, str):
        text = body
    else:
        try:
            text = json.dumps(body, default=str)
        except (TypeError, ValueError):
            text = "[UNPARSEABLE_BODY]"
    if len(text) > max_size:
        return text[:max_size] + TRUNCATED_SUFFIX
    return body


def write_audit(entry: dict[str, Any]) -> Optional[int]:
    """
    Persist one audit row on its own session so the caller's transaction
    state never matters. Failures are logged and swallowed.
    """

    from db import SessionLocal

    if not entry.get("action_type") or not entry.get("action_name"):
        log.error("audit entry missing action_type/action_name")
        return None

    db = SessionLocal()
    try:
        row = AuditLog(**entry)
        db.add(row)
        db.commit()
        if not entry.get("success", True):
            log.info("audit logged %s %s id=%s", row.action_type, row.action_name, row.id)
        return row.id
    except SQLAlchemyError:
        db.rollback()
        log.exception("failed to write audit entry action=%s", entry.get("action_name"))
        return None
    finally:
        db.close()


def log_api_request(
    *,
    cfg,
    correlation_id: str,
    method: str,
    path: str,
    full_path: str,
    headers: Mapping[str, Any] | None,
    body: Any,
    query: Mapping[str, Any] | None,
    status_code: int,
    response_body: Any,
    response_time_ms: Optional[int],
    ip: str,
    user_agent: str,
    user: Optional[dict[str, Any]] = None,
    user_email: str = "",
    error: Optional[BaseException] = None,
) -> Optional[int]:
    max_size = int(getattr(cfg, "AUDIT_MAX_BODY_SIZE", 10000))
    req_body = truncate_body(sanitize_body(body), max_size) if getattr(cfg, "AUDIT_LOG_REQUEST_BODY", True) else None
    resp_body = (
        truncate_body(sanitize_body(response_body), max_size) if getattr(cfg, "AUDIT_LOG_RESPONSE_BODY", True) else None
    )
    endpoint = full_path.rstrip("?") if full_path else path
    return write_audit(
        {
            "correlation_id": correlation_id,
            "user_id": (user or {}).get("id"),
            "user_email": (user or {}).get("email") or user_email or None,
            "user_role": (user or {}).get("role"),
            "action_type": API_REQUEST,
            "action_name": f"{method} {endpoint}",
            "method": method,
            "endpoint": endpoint,
            "request_headers": sanitize_headers(headers),
            "request_body": req_body,
            "query_params": dict(query or {}),
            "status_code": int(status_code),
            "response_body": resp_body,
            "response_time_ms": response_time_ms,
            "error_message": str(error) if error is not None else None,
            "ip_address": ip or None,
            "user_agent": user_agent or None,
            "success": error is None and int(status_code) < 400,
            "created_at": utc_now(),
        }
    )


def log_error(
    error: BaseException,
    *,
    correlation_id: str = "",
    method: str = "",
    endpoint: str = "",
    user: Optional[dict[str, Any]] = None,
    user_email: str = "",
    resource_type: Optional[str] = None,
    resource_id: Any = None,
) -> Optional[int]:
    code = getattr(error, "code", None) or type(error).__name__
    return write_audit(
        {
            "correlation_id": correlation_id or None,
            "user_id": (user or {}).get("id"),
            "user_email": (user or {}).get("email") or user_email or None,
            "user_role": (user or {}).get("role"),
            "action_type": ERROR,
            "action_name": f"ERROR_{method}_{endpoint}" if method else "SYSTEM_ERROR",
            "method": method or None,
            "endpoint": endpoint or None,
            "error_message": str(error),
            "error_code": str(code),
            "resource_type": resource_type,
            "resource_id": str(resource_id) if resource_id is not None else None,
            "success": False,
            "meta": {"errorName": type(error).__name__, "timestamp": to_iso_utc(utc_now())},
            "created_at": utc_now(),
        }
    )


def log_job(name: str, *, success: bool, metadata: dict[str, Any] | None = None, error: Optional[BaseException] = None):
    return write_audit(
        {
            "action_type": JOB,
            "action_name": name,
            "error_message": str(error) if error is not None else None,
            "success": success,
            "meta": metadata or None,
            "created_at": utc_now(),
        }
    )


def serialize_audit(row: AuditLog) -> dict[str, Any]:
    return {
        "id": row.id,
        "correlationId": row.correlation_id,
        "userId": row.user_id,
        "userEmail": row.user_email,
        "userRole": row.user_role,
        "actionType": row.action_type,
        "actionName": row.action_name,
        "method": row.method,
        "endpoint": row.endpoint,
        "statusCode": row.status_code,
        "responseTimeMs": row.response_time_ms,
        "errorMessage": row.error_message,
        "ipAddress": row.ip_address,
        "userAgent": row.user_agent,
        "resourceType": row.resource_type,
        "resourceId": row.resource_id,
        "success": bool(row.success),
        "createdAt": to_iso_utc(row.created_at),
    }


def audit_logs_query(data, auth, db, cfg):
    data = data or {}
    conds = []

    user_id = as_int_or_none(data.get("userId"))
    if user_id is not None:
        conds.append(AuditLog.user_id == user_id)

    user_email = str(data.get("userEmail") or "").strip().lower()
    if user_email:
        conds.append(func.lower(AuditLog.user_email).like(f"%{user_email}%"))

    action_type = str(data.get("actionType") or "").strip().upper()
    if action_type:
        if action_type not in ACTION_TYPES:
            raise ApiError("BAD_REQUEST", "Invalid actionType")
        conds.append(AuditLog.action_type == action_type)

    for field, op in (("startDate", "ge"), ("endDate", "le")):
        raw = data.get(field)
        if raw in (None, ""):
            continue
        dt = parse_datetime_maybe(raw)
        if dt is None:
            raise ApiError("BAD_REQUEST", f"Invalid {field}")
        conds.append(AuditLog.created_at >= dt if op == "ge" else AuditLog.created_at <= dt)

    success = parse_bool_maybe(data.get("success"))
    if success is not None:
        conds.append(AuditLog.success.is_(success))

    page, page_size = page_params(data)
    total = int(db.execute(select(func.count(AuditLog.id)).where(*conds)).scalar() or 0)
    rows = (
        db.execute(
            select(AuditLog)
            .where(*conds)
            .order_by(AuditLog.created_at.desc(), AuditLog.id.desc())
            .limit(page_size)
            .offset((page - 1) * page_size)
        )
        .scalars()
        .all()
    )
    return {"items": [serialize_audit(r) for r in rows], "total": total, "page": page, "pageSize": page_size}


def audit_stats(data, auth, db, cfg):
    days = as_int_or_none((data or {}).get("days")) or 30
    days = max(1, min(365, days))
    since = utc_now() - timedelta(days=days)

    total_count = func.count(AuditLog.id).label("total_count")
    rows = db.execute(
        select(
            AuditLog.action_type,
            total_count,
            func.sum(case((AuditLog.success.is_(False), 1), else_=0)),
            func.count(func.distinct(AuditLog.user_id)),
            func.avg(AuditLog.response_time_ms),
        )
        .where(AuditLog.created_at >= since)
        .group_by(AuditLog.action_type)
        .order_by(total_count.desc())
    ).all()

    items = [
        {
            "actionType": action_type,
            "totalCount": int(total or 0),
            "errorCount": int(errors or 0),
            "uniqueUsers": int(users or 0),
            "avgResponseTimeMs": round(float(avg), 2) if avg is not None else None,
        }
        for action_type, total, errors, users, avg in rows
    ]
    return {"days": days, "items": items}
