from __future__ import annotations

import logging
from typing import Any

from flask import Blueprint, current_app, g, request

import audit
from actions import dispatch
from app.middlewares.audit import request_email
from auth import INTERNAL_ACTIONS, assert_permission, resolve_auth
from utils import ApiError, err, ok

api_bp = Blueprint("api", __name__)

log = logging.getLogger("api")


def _json_body() -> dict[str, Any]:
    raw = request.get_data(as_text=True)
    if not raw.strip():
        return {}
    body = request.get_json(silent=True)
    if not isinstance(body, dict):
        raise ApiError("BAD_JSON", "Request body must be a JSON object")
    return body


def _query() -> dict[str, Any]:
    return {k: v for k, v in request.args.items() if k != "email"}


def _handle(action: str, data: dict):
    """
    Resolve the caller, check the action's role set, run it on a fresh session
    and wrap the outcome in the response envelope.
    """

    from db import SessionLocal

    cfg = current_app.config["CFG"]
    action_u = str(action or "").upper().strip()
    is_job = action_u in INTERNAL_ACTIONS

    db = SessionLocal()
    try:
        auth_ctx = resolve_auth(
            db,
            cfg,
            email=request_email(),
            internal_token=request.headers.get("X-Internal-Token"),
            allow_internal=is_job,
        )
        if auth_ctx.valid:
            g.auth_user = {"id": auth_ctx.user_id, "email": auth_ctx.email, "role": auth_ctx.role}
        assert_permission(auth_ctx, action_u)

        out = dispatch(action_u, data or {}, auth_ctx, db, cfg)
        db.commit()

        if is_job and cfg.AUDIT_ENABLED:
            audit.log_job(action_u, success=True, metadata={"result": out, "by": auth_ctx.email})
        return ok(out)
    except ApiError as e:
        db.rollback()
        g.audit_error = e
        return err(e.code, e.message, http_status=e.http_status)
    except Exception as e:
        db.rollback()
        g.audit_error = e
        log.exception("request_id=%s action=%s", getattr(g, "request_id", ""), action_u)
        if cfg.AUDIT_ENABLED:
            audit.log_error(
                e,
                correlation_id=getattr(g, "request_id", ""),
                method=request.method,
                endpoint=request.path,
                user=getattr(g, "auth_user", None),
                user_email=request_email(),
            )
            if is_job:
                audit.log_job(action_u, success=False, error=e)
        return err("INTERNAL", "Unexpected error", http_status=500)
    finally:
        db.close()


@api_bp.post("")
def api_action():
    body = _json_body()
    action = str(body.get("action") or "").strip()
    if not action:
        raise ApiError("BAD_REQUEST", "Missing action")
    data = body.get("data") or {}
    if not isinstance(data, dict):
        raise ApiError("BAD_REQUEST", "data must be an object")
    return _handle(action, data)


@api_bp.post("/jobs/consolidation/refresh")
def jobs_consolidation_refresh():
    return _handle("CONSOLIDATION_REFRESH", _json_body())


@api_bp.post("/jobs/activity-logs/backfill")
def jobs_activity_backfill():
    return _handle("ACTIVITY_BACKFILL", _json_body())


@api_bp.get("/admin/consolidation")
def admin_consolidation_list():
    return _handle("CONSOLIDATION_LIST", _query())


@api_bp.get("/admin/consolidation/<int:student_id>")
def admin_consolidation_get(student_id: int):
    return _handle("CONSOLIDATION_GET", {**_query(), "studentId": student_id})


@api_bp.get("/students/<int:student_id>/activity")
def student_activity(student_id: int):
    return _handle("STUDENT_ACTIVITY_LIST", {**_query(), "studentId": student_id})


@api_bp.post("/interviews")
def interviews_start():
    return _handle("INTERVIEW_START", _json_body())


@api_bp.put("/interviews/<int:interview_id>/complete")
def interviews_complete(interview_id: int):
    return _handle("INTERVIEW_COMPLETE", {**_json_body(), "interviewId": interview_id})


@api_bp.put("/interviews/<int:interview_id>/cancel")
def interviews_cancel(interview_id: int):
    return _handle("INTERVIEW_CANCEL", {**_json_body(), "interviewId": interview_id})


@api_bp.put("/interviews/<int:interview_id>/verdict")
def interviews_verdict(interview_id: int):
    return _handle("INTERVIEW_VERDICT_UPDATE", {**_json_body(), "interviewId": interview_id})


@api_bp.get("/admin/audit-logs")
def admin_audit_logs():
    return _handle("AUDIT_LOGS_QUERY", _query())


@api_bp.get("/admin/audit-logs/stats")
def admin_audit_stats():
    return _handle("AUDIT_STATS", _query())
