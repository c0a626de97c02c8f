from __future__ import annotations

from audit import (
    REDACTED,
    TRUNCATED_SUFFIX,
    audit_logs_query,
    audit_stats,
    log_error,
    sanitize_body,
    sanitize_headers,
    should_exclude,
    truncate_body,
    write_audit,
)
from utils import ApiError


def test_sensitive_headers_are_redacted():
    out = sanitize_headers(
        {
            "Authorization": "Bearer abc",
            "Cookie": "sid=1",
            "X-Internal-Token": "cron",
            "X-User-Email": "admin@example.com",
        }
    )
    assert out["authorization"] == REDACTED
    assert out["cookie"] == REDACTED
    assert out["x-internal-token"] == REDACTED
    assert out["x-user-email"] == "admin@example.com"


def test_body_redaction_is_recursive():
    body = {
        "password": "hunter2",
        "studentId": 4,
        "nested": {"token": "t", "items": [{"secret": "s", "ok": 1}], "sessionToken": "x"},
        "key": "",
    }
    out = sanitize_body(body)
    assert out["password"] == REDACTED
    assert out["studentId"] == 4
    assert out["nested"]["token"] == REDACTED
    assert out["nested"]["sessionToken"] == REDACTED
    assert out["nested"]["items"] == [{"secret": REDACTED, "ok": 1}]
    assert out["key"] == ""
    assert body["password"] == "hunter2"


def test_truncation_marks_oversized_bodies():
    assert truncate_body({"a": 1}, 100) == {"a": 1}
    out = truncate_body("x" * 50, 10)
    assert out == "x" * 10 + TRUNCATED_SUFFIX
    assert truncate_body(None, 10) is None


def test_excluded_paths():
    assert should_exclude("/health")
    assert should_exclude("/version")
    assert should_exclude("/static/app.JS")
    assert not should_exclude("/api/admin/consolidation")


def test_query_and_stats(db_session):
    write_audit({"action_type": "API_REQUEST", "action_name": "GET /a", "user_id": 1, "user_email": "Admin@Example.com", "response_time_ms": 10, "success": True})
    write_audit({"action_type": "API_REQUEST", "action_name": "GET /b", "user_id": 2, "response_time_ms": 30, "success": False})
    log_error(ApiError("NOT_FOUND", "missing"), method="GET", endpoint="/api/x")

    everything = audit_logs_query({}, None, db_session, None)
    assert everything["total"] == 3

    errors = audit_logs_query({"actionType": "error"}, None, db_session, None)
    assert errors["total"] == 1
    assert errors["items"][0]["actionName"] == "ERROR_GET_/api/x"

    assert audit_logs_query({"userEmail": "admin@"}, None, db_session, None)["total"] == 1
    assert audit_logs_query({"success": "false"}, None, db_session, None)["total"] == 2

    stats = {x["actionType"]: x for x in audit_stats({"days": 7}, None, db_session, None)["items"]}
    assert stats["API_REQUEST"]["totalCount"] == 2
    assert stats["API_REQUEST"]["errorCount"] == 1
    assert stats["API_REQUEST"]["uniqueUsers"] == 2
    assert stats["API_REQUEST"]["avgResponseTimeMs"] == 20.0
    assert stats["ERROR"]["errorCount"] == 1


def test_write_audit_requires_action_fields(db_session):
    assert write_audit({"action_type": "", "action_name": "x"}) is None
