from __future__ import annotations

import hashlib
from datetime import datetime
from typing import Any, Iterable, Optional

from sqlalchemy import func, insert, select

from models import Student, StudentActivityLog
from utils import ApiError, as_int_or_none, page_params, to_iso_utc, utc_now

ROUND_STARTED = "round_started"
INTERVIEW_COMPLETED = "interview_completed"
INTERVIEW_CANCELLED = "interview_cancelled"
VERDICT_GIVEN = "verdict_given"
EMAIL_SENT = "email_sent"
STATUS_UPDATED = "status_updated"

ACTIVITY_TYPES = (
    ROUND_STARTED,
    INTERVIEW_COMPLETED,
    INTERVIEW_CANCELLED,
    VERDICT_GIVEN,
    EMAIL_SENT,
    STATUS_UPDATED,
)

STARTED_INTERVIEW_STATUSES = ("in_progress", "completed", "cancelled")

# Metadata field that tells two events of the same type apart.
_KEY_FIELD = {
    ROUND_STARTED: "interview_id",
    INTERVIEW_COMPLETED: "interview_id",
    INTERVIEW_CANCELLED: "interview_id",
    VERDICT_GIVEN: "verdict",
    EMAIL_SENT: "email_log_id",
    STATUS_UPDATED: "status",
}


def event_key(value: Any) -> str:
    """Fixed-width key for a discriminating value; verdict and status texts are unbounded."""
    return hashlib.sha256(str(value).encode("utf-8")).hexdigest()


def dedupe_key_from_metadata(activity_type: str, meta: Any) -> str:
    field = _KEY_FIELD.get(str(activity_type or ""))
    if not field or not isinstance(meta, dict):
        return ""
    value = meta.get(field)
    if value is None:
        return ""
    return event_key(value)


def describe_round_started(round_number: int) -> str:
    return f"Round {round_number} started"


def describe_interview_completed(verdict: Any) -> str:
    v = "" if verdict is None else str(verdict)
    if v.strip():
        return f"Interview completed - Verdict: {v}"
    return "Interview completed"


def describe_interview_cancelled() -> str:
    return "Interview cancelled"


def describe_verdict_given(verdict: Any) -> str:
    return f"Verdict given: {verdict}"


def describe_email_sent(subject: Any) -> str:
    return f"Email sent: {subject if subject is not None else 'No subject'}"


def describe_status_updated(status: Any) -> str:
    return f"Status updated to: {status}"


EventKey = tuple[int, Optional[int], str]


def existing_event_keys(db, activity_type: str) -> set[EventKey]:
    """(student_id, session_id, dedupe_key) already logged for one activity type."""
    rows = db.execute(
        select(StudentActivityLog.student_id, StudentActivityLog.session_id, StudentActivityLog.dedupe_key).where(
            StudentActivityLog.activity_type == activity_type
        )
    ).all()
    return {(int(sid), (int(sess) if sess is not None else None), str(key or "")) for sid, sess, key in rows}


def _event_exists(db, *, student_id: int, session_id: Optional[int], activity_type: str, dedupe_key: str) -> bool:
    q = select(StudentActivityLog.id).where(
        StudentActivityLog.student_id == student_id,
        StudentActivityLog.activity_type == activity_type,
        StudentActivityLog.dedupe_key == dedupe_key,
    )
    if session_id is None:
        q = q.where(StudentActivityLog.session_id.is_(None))
    else:
        q = q.where(StudentActivityLog.session_id == session_id)
    return db.execute(q.limit(1)).first() is not None


def _insert_ignoring_duplicates(db, values: dict[str, Any]) -> int:
    """
    Insert one activity row; a concurrent writer that claimed the same event
    first makes this a no-op (returns 0) instead of an IntegrityError.
    """

    mapper_cols = StudentActivityLog.__mapper__.columns
    params = {mapper_cols[k]: v for k, v in values.items()}

    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        from sqlalchemy.dialects.postgresql import insert as pg_insert

        stmt = pg_insert(StudentActivityLog.__table__).values(params).on_conflict_do_nothing()
    elif dialect == "sqlite":
        from sqlalchemy.dialects.sqlite import insert as sqlite_insert

        stmt = sqlite_insert(StudentActivityLog.__table__).values(params).on_conflict_do_nothing()
    else:
        stmt = insert(StudentActivityLog.__table__).values(params)

    result = db.execute(stmt)
    return int(result.rowcount or 0)


def insert_activity(
    db,
    *,
    student_id: int,
    session_id: Optional[int],
    activity_type: str,
    description: str,
    meta: dict[str, Any],
    created_at: Optional[datetime],
    performed_by: Optional[int] = None,
    dedupe_key: Optional[str] = None,
) -> int:
    if activity_type not in ACTIVITY_TYPES:
        raise ApiError("BAD_REQUEST", f"Unknown activity type: {activity_type}")
    key = dedupe_key if dedupe_key is not None else dedupe_key_from_metadata(activity_type, meta)
    return _insert_ignoring_duplicates(
        db,
        {
            "student_id": int(student_id),
            "session_id": session_id,
            "activity_type": activity_type,
            "activity_description": description,
            "meta": dict(meta or {}),
            "performed_by": performed_by,
            "dedupe_key": key,
            "created_at": created_at or utc_now(),
        },
    )


def record_activity(
    db,
    *,
    student_id: int,
    session_id: Optional[int],
    activity_type: str,
    description: str,
    meta: dict[str, Any],
    performed_by: Optional[int] = None,
    created_at: Optional[datetime] = None,
) -> bool:
    """Live-path writer: logs the event unless an entry for it already exists."""
    key = dedupe_key_from_metadata(activity_type, meta)
    if _event_exists(db, student_id=student_id, session_id=session_id, activity_type=activity_type, dedupe_key=key):
        return False
    inserted = insert_activity(
        db,
        student_id=student_id,
        session_id=session_id,
        activity_type=activity_type,
        description=description,
        meta=meta,
        created_at=created_at,
        performed_by=performed_by,
        dedupe_key=key,
    )
    return inserted > 0


def serialize_activity(row: StudentActivityLog) -> dict[str, Any]:
    return {
        "id": row.id,
        "studentId": row.student_id,
        "sessionId": row.session_id,
        "activityType": row.activity_type,
        "description": row.activity_description,
        "metadata": row.meta or {},
        "performedBy": row.performed_by,
        "createdAt": to_iso_utc(row.created_at),
    }


def count_by_type(db, activity_types: Iterable[str] = ACTIVITY_TYPES) -> dict[str, int]:
    rows = db.execute(
        select(StudentActivityLog.activity_type, func.count(StudentActivityLog.id)).group_by(StudentActivityLog.activity_type)
    ).all()
    totals = {t: 0 for t in activity_types}
    for activity_type, n in rows:
        totals[str(activity_type)] = int(n or 0)
    return totals


def student_activity_list(data, auth, db, cfg):
    student_id = as_int_or_none((data or {}).get("studentId"))
    if student_id is None:
        raise ApiError("BAD_REQUEST", "Missing studentId")
    if db.get(Student, student_id) is None:
        raise ApiError("NOT_FOUND", "Student not found")

    q = select(StudentActivityLog).where(StudentActivityLog.student_id == student_id)

    raw_session = (data or {}).get("sessionId")
    if raw_session not in (None, ""):
        session_id = as_int_or_none(raw_session)
        if session_id is None:
            raise ApiError("BAD_REQUEST", "Invalid sessionId")
        q = q.where(StudentActivityLog.session_id == session_id)

    activity_type = str((data or {}).get("activityType") or "").strip()
    if activity_type:
        if activity_type not in ACTIVITY_TYPES:
            raise ApiError("BAD_REQUEST", "Invalid activityType")
        q = q.where(StudentActivityLog.activity_type == activity_type)

    page, page_size = page_params(data)
    rows = db.execute(q.order_by(StudentActivityLog.created_at.asc(), StudentActivityLog.id.asc())).scalars().all()
    total = len(rows)
    start = (page - 1) * page_size
    return {"items": [serialize_activity(r) for r in rows[start : start + page_size]], "total": total}
