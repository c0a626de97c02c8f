from __future__ import annotations

import logging
from typing import Any, Optional

from sqlalchemy import func, select

from actions.activity_log import (
    INTERVIEW_CANCELLED,
    INTERVIEW_COMPLETED,
    ROUND_STARTED,
    STARTED_INTERVIEW_STATUSES,
    VERDICT_GIVEN,
    describe_interview_cancelled,
    describe_interview_completed,
    describe_round_started,
    describe_verdict_given,
    record_activity,
)
from models import AuthorizedUser, Interview, InterviewSession, Student
from utils import ApiError, as_int_or_none, to_iso_utc, utc_now

log = logging.getLogger("activity")

IN_PROGRESS = "in_progress"
COMPLETED = "completed"
CANCELLED = "cancelled"


def serialize_interview(row: Interview) -> dict[str, Any]:
    return {
        "id": row.id,
        "studentId": row.student_id,
        "interviewerId": row.interviewer_id,
        "sessionId": row.session_id,
        "status": row.status,
        "verdict": row.verdict,
        "notes": row.notes,
        "durationSeconds": row.duration_seconds,
        "createdAt": to_iso_utc(row.created_at),
        "updatedAt": to_iso_utc(row.updated_at),
    }


def _session_filter(q, column, session_id: Optional[int]):
    if session_id is None:
        return q.where(column.is_(None))
    return q.where(column == session_id)


def _load_interview(db, data) -> Interview:
    interview_id = as_int_or_none((data or {}).get("interviewId"))
    if interview_id is None:
        raise ApiError("BAD_REQUEST", "Missing interviewId")
    row = db.get(Interview, interview_id)
    if row is None:
        raise ApiError("NOT_FOUND", "Interview not found")
    return row


def _performed_by(auth) -> Optional[int]:
    return getattr(auth, "user_id", None) if auth else None


def current_round_number(db, student_id: int, session_id: Optional[int], interview: Interview) -> int:
    """1-based position of `interview` among the started interviews of its (student, session)."""
    q = select(func.count(Interview.id)).where(
        Interview.student_id == student_id,
        Interview.status.in_(STARTED_INTERVIEW_STATUSES),
        (Interview.created_at < interview.created_at)
        | ((Interview.created_at == interview.created_at) & (Interview.id <= interview.id)),
    )
    q = _session_filter(q, Interview.session_id, session_id)
    return int(db.execute(q).scalar() or 0)


def interview_start(data, auth, db, cfg):
    data = data or {}
    student_id = as_int_or_none(data.get("studentId"))
    if student_id is None:
        raise ApiError("BAD_REQUEST", "Missing studentId")
    if db.get(Student, student_id) is None:
        raise ApiError("NOT_FOUND", "Student not found")

    session_id = as_int_or_none(data.get("sessionId"))
    if data.get("sessionId") not in (None, "") and session_id is None:
        raise ApiError("BAD_REQUEST", "Invalid sessionId")
    if session_id is not None and db.get(InterviewSession, session_id) is None:
        raise ApiError("NOT_FOUND", "Session not found")

    interviewer_id = as_int_or_none(data.get("interviewerId")) or _performed_by(auth)
    if interviewer_id is not None and db.get(AuthorizedUser, interviewer_id) is None:
        raise ApiError("NOT_FOUND", "Interviewer not found")

    running = db.execute(
        select(Interview).where(Interview.student_id == student_id, Interview.status == IN_PROGRESS)
    ).scalars().first()
    if running is not None and running.interviewer_id != interviewer_id:
        raise ApiError("CONFLICT", "Student is already being interviewed")
    if running is not None:
        return {"interview": serialize_interview(running), "roundNumber": None, "resumed": True}

    now = utc_now()
    row = Interview(
        student_id=student_id,
        interviewer_id=interviewer_id,
        session_id=session_id,
        status=IN_PROGRESS,
        verdict=str(data.get("verdict")).strip() if data.get("verdict") not in (None, "") else None,
        created_at=now,
        updated_at=now,
    )
    db.add(row)
    db.flush()

    round_number = current_round_number(db, student_id, session_id, row)
    record_activity(
        db,
        student_id=student_id,
        session_id=session_id,
        activity_type=ROUND_STARTED,
        description=describe_round_started(round_number),
        meta={"round_number": round_number, "interview_id": row.id},
        performed_by=interviewer_id,
        created_at=row.created_at,
    )
    log.info("round started student_id=%s session_id=%s round=%s interview_id=%s", student_id, session_id, round_number, row.id)
    return {"interview": serialize_interview(row), "roundNumber": round_number, "resumed": False}


def _finish(db, row: Interview, status: str) -> Interview:
    if row.status != IN_PROGRESS:
        raise ApiError("CONFLICT", f"Interview is already {row.status}")
    row.status = status
    row.updated_at = utc_now()
    db.flush()
    return row


def interview_complete(data, auth, db, cfg):
    row = _load_interview(db, data)
    duration = as_int_or_none((data or {}).get("durationSeconds"))
    _finish(db, row, COMPLETED)
    if duration is not None:
        row.duration_seconds = max(0, duration)

    record_activity(
        db,
        student_id=row.student_id,
        session_id=row.session_id,
        activity_type=INTERVIEW_COMPLETED,
        description=describe_interview_completed(row.verdict),
        meta={"interview_id": row.id, "verdict": row.verdict, "status": row.status},
        performed_by=_performed_by(auth) or row.interviewer_id,
        created_at=row.updated_at,
    )
    return {"interview": serialize_interview(row)}


def interview_cancel(data, auth, db, cfg):
    row = _load_interview(db, data)
    _finish(db, row, CANCELLED)

    record_activity(
        db,
        student_id=row.student_id,
        session_id=row.session_id,
        activity_type=INTERVIEW_CANCELLED,
        description=describe_interview_cancelled(),
        meta={"interview_id": row.id},
        performed_by=_performed_by(auth) or row.interviewer_id,
        created_at=row.updated_at,
    )
    return {"interview": serialize_interview(row)}


def interview_verdict_update(data, auth, db, cfg):
    row = _load_interview(db, data)

    raw = (data or {}).get("verdict")
    verdict = str(raw).strip() if raw is not None else ""
    if not verdict:
        raise ApiError("BAD_REQUEST", "Missing verdict")

    if getattr(cfg, "VERDICT_LOCK_AFTER_COMPLETE", False) and row.status != IN_PROGRESS and row.verdict != verdict:
        raise ApiError("VERDICT_LOCKED", f"Verdict is locked on a {row.status} interview")

    changed = verdict != row.verdict
    row.verdict = verdict
    row.updated_at = utc_now()
    db.flush()

    logged = False
    if changed:
        logged = record_activity(
            db,
            student_id=row.student_id,
            session_id=row.session_id,
            activity_type=VERDICT_GIVEN,
            description=describe_verdict_given(verdict),
            meta={"interview_id": row.id, "verdict": verdict},
            performed_by=_performed_by(auth) or row.interviewer_id,
            created_at=row.updated_at,
        )
    return {"interview": serialize_interview(row), "changed": changed, "activityLogged": logged}
