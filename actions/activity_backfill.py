from __future__ import annotations

import logging
from typing import Any, Callable, Optional

from sqlalchemy import select

from actions.activity_log import (
    ACTIVITY_TYPES,
    EMAIL_SENT,
    INTERVIEW_CANCELLED,
    INTERVIEW_COMPLETED,
    ROUND_STARTED,
    STARTED_INTERVIEW_STATUSES,
    STATUS_UPDATED,
    VERDICT_GIVEN,
    count_by_type,
    describe_email_sent,
    describe_interview_cancelled,
    describe_interview_completed,
    describe_round_started,
    describe_status_updated,
    describe_verdict_given,
    event_key,
    existing_event_keys,
    insert_activity,
)
from models import EmailLog, Interview, InterviewConsolidation
from schema import ensure_activity_schema

log = logging.getLogger("activity")


class _Writer:
    """Inserts events of one activity type, skipping keys already logged."""

    def __init__(self, db, activity_type: str):
        self.db = db
        self.activity_type = activity_type
        self.seen = existing_event_keys(db, activity_type)
        self.inserted = 0

    def add(
        self,
        *,
        student_id: int,
        session_id: Optional[int],
        key: Any,
        description: str,
        meta: dict[str, Any],
        created_at,
        performed_by: Optional[int] = None,
    ) -> None:
        dedupe_key = event_key(key)
        ident = (int(student_id), session_id, dedupe_key)
        if ident in self.seen:
            return
        self.inserted += insert_activity(
            self.db,
            student_id=student_id,
            session_id=session_id,
            activity_type=self.activity_type,
            description=description,
            meta=meta,
            created_at=created_at,
            performed_by=performed_by,
            dedupe_key=dedupe_key,
        )
        self.seen.add(ident)


def _interviews(db, *where):
    return (
        db.execute(
            select(Interview).where(*where).order_by(Interview.student_id, Interview.created_at, Interview.id)
        )
        .scalars()
        .all()
    )


def _backfill_round_started(db) -> int:
    w = _Writer(db, ROUND_STARTED)
    rounds: dict[tuple[int, Optional[int]], int] = {}
    for i in _interviews(db, Interview.status.in_(STARTED_INTERVIEW_STATUSES)):
        group = (i.student_id, i.session_id)
        rounds[group] = rounds.get(group, 0) + 1
        n = rounds[group]
        w.add(
            student_id=i.student_id,
            session_id=i.session_id,
            key=i.id,
            description=describe_round_started(n),
            meta={"round_number": n, "interview_id": i.id},
            created_at=i.created_at,
        )
    return w.inserted


def _backfill_interview_completed(db) -> int:
    w = _Writer(db, INTERVIEW_COMPLETED)
    for i in _interviews(db, Interview.status == "completed"):
        w.add(
            student_id=i.student_id,
            session_id=i.session_id,
            key=i.id,
            description=describe_interview_completed(i.verdict),
            meta={"interview_id": i.id, "verdict": i.verdict, "status": i.status},
            created_at=i.updated_at or i.created_at,
        )
    return w.inserted


def _backfill_interview_cancelled(db) -> int:
    w = _Writer(db, INTERVIEW_CANCELLED)
    for i in _interviews(db, Interview.status == "cancelled"):
        w.add(
            student_id=i.student_id,
            session_id=i.session_id,
            key=i.id,
            description=describe_interview_cancelled(),
            meta={"interview_id": i.id},
            created_at=i.updated_at or i.created_at,
        )
    return w.inserted


def _backfill_verdict_given(db) -> int:
    # One entry per distinct verdict text within (student, session); the most
    # recent interview carrying that text is the source row.
    latest: dict[tuple[int, Optional[int], str], Interview] = {}
    for i in _interviews(db, Interview.verdict.isnot(None)):
        if not str(i.verdict).strip():
            continue
        latest[(i.student_id, i.session_id, i.verdict)] = i

    w = _Writer(db, VERDICT_GIVEN)
    for (student_id, session_id, verdict), i in latest.items():
        w.add(
            student_id=student_id,
            session_id=session_id,
            key=verdict,
            description=describe_verdict_given(verdict),
            meta={"interview_id": i.id, "verdict": verdict},
            created_at=i.updated_at or i.created_at,
        )
    return w.inserted


def _backfill_email_sent(db) -> int:
    w = _Writer(db, EMAIL_SENT)
    rows = db.execute(
        select(EmailLog, InterviewConsolidation.student_id, InterviewConsolidation.session_id)
        .join(InterviewConsolidation, InterviewConsolidation.id == EmailLog.consolidation_id)
        .where(EmailLog.status == "sent")
        .order_by(EmailLog.id)
    ).all()
    for email, student_id, session_id in rows:
        w.add(
            student_id=student_id,
            session_id=session_id,
            key=email.id,
            description=describe_email_sent(email.subject),
            meta={"email_log_id": email.id, "to_emails": list(email.to_emails or []), "subject": email.subject},
            created_at=email.sent_at or email.created_at,
            performed_by=email.sent_by,
        )
    return w.inserted


def _backfill_status_updated(db) -> int:
    w = _Writer(db, STATUS_UPDATED)
    rows = (
        db.execute(
            select(InterviewConsolidation)
            .where(InterviewConsolidation.status.isnot(None), InterviewConsolidation.status != "")
            .order_by(InterviewConsolidation.id)
        )
        .scalars()
        .all()
    )
    for c in rows:
        w.add(
            student_id=c.student_id,
            session_id=c.session_id,
            key=c.status,
            description=describe_status_updated(c.status),
            meta={"status": c.status},
            created_at=c.updated_at or c.last_interview_at or c.created_at,
        )
    return w.inserted


_RULES: list[tuple[str, Callable[[Any], int]]] = [
    (ROUND_STARTED, _backfill_round_started),
    (INTERVIEW_COMPLETED, _backfill_interview_completed),
    (INTERVIEW_CANCELLED, _backfill_interview_cancelled),
    (VERDICT_GIVEN, _backfill_verdict_given),
    (EMAIL_SENT, _backfill_email_sent),
    (STATUS_UPDATED, _backfill_status_updated),
]


def backfill_activity_logs(db) -> dict[str, int]:
    """
    Derive `student_activity_logs` from interviews, consolidation rows and
    sent emails. All six rules share one transaction: any failure rolls back
    every insert of this run. Re-running inserts nothing new.
    """

    ensure_activity_schema(db.get_bind())

    inserted: dict[str, int] = {}
    try:
        for activity_type, rule in _RULES:
            inserted[activity_type] = rule(db)
            log.info("backfill %s inserted=%s", activity_type, inserted[activity_type])
        db.commit()
    except Exception:
        db.rollback()
        log.exception("activity backfill failed; rolled back")
        raise

    totals = count_by_type(db, ACTIVITY_TYPES)
    log.info(
        "activity backfill complete inserted=%s totals=%s",
        sum(inserted.values()),
        ", ".join(f"{k}:{v}" for k, v in sorted(totals.items(), key=lambda kv: -kv[1])),
    )
    return inserted


def activity_logs_backfill(data, auth, db, cfg):
    inserted = backfill_activity_logs(db)
    return {"inserted": inserted, "total": sum(inserted.values())}
