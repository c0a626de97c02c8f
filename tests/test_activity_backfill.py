from __future__ import annotations

from datetime import datetime

import pytest
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from actions import activity_backfill as backfill_mod
from actions import dispatch
from actions.activity_backfill import backfill_activity_logs
from actions.activity_log import ACTIVITY_TYPES, event_key, insert_activity, record_activity
from actions.consolidation import recompute_consolidation
from models import EmailLog, InterviewConsolidation, StudentActivityLog


def _entries(db, activity_type=None):
    q = select(StudentActivityLog).order_by(StudentActivityLog.id)
    if activity_type:
        q = q.where(StudentActivityLog.activity_type == activity_type)
    return db.execute(q).scalars().all()


def _seed_history(db, factory):
    s = factory.student()
    spring = factory.session("Spring")
    ivy = factory.user()
    factory.interview(s, minutes=0, session=spring, interviewer=ivy, verdict="On Hold", updated_minutes=30)
    factory.interview(s, minutes=60, session=spring, interviewer=ivy, status="cancelled")
    factory.interview(s, minutes=120, session=spring, interviewer=ivy, status="in_progress")
    db.commit()
    recompute_consolidation(db)
    return s, spring, ivy


def test_backfill_derives_every_activity_type(db_session, factory):
    s, spring, ivy = _seed_history(db_session, factory)
    cons = db_session.execute(select(InterviewConsolidation)).scalars().one()
    db_session.add(
        EmailLog(
            consolidation_id=cons.id,
            to_emails=["asha@example.com"],
            subject=None,
            status="sent",
            sent_by=ivy.id,
            sent_at=datetime(2024, 3, 2, 10, 0, 0),
        )
    )
    db_session.add(EmailLog(consolidation_id=cons.id, to_emails=["x@example.com"], subject="Draft", status="failed"))
    db_session.commit()

    inserted = backfill_activity_logs(db_session)

    assert inserted == {
        "round_started": 3,
        "interview_completed": 1,
        "interview_cancelled": 1,
        "verdict_given": 1,
        "email_sent": 1,
        "status_updated": 1,
    }

    (completed,) = _entries(db_session, "interview_completed")
    assert completed.activity_description == "Interview completed - Verdict: On Hold"
    assert completed.created_at == datetime(2024, 3, 1, 9, 30, 0)
    assert completed.meta["status"] == "completed"

    (email,) = _entries(db_session, "email_sent")
    assert email.activity_description == "Email sent: No subject"
    assert email.performed_by == ivy.id
    assert email.session_id == spring.id
    assert email.created_at == datetime(2024, 3, 2, 10, 0, 0)
    assert email.meta["to_emails"] == ["asha@example.com"]

    (status,) = _entries(db_session, "status_updated")
    assert status.activity_description == "Status updated to: waitlisted"
    assert status.meta == {"status": "waitlisted"}


def test_second_run_inserts_nothing(db_session, factory):
    _seed_history(db_session, factory)

    first = backfill_activity_logs(db_session)
    total = len(_entries(db_session))
    second = backfill_activity_logs(db_session)

    assert sum(first.values()) == total
    assert second == {t: 0 for t in ACTIVITY_TYPES}
    assert len(_entries(db_session)) == total


def test_round_numbers_follow_creation_order_not_insert_order(db_session, factory):
    s = factory.student()
    late = factory.interview(s, minutes=90)
    early = factory.interview(s, minutes=0)
    middle = factory.interview(s, minutes=45, status="cancelled")
    db_session.commit()

    backfill_activity_logs(db_session)

    rounds = {e.meta["interview_id"]: e.meta["round_number"] for e in _entries(db_session, "round_started")}
    assert rounds == {early.id: 1, middle.id: 2, late.id: 3}
    by_interview = {e.meta["interview_id"]: e for e in _entries(db_session, "round_started")}
    assert by_interview[middle.id].activity_description == "Round 2 started"
    assert by_interview[middle.id].created_at == datetime(2024, 3, 1, 9, 45, 0)


def test_rounds_are_numbered_per_session(db_session, factory):
    s = factory.student()
    spring = factory.session("Spring")
    factory.interview(s, minutes=0, session=spring)
    unsessioned = factory.interview(s, minutes=10)
    db_session.commit()

    backfill_activity_logs(db_session)

    by_interview = {e.meta["interview_id"]: e for e in _entries(db_session, "round_started")}
    assert by_interview[unsessioned.id].meta["round_number"] == 1
    assert by_interview[unsessioned.id].session_id is None


def test_changed_verdict_adds_exactly_one_verdict_entry(db_session, factory):
    s = factory.student()
    interview = factory.interview(s, verdict="Hold")
    db_session.commit()

    backfill_activity_logs(db_session)
    before = len(_entries(db_session, "verdict_given"))

    interview.verdict = "Selected"
    db_session.commit()
    second = backfill_activity_logs(db_session)

    assert second["verdict_given"] == 1
    assert len(_entries(db_session, "verdict_given")) == before + 1
    assert {e.meta["verdict"] for e in _entries(db_session, "verdict_given")} == {"Hold", "Selected"}


def test_repeated_verdict_text_in_group_is_logged_once(db_session, factory):
    s = factory.student()
    factory.interview(s, minutes=0, verdict="Selected")
    latest = factory.interview(s, minutes=30, verdict="Selected")
    factory.interview(s, minutes=40, verdict="   ")
    db_session.commit()

    backfill_activity_logs(db_session)

    (entry,) = _entries(db_session, "verdict_given")
    assert entry.meta["interview_id"] == latest.id


def test_null_session_entries_are_not_duplicated(db_session, factory):
    s = factory.student()
    factory.interview(s, verdict="Rejected")
    db_session.commit()

    backfill_activity_logs(db_session)
    backfill_activity_logs(db_session)

    assert len(_entries(db_session, "verdict_given")) == 1
    assert len(_entries(db_session, "round_started")) == 1


def test_live_entries_are_not_repeated_by_backfill(db_session, factory):
    s = factory.student()
    interview = factory.interview(s, verdict="Selected")
    db_session.flush()
    assert record_activity(
        db_session,
        student_id=s.id,
        session_id=None,
        activity_type="verdict_given",
        description="Verdict given: Selected",
        meta={"interview_id": interview.id, "verdict": "Selected"},
    )
    db_session.commit()

    inserted = backfill_activity_logs(db_session)

    assert inserted["verdict_given"] == 0
    assert len(_entries(db_session, "verdict_given")) == 1


def test_unique_index_rejects_duplicate_event(db_session, factory):
    s = factory.student()
    db_session.commit()

    values = dict(
        student_id=s.id,
        session_id=None,
        activity_type="status_updated",
        dedupe_key=event_key("selected"),
        activity_description="Status updated to: selected",
        meta={"status": "selected"},
    )
    db_session.add(StudentActivityLog(**values))
    db_session.commit()
    db_session.add(StudentActivityLog(**values))
    with pytest.raises(IntegrityError):
        db_session.commit()
    db_session.rollback()

    # The conflict-tolerant writer treats the same event as a no-op.
    assert (
        insert_activity(
            db_session,
            student_id=s.id,
            session_id=None,
            activity_type="status_updated",
            description="Status updated to: selected",
            meta={"status": "selected"},
            created_at=None,
        )
        == 0
    )


def test_failure_rolls_back_all_rules(db_session, factory, monkeypatch):
    s = factory.student()
    factory.interview(s, verdict="Selected")
    db_session.commit()

    def boom(db):
        raise RuntimeError("email source unavailable")

    rules = [(t, boom if t == "email_sent" else fn) for t, fn in backfill_mod._RULES]
    monkeypatch.setattr(backfill_mod, "_RULES", rules)

    with pytest.raises(RuntimeError):
        backfill_activity_logs(db_session)

    assert _entries(db_session) == []


def test_long_verdict_gets_fixed_width_key(db_session, factory):
    s = factory.student()
    verdict = "On hold: " + "x" * 400
    factory.interview(s, verdict=verdict)
    db_session.commit()

    first = backfill_activity_logs(db_session)
    second = backfill_activity_logs(db_session)

    assert first["verdict_given"] == 1
    assert second["verdict_given"] == 0
    (entry,) = _entries(db_session, "verdict_given")
    assert entry.meta["verdict"] == verdict
    assert entry.dedupe_key == event_key(verdict)
    limit = StudentActivityLog.__table__.c.dedupe_key.type.length
    assert all(len(e.dedupe_key) <= limit for e in _entries(db_session))


def test_backfill_action_runs_through_dispatch(db_session, factory):
    s = factory.student()
    factory.interview(s, verdict="Selected")
    db_session.commit()

    out = dispatch("ACTIVITY_BACKFILL", {}, None, db_session, None)

    assert out["total"] == sum(out["inserted"].values())
    assert out["inserted"]["verdict_given"] == 1
    assert callable(backfill_mod.backfill_activity_logs)
