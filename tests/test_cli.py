from __future__ import annotations

import json

import pytest
from sqlalchemy import func, select

import cli
from models import StudentActivityLog


def test_consolidate_then_backfill(db_session, factory, capsys):
    s = factory.student()
    factory.interview(s, verdict="Rejected")
    db_session.commit()

    assert cli.main(["consolidate"]) == 0
    out = json.loads(capsys.readouterr().out.strip().splitlines()[-1])
    assert out["upserted"] == 1

    assert cli.main(["backfill-activity"]) == 0
    out = json.loads(capsys.readouterr().out.strip().splitlines()[-1])
    assert out["inserted"]["status_updated"] == 1
    assert out["total"] == db_session.execute(select(func.count(StudentActivityLog.id))).scalar()

    assert cli.main(["backfill-activity"]) == 0
    out = json.loads(capsys.readouterr().out.strip().splitlines()[-1])
    assert out["total"] == 0


def test_failure_exits_with_one(db_session, monkeypatch):
    from actions import activity_backfill

    def boom(db):
        raise RuntimeError("store unavailable")

    monkeypatch.setattr(activity_backfill, "backfill_activity_logs", boom)
    assert cli.main(["backfill-activity"]) == 1


def test_unknown_command_is_rejected(db_session):
    with pytest.raises(SystemExit):
        cli.main(["nope"])
