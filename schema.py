from __future__ import annotations

import logging

from sqlalchemy import inspect, select, text
from sqlalchemy.orm import Session

from models import InterviewConsolidation, StudentActivityLog


_log = logging.getLogger("schema")


def _quoted(name: str) -> str:
    return '"' + str(name).replace('"', '""') + '"'


def _ensure_column(engine, *, table: str, column: str, ddl_type: str, default_sql: str = "''") -> None:
    insp = inspect(engine)
    if not insp.has_table(table):
        return
    cols = {c.get("name") for c in insp.get_columns(table)}
    if column in cols:
        return
    ddl = f"ALTER TABLE {_quoted(table)} ADD COLUMN {_quoted(column)} {ddl_type} DEFAULT {default_sql}"
    with engine.begin() as conn:
        conn.execute(text(ddl))


def _ensure_index(engine, *, name: str, table: str, columns: list[str], unique: bool = False) -> None:
    # Entries in `columns` are raw SQL expressions so COALESCE(...) keys are allowed.
    kind = "UNIQUE INDEX" if unique else "INDEX"
    ddl = f"CREATE {kind} IF NOT EXISTS {_quoted(name)} ON {_quoted(table)}({', '.join(columns)})"
    with engine.begin() as conn:
        conn.execute(text(ddl))


def ensure_schema(engine) -> None:
    """
    Lightweight, idempotent schema evolution (no Alembic).

    Databases created by earlier releases may lack `student_activity_logs.dedupe_key`;
    it is added and backfilled before the uniqueness index that guards the
    activity backfill is created.
    """

    ensure_consolidation_schema(engine)
    ensure_activity_schema(engine)
    _ensure_index(engine, name="idx_audit_logs_action_created", table="audit_logs", columns=["action_type", "created_at"])


def ensure_consolidation_schema(engine) -> None:
    InterviewConsolidation.__table__.create(bind=engine, checkfirst=True)
    _ensure_index(engine, name="idx_interview_consolidation_student", table="interview_consolidation", columns=["student_id"])
    _ensure_index(engine, name="idx_interview_consolidation_session", table="interview_consolidation", columns=["session_id"])
    # NULL session ids are distinct in a plain UNIQUE constraint; key them on COALESCE as well.
    _ensure_index(
        engine,
        name="uq_interview_consolidation_student_session_key",
        table="interview_consolidation",
        columns=["student_id", "COALESCE(session_id, 0)"],
        unique=True,
    )


def ensure_activity_schema(engine) -> None:
    StudentActivityLog.__table__.create(bind=engine, checkfirst=True)
    _ensure_column(engine, table="student_activity_logs", column="dedupe_key", ddl_type="VARCHAR(64)")
    _backfill_activity_dedupe_keys(engine)
    _ensure_index(
        engine,
        name="uq_student_activity_logs_event",
        table="student_activity_logs",
        columns=["student_id", "COALESCE(session_id, 0)", "activity_type", "dedupe_key"],
        unique=True,
    )
    _ensure_index(
        engine,
        name="idx_student_activity_logs_student_created",
        table="student_activity_logs",
        columns=["student_id", "created_at"],
    )


def _backfill_activity_dedupe_keys(engine) -> None:
    """
    Derive `dedupe_key` for rows written before the column existed.

    Rows whose key can't be derived from metadata (or whose key is already
    claimed by an earlier row) get a unique `legacy:<id>` key so they stay
    visible without blocking the uniqueness index.
    """

    from actions.activity_log import dedupe_key_from_metadata

    with Session(engine) as db:
        rows = (
            db.execute(
                select(StudentActivityLog)
                .where((StudentActivityLog.dedupe_key == "") | (StudentActivityLog.dedupe_key.is_(None)))
                .order_by(StudentActivityLog.id.asc())
            )
            .scalars()
            .all()
        )
        if not rows:
            return

        claimed = {
            (r.student_id, r.session_id, r.activity_type, r.dedupe_key)
            for r in db.execute(
                select(
                    StudentActivityLog.student_id,
                    StudentActivityLog.session_id,
                    StudentActivityLog.activity_type,
                    StudentActivityLog.dedupe_key,
                ).where(StudentActivityLog.dedupe_key != "")
            ).all()
        }

        for row in rows:
            key = dedupe_key_from_metadata(row.activity_type, row.meta)
            ident = (row.student_id, row.session_id, row.activity_type, key)
            if not key or ident in claimed:
                key = f"legacy:{row.id}"
                ident = (row.student_id, row.session_id, row.activity_type, key)
            claimed.add(ident)
            row.dedupe_key = key

        db.commit()
        _log.info("backfilled dedupe_key on %s student_activity_logs rows", len(rows))
