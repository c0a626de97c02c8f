from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Iterable, Optional

from sqlalchemy import func, literal_column, select
from sqlalchemy.exc import SQLAlchemyError

from actions.verdicts import STATUSES, classify_verdicts
from models import AuthorizedUser, Interview, InterviewConsolidation, InterviewSession, Student
from schema import ensure_consolidation_schema
from utils import ApiError, as_int_or_none, normalize_string, page_params, to_iso_utc, utc_now

log = logging.getLogger("consolidation")

GroupKey = tuple[int, Optional[int]]


@dataclass
class ConsolidationGroup:
    student_id: int
    session_id: Optional[int]
    student_name: str = ""
    student_email: str = ""
    zeta_id: str = ""
    session_name: str = ""
    interview_ids: list[int] = field(default_factory=list)
    interviewer_ids: list[Optional[int]] = field(default_factory=list)
    interviewer_names: list[Optional[str]] = field(default_factory=list)
    verdicts: list[str] = field(default_factory=list)
    last_interview_at: Optional[datetime] = None

    @property
    def key(self) -> GroupKey:
        return (self.student_id, self.session_id)

    @property
    def status(self) -> Optional[str]:
        return classify_verdicts(self.verdicts)


@dataclass
class ConsolidationResult:
    groups: int = 0
    upserted: int = 0
    failed: list[GroupKey] = field(default_factory=list)

    def as_dict(self) -> dict[str, Any]:
        return {
            "groups": self.groups,
            "upserted": self.upserted,
            "failed": [{"studentId": s, "sessionId": sess} for s, sess in self.failed],
        }


def _interview_rows(db):
    return db.execute(
        select(
            Interview.id,
            Interview.student_id,
            Interview.session_id,
            Interview.interviewer_id,
            Interview.verdict,
            Interview.created_at,
            Student.first_name,
            Student.last_name,
            Student.email,
            Student.zeta_id,
            AuthorizedUser.name,
            InterviewSession.name,
        )
        .join(Student, Student.id == Interview.student_id)
        .outerjoin(AuthorizedUser, AuthorizedUser.id == Interview.interviewer_id)
        .outerjoin(InterviewSession, InterviewSession.id == Interview.session_id)
        .order_by(Interview.student_id, Interview.created_at, Interview.id)
    ).all()


def build_groups(rows: Iterable[tuple]) -> list[ConsolidationGroup]:
    """
    Single pass over interview rows (already in creation order) into one
    group per (student, session) with parallel per-interview arrays.
    """

    groups: dict[GroupKey, ConsolidationGroup] = {}
    for (
        interview_id,
        student_id,
        session_id,
        interviewer_id,
        verdict,
        created_at,
        first_name,
        last_name,
        email,
        zeta_id,
        interviewer_name,
        session_name,
    ) in rows:
        key = (int(student_id), int(session_id) if session_id is not None else None)
        g = groups.get(key)
        if g is None:
            g = ConsolidationGroup(
                student_id=key[0],
                session_id=key[1],
                student_name=normalize_string(f"{first_name or ''} {last_name or ''}"),
                student_email=normalize_string(email),
                zeta_id=normalize_string(zeta_id),
                session_name=normalize_string(session_name),
            )
            groups[key] = g

        g.interview_ids.append(int(interview_id))
        g.interviewer_ids.append(int(interviewer_id) if interviewer_id is not None else None)
        g.interviewer_names.append(normalize_string(interviewer_name) if interviewer_name is not None else None)
        if verdict is not None:
            g.verdicts.append(normalize_string(verdict))
        if created_at is not None and (g.last_interview_at is None or created_at > g.last_interview_at):
            g.last_interview_at = created_at

    return list(groups.values())


def _find_record(db, student_id: int, session_id: Optional[int]) -> Optional[InterviewConsolidation]:
    q = select(InterviewConsolidation).where(InterviewConsolidation.student_id == student_id)
    if session_id is None:
        q = q.where(InterviewConsolidation.session_id.is_(None))
    else:
        q = q.where(InterviewConsolidation.session_id == session_id)
    # Core upserts bypass the identity map; reload so callers never see stale rows.
    return db.execute(q.execution_options(populate_existing=True)).scalars().first()


def _derived_fields(group: ConsolidationGroup, now: datetime) -> dict[str, Any]:
    return {
        "student_name": group.student_name,
        "student_email": group.student_email,
        "zeta_id": group.zeta_id,
        "session_name": group.session_name,
        "interview_ids": list(group.interview_ids),
        "interviewer_ids": list(group.interviewer_ids),
        "interviewer_names": list(group.interviewer_names),
        "verdicts": list(group.verdicts),
        "status": group.status,
        "last_interview_at": group.last_interview_at,
        "updated_at": now,
    }


def _upsert_stmt(dialect: str, values: dict[str, Any], updates: dict[str, Any]):
    if dialect == "postgresql":
        from sqlalchemy.dialects.postgresql import insert as dialect_insert
    elif dialect == "sqlite":
        from sqlalchemy.dialects.sqlite import insert as dialect_insert
    else:
        return None

    # Matches uq_interview_consolidation_student_session_key so NULL sessions collide too.
    table = InterviewConsolidation.__table__
    target = [table.c.student_id, func.coalesce(table.c.session_id, literal_column("0"))]
    stmt = dialect_insert(table).values(values)
    return stmt.on_conflict_do_update(index_elements=target, set_=updates)


def upsert_group(db, group: ConsolidationGroup, *, now: Optional[datetime] = None) -> InterviewConsolidation:
    """
    Insert or overwrite the consolidation row of one group. A row another run
    inserted for the same (student, session) is updated in place, never an error.
    """

    now = now or utc_now()
    updates = _derived_fields(group, now)
    values = {"student_id": group.student_id, "session_id": group.session_id, "created_at": now, **updates}

    stmt = _upsert_stmt(db.get_bind().dialect.name, values, updates)
    if stmt is not None:
        db.execute(stmt)
        return _find_record(db, group.student_id, group.session_id)

    row = _find_record(db, group.student_id, group.session_id)
    if row is None:
        row = InterviewConsolidation(student_id=group.student_id, session_id=group.session_id, created_at=now)
        db.add(row)
    for name, value in updates.items():
        setattr(row, name, value)
    db.flush()
    return row


def recompute_consolidation(db, cfg=None, *, atomic: Optional[bool] = None) -> ConsolidationResult:
    """
    Full recompute of `interview_consolidation` from `interviews`.

    Best-effort by default: every group commits on its own and a failing group
    is logged and skipped. With `atomic` (or CONSOLIDATION_ATOMIC) the whole
    run is one transaction and the first failure rolls everything back and
    propagates. Errors reading interviews or creating the table always propagate.
    """

    if atomic is None:
        atomic = bool(getattr(cfg, "CONSOLIDATION_ATOMIC", False))

    ensure_consolidation_schema(db.get_bind())

    log.info("aggregating interviews per (student, session)")
    groups = build_groups(_interview_rows(db))
    result = ConsolidationResult(groups=len(groups))
    log.info("upserting %s consolidation rows (atomic=%s)", len(groups), atomic)

    now = utc_now()
    if atomic:
        try:
            for g in groups:
                upsert_group(db, g, now=now)
                result.upserted += 1
            db.commit()
        except Exception:
            db.rollback()
            log.exception("consolidation failed; rolled back")
            raise
        return result

    for g in groups:
        try:
            upsert_group(db, g, now=now)
            db.commit()
            result.upserted += 1
        except SQLAlchemyError:
            db.rollback()
            result.failed.append(g.key)
            log.exception("consolidation upsert failed student_id=%s session_id=%s", g.student_id, g.session_id)

    if result.failed:
        log.warning("consolidation finished with %s failed group(s) of %s", len(result.failed), result.groups)
    else:
        log.info("consolidation complete: %s rows", result.upserted)
    return result


def serialize_consolidation(row: InterviewConsolidation) -> dict[str, Any]:
    return {
        "id": row.id,
        "studentId": row.student_id,
        "sessionId": row.session_id,
        "studentName": row.student_name,
        "studentEmail": row.student_email,
        "zetaId": row.zeta_id,
        "sessionName": row.session_name,
        "interviewIds": list(row.interview_ids or []),
        "interviewerIds": list(row.interviewer_ids or []),
        "interviewerNames": list(row.interviewer_names or []),
        "verdicts": list(row.verdicts or []),
        "status": row.status,
        "lastInterviewAt": to_iso_utc(row.last_interview_at),
        "createdAt": to_iso_utc(row.created_at),
        "updatedAt": to_iso_utc(row.updated_at),
    }


def consolidation_refresh(data, auth, db, cfg):
    atomic = (data or {}).get("atomic")
    result = recompute_consolidation(db, cfg, atomic=atomic if isinstance(atomic, bool) else None)
    return result.as_dict()


def consolidation_list(data, auth, db, cfg):
    q = select(InterviewConsolidation)

    raw_session = (data or {}).get("sessionId")
    if raw_session not in (None, ""):
        session_id = as_int_or_none(raw_session)
        if session_id is None:
            raise ApiError("BAD_REQUEST", "Invalid sessionId")
        q = q.where(InterviewConsolidation.session_id == session_id)

    status = str((data or {}).get("status") or "").strip().lower()
    if status == "none":
        q = q.where(InterviewConsolidation.status.is_(None))
    elif status:
        if status not in STATUSES:
            raise ApiError("BAD_REQUEST", "Invalid status")
        q = q.where(InterviewConsolidation.status == status)

    search = str((data or {}).get("q") or "").strip().lower()
    page, page_size = page_params(data)

    rows = db.execute(q).scalars().all()
    items = []
    for r in rows:
        if search:
            hay = f"{r.student_name} {r.student_email} {r.zeta_id}".lower()
            if search not in hay:
                continue
        items.append(serialize_consolidation(r))

    items.sort(key=lambda x: str(x.get("lastInterviewAt") or ""), reverse=True)
    total = len(items)
    start = (page - 1) * page_size
    return {"items": items[start : start + page_size], "total": total}


def consolidation_get(data, auth, db, cfg):
    student_id = as_int_or_none((data or {}).get("studentId"))
    if student_id is None:
        raise ApiError("BAD_REQUEST", "Missing studentId")

    q = select(InterviewConsolidation).where(InterviewConsolidation.student_id == student_id)
    raw_session = (data or {}).get("sessionId")
    if raw_session not in (None, ""):
        session_id = as_int_or_none(raw_session)
        if session_id is None:
            raise ApiError("BAD_REQUEST", "Invalid sessionId")
        q = q.where(InterviewConsolidation.session_id == session_id)

    rows = db.execute(q.order_by(InterviewConsolidation.id.asc())).scalars().all()
    if not rows:
        raise ApiError("NOT_FOUND", "No consolidation for student")
    return {"items": [serialize_consolidation(r) for r in rows]}
