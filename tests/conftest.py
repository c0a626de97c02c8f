import sys
from datetime import datetime, timedelta
from pathlib import Path

import pytest


BACKEND_ROOT = Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
    sys.path.insert(0, str(BACKEND_ROOT))


BASE_TIME = datetime(2024, 3, 1, 9, 0, 0)


def _isolate_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    db_path = tmp_path / "test.db"

    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{db_path.as_posix()}")
    monkeypatch.setenv("LOG_LEVEL", "WARNING")
    monkeypatch.setenv("APP_ENV", "test")
    monkeypatch.setenv("INTERNAL_CRON_TOKEN", "cron-secret")

    # Prevent accidental pollution from any existing env config.
    for name in (
        "ALLOWED_ORIGINS",
        "CONSOLIDATION_ATOMIC",
        "VERDICT_LOCK_AFTER_COMPLETE",
        "AUDIT_ENABLED",
        "AUDIT_MAX_BODY_SIZE",
    ):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture()
def app_client(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    _isolate_env(tmp_path, monkeypatch)

    from app import create_app
    from cache_layer import cache_clear

    cache_clear()

    app = create_app()
    app.testing = True

    with app.test_client() as client:
        yield app, client


@pytest.fixture()
def db_session(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    _isolate_env(tmp_path, monkeypatch)

    import db as dbmod
    from cache_layer import cache_clear
    from models import Base
    from schema import ensure_schema

    cache_clear()
    engine = dbmod.init_engine(f"sqlite:///{(tmp_path / 'test.db').as_posix()}")
    Base.metadata.create_all(bind=engine)
    ensure_schema(engine)

    session = dbmod.SessionLocal()
    try:
        yield session
    finally:
        session.close()
        engine.dispose()


class Factory:
    """Small helpers for seeding rows with explicit timestamps."""

    def __init__(self, db):
        self.db = db
        self._n = 0

    def _next(self) -> int:
        self._n += 1
        return self._n

    def student(self, first_name: str = "Asha", last_name: str = "Rao", **kw):
        from models import Student

        n = self._next()
        row = Student(
            first_name=first_name,
            last_name=last_name,
            email=kw.pop("email", f"student{n}@example.com"),
            zeta_id=kw.pop("zeta_id", f"Z-{n:04d}"),
            **kw,
        )
        self.db.add(row)
        self.db.flush()
        return row

    def user(self, email: str = "interviewer@example.com", role: str = "interviewer", name: str = "Ivy", **kw):
        from models import AuthorizedUser

        row = AuthorizedUser(email=email, role=role, name=name, **kw)
        self.db.add(row)
        self.db.flush()
        return row

    def session(self, name: str = "Spring Walk-in"):
        from models import InterviewSession

        row = InterviewSession(name=name)
        self.db.add(row)
        self.db.flush()
        return row

    def interview(self, student, *, minutes: int = 0, session=None, interviewer=None, status="completed", verdict=None, updated_minutes=None):
        from models import Interview

        created = BASE_TIME + timedelta(minutes=minutes)
        updated = BASE_TIME + timedelta(minutes=updated_minutes) if updated_minutes is not None else created
        row = Interview(
            student_id=student.id,
            session_id=session.id if session is not None else None,
            interviewer_id=interviewer.id if interviewer is not None else None,
            status=status,
            verdict=verdict,
            created_at=created,
            updated_at=updated,
        )
        self.db.add(row)
        self.db.flush()
        return row


@pytest.fixture()
def factory(db_session):
    return Factory(db_session)
