from __future__ import annotations

import pytest

from auth import assert_permission, lookup_user, resolve_auth
from config import Config
from models import AuthorizedUser
from utils import ApiError


def test_user_authorized_after_failed_lookup_is_found(db_session):
    assert lookup_user(db_session, "late@example.com") is None

    db_session.add(AuthorizedUser(email="late@example.com", name="Late", role="admin"))
    db_session.commit()

    user = lookup_user(db_session, " LATE@example.com ")
    assert user is not None
    assert user["role"] == "admin"

    auth = resolve_auth(db_session, Config(), email="late@example.com")
    assert auth.valid is True
    assert_permission(auth, "CONSOLIDATION_REFRESH")


def test_hits_are_served_from_cache(db_session, factory):
    ivy = factory.user(email="ivy@example.com")
    db_session.commit()
    assert lookup_user(db_session, "ivy@example.com")["id"] == ivy.id

    db_session.delete(ivy)
    db_session.commit()

    assert lookup_user(db_session, "ivy@example.com")["id"] == ivy.id


def test_internal_token_only_for_job_actions(db_session):
    cfg = Config()
    auth = resolve_auth(db_session, cfg, internal_token="cron-secret", allow_internal=True)
    assert auth.valid is True and auth.role == "superadmin"

    denied = resolve_auth(db_session, cfg, internal_token="cron-secret", allow_internal=False)
    with pytest.raises(ApiError) as ei:
        assert_permission(denied, "AUDIT_STATS")
    assert ei.value.code == "AUTH_INVALID"
