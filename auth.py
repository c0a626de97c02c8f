from __future__ import annotations

import hmac
from dataclasses import dataclass
from typing import Any, Optional

from sqlalchemy import func, select

from cache_layer import cache_get, cache_set, user_cache_key
from models import AuthorizedUser
from utils import ApiError

ADMIN_ROLES = {"admin", "superadmin"}
INTERVIEWER_ROLES = {"interviewer", "admin", "superadmin"}

SYSTEM_EMAIL = "SYSTEM"

# Minimum role set per action. Actions missing here are denied.
ACTION_ROLES: dict[str, set[str]] = {
    "CONSOLIDATION_REFRESH": ADMIN_ROLES,
    "ACTIVITY_BACKFILL": ADMIN_ROLES,
    "CONSOLIDATION_LIST": ADMIN_ROLES,
    "CONSOLIDATION_GET": ADMIN_ROLES,
    "AUDIT_LOGS_QUERY": ADMIN_ROLES,
    "AUDIT_STATS": ADMIN_ROLES,
    "STUDENT_ACTIVITY_LIST": INTERVIEWER_ROLES,
    "INTERVIEW_START": INTERVIEWER_ROLES,
    "INTERVIEW_COMPLETE": INTERVIEWER_ROLES,
    "INTERVIEW_CANCEL": INTERVIEWER_ROLES,
    "INTERVIEW_VERDICT_UPDATE": INTERVIEWER_ROLES,
}

# Actions a cron caller may run with X-Internal-Token.
INTERNAL_ACTIONS = {"CONSOLIDATION_REFRESH", "ACTIVITY_BACKFILL"}


@dataclass
class AuthContext:
    valid: bool
    user_id: Optional[int] = None
    email: str = ""
    name: str = ""
    role: str = ""


def normalize_role(user: Optional[dict[str, Any]]) -> str:
    if not user:
        return ""
    if user.get("is_superadmin"):
        return "superadmin"
    return str(user.get("role") or "user").strip().lower()


def lookup_user(db, email: Any) -> Optional[dict[str, Any]]:
    """Authorized user as a plain dict, cached per email for USER_CACHE_TTL_SECONDS."""
    e = str(email or "").strip().lower()
    if not e:
        return None

    key = user_cache_key(e)
    cached = cache_get(key)
    if cached:
        return cached

    row = db.execute(select(AuthorizedUser).where(func.lower(AuthorizedUser.email) == e)).scalars().first()
    if row is None:
        # Misses are not cached so a newly authorized user is seen on the next request.
        return None
    user = {
        "id": row.id,
        "email": row.email,
        "name": row.name or "",
        "role": row.role,
        "is_superadmin": bool(row.is_superadmin),
    }
    cache_set(key, user)
    return user


def internal_token_matches(presented: Any, expected: Any) -> bool:
    p = str(presented or "").strip()
    e = str(expected or "").strip()
    if not p or not e:
        return False
    return hmac.compare_digest(p, e)


def resolve_auth(db, cfg, *, email: Any = "", internal_token: Any = "", allow_internal: bool = False) -> AuthContext:
    if allow_internal and internal_token_matches(internal_token, getattr(cfg, "INTERNAL_CRON_TOKEN", "")):
        return AuthContext(valid=True, user_id=None, email=SYSTEM_EMAIL, name="cron", role="superadmin")

    user = lookup_user(db, email)
    if not user:
        return AuthContext(valid=False)
    return AuthContext(
        valid=True,
        user_id=int(user["id"]),
        email=str(user["email"]),
        name=str(user.get("name") or ""),
        role=normalize_role(user),
    )


def assert_permission(auth: Optional[AuthContext], action: str) -> None:
    if not auth or not auth.valid:
        raise ApiError("AUTH_INVALID", "Unknown or missing user")
    allowed = ACTION_ROLES.get(str(action or "").upper().strip())
    if not allowed or auth.role not in allowed:
        raise ApiError("FORBIDDEN", "Not allowed")
