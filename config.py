import os


def _env_flag(name: str, default: str = "0") -> bool:
    return str(os.getenv(name, default) or "").strip().lower() in {"1", "true", "yes", "y", "on"}


class Config:
    def __init__(self) -> None:
        self.APP_ENV = os.getenv("APP_ENV", "development")
        self.APP_VERSION = os.getenv("APP_VERSION", "dev")
        self.HOST = os.getenv("HOST", "0.0.0.0")
        self.PORT = int(os.getenv("PORT", "3000"))

        self.DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./interviews.db")

        self.ALLOWED_ORIGINS = [
            s.strip() for s in (os.getenv("ALLOWED_ORIGINS", "*") or "*").split(",") if s.strip()
        ]

        self.LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

        # Cron/operator callers of the job endpoints present this in X-Internal-Token.
        self.INTERNAL_CRON_TOKEN = os.getenv("INTERNAL_CRON_TOKEN", "").strip()

        # Consolidation failure policy:
        # - 0 (default): best-effort, a failed (student, session) group is logged and skipped
        # - 1: one transaction for the whole recompute, any failure rolls back and raises
        self.CONSOLIDATION_ATOMIC = _env_flag("CONSOLIDATION_ATOMIC")

        # When enabled, verdicts can no longer change once an interview is completed/cancelled.
        self.VERDICT_LOCK_AFTER_COMPLETE = _env_flag("VERDICT_LOCK_AFTER_COMPLETE")

        self.AUDIT_ENABLED = _env_flag("AUDIT_ENABLED", "1")
        self.AUDIT_LOG_REQUEST_BODY = _env_flag("AUDIT_LOG_REQUEST_BODY", "1")
        self.AUDIT_LOG_RESPONSE_BODY = _env_flag("AUDIT_LOG_RESPONSE_BODY", "1")
        self.AUDIT_MAX_BODY_SIZE = int(os.getenv("AUDIT_MAX_BODY_SIZE", "10000"))

    @property
    def IS_PRODUCTION(self) -> bool:
        return str(self.APP_ENV or "").strip().lower() in {"prod", "production"}

    def validate(self) -> None:
        if self.IS_PRODUCTION and str(self.DATABASE_URL or "").startswith("sqlite"):
            raise RuntimeError("DATABASE_URL must be Postgres in production")

        if self.IS_PRODUCTION and any(str(o or "").strip() == "*" for o in (self.ALLOWED_ORIGINS or [])):
            raise RuntimeError("ALLOWED_ORIGINS must not contain '*' in production")

        if self.IS_PRODUCTION and not str(self.INTERNAL_CRON_TOKEN or "").strip():
            raise RuntimeError("INTERNAL_CRON_TOKEN must be set in production")

        if self.AUDIT_MAX_BODY_SIZE < 0:
            raise RuntimeError("AUDIT_MAX_BODY_SIZE must be >= 0")
