from __future__ import annotations

import argparse
import json
import logging
import sys
from typing import Optional

from dotenv import load_dotenv

import audit
import db as db_
from app.utils.logging import setup_logging
from config import Config
from schema import ensure_schema

log = logging.getLogger("cli")


def _open_session(cfg: Config):
    engine = db_.init_engine(cfg.DATABASE_URL)

    from models import Base  # ensure models are registered

    Base.metadata.create_all(bind=engine)
    ensure_schema(engine)
    return db_.SessionLocal()


def _consolidate(session, cfg: Config, args) -> dict:
    from actions.consolidation import recompute_consolidation

    result = recompute_consolidation(session, cfg, atomic=True if args.atomic else None)
    return result.as_dict()


def _backfill_activity(session, cfg: Config, args) -> dict:
    from actions.activity_backfill import backfill_activity_logs

    inserted = backfill_activity_logs(session)
    return {"inserted": inserted, "total": sum(inserted.values())}


COMMANDS = {
    "consolidate": ("CONSOLIDATION_REFRESH", _consolidate),
    "backfill-activity": ("ACTIVITY_BACKFILL", _backfill_activity),
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Batch jobs for interview consolidation and student activity logs.")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("consolidate", help="Recompute interview_consolidation from interviews.")
    p.add_argument("--atomic", action="store_true", help="Run the whole recompute in one transaction.")

    sub.add_parser("backfill-activity", help="Derive missing student_activity_logs entries.")
    return parser


def main(argv: Optional[list[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    load_dotenv()
    cfg = Config()
    setup_logging(cfg.LOG_LEVEL)

    job_name, job = COMMANDS[args.command]
    session = None
    try:
        session = _open_session(cfg)
        out = job(session, cfg, args)
    except Exception as e:
        log.exception("%s failed", args.command)
        if cfg.AUDIT_ENABLED and session is not None:
            audit.log_job(job_name, success=False, error=e)
        return 1
    finally:
        if session is not None:
            session.close()

    if cfg.AUDIT_ENABLED:
        audit.log_job(job_name, success=True, metadata={"result": out, "by": "cli"})
    print(json.dumps(out, sort_keys=True))
    if out.get("failed"):
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
