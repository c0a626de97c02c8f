from __future__ import annotations

from typing import Any, Callable

from actions.activity_backfill import activity_logs_backfill
from actions.activity_log import student_activity_list
from actions.consolidation import consolidation_get, consolidation_list, consolidation_refresh
from actions.interviews import interview_cancel, interview_complete, interview_start, interview_verdict_update
from audit import audit_logs_query, audit_stats
from utils import ApiError

ActionFn = Callable[[dict, Any, Any, Any], Any]

ACTIONS: dict[str, ActionFn] = {
    "CONSOLIDATION_REFRESH": consolidation_refresh,
    "CONSOLIDATION_LIST": consolidation_list,
    "CONSOLIDATION_GET": consolidation_get,
    "ACTIVITY_BACKFILL": activity_logs_backfill,
    "STUDENT_ACTIVITY_LIST": student_activity_list,
    "INTERVIEW_START": interview_start,
    "INTERVIEW_COMPLETE": interview_complete,
    "INTERVIEW_CANCEL": interview_cancel,
    "INTERVIEW_VERDICT_UPDATE": interview_verdict_update,
    "AUDIT_LOGS_QUERY": audit_logs_query,
    "AUDIT_STATS": audit_stats,
}


def dispatch(action: str, data: dict, auth, db, cfg):
    fn = ACTIONS.get(str(action or "").upper().strip())
    if fn is None:
        raise ApiError("BAD_REQUEST", f"Unknown action: {action}")
    return fn(data or {}, auth, db, cfg)
