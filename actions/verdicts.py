from __future__ import annotations

from typing import Any, Iterable, Optional

SELECTED = "selected"
REJECTED = "rejected"
WAITLISTED = "waitlisted"

STATUSES = (SELECTED, REJECTED, WAITLISTED)

_WAITLIST_MARKERS = ("hold", "maybe", "wait")


def _normalize(verdicts: Iterable[Any] | None) -> list[str]:
    out: list[str] = []
    for v in verdicts or []:
        if v is None:
            continue
        s = str(v)
        if not s.strip():
            continue
        out.append(s.lower())
    return out


def _classify_one(verdict: str) -> Optional[str]:
    if SELECTED in verdict:
        return SELECTED
    if "reject" in verdict:
        return REJECTED
    if any(m in verdict for m in _WAITLIST_MARKERS):
        return WAITLISTED
    return None


def classify_verdicts(verdicts: Iterable[Any] | None) -> Optional[str]:
    """
    Collapse an interview-ordered list of free-text verdicts into one status.

    The latest recognizable verdict wins. If the latest one is free text that
    matches nothing, fall back to scanning every verdict with fixed precedence
    selected > rejected > waitlisted. Returns None when nothing matches.
    """

    norm = _normalize(verdicts)
    if not norm:
        return None

    by_last = _classify_one(norm[-1])
    if by_last:
        return by_last

    if any(SELECTED in v for v in norm):
        return SELECTED
    if any("reject" in v for v in norm):
        return REJECTED
    if any(m in v for v in norm for m in _WAITLIST_MARKERS):
        return WAITLISTED
    return None
