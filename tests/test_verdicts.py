from __future__ import annotations

import pytest

from actions.verdicts import classify_verdicts


def test_empty_and_blank_sequences_have_no_status():
    assert classify_verdicts([]) is None
    assert classify_verdicts(None) is None
    assert classify_verdicts([None, ""]) is None
    assert classify_verdicts(["   "]) is None


@pytest.mark.parametrize(
    "verdicts, expected",
    [
        (["Selected"], "selected"),
        (["Rejected", "Selected"], "selected"),
        (["Selected", "Rejected"], "rejected"),
        (["Maybe", "Reject"], "rejected"),
        (["On Hold"], "waitlisted"),
        (["WAITLIST"], "waitlisted"),
        (["Selected", "On hold"], "waitlisted"),
    ],
)
def test_latest_recognizable_verdict_wins(verdicts, expected):
    assert classify_verdicts(verdicts) == expected


def test_unrecognized_latest_falls_back_to_whole_sequence():
    assert classify_verdicts(["Selected", "Hmm not sure"]) == "selected"
    assert classify_verdicts(["Rejected", "good energy"]) == "rejected"
    assert classify_verdicts(["maybe later", "no comment"]) == "waitlisted"


def test_fallback_precedence_is_selected_then_rejected_then_waitlisted():
    assert classify_verdicts(["hold", "rejected", "selected", "??"]) == "selected"
    assert classify_verdicts(["hold", "rejected", "??"]) == "rejected"


def test_nothing_recognizable_is_none():
    assert classify_verdicts(["strong candidate", "ok"]) is None


def test_substring_and_case_insensitive_matching():
    assert classify_verdicts(["Not Selected"]) == "selected"
    assert classify_verdicts(["REJECTED after round 2"]) == "rejected"
    assert classify_verdicts(["Put on HOLD"]) == "waitlisted"


def test_non_string_entries_do_not_raise():
    assert classify_verdicts([123, None, "selected"]) == "selected"
    assert classify_verdicts([3.5]) is None
