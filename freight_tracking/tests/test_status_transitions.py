"""
Trip stage state machine tests (pure, no database).
"""

import itertools

import pytest

from freight_tracking.app.domain.trip_progress.status_machine import (
    STAGE_ORDER, TransitionReason, can_advance, next_status, normalize_status,
    stage_index, status_label, validate_transition
)


@pytest.mark.parametrize("current,requested", list(itertools.product(STAGE_ORDER, STAGE_ORDER)))
def test_transition_matrix(current, requested):
    """Allowed iff same stage (no-op) or exactly one stage ahead."""
    check = validate_transition(current, requested)
    cur, req = STAGE_ORDER.index(current), STAGE_ORDER.index(requested)

    assert check.allowed == (req == cur or req == cur + 1)
    if req == cur:
        assert check.idempotent
    elif req == cur + 1:
        assert check.reason == TransitionReason.ADVANCE
    elif req < cur:
        assert check.reason == TransitionReason.REGRESSION
    else:
        assert check.reason == TransitionReason.SKIP
        assert check.expected_status == STAGE_ORDER[cur + 1]


def test_regression_message_names_both_labels():
    check = validate_transition("IN_TRANSIT", "LOADING")

    assert not check.allowed
    assert check.reason == TransitionReason.REGRESSION
    assert '"In transit"' in check.message
    assert '"Heading to pickup"' in check.message
    assert "Regression is not allowed" in check.message


def test_skip_message_names_expected_stage():
    check = validate_transition("ACCEPTED", "IN_TRANSIT")

    assert not check.allowed
    assert check.expected_status == "LOADING"
    assert '"Heading to pickup"' in check.message
    assert check.message == validate_transition("ACCEPTED", "IN_TRANSIT").message


def test_unrecognized_target_rejected():
    check = validate_transition("LOADED", "TELEPORTED")

    assert not check.allowed
    assert check.reason == TransitionReason.UNRECOGNIZED
    assert "TELEPORTED" in check.message


def test_unknown_current_permits_any_target():
    assert validate_transition("LEGACY_STATE", "DELIVERED").allowed
    assert validate_transition("", "COMPLETED").reason == TransitionReason.UNKNOWN_CURRENT


def test_statuses_are_normalized():
    assert normalize_status("  in_transit ") == "IN_TRANSIT"
    assert validate_transition("loaded", " In_Transit").reason == TransitionReason.ADVANCE
    assert stage_index("completed") == len(STAGE_ORDER) - 1
    assert stage_index("nope") == -1


def test_next_status_and_can_advance():
    assert next_status("NEW") == "ACCEPTED"
    assert next_status("DELIVERED") == "COMPLETED"
    assert next_status("COMPLETED") is None
    assert next_status("UNKNOWN") is None
    assert can_advance("LOADED")
    assert not can_advance("COMPLETED")


def test_status_label_falls_back_to_code():
    assert status_label("delivered_pending_confirmation") == "Delivery reported"
    assert status_label("SOMETHING_ELSE") == "SOMETHING_ELSE"
