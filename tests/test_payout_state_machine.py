import pytest

from app.payouts.state_machine import (
    INITIAL_PATH,
    InvalidTransition,
    assert_completed_invariant,
    assert_transition,
)


def test_valid_transitions():
    assert_transition("REQUESTED", "ELIGIBLE")
    assert_transition("ELIGIBLE", "RESERVED")
    assert_transition("RESERVED", "SUBMITTED")
    assert_transition("SUBMITTED", "COMPLETED")
    assert_transition("SUBMITTED", "RETRY_SCHEDULED")
    assert_transition("RETRY_SCHEDULED", "SUBMITTED")
    assert_transition("RETRY_SCHEDULED", "COMPLETED")


def test_failure_branches():
    assert_transition("REQUESTED", "FAILED")
    assert_transition("RESERVED", "FAILED")
    assert_transition("SUBMITTED", "FAILED")
    assert_transition("RETRY_SCHEDULED", "FAILED")


def test_invalid_transition_skipping_states():
    with pytest.raises(InvalidTransition):
        assert_transition("REQUESTED", "SUBMITTED")
    with pytest.raises(InvalidTransition):
        assert_transition("RESERVED", "COMPLETED")


def test_terminal_states_cannot_transition():
    with pytest.raises(InvalidTransition):
        assert_transition("COMPLETED", "FAILED")
    with pytest.raises(InvalidTransition):
        assert_transition("FAILED", "COMPLETED")
    with pytest.raises(InvalidTransition):
        assert_transition("FAILED", "RETRY_SCHEDULED")


def test_initial_path_ends_reserved():
    assert INITIAL_PATH == ("REQUESTED", "ELIGIBLE", "RESERVED")


def test_completed_requires_provider_ref():
    with pytest.raises(ValueError):
        assert_completed_invariant("COMPLETED", None)
    assert_completed_invariant("COMPLETED", "tr_123")
    assert_completed_invariant("FAILED", None)
