from __future__ import annotations

from app.payouts.model import (
    COMPLETED,
    ELIGIBLE,
    FAILED,
    RESERVED,
    REQUESTED,
    RETRY_SCHEDULED,
    SUBMITTED,
)


class InvalidTransition(Exception):
    pass


ALLOWED = {
    REQUESTED: {ELIGIBLE, FAILED},
    ELIGIBLE: {RESERVED, FAILED},
    RESERVED: {SUBMITTED, RETRY_SCHEDULED, FAILED},
    # SUBMITTED->SUBMITTED is a resubmission with the same idempotency key
    SUBMITTED: {COMPLETED, RETRY_SCHEDULED, FAILED, SUBMITTED},
    # RETRY_SCHEDULED->RETRY_SCHEDULED pushes next_retry_at when the status query fails
    RETRY_SCHEDULED: {SUBMITTED, COMPLETED, FAILED, RETRY_SCHEDULED},
    COMPLETED: set(),
    FAILED: set(),
}

# Rows are created directly in RESERVED; history records the implied steps.
INITIAL_PATH = (REQUESTED, ELIGIBLE, RESERVED)


def assert_transition(old: str, new: str) -> None:
    if new not in ALLOWED.get(old, set()):
        raise InvalidTransition(f"Illegal payout transition: {old} -> {new}")


def assert_completed_invariant(new_status: str, provider_ref: str | None) -> None:
    """
    Invariant: a COMPLETED payout MUST carry the provider transfer reference.
    """
    if new_status == COMPLETED and not provider_ref:
        raise ValueError("Invariant violation: status=COMPLETED requires provider_ref")
