from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional
from uuid import UUID


# Payout states
REQUESTED = "REQUESTED"
ELIGIBLE = "ELIGIBLE"
RESERVED = "RESERVED"
SUBMITTED = "SUBMITTED"
RETRY_SCHEDULED = "RETRY_SCHEDULED"
COMPLETED = "COMPLETED"
FAILED = "FAILED"

TERMINAL_STATUSES = (COMPLETED, FAILED)
NON_TERMINAL_STATUSES = (REQUESTED, ELIGIBLE, RESERVED, SUBMITTED, RETRY_SCHEDULED)

# Transfer attempt outcomes
OUTCOME_SUCCESS = "success"
OUTCOME_PENDING = "pending"
OUTCOME_TRANSIENT = "transient_failure"
OUTCOME_PERMANENT = "permanent_failure"

# Account standing
STANDING_GOOD = "good"
STANDING_LOCKED = "locked"
STANDING_SUSPENDED = "suspended"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class AccountStatus:
    creator_id: str
    provider_account_ref: Optional[str]
    onboarded: bool
    capable: bool
    standing: str
    verified: bool


@dataclass(frozen=True)
class RoyaltyStatement:
    id: str
    creator_id: str
    net_payable_cents: int
    paid: bool = False
    disputed: bool = False
    finalized: bool = True
    payout_id: Optional[UUID] = None
    paid_at: Optional[datetime] = None


@dataclass(frozen=True)
class TransferAttempt:
    payout_id: UUID
    attempt_number: int
    idempotency_key: str
    response_code: Optional[str]
    outcome: str
    created_at: datetime
    http_status: Optional[int] = None
    unmapped: bool = False


@dataclass(frozen=True)
class StateTransition:
    payout_id: UUID
    from_status: Optional[str]
    to_status: str
    reason: Optional[str]
    created_at: datetime


@dataclass(frozen=True)
class Payout:
    id: UUID
    creator_id: str
    amount_cents: int
    idempotency_key: str
    status: str
    statement_ids: tuple[str, ...]
    created_at: datetime
    updated_at: datetime
    currency: str = "usd"
    requested_by: Optional[str] = None
    provider_ref: Optional[str] = None
    retry_count: int = 0
    last_retry_at: Optional[datetime] = None
    next_retry_at: Optional[datetime] = None
    failure_reason: Optional[str] = None
    failure_message: Optional[str] = None
    completed_at: Optional[datetime] = None
    attempts: tuple[TransferAttempt, ...] = field(default=(), compare=False)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def as_dict(self) -> dict:
        return {
            "id": str(self.id),
            "creator_id": self.creator_id,
            "amount_cents": self.amount_cents,
            "currency": self.currency,
            "status": self.status,
            "idempotency_key": self.idempotency_key,
            "statement_ids": list(self.statement_ids),
            "requested_by": self.requested_by,
            "provider_ref": self.provider_ref,
            "retry_count": self.retry_count,
            "last_retry_at": self.last_retry_at,
            "next_retry_at": self.next_retry_at,
            "failure_reason": self.failure_reason,
            "failure_message": self.failure_message,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "completed_at": self.completed_at,
        }


@dataclass(frozen=True)
class Balance:
    creator_id: str
    total_cents: int
    available_cents: int
    pending_cents: int
    reserved_cents: int
    reserve_hold_cents: int = 0
    minimum_threshold_cents: int = 0

    @property
    def meets_minimum(self) -> bool:
        return self.available_cents >= self.minimum_threshold_cents
