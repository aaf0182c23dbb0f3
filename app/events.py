from __future__ import annotations

import logging
from collections import defaultdict
from concurrent.futures import Executor
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Callable, Optional
from uuid import UUID

logger = logging.getLogger("payouts.events")


@dataclass(frozen=True)
class PayoutCompleted:
    payout_id: UUID
    creator_id: str
    amount_cents: int
    currency: str
    provider_ref: str
    statement_ids: tuple[str, ...]
    occurred_at: datetime


@dataclass(frozen=True)
class PayoutFailed:
    payout_id: UUID
    creator_id: str
    amount_cents: int
    currency: str
    failure_reason: str
    failure_message: str
    occurred_at: datetime


@dataclass(frozen=True)
class PayoutRetryScheduled:
    payout_id: UUID
    creator_id: str
    retry_count: int
    next_retry_at: datetime
    provider_code: Optional[str]
    occurred_at: datetime


Handler = Callable[[object], None]


class EventBus:
    """
    Fan-out of domain events to subscribers.

    Published only after the state change has committed. With an executor,
    handlers run off the caller's thread and the engine never waits on them;
    without one they run inline (tests, scripts). Handler failures are
    logged and never reach the publisher.
    """

    def __init__(self, executor: Optional[Executor] = None):
        self._executor = executor
        self._handlers: dict[type, list[Handler]] = defaultdict(list)

    def subscribe(self, event_type: type, handler: Handler) -> None:
        self._handlers[event_type].append(handler)

    def publish(self, event) -> None:
        for handler in list(self._handlers.get(type(event), ())):
            if self._executor is not None:
                self._executor.submit(self._deliver, handler, event)
            else:
                self._deliver(handler, event)

    @staticmethod
    def _deliver(handler: Handler, event) -> None:
        try:
            handler(event)
        except Exception:
            logger.exception("event handler failed event=%s handler=%r", type(event).__name__, handler)


def log_payout_event(event) -> None:
    """Audit subscriber."""
    fields = asdict(event)
    logger.info(
        "audit event=%s payout_id=%s creator_id=%s details=%s",
        type(event).__name__,
        fields.pop("payout_id"),
        fields.pop("creator_id"),
        fields,
    )


def register_audit_logger(bus: EventBus) -> None:
    for event_type in (PayoutCompleted, PayoutFailed, PayoutRetryScheduled):
        bus.subscribe(event_type, log_payout_event)
