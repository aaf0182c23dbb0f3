from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Optional
from uuid import UUID

from app.payouts.errors import ProviderTransientError, ReconciliationMismatchError
from app.payouts.executor import PayoutExecutor
from app.payouts.model import RESERVED, RETRY_SCHEDULED, SUBMITTED, Payout, utcnow
from app.payouts.repository import PayoutRepository
from app.providers.transfer_client import TransferClient
from services import metrics

logger = logging.getLogger("payouts.reconcile")

SWEPT_STATUSES = (SUBMITTED, RETRY_SCHEDULED, RESERVED)


@dataclass(frozen=True)
class CorrectedPayout:
    payout_id: UUID
    creator_id: str
    from_status: str
    to_status: str
    action: str
    provider_ref: Optional[str] = None


class ReconciliationSweeper:
    """
    Periodic safety net for payouts stuck between local commit and provider
    confirmation.

    With a provider reference the provider's answer decides the terminal
    state. Without one the payout is sent again under its original
    idempotency key: a transfer the provider already created comes back
    as-is instead of being created twice.
    """

    def __init__(
        self,
        repo: PayoutRepository,
        executor: PayoutExecutor,
        client: TransferClient,
        *,
        clock: Callable[[], datetime] = utcnow,
        batch_size: int = 100,
    ):
        self.repo = repo
        self.executor = executor
        self.client = client
        self.clock = clock
        self.batch_size = int(batch_size)
        self.last_mismatches: list[ReconciliationMismatchError] = []

    def sweep(self, staleness_threshold: timedelta) -> list[CorrectedPayout]:
        now = self.clock()
        with self.repo.atomic() as tx:
            stale = self.repo.claim_stale(
                tx,
                statuses=SWEPT_STATUSES,
                older_than=now - staleness_threshold,
                limit=self.batch_size,
                now=now,
            )

        corrected: list[CorrectedPayout] = []
        mismatches: list[ReconciliationMismatchError] = []
        for payout in stale:
            try:
                item = self._reconcile(payout, now)
            except ReconciliationMismatchError as exc:
                logger.error("reconcile mismatch payout=%s provider_ref=%s: %s", exc.payout_id, exc.provider_ref, exc.detail)
                metrics.increment_reconcile_correction("mismatch")
                mismatches.append(exc)
                continue
            except Exception:
                logger.exception("reconcile failed payout=%s", payout.id)
                continue
            if item is not None:
                metrics.increment_reconcile_correction(item.action)
                corrected.append(item)

        self.last_mismatches = mismatches
        logger.info(
            "reconcile sweep checked=%s corrected=%s mismatches=%s",
            len(stale),
            len(corrected),
            len(mismatches),
        )
        return corrected

    def _reconcile(self, payout: Payout, now: datetime) -> Optional[CorrectedPayout]:
        if payout.provider_ref:
            return self._apply_provider_state(payout)

        if payout.status == RETRY_SCHEDULED and payout.next_retry_at and payout.next_retry_at > now:
            return None

        result = self.executor.submit(payout.id)
        if result is None:
            return None
        return self._corrected(payout, result, "resubmitted")

    def _apply_provider_state(self, payout: Payout) -> Optional[CorrectedPayout]:
        try:
            state = self.client.query_status(payout.provider_ref)
        except ProviderTransientError as exc:
            logger.warning("status query failed payout=%s code=%s; will retry next sweep", payout.id, exc.provider_code)
            return None

        if state.status == "SUCCEEDED":
            result = self.executor.complete(payout.id, payout.provider_ref, reason="reconciled")
            return self._corrected(payout, result)
        if state.status == "FAILED":
            result = self.executor.fail(payout.id, state.failure_reason, reason="reconciled")
            return self._corrected(payout, result)
        if state.status == "PENDING":
            if payout.status != SUBMITTED:
                self.executor.mark_awaiting(payout.id, payout.provider_ref)
            return None
        raise ReconciliationMismatchError(payout.id, payout.provider_ref, "provider has no transfer with this reference")

    @staticmethod
    def _corrected(before: Payout, after: Payout, default_action: str = "unchanged") -> CorrectedPayout:
        action = after.status.lower() if after.is_terminal else default_action
        return CorrectedPayout(
            payout_id=before.id,
            creator_id=before.creator_id,
            from_status=before.status,
            to_status=after.status,
            action=action,
            provider_ref=after.provider_ref,
        )

    def run_forever(
        self,
        interval_seconds: float,
        staleness_threshold: timedelta,
        stop: Optional[threading.Event] = None,
    ) -> None:
        logger.info(
            "reconcile sweeper starting; interval=%ss staleness=%ss",
            interval_seconds,
            int(staleness_threshold.total_seconds()),
        )
        while stop is None or not stop.is_set():
            try:
                self.sweep(staleness_threshold)
            except Exception:
                logger.exception("reconcile sweep failed")
            if stop is not None:
                stop.wait(interval_seconds)
            else:
                time.sleep(interval_seconds)
