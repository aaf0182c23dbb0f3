from __future__ import annotations

import logging
import threading
import time
from datetime import datetime, timedelta
from typing import Callable, Optional
from uuid import UUID

from app.payouts.errors import PayoutNotFoundError, PayoutNotRetryableError, ProviderTransientError
from app.payouts.executor import PayoutExecutor
from app.payouts.model import RETRY_SCHEDULED, Payout, utcnow
from app.payouts.repository import PayoutRepository
from app.providers.transfer_client import TransferClient

logger = logging.getLogger("payouts.retry")


class RetryScheduler:
    """
    Delayed-task queue over RETRY_SCHEDULED rows.

    A payout that already has a provider reference is queried before it is
    sent again; a transfer that settled on the provider side in the
    meantime is finalized instead of resubmitted.
    """

    def __init__(
        self,
        repo: PayoutRepository,
        executor: PayoutExecutor,
        client: TransferClient,
        *,
        clock: Callable[[], datetime] = utcnow,
        batch_size: int = 50,
        claim_lease_seconds: float = 300,
    ):
        self.repo = repo
        self.executor = executor
        self.client = client
        self.clock = clock
        self.batch_size = int(batch_size)
        self.claim_lease = timedelta(seconds=claim_lease_seconds)

    def schedule_retry(self, payout_id: UUID, attempt_number: int) -> datetime:
        return self.executor.schedule_retry(payout_id, attempt_number)

    def process_due(self) -> list[Payout]:
        now = self.clock()
        with self.repo.atomic() as tx:
            due = self.repo.claim_due_retries(
                tx,
                now=now,
                limit=self.batch_size,
                lease_until=now + self.claim_lease,
            )

        if due:
            logger.info("retry batch size=%s", len(due))
        processed: list[Payout] = []
        for payout in due:
            try:
                processed.append(self.retry_payout(payout))
            except Exception:
                logger.exception("retry failed payout=%s", payout.id)
        return processed

    def retry_payout(self, payout: Payout) -> Payout:
        if payout.provider_ref:
            try:
                state = self.client.query_status(payout.provider_ref)
            except ProviderTransientError as exc:
                logger.warning(
                    "status query failed payout=%s provider_ref=%s code=%s",
                    payout.id,
                    payout.provider_ref,
                    exc.provider_code,
                )
                self.executor.defer(payout.id, payout.retry_count, reason="status_query_failed")
                return self._reload(payout.id)

            if state.status == "SUCCEEDED":
                logger.info("transfer already settled payout=%s provider_ref=%s", payout.id, payout.provider_ref)
                return self.executor.complete(payout.id, payout.provider_ref, reason="provider_reported_success")
            if state.status == "FAILED":
                return self.executor.fail(
                    payout.id,
                    state.failure_reason,
                    reason="provider_reported_failure",
                )
            if state.status == "PENDING":
                return self.executor.mark_awaiting(payout.id, payout.provider_ref)
            logger.warning("provider has no transfer payout=%s provider_ref=%s; resubmitting", payout.id, payout.provider_ref)

        return self.executor.submit(payout.id)

    def retry_now(self, payout_id: UUID) -> Payout:
        """Manual retry: only RETRY_SCHEDULED payouts, without waiting for next_retry_at."""
        payout = self._reload(payout_id)
        if payout.status != RETRY_SCHEDULED:
            raise PayoutNotRetryableError(payout_id, payout.status)
        logger.info("manual retry payout=%s retry_count=%s", payout_id, payout.retry_count)
        return self.retry_payout(payout)

    def run_forever(self, poll_seconds: float, stop: Optional[threading.Event] = None) -> None:
        logger.info("retry scheduler starting; poll=%ss batch=%s", poll_seconds, self.batch_size)
        while stop is None or not stop.is_set():
            try:
                self.process_due()
            except Exception:
                logger.exception("retry scheduler pass failed")
            if stop is not None:
                stop.wait(poll_seconds)
            else:
                time.sleep(poll_seconds)

    def _reload(self, payout_id: UUID) -> Payout:
        with self.repo.atomic() as tx:
            payout = self.repo.get_payout(tx, payout_id)
        if payout is None:
            raise PayoutNotFoundError(payout_id)
        return payout
