from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Callable, Optional
from uuid import UUID

from app.events import EventBus, PayoutCompleted, PayoutFailed, PayoutRetryScheduled
from app.payouts import errors as payout_errors
from app.payouts.collaborators import AccountDirectory, StatementSource
from app.payouts.errors import (
    PayoutNotFoundError,
    ProviderPermanentError,
    ProviderTransientError,
    ReconciliationMismatchError,
)
from app.payouts.model import (
    COMPLETED,
    FAILED,
    OUTCOME_PENDING,
    OUTCOME_PERMANENT,
    OUTCOME_SUCCESS,
    OUTCOME_TRANSIENT,
    RESERVED,
    RETRY_SCHEDULED,
    SUBMITTED,
    Payout,
    TransferAttempt,
    utcnow,
)
from app.payouts.repository import PayoutRepository
from app.payouts.retry_policy import RetryPolicy
from app.payouts.state_machine import assert_completed_invariant, assert_transition
from app.providers.transfer_client import TransferClient
from services import metrics
from services.redaction import mask_account_ref

logger = logging.getLogger("payouts.orchestrator")

SUBMITTABLE_STATUSES = (RESERVED, RETRY_SCHEDULED, SUBMITTED)


class PayoutExecutor:
    """
    Moves a reserved payout through submission to a terminal state.

    Each local state change is its own short transaction. The provider call
    sits between them, never inside one. Events are published only after
    the transaction that produced them has committed.
    """

    def __init__(
        self,
        repo: PayoutRepository,
        accounts: AccountDirectory,
        statements: StatementSource,
        client: TransferClient,
        policy: RetryPolicy,
        events: EventBus,
        *,
        clock: Callable[[], datetime] = utcnow,
        unmapped_max_attempts: int = 2,
    ):
        self.repo = repo
        self.accounts = accounts
        self.statements = statements
        self.client = client
        self.policy = policy
        self.events = events
        self.clock = clock
        self.unmapped_max_attempts = max(1, int(unmapped_max_attempts))

    # ------------------------------------------------------------------
    # submission
    # ------------------------------------------------------------------

    def submit(self, payout_id: UUID) -> Payout:
        """
        Send the transfer for a RESERVED / RETRY_SCHEDULED / stale SUBMITTED
        payout. Always uses the payout's own idempotency key, so sending it
        again can never create a second transfer.
        """
        now = self.clock()
        with self.repo.atomic() as tx:
            payout = self.repo.get_payout(tx, payout_id, for_update=True)
            if payout is None:
                raise PayoutNotFoundError(payout_id)
            if payout.status not in SUBMITTABLE_STATUSES:
                return payout

        if payout.status == RETRY_SCHEDULED and self.policy.exhausted(payout.retry_count):
            return self.fail(payout_id, payout_errors.RETRIES_EXHAUSTED, reason="retries_exhausted")

        account = self.accounts.get_account_status(payout.creator_id)
        account_ref = account.provider_account_ref if account else None
        if not account_ref:
            return self.fail(payout_id, payout_errors.MISSING_PROVIDER_ACCOUNT, reason="missing_provider_account")

        retry_count = payout.retry_count + 1 if payout.status == RETRY_SCHEDULED else payout.retry_count
        with self.repo.atomic() as tx:
            current = self.repo.get_payout(tx, payout_id, for_update=True)
            if current is None or current.status != payout.status:
                # someone else moved it since we looked
                return current
            assert_transition(current.status, SUBMITTED)
            moved = self.repo.update_status(
                tx,
                payout_id=payout_id,
                from_status=current.status,
                new_status=SUBMITTED,
                now=now,
                retry_count=retry_count,
                last_retry_at=now if current.status == RETRY_SCHEDULED else None,
                next_retry_at=None,
                reason="resubmitted" if current.status != RESERVED else "submitted",
            )
            if not moved:
                return self.repo.get_payout(tx, payout_id)

        attempt_number = len(payout.attempts) + 1
        logger.info(
            "submitting payout=%s creator=%s destination=%s amount=%s attempt=%s retry_count=%s",
            payout_id,
            payout.creator_id,
            mask_account_ref(account_ref),
            payout.amount_cents,
            attempt_number,
            retry_count,
        )
        try:
            result = self.client.submit(
                payout_id,
                account_ref,
                payout.amount_cents,
                payout.idempotency_key,
                currency=payout.currency,
            )
        except ProviderTransientError as exc:
            attempt = self._attempt(payout, attempt_number, exc.provider_code, OUTCOME_TRANSIENT, exc.http_status, exc.unmapped)
            return self._on_transient(payout, retry_count, exc, attempt)
        except ProviderPermanentError as exc:
            attempt = self._attempt(payout, attempt_number, exc.provider_code, OUTCOME_PERMANENT, exc.http_status)
            logger.warning(
                "permanent provider failure payout=%s code=%s reason=%s",
                payout_id,
                exc.provider_code,
                exc.reason,
            )
            return self.fail(
                payout_id,
                exc.reason,
                attempt=attempt,
                provider_ref=exc.provider_ref,
                reason="provider_permanent_failure",
            )

        if not result.settled:
            attempt = self._attempt(payout, attempt_number, result.status, OUTCOME_PENDING, result.http_status)
            logger.info(
                "transfer accepted but not settled payout=%s provider_ref=%s status=%s",
                payout_id,
                result.provider_ref,
                result.status,
            )
            return self.mark_awaiting(payout_id, result.provider_ref, attempt=attempt)

        attempt = self._attempt(payout, attempt_number, result.status or "ok", OUTCOME_SUCCESS, result.http_status)
        return self.complete(payout_id, result.provider_ref, attempt=attempt, reason="provider_accepted")

    def _on_transient(
        self,
        payout: Payout,
        retry_count: int,
        exc: ProviderTransientError,
        attempt: TransferAttempt,
    ) -> Payout:
        unmapped_seen = sum(1 for a in payout.attempts if a.unmapped) + (1 if exc.unmapped else 0)
        if exc.unmapped and unmapped_seen >= self.unmapped_max_attempts:
            logger.warning(
                "unmapped provider error cap reached payout=%s code=%s attempts=%s",
                payout.id,
                exc.provider_code,
                unmapped_seen,
            )
            return self.fail(payout.id, payout_errors.PROVIDER_ERROR, attempt=attempt, reason="unmapped_error_cap")
        if self.policy.exhausted(retry_count):
            logger.warning("retries exhausted payout=%s retry_count=%s", payout.id, retry_count)
            return self.fail(payout.id, payout_errors.RETRIES_EXHAUSTED, attempt=attempt, reason="retries_exhausted")

        self.schedule_retry(
            payout.id,
            retry_count,
            provider_code=exc.provider_code,
            provider_ref=exc.provider_ref,
            attempt=attempt,
        )
        with self.repo.atomic() as tx:
            return self.repo.get_payout(tx, payout.id)

    def _attempt(
        self,
        payout: Payout,
        attempt_number: int,
        response_code: Optional[str],
        outcome: str,
        http_status: Optional[int] = None,
        unmapped: bool = False,
    ) -> TransferAttempt:
        metrics.increment_payout_attempt(outcome)
        return TransferAttempt(
            payout_id=payout.id,
            attempt_number=attempt_number,
            idempotency_key=payout.idempotency_key,
            response_code=response_code,
            outcome=outcome,
            created_at=self.clock(),
            http_status=http_status,
            unmapped=unmapped,
        )

    # ------------------------------------------------------------------
    # transitions
    # ------------------------------------------------------------------

    def schedule_retry(
        self,
        payout_id: UUID,
        attempt_number: int,
        *,
        provider_code: Optional[str] = None,
        provider_ref: Optional[str] = None,
        attempt: Optional[TransferAttempt] = None,
    ) -> datetime:
        """attempt_number is the 0-based retry index; the first retry waits about the base delay."""
        now = self.clock()
        next_at = now + timedelta(seconds=self.policy.delay_for(attempt_number))
        with self.repo.atomic() as tx:
            payout = self.repo.get_payout(tx, payout_id, for_update=True)
            if payout is None:
                raise PayoutNotFoundError(payout_id)
            assert_transition(payout.status, RETRY_SCHEDULED)
            if attempt is not None:
                self.repo.add_attempt(tx, attempt)
            self.repo.update_status(
                tx,
                payout_id=payout_id,
                from_status=payout.status,
                new_status=RETRY_SCHEDULED,
                now=now,
                provider_ref=provider_ref,
                next_retry_at=next_at,
                reason=f"transient:{provider_code}" if provider_code else "transient",
            )
            event = PayoutRetryScheduled(
                payout_id=payout.id,
                creator_id=payout.creator_id,
                retry_count=payout.retry_count,
                next_retry_at=next_at,
                provider_code=provider_code,
                occurred_at=now,
            )

        logger.info(
            "retry scheduled payout=%s retry_count=%s next_retry_at=%s code=%s",
            payout_id,
            event.retry_count,
            next_at.isoformat(),
            provider_code,
        )
        self.events.publish(event)
        return next_at

    def complete(
        self,
        payout_id: UUID,
        provider_ref: str,
        *,
        attempt: Optional[TransferAttempt] = None,
        reason: Optional[str] = None,
    ) -> Payout:
        """
        Finalize: COMPLETED, provider ref recorded and every linked statement
        marked paid, all in one transaction.
        """
        assert_completed_invariant(COMPLETED, provider_ref)
        now = self.clock()
        with self.repo.atomic() as tx:
            payout = self.repo.get_payout(tx, payout_id, for_update=True)
            if payout is None:
                raise PayoutNotFoundError(payout_id)
            if payout.status == COMPLETED:
                return payout
            if payout.status == FAILED:
                logger.error(
                    "provider reports success for FAILED payout=%s provider_ref=%s",
                    payout_id,
                    provider_ref,
                )
                raise ReconciliationMismatchError(
                    payout_id, provider_ref, "provider reports success for a failed payout"
                )
            assert_transition(payout.status, COMPLETED)
            if attempt is not None:
                self.repo.add_attempt(tx, attempt)
            self.repo.update_status(
                tx,
                payout_id=payout_id,
                from_status=payout.status,
                new_status=COMPLETED,
                now=now,
                provider_ref=provider_ref,
                next_retry_at=None,
                completed_at=now,
                reason=reason,
            )
            marked = self.statements.mark_statements_paid(tx, payout.statement_ids, payout_id, now)
            if marked != len(payout.statement_ids):
                # rolls back the whole finalization; the payout stays in flight for manual review
                logger.error(
                    "statement mismatch payout=%s expected=%s marked=%s",
                    payout_id,
                    len(payout.statement_ids),
                    marked,
                )
                raise ReconciliationMismatchError(
                    payout_id,
                    provider_ref,
                    f"expected {len(payout.statement_ids)} statements to mark paid, marked {marked}",
                )
            completed = self.repo.get_payout(tx, payout_id)

        logger.info(
            "payout completed payout=%s creator=%s amount=%s provider_ref=%s",
            payout_id,
            completed.creator_id,
            completed.amount_cents,
            provider_ref,
        )
        metrics.increment_payout_terminal(COMPLETED)
        self.events.publish(
            PayoutCompleted(
                payout_id=completed.id,
                creator_id=completed.creator_id,
                amount_cents=completed.amount_cents,
                currency=completed.currency,
                provider_ref=provider_ref,
                statement_ids=completed.statement_ids,
                occurred_at=now,
            )
        )
        return completed

    def fail(
        self,
        payout_id: UUID,
        failure_reason: str,
        *,
        attempt: Optional[TransferAttempt] = None,
        provider_ref: Optional[str] = None,
        reason: Optional[str] = None,
    ) -> Payout:
        """
        Terminal failure. Leaving the non-terminal set is what releases the
        reservation, so funds are restored in the same commit as the status
        change and before anyone is notified.
        """
        now = self.clock()
        message = payout_errors.failure_message(failure_reason)
        with self.repo.atomic() as tx:
            payout = self.repo.get_payout(tx, payout_id, for_update=True)
            if payout is None:
                raise PayoutNotFoundError(payout_id)
            if payout.is_terminal:
                return payout
            assert_transition(payout.status, FAILED)
            if attempt is not None:
                self.repo.add_attempt(tx, attempt)
            self.repo.update_status(
                tx,
                payout_id=payout_id,
                from_status=payout.status,
                new_status=FAILED,
                now=now,
                provider_ref=provider_ref,
                next_retry_at=None,
                failure_reason=failure_reason,
                failure_message=message,
                reason=reason or failure_reason,
            )
            failed = self.repo.get_payout(tx, payout_id)

        logger.warning(
            "payout failed payout=%s creator=%s reason=%s",
            payout_id,
            failed.creator_id,
            failure_reason,
        )
        metrics.increment_payout_terminal(FAILED)
        self.events.publish(
            PayoutFailed(
                payout_id=failed.id,
                creator_id=failed.creator_id,
                amount_cents=failed.amount_cents,
                currency=failed.currency,
                failure_reason=failure_reason,
                failure_message=message,
                occurred_at=now,
            )
        )
        return failed

    def mark_awaiting(
        self,
        payout_id: UUID,
        provider_ref: str,
        *,
        attempt: Optional[TransferAttempt] = None,
    ) -> Payout:
        """
        Provider has the transfer but hasn't settled it. The payout stays
        SUBMITTED with the provider ref on record so the sweeper can poll it.
        """
        now = self.clock()
        with self.repo.atomic() as tx:
            payout = self.repo.get_payout(tx, payout_id, for_update=True)
            if payout is None:
                raise PayoutNotFoundError(payout_id)
            if payout.is_terminal:
                return payout
            if attempt is not None:
                self.repo.add_attempt(tx, attempt)
            if payout.status == SUBMITTED and payout.provider_ref == provider_ref:
                return self.repo.get_payout(tx, payout_id)
            assert_transition(payout.status, SUBMITTED)
            self.repo.update_status(
                tx,
                payout_id=payout_id,
                from_status=payout.status,
                new_status=SUBMITTED,
                now=now,
                provider_ref=provider_ref,
                next_retry_at=None,
                reason="provider_pending",
            )
            return self.repo.get_payout(tx, payout_id)

    def defer(self, payout_id: UUID, attempt_number: int, *, reason: str) -> Optional[datetime]:
        """Push a RETRY_SCHEDULED payout's next attempt out without spending a retry."""
        now = self.clock()
        next_at = now + timedelta(seconds=self.policy.delay_for(attempt_number))
        with self.repo.atomic() as tx:
            payout = self.repo.get_payout(tx, payout_id, for_update=True)
            if payout is None or payout.status != RETRY_SCHEDULED:
                return None
            self.repo.update_status(
                tx,
                payout_id=payout_id,
                from_status=RETRY_SCHEDULED,
                new_status=RETRY_SCHEDULED,
                now=now,
                next_retry_at=next_at,
                reason=reason,
            )
        return next_at
