"""
Payout Orchestrator.

RequestPayout runs validation outside any transaction, then re-validates
and reserves inside one short transaction serialized per creator. The
provider call is handed to the submission pool after commit; transient
provider errors never reach the caller, who polls the returned payout.
"""
from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Callable, Iterable, Optional
from uuid import UUID, uuid4

from app.payouts.balance import BalanceCalculator
from app.payouts.collaborators import StatementSource
from app.payouts.eligibility import EligibilityChecker, EligibilityResult
from app.payouts.errors import (
    DuplicatePayoutError,
    IneligibleAccountError,
    PayoutError,
    PayoutNotFoundError,
    StatementNotPayableError,
)
from app.payouts.executor import PayoutExecutor
from app.payouts.idempotency import generation_key, payout_idempotency_key
from app.payouts.model import COMPLETED, FAILED, RESERVED, Balance, Payout, RoyaltyStatement, utcnow
from app.payouts.repository import PayoutRepository
from services import metrics

logger = logging.getLogger("payouts.orchestrator")


class PayoutOrchestrator:
    def __init__(
        self,
        repo: PayoutRepository,
        statements: StatementSource,
        eligibility: EligibilityChecker,
        balance: BalanceCalculator,
        executor: PayoutExecutor,
        dispatcher,
        *,
        clock: Callable[[], datetime] = utcnow,
        currency: str = "usd",
        bucket_seconds: int = 300,
        dedupe_window_seconds: int = 300,
    ):
        self.repo = repo
        self.statements = statements
        self.eligibility = eligibility
        self.balance = balance
        self.executor = executor
        self.dispatcher = dispatcher
        self.clock = clock
        self.currency = currency
        self.bucket_seconds = int(bucket_seconds)
        self.dedupe_window = timedelta(seconds=int(dedupe_window_seconds))

    # ------------------------------------------------------------------

    def request_payout(
        self,
        creator_id: str,
        statement_ids: Optional[Iterable[str]] = None,
        requested_by: Optional[str] = None,
    ) -> Payout:
        try:
            payout, replayed = self._request(creator_id, statement_ids, requested_by)
        except PayoutError as exc:
            metrics.increment_payout_request(exc.code.lower())
            logger.info("payout request rejected creator=%s code=%s", creator_id, exc.code)
            raise

        if replayed:
            metrics.increment_payout_request("replayed")
            logger.info("idempotent replay creator=%s payout=%s status=%s", creator_id, payout.id, payout.status)
            return payout

        metrics.increment_payout_request("reserved")
        logger.info(
            "payout reserved creator=%s payout=%s amount=%s statements=%s",
            creator_id,
            payout.id,
            payout.amount_cents,
            len(payout.statement_ids),
        )
        self.dispatcher.submit(self.executor.submit, payout.id)
        return self.get_payout_status(payout.id)

    def _request(
        self,
        creator_id: str,
        statement_ids: Optional[Iterable[str]],
        requested_by: Optional[str],
    ) -> tuple[Payout, bool]:
        now = self.clock()
        selected = self._select_statements(creator_id, statement_ids)
        ids = tuple(sorted(s.id for s in selected))
        amount = sum(int(s.net_payable_cents) for s in selected)
        base_key = payout_idempotency_key(
            creator_id=creator_id,
            statement_ids=ids,
            amount_cents=amount,
            now=now,
            bucket_seconds=self.bucket_seconds,
        )

        with self.repo.atomic() as tx:
            existing, _ = self._resolve_key(tx, creator_id, base_key)
        if existing is not None:
            return existing, True

        paid = [s.id for s in selected if s.paid]
        if paid:
            raise StatementNotPayableError(paid, "Statements already paid")

        result = self.eligibility.check_eligibility(creator_id, ids if statement_ids is not None else None)
        if not result.eligible:
            raise IneligibleAccountError(result.reasons)

        with self.repo.atomic() as tx:
            self._check_duplicates(tx, creator_id, amount, now)
        self.balance.validate_requested_amount(creator_id, amount)

        with self.repo.atomic() as tx:
            self.repo.lock_creator(tx, creator_id)
            # state may have moved between validation and here
            existing, key = self._resolve_key(tx, creator_id, base_key)
            if existing is not None:
                return existing, True
            self._check_duplicates(tx, creator_id, amount, now)
            self.balance.validate_requested_amount(creator_id, amount, tx=tx)
            payout = Payout(
                id=uuid4(),
                creator_id=creator_id,
                amount_cents=amount,
                currency=self.currency,
                idempotency_key=key,
                status=RESERVED,
                statement_ids=ids,
                requested_by=requested_by,
                created_at=now,
                updated_at=now,
            )
            self.repo.insert_payout(tx, payout)
        return payout, False

    def _select_statements(
        self,
        creator_id: str,
        statement_ids: Optional[Iterable[str]],
    ) -> list[RoyaltyStatement]:
        if statement_ids is None:
            return list(self.statements.get_unpaid_statements(creator_id))

        wanted = list(dict.fromkeys(str(s) for s in statement_ids))
        if not wanted:
            raise StatementNotPayableError([], "No statements selected")
        found = {s.id: s for s in self.statements.get_statements(wanted)}
        unknown = [s for s in wanted if s not in found or found[s].creator_id != creator_id]
        if unknown:
            raise StatementNotPayableError(unknown, "Unknown statements")
        unfinalized = [s for s in wanted if not found[s].finalized]
        if unfinalized:
            raise StatementNotPayableError(unfinalized, "Statements not finalized")
        return [found[s] for s in wanted]

    def _resolve_key(self, tx, creator_id: str, base_key: str) -> tuple[Optional[Payout], str]:
        """
        Returns (payout to replay, key for a new payout). FAILED payouts
        never block: the next request gets the next generation key.
        """
        generation = 0
        while True:
            key = generation_key(base_key, generation)
            existing = self.repo.get_payout_by_key(tx, creator_id, key)
            if existing is None:
                return None, key
            if existing.status != FAILED:
                return existing, key
            generation += 1

    def _check_duplicates(self, tx, creator_id: str, amount_cents: int, now: datetime) -> None:
        active = self.repo.list_active_payouts(tx, creator_id)
        if active:
            raise DuplicatePayoutError(active[0].id, "A payout is already in progress")
        for recent in self.repo.find_payouts_since(tx, creator_id, now - self.dedupe_window):
            if recent.status == COMPLETED and recent.amount_cents == amount_cents:
                raise DuplicatePayoutError(recent.id, "Duplicate payout detected")

    # ------------------------------------------------------------------

    def get_payout_status(self, payout_id: UUID) -> Payout:
        with self.repo.atomic() as tx:
            payout = self.repo.get_payout(tx, payout_id)
        if payout is None:
            raise PayoutNotFoundError(payout_id)
        return payout

    def list_payouts(self, creator_id: str, *, limit: int = 50) -> list[Payout]:
        with self.repo.atomic() as tx:
            return self.repo.list_payouts(tx, creator_id, limit=limit)

    def get_balance(self, creator_id: str) -> Balance:
        return self.balance.compute_balance(creator_id)

    def get_eligibility(self, creator_id: str) -> EligibilityResult:
        return self.eligibility.check_eligibility(creator_id)
