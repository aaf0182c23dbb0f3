"""
Composition root. Settings are read here and nowhere below: every component
gets its collaborators and plain values injected.
"""
from __future__ import annotations

import random
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Optional

from app.events import EventBus, register_audit_logger
from app.payouts.balance import BalanceCalculator
from app.payouts.collaborators import (
    AccountDirectory,
    PostgresAccountDirectory,
    PostgresStatementSource,
    StatementSource,
)
from app.payouts.eligibility import EligibilityChecker
from app.payouts.executor import PayoutExecutor
from app.payouts.memory import InMemoryLedger
from app.payouts.model import utcnow
from app.payouts.orchestrator import PayoutOrchestrator
from app.payouts.repository import PayoutRepository, PostgresPayoutRepository
from app.payouts.retry_policy import RetryPolicy
from app.providers.base import TransferProvider
from app.providers.factory import get_provider
from app.providers.transfer_client import TransferClient
from app.workers.pool import SubmissionPool
from app.workers.reconcile_sweeper import ReconciliationSweeper
from app.workers.retry_scheduler import RetryScheduler


@dataclass
class PayoutEngine:
    repo: PayoutRepository
    accounts: AccountDirectory
    statements: StatementSource
    provider: TransferProvider
    client: TransferClient
    events: EventBus
    eligibility: EligibilityChecker
    balance: BalanceCalculator
    executor: PayoutExecutor
    orchestrator: PayoutOrchestrator
    retry_scheduler: RetryScheduler
    sweeper: ReconciliationSweeper
    dispatcher: Any
    staleness_threshold: timedelta
    event_executor: Optional[ThreadPoolExecutor] = None

    def shutdown(self, wait: bool = True) -> None:
        self.dispatcher.shutdown(wait=wait)
        if self.event_executor is not None:
            self.event_executor.shutdown(wait=wait)


def build_engine(
    s,
    *,
    repo: Optional[PayoutRepository] = None,
    accounts: Optional[AccountDirectory] = None,
    statements: Optional[StatementSource] = None,
    provider: Optional[TransferProvider] = None,
    clock: Callable[[], datetime] = utcnow,
    rng: Optional[random.Random] = None,
    dispatcher: Any = None,
    async_events: bool = True,
) -> PayoutEngine:
    if repo is None or accounts is None or statements is None:
        if s.PAYOUT_STORE == "memory":
            ledger = InMemoryLedger()
            repo = repo or ledger
            accounts = accounts or ledger
            statements = statements or ledger
        else:
            repo = repo or PostgresPayoutRepository()
            accounts = accounts or PostgresAccountDirectory()
            statements = statements or PostgresStatementSource()

    provider = provider or get_provider(s)
    client = TransferClient(provider, currency=s.PAYOUT_CURRENCY)

    event_executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="payout-events") if async_events else None
    events = EventBus(event_executor)
    register_audit_logger(events)

    policy = RetryPolicy(
        max_retries=s.PAYOUT_MAX_RETRIES,
        base_delay_s=s.PAYOUT_RETRY_BASE_DELAY_S,
        max_delay_s=s.PAYOUT_RETRY_MAX_DELAY_S,
        multiplier=s.PAYOUT_RETRY_MULTIPLIER,
        jitter_fraction=s.PAYOUT_RETRY_JITTER_FRACTION,
        rng=rng or random.Random(),
    )

    eligibility = EligibilityChecker(accounts, statements)
    balance = BalanceCalculator(
        repo,
        statements,
        minimum_threshold_cents=s.PAYOUT_MIN_THRESHOLD_CENTS,
        reserve_percentage=s.PAYOUT_RESERVE_PERCENTAGE,
    )
    executor = PayoutExecutor(
        repo,
        accounts,
        statements,
        client,
        policy,
        events,
        clock=clock,
        unmapped_max_attempts=s.PAYOUT_UNMAPPED_ERROR_MAX_ATTEMPTS,
    )
    dispatcher = dispatcher or SubmissionPool(max_workers=s.PAYOUT_WORKER_CONCURRENCY)
    orchestrator = PayoutOrchestrator(
        repo,
        statements,
        eligibility,
        balance,
        executor,
        dispatcher,
        clock=clock,
        currency=s.PAYOUT_CURRENCY,
        bucket_seconds=s.PAYOUT_IDEMPOTENCY_BUCKET_SECONDS,
        dedupe_window_seconds=s.PAYOUT_DEDUPE_WINDOW_SECONDS,
    )
    retry_scheduler = RetryScheduler(
        repo,
        executor,
        client,
        clock=clock,
        batch_size=s.RETRY_BATCH_SIZE,
        claim_lease_seconds=s.RETRY_CLAIM_LEASE_SECONDS,
    )
    sweeper = ReconciliationSweeper(repo, executor, client, clock=clock, batch_size=s.RECONCILE_BATCH_SIZE)

    return PayoutEngine(
        repo=repo,
        accounts=accounts,
        statements=statements,
        provider=provider,
        client=client,
        events=events,
        eligibility=eligibility,
        balance=balance,
        executor=executor,
        orchestrator=orchestrator,
        retry_scheduler=retry_scheduler,
        sweeper=sweeper,
        dispatcher=dispatcher,
        staleness_threshold=timedelta(seconds=s.RECONCILE_STALENESS_SECONDS),
        event_executor=event_executor,
    )
