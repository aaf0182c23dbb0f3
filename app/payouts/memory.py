from __future__ import annotations

import threading
from contextlib import contextmanager
from dataclasses import replace
from datetime import datetime
from typing import Iterable, Optional
from uuid import UUID

from app.payouts.errors import DuplicatePayoutError
from app.payouts.model import (
    NON_TERMINAL_STATUSES,
    RETRY_SCHEDULED,
    STANDING_GOOD,
    AccountStatus,
    Payout,
    RoyaltyStatement,
    StateTransition,
    TransferAttempt,
)
from app.payouts.state_machine import INITIAL_PATH


class InMemoryLedger:
    """
    Single-process stand-in for the ledger database.

    Implements the payout repository, account directory and statement
    source protocols. ``atomic()`` holds one re-entrant lock for the whole
    transaction and restores a snapshot when the block raises, so it
    behaves like a serializable transaction.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self.accounts: dict[str, AccountStatus] = {}
        self.statements: dict[str, RoyaltyStatement] = {}
        self.payouts: dict[UUID, Payout] = {}
        self.attempts: dict[UUID, list[TransferAttempt]] = {}
        self.transitions: list[StateTransition] = []

    # --- seeding -------------------------------------------------------

    def add_account(
        self,
        creator_id: str,
        *,
        provider_account_ref: Optional[str] = None,
        onboarded: bool = True,
        capable: bool = True,
        standing: str = STANDING_GOOD,
        verified: bool = True,
    ) -> AccountStatus:
        account = AccountStatus(
            creator_id=creator_id,
            provider_account_ref=provider_account_ref if provider_account_ref is not None else f"acct_{creator_id}",
            onboarded=onboarded,
            capable=capable,
            standing=standing,
            verified=verified,
        )
        with self._lock:
            self.accounts[creator_id] = account
        return account

    def add_statement(
        self,
        statement_id: str,
        creator_id: str,
        net_payable_cents: int,
        *,
        disputed: bool = False,
        finalized: bool = True,
    ) -> RoyaltyStatement:
        statement = RoyaltyStatement(
            id=statement_id,
            creator_id=creator_id,
            net_payable_cents=int(net_payable_cents),
            disputed=disputed,
            finalized=finalized,
        )
        with self._lock:
            self.statements[statement_id] = statement
        return statement

    # --- transactions --------------------------------------------------

    @contextmanager
    def atomic(self):
        with self._lock:
            snapshot = self._snapshot()
            try:
                yield self
            except BaseException:
                self._restore(snapshot)
                raise

    def _snapshot(self):
        return (
            dict(self.statements),
            dict(self.payouts),
            {k: list(v) for k, v in self.attempts.items()},
            list(self.transitions),
        )

    def _restore(self, snapshot) -> None:
        statements, payouts, attempts, transitions = snapshot
        self.statements = statements
        self.payouts = payouts
        self.attempts = attempts
        self.transitions = transitions

    # --- PayoutRepository ----------------------------------------------

    def lock_creator(self, tx, creator_id: str) -> None:
        # the transaction already holds the global lock
        return None

    def insert_payout(self, tx, payout: Payout) -> Payout:
        with self._lock:
            for existing in self.payouts.values():
                if existing.creator_id == payout.creator_id and existing.idempotency_key == payout.idempotency_key:
                    raise DuplicatePayoutError(existing.id, "Duplicate payout detected: idempotency key")
                if payout.provider_ref and existing.provider_ref == payout.provider_ref:
                    raise DuplicatePayoutError(existing.id, "Duplicate payout detected: provider reference")
                if (
                    existing.creator_id == payout.creator_id
                    and existing.status in NON_TERMINAL_STATUSES
                    and payout.status in NON_TERMINAL_STATUSES
                ):
                    raise DuplicatePayoutError(existing.id, "A payout is already in progress")

            self.payouts[payout.id] = replace(payout, attempts=())
            self.attempts[payout.id] = []
            previous = None
            for status in INITIAL_PATH:
                self.transitions.append(
                    StateTransition(payout.id, previous, status, None, payout.created_at)
                )
                previous = status
        return payout

    def get_payout(self, tx, payout_id: UUID, *, for_update: bool = False) -> Optional[Payout]:
        with self._lock:
            payout = self.payouts.get(payout_id)
            if payout is None:
                return None
            return replace(payout, attempts=tuple(self.attempts.get(payout_id, ())))

    def get_payout_by_key(self, tx, creator_id: str, idempotency_key: str) -> Optional[Payout]:
        with self._lock:
            for payout in self.payouts.values():
                if payout.creator_id == creator_id and payout.idempotency_key == idempotency_key:
                    return self.get_payout(tx, payout.id)
        return None

    def list_active_payouts(self, tx, creator_id: str) -> list[Payout]:
        with self._lock:
            rows = [
                p for p in self.payouts.values()
                if p.creator_id == creator_id and p.status in NON_TERMINAL_STATUSES
            ]
        return sorted(rows, key=lambda p: p.created_at)

    def find_payouts_since(self, tx, creator_id: str, since: datetime) -> list[Payout]:
        with self._lock:
            rows = [
                p for p in self.payouts.values()
                if p.creator_id == creator_id and p.created_at >= since
            ]
        return sorted(rows, key=lambda p: p.created_at, reverse=True)

    def list_payouts(self, tx, creator_id: str, *, limit: int = 50) -> list[Payout]:
        with self._lock:
            rows = [p for p in self.payouts.values() if p.creator_id == creator_id]
        return sorted(rows, key=lambda p: p.created_at, reverse=True)[: int(limit)]

    def reserved_cents(self, tx, creator_id: str) -> int:
        return sum(p.amount_cents for p in self.list_active_payouts(tx, creator_id))

    def update_status(
        self,
        tx,
        *,
        payout_id: UUID,
        from_status: str,
        new_status: str,
        now: datetime,
        provider_ref: Optional[str] = None,
        retry_count: Optional[int] = None,
        last_retry_at: Optional[datetime] = None,
        next_retry_at: Optional[datetime] = None,
        failure_reason: Optional[str] = None,
        failure_message: Optional[str] = None,
        completed_at: Optional[datetime] = None,
        reason: Optional[str] = None,
    ) -> bool:
        with self._lock:
            current = self.payouts.get(payout_id)
            if current is None or current.status != from_status:
                return False
            if provider_ref:
                for other in self.payouts.values():
                    if other.id != payout_id and other.provider_ref == provider_ref:
                        raise DuplicatePayoutError(other.id, "Duplicate payout detected: provider reference")
            self.payouts[payout_id] = replace(
                current,
                status=new_status,
                provider_ref=provider_ref or current.provider_ref,
                retry_count=current.retry_count if retry_count is None else retry_count,
                last_retry_at=last_retry_at or current.last_retry_at,
                next_retry_at=next_retry_at,
                failure_reason=failure_reason or current.failure_reason,
                failure_message=failure_message or current.failure_message,
                completed_at=completed_at or current.completed_at,
                updated_at=now,
            )
            self.transitions.append(StateTransition(payout_id, from_status, new_status, reason, now))
            return True

    def add_attempt(self, tx, attempt: TransferAttempt) -> None:
        with self._lock:
            self.attempts.setdefault(attempt.payout_id, []).append(attempt)

    def claim_due_retries(self, tx, *, now: datetime, limit: int, lease_until: datetime) -> list[Payout]:
        with self._lock:
            rows = [
                p for p in self.payouts.values()
                if p.status == RETRY_SCHEDULED and (p.next_retry_at is None or p.next_retry_at <= now)
            ]
            rows.sort(key=lambda p: (p.next_retry_at or p.updated_at, p.updated_at))
            claimed = [replace(p, next_retry_at=lease_until) for p in rows[: int(limit)]]
            for p in claimed:
                self.payouts[p.id] = p
            return claimed

    def claim_stale(
        self,
        tx,
        *,
        statuses: Iterable[str],
        older_than: datetime,
        limit: int,
        now: datetime,
    ) -> list[Payout]:
        wanted = set(statuses)
        with self._lock:
            rows = [
                p for p in self.payouts.values()
                if p.status in wanted and p.updated_at <= older_than
            ]
            rows.sort(key=lambda p: p.updated_at)
            claimed = [replace(p, updated_at=now) for p in rows[: int(limit)]]
            for p in claimed:
                self.payouts[p.id] = p
            return claimed

    def list_transitions(self, tx, payout_id: UUID) -> list[StateTransition]:
        with self._lock:
            return [t for t in self.transitions if t.payout_id == payout_id]

    # --- AccountDirectory ----------------------------------------------

    def get_account_status(self, creator_id: str) -> Optional[AccountStatus]:
        with self._lock:
            return self.accounts.get(creator_id)

    # --- StatementSource -----------------------------------------------

    def get_unpaid_statements(self, creator_id: str, tx=None) -> list[RoyaltyStatement]:
        with self._lock:
            return [
                s for s in self.statements.values()
                if s.creator_id == creator_id and s.finalized and not s.paid
            ]

    def get_statements(self, statement_ids: Iterable[str], tx=None) -> list[RoyaltyStatement]:
        with self._lock:
            return [self.statements[s] for s in statement_ids if s in self.statements]

    def get_pending_cents(self, creator_id: str, tx=None) -> int:
        with self._lock:
            return sum(
                s.net_payable_cents for s in self.statements.values()
                if s.creator_id == creator_id and not s.finalized and not s.paid
            )

    def mark_statements_paid(self, tx, statement_ids: Iterable[str], payout_id: UUID, paid_at: datetime) -> int:
        updated = 0
        with self._lock:
            for statement_id in statement_ids:
                statement = self.statements.get(statement_id)
                if statement is None or statement.paid:
                    continue
                self.statements[statement_id] = replace(
                    statement, paid=True, payout_id=payout_id, paid_at=paid_at
                )
                updated += 1
        return updated
