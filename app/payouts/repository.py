# app/payouts/repository.py
from __future__ import annotations

from contextlib import contextmanager
from datetime import datetime
from typing import Any, ContextManager, Iterable, Optional, Protocol
from uuid import UUID

from psycopg2 import errors as pg_errors
from psycopg2.extras import RealDictCursor

from app.payouts.errors import DuplicatePayoutError
from app.payouts.model import (
    NON_TERMINAL_STATUSES,
    RETRY_SCHEDULED,
    Payout,
    StateTransition,
    TransferAttempt,
)
from app.payouts.state_machine import INITIAL_PATH


class PayoutRepository(Protocol):
    """
    Ledger store for payouts. Every method takes the transaction handle
    yielded by ``atomic()`` as its first argument.
    """

    def atomic(self) -> ContextManager[Any]: ...

    def lock_creator(self, tx, creator_id: str) -> None: ...

    def insert_payout(self, tx, payout: Payout) -> Payout: ...

    def get_payout(self, tx, payout_id: UUID, *, for_update: bool = False) -> Optional[Payout]: ...

    def get_payout_by_key(self, tx, creator_id: str, idempotency_key: str) -> Optional[Payout]: ...

    def list_active_payouts(self, tx, creator_id: str) -> list[Payout]: ...

    def find_payouts_since(self, tx, creator_id: str, since: datetime) -> list[Payout]: ...

    def list_payouts(self, tx, creator_id: str, *, limit: int = 50) -> list[Payout]: ...

    def reserved_cents(self, tx, creator_id: str) -> int: ...

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
    ) -> bool: ...

    def add_attempt(self, tx, attempt: TransferAttempt) -> None: ...

    def claim_due_retries(self, tx, *, now: datetime, limit: int, lease_until: datetime) -> list[Payout]:
        """Due RETRY_SCHEDULED rows; next_retry_at is pushed to lease_until so no other worker takes them."""

    def claim_stale(
        self, tx, *, statuses: Iterable[str], older_than: datetime, limit: int, now: datetime
    ) -> list[Payout]:
        """Rows untouched since older_than; updated_at is bumped to now so another sweep skips them."""

    def list_transitions(self, tx, payout_id: UUID) -> list[StateTransition]: ...


# ==========================================================
# Postgres
# ==========================================================

_PAYOUT_COLUMNS = """
  p.id,
  p.creator_id,
  p.amount_cents,
  p.currency,
  p.idempotency_key,
  p.status,
  p.statement_ids,
  p.requested_by,
  p.provider_ref,
  p.retry_count,
  p.last_retry_at,
  p.next_retry_at,
  p.failure_reason,
  p.failure_message,
  p.created_at,
  p.updated_at,
  p.completed_at
"""


def _row_to_payout(row: dict[str, Any], attempts: Iterable[TransferAttempt] = ()) -> Payout:
    return Payout(
        id=row["id"] if isinstance(row["id"], UUID) else UUID(str(row["id"])),
        creator_id=str(row["creator_id"]),
        amount_cents=int(row["amount_cents"]),
        currency=row.get("currency") or "usd",
        idempotency_key=row["idempotency_key"],
        status=row["status"],
        statement_ids=tuple(row.get("statement_ids") or ()),
        requested_by=row.get("requested_by"),
        provider_ref=row.get("provider_ref"),
        retry_count=int(row.get("retry_count") or 0),
        last_retry_at=row.get("last_retry_at"),
        next_retry_at=row.get("next_retry_at"),
        failure_reason=row.get("failure_reason"),
        failure_message=row.get("failure_message"),
        created_at=row["created_at"],
        updated_at=row["updated_at"],
        completed_at=row.get("completed_at"),
        attempts=tuple(attempts),
    )


class PostgresPayoutRepository:
    """psycopg2-backed store; ``tx`` is a live connection from ``db.get_conn``."""

    def __init__(self, conn_factory=None):
        if conn_factory is None:
            from db import get_conn

            conn_factory = get_conn
        self._conn_factory = conn_factory

    @contextmanager
    def atomic(self):
        with self._conn_factory() as conn:
            yield conn

    def lock_creator(self, tx, creator_id: str) -> None:
        with tx.cursor() as cur:
            cur.execute("SELECT pg_advisory_xact_lock(hashtext(%s));", (str(creator_id),))

    def insert_payout(self, tx, payout: Payout) -> Payout:
        try:
            with tx.cursor() as cur:
                cur.execute("SAVEPOINT insert_payout;")
                cur.execute(
                    """
                    INSERT INTO app.payouts (
                      id, creator_id, amount_cents, currency, idempotency_key,
                      status, statement_ids, requested_by, provider_ref,
                      retry_count, created_at, updated_at
                    )
                    VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
                    """,
                    (
                        payout.id,
                        payout.creator_id,
                        payout.amount_cents,
                        payout.currency,
                        payout.idempotency_key,
                        payout.status,
                        list(payout.statement_ids),
                        payout.requested_by,
                        payout.provider_ref,
                        payout.retry_count,
                        payout.created_at,
                        payout.updated_at,
                    ),
                )
                previous = None
                for status in INITIAL_PATH:
                    self._insert_transition(cur, payout.id, previous, status, None, payout.created_at)
                    previous = status
        except pg_errors.UniqueViolation as exc:
            with tx.cursor() as cur:
                cur.execute("ROLLBACK TO SAVEPOINT insert_payout;")
            raise DuplicatePayoutError(None, f"Duplicate payout detected: {exc.diag.constraint_name}") from exc
        return payout

    def get_payout(self, tx, payout_id: UUID, *, for_update: bool = False) -> Optional[Payout]:
        lock_sql = "FOR UPDATE" if for_update else ""
        with tx.cursor(cursor_factory=RealDictCursor) as cur:
            cur.execute(
                f"SELECT {_PAYOUT_COLUMNS} FROM app.payouts p WHERE p.id = %s {lock_sql}",
                (payout_id,),
            )
            row = cur.fetchone()
            if not row:
                return None
            return _row_to_payout(dict(row), self._attempts(cur, payout_id))

    def get_payout_by_key(self, tx, creator_id: str, idempotency_key: str) -> Optional[Payout]:
        with tx.cursor(cursor_factory=RealDictCursor) as cur:
            cur.execute(
                f"""
                SELECT {_PAYOUT_COLUMNS}
                FROM app.payouts p
                WHERE p.creator_id = %s
                  AND p.idempotency_key = %s
                """,
                (creator_id, idempotency_key),
            )
            row = cur.fetchone()
            if not row:
                return None
            return _row_to_payout(dict(row), self._attempts(cur, row["id"]))

    def list_active_payouts(self, tx, creator_id: str) -> list[Payout]:
        return self._select(
            tx,
            "WHERE p.creator_id = %s AND p.status = ANY(%s) ORDER BY p.created_at",
            (creator_id, list(NON_TERMINAL_STATUSES)),
        )

    def find_payouts_since(self, tx, creator_id: str, since: datetime) -> list[Payout]:
        return self._select(
            tx,
            "WHERE p.creator_id = %s AND p.created_at >= %s ORDER BY p.created_at DESC",
            (creator_id, since),
        )

    def list_payouts(self, tx, creator_id: str, *, limit: int = 50) -> list[Payout]:
        return self._select(
            tx,
            "WHERE p.creator_id = %s ORDER BY p.created_at DESC LIMIT %s",
            (creator_id, int(limit)),
        )

    def reserved_cents(self, tx, creator_id: str) -> int:
        with tx.cursor() as cur:
            cur.execute(
                """
                SELECT COALESCE(SUM(amount_cents), 0)
                FROM app.payouts
                WHERE creator_id = %s
                  AND status = ANY(%s)
                """,
                (creator_id, list(NON_TERMINAL_STATUSES)),
            )
            row = cur.fetchone()
            return int(row[0]) if row else 0

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
        with tx.cursor() as cur:
            cur.execute(
                """
                UPDATE app.payouts
                SET
                  status = %s,
                  provider_ref = COALESCE(%s, provider_ref),
                  retry_count = COALESCE(%s, retry_count),
                  last_retry_at = COALESCE(%s, last_retry_at),
                  next_retry_at = %s,
                  failure_reason = COALESCE(%s, failure_reason),
                  failure_message = COALESCE(%s, failure_message),
                  completed_at = COALESCE(%s, completed_at),
                  updated_at = %s
                WHERE id = %s
                  AND status = %s
                """,
                (
                    new_status,
                    provider_ref,
                    retry_count,
                    last_retry_at,
                    next_retry_at,
                    failure_reason,
                    failure_message,
                    completed_at,
                    now,
                    payout_id,
                    from_status,
                ),
            )
            if cur.rowcount != 1:
                return False
            self._insert_transition(cur, payout_id, from_status, new_status, reason, now)
            return True

    def add_attempt(self, tx, attempt: TransferAttempt) -> None:
        with tx.cursor() as cur:
            cur.execute(
                """
                INSERT INTO app.payout_attempts (
                  payout_id, attempt_number, idempotency_key,
                  response_code, http_status, outcome, unmapped, created_at
                )
                VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
                """,
                (
                    attempt.payout_id,
                    attempt.attempt_number,
                    attempt.idempotency_key,
                    attempt.response_code,
                    attempt.http_status,
                    attempt.outcome,
                    attempt.unmapped,
                    attempt.created_at,
                ),
            )

    def claim_due_retries(self, tx, *, now: datetime, limit: int, lease_until: datetime) -> list[Payout]:
        with tx.cursor(cursor_factory=RealDictCursor) as cur:
            cur.execute(
                f"""
                WITH picked AS (
                  SELECT id
                  FROM app.payouts
                  WHERE status = %s
                    AND (next_retry_at IS NULL OR next_retry_at <= %s)
                  ORDER BY next_retry_at NULLS FIRST, updated_at
                  LIMIT %s
                  FOR UPDATE SKIP LOCKED
                )
                UPDATE app.payouts p
                SET next_retry_at = %s
                FROM picked
                WHERE picked.id = p.id
                RETURNING {_PAYOUT_COLUMNS}
                """,
                (RETRY_SCHEDULED, now, int(limit), lease_until),
            )
            return [_row_to_payout(dict(r)) for r in cur.fetchall()]

    def claim_stale(
        self,
        tx,
        *,
        statuses: Iterable[str],
        older_than: datetime,
        limit: int,
        now: datetime,
    ) -> list[Payout]:
        with tx.cursor(cursor_factory=RealDictCursor) as cur:
            cur.execute(
                f"""
                WITH picked AS (
                  SELECT id
                  FROM app.payouts
                  WHERE status = ANY(%s)
                    AND updated_at <= %s
                  ORDER BY updated_at
                  LIMIT %s
                  FOR UPDATE SKIP LOCKED
                )
                UPDATE app.payouts p
                SET updated_at = %s
                FROM picked
                WHERE picked.id = p.id
                RETURNING {_PAYOUT_COLUMNS}
                """,
                (list(statuses), older_than, int(limit), now),
            )
            return [_row_to_payout(dict(r)) for r in cur.fetchall()]

    def list_transitions(self, tx, payout_id: UUID) -> list[StateTransition]:
        with tx.cursor(cursor_factory=RealDictCursor) as cur:
            cur.execute(
                """
                SELECT payout_id, from_status, to_status, reason, created_at
                FROM app.payout_transitions
                WHERE payout_id = %s
                ORDER BY id
                """,
                (payout_id,),
            )
            return [StateTransition(**dict(r)) for r in cur.fetchall()]

    # ------------------------------------------------------

    def _select(self, tx, where_sql: str, params: tuple) -> list[Payout]:
        with tx.cursor(cursor_factory=RealDictCursor) as cur:
            cur.execute(f"SELECT {_PAYOUT_COLUMNS} FROM app.payouts p {where_sql}", params)
            return [_row_to_payout(dict(r)) for r in cur.fetchall()]

    @staticmethod
    def _attempts(cur, payout_id) -> list[TransferAttempt]:
        cur.execute(
            """
            SELECT payout_id, attempt_number, idempotency_key, response_code,
                   outcome, created_at, http_status, unmapped
            FROM app.payout_attempts
            WHERE payout_id = %s
            ORDER BY attempt_number
            """,
            (payout_id,),
        )
        return [TransferAttempt(**dict(r)) for r in cur.fetchall()]

    @staticmethod
    def _insert_transition(cur, payout_id, from_status, to_status, reason, at) -> None:
        cur.execute(
            """
            INSERT INTO app.payout_transitions (payout_id, from_status, to_status, reason, created_at)
            VALUES (%s, %s, %s, %s, %s)
            """,
            (payout_id, from_status, to_status, reason, at),
        )
