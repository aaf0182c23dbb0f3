"""
Read side of the identity and royalty modules.

The payout engine never mutates creator accounts. Royalty statements are
only ever flipped to paid, inside the payout finalization transaction.
"""
from __future__ import annotations

from datetime import datetime
from typing import Iterable, Optional, Protocol
from uuid import UUID

from psycopg2.extras import RealDictCursor

from app.payouts.model import AccountStatus, RoyaltyStatement


class AccountDirectory(Protocol):
    def get_account_status(self, creator_id: str) -> Optional[AccountStatus]: ...


class StatementSource(Protocol):
    def get_unpaid_statements(self, creator_id: str, tx=None) -> list[RoyaltyStatement]: ...

    def get_statements(self, statement_ids: Iterable[str], tx=None) -> list[RoyaltyStatement]: ...

    def get_pending_cents(self, creator_id: str, tx=None) -> int: ...

    def mark_statements_paid(self, tx, statement_ids: Iterable[str], payout_id: UUID, paid_at: datetime) -> int: ...


_STATEMENT_COLUMNS = """
  s.id,
  s.creator_id,
  s.net_payable_cents,
  s.paid_at,
  s.payout_id,
  s.disputed,
  s.status
"""


def _row_to_statement(row: dict) -> RoyaltyStatement:
    return RoyaltyStatement(
        id=str(row["id"]),
        creator_id=str(row["creator_id"]),
        net_payable_cents=int(row["net_payable_cents"]),
        paid=row.get("paid_at") is not None,
        disputed=bool(row.get("disputed")),
        finalized=(row.get("status") or "FINALIZED").upper() == "FINALIZED",
        payout_id=row.get("payout_id"),
        paid_at=row.get("paid_at"),
    )


class PostgresAccountDirectory:
    def __init__(self, conn_factory=None):
        if conn_factory is None:
            from db import get_conn

            conn_factory = get_conn
        self._conn_factory = conn_factory

    def get_account_status(self, creator_id: str) -> Optional[AccountStatus]:
        with self._conn_factory() as conn:
            with conn.cursor(cursor_factory=RealDictCursor) as cur:
                cur.execute(
                    """
                    SELECT creator_id, provider_account_ref, onboarded,
                           transfers_capable, standing, verified
                    FROM identity.creator_accounts
                    WHERE creator_id = %s
                    """,
                    (creator_id,),
                )
                row = cur.fetchone()
        if not row:
            return None
        return AccountStatus(
            creator_id=str(row["creator_id"]),
            provider_account_ref=row.get("provider_account_ref"),
            onboarded=bool(row.get("onboarded")),
            capable=bool(row.get("transfers_capable")),
            standing=(row.get("standing") or "good").strip().lower(),
            verified=bool(row.get("verified")),
        )


class PostgresStatementSource:
    """
    ``tx`` is optional on reads: when given, the query joins the caller's
    transaction so balance checks see the same snapshot as the reservation.
    """

    def __init__(self, conn_factory=None):
        if conn_factory is None:
            from db import get_conn

            conn_factory = get_conn
        self._conn_factory = conn_factory

    def _fetch(self, tx, sql: str, params: tuple) -> list[dict]:
        if tx is not None:
            with tx.cursor(cursor_factory=RealDictCursor) as cur:
                cur.execute(sql, params)
                return [dict(r) for r in cur.fetchall()]
        with self._conn_factory() as conn:
            with conn.cursor(cursor_factory=RealDictCursor) as cur:
                cur.execute(sql, params)
                return [dict(r) for r in cur.fetchall()]

    def get_unpaid_statements(self, creator_id: str, tx=None) -> list[RoyaltyStatement]:
        rows = self._fetch(
            tx,
            f"""
            SELECT {_STATEMENT_COLUMNS}
            FROM royalties.royalty_statements s
            WHERE s.creator_id = %s
              AND s.status = 'FINALIZED'
              AND s.paid_at IS NULL
            ORDER BY s.created_at, s.id
            """,
            (creator_id,),
        )
        return [_row_to_statement(r) for r in rows]

    def get_statements(self, statement_ids: Iterable[str], tx=None) -> list[RoyaltyStatement]:
        ids = [str(s) for s in statement_ids]
        if not ids:
            return []
        rows = self._fetch(
            tx,
            f"""
            SELECT {_STATEMENT_COLUMNS}
            FROM royalties.royalty_statements s
            WHERE s.id = ANY(%s)
            """,
            (ids,),
        )
        return [_row_to_statement(r) for r in rows]

    def get_pending_cents(self, creator_id: str, tx=None) -> int:
        rows = self._fetch(
            tx,
            """
            SELECT COALESCE(SUM(net_payable_cents), 0) AS pending_cents
            FROM royalties.royalty_statements
            WHERE creator_id = %s
              AND status <> 'FINALIZED'
              AND paid_at IS NULL
            """,
            (creator_id,),
        )
        return int(rows[0]["pending_cents"]) if rows else 0

    def mark_statements_paid(self, tx, statement_ids: Iterable[str], payout_id: UUID, paid_at: datetime) -> int:
        ids = [str(s) for s in statement_ids]
        with tx.cursor() as cur:
            cur.execute(
                """
                UPDATE royalties.royalty_statements
                SET paid_at = %s,
                    payout_id = %s
                WHERE id = ANY(%s)
                  AND paid_at IS NULL
                """,
                (paid_at, payout_id, ids),
            )
            return cur.rowcount
