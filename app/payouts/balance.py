from __future__ import annotations

from decimal import ROUND_CEILING, Decimal

from app.payouts.collaborators import StatementSource
from app.payouts.errors import BelowMinimumThresholdError, InsufficientBalanceError
from app.payouts.model import Balance
from app.payouts.repository import PayoutRepository


def reserve_hold_cents(total_cents: int, reserve_percentage: float) -> int:
    # rounded up so available is never overstated
    if total_cents <= 0 or reserve_percentage <= 0:
        return 0
    hold = (Decimal(int(total_cents)) * Decimal(str(reserve_percentage))).to_integral_value(rounding=ROUND_CEILING)
    return int(hold)


class BalanceCalculator:
    """
    Read-only balance view for a creator.

    total     = unpaid finalized statements
    reserved  = amounts held by non-terminal payouts
    pending   = statements still awaiting finalization (reported, not payable)
    available = max(0, total - reserved - reserve hold)

    Statements linked to an in-flight payout stay unpaid until it completes,
    so they count in ``total`` and again in ``reserved``; completion removes
    them from both and ``available`` does not move.
    """

    def __init__(
        self,
        repo: PayoutRepository,
        statements: StatementSource,
        *,
        minimum_threshold_cents: int,
        reserve_percentage: float = 0.0,
    ):
        self.repo = repo
        self.statements = statements
        self.minimum_threshold_cents = int(minimum_threshold_cents)
        self.reserve_percentage = float(reserve_percentage)

    def compute_balance(self, creator_id: str, tx=None) -> Balance:
        if tx is None:
            with self.repo.atomic() as own_tx:
                return self._compute(creator_id, own_tx)
        return self._compute(creator_id, tx)

    def _compute(self, creator_id: str, tx) -> Balance:
        unpaid = self.statements.get_unpaid_statements(creator_id, tx=tx)
        total = sum(int(s.net_payable_cents) for s in unpaid)
        reserved = self.repo.reserved_cents(tx, creator_id)
        pending = self.statements.get_pending_cents(creator_id, tx=tx)
        hold = reserve_hold_cents(total, self.reserve_percentage)
        available = max(0, total - reserved - hold)
        return Balance(
            creator_id=creator_id,
            total_cents=total,
            available_cents=available,
            pending_cents=pending,
            reserved_cents=reserved,
            reserve_hold_cents=hold,
            minimum_threshold_cents=self.minimum_threshold_cents,
        )

    def check_minimum(self, amount_cents: int) -> None:
        if int(amount_cents) < self.minimum_threshold_cents or int(amount_cents) <= 0:
            raise BelowMinimumThresholdError(int(amount_cents), self.minimum_threshold_cents)

    def validate_requested_amount(self, creator_id: str, amount_cents: int, tx=None) -> Balance:
        """
        Raises BelowMinimumThresholdError / InsufficientBalanceError.
        Returns the balance the decision was made on.
        """
        self.check_minimum(amount_cents)
        balance = self.compute_balance(creator_id, tx=tx)
        if int(amount_cents) > balance.available_cents:
            raise InsufficientBalanceError(int(amount_cents), balance.available_cents)
        return balance
