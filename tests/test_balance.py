import pytest

from app.payouts.balance import BalanceCalculator, reserve_hold_cents
from app.payouts.errors import BelowMinimumThresholdError, InsufficientBalanceError


def _calc(ledger, **kwargs):
    kwargs.setdefault("minimum_threshold_cents", 5000)
    return BalanceCalculator(ledger, ledger, **kwargs)


def test_balance_counts_finalized_unpaid(ledger, creator):
    ledger.add_statement("st-draft", creator, 1200, finalized=False)
    b = _calc(ledger).compute_balance(creator)
    assert b.total_cents == 10000
    assert b.available_cents == 10000
    assert b.pending_cents == 1200
    assert b.reserved_cents == 0
    assert b.meets_minimum


def test_reserve_percentage_rounds_up(ledger, creator):
    assert reserve_hold_cents(10001, 0.1) == 1001
    assert reserve_hold_cents(10000, 0.0) == 0
    b = _calc(ledger, reserve_percentage=0.25).compute_balance(creator)
    assert b.reserve_hold_cents == 2500
    assert b.available_cents == 7500


def test_validate_requested_amount(ledger, creator):
    calc = _calc(ledger)
    with pytest.raises(InsufficientBalanceError) as exc:
        calc.validate_requested_amount(creator, 12000)
    assert exc.value.available_cents == 10000

    with pytest.raises(BelowMinimumThresholdError) as exc:
        calc.validate_requested_amount(creator, 4999)
    assert exc.value.minimum_cents == 5000

    assert calc.validate_requested_amount(creator, 7000).available_cents == 10000


def test_available_never_negative(ledger, creator):
    b = _calc(ledger, reserve_percentage=1.0).compute_balance(creator)
    assert b.available_cents == 0
