import threading
import uuid
from concurrent.futures import ThreadPoolExecutor
from dataclasses import replace

import pytest

from app.events import PayoutCompleted, PayoutFailed
from app.payouts import errors as payout_errors
from app.payouts.errors import (
    BelowMinimumThresholdError,
    DuplicatePayoutError,
    IneligibleAccountError,
    InsufficientBalanceError,
    PayoutNotFoundError,
    StatementNotPayableError,
)


def test_example_scenario_timeout_then_retry_completes(deferred_engine, dispatcher, ledger, provider, clock, creator):
    engine = deferred_engine
    assert engine.balance.compute_balance(creator).available_cents == 10000

    with pytest.raises(InsufficientBalanceError):
        engine.balance.validate_requested_amount(creator, 12000)

    payout = engine.orchestrator.request_payout(creator, ["st-1"], requested_by="creator-1")
    assert payout.status == "RESERVED"
    assert payout.amount_cents == 7000
    assert engine.orchestrator.get_balance(creator).available_cents == 3000

    provider.timeout_next()
    dispatcher.run_all()

    retrying = engine.orchestrator.get_payout_status(payout.id)
    assert retrying.status == "RETRY_SCHEDULED"
    delay = (retrying.next_retry_at - clock.now).total_seconds()
    assert 60 <= delay <= 66
    assert engine.orchestrator.get_balance(creator).available_cents == 3000

    clock.advance(seconds=70)
    engine.retry_scheduler.process_due()

    done = engine.orchestrator.get_payout_status(payout.id)
    assert done.status == "COMPLETED"
    assert done.provider_ref
    assert done.retry_count == 1
    assert ledger.statements["st-1"].paid
    assert ledger.statements["st-1"].payout_id == payout.id
    assert not ledger.statements["st-2"].paid

    balance = engine.orchestrator.get_balance(creator)
    assert balance.available_cents == 3000
    assert balance.reserved_cents == 0
    assert provider.transfers_created == 1


def test_validation_errors_create_no_payout(engine, ledger, creator):
    ledger.add_account("creator-small")
    ledger.add_statement("st-small", "creator-small", 4000)
    with pytest.raises(BelowMinimumThresholdError):
        engine.orchestrator.request_payout("creator-small")

    ledger.add_account("creator-locked", standing="locked")
    ledger.add_statement("st-locked", "creator-locked", 9000)
    with pytest.raises(IneligibleAccountError) as exc:
        engine.orchestrator.request_payout("creator-locked")
    assert [r.code for r in exc.value.reasons] == ["ACCOUNT_LOCKED"]

    with pytest.raises(StatementNotPayableError):
        engine.orchestrator.request_payout(creator, ["st-unknown"])
    with pytest.raises(StatementNotPayableError):
        engine.orchestrator.request_payout(creator, ["st-small"])

    assert ledger.payouts == {}


def test_insufficient_balance_with_reserve_hold(make_engine, ledger, creator):
    engine = make_engine(PAYOUT_RESERVE_PERCENTAGE=0.5)
    with pytest.raises(InsufficientBalanceError) as exc:
        engine.orchestrator.request_payout(creator)
    assert exc.value.requested_cents == 10000
    assert exc.value.available_cents == 5000
    assert ledger.payouts == {}


def test_success_path_completes_and_marks_statements_paid(engine, ledger, provider, creator):
    completed = []
    engine.events.subscribe(PayoutCompleted, completed.append)

    payout = engine.orchestrator.request_payout(creator)

    assert payout.status == "COMPLETED"
    assert payout.amount_cents == 10000
    assert payout.statement_ids == ("st-1", "st-2")
    assert all(ledger.statements[s].paid for s in ("st-1", "st-2"))
    assert [e.payout_id for e in completed] == [payout.id]

    history = [(t.from_status, t.to_status) for t in ledger.list_transitions(None, payout.id)]
    assert history == [
        (None, "REQUESTED"),
        ("REQUESTED", "ELIGIBLE"),
        ("ELIGIBLE", "RESERVED"),
        ("RESERVED", "SUBMITTED"),
        ("SUBMITTED", "COMPLETED"),
    ]


def test_idempotent_replay_returns_same_payout(engine, provider, creator):
    first = engine.orchestrator.request_payout(creator, ["st-1", "st-2"])
    second = engine.orchestrator.request_payout(creator, ["st-2", "st-1"])

    assert second.id == first.id
    assert second.status == "COMPLETED"
    assert provider.transfers_created == 1


def test_idempotent_replay_while_in_flight(deferred_engine, dispatcher, provider, creator):
    first = deferred_engine.orchestrator.request_payout(creator, ["st-1"])
    again = deferred_engine.orchestrator.request_payout(creator, ["st-1"])
    assert again.id == first.id
    assert len(dispatcher.pending) == 1

    dispatcher.run_all()
    assert provider.transfers_created == 1


def test_different_request_while_in_flight_is_duplicate(deferred_engine, creator):
    first = deferred_engine.orchestrator.request_payout(creator, ["st-1"])
    with pytest.raises(DuplicatePayoutError) as exc:
        deferred_engine.orchestrator.request_payout(creator, ["st-2"])
    assert exc.value.existing_payout_id == first.id


def test_recent_completed_payout_of_same_amount_is_duplicate(engine, ledger, creator):
    ledger.add_statement("st-3", creator, 7000)
    first = engine.orchestrator.request_payout(creator, ["st-1"])
    assert first.status == "COMPLETED"

    with pytest.raises(DuplicatePayoutError):
        engine.orchestrator.request_payout(creator, ["st-3"])


def test_concurrent_requests_single_in_flight(deferred_engine, ledger, creator):
    ledger.add_statement("st-3", creator, 6000)
    barrier = threading.Barrier(2)

    def attempt(statement_id):
        barrier.wait()
        try:
            return deferred_engine.orchestrator.request_payout(creator, [statement_id])
        except DuplicatePayoutError as exc:
            return exc

    with ThreadPoolExecutor(max_workers=2) as pool:
        results = list(pool.map(attempt, ["st-1", "st-3"]))

    payouts = [r for r in results if not isinstance(r, Exception)]
    rejected = [r for r in results if isinstance(r, DuplicatePayoutError)]
    assert len(payouts) == 1
    assert len(rejected) == 1
    assert len(ledger.payouts) == 1


def test_permanent_failure_restores_balance(engine, ledger, provider, creator):
    failed_events = []
    engine.events.subscribe(PayoutFailed, failed_events.append)
    before = engine.orchestrator.get_balance(creator).available_cents

    provider.fail_next("account_closed", http_status=400)
    payout = engine.orchestrator.request_payout(creator, ["st-1"])

    assert payout.status == "FAILED"
    assert payout.failure_reason == payout_errors.DESTINATION_ACCOUNT_CLOSED
    assert "closed" in payout.failure_message
    assert "account_closed" not in payout.failure_message
    assert not ledger.statements["st-1"].paid
    assert engine.orchestrator.get_balance(creator).available_cents == before
    assert failed_events[0].failure_reason == payout_errors.DESTINATION_ACCOUNT_CLOSED
    assert payout.attempts[0].response_code == "account_closed"


def test_failed_payout_does_not_block_fresh_request(engine, ledger, provider, creator):
    provider.fail_next("account_restricted", http_status=400)
    failed = engine.orchestrator.request_payout(creator, ["st-1"])
    assert failed.status == "FAILED"

    retried = engine.orchestrator.request_payout(creator, ["st-1"])
    assert retried.id != failed.id
    assert retried.status == "COMPLETED"
    assert retried.idempotency_key == f"{failed.idempotency_key}:1"
    assert provider.transfers_created == 1


def test_missing_provider_account_fails_after_reservation(engine, ledger, monkeypatch, creator):
    original = ledger.get_account_status
    calls = {"n": 0}

    # account disconnected between the eligibility check and submission
    def disconnected_after_first_read(creator_id):
        calls["n"] += 1
        account = original(creator_id)
        return account if calls["n"] == 1 else replace(account, provider_account_ref=None)

    monkeypatch.setattr(ledger, "get_account_status", disconnected_after_first_read)
    failed = engine.orchestrator.request_payout(creator, ["st-1"])

    assert failed.status == "FAILED"
    assert failed.failure_reason == payout_errors.MISSING_PROVIDER_ACCOUNT
    assert engine.orchestrator.get_balance(creator).available_cents == 10000


def test_get_payout_status_not_found(engine):
    with pytest.raises(PayoutNotFoundError):
        engine.orchestrator.get_payout_status(uuid.uuid4())


def test_list_payouts_newest_first(engine, ledger, provider, clock, creator):
    provider.fail_next("account_closed", http_status=400)
    first = engine.orchestrator.request_payout(creator, ["st-1"])
    clock.advance(minutes=10)
    second = engine.orchestrator.request_payout(creator, ["st-1"])
    assert [p.id for p in engine.orchestrator.list_payouts(creator)] == [second.id, first.id]
    assert engine.orchestrator.list_payouts("nobody") == []
