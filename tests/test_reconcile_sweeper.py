from datetime import timedelta

from app.payouts import errors as payout_errors
from services import metrics

STALENESS = timedelta(seconds=900)


def _submitted_with_ref(engine, ledger, provider, clock, creator, statement_ids=("st-1",)):
    """A payout the provider accepted but whose confirmation never landed locally."""
    payout = engine.orchestrator.request_payout(creator, list(statement_ids))
    resp = provider.create_transfer(
        destination=f"acct_{creator}",
        amount_cents=payout.amount_cents,
        currency=payout.currency,
        idempotency_key=payout.idempotency_key,
        metadata={"payout_id": str(payout.id)},
    )
    ledger.update_status(
        None,
        payout_id=payout.id,
        from_status="RESERVED",
        new_status="SUBMITTED",
        now=clock.now,
        provider_ref=resp.provider_ref,
    )
    return payout, resp.provider_ref


def test_crash_after_provider_accepts_completes_without_duplicate(deferred_engine, ledger, provider, clock, creator):
    payout = deferred_engine.orchestrator.request_payout(creator, ["st-1", "st-2"])
    assert payout.status == "RESERVED"

    # the worker marked it SUBMITTED and the provider created the transfer,
    # then the process died before recording the result
    ledger.update_status(
        None, payout_id=payout.id, from_status="RESERVED", new_status="SUBMITTED", now=clock.now
    )
    provider.create_transfer(
        destination=f"acct_{creator}",
        amount_cents=payout.amount_cents,
        currency=payout.currency,
        idempotency_key=payout.idempotency_key,
        metadata={"payout_id": str(payout.id)},
    )

    clock.advance(seconds=1000)
    corrected = deferred_engine.sweeper.sweep(STALENESS)

    assert [c.payout_id for c in corrected] == [payout.id]
    assert corrected[0].from_status == "SUBMITTED"
    assert corrected[0].to_status == "COMPLETED"
    done = deferred_engine.orchestrator.get_payout_status(payout.id)
    assert done.status == "COMPLETED"
    assert provider.transfers_created == 1
    assert ledger.statements["st-1"].paid and ledger.statements["st-2"].paid


def test_paid_transfer_is_completed(deferred_engine, ledger, provider, clock, creator):
    payout, ref = _submitted_with_ref(deferred_engine, ledger, provider, clock, creator)
    clock.advance(seconds=1000)

    corrected = deferred_engine.sweeper.sweep(STALENESS)

    assert len(corrected) == 1
    assert corrected[0].action == "completed"
    assert corrected[0].provider_ref == ref
    assert provider.create_calls == 1
    assert metrics.get_counter("reconcile_corrections_total", {"result": "completed"}) == 1


def test_failed_transfer_fails_payout_and_restores_balance(deferred_engine, ledger, provider, clock, creator):
    payout, ref = _submitted_with_ref(deferred_engine, ledger, provider, clock, creator)
    provider.set_transfer_status(ref, "failed", failure_code="account_closed")
    clock.advance(seconds=1000)

    corrected = deferred_engine.sweeper.sweep(STALENESS)

    assert corrected[0].action == "failed"
    failed = deferred_engine.orchestrator.get_payout_status(payout.id)
    assert failed.status == "FAILED"
    assert failed.failure_reason == payout_errors.DESTINATION_ACCOUNT_CLOSED
    assert not ledger.statements["st-1"].paid
    assert deferred_engine.orchestrator.get_balance(creator).available_cents == 10000


def test_reversed_transfer_is_a_failure(deferred_engine, ledger, provider, clock, creator):
    payout, ref = _submitted_with_ref(deferred_engine, ledger, provider, clock, creator)
    provider.set_transfer_status(ref, "reversed")
    clock.advance(seconds=1000)

    deferred_engine.sweeper.sweep(STALENESS)

    failed = deferred_engine.orchestrator.get_payout_status(payout.id)
    assert failed.failure_reason == payout_errors.TRANSFER_REVERSED


def test_pending_transfer_is_left_in_flight(deferred_engine, ledger, provider, clock, creator):
    payout, ref = _submitted_with_ref(deferred_engine, ledger, provider, clock, creator)
    provider.set_transfer_status(ref, "in_transit")
    clock.advance(seconds=1000)

    assert deferred_engine.sweeper.sweep(STALENESS) == []
    assert deferred_engine.orchestrator.get_payout_status(payout.id).status == "SUBMITTED"


def test_unknown_provider_reference_is_reported_not_guessed(deferred_engine, ledger, clock, creator):
    payout = deferred_engine.orchestrator.request_payout(creator, ["st-1"])
    ledger.update_status(
        None,
        payout_id=payout.id,
        from_status="RESERVED",
        new_status="SUBMITTED",
        now=clock.now,
        provider_ref="tr_does_not_exist",
    )
    clock.advance(seconds=1000)

    assert deferred_engine.sweeper.sweep(STALENESS) == []

    mismatches = deferred_engine.sweeper.last_mismatches
    assert [m.payout_id for m in mismatches] == [payout.id]
    assert mismatches[0].provider_ref == "tr_does_not_exist"
    assert deferred_engine.orchestrator.get_payout_status(payout.id).status == "SUBMITTED"
    assert metrics.get_counter("reconcile_corrections_total", {"result": "mismatch"}) == 1


def test_stale_reserved_payout_is_submitted(deferred_engine, provider, clock, creator):
    payout = deferred_engine.orchestrator.request_payout(creator, ["st-1"])
    clock.advance(seconds=1000)

    corrected = deferred_engine.sweeper.sweep(STALENESS)

    assert corrected[0].from_status == "RESERVED"
    assert corrected[0].to_status == "COMPLETED"
    assert provider.transfers_created == 1


def test_fresh_payouts_are_not_touched(deferred_engine, provider, clock, creator):
    payout = deferred_engine.orchestrator.request_payout(creator, ["st-1"])
    clock.advance(seconds=60)

    assert deferred_engine.sweeper.sweep(STALENESS) == []
    assert deferred_engine.orchestrator.get_payout_status(payout.id).status == "RESERVED"
    assert provider.create_calls == 0


def test_retry_not_yet_due_is_left_to_the_scheduler(deferred_engine, ledger, provider, clock, creator):
    payout = deferred_engine.orchestrator.request_payout(creator, ["st-1"])
    ledger.update_status(
        None,
        payout_id=payout.id,
        from_status="RESERVED",
        new_status="RETRY_SCHEDULED",
        now=clock.now,
        next_retry_at=clock.now + timedelta(hours=2),
    )
    clock.advance(seconds=1000)

    assert deferred_engine.sweeper.sweep(STALENESS) == []
    assert provider.create_calls == 0


def test_transfer_accepted_as_pending_waits_for_the_provider(engine, ledger, provider, clock, creator):
    provider.initial_status = "pending"
    payout = engine.orchestrator.request_payout(creator, ["st-1"])

    submitted = engine.orchestrator.get_payout_status(payout.id)
    assert submitted.status == "SUBMITTED"
    assert submitted.provider_ref is not None
    assert [a.outcome for a in submitted.attempts] == ["pending"]
    assert not ledger.statements["st-1"].paid

    provider.set_transfer_status(submitted.provider_ref, "failed")
    clock.advance(seconds=1000)
    corrected = engine.sweeper.sweep(STALENESS)

    assert [c.action for c in corrected] == ["failed"]
    failed = engine.orchestrator.get_payout_status(payout.id)
    assert failed.status == "FAILED"
    assert failed.failure_reason == payout_errors.TRANSFER_FAILED
    assert not ledger.statements["st-1"].paid
    assert engine.orchestrator.get_balance(creator).available_cents == 10000
    assert provider.transfers_created == 1


def test_transfer_accepted_as_pending_completes_once_paid(engine, ledger, provider, clock, creator):
    provider.initial_status = "processing"
    payout = engine.orchestrator.request_payout(creator, ["st-1", "st-2"])
    ref = engine.orchestrator.get_payout_status(payout.id).provider_ref

    clock.advance(seconds=1000)
    assert engine.sweeper.sweep(STALENESS) == []

    provider.set_transfer_status(ref, "paid")
    clock.advance(seconds=1000)
    engine.sweeper.sweep(STALENESS)

    done = engine.orchestrator.get_payout_status(payout.id)
    assert done.status == "COMPLETED"
    assert done.provider_ref == ref
    assert ledger.statements["st-1"].paid and ledger.statements["st-2"].paid


def test_stale_rows_are_claimed_once_until_they_go_stale_again(deferred_engine, ledger, clock, creator):
    payout = deferred_engine.orchestrator.request_payout(creator, ["st-1"])
    clock.advance(seconds=1000)
    older_than = clock.now - STALENESS

    with ledger.atomic() as tx:
        first = ledger.claim_stale(tx, statuses=("RESERVED",), older_than=older_than, limit=10, now=clock.now)
    with ledger.atomic() as tx:
        second = ledger.claim_stale(tx, statuses=("RESERVED",), older_than=older_than, limit=10, now=clock.now)

    assert [p.id for p in first] == [payout.id]
    assert second == []
    assert deferred_engine.orchestrator.get_payout_status(payout.id).updated_at == clock.now
