from app.payouts.model import RoyaltyStatement
from app.workers.scheduled_payouts import run_scheduled_payouts, select_statements_within


def test_scheduled_run_pays_eligible_creators_and_skips_the_rest(engine, ledger, creator):
    ledger.add_account("small", provider_account_ref="acct_small")
    ledger.add_statement("st-small", "small", 1200)
    ledger.add_account("locked", standing="locked")
    ledger.add_statement("st-locked", "locked", 9000)

    result = run_scheduled_payouts(engine.orchestrator, [creator, "small", "locked"])

    assert set(result.requested) == {creator}
    assert result.skipped == {"small": "BELOW_MINIMUM_THRESHOLD", "locked": "ACCOUNT_LOCKED"}
    assert result.errors == {}
    assert result.summary() == {"requested": 1, "skipped": 2, "errors": 0}

    payout = engine.orchestrator.get_payout_status(result.requested[creator])
    assert payout.status == "COMPLETED"
    assert payout.requested_by == "scheduler"


def test_creator_with_payout_in_flight_is_reported_not_fatal(engine, provider, ledger, creator):
    ledger.add_account("creator-2")
    ledger.add_statement("st-20", "creator-2", 8000)
    ledger.add_statement("st-3", creator, 8000)
    provider.timeout_next()
    engine.orchestrator.request_payout(creator, ["st-1"])

    result = run_scheduled_payouts(engine.orchestrator, [creator, "creator-2"])

    assert result.errors == {creator: "DUPLICATE_PAYOUT"}
    assert set(result.requested) == {"creator-2"}


def test_reserve_hold_pays_the_statements_that_fit(make_engine, ledger, creator):
    engine = make_engine(PAYOUT_RESERVE_PERCENTAGE=0.1)
    assert engine.orchestrator.get_balance(creator).available_cents == 9000

    result = run_scheduled_payouts(engine.orchestrator, [creator])

    assert result.errors == {}
    payout = engine.orchestrator.get_payout_status(result.requested[creator])
    assert payout.status == "COMPLETED"
    assert payout.amount_cents == 7000
    assert payout.statement_ids == ("st-1",)
    assert ledger.statements["st-1"].paid
    assert not ledger.statements["st-2"].paid


def test_no_statement_set_within_available_is_skipped(make_engine, ledger):
    ledger.add_account("creator-9")
    ledger.add_statement("st-90", "creator-9", 6000)
    ledger.add_statement("st-91", "creator-9", 800)
    engine = make_engine(PAYOUT_RESERVE_PERCENTAGE=0.2)

    # 6800 total, 1360 held back: 5440 available, above the minimum, yet only st-91 fits
    result = run_scheduled_payouts(engine.orchestrator, ["creator-9"])

    assert result.skipped == {"creator-9": "BELOW_MINIMUM_THRESHOLD"}
    assert result.requested == {}


def test_select_statements_within_keeps_source_order():
    statements = [
        RoyaltyStatement("a", "c", 4000),
        RoyaltyStatement("b", "c", 5000),
        RoyaltyStatement("c", "c", 3000, disputed=True),
        RoyaltyStatement("d", "c", 2000),
    ]

    picked = select_statements_within(statements, 7000)

    assert [s.id for s in picked] == ["a", "d"]
