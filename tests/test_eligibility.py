from app.payouts import eligibility
from app.payouts.eligibility import EligibilityChecker


def test_eligible_creator(ledger, creator):
    result = EligibilityChecker(ledger, ledger).check_eligibility(creator)
    assert result.eligible
    assert result.reasons == ()


def test_missing_account_reports_every_reason(ledger):
    ledger.add_statement("st-x", "ghost", 9000, disputed=True)
    result = EligibilityChecker(ledger, ledger).check_eligibility("ghost")
    assert not result.eligible
    assert result.reason_codes == [
        eligibility.PROVIDER_ACCOUNT_MISSING,
        eligibility.STATEMENT_DISPUTED,
    ]


def test_all_failing_checks_are_aggregated(ledger):
    ledger.add_account(
        "creator-bad",
        onboarded=False,
        capable=False,
        standing="suspended",
        verified=False,
    )
    ledger.add_statement("st-d", "creator-bad", 6000, disputed=True)
    result = EligibilityChecker(ledger, ledger).check_eligibility("creator-bad")
    assert set(result.reason_codes) == {
        eligibility.ONBOARDING_INCOMPLETE,
        eligibility.TRANSFERS_DISABLED,
        eligibility.ACCOUNT_SUSPENDED,
        eligibility.STATEMENT_DISPUTED,
        eligibility.VERIFICATION_INCOMPLETE,
    }


def test_dispute_only_counts_for_selected_statements(ledger, creator):
    ledger.add_statement("st-disputed", creator, 2000, disputed=True)
    checker = EligibilityChecker(ledger, ledger)
    assert not checker.check_eligibility(creator).eligible
    assert checker.check_eligibility(creator, ["st-1"]).eligible


def test_batch_evaluation(ledger, creator):
    ledger.add_account("creator-locked", standing="locked")
    results = EligibilityChecker(ledger, ledger).check_eligibility_batch([creator, "creator-locked", creator])
    assert set(results) == {creator, "creator-locked"}
    assert results[creator].eligible
    assert results["creator-locked"].reason_codes == [eligibility.ACCOUNT_LOCKED]
