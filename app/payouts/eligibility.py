from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Optional, Sequence

from app.payouts.collaborators import AccountDirectory, StatementSource
from app.payouts.model import (
    STANDING_LOCKED,
    STANDING_SUSPENDED,
    AccountStatus,
    RoyaltyStatement,
)

# Reason codes
PROVIDER_ACCOUNT_MISSING = "PROVIDER_ACCOUNT_MISSING"
ONBOARDING_INCOMPLETE = "ONBOARDING_INCOMPLETE"
TRANSFERS_DISABLED = "TRANSFERS_DISABLED"
ACCOUNT_LOCKED = "ACCOUNT_LOCKED"
ACCOUNT_SUSPENDED = "ACCOUNT_SUSPENDED"
STATEMENT_DISPUTED = "STATEMENT_DISPUTED"
VERIFICATION_INCOMPLETE = "VERIFICATION_INCOMPLETE"


@dataclass(frozen=True)
class Reason:
    code: str
    message: str


@dataclass(frozen=True)
class EligibilityResult:
    creator_id: str
    eligible: bool
    reasons: tuple[Reason, ...] = ()

    @property
    def reason_codes(self) -> list[str]:
        return [r.code for r in self.reasons]


def _check_provider_account(account: Optional[AccountStatus]) -> list[Reason]:
    if account is None or not (account.provider_account_ref or "").strip():
        return [Reason(PROVIDER_ACCOUNT_MISSING, "No payout account is connected.")]
    if not account.onboarded:
        return [Reason(ONBOARDING_INCOMPLETE, "Payout account onboarding is not complete.")]
    return []


def _check_capability(account: Optional[AccountStatus]) -> list[Reason]:
    if account is not None and not account.capable:
        return [Reason(TRANSFERS_DISABLED, "Transfers are not enabled on the payout account.")]
    return []


def _check_standing(account: Optional[AccountStatus]) -> list[Reason]:
    if account is None:
        return []
    standing = (account.standing or "").strip().lower()
    if standing == STANDING_LOCKED:
        return [Reason(ACCOUNT_LOCKED, "The account is locked.")]
    if standing == STANDING_SUSPENDED:
        return [Reason(ACCOUNT_SUSPENDED, "The account is suspended.")]
    return []


def _check_disputes(statements: Sequence[RoyaltyStatement]) -> list[Reason]:
    return [
        Reason(STATEMENT_DISPUTED, f"Statement {s.id} has an unresolved dispute.")
        for s in statements
        if s.disputed
    ]


def _check_verification(account: Optional[AccountStatus]) -> list[Reason]:
    if account is not None and not account.verified:
        return [Reason(VERIFICATION_INCOMPLETE, "Identity verification is not complete.")]
    return []


class EligibilityChecker:
    """
    Side-effect free. Every check runs; the result lists every failing
    reason so the creator can fix all of them at once.
    """

    def __init__(self, accounts: AccountDirectory, statements: StatementSource):
        self.accounts = accounts
        self.statements = statements

    def check_eligibility(
        self,
        creator_id: str,
        statement_ids: Optional[Iterable[str]] = None,
    ) -> EligibilityResult:
        account = self.accounts.get_account_status(creator_id)
        if statement_ids is None:
            to_pay = self.statements.get_unpaid_statements(creator_id)
        else:
            to_pay = self.statements.get_statements(list(statement_ids))

        reasons: list[Reason] = []
        reasons += _check_provider_account(account)
        reasons += _check_capability(account)
        reasons += _check_standing(account)
        reasons += _check_disputes(to_pay)
        reasons += _check_verification(account)

        return EligibilityResult(creator_id=creator_id, eligible=not reasons, reasons=tuple(reasons))

    def check_eligibility_batch(self, creator_ids: Iterable[str]) -> dict[str, EligibilityResult]:
        results: dict[str, EligibilityResult] = {}
        for creator_id in creator_ids:
            if creator_id in results:
                continue
            results[creator_id] = self.check_eligibility(creator_id)
        return results
