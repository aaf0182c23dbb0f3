"""
Payout error taxonomy.

Every error carries a stable ``code`` and only the fields its kind needs.
Validation errors never create a payout row; provider errors are contained
by the engine and surface to callers only through the payout's state.
"""
from __future__ import annotations

from typing import Optional, Sequence
from uuid import UUID


class PayoutError(Exception):
    code = "PAYOUT_ERROR"
    retryable = False

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class IneligibleAccountError(PayoutError):
    code = "INELIGIBLE_ACCOUNT"

    def __init__(self, reasons: Sequence):
        self.reasons = list(reasons)
        super().__init__(
            "Creator is not eligible for payout: "
            + ", ".join(r.code for r in self.reasons)
        )


class InsufficientBalanceError(PayoutError):
    code = "INSUFFICIENT_BALANCE"

    def __init__(self, requested_cents: int, available_cents: int):
        self.requested_cents = requested_cents
        self.available_cents = available_cents
        super().__init__(
            f"Requested amount {requested_cents} exceeds available balance {available_cents}"
        )


class BelowMinimumThresholdError(PayoutError):
    code = "BELOW_MINIMUM_THRESHOLD"

    def __init__(self, requested_cents: int, minimum_cents: int):
        self.requested_cents = requested_cents
        self.minimum_cents = minimum_cents
        super().__init__(
            f"Requested amount {requested_cents} is below the minimum payout of {minimum_cents}"
        )


class DuplicatePayoutError(PayoutError):
    code = "DUPLICATE_PAYOUT"

    def __init__(self, existing_payout_id: Optional[UUID], message: str = "Duplicate payout detected"):
        self.existing_payout_id = existing_payout_id
        super().__init__(message)


class StatementNotPayableError(PayoutError):
    code = "STATEMENT_NOT_PAYABLE"

    def __init__(self, statement_ids: Sequence[str], detail: str):
        self.statement_ids = list(statement_ids)
        self.detail = detail
        super().__init__(f"{detail}: {', '.join(self.statement_ids)}")


class PayoutNotFoundError(PayoutError):
    code = "PAYOUT_NOT_FOUND"

    def __init__(self, payout_id):
        self.payout_id = payout_id
        super().__init__(f"Payout not found: {payout_id}")


class PayoutNotRetryableError(PayoutError):
    code = "PAYOUT_NOT_RETRYABLE"

    def __init__(self, payout_id, status: str):
        self.payout_id = payout_id
        self.status = status
        super().__init__(f"Cannot retry payout with status: {status}")


class ProviderTransientError(PayoutError):
    code = "PROVIDER_TRANSIENT"
    retryable = True

    def __init__(
        self,
        provider_code: str,
        *,
        http_status: Optional[int] = None,
        unmapped: bool = False,
        provider_ref: Optional[str] = None,
    ):
        self.provider_code = provider_code
        self.http_status = http_status
        self.unmapped = unmapped
        self.provider_ref = provider_ref
        super().__init__(f"Transient provider error: {provider_code}")


class ProviderPermanentError(PayoutError):
    code = "PROVIDER_PERMANENT"

    def __init__(
        self,
        provider_code: str,
        reason: str,
        *,
        http_status: Optional[int] = None,
        provider_ref: Optional[str] = None,
    ):
        self.provider_code = provider_code
        self.reason = reason
        self.http_status = http_status
        self.provider_ref = provider_ref
        super().__init__(f"Permanent provider error: {provider_code} ({reason})")


class ReconciliationMismatchError(PayoutError):
    code = "RECONCILIATION_MISMATCH"

    def __init__(self, payout_id, provider_ref: Optional[str], detail: str):
        self.payout_id = payout_id
        self.provider_ref = provider_ref
        self.detail = detail
        super().__init__(f"Reconciliation mismatch for payout {payout_id}: {detail}")


# Failure reasons shown to end users. Raw provider codes never leave the attempt log.
RETRIES_EXHAUSTED = "retries_exhausted"
DESTINATION_ACCOUNT_CLOSED = "destination_account_closed"
DESTINATION_ACCOUNT_RESTRICTED = "destination_account_restricted"
INVALID_DESTINATION_ACCOUNT = "invalid_destination_account"
COMPLIANCE_BLOCK = "compliance_block"
TRANSFER_REVERSED = "transfer_reversed"
TRANSFER_FAILED = "transfer_failed"
PROVIDER_ERROR = "provider_error"
MISSING_PROVIDER_ACCOUNT = "missing_provider_account"

FAILURE_MESSAGES = {
    RETRIES_EXHAUSTED: "The payment provider was unavailable. Your balance has been restored; please try again later.",
    DESTINATION_ACCOUNT_CLOSED: "Your payout account is closed. Connect a new payout account to receive funds.",
    DESTINATION_ACCOUNT_RESTRICTED: "Your payout account is restricted. Resolve the restriction with the payment provider.",
    INVALID_DESTINATION_ACCOUNT: "Your payout account details are invalid. Reconnect your payout account.",
    COMPLIANCE_BLOCK: "This payout was blocked by a compliance review. Contact support.",
    TRANSFER_REVERSED: "The transfer was reversed by the payment provider. Your balance has been restored.",
    TRANSFER_FAILED: "The transfer could not be completed. Your balance has been restored.",
    PROVIDER_ERROR: "The payment provider rejected the transfer. Your balance has been restored; contact support if this persists.",
    MISSING_PROVIDER_ACCOUNT: "No payout account is connected.",
}


def failure_message(reason: str) -> str:
    return FAILURE_MESSAGES.get(reason, FAILURE_MESSAGES[TRANSFER_FAILED])
