"""
Transfer Client: the only code that talks to the payment provider.

Classification is a pure lookup on provider error codes. Anything it does
not recognise is treated as retryable but flagged ``unmapped`` so the
caller can cap how often it is retried.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional
from uuid import UUID

from app.payouts import errors as payout_errors
from app.payouts.errors import ProviderPermanentError, ProviderTransientError
from app.providers.base import ProviderCallError, ProviderResponse, TransferProvider, TransferStatus
from app.providers.http import is_retryable_http

logger = logging.getLogger("payouts.provider")

RETRYABLE_CODES = frozenset({
    "rate_limit",
    "rate_limited",
    "too_many_requests",
    "timeout",
    "network_error",
    "lock_timeout",
    "api_connection_error",
    "api_error",
    "provider_unavailable",
    "service_unavailable",
    "insufficient_platform_funds",
    "balance_insufficient",
})

PERMANENT_CODES = {
    "account_closed": payout_errors.DESTINATION_ACCOUNT_CLOSED,
    "destination_closed": payout_errors.DESTINATION_ACCOUNT_CLOSED,
    "account_restricted": payout_errors.DESTINATION_ACCOUNT_RESTRICTED,
    "destination_restricted": payout_errors.DESTINATION_ACCOUNT_RESTRICTED,
    "transfers_not_allowed": payout_errors.DESTINATION_ACCOUNT_RESTRICTED,
    "account_invalid": payout_errors.INVALID_DESTINATION_ACCOUNT,
    "invalid_account": payout_errors.INVALID_DESTINATION_ACCOUNT,
    "no_such_destination": payout_errors.INVALID_DESTINATION_ACCOUNT,
    "compliance_block": payout_errors.COMPLIANCE_BLOCK,
    "sanctions_block": payout_errors.COMPLIANCE_BLOCK,
}

_SUCCEEDED = frozenset({"paid", "succeeded", "success", "completed"})
_PENDING = frozenset({"pending", "in_transit", "processing", "created"})
_FAILED = frozenset({"failed", "canceled", "cancelled"})


@dataclass(frozen=True)
class Classification:
    retryable: bool
    reason: Optional[str] = None
    unmapped: bool = False


def classify_error(code: Optional[str], http_status: Optional[int] = None) -> Classification:
    c = (code or "").strip().lower()
    if c in PERMANENT_CODES:
        return Classification(retryable=False, reason=PERMANENT_CODES[c])
    if c in RETRYABLE_CODES:
        return Classification(retryable=True)
    if http_status is not None and is_retryable_http(int(http_status)):
        return Classification(retryable=True)
    return Classification(retryable=True, unmapped=True)


@dataclass(frozen=True)
class TransferResult:
    provider_ref: str
    http_status: int = 200
    status: Optional[str] = None
    settled: bool = True


@dataclass(frozen=True)
class TransferState:
    status: TransferStatus
    provider_ref: str
    failure_reason: Optional[str] = None
    raw_status: Optional[str] = None


def _failure_reason(resp: ProviderResponse) -> str:
    status = (resp.status or "").lower()
    if status == "reversed":
        return payout_errors.TRANSFER_REVERSED
    failure_code = (resp.body or {}).get("failure_code")
    if failure_code and str(failure_code).lower() in PERMANENT_CODES:
        return PERMANENT_CODES[str(failure_code).lower()]
    return payout_errors.TRANSFER_FAILED


class TransferClient:
    def __init__(self, provider: TransferProvider, *, currency: str = "usd"):
        self.provider = provider
        self.currency = currency

    def submit(
        self,
        payout_id: UUID,
        creator_account_ref: str,
        amount_cents: int,
        idempotency_key: str,
        *,
        currency: Optional[str] = None,
        metadata: Optional[dict[str, str]] = None,
    ) -> TransferResult:
        """
        Raises ProviderTransientError / ProviderPermanentError.
        The idempotency key goes on every call so a resend never duplicates.
        """
        meta = {"payout_id": str(payout_id)}
        meta.update(metadata or {})
        try:
            resp = self.provider.create_transfer(
                destination=creator_account_ref,
                amount_cents=int(amount_cents),
                currency=currency or self.currency,
                idempotency_key=idempotency_key,
                metadata=meta,
            )
        except ProviderCallError as exc:
            # the provider may still have accepted it; never a definite failure
            raise ProviderTransientError(exc.code) from exc

        if resp.ok and resp.provider_ref:
            status = (resp.status or "").lower()
            if status in _FAILED or status == "reversed":
                reason = _failure_reason(resp)
                raise ProviderPermanentError(
                    status, reason, http_status=resp.http_status, provider_ref=resp.provider_ref
                )
            # accepted but not yet settled; the sweeper polls it to a terminal state
            settled = not status or status in _SUCCEEDED
            if not settled and status not in _PENDING:
                logger.warning(
                    "unknown transfer status=%s provider_ref=%s; treating as pending",
                    status,
                    resp.provider_ref,
                )
            return TransferResult(
                provider_ref=resp.provider_ref,
                http_status=resp.http_status,
                status=status or None,
                settled=settled,
            )

        code = resp.error_code or f"http_{resp.http_status}"
        verdict = classify_error(code, resp.http_status)
        if verdict.retryable:
            if verdict.unmapped:
                logger.warning(
                    "unmapped provider error code=%s http_status=%s payout=%s",
                    code,
                    resp.http_status,
                    payout_id,
                )
            raise ProviderTransientError(
                code,
                http_status=resp.http_status,
                unmapped=verdict.unmapped,
                provider_ref=resp.provider_ref,
            )
        raise ProviderPermanentError(
            code, verdict.reason or payout_errors.PROVIDER_ERROR, http_status=resp.http_status
        )

    def query_status(self, provider_ref: str) -> TransferState:
        """Authoritative transfer state. Raises ProviderTransientError when the provider can't answer."""
        try:
            resp = self.provider.get_transfer(provider_ref)
        except ProviderCallError as exc:
            raise ProviderTransientError(exc.code, provider_ref=provider_ref) from exc

        if resp.http_status == 404:
            return TransferState(status="NOT_FOUND", provider_ref=provider_ref)
        if not (200 <= resp.http_status < 300):
            raise ProviderTransientError(
                resp.error_code or f"http_{resp.http_status}",
                http_status=resp.http_status,
                provider_ref=provider_ref,
            )

        raw = (resp.status or "").lower()
        if raw in _SUCCEEDED:
            return TransferState(status="SUCCEEDED", provider_ref=provider_ref, raw_status=raw)
        if raw in _FAILED or raw == "reversed":
            return TransferState(
                status="FAILED",
                provider_ref=provider_ref,
                failure_reason=_failure_reason(resp),
                raw_status=raw,
            )
        if raw not in _PENDING:
            logger.warning("unknown transfer status=%s provider_ref=%s; treating as pending", raw, provider_ref)
        return TransferState(status="PENDING", provider_ref=provider_ref, raw_status=raw or None)
