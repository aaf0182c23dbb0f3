# services/payout_errors.py
from __future__ import annotations

from fastapi import HTTPException

from app.payouts.errors import PayoutError

PAYOUT_ERROR_HTTP_MAP: dict[str, tuple[int, str]] = {
    "INELIGIBLE_ACCOUNT": (403, "Creator is not eligible for payout"),
    "INSUFFICIENT_BALANCE": (422, "Insufficient balance"),
    "BELOW_MINIMUM_THRESHOLD": (422, "Amount below minimum payout"),
    "STATEMENT_NOT_PAYABLE": (422, "Statements not payable"),
    "DUPLICATE_PAYOUT": (409, "Duplicate payout"),
    "PAYOUT_NOT_FOUND": (404, "Payout not found"),
    "PAYOUT_NOT_RETRYABLE": (409, "Payout not retryable"),
}


def error_detail(exc: PayoutError) -> dict:
    detail: dict = {"code": exc.code, "message": PAYOUT_ERROR_HTTP_MAP[exc.code][1]}
    if exc.code == "INELIGIBLE_ACCOUNT":
        detail["reasons"] = [{"code": r.code, "message": r.message} for r in exc.reasons]
    elif exc.code == "INSUFFICIENT_BALANCE":
        detail["requested_cents"] = exc.requested_cents
        detail["available_cents"] = exc.available_cents
    elif exc.code == "BELOW_MINIMUM_THRESHOLD":
        detail["requested_cents"] = exc.requested_cents
        detail["minimum_cents"] = exc.minimum_cents
    elif exc.code == "STATEMENT_NOT_PAYABLE":
        detail["message"] = exc.detail
        detail["statement_ids"] = exc.statement_ids
    elif exc.code == "DUPLICATE_PAYOUT" and exc.existing_payout_id is not None:
        detail["existing_payout_id"] = str(exc.existing_payout_id)
    elif exc.code == "PAYOUT_NOT_RETRYABLE":
        detail["status"] = exc.status
    return detail


def raise_http_from_payout_error(exc: PayoutError) -> None:
    """
    Convert known payout errors into HTTP responses; otherwise fail closed.
    """
    if exc.code in PAYOUT_ERROR_HTTP_MAP:
        status, _ = PAYOUT_ERROR_HTTP_MAP[exc.code]
        raise HTTPException(status_code=status, detail=error_detail(exc))

    raise HTTPException(status_code=500, detail="Internal server error")
