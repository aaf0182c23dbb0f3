# routes/payouts.py
from __future__ import annotations

import logging
from datetime import datetime
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from app.payouts.engine import PayoutEngine
from app.payouts.errors import PayoutError
from app.payouts.model import Payout
from deps.payouts import get_engine
from services.payout_errors import raise_http_from_payout_error

logger = logging.getLogger("payouts.http")
router = APIRouter(prefix="/v1", tags=["payouts"])


class PayoutRequest(BaseModel):
    creator_id: str = Field(min_length=1)
    statement_ids: Optional[List[str]] = None
    requested_by: Optional[str] = None


class TransferAttemptItem(BaseModel):
    attempt_number: int
    outcome: str
    response_code: Optional[str] = None
    http_status: Optional[int] = None
    created_at: datetime


class PayoutItem(BaseModel):
    id: UUID
    creator_id: str
    amount_cents: int
    currency: str
    status: str
    statement_ids: List[str]
    requested_by: Optional[str] = None
    provider_ref: Optional[str] = None
    retry_count: int
    next_retry_at: Optional[datetime] = None
    failure_reason: Optional[str] = None
    failure_message: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    completed_at: Optional[datetime] = None


class PayoutDetailResponse(PayoutItem):
    attempts: List[TransferAttemptItem] = []


class PayoutListResponse(BaseModel):
    creator_id: str
    payouts: List[PayoutItem]


class BalanceResponse(BaseModel):
    creator_id: str
    total_cents: int
    available_cents: int
    pending_cents: int
    reserved_cents: int
    reserve_hold_cents: int
    minimum_threshold_cents: int


class EligibilityReasonItem(BaseModel):
    code: str
    message: str


class EligibilityResponse(BaseModel):
    creator_id: str
    eligible: bool
    reasons: List[EligibilityReasonItem]


def _payout_item(p: Payout) -> dict:
    # the idempotency key stays internal
    data = p.as_dict()
    data.pop("idempotency_key", None)
    data.pop("last_retry_at", None)
    return data


def _payout_detail(p: Payout) -> PayoutDetailResponse:
    return PayoutDetailResponse(
        **_payout_item(p),
        attempts=[
            TransferAttemptItem(
                attempt_number=a.attempt_number,
                outcome=a.outcome,
                response_code=a.response_code,
                http_status=a.http_status,
                created_at=a.created_at,
            )
            for a in p.attempts
        ],
    )


@router.post("/payouts", response_model=PayoutDetailResponse, status_code=201)
def request_payout(body: PayoutRequest, engine: PayoutEngine = Depends(get_engine)):
    try:
        payout = engine.orchestrator.request_payout(
            body.creator_id,
            statement_ids=body.statement_ids,
            requested_by=body.requested_by,
        )
    except PayoutError as exc:
        raise_http_from_payout_error(exc)
    return _payout_detail(payout)


@router.get("/payouts/{payout_id}", response_model=PayoutDetailResponse)
def get_payout(payout_id: UUID, engine: PayoutEngine = Depends(get_engine)):
    try:
        payout = engine.orchestrator.get_payout_status(payout_id)
    except PayoutError as exc:
        raise_http_from_payout_error(exc)
    return _payout_detail(payout)


@router.post("/payouts/{payout_id}/retry", response_model=PayoutDetailResponse)
def retry_payout(payout_id: UUID, engine: PayoutEngine = Depends(get_engine)):
    try:
        payout = engine.retry_scheduler.retry_now(payout_id)
    except PayoutError as exc:
        raise_http_from_payout_error(exc)
    logger.info("manual retry payout=%s status=%s", payout_id, payout.status)
    return _payout_detail(payout)


@router.get("/creators/{creator_id}/payouts", response_model=PayoutListResponse)
def list_payouts(
    creator_id: str,
    limit: int = Query(50, ge=1, le=200),
    engine: PayoutEngine = Depends(get_engine),
):
    payouts = engine.orchestrator.list_payouts(creator_id, limit=limit)
    return PayoutListResponse(creator_id=creator_id, payouts=[PayoutItem(**_payout_item(p)) for p in payouts])


@router.get("/creators/{creator_id}/balance", response_model=BalanceResponse)
def get_balance(creator_id: str, engine: PayoutEngine = Depends(get_engine)):
    b = engine.orchestrator.get_balance(creator_id)
    return BalanceResponse(
        creator_id=b.creator_id,
        total_cents=b.total_cents,
        available_cents=b.available_cents,
        pending_cents=b.pending_cents,
        reserved_cents=b.reserved_cents,
        reserve_hold_cents=b.reserve_hold_cents,
        minimum_threshold_cents=b.minimum_threshold_cents,
    )


@router.get("/creators/{creator_id}/eligibility", response_model=EligibilityResponse)
def get_eligibility(creator_id: str, engine: PayoutEngine = Depends(get_engine)):
    result = engine.orchestrator.get_eligibility(creator_id)
    return EligibilityResponse(
        creator_id=result.creator_id,
        eligible=result.eligible,
        reasons=[EligibilityReasonItem(code=r.code, message=r.message) for r in result.reasons],
    )
