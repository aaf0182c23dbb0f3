from fastapi import HTTPException, Request

from app.payouts.engine import PayoutEngine


def get_engine(request: Request) -> PayoutEngine:
    engine = getattr(request.app.state, "payout_engine", None)
    if engine is None:
        raise HTTPException(status_code=503, detail="PAYOUT_ENGINE_NOT_READY")
    return engine
