#main.py
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from app.payouts.engine import PayoutEngine, build_engine
from db import close_pool
from middleware import RequestContextMiddleware
from routes.health import router as health_router
from routes.metrics import router as metrics_router
from routes.payouts import router as payouts_router
from services.observability import configure_logging
from settings import Settings, settings, validate_env_settings

logger = logging.getLogger("payouts.http")


def create_app(engine: Optional[PayoutEngine] = None, s: Optional[Settings] = None) -> FastAPI:
    s = s or settings

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned = False
        if getattr(app.state, "payout_engine", None) is None:
            configure_logging()
            validate_env_settings(s)
            app.state.payout_engine = build_engine(s)
            owned = True
        try:
            yield
        finally:
            if owned:
                app.state.payout_engine.shutdown(wait=False)
                if s.PAYOUT_STORE == "postgres":
                    close_pool()

    app = FastAPI(title="Creator Payout Engine", version="1.0.0", lifespan=lifespan)
    app.state.payout_engine = engine

    app.add_middleware(RequestContextMiddleware)

    # -----------------------------
    # ROUTERS
    # -----------------------------
    app.include_router(health_router)
    app.include_router(metrics_router)
    app.include_router(payouts_router)

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.exception("unhandled error path=%s", request.url.path)
        return JSONResponse(
            status_code=500,
            content={"detail": "Internal server error"},
        )

    return app


app = create_app()
