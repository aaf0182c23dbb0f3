# routes/health.py
from __future__ import annotations

import os
from typing import Any

from fastapi import APIRouter, Request

from app.payouts.memory import InMemoryLedger

router = APIRouter(tags=["health"])

MIGRATION_REVISION = "0001_payout_engine_baseline"


def _database_status() -> dict[str, Any]:
    """Connectivity plus the applied alembic revision, in one round trip."""
    from db import get_conn

    try:
        with get_conn() as conn:
            with conn.cursor() as cur:
                cur.execute("SELECT to_regclass('public.alembic_version') IS NOT NULL;")
                has_table = cur.fetchone()[0]
                revision = None
                if has_table:
                    cur.execute("SELECT version_num FROM alembic_version LIMIT 1;")
                    row = cur.fetchone()
                    revision = row[0] if row else None
    except Exception as exc:
        return {"db_ok": False, "db_error": type(exc).__name__, "migration_revision": None}
    return {"db_ok": True, "db_error": None, "migration_revision": revision}


@router.get("/health")
def health():
    return {
        "ok": True,
        "env": (os.getenv("ENV") or "").strip(),
        "git_sha": (os.getenv("GIT_SHA") or "").strip() or None,
    }


@router.get("/readyz")
def readyz(request: Request):
    engine = getattr(request.app.state, "payout_engine", None)
    if engine is None:
        return {"ready": False, "engine": False}
    if isinstance(engine.repo, InMemoryLedger):
        return {"ready": True, "engine": True, "store": "memory"}

    db = _database_status()
    migrations_ok = db["migration_revision"] == MIGRATION_REVISION
    return {
        "ready": db["db_ok"] and migrations_ok,
        "engine": True,
        "store": "postgres",
        "migrations_ok": migrations_ok,
        "expected_revision": MIGRATION_REVISION,
        **db,
    }
