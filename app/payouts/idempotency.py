from __future__ import annotations

import hashlib
import json
from datetime import datetime
from typing import Any, Iterable

KEY_PREFIX = "po_"


def request_hash(payload: dict[str, Any]) -> str:
    raw = json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()


def time_bucket(now: datetime, bucket_seconds: int) -> int:
    return int(now.timestamp()) // max(1, int(bucket_seconds))


def payout_idempotency_key(
    *,
    creator_id: str,
    statement_ids: Iterable[str],
    amount_cents: int,
    now: datetime,
    bucket_seconds: int,
) -> str:
    """
    Deterministic key for one logical payout request.

    Same creator, same statements (any order), same amount and same time
    bucket always produce the same key.
    """
    payload = {
        "creator_id": str(creator_id),
        "statement_ids": sorted(str(s) for s in statement_ids),
        "amount_cents": int(amount_cents),
        "bucket": time_bucket(now, bucket_seconds),
    }
    return KEY_PREFIX + request_hash(payload)[:40]


def generation_key(base_key: str, generation: int) -> str:
    """
    Key for a fresh request after earlier payouts with ``base_key`` FAILED.
    Generation 0 is the base key itself.
    """
    if generation <= 0:
        return base_key
    return f"{base_key}:{generation}"
