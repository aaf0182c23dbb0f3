from datetime import datetime, timedelta, timezone

from app.payouts.idempotency import generation_key, payout_idempotency_key, time_bucket


NOW = datetime(2026, 3, 2, 12, 0, 10, tzinfo=timezone.utc)


def _key(**overrides):
    args = {
        "creator_id": "creator-1",
        "statement_ids": ["st-2", "st-1"],
        "amount_cents": 10000,
        "now": NOW,
        "bucket_seconds": 300,
    }
    args.update(overrides)
    return payout_idempotency_key(**args)


def test_key_is_deterministic_and_order_independent():
    assert _key() == _key(statement_ids=["st-1", "st-2"])
    assert _key().startswith("po_")
    assert len(_key()) == len("po_") + 40


def test_key_changes_with_inputs():
    base = _key()
    assert _key(creator_id="creator-2") != base
    assert _key(statement_ids=["st-1"]) != base
    assert _key(amount_cents=9999) != base


def test_key_stable_within_bucket_and_changes_across():
    assert _key(now=NOW + timedelta(seconds=60)) == _key()
    assert _key(now=NOW + timedelta(seconds=300)) != _key()
    assert time_bucket(NOW, 300) + 1 == time_bucket(NOW + timedelta(seconds=300), 300)


def test_generation_key():
    assert generation_key("po_abc", 0) == "po_abc"
    assert generation_key("po_abc", 2) == "po_abc:2"
