
# tests/conftest.py

import random
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, List, Tuple

import pytest
from fastapi.testclient import TestClient

from app.payouts.engine import PayoutEngine, build_engine
from app.payouts.memory import InMemoryLedger
from app.providers.mock import MockTransferProvider
from app.workers.pool import InlineDispatcher
from services import metrics
from settings import Settings


BASE_SETTINGS = {
    "ENV": "dev",
    "PAYOUT_STORE": "memory",
    "PAYOUT_PROVIDER": "mock",
    "PAYOUT_CURRENCY": "usd",
    "PAYOUT_MIN_THRESHOLD_CENTS": 5000,
    "PAYOUT_RESERVE_PERCENTAGE": 0.0,
    "PAYOUT_IDEMPOTENCY_BUCKET_SECONDS": 300,
    "PAYOUT_DEDUPE_WINDOW_SECONDS": 300,
    "PAYOUT_MAX_RETRIES": 3,
    "PAYOUT_RETRY_BASE_DELAY_S": 60,
    "PAYOUT_RETRY_MAX_DELAY_S": 3600,
    "PAYOUT_RETRY_MULTIPLIER": 2.0,
    "PAYOUT_RETRY_JITTER_FRACTION": 0.1,
    "PAYOUT_UNMAPPED_ERROR_MAX_ATTEMPTS": 2,
    "RECONCILE_STALENESS_SECONDS": 900,
}


class ManualClock:
    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2026, 3, 2, 12, 0, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class DeferredDispatcher:
    """Holds submissions until the test runs them, to observe RESERVED."""

    def __init__(self):
        self.pending: List[Tuple[Callable[..., Any], tuple]] = []

    def submit(self, fn, *args):
        self.pending.append((fn, args))

    def run_all(self) -> list:
        results = []
        while self.pending:
            fn, args = self.pending.pop(0)
            results.append(fn(*args))
        return results

    def shutdown(self, wait: bool = True) -> None:
        return None


def make_settings(**overrides) -> Settings:
    return Settings(_env_file=None, **{**BASE_SETTINGS, **overrides})


@pytest.fixture(autouse=True)
def _reset_metrics():
    metrics.reset()
    yield
    metrics.reset()


@pytest.fixture()
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture()
def ledger() -> InMemoryLedger:
    return InMemoryLedger()


@pytest.fixture()
def provider() -> MockTransferProvider:
    return MockTransferProvider()


@pytest.fixture()
def make_engine(ledger, provider, clock):
    built: List[PayoutEngine] = []

    def _make(dispatcher=None, **overrides) -> PayoutEngine:
        engine = build_engine(
            make_settings(**overrides),
            repo=ledger,
            accounts=ledger,
            statements=ledger,
            provider=provider,
            clock=clock,
            rng=random.Random(7),
            dispatcher=dispatcher or InlineDispatcher(),
            async_events=False,
        )
        built.append(engine)
        return engine

    yield _make
    for engine in built:
        engine.shutdown()


@pytest.fixture()
def engine(make_engine) -> PayoutEngine:
    return make_engine()


@pytest.fixture()
def dispatcher() -> DeferredDispatcher:
    return DeferredDispatcher()


@pytest.fixture()
def deferred_engine(make_engine, dispatcher) -> PayoutEngine:
    return make_engine(dispatcher=dispatcher)


@pytest.fixture()
def creator(ledger) -> str:
    """Onboarded creator with 10,000 in finalized, unpaid statements."""
    ledger.add_account("creator-1")
    ledger.add_statement("st-1", "creator-1", 7000)
    ledger.add_statement("st-2", "creator-1", 3000)
    return "creator-1"


@pytest.fixture()
def client(engine) -> TestClient:
    from main import create_app

    # raise_server_exceptions=False so tests can assert 500s
    return TestClient(create_app(engine=engine), raise_server_exceptions=False)
