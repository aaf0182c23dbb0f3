import logging
import uuid
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone

from app.events import EventBus, PayoutCompleted, PayoutFailed, register_audit_logger

NOW = datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)


def _completed(**overrides):
    fields = dict(
        payout_id=uuid.uuid4(),
        creator_id="creator-1",
        amount_cents=10000,
        currency="usd",
        provider_ref="tr_1",
        statement_ids=("st-1",),
        occurred_at=NOW,
    )
    fields.update(overrides)
    return PayoutCompleted(**fields)


def test_handlers_receive_only_their_event_type():
    bus = EventBus()
    completed, failed = [], []
    bus.subscribe(PayoutCompleted, completed.append)
    bus.subscribe(PayoutFailed, failed.append)

    event = _completed()
    bus.publish(event)

    assert completed == [event]
    assert failed == []


def test_failing_handler_does_not_reach_publisher_or_other_handlers(caplog):
    bus = EventBus()
    seen = []

    def broken(event):
        raise RuntimeError("notification service down")

    bus.subscribe(PayoutCompleted, broken)
    bus.subscribe(PayoutCompleted, seen.append)

    with caplog.at_level(logging.ERROR, logger="payouts.events"):
        bus.publish(_completed())

    assert len(seen) == 1
    assert "event handler failed event=PayoutCompleted" in caplog.text


def test_executor_delivery_runs_off_the_publishing_thread():
    import threading

    threads = []
    with ThreadPoolExecutor(max_workers=1) as pool:
        bus = EventBus(pool)
        bus.subscribe(PayoutCompleted, lambda e: threads.append(threading.current_thread().name))
        bus.publish(_completed())
    assert threads and threads[0] != threading.current_thread().name


def test_audit_logger_writes_one_line_per_event(caplog):
    bus = EventBus()
    register_audit_logger(bus)
    event = _completed()

    with caplog.at_level(logging.INFO, logger="payouts.events"):
        bus.publish(event)

    lines = [r.getMessage() for r in caplog.records if r.name == "payouts.events"]
    assert len(lines) == 1
    assert f"payout_id={event.payout_id}" in lines[0]
    assert "event=PayoutCompleted" in lines[0]


def test_engine_publishes_completion_after_commit(engine, ledger, creator):
    seen = []

    def check_committed(event):
        # statements are already paid when subscribers hear about it
        seen.append(ledger.statements["st-1"].paid)

    engine.events.subscribe(PayoutCompleted, check_committed)
    engine.orchestrator.request_payout(creator, ["st-1"])

    assert seen == [True]
