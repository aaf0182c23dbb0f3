# scripts/reconcile_daemon.py
from __future__ import annotations

import argparse
import logging
import signal
import threading
from datetime import timedelta

from app.payouts.engine import build_engine
from services.observability import configure_logging
from settings import settings, validate_env_settings

logger = logging.getLogger("payouts.reconcile")


def main() -> None:
    parser = argparse.ArgumentParser(description="Periodic payout reconciliation sweeper.")
    parser.add_argument("--interval", type=int, default=settings.RECONCILE_INTERVAL_SECONDS)
    parser.add_argument("--staleness", type=int, default=settings.RECONCILE_STALENESS_SECONDS)
    args = parser.parse_args()

    configure_logging()
    validate_env_settings(settings)
    engine = build_engine(settings)

    stop = threading.Event()
    signal.signal(signal.SIGTERM, lambda *_: stop.set())
    try:
        engine.sweeper.run_forever(max(1, args.interval), timedelta(seconds=args.staleness), stop)
    except KeyboardInterrupt:
        pass
    finally:
        logger.info("reconcile sweeper stopped")
        engine.shutdown()


if __name__ == "__main__":
    main()
