# scripts/retry_worker.py
from __future__ import annotations

import argparse
import logging
import signal
import threading

from app.payouts.engine import build_engine
from services.observability import configure_logging
from settings import settings, validate_env_settings

logger = logging.getLogger("payouts.retry")


def main() -> None:
    parser = argparse.ArgumentParser(description="Process due payout retries.")
    parser.add_argument("--poll", type=int, default=settings.RETRY_POLL_SECONDS)
    parser.add_argument("--once", action="store_true", help="process one batch and exit")
    args = parser.parse_args()

    configure_logging()
    validate_env_settings(settings)
    engine = build_engine(settings)
    try:
        if args.once:
            processed = engine.retry_scheduler.process_due()
            logger.info("processed=%s", len(processed))
            return
        stop = threading.Event()
        signal.signal(signal.SIGTERM, lambda *_: stop.set())
        engine.retry_scheduler.run_forever(max(1, args.poll), stop)
    except KeyboardInterrupt:
        logger.info("retry worker interrupted")
    finally:
        engine.shutdown()


if __name__ == "__main__":
    main()
