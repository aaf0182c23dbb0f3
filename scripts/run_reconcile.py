from __future__ import annotations

import argparse
from datetime import timedelta

from app.payouts.engine import build_engine
from services.observability import configure_logging
from settings import settings, validate_env_settings


def main() -> None:
    parser = argparse.ArgumentParser(description="Run one payout reconciliation sweep.")
    parser.add_argument("--stale-minutes", type=int, default=settings.RECONCILE_STALENESS_SECONDS // 60)
    args = parser.parse_args()

    configure_logging()
    validate_env_settings(settings)
    engine = build_engine(settings, async_events=False)
    try:
        corrected = engine.sweeper.sweep(timedelta(minutes=args.stale_minutes))
    finally:
        engine.shutdown()

    print("corrected:", len(corrected))
    for item in corrected:
        print(
            f"  payout={item.payout_id} creator={item.creator_id}",
            f"{item.from_status}->{item.to_status}",
            f"action={item.action}",
        )
    print("mismatches:", len(engine.sweeper.last_mismatches))
    for exc in engine.sweeper.last_mismatches:
        print(f"  payout={exc.payout_id} provider_ref={exc.provider_ref} detail={exc.detail}")


if __name__ == "__main__":
    main()
