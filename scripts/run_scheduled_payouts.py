from __future__ import annotations

import argparse

from app.payouts.engine import build_engine
from app.workers.scheduled_payouts import run_scheduled_payouts
from services.observability import configure_logging
from settings import settings, validate_env_settings


def _read_ids(path: str) -> list[str]:
    with open(path, encoding="utf-8") as fh:
        return [line.strip() for line in fh if line.strip() and not line.startswith("#")]


def main() -> None:
    parser = argparse.ArgumentParser(description="Request payouts for every eligible creator.")
    parser.add_argument("creator_ids", nargs="*", help="creator ids to consider")
    parser.add_argument("--from-file", help="file with one creator id per line")
    args = parser.parse_args()

    creator_ids = list(args.creator_ids)
    if args.from_file:
        creator_ids += _read_ids(args.from_file)
    if not creator_ids:
        parser.error("no creator ids given")

    configure_logging()
    validate_env_settings(settings)
    engine = build_engine(settings, async_events=False)
    try:
        result = run_scheduled_payouts(engine.orchestrator, creator_ids)
    finally:
        engine.shutdown(wait=True)

    print("summary:", result.summary())
    for creator_id, payout_id in result.requested.items():
        print(f"  requested creator={creator_id} payout={payout_id}")
    for creator_id, reason in result.skipped.items():
        print(f"  skipped creator={creator_id} reason={reason}")
    for creator_id, code in result.errors.items():
        print(f"  error creator={creator_id} code={code}")


if __name__ == "__main__":
    main()
