from __future__ import annotations

import logging
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Callable, Optional

logger = logging.getLogger("payouts.orchestrator")


def _log_failure(fut: Future) -> None:
    exc = fut.exception()
    if exc is not None:
        logger.error("payout submission failed: %s", exc, exc_info=exc)


class InlineDispatcher:
    """Runs submissions on the calling thread (scripts, tests)."""

    def submit(self, fn: Callable[..., Any], *args: Any) -> Optional[Any]:
        try:
            return fn(*args)
        except Exception:
            # the payout stays in flight; retry scheduler or sweeper picks it up
            logger.exception("payout submission failed")
            return None

    def shutdown(self, wait: bool = True) -> None:
        return None


class SubmissionPool:
    """Bounded pool for provider submissions (PAYOUT_WORKER_CONCURRENCY threads)."""

    def __init__(self, max_workers: int = 2):
        self.max_workers = max(1, int(max_workers))
        self._executor = ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="payout-submit")

    def submit(self, fn: Callable[..., Any], *args: Any) -> Future:
        fut = self._executor.submit(fn, *args)
        fut.add_done_callback(_log_failure)
        return fut

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)
