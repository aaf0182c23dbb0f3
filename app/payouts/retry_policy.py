from __future__ import annotations

import random
from dataclasses import dataclass, field


@dataclass(frozen=True)
class RetryPolicy:
    max_retries: int = 3
    base_delay_s: float = 60.0
    max_delay_s: float = 3600.0
    multiplier: float = 2.0
    jitter_fraction: float = 0.1
    rng: random.Random = field(default_factory=random.Random, compare=False, repr=False)

    def base_delay_for(self, attempt_number: int) -> float:
        """Capped exponential delay, before jitter. attempt_number is 0-based."""
        exp = self.base_delay_s * (self.multiplier ** max(0, int(attempt_number)))
        return min(self.max_delay_s, exp)

    def delay_for(self, attempt_number: int) -> float:
        # 60, 120, 240, ... capped, plus up to jitter_fraction of the delay
        delay = self.base_delay_for(attempt_number)
        jitter = self.rng.uniform(0, self.jitter_fraction * delay) if self.jitter_fraction > 0 else 0.0
        return delay + jitter

    def exhausted(self, retry_count: int) -> bool:
        return int(retry_count) >= self.max_retries
