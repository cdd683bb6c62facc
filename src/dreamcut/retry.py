from __future__ import annotations

import random
from dataclasses import dataclass
from typing import Callable, Optional


def exponential_backoff(
    base: float = 0.5,
    factor: float = 2.0,
    jitter: float = 0.1,
    max_backoff: float = 30.0,
    rng: Optional[Callable[[], float]] = None,
) -> Callable[[int], float]:
    """Return a function that computes the delay after failed attempt N (1-based).

    Deterministic when `jitter` is 0.0; otherwise adds uniform jitter in
    +/- jitter*delay. Attempt 0 (never tried) has no delay.
    """

    draw = rng or random.random

    def _delay(attempt: int) -> float:
        if attempt <= 0:
            return 0.0
        delay = base * (factor ** (attempt - 1))
        delay = min(delay, max_backoff)
        if jitter and jitter > 0:
            delta = (draw() * 2 - 1) * jitter * delay
            delay = max(0.0, delay + delta)
        return delay

    return _delay


@dataclass(frozen=True)
class BackoffPolicy:
    base_s: float = 0.5
    factor: float = 2.0
    jitter: float = 0.1
    max_s: float = 30.0

    def delay_for(self, attempt: int) -> float:
        return exponential_backoff(self.base_s, self.factor, self.jitter, self.max_s)(attempt)

    @classmethod
    def none(cls) -> "BackoffPolicy":
        return cls(base_s=0.0, jitter=0.0, max_s=0.0)


__all__ = ["exponential_backoff", "BackoffPolicy"]
