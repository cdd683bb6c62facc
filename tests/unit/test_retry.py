from __future__ import annotations

import pytest

from dreamcut.retry import BackoffPolicy, exponential_backoff


def test_exponential_growth_is_capped() -> None:
    delay = exponential_backoff(base=0.5, factor=2.0, jitter=0.0, max_backoff=3.0)
    assert [delay(n) for n in range(6)] == [0.0, 0.5, 1.0, 2.0, 3.0, 3.0]


def test_jitter_stays_within_bounds() -> None:
    low = exponential_backoff(base=1.0, jitter=0.1, rng=lambda: 0.0)
    high = exponential_backoff(base=1.0, jitter=0.1, rng=lambda: 1.0)
    assert low(1) == pytest.approx(0.9)
    assert high(1) == pytest.approx(1.1)


def test_policy_none_never_waits() -> None:
    policy = BackoffPolicy.none()
    assert all(policy.delay_for(n) == 0.0 for n in range(1, 5))
    assert BackoffPolicy(base_s=2.0, jitter=0.0).delay_for(2) == 4.0
