from __future__ import annotations

import random

import allure
import pytest

from unit_pipeline.orchestrator.models import (
    JITTER_FRACTION,
    BackoffConfig,
    compute_backoff_seconds,
)

pytestmark = [
    allure.epic("Orchestration"),
    allure.feature("Retry Policy"),
]


@pytest.mark.parametrize(
    ("attempts", "expected"),
    [(0, 1.0), (1, 2.0), (2, 4.0), (5, 32.0), (6, 60.0), (20, 60.0)],
)
def test_backoff_doubles_until_capped(attempts: int, expected: float) -> None:
    config = BackoffConfig(jitter=False)

    assert compute_backoff_seconds(attempts, config) == pytest.approx(expected)


class _FixedDraw(random.Random):
    def __init__(self, value: float) -> None:
        super().__init__(0)
        self.value = value

    def random(self) -> float:
        return self.value


def test_jittered_backoff_is_non_decreasing_and_bounded() -> None:
    config = BackoffConfig(base_delay_ms=500, max_delay_ms=10_000, multiplier=3.0)
    unjittered = BackoffConfig(500, 10_000, 3.0, False)
    ceiling = config.max_delay_ms / 1000 * (1 + JITTER_FRACTION)

    for seed in range(20):
        rng = random.Random(seed)
        previous = 0.0
        for attempts in range(12):
            floor = compute_backoff_seconds(attempts, unjittered)
            delay = compute_backoff_seconds(attempts, config, rng=rng)
            assert floor <= delay <= floor * (1 + JITTER_FRACTION)
            assert delay >= previous
            assert delay <= ceiling
            previous = delay


@pytest.mark.parametrize("attempts", range(8))
def test_largest_jitter_never_overtakes_smallest_jitter_of_next_attempt(attempts: int) -> None:
    config = BackoffConfig(base_delay_ms=500, max_delay_ms=10_000, multiplier=1.1)

    high = compute_backoff_seconds(attempts, config, rng=_FixedDraw(0.999))
    low_next = compute_backoff_seconds(attempts + 1, config, rng=_FixedDraw(0.0))

    assert high <= low_next


def test_capped_backoff_carries_no_jitter() -> None:
    config = BackoffConfig(base_delay_ms=1_000, max_delay_ms=4_000)

    delays = {compute_backoff_seconds(n, config, rng=_FixedDraw(0.999)) for n in range(2, 10)}

    assert delays == {4.0}


def test_zero_base_delay_retries_immediately() -> None:
    config = BackoffConfig(base_delay_ms=0, jitter=False)

    assert compute_backoff_seconds(3, config) == 0.0


def test_backoff_config_restores_defaults_for_missing_keys() -> None:
    restored = BackoffConfig.from_dict({"base_delay_ms": 250, "jitter": False})

    assert restored == BackoffConfig(base_delay_ms=250, jitter=False)
    assert BackoffConfig.from_dict(None) == BackoffConfig()
