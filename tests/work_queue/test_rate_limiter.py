"""
Tests for the rate limiters
"""

# Third Party
import pytest

# Local
from numaplane.work_queue import ItemExponentialFailureRateLimiter


def test_exponential_backoff():
    limiter = ItemExponentialFailureRateLimiter(base_delay=0.5, max_delay=100)
    assert [limiter.when("a") for _ in range(4)] == [0.5, 1, 2, 4]
    assert limiter.num_requeues("a") == 4


def test_backoff_capped():
    limiter = ItemExponentialFailureRateLimiter(base_delay=1, max_delay=5)
    delays = [limiter.when("a") for _ in range(5)]
    assert delays == [1, 2, 4, 5, 5]


def test_backoff_many_failures():
    """Very long failure streaks stay at the cap"""
    limiter = ItemExponentialFailureRateLimiter(base_delay=1, max_delay=30)
    for _ in range(100):
        delay = limiter.when("a")
    assert delay == 30


def test_items_tracked_separately():
    limiter = ItemExponentialFailureRateLimiter(base_delay=1, max_delay=30)
    limiter.when("a")
    limiter.when("a")
    assert limiter.when("b") == 1
    assert limiter.num_requeues("a") == 2


@pytest.mark.parametrize("failures", [1, 3])
def test_forget_resets(failures):
    limiter = ItemExponentialFailureRateLimiter(base_delay=1, max_delay=30)
    for _ in range(failures):
        limiter.when("a")
    limiter.forget("a")
    assert limiter.num_requeues("a") == 0
    assert limiter.when("a") == 1


def test_forget_unknown_item():
    limiter = ItemExponentialFailureRateLimiter(base_delay=1, max_delay=30)
    limiter.forget("never-seen")
    assert limiter.num_requeues("never-seen") == 0
