"""
Rate limiters decide how long a failed item waits before it is retried
"""

# Standard
from threading import Lock
from typing import Any, Dict
import abc

# First Party
import alog

log = alog.use_channel("RTLMT")


class RateLimiter(abc.ABC):
    """Interface for per-item retry delays"""

    @abc.abstractmethod
    def when(self, item: Any) -> float:
        """Get the number of seconds to wait before the item is processed
        again. Each call counts as one more failure of the item.
        """

    @abc.abstractmethod
    def forget(self, item: Any):
        """Stop tracking the item, resetting its backoff"""

    @abc.abstractmethod
    def num_requeues(self, item: Any) -> int:
        """Number of failures recorded for the item"""


class ItemExponentialFailureRateLimiter(RateLimiter):
    """Exponential backoff per item: base * 2^(failures - 1), capped at max"""

    def __init__(self, base_delay: float, max_delay: float):
        """
        Args:
            base_delay:  float
                Seconds to wait after the first failure
            max_delay:  float
                Upper bound of the delay in seconds
        """
        self.base_delay = base_delay
        self.max_delay = max_delay
        self._failures: Dict[Any, int] = {}
        self._lock = Lock()

    def when(self, item: Any) -> float:
        with self._lock:
            exponent = self._failures.get(item, 0)
            self._failures[item] = exponent + 1

        # Guard the exponent so very old failures do not overflow
        if exponent > 62:
            return self.max_delay
        delay = self.base_delay * (2**exponent)
        log.debug3("Backoff for %s after %d failures: %ss", item, exponent + 1, delay)
        return min(delay, self.max_delay)

    def forget(self, item: Any):
        with self._lock:
            self._failures.pop(item, None)

    def num_requeues(self, item: Any) -> int:
        with self._lock:
            return self._failures.get(item, 0)
