"""
Deduplicating, delayable queue of rollout keys drained by worker threads
"""

# Local
from .rate_limiter import ItemExponentialFailureRateLimiter, RateLimiter
from .rate_limiting_queue import RateLimitingQueue
