"""
The RateLimitingQueue holds the keys of rollouts waiting to be reconciled.

An item is held in at most one place at a time:

* dirty: marked as needing processing
* queue: dirty and waiting for a worker
* processing: handed to a worker and not yet marked done

An item added while it is processing stays dirty and is queued again once the
worker calls done(), so one key is never processed by two workers at once.
"""

# Standard
from collections import deque
from datetime import datetime, timedelta
from threading import Condition
from typing import Any, Dict, Optional, Tuple

# First Party
import alog

# Local
from ..threads import TimerEvent, TimerThread
from .rate_limiter import RateLimiter

log = alog.use_channel("WRKQ")


class RateLimitingQueue:
    """Deduplicating work queue with delayed and rate limited insertion"""

    def __init__(self, name: str, rate_limiter: RateLimiter):
        """
        Args:
            name:  str
                Name used in logs and for the delay thread
            rate_limiter:  RateLimiter
                Decides the delay used by add_rate_limited
        """
        self.name = name
        self.rate_limiter = rate_limiter

        self._queue = deque()
        self._dirty = set()
        self._processing = set()
        self._condition = Condition()
        self._shutting_down = False

        # Delayed insertion, keeping only the earliest pending event per item
        self._waiting: Dict[Any, TimerEvent] = {}
        self._timer = TimerThread(name=f"{name}_delay")
        self._timer.start_thread()

    ## Queue ###################################################################

    def add(self, item: Any):
        """Mark the item as needing processing. Items already pending are
        ignored
        """
        with self._condition:
            if self._shutting_down:
                log.debug3("[%s] Dropping %s, queue is shutting down", self.name, item)
                return
            if item in self._dirty:
                log.debug4("[%s] %s already pending", self.name, item)
                return
            self._dirty.add(item)
            if item in self._processing:
                log.debug3("[%s] %s is processing, re-queued on done", self.name, item)
                return
            self._queue.append(item)
            self._condition.notify()

    def get(self) -> Tuple[Optional[Any], bool]:
        """Block until an item is available or the queue shuts down

        Returns:
            item:  Optional[Any]
                The item to process, None when shutting down
            shutting_down:  bool
                True if the queue has been shut down and holds no more items
        """
        with self._condition:
            while not self._queue and not self._shutting_down:
                self._condition.wait()
            if not self._queue:
                return None, True

            item = self._queue.popleft()
            self._processing.add(item)
            self._dirty.discard(item)
            return item, False

    def done(self, item: Any):
        """Mark the item as processed. If it was added again while processing
        it goes back on the queue
        """
        with self._condition:
            self._processing.discard(item)
            if item in self._dirty:
                self._queue.append(item)
                self._condition.notify()

    def shut_down(self):
        """Stop accepting items and wake every waiting worker"""
        log.debug("[%s] Shutting down", self.name)
        with self._condition:
            self._shutting_down = True
            for event in self._waiting.values():
                event.cancel()
            self._waiting.clear()
            self._condition.notify_all()
        self._timer.stop_thread()

    @property
    def shutting_down(self) -> bool:
        with self._condition:
            return self._shutting_down

    def __len__(self) -> int:
        with self._condition:
            return len(self._queue)

    ## Delays ##################################################################

    def add_after(self, item: Any, delay: float):
        """Add the item once the delay in seconds has passed. When the item is
        already waiting, the earlier of the two ready times wins.
        """
        if delay <= 0:
            self.add(item)
            return

        ready_time = datetime.now() + timedelta(seconds=delay)
        with self._condition:
            if self._shutting_down:
                return
            existing = self._waiting.get(item)
            if existing is not None and not existing.stale:
                if existing.time <= ready_time:
                    log.debug4("[%s] %s already waiting", self.name, item)
                    return
                existing.cancel()

            log.debug3("[%s] Adding %s after %ss", self.name, item, delay)
            event = self._timer.put_event(ready_time, self._add_waiting, item)
            if event is not None:
                self._waiting[item] = event

    def add_rate_limited(self, item: Any):
        """Add the item after the rate limiter's backoff for it"""
        self.add_after(item, self.rate_limiter.when(item))

    def forget(self, item: Any):
        """Reset the rate limiter's backoff for the item"""
        self.rate_limiter.forget(item)

    def num_requeues(self, item: Any) -> int:
        return self.rate_limiter.num_requeues(item)

    ## Implementation Details ##################################################

    def _add_waiting(self, item: Any):
        with self._condition:
            self._waiting.pop(item, None)
        self.add(item)
