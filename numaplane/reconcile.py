"""
Result types exchanged between the reconcilers and the worker pool
"""

# Standard
from dataclasses import dataclass, field
from typing import Optional
import datetime

# Local
from . import config


## Data models #################################################################


@dataclass
class RequeueParams:
    """RequeueParams holds parameters for requeue request"""

    requeue_after: datetime.timedelta = field(
        default_factory=lambda: datetime.timedelta(
            seconds=float(config.requeue_after_seconds)
        )
    )


@dataclass
class ReconciliationResult:
    """ReconciliationResult is the result of processing a single rollout key.

    * requeue=False: done
    * requeue=True without requeue_params: requeue immediately
    * requeue=True with requeue_params: requeue after the given delay
    * exception set: the reconcile failed and is retried with backoff
    """

    # Flag to control requeue of current reconcile request
    requeue: bool = False
    # Parameters for a delayed requeue request
    requeue_params: Optional[RequeueParams] = None
    # The exception raised by the reconciliation, if any
    exception: Optional[Exception] = None

    @classmethod
    def done(cls) -> "ReconciliationResult":
        return cls(requeue=False)

    @classmethod
    def requeue_now(cls) -> "ReconciliationResult":
        return cls(requeue=True)

    @classmethod
    def requeue_later(
        cls, delay: Optional[datetime.timedelta] = None
    ) -> "ReconciliationResult":
        params = RequeueParams() if delay is None else RequeueParams(delay)
        return cls(requeue=True, requeue_params=params)

    @classmethod
    def failed(cls, exception: Exception) -> "ReconciliationResult":
        return cls(requeue=True, exception=exception)

    @property
    def requeue_after(self) -> Optional[float]:
        """Seconds to wait before requeueing, None for an immediate requeue"""
        if self.requeue_params is None:
            return None
        return self.requeue_params.requeue_after.total_seconds()
