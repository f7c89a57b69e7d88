"""
Long running threads used by the controller runtime
"""

# Local
from .base import ThreadBase
from .timer import TimerEvent, TimerThread
from .watch import WatchThread
