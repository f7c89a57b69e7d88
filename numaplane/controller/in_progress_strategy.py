"""
The InProgressStrategyManager tracks which upgrade strategy currently owns each
rollout. The value is cached in memory and persisted in the rollout's
status.upgradeInProgress so that a restarted controller picks up where it left
off.
"""

# Standard
from threading import RLock
from typing import Callable, Dict

# First Party
import alog

# Local
from ..exceptions import StrategyConflictError
from ..status import UPGRADE_IN_PROGRESS_KEY
from ..usde import UpgradeStrategy
from ..utils import make_queue_key

log = alog.use_channel("STRAT")

# Strategies that may be recorded as in progress
IN_PROGRESS_STRATEGIES = (
    UpgradeStrategy.NO_OP,
    UpgradeStrategy.PPND,
    UpgradeStrategy.PROGRESSIVE,
)


def get_status_strategy(rollout: dict) -> UpgradeStrategy:
    """Read the persisted in-progress strategy of a rollout"""
    return UpgradeStrategy.from_status(
        (rollout.get("status") or {}).get(UPGRADE_IN_PROGRESS_KEY)
    )


def set_status_strategy(rollout: dict, strategy: UpgradeStrategy):
    """Record the in-progress strategy in the rollout's status. The status is
    persisted with the rest of the rollout status at the end of the reconcile.
    """
    rollout.setdefault("status", {})[UPGRADE_IN_PROGRESS_KEY] = strategy.value


class InProgressStrategyManager:
    """Per-rollout record of the upgrade strategy in progress"""

    def __init__(
        self,
        get_rollout_strategy: Callable[[dict], UpgradeStrategy] = get_status_strategy,
        set_rollout_strategy: Callable[
            [dict, UpgradeStrategy], None
        ] = set_status_strategy,
    ):
        """
        Args:
            get_rollout_strategy:  Callable[[dict], UpgradeStrategy]
                Reads the persisted strategy from a rollout
            set_rollout_strategy:  Callable[[dict, UpgradeStrategy], None]
                Writes the strategy onto a rollout
        """
        self._get_rollout_strategy = get_rollout_strategy
        self._set_rollout_strategy = set_rollout_strategy
        self._strategies: Dict[str, UpgradeStrategy] = {}
        self._lock = RLock()

    def get_strategy(self, rollout: dict) -> UpgradeStrategy:
        """Get the strategy in progress, falling back to the rollout's status
        when nothing is cached
        """
        key = self._key(rollout)
        with self._lock:
            strategy = self._strategies.get(key)
            if strategy is None:
                strategy = self._get_rollout_strategy(rollout)
                log.debug2("Loaded in progress strategy %s for %s", strategy, key)
                self._strategies[key] = strategy
            return strategy

    def set_strategy(self, rollout: dict, strategy: UpgradeStrategy):
        """Set the strategy in progress

        Raises:
            StrategyConflictError if a different non-NoOp strategy is already
            in progress or the strategy can not be in progress
        """
        if strategy not in IN_PROGRESS_STRATEGIES:
            raise StrategyConflictError(
                f"{strategy.value} can not be recorded as an in progress strategy"
            )
        key = self._key(rollout)
        with self._lock:
            current = self.get_strategy(rollout)
            if (
                strategy != UpgradeStrategy.NO_OP
                and current not in (UpgradeStrategy.NO_OP, strategy)
            ):
                raise StrategyConflictError(
                    f"Can not start {strategy.value} for {key} while "
                    f"{current.value} is in progress"
                )
            log.debug("Setting in progress strategy for %s: %s", key, strategy.value)
            self._set_rollout_strategy(rollout, strategy)
            self._strategies[key] = strategy

    def unset_strategy(self, rollout: dict):
        """Mark the in progress strategy complete"""
        self.set_strategy(rollout, UpgradeStrategy.NO_OP)

    def clear(self, namespace: str, name: str):
        """Drop the cached entry of a deleted rollout"""
        with self._lock:
            self._strategies.pop(make_queue_key(namespace, name), None)

    @staticmethod
    def _key(rollout: dict) -> str:
        metadata = rollout.get("metadata", {})
        return make_queue_key(metadata.get("namespace"), metadata.get("name"))
