"""
The upgrade strategy decision engine (USDE) classifies the difference between
a desired child definition and the existing child
"""

# Standard
from enum import Enum
from typing import Tuple
import abc

# First Party
import alog

# Local
from . import config
from .constants import DESIRED_PHASE_PATH
from .exceptions import DecisionError
from .utils import without_paths

log = alog.use_channel("USDE")


class UpgradeStrategy(Enum):
    """Strategies for applying a change to a child. APPLY is only ever a
    recommendation and is never recorded as in progress.
    """

    NO_OP = "NoOp"
    APPLY = "Apply"
    PPND = "PPND"
    PROGRESSIVE = "Progressive"

    @classmethod
    def from_status(cls, value) -> "UpgradeStrategy":
        """Parse a persisted upgradeInProgress value. Missing reads as NoOp"""
        if not value:
            return cls.NO_OP
        return cls(value)


class UserStrategy(Enum):
    """Strategies an operator may configure as the default for a namespace"""

    PPND = "pause-and-drain"
    PROGRESSIVE = "progressive"
    NO_STRATEGY = "no-strategy"


class DecisionEngineBase(abc.ABC):
    """Interface of the upgrade strategy decision engine"""

    @abc.abstractmethod
    def get_user_strategy(self, namespace: str) -> UserStrategy:
        """Get the operator configured upgrade strategy for the namespace"""

    @abc.abstractmethod
    def resource_needs_updating(
        self, desired: dict, existing: dict
    ) -> Tuple[bool, UpgradeStrategy]:
        """Decide whether the existing child differs from the desired
        definition and which strategy the change calls for

        Args:
            desired:  dict
                The desired child manifest
            existing:  dict
                The child manifest currently in the cluster

        Returns:
            needs_update:  bool
                True if the child must be updated
            strategy:  UpgradeStrategy
                NO_OP when no update is needed, otherwise the recommended
                strategy

        Raises:
            DecisionError if no decision can be made
        """


class ConfigDecisionEngine(DecisionEngineBase):
    """Decision engine driven by the usde section of the library config"""

    def get_user_strategy(self, namespace: str) -> UserStrategy:
        strategies = config.usde.namespace_upgrade_strategies or {}
        raw_strategy = strategies.get(namespace, config.usde.default_upgrade_strategy)
        try:
            return UserStrategy(raw_strategy)
        except ValueError as err:
            raise DecisionError(
                f"Unknown upgrade strategy {raw_strategy} for namespace {namespace}"
            ) from err

    def resource_needs_updating(
        self, desired: dict, existing: dict
    ) -> Tuple[bool, UpgradeStrategy]:
        kind = desired.get("kind")
        # A change to the desired phase alone is never an update, so a user pause
        # only reaches an existing pipeline along with another spec change
        desired_spec = without_paths(desired.get("spec") or {}, [DESIRED_PHASE_PATH])
        existing_spec = without_paths(
            existing.get("spec") or {}, [DESIRED_PHASE_PATH]
        )
        changed_fields = {
            key
            for key in set(desired_spec) | set(existing_spec)
            if desired_spec.get(key) != existing_spec.get(key)
        }
        metadata_changed = not (
            _is_subset(desired, existing, "labels")
            and _is_subset(desired, existing, "annotations")
        )
        log.debug3(
            "Changed fields of %s: %s, metadata changed: %s",
            kind,
            changed_fields,
            metadata_changed,
        )

        if not changed_fields and not metadata_changed:
            return False, UpgradeStrategy.NO_OP

        pause_fields = set((config.usde.pause_required_fields or {}).get(kind) or [])
        if changed_fields & pause_fields:
            user_strategy = self.get_user_strategy(
                desired.get("metadata", {}).get("namespace")
            )
            if user_strategy == UserStrategy.PPND:
                return True, UpgradeStrategy.PPND
            if user_strategy == UserStrategy.PROGRESSIVE:
                return True, UpgradeStrategy.PROGRESSIVE
        return True, UpgradeStrategy.APPLY


def _is_subset(desired: dict, existing: dict, field_name: str) -> bool:
    desired_values = desired.get("metadata", {}).get(field_name) or {}
    existing_values = existing.get("metadata", {}).get(field_name) or {}
    return all(
        existing_values.get(key) == value for key, value in desired_values.items()
    )
