"""
This module holds the common functionality used to represent the status of
Rollouts and to read the status of their children

A Rollout status has the schema:
{
    "phase": "Pending" | "Deployed" | "Failed",
    "message": "<failure message>",
    "observedGeneration": <int>,
    "upgradeInProgress": "NoOp" | "PPND" | "Progressive",
    "conditions": [
        {
            "type": <ConditionType>,
            "status": "True" | "False" | "Unknown",
            "reason": "<CamelCase>",
            "message": "<text>",
            "observedGeneration": <int>,
            "lastTransitionTime": "<timestamp>",
        },
    ],
    "pauseStatus": {
        "lastPauseBeginTime": "<timestamp>" | null,
        "lastPauseEndTime": "<timestamp>" | null,
    },
    "nameCount": <int>,
}
"""

# Standard
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional
import copy

# Third Party
from deepdiff import DeepDiff

# First Party
import alog

# Local
from .utils import now_timestamp

log = alog.use_channel("STTUS")

## Public ######################################################################

# The key in the condition used for the timestamp
TIMESTAMP_KEY = "lastTransitionTime"

# Status fields
PHASE_KEY = "phase"
MESSAGE_KEY = "message"
OBSERVED_GENERATION_KEY = "observedGeneration"
CONDITIONS_KEY = "conditions"
UPGRADE_IN_PROGRESS_KEY = "upgradeInProgress"
PAUSE_STATUS_KEY = "pauseStatus"
PAUSE_BEGIN_KEY = "lastPauseBeginTime"
PAUSE_END_KEY = "lastPauseEndTime"
NAME_COUNT_KEY = "nameCount"

# Condition status values
CONDITION_TRUE = "True"
CONDITION_FALSE = "False"
CONDITION_UNKNOWN = "Unknown"


class Phase(Enum):
    """Lifecycle phase of a Rollout"""

    # Work toward the desired state is outstanding
    PENDING = "Pending"

    # The desired child definition has been applied
    DEPLOYED = "Deployed"

    # The last reconciliation failed
    FAILED = "Failed"


class ConditionType(Enum):
    """Condition types reported on Rollouts"""

    CHILD_RESOURCE_DEPLOYED = "ChildResourceDeployed"
    CHILD_RESOURCES_HEALTHY = "ChildResourcesHealthy"
    PIPELINE_PAUSING_OR_PAUSED = "PipelinePausingOrPaused"
    PAUSING_PIPELINES = "PausingPipelines"


class ChildPhase(Enum):
    """Phases reported by the managed children"""

    UNKNOWN = "Unknown"
    PENDING = "Pending"
    RUNNING = "Running"
    FAILED = "Failed"
    PAUSING = "Pausing"
    PAUSED = "Paused"
    DELETING = "Deleting"


@dataclass
class ChildStatus:
    """The parts of a child's status the controller reads"""

    phase: ChildPhase = ChildPhase.UNKNOWN
    observed_generation: int = 0
    conditions: List[dict] = field(default_factory=list)
    drained_on_pause: bool = False
    message: str = ""


def parse_child_status(child: Optional[dict]) -> ChildStatus:
    """Decode the status of a child manifest. A child without status, or with
    an unrecognized phase, reads as phase Unknown.
    """
    if not child:
        return ChildStatus()
    raw_status = child.get("status") or {}
    raw_phase = raw_status.get("phase") or ChildPhase.UNKNOWN.value
    try:
        phase = ChildPhase(raw_phase)
    except ValueError:
        log.debug2("Unrecognized child phase %s", raw_phase)
        phase = ChildPhase.UNKNOWN
    return ChildStatus(
        phase=phase,
        observed_generation=raw_status.get("observedGeneration") or 0,
        conditions=raw_status.get("conditions") or [],
        drained_on_pause=bool(raw_status.get("drainedOnPause", False)),
        message=raw_status.get("message", ""),
    )


def observed_generation_current(child: dict) -> bool:
    """True if the child's controller has observed its latest generation"""
    generation = child.get("metadata", {}).get("generation") or 0
    return parse_child_status(child).observed_generation >= generation


## Rollout Status ##############################################################


def init_status(status: dict) -> dict:
    """Prepare a Rollout status for a reconciliation"""
    status.setdefault(PHASE_KEY, Phase.PENDING.value)
    status.setdefault(CONDITIONS_KEY, [])
    return status


def get_phase(status: dict) -> Optional[Phase]:
    phase = status.get(PHASE_KEY)
    return Phase(phase) if phase else None


def mark_pending(status: dict):
    status[PHASE_KEY] = Phase.PENDING.value
    status.pop(MESSAGE_KEY, None)


def mark_deployed(status: dict, generation: int):
    status[PHASE_KEY] = Phase.DEPLOYED.value
    status.pop(MESSAGE_KEY, None)
    status[OBSERVED_GENERATION_KEY] = generation
    set_condition(
        status,
        ConditionType.CHILD_RESOURCE_DEPLOYED,
        CONDITION_TRUE,
        "Deployed",
        "Successful child resource deployment",
        generation,
    )


def mark_failed(status: dict, message: str, generation: Optional[int] = None):
    status[PHASE_KEY] = Phase.FAILED.value
    status[MESSAGE_KEY] = message
    set_condition(
        status,
        ConditionType.CHILD_RESOURCE_DEPLOYED,
        CONDITION_FALSE,
        "Failed",
        message,
        generation,
    )


def mark_child_resources_healthy(status: dict, generation: int):
    set_condition(
        status,
        ConditionType.CHILD_RESOURCES_HEALTHY,
        CONDITION_TRUE,
        "Healthy",
        "",
        generation,
    )


def mark_child_resources_unhealthy(
    status: dict, reason: str, message: str, generation: int
):
    set_condition(
        status,
        ConditionType.CHILD_RESOURCES_HEALTHY,
        CONDITION_FALSE,
        reason,
        message,
        generation,
    )


def mark_child_resources_health_unknown(
    status: dict, reason: str, message: str, generation: int
):
    set_condition(
        status,
        ConditionType.CHILD_RESOURCES_HEALTHY,
        CONDITION_UNKNOWN,
        reason,
        message,
        generation,
    )


def mark_pipeline_pausing_or_paused(
    status: dict, reason: str, message: str, generation: int
):
    set_condition(
        status,
        ConditionType.PIPELINE_PAUSING_OR_PAUSED,
        CONDITION_TRUE,
        reason,
        message,
        generation,
    )


def mark_pipeline_unpaused(status: dict, generation: int):
    set_condition(
        status,
        ConditionType.PIPELINE_PAUSING_OR_PAUSED,
        CONDITION_FALSE,
        "Unpaused",
        "Pipeline unpaused",
        generation,
    )


def mark_pausing_pipelines(status: dict, generation: int):
    set_condition(
        status,
        ConditionType.PAUSING_PIPELINES,
        CONDITION_TRUE,
        "PausingPipelines",
        "Pausing dependent pipelines",
        generation,
    )


def mark_pipelines_resumed(status: dict, generation: int):
    set_condition(
        status,
        ConditionType.PAUSING_PIPELINES,
        CONDITION_FALSE,
        "NoPause",
        "Dependent pipelines are not paused by this rollout",
        generation,
    )


def is_healthy(status: dict) -> bool:
    """A Rollout is healthy when its child is deployed and healthy"""
    return (
        status.get(PHASE_KEY) == Phase.DEPLOYED.value
        and get_condition(ConditionType.CHILD_RESOURCES_HEALTHY, status).get("status")
        == CONDITION_TRUE
    )


def set_condition(  # pylint: disable=too-many-arguments
    status: dict,
    condition_type: ConditionType,
    condition_status: str,
    reason: str,
    message: str,
    generation: Optional[int] = None,
):
    """Set a condition, only moving its transition time when the condition
    status actually changes
    """
    conditions = status.setdefault(CONDITIONS_KEY, [])
    existing = get_condition(condition_type, status)
    transition_time = existing.get(TIMESTAMP_KEY)
    if existing.get("status") != condition_status or not transition_time:
        transition_time = now_timestamp()

    condition = {
        "type": condition_type.value,
        "status": condition_status,
        "reason": reason,
        "message": message,
        TIMESTAMP_KEY: transition_time,
    }
    if generation is not None:
        condition[OBSERVED_GENERATION_KEY] = generation
    elif OBSERVED_GENERATION_KEY in existing:
        condition[OBSERVED_GENERATION_KEY] = existing[OBSERVED_GENERATION_KEY]

    log.debug2("Setting condition %s", condition)
    status[CONDITIONS_KEY] = [
        cond for cond in conditions if cond.get("type") != condition_type.value
    ] + [condition]


def get_condition(condition_type: ConditionType, current_status: dict) -> dict:
    """Extract the given condition type from a status object

    Args:
        condition_type:  ConditionType
            The condition type to fetch
        current_status:  dict
            The dict representation of the status

    Returns:
        condition:  dict
            The condition object if found, empty dict otherwise
    """
    cond = [
        cond
        for cond in current_status.get(CONDITIONS_KEY) or []
        if cond.get("type") == condition_type.value
    ]
    if cond:
        assert len(cond) == 1, f"Found multiple condition entries for {condition_type}"
        return cond[0]
    return {}


def status_changed(current_status: dict, new_status: dict) -> bool:
    """Compare two status objects to determine if there is a meaningful change
    between the current status and the proposed new status. A meaningful change
    is defined as any change besides a condition transition timestamp.

    Args:
        current_status:  dict
            The raw status dict from the current Rollout
        new_status:  dict
            The proposed new status

    Returns:
        status_changed:  bool
            True if there is a meaningful change between the current status and
            the new status
    """
    if not isinstance(current_status, dict) or not isinstance(new_status, dict):
        return True

    return bool(
        DeepDiff(
            current_status,
            new_status,
            exclude_obj_callback=lambda _, path: path.endswith(f"{TIMESTAMP_KEY}']"),
        )
    )


def copy_status(resource: dict) -> dict:
    """Get a deep copy of a resource's status, never None"""
    return copy.deepcopy(resource.get("status") or {})
