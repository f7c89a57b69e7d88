"""
Projection of a child's health into the ChildResourcesHealthy condition of its
rollout
"""

# Standard
from dataclasses import dataclass
from enum import Enum
from typing import List, Tuple

# First Party
import alog

# Local
from .. import metrics
from ..status import (
    CONDITION_FALSE,
    CONDITION_TRUE,
    CONDITION_UNKNOWN,
    ChildPhase,
    ChildStatus,
    mark_child_resources_health_unknown,
    mark_child_resources_healthy,
    mark_child_resources_unhealthy,
)

log = alog.use_channel("HEALTH")

# Pipeline conditions reporting the health of its subcomponents
PIPELINE_HEALTH_CONDITIONS = (
    "VerticesHealthy",
    "SideInputsManagersHealthy",
    "DaemonServiceHealthy",
)

# ISB service condition reporting the health of its children
ISBSVC_HEALTH_CONDITION = "ChildrenResourcesHealthy"


class HealthState(Enum):
    HEALTHY = "Healthy"
    UNHEALTHY = "Unhealthy"
    UNKNOWN = "Unknown"


@dataclass
class Health:
    """Health of a child with the reason and message reported on the rollout"""

    state: HealthState
    reason: str = ""
    message: str = ""

    @property
    def metric_value(self) -> int:
        return {
            HealthState.HEALTHY: metrics.HEALTH_HEALTHY,
            HealthState.UNHEALTHY: metrics.HEALTH_UNHEALTHY,
            HealthState.UNKNOWN: metrics.HEALTH_UNKNOWN,
        }[self.state]


def subcomponent_health(conditions: List[dict]) -> Tuple[str, str]:
    """Get the status and reason of the first unhealthy pipeline subcomponent,
    or ("True", "") if all are healthy
    """
    for condition in conditions:
        if condition.get("type") in PIPELINE_HEALTH_CONDITIONS:
            if condition.get("status") != CONDITION_TRUE:
                return condition.get("status"), condition.get("reason", "")
    return CONDITION_TRUE, ""


def pipeline_health(child_status: ChildStatus, generation: int) -> Health:
    """Assess a pipeline. The first matching rule wins."""
    sub_status, sub_reason = subcomponent_health(child_status.conditions)
    phase = child_status.phase

    if sub_reason == "Progressing" or child_status.observed_generation < generation:
        return Health(HealthState.UNHEALTHY, "Progressing", "Pipeline Progressing")
    if phase == ChildPhase.FAILED:
        return Health(HealthState.UNHEALTHY, "PipelineFailed", "Pipeline Phase=Failed")
    if sub_status == CONDITION_FALSE:
        return Health(
            HealthState.UNHEALTHY,
            "PipelineFailed",
            "Pipeline Failed, Pipeline Child Resource(s) Unhealthy",
        )
    if phase in (ChildPhase.PAUSED, ChildPhase.PAUSING):
        return Health(
            HealthState.UNKNOWN, "PipelineUnknown", "Pipeline Pausing - health unknown"
        )
    if phase == ChildPhase.DELETING:
        return Health(HealthState.UNHEALTHY, "PipelineDeleting", "Pipeline Deleting")
    if phase == ChildPhase.UNKNOWN or sub_status == CONDITION_UNKNOWN:
        return Health(HealthState.UNKNOWN, "PipelineUnknown", "Pipeline Phase Unknown")
    return Health(HealthState.HEALTHY)


def isbsvc_health(child_status: ChildStatus, generation: int) -> Health:
    """Assess an InterStepBufferService"""
    phase = child_status.phase
    children_healthy = next(
        (
            condition.get("status")
            for condition in child_status.conditions
            if condition.get("type") == ISBSVC_HEALTH_CONDITION
        ),
        None,
    )

    if child_status.observed_generation < generation or phase == ChildPhase.PENDING:
        return Health(HealthState.UNHEALTHY, "Progressing", "ISBService Progressing")
    if phase == ChildPhase.FAILED:
        return Health(HealthState.UNHEALTHY, "ISBSvcFailed", "ISBService Failed")
    if children_healthy == CONDITION_FALSE:
        return Health(
            HealthState.UNHEALTHY,
            "ISBSvcFailed",
            "ISBService Failed, ISBService Child Resource(s) Unhealthy",
        )
    if phase == ChildPhase.RUNNING:
        return Health(HealthState.HEALTHY)
    return Health(HealthState.UNKNOWN, "ISBSvcUnknown", "ISBService Phase Unknown")


def set_health_condition(status: dict, health: Health, generation: int):
    """Write the health of the child onto the rollout status"""
    log.debug3("Child health: %s", health)
    if health.state == HealthState.HEALTHY:
        mark_child_resources_healthy(status, generation)
    elif health.state == HealthState.UNHEALTHY:
        mark_child_resources_unhealthy(
            status, health.reason, health.message, generation
        )
    else:
        mark_child_resources_health_unknown(
            status, health.reason, health.message, generation
        )
