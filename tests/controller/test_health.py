"""
Tests for the child health projections
"""

# Third Party
import pytest

# Local
from numaplane import metrics
from numaplane.controller.health import (
    Health,
    HealthState,
    isbsvc_health,
    pipeline_health,
    set_health_condition,
)
from numaplane.status import ChildPhase, ChildStatus, ConditionType, get_condition
from numaplane.test_helpers.helpers import (
    HEALTHY_ISBSVC_CONDITIONS,
    HEALTHY_PIPELINE_CONDITIONS,
)

## Helpers #####################################################################


def pipeline_status(phase=ChildPhase.RUNNING, observed_generation=1, **conditions):
    """Pipeline status with the healthy conditions, overriding the status of
    the given condition types
    """
    return ChildStatus(
        phase=phase,
        observed_generation=observed_generation,
        conditions=[
            dict(condition, status=conditions.get(condition["type"], "True"))
            for condition in HEALTHY_PIPELINE_CONDITIONS
        ],
    )


## Pipelines ###################################################################


def test_pipeline_healthy():
    assert pipeline_health(pipeline_status(), 1) == Health(HealthState.HEALTHY)


def test_pipeline_progressing_generation():
    health = pipeline_health(pipeline_status(observed_generation=1), 2)
    assert health.state == HealthState.UNHEALTHY
    assert health.reason == "Progressing"


def test_pipeline_progressing_subcomponent():
    status = pipeline_status()
    status.conditions[0]["status"] = "False"
    status.conditions[0]["reason"] = "Progressing"
    health = pipeline_health(status, 1)
    assert health.state == HealthState.UNHEALTHY
    assert health.reason == "Progressing"


def test_pipeline_failed_phase_before_subcomponents():
    health = pipeline_health(
        pipeline_status(phase=ChildPhase.FAILED, VerticesHealthy="Unknown"), 1
    )
    assert health == Health(
        HealthState.UNHEALTHY, "PipelineFailed", "Pipeline Phase=Failed"
    )


def test_pipeline_unhealthy_subcomponent():
    health = pipeline_health(pipeline_status(DaemonServiceHealthy="False"), 1)
    assert health.state == HealthState.UNHEALTHY
    assert "Child Resource(s) Unhealthy" in health.message


@pytest.mark.parametrize("phase", [ChildPhase.PAUSED, ChildPhase.PAUSING])
def test_pipeline_paused_unknown(phase):
    assert pipeline_health(pipeline_status(phase=phase), 1).state == HealthState.UNKNOWN


def test_pipeline_deleting():
    health = pipeline_health(pipeline_status(phase=ChildPhase.DELETING), 1)
    assert health.reason == "PipelineDeleting"


def test_pipeline_unknown():
    assert (
        pipeline_health(pipeline_status(phase=ChildPhase.UNKNOWN), 1).state
        == HealthState.UNKNOWN
    )
    assert (
        pipeline_health(pipeline_status(VerticesHealthy="Unknown"), 1).state
        == HealthState.UNKNOWN
    )


## ISB services ################################################################


def isbsvc_status(phase=ChildPhase.RUNNING, observed_generation=1, healthy="True"):
    return ChildStatus(
        phase=phase,
        observed_generation=observed_generation,
        conditions=[dict(HEALTHY_ISBSVC_CONDITIONS[0], status=healthy)],
    )


@pytest.mark.parametrize(
    ["child_status", "generation", "expected_state", "expected_reason"],
    [
        (isbsvc_status(), 1, HealthState.HEALTHY, ""),
        (isbsvc_status(observed_generation=1), 2, HealthState.UNHEALTHY, "Progressing"),
        (isbsvc_status(phase=ChildPhase.PENDING), 1, HealthState.UNHEALTHY, "Progressing"),
        (isbsvc_status(phase=ChildPhase.FAILED), 1, HealthState.UNHEALTHY, "ISBSvcFailed"),
        (isbsvc_status(healthy="False"), 1, HealthState.UNHEALTHY, "ISBSvcFailed"),
        (isbsvc_status(phase=ChildPhase.UNKNOWN), 1, HealthState.UNKNOWN, "ISBSvcUnknown"),
    ],
)
def test_isbsvc_health(child_status, generation, expected_state, expected_reason):
    health = isbsvc_health(child_status, generation)
    assert health.state == expected_state
    assert health.reason == expected_reason


## Projection ##################################################################


@pytest.mark.parametrize(
    ["health", "condition_status", "metric_value"],
    [
        (Health(HealthState.HEALTHY), "True", metrics.HEALTH_HEALTHY),
        (Health(HealthState.UNHEALTHY, "Boom", "bad"), "False", metrics.HEALTH_UNHEALTHY),
        (Health(HealthState.UNKNOWN, "Eh", "who knows"), "Unknown", metrics.HEALTH_UNKNOWN),
    ],
)
def test_set_health_condition(health, condition_status, metric_value):
    status = {}
    set_health_condition(status, health, 3)
    condition = get_condition(ConditionType.CHILD_RESOURCES_HEALTHY, status)
    assert condition["status"] == condition_status
    assert condition["observedGeneration"] == 3
    if health.reason:
        assert condition["reason"] == health.reason
    assert health.metric_value == metric_value
