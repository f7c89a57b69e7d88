"""
Test the construction and management of rollout status objects
"""

# Standard
import copy

# Local
from numaplane import status
from numaplane.status import ChildPhase, ConditionType, Phase
from numaplane.test_helpers.helpers import make_child_status

## parse_child_status ##########################################################


def test_parse_child_status_full():
    """Make sure all fields of a child status are parsed"""
    child = {
        "metadata": {"generation": 2},
        "status": make_child_status(
            phase="Paused",
            observed_generation=2,
            conditions=[{"type": "VerticesHealthy", "status": "True"}],
            drained_on_pause=True,
        ),
    }
    parsed = status.parse_child_status(child)
    assert parsed.phase == ChildPhase.PAUSED
    assert parsed.observed_generation == 2
    assert parsed.drained_on_pause
    assert parsed.conditions == [{"type": "VerticesHealthy", "status": "True"}]


def test_parse_child_status_missing():
    """Make sure a child without status reads as Unknown"""
    parsed = status.parse_child_status({"metadata": {}})
    assert parsed.phase == ChildPhase.UNKNOWN
    assert parsed.observed_generation == 0
    assert not parsed.drained_on_pause
    assert status.parse_child_status(None).phase == ChildPhase.UNKNOWN


def test_parse_child_status_unrecognized_phase():
    parsed = status.parse_child_status({"status": {"phase": "Exploding"}})
    assert parsed.phase == ChildPhase.UNKNOWN


def test_observed_generation_current():
    child = {"metadata": {"generation": 3}, "status": {"observedGeneration": 2}}
    assert not status.observed_generation_current(child)
    child["status"]["observedGeneration"] = 3
    assert status.observed_generation_current(child)


## phases ######################################################################


def test_init_status():
    res = status.init_status({})
    assert res == {"phase": "Pending", "conditions": []}


def test_mark_deployed():
    """Make sure marking deployed sets the phase, the observed generation and
    the deployed condition
    """
    res = {"message": "old failure"}
    status.mark_deployed(res, 4)
    assert status.get_phase(res) == Phase.DEPLOYED
    assert "message" not in res
    assert res["observedGeneration"] == 4
    cond = status.get_condition(ConditionType.CHILD_RESOURCE_DEPLOYED, res)
    assert cond["status"] == "True"
    assert cond["observedGeneration"] == 4


def test_mark_failed():
    res = {}
    status.mark_failed(res, "it broke", 2)
    assert status.get_phase(res) == Phase.FAILED
    assert res["message"] == "it broke"
    cond = status.get_condition(ConditionType.CHILD_RESOURCE_DEPLOYED, res)
    assert cond["status"] == "False"
    assert cond["message"] == "it broke"


def test_mark_pending_clears_message():
    res = {"phase": "Failed", "message": "it broke"}
    status.mark_pending(res)
    assert res == {"phase": "Pending"}


def test_get_phase_missing():
    assert status.get_phase({}) is None


def test_is_healthy():
    res = {}
    status.mark_deployed(res, 1)
    assert not status.is_healthy(res)
    status.mark_child_resources_healthy(res, 1)
    assert status.is_healthy(res)
    status.mark_child_resources_unhealthy(res, "Progressing", "", 1)
    assert not status.is_healthy(res)


## conditions ##################################################################


def test_set_condition_keeps_transition_time():
    """Make sure the transition time only moves when the condition status
    changes
    """
    res = {}
    status.mark_child_resources_healthy(res, 1)
    cond = status.get_condition(ConditionType.CHILD_RESOURCES_HEALTHY, res)
    cond[status.TIMESTAMP_KEY] = "2020-01-01T00:00:00Z"

    status.mark_child_resources_healthy(res, 2)
    cond = status.get_condition(ConditionType.CHILD_RESOURCES_HEALTHY, res)
    assert cond[status.TIMESTAMP_KEY] == "2020-01-01T00:00:00Z"
    assert cond["observedGeneration"] == 2

    status.mark_child_resources_unhealthy(res, "PipelineFailed", "failed", 2)
    cond = status.get_condition(ConditionType.CHILD_RESOURCES_HEALTHY, res)
    assert cond[status.TIMESTAMP_KEY] != "2020-01-01T00:00:00Z"
    assert cond["reason"] == "PipelineFailed"


def test_set_condition_single_entry_per_type():
    res = {}
    status.mark_pausing_pipelines(res, 1)
    status.mark_pipelines_resumed(res, 1)
    status.mark_child_resources_healthy(res, 1)
    types = [cond["type"] for cond in res["conditions"]]
    assert sorted(types) == sorted(
        [
            ConditionType.PAUSING_PIPELINES.value,
            ConditionType.CHILD_RESOURCES_HEALTHY.value,
        ]
    )


def test_set_condition_keeps_generation():
    """Make sure a condition set without a generation keeps the previous one"""
    res = {}
    status.mark_failed(res, "first", 3)
    status.mark_failed(res, "second")
    cond = status.get_condition(ConditionType.CHILD_RESOURCE_DEPLOYED, res)
    assert cond["observedGeneration"] == 3
    assert cond["message"] == "second"


def test_get_condition_missing():
    assert status.get_condition(ConditionType.PAUSING_PIPELINES, {}) == {}


## status_changed ##############################################################


def test_status_changed_ignores_timestamps():
    """Make sure only a transition timestamp difference is not a change"""
    current = {}
    status.mark_deployed(current, 1)
    new = copy.deepcopy(current)
    new["conditions"][0][status.TIMESTAMP_KEY] = "2020-01-01T00:00:00Z"
    assert not status.status_changed(current, new)


def test_status_changed_real_change():
    current = {}
    status.mark_deployed(current, 1)
    new = copy.deepcopy(current)
    status.mark_deployed(new, 2)
    assert status.status_changed(current, new)


def test_status_changed_non_dict():
    assert status.status_changed(None, {})


def test_copy_status():
    resource = {"status": {"phase": "Deployed"}}
    copied = status.copy_status(resource)
    copied["phase"] = "Failed"
    assert resource["status"]["phase"] == "Deployed"
    assert status.copy_status({}) == {}
