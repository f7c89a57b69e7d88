"""
Tests for the pause coordination helpers
"""

# Standard
from datetime import datetime, timedelta, timezone

# Local
from numaplane import constants
from numaplane.controller.pause import (
    PauseRegistry,
    allows_data_loss,
    is_drained,
    paused_seconds,
    update_pause_status,
)
from numaplane.status import (
    PAUSE_BEGIN_KEY,
    PAUSE_END_KEY,
    PAUSE_STATUS_KEY,
    ChildPhase,
    ChildStatus,
    ConditionType,
    get_condition,
)
from numaplane.test_helpers.helpers import (
    TEST_NAMESPACE,
    MockDeployManager,
    make_child_status,
    setup_pipeline_rollout,
)
from numaplane.utils import parse_timestamp

## Helpers #####################################################################

ISBSVC = "my-isbsvc"


def make_pipeline(name, status=None, parent=None, isbsvc=ISBSVC):
    labels = {constants.LABEL_ISBSVC_NAME: isbsvc}
    if parent:
        labels[constants.LABEL_PARENT_ROLLOUT] = parent
    pipeline = {
        "apiVersion": constants.CHILD_API_VERSION,
        "kind": constants.PIPELINE_KIND,
        "metadata": {"name": name, "namespace": TEST_NAMESPACE, "labels": labels},
        "spec": {},
    }
    if status is not None:
        pipeline["status"] = status
    return pipeline


DRAINED = make_child_status(phase="Paused", drained_on_pause=True)
RUNNING = make_child_status(phase="Running")

## PauseRegistry ###############################################################


def test_pause_request_unknown_by_default():
    assert PauseRegistry().get_pause_request(TEST_NAMESPACE, ISBSVC) is None


def test_request_pause_and_resume():
    registry = PauseRegistry()
    registry.request_pause(TEST_NAMESPACE, ISBSVC)
    assert registry.get_pause_request(TEST_NAMESPACE, ISBSVC) is True
    registry.request_resume(TEST_NAMESPACE, ISBSVC)
    assert registry.get_pause_request(TEST_NAMESPACE, ISBSVC) is False


def test_pause_requests_keyed_by_namespace():
    registry = PauseRegistry()
    registry.request_pause(TEST_NAMESPACE, ISBSVC)
    assert registry.get_pause_request("other", ISBSVC) is None


def test_delete_pause_request():
    registry = PauseRegistry()
    registry.request_pause(TEST_NAMESPACE, ISBSVC)
    registry.delete_pause_request(TEST_NAMESPACE, ISBSVC)
    assert registry.get_pause_request(TEST_NAMESPACE, ISBSVC) is None


def test_all_pipelines_paused_no_pipelines():
    assert PauseRegistry().all_pipelines_paused(MockDeployManager(), TEST_NAMESPACE, ISBSVC)


def test_all_pipelines_paused_drained_and_failed():
    dm = MockDeployManager(
        resources=[
            make_pipeline("a", DRAINED),
            make_pipeline("b", make_child_status(phase="Failed")),
            make_pipeline("c", RUNNING, isbsvc="other"),
        ]
    )
    assert PauseRegistry().all_pipelines_paused(dm, TEST_NAMESPACE, ISBSVC)


def test_all_pipelines_paused_not_drained():
    """Paused without drainedOnPause is not safe"""
    dm = MockDeployManager(
        resources=[
            make_pipeline("a", DRAINED),
            make_pipeline("b", make_child_status(phase="Paused", drained_on_pause=False)),
        ]
    )
    assert not PauseRegistry().all_pipelines_paused(dm, TEST_NAMESPACE, ISBSVC)


def test_all_pipelines_paused_allow_data_loss():
    rollout = setup_pipeline_rollout(
        name="lossy", labels={constants.LABEL_ALLOW_DATA_LOSS: "true"}
    )
    dm = MockDeployManager(
        resources=[rollout, make_pipeline("lossy", RUNNING, parent="lossy")]
    )
    assert PauseRegistry().all_pipelines_paused(dm, TEST_NAMESPACE, ISBSVC)


def test_all_pipelines_paused_parent_without_label():
    rollout = setup_pipeline_rollout(name="strict")
    dm = MockDeployManager(
        resources=[rollout, make_pipeline("strict", RUNNING, parent="strict")]
    )
    assert not PauseRegistry().all_pipelines_paused(dm, TEST_NAMESPACE, ISBSVC)


def test_allows_data_loss():
    assert not allows_data_loss(None)
    assert not allows_data_loss(setup_pipeline_rollout())
    assert not allows_data_loss(
        setup_pipeline_rollout(labels={constants.LABEL_ALLOW_DATA_LOSS: "yes"})
    )
    assert allows_data_loss(
        setup_pipeline_rollout(labels={constants.LABEL_ALLOW_DATA_LOSS: "true"})
    )


def test_is_drained():
    assert is_drained(ChildStatus(phase=ChildPhase.PAUSED, drained_on_pause=True))
    assert not is_drained(ChildStatus(phase=ChildPhase.PAUSED))
    assert not is_drained(ChildStatus(phase=ChildPhase.PAUSING, drained_on_pause=True))


## Pause Timing ################################################################


def test_update_pause_status_begins_episode():
    status = {}
    begin = update_pause_status(status, ChildStatus(phase=ChildPhase.PAUSING), 1)
    assert begin is not None
    assert status[PAUSE_STATUS_KEY][PAUSE_BEGIN_KEY]
    assert status[PAUSE_STATUS_KEY][PAUSE_END_KEY] is None
    condition = get_condition(ConditionType.PIPELINE_PAUSING_OR_PAUSED, status)
    assert condition["status"] == "True"
    assert condition["reason"] == "PipelinePausing"


def test_update_pause_status_begin_stable_while_paused():
    status = {
        PAUSE_STATUS_KEY: {
            PAUSE_BEGIN_KEY: "2024-01-01T00:00:00Z",
            PAUSE_END_KEY: None,
        }
    }
    begin = update_pause_status(status, ChildStatus(phase=ChildPhase.PAUSED), 1)
    assert begin == parse_timestamp("2024-01-01T00:00:00Z")
    assert status[PAUSE_STATUS_KEY][PAUSE_BEGIN_KEY] == "2024-01-01T00:00:00Z"


def test_update_pause_status_ends_episode_once():
    status = {
        PAUSE_STATUS_KEY: {
            PAUSE_BEGIN_KEY: "2024-01-01T00:00:00Z",
            PAUSE_END_KEY: None,
        }
    }
    assert update_pause_status(status, ChildStatus(phase=ChildPhase.RUNNING), 2) is None
    end = status[PAUSE_STATUS_KEY][PAUSE_END_KEY]
    assert end
    condition = get_condition(ConditionType.PIPELINE_PAUSING_OR_PAUSED, status)
    assert condition["status"] == "False"

    # A second running report leaves the end time alone
    status[PAUSE_STATUS_KEY][PAUSE_END_KEY] = "2024-01-02T00:00:00Z"
    update_pause_status(status, ChildStatus(phase=ChildPhase.RUNNING), 2)
    assert status[PAUSE_STATUS_KEY][PAUSE_END_KEY] == "2024-01-02T00:00:00Z"


def test_update_pause_status_new_episode_after_end():
    status = {
        PAUSE_STATUS_KEY: {
            PAUSE_BEGIN_KEY: "2024-01-01T00:00:00Z",
            PAUSE_END_KEY: "2024-01-02T00:00:00Z",
        }
    }
    begin = update_pause_status(status, ChildStatus(phase=ChildPhase.PAUSED), 1)
    assert begin > parse_timestamp("2024-01-02T00:00:00Z")


def test_update_pause_status_never_paused():
    status = {}
    update_pause_status(status, ChildStatus(phase=ChildPhase.RUNNING), 1)
    assert status[PAUSE_STATUS_KEY] == {PAUSE_BEGIN_KEY: None, PAUSE_END_KEY: None}


def test_paused_seconds():
    assert paused_seconds(None) == 0.0
    begin = datetime.now(timezone.utc) - timedelta(seconds=30)
    assert 29 <= paused_seconds(begin) <= 60
    assert paused_seconds(datetime.now(timezone.utc) + timedelta(hours=1)) == 0.0
