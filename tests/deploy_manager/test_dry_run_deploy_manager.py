"""Tests for the DryRunDeployManager

NOTE: The majority of the functionality is exercised by the controller tests,
    so the tests here only cover the fake api server behaviors that the
    controllers rely on.
"""
# Standard
from threading import Timer
from unittest.mock import Mock

# Third Party
import pytest

# Local
from numaplane.deploy_manager import DryRunDeployManager, KubeEventType
from numaplane.deploy_manager.owner_references import make_controller_owner_reference
from numaplane.test_helpers.helpers import SOME_OTHER_NAMESPACE, TEST_NAMESPACE

## Helpers #####################################################################

API_VERSION = "foo.bar/v1"
KIND = "Foo"


def make_obj(
    api_version=API_VERSION,
    kind=KIND,
    name="foobar",
    namespace=SOME_OTHER_NAMESPACE,
    spec=None,
    labels=None,
    **metadata,
):
    return {
        "apiVersion": api_version,
        "kind": kind,
        "metadata": {
            "name": name,
            "namespace": namespace,
            "labels": labels if labels is not None else {"app": "foobar"},
            **metadata,
        },
        "spec": spec if spec is not None else {"a": 1},
    }


def get(dm, name="foobar", namespace=SOME_OTHER_NAMESPACE, kind=KIND):
    _, content = dm.get_object_current_state(kind, name, namespace)
    return content


## Watches #####################################################################


def test_watches_triggered():
    """Test that registered watches are triggered when a resource of the right
    GVK is deployed
    """
    dm = DryRunDeployManager()
    mock1 = Mock()
    mock2 = Mock()
    dm.register_watch(API_VERSION, KIND, mock1)
    dm.register_watch(API_VERSION, KIND, mock2)
    dm.deploy([make_obj()])

    mock1.assert_called_once()
    mock2.assert_called_once()
    assert mock1.call_args[0][0]["metadata"]["name"] == "foobar"


def test_watches_not_triggered_other_resource():
    """Test that a registered watch is not triggered for an object with a
    different GVK
    """
    dm = DryRunDeployManager()
    mock = Mock()
    dm.register_watch("foo.bar/v2", KIND, mock)
    dm.deploy([make_obj()])
    assert not mock.called


def test_watches_not_triggered_no_change():
    """Redeploying an identical object is not an event"""
    dm = DryRunDeployManager()
    dm.deploy([make_obj()])
    mock = Mock()
    dm.register_watch(API_VERSION, KIND, mock)
    assert dm.deploy([make_obj()]) == (True, False)
    assert not mock.called


def test_delete_callback_triggered():
    dm = DryRunDeployManager()
    mock = Mock()
    dm.register_delete_callback(API_VERSION, KIND, mock)
    dm.deploy([make_obj()])
    assert not mock.called
    dm.disable([make_obj()])
    mock.assert_called_once()


@pytest.mark.timeout(10)
def test_watch_objects():
    dm = DryRunDeployManager()
    dm.deploy([make_obj()])

    deploy_timer_event = Timer(
        interval=0.5,
        function=dm.deploy,
        args=[[make_obj(name="barfoo")]],
    )
    update_timer_event = Timer(
        interval=1,
        function=dm.deploy,
        args=[[make_obj(name="barfoo", spec={"modified": 1})]],
    )
    disable_timer_event = Timer(interval=1.5, function=dm.disable, args=[[make_obj()]])
    deploy_timer_event.start()
    update_timer_event.start()
    disable_timer_event.start()

    captured_events = list(
        dm.watch_objects(KIND, API_VERSION, namespace=SOME_OTHER_NAMESPACE, timeout=3)
    )

    assert [(event.type, event.resource.name) for event in captured_events] == [
        (KubeEventType.ADDED, "foobar"),
        (KubeEventType.ADDED, "barfoo"),
        (KubeEventType.MODIFIED, "barfoo"),
        (KubeEventType.DELETED, "foobar"),
    ]


@pytest.mark.timeout(5)
def test_watch_objects_callbacks_removed():
    """Make sure a finished watch unregisters its callbacks"""
    dm = DryRunDeployManager()
    list(dm.watch_objects(KIND, API_VERSION, namespace=SOME_OTHER_NAMESPACE, timeout=1))
    assert not any(dm._watches.values())
    assert not any(dm._delete_callbacks.values())


def test_pre_deploy_resources_keep_status():
    """Pre-populated resources carry their status"""
    obj = make_obj()
    obj["status"] = {"phase": "Running"}
    dm = DryRunDeployManager(resources=[obj])
    assert get(dm)["status"] == {"phase": "Running"}


## Server managed fields #######################################################


def test_deploy_sets_server_fields():
    dm = DryRunDeployManager()
    dm.deploy([make_obj()])
    metadata = get(dm)["metadata"]
    assert metadata["uid"]
    assert metadata["creationTimestamp"]
    assert metadata["resourceVersion"]
    assert metadata["generation"] == 1


def test_generation_moves_only_on_spec_change():
    dm = DryRunDeployManager()
    dm.deploy([make_obj()])
    uid = get(dm)["metadata"]["uid"]

    dm.deploy([make_obj(labels={"app": "other"})])
    assert get(dm)["metadata"]["generation"] == 1

    dm.deploy([make_obj(spec={"a": 2})])
    assert get(dm)["metadata"]["generation"] == 2
    assert get(dm)["metadata"]["uid"] == uid


def test_deploy_keeps_status():
    """Writing the main resource does not overwrite the status subresource"""
    dm = DryRunDeployManager()
    dm.deploy([make_obj()])
    dm.set_status(KIND, "foobar", SOME_OTHER_NAMESPACE, {"phase": "Running"})

    update = make_obj(spec={"a": 2})
    update["status"] = {"phase": "Bogus"}
    dm.deploy([update])
    assert get(dm)["status"] == {"phase": "Running"}


def test_set_status_changed():
    dm = DryRunDeployManager()
    dm.deploy([make_obj()])
    assert dm.set_status(KIND, "foobar", SOME_OTHER_NAMESPACE, {"x": 1}) == (True, True)
    assert dm.set_status(KIND, "foobar", SOME_OTHER_NAMESPACE, {"x": 1}) == (True, False)
    assert get(dm)["metadata"]["generation"] == 1


def test_set_status_missing_object():
    dm = DryRunDeployManager()
    assert dm.set_status(KIND, "foobar", SOME_OTHER_NAMESPACE, {"x": 1}) == (False, False)


def test_strict_resource_version():
    dm = DryRunDeployManager(strict_resource_version=True)
    dm.deploy([make_obj()])
    stale = get(dm)
    dm.deploy([make_obj(spec={"a": 2})])
    stale["spec"] = {"a": 3}
    success, changed = dm.deploy([stale])
    assert not success
    assert not changed
    assert get(dm)["spec"] == {"a": 2}


## Patch #######################################################################


def test_patch_merges():
    dm = DryRunDeployManager()
    dm.deploy([make_obj(spec={"a": 1, "b": {"c": 2}})])
    assert dm.patch(KIND, "foobar", SOME_OTHER_NAMESPACE, {"spec": {"b": {"d": 3}}}) == (
        True,
        True,
    )
    assert get(dm)["spec"] == {"a": 1, "b": {"c": 2, "d": 3}}


def test_patch_null_removes_key():
    dm = DryRunDeployManager()
    dm.deploy([make_obj(spec={"a": 1, "b": 2})])
    dm.patch(KIND, "foobar", SOME_OTHER_NAMESPACE, {"spec": {"b": None}})
    assert get(dm)["spec"] == {"a": 1}


def test_patch_missing_object():
    dm = DryRunDeployManager()
    assert dm.patch(KIND, "foobar", SOME_OTHER_NAMESPACE, {"spec": {}}) == (False, False)


## Deletion ####################################################################


def test_disable_without_finalizers_removes():
    dm = DryRunDeployManager()
    dm.deploy([make_obj()])
    assert dm.disable([make_obj()]) == (True, True)
    assert get(dm) is None


def test_disable_missing_object():
    dm = DryRunDeployManager()
    assert dm.disable([make_obj()]) == (True, False)


def test_disable_with_finalizers_marks_for_deletion():
    """An object with finalizers is only marked and removed once the
    finalizers are cleared
    """
    dm = DryRunDeployManager()
    dm.deploy([make_obj(finalizers=["foo.bar/finalizer"])])
    watch = Mock()
    dm.register_watch(API_VERSION, KIND, watch)

    assert dm.disable([make_obj()]) == (True, True)
    content = get(dm)
    assert content is not None
    assert content["metadata"]["deletionTimestamp"]
    watch.assert_called_once()

    dm.patch(KIND, "foobar", SOME_OTHER_NAMESPACE, {"metadata": {"finalizers": None}})
    assert get(dm) is None


def test_owner_reference_garbage_collection():
    """Removing an owner removes the objects that reference it"""
    dm = DryRunDeployManager()
    dm.deploy([make_obj(kind="Owner", name="owner")])
    owner = get(dm, name="owner", kind="Owner")
    dm.deploy(
        [
            make_obj(
                kind="Child",
                name="child",
                ownerReferences=[make_controller_owner_reference(owner)],
            ),
            make_obj(kind="Child", name="orphan"),
        ]
    )

    dm.disable([owner])
    assert get(dm, name="child", kind="Child") is None
    assert get(dm, name="orphan", kind="Child") is not None


## Lookups #####################################################################


@pytest.mark.parametrize(
    ["label_selector", "field_selector", "expected"],
    [
        (None, None, ["a", "b", "c"]),
        ("app=foobar", None, ["a", "b"]),
        ("app!=foobar", None, ["c"]),
        ("tier in (frontend, backend)", None, ["a", "c"]),
        ("tier notin (frontend)", None, ["b", "c"]),
        ("tier", None, ["a", "c"]),
        ("!tier", None, ["b"]),
        ("app=foobar,tier", None, ["a"]),
        (None, "metadata.name=b", ["b"]),
        (None, "spec.a=2", ["c"]),
    ],
)
def test_filter_objects_current_state(label_selector, field_selector, expected):
    dm = DryRunDeployManager()
    dm.deploy(
        [
            make_obj(name="a", labels={"app": "foobar", "tier": "frontend"}),
            make_obj(name="b", labels={"app": "foobar"}),
            make_obj(name="c", labels={"app": "other", "tier": "backend"}, spec={"a": 2}),
            make_obj(name="d", namespace=TEST_NAMESPACE),
        ]
    )
    success, content = dm.filter_objects_current_state(
        KIND,
        namespace=SOME_OTHER_NAMESPACE,
        label_selector=label_selector,
        field_selector=field_selector,
    )
    assert success
    assert sorted(obj["metadata"]["name"] for obj in content) == expected


def test_filter_objects_all_namespaces():
    dm = DryRunDeployManager()
    dm.deploy([make_obj(name="a"), make_obj(name="b", namespace=TEST_NAMESPACE)])
    _, content = dm.filter_objects_current_state(KIND)
    assert len(content) == 2


def test_filter_object_state_incorrect_api_version():
    dm = DryRunDeployManager()
    dm.deploy([make_obj()])
    success, content = dm.filter_objects_current_state(KIND, api_version="foo.bar/v2")
    assert success
    assert content == []


def test_live_state_matches_current_state():
    dm = DryRunDeployManager()
    dm.deploy([make_obj()])
    assert dm.get_object_live_state(KIND, "foobar", SOME_OTHER_NAMESPACE) == (
        True,
        get(dm),
    )


## Events ######################################################################


def test_record_event():
    dm = DryRunDeployManager()
    dm.deploy([make_obj()])
    assert dm.record_event(get(dm), "Warning", "ReconcileFailed", "boom")
    assert len(dm.events) == 1
    event = dm.events[0]
    assert event["involvedObject"]["name"] == "foobar"
    assert event["involvedObject"]["uid"] == get(dm)["metadata"]["uid"]
    assert event["type"] == "Warning"
    assert event["reason"] == "ReconcileFailed"
