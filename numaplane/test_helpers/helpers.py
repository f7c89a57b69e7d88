"""
This module holds common helper functions for making testing easy
"""

# Standard
from contextlib import contextmanager
from unittest import mock
import copy
import inspect
import os

# Third Party
from prometheus_client import CollectorRegistry

# First Party
import alog

# Local
from numaplane import constants
from numaplane.cmd.run_controller_cmd import RunControllerCmd
from numaplane.config import library_config as config_detail_dict
from numaplane.controller.isbservice_rollout import ISBServiceRolloutReconciler
from numaplane.controller.pause import PauseRegistry
from numaplane.controller.pipeline_rollout import PipelineRolloutReconciler
from numaplane.deploy_manager.dry_run_deploy_manager import DryRunDeployManager
from numaplane.metrics import ControllerMetrics

log = alog.use_channel("TEST")


def configure_logging():
    alog.configure(
        os.environ.get("LOG_LEVEL", "off"),
        os.environ.get("LOG_FILTERS", ""),
        formatter="json"
        if os.environ.get("LOG_JSON", "").lower() == "true"
        else "pretty",
        thread_id=os.environ.get("LOG_THREAD_ID", "").lower() == "true",
    )


configure_logging()

TEST_NAMESPACE = "test"
SOME_OTHER_NAMESPACE = "somewhere"

TEST_PIPELINE_ROLLOUT_NAME = "my-pipeline"
TEST_ISBSVC_ROLLOUT_NAME = "my-isbsvc"

PIPELINE_SPEC = {
    "interStepBufferServiceName": TEST_ISBSVC_ROLLOUT_NAME,
    "vertices": [
        {"name": "in", "source": {"generator": {"rpu": 5, "duration": "1s"}}},
        {"name": "out", "sink": {"log": {}}},
    ],
    "edges": [{"from": "in", "to": "out"}],
}

ISBSVC_SPEC = {
    "jetstream": {
        "version": "2.9.6",
        "persistence": {"volumeSize": "10Mi"},
    }
}

HEALTHY_PIPELINE_CONDITIONS = [
    {"type": "VerticesHealthy", "status": "True", "reason": "Successful"},
    {"type": "SideInputsManagersHealthy", "status": "True", "reason": "Successful"},
    {"type": "DaemonServiceHealthy", "status": "True", "reason": "Successful"},
]

HEALTHY_ISBSVC_CONDITIONS = [
    {"type": "ChildrenResourcesHealthy", "status": "True", "reason": "Healthy"},
]

## Manifest Builders ###########################################################


def setup_rollout(
    kind,
    child_spec_key,
    child_spec,
    name,
    namespace=TEST_NAMESPACE,
    generation=1,
    labels=None,
    status=None,
    finalizers=None,
    child_metadata=None,
):
    """Build a rollout manifest declaring the given child spec"""
    metadata = {
        "name": name,
        "namespace": namespace,
        "generation": generation,
    }
    if labels:
        metadata["labels"] = dict(labels)
    if finalizers:
        metadata["finalizers"] = list(finalizers)
    child = {"spec": copy.deepcopy(child_spec)}
    if child_metadata:
        child["metadata"] = copy.deepcopy(child_metadata)
    rollout = {
        "apiVersion": constants.ROLLOUT_API_VERSION,
        "kind": kind,
        "metadata": metadata,
        "spec": {child_spec_key: child},
    }
    if status is not None:
        rollout["status"] = copy.deepcopy(status)
    return rollout


def setup_pipeline_rollout(
    name=TEST_PIPELINE_ROLLOUT_NAME, pipeline_spec=None, **kwargs
):
    return setup_rollout(
        constants.PIPELINE_ROLLOUT_KIND,
        "pipeline",
        PIPELINE_SPEC if pipeline_spec is None else pipeline_spec,
        name,
        **kwargs,
    )


def setup_isbsvc_rollout(name=TEST_ISBSVC_ROLLOUT_NAME, isbsvc_spec=None, **kwargs):
    return setup_rollout(
        constants.ISBSVC_ROLLOUT_KIND,
        "interStepBufferService",
        ISBSVC_SPEC if isbsvc_spec is None else isbsvc_spec,
        name,
        **kwargs,
    )


def make_child_status(
    phase="Running",
    observed_generation=1,
    conditions=None,
    drained_on_pause=None,
):
    """Build the status a numaflow controller reports on a child"""
    status = {
        "phase": phase,
        "observedGeneration": observed_generation,
        "conditions": copy.deepcopy(conditions or []),
    }
    if drained_on_pause is not None:
        status["drainedOnPause"] = drained_on_pause
    return status


def set_child_status(deploy_manager, kind, name, namespace=TEST_NAMESPACE, **kwargs):
    """Act as the numaflow controller and report a status on a child. The
    observedGeneration defaults to the child's current generation.
    """
    _, child = deploy_manager.get_object_current_state(
        kind, name, namespace, constants.CHILD_API_VERSION
    )
    assert child is not None, f"No {kind} {name} to set status on"
    kwargs.setdefault("observed_generation", child["metadata"]["generation"])
    if kind == constants.PIPELINE_KIND:
        kwargs.setdefault("conditions", HEALTHY_PIPELINE_CONDITIONS)
    else:
        kwargs.setdefault("conditions", HEALTHY_ISBSVC_CONDITIONS)
    status = make_child_status(**kwargs)
    success, _ = deploy_manager.set_status(
        kind, name, namespace, status, constants.CHILD_API_VERSION
    )
    assert success
    return status


## Reconcilers #################################################################


def setup_reconcilers(deploy_manager, **kwargs):
    """Build a pipeline and an ISB service reconciler sharing a pause registry
    and reporting to a private metrics registry. Workers are not started.
    """
    kwargs.setdefault("pause_registry", PauseRegistry())
    kwargs.setdefault("metrics", ControllerMetrics(registry=CollectorRegistry()))
    kwargs.setdefault("num_workers", 1)
    pipeline_reconciler = PipelineRolloutReconciler(deploy_manager, **kwargs)
    isbsvc_reconciler = ISBServiceRolloutReconciler(
        deploy_manager,
        pipeline_enqueue=pipeline_reconciler.enqueue,
        **kwargs,
    )
    return pipeline_reconciler, isbsvc_reconciler


def get_rollout(deploy_manager, kind, name, namespace=TEST_NAMESPACE):
    return deploy_manager.get_object_current_state(
        kind, name, namespace, constants.ROLLOUT_API_VERSION
    )[1]


def get_child(deploy_manager, kind, name, namespace=TEST_NAMESPACE):
    return deploy_manager.get_object_current_state(
        kind, name, namespace, constants.CHILD_API_VERSION
    )[1]


def get_condition_status(rollout, condition_type):
    for condition in rollout.get("status", {}).get("conditions") or []:
        if condition.get("type") == condition_type:
            return condition.get("status")
    return None


## Config ######################################################################


@contextmanager
def library_config(**config_overrides):
    """This context manager sets library config values temporarily and reverts
    them on completion
    """
    # Override the configs and hang onto the old values
    old_vals = {}
    for key, val in config_overrides.items():
        if key in config_detail_dict:
            old_vals[key] = config_detail_dict[key]
        config_detail_dict[key] = val

    # Yield to the context
    try:
        yield
    finally:
        # Revert to the old values
        for key in config_overrides:
            if key in old_vals:
                config_detail_dict[key] = old_vals[key]
            else:
                del config_detail_dict[key]


@contextmanager
def usde_config(**usde_overrides):
    """Temporarily override values in the usde section of the library config"""
    usde = config_detail_dict.usde
    old_vals = {key: copy.deepcopy(usde[key]) for key in usde_overrides}
    for key, val in usde_overrides.items():
        usde[key] = val
    try:
        yield
    finally:
        for key, val in old_vals.items():
            usde[key] = val


## Failure Simulation ##########################################################


def get_failable_method(fail_flag, method, failure_return=False):
    log.debug4(
        "Setting up failable mock of [%s] with fail flag: %s", str(method), fail_flag
    )

    def failable_method(*args, **kwargs):
        log.debug4(
            "Running failable mock of [%s] with fail flag: %s", str(method), fail_flag
        )
        if isinstance(fail_flag, Exception) or (
            inspect.isclass(fail_flag) and issubclass(fail_flag, Exception)
        ):
            log.debug4("Raising in failable mock")
            raise fail_flag
        if callable(fail_flag):
            log.debug4("Calling callable fail flag")
            res = fail_flag()
            if res is not None:
                return res
        elif fail_flag == "assert":
            log.debug4("Asserting in failable mock")
            raise AssertionError(f"You told me to fail {method}!")
        elif fail_flag:
            log.debug4("Returning %s", failure_return)
            return failure_return
        log.debug4("Passing through (%s, **%s)", args, kwargs)
        res = method(*args, **kwargs)
        log.debug4("Passthrough res: %s", res)
        return res

    return failable_method


class FailOnce:
    """Helper callable that will fail once on the N'th call"""

    def __init__(self, fail_val, fail_number=1):
        self.call_count = 0
        self.fail_number = fail_number
        self.fail_val = fail_val

    def __call__(self, *_, **__):
        self.call_count += 1
        if self.call_count == self.fail_number:
            log.debug("Failing on call %d with %s", self.call_count, self.fail_val)
            if isinstance(self.fail_val, type) and issubclass(self.fail_val, Exception):
                raise self.fail_val("Raising!")
            return self.fail_val
        log.debug("Not failing on call %d", self.call_count)
        return None


class MockDeployManager(DryRunDeployManager):
    """The MockDeployManager wraps a standard DryRunDeployManager and adds
    configuration options to simulate failures in each of its operations.
    """

    def __init__(  # pylint: disable=too-many-arguments,too-many-locals
        self,
        deploy_fail=False,
        deploy_raise=False,
        disable_fail=False,
        disable_raise=False,
        patch_fail=False,
        patch_raise=False,
        get_state_fail=False,
        get_state_raise=False,
        filter_fail=False,
        filter_raise=False,
        set_status_fail=False,
        set_status_raise=False,
        watch_fail=False,
        watch_raise=False,
        auto_enable=True,
        resources=None,
        resource_dir=None,
        **kwargs,
    ):
        """This DeployManager can be configured to have various failure cases
        and will mock the state of the cluster so that get_object_current_state
        will pull its information from the local dict.
        """
        resources = resources or []
        # Parse pre-populated resources if needed
        resources = resources + RunControllerCmd._parse_resource_dir(resource_dir)
        super().__init__(resources, **kwargs)

        self.deploy_fail = "assert" if deploy_raise else deploy_fail
        self.disable_fail = "assert" if disable_raise else disable_fail
        self.patch_fail = "assert" if patch_raise else patch_fail
        self.get_state_fail = "assert" if get_state_raise else get_state_fail
        self.filter_fail = "assert" if filter_raise else filter_fail
        self.set_status_fail = "assert" if set_status_raise else set_status_fail
        self.watch_fail = "assert" if watch_raise else watch_fail

        # If auto-enabling, turn the mocks on now
        if auto_enable:
            self.enable_mocks()

    #######################
    ## Helpers for Tests ##
    #######################

    def enable_mocks(self):
        """Turn the mocks on"""
        self.deploy = mock.Mock(
            side_effect=get_failable_method(
                self.deploy_fail, super().deploy, (False, False)
            )
        )
        self.disable = mock.Mock(
            side_effect=get_failable_method(
                self.disable_fail, super().disable, (False, False)
            )
        )
        self.patch = mock.Mock(
            side_effect=get_failable_method(
                self.patch_fail, super().patch, (False, False)
            )
        )
        self.get_object_current_state = mock.Mock(
            side_effect=get_failable_method(
                self.get_state_fail, super().get_object_current_state, (False, None)
            )
        )
        self.filter_objects_current_state = mock.Mock(
            side_effect=get_failable_method(
                self.filter_fail, super().filter_objects_current_state, (False, [])
            )
        )
        self.set_status = mock.Mock(
            side_effect=get_failable_method(
                self.set_status_fail, super().set_status, (False, False)
            )
        )
        self.watch_objects = mock.Mock(
            side_effect=get_failable_method(self.watch_fail, super().watch_objects, [])
        )

    def get_obj(self, kind, name, namespace=None, api_version=None):
        return self.get_object_current_state(kind, name, namespace, api_version)[1]

    def has_obj(self, *args, **kwargs):
        return self.get_obj(*args, **kwargs) is not None
