"""
Tests for the ControllerManager
"""
# Standard
import time

# Third Party
from prometheus_client import CollectorRegistry
import pytest

# Local
from numaplane import constants
from numaplane.controller.isbservice_rollout import ISBServiceRolloutReconciler
from numaplane.controller.manager import ControllerManager
from numaplane.controller.pipeline_rollout import PipelineRolloutReconciler
from numaplane.deploy_manager.dry_run_deploy_manager import DryRunDeployManager
from numaplane.metrics import ControllerMetrics
from numaplane.test_helpers.helpers import (
    TEST_ISBSVC_ROLLOUT_NAME,
    TEST_NAMESPACE,
    TEST_PIPELINE_ROLLOUT_NAME,
    get_child,
    setup_isbsvc_rollout,
    setup_pipeline_rollout,
)


@pytest.fixture
def manager():
    return ControllerManager(
        deploy_manager=DryRunDeployManager(),
        metrics=ControllerMetrics(registry=CollectorRegistry()),
        namespace=TEST_NAMESPACE,
    )


def test_manager_wiring(manager):
    """Both reconcilers share the pause registry and each has a rollout and a
    child watch
    """
    isbsvc_reconciler, pipeline_reconciler = manager.reconcilers
    assert isinstance(isbsvc_reconciler, ISBServiceRolloutReconciler)
    assert isinstance(pipeline_reconciler, PipelineRolloutReconciler)
    assert isbsvc_reconciler.pause_registry is manager.pause_registry
    assert pipeline_reconciler.pause_registry is manager.pause_registry
    assert isbsvc_reconciler.pipeline_enqueue == pipeline_reconciler.enqueue

    assert len(manager.watch_threads) == 4
    watched = {(thread.kind, thread.namespace) for thread in manager.watch_threads}
    assert watched == {
        (constants.ISBSVC_ROLLOUT_KIND, TEST_NAMESPACE),
        (constants.ISBSVC_KIND, TEST_NAMESPACE),
        (constants.PIPELINE_ROLLOUT_KIND, TEST_NAMESPACE),
        (constants.PIPELINE_KIND, TEST_NAMESPACE),
    }
    manager.stop()


@pytest.mark.timeout(15)
def test_manager_reconciles_rollouts(manager):
    """Rollouts present at startup are picked up by the watches and reconciled
    by the workers
    """
    dm = manager.deploy_manager
    dm.deploy([setup_isbsvc_rollout(), setup_pipeline_rollout()])
    manager.start()
    try:
        while (
            get_child(dm, constants.ISBSVC_KIND, TEST_ISBSVC_ROLLOUT_NAME) is None
            or get_child(dm, constants.PIPELINE_KIND, TEST_PIPELINE_ROLLOUT_NAME)
            is None
        ):
            time.sleep(0.05)
    finally:
        manager.stop()
