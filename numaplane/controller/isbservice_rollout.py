"""
Reconciler for ISBServiceRollouts and their InterStepBufferServices
"""

# Standard
from typing import Callable, Optional

# First Party
import alog

# Local
from .. import constants
from ..exceptions import assert_cluster
from ..status import (
    ChildPhase,
    mark_deployed,
    mark_pausing_pipelines,
    mark_pipelines_resumed,
    observed_generation_current,
    parse_child_status,
)
from ..usde import UpgradeStrategy
from .child import list_children
from .health import isbsvc_health, set_health_condition
from .rollout_reconciler import RolloutReconciler

log = alog.use_channel("ISBRO")


class ISBServiceRolloutReconciler(RolloutReconciler):
    """Reconciles ISBServiceRollouts. A change that could lose in-flight data
    is only applied once every pipeline running on the ISB service has paused
    and drained.
    """

    controller_name = "isbservice-rollout"
    rollout_kind = constants.ISBSVC_ROLLOUT_KIND
    child_kind = constants.ISBSVC_KIND
    child_spec_key = "interStepBufferService"

    def __init__(
        self,
        *args,
        pipeline_enqueue: Optional[Callable[[str, str], None]] = None,
        **kwargs,
    ):
        """
        Args:
            *args, **kwargs:
                Passed to RolloutReconciler
            pipeline_enqueue:  Optional[Callable[[str, str], None]]
                Enqueues a PipelineRollout by namespace and name so pipelines
                react to pause requests promptly
        """
        super().__init__(*args, **kwargs)
        self.pipeline_enqueue = pipeline_enqueue

    def child_labels(self, rollout: dict) -> dict:
        return {constants.LABEL_PARENT_ROLLOUT: rollout["metadata"]["name"]}

    ## PPND ####################################################################

    def need_ppnd(
        self, rollout: dict, desired: dict, own_change_needs_ppnd: bool
    ) -> Optional[bool]:
        return own_change_needs_ppnd

    def process_with_ppnd(self, rollout: dict, existing: dict, desired: dict) -> bool:
        """Pause the dependent pipelines, apply the change once they have all
        drained, and resume them once the ISB service runs the new definition
        """
        namespace = rollout["metadata"].get("namespace")
        generation = rollout["metadata"].get("generation")
        isbsvc_name = existing["metadata"]["name"]

        needs_update, recommended = self.decision_engine.resource_needs_updating(
            desired, existing
        )
        if needs_update and recommended == UpgradeStrategy.PPND:
            self.pause_registry.request_pause(namespace, isbsvc_name)
            self._enqueue_pipelines(namespace, isbsvc_name)
            mark_pausing_pipelines(rollout["status"], generation)
            if not self.pause_registry.all_pipelines_paused(
                self.deploy_manager, namespace, isbsvc_name
            ):
                log.info("Waiting for pipelines of %s to pause", isbsvc_name)
                return False
            log.info("All pipelines of %s paused, applying update", isbsvc_name)
            self._apply(desired)
            mark_deployed(rollout["status"], generation)
            return False

        if needs_update:
            self._apply(desired)
            mark_deployed(rollout["status"], generation)
            return False

        child_status = parse_child_status(existing)
        if child_status.phase != ChildPhase.RUNNING or not observed_generation_current(
            existing
        ):
            log.debug("Waiting for %s to run the new definition", isbsvc_name)
            return False

        log.info("ISB service %s updated, resuming pipelines", isbsvc_name)
        self.pause_registry.request_resume(namespace, isbsvc_name)
        self._enqueue_pipelines(namespace, isbsvc_name)
        mark_pipelines_resumed(rollout["status"], generation)
        return True

    ## Status ##################################################################

    def update_child_status(self, rollout: dict, child: dict, created: bool = False):
        metadata = rollout["metadata"]
        namespace, name = metadata.get("namespace"), metadata["name"]

        health = isbsvc_health(
            parse_child_status(child), child["metadata"].get("generation") or 0
        )
        set_health_condition(rollout["status"], health, metadata.get("generation"))
        self.metrics.set_rollout_health(
            self.rollout_kind, namespace, name, health.metric_value
        )

        # Without a PPND upgrade in progress the pipelines are free to run. A
        # new ISB service leaves the request unknown until its next pass
        if (
            not created
            and self.strategy_manager.get_strategy(rollout) == UpgradeStrategy.NO_OP
        ):
            self.pause_registry.request_resume(namespace, child["metadata"]["name"])

    def on_rollout_deleted(self, rollout: dict):
        namespace = rollout["metadata"].get("namespace")
        for child in list_children(self, rollout):
            isbsvc_name = child["metadata"]["name"]
            log.debug2("Dropping pause request of %s/%s", namespace, isbsvc_name)
            self.pause_registry.delete_pause_request(namespace, isbsvc_name)
            self._enqueue_pipelines(namespace, isbsvc_name)

    ## Implementation Details ##################################################

    def _enqueue_pipelines(self, namespace: str, isbsvc_name: str):
        """Enqueue the PipelineRollouts of every pipeline on the ISB service"""
        if self.pipeline_enqueue is None:
            return
        success, pipelines = self.deploy_manager.filter_objects_current_state(
            kind=constants.PIPELINE_KIND,
            namespace=namespace,
            api_version=constants.CHILD_API_VERSION,
            label_selector=f"{constants.LABEL_ISBSVC_NAME}={isbsvc_name}",
        )
        assert_cluster(success, f"Failed to list pipelines of {isbsvc_name}")
        for pipeline in pipelines:
            labels = pipeline.get("metadata", {}).get("labels") or {}
            parent = labels.get(constants.LABEL_PARENT_ROLLOUT)
            if parent:
                self.pipeline_enqueue(namespace, parent)
