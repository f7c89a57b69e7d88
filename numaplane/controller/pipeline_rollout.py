"""
Reconciler for PipelineRollouts and their Pipelines
"""

# Standard
from typing import Optional
import copy

# First Party
import alog

# Local
from .. import constants
from ..exceptions import assert_cluster
from ..metrics import SYSTEM_PAUSE, USER_PAUSE
from ..status import ChildPhase, parse_child_status
from ..usde import UpgradeStrategy
from ..utils import nested_get, nested_set
from .child import get_declared_child
from .health import pipeline_health, set_health_condition
from .pause import allows_data_loss, is_drained, paused_seconds, update_pause_status
from .rollout_reconciler import RolloutReconciler

log = alog.use_channel("PPLRO")

# Merge patch requesting a pipeline to pause
PAUSE_PATCH = {"spec": {"lifecycle": {"desiredPhase": constants.DESIRED_PHASE_PAUSED}}}


def get_isbsvc_name(pipeline_spec: dict) -> str:
    """Name of the InterStepBufferService a pipeline spec runs on"""
    return (
        pipeline_spec.get("interStepBufferServiceName")
        or constants.DEFAULT_ISBSVC_NAME
    )


class PipelineRolloutReconciler(RolloutReconciler):
    """Reconciles PipelineRollouts. Pipelines pause and drain before a change
    that could lose in-flight data, either their own or one of the
    InterStepBufferService they run on.
    """

    controller_name = "pipeline-rollout"
    rollout_kind = constants.PIPELINE_ROLLOUT_KIND
    child_kind = constants.PIPELINE_KIND
    child_spec_key = "pipeline"

    def child_labels(self, rollout: dict) -> dict:
        declared_spec = get_declared_child(self, rollout).get("spec") or {}
        return {
            constants.LABEL_ISBSVC_NAME: get_isbsvc_name(declared_spec),
            constants.LABEL_PARENT_ROLLOUT: rollout["metadata"]["name"],
        }

    ## PPND ####################################################################

    def need_ppnd(
        self, rollout: dict, desired: dict, own_change_needs_ppnd: bool
    ) -> Optional[bool]:
        if own_change_needs_ppnd:
            return True

        namespace = rollout["metadata"].get("namespace")
        isbsvc_name = get_isbsvc_name(desired.get("spec") or {})
        pause_request = self.pause_registry.get_pause_request(namespace, isbsvc_name)
        if pause_request is None:
            if self._isbsvc_managed(namespace, isbsvc_name):
                log.debug(
                    "Pause request of %s/%s unknown until its rollout reconciles",
                    namespace,
                    isbsvc_name,
                )
                return None
            return False
        return pause_request

    def process_with_ppnd(self, rollout: dict, existing: dict, desired: dict) -> bool:
        """Pause the pipeline if its change or its ISB service requires it,
        and apply the new definition once it has drained
        """
        namespace = rollout["metadata"].get("namespace")
        pipeline_name = existing["metadata"]["name"]
        isbsvc_name = get_isbsvc_name(desired.get("spec") or {})

        needs_update, recommended = self.decision_engine.resource_needs_updating(
            desired, existing
        )
        isbsvc_pausing = bool(
            self.pause_registry.get_pause_request(namespace, isbsvc_name)
        )
        need_pause = (
            needs_update and recommended == UpgradeStrategy.PPND
        ) or isbsvc_pausing

        if need_pause and not allows_data_loss(rollout):
            child_status = parse_child_status(existing)
            failed = child_status.phase == ChildPhase.FAILED
            if not (is_drained(child_status) or failed):
                current_phase = nested_get(
                    existing.get("spec") or {}, constants.DESIRED_PHASE_PATH
                )
                if current_phase != constants.DESIRED_PHASE_PAUSED:
                    log.info("Pausing pipeline %s/%s", namespace, pipeline_name)
                    self._pause(existing)
                return False

            if isbsvc_pausing:
                log.debug(
                    "ISB service %s still pausing, keeping %s paused",
                    isbsvc_name,
                    pipeline_name,
                )
                paused = copy.deepcopy(desired)
                nested_set(
                    paused.setdefault("spec", {}),
                    constants.DESIRED_PHASE_PATH,
                    constants.DESIRED_PHASE_PAUSED,
                )
                self._apply(paused)
                return False

        log.info("Applying pipeline %s/%s", namespace, pipeline_name)
        self._apply(desired)
        return True

    ## Status ##################################################################

    def update_child_status(
        self, rollout: dict, child: dict, created: bool = False
    ):  # pylint: disable=unused-argument
        metadata = rollout["metadata"]
        namespace, name = metadata.get("namespace"), metadata["name"]
        generation = metadata.get("generation")
        status = rollout["status"]

        child_status = parse_child_status(child)
        log.debug2("Pipeline status: %s", child_status)
        health = pipeline_health(child_status, child["metadata"].get("generation") or 0)
        set_health_condition(status, health, generation)
        self.metrics.set_rollout_health(
            self.rollout_kind, namespace, name, health.metric_value
        )

        pause_begin = update_pause_status(status, child_status, generation)
        if pause_begin is None:
            self.metrics.clear_paused_seconds(namespace, name)
        else:
            self.metrics.set_paused_seconds(
                namespace,
                name,
                USER_PAUSE if self._user_paused(rollout) else SYSTEM_PAUSE,
                paused_seconds(pause_begin),
            )

    ## Implementation Details ##################################################

    def _user_paused(self, rollout: dict) -> bool:
        declared_spec = get_declared_child(self, rollout).get("spec") or {}
        return (
            nested_get(declared_spec, constants.DESIRED_PHASE_PATH)
            == constants.DESIRED_PHASE_PAUSED
        )

    def _isbsvc_managed(self, namespace: str, isbsvc_name: str) -> bool:
        """True if the ISB service is the child of an ISBServiceRollout"""
        success, isbsvc = self.deploy_manager.get_object_current_state(
            kind=constants.ISBSVC_KIND,
            name=isbsvc_name,
            namespace=namespace,
            api_version=constants.CHILD_API_VERSION,
        )
        assert_cluster(success, f"Failed to get InterStepBufferService {isbsvc_name}")
        if isbsvc is None:
            return False
        labels = isbsvc.get("metadata", {}).get("labels") or {}
        return constants.LABEL_PARENT_ROLLOUT in labels

    def _pause(self, pipeline: dict):
        metadata = pipeline["metadata"]
        success, _ = self.deploy_manager.patch(
            kind=self.child_kind,
            name=metadata["name"],
            namespace=metadata.get("namespace"),
            patch=PAUSE_PATCH,
            api_version=constants.CHILD_API_VERSION,
        )
        assert_cluster(success, f"Failed to pause pipeline {metadata['name']}")
