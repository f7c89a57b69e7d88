"""
Pause coordination between pipelines and the InterStepBufferService they share.

The ISBServiceRollout reconciler records whether an ISB service needs its
pipelines paused and the PipelineRollout reconcilers read it. The registry is
in memory only: after a restart every entry is unknown until the owning
reconciler runs again, and unknown is never treated as safe.
"""

# Standard
from datetime import datetime, timezone
from threading import RLock
from typing import Dict, Optional, Tuple

# First Party
import alog

# Local
from .. import constants
from ..deploy_manager import DeployManagerBase
from ..exceptions import assert_cluster
from ..status import (
    PAUSE_BEGIN_KEY,
    PAUSE_END_KEY,
    PAUSE_STATUS_KEY,
    ChildPhase,
    ChildStatus,
    mark_pipeline_pausing_or_paused,
    mark_pipeline_unpaused,
    parse_child_status,
)
from ..utils import now_timestamp, parse_timestamp

log = alog.use_channel("PAUSE")


def allows_data_loss(rollout: Optional[dict]) -> bool:
    """True if the rollout is labeled as tolerating loss of in-flight data"""
    if not rollout:
        return False
    labels = rollout.get("metadata", {}).get("labels") or {}
    return labels.get(constants.LABEL_ALLOW_DATA_LOSS) == "true"


def is_drained(child_status: ChildStatus) -> bool:
    return child_status.phase == ChildPhase.PAUSED and child_status.drained_on_pause


class PauseRegistry:
    """Shared table of pause requests keyed by (namespace, isbsvc name)"""

    def __init__(self):
        self._requests: Dict[Tuple[str, str], bool] = {}
        self._lock = RLock()

    def request_pause(self, namespace: str, isbsvc_name: str):
        log.debug2("Pause requested for %s/%s", namespace, isbsvc_name)
        with self._lock:
            self._requests[(namespace, isbsvc_name)] = True

    def request_resume(self, namespace: str, isbsvc_name: str):
        log.debug2("Resume requested for %s/%s", namespace, isbsvc_name)
        with self._lock:
            self._requests[(namespace, isbsvc_name)] = False

    def get_pause_request(self, namespace: str, isbsvc_name: str) -> Optional[bool]:
        """Get the pause request: True if requested, False if not, None if
        unknown
        """
        with self._lock:
            return self._requests.get((namespace, isbsvc_name))

    def delete_pause_request(self, namespace: str, isbsvc_name: str):
        with self._lock:
            self._requests.pop((namespace, isbsvc_name), None)

    def all_pipelines_paused(
        self,
        deploy_manager: DeployManagerBase,
        namespace: str,
        isbsvc_name: str,
    ) -> bool:
        """Determine whether every pipeline using the ISB service is safe to
        run against an update of it. A pipeline is safe if it is paused and
        drained, if it failed, or if its rollout allows data loss.
        """
        success, pipelines = deploy_manager.filter_objects_current_state(
            kind=constants.PIPELINE_KIND,
            namespace=namespace,
            api_version=constants.CHILD_API_VERSION,
            label_selector=f"{constants.LABEL_ISBSVC_NAME}={isbsvc_name}",
        )
        assert_cluster(success, f"Failed to list pipelines of {isbsvc_name}")

        for pipeline in pipelines:
            name = pipeline.get("metadata", {}).get("name")
            child_status = parse_child_status(pipeline)
            if is_drained(child_status) or child_status.phase == ChildPhase.FAILED:
                continue
            if allows_data_loss(
                self._get_parent_rollout(deploy_manager, namespace, pipeline)
            ):
                log.debug3("Pipeline %s allows data loss", name)
                continue
            log.debug2("Pipeline %s/%s is not paused yet", namespace, name)
            return False
        return True

    @staticmethod
    def _get_parent_rollout(
        deploy_manager: DeployManagerBase, namespace: str, pipeline: dict
    ) -> Optional[dict]:
        labels = pipeline.get("metadata", {}).get("labels") or {}
        parent_name = labels.get(constants.LABEL_PARENT_ROLLOUT)
        if not parent_name:
            return None
        success, rollout = deploy_manager.get_object_current_state(
            kind=constants.PIPELINE_ROLLOUT_KIND,
            name=parent_name,
            namespace=namespace,
            api_version=constants.ROLLOUT_API_VERSION,
        )
        assert_cluster(success, f"Failed to fetch PipelineRollout {parent_name}")
        return rollout


## Pause Timing ################################################################


def update_pause_status(
    status: dict, child_status: ChildStatus, generation: int
) -> Optional[datetime]:
    """Track the pause episodes of a pipeline in the rollout status.

    The begin time only moves when a new pause episode starts and the end time
    only moves once per episode.

    Args:
        status:  dict
            The rollout status to update in place
        child_status:  ChildStatus
            The parsed status of the pipeline
        generation:  int
            The generation of the rollout

    Returns:
        pause_begin:  Optional[datetime]
            The begin time of the current pause, None if not paused
    """
    pause_status = status.setdefault(
        PAUSE_STATUS_KEY, {PAUSE_BEGIN_KEY: None, PAUSE_END_KEY: None}
    )
    begin = parse_timestamp(pause_status.get(PAUSE_BEGIN_KEY))
    end = parse_timestamp(pause_status.get(PAUSE_END_KEY))

    if child_status.phase in (ChildPhase.PAUSED, ChildPhase.PAUSING):
        if begin is None or (end is not None and begin <= end):
            pause_status[PAUSE_BEGIN_KEY] = now_timestamp()
            begin = parse_timestamp(pause_status[PAUSE_BEGIN_KEY])
            log.debug2("New pause episode started at %s", begin)
        phase = child_status.phase.value
        mark_pipeline_pausing_or_paused(
            status, f"Pipeline{phase}", f"Pipeline {phase.lower()}", generation
        )
        return begin

    if begin is not None and (end is None or end <= begin):
        pause_status[PAUSE_END_KEY] = now_timestamp()
        log.debug2("Pause episode ended at %s", pause_status[PAUSE_END_KEY])
    mark_pipeline_unpaused(status, generation)
    return None


def paused_seconds(pause_begin: Optional[datetime]) -> float:
    if pause_begin is None:
        return 0.0
    return max((datetime.now(timezone.utc) - pause_begin).total_seconds(), 0.0)
