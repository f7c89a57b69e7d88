"""
Lifecycle of the children of a rollout: naming, building, merging, comparing
and garbage collecting child definitions
"""

# Standard
from typing import List, Optional
import abc
import copy

# First Party
import alog

# Local
from .. import constants
from ..deploy_manager import DeployManagerBase
from ..deploy_manager.owner_references import make_controller_owner_reference
from ..exceptions import ClusterError, assert_cluster
from ..utils import without_paths

log = alog.use_channel("CHILD")


class ChildController(abc.ABC):
    """The capabilities a rollout reconciler provides for managing its
    children
    """

    deploy_manager: DeployManagerBase

    @property
    @abc.abstractmethod
    def rollout_kind(self) -> str:
        """Kind of the rollout resource"""

    @property
    @abc.abstractmethod
    def child_kind(self) -> str:
        """Kind of the child resource"""

    @property
    @abc.abstractmethod
    def child_spec_key(self) -> str:
        """Key under the rollout spec holding the declared child"""

    @abc.abstractmethod
    def child_labels(self, rollout: dict) -> dict:
        """Labels injected into every child of the rollout on top of the
        declared labels
        """

    @abc.abstractmethod
    def increment_child_count(self, rollout: dict) -> int:
        """Reserve the next candidate number of the rollout"""


## Definitions #################################################################


def get_declared_child(controller: ChildController, rollout: dict) -> dict:
    return rollout.get("spec", {}).get(controller.child_spec_key) or {}


def list_children(
    controller: ChildController, rollout: dict, upgrade_state: Optional[str] = None
) -> List[dict]:
    """List the children of the rollout, optionally restricted to an upgrade
    state
    """
    metadata = rollout["metadata"]
    selector = f"{constants.LABEL_PARENT_ROLLOUT}={metadata['name']}"
    if upgrade_state:
        selector += f",{constants.LABEL_UPGRADE_STATE}={upgrade_state}"
    success, children = controller.deploy_manager.filter_objects_current_state(
        kind=controller.child_kind,
        namespace=metadata.get("namespace"),
        api_version=constants.CHILD_API_VERSION,
        label_selector=selector,
    )
    assert_cluster(success, f"Failed to list children of {metadata['name']}")
    return children


def get_child_name(
    controller: ChildController, rollout: dict, upgrade_state: str
) -> str:
    """Get the name of the rollout's child in the given upgrade state.

    An existing child keeps its name. The first promoted child is named after
    the rollout and new candidates are named <rollout>-<count>.
    """
    rollout_name = rollout["metadata"]["name"]
    children = list_children(controller, rollout, upgrade_state)
    if len(children) > 1:
        raise ClusterError(
            f"Found {len(children)} {upgrade_state} children of {rollout_name}"
        )
    if children:
        return children[0]["metadata"]["name"]
    if upgrade_state == constants.UPGRADE_STATE_PROMOTED:
        return rollout_name
    return f"{rollout_name}-{controller.increment_child_count(rollout)}"


def make_definition(
    controller: ChildController, rollout: dict, name: str, upgrade_state: str
) -> dict:
    """Build the desired child definition declared by the rollout"""
    declared = get_declared_child(controller, rollout)
    declared_metadata = declared.get("metadata") or {}

    labels = dict(declared_metadata.get("labels") or {})
    labels.update(controller.child_labels(rollout))
    labels[constants.LABEL_UPGRADE_STATE] = upgrade_state

    metadata = {
        "name": name,
        "namespace": rollout["metadata"].get("namespace"),
        "labels": labels,
        "ownerReferences": [make_controller_owner_reference(rollout)],
    }
    annotations = declared_metadata.get("annotations")
    if annotations:
        metadata["annotations"] = dict(annotations)

    return {
        "apiVersion": constants.CHILD_API_VERSION,
        "kind": controller.child_kind,
        "metadata": metadata,
        "spec": copy.deepcopy(declared.get("spec") or {}),
    }


def make_promoted_definition(controller: ChildController, rollout: dict) -> dict:
    """Build the definition of the rollout's promoted child"""
    name = get_child_name(controller, rollout, constants.UPGRADE_STATE_PROMOTED)
    return make_definition(
        controller, rollout, name, constants.UPGRADE_STATE_PROMOTED
    )


## Comparison ##################################################################


def merge(existing: dict, desired: dict) -> dict:
    """Merge the desired definition onto the existing child. The spec is
    replaced wholesale and labels and annotations are unioned with the desired
    values winning. Everything else the cluster set on the child is kept.
    """
    result = copy.deepcopy(existing)
    result["spec"] = copy.deepcopy(desired.get("spec") or {})
    result_metadata = result.setdefault("metadata", {})
    desired_metadata = desired.get("metadata", {})
    for field_name in ("labels", "annotations"):
        merged = dict(result_metadata.get(field_name) or {})
        merged.update(desired_metadata.get(field_name) or {})
        result_metadata[field_name] = merged
    return result


def spec_without_desired_phase(child: dict) -> dict:
    """The child's spec without lifecycle.desiredPhase, which the pause
    protocol drives. An emptied lifecycle is removed as well.
    """
    return without_paths(child.get("spec") or {}, [constants.DESIRED_PHASE_PATH])


def needs_update(child_a: dict, child_b: dict) -> bool:
    """Compare the specs of two child definitions ignoring the desired
    phase
    """
    return spec_without_desired_phase(child_a) != spec_without_desired_phase(
        child_b
    )


## Cleanup #####################################################################


def garbage_collect(
    controller: ChildController, rollout: dict, progressive_in_progress: bool
) -> int:
    """Delete children that are no longer needed: recyclable children, and
    in-progress candidates when no progressive upgrade is running. The
    promoted child is never deleted.

    Returns:
        deleted:  int
            The number of children deleted
    """
    to_delete = list_children(controller, rollout, constants.UPGRADE_STATE_RECYCLABLE)
    if not progressive_in_progress:
        to_delete += list_children(
            controller, rollout, constants.UPGRADE_STATE_IN_PROGRESS
        )

    for child in to_delete:
        labels = child.get("metadata", {}).get("labels") or {}
        if labels.get(constants.LABEL_UPGRADE_STATE) == constants.UPGRADE_STATE_PROMOTED:
            continue
        log.info(
            "Deleting %s child %s of %s",
            labels.get(constants.LABEL_UPGRADE_STATE),
            child["metadata"]["name"],
            rollout["metadata"]["name"],
        )
        success, _ = controller.deploy_manager.disable([child])
        assert_cluster(success, f"Failed to delete child {child['metadata']['name']}")
    return len(to_delete)
