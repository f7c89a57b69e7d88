"""
State machine hook of the progressive upgrade strategy.

A progressive upgrade runs the new definition as a separately named candidate
child next to the promoted one. Once the candidate is assessed healthy it is
promoted and the old child is marked recyclable for garbage collection. How
traffic moves between the two is outside the controller's concern.
"""

# Standard
from enum import Enum
import abc

# First Party
import alog

# Local
from .. import constants
from ..exceptions import assert_cluster
from ..status import ChildPhase, observed_generation_current, parse_child_status
from .child import (
    ChildController,
    get_child_name,
    list_children,
    make_definition,
    merge,
    needs_update,
)

log = alog.use_channel("PROGR")


class Assessment(Enum):
    SUCCESS = "success"
    FAILURE = "failure"
    UNKNOWN = "unknown"


class ProgressiveController(ChildController):
    """A ChildController that can judge a progressive candidate"""

    @abc.abstractmethod
    def assess_candidate(self, candidate: dict) -> Assessment:
        """Judge whether the candidate child is ready to be promoted"""


def default_assessment(candidate: dict) -> Assessment:
    """A candidate succeeds once it runs the latest generation and fails if its
    phase is Failed
    """
    child_status = parse_child_status(candidate)
    if child_status.phase == ChildPhase.FAILED:
        return Assessment.FAILURE
    if child_status.phase == ChildPhase.RUNNING and observed_generation_current(
        candidate
    ):
        return Assessment.SUCCESS
    return Assessment.UNKNOWN


def process_resource_with_progressive(
    controller: ProgressiveController, rollout: dict, existing_child: dict
) -> bool:
    """Advance the progressive upgrade of a rollout by one step

    Args:
        controller:  ProgressiveController
            The reconciler of the rollout kind
        rollout:  dict
            The rollout being reconciled
        existing_child:  dict
            The currently promoted child

    Returns:
        done:  bool
            True once the candidate has been promoted
    """
    rollout_name = rollout["metadata"]["name"]
    candidates = list_children(controller, rollout, constants.UPGRADE_STATE_IN_PROGRESS)

    # Create the candidate
    if not candidates:
        name = get_child_name(controller, rollout, constants.UPGRADE_STATE_IN_PROGRESS)
        candidate = make_definition(
            controller, rollout, name, constants.UPGRADE_STATE_IN_PROGRESS
        )
        log.info("Creating progressive candidate %s for %s", name, rollout_name)
        success, _ = controller.deploy_manager.deploy([candidate])
        assert_cluster(success, f"Failed to create candidate {name}")
        return False

    # Keep the candidate in sync with the declared definition
    candidate = candidates[0]
    desired = make_definition(
        controller,
        rollout,
        candidate["metadata"]["name"],
        constants.UPGRADE_STATE_IN_PROGRESS,
    )
    if needs_update(desired, candidate):
        log.info("Updating progressive candidate %s", candidate["metadata"]["name"])
        success, _ = controller.deploy_manager.deploy([merge(candidate, desired)])
        assert_cluster(success, "Failed to update candidate")
        return False

    assessment = controller.assess_candidate(candidate)
    log.debug("Candidate %s assessed as %s", candidate["metadata"]["name"], assessment)
    if assessment != Assessment.SUCCESS:
        return False

    # Retire the old child before promoting so two children are never
    # promoted at once
    _relabel(controller, existing_child, constants.UPGRADE_STATE_RECYCLABLE)
    _relabel(controller, candidate, constants.UPGRADE_STATE_PROMOTED)
    log.info(
        "Promoted candidate %s of %s", candidate["metadata"]["name"], rollout_name
    )
    return True


def _relabel(controller: ChildController, child: dict, upgrade_state: str):
    metadata = child["metadata"]
    success, _ = controller.deploy_manager.patch(
        kind=child["kind"],
        name=metadata["name"],
        namespace=metadata.get("namespace"),
        api_version=child.get("apiVersion"),
        patch={"metadata": {"labels": {constants.LABEL_UPGRADE_STATE: upgrade_state}}},
    )
    assert_cluster(success, f"Failed to label {metadata['name']} {upgrade_state}")
