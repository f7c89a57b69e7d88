"""
This module holds the helpers that tie a child resource to the Rollout that
owns it
"""

# First Party
import alog

# Local
from ..exceptions import OwnershipConflictError

log = alog.use_channel("OWNRF")


def make_controller_owner_reference(owner_cr: dict) -> dict:
    """Make the controller owner reference for the given Rollout

    Error Semantics: This function makes a best-effort and does not validate the
    content of the owner_cr, so the resulting ownerReference may contain None
    entries.

    Args:
        owner_cr:  dict
            The full manifest of the owning Rollout

    Returns:
        owner_reference:  dict
            The dict entry for the `metadata.ownerReferences` entry of the owned
            object
    """
    metadata = owner_cr.get("metadata", {})
    return {
        "apiVersion": owner_cr.get("apiVersion"),
        "kind": owner_cr.get("kind"),
        "name": metadata.get("name"),
        "uid": metadata.get("uid"),
        # Only one owner may manage the child
        "controller": True,
        # The parent will not be deleted until this object completes its
        # deletion
        "blockOwnerDeletion": True,
    }


def is_owned_by(child_obj: dict, owner_cr: dict) -> bool:
    """Determine whether the child holds an owner reference matching both the
    kind and the uid of the owner
    """
    owner_kind = owner_cr.get("kind")
    owner_uid = owner_cr.get("metadata", {}).get("uid")
    owner_refs = child_obj.get("metadata", {}).get("ownerReferences") or []
    log.debug3("Checking owner refs %s against %s/%s", owner_refs, owner_kind, owner_uid)
    return any(
        ref.get("kind") == owner_kind and ref.get("uid") == owner_uid
        for ref in owner_refs
    )


def check_owner_reference(child_obj: dict, owner_cr: dict):
    """Make sure the child is owned by the given Rollout before it gets mutated

    Raises:
        OwnershipConflictError if the child belongs to anything else
    """
    if not is_owned_by(child_obj, owner_cr):
        metadata = child_obj.get("metadata", {})
        raise OwnershipConflictError(
            f"{child_obj.get('kind')} {metadata.get('name')} already exists in "
            f"namespace {metadata.get('namespace')}, not owned by a "
            f"{owner_cr.get('kind')}"
        )
