"""
Helper object to represent a kubernetes object seen by the controller
"""
# Standard
from typing import List, Optional

KUBE_LIST_IDENTIFIER = "List"


class ManagedObject:  # pylint: disable=too-many-instance-attributes
    """Basic struct to represent a kubernetes object"""

    def __init__(self, definition: dict):
        self.kind = definition.get("kind")
        self.metadata = definition.get("metadata") or {}
        self.name = self.metadata.get("name")
        self.namespace = self.metadata.get("namespace")
        self.uid = self.metadata.get("uid")
        self.resource_version = self.metadata.get("resourceVersion")
        self.generation = self.metadata.get("generation")
        self.api_version = definition.get("apiVersion")
        self.definition = definition

        assert self.kind is not None, "No kind found"
        assert self.api_version is not None, "No apiVersion found"

        # If resource is not list then check name
        if KUBE_LIST_IDENTIFIER not in self.kind:
            assert self.name is not None, "No name found"

    @property
    def owner_references(self) -> List[dict]:
        return self.metadata.get("ownerReferences") or []

    @property
    def deletion_timestamp(self) -> Optional[str]:
        return self.metadata.get("deletionTimestamp")

    def controller_owner(self) -> Optional[dict]:
        """Get the owner reference flagged as the controller, if any"""
        for owner_ref in self.owner_references:
            if owner_ref.get("controller"):
                return owner_ref
        return None

    def get(self, *args, **kwargs):
        """Pass get calls to the objects definition"""
        return self.definition.get(*args, **kwargs)

    def __str__(self):
        return f"{self.api_version}/{self.kind}/{self.namespace}/{self.name}"

    def __repr__(self):
        return str(self)

    def __hash__(self):
        """Hash on the cluster uid if there is one so that an object keeps its
        identity across spec changes
        """
        return hash(self.uid or str(self))

    def __eq__(self, other):
        return hash(self) == hash(other)
