"""
This defines the base class for all DeployManager types.
"""

# Standard
from typing import Iterator, List, Optional, Tuple
import abc

# Local
from .kube_event import KubeWatchEvent


class DeployManagerBase(abc.ABC):
    """
    Base class for deploy managers which are responsible for all reads and
    writes of Rollouts and their children in the cluster.
    """

    @abc.abstractmethod
    def deploy(self, resource_definitions: List[dict]) -> Tuple[bool, bool]:
        """The deploy function ensures that the resources defined in the list of
        definitions exist in the cluster with the given content. Resources that
        do not exist are created; resources that exist are replaced.

        Args:
            resource_definitions:  list(dict)
                List of resource object dicts to apply to the cluster

        Returns:
            success:  bool
                Whether or not the deploy succeeded
            changed:  bool
                Whether or not the deployment resulted in changes
        """

    @abc.abstractmethod
    def disable(self, resource_definitions: List[dict]) -> Tuple[bool, bool]:
        """The disable function ensures that the resources defined in the list of
        definitions are deleted from the cluster

        Args:
            resource_definitions:  list(dict)
                List of resource object dicts to delete from the cluster

        Returns:
            success:  bool
                Whether or not the delete succeeded
            changed:  bool
                Whether or not the delete resulted in changes
        """

    @abc.abstractmethod
    def patch(  # pylint: disable=too-many-arguments
        self,
        kind: str,
        name: str,
        namespace: Optional[str],
        patch: dict,
        api_version: Optional[str] = None,
    ) -> Tuple[bool, bool]:
        """Apply a json merge patch to a single object

        Args:
            kind:  str
                The kind of the object to patch
            name:  str
                The name of the object to patch
            namespace:  Optional[str]
                The namespace of the object
            patch:  dict
                The merge patch body. Keys set to None are removed.
            api_version:  Optional[str]
                The api_version of the resource kind to patch

        Returns:
            success:  bool
                Whether or not the patch succeeded. Patching a missing object
                is a failure.
            changed:  bool
                Whether or not the patch resulted in changes
        """

    @abc.abstractmethod
    def get_object_current_state(
        self,
        kind: str,
        name: str,
        namespace: Optional[str] = None,
        api_version: Optional[str] = None,
    ) -> Tuple[bool, Optional[dict]]:
        """The get_object_current_state function fetches the current state of
        a given object by name. Implementations may serve this from a cache.

        Args:
            kind:  str
                The kind of the object to fetch
            name:  str
                The full name of the object to fetch
            namespace:  str
                The namespace to search for the object
            api_version:  str
                The api_version of the resource kind to fetch

        Returns:
            success:  bool
                Whether or not the state fetch operation succeeded
            current_state:  dict or None
                The dict representation of the current object's configuration,
                or None if not present
        """

    def get_object_live_state(
        self,
        kind: str,
        name: str,
        namespace: Optional[str] = None,
        api_version: Optional[str] = None,
    ) -> Tuple[bool, Optional[dict]]:
        """Same as get_object_current_state, but always read from the source
        of truth, bypassing any cache. Used right before a decision that must
        not act on stale data.
        """
        return self.get_object_current_state(
            kind=kind, name=name, namespace=namespace, api_version=api_version
        )

    @abc.abstractmethod
    def filter_objects_current_state(  # pylint: disable=too-many-arguments
        self,
        kind: str,
        namespace: Optional[str] = None,
        api_version: Optional[str] = None,
        label_selector: Optional[str] = None,
        field_selector: Optional[str] = None,
    ) -> Tuple[bool, List[dict]]:
        """The filter_objects_current_state function fetches a list of objects
        that match either/both the label or field selector

        Args:
            kind:  str
                The kind of the object to fetch
            namespace:  str
                The namespace to search for the object
            api_version:  str
                The api_version of the resource kind to fetch
            label_selector:  str
                The label_selector to filter the resources
            field_selector:  str
                The field_selector to filter the resources

        Returns:
            success:  bool
                Whether or not the state fetch operation succeeded
            current_state:  List[dict]
                A list of dict representations for the objects, or an empty
                list if no objects match
        """

    @abc.abstractmethod
    def set_status(  # pylint: disable=too-many-arguments
        self,
        kind: str,
        name: str,
        namespace: Optional[str],
        status: dict,
        api_version: Optional[str] = None,
    ) -> Tuple[bool, bool]:
        """Write the status subresource of an object

        Args:
            kind:  str
                The kind of the object
            name:  str
                The name of the object
            namespace:  Optional[str]
                The namespace of the object
            status:  dict
                The status object to set onto the given object
            api_version:  Optional[str]
                The api_version of the resource to update

        Returns:
            success:  bool
                Whether or not the status update operation succeeded
            changed:  bool
                Whether or not the status update resulted in a change
        """

    @abc.abstractmethod
    def watch_objects(  # pylint: disable=too-many-arguments
        self,
        kind: str,
        api_version: Optional[str] = None,
        namespace: Optional[str] = None,
        name: Optional[str] = None,
        label_selector: Optional[str] = None,
        field_selector: Optional[str] = None,
        resource_version: Optional[str] = None,
    ) -> Iterator[KubeWatchEvent]:
        """The watch_objects function listens for changes in the cluster and
        returns a stream of KubeWatchEvents

        Args:
            kind:  str
                The kind of the object to watch
            api_version:  str
                The api_version of the resource kind to watch
            namespace:  str
                The namespace to watch. None watches all namespaces
            name:  str
                Restrict the watch to a single name
            label_selector:  str
                The label_selector to filter the resources
            field_selector:  str
                The field_selector to filter the resources
            resource_version:  str
                The resource_version the resource must be newer than

        Returns:
            watch_stream: Generator[KubeWatchEvent]
                A stream of KubeWatchEvents generated while watching
        """

    @abc.abstractmethod
    def record_event(
        self,
        involved_object: dict,
        event_type: str,
        reason: str,
        message: str,
    ) -> bool:
        """Record a kubernetes Event against an object

        Args:
            involved_object:  dict
                The manifest of the object the event is about
            event_type:  str
                "Normal" or "Warning"
            reason:  str
                Short CamelCase reason
            message:  str
                Human readable message

        Returns:
            success:  bool
                Whether or not the event was recorded
        """
