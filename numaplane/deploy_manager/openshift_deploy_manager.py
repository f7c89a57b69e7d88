"""
This DeployManager is responsible for delegating cluster operations to the
openshift library. It is the one that will be used when the controller is
running in the cluster or outside the cluster making live changes.
"""
# Standard
from collections import namedtuple
from typing import Callable, Iterator, List, Optional, Tuple
import copy
import threading
import time

# Third Party
from kubernetes import client
from kubernetes.watch import Watch
from openshift.dynamic import DynamicClient
from openshift.dynamic.apply import recursive_diff
from openshift.dynamic.exceptions import (
    ConflictError,
    ForbiddenError,
    NotFoundError,
    ResourceNotFoundError,
    ResourceNotUniqueError,
)
from openshift.dynamic.resource import Resource
import kubernetes
import urllib3

# First Party
import alog

# Local
from .. import config
from ..exceptions import assert_cluster
from ..managed_object import ManagedObject
from ..utils import now_timestamp
from .base import DeployManagerBase
from .kube_event import KubeEventType, KubeWatchEvent

log = alog.use_channel("OSFTD")

## Deploy Manager ##############################################################


# See this document for value reasonings
# https://github.com/kubernetes-client/python/blob/master/examples/watch/timeout-settings.md
SERVER_WATCH_TIMEOUT = 3600
CLIENT_WATCH_TIMEOUT = 30

# Name used as the field manager and the event source
FIELD_MANAGER = "numaplane"

MERGE_PATCH_CONTENT_TYPE = "application/merge-patch+json"


class OpenshiftDeployManager(DeployManagerBase):
    """This DeployManager uses the openshift DynamicClient to interact with the
    cluster
    """

    def __init__(self):
        log.debug("Initializing openshift client")
        self._client = None

        # Serialize status writes so concurrent workers don't run into 409
        # Conflict errors on the same object
        self._status_lock = threading.Lock()

    @property
    def client(self):
        """Lazy property access to the client"""
        if self._client is None:
            self._client = self._setup_client()
        return self._client

    @alog.logged_function(log.debug2)
    def deploy(self, resource_definitions: List[dict]) -> Tuple[bool, bool]:
        """Create or replace each of the resources with conflict retries"""
        return self._retried_operation(
            resource_definitions,
            self._apply,
            max_retries=config.deploy_retries,
        )

    @alog.logged_function(log.debug2)
    def disable(self, resource_definitions: List[dict]) -> Tuple[bool, bool]:
        """Delete each of the resources if present"""
        return self._retried_operation(
            resource_definitions,
            self._disable,
            max_retries=config.deploy_retries,
        )

    @alog.logged_function(log.debug2)
    def patch(
        self,
        kind: str,
        name: str,
        namespace: Optional[str],
        patch: dict,
        api_version: Optional[str] = None,
    ) -> Tuple[bool, bool]:
        """Apply a json merge patch. Merge patches carry no resourceVersion, so
        they do not need conflict retries.
        """
        resource_handle = self._get_resource_handle(kind, api_version)
        if not resource_handle:
            return False, False
        if not namespace:
            resource_handle.namespaced = False
        try:
            before = resource_handle.get(name=name, namespace=namespace).to_dict()
            after = resource_handle.patch(
                body=patch,
                name=name,
                namespace=namespace,
                content_type=MERGE_PATCH_CONTENT_TYPE,
                field_manager=FIELD_MANAGER,
            ).to_dict()
        except NotFoundError:
            log.debug("Cannot patch missing [%s/%s] in %s", kind, name, namespace)
            return False, False
        except ForbiddenError:
            log.warning("Patching [%s/%s] in %s is forbidden", kind, name, namespace)
            return False, False
        return True, self._manifest_diff(before, after)

    def get_object_current_state(
        self,
        kind: str,
        name: str,
        namespace: Optional[str] = None,
        api_version: Optional[str] = None,
    ) -> Tuple[bool, Optional[dict]]:
        """Fetch the object directly from the api server. There is no cache in
        this implementation, so this is also the live state.
        """
        resources = self._get_resource_handle(kind, api_version)
        if not resources:
            return True, None

        if not namespace:
            resources.namespaced = False

        try:
            resource = resources.get(name=name, namespace=namespace)
        except ForbiddenError:
            log.debug(
                "Fetching objects of kind [%s] forbidden in namespace [%s]",
                kind,
                namespace,
            )
            return False, None
        except NotFoundError:
            log.debug(
                "No object named [%s/%s] found in namespace [%s]", kind, name, namespace
            )
            return True, None

        return True, resource.to_dict()

    def watch_objects(  # pylint: disable=too-many-arguments
        self,
        kind: str,
        api_version: Optional[str] = None,
        namespace: Optional[str] = None,
        name: Optional[str] = None,
        label_selector: Optional[str] = None,
        field_selector: Optional[str] = None,
        resource_version: Optional[str] = None,
        watch_manager: Optional[Watch] = None,
    ) -> Iterator[KubeWatchEvent]:
        watch_manager = watch_manager if watch_manager else Watch()
        resource_handle = self._get_resource_handle(kind, api_version)
        assert_cluster(
            resource_handle,
            f"Failed to fetch resource handle for {namespace}/{api_version}/{kind}",
        )

        resource_version = resource_version if resource_version else 0

        while True:
            try:
                for event_obj in watch_manager.stream(
                    resource_handle.get,
                    resource_version=resource_version,
                    namespace=namespace,
                    name=name,
                    label_selector=label_selector,
                    field_selector=field_selector,
                    serialize=False,
                    timeout_seconds=SERVER_WATCH_TIMEOUT,
                    _request_timeout=CLIENT_WATCH_TIMEOUT,
                ):
                    event_type = KubeEventType(event_obj["type"])
                    event_resource = ManagedObject(event_obj["object"])
                    yield KubeWatchEvent(event_type, event_resource)
            except client.exceptions.ApiException as exception:
                if exception.status == 410:
                    log.debug2("Resource age expired, restarting watch %s/%s", kind, api_version)
                    resource_version = None
                else:
                    log.info("Unknown ApiException received, re-raising")
                    raise
            except urllib3.exceptions.ReadTimeoutError:
                log.debug4("Watch Socket closed, restarting watch %s/%s", kind, api_version)
            except urllib3.exceptions.ProtocolError:
                log.debug2("Invalid Chunk from server, restarting watch %s/%s", kind, api_version)

            # This is hidden attribute so probably not best to check
            if watch_manager._stop:  # pylint: disable=protected-access
                log.debug(
                    "Internal watch stopped. Stopping deploy manager watch for %s/%s",
                    kind,
                    api_version,
                )
                return

    def filter_objects_current_state(  # pylint: disable=too-many-arguments
        self,
        kind: str,
        namespace: Optional[str] = None,
        api_version: Optional[str] = None,
        label_selector: Optional[str] = None,
        field_selector: Optional[str] = None,
    ) -> Tuple[bool, List[dict]]:
        resources = self._get_resource_handle(kind, api_version)
        if not resources:
            return True, []

        if not namespace:
            resources.namespaced = False

        try:
            list_obj = resources.get(
                label_selector=label_selector,
                field_selector=field_selector,
                namespace=namespace,
            )
        except ForbiddenError:
            log.debug(
                "Fetching objects of kind [%s] forbidden in namespace [%s]",
                kind,
                namespace,
            )
            return False, []
        except NotFoundError:
            log.debug(
                "No objects of kind [%s] found in namespace [%s]", kind, namespace
            )
            return True, []

        return True, list_obj.to_dict().get("items", [])

    def set_status(  # pylint: disable=too-many-arguments
        self,
        kind: str,
        name: str,
        namespace: Optional[str],
        status: dict,
        api_version: Optional[str] = None,
    ) -> Tuple[bool, bool]:
        # Create a dummy resource to use in the common retry function
        resource_definitions = [
            {
                "kind": kind,
                "apiVersion": api_version,
                "metadata": {
                    "name": name,
                    "namespace": namespace,
                },
            }
        ]
        return self._retried_operation(
            resource_definitions,
            self._set_status,
            max_retries=config.deploy_retries,
            status=status,
        )

    def record_event(
        self,
        involved_object: dict,
        event_type: str,
        reason: str,
        message: str,
    ) -> bool:
        metadata = involved_object.get("metadata", {})
        namespace = metadata.get("namespace")
        timestamp = now_timestamp()
        event = {
            "apiVersion": "v1",
            "kind": "Event",
            "metadata": {
                "generateName": f"{metadata.get('name')}.",
                "namespace": namespace,
            },
            "involvedObject": {
                "apiVersion": involved_object.get("apiVersion"),
                "kind": involved_object.get("kind"),
                "name": metadata.get("name"),
                "namespace": namespace,
                "uid": metadata.get("uid"),
                "resourceVersion": metadata.get("resourceVersion"),
            },
            "type": event_type,
            "reason": reason,
            "message": message,
            "count": 1,
            "firstTimestamp": timestamp,
            "lastTimestamp": timestamp,
            "source": {"component": FIELD_MANAGER},
        }
        resource_handle = self._get_resource_handle("Event", "v1")
        if not resource_handle:
            return False
        try:
            resource_handle.create(body=event, namespace=namespace)
        except (ForbiddenError, client.exceptions.ApiException) as err:
            # Events are informational only
            log.warning("Failed to record event %s for %s: %s", reason, metadata.get("name"), err)
            return False
        return True

    ## Implementation Helpers ##################################################

    @staticmethod
    def _setup_client():
        """Create a DynamicClient that will work based on where the controller
        is running
        """
        try:
            log.debug2("Running with in-cluster config")
            kube_config = kubernetes.client.Configuration()
            kubernetes.config.load_incluster_config(client_configuration=kube_config)
            api_client = kubernetes.client.ApiClient(kube_config)
            return DynamicClient(api_client)
        except kubernetes.config.ConfigException:
            log.debug2("Running with out-of-cluster config")
            return DynamicClient(kubernetes.config.new_client_from_config())

    def _get_resource_handle(self, kind: str, api_version: str) -> Optional[Resource]:
        """Get the openshift resource handle for a specified kind and api_version"""
        resources = None
        try:
            resources = self.client.resources.get(kind=kind, api_version=api_version)
        except (ResourceNotFoundError, ResourceNotUniqueError):
            log.debug(
                "No objects of kind [%s] found or multiple objects matching request found",
                kind,
            )
        return resources

    def _retried_operation(
        self,
        resource_definitions,
        operation,
        max_retries,
        **kwargs,
    ):
        """Shared wrapper for executing a client operation with retries"""
        assert isinstance(
            resource_definitions, list
        ), "Programming Error: resource_definitions is not a list"
        log.debug3("Running operation with %d retries", max_retries)

        if not resource_definitions:
            log.debug("Nothing to do for an empty list of resources")
            return True, False

        success = True
        changed = False
        for resource_definition in resource_definitions:
            try:
                changed = (
                    self._run_individual_operation_with_retries(
                        operation,
                        max_retries,
                        resource_definition=copy.deepcopy(resource_definition),
                        **kwargs,
                    )
                    or changed
                )

            # Later resources may depend on earlier ones, so stop at the first
            # failure
            except Exception as err:  # pylint: disable=broad-except
                log.warning(
                    "Operation [%s] failed to execute: %s",
                    operation,
                    err,
                    exc_info=True,
                )
                success = False
                break

        return success, changed

    def _run_individual_operation_with_retries(
        self,
        operation: Callable,
        remaining_retries: int,
        resource_definition: dict,
        **kwargs,
    ):
        """Run a single operation, retrying on conflicts with a fresh
        resourceVersion

        Returns:
            changed:  bool
                Whether or not the operation resulted in meaningful change
        """
        try:
            return operation(resource_definition=resource_definition, **kwargs)
        except ConflictError as err:
            log.debug2("Handling ConflictError: %s", err)
            if not remaining_retries:
                raise

            backoff_duration = config.retry_backoff_base_seconds * (
                config.deploy_retries - remaining_retries + 1
            )
            log.debug3("Retrying in %fs", backoff_duration)
            time.sleep(backoff_duration)

            res_id = self._get_resource_identifiers(resource_definition)
            success, content = self.get_object_current_state(
                kind=res_id.kind,
                name=res_id.name,
                namespace=res_id.namespace,
                api_version=res_id.api_version,
            )
            assert_cluster(
                success and content is not None,
                "Failed to fetch updated resourceVersion for "
                f"{res_id.namespace}/{res_id.api_version}/{res_id.kind}/{res_id.name}",
            )
            updated_resource_version = content.get("metadata", {}).get(
                "resourceVersion"
            )
            assert_cluster(
                updated_resource_version is not None,
                "No updated resource version found!",
            )
            log.debug3(
                "Updating resourceVersion from %s -> %s",
                resource_definition.get("metadata", {}).get("resourceVersion"),
                updated_resource_version,
            )
            resource_definition.setdefault("metadata", {})[
                "resourceVersion"
            ] = updated_resource_version
            return self._run_individual_operation_with_retries(
                operation, remaining_retries - 1, resource_definition, **kwargs
            )

    @staticmethod
    def _clean_manifest(manifest: dict) -> dict:
        """Remove the fields that change on every write"""
        manifest = copy.deepcopy(manifest)
        for metadata_field in [
            "resourceVersion",
            "generation",
            "managedFields",
            "uid",
            "creationTimestamp",
        ]:
            manifest.get("metadata", {}).pop(metadata_field, None)
        manifest.pop("status", None)
        return manifest

    @classmethod
    def _manifest_diff(cls, manifest_a, manifest_b) -> bool:
        """Compare two manifests for meaningful diff while ignoring fields that
        always change
        """
        diff = recursive_diff(cls._clean_manifest(manifest_a), cls._clean_manifest(manifest_b))
        change = bool(diff)
        log.debug2("Found change? %s", change)
        return change

    # Internal struct to hold the key resource identifier elements
    _ResourceIdentifiers = namedtuple(
        "ResourceIdentifiers", ["api_version", "kind", "name", "namespace"]
    )

    @classmethod
    def _get_resource_identifiers(cls, resource_definition, require_api_version=True):
        """Helper for getting the required parts of a single resource definition"""
        api_version = resource_definition.get("apiVersion")
        kind = resource_definition.get("kind")
        name = resource_definition.get("metadata", {}).get("name")
        namespace = resource_definition.get("metadata", {}).get("namespace")
        assert None not in [kind, name], "Cannot apply resource without kind or name"
        assert (
            not require_api_version or api_version is not None
        ), "Cannot apply resource without apiVersion"
        return cls._ResourceIdentifiers(api_version, kind, name, namespace)

    ################
    ## Operations ##
    ################

    def _apply(self, resource_definition: dict) -> bool:
        """Create the resource if missing, otherwise replace it

        Returns:
            changed:  bool
                Whether or not the apply resulted in a meaningful change
        """
        res_id = self._get_resource_identifiers(resource_definition)
        success, current = self.get_object_current_state(
            kind=res_id.kind,
            name=res_id.name,
            namespace=res_id.namespace,
            api_version=res_id.api_version,
        )
        assert_cluster(
            success,
            "Failed to fetch current state for "
            f"{res_id.namespace}/{res_id.api_version}/{res_id.kind}/{res_id.name}",
        )

        resource_handle = self._get_resource_handle(
            api_version=res_id.api_version, kind=res_id.kind
        )
        assert_cluster(
            resource_handle,
            f"Failed to fetch resource handle for {res_id.namespace}/{res_id.api_version}/{res_id.kind}",
        )

        # Let the server manage these
        resource_definition["metadata"].pop("managedFields", None)

        if current is None:
            log.debug2(
                "Creating [%s/%s/%s] in %s",
                res_id.api_version,
                res_id.kind,
                res_id.name,
                res_id.namespace,
            )
            resource_definition["metadata"].pop("resourceVersion", None)
            resource_handle.create(
                body=resource_definition,
                namespace=res_id.namespace,
                field_manager=FIELD_MANAGER,
            )
            return True

        if not self._manifest_diff(current, resource_definition):
            log.debug2("No change for [%s/%s]", res_id.kind, res_id.name)
            return False

        # Optimistic concurrency against the version that was read
        resource_definition["metadata"].setdefault(
            "resourceVersion", current["metadata"].get("resourceVersion")
        )
        log.debug2(
            "Replacing [%s/%s/%s] in %s",
            res_id.api_version,
            res_id.kind,
            res_id.name,
            res_id.namespace,
        )
        applied = resource_handle.replace(
            body=resource_definition,
            name=res_id.name,
            namespace=res_id.namespace,
            field_manager=FIELD_MANAGER,
        ).to_dict()
        return self._manifest_diff(current, applied)

    def _disable(self, resource_definition: dict) -> bool:
        """Delete a single resource from the cluster if it exists

        Returns:
            changed:  bool
                Whether or not the disable resulted in a meaningful change
        """
        res_id = self._get_resource_identifiers(resource_definition)
        try:
            resource_handle = self.client.resources.get(
                api_version=res_id.api_version, kind=res_id.kind
            )
            if not res_id.namespace:
                resource_handle.namespaced = False
            log.debug2(
                "Attempting to delete [%s/%s/%s] from %s",
                res_id.api_version,
                res_id.kind,
                res_id.name,
                res_id.namespace,
            )
            resource_handle.delete(name=res_id.name, namespace=res_id.namespace)
            return True

        # If the kind or instance is not found, that's a success without change
        except (ResourceNotFoundError, NotFoundError) as err:
            log.debug2(
                "Valid error caught when disabling [%s/%s]: %s",
                res_id.kind,
                res_id.name,
                err,
            )
        return False

    def _set_status(self, resource_definition: dict, status: dict) -> bool:
        """Replace the status subresource of a single object

        Returns:
            changed:  bool
                Whether or not the status update resulted in a meaningful change
        """
        res_id = self._get_resource_identifiers(
            resource_definition, require_api_version=False
        )
        resource_handle = self.client.resources.get(
            api_version=res_id.api_version, kind=res_id.kind
        )
        if not res_id.namespace:
            resource_handle.namespaced = False

        with self._status_lock:
            resource = resource_handle.get(
                name=res_id.name, namespace=res_id.namespace
            ).to_dict()
            log.debug2(
                "Resource version: %s",
                resource.get("metadata", {}).get("resourceVersion"),
            )
            if resource.get("status") == status:
                log.debug("Status has not changed. No update")
                return False

            resource["status"] = status
            resource_handle.status.replace(body=resource)
            log.debug2(
                "Successfully set the status for [%s/%s] in %s",
                res_id.kind,
                res_id.name,
                res_id.namespace,
            )
            return True
