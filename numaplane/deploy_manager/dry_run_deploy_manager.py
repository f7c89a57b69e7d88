"""
The DryRunDeployManager implements the DeployManager interface but does not
actually interact with the cluster and instead holds the state of the cluster in
a local map. It mimics the parts of the api server behavior the controller
relies on: uid and generation management, status as a subresource, finalizer
gated deletion and owner reference garbage collection.
"""

# Standard
from datetime import datetime, timedelta
from functools import partial
from queue import Empty, Queue
from threading import RLock
from typing import Callable, Iterator, List, Optional, Tuple
import copy
import operator
import uuid

# First Party
import alog

# Local
from ..managed_object import ManagedObject
from ..utils import merge_configs, now_timestamp
from .base import DeployManagerBase
from .kube_event import KubeEventType, KubeWatchEvent

log = alog.use_channel("DRY-RUN")


class DryRunDeployManager(DeployManagerBase):
    """
    Deploy manager which doesn't actually deploy!
    """

    def __init__(self, resources=None, strict_resource_version=False):
        """Construct with an optional set of resources that already exist in
        the fake cluster

        Args:
            resources:  Optional[List[dict]]
                Manifests to pre-populate, including their status
            strict_resource_version:  bool
                If True, writes carrying an out of date resourceVersion fail
                the way they would against a real api server
        """
        self._cluster_content = {}
        self._lock = RLock()
        self._resource_version = 0
        self.strict_resource_version = strict_resource_version

        # Recorded kubernetes Events
        self.events: List[dict] = []

        # Dicts of registered watches and delete callbacks
        self._watches = {}
        self._delete_callbacks = {}

        # Deploy provided resources
        for resource in resources or []:
            self._deploy(copy.deepcopy(resource), call_watches=False, keep_status=False)

    ## Interface ###############################################################

    def deploy(self, resource_definitions):
        log.info("DRY RUN deploy")
        changed = False
        for resource in resource_definitions:
            success, res_changed = self._deploy(copy.deepcopy(resource))
            if not success:
                return False, changed
            changed = changed or res_changed
        return True, changed

    def disable(self, resource_definitions):
        log.info("DRY RUN disable")
        changed = False
        for resource in resource_definitions:
            api_version = resource.get("apiVersion")
            kind = resource.get("kind")
            name = resource.get("metadata", {}).get("name")
            namespace = resource.get("metadata", {}).get("namespace")
            with self._lock:
                current = self._get_entry(namespace, kind, api_version, name)
                if current is None:
                    continue
                changed = True

                # Objects with finalizers only get marked for deletion
                updated = None
                if current.get("metadata", {}).get("finalizers"):
                    if not current["metadata"].get("deletionTimestamp"):
                        current["metadata"]["deletionTimestamp"] = now_timestamp()
                        current["metadata"]["generation"] = (
                            current["metadata"].get("generation", 1) + 1
                        )
                        self._bump_resource_version(current)
                    updated = copy.deepcopy(current)

            if updated is not None:
                self._call_watches(updated)
            else:
                self._remove(namespace, kind, api_version, name)

        return True, changed

    def patch(self, kind, name, namespace, patch, api_version=None):
        log.info(
            "DRY RUN patch of [%s.%s/%s] in %s", api_version, kind, name, namespace
        )
        log.debug3("Patch: %s", patch)
        with self._lock:
            _, current = self.get_object_current_state(
                kind=kind, name=name, namespace=namespace, api_version=api_version
            )
            if current is None:
                log.debug("Cannot patch missing [%s/%s] in %s", kind, name, namespace)
                return False, False
            patched = merge_configs(copy.deepcopy(current), copy.deepcopy(patch))
            patched["metadata"].pop("resourceVersion", None)
            return self._deploy(patched)

    def get_object_current_state(self, kind, name, namespace=None, api_version=None):
        log.debug2(
            "DRY RUN get_object_current_state of [%s/%s] in [%s]", kind, name, namespace
        )
        matches = []
        with self._lock:
            kind_entries = self._cluster_content.get(namespace, {}).get(kind, {})
            for api_ver, entries in kind_entries.items():
                if name in entries and (api_ver == api_version or api_version is None):
                    matches.append(entries[name])
            log.debug3(
                "Found %d matches for [%s/%s] in %s", len(matches), kind, name, namespace
            )
            if len(matches) == 1:
                return True, copy.deepcopy(matches[0])
        return True, None

    def filter_objects_current_state(
        self,
        kind,
        namespace=None,
        api_version=None,
        label_selector=None,
        field_selector=None,
    ):  # pylint: disable=too-many-arguments
        log.debug2(
            "DRY RUN filter_objects_current_state of [%s] in [%s]", kind, namespace
        )
        matches = []
        with self._lock:
            namespaces = (
                [namespace] if namespace is not None else list(self._cluster_content)
            )
            for ns in namespaces:
                kind_entries = self._cluster_content.get(ns, {}).get(kind, {})
                for api_ver, entries in kind_entries.items():
                    if api_ver != api_version and api_version is not None:
                        continue
                    for resource in entries.values():
                        labels = resource.get("metadata", {}).get("labels") or {}
                        if label_selector and not _match_selector(
                            labels, label_selector
                        ):
                            continue
                        if field_selector and not _match_selector(
                            _convert_dict_to_dot(resource), field_selector
                        ):
                            continue
                        matches.append(copy.deepcopy(resource))
        return True, matches

    def set_status(
        self,
        kind,
        name,
        namespace,
        status,
        api_version=None,
    ):  # pylint: disable=too-many-arguments
        log.info(
            "DRY RUN set_status of [%s.%s/%s] in %s", api_version, kind, name, namespace
        )
        log.debug3("Status: %s", status)
        with self._lock:
            _, object_content = self.get_object_current_state(
                kind, name, namespace, api_version
            )
            if object_content is None:
                log.debug("Did not find [%s/%s] in %s", kind, name, namespace)
                return False, False
            prev_status = object_content.get("status")
            object_content["status"] = copy.deepcopy(status)
            object_content["metadata"].pop("resourceVersion", None)
            success, _ = self._deploy(object_content, keep_status=False)
        return success, prev_status != status

    def record_event(self, involved_object, event_type, reason, message):
        metadata = involved_object.get("metadata", {})
        event = {
            "involvedObject": {
                "apiVersion": involved_object.get("apiVersion"),
                "kind": involved_object.get("kind"),
                "name": metadata.get("name"),
                "namespace": metadata.get("namespace"),
                "uid": metadata.get("uid"),
            },
            "type": event_type,
            "reason": reason,
            "message": message,
            "lastTimestamp": now_timestamp(),
        }
        log.debug("DRY RUN event: %s", event)
        with self._lock:
            self.events.append(event)
        return True

    def watch_objects(  # pylint: disable=too-many-arguments,too-many-locals,unused-argument
        self,
        kind: str,
        api_version: Optional[str] = None,
        namespace: Optional[str] = None,
        name: Optional[str] = None,
        label_selector: Optional[str] = None,
        field_selector: Optional[str] = None,
        resource_version: Optional[str] = None,
        timeout: Optional[int] = 15,
        **kwargs,
    ) -> Iterator[KubeWatchEvent]:
        """Watch the DryRunDeployManager for resource changes by registering
        callbacks"""

        event_queue = Queue()
        resource_map = {}

        def add_event(resource_map: dict, manifest: dict):
            """Callback triggered when resources are deployed"""
            resource = ManagedObject(manifest)
            event_type = KubeEventType.ADDED
            watch_key = self._watch_key(
                api_version=resource.api_version,
                kind=resource.kind,
                namespace=resource.namespace,
                name=resource.name,
            )
            if watch_key in resource_map:
                event_type = KubeEventType.MODIFIED
            resource_map[watch_key] = resource
            event_queue.put(KubeWatchEvent(type=event_type, resource=resource))

        def delete_event(resource_map: dict, manifest: dict):
            """Callback triggered when resources are removed"""
            resource = ManagedObject(manifest)
            watch_key = self._watch_key(
                api_version=resource.api_version,
                kind=resource.kind,
                namespace=resource.namespace,
                name=resource.name,
            )
            resource_map.pop(watch_key, None)
            event_queue.put(KubeWatchEvent(type=KubeEventType.DELETED, resource=resource))

        # Register callbacks before listing so nothing is missed between
        add_callback = partial(add_event, resource_map)
        delete_callback = partial(delete_event, resource_map)
        self.register_watch(
            api_version=api_version,
            kind=kind,
            namespace=namespace,
            name=name,
            callback=add_callback,
        )
        self.register_delete_callback(
            api_version=api_version,
            kind=kind,
            namespace=namespace,
            name=name,
            callback=delete_callback,
        )
        watch_key = self._watch_key(
            api_version=api_version, kind=kind, namespace=namespace, name=name
        )
        try:
            yield from self._stream_events(
                kind,
                api_version,
                namespace,
                label_selector,
                field_selector,
                resource_map,
                event_queue,
                timeout,
            )
        finally:
            with self._lock:
                self._watches.get(watch_key, []).remove(add_callback)
                self._delete_callbacks.get(watch_key, []).remove(delete_callback)

    def _stream_events(  # pylint: disable=too-many-arguments
        self,
        kind,
        api_version,
        namespace,
        label_selector,
        field_selector,
        resource_map,
        event_queue,
        timeout,
    ) -> Iterator[KubeWatchEvent]:
        # Get initial resources
        _, manifests = self.filter_objects_current_state(
            kind=kind,
            api_version=api_version,
            namespace=namespace,
            label_selector=label_selector,
            field_selector=field_selector,
        )
        for manifest in manifests:
            resource = ManagedObject(manifest)
            watch_key = self._watch_key(
                kind=resource.kind,
                api_version=resource.api_version,
                name=resource.name,
                namespace=resource.namespace,
            )
            if watch_key in resource_map:
                continue
            resource_map[watch_key] = resource
            event = KubeWatchEvent(type=KubeEventType.ADDED, resource=resource)
            log.debug2("Yielding initial event %s", event)
            yield event

        end_time = datetime.max
        if timeout:
            end_time = datetime.now() + timedelta(seconds=timeout)

        log.debug2("Waiting till %s", end_time)
        while True:
            sec_till_end = (end_time - datetime.now()).seconds or 1
            try:
                event = event_queue.get(timeout=sec_till_end)
                log.debug2("Yielding event %s", event)
                yield event
            except Empty:
                pass

            if datetime.now() > end_time:
                return

    ## Dry Run Methods #########################################################

    def register_watch(  # pylint: disable=too-many-arguments
        self,
        api_version: str,
        kind: str,
        callback: Callable[[dict], None],
        namespace="",
        name="",
    ):
        """Register a callback to watch for deploy events on a given
        api_version/kind
        """
        watch_key = self._watch_key(
            api_version=api_version, kind=kind, namespace=namespace, name=name
        )
        log.debug("Registering watch for %s", watch_key)
        self._watches.setdefault(watch_key, []).append(callback)

    def register_delete_callback(  # pylint: disable=too-many-arguments
        self,
        api_version: str,
        kind: str,
        callback: Callable[[dict], None],
        namespace="",
        name="",
    ):
        """Register a callback to call when an object of the given
        api_version/kind is removed from the cluster
        """
        watch_key = self._watch_key(
            api_version=api_version, kind=kind, namespace=namespace, name=name
        )
        log.debug("Registering delete callback for %s", watch_key)
        self._delete_callbacks.setdefault(watch_key, []).append(callback)

    ## Implementation Details ##################################################

    @staticmethod
    def _watch_key(api_version="", kind="", namespace="", name=""):
        return ":".join([api_version or "", kind or "", namespace or "", name or ""])

    def _get_registered_callbacks(  # pylint: disable=too-many-arguments
        self,
        api_version: str = "",
        kind: str = "",
        namespace: str = "",
        name: str = "",
        deletion: bool = False,
    ) -> List[Tuple[str, Callable]]:
        candidate_keys = [
            self._watch_key(
                api_version=api_version, kind=kind, namespace=namespace, name=name
            ),
            self._watch_key(api_version=api_version, kind=kind, namespace=namespace),
            self._watch_key(api_version=api_version, kind=kind),
            self._watch_key(kind=kind, namespace=namespace),
            self._watch_key(kind=kind),
        ]
        callback_map = self._delete_callbacks if deletion else self._watches
        output_list = []
        for key, callback_list in list(callback_map.items()):
            if key in candidate_keys:
                for callback in callback_list:
                    output_list.append((key, callback))
        return output_list

    def _call_watches(self, manifest: dict, deletion: bool = False):
        metadata = manifest.get("metadata", {})
        for key, callback in self._get_registered_callbacks(
            manifest.get("apiVersion"),
            manifest.get("kind"),
            metadata.get("namespace"),
            metadata.get("name"),
            deletion=deletion,
        ):
            log.debug2("Calling registered callback [%s] for [%s]", callback, key)
            callback(copy.deepcopy(manifest))

    def _get_entry(self, namespace, kind, api_version, name) -> Optional[dict]:
        return (
            self._cluster_content.get(namespace, {})
            .get(kind, {})
            .get(api_version, {})
            .get(name)
        )

    def _bump_resource_version(self, resource: dict):
        self._resource_version += 1
        resource["metadata"]["resourceVersion"] = str(self._resource_version)

    def _remove(self, namespace, kind, api_version, name):
        """Remove an object, notify delete callbacks and garbage collect the
        objects it owns
        """
        with self._lock:
            if self._get_entry(namespace, kind, api_version, name) is None:
                return
            removed = self._cluster_content[namespace][kind][api_version].pop(name)
            if not self._cluster_content[namespace][kind][api_version]:
                del self._cluster_content[namespace][kind][api_version]
            if not self._cluster_content[namespace][kind]:
                del self._cluster_content[namespace][kind]
            if not self._cluster_content[namespace]:
                del self._cluster_content[namespace]
        self._call_watches(removed, deletion=True)

        # Owner reference garbage collection
        owner_uid = removed.get("metadata", {}).get("uid")
        if owner_uid:
            for dependent in self._all_objects():
                refs = dependent.get("metadata", {}).get("ownerReferences") or []
                if any(ref.get("uid") == owner_uid for ref in refs):
                    log.debug2("Garbage collecting dependent %s", ManagedObject(dependent))
                    self.disable([dependent])

    def _all_objects(self) -> List[dict]:
        with self._lock:
            return [
                copy.deepcopy(resource)
                for kinds in self._cluster_content.values()
                for versions in kinds.values()
                for entries in versions.values()
                for resource in entries.values()
            ]

    def _deploy(
        self,
        resource: dict,
        call_watches: bool = True,
        keep_status: bool = True,
    ) -> Tuple[bool, bool]:
        """Write a single object to the fake cluster

        Args:
            resource:  dict
                The manifest to write. It is owned by this call.
            call_watches:  bool
                Notify registered watches of the change
            keep_status:  bool
                Keep the stored status of an existing object instead of the
                incoming one, as the api server does for the main resource
        """
        api_version = resource.get("apiVersion")
        kind = resource.get("kind")
        metadata = resource.setdefault("metadata", {})
        name = metadata.get("name")
        namespace = metadata.get("namespace")
        log.debug("DRY RUN deploy [%s/%s/%s/%s]", namespace, kind, api_version, name)
        log.debug4(resource)

        with self._lock:
            entries = (
                self._cluster_content.setdefault(namespace, {})
                .setdefault(kind, {})
                .setdefault(api_version, {})
            )
            current = copy.deepcopy(entries.get(name))
            current_metadata = (current or {}).get("metadata", {})

            if (
                self.strict_resource_version
                and metadata.get("resourceVersion")
                and current_metadata.get("resourceVersion")
                and metadata["resourceVersion"] != current_metadata["resourceVersion"]
            ):
                log.warning("Unable to deploy resource. resourceVersion is out of date")
                return False, False

            # Server managed fields
            metadata["uid"] = (
                current_metadata.get("uid") or metadata.get("uid") or str(uuid.uuid4())
            )
            metadata["creationTimestamp"] = current_metadata.get(
                "creationTimestamp", metadata.get("creationTimestamp", now_timestamp())
            )
            if current_metadata.get("deletionTimestamp"):
                metadata["deletionTimestamp"] = current_metadata["deletionTimestamp"]
            if keep_status and current is not None:
                if "status" in current:
                    resource["status"] = current["status"]
                else:
                    resource.pop("status", None)
            elif keep_status:
                resource.pop("status", None)

            # Generation moves only on spec changes
            if current is None:
                metadata["generation"] = metadata.get("generation", 1)
            elif current.get("spec") != resource.get("spec"):
                metadata["generation"] = current_metadata.get("generation", 1) + 1
            else:
                metadata["generation"] = current_metadata.get("generation", 1)

            comparable_current = copy.deepcopy(current)
            if comparable_current is not None:
                comparable_current["metadata"].pop("resourceVersion", None)
            comparable_new = copy.deepcopy(resource)
            comparable_new["metadata"].pop("resourceVersion", None)
            changed = comparable_current != comparable_new
            if not changed:
                return True, False

            self._bump_resource_version(resource)
            entries[name] = resource
            stored = copy.deepcopy(resource)

        if call_watches:
            self._call_watches(stored)

        # Remove if it is marked for deletion and no finalizers are left
        if stored["metadata"].get("deletionTimestamp") and not stored["metadata"].get(
            "finalizers"
        ):
            self._remove(namespace, kind, api_version, name)

        return True, True


def _match_selector(values, value_selector) -> bool:  # pylint: disable=too-many-locals
    """This function implements the kubernetes selector to determine if
    a set of values matches the selector. For the complete documentation
    regarding selectors see:
    https://kubernetes.io/docs/concepts/overview/working-with-objects/labels/#syntax-and-character-set
    """
    equality_ops = ["=", "==", "!="]
    # The spaces distinguish the set operators from label text
    set_ops = [" in ", " notin "]
    existence_ops = ["!", ""]

    def _in(a, b):  # pylint: disable=invalid-name
        return a in b

    def not_in(a, b):  # pylint: disable=invalid-name
        return not _in(a, b)

    def exists(a, _):  # pylint: disable=invalid-name
        return a is not None

    def not_exists(a, _):  # pylint: disable=invalid-name
        return a is None

    operator_actions = {
        "=": operator.eq,
        "==": operator.eq,
        "!=": operator.ne,
        " in ": _in,
        " notin ": not_in,
        "!": not_exists,
        "": exists,
    }

    # Longest operators first so "!=" is not split as "="
    operator_list = sorted(operator_actions.keys(), key=len, reverse=True)

    for selector in _split_selectors(value_selector):
        action = None
        expected_key = None
        expected_value = None

        for op in operator_list:  # pylint: disable=invalid-name
            if op in existence_ops:
                split_selector = [selector.replace(op, "")]
            else:
                split_selector = selector.split(op)

            if (op in equality_ops or op in set_ops) and len(split_selector) != 2:
                continue
            if (op == "!") and "!" not in selector:
                continue

            action = operator_actions[op]
            expected_key = split_selector[0].strip()
            if op in equality_ops:
                expected_value = split_selector[1].strip()
            elif op in set_ops:
                string_value = split_selector[1].replace("(", "").replace(")", "")
                expected_value = [val.strip() for val in string_value.split(",")]
            break

        value = values.get(expected_key)
        value = str(value).strip() if value is not None else value
        if not action(value, expected_value):
            log.debug3(
                "Value with key: %s and value: %s does not match selector %s",
                expected_key,
                value,
                selector,
            )
            return False

    return True


def _split_selectors(selector=""):
    """Split up selectors by , but ignoring those surrounded by () e.g.
    'app,app in (frontend, backend)' becomes ['app','app in (frontend, backend)']
    """
    output_list = []
    current_selector = ""
    in_paren = False
    for char in selector:
        if char == "," and not in_paren:
            output_list.append(current_selector)
            current_selector = ""
            continue
        if char == "(" and not in_paren:
            in_paren = True
        elif char == ")" and in_paren:
            in_paren = False
        current_selector += char
    if current_selector:
        output_list.append(current_selector)
    return output_list


def _convert_dict_to_dot(dictionary, prefix=""):
    """Convert a nested dict to a flat dict of dotted keys. For example
    {a:{b:1},c:2} becomes {a.b:1,c:2}
    """
    if not isinstance(dictionary, dict):
        return {prefix: dictionary}
    output_dict = {}
    for key in dictionary:
        new_key = key if prefix == "" else f"{prefix}.{key}"
        output_dict.update(_convert_dict_to_dot(dictionary[key], new_key))
    return output_dict
