"""
Common utilities shared across the library
"""

# Standard
from datetime import datetime, timedelta, timezone
from typing import Any, Iterable, Optional, Tuple
import copy
import re

# First Party
import alog

# Local
from . import constants
from .exceptions import assert_cluster

log = alog.use_channel("NPUTL")

# Sentinel for missing dict values
__MISSING__ = "__MISSING__"

# Kubernetes serializes times at second granularity in UTC
TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%SZ"

## Dicts #######################################################################


def merge_configs(base, overrides) -> dict:
    """Helper to perform a deep merge of the overrides into the base. The merge
    is done in place, but the resulting dict is also returned for convenience.

    If both the base and overrides have a key and the type of the key for both
    is a dict, recursively merge, otherwise set the base value to the override
    value. An override value of None removes the key, matching json merge patch
    semantics.

    Args:
        base:  dict
            The base config that will be updated with the overrides
        overrides:  dict
            The override config

    Returns:
        merged:  dict
            The merged results of overrides merged onto base
    """
    for key, value in overrides.items():
        if value is None:
            base.pop(key, None)
        elif (
            key not in base
            or not isinstance(base[key], dict)
            or not isinstance(value, dict)
        ):
            base[key] = copy.deepcopy(value)
        else:
            base[key] = merge_configs(base[key], value)

    return base


def nested_set(dct: dict, key: str, val: Any):
    """Helper to set values in a dict using 'foo.bar' key notation

    Args:
        dct:  dict
            The dict into which the key will be set
        key:  str
            Key that may contain '.' notation indicating dict nesting
        val:  Any
            The value to place at the nested key
    """
    parts = key.split(constants.NESTED_DICT_DELIM)
    for i, part in enumerate(parts[:-1]):
        dct = dct.setdefault(part, {})
        if not isinstance(dct, dict):
            raise TypeError(
                f"Intermediate key {constants.NESTED_DICT_DELIM.join(parts[:i + 1])} is not a dict"
            )
    dct[parts[-1]] = val


def nested_get(dct: dict, key: str, dflt=None) -> Any:
    """Helper to get values from a dict using 'foo.bar' key notation

    Args:
        dct:  dict
            The dict to read from
        key:  str
            Key that may contain '.' notation indicating dict nesting

    Returns:
        val:  Any
            Whatever is found at the given key or dflt if the key is not
            found. This includes missing intermediate dicts.
    """
    parts = key.split(constants.NESTED_DICT_DELIM)
    for i, part in enumerate(parts[:-1]):
        dct = dct.get(part, __MISSING__)
        if dct is __MISSING__ or dct is None:
            return dflt
        if not isinstance(dct, dict):
            raise TypeError(
                f"Intermediate key {constants.NESTED_DICT_DELIM.join(parts[:i + 1])} is not a dict"
            )
    return dct.get(parts[-1], dflt)


def nested_remove(dct: dict, key: str, prune_empty: bool = True) -> bool:
    """Remove the value at a 'foo.bar' key. Parents left empty by the removal
    are removed as well when prune_empty is set.

    Args:
        dct:  dict
            The dict to remove from (in place)
        key:  str
            Nested key to remove
        prune_empty:  bool
            Remove intermediate dicts that become empty

    Returns:
        removed:  bool
            True if a value was found and removed
    """
    parts = key.split(constants.NESTED_DICT_DELIM)
    parents = [dct]
    for part in parts[:-1]:
        child = parents[-1].get(part)
        if not isinstance(child, dict):
            return False
        parents.append(child)
    if parts[-1] not in parents[-1]:
        return False
    del parents[-1][parts[-1]]

    if prune_empty:
        for i in range(len(parents) - 1, 0, -1):
            if parents[i]:
                break
            del parents[i - 1][parts[i - 1]]
    return True


def without_paths(dct: dict, paths: Iterable[str]) -> dict:
    """Return a deep copy of the dict with each of the nested paths removed and
    any parents left empty pruned
    """
    result = copy.deepcopy(dct)
    for path in paths:
        nested_remove(result, path)
    return result


## Queue Keys ##################################################################


def make_queue_key(namespace: str, name: str) -> str:
    """Make the "namespace/name" key used to identify a rollout in a queue"""
    return f"{namespace}{constants.QUEUE_KEY_DELIM}{name}"


def split_queue_key(key: str) -> Tuple[str, str]:
    """Split a "namespace/name" key

    Raises:
        ValueError if the key does not hold a namespace separator
    """
    namespace, delim, name = key.partition(constants.QUEUE_KEY_DELIM)
    if not delim or not namespace or not name:
        raise ValueError(f"improperly formatted key: [{key}]")
    return namespace, name


## Time ########################################################################

# CITE: https://stackoverflow.com/questions/4628122
_TIME_DELTA_REGEX = re.compile(
    r"^((?P<hours>\d+?)hr)?((?P<minutes>\d+?)m)?((?P<seconds>\d*\.?\d+?)s)?$"
)


def parse_time_delta(time_str: str) -> Optional[timedelta]:
    """Parse a string like 1hr, 5m or 10s into a timedelta. Unparseable
    strings give None
    """
    parts = _TIME_DELTA_REGEX.match(time_str)
    if not parts or all(part is None for part in parts.groupdict().values()):
        return None
    return timedelta(
        **{name: float(param) for name, param in parts.groupdict().items() if param}
    )


def now_timestamp() -> str:
    """Current UTC time in kubernetes timestamp format"""
    return datetime.now(timezone.utc).strftime(TIMESTAMP_FORMAT)


def parse_timestamp(timestamp: Optional[str]) -> Optional[datetime]:
    """Parse a kubernetes timestamp. None and empty strings parse to None."""
    if not timestamp:
        return None
    return datetime.strptime(timestamp, TIMESTAMP_FORMAT).replace(
        tzinfo=timezone.utc
    )


## Finalizers ##################################################################


def add_finalizer(deploy_manager, resource: dict, finalizer: str) -> bool:
    """Add a finalizer to the resource in the cluster and to the given
    manifest

    Returns:
        changed:  bool
            True if the finalizer was not already present
    """
    metadata = resource.setdefault("metadata", {})
    finalizers = metadata.get("finalizers") or []
    if finalizer in finalizers:
        return False

    log.debug("Adding finalizer: %s", finalizer)
    finalizers = finalizers + [finalizer]
    _patch_finalizers(deploy_manager, resource, finalizers)
    metadata["finalizers"] = finalizers
    return True


def remove_finalizer(deploy_manager, resource: dict, finalizer: str) -> bool:
    """Remove a finalizer from the resource in the cluster and from the given
    manifest

    Returns:
        changed:  bool
            True if the finalizer was present
    """
    metadata = resource.setdefault("metadata", {})
    finalizers = metadata.get("finalizers") or []
    if finalizer not in finalizers:
        return False

    log.debug("Removing finalizer: %s", finalizer)
    finalizers = [entry for entry in finalizers if entry != finalizer]
    _patch_finalizers(deploy_manager, resource, finalizers)
    metadata["finalizers"] = finalizers
    return True


def _patch_finalizers(deploy_manager, resource: dict, finalizers: list):
    metadata = resource["metadata"]
    success, _ = deploy_manager.patch(
        kind=resource["kind"],
        name=metadata["name"],
        namespace=metadata.get("namespace"),
        api_version=resource["apiVersion"],
        patch={"metadata": {"finalizers": finalizers}},
    )
    assert_cluster(
        success,
        f"Failed to update finalizers of {resource['kind']}/{metadata['name']}",
    )
