"""
Custom logging formats that contain more detailed numaplane logs
"""

# Standard
from contextlib import contextmanager
import threading
import uuid

# First Party
from alog import AlogJsonFormatter
import alog

log = alog.use_channel("LOGFMT")

# Workers reconcile different rollouts in parallel, so the identity of the
# rollout being reconciled is tracked per thread
_RECONCILE_CONTEXT = threading.local()


@contextmanager
def reconcile_context(kind: str, namespace: str, name: str):
    """Attach the identity of a rollout and a fresh reconciliationId to every
    json log line emitted by the current thread within the context
    """
    _RECONCILE_CONTEXT.kind = kind
    _RECONCILE_CONTEXT.namespace = namespace
    _RECONCILE_CONTEXT.name = name
    _RECONCILE_CONTEXT.reconciliation_id = str(uuid.uuid4())
    try:
        yield _RECONCILE_CONTEXT.reconciliation_id
    finally:
        _RECONCILE_CONTEXT.__dict__.clear()


class RolloutJsonFormatter(AlogJsonFormatter):
    """Custom Log Format that extends AlogJsonFormatter to add the identity of
    the rollout being reconciled, the reconciliationId and thread information
    """

    _FIELDS_TO_PRINT = AlogJsonFormatter._FIELDS_TO_PRINT + [
        "process",
        "thread",
        "threadName",
        "kind",
        "apiVersion",
        "resourceVersion",
        "resourceName",
        "resourceNamespace",
        "reconciliationId",
    ]

    def format(self, record):
        context = _RECONCILE_CONTEXT.__dict__
        if reconciliation_id := context.get("reconciliation_id"):
            record.reconciliationId = reconciliation_id
            record.kind = context.get("kind")
            record.resourceName = context.get("name")
            record.resourceNamespace = context.get("namespace")

        if resource := getattr(record, "resource", None):
            record.kind = resource.get("kind")
            record.apiVersion = resource.get("apiVersion")

            metadata = resource.get("metadata", {})
            record.resourceVersion = metadata.get("resourceVersion")
            record.resourceName = metadata.get("name")
            record.resourceNamespace = metadata.get("namespace")

        return super().format(record)
