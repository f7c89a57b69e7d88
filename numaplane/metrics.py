"""
Prometheus metrics exported by the controller on /metrics
"""

# Standard
from typing import Optional

# Third Party
from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram

# First Party
import alog

log = alog.use_channel("METRC")

# Values of the rollout health gauge
HEALTH_HEALTHY = 1
HEALTH_UNHEALTHY = 0
HEALTH_UNKNOWN = -1

# Pause types of the paused seconds gauge
USER_PAUSE = "user_pause"
SYSTEM_PAUSE = "system_pause"


class ControllerMetrics:  # pylint: disable=too-many-instance-attributes
    """Metrics for the rollout reconcilers. Each instance registers its
    collectors with the given registry so that tests can use a private one.
    """

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        """
        Args:
            registry:  Optional[CollectorRegistry]
                Registry to register collectors with. A fresh private registry
                is used if not given.
        """
        self.registry = registry if registry is not None else CollectorRegistry()

        self.rollouts_running = Gauge(
            "numaplane_rollouts_running",
            "Rollouts currently managed by the controller",
            ["kind", "namespace", "name"],
            registry=self.registry,
        )
        self.rollout_health = Gauge(
            "numaplane_rollout_health",
            "Health of the rollout child (1=healthy, 0=unhealthy, -1=unknown)",
            ["kind", "namespace", "name"],
            registry=self.registry,
        )
        self.pipeline_paused_seconds = Gauge(
            "numaplane_pipeline_paused_seconds",
            "Seconds the pipeline of a rollout has been paused in its current pause",
            ["namespace", "name", "pause_type"],
            registry=self.registry,
        )
        self.queue_length = Gauge(
            "numaplane_queue_length",
            "Keys waiting in the reconcile queue",
            ["controller"],
            registry=self.registry,
        )
        self.syncs_total = Counter(
            "numaplane_syncs_total",
            "Total reconciliations",
            ["controller"],
            registry=self.registry,
        )
        self.sync_errors_total = Counter(
            "numaplane_sync_errors_total",
            "Total failed reconciliations",
            ["controller"],
            registry=self.registry,
        )
        self.reconciliation_duration = Histogram(
            "numaplane_reconciliation_duration_seconds",
            "Duration of a single reconciliation",
            ["controller", "type"],
            buckets=(0.01, 0.05, 0.1, 0.5, 1, 2, 5, 10, 30, float("inf")),
            registry=self.registry,
        )

    ## Rollouts ################################################################

    def set_rollout_running(self, kind: str, namespace: str, name: str):
        self.rollouts_running.labels(kind, namespace, name).set(1)

    def set_rollout_health(self, kind: str, namespace: str, name: str, value: int):
        self.rollout_health.labels(kind, namespace, name).set(value)

    def set_paused_seconds(
        self, namespace: str, name: str, pause_type: str, seconds: float
    ):
        self.pipeline_paused_seconds.labels(namespace, name, pause_type).set(seconds)

    def clear_paused_seconds(self, namespace: str, name: str):
        for pause_type in (USER_PAUSE, SYSTEM_PAUSE):
            self._remove(self.pipeline_paused_seconds, namespace, name, pause_type)

    def clear_rollout(self, kind: str, namespace: str, name: str):
        """Remove every series of a deleted rollout"""
        log.debug("Clearing metrics for %s %s/%s", kind, namespace, name)
        self._remove(self.rollouts_running, kind, namespace, name)
        self._remove(self.rollout_health, kind, namespace, name)
        self.clear_paused_seconds(namespace, name)

    ## Implementation Details ##################################################

    @staticmethod
    def _remove(metric, *labels):
        try:
            metric.remove(*labels)
        except KeyError:
            log.debug4("No series %s to remove", labels)
