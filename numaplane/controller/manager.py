"""
The ControllerManager wires the rollout reconcilers to the cluster watches and
owns the collaborators they share
"""

# Standard
from typing import List, Optional

# Third Party
from prometheus_client import REGISTRY

# First Party
import alog

# Local
from .. import config, constants
from ..deploy_manager import DeployManagerBase, OpenshiftDeployManager
from ..metrics import ControllerMetrics
from ..threads import WatchThread
from ..usde import ConfigDecisionEngine, DecisionEngineBase
from .in_progress_strategy import InProgressStrategyManager
from .isbservice_rollout import ISBServiceRolloutReconciler
from .pause import PauseRegistry
from .pipeline_rollout import PipelineRolloutReconciler
from .rollout_reconciler import RolloutReconciler

log = alog.use_channel("CTRLM")


class ControllerManager:
    """Runs a reconciler per rollout kind along with a watch thread for each
    rollout kind and each child kind
    """

    def __init__(
        self,
        deploy_manager: Optional[DeployManagerBase] = None,
        decision_engine: Optional[DecisionEngineBase] = None,
        metrics: Optional[ControllerMetrics] = None,
        namespace: Optional[str] = None,
    ):
        """
        Args:
            deploy_manager:  Optional[DeployManagerBase]
                Access to the cluster. Defaults to an OpenshiftDeployManager
            decision_engine:  Optional[DecisionEngineBase]
                Classifies child changes. Defaults to the config driven engine
            metrics:  Optional[ControllerMetrics]
                Metrics to report to. Defaults to the global prometheus registry
            namespace:  Optional[str]
                Namespace to watch. Defaults to config.watch_namespace, and to
                all namespaces when neither is set
        """
        if deploy_manager is None:
            log.debug("Using OpenshiftDeployManager")
            deploy_manager = OpenshiftDeployManager()
        self.deploy_manager = deploy_manager
        self.namespace = namespace or config.watch_namespace or None
        decision_engine = decision_engine or ConfigDecisionEngine()
        self.metrics = metrics or ControllerMetrics(registry=REGISTRY)

        # Pipelines and ISB services coordinate pausing through one registry
        self.pause_registry = PauseRegistry()

        self.pipeline_reconciler = PipelineRolloutReconciler(
            deploy_manager,
            decision_engine=decision_engine,
            strategy_manager=InProgressStrategyManager(),
            pause_registry=self.pause_registry,
            metrics=self.metrics,
        )
        self.isbsvc_reconciler = ISBServiceRolloutReconciler(
            deploy_manager,
            decision_engine=decision_engine,
            strategy_manager=InProgressStrategyManager(),
            pause_registry=self.pause_registry,
            metrics=self.metrics,
            pipeline_enqueue=self.pipeline_reconciler.enqueue,
        )

        self.watch_threads: List[WatchThread] = []
        for reconciler in self.reconcilers:
            self.watch_threads.append(
                WatchThread(
                    deploy_manager,
                    reconciler.rollout_kind,
                    constants.ROLLOUT_API_VERSION,
                    reconciler.handle_rollout_event,
                    namespace=self.namespace,
                )
            )
            self.watch_threads.append(
                WatchThread(
                    deploy_manager,
                    reconciler.child_kind,
                    constants.CHILD_API_VERSION,
                    reconciler.handle_child_event,
                    namespace=self.namespace,
                )
            )

    @property
    def reconcilers(self) -> List[RolloutReconciler]:
        return [self.isbsvc_reconciler, self.pipeline_reconciler]

    def start(self):
        """Start the workers before the watches so no event waits on a worker"""
        log.info(
            "Starting controllers in %s",
            self.namespace if self.namespace else "all namespaces",
        )
        for reconciler in self.reconcilers:
            reconciler.start()
        for thread in self.watch_threads:
            thread.start_thread()

    def wait(self):
        """Block until every watch thread exits"""
        for thread in self.watch_threads:
            thread.join()

    def stop(self):
        """Stop the watches, then drain the workers"""
        log.info("Stopping controllers")
        for thread in self.watch_threads:
            thread.stop_thread()
        for reconciler in self.reconcilers:
            reconciler.shutdown()
