"""
The RolloutReconciler holds the reconciliation loop shared by every rollout
kind: the work queue and its workers, the finalizer and deletion handling, the
creation and update of the promoted child, the in progress strategy state
machine and the status write back. Kind specific behavior is provided by the
subclasses.
"""

# Standard
from threading import Lock, Thread
from typing import Dict, List, Optional, Tuple
import abc
import copy
import time

# First Party
import alog

# Local
from .. import config, constants
from ..deploy_manager import DeployManagerBase, KubeEventType, KubeWatchEvent
from ..deploy_manager.owner_references import check_owner_reference
from ..exceptions import ClusterError, NumaplaneError, assert_cluster
from ..log_format import reconcile_context
from ..metrics import ControllerMetrics
from ..reconcile import ReconciliationResult
from ..status import (
    NAME_COUNT_KEY,
    copy_status,
    init_status,
    mark_deployed,
    mark_failed,
    mark_pending,
    status_changed,
)
from ..usde import (
    ConfigDecisionEngine,
    DecisionEngineBase,
    UpgradeStrategy,
    UserStrategy,
)
from ..utils import add_finalizer, make_queue_key, remove_finalizer, split_queue_key
from ..work_queue import ItemExponentialFailureRateLimiter, RateLimitingQueue
from .child import garbage_collect, make_promoted_definition, merge
from .in_progress_strategy import InProgressStrategyManager
from .pause import PauseRegistry
from .progressive import (
    Assessment,
    ProgressiveController,
    default_assessment,
    process_resource_with_progressive,
)

log = alog.use_channel("RLRCN")

# Kubernetes event types
EVENT_NORMAL = "Normal"
EVENT_WARNING = "Warning"


class RolloutReconciler(
    ProgressiveController
):  # pylint: disable=too-many-instance-attributes
    """Base class for the reconcilers of the rollout kinds"""

    # Name used for the queue, the worker threads and the metrics
    controller_name: str = None

    def __init__(  # pylint: disable=too-many-arguments
        self,
        deploy_manager: DeployManagerBase,
        decision_engine: Optional[DecisionEngineBase] = None,
        strategy_manager: Optional[InProgressStrategyManager] = None,
        pause_registry: Optional[PauseRegistry] = None,
        metrics: Optional[ControllerMetrics] = None,
        num_workers: Optional[int] = None,
    ):
        """Construct with the shared collaborators of the controller process

        Args:
            deploy_manager:  DeployManagerBase
                Access to the cluster
            decision_engine:  Optional[DecisionEngineBase]
                Classifies child changes. Defaults to the config driven engine
            strategy_manager:  Optional[InProgressStrategyManager]
                Record of the strategies in progress for this rollout kind
            pause_registry:  Optional[PauseRegistry]
                Pause requests shared between the pipeline and ISB service
                reconcilers
            metrics:  Optional[ControllerMetrics]
                Metrics to report to. Defaults to metrics in a private registry
            num_workers:  Optional[int]
                Number of worker threads. Defaults to config.num_workers
        """
        self.deploy_manager = deploy_manager
        self.decision_engine = decision_engine or ConfigDecisionEngine()
        self.strategy_manager = strategy_manager or InProgressStrategyManager()
        self.pause_registry = pause_registry or PauseRegistry()
        self.metrics = metrics or ControllerMetrics()
        self.num_workers = (
            num_workers if num_workers is not None else config.num_workers
        )

        self.queue = RateLimitingQueue(
            self.controller_name,
            ItemExponentialFailureRateLimiter(
                config.rate_limiter.base_delay_seconds,
                config.rate_limiter.max_delay_seconds,
            ),
        )
        self._workers: List[Thread] = []

        # Last generation seen per rollout key by the rollout watch
        self._seen_generations: Dict[str, Optional[int]] = {}
        self._seen_lock = Lock()

    ## Abstract Interface ######################################################

    @abc.abstractmethod
    def need_ppnd(
        self, rollout: dict, desired: dict, own_change_needs_ppnd: bool
    ) -> Optional[bool]:
        """Decide whether a PPND upgrade has to start for the rollout

        Args:
            rollout:  dict
                The rollout being reconciled
            desired:  dict
                The desired child definition
            own_change_needs_ppnd:  bool
                Whether the change to the child itself calls for PPND

        Returns:
            need_ppnd:  Optional[bool]
                True or False, or None if it can not be determined yet
        """

    @abc.abstractmethod
    def process_with_ppnd(self, rollout: dict, existing: dict, desired: dict) -> bool:
        """Advance the PPND upgrade of the rollout by one step

        Returns:
            done:  bool
                True when the upgrade is complete
        """

    @abc.abstractmethod
    def update_child_status(self, rollout: dict, child: dict, created: bool = False):
        """Project the status of the child onto the rollout status. created is
        True on the pass that created the child.
        """

    ## Base Class Interface ####################################################

    def on_rollout_deleted(self, rollout: dict):
        """Hook called while a rollout is being deleted"""

    def assess_candidate(self, candidate: dict) -> Assessment:
        return default_assessment(candidate)

    def increment_child_count(self, rollout: dict) -> int:
        """Reserve the next candidate number. The count is persisted right
        away so that a failed reconcile never reuses a name.
        """
        status = rollout.setdefault("status", {})
        current = status.get(NAME_COUNT_KEY) or 0
        status[NAME_COUNT_KEY] = current + 1
        metadata = rollout["metadata"]
        success, _ = self.deploy_manager.set_status(
            kind=self.rollout_kind,
            name=metadata["name"],
            namespace=metadata.get("namespace"),
            status=status,
            api_version=constants.ROLLOUT_API_VERSION,
        )
        assert_cluster(
            success, f"Failed to persist the name count of {metadata['name']}"
        )
        return current

    ## Queue ###################################################################

    def enqueue(self, namespace: str, name: str):
        """Request a reconcile of the rollout. Safe to call from any thread"""
        self.queue.add(make_queue_key(namespace, name))
        self.metrics.queue_length.labels(self.controller_name).set(len(self.queue))

    def start(self):
        """Start the worker threads"""
        log.info("Starting %d %s workers", self.num_workers, self.controller_name)
        for i in range(self.num_workers):
            worker = Thread(
                target=self._run_worker,
                name=f"{self.controller_name}_worker_{i}",
                daemon=True,
            )
            worker.start()
            self._workers.append(worker)

    def shutdown(self):
        """Shut down the queue and wait for every worker to finish its current
        item
        """
        log.info("Shutting down %s queue", self.controller_name)
        self.queue.shut_down()
        for worker in self._workers:
            worker.join()
        self._workers = []

    def process_queue_key(self, key: str):
        """Reconcile a single queue key and requeue it as the result asks"""
        try:
            namespace, name = split_queue_key(key)
        except ValueError as err:
            log.error("Dropping queue key: %s", err)
            self.queue.forget(key)
            return

        result = self.process_rollout(namespace, name)
        if result.exception is not None:
            log.warning(
                "%s %s reconcile failed: %s", self.rollout_kind, key, result.exception
            )
            self.queue.add_rate_limited(key)
        elif result.requeue and result.requeue_after is None:
            log.debug("%s %s requests requeue", self.rollout_kind, key)
            self.queue.forget(key)
            self.queue.add(key)
        elif result.requeue:
            log.debug(
                "%s %s requests requeue after %ss",
                self.rollout_kind,
                key,
                result.requeue_after,
            )
            self.queue.forget(key)
            self.queue.add_after(key, result.requeue_after)
        else:
            log.debug("%s %s reconcile complete", self.rollout_kind, key)
            self.queue.forget(key)

    ## Watch Handlers ##########################################################

    def handle_rollout_event(self, event: KubeWatchEvent):
        """Enqueue a rollout when it is added, its generation changes or it is
        being deleted
        """
        resource = event.resource
        key = make_queue_key(resource.namespace, resource.name)
        if event.type == KubeEventType.DELETED:
            with self._seen_lock:
                self._seen_generations.pop(key, None)
            return

        with self._seen_lock:
            previous = self._seen_generations.get(key)
            self._seen_generations[key] = resource.generation
        if (
            event.type == KubeEventType.MODIFIED
            and previous == resource.generation
            and not resource.deletion_timestamp
        ):
            log.debug4("Skipping %s event without generation change", key)
            return
        self.enqueue(resource.namespace, resource.name)

    def handle_child_event(self, event: KubeWatchEvent):
        """Enqueue the rollout that controls the changed child"""
        owner = event.resource.controller_owner()
        if not owner or owner.get("kind") != self.rollout_kind:
            return
        log.debug3("Child %s changed, enqueueing %s", event.resource, owner["name"])
        self.enqueue(event.resource.namespace, owner["name"])

    ## Reconciliation ##########################################################

    def process_rollout(self, namespace: str, name: str) -> ReconciliationResult:
        """Reconcile the rollout with the given namespace and name

        Returns:
            result:  ReconciliationResult
                Whether the rollout is done, must be requeued, or failed
        """
        self.metrics.syncs_total.labels(self.controller_name).inc()
        success, manifest = self.deploy_manager.get_object_current_state(
            kind=self.rollout_kind,
            name=name,
            namespace=namespace,
            api_version=constants.ROLLOUT_API_VERSION,
        )
        if not success:
            self.metrics.sync_errors_total.labels(self.controller_name).inc()
            return ReconciliationResult.failed(
                ClusterError(f"Failed to get {self.rollout_kind} {namespace}/{name}")
            )
        if manifest is None:
            log.debug("%s %s/%s not found", self.rollout_kind, namespace, name)
            return ReconciliationResult.done()

        with reconcile_context(self.rollout_kind, namespace, name):
            original_status = copy_status(manifest)
            rollout = copy.deepcopy(manifest)
            init_status(rollout.setdefault("status", {}))
            deleting = bool(rollout["metadata"].get("deletionTimestamp"))

            try:
                requeue, child = self._reconcile(rollout)
            except Exception as err:  # pylint: disable=broad-exception-caught
                return self._fail(
                    rollout,
                    original_status,
                    err,
                    "ReconcileFailed",
                    f"Failed to reconcile {self.rollout_kind}",
                )
            if deleting:
                return ReconciliationResult.done()

            try:
                self._process_child_status(rollout, child)
            except Exception as err:  # pylint: disable=broad-exception-caught
                return self._fail(
                    rollout,
                    original_status,
                    err,
                    f"Process{self.child_kind}StatusFailed",
                    f"Failed to process {self.child_kind} status",
                )

            try:
                self._write_status(rollout, original_status)
            except NumaplaneError as err:
                self._record_error(
                    rollout,
                    err,
                    "UpdateStatusFailed",
                    f"Failed to update {self.rollout_kind} status",
                )
                return ReconciliationResult.failed(err)

            self.metrics.set_rollout_running(self.rollout_kind, namespace, name)
            if requeue:
                return ReconciliationResult.requeue_later()

            self.deploy_manager.record_event(
                rollout, EVENT_NORMAL, "ReconcileSuccess", "Reconciliation successful"
            )
            log.debug("Reconciliation of %s/%s successful", namespace, name)
            return ReconciliationResult.done()

    def process_existing(self, rollout: dict, existing: dict, desired: dict) -> bool:
        """Bring an existing child to the desired definition, running the
        in progress strategy or choosing a new one

        Returns:
            requeue:  bool
                True if the rollout is waiting on the cluster
        """
        start_time = time.time()
        status = rollout["status"]
        generation = rollout["metadata"].get("generation")
        namespace = rollout["metadata"].get("namespace")

        user_strategy = self.decision_engine.get_user_strategy(namespace)
        needs_update, recommended = self.decision_engine.resource_needs_updating(
            desired, existing
        )
        log.debug(
            "Upgrade decision: needs update %s, recommended %s",
            needs_update,
            recommended.value,
        )
        if needs_update:
            mark_pending(status)
        else:
            mark_deployed(status, generation)

        # A strategy in progress overrides any new decision
        in_progress = self.strategy_manager.get_strategy(rollout)
        log.debug2("Current in progress strategy: %s", in_progress.value)
        if in_progress == UpgradeStrategy.NO_OP:
            if user_strategy == UserStrategy.PPND:
                ppnd_required = self.need_ppnd(
                    rollout, desired, recommended == UpgradeStrategy.PPND
                )
                if ppnd_required is None:
                    log.info("Not enough information to decide on PPND, waiting")
                    return True
                if ppnd_required:
                    in_progress = UpgradeStrategy.PPND
                    self.strategy_manager.set_strategy(rollout, in_progress)
            elif (
                user_strategy == UserStrategy.PROGRESSIVE
                and recommended == UpgradeStrategy.PROGRESSIVE
            ):
                in_progress = UpgradeStrategy.PROGRESSIVE
                self.strategy_manager.set_strategy(rollout, in_progress)

        # Do not act on a stale cache in the middle of a strategy
        if in_progress != UpgradeStrategy.NO_OP:
            live = self._get_child(existing)
            if live is None:
                log.warning(
                    "%s %s not found live",
                    self.child_kind,
                    existing["metadata"]["name"],
                )
            else:
                existing = live
                desired = merge(existing, desired)

        requeue = False
        if in_progress == UpgradeStrategy.PPND:
            log.debug("Processing %s with PPND", self.child_kind)
            if self.process_with_ppnd(rollout, existing, desired):
                self.strategy_manager.unset_strategy(rollout)
                mark_deployed(status, generation)
            else:
                requeue = True
        elif in_progress == UpgradeStrategy.PROGRESSIVE:
            if not needs_update:
                log.info("Change reverted, abandoning progressive upgrade")
                self.strategy_manager.unset_strategy(rollout)
            elif process_resource_with_progressive(self, rollout, existing):
                self.strategy_manager.unset_strategy(rollout)
                mark_deployed(status, generation)
            else:
                requeue = True
        elif needs_update and recommended == UpgradeStrategy.APPLY:
            self._apply(desired)
            mark_deployed(status, generation)

        garbage_collect(
            self,
            rollout,
            self.strategy_manager.get_strategy(rollout) == UpgradeStrategy.PROGRESSIVE,
        )

        if needs_update:
            self.metrics.reconciliation_duration.labels(
                self.controller_name, "update"
            ).observe(time.time() - start_time)
        return requeue

    ## Implementation Details ##################################################

    def _reconcile(self, rollout: dict) -> Tuple[bool, Optional[dict]]:
        """Reconcile the rollout's finalizer and promoted child

        Returns:
            requeue:  bool
                True if the rollout is waiting on the cluster
            child:  Optional[dict]
                The existing child as it was before this reconcile, None if it
                was created or the rollout is being deleted
        """
        metadata = rollout["metadata"]
        status = rollout["status"]
        if metadata.get("deletionTimestamp"):
            self._handle_deletion(rollout)
            return False, None

        add_finalizer(self.deploy_manager, rollout, constants.FINALIZER_NAME)

        desired = make_promoted_definition(self, rollout)
        existing = self._get_child(desired, live=False)
        if existing is None:
            start_time = time.time()
            log.info(
                "Creating %s %s", self.child_kind, desired["metadata"]["name"]
            )
            mark_pending(status)
            self._apply(desired)
            mark_deployed(status, metadata.get("generation"))
            self.metrics.reconciliation_duration.labels(
                self.controller_name, "create"
            ).observe(time.time() - start_time)
            return False, None

        check_owner_reference(existing, rollout)
        desired = merge(existing, desired)
        requeue = self.process_existing(rollout, existing, desired)
        return requeue, existing

    def _handle_deletion(self, rollout: dict):
        start_time = time.time()
        metadata = rollout["metadata"]
        namespace, name = metadata.get("namespace"), metadata["name"]
        log.info("Deleting %s %s/%s", self.rollout_kind, namespace, name)
        self.on_rollout_deleted(rollout)
        remove_finalizer(self.deploy_manager, rollout, constants.FINALIZER_NAME)
        self.metrics.clear_rollout(self.rollout_kind, namespace, name)
        self.strategy_manager.clear(namespace, name)
        self.metrics.reconciliation_duration.labels(
            self.controller_name, "delete"
        ).observe(time.time() - start_time)

    def _process_child_status(self, rollout: dict, child: Optional[dict]):
        """Update the rollout status from its promoted child, fetching the
        child if the reconcile did not already have it
        """
        created = child is None
        if created:
            desired = make_promoted_definition(self, rollout)
            child = self._get_child(desired)
            if child is None:
                log.warning(
                    "%s %s not found, unable to process its status",
                    self.child_kind,
                    desired["metadata"]["name"],
                )
                return
        self.update_child_status(rollout, child, created=created)

    def _get_child(self, child: dict, live: bool = True) -> Optional[dict]:
        metadata = child["metadata"]
        getter = (
            self.deploy_manager.get_object_live_state
            if live
            else self.deploy_manager.get_object_current_state
        )
        success, current = getter(
            kind=self.child_kind,
            name=metadata["name"],
            namespace=metadata.get("namespace"),
            api_version=constants.CHILD_API_VERSION,
        )
        assert_cluster(
            success, f"Failed to get {self.child_kind} {metadata['name']}"
        )
        return current

    def _apply(self, child: dict):
        success, _ = self.deploy_manager.deploy([child])
        assert_cluster(
            success,
            f"Failed to apply {self.child_kind} {child['metadata']['name']}",
        )

    def _write_status(self, rollout: dict, original_status: dict):
        """Write the rollout status if it changed, retrying a failed write"""
        status = rollout["status"]
        if not status_changed(original_status, status):
            log.debug2("Status unchanged, skipping update")
            return

        metadata = rollout["metadata"]
        for attempt in range(config.status_update_retries + 1):
            success, _ = self.deploy_manager.set_status(
                kind=self.rollout_kind,
                name=metadata["name"],
                namespace=metadata.get("namespace"),
                status=status,
                api_version=constants.ROLLOUT_API_VERSION,
            )
            if success:
                return
            log.warning(
                "Failed to update status of %s (attempt %d)",
                metadata["name"],
                attempt + 1,
            )
        raise ClusterError(f"Failed to update status of {metadata['name']}")

    def _record_error(self, rollout: dict, err: Exception, reason: str, message: str):
        self.metrics.sync_errors_total.labels(self.controller_name).inc()
        self.deploy_manager.record_event(
            rollout, EVENT_WARNING, reason, f"{message}: {err}"
        )

    def _fail(  # pylint: disable=too-many-arguments
        self,
        rollout: dict,
        original_status: dict,
        err: Exception,
        reason: str,
        message: str,
    ) -> ReconciliationResult:
        """Report a failed reconcile as an event and in the rollout status"""
        log.warning(
            "%s: %s", message, err, exc_info=not isinstance(err, NumaplaneError)
        )
        self._record_error(rollout, err, reason, message)
        mark_failed(rollout["status"], str(err), rollout["metadata"].get("generation"))
        try:
            self._write_status(rollout, original_status)
        except NumaplaneError as status_err:
            self._record_error(
                rollout,
                status_err,
                "UpdateStatusFailed",
                f"Failed to update {self.rollout_kind} status",
            )
            return ReconciliationResult.failed(status_err)
        return ReconciliationResult.failed(err)

    def _run_worker(self):
        while True:
            key, shutting_down = self.queue.get()
            if shutting_down:
                log.debug("%s worker done", self.controller_name)
                return
            try:
                self.process_queue_key(key)
            except Exception as err:  # pylint: disable=broad-exception-caught
                log.error("Unexpected error processing %s: %s", key, err, exc_info=True)
                self.queue.add_rate_limited(key)
            finally:
                self.queue.done(key)
