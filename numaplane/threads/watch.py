"""The WatchThread Class is responsible for monitoring the cluster for
resource events
"""
# Standard
from typing import Callable, Optional
import os

# Third Party
from kubernetes import watch

# First Party
import alog

# Local
from .. import config
from ..deploy_manager import DeployManagerBase, KubeWatchEvent
from ..utils import parse_time_delta
from .base import ThreadBase

log = alog.use_channel("WTCHTHRD")


class WatchThread(ThreadBase):
    """The WatchThread monitors the cluster for changes to a single kind either
    cluster-wide or for a particular namespace and hands every event to a
    handler. The handler decides which rollout, if any, needs to be enqueued.
    """

    def __init__(  # pylint: disable=too-many-arguments
        self,
        deploy_manager: DeployManagerBase,
        kind: str,
        api_version: str,
        handler: Callable[[KubeWatchEvent], None],
        namespace: Optional[str] = None,
    ):
        """Initialize a WatchThread

        Args:
            deploy_manager: DeployManagerBase
                The deploy_manager to watch events from
            kind: str
                The kind to watch
            api_version: str
                The api_version to watch
            handler: Callable[[KubeWatchEvent], None]
                Function called with every event
            namespace: Optional[str] = None
                The namespace to watch. If none then cluster-wide
        """
        self.deploy_manager = deploy_manager
        self.kind = kind
        self.api_version = api_version
        self.handler = handler
        self.namespace = namespace

        name = f"watch_thread_{self.api_version}_{self.kind}"
        if self.namespace:
            name = name + f"_{self.namespace}"
        super().__init__(name=name, daemon=True)

        self.kubernetes_watch = watch.Watch()

        # Variables for tracking retries
        self.attempts_left = config.watch.retry_count
        self.retry_delay = parse_time_delta(config.watch.retry_delay or "")

    def run(self):
        """The WatchThread's control loop continuously watches the DeployManager
        and passes each event to the handler. A failed watch is restarted after
        the configured delay until the retries run out.
        """
        list_resource_version = 0
        while not self.should_stop():
            try:
                for event in self.deploy_manager.watch_objects(
                    self.kind,
                    self.api_version,
                    namespace=self.namespace,
                    resource_version=list_resource_version,
                    watch_manager=self.kubernetes_watch,
                ):
                    if self.should_stop():
                        log.debug("Watch for %s stopped", self.kind)
                        return
                    log.debug3(
                        "Received %s event for %s", event.type.value, event.resource
                    )
                    self.handler(event)

                # Update the resource version to only get new events
                list_resource_version = self.kubernetes_watch.resource_version
            except Exception as exc:  # pylint: disable=broad-exception-caught
                log.info(
                    "Exception raised when attempting to watch %s",
                    repr(exc),
                    exc_info=exc,
                )
                if self.attempts_left <= 0:
                    log.error(
                        "Unable to start watch within %d attempts",
                        config.watch.retry_count,
                    )
                    os._exit(1)

                if not self.wait_on_precondition(self.retry_delay.total_seconds()):
                    log.debug("Watch stopped during retry")
                    return
                self.attempts_left = self.attempts_left - 1
                log.info("Restarting watch with %d attempts left", self.attempts_left)

    def stop_thread(self):
        """Override stop_thread to stop the kubernetes client's Watch as well"""
        super().stop_thread()
        self.kubernetes_watch.stop()
