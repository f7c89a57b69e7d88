"""
This is the main entrypoint command for running the rollout controller
"""
# Standard
from typing import List, Optional
import argparse
import os
import signal

# Third Party
from prometheus_client import start_http_server
import yaml

# First Party
import alog

# Local
from .. import config
from ..controller import ControllerManager
from ..deploy_manager import DeployManagerBase, DryRunDeployManager
from .base import CmdBase

log = alog.use_channel("MAIN")


class RunControllerCmd(CmdBase):
    __doc__ = __doc__

    ## Interface ##

    def add_subparser(
        self,
        subparsers: argparse._SubParsersAction,
    ) -> argparse.ArgumentParser:
        parser = subparsers.add_parser("run", help=__doc__)
        runtime_args = parser.add_argument_group("Runtime Configuration")
        runtime_args.add_argument(
            "--namespace",
            "-n",
            default=None,
            help="Namespace to watch. Overrides watch_namespace",
        )
        runtime_args.add_argument(
            "--rollout",
            "-c",
            default=None,
            help="(dry run) A rollout manifest yaml to apply once running",
        )
        runtime_args.add_argument(
            "--resource_dir",
            "-r",
            default=None,
            help="(dry run) Path to a directory of yaml files that should exist in the cluster",
        )
        return parser

    def cmd(self, args: argparse.Namespace):
        # Validate args
        assert args.rollout is None or (
            config.dry_run and os.path.isfile(args.rollout)
        ), "Can only specify --rollout with dry run and it must point to a valid file"
        assert args.resource_dir is None or (
            config.dry_run and os.path.isdir(args.resource_dir)
        ), "Can only specify --resource_dir with dry run and it must point to a valid directory"

        # Parse pre-populated resources if needed
        resources = self._parse_resource_dir(args.resource_dir)
        deploy_manager = self._get_deploy_manager(resources)

        manager = ControllerManager(
            deploy_manager=deploy_manager, namespace=args.namespace
        )

        # Register the signal handler to stop the controllers
        def do_stop(*_, **__):  # pragma: no cover
            manager.stop()

        signal.signal(signal.SIGINT, do_stop)
        signal.signal(signal.SIGTERM, do_stop)

        if config.metrics_port is not None:
            log.info("Serving metrics on port %d", config.metrics_port)
            start_http_server(config.metrics_port)

        log.info("Starting Controllers")
        manager.start()

        # If given, apply the rollout directly
        if args.rollout:
            log.info("Applying rollout [%s]", args.rollout)
            with open(args.rollout, encoding="utf-8") as handle:
                rollout_manifest = yaml.safe_load(handle)
                rollout_manifest.setdefault("metadata", {}).setdefault(
                    "namespace", args.namespace or "default"
                )
                log.debug3(rollout_manifest)
                deploy_manager.deploy([rollout_manifest])

        manager.wait()

        # All done!
        log.info("SHUTTING DOWN")

    ## Impl ##

    @staticmethod
    def _parse_resource_dir(resource_dir: Optional[str]) -> List[dict]:
        """If given, this will parse all yaml files found in the given directory"""
        all_resources = []
        if resource_dir is not None:
            for fname in os.listdir(resource_dir):
                if fname.endswith(".yaml") or fname.endswith(".yml"):
                    resource_path = os.path.join(resource_dir, fname)
                    log.debug3("Reading resource file [%s]", resource_path)
                    with open(resource_path, encoding="utf-8") as handle:
                        all_resources.extend(
                            doc for doc in yaml.safe_load_all(handle) if doc
                        )
        return all_resources

    @staticmethod
    def _get_deploy_manager(resources: List[dict]) -> Optional[DeployManagerBase]:
        """In dry run mode, the cluster is an in-memory DryRunDeployManager.
        Otherwise the ControllerManager connects to the live cluster.
        """
        if config.dry_run:
            log.info("Running DRY RUN")
            return DryRunDeployManager(resources=resources)
        return None
