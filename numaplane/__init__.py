"""
Package exports
"""

# Local
from . import config, reconcile, status
from .controller import (
    ControllerManager,
    ISBServiceRolloutReconciler,
    PipelineRolloutReconciler,
    RolloutReconciler,
)
from .deploy_manager import DeployManagerBase
from .exceptions import assert_cluster, assert_config, assert_precondition
from .reconcile import ReconciliationResult
