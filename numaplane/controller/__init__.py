"""
The rollout controllers
"""

# Local
from .child import ChildController
from .health import Health, HealthState
from .in_progress_strategy import InProgressStrategyManager
from .isbservice_rollout import ISBServiceRolloutReconciler
from .manager import ControllerManager
from .pause import PauseRegistry
from .pipeline_rollout import PipelineRolloutReconciler
from .progressive import Assessment, ProgressiveController
from .rollout_reconciler import RolloutReconciler
