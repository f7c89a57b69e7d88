"""
Shared module to hold constant values for the library
"""

## API Groups ##################################################################

# Group/version of the Rollout resources owned by this controller
ROLLOUT_API_VERSION = "numaplane.numaproj.io/v1alpha1"

# Group/version of the managed child resources
CHILD_API_VERSION = "numaflow.numaproj.io/v1alpha1"

## Kinds #######################################################################

PIPELINE_ROLLOUT_KIND = "PipelineRollout"
ISBSVC_ROLLOUT_KIND = "ISBServiceRollout"
PIPELINE_KIND = "Pipeline"
ISBSVC_KIND = "InterStepBufferService"

## Labels ######################################################################

# Name of the Rollout that owns a child
LABEL_PARENT_ROLLOUT = "numaplane.numaproj.io/parent-rollout-name"

# Name of the InterStepBufferService a pipeline runs on
LABEL_ISBSVC_NAME = "numaplane.numaproj.io/isbsvc-name"

# Position of a child in the upgrade process
LABEL_UPGRADE_STATE = "numaplane.numaproj.io/upgrade-state"

# Set to "true" on a Rollout whose owner tolerates losing in-flight data
LABEL_ALLOW_DATA_LOSS = "numaplane.numaproj.io/allow-data-loss"

# Values for LABEL_UPGRADE_STATE
UPGRADE_STATE_PROMOTED = "promoted"
UPGRADE_STATE_IN_PROGRESS = "in-progress"
UPGRADE_STATE_RECYCLABLE = "recyclable"

# ISB service name used when a pipeline does not name one
DEFAULT_ISBSVC_NAME = "default"

## Finalizers ##################################################################

FINALIZER_NAME = "numaplane.numaproj.io/numaplane-controller"

## Pipeline Lifecycle ##########################################################

# Path within a pipeline spec holding the requested lifecycle phase
DESIRED_PHASE_PATH = "lifecycle.desiredPhase"

DESIRED_PHASE_PAUSED = "Paused"
DESIRED_PHASE_RUNNING = "Running"

## Misc ########################################################################

# Delimiter used for nested dict keys
NESTED_DICT_DELIM = "."

# Separator between the namespace and name of a reconcile key
QUEUE_KEY_DELIM = "/"

# Minimum wait time for the timer thread between checks
MIN_SLEEP_TIME = 0.01
