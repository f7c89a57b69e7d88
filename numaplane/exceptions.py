"""
This module implements custom exceptions
"""

## Base Error ##################################################################


class NumaplaneError(Exception):
    """Base class for all numaplane exceptions"""

    def __init__(self, message: str, is_fatal_error: bool):
        """Construct with a flag indicating whether this is a fatal error. This
        will be a static property of all children.
        """
        super().__init__(message)
        self._is_fatal_error = is_fatal_error

    @property
    def is_fatal_error(self):
        """Property indicating whether or not this error should mark the
        rollout as Failed
        """
        return self._is_fatal_error


## Fatal Errors ################################################################


class NumaplaneFatalError(NumaplaneError):
    """A NumaplaneFatalError is one that indicates an unexpected failure during
    a reconciliation. The rollout is marked Failed and the key is retried with
    backoff.
    """

    def __init__(self, message: str = ""):
        super().__init__(message=message, is_fatal_error=True)


class ConfigError(NumaplaneFatalError):
    """Exception caused by invalid library or rollout configuration"""


class ClusterError(NumaplaneFatalError):
    """Exception caused when a cluster operation fails in an unexpected way"""


class OwnershipConflictError(NumaplaneFatalError):
    """A child with the desired name exists but is not owned by the rollout
    being reconciled
    """


class DecisionError(NumaplaneFatalError):
    """The upgrade strategy decision engine could not produce a decision"""


class StrategyConflictError(NumaplaneFatalError):
    """An attempt was made to switch between two different in-progress
    strategies without passing through NoOp
    """


## Expected Errors #############################################################


class NumaplaneExpectedError(NumaplaneError):
    """A NumaplaneExpectedError is one that indicates an expected failure
    condition that should cause a reconciliation to terminate, but is expected
    to resolve in a subsequent reconciliation.
    """

    def __init__(self, message: str = ""):
        super().__init__(message=message, is_fatal_error=False)


class PreconditionError(NumaplaneExpectedError):
    """Exception caused when an expected precondition is not met"""


## Assertions ##################################################################


def assert_precondition(condition: bool, message: str = ""):
    """Replacement for assert() which will throw a PreconditionError"""
    if not condition:
        raise PreconditionError(message)


def assert_config(condition: bool, message: str = ""):
    """Replacement for assert() which will throw a ConfigError. This should be
    used when the library config or a rollout spec holds unusable values.
    """
    if not condition:
        raise ConfigError(message)


def assert_cluster(condition: bool, message: str = ""):
    """Replacement for assert() which will throw a ClusterError. This should
    be used when an operation in the cluster (such as fetching or patching a
    child resource) must succeed.
    """
    if not condition:
        raise ClusterError(message)
