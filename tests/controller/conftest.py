"""
Shared fixtures for the controller tests
"""

# Third Party
import pytest

# Local
from numaplane.test_helpers.helpers import MockDeployManager, setup_reconcilers


@pytest.fixture
def dm():
    return MockDeployManager()


@pytest.fixture
def reconcilers(dm):
    """A pipeline and an ISB service reconciler sharing the fixture's deploy
    manager. Their queues are shut down after the test.
    """
    pipeline_reconciler, isbsvc_reconciler = setup_reconcilers(dm)
    yield pipeline_reconciler, isbsvc_reconciler
    pipeline_reconciler.shutdown()
    isbsvc_reconciler.shutdown()


@pytest.fixture
def pipeline_reconciler(reconcilers):
    return reconcilers[0]


@pytest.fixture
def isbsvc_reconciler(reconcilers):
    return reconcilers[1]
