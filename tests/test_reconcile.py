"""
Tests for the reconciliation result types and the json log format
"""

# Standard
from datetime import timedelta
import json
import logging

# Local
from numaplane.log_format import RolloutJsonFormatter, reconcile_context
from numaplane.reconcile import ReconciliationResult, RequeueParams
from numaplane.test_helpers.helpers import library_config

## ReconciliationResult ########################################################


def test_result_done():
    result = ReconciliationResult.done()
    assert not result.requeue
    assert result.requeue_after is None
    assert result.exception is None


def test_result_requeue_now():
    result = ReconciliationResult.requeue_now()
    assert result.requeue
    assert result.requeue_after is None


def test_result_requeue_later_default():
    """Make sure the default requeue delay comes from the library config"""
    with library_config(requeue_after_seconds=12):
        result = ReconciliationResult.requeue_later()
    assert result.requeue
    assert result.requeue_after == 12


def test_result_requeue_later_delay():
    result = ReconciliationResult.requeue_later(timedelta(seconds=3))
    assert result.requeue_after == 3


def test_result_failed():
    err = RuntimeError("boom")
    result = ReconciliationResult.failed(err)
    assert result.requeue
    assert result.exception is err


def test_requeue_params_default():
    with library_config(requeue_after_seconds=5):
        assert RequeueParams().requeue_after == timedelta(seconds=5)


## RolloutJsonFormatter ########################################################


def make_record(**extra):
    record = logging.LogRecord(
        name="PPLRO",
        level=logging.INFO,
        pathname=__file__,
        lineno=1,
        msg="hello %s",
        args=("world",),
        exc_info=None,
    )
    for key, val in extra.items():
        setattr(record, key, val)
    return record


def test_json_formatter_reconcile_context():
    """Make sure the rollout identity and reconciliationId are added within a
    reconcile context and removed after it
    """
    formatter = RolloutJsonFormatter()
    with reconcile_context("PipelineRollout", "test", "my-pipeline") as rec_id:
        output = json.loads(formatter.format(make_record()))
    assert output["reconciliationId"] == rec_id
    assert output["kind"] == "PipelineRollout"
    assert output["resourceName"] == "my-pipeline"
    assert output["resourceNamespace"] == "test"

    output = json.loads(formatter.format(make_record()))
    assert output.get("reconciliationId") is None


def test_json_formatter_resource_extra():
    """Make sure a resource passed as a log extra is described"""
    formatter = RolloutJsonFormatter()
    resource = {
        "kind": "Pipeline",
        "apiVersion": "numaflow.numaproj.io/v1alpha1",
        "metadata": {"name": "p", "namespace": "ns", "resourceVersion": "7"},
    }
    output = json.loads(formatter.format(make_record(resource=resource)))
    assert output["kind"] == "Pipeline"
    assert output["resourceVersion"] == "7"
    assert output["resourceName"] == "p"


def test_reconcile_context_ids_unique():
    with reconcile_context("PipelineRollout", "test", "a") as first:
        pass
    with reconcile_context("PipelineRollout", "test", "a") as second:
        pass
    assert first != second
