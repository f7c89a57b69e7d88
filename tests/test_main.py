"""
Tests for the __main__.py entrypoint to the library as an executable
"""

# Standard
from unittest import mock
import sys

# Local
from numaplane import config
from numaplane.__main__ import main
from numaplane.cmd import RunControllerCmd
from numaplane.log_format import RolloutJsonFormatter
from numaplane.test_helpers.helpers import library_config


class AlogConfigureMock:
    def __init__(self):
        self.kwargs = None

    def __call__(self, **kwargs):
        self.kwargs = kwargs


def run_main(*args):
    """Run main with the given args and return the parsed args given to the
    run command along with the logging configuration
    """
    alog_mock = AlogConfigureMock()
    with mock.patch.object(sys, "argv", ["numaplane"] + list(args)), mock.patch(
        "alog.configure", alog_mock
    ), mock.patch.object(RunControllerCmd, "cmd") as cmd_mock:
        main()
    cmd_mock.assert_called_once()
    return cmd_mock.call_args[0][0], alog_mock.kwargs


def test_main_run_command():
    """Make sure the run command gets its own args"""
    with library_config(num_workers=config.num_workers):
        args, _ = run_main("run", "--namespace", "team-a")
    assert args.namespace == "team-a"
    assert args.resource_dir is None


def test_main_default_command():
    """Make sure the run command is used when no command is given and the
    library config is overridden from the command line
    """
    with library_config(num_workers=config.num_workers):
        run_main("--num_workers", "3")
        assert config.num_workers == 3


def test_main_nested_config_override():
    """Make sure nested library config values get dotted args"""
    old_retry_count = config.watch.retry_count
    try:
        run_main("run", "--watch.retry_count", "9")
        assert config.watch.retry_count == 9
    finally:
        config.watch["retry_count"] = old_retry_count


def test_main_json_logging():
    """Make sure json logging uses the rollout json formatter"""
    with library_config(log_json=config.log_json, log_thread_id=config.log_thread_id):
        _, alog_kwargs = run_main("run", "--log_json", "--log_thread_id")
    assert isinstance(alog_kwargs.get("formatter"), RolloutJsonFormatter)
    assert alog_kwargs.get("thread_id") is True


def test_main_pretty_logging():
    with library_config(log_json=False):
        _, alog_kwargs = run_main("run")
    assert alog_kwargs.get("formatter") == "pretty"
