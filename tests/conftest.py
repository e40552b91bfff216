import logging
import os

import pytest
from rich.console import Console
from rich.traceback import Traceback
import structlog

from busmap.logging import configure_logging
from busmap.models import Segment, Stop, TravelMode

_PYTEST_LOGGERS = ("pytest", "_pytest", "_pytest.logging", "_pytest.runner", "_pytest.terminal")


def _log_level() -> str:
    return os.getenv("BUSMAP_TEST_LOG_LEVEL", "INFO")


def _share_structlog_handler() -> None:
    """Attach the root structlog handler to pytest's own loggers."""
    handler = next(
        (
            h
            for h in logging.getLogger().handlers
            if isinstance(h.formatter, structlog.stdlib.ProcessorFormatter)
        ),
        None,
    )
    if handler is None:
        return

    for name in _PYTEST_LOGGERS:
        logger = logging.getLogger(name)
        for existing in logger.handlers[:]:
            logger.removeHandler(existing)
        logger.addHandler(handler)
        logger.setLevel(_log_level())
        logger.propagate = False


def pytest_configure(config: pytest.Config) -> None:
    """Route pytest's live log through the busmap structlog renderer."""
    configure_logging(level=_log_level(), format_json=False)

    config.option.log_cli = True
    config.option.log_cli_level = _log_level()
    config.option.log_cli_format = "%(message)s"

    _share_structlog_handler()


def pytest_sessionstart(session: pytest.Session) -> None:  # noqa: ARG001
    # The CLI tests reconfigure logging; start each session from the test setup
    configure_logging(level=_log_level(), format_json=False)
    _share_structlog_handler()


def pytest_runtest_logreport(report: pytest.TestReport) -> None:
    if report.when == "call" and report.outcome != "failed":
        structlog.get_logger("pytest").info(
            "Test completed",
            test_name=report.nodeid,
            outcome=report.outcome,
            duration=getattr(report, "duration", None),
        )


def pytest_exception_interact(node: pytest.Item, call: pytest.CallInfo) -> None:  # pyright: ignore[reportMissingTypeArgument]
    """Log the failure and print a rich traceback with locals."""
    if call.excinfo is None:
        return

    structlog.get_logger("pytest").error(
        "Test exception occurred",
        test_name=node.nodeid,
        exception_type=call.excinfo.typename,
        exception_message=str(call.excinfo.value),
    )
    Console().print(
        Traceback.from_exception(
            call.excinfo.type,
            call.excinfo.value,
            call.excinfo.tb,
            show_locals=True,
            max_frames=5,
        )
    )


# Shared route data: line 16 across Hanoi, as returned by the trip planner


@pytest.fixture()
def cau_giay() -> Stop:
    return Stop("Cau Giay", 21.0332, 105.7806)


@pytest.fixture()
def giai_phong() -> Stop:
    return Stop("Giai Phong", 20.9879, 105.8408)


@pytest.fixture()
def line_16(cau_giay: Stop, giai_phong: Stop) -> Segment:
    return Segment(TravelMode.BUS, cau_giay, giai_phong, 2601, line_id="16", line_name="16")
