"""Structured logging for busmap."""

import logging
import sys

import structlog

# Libraries that log every request at INFO; routing fan-out makes them noisy.
_CHATTY_LOGGERS: tuple[str, ...] = ("httpx", "httpcore", "matplotlib", "PIL")


def _callsite_adder() -> structlog.processors.CallsiteParameterAdder:
    return structlog.processors.CallsiteParameterAdder(
        parameters=[
            structlog.processors.CallsiteParameter.MODULE,
            structlog.processors.CallsiteParameter.FUNC_NAME,
            structlog.processors.CallsiteParameter.LINENO,
        ]
    )


def configure_logging(
    level: str = "INFO",
    format_json: bool = False,
) -> None:
    """Configure structlog and route stdlib logging through the same renderer.

    Safe to call repeatedly: existing root handlers are replaced, so the CLI
    can reconfigure after import-time defaults without duplicating output.

    Args:
        level: Logging level name (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        format_json: Emit JSON lines instead of colored console output
    """
    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    shared_processors: list[structlog.typing.Processor] = [
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        _callsite_adder(),
    ]

    final_processor: structlog.typing.Processor
    if format_json:
        shared_processors.append(structlog.processors.dict_tracebacks)
        final_processor = structlog.processors.JSONRenderer()
    else:
        # Tracebacks in tests are rendered by rich from conftest hooks
        final_processor = structlog.dev.ConsoleRenderer(colors=True)

    structlog.configure(
        processors=[*shared_processors, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, final_processor],
        foreign_pre_chain=[structlog.stdlib.add_log_level, _callsite_adder()],
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root_logger.addHandler(handler)
    root_logger.setLevel(getattr(logging, level.upper()))

    for name in _CHATTY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str = __name__) -> structlog.stdlib.BoundLogger:
    """Get a configured logger instance.

    Args:
        name: Logger name, typically __name__ of the calling module

    Returns:
        Configured structlog logger
    """
    return structlog.get_logger(name)


configure_logging()
