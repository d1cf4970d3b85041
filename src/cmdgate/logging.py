"""structlog setup for cmdgate.

Everything is logged to stderr: stdout of ``cmdgate classify`` and
``cmdgate hook --json`` is machine-read by shell integrations, so a log
line there would corrupt it.

Events are snake_case with key/value context, e.g.::

    logger = Loggers.hook()
    logger.info("suggestion_timed_out", timeout=10.0)
"""

import logging
import sys
from typing import TYPE_CHECKING

import structlog
from structlog.types import Processor

if TYPE_CHECKING:
    from cmdgate.config import CmdGateSettings

# Libraries that log every request at INFO
NOISY_LOGGERS = ("httpx", "httpcore")


def _renderer(log_format: str) -> list[Processor]:
    if log_format == "json":
        return [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]
    return [
        structlog.dev.ConsoleRenderer(
            colors=sys.stderr.isatty(),
            exception_formatter=structlog.dev.plain_traceback,
        )
    ]


def configure_logging(settings: "CmdGateSettings | None" = None) -> None:
    """Configure structlog and the stdlib root logger from settings.

    Without settings, logs warnings and above with the console renderer.
    """
    level_name = settings.log_level if settings is not None else "warning"
    log_format = settings.log_format if settings is not None else "console"
    level = logging.getLevelName(level_name.upper())

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.UnicodeDecoder(),
            *_renderer(log_format),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=False,
    )

    logging.basicConfig(format="%(message)s", level=level, stream=sys.stderr)
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """Get a structlog logger, optionally named."""
    return structlog.get_logger(name) if name else structlog.get_logger()


def bind_context(**kwargs: object) -> None:
    """Attach key/values to every log line of the current hook run.

    Example:
        bind_context(hook_run="3f2a1b9c")
        logger.info("input_skipped")  # carries hook_run
    """
    structlog.contextvars.bind_contextvars(**kwargs)


def clear_context() -> None:
    structlog.contextvars.clear_contextvars()


class Loggers:
    """Named loggers, one per cmdgate package."""

    @staticmethod
    def safety() -> structlog.stdlib.BoundLogger:
        return get_logger("cmdgate.safety")

    @staticmethod
    def hook() -> structlog.stdlib.BoundLogger:
        return get_logger("cmdgate.hook")

    @staticmethod
    def suggest() -> structlog.stdlib.BoundLogger:
        return get_logger("cmdgate.suggest")

    @staticmethod
    def cli() -> structlog.stdlib.BoundLogger:
        return get_logger("cmdgate.cli")

    @staticmethod
    def config() -> structlog.stdlib.BoundLogger:
        return get_logger("cmdgate.config")
