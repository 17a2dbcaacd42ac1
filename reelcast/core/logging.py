from __future__ import annotations

import logging
import sys
from typing import Any, Literal, Union

import structlog

LogFormat = Literal["json", "console"]


def configure_logging(level: Union[int, str] = logging.INFO, *, log_format: LogFormat = "json") -> None:
    """Route structlog events through the stdlib root logger on stderr.

    stdout is left to the CLI's rich tables, so a piped ``reelcast status`` stays clean.
    ``console`` renders key/value lines for interactive use, ``json`` is for log shippers.
    """
    numeric_level = _resolve_level(level)
    logging.basicConfig(format="%(message)s", level=numeric_level, stream=sys.stderr)
    processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
    ]
    if log_format == "console":
        # ConsoleRenderer formats tracebacks itself.
        processors.append(structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty()))
    else:
        processors += [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]
    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(numeric_level),
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(**initial_values: Any) -> structlog.BoundLogger:
    return structlog.get_logger().bind(**initial_values)


def _resolve_level(level: Union[int, str]) -> int:
    if isinstance(level, int):
        return level
    return logging.getLevelNamesMapping().get(level.upper(), logging.INFO)


__all__ = ["LogFormat", "configure_logging", "get_logger"]
