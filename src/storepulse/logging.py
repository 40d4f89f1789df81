# src/storepulse/logging.py
"""Structured logging for storepulse.

Library modules only ever call structlog.get_logger(__name__); nothing is
printed until the host (or the CLI) calls configure_logging(). Records from
structlog and from stdlib loggers are rendered by one ProcessorFormatter on
stderr, so stdout stays free for command output such as `status --format json`.

While a Tracker is running its project and device are bound as context
variables, so every line logged on its behalf (delivery failures, consent
timeouts, module errors) carries them:

    {"event": "Failed to send events, moved to failed-delivery store",
     "project_id": "shop-42", "device_id": "9b1d...", "event_count": 10, ...}
"""

import logging
import sys
from typing import Any

import structlog
from structlog.stdlib import ProcessorFormatter

# Parents cover httpcore.connection, httpcore.http11, ...
_HTTP_LOGGERS: tuple[str, ...] = ("httpx", "httpcore")

_TRACKER_CONTEXT_KEYS: tuple[str, ...] = ("project_id", "device_id")


def _pre_chain() -> list[Any]:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.stdlib.PositionalArgumentsFormatter(),
    ]


def _render_chain(json_output: bool) -> list[Any]:
    if json_output:
        return [
            ProcessorFormatter.remove_processors_meta,
            structlog.processors.dict_tracebacks,
            structlog.processors.JSONRenderer(sort_keys=False),
        ]
    return [
        ProcessorFormatter.remove_processors_meta,
        structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty()),
    ]


def configure_logging(*, json_output: bool = False, level: str = "INFO") -> None:
    """Route structlog and stdlib logging to one stderr handler.

    Args:
        json_output: One JSON object per line instead of console output
        level: Root level name (DEBUG, INFO, WARNING, ERROR)

    Raises:
        ValueError: If level is not a logging level name.
    """
    levels = logging.getLevelNamesMapping()
    try:
        log_level = levels[level.upper()]
    except KeyError:
        raise ValueError(f"Unknown log level {level!r}") from None

    pre_chain = _pre_chain()
    structlog.configure(
        processors=[*pre_chain, ProcessorFormatter.wrap_for_formatter],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=False,
    )

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(ProcessorFormatter(processors=_render_chain(json_output), foreign_pre_chain=pre_chain))

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(log_level)

    # Connection chatter only at WARNING or above, and never below the root level
    for name in _HTTP_LOGGERS:
        logging.getLogger(name).setLevel(max(log_level, logging.WARNING))


def bind_tracker_context(*, project_id: str, device_id: str) -> None:
    """Attach tracker identity to every log line in the current context."""
    structlog.contextvars.bind_contextvars(project_id=project_id, device_id=device_id)


def clear_tracker_context() -> None:
    structlog.contextvars.unbind_contextvars(*_TRACKER_CONTEXT_KEYS)
