"""structlog setup for embedkit.

Library modules only call ``structlog.get_logger("<component>")``; nothing is
configured on import. Applications that want JSON lines (or a readable
console stream while developing) call ``configure_logging`` once.

Component loggers in use
- ``resilience``, ``retry_handler``, ``circuit_breaker``, ``rate_limiter``
- ``url_safety``, ``http_client``, ``embedding_cache``, ``embedding_pipeline``
- ``performance`` for ``log_performance`` timings
"""

import logging
import sys
from typing import Any, TextIO

import structlog
from structlog.stdlib import LoggerFactory, add_logger_name

from .errors import ConfigurationError

_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


def configure_logging(
    service_name: str,
    log_level: str = "INFO",
    log_format: str = "json",
    stream: TextIO = sys.stdout,
    **context: Any
) -> None:
    """Route structlog through the stdlib root logger.

    Parameters
    - service_name: Bound as ``service`` on every event
    - log_level: One of ``DEBUG``/``INFO``/``WARNING``/``ERROR``/``CRITICAL``
    - log_format: ``json`` or ``console``
    - stream: Where rendered lines go
    - context: Extra key/values bound to every event (e.g. ``tenant="acme"``)
    """
    level = log_level.upper()
    if level not in _LEVELS:
        raise ConfigurationError(f"Unknown log level: {log_level}")
    if log_format not in ("json", "console"):
        raise ConfigurationError(f"Unknown log format: {log_format}")

    logging.basicConfig(format="%(message)s", stream=stream, level=getattr(logging, level), force=True)

    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        add_logger_name,
    ]

    if log_format == "json":
        # pipeline warnings carry exc_info
        processors.append(structlog.processors.format_exc_info)
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=stream.isatty()))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(service=service_name, **context)


def get_logger(name: str) -> structlog.BoundLogger:
    return structlog.get_logger(name)


def log_performance(operation: str, duration_ms: float, **kwargs: Any) -> None:
    """Emit one timing event on the ``performance`` logger.

    Parameters
    - operation: Stable name of the measured step (``generate_embeddings``)
    - duration_ms: Wall time in milliseconds
    - kwargs: Dimensions such as provider, model, chunks, retries
    """
    get_logger("performance").info(
        "Embedding operation timed",
        operation=operation,
        duration_ms=duration_ms,
        **kwargs
    )
