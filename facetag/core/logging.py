"""Structured logging for the face tagging engine.

The engine never configures logging on import; hosts call
:func:`setup_logging` once, and library modules only ask for loggers via
:func:`get_logger`.
"""
import logging
import sys
from typing import List, Optional, TextIO

import structlog
from structlog.stdlib import ProcessorFormatter

from facetag.core.config import Settings, settings as default_settings

# Third-party loggers that are noisy at INFO.
QUIET_LOGGERS = ("onnxruntime",)


def _processors(json_output: bool) -> List[structlog.types.Processor]:
    processors: List[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
    ]
    if json_output:
        processors.append(structlog.processors.format_exc_info)
    processors.append(ProcessorFormatter.wrap_for_formatter)
    return processors


def setup_logging(config: Optional[Settings] = None, stream: Optional[TextIO] = None) -> None:
    """Route structlog events through a single stdlib root handler.

    Development environments get colored console output; every other
    environment gets one JSON object per line.

    Args:
        config: Settings providing ``ENVIRONMENT`` and ``LOG_LEVEL``
        stream: Output stream (stdout by default)
    """
    config = config or default_settings
    json_output = config.ENVIRONMENT != "development"

    structlog.configure(
        processors=_processors(json_output),
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    renderer = (
        structlog.processors.JSONRenderer()
        if json_output
        else structlog.dev.ConsoleRenderer(colors=True)
    )
    handler = logging.StreamHandler(stream or sys.stdout)
    handler.setFormatter(ProcessorFormatter(processor=renderer))

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(getattr(logging, config.LOG_LEVEL.upper(), logging.INFO))

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    get_logger(__name__).info(
        "Logging configured",
        environment=config.ENVIRONMENT,
        level=config.LOG_LEVEL,
    )


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a logger instance compatible with standard logging.

    Args:
        name: Name for the logger, typically __name__

    Returns:
        structlog.stdlib.BoundLogger: Configured logger instance
    """
    return structlog.get_logger(name)
