"""Structured logging with structlog.

Services log through the standard library (``logging.getLogger(__name__)``)
and request code through structlog. Both end up in one root handler whose
``ProcessorFormatter`` renders every record the same way, as JSON lines or
console output depending on ``log_format``.
"""

import logging

import structlog

from gamify.config import Settings

# Loggers that are chatty at INFO and only useful when debugging.
_QUIET_LOGGERS = ("sqlalchemy.engine", "aiosqlite", "asyncio", "uvicorn.access")

_shared_processors: list[structlog.types.Processor] = [
    structlog.contextvars.merge_contextvars,
    structlog.stdlib.add_log_level,
    structlog.stdlib.add_logger_name,
    structlog.processors.TimeStamper(fmt="iso"),
    structlog.processors.StackInfoRenderer(),
]


def _renderer(log_format: str) -> structlog.types.Processor:
    if log_format == "json":
        return structlog.processors.JSONRenderer()
    return structlog.dev.ConsoleRenderer()


def build_handler(settings: Settings) -> logging.Handler:
    """A stream handler that renders stdlib and structlog records alike."""
    handler = logging.StreamHandler()
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=_shared_processors,
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                structlog.processors.format_exc_info,
                structlog.processors.UnicodeDecoder(),
                _renderer(settings.log_format),
            ],
        )
    )
    return handler


def setup_logging(settings: Settings) -> None:
    """Route structlog into the stdlib root logger and install one handler."""
    structlog.configure(
        processors=[
            *_shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    root = logging.getLogger()
    # Replace a handler from an earlier call; leave everyone else's alone.
    for handler in list(root.handlers):
        if isinstance(handler.formatter, structlog.stdlib.ProcessorFormatter):
            root.removeHandler(handler)
    root.addHandler(build_handler(settings))
    root.setLevel(getattr(logging, settings.log_level.upper(), logging.INFO))

    quiet_level = logging.DEBUG if settings.debug else logging.WARNING
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(quiet_level)
