"""Process entry point: ``python -m astragate.server`` or ``astragate``.

Settings are validated before anything else runs, so a bad config value
exits non-zero without binding a port.
"""

from __future__ import annotations

import logging
import sys

import structlog
import uvicorn

from astragate.api import create_app
from astragate.config import LoggingSettings, Settings

log = structlog.get_logger()


def configure_logging(settings: LoggingSettings) -> None:
    """Route structlog output to stderr as JSON lines or human-readable text."""
    processors: list[structlog.typing.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
    ]
    if settings.format == "json":
        processors += [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(getattr(logging, settings.level)),
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )


def main() -> None:
    settings = Settings()
    configure_logging(settings.logging)
    log.info("server_starting", host=settings.server.host, port=settings.server.port)
    uvicorn.run(
        create_app(settings),
        host=settings.server.host,
        port=settings.server.port,
        log_level=settings.logging.level.lower(),
    )


if __name__ == "__main__":
    main()
