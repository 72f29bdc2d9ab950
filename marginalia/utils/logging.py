"""Structured logging setup using structlog.

Implements a **dual-renderer pattern**: one shared processor chain
(context vars, log level, timestamps, stack info) feeds either a
coloured ConsoleRenderer for local development or a JSONRenderer for
production.  The renderer follows the ``APP_ENV`` environment variable
(default ``"development"``) unless ``json_output`` forces JSON.

Standard-library ``logging`` is routed through the same formatter, so
httpx, uvicorn and the LLM SDKs print in the same format as Marginalia's
own events.  Ingestion issues dozens of scraper requests per book, so
the per-request chatter of those libraries is held at WARNING.
"""

import logging
import os
import sys

import structlog

# Libraries that log every HTTP request at INFO.
NOISY_LOGGERS: tuple[str, ...] = ("httpx", "httpcore", "trafilatura", "anthropic", "openai")


def configure_logging(
    log_level: str = "INFO",
    json_output: bool = False,
    quiet_loggers: tuple[str, ...] = NOISY_LOGGERS,
) -> structlog.BoundLogger:
    """Configure structlog with environment-appropriate rendering.

    Args:
        log_level: Logging level string (DEBUG, INFO, WARNING, ERROR, FATAL).
        json_output: Force JSON output. When False, uses console rendering in
                     development and JSON in production (detected via APP_ENV).
        quiet_loggers: Stdlib logger names capped at WARNING unless
                       ``log_level`` is DEBUG.

    Returns:
        A configured structlog BoundLogger.
    """
    # "production" => JSON lines for the log shipper; anything else => console.
    app_env = os.environ.get("APP_ENV", "development")
    use_json = json_output or app_env == "production"

    # Shared by both renderers.  Context vars merge first so bound
    # request or book ids appear on every event.
    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,        # "level" key
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,                # exc_info on .exception()
        structlog.processors.TimeStamper(fmt="iso"),
    ]

    if use_json:
        renderer: structlog.types.Processor = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=True)

    structlog.configure(
        processors=[
            *shared_processors,
            renderer,
        ],
        # Filtering happens before the processor chain runs.
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.getLevelName(log_level.upper())
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )

    # Stdlib records (httpx, uvicorn) go through the same renderer.
    formatter = structlog.stdlib.ProcessorFormatter(
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            *shared_processors,
            renderer,
        ],
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()   # uvicorn may have installed its own
    root_logger.addHandler(handler)
    root_logger.setLevel(log_level.upper())

    if log_level.upper() != "DEBUG":
        for name in quiet_loggers:
            logging.getLogger(name).setLevel(logging.WARNING)

    return structlog.get_logger()


def get_logger(name: str) -> structlog.BoundLogger:
    """Get a named structlog logger.

    If structlog has not been configured yet, calls configure_logging() with defaults.

    Args:
        name: Logger name, typically the module name.

    Returns:
        A structlog BoundLogger bound with the given name.
    """
    if not structlog.is_configured():
        configure_logging()

    return structlog.get_logger(logger_name=name)
