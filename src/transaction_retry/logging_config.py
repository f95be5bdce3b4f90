"""Logging setup shared by the API and the command line.

Everything goes through the stdlib root logger so SQLAlchemy, uvicorn and
structlog records share one handler. Production renders JSON lines, other
environments a coloured console.

SQLAlchemy's ``sqlalchemy.engine`` logger echoes each statement with its
parameters at INFO. It stays at WARNING unless ``sql_echo`` is set, which
the application ties to ``DEBUG``.
"""

import logging
import sys

import structlog
from structlog.types import EventDict, Processor, WrappedLogger

APP_NAME = "db-transaction-retry"

# Library loggers and the level they run at when not echoing SQL
QUIET_LOGGERS = {
    "sqlalchemy.engine": logging.WARNING,
    "sqlalchemy.pool": logging.WARNING,
    "uvicorn.access": logging.WARNING,
}


def add_app_context(
    logger: WrappedLogger, method_name: str, event_dict: EventDict
) -> EventDict:
    event_dict["app"] = APP_NAME
    return event_dict


def _shared_processors(is_production: bool) -> list[Processor]:
    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        add_app_context,
    ]
    if is_production:
        processors.append(structlog.processors.format_exc_info)
    return processors


def _install_root_handler(formatter: logging.Formatter, level: int) -> None:
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)
    handler.setLevel(level)

    root_logger = logging.getLogger()
    # Reconfiguring must not stack a second handler
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(level)


def configure_logging(
    log_level: str = "INFO", environment: str = "development", sql_echo: bool = False
) -> None:
    """Route structlog and stdlib logging to stdout.

    Args:
        log_level: Root level name; unknown names fall back to INFO
        environment: ``production`` selects the JSON renderer
        sql_echo: Log every statement SQLAlchemy executes (at INFO)
    """
    level = getattr(logging, log_level.upper(), logging.INFO)
    is_production = environment.lower() == "production"
    processors = _shared_processors(is_production)

    structlog.configure(
        processors=processors + [structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    renderer: Processor = (
        structlog.processors.JSONRenderer()
        if is_production
        else structlog.dev.ConsoleRenderer(colors=True)
    )
    _install_root_handler(
        structlog.stdlib.ProcessorFormatter(processor=renderer, foreign_pre_chain=processors),
        level,
    )

    for name, quiet_level in QUIET_LOGGERS.items():
        logging.getLogger(name).setLevel(quiet_level)
    if sql_echo:
        logging.getLogger("sqlalchemy.engine").setLevel(logging.INFO)
        if level > logging.INFO:
            # The engine records would be filtered by the handler otherwise
            logging.getLogger().handlers[0].setLevel(logging.INFO)

    structlog.get_logger(__name__).info(
        "Logging configured",
        log_level=log_level,
        environment=environment,
        renderer="json" if is_production else "console",
        sql_echo=sql_echo,
    )
