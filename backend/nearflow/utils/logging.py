# /nearflow/utils/logging.py

import logging
import sys
import structlog
from nearflow.config.settings import settings

# This utility sets up structured logging (JSON format in production)
# for consistent and machine-readable logs across the engine, the sweeper
# and the HTTP adapter.

def setup_logging(level: int = logging.INFO):
    """
    Configures structured logging using structlog, integrated with Python's
    standard logging so uvicorn and APScheduler records share one format.
    """
    shared_processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    if settings.environment == "development":
        final_processor = structlog.dev.ConsoleRenderer()
    else:
        final_processor = structlog.processors.JSONRenderer()

    structlog.configure(
        processors=shared_processors + [structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        processor=final_processor,
        foreign_pre_chain=shared_processors,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.handlers = [handler]
    root_logger.setLevel(level)

    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("apscheduler.executors.default").setLevel(logging.WARNING)


def mask_user_key(user_key: str) -> str:
    """Mask a phone-number style user key for logging."""
    if not user_key or len(user_key) < 6:
        return user_key
    return user_key[:3] + "****" + user_key[-3:]
