import logging
import os

import structlog


def configure_logging(service_name: str) -> None:
    level_name = os.getenv("LOG_LEVEL", "INFO").upper()
    logging.basicConfig(level=getattr(logging, level_name, logging.INFO))
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.add_log_level,
            structlog.processors.JSONRenderer(),
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
    )
    logger = structlog.get_logger(service=service_name)
    logger.info("logging_configured", log_level=level_name)


def get_logger(component: str) -> structlog.BoundLogger:
    return structlog.get_logger(component=component)


def preview(text: str, limit: int = 500) -> str:
    """Truncate raw model text before it goes into a log line."""
    if text is None:
        return ""
    return text if len(text) <= limit else text[:limit] + "..."
