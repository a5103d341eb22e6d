"""
Logging utilities for the scraper service.

Provides structured logging with JSON output for better observability.
"""

import logging
import sys
from typing import Any, Optional

import structlog


def setup_logger(name: str, level: str = "INFO", json_logs: bool = True) -> structlog.stdlib.BoundLogger:
    """
    Set up structured logging for the scraper.

    Args:
        name: Logger name
        level: Log level (DEBUG, INFO, WARNING, ERROR)
        json_logs: Whether to output JSON format logs

    Returns:
        Configured structlog logger
    """
    log_level = getattr(logging, level.upper(), logging.INFO)

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=log_level,
    )
    logging.getLogger().setLevel(log_level)

    if json_logs:
        processors = [
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        processors = [
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="%Y-%m-%d %H:%M:%S"),
            structlog.dev.ConsoleRenderer(),
        ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        context_class=dict,
        cache_logger_on_first_use=True,
    )

    return structlog.get_logger(name)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a structlog logger with the given name"""
    return structlog.get_logger(name)


class ScrapeLoggerAdapter:
    """
    Logger adapter for source and job lifecycle events.

    Every event carries enough context (source id, URL, attempt, last error)
    to diagnose a failure from the logs alone.
    """

    def __init__(self, logger: structlog.stdlib.BoundLogger, component: str):
        self.logger = logger.bind(component=component)

    def log_source_activated(self, source_id: str, url: str, status_code: Optional[int], **kwargs: Any) -> None:
        self.logger.info("source_activated", source_id=source_id, url=url, status_code=status_code, **kwargs)

    def log_source_deactivated(self, source_id: str, url: str, reason: str, **kwargs: Any) -> None:
        self.logger.warning("source_deactivated", source_id=source_id, url=url, reason=reason, **kwargs)

    def log_job_started(self, job_id: str, source_id: str, url: str, attempt: int, **kwargs: Any) -> None:
        self.logger.info("crawl_started", job_id=job_id, source_id=source_id, url=url, attempt=attempt, **kwargs)

    def log_job_completed(self, job_id: str, source_id: str, url: str, attempt: int, **kwargs: Any) -> None:
        self.logger.info("crawl_completed", job_id=job_id, source_id=source_id, url=url, attempt=attempt, **kwargs)

    def log_job_retry(
        self, job_id: str, source_id: str, url: str, attempt: int, delay_ms: int, error: str, **kwargs: Any
    ) -> None:
        self.logger.warning(
            "crawl_retry_scheduled",
            job_id=job_id,
            source_id=source_id,
            url=url,
            attempt=attempt,
            delay_ms=delay_ms,
            last_error=error,
            **kwargs,
        )

    def log_job_failed(
        self, job_id: str, source_id: str, url: str, attempt: int, max_attempts: int, error: str, **kwargs: Any
    ) -> None:
        self.logger.error(
            "crawl_failed",
            job_id=job_id,
            source_id=source_id,
            url=url,
            attempt=attempt,
            max_attempts=max_attempts,
            last_error=error,
            **kwargs,
        )
