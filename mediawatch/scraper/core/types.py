"""
Core types for the scraper service.
"""

from __future__ import annotations

from enum import Enum

from ...schema.job import JobState, Lane
from ...schema.source import ContentType

__all__ = ["ContentType", "JobState", "Lane", "ServiceStatus", "ScrapeErrorType"]


class ServiceStatus(str, Enum):
    """Lifecycle status of a long-running component"""

    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"
    STOPPED = "stopped"
    ERROR = "error"


class ScrapeErrorType(str, Enum):
    """Types of per-job scrape errors"""

    NAVIGATION = "navigation"
    EXTRACTION = "extraction"
    UNKNOWN = "unknown"
