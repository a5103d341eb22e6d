from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field

from .content import ExtractedContent
from .source import ContentType, Source


class Lane(str, Enum):
    """Independent queue backlogs"""

    CRAWL = "crawl"
    PROCESSING = "processing"


class JobState(str, Enum):
    """Job lifecycle state"""

    WAITING = "waiting"
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"


class JobOptions(BaseModel):
    max_attempts: int = Field(3, ge=1)
    initial_backoff_ms: int = Field(5000, ge=0)


class CrawlRequest(BaseModel):
    """Crawl-lane payload: fetch one source"""

    source_id: str
    content_type: ContentType
    url: str

    @classmethod
    def from_source(cls, source: Source) -> "CrawlRequest":
        return cls(source_id=source.id, content_type=source.content_type, url=source.url)


class Job(BaseModel):
    """One unit of queued work"""

    id: str
    lane: Lane
    source_id: str
    # Plain string so that jobs produced elsewhere with an unknown type can still be failed
    content_type: str
    url: str
    payload: Dict[str, Any] = Field(default_factory=dict)
    attempt: int = Field(1, ge=1)
    max_attempts: int = Field(3, ge=1)
    initial_backoff_ms: int = Field(5000, ge=0)
    state: JobState = JobState.WAITING
    backoff_delay_ms: int = 0
    available_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    last_error: Optional[str] = None

    def extracted_content(self) -> ExtractedContent:
        """Decode the payload of a processing-lane job"""
        return ExtractedContent.model_validate(self.payload)

    def crawl_request(self) -> CrawlRequest:
        """Decode the payload of a crawl-lane job"""
        return CrawlRequest.model_validate(self.payload)
