from __future__ import annotations

from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Optional
from urllib.parse import urlparse

from pydantic import BaseModel, Field, field_validator


class ContentType(str, Enum):
    """Kind of content a source yields"""

    TEXT = "text"
    IMAGE = "image"
    VIDEO = "video"


class Source(BaseModel):
    """A registered crawl target and its liveness state"""

    id: str = Field(..., min_length=1)
    name: str
    content_type: ContentType
    url: str
    active: bool = False
    last_validated: Optional[datetime] = None
    validation_interval: timedelta = Field(default=timedelta(hours=1))

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        parsed = urlparse(v)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise ValueError(f"Source URL must be an absolute http(s) URL, got {v!r}")
        return v

    @field_validator("last_validated")
    @classmethod
    def ensure_utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        if v is not None and v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v

    @field_validator("validation_interval")
    @classmethod
    def validate_interval(cls, v: timedelta) -> timedelta:
        if v.total_seconds() <= 0:
            raise ValueError("validation_interval must be positive")
        return v

    def is_due(self, now: datetime) -> bool:
        """Whether the source needs a fresh liveness probe at ``now``"""
        if self.last_validated is None:
            return True
        return now - self.last_validated >= self.validation_interval
