from __future__ import annotations

from datetime import datetime, timezone
from typing import List, Literal, Optional, Union

from pydantic import BaseModel, Field

from .source import ContentType


class VideoDescriptor(BaseModel):
    kind: Literal["video"] = "video"
    src: str
    mime_type: Optional[str] = None
    duration: Optional[float] = None


class ImageDescriptor(BaseModel):
    kind: Literal["image"] = "image"
    src: str
    alt: Optional[str] = None
    width: Optional[int] = None
    height: Optional[int] = None


MediaDescriptor = Union[VideoDescriptor, ImageDescriptor]


class ExtractedContent(BaseModel):
    """
    Output of one successful crawl.

    ``payload`` is the visible page text for text sources, or the list of
    media descriptors found on the page for image and video sources.
    """

    source_id: str
    content_type: ContentType
    url: str
    payload: Union[str, List[MediaDescriptor]]
    extracted_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
