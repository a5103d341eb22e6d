from .common import HealthStatus
from .content import ExtractedContent, ImageDescriptor, MediaDescriptor, VideoDescriptor
from .job import CrawlRequest, Job, JobOptions, JobState, Lane
from .source import ContentType, Source

__all__ = [
    # common
    "HealthStatus",
    # source
    "ContentType",
    "Source",
    # content
    "ExtractedContent",
    "ImageDescriptor",
    "MediaDescriptor",
    "VideoDescriptor",
    # job
    "CrawlRequest",
    "Job",
    "JobOptions",
    "JobState",
    "Lane",
]
