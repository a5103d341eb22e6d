"""
Crawl orchestration for mediawatch.

Keeps a registry of remote content sources and their liveness, schedules
crawl jobs onto a retryable queue, and drives a shared headless browser to
extract text, image or video content into the processing lane.
"""

from .utils.logging import setup_logger

__all__ = ["setup_logger"]
