"""
Browser automation: shared session, isolated per-job contexts, extraction.
"""

from .extractors import STRATEGIES, ExtractionStrategy, extract_content, get_strategy
from .session import BrowserSession, BrowsingContext
from .user_agents import DEFAULT_USER_AGENTS, UserAgentRotator

__all__ = [
    "BrowserSession",
    "BrowsingContext",
    "DEFAULT_USER_AGENTS",
    "ExtractionStrategy",
    "STRATEGIES",
    "UserAgentRotator",
    "extract_content",
    "get_strategy",
]
