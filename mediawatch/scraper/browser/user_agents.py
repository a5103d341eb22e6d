"""
Identity string rotation for browsing contexts and probes.
"""

import random
from typing import List, Optional, Sequence

DEFAULT_USER_AGENTS: List[str] = [
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:125.0) Gecko/20100101 Firefox/125.0",
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36",
]


class UserAgentRotator:
    """Picks a random identity string for each new context."""

    def __init__(self, user_agents: Optional[Sequence[str]] = None, rng: Optional[random.Random] = None):
        self.user_agents = list(user_agents) if user_agents else list(DEFAULT_USER_AGENTS)
        self._rng = rng or random.Random()

    def next(self) -> str:
        return self._rng.choice(self.user_agents)
