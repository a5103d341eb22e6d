"""
Liveness probe for crawl sources.

A lightweight HEAD request with a bounded timeout. The probe never raises;
every outcome is reported through ``ProbeResult``.
"""

import asyncio
import logging
from typing import Optional

import aiohttp
from aiohttp import ClientError, ClientTimeout
from pydantic import BaseModel

from ..browser.user_agents import UserAgentRotator

logger = logging.getLogger(__name__)


class ProbeResult(BaseModel):
    """Outcome of one liveness probe"""

    status_code: Optional[int] = None
    error: Optional[str] = None

    @property
    def is_alive(self) -> bool:
        return self.error is None and self.status_code is not None and self.status_code < 400

    def describe(self) -> str:
        if self.error:
            return self.error
        return f"HTTP {self.status_code}"


class HTTPLivenessProbe:
    """
    HEAD-based reachability check backed by a shared aiohttp session.
    """

    def __init__(self, timeout_seconds: float = 5.0, user_agents: Optional[UserAgentRotator] = None):
        self.timeout_seconds = timeout_seconds
        self.user_agents = user_agents or UserAgentRotator()
        self._session: Optional[aiohttp.ClientSession] = None

    async def _ensure_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=ClientTimeout(total=self.timeout_seconds),
                raise_for_status=False,
            )
        return self._session

    async def check(self, url: str) -> ProbeResult:
        """
        Probe ``url`` once.

        Args:
            url: URL to probe

        Returns:
            ProbeResult with the status code, or the error that prevented one
        """
        session = await self._ensure_session()
        try:
            async with session.head(
                url,
                allow_redirects=True,
                headers={"User-Agent": self.user_agents.next()},
            ) as response:
                return ProbeResult(status_code=response.status)
        except asyncio.TimeoutError:
            return ProbeResult(error=f"timeout after {self.timeout_seconds}s")
        except ClientError as e:
            return ProbeResult(error=f"{type(e).__name__}: {e}")
        except ValueError as e:
            # aiohttp raises ValueError/InvalidURL for unusable URLs
            return ProbeResult(error=f"invalid url: {e}")

    async def close(self) -> None:
        if self._session and not self._session.closed:
            await self._session.close()
        self._session = None
