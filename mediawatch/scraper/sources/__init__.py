"""
Crawl source management: registration, liveness probing and the active set.
"""

from .probe import HTTPLivenessProbe, ProbeResult
from .registry import SourceRegistry, SweepReport

__all__ = ["HTTPLivenessProbe", "ProbeResult", "SourceRegistry", "SweepReport"]
