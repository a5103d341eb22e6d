"""
mediawatch

Continuous discovery, validation and browser-driven fetching of remote
content sources, feeding extracted content into a downstream processing lane.
"""

__version__ = "0.1.0"
