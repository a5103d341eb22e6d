"""
Seed source loading.

Seed files are YAML documents with a top-level ``sources`` list; each entry
is validated later by ``SourceRegistry.load``.
"""

import logging
from pathlib import Path
from typing import Any, Dict, List

from ..core.exceptions import ConfigError
from .settings import load_yaml_file

logger = logging.getLogger(__name__)


def load_seed_file(path: Path) -> List[Dict[str, Any]]:
    """
    Read seed source entries from a YAML file.

    Args:
        path: YAML file containing ``sources: [...]``

    Returns:
        Raw source mappings

    Raises:
        ConfigError: If the file is missing, not YAML, or not shaped as expected
    """
    data = load_yaml_file(path)

    if not isinstance(data, dict) or "sources" not in data:
        raise ConfigError(f"Seed file {path} must be a mapping with a 'sources' list")

    sources = data["sources"]
    if not isinstance(sources, list):
        raise ConfigError(f"'sources' in {path} must be a list, got {type(sources).__name__}")

    for index, entry in enumerate(sources):
        if not isinstance(entry, dict):
            raise ConfigError(f"Source #{index} in {path} must be a mapping, got {type(entry).__name__}")

    logger.info(f"Loaded {len(sources)} seed sources from {path}")
    return sources
