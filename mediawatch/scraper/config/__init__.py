from .seeds import load_seed_file
from .settings import ScraperSettings, get_cached_settings, load_settings, reset_settings_cache

__all__ = ["ScraperSettings", "get_cached_settings", "load_settings", "load_seed_file", "reset_settings_cache"]
