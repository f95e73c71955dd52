# Shared utilities package
from .cache import ResultCache, SearchCaches, make_cache_key
from .config import Config, Settings, get_config, get_settings, init_config
from .models import Document

__all__ = [
    "Config",
    "Settings",
    "get_config",
    "get_settings",
    "init_config",
    "Document",
    "ResultCache",
    "SearchCaches",
    "make_cache_key",
]
