"""Configuration module for the listing search engine."""

from .search_config import (
    SEARCH_CONFIG,
    CacheConfig,
    DatabaseConfig,
    GeoConfig,
    IndexConfig,
    SearchSettings,
    TimeoutConfig,
    WindowConfig,
    get_search_settings,
)

__all__ = [
    'SEARCH_CONFIG',
    'CacheConfig',
    'DatabaseConfig',
    'GeoConfig',
    'IndexConfig',
    'SearchSettings',
    'TimeoutConfig',
    'WindowConfig',
    'get_search_settings',
]
