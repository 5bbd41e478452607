"""
Config helpers for crawl runs.
"""

from crawler.config.loader import get_crawl_settings, get_source_settings
from crawler.config.models import CrawlSettings, HTTPSettings, PoolSettings, SourceSettings

__all__ = [
    "CrawlSettings",
    "HTTPSettings",
    "PoolSettings",
    "SourceSettings",
    "get_crawl_settings",
    "get_source_settings",
]
