"""
Per-source crawl orchestrators.
"""

from crawler.orchestrators.base import BaseOrchestrator, CrawlSummary, RetryQueue
from crawler.orchestrators.fhspb import FhspbOrchestrator
from crawler.orchestrators.junior import JuniorOrchestrator
from crawler.orchestrators.mihf import MihfOrchestrator
from crawler.orchestrators.parsers import FhspbParser, JuniorParser, MihfParser

__all__ = [
    "BaseOrchestrator",
    "CrawlSummary",
    "FhspbOrchestrator",
    "FhspbParser",
    "JuniorOrchestrator",
    "JuniorParser",
    "MihfOrchestrator",
    "MihfParser",
    "RetryQueue",
]
