"""
Durable retry queue for crawl units that failed with a retryable error.
"""

from crawler.retry.manager import RetryManager
from crawler.retry.processor import RetryHandler, RetryProcessor, RetrySummary

__all__ = ["RetryHandler", "RetryManager", "RetryProcessor", "RetrySummary"]
