"""
Concurrency primitives: cancellation, bounded stages, adaptive pool.
"""

from crawler.workers.cancellation import CancellationToken, OperationCancelledError
from crawler.workers.pool import AdaptiveWorkerPool, PoolConfig, PoolMetrics, Result, Task
from crawler.workers.stage import BoundedStage, CrawlCounters, StageStats, run_bounded_stage

__all__ = [
    "AdaptiveWorkerPool",
    "BoundedStage",
    "CancellationToken",
    "CrawlCounters",
    "OperationCancelledError",
    "PoolConfig",
    "PoolMetrics",
    "Result",
    "StageStats",
    "Task",
    "run_bounded_stage",
]
