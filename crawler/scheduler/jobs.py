"""
crawler/scheduler/jobs.py

APScheduler job definitions for retry-queue maintenance.

Schedule (all times UTC)
--------------------------
  retry_<source>       every CRAWL_RETRY_INTERVAL_MINUTES (default 30) for
                         each source whose parser is configured
  failed_job_cleanup   04:00 every day; removes dead letters and rows older
                         than CRAWL_FAILED_JOB_RETENTION_DAYS

Full crawls are batch runs started from scripts/run_crawl.py, not from here.

Lifecycle
----------
Call ``build_scheduler()`` once to get a configured ``BackgroundScheduler``,
then ``.start()`` it and ``.shutdown(wait=True)`` on exit.
"""

from __future__ import annotations

import logging
import os
from datetime import timedelta

from apscheduler.schedulers.background import BackgroundScheduler

from crawler.config.loader import get_crawl_settings, get_source_settings
from crawler.registry import OrchestratorRegistry, build_retry_manager
from crawler.retry.manager import RetryManager
from crawler.retry.processor import RetryProcessor, RetrySummary

logger = logging.getLogger(__name__)


def _retry_interval_minutes() -> int:
    raw = os.getenv("CRAWL_RETRY_INTERVAL_MINUTES", "30").strip()
    try:
        return max(1, int(raw))
    except ValueError:
        return 30


# ---------------------------------------------------------------------------
# Job: retry due failed jobs
# ---------------------------------------------------------------------------


def run_retry_jobs(source: str, registry: OrchestratorRegistry | None = None) -> RetrySummary | None:
    """
    Re-run every due failed job of one source.
    """
    logger.info("Scheduler: retry_%s starting", source)
    registry = registry or OrchestratorRegistry()
    settings = get_source_settings(source)
    crawl_settings = get_crawl_settings()
    try:
        manager = build_retry_manager(settings)
        orchestrator = registry.create_orchestrator(source, retry_queue=manager)
        processor = RetryProcessor(
            manager,
            orchestrator.retry_handlers(),
            workers=crawl_settings.retry_workers,
        )
        summary = processor.process(source, crawl_settings.retry_batch_limit)
    except Exception as exc:  # noqa: BLE001
        logger.warning("Scheduler: retry_%s failed: %s", source, exc)
        return None

    logger.info(
        "Scheduler: retry_%s complete fetched=%s succeeded=%s failed=%s",
        source,
        summary.fetched,
        summary.succeeded,
        summary.failed,
    )
    return summary


# ---------------------------------------------------------------------------
# Job: dead-letter cleanup
# ---------------------------------------------------------------------------


def run_failed_job_cleanup(manager: RetryManager | None = None) -> int:
    """
    Delete exhausted failed jobs and rows past the retention horizon.
    """
    logger.info("Scheduler: failed_job_cleanup starting")
    retention_days = get_crawl_settings().cleanup_after_days
    manager = manager or RetryManager()
    try:
        removed = manager.cleanup_old_jobs(timedelta(days=retention_days))
    except Exception as exc:  # noqa: BLE001
        logger.warning("Scheduler: failed_job_cleanup failed: %s", exc)
        return 0
    logger.info("Scheduler: failed_job_cleanup complete removed=%s", removed)
    return removed


# ---------------------------------------------------------------------------
# Scheduler factory
# ---------------------------------------------------------------------------


def build_scheduler(sources: list[str] | None = None) -> BackgroundScheduler:
    """
    Build and register all periodic jobs.

    Returns a configured but *not yet started* ``BackgroundScheduler``.
    Sources without a configured parser get no retry job.
    """
    scheduler = BackgroundScheduler(timezone="UTC")
    registry = OrchestratorRegistry()
    interval = _retry_interval_minutes()

    for source in sources or registry.sources:
        settings = get_source_settings(source)
        if not settings.retry_enabled or not settings.parser_class:
            logger.info("Scheduler: retry_%s not scheduled (retry disabled or no parser)", source)
            continue
        scheduler.add_job(
            run_retry_jobs,
            trigger="interval",
            minutes=interval,
            args=[source],
            id=f"retry_{source}",
            name=f"Retry failed {source} jobs",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
            misfire_grace_time=600,
        )

    scheduler.add_job(
        run_failed_job_cleanup,
        trigger="cron",
        hour=4,
        minute=0,
        id="failed_job_cleanup",
        name="Failed job cleanup",
        replace_existing=True,
        misfire_grace_time=3600,
    )

    return scheduler
