"""
Consumer side of the durable retry queue.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import asdict, dataclass
from typing import Any

from crawler.logging_utils import log_event
from crawler.retry.manager import RetryManager
from crawler.workers.cancellation import CancellationToken, background_token
from crawler.workers.stage import CrawlCounters, run_bounded_stage
from db.models.failed_job import FailedJob, JobType

logger = logging.getLogger(__name__)

# A handler re-runs one failed unit and raises when it fails again.
RetryHandler = Callable[[CancellationToken, FailedJob], None]


@dataclass(frozen=True)
class RetrySummary:
    source: str
    fetched: int
    succeeded: int
    failed: int
    unhandled: int
    elapsed_seconds: float

    def to_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        payload["elapsed_seconds"] = round(self.elapsed_seconds, 3)
        return payload


class RetryProcessor:
    """
    Fetches due jobs for one source and re-runs them on a bounded stage.
    """

    def __init__(
        self,
        manager: RetryManager,
        handlers: dict[str, RetryHandler] | None = None,
        *,
        workers: int = 3,
        token: CancellationToken | None = None,
    ) -> None:
        self._manager = manager
        self._handlers: dict[str, RetryHandler] = {}
        self._workers = max(1, workers)
        self._token = token or background_token()
        for job_type, handler in (handlers or {}).items():
            self.register(job_type, handler)

    def register(self, job_type: str, handler: RetryHandler) -> None:
        if job_type not in JobType.ALL:
            raise ValueError(f"Unsupported job type: {job_type!r}.")
        self._handlers[job_type] = handler

    @property
    def job_types(self) -> list[str]:
        return sorted(self._handlers)

    def process(self, source: str, limit: int = 100) -> RetrySummary:
        started = time.monotonic()
        jobs = self._manager.get_jobs_for_retry(source, limit)
        log_event(logger, logging.INFO, "retry_jobs_found", source=source, count=len(jobs))

        counters = CrawlCounters()

        def handle(token: CancellationToken, job: FailedJob) -> bool:
            handler = self._handlers.get(job.job_type)
            if handler is None:
                # Counts as a failed attempt so the row dead-letters instead of
                # staying due and crowding handled jobs out of every batch.
                log_event(
                    logger,
                    logging.WARNING,
                    "retry_job_type_unknown",
                    job_id=job.id,
                    job_type=job.job_type,
                    source=job.source,
                )
                self._manager.mark_job_retried(job.id, False, f"no retry handler for job type {job.job_type!r}")
                counters.add(unhandled=1)
                return False

            log_event(
                logger,
                logging.INFO,
                "retry_job_started",
                job_id=job.id,
                job_type=job.job_type,
                external_id=job.external_id,
                retry_count=job.retry_count,
            )
            try:
                handler(token, job)
            except Exception as exc:  # noqa: BLE001
                self._manager.mark_job_retried(job.id, False, exc)
                counters.add(failed=1)
                return False
            self._manager.mark_job_retried(job.id, True)
            counters.add(succeeded=1)
            return True

        stats = run_bounded_stage(
            jobs,
            handle,
            workers=self._workers,
            token=self._token,
            name=f"{source}-retry",
        )
        summary = RetrySummary(
            source=source,
            fetched=len(jobs),
            succeeded=counters.get("succeeded"),
            failed=counters.get("failed"),
            unhandled=counters.get("unhandled"),
            elapsed_seconds=time.monotonic() - started,
        )
        log_event(
            logger,
            logging.INFO,
            "retry_batch_completed",
            skipped=stats.skipped,
            **summary.to_dict(),
        )
        return summary
