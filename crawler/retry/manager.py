"""
Durable retry queue backed by the failed_parsing_jobs table.

A job is due while ``next_retry_at <= now`` and ``retry_count < max_retries``.
Exhausted rows stay in place as dead letters until ``cleanup_old_jobs`` runs.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timedelta

from sqlalchemy import delete, func, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from crawler.backoff import BackoffStrategy, LinearBackoff
from crawler.logging_utils import log_event
from db.base import utcnow
from db.models.failed_job import FailedJob, JobType
from db.session import SessionLocal

logger = logging.getLogger(__name__)

SessionFactory = Callable[[], Session]


class RetryManager:
    def __init__(
        self,
        session_factory: SessionFactory = SessionLocal,
        *,
        max_retries: int = 3,
        base_delay_seconds: float = 300.0,
        backoff: BackoffStrategy | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        if max_retries < 1:
            raise ValueError("max_retries must be >= 1.")
        self._session_factory = session_factory
        self._max_retries = max_retries
        self._backoff = backoff or LinearBackoff(base_delay_seconds)
        self._clock = clock or utcnow

    @property
    def max_retries(self) -> int:
        return self._max_retries

    def next_retry_at(self, retry_count: int) -> datetime:
        return self._clock() + timedelta(seconds=self._backoff.delay(retry_count))

    def add_failed_job(
        self,
        job_type: str,
        source: str,
        external_id: str,
        url: str | None,
        error: BaseException | str | None,
    ) -> int:
        """
        Enqueue one failed crawl unit and return its row id.

        A still-pending job for the same (job_type, source, external_id) is
        reused instead of adding a duplicate row.
        """

        if job_type not in JobType.ALL:
            raise ValueError(f"Unsupported job type: {job_type!r}.")
        message = _error_text(error)

        session = self._session_factory()
        try:
            existing_id = session.scalar(
                select(FailedJob.id)
                .where(
                    FailedJob.job_type == job_type,
                    FailedJob.source == source,
                    FailedJob.external_id == external_id,
                    FailedJob.retry_count < FailedJob.max_retries,
                )
                .limit(1)
            )
            if existing_id is not None:
                log_event(
                    logger,
                    logging.INFO,
                    "failed_job_already_queued",
                    job_id=existing_id,
                    job_type=job_type,
                    source=source,
                    external_id=external_id,
                )
                return existing_id

            now = self._clock()
            job = FailedJob(
                job_type=job_type,
                source=source,
                external_id=external_id,
                url=url,
                error_message=message,
                retry_count=0,
                max_retries=self._max_retries,
                next_retry_at=now + timedelta(seconds=self._backoff.delay(0)),
                created_at=now,
                updated_at=now,
            )
            session.add(job)
            session.commit()
            job_id = job.id
        except SQLAlchemyError as exc:
            session.rollback()
            log_event(
                logger,
                logging.ERROR,
                "failed_job_add_error",
                job_type=job_type,
                source=source,
                external_id=external_id,
                error=str(exc),
            )
            raise
        finally:
            session.close()

        log_event(
            logger,
            logging.WARNING,
            "failed_job_added",
            job_id=job_id,
            job_type=job_type,
            source=source,
            external_id=external_id,
            error=message,
        )
        return job_id

    def get_jobs_for_retry(self, source: str, limit: int = 100) -> list[FailedJob]:
        stmt = (
            select(FailedJob)
            .where(
                FailedJob.source == source,
                FailedJob.next_retry_at <= self._clock(),
                FailedJob.retry_count < FailedJob.max_retries,
            )
            .order_by(FailedJob.next_retry_at.asc(), FailedJob.id.asc())
            .limit(max(1, limit))
        )
        session = self._session_factory()
        try:
            jobs = list(session.scalars(stmt).all())
            session.expunge_all()
            return jobs
        finally:
            session.close()

    def mark_job_retried(
        self,
        job_id: int,
        success: bool,
        error: BaseException | str | None = None,
    ) -> None:
        """
        Record one retry outcome: success deletes the row, failure reschedules it.
        """

        session = self._session_factory()
        try:
            if success:
                session.execute(delete(FailedJob).where(FailedJob.id == job_id))
                session.commit()
                log_event(logger, logging.INFO, "failed_job_resolved", job_id=job_id)
                return

            job = session.get(FailedJob, job_id)
            if job is None:
                log_event(logger, logging.WARNING, "failed_job_missing", job_id=job_id)
                return

            now = self._clock()
            job.retry_count += 1
            job.next_retry_at = now + timedelta(seconds=self._backoff.delay(job.retry_count))
            job.error_message = _error_text(error)
            job.updated_at = now
            retry_count = job.retry_count
            exhausted = job.retry_count >= job.max_retries
            session.commit()
        except SQLAlchemyError:
            session.rollback()
            raise
        finally:
            session.close()

        log_event(
            logger,
            logging.ERROR if exhausted else logging.WARNING,
            "failed_job_exhausted" if exhausted else "failed_job_rescheduled",
            job_id=job_id,
            retry_count=retry_count,
        )

    def cleanup_old_jobs(self, older_than: timedelta) -> int:
        """
        Delete rows created before the horizon and every exhausted row.
        """

        cutoff = self._clock() - older_than
        session = self._session_factory()
        try:
            result = session.execute(
                delete(FailedJob).where(
                    or_(
                        FailedJob.created_at < cutoff,
                        FailedJob.retry_count >= FailedJob.max_retries,
                    )
                )
            )
            session.commit()
        except SQLAlchemyError:
            session.rollback()
            raise
        finally:
            session.close()

        removed = result.rowcount or 0
        if removed > 0:
            log_event(logger, logging.INFO, "failed_jobs_cleaned", count=removed)
        return removed

    def count_pending(self, source: str | None = None) -> int:
        return self._count(FailedJob.retry_count < FailedJob.max_retries, source=source)

    def count_exhausted(self, source: str | None = None) -> int:
        return self._count(FailedJob.retry_count >= FailedJob.max_retries, source=source)

    def _count(self, condition, *, source: str | None) -> int:
        stmt = select(func.count(FailedJob.id)).where(condition)
        if source:
            stmt = stmt.where(FailedJob.source == source)
        session = self._session_factory()
        try:
            return int(session.scalar(stmt) or 0)
        finally:
            session.close()


def _error_text(error: BaseException | str | None) -> str | None:
    if error is None:
        return None
    text = str(error).strip()
    if isinstance(error, str):
        return text or None
    return text or type(error).__name__
