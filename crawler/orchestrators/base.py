"""
Shared orchestrator plumbing.

An orchestrator walks one source top-down. Each hierarchy level is a bounded
stage; a failure inside one item is logged (and queued for retry when it is
retryable) but never stops its siblings. Only a failure to fetch the root
listing aborts the run.
"""

from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from collections.abc import Callable, Sequence
from dataclasses import asdict, dataclass
from typing import Any, ClassVar, Generic, Protocol, TypeVar

from sqlalchemy.exc import SQLAlchemyError

from crawler.config.models import SourceSettings
from crawler.error_handler import ErrorHandler
from crawler.errors import DomainError, should_retry
from crawler.http.client import FetchClient
from crawler.identity import EntityRef, Source
from crawler.logging_utils import log_event
from crawler.parsing_context import ParsingContext, with_parsing_context
from crawler.storage.sqlalchemy_storage import CrawlRepositories
from crawler.workers.cancellation import CancellationToken, background_token
from crawler.workers.stage import CrawlCounters, StageStats, run_bounded_stage
from db.models.failed_job import FailedJob

logger = logging.getLogger(__name__)

P = TypeVar("P")
T = TypeVar("T")

RetryHandler = Callable[[CancellationToken, FailedJob], None]

STATUS_COMPLETED = "completed"
STATUS_CANCELLED = "cancelled"


class RetryQueue(Protocol):
    def add_failed_job(
        self,
        job_type: str,
        source: str,
        external_id: str,
        url: str | None,
        error: BaseException | str | None,
    ) -> int: ...


@dataclass(frozen=True)
class CrawlSummary:
    source: str
    seasons: int
    tournaments: int
    teams: int
    players: int
    statistics: int
    failed_jobs: int
    elapsed_seconds: float
    status: str

    def to_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        payload["elapsed_seconds"] = round(self.elapsed_seconds, 3)
        return payload


class BaseOrchestrator(ABC, Generic[P]):
    source: ClassVar[Source]

    def __init__(
        self,
        settings: SourceSettings,
        client: FetchClient,
        parser: P,
        repositories: CrawlRepositories,
        *,
        retry_queue: RetryQueue | None = None,
        error_handler: ErrorHandler | None = None,
    ) -> None:
        self.settings = settings
        self.client = client
        self.parser = parser
        self.repositories = repositories
        self.retry_queue = retry_queue
        self.error_handler = error_handler or ErrorHandler()

    def run(self, token: CancellationToken | None = None) -> CrawlSummary:
        """
        Crawl the whole source once.

        Raises when the root listing cannot be fetched or parsed.
        """

        token = token or background_token()
        counters = CrawlCounters()
        started = time.monotonic()
        log_event(logger, logging.INFO, "crawl_started", source=self.source.name)
        try:
            self._crawl(token, counters)
        except Exception as exc:
            log_event(
                logger,
                logging.ERROR,
                "crawl_failed",
                source=self.source.name,
                error=str(exc),
                error_type=type(exc).__name__,
            )
            raise
        summary = self._summary(counters, started, token)
        log_event(logger, logging.INFO, "crawl_completed", **summary.to_dict())
        return summary

    @abstractmethod
    def _crawl(self, token: CancellationToken, counters: CrawlCounters) -> None:
        """
        Walk the source hierarchy, folding totals into ``counters``.
        """

    def retry_handlers(self) -> dict[str, RetryHandler]:
        """
        Handlers that re-run failed units of this source, keyed by job type.
        """

        return {}

    # ------------------------------------------------------------------
    # Helpers shared by the source pipelines
    # ------------------------------------------------------------------

    def _stage(
        self,
        name: str,
        items: Sequence[T],
        handle: Callable[[CancellationToken, T], bool],
        *,
        workers: int,
        token: CancellationToken,
    ) -> StageStats:
        return run_bounded_stage(
            items,
            handle,
            workers=workers,
            token=token,
            name=f"{self.source.name}-{name}",
        )

    def _scoped(
        self,
        token: CancellationToken,
        *,
        entity_type: str,
        entity_id: str,
        url: str,
    ) -> CancellationToken:
        context = ParsingContext(
            source=self.source.name,
            domain=self.client.base_url,
            entity_type=entity_type,
            entity_id=entity_id,
            url=url,
        )
        return with_parsing_context(token, context)

    def _record_failure(
        self,
        token: CancellationToken,
        exc: BaseException,
        *,
        job_type: str,
        external_id: str,
        url: str | None,
        counters: CrawlCounters | None = None,
    ) -> DomainError:
        """
        Log one failed unit and queue it for retry when that makes sense.
        """

        error = self.error_handler.handle(exc, token=token)
        error.with_context(source=self.source.name, job_type=job_type, external_id=external_id)
        if not (should_retry(error) and self.settings.retry_enabled and self.retry_queue is not None):
            return error
        try:
            self.retry_queue.add_failed_job(job_type, self.source.name, external_id, url, error)
        except SQLAlchemyError as queue_exc:
            log_event(
                logger,
                logging.ERROR,
                "failed_job_enqueue_error",
                source=self.source.name,
                job_type=job_type,
                external_id=external_id,
                error=str(queue_exc),
            )
            return error
        if counters is not None:
            counters.add(failed_jobs=1)
        return error

    def _summary(
        self,
        counters: CrawlCounters,
        started: float,
        token: CancellationToken,
    ) -> CrawlSummary:
        return CrawlSummary(
            source=self.source.name,
            seasons=counters.get("seasons"),
            tournaments=counters.get("tournaments"),
            teams=counters.get("teams"),
            players=counters.get("players"),
            statistics=counters.get("statistics"),
            failed_jobs=counters.get("failed_jobs"),
            elapsed_seconds=time.monotonic() - started,
            status=STATUS_CANCELLED if token.cancelled else STATUS_COMPLETED,
        )

    def _team_job_ref(self, job: FailedJob) -> EntityRef:
        """
        Decode the rendered team id that team jobs carry as external id.
        """

        ref = EntityRef.parse(job.external_id)
        if ref.source != self.source or len(ref.scope) != 1:
            raise ValueError(f"Not a {self.source.name} team reference: {job.external_id!r}")
        return ref
