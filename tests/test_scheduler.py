"""
tests/test_scheduler.py

APScheduler wiring for retry-queue maintenance. The scheduler is built but
never started; job functions are called directly.

Coverage
--------
- Retry jobs only for sources with retry enabled and a parser configured
- Daily cleanup job is always registered
- run_failed_job_cleanup uses the retention setting and never raises
- run_retry_jobs processes due jobs and never raises
"""

from __future__ import annotations

from datetime import timedelta

import pytest

from crawler.config.loader import get_crawl_settings, get_source_settings
from crawler.retry.manager import RetryManager
from crawler.scheduler import jobs
from crawler.scheduler.jobs import build_scheduler, run_failed_job_cleanup, run_retry_jobs


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for source in ("FHSPB", "MIHF", "JUNIOR"):
        monkeypatch.delenv(f"{source}_PARSER_CLASS", raising=False)
        monkeypatch.delenv(f"{source}_RETRY_ENABLED", raising=False)
    monkeypatch.delenv("CRAWL_FAILED_JOB_RETENTION_DAYS", raising=False)
    get_source_settings.cache_clear()
    get_crawl_settings.cache_clear()
    yield
    get_source_settings.cache_clear()
    get_crawl_settings.cache_clear()


class _RecordingManager:
    def __init__(self, removed: int = 0, fail: bool = False) -> None:
        self.removed = removed
        self.fail = fail
        self.calls: list[timedelta] = []

    def cleanup_old_jobs(self, older_than: timedelta) -> int:
        self.calls.append(older_than)
        if self.fail:
            raise RuntimeError("database unavailable")
        return self.removed


# ---------------------------------------------------------------------------
# build_scheduler
# ---------------------------------------------------------------------------


class TestBuildScheduler:
    def test_only_cleanup_without_parsers(self) -> None:
        scheduler = build_scheduler()
        assert [job.id for job in scheduler.get_jobs()] == ["failed_job_cleanup"]

    def test_retry_job_for_configured_source(self, monkeypatch) -> None:
        monkeypatch.setenv("FHSPB_PARSER_CLASS", "sites.fhspb:Parser")
        monkeypatch.setenv("MIHF_PARSER_CLASS", "sites.mihf:Parser")
        monkeypatch.setenv("MIHF_RETRY_ENABLED", "false")

        scheduler = build_scheduler()
        ids = {job.id for job in scheduler.get_jobs()}
        assert ids == {"retry_fhspb", "failed_job_cleanup"}

    def test_explicit_sources(self, monkeypatch) -> None:
        monkeypatch.setenv("FHSPB_PARSER_CLASS", "sites.fhspb:Parser")
        monkeypatch.setenv("JUNIOR_PARSER_CLASS", "sites.junior:Parser")

        scheduler = build_scheduler(["junior"])
        ids = {job.id for job in scheduler.get_jobs()}
        assert ids == {"retry_junior", "failed_job_cleanup"}


# ---------------------------------------------------------------------------
# Job functions
# ---------------------------------------------------------------------------


class TestFailedJobCleanup:
    def test_uses_retention_setting(self, monkeypatch) -> None:
        monkeypatch.setenv("CRAWL_FAILED_JOB_RETENTION_DAYS", "7")
        manager = _RecordingManager(removed=4)
        assert run_failed_job_cleanup(manager) == 4
        assert manager.calls == [timedelta(days=7)]

    def test_failure_returns_zero(self) -> None:
        assert run_failed_job_cleanup(_RecordingManager(fail=True)) == 0


class TestRetryJobs:
    def test_factory_failure_returns_none(self, monkeypatch, session_factory) -> None:
        class BrokenRegistry:
            def create_orchestrator(self, source, **kwargs):
                raise RuntimeError("no parser")

        monkeypatch.setattr(jobs, "build_retry_manager", lambda settings: RetryManager(session_factory))
        assert run_retry_jobs("fhspb", registry=BrokenRegistry()) is None

    def test_processes_due_jobs(self, monkeypatch, session_factory, clock) -> None:
        handled: list[str] = []
        manager = RetryManager(session_factory, base_delay_seconds=1.0, clock=clock)
        manager.add_failed_job("player", "fhspb", "501", None, "boom")
        clock.advance(minutes=1)

        class Orchestrator:
            def retry_handlers(self):
                return {"player": lambda token, job: handled.append(job.external_id)}

        class Registry:
            def create_orchestrator(self, source, **kwargs):
                assert kwargs["retry_queue"] is manager
                return Orchestrator()

        monkeypatch.setattr(jobs, "build_retry_manager", lambda settings: manager)
        summary = run_retry_jobs("fhspb", registry=Registry())

        assert summary is not None
        assert (summary.fetched, summary.succeeded) == (1, 1)
        assert handled == ["501"]

