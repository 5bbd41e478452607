"""
tests/conftest.py

Shared fixtures: a file-backed SQLite session factory, in-memory repository
fakes, a recording retry queue, a scripted fetch client and settings builders.
"""

from __future__ import annotations

import threading
from collections.abc import Callable, Iterator
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace
from typing import Any

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

import db.models  # noqa: F401  (registers every table on Base.metadata)
from crawler.config.models import SourceSettings
from crawler.errors import new_http_status_error
from crawler.identity import Source, player_ref, team_ref, tournament_ref
from crawler.storage.base import EntityRepository, LinkRepository, TournamentLookup
from crawler.storage.sqlalchemy_storage import CrawlRepositories
from crawler.workers.cancellation import CancellationToken
from db.base import Base
from db.session import build_session_factory


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------


@pytest.fixture()
def session_factory(tmp_path) -> Iterator[sessionmaker]:
    """Fresh SQLite database per test; one connection per thread."""
    engine = create_engine(
        f"sqlite+pysqlite:///{tmp_path / 'crawl.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    Base.metadata.create_all(engine)
    try:
        yield build_session_factory(engine)
    finally:
        engine.dispose()


class FrozenClock:
    """Settable UTC clock for retry scheduling tests."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 10, 19, 9, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta: float) -> None:
        self.now = self.now + timedelta(**delta)


@pytest.fixture()
def clock() -> FrozenClock:
    return FrozenClock()


# ---------------------------------------------------------------------------
# In-memory repositories
# ---------------------------------------------------------------------------


class MemoryEntityRepository(EntityRepository[Any], TournamentLookup):
    """Dict-backed repository keyed by the rendered entity id."""

    def __init__(self, key: Callable[[Any], str], lookup: Callable[..., str]) -> None:
        self._key = key
        self._lookup = lookup
        self._lock = threading.Lock()
        self.rows: dict[str, Any] = {}
        self.fail_for: set[str] = set()

    def upsert(self, record: Any) -> str:
        row_id = self._key(record)
        if row_id in self.fail_for:
            raise ValueError(f"refused to store {row_id}")
        with self._lock:
            self.rows[row_id] = SimpleNamespace(id=row_id, **record.__dict__)
        return row_id

    def get_by_external_id(self, source: Source, external_id: str, *scope: str) -> Any | None:
        return self.rows.get(self._lookup(source, external_id, *scope))

    def list_by_source(self, source: Source) -> list[Any]:
        return [row for row in self.rows.values() if row.source == source]


class MemoryLinkRepository(LinkRepository[Any]):
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.rows: dict[tuple[str, str, str], Any] = {}

    def upsert(self, record: Any) -> None:
        with self._lock:
            self.rows[(record.player_id, record.team_id, record.tournament_id)] = record


def memory_repositories() -> CrawlRepositories:
    return CrawlRepositories(
        tournaments=MemoryEntityRepository(
            key=lambda r: tournament_ref(r.source, r.external_id).render(),
            lookup=lambda source, ext, *scope: tournament_ref(source, ext).render(),
        ),
        teams=MemoryEntityRepository(
            key=lambda r: team_ref(r.source, r.tournament_id, r.external_id).render(),
            lookup=lambda source, ext, *scope: team_ref(source, scope[0], ext).render(),
        ),
        players=MemoryEntityRepository(
            key=lambda r: player_ref(r.source, r.external_id).render(),
            lookup=lambda source, ext, *scope: player_ref(source, ext).render(),
        ),
        player_teams=MemoryLinkRepository(),
        player_statistics=MemoryLinkRepository(),
        goalie_statistics=MemoryLinkRepository(),
    )


@pytest.fixture()
def repositories() -> CrawlRepositories:
    return memory_repositories()


# ---------------------------------------------------------------------------
# Retry queue
# ---------------------------------------------------------------------------


class RecordingRetryQueue:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.jobs: list[dict[str, Any]] = []

    def add_failed_job(self, job_type, source, external_id, url, error) -> int:
        with self._lock:
            self.jobs.append(
                {
                    "job_type": job_type,
                    "source": source,
                    "external_id": external_id,
                    "url": url,
                    "error": str(error),
                    "retry_count": 0,
                }
            )
            return len(self.jobs)


@pytest.fixture()
def retry_queue() -> RecordingRetryQueue:
    return RecordingRetryQueue()


# ---------------------------------------------------------------------------
# Fetch client
# ---------------------------------------------------------------------------


class ScriptedClient:
    """
    Stand-in for FetchClient: returns canned bodies keyed by path.

    ``statuses`` maps a path to an HTTP status that is raised as the same
    classified error the real client raises.
    """

    def __init__(
        self,
        pages: dict[str, bytes] | None = None,
        *,
        statuses: dict[str, int] | None = None,
        source: str = "test",
        base_url: str = "https://example.test",
    ) -> None:
        self.source = source
        self.base_url = base_url
        self.pages = dict(pages or {})
        self.statuses = dict(statuses or {})
        self.posts: list[tuple[str, dict[str, str]]] = []
        self.requested: list[str] = []
        self._lock = threading.Lock()

    def resolve_url(self, path: str) -> str:
        if path.startswith(("http://", "https://")):
            return path
        if not path.startswith("/"):
            path = f"/{path}"
        return f"{self.base_url}{path}"

    def _path(self, path: str) -> str:
        return path[len(self.base_url):] if path.startswith(self.base_url) else path

    def get(self, path: str, *, token: CancellationToken | None = None) -> bytes:
        key = self._path(path)
        with self._lock:
            self.requested.append(key)
        if key in self.statuses:
            raise new_http_status_error(self.resolve_url(key), self.statuses[key])
        if key not in self.pages:
            raise new_http_status_error(self.resolve_url(key), 404)
        return self.pages[key]

    def get_url(self, url: str, *, token: CancellationToken | None = None) -> bytes:
        return self.get(url, token=token)

    def post_form(self, path: str, form: dict[str, str], *, token: CancellationToken | None = None) -> bytes:
        key = self._path(path)
        with self._lock:
            self.posts.append((key, dict(form)))
        return self.pages[f"{key}#{form['__EVENTARGUMENT']}"]

    def close(self) -> None:
        pass


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------


def make_source_settings(name: str = "fhspb", **overrides: Any) -> SourceSettings:
    base = SourceSettings(
        name=name,
        base_url="https://example.test",
        request_delay_seconds=0.0,
        http_timeout_seconds=5.0,
        season_workers=1,
        tournament_workers=2,
        team_workers=2,
        player_workers=3,
        domain_workers=2,
        statistics_workers=1,
        min_birth_year=0,
        max_birth_year=0,
        max_seasons=0,
        test_season=None,
        retry_enabled=True,
        retry_max_attempts=3,
        retry_delay_seconds=60.0,
    )
    return replace(base, **overrides)


@pytest.fixture()
def source_settings() -> Callable[..., SourceSettings]:
    return make_source_settings


@pytest.fixture()
def client_factory() -> type[ScriptedClient]:
    return ScriptedClient
