"""
Environment-driven loader for crawl settings.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache

from db.config import load_env_files

from crawler.config.models import CrawlSettings, HTTPSettings, PoolSettings, SourceSettings
from crawler.identity import get_source


@dataclass(frozen=True)
class _SourceDefaults:
    request_delay_seconds: float
    http_timeout_seconds: float
    season_workers: int
    tournament_workers: int
    team_workers: int
    player_workers: int
    domain_workers: int
    statistics_workers: int
    min_birth_year: int
    max_birth_year: int


_SOURCE_DEFAULTS: dict[str, _SourceDefaults] = {
    "fhspb": _SourceDefaults(
        request_delay_seconds=0.15,
        http_timeout_seconds=30.0,
        season_workers=1,
        tournament_workers=3,
        team_workers=5,
        player_workers=10,
        domain_workers=1,
        statistics_workers=3,
        min_birth_year=0,
        max_birth_year=2008,
    ),
    "mihf": _SourceDefaults(
        request_delay_seconds=0.15,
        http_timeout_seconds=15.0,
        season_workers=2,
        tournament_workers=3,
        team_workers=5,
        player_workers=10,
        domain_workers=1,
        statistics_workers=1,
        min_birth_year=2008,
        max_birth_year=0,
    ),
    "junior": _SourceDefaults(
        request_delay_seconds=0.1,
        http_timeout_seconds=30.0,
        season_workers=1,
        tournament_workers=1,
        team_workers=10,
        player_workers=10,
        domain_workers=5,
        statistics_workers=1,
        min_birth_year=2008,
        max_birth_year=0,
    ),
}


@lru_cache(maxsize=1)
def _load_env_once() -> None:
    load_env_files()


def _get_bool_env(name: str, default: bool) -> bool:
    _load_env_once()
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _get_int_env(name: str, default: int) -> int:
    _load_env_once()
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _get_float_env(name: str, default: float) -> float:
    _load_env_once()
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _get_str_env(name: str, default: str) -> str:
    _load_env_once()
    raw = os.getenv(name)
    if raw is None:
        return default
    stripped = raw.strip()
    return stripped if stripped else default


def _get_optional_str_env(name: str) -> str | None:
    _load_env_once()
    raw = os.getenv(name)
    if raw is None:
        return None
    stripped = raw.strip()
    return stripped or None


@lru_cache(maxsize=None)
def get_source_settings(name: str) -> SourceSettings:
    """
    Return cached settings for one source, e.g. ``FHSPB_TEAM_WORKERS``.
    """

    source = get_source(name)
    defaults = _SOURCE_DEFAULTS[source.name]
    prefix = source.name.upper()
    shared_timeout = _get_float_env("CRAWL_HTTP_TIMEOUT_SECONDS", defaults.http_timeout_seconds)

    return SourceSettings(
        name=source.name,
        base_url=_get_str_env(f"{prefix}_BASE_URL", source.base_url).rstrip("/"),
        request_delay_seconds=max(
            0.0,
            _get_float_env(f"{prefix}_REQUEST_DELAY_SECONDS", defaults.request_delay_seconds),
        ),
        http_timeout_seconds=max(
            1.0,
            _get_float_env(f"{prefix}_HTTP_TIMEOUT_SECONDS", shared_timeout),
        ),
        season_workers=max(1, _get_int_env(f"{prefix}_SEASON_WORKERS", defaults.season_workers)),
        tournament_workers=max(
            1,
            _get_int_env(f"{prefix}_TOURNAMENT_WORKERS", defaults.tournament_workers),
        ),
        team_workers=max(1, _get_int_env(f"{prefix}_TEAM_WORKERS", defaults.team_workers)),
        player_workers=max(1, _get_int_env(f"{prefix}_PLAYER_WORKERS", defaults.player_workers)),
        domain_workers=max(1, _get_int_env(f"{prefix}_DOMAIN_WORKERS", defaults.domain_workers)),
        statistics_workers=max(
            1,
            _get_int_env(f"{prefix}_STATISTICS_WORKERS", defaults.statistics_workers),
        ),
        min_birth_year=max(0, _get_int_env(f"{prefix}_MIN_BIRTH_YEAR", defaults.min_birth_year)),
        max_birth_year=max(0, _get_int_env(f"{prefix}_MAX_BIRTH_YEAR", defaults.max_birth_year)),
        max_seasons=max(0, _get_int_env(f"{prefix}_MAX_SEASONS", 0)),
        test_season=_get_optional_str_env(f"{prefix}_TEST_SEASON"),
        retry_enabled=_get_bool_env(f"{prefix}_RETRY_ENABLED", True),
        retry_max_attempts=max(1, _get_int_env(f"{prefix}_RETRY_MAX_ATTEMPTS", 3)),
        retry_delay_seconds=max(
            1.0,
            _get_float_env(f"{prefix}_RETRY_DELAY_SECONDS", 300.0),
        ),
        parser_class=_get_optional_str_env(f"{prefix}_PARSER_CLASS"),
    )


@lru_cache(maxsize=1)
def get_crawl_settings() -> CrawlSettings:
    """
    Return cached process-wide crawl settings.
    """

    return CrawlSettings(
        http=HTTPSettings(
            max_attempts=max(1, _get_int_env("CRAWL_HTTP_MAX_ATTEMPTS", 3)),
            user_agent=_get_optional_str_env("CRAWL_USER_AGENT"),
        ),
        pool=PoolSettings(
            buffer_size=max(1, _get_int_env("CRAWL_POOL_BUFFER_SIZE", 100)),
            max_workers=max(1, _get_int_env("CRAWL_POOL_MAX_WORKERS", 20)),
            scale_threshold=min(1.0, max(0.0, _get_float_env("CRAWL_POOL_SCALE_THRESHOLD", 0.8))),
            scale_interval_seconds=max(
                0.1,
                _get_float_env("CRAWL_POOL_SCALE_INTERVAL_SECONDS", 5.0),
            ),
            task_timeout_seconds=max(
                1.0,
                _get_float_env("CRAWL_POOL_TASK_TIMEOUT_SECONDS", 60.0),
            ),
        ),
        error_max_retries=max(0, _get_int_env("CRAWL_ERROR_MAX_RETRIES", 3)),
        retry_batch_limit=max(1, _get_int_env("CRAWL_RETRY_BATCH_LIMIT", 100)),
        retry_workers=max(1, _get_int_env("CRAWL_RETRY_WORKERS", 3)),
        cleanup_after_days=max(1, _get_int_env("CRAWL_FAILED_JOB_RETENTION_DAYS", 30)),
    )
