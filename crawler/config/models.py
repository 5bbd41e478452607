"""
Crawl configuration models.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class HTTPSettings:
    """
    Shared fetch-client behaviour.
    """

    max_attempts: int = 3
    user_agent: str | None = None


@dataclass(frozen=True)
class PoolSettings:
    """
    Adaptive worker pool tuning.
    """

    buffer_size: int = 100
    max_workers: int = 20
    scale_threshold: float = 0.8
    scale_interval_seconds: float = 5.0
    task_timeout_seconds: float = 60.0


@dataclass(frozen=True)
class SourceSettings:
    """
    Runtime settings for one source crawl.

    A birth-year bound of 0 disables that bound.
    """

    name: str
    base_url: str
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
    max_seasons: int
    test_season: str | None
    retry_enabled: bool
    retry_max_attempts: int
    retry_delay_seconds: float
    parser_class: str | None = None

    def birth_year_allowed(self, birth_year: int | None) -> bool:
        if birth_year is None or birth_year <= 0:
            return True
        if self.min_birth_year > 0 and birth_year < self.min_birth_year:
            return False
        if self.max_birth_year > 0 and birth_year > self.max_birth_year:
            return False
        return True


@dataclass(frozen=True)
class CrawlSettings:
    """
    Process-wide crawl settings.
    """

    http: HTTPSettings
    pool: PoolSettings
    error_max_retries: int = 3
    retry_batch_limit: int = 100
    retry_workers: int = 3
    cleanup_after_days: int = 30
