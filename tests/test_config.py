"""
tests/test_config.py

Environment-driven settings for sources and the crawl process.

Coverage
--------
- Per-source defaults
- <SOURCE>_* overrides, bool parsing, blank and malformed values
- Shared HTTP timeout with per-source override
- Process-wide pool/retry settings and clamping
- Birth-year window semantics (0 disables a bound)
"""

from __future__ import annotations

import pytest

from crawler.config.loader import get_crawl_settings, get_source_settings

_KEYS = (
    "FHSPB_TEAM_WORKERS",
    "FHSPB_BASE_URL",
    "FHSPB_RETRY_ENABLED",
    "FHSPB_PARSER_CLASS",
    "FHSPB_MAX_BIRTH_YEAR",
    "MIHF_HTTP_TIMEOUT_SECONDS",
    "JUNIOR_HTTP_TIMEOUT_SECONDS",
    "CRAWL_HTTP_TIMEOUT_SECONDS",
    "CRAWL_POOL_MAX_WORKERS",
    "CRAWL_POOL_SCALE_THRESHOLD",
    "CRAWL_RETRY_BATCH_LIMIT",
    "CRAWL_FAILED_JOB_RETENTION_DAYS",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for key in _KEYS:
        monkeypatch.delenv(key, raising=False)
    get_source_settings.cache_clear()
    get_crawl_settings.cache_clear()
    yield
    get_source_settings.cache_clear()
    get_crawl_settings.cache_clear()


# ---------------------------------------------------------------------------
# Source settings
# ---------------------------------------------------------------------------


class TestSourceSettings:
    def test_defaults(self) -> None:
        settings = get_source_settings("fhspb")
        assert settings.base_url == "https://www.fhspb.ru"
        assert settings.team_workers == 5
        assert settings.max_birth_year == 2008
        assert settings.min_birth_year == 0
        assert settings.retry_enabled is True
        assert settings.retry_delay_seconds == 300.0
        assert settings.parser_class is None

    def test_per_source_defaults_differ(self) -> None:
        assert get_source_settings("mihf").min_birth_year == 2008
        assert get_source_settings("junior").domain_workers == 5
        assert get_source_settings("junior").team_workers == 10

    def test_overrides(self, monkeypatch) -> None:
        monkeypatch.setenv("FHSPB_TEAM_WORKERS", "7")
        monkeypatch.setenv("FHSPB_BASE_URL", "https://mirror.test/")
        monkeypatch.setenv("FHSPB_RETRY_ENABLED", "off")
        monkeypatch.setenv("FHSPB_PARSER_CLASS", "sites.fhspb:Parser")

        settings = get_source_settings("FHSPB")
        assert settings.team_workers == 7
        assert settings.base_url == "https://mirror.test"
        assert settings.retry_enabled is False
        assert settings.parser_class == "sites.fhspb:Parser"

    @pytest.mark.parametrize(("raw", "expected"), [("many", 5), ("0", 1), ("-3", 1)])
    def test_malformed_and_small_worker_counts(self, monkeypatch, raw, expected) -> None:
        monkeypatch.setenv("FHSPB_TEAM_WORKERS", raw)
        assert get_source_settings("fhspb").team_workers == expected

    def test_blank_parser_class_is_unset(self, monkeypatch) -> None:
        monkeypatch.setenv("FHSPB_PARSER_CLASS", "   ")
        assert get_source_settings("fhspb").parser_class is None

    def test_shared_timeout_with_source_override(self, monkeypatch) -> None:
        monkeypatch.setenv("CRAWL_HTTP_TIMEOUT_SECONDS", "12")
        monkeypatch.setenv("MIHF_HTTP_TIMEOUT_SECONDS", "40")
        assert get_source_settings("junior").http_timeout_seconds == 12.0
        assert get_source_settings("mihf").http_timeout_seconds == 40.0

    def test_cached_until_cleared(self, monkeypatch) -> None:
        first = get_source_settings("fhspb")
        monkeypatch.setenv("FHSPB_TEAM_WORKERS", "9")
        assert get_source_settings("fhspb") is first
        get_source_settings.cache_clear()
        assert get_source_settings("fhspb").team_workers == 9

    def test_unknown_source(self) -> None:
        with pytest.raises(ValueError, match="Unknown source"):
            get_source_settings("khl")


# ---------------------------------------------------------------------------
# Crawl settings
# ---------------------------------------------------------------------------


class TestCrawlSettings:
    def test_defaults(self) -> None:
        settings = get_crawl_settings()
        assert settings.http.max_attempts == 3
        assert settings.pool.max_workers == 20
        assert settings.pool.buffer_size == 100
        assert settings.retry_batch_limit == 100
        assert settings.cleanup_after_days == 30

    def test_overrides_and_clamping(self, monkeypatch) -> None:
        monkeypatch.setenv("CRAWL_POOL_MAX_WORKERS", "40")
        monkeypatch.setenv("CRAWL_POOL_SCALE_THRESHOLD", "1.5")
        monkeypatch.setenv("CRAWL_RETRY_BATCH_LIMIT", "nope")

        settings = get_crawl_settings()
        assert settings.pool.max_workers == 40
        assert settings.pool.scale_threshold == 1.0
        assert settings.retry_batch_limit == 100


# ---------------------------------------------------------------------------
# Birth-year window
# ---------------------------------------------------------------------------


class TestBirthYearWindow:
    @pytest.mark.parametrize(
        ("min_year", "max_year", "year", "allowed"),
        [
            (0, 0, 1990, True),
            (2008, 0, 2007, False),
            (2008, 0, 2008, True),
            (0, 2008, 2009, False),
            (2008, 2012, 2012, True),
            (2008, 2012, None, True),
            (2008, 2012, 0, True),
        ],
    )
    def test_bounds(self, source_settings, min_year, max_year, year, allowed) -> None:
        settings = source_settings(min_birth_year=min_year, max_birth_year=max_year)
        assert settings.birth_year_allowed(year) is allowed
