"""
tests/test_fhspb_orchestrator.py

End-to-end tests for the fhspb crawl pipeline with a scripted client, a
page-keyed fake parser and in-memory repositories.

Coverage
--------
- Full tournament -> team -> player walk and summary counters
- A failing team page does not stop its sibling teams
- The failed team becomes exactly one durable FailedJob (type "team")
- Permanent failures are logged but never queued; retry can be switched off
- Birth-year filtering of the tournament listing
- Root listing failure aborts the run
- A cancelled crawl leaves nothing in the retry queue
- Statistics pass over stored tournaments with postback pagination
- Retry handlers for team and player jobs
"""

from __future__ import annotations

import json
import logging
from datetime import date
from types import SimpleNamespace

import pytest
from sqlalchemy import select

from crawler.domain import (
    GoalieStatsRowDTO,
    PlayerLinkDTO,
    PlayerProfileDTO,
    PlayerRecord,
    PlayerStatsRowDTO,
    TeamDTO,
    TeamRecord,
    TournamentDTO,
    TournamentRecord,
)
from crawler.errors import DomainError
from crawler.identity import FHSPB
from crawler.orchestrators.base import STATUS_CANCELLED, STATUS_COMPLETED
from crawler.orchestrators.fhspb import FhspbOrchestrator
from crawler.retry.manager import RetryManager
from crawler.workers.cancellation import CancellationToken
from db.models.failed_job import FailedJob, JobType

TEAM_COUNT = 5


def _team_path(team_id: int | str) -> str:
    return f"/Team?TournamentID=100&TeamID={team_id}"


class FakeFhspbParser:
    """Decodes the scripted page bodies below."""

    def __init__(self, tournaments: list[TournamentDTO] | None = None) -> None:
        self.tournaments = tournaments or [
            TournamentDTO(
                external_id="100",
                name="Cup 2010",
                url="/Tournament?ID=100",
                birth_year=2010,
                season="2025-2026",
                start_date=date(2025, 9, 1),
                end_date=date(2026, 4, 30),
                is_ended=False,
            )
        ]

    def parse_tournaments(self, html: bytes) -> list[TournamentDTO]:
        return list(self.tournaments)

    def parse_teams(self, html: bytes) -> list[TeamDTO]:
        return [TeamDTO(external_id=str(n), name=f"Team {n}") for n in range(1, TEAM_COUNT + 1)]

    def parse_team_players(self, html: bytes) -> list[PlayerLinkDTO]:
        team = html.decode().split(":", 1)[1]
        return [
            PlayerLinkDTO(external_id=f"{team}{n}", url=f"/Player?ID={team}{n}", name=f"Player {team}{n}")
            for n in (1, 2)
        ]

    def parse_player(self, html: bytes) -> PlayerProfileDTO:
        player = html.decode().split(":", 1)[1]
        return PlayerProfileDTO(external_id=player, full_name=f"Player {player}", number=int(player), position="F")

    def parse_player_stats_page(self, html: bytes) -> list[PlayerStatsRowDTO]:
        if b"SECOND" in html:
            return [PlayerStatsRowDTO(player_id="12", name="Player 12", games=4, goals=2, team_id="1")]
        return [
            PlayerStatsRowDTO(player_id="11", name="Player 11", games=5, goals=1, team_id="1"),
            PlayerStatsRowDTO(player_id="99", name="Unknown", games=1, team_id="1"),
        ]

    def parse_goalie_stats_page(self, html: bytes) -> list[GoalieStatsRowDTO]:
        return [GoalieStatsRowDTO(player_id="21", name="Player 21", games=6, goals_against=9, team_id="2")]


def _pages() -> dict[str, bytes]:
    pages = {
        "/Tournaments": b"listing",
        "/Tournament?ID=100": b"teams",
    }
    for team in range(1, TEAM_COUNT + 1):
        pages[_team_path(team)] = f"team:{team}".encode()
        for n in (1, 2):
            pages[f"/Player?ID={team}{n}"] = f"player:{team}{n}".encode()
    return pages


@pytest.fixture()
def settings(source_settings):
    return source_settings("fhspb", tournament_workers=1, team_workers=2, player_workers=2)


def _orchestrator(settings, client, repositories, retry_queue=None, parser=None) -> FhspbOrchestrator:
    return FhspbOrchestrator(
        settings,
        client,
        parser or FakeFhspbParser(),
        repositories,
        retry_queue=retry_queue,
    )


# ---------------------------------------------------------------------------
# Crawl
# ---------------------------------------------------------------------------


class TestFhspbCrawl:
    def test_full_walk(self, settings, client_factory, repositories, retry_queue) -> None:
        summary = _orchestrator(settings, client_factory(_pages()), repositories, retry_queue).run()

        assert summary.status == STATUS_COMPLETED
        assert (summary.tournaments, summary.teams, summary.players) == (1, 5, 10)
        assert summary.failed_jobs == 0
        assert retry_queue.jobs == []

        tournament = repositories.tournaments.rows["spb:100"]
        assert tournament.url == "https://example.test/Tournament?ID=100"
        team = repositories.teams.rows["spb:100:3"]
        assert team.url == "https://example.test/Team?TournamentID=100&TeamID=3"

    def test_membership_inherits_tournament_window(self, settings, client_factory, repositories) -> None:
        _orchestrator(settings, client_factory(_pages()), repositories).run()

        link = repositories.player_teams.rows[("spb:21", "spb:100:2", "spb:100")]
        assert link.number == 21
        assert link.season == "2025-2026"
        assert link.started_at == date(2025, 9, 1)
        assert link.ended_at == date(2026, 4, 30)
        assert link.is_active is True

    def test_failing_team_is_isolated_and_queued_once(
        self, settings, client_factory, repositories, session_factory, clock, caplog
    ) -> None:
        caplog.set_level(logging.INFO)
        manager = RetryManager(session_factory, max_retries=3, base_delay_seconds=60.0, clock=clock)
        client = client_factory(_pages(), statuses={_team_path(3): 500})

        summary = _orchestrator(settings, client, repositories, manager).run()

        assert summary.teams == 4
        assert summary.players == 8
        assert summary.failed_jobs == 1
        teams_with_players = {team_id for _, team_id, _ in repositories.player_teams.rows}
        assert teams_with_players == {"spb:100:1", "spb:100:2", "spb:100:4", "spb:100:5"}

        with session_factory() as session:
            jobs = list(session.scalars(select(FailedJob)))
        assert len(jobs) == 1
        assert jobs[0].job_type == JobType.TEAM
        assert jobs[0].external_id == "spb:100:3"
        assert jobs[0].url == "https://example.test/Team?TournamentID=100&TeamID=3"
        assert jobs[0].retry_count == 0

        error_lines = [
            json.loads(record.getMessage())
            for record in caplog.records
            if record.name == "crawler.error_handler" and record.levelno >= logging.ERROR
        ]
        assert len(error_lines) == 1
        assert error_lines[0]["parsing_context"]["entity_id"] == "spb:100:3"

    def test_permanent_failure_is_not_queued(self, settings, client_factory, repositories, retry_queue) -> None:
        pages = _pages()
        del pages["/Player?ID=41"]
        summary = _orchestrator(settings, client_factory(pages), repositories, retry_queue).run()

        assert summary.players == 9
        assert summary.teams == 5
        assert retry_queue.jobs == []

    def test_retry_disabled_skips_queue(self, source_settings, client_factory, repositories, retry_queue) -> None:
        settings = source_settings("fhspb", retry_enabled=False)
        client = client_factory(_pages(), statuses={_team_path(2): 502})
        summary = _orchestrator(settings, client, repositories, retry_queue).run()

        assert summary.teams == 4
        assert summary.failed_jobs == 0
        assert retry_queue.jobs == []

    def test_player_failure_queues_player_job(self, settings, client_factory, repositories, retry_queue) -> None:
        client = client_factory(_pages(), statuses={"/Player?ID=52": 503})
        summary = _orchestrator(settings, client, repositories, retry_queue).run()

        assert summary.players == 9
        assert [(job["job_type"], job["external_id"]) for job in retry_queue.jobs] == [(JobType.PLAYER, "52")]
        assert retry_queue.jobs[0]["url"] == "https://example.test/Player?ID=52"

    def test_cancelled_crawl_queues_nothing(self, settings, client_factory, repositories, retry_queue) -> None:
        run_token = CancellationToken()
        client = client_factory(_pages())
        fetch = client.get

        def get(path, *, token=None):
            if "TeamID=3" in path:
                run_token.cancel()
            if token is not None:
                token.raise_if_cancelled()
            return fetch(path, token=token)

        client.get = get
        summary = _orchestrator(settings, client, repositories, retry_queue).run(run_token)

        assert summary.status == STATUS_CANCELLED
        assert summary.teams < TEAM_COUNT
        assert summary.failed_jobs == 0
        assert retry_queue.jobs == []

    def test_birth_year_filter(self, source_settings, client_factory, repositories) -> None:
        parser = FakeFhspbParser(
            [
                TournamentDTO(external_id="100", name="Cup 2010", url="/Tournament?ID=100", birth_year=2010),
                TournamentDTO(external_id="200", name="Cup 2012", url="/Tournament?ID=200", birth_year=2012),
            ]
        )
        settings = source_settings("fhspb", max_birth_year=2010)
        summary = _orchestrator(settings, client_factory(_pages()), repositories, parser=parser).run()

        assert summary.tournaments == 1
        assert set(repositories.tournaments.rows) == {"spb:100"}

    def test_root_listing_failure_aborts(self, settings, client_factory, repositories, caplog) -> None:
        caplog.set_level(logging.INFO)
        client = client_factory(_pages(), statuses={"/Tournaments": 503})
        with pytest.raises(DomainError):
            _orchestrator(settings, client, repositories).run()
        assert any("crawl_failed" in record.getMessage() for record in caplog.records)


# ---------------------------------------------------------------------------
# Statistics pass
# ---------------------------------------------------------------------------

_STATS_FIRST_PAGE = b"""
<input type="hidden" name="__VIEWSTATE" value="vs" />
<a href="javascript:__doPostBack('grid','Page$2')">2</a>
FIRST
"""


class TestFhspbStatistics:
    @pytest.fixture()
    def stored(self, repositories):
        tournament_id = repositories.tournaments.upsert(
            TournamentRecord(source=FHSPB, external_id="100", name="Cup 2010", url="https://example.test/T")
        )
        for team in ("1", "2"):
            repositories.teams.upsert(
                TeamRecord(source=FHSPB, tournament_id=tournament_id, external_id=team, name=f"Team {team}")
            )
        for player in ("11", "12", "21"):
            repositories.players.upsert(PlayerRecord(source=FHSPB, external_id=player, full_name=f"P{player}"))
        return repositories

    def test_statistics_pages_are_saved(self, settings, client_factory, stored) -> None:
        client = client_factory(
            {
                "/StatsPlayer?TournamentID=100": _STATS_FIRST_PAGE,
                "/StatsPlayer?TournamentID=100#Page$2": b"SECOND",
                "/StatsGoalie?TournamentID=100": b"goalies",
            }
        )
        summary = _orchestrator(settings, client, stored).run_statistics()

        assert summary.tournaments == 1
        assert summary.statistics == 3
        assert set(stored.player_statistics.rows) == {
            ("spb:11", "spb:100:1", "spb:100"),
            ("spb:12", "spb:100:1", "spb:100"),
        }
        assert set(stored.goalie_statistics.rows) == {("spb:21", "spb:100:2", "spb:100")}
        assert [form["__EVENTARGUMENT"] for _, form in client.posts] == ["Page$2"]

    def test_failing_grid_skips_tournament(self, settings, client_factory, stored) -> None:
        client = client_factory({}, statuses={"/StatsPlayer?TournamentID=100": 500})
        summary = _orchestrator(settings, client, stored).run_statistics()

        assert summary.tournaments == 0
        assert stored.player_statistics.rows == {}


# ---------------------------------------------------------------------------
# Retry handlers
# ---------------------------------------------------------------------------


class TestFhspbRetryHandlers:
    def test_handlers_cover_every_job_type(self, settings, client_factory, repositories) -> None:
        handlers = _orchestrator(settings, client_factory(), repositories).retry_handlers()
        assert set(handlers) == JobType.ALL

    def test_team_job_recrawls_players(self, settings, client_factory, repositories) -> None:
        repositories.tournaments.upsert(
            TournamentRecord(source=FHSPB, external_id="100", name="Cup", season="2025-2026")
        )
        orchestrator = _orchestrator(settings, client_factory(_pages()), repositories)
        job = SimpleNamespace(external_id="spb:100:3", url="https://example.test" + _team_path(3))

        orchestrator.retry_handlers()[JobType.TEAM](CancellationToken(), job)

        assert ("spb:31", "spb:100:3", "spb:100") in repositories.player_teams.rows
        assert ("spb:32", "spb:100:3", "spb:100") in repositories.player_teams.rows

    def test_team_job_for_other_source_is_rejected(self, settings, client_factory, repositories) -> None:
        orchestrator = _orchestrator(settings, client_factory(_pages()), repositories)
        job = SimpleNamespace(external_id="msk:45-6-7:89", url=None)
        with pytest.raises(ValueError):
            orchestrator.retry_handlers()[JobType.TEAM](CancellationToken(), job)

    def test_team_job_without_stored_tournament_fails(self, settings, client_factory, repositories) -> None:
        orchestrator = _orchestrator(settings, client_factory(_pages()), repositories)
        job = SimpleNamespace(external_id="spb:100:3", url=None)
        with pytest.raises(DomainError):
            orchestrator.retry_handlers()[JobType.TEAM](CancellationToken(), job)

    def test_player_job_refetches_profile(self, settings, client_factory, repositories) -> None:
        orchestrator = _orchestrator(settings, client_factory(_pages()), repositories)
        job = SimpleNamespace(external_id="41", url="/Player?ID=41")

        orchestrator.retry_handlers()[JobType.PLAYER](CancellationToken(), job)

        assert repositories.players.rows["spb:41"].full_name == "Player 41"
