"""
fhspb.ru crawl: tournament list -> tournaments -> teams -> players.

A second pass walks the league-wide statistics grids of every stored fhspb
tournament. Those grids are paginated through ASP.NET postbacks.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import date
from typing import Any, TypeVar

from crawler.domain import (
    GoalieStatisticsRecord,
    GoalieStatsRowDTO,
    PlayerLinkDTO,
    PlayerProfileDTO,
    PlayerRecord,
    PlayerStatisticsRecord,
    PlayerStatsRowDTO,
    PlayerTeamRecord,
    TeamDTO,
    TeamRecord,
    TournamentDTO,
    TournamentRecord,
)
from crawler.errors import new_not_found_error
from crawler.http.postback import fetch_all_pages
from crawler.identity import FHSPB, is_empty, team_ref
from crawler.logging_utils import log_event
from crawler.orchestrators.base import BaseOrchestrator, CrawlSummary, RetryHandler
from crawler.orchestrators.parsers import FhspbParser
from crawler.storage.base import TournamentLookup
from crawler.workers.cancellation import CancellationToken, background_token
from crawler.workers.stage import CrawlCounters
from db.models.failed_job import FailedJob, JobType

logger = logging.getLogger(__name__)

R = TypeVar("R")

TOURNAMENTS_PATH = "/Tournaments"
TEAM_PATH = "/Team?TournamentID={tournament_id}&TeamID={team_id}"
PLAYER_STATS_PATH = "/StatsPlayer?TournamentID={tournament_id}"
GOALIE_STATS_PATH = "/StatsGoalie?TournamentID={tournament_id}"
STATS_EVENT_TARGET = "ctl00$ctl00$MainContent$MainContent$StatsGridView"


@dataclass(frozen=True)
class _TournamentScope:
    """
    What players and teams inherit from their tournament.
    """

    tournament_id: str
    external_id: str
    url: str
    season: str | None = None
    start_date: date | None = None
    end_date: date | None = None
    is_ended: bool | None = None

    @classmethod
    def from_row(cls, row: Any) -> _TournamentScope:
        return cls(
            tournament_id=row.id,
            external_id=row.external_id,
            url=row.url or "",
            season=row.season,
            start_date=row.start_date,
            end_date=row.end_date,
            is_ended=row.is_ended,
        )


class FhspbOrchestrator(BaseOrchestrator[FhspbParser]):
    source = FHSPB

    def _crawl(self, token: CancellationToken, counters: CrawlCounters) -> None:
        listing = self.client.get(TOURNAMENTS_PATH, token=token)
        tournaments = [
            dto
            for dto in self.parser.parse_tournaments(listing)
            if self.settings.birth_year_allowed(dto.birth_year)
        ]
        log_event(
            logger,
            logging.INFO,
            "tournaments_discovered",
            source=self.source.name,
            count=len(tournaments),
        )
        self._stage(
            "tournaments",
            tournaments,
            lambda stage_token, dto: self._process_tournament(stage_token, dto, counters),
            workers=self.settings.tournament_workers,
            token=token,
        )

    # ------------------------------------------------------------------
    # Tournament -> team -> player
    # ------------------------------------------------------------------

    def _process_tournament(
        self,
        token: CancellationToken,
        dto: TournamentDTO,
        counters: CrawlCounters,
    ) -> bool:
        url = self.client.resolve_url(dto.url)
        scoped = self._scoped(token, entity_type="tournament", entity_id=dto.external_id, url=url)
        try:
            tournament_id = self.repositories.tournaments.upsert(
                TournamentRecord(
                    source=self.source,
                    external_id=dto.external_id,
                    name=dto.name,
                    season=dto.season,
                    birth_year=dto.birth_year,
                    url=url,
                    start_date=dto.start_date,
                    end_date=dto.end_date,
                    is_ended=dto.is_ended,
                )
            )
            scope = _TournamentScope(
                tournament_id=tournament_id,
                external_id=dto.external_id,
                url=dto.url,
                season=dto.season,
                start_date=dto.start_date,
                end_date=dto.end_date,
                is_ended=dto.is_ended,
            )
            self._crawl_teams(scoped, scope, counters)
        except Exception as exc:  # noqa: BLE001
            self._record_failure(
                scoped,
                exc,
                job_type=JobType.TOURNAMENT,
                external_id=dto.external_id,
                url=url,
                counters=counters,
            )
            return False
        counters.add(tournaments=1)
        return True

    def _crawl_teams(
        self,
        token: CancellationToken,
        scope: _TournamentScope,
        counters: CrawlCounters,
    ) -> None:
        teams = self.parser.parse_teams(self.client.get(scope.url, token=token))
        log_event(
            logger,
            logging.INFO,
            "teams_discovered",
            source=self.source.name,
            tournament_id=scope.tournament_id,
            count=len(teams),
        )
        self._stage(
            "teams",
            teams,
            lambda stage_token, team: self._process_team(stage_token, scope, team, counters),
            workers=self.settings.team_workers,
            token=token,
        )

    def _process_team(
        self,
        token: CancellationToken,
        scope: _TournamentScope,
        team: TeamDTO,
        counters: CrawlCounters,
    ) -> bool:
        team_path = TEAM_PATH.format(tournament_id=scope.external_id, team_id=team.external_id)
        url = self.client.resolve_url(team_path)
        team_id = team_ref(self.source, scope.tournament_id, team.external_id).render()
        scoped = self._scoped(token, entity_type="team", entity_id=team_id, url=url)
        try:
            self.repositories.teams.upsert(
                TeamRecord(
                    source=self.source,
                    tournament_id=scope.tournament_id,
                    external_id=team.external_id,
                    name=team.name,
                    city=team.city,
                    url=url,
                )
            )
            saved = self._crawl_team_players(scoped, scope, team_id, team_path, counters)
        except Exception as exc:  # noqa: BLE001
            self._record_failure(
                scoped,
                exc,
                job_type=JobType.TEAM,
                external_id=team_id,
                url=url,
                counters=counters,
            )
            return False
        counters.add(teams=1)
        log_event(logger, logging.INFO, "team_completed", team_id=team_id, players=saved)
        return True

    def _crawl_team_players(
        self,
        token: CancellationToken,
        scope: _TournamentScope,
        team_id: str,
        team_path: str,
        counters: CrawlCounters,
    ) -> int:
        links = self.parser.parse_team_players(self.client.get(team_path, token=token))
        stats = self._stage(
            "players",
            links,
            lambda stage_token, link: self._process_player(stage_token, scope, team_id, link, counters),
            workers=self.settings.player_workers,
            token=token,
        )
        return stats.succeeded

    def _process_player(
        self,
        token: CancellationToken,
        scope: _TournamentScope,
        team_id: str,
        link: PlayerLinkDTO,
        counters: CrawlCounters,
    ) -> bool:
        url = self.client.resolve_url(link.url)
        scoped = self._scoped(token, entity_type="player", entity_id=link.external_id, url=url)
        try:
            profile = self.parser.parse_player(self.client.get(link.url, token=scoped))
            player_id = self._save_player(link, profile, url)
            self.repositories.player_teams.upsert(
                PlayerTeamRecord(
                    player_id=player_id,
                    team_id=team_id,
                    tournament_id=scope.tournament_id,
                    number=profile.number,
                    position=profile.position,
                    role=profile.role,
                    season=scope.season,
                    started_at=scope.start_date,
                    ended_at=scope.end_date,
                    is_active=None if scope.is_ended is None else not scope.is_ended,
                )
            )
        except Exception as exc:  # noqa: BLE001
            self._record_failure(
                scoped,
                exc,
                job_type=JobType.PLAYER,
                external_id=link.external_id,
                url=url,
                counters=counters,
            )
            return False
        counters.add(players=1)
        return True

    def _save_player(self, link: PlayerLinkDTO, profile: PlayerProfileDTO, url: str) -> str:
        full_name = profile.full_name if not is_empty(profile.full_name) else (link.name or "")
        return self.repositories.players.upsert(
            PlayerRecord(
                source=self.source,
                external_id=link.external_id,
                full_name=full_name,
                birth_date=profile.birth_date,
                birth_place=profile.birth_place,
                position=profile.position,
                height=profile.height,
                weight=profile.weight,
                handedness=profile.handedness,
                citizenship=profile.citizenship,
                school=profile.school,
                profile_url=profile.profile_url or url,
            )
        )

    # ------------------------------------------------------------------
    # Statistics pass
    # ------------------------------------------------------------------

    def run_statistics(self, token: CancellationToken | None = None) -> CrawlSummary:
        """
        Load player and goalie statistics for every stored fhspb tournament.

        A tournament whose grid fails is logged and skipped.
        """

        token = token or background_token()
        lookup = self.repositories.tournaments
        if not isinstance(lookup, TournamentLookup):
            raise TypeError("The tournament repository cannot list stored tournaments.")

        counters = CrawlCounters()
        started = time.monotonic()
        tournaments = [_TournamentScope.from_row(row) for row in lookup.list_by_source(self.source)]
        log_event(
            logger,
            logging.INFO,
            "statistics_started",
            source=self.source.name,
            tournaments=len(tournaments),
        )
        self._stage(
            "statistics",
            tournaments,
            lambda stage_token, scope: self._process_statistics(stage_token, scope, counters),
            workers=self.settings.statistics_workers,
            token=token,
        )
        summary = self._summary(counters, started, token)
        log_event(logger, logging.INFO, "statistics_completed", **summary.to_dict())
        return summary

    def _process_statistics(
        self,
        token: CancellationToken,
        scope: _TournamentScope,
        counters: CrawlCounters,
    ) -> bool:
        player_path = PLAYER_STATS_PATH.format(tournament_id=scope.external_id)
        scoped = self._scoped(
            token,
            entity_type="statistics",
            entity_id=scope.tournament_id,
            url=self.client.resolve_url(player_path),
        )
        try:
            player_rows = self._collect_pages(scoped, player_path, self.parser.parse_player_stats_page)
            saved_players = self._save_player_statistics(scope, player_rows)
            goalie_path = GOALIE_STATS_PATH.format(tournament_id=scope.external_id)
            goalie_rows = self._collect_pages(scoped, goalie_path, self.parser.parse_goalie_stats_page)
            saved_goalies = self._save_goalie_statistics(scope, goalie_rows)
        except Exception as exc:  # noqa: BLE001
            self.error_handler.handle(exc, token=scoped)
            return False

        counters.add(tournaments=1, statistics=saved_players + saved_goalies)
        log_event(
            logger,
            logging.INFO,
            "tournament_statistics_saved",
            tournament_id=scope.tournament_id,
            players=saved_players,
            player_rows=len(player_rows),
            goalies=saved_goalies,
            goalie_rows=len(goalie_rows),
        )
        return True

    def _collect_pages(
        self,
        token: CancellationToken,
        path: str,
        parse_page: Callable[[bytes], list[R]],
    ) -> list[R]:
        rows: list[R] = []
        for page in fetch_all_pages(
            self.client,
            path,
            event_target=STATS_EVENT_TARGET,
            parse_page=parse_page,
            token=token,
        ):
            rows.extend(page)
        return rows

    def _resolve_link_ids(self, scope: _TournamentScope, player_ext: str, team_ext: str | None) -> tuple[str, str] | None:
        player = self.repositories.players.get_by_external_id(self.source, player_ext)
        if player is None:
            log_event(logger, logging.DEBUG, "statistics_player_unknown", player_id=player_ext)
            return None
        if is_empty(team_ext):
            return None
        team = self.repositories.teams.get_by_external_id(self.source, team_ext, scope.tournament_id)
        if team is None:
            log_event(logger, logging.DEBUG, "statistics_team_unknown", team_id=team_ext)
            return None
        return player.id, team.id

    def _save_player_statistics(self, scope: _TournamentScope, rows: list[PlayerStatsRowDTO]) -> int:
        saved = 0
        for row in rows:
            ids = self._resolve_link_ids(scope, row.player_id, row.team_id)
            if ids is None:
                continue
            try:
                self.repositories.player_statistics.upsert(
                    PlayerStatisticsRecord(
                        player_id=ids[0],
                        team_id=ids[1],
                        tournament_id=scope.tournament_id,
                        games=row.games,
                        goals=row.goals,
                        assists=row.assists,
                        points=row.points,
                        penalty_minutes=row.penalty_minutes,
                        plus_minus=row.plus_minus,
                        goals_power_play=row.goals_power_play,
                        goals_short_handed=row.goals_short_handed,
                        goals_even_strength=row.goals_even_strength,
                    )
                )
            except Exception as exc:  # noqa: BLE001
                log_event(
                    logger,
                    logging.ERROR,
                    "player_statistics_save_failed",
                    player_id=ids[0],
                    error=str(exc),
                )
                continue
            saved += 1
        return saved

    def _save_goalie_statistics(self, scope: _TournamentScope, rows: list[GoalieStatsRowDTO]) -> int:
        saved = 0
        for row in rows:
            ids = self._resolve_link_ids(scope, row.player_id, row.team_id)
            if ids is None:
                continue
            try:
                self.repositories.goalie_statistics.upsert(
                    GoalieStatisticsRecord(
                        player_id=ids[0],
                        team_id=ids[1],
                        tournament_id=scope.tournament_id,
                        games=row.games,
                        minutes=row.minutes,
                        goals_against=row.goals_against,
                        shots_against=row.shots_against,
                        save_percentage=row.save_percentage,
                        goals_against_avg=row.goals_against_avg,
                        wins=row.wins,
                        shutouts=row.shutouts,
                    )
                )
            except Exception as exc:  # noqa: BLE001
                log_event(
                    logger,
                    logging.ERROR,
                    "goalie_statistics_save_failed",
                    player_id=ids[0],
                    error=str(exc),
                )
                continue
            saved += 1
        return saved

    # ------------------------------------------------------------------
    # Retry handlers
    # ------------------------------------------------------------------

    def retry_handlers(self) -> dict[str, RetryHandler]:
        return {
            JobType.TOURNAMENT: self._retry_tournament,
            JobType.TEAM: self._retry_team,
            JobType.PLAYER: self._retry_player,
        }

    def _stored_scope(self, tournament_external_id: str) -> _TournamentScope:
        row = self.repositories.tournaments.get_by_external_id(self.source, tournament_external_id)
        if row is None:
            raise new_not_found_error("tournament", tournament_external_id)
        return _TournamentScope.from_row(row)

    def _retry_tournament(self, token: CancellationToken, job: FailedJob) -> None:
        scope = self._stored_scope(job.external_id)
        self._crawl_teams(token, scope, CrawlCounters())

    def _retry_team(self, token: CancellationToken, job: FailedJob) -> None:
        ref = self._team_job_ref(job)
        scope = self._stored_scope(ref.scope[0])
        team_path = TEAM_PATH.format(tournament_id=scope.external_id, team_id=ref.external_id)
        self._crawl_team_players(token, scope, ref.render(), team_path, CrawlCounters())

    def _retry_player(self, token: CancellationToken, job: FailedJob) -> None:
        if not job.url:
            raise new_not_found_error("player url", job.external_id)
        profile = self.parser.parse_player(self.client.get(job.url, token=token))
        self._save_player(PlayerLinkDTO(external_id=job.external_id, url=job.url), profile, job.url)
