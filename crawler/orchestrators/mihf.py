"""
stats.mihf.ru crawl.

Seasons -> groups -> tournaments -> sub-tournaments are discovered per
season; each resolved sub-tournament is then crawled as its own branch:
scoreboard -> teams -> field players and goalies.
"""

from __future__ import annotations

import logging
import re
from datetime import date

from crawler.domain import (
    GoalieStatisticsRecord,
    GoalieStatsRowDTO,
    GroupDTO,
    PlayerProfileDTO,
    PlayerRecord,
    PlayerStatisticsRecord,
    PlayerStatsRowDTO,
    PlayerTeamRecord,
    SeasonDTO,
    TeamDTO,
    TeamRecord,
    TournamentPath,
    TournamentRecord,
    parse_jersey_number,
)
from crawler.errors import new_invalid_format_error
from crawler.identity import MIHF, is_empty, team_ref, tournament_ref
from crawler.logging_utils import log_event
from crawler.orchestrators.base import BaseOrchestrator, RetryHandler
from crawler.orchestrators.parsers import MihfParser
from crawler.workers.cancellation import CancellationToken
from crawler.workers.stage import CrawlCounters
from db.models.failed_job import FailedJob, JobType

logger = logging.getLogger(__name__)

SEASONS_PATH = "/"
PLAYER_PROFILE_PATH = "/players/info/{player_id}"
GOALIE_POSITION = "В"

_PATH_PATTERN = re.compile(
    r"/championat/(?P<season>[^/]+)/groups/(?P<group>[^/]+)"
    r"/tournament/(?P<tournament>[^/]+)/sub/(?P<sub>[^/]+)"
    r"(?:/team/(?P<team>[^/?#]+))?"
)

StatsRow = PlayerStatsRowDTO | GoalieStatsRowDTO


class MihfOrchestrator(BaseOrchestrator[MihfParser]):
    source = MIHF

    def _crawl(self, token: CancellationToken, counters: CrawlCounters) -> None:
        seasons = self._select_seasons(self.parser.parse_seasons(self.client.get(SEASONS_PATH, token=token)))
        log_event(
            logger,
            logging.INFO,
            "seasons_selected",
            source=self.source.name,
            seasons=[season.year for season in seasons],
        )
        self._stage(
            "seasons",
            seasons,
            lambda stage_token, season: self._process_season(stage_token, season, counters),
            workers=self.settings.season_workers,
            token=token,
        )

    def _select_seasons(self, seasons: list[SeasonDTO]) -> list[SeasonDTO]:
        wanted = self.settings.test_season
        if wanted:
            matched = [season for season in seasons if wanted in (season.year, season.full_name)]
            if matched:
                return matched
            log_event(
                logger,
                logging.WARNING,
                "test_season_not_found",
                source=self.source.name,
                test_season=wanted,
            )
            return seasons
        if self.settings.max_seasons > 0:
            return seasons[: self.settings.max_seasons]
        return seasons

    # ------------------------------------------------------------------
    # Discovery
    # ------------------------------------------------------------------

    def _process_season(
        self,
        token: CancellationToken,
        season: SeasonDTO,
        counters: CrawlCounters,
    ) -> bool:
        scoped = self._scoped(
            token,
            entity_type="season",
            entity_id=season.year,
            url=self.client.resolve_url(season.url),
        )
        try:
            groups = self.parser.parse_groups(self.client.get(season.url, token=scoped))
        except Exception as exc:  # noqa: BLE001
            self.error_handler.handle(exc, token=scoped)
            return False

        paths: list[TournamentPath] = []
        for group in groups:
            if scoped.cancelled:
                break
            if not self.settings.birth_year_allowed(group.birth_year):
                continue
            paths.extend(self._discover_group(scoped, season, group))

        log_event(
            logger,
            logging.INFO,
            "tournaments_discovered",
            source=self.source.name,
            season=season.year,
            groups=len(groups),
            tournaments=len(paths),
        )
        self._stage(
            "tournaments",
            paths,
            lambda stage_token, path: self._process_tournament(stage_token, path, counters),
            workers=self.settings.tournament_workers,
            token=scoped,
        )
        counters.add(seasons=1)
        return True

    def _discover_group(
        self,
        token: CancellationToken,
        season: SeasonDTO,
        group: GroupDTO,
    ) -> list[TournamentPath]:
        try:
            tournaments = self.parser.parse_tournaments(self.client.get(group.url, token=token))
        except Exception as exc:  # noqa: BLE001
            self.error_handler.handle(exc, token=token)
            return []

        paths: list[TournamentPath] = []
        for tournament in tournaments:
            birth_year = tournament.birth_year or group.birth_year
            if not self.settings.birth_year_allowed(birth_year):
                continue
            try:
                subs = self.parser.parse_sub_tournaments(self.client.get(tournament.url, token=token))
            except Exception as exc:  # noqa: BLE001
                self.error_handler.handle(exc, token=token)
                continue
            paths.extend(
                TournamentPath(
                    season_year=season.year,
                    group_id=group.id,
                    tournament_id=tournament.external_id,
                    sub_id=sub.id,
                    birth_year=birth_year,
                    group_name=group.name,
                )
                for sub in subs
            )
        return paths

    # ------------------------------------------------------------------
    # Tournament -> team -> player
    # ------------------------------------------------------------------

    def _process_tournament(
        self,
        token: CancellationToken,
        path: TournamentPath,
        counters: CrawlCounters,
    ) -> bool:
        url = self.client.resolve_url(path.scoreboard_url())
        scoped = self._scoped(token, entity_type="tournament", entity_id=path.external_id, url=url)
        try:
            tournament_id = self.repositories.tournaments.upsert(
                TournamentRecord(
                    source=self.source,
                    external_id=path.external_id,
                    name=path.group_name,
                    season=path.season_label(),
                    birth_year=path.birth_year,
                    group_name=path.group_name,
                    url=url,
                )
            )
            self._crawl_scoreboard(scoped, path, tournament_id, counters)
        except Exception as exc:  # noqa: BLE001
            self._record_failure(
                scoped,
                exc,
                job_type=JobType.TOURNAMENT,
                external_id=path.external_id,
                url=url,
                counters=counters,
            )
            return False
        counters.add(tournaments=1)
        return True

    def _crawl_scoreboard(
        self,
        token: CancellationToken,
        path: TournamentPath,
        tournament_id: str,
        counters: CrawlCounters,
    ) -> None:
        teams = self.parser.parse_scoreboard(self.client.get(path.scoreboard_url(), token=token))
        self._stage(
            "teams",
            teams,
            lambda stage_token, team: self._process_team(stage_token, path, tournament_id, team, counters),
            workers=self.settings.team_workers,
            token=token,
        )

    def _process_team(
        self,
        token: CancellationToken,
        path: TournamentPath,
        tournament_id: str,
        team: TeamDTO,
        counters: CrawlCounters,
    ) -> bool:
        url = self.client.resolve_url(path.team_url(team.external_id))
        team_id = team_ref(self.source, tournament_id, team.external_id).render()
        scoped = self._scoped(token, entity_type="team", entity_id=team_id, url=url)
        try:
            self.repositories.teams.upsert(
                TeamRecord(
                    source=self.source,
                    tournament_id=tournament_id,
                    external_id=team.external_id,
                    name=team.name,
                    city=team.city,
                    url=url,
                )
            )
            saved = self._crawl_team(scoped, path, tournament_id, team_id, team.external_id, counters)
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

    def _crawl_team(
        self,
        token: CancellationToken,
        path: TournamentPath,
        tournament_id: str,
        team_id: str,
        team_external_id: str,
        counters: CrawlCounters,
    ) -> int:
        stats = self.parser.parse_team_stats(self.client.get(path.team_url(team_external_id), token=token))
        rows: list[StatsRow] = [*stats.players, *stats.goalies]
        result = self._stage(
            "players",
            rows,
            lambda stage_token, row: self._process_player(
                stage_token, path, tournament_id, team_id, row, counters
            ),
            workers=self.settings.player_workers,
            token=token,
        )
        return result.succeeded

    def _process_player(
        self,
        token: CancellationToken,
        path: TournamentPath,
        tournament_id: str,
        team_id: str,
        row: StatsRow,
        counters: CrawlCounters,
    ) -> bool:
        is_goalie = isinstance(row, GoalieStatsRowDTO)
        profile_path = PLAYER_PROFILE_PATH.format(player_id=row.player_id)
        url = self.client.resolve_url(profile_path)
        scoped = self._scoped(token, entity_type="player", entity_id=row.player_id, url=url)
        try:
            profile = self._fetch_profile(scoped, row, profile_path, is_goalie=is_goalie)
            position = GOALIE_POSITION if is_goalie else (profile.position or getattr(row, "position", None))
            birth_date = profile.birth_date
            if birth_date is None and path.birth_year:
                birth_date = date(path.birth_year, 1, 1)
            player_id = self._save_player(row.player_id, profile, url, birth_date=birth_date, position=position)
            self.repositories.player_teams.upsert(
                PlayerTeamRecord(
                    player_id=player_id,
                    team_id=team_id,
                    tournament_id=tournament_id,
                    number=parse_jersey_number(row.number),
                    position=position,
                    role=profile.role,
                    season=path.season_label(),
                )
            )
            if isinstance(row, GoalieStatsRowDTO):
                self.repositories.goalie_statistics.upsert(
                    GoalieStatisticsRecord(
                        player_id=player_id,
                        team_id=team_id,
                        tournament_id=tournament_id,
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
            else:
                self.repositories.player_statistics.upsert(
                    PlayerStatisticsRecord(
                        player_id=player_id,
                        team_id=team_id,
                        tournament_id=tournament_id,
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
            self._record_failure(
                scoped,
                exc,
                job_type=JobType.PLAYER,
                external_id=row.player_id,
                url=url,
                counters=counters,
            )
            return False
        counters.add(players=1, statistics=1)
        return True

    def _fetch_profile(
        self,
        token: CancellationToken,
        row: StatsRow,
        profile_path: str,
        *,
        is_goalie: bool,
    ) -> PlayerProfileDTO:
        """
        Profile page, or the table row itself when the page is unavailable.
        """

        try:
            return self.parser.parse_player_profile(self.client.get(profile_path, token=token))
        except Exception as exc:  # noqa: BLE001
            log_event(
                logger,
                logging.DEBUG,
                "player_profile_fallback",
                player_id=row.player_id,
                error=str(exc),
            )
            return PlayerProfileDTO(
                external_id=row.player_id,
                full_name=row.name,
                position=GOALIE_POSITION if is_goalie else getattr(row, "position", None),
            )

    def _save_player(
        self,
        external_id: str,
        profile: PlayerProfileDTO,
        url: str,
        *,
        birth_date: date | None,
        position: str | None,
    ) -> str:
        return self.repositories.players.upsert(
            PlayerRecord(
                source=self.source,
                external_id=external_id,
                full_name=profile.full_name,
                birth_date=birth_date,
                birth_place=profile.birth_place,
                position=position,
                height=profile.height,
                weight=profile.weight,
                handedness=profile.handedness,
                citizenship=profile.citizenship,
                school=profile.school,
                profile_url=profile.profile_url or url,
            )
        )

    # ------------------------------------------------------------------
    # Retry handlers
    # ------------------------------------------------------------------

    def retry_handlers(self) -> dict[str, RetryHandler]:
        return {
            JobType.TOURNAMENT: self._retry_tournament,
            JobType.TEAM: self._retry_team,
            JobType.PLAYER: self._retry_player,
        }

    def _path_from_url(self, url: str | None) -> tuple[TournamentPath, str | None]:
        match = _PATH_PATTERN.search(url or "")
        if match is None:
            raise new_invalid_format_error("url", url)
        path = TournamentPath(
            season_year=match.group("season"),
            group_id=match.group("group"),
            tournament_id=match.group("tournament"),
            sub_id=match.group("sub"),
            birth_year=None,
            group_name="",
        )
        row = self.repositories.tournaments.get_by_external_id(self.source, path.external_id)
        if row is not None:
            path = TournamentPath(
                season_year=path.season_year,
                group_id=path.group_id,
                tournament_id=path.tournament_id,
                sub_id=path.sub_id,
                birth_year=row.birth_year,
                group_name=row.group_name or "",
            )
        return path, match.group("team")

    def _retry_tournament(self, token: CancellationToken, job: FailedJob) -> None:
        path, _ = self._path_from_url(job.url)
        if is_empty(path.group_name):
            raise new_invalid_format_error("tournament", job.external_id)
        counters = CrawlCounters()
        if not self._process_tournament(token, path, counters):
            raise RuntimeError(f"tournament {job.external_id} failed again")

    def _retry_team(self, token: CancellationToken, job: FailedJob) -> None:
        ref = self._team_job_ref(job)
        path, _ = self._path_from_url(job.url)
        tournament_id = tournament_ref(self.source, ref.scope[0]).render()
        self._crawl_team(token, path, tournament_id, ref.render(), ref.external_id, CrawlCounters())

    def _retry_player(self, token: CancellationToken, job: FailedJob) -> None:
        profile_path = job.url or PLAYER_PROFILE_PATH.format(player_id=job.external_id)
        profile = self.parser.parse_player_profile(self.client.get(profile_path, token=token))
        self.repositories.players.upsert(
            PlayerRecord(
                source=self.source,
                external_id=job.external_id,
                full_name=profile.full_name,
                birth_date=profile.birth_date,
                birth_place=profile.birth_place,
                position=profile.position,
                height=profile.height,
                weight=profile.weight,
                handedness=profile.handedness,
                citizenship=profile.citizenship,
                school=profile.school,
                profile_url=profile.profile_url or self.client.resolve_url(profile_path),
            )
        )
