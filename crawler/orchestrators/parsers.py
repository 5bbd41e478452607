"""
Page-parser contracts the orchestrators call after each fetch.

Parsers turn raw HTML into DTOs and never fetch or persist anything. Site
selectors live in the concrete implementations, which are loaded from the
``<SOURCE>_PARSER_CLASS`` setting.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from crawler.domain import (
    GoalieStatsRowDTO,
    GroupDTO,
    PlayerLinkDTO,
    PlayerProfileDTO,
    PlayerStatsRowDTO,
    SeasonDTO,
    SubTournamentDTO,
    TeamDTO,
    TeamStatsDTO,
    TournamentDTO,
)


@runtime_checkable
class MihfParser(Protocol):
    def parse_seasons(self, html: bytes) -> list[SeasonDTO]: ...

    def parse_groups(self, html: bytes) -> list[GroupDTO]: ...

    def parse_tournaments(self, html: bytes) -> list[TournamentDTO]: ...

    def parse_sub_tournaments(self, html: bytes) -> list[SubTournamentDTO]: ...

    def parse_scoreboard(self, html: bytes) -> list[TeamDTO]: ...

    def parse_team_stats(self, html: bytes) -> TeamStatsDTO: ...

    def parse_player_profile(self, html: bytes) -> PlayerProfileDTO: ...


@runtime_checkable
class FhspbParser(Protocol):
    def parse_tournaments(self, html: bytes) -> list[TournamentDTO]: ...

    def parse_teams(self, html: bytes) -> list[TeamDTO]: ...

    def parse_team_players(self, html: bytes) -> list[PlayerLinkDTO]: ...

    def parse_player(self, html: bytes) -> PlayerProfileDTO: ...

    def parse_player_stats_page(self, html: bytes) -> list[PlayerStatsRowDTO]: ...

    def parse_goalie_stats_page(self, html: bytes) -> list[GoalieStatsRowDTO]: ...


@runtime_checkable
class JuniorParser(Protocol):
    def parse_domains(self, html: bytes) -> list[str]:
        """
        Regional site base URLs listed on the federation portal.
        """
        ...

    def parse_tournaments(self, html: bytes, domain: str) -> list[TournamentDTO]: ...

    def parse_teams(self, html: bytes) -> list[TeamDTO]:
        """
        One entry per (team, birth year, group) context.
        """
        ...

    def parse_players(self, html: bytes) -> list[PlayerProfileDTO]: ...
