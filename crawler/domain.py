"""
Entity records written by the crawlers and DTOs returned by page parsers.

Records carry external identifiers; the storage layer derives row ids from
them through ``crawler.identity``. DTOs are plain parse results and never
reach the database directly.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime

from crawler.identity import Source

# ---------------------------------------------------------------------------
# Entity records
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TournamentRecord:
    source: Source
    external_id: str
    name: str
    season: str | None = None
    birth_year: int | None = None
    group_name: str | None = None
    url: str | None = None
    domain: str | None = None
    start_date: date | None = None
    end_date: date | None = None
    is_ended: bool | None = None


@dataclass(frozen=True)
class TeamRecord:
    """
    A team inside one tournament; ``tournament_id`` is the rendered tournament id.
    """

    source: Source
    tournament_id: str
    external_id: str
    name: str
    city: str | None = None
    url: str | None = None


@dataclass(frozen=True)
class PlayerRecord:
    source: Source
    external_id: str
    full_name: str
    birth_date: date | None = None
    birth_place: str | None = None
    position: str | None = None
    height: int | None = None
    weight: int | None = None
    handedness: str | None = None
    citizenship: str | None = None
    school: str | None = None
    profile_url: str | None = None


@dataclass(frozen=True)
class MatchRecord:
    source: Source
    external_id: str
    tournament_id: str
    home_team_id: str | None = None
    away_team_id: str | None = None
    scheduled_at: datetime | None = None
    home_score: int | None = None
    away_score: int | None = None
    status: str | None = None
    venue: str | None = None
    url: str | None = None


@dataclass(frozen=True)
class PlayerTeamRecord:
    player_id: str
    team_id: str
    tournament_id: str
    number: int | None = None
    position: str | None = None
    role: str | None = None
    season: str | None = None
    started_at: date | None = None
    ended_at: date | None = None
    is_active: bool | None = None


@dataclass(frozen=True)
class PlayerStatisticsRecord:
    player_id: str
    team_id: str
    tournament_id: str
    games: int = 0
    goals: int = 0
    assists: int = 0
    points: int = 0
    penalty_minutes: int = 0
    plus_minus: int | None = None
    goals_power_play: int | None = None
    goals_short_handed: int | None = None
    goals_even_strength: int | None = None


@dataclass(frozen=True)
class GoalieStatisticsRecord:
    player_id: str
    team_id: str
    tournament_id: str
    games: int = 0
    minutes: int | None = None
    goals_against: int = 0
    shots_against: int | None = None
    save_percentage: float | None = None
    goals_against_avg: float | None = None
    wins: int | None = None
    shutouts: int | None = None


# ---------------------------------------------------------------------------
# Parser DTOs
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SeasonDTO:
    year: str
    full_name: str
    url: str


@dataclass(frozen=True)
class GroupDTO:
    id: str
    name: str
    url: str
    birth_year: int | None = None


@dataclass(frozen=True)
class TournamentDTO:
    """
    A tournament as listed on a source page.

    mihf fills ``group_id`` and ``birth_year``; fhspb fills dates and
    ``is_ended``; junior fills ``domain``.
    """

    external_id: str
    name: str
    url: str
    birth_year: int | None = None
    season: str | None = None
    group_id: str | None = None
    domain: str | None = None
    start_date: date | None = None
    end_date: date | None = None
    is_ended: bool | None = None


@dataclass(frozen=True)
class SubTournamentDTO:
    id: str
    name: str
    url: str


@dataclass(frozen=True)
class TournamentPath:
    """
    Fully resolved mihf tournament: season, group, tournament and sub-tournament.
    """

    season_year: str
    group_id: str
    tournament_id: str
    sub_id: str
    birth_year: int | None
    group_name: str

    @property
    def external_id(self) -> str:
        return f"{self.tournament_id}-{self.sub_id}-{self.group_id}"

    @property
    def base_path(self) -> str:
        return (
            f"/championat/{self.season_year}/groups/{self.group_id}"
            f"/tournament/{self.tournament_id}/sub/{self.sub_id}"
        )

    def scoreboard_url(self) -> str:
        return f"{self.base_path}/scoreboard"

    def team_url(self, team_id: str) -> str:
        return f"{self.base_path}/team/{team_id}"

    def season_label(self) -> str:
        try:
            return f"{self.season_year}-{int(self.season_year) + 1}"
        except ValueError:
            return self.season_year


@dataclass(frozen=True)
class TeamDTO:
    """
    A team row from a scoreboard or team list.

    junior lists the same team once per (birth year, group) context.
    """

    external_id: str
    name: str
    url: str | None = None
    city: str | None = None
    birth_year: int | None = None
    group_name: str | None = None


@dataclass(frozen=True)
class PlayerLinkDTO:
    external_id: str
    url: str
    name: str | None = None


@dataclass(frozen=True)
class PlayerProfileDTO:
    external_id: str
    full_name: str
    birth_date: date | None = None
    birth_place: str | None = None
    position: str | None = None
    height: int | None = None
    weight: int | None = None
    handedness: str | None = None
    citizenship: str | None = None
    school: str | None = None
    number: int | None = None
    role: str | None = None
    profile_url: str | None = None


@dataclass(frozen=True)
class PlayerStatsRowDTO:
    """
    One field-player row from a statistics table.

    ``team_id`` is set by league-wide stat tables (fhspb postback pages).
    """

    player_id: str
    name: str
    number: str | None = None
    position: str | None = None
    games: int = 0
    goals: int = 0
    assists: int = 0
    points: int = 0
    penalty_minutes: int = 0
    plus_minus: int | None = None
    goals_power_play: int | None = None
    goals_short_handed: int | None = None
    goals_even_strength: int | None = None
    profile_url: str | None = None
    team_id: str | None = None


@dataclass(frozen=True)
class GoalieStatsRowDTO:
    player_id: str
    name: str
    number: str | None = None
    games: int = 0
    minutes: int | None = None
    goals_against: int = 0
    shots_against: int | None = None
    save_percentage: float | None = None
    goals_against_avg: float | None = None
    wins: int | None = None
    shutouts: int | None = None
    profile_url: str | None = None
    team_id: str | None = None


@dataclass(frozen=True)
class TeamStatsDTO:
    players: list[PlayerStatsRowDTO] = field(default_factory=list)
    goalies: list[GoalieStatsRowDTO] = field(default_factory=list)


def parse_jersey_number(raw: str | None) -> int | None:
    """
    Leading digits of a jersey cell (``"17"``, ``"17 (A)"``); None when absent or zero.
    """

    if not raw:
        return None
    digits = ""
    for char in raw.strip():
        if not char.isdigit():
            break
        digits += char
    number = int(digits) if digits else 0
    return number if number > 0 else None
