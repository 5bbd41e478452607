"""
SQLAlchemy-backed repositories for crawled entities.

Every upsert is one short transaction: ``INSERT ... ON CONFLICT (key) DO
UPDATE`` where each merged column becomes ``COALESCE(NULLIF(excluded.col,
''), table.col)``. The database performs the merge, so concurrent workers
need no application-level locking.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

from sqlalchemy import String, func, select
from sqlalchemy.dialects.postgresql import insert as postgresql_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from crawler.domain import (
    GoalieStatisticsRecord,
    MatchRecord,
    PlayerRecord,
    PlayerStatisticsRecord,
    PlayerTeamRecord,
    TeamRecord,
    TournamentRecord,
)
from crawler.identity import (
    MergePolicy,
    Source,
    is_empty,
    match_ref,
    player_ref,
    team_ref,
    tournament_ref,
)
from crawler.storage.base import EntityRepository, LinkRepository, TournamentLookup
from db.base import Base, utcnow
from db.models import (
    GoalieStatistics,
    Match,
    Player,
    PlayerStatistics,
    PlayerTeam,
    Team,
    Tournament,
)
from db.session import SessionLocal

SessionFactory = Callable[[], Session]
R = TypeVar("R")

_INSERT_BY_DIALECT = {
    "postgresql": postgresql_insert,
    "sqlite": sqlite_insert,
}

_LINK_KEY = ("player_id", "team_id", "tournament_id")

TOURNAMENT_POLICY = MergePolicy(
    table="tournaments",
    key_columns=("id",),
    merge_columns=(
        "name",
        "season",
        "birth_year",
        "group_name",
        "url",
        "domain",
        "start_date",
        "end_date",
        "is_ended",
    ),
)
TEAM_POLICY = MergePolicy(
    table="teams",
    key_columns=("id",),
    merge_columns=("name", "city", "url"),
)
PLAYER_POLICY = MergePolicy(
    table="players",
    key_columns=("id",),
    merge_columns=(
        "full_name",
        "birth_date",
        "birth_place",
        "position",
        "height",
        "weight",
        "handedness",
        "citizenship",
        "school",
        "profile_url",
    ),
)
MATCH_POLICY = MergePolicy(
    table="matches",
    key_columns=("id",),
    merge_columns=(
        "home_team_id",
        "away_team_id",
        "scheduled_at",
        "home_score",
        "away_score",
        "status",
        "venue",
        "url",
    ),
)
PLAYER_TEAM_POLICY = MergePolicy(
    table="player_teams",
    key_columns=_LINK_KEY,
    merge_columns=("number", "position", "role", "season", "started_at", "ended_at", "is_active"),
)
PLAYER_STATISTICS_POLICY = MergePolicy(
    table="player_statistics",
    key_columns=_LINK_KEY,
    merge_columns=(
        "games",
        "goals",
        "assists",
        "points",
        "penalty_minutes",
        "plus_minus",
        "goals_power_play",
        "goals_short_handed",
        "goals_even_strength",
    ),
)
GOALIE_STATISTICS_POLICY = MergePolicy(
    table="goalie_statistics",
    key_columns=_LINK_KEY,
    merge_columns=(
        "games",
        "minutes",
        "goals_against",
        "shots_against",
        "save_percentage",
        "goals_against_avg",
        "wins",
        "shutouts",
    ),
)


def _clean(values: Mapping[str, Any]) -> dict[str, Any]:
    cleaned: dict[str, Any] = {}
    for key, value in values.items():
        if isinstance(value, str):
            value = value.strip()
        cleaned[key] = None if is_empty(value) else value
    return cleaned


class _UpsertStore(Generic[R]):
    """
    Shared upsert mechanics keyed by a merge policy.
    """

    model: type[Base]
    policy: MergePolicy

    def __init__(self, session_factory: SessionFactory = SessionLocal) -> None:
        self._session_factory = session_factory

    def _upsert_values(self, values: Mapping[str, Any]) -> None:
        session = self._session_factory()
        try:
            session.execute(self._build_upsert(session, _clean(values)))
            session.commit()
        except SQLAlchemyError:
            session.rollback()
            raise
        finally:
            session.close()

    def _build_upsert(self, session: Session, values: dict[str, Any]) -> Any:
        dialect = session.get_bind().dialect.name
        insert_fn = _INSERT_BY_DIALECT.get(dialect)
        if insert_fn is None:
            raise RuntimeError(f"Upserts are not supported for dialect '{dialect}'.")

        table = self.model.__table__
        stmt = insert_fn(table).values(**values)
        excluded = stmt.excluded
        set_: dict[str, Any] = {}
        for column in self.policy.merge_columns:
            incoming: Any = excluded[column]
            if isinstance(table.c[column].type, String):
                incoming = func.nullif(incoming, "")
            set_[column] = func.coalesce(incoming, table.c[column])
        for column in self.policy.overwrite_columns:
            set_[column] = excluded[column]
        set_["updated_at"] = utcnow()
        return stmt.on_conflict_do_update(index_elements=list(self.policy.key_columns), set_=set_)

    def _get(self, primary_key: Any) -> Any | None:
        session = self._session_factory()
        try:
            return session.get(self.model, primary_key)
        finally:
            session.close()


class SQLAlchemyTournamentRepository(
    _UpsertStore[TournamentRecord],
    EntityRepository[TournamentRecord],
    TournamentLookup,
):
    model = Tournament
    policy = TOURNAMENT_POLICY

    def upsert(self, record: TournamentRecord) -> str:
        row_id = tournament_ref(record.source, record.external_id).render()
        self._upsert_values(
            {
                "id": row_id,
                "source": record.source.name,
                "external_id": record.external_id,
                "name": record.name,
                "season": record.season,
                "birth_year": record.birth_year,
                "group_name": record.group_name,
                "url": record.url,
                "domain": record.domain,
                "start_date": record.start_date,
                "end_date": record.end_date,
                "is_ended": record.is_ended,
            }
        )
        return row_id

    def get_by_external_id(self, source: Source, external_id: str, *scope: str) -> Tournament | None:
        return self._get(tournament_ref(source, external_id).render())

    def list_by_source(self, source: Source) -> list[Tournament]:
        session = self._session_factory()
        try:
            stmt = (
                select(Tournament)
                .where(Tournament.source == source.name)
                .order_by(Tournament.external_id)
            )
            return list(session.scalars(stmt).all())
        finally:
            session.close()


class SQLAlchemyTeamRepository(_UpsertStore[TeamRecord], EntityRepository[TeamRecord]):
    model = Team
    policy = TEAM_POLICY

    def upsert(self, record: TeamRecord) -> str:
        row_id = team_ref(record.source, record.tournament_id, record.external_id).render()
        self._upsert_values(
            {
                "id": row_id,
                "source": record.source.name,
                "external_id": record.external_id,
                "tournament_id": record.tournament_id,
                "name": record.name,
                "city": record.city,
                "url": record.url,
            }
        )
        return row_id

    def get_by_external_id(self, source: Source, external_id: str, *scope: str) -> Team | None:
        if len(scope) != 1:
            raise ValueError("Team lookups need exactly one scope component: the tournament id.")
        return self._get(team_ref(source, scope[0], external_id).render())


class SQLAlchemyPlayerRepository(_UpsertStore[PlayerRecord], EntityRepository[PlayerRecord]):
    model = Player
    policy = PLAYER_POLICY

    def upsert(self, record: PlayerRecord) -> str:
        row_id = player_ref(record.source, record.external_id).render()
        self._upsert_values(
            {
                "id": row_id,
                "source": record.source.name,
                "external_id": record.external_id,
                "full_name": record.full_name,
                "birth_date": record.birth_date,
                "birth_place": record.birth_place,
                "position": record.position,
                "height": record.height,
                "weight": record.weight,
                "handedness": record.handedness,
                "citizenship": record.citizenship,
                "school": record.school,
                "profile_url": record.profile_url,
            }
        )
        return row_id

    def get_by_external_id(self, source: Source, external_id: str, *scope: str) -> Player | None:
        return self._get(player_ref(source, external_id).render())


class SQLAlchemyMatchRepository(_UpsertStore[MatchRecord], EntityRepository[MatchRecord]):
    model = Match
    policy = MATCH_POLICY

    def upsert(self, record: MatchRecord) -> str:
        row_id = match_ref(record.source, record.external_id).render()
        self._upsert_values(
            {
                "id": row_id,
                "source": record.source.name,
                "external_id": record.external_id,
                "tournament_id": record.tournament_id,
                "home_team_id": record.home_team_id,
                "away_team_id": record.away_team_id,
                "scheduled_at": record.scheduled_at,
                "home_score": record.home_score,
                "away_score": record.away_score,
                "status": record.status,
                "venue": record.venue,
                "url": record.url,
            }
        )
        return row_id

    def get_by_external_id(self, source: Source, external_id: str, *scope: str) -> Match | None:
        return self._get(match_ref(source, external_id).render())


class SQLAlchemyPlayerTeamRepository(_UpsertStore[PlayerTeamRecord], LinkRepository[PlayerTeamRecord]):
    model = PlayerTeam
    policy = PLAYER_TEAM_POLICY

    def upsert(self, record: PlayerTeamRecord) -> None:
        self._upsert_values(
            {
                "player_id": record.player_id,
                "team_id": record.team_id,
                "tournament_id": record.tournament_id,
                "number": record.number,
                "position": record.position,
                "role": record.role,
                "season": record.season,
                "started_at": record.started_at,
                "ended_at": record.ended_at,
                "is_active": record.is_active,
            }
        )

    def get(self, player_id: str, team_id: str, tournament_id: str) -> PlayerTeam | None:
        return self._get((player_id, team_id, tournament_id))


class SQLAlchemyPlayerStatisticsRepository(
    _UpsertStore[PlayerStatisticsRecord],
    LinkRepository[PlayerStatisticsRecord],
):
    model = PlayerStatistics
    policy = PLAYER_STATISTICS_POLICY

    def upsert(self, record: PlayerStatisticsRecord) -> None:
        self._upsert_values(
            {
                "player_id": record.player_id,
                "team_id": record.team_id,
                "tournament_id": record.tournament_id,
                "games": record.games,
                "goals": record.goals,
                "assists": record.assists,
                "points": record.points,
                "penalty_minutes": record.penalty_minutes,
                "plus_minus": record.plus_minus,
                "goals_power_play": record.goals_power_play,
                "goals_short_handed": record.goals_short_handed,
                "goals_even_strength": record.goals_even_strength,
            }
        )

    def get(self, player_id: str, team_id: str, tournament_id: str) -> PlayerStatistics | None:
        return self._get((player_id, team_id, tournament_id))


class SQLAlchemyGoalieStatisticsRepository(
    _UpsertStore[GoalieStatisticsRecord],
    LinkRepository[GoalieStatisticsRecord],
):
    model = GoalieStatistics
    policy = GOALIE_STATISTICS_POLICY

    def upsert(self, record: GoalieStatisticsRecord) -> None:
        self._upsert_values(
            {
                "player_id": record.player_id,
                "team_id": record.team_id,
                "tournament_id": record.tournament_id,
                "games": record.games,
                "minutes": record.minutes,
                "goals_against": record.goals_against,
                "shots_against": record.shots_against,
                "save_percentage": record.save_percentage,
                "goals_against_avg": record.goals_against_avg,
                "wins": record.wins,
                "shutouts": record.shutouts,
            }
        )

    def get(self, player_id: str, team_id: str, tournament_id: str) -> GoalieStatistics | None:
        return self._get((player_id, team_id, tournament_id))


@dataclass(frozen=True)
class CrawlRepositories:
    """
    Every repository one orchestrator writes through.
    """

    tournaments: EntityRepository[TournamentRecord]
    teams: EntityRepository[TeamRecord]
    players: EntityRepository[PlayerRecord]
    player_teams: LinkRepository[PlayerTeamRecord]
    player_statistics: LinkRepository[PlayerStatisticsRecord]
    goalie_statistics: LinkRepository[GoalieStatisticsRecord]
    matches: EntityRepository[MatchRecord] | None = None

    @classmethod
    def sqlalchemy(cls, session_factory: SessionFactory = SessionLocal) -> CrawlRepositories:
        return cls(
            tournaments=SQLAlchemyTournamentRepository(session_factory),
            teams=SQLAlchemyTeamRepository(session_factory),
            players=SQLAlchemyPlayerRepository(session_factory),
            player_teams=SQLAlchemyPlayerTeamRepository(session_factory),
            player_statistics=SQLAlchemyPlayerStatisticsRepository(session_factory),
            goalie_statistics=SQLAlchemyGoalieStatisticsRepository(session_factory),
            matches=SQLAlchemyMatchRepository(session_factory),
        )
