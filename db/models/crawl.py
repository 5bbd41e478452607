"""
db/models/crawl.py

Normalized hockey entities shared by every source crawler.

Row ids are rendered entity references (``spb:123``, ``msk:45-6-7:89``), so
the primary key itself is the idempotency key for upserts.
"""

from __future__ import annotations

from datetime import date, datetime

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column

from db.base import Base, TimestampMixin

_ID_LENGTH = 255


class Tournament(Base, TimestampMixin):
    __tablename__ = "tournaments"

    id: Mapped[str] = mapped_column(String(_ID_LENGTH), primary_key=True)
    source: Mapped[str] = mapped_column(String(32), nullable=False)
    external_id: Mapped[str] = mapped_column(String(128), nullable=False)
    name: Mapped[str] = mapped_column(String(512), nullable=False)
    season: Mapped[str | None] = mapped_column(String(32), nullable=True)
    birth_year: Mapped[int | None] = mapped_column(Integer, nullable=True)
    group_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    url: Mapped[str | None] = mapped_column(Text, nullable=True)
    domain: Mapped[str | None] = mapped_column(String(255), nullable=True)
    start_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    end_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    is_ended: Mapped[bool | None] = mapped_column(Boolean, nullable=True)

    __table_args__ = (
        Index("ix_tournaments_source_external_id", "source", "external_id", unique=True),
    )


class Team(Base, TimestampMixin):
    __tablename__ = "teams"

    id: Mapped[str] = mapped_column(String(_ID_LENGTH), primary_key=True)
    source: Mapped[str] = mapped_column(String(32), nullable=False)
    external_id: Mapped[str] = mapped_column(String(128), nullable=False)
    tournament_id: Mapped[str] = mapped_column(
        String(_ID_LENGTH),
        ForeignKey("tournaments.id", ondelete="CASCADE"),
        nullable=False,
    )
    name: Mapped[str] = mapped_column(String(512), nullable=False)
    city: Mapped[str | None] = mapped_column(String(255), nullable=True)
    url: Mapped[str | None] = mapped_column(Text, nullable=True)

    __table_args__ = (
        Index("ix_teams_tournament_id", "tournament_id"),
        Index("ix_teams_source_external_id", "source", "external_id"),
    )


class Player(Base, TimestampMixin):
    __tablename__ = "players"

    id: Mapped[str] = mapped_column(String(_ID_LENGTH), primary_key=True)
    source: Mapped[str] = mapped_column(String(32), nullable=False)
    external_id: Mapped[str] = mapped_column(String(128), nullable=False)
    full_name: Mapped[str] = mapped_column(String(512), nullable=False)
    birth_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    birth_place: Mapped[str | None] = mapped_column(String(255), nullable=True)
    position: Mapped[str | None] = mapped_column(String(64), nullable=True)
    height: Mapped[int | None] = mapped_column(Integer, nullable=True)
    weight: Mapped[int | None] = mapped_column(Integer, nullable=True)
    handedness: Mapped[str | None] = mapped_column(String(32), nullable=True)
    citizenship: Mapped[str | None] = mapped_column(String(128), nullable=True)
    school: Mapped[str | None] = mapped_column(String(255), nullable=True)
    profile_url: Mapped[str | None] = mapped_column(Text, nullable=True)

    __table_args__ = (
        Index("ix_players_source_external_id", "source", "external_id", unique=True),
        Index("ix_players_full_name", "full_name"),
    )


class Match(Base, TimestampMixin):
    __tablename__ = "matches"

    id: Mapped[str] = mapped_column(String(_ID_LENGTH), primary_key=True)
    source: Mapped[str] = mapped_column(String(32), nullable=False)
    external_id: Mapped[str] = mapped_column(String(128), nullable=False)
    tournament_id: Mapped[str] = mapped_column(
        String(_ID_LENGTH),
        ForeignKey("tournaments.id", ondelete="CASCADE"),
        nullable=False,
    )
    home_team_id: Mapped[str | None] = mapped_column(String(_ID_LENGTH), nullable=True)
    away_team_id: Mapped[str | None] = mapped_column(String(_ID_LENGTH), nullable=True)
    scheduled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    home_score: Mapped[int | None] = mapped_column(Integer, nullable=True)
    away_score: Mapped[int | None] = mapped_column(Integer, nullable=True)
    status: Mapped[str | None] = mapped_column(String(32), nullable=True)
    venue: Mapped[str | None] = mapped_column(String(255), nullable=True)
    url: Mapped[str | None] = mapped_column(Text, nullable=True)

    __table_args__ = (
        Index("ix_matches_tournament_id", "tournament_id"),
        Index("ix_matches_scheduled_at", "scheduled_at"),
    )


class PlayerTeam(Base, TimestampMixin):
    __tablename__ = "player_teams"

    player_id: Mapped[str] = mapped_column(
        String(_ID_LENGTH),
        ForeignKey("players.id", ondelete="CASCADE"),
        primary_key=True,
    )
    team_id: Mapped[str] = mapped_column(
        String(_ID_LENGTH),
        ForeignKey("teams.id", ondelete="CASCADE"),
        primary_key=True,
    )
    tournament_id: Mapped[str] = mapped_column(
        String(_ID_LENGTH),
        ForeignKey("tournaments.id", ondelete="CASCADE"),
        primary_key=True,
    )
    number: Mapped[int | None] = mapped_column(Integer, nullable=True)
    position: Mapped[str | None] = mapped_column(String(64), nullable=True)
    role: Mapped[str | None] = mapped_column(String(64), nullable=True)
    season: Mapped[str | None] = mapped_column(String(32), nullable=True)
    started_at: Mapped[date | None] = mapped_column(Date, nullable=True)
    ended_at: Mapped[date | None] = mapped_column(Date, nullable=True)
    is_active: Mapped[bool | None] = mapped_column(Boolean, nullable=True)


class PlayerStatistics(Base, TimestampMixin):
    __tablename__ = "player_statistics"

    player_id: Mapped[str] = mapped_column(
        String(_ID_LENGTH),
        ForeignKey("players.id", ondelete="CASCADE"),
        primary_key=True,
    )
    team_id: Mapped[str] = mapped_column(
        String(_ID_LENGTH),
        ForeignKey("teams.id", ondelete="CASCADE"),
        primary_key=True,
    )
    tournament_id: Mapped[str] = mapped_column(
        String(_ID_LENGTH),
        ForeignKey("tournaments.id", ondelete="CASCADE"),
        primary_key=True,
    )
    games: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    goals: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    assists: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    points: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    penalty_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    plus_minus: Mapped[int | None] = mapped_column(Integer, nullable=True)
    goals_power_play: Mapped[int | None] = mapped_column(Integer, nullable=True)
    goals_short_handed: Mapped[int | None] = mapped_column(Integer, nullable=True)
    goals_even_strength: Mapped[int | None] = mapped_column(Integer, nullable=True)


class GoalieStatistics(Base, TimestampMixin):
    __tablename__ = "goalie_statistics"

    player_id: Mapped[str] = mapped_column(
        String(_ID_LENGTH),
        ForeignKey("players.id", ondelete="CASCADE"),
        primary_key=True,
    )
    team_id: Mapped[str] = mapped_column(
        String(_ID_LENGTH),
        ForeignKey("teams.id", ondelete="CASCADE"),
        primary_key=True,
    )
    tournament_id: Mapped[str] = mapped_column(
        String(_ID_LENGTH),
        ForeignKey("tournaments.id", ondelete="CASCADE"),
        primary_key=True,
    )
    games: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    minutes: Mapped[int | None] = mapped_column(Integer, nullable=True)
    goals_against: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    shots_against: Mapped[int | None] = mapped_column(Integer, nullable=True)
    save_percentage: Mapped[float | None] = mapped_column(Float, nullable=True)
    goals_against_avg: Mapped[float | None] = mapped_column(Float, nullable=True)
    wins: Mapped[int | None] = mapped_column(Integer, nullable=True)
    shutouts: Mapped[int | None] = mapped_column(Integer, nullable=True)
