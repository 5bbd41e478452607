"""create crawl entity tables and failed_parsing_jobs

Revision ID: 20261019_0001
Revises:
Create Date: 2026-10-19 09:00:00
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "20261019_0001"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    ]


def _link_keys() -> list[sa.Column]:
    return [
        sa.Column("player_id", sa.String(length=255), nullable=False),
        sa.Column("team_id", sa.String(length=255), nullable=False),
        sa.Column("tournament_id", sa.String(length=255), nullable=False),
    ]


def _link_constraints(table: str) -> list[sa.Constraint]:
    return [
        sa.ForeignKeyConstraint(
            ["player_id"],
            ["players.id"],
            name=f"fk_{table}_player_id_players",
            ondelete="CASCADE",
        ),
        sa.ForeignKeyConstraint(
            ["team_id"],
            ["teams.id"],
            name=f"fk_{table}_team_id_teams",
            ondelete="CASCADE",
        ),
        sa.ForeignKeyConstraint(
            ["tournament_id"],
            ["tournaments.id"],
            name=f"fk_{table}_tournament_id_tournaments",
            ondelete="CASCADE",
        ),
        sa.PrimaryKeyConstraint("player_id", "team_id", "tournament_id", name=f"pk_{table}"),
    ]


def upgrade() -> None:
    op.create_table(
        "tournaments",
        sa.Column("id", sa.String(length=255), nullable=False),
        sa.Column("source", sa.String(length=32), nullable=False),
        sa.Column("external_id", sa.String(length=128), nullable=False),
        sa.Column("name", sa.String(length=512), nullable=False),
        sa.Column("season", sa.String(length=32), nullable=True),
        sa.Column("birth_year", sa.Integer(), nullable=True),
        sa.Column("group_name", sa.String(length=255), nullable=True),
        sa.Column("url", sa.Text(), nullable=True),
        sa.Column("domain", sa.String(length=255), nullable=True),
        sa.Column("start_date", sa.Date(), nullable=True),
        sa.Column("end_date", sa.Date(), nullable=True),
        sa.Column("is_ended", sa.Boolean(), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id", name="pk_tournaments"),
    )
    op.create_index(
        "ix_tournaments_source_external_id",
        "tournaments",
        ["source", "external_id"],
        unique=True,
    )

    op.create_table(
        "teams",
        sa.Column("id", sa.String(length=255), nullable=False),
        sa.Column("source", sa.String(length=32), nullable=False),
        sa.Column("external_id", sa.String(length=128), nullable=False),
        sa.Column("tournament_id", sa.String(length=255), nullable=False),
        sa.Column("name", sa.String(length=512), nullable=False),
        sa.Column("city", sa.String(length=255), nullable=True),
        sa.Column("url", sa.Text(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(
            ["tournament_id"],
            ["tournaments.id"],
            name="fk_teams_tournament_id_tournaments",
            ondelete="CASCADE",
        ),
        sa.PrimaryKeyConstraint("id", name="pk_teams"),
    )
    op.create_index("ix_teams_tournament_id", "teams", ["tournament_id"], unique=False)
    op.create_index("ix_teams_source_external_id", "teams", ["source", "external_id"], unique=False)

    op.create_table(
        "players",
        sa.Column("id", sa.String(length=255), nullable=False),
        sa.Column("source", sa.String(length=32), nullable=False),
        sa.Column("external_id", sa.String(length=128), nullable=False),
        sa.Column("full_name", sa.String(length=512), nullable=False),
        sa.Column("birth_date", sa.Date(), nullable=True),
        sa.Column("birth_place", sa.String(length=255), nullable=True),
        sa.Column("position", sa.String(length=64), nullable=True),
        sa.Column("height", sa.Integer(), nullable=True),
        sa.Column("weight", sa.Integer(), nullable=True),
        sa.Column("handedness", sa.String(length=32), nullable=True),
        sa.Column("citizenship", sa.String(length=128), nullable=True),
        sa.Column("school", sa.String(length=255), nullable=True),
        sa.Column("profile_url", sa.Text(), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id", name="pk_players"),
    )
    op.create_index(
        "ix_players_source_external_id",
        "players",
        ["source", "external_id"],
        unique=True,
    )
    op.create_index("ix_players_full_name", "players", ["full_name"], unique=False)

    op.create_table(
        "matches",
        sa.Column("id", sa.String(length=255), nullable=False),
        sa.Column("source", sa.String(length=32), nullable=False),
        sa.Column("external_id", sa.String(length=128), nullable=False),
        sa.Column("tournament_id", sa.String(length=255), nullable=False),
        sa.Column("home_team_id", sa.String(length=255), nullable=True),
        sa.Column("away_team_id", sa.String(length=255), nullable=True),
        sa.Column("scheduled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("home_score", sa.Integer(), nullable=True),
        sa.Column("away_score", sa.Integer(), nullable=True),
        sa.Column("status", sa.String(length=32), nullable=True),
        sa.Column("venue", sa.String(length=255), nullable=True),
        sa.Column("url", sa.Text(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(
            ["tournament_id"],
            ["tournaments.id"],
            name="fk_matches_tournament_id_tournaments",
            ondelete="CASCADE",
        ),
        sa.PrimaryKeyConstraint("id", name="pk_matches"),
    )
    op.create_index("ix_matches_tournament_id", "matches", ["tournament_id"], unique=False)
    op.create_index("ix_matches_scheduled_at", "matches", ["scheduled_at"], unique=False)

    op.create_table(
        "player_teams",
        *_link_keys(),
        sa.Column("number", sa.Integer(), nullable=True),
        sa.Column("position", sa.String(length=64), nullable=True),
        sa.Column("role", sa.String(length=64), nullable=True),
        sa.Column("season", sa.String(length=32), nullable=True),
        sa.Column("started_at", sa.Date(), nullable=True),
        sa.Column("ended_at", sa.Date(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=True),
        *_timestamps(),
        *_link_constraints("player_teams"),
    )

    op.create_table(
        "player_statistics",
        *_link_keys(),
        sa.Column("games", sa.Integer(), nullable=False),
        sa.Column("goals", sa.Integer(), nullable=False),
        sa.Column("assists", sa.Integer(), nullable=False),
        sa.Column("points", sa.Integer(), nullable=False),
        sa.Column("penalty_minutes", sa.Integer(), nullable=False),
        sa.Column("plus_minus", sa.Integer(), nullable=True),
        sa.Column("goals_power_play", sa.Integer(), nullable=True),
        sa.Column("goals_short_handed", sa.Integer(), nullable=True),
        sa.Column("goals_even_strength", sa.Integer(), nullable=True),
        *_timestamps(),
        *_link_constraints("player_statistics"),
    )

    op.create_table(
        "goalie_statistics",
        *_link_keys(),
        sa.Column("games", sa.Integer(), nullable=False),
        sa.Column("minutes", sa.Integer(), nullable=True),
        sa.Column("goals_against", sa.Integer(), nullable=False),
        sa.Column("shots_against", sa.Integer(), nullable=True),
        sa.Column("save_percentage", sa.Float(), nullable=True),
        sa.Column("goals_against_avg", sa.Float(), nullable=True),
        sa.Column("wins", sa.Integer(), nullable=True),
        sa.Column("shutouts", sa.Integer(), nullable=True),
        *_timestamps(),
        *_link_constraints("goalie_statistics"),
    )

    op.create_table(
        "failed_parsing_jobs",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("job_type", sa.String(length=32), nullable=False, comment="tournament, team, player"),
        sa.Column("source", sa.String(length=32), nullable=False),
        sa.Column("external_id", sa.String(length=255), nullable=False),
        sa.Column("url", sa.Text(), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("retry_count", sa.Integer(), nullable=False),
        sa.Column("max_retries", sa.Integer(), nullable=False),
        sa.Column("next_retry_at", sa.DateTime(timezone=True), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id", name="pk_failed_parsing_jobs"),
    )
    op.create_index(
        "ix_failed_parsing_jobs_source_next_retry_at",
        "failed_parsing_jobs",
        ["source", "next_retry_at"],
        unique=False,
    )
    op.create_index(
        "ix_failed_parsing_jobs_job_type_source_external_id",
        "failed_parsing_jobs",
        ["job_type", "source", "external_id"],
        unique=False,
    )


def downgrade() -> None:
    op.drop_index("ix_failed_parsing_jobs_job_type_source_external_id", table_name="failed_parsing_jobs")
    op.drop_index("ix_failed_parsing_jobs_source_next_retry_at", table_name="failed_parsing_jobs")
    op.drop_table("failed_parsing_jobs")
    op.drop_table("goalie_statistics")
    op.drop_table("player_statistics")
    op.drop_table("player_teams")
    op.drop_index("ix_matches_scheduled_at", table_name="matches")
    op.drop_index("ix_matches_tournament_id", table_name="matches")
    op.drop_table("matches")
    op.drop_index("ix_players_full_name", table_name="players")
    op.drop_index("ix_players_source_external_id", table_name="players")
    op.drop_table("players")
    op.drop_index("ix_teams_source_external_id", table_name="teams")
    op.drop_index("ix_teams_tournament_id", table_name="teams")
    op.drop_table("teams")
    op.drop_index("ix_tournaments_source_external_id", table_name="tournaments")
    op.drop_table("tournaments")
