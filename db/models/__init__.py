"""
Model package exports.

Import all SQLAlchemy models here so metadata registration and Alembic
autogeneration work without extra imports.
"""

from db.models.crawl import (
    GoalieStatistics,
    Match,
    Player,
    PlayerStatistics,
    PlayerTeam,
    Team,
    Tournament,
)
from db.models.failed_job import FailedJob, JobType

__all__ = [
    "FailedJob",
    "GoalieStatistics",
    "JobType",
    "Match",
    "Player",
    "PlayerStatistics",
    "PlayerTeam",
    "Team",
    "Tournament",
]
