"""
Storage adapters for crawled entities.
"""

from crawler.storage.base import EntityRepository, LinkRepository, TournamentLookup
from crawler.storage.sqlalchemy_storage import (
    CrawlRepositories,
    SQLAlchemyGoalieStatisticsRepository,
    SQLAlchemyMatchRepository,
    SQLAlchemyPlayerRepository,
    SQLAlchemyPlayerStatisticsRepository,
    SQLAlchemyPlayerTeamRepository,
    SQLAlchemyTeamRepository,
    SQLAlchemyTournamentRepository,
)

__all__ = [
    "CrawlRepositories",
    "EntityRepository",
    "LinkRepository",
    "SQLAlchemyGoalieStatisticsRepository",
    "SQLAlchemyMatchRepository",
    "SQLAlchemyPlayerRepository",
    "SQLAlchemyPlayerStatisticsRepository",
    "SQLAlchemyPlayerTeamRepository",
    "SQLAlchemyTeamRepository",
    "SQLAlchemyTournamentRepository",
    "TournamentLookup",
]
