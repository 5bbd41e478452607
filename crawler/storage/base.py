"""
Storage layer interfaces for crawled entities.

Orchestrators depend only on these signatures, never on SQL.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Generic, TypeVar

from crawler.identity import Source

R = TypeVar("R")


class EntityRepository(ABC, Generic[R]):
    """
    Upsert-only store for one identified entity kind.
    """

    @abstractmethod
    def upsert(self, record: R) -> str:
        """
        Insert or merge ``record`` and return its rendered row id.
        """

    @abstractmethod
    def get_by_external_id(self, source: Source, external_id: str, *scope: str) -> Any | None:
        """
        Return the stored row, or None when it was never crawled.
        """

    def exists(self, source: Source, external_id: str, *scope: str) -> bool:
        return self.get_by_external_id(source, external_id, *scope) is not None


class LinkRepository(ABC, Generic[R]):
    """
    Upsert-only store for rows keyed by (player, team, tournament).
    """

    @abstractmethod
    def upsert(self, record: R) -> None:
        """
        Insert or merge one link row.
        """


class TournamentLookup(ABC):
    """
    Read access needed by passes that revisit already-crawled tournaments.
    """

    @abstractmethod
    def list_by_source(self, source: Source) -> list[Any]:
        """
        Return every stored tournament of ``source``.
        """
