"""
db/models/failed_job.py

Durable retry queue rows for crawl units that failed with a retryable error.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from db.base import Base, TimestampMixin


class JobType:
    TOURNAMENT = "tournament"
    TEAM = "team"
    PLAYER = "player"

    ALL = frozenset({TOURNAMENT, TEAM, PLAYER})


class FailedJob(Base, TimestampMixin):
    """
    One failed crawl unit.

    Rows whose ``retry_count`` reached ``max_retries`` are kept as dead
    letters until an explicit cleanup removes them.
    """

    __tablename__ = "failed_parsing_jobs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    job_type: Mapped[str] = mapped_column(
        String(32),
        nullable=False,
        comment="tournament, team, player",
    )
    source: Mapped[str] = mapped_column(String(32), nullable=False)
    external_id: Mapped[str] = mapped_column(String(255), nullable=False)
    url: Mapped[str | None] = mapped_column(Text, nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    retry_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    max_retries: Mapped[int] = mapped_column(Integer, nullable=False, default=3)
    next_retry_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        Index("ix_failed_parsing_jobs_source_next_retry_at", "source", "next_retry_at"),
        Index(
            "ix_failed_parsing_jobs_job_type_source_external_id",
            "job_type",
            "source",
            "external_id",
        ),
    )
