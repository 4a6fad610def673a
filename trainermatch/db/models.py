"""Database models for TrainerMatch caches and the expert roster"""

from datetime import datetime
from typing import Any

from sqlalchemy import (
    DateTime,
    Float,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func

from trainermatch.db.database import Base


class OverviewCache(Base):
    """Generated overview text keyed by the profile hash"""
    __tablename__ = "overview_cache"

    cache_key: Mapped[str] = mapped_column(String(64), primary_key=True)
    client_data: Mapped[dict[str, Any]] = mapped_column(JSONB, default=dict, nullable=False)
    overview_text: Mapped[str] = mapped_column(Text, nullable=False)
    hit_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False
    )
    last_accessed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True
    )

    __table_args__ = (
        Index("idx_overview_cache_created_at", "created_at"),
    )


class MatchCache(Base):
    """Per-expert score and reasons keyed by (overview hash, expert id)"""
    __tablename__ = "match_cache"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    overview_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    expert_id: Mapped[int] = mapped_column(Integer, nullable=False)
    match_score: Mapped[int] = mapped_column(Integer, nullable=False)
    reason_1: Mapped[str] = mapped_column(Text, default="", nullable=False)
    reason_2: Mapped[str] = mapped_column(Text, default="", nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False
    )

    __table_args__ = (
        UniqueConstraint("overview_hash", "expert_id", name="uq_match_cache_hash_expert"),
        Index("idx_match_cache_created_at", "created_at"),
    )


class ExpertRecord(Base):
    """Trainer roster row (read-only for the matching pipeline)"""
    __tablename__ = "experts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    specialization: Mapped[str] = mapped_column(String(255), default="", nullable=False)
    certifications: Mapped[str] = mapped_column(Text, default="", nullable=False)
    years_of_experience: Mapped[str | None] = mapped_column(String(50), nullable=True)
    overview: Mapped[str] = mapped_column(Text, default="", nullable=False)
    client_ratings: Mapped[float | None] = mapped_column(Float, nullable=True)
    monthly_budget: Mapped[str | None] = mapped_column(String(100), nullable=True)
    availability: Mapped[str | None] = mapped_column(String(255), nullable=True)
    cooperation: Mapped[str | None] = mapped_column(String(100), nullable=True)
