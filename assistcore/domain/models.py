from __future__ import annotations

from datetime import date, datetime, timezone
from typing import Any
from uuid import uuid4

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Float,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from pgvector.sqlalchemy import Vector

from assistcore.core.config import EMBED_DIM


# JSONB on PostgreSQL, plain JSON elsewhere (SQLite test databases).
JSONType = JSON().with_variant(JSONB(), "postgresql")
# pgvector on PostgreSQL; SQLite stores the vector as a JSON array.
EmbeddingType = Vector(EMBED_DIM).with_variant(JSON(), "sqlite")


def _utc_now() -> datetime:
    # Client-side timestamps keep microsecond ordering on every backend.
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return uuid4().hex


class Base(DeclarativeBase):
    pass


class AccountPlan(Base):
    __tablename__ = "account_plans"

    # Exactly one plan row per account; rows are never hard-deleted.
    account_id: Mapped[str] = mapped_column(String, primary_key=True)
    tier: Mapped[str] = mapped_column(String, nullable=False, default="free")
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    # NULL means unlimited daily calls.
    daily_call_limit: Mapped[int | None] = mapped_column(Integer, nullable=True)
    storage_mb: Mapped[int] = mapped_column(Integer, nullable=False, default=50)
    features_json: Mapped[dict[str, bool]] = mapped_column(JSONType, nullable=False, default=dict)
    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utc_now)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utc_now, onupdate=_utc_now
    )


class UsageCounter(Base):
    __tablename__ = "usage_counters"
    __table_args__ = (Index("ix_usage_counters_usage_date", "usage_date"),)

    account_id: Mapped[str] = mapped_column(String, primary_key=True)
    usage_date: Mapped[date] = mapped_column(Date, primary_key=True)
    total_calls: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utc_now, onupdate=_utc_now
    )


class UsageBreakdown(Base):
    __tablename__ = "usage_breakdowns"
    __table_args__ = (Index("ix_usage_breakdowns_usage_date", "usage_date"),)

    # Advisory per-call-type counts; never exceeds the matching usage_counters total.
    account_id: Mapped[str] = mapped_column(String, primary_key=True)
    usage_date: Mapped[date] = mapped_column(Date, primary_key=True)
    call_type: Mapped[str] = mapped_column(String, primary_key=True)
    calls: Mapped[int] = mapped_column(Integer, nullable=False, default=0)


class Memory(Base):
    __tablename__ = "memories"
    __table_args__ = (
        Index("ix_memories_account_created", "account_id", "created_at"),
        Index("ix_memories_account_type", "account_id", "memory_type"),
    )

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_new_id)
    account_id: Mapped[str] = mapped_column(String, nullable=False)
    memory_type: Mapped[str] = mapped_column(String, nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    embedding: Mapped[list[float]] = mapped_column(EmbeddingType, nullable=False)
    # Stored for future decay/eviction policies; not part of similarity ranking.
    importance_score: Mapped[float] = mapped_column(Float, nullable=False, default=0.5)
    memory_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    metadata_json: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utc_now)


class RiskAlertRecord(Base):
    __tablename__ = "risk_alerts"
    __table_args__ = (
        Index("ix_risk_alerts_account_created", "account_id", "created_at"),
        CheckConstraint("severity BETWEEN 1 AND 5", name="ck_risk_alerts_severity"),
    )

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_new_id)
    account_id: Mapped[str] = mapped_column(String, nullable=False)
    alert_type: Mapped[str] = mapped_column(String, nullable=False)
    title: Mapped[str] = mapped_column(String, nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    severity: Mapped[int] = mapped_column(Integer, nullable=False)
    # Schedule entries are referenced by id only; no foreign key ownership.
    related_schedule_ids: Mapped[list[str]] = mapped_column(JSONType, nullable=False, default=list)
    suggested_action: Mapped[str | None] = mapped_column(Text, nullable=True)
    # Read/dismissed are the only mutable fields and only move false -> true.
    is_read: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_dismissed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    alert_date: Mapped[date] = mapped_column(Date, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utc_now)
