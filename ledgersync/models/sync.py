"""Sync models — per-cycle logs and the resumable sync window."""

from datetime import datetime, timezone

from sqlalchemy import JSON, Column, DateTime, Float, Index, Integer, String

from .base import Base


class SyncState(Base):
    """Last successful sync per (source, account); the next cycle's window start."""

    __tablename__ = "sync_state"
    id = Column(Integer, primary_key=True)
    source = Column(String(50), nullable=False)
    account_id = Column(String(100), nullable=False)
    last_synced_at = Column(DateTime)
    updated_at = Column(
        DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        Index("ix_sync_state_source_account", "source", "account_id", unique=True),
    )


class SyncLog(Base):
    """Log of each sync cycle."""

    __tablename__ = "sync_logs"
    id = Column(Integer, primary_key=True)
    source = Column(String(50), nullable=False)
    status = Column(String(50), nullable=False)
    started_at = Column(DateTime, nullable=False)
    finished_at = Column(DateTime)
    duration_seconds = Column(Float)
    row_counts = Column(JSON)
    errors = Column(JSON)
    created_at = Column(DateTime, default=lambda: datetime.now(timezone.utc))

    __table_args__ = (Index("ix_sync_source_time", "source", "started_at"),)
