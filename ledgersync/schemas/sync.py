"""
schemas/sync.py — Sync control requests and responses

Called by: routers/sync.py
Depends on: pydantic
"""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field


class SyncStartRequest(BaseModel):
    interval_minutes: float | None = Field(default=None, gt=0, le=1440)


class SyncResultOut(BaseModel):
    success: bool = False
    fetched: int = 0
    created: int = 0
    updated: int = 0
    failed: int = 0
    side_effect_failures: int = 0
    journals_refreshed: int = 0
    error: str | None = None
    started_at: datetime | None = None
    finished_at: datetime | None = None


class SyncRunResponse(BaseModel):
    skipped: bool = False
    result: SyncResultOut | None = None


class SyncStatusResponse(BaseModel, extra="allow"):
    state: str
    is_syncing: bool
    last_synced_at: str | None = None
    last_error: str | None = None
    sync_disabled_reason: str | None = None
    scheduled: bool = False
    interval_minutes: float | None = None
    next_run_at: str | None = None
    stats: dict = Field(default_factory=dict)
