"""Sync models — scheduled tasks, run history, and branch sync sessions."""

from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, Index, Integer, String, Text

from ..database import UTCDateTime
from .base import Base


def _now():
    return datetime.now(timezone.utc)


class SyncTaskRecord(Base):
    """Persisted definition and last known state of one recurring sync task."""

    __tablename__ = "sync_tasks"
    id = Column(String(150), primary_key=True)
    task_type = Column(String(30), nullable=False)
    branch_id = Column(String(64))
    schedule_type = Column(String(20), nullable=False, default="interval")
    interval_minutes = Column(Integer)
    cron_expression = Column(String(100))
    is_active = Column(Boolean, nullable=False, default=True)
    last_run = Column(UTCDateTime)
    next_run = Column(UTCDateTime)
    status = Column(String(20), nullable=False, default="idle")
    priority = Column(Integer, nullable=False, default=5)
    created_at = Column(UTCDateTime, default=_now)

    __table_args__ = (Index("ix_sync_tasks_active", "is_active"),)


class SyncHistory(Base):
    """One row per finished sync run (scheduler) or inbound import (1C)."""

    __tablename__ = "sync_history"
    id = Column(Integer, primary_key=True)
    task_id = Column(String(150))
    integration_type = Column(String(20), nullable=False, default="scheduler")
    entity_type = Column(String(30))
    sync_status = Column(String(20), nullable=False)
    records_synced = Column(Integer, default=0)
    error_message = Column(Text)
    started_at = Column(UTCDateTime)
    completed_at = Column(UTCDateTime)

    __table_args__ = (
        Index("ix_sync_history_task_time", "task_id", "completed_at"),
        Index("ix_sync_history_integration", "integration_type", "completed_at"),
    )


class BranchSyncLog(Base):
    """A negotiated sync session between chain-core and one branch."""

    __tablename__ = "branch_sync_logs"
    id = Column(String(36), primary_key=True)
    branch_id = Column(String(64), nullable=False)
    sync_type = Column(String(30), nullable=False)
    direction = Column(String(20), nullable=False, default="to_branch")
    status = Column(String(20), nullable=False, default="initiated")
    since = Column(UTCDateTime)
    records_processed = Column(Integer, default=0)
    records_total = Column(Integer)
    records_failed = Column(Integer, default=0)
    error_message = Column(Text)
    started_at = Column(UTCDateTime, default=_now)
    completed_at = Column(UTCDateTime)

    __table_args__ = (Index("ix_branch_sync_branch_time", "branch_id", "started_at"),)
