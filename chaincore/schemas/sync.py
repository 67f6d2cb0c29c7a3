"""
schemas/sync.py — Scheduler task and run-result models

SyncTask is the scheduler's in-memory task instance; TaskCreate validates
add-task input; SyncResult is the immutable outcome of one execution.

Business Rules:
- interval tasks need interval_minutes >= 1
- cron tasks need a valid five-field crontab expression
- manual tasks are never armed, only run on demand
- SyncResult is frozen once created

Called by: scheduler.py, routers/scheduler.py, services/sync_handlers.py
Depends on: pydantic, apscheduler (crontab validation)
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from enum import Enum

from apscheduler.triggers.cron import CronTrigger
from pydantic import BaseModel, ConfigDict, Field, model_validator


class SyncEntityType(str, Enum):
    PRODUCTS = "products"
    INVENTORY = "inventory"
    TRANSACTIONS = "transactions"
    EMPLOYEES = "employees"
    BRANCHES = "branches"


class ScheduleType(str, Enum):
    INTERVAL = "interval"
    CRON = "cron"
    MANUAL = "manual"


class TaskStatus(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    FAILED = "failed"
    COMPLETED = "completed"


class TaskCreate(BaseModel):
    task_type: SyncEntityType
    branch_id: str | None = None
    schedule_type: ScheduleType = ScheduleType.INTERVAL
    interval_minutes: int | None = Field(default=None, ge=1)
    cron_expression: str | None = None
    is_active: bool = True
    priority: int = Field(default=5, ge=0)

    @model_validator(mode="after")
    def _check_schedule(self):
        if self.schedule_type == ScheduleType.INTERVAL and not self.interval_minutes:
            raise ValueError("interval schedules require interval_minutes")
        if self.schedule_type == ScheduleType.CRON:
            if not self.cron_expression:
                raise ValueError("cron schedules require cron_expression")
            CronTrigger.from_crontab(self.cron_expression, timezone=timezone.utc)
        return self


class SyncTask(BaseModel):
    id: str
    task_type: SyncEntityType
    branch_id: str | None = None
    schedule_type: ScheduleType = ScheduleType.INTERVAL
    interval_minutes: int | None = None
    cron_expression: str | None = None
    is_active: bool = True
    priority: int = 5
    status: TaskStatus = TaskStatus.IDLE
    last_run: datetime | None = None
    next_run: datetime | None = None


class SyncResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    task_id: str
    success: bool
    records_processed: int = 0
    error_message: str | None = None
    duration_ms: int = 0
    completed_at: datetime

    @property
    def started_at(self) -> datetime:
        return self.completed_at - timedelta(milliseconds=self.duration_ms)


class NextRun(BaseModel):
    task_id: str
    next_run: datetime


class SchedulerStatus(BaseModel):
    is_running: bool
    total_tasks: int
    active_tasks: int
    running_tasks: int
    next_run_times: list[NextRun] = Field(default_factory=list)


class SyncHistoryEntry(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    task_id: str | None = None
    integration_type: str
    entity_type: str | None = None
    sync_status: str
    records_synced: int = 0
    error_message: str | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
