"""
schemas/protocol.py — Branch sync-session and health protocol bodies

Business Rules:
- Sessions move initiated → in_progress → completed | failed
- A completion call must carry a terminal status
- Health status is one of online, offline, maintenance, error

Called by: routers/branch_sync.py, services/sync_sessions.py, services/health_service.py
Depends on: pydantic
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, Field


class SessionSyncType(str, Enum):
    PRODUCTS = "products"
    INVENTORY = "inventory"
    EMPLOYEES = "employees"
    TRANSACTIONS = "transactions"
    FULL = "full"


class SessionStatus(str, Enum):
    INITIATED = "initiated"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


class BranchHealthStatus(str, Enum):
    ONLINE = "online"
    OFFLINE = "offline"
    MAINTENANCE = "maintenance"
    ERROR = "error"


class SyncRequestBody(BaseModel):
    sync_type: SessionSyncType
    since: datetime | None = None
    force: bool = False


class SyncStartBody(BaseModel):
    records_total: int | None = Field(default=None, ge=0)


class SyncProgressBody(BaseModel):
    records_processed: int = Field(ge=0)
    records_total: int | None = Field(default=None, ge=0)


class SyncCompleteBody(BaseModel):
    status: Literal["completed", "failed"]
    records_processed: int = Field(default=0, ge=0)
    records_total: int | None = Field(default=None, ge=0)
    records_failed: int = Field(default=0, ge=0)
    error_message: str | None = Field(default=None, max_length=2000)


class SyncSessionOut(BaseModel):
    sync_id: str
    branch_id: str
    sync_type: str
    direction: str
    status: str
    since: datetime | None = None
    records_processed: int = 0
    records_total: int | None = None
    records_failed: int = 0
    error_message: str | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    duration_seconds: float | None = None
    progress: int = 0


class HealthReport(BaseModel):
    status: BranchHealthStatus
    system_info: dict[str, Any] | None = None
    network_info: dict[str, Any] | None = None


class HealthSnapshot(BaseModel):
    branch_id: str
    server_name: str
    status: str
    last_update: datetime | None = None
    stale: bool
    system_info: dict[str, Any] = Field(default_factory=dict)
    network_info: dict[str, Any] = Field(default_factory=dict)


class PingBody(BaseModel):
    timestamp: datetime | None = None
    sequence: int = 1


class PongOut(BaseModel):
    pong: bool = True
    server_time: datetime
    sequence: int
    round_trip_ms: int
