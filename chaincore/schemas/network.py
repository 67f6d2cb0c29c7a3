"""
schemas/network.py — Branch dispatcher request/response models

Business Rules:
- Every dispatcher call returns a BranchResponse, never raises
- status is the HTTP status, or 0 when no HTTP response arrived
- error_code names the failure class (BranchServerNotFound, Timeout, ...)

Called by: services/branch_dispatcher.py, routers/network.py
Depends on: pydantic
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field


class BranchSyncType(str, Enum):
    PRODUCTS = "products"
    EMPLOYEES = "employees"
    INVENTORY = "inventory"
    PRICES = "prices"


HttpMethod = Literal["GET", "POST", "PUT", "PATCH", "DELETE"]


class BranchRequest(BaseModel):
    branch_id: str
    endpoint: str
    method: HttpMethod = "GET"
    data: Any = None
    timeout_ms: int | None = Field(default=None, ge=1)


class BranchResponse(BaseModel):
    success: bool
    status: int
    branch_id: str
    data: Any = None
    error: str | None = None
    error_code: str | None = None
    server_id: int | None = None
    response_time_ms: int | None = None


class SyncToBranchesRequest(BaseModel):
    sync_type: str
    data: Any
    branch_ids: list[str] | None = None


class HealthLogItem(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    source_type: str
    source_id: str
    target_type: str
    target_id: str
    connection_status: str
    response_time_ms: int | None = None
    error_message: str | None = None
    checked_at: datetime | None = None
