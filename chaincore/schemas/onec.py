"""
schemas/onec.py — 1C webhook payload

1C pushes batches of rows per entity. Rows stay loosely typed here; the
ingest module validates the fields each entity needs and skips bad rows.

Called by: routers/onec.py
Depends on: pydantic
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field


class OneCWebhook(BaseModel):
    entity_type: str
    data: list[dict[str, Any]] = Field(default_factory=list)
    sync_timestamp: datetime
