"""
dependencies.py — Shared FastAPI Dependencies

Collaborators built once in the lifespan live on app.state; routers reach
them through these functions so tests can swap them with
app.dependency_overrides.

Business Rules:
- require_branch_server identifies the calling branch by its inbound key,
  sent as X-API-Key or Authorization: Bearer
- Unknown, missing or deactivated keys get 401

Called by: all routers
Depends on: database, models.network
"""

import logging

from fastapi import Depends, HTTPException, Request
from sqlalchemy.orm import Session

from .cache.state_cache import StateCache
from .config import Settings, get_settings
from .database import get_db
from .models import BranchServer
from .scheduler import SyncScheduler
from .services.branch_dispatcher import BranchDispatcher

log = logging.getLogger(__name__)


def get_scheduler(request: Request) -> SyncScheduler:
    return request.app.state.scheduler


def get_dispatcher(request: Request) -> BranchDispatcher:
    return request.app.state.dispatcher


def get_cache(request: Request) -> StateCache:
    return request.app.state.cache


def get_app_settings() -> Settings:
    return get_settings()


# ── Branch authentication ─────────────────────────────────────────────


def _inbound_key(request: Request) -> str | None:
    key = request.headers.get("x-api-key")
    if key:
        return key.strip()
    auth = request.headers.get("authorization", "")
    if auth.lower().startswith("bearer "):
        return auth[7:].strip() or None
    return None


def require_branch_server(request: Request, db: Session = Depends(get_db)) -> BranchServer:
    """Dependency: the branch server owning the presented key, or 401."""
    key = _inbound_key(request)
    if not key:
        raise HTTPException(401, "Branch API key required")
    server = (
        db.query(BranchServer)
        .filter(BranchServer.api_key == key, BranchServer.is_active.is_(True))
        .first()
    )
    if not server:
        log.warning("Rejected branch call with unknown API key from %s", request.client.host if request.client else "-")
        raise HTTPException(401, "Invalid branch API key")
    return server
