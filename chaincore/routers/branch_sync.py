"""Branch sync API — sessions, change feed, health push/read, ping.

Every route is called by a branch node and authenticated by its inbound
API key (require_branch_server).
"""

import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..config import Settings
from ..database import get_db
from ..dependencies import get_app_settings, require_branch_server
from ..models import BranchServer
from ..schemas.protocol import (
    HealthReport,
    HealthSnapshot,
    PingBody,
    PongOut,
    SyncCompleteBody,
    SyncProgressBody,
    SyncRequestBody,
    SyncSessionOut,
    SyncStartBody,
)
from ..services import health_service, sync_sessions

router = APIRouter(tags=["branch-sync"])
log = logging.getLogger(__name__)


# ── Sessions ─────────────────────────────────────────────────────────


@router.post("/api/branches/sync/request")
def api_request_sync(
    body: SyncRequestBody,
    server: BranchServer = Depends(require_branch_server),
    db: Session = Depends(get_db),
):
    session, data = sync_sessions.request_sync(db, server.branch_id, body.sync_type, body.since, body.force)
    return {
        "sync_id": session.id,
        "sync_type": session.sync_type,
        "status": session.status,
        "incremental": body.since is not None,
        "records_count": session.records_total,
        "sync_data": data,
        "timestamp": datetime.now(timezone.utc),
    }


@router.get("/api/branches/sync/status/{sync_id}", response_model=SyncSessionOut)
def api_sync_status(
    sync_id: str,
    server: BranchServer = Depends(require_branch_server),
    db: Session = Depends(get_db),
):
    return sync_sessions.to_out(sync_sessions.get_sync(db, sync_id, server.branch_id))


@router.post("/api/branches/sync/start/{sync_id}", response_model=SyncSessionOut)
def api_start_sync(
    sync_id: str,
    body: SyncStartBody | None = None,
    server: BranchServer = Depends(require_branch_server),
    db: Session = Depends(get_db),
):
    total = body.records_total if body else None
    session = sync_sessions.start_sync(db, sync_id, server.branch_id, total)
    return sync_sessions.to_out(session)


@router.post("/api/branches/sync/progress/{sync_id}", response_model=SyncSessionOut)
def api_sync_progress(
    sync_id: str,
    body: SyncProgressBody,
    server: BranchServer = Depends(require_branch_server),
    db: Session = Depends(get_db),
):
    session = sync_sessions.report_progress(
        db, sync_id, body.records_processed, body.records_total, server.branch_id
    )
    return sync_sessions.to_out(session)


@router.post("/api/branches/sync/complete/{sync_id}", response_model=SyncSessionOut)
def api_complete_sync(
    sync_id: str,
    body: SyncCompleteBody,
    server: BranchServer = Depends(require_branch_server),
    db: Session = Depends(get_db),
):
    session = sync_sessions.complete_sync(
        db,
        sync_id,
        body.status,
        records_processed=body.records_processed,
        records_total=body.records_total,
        records_failed=body.records_failed,
        error_message=body.error_message,
        branch_id=server.branch_id,
    )
    return sync_sessions.to_out(session)


@router.get("/api/branches/sync/history", response_model=list[SyncSessionOut])
def api_sync_history(
    sync_type: str | None = None,
    status: str | None = None,
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    server: BranchServer = Depends(require_branch_server),
    db: Session = Depends(get_db),
):
    rows = sync_sessions.sync_history(db, server.branch_id, sync_type, status, limit, offset)
    return [sync_sessions.to_out(r) for r in rows]


@router.get("/api/branches/sync/metrics")
def api_sync_metrics(
    include_breakdown: bool = False,
    server: BranchServer = Depends(require_branch_server),
    db: Session = Depends(get_db),
):
    return sync_sessions.sync_metrics(db, server.branch_id, include_breakdown)


@router.get("/api/branches/sync/updates/{data_type}")
def api_updates(
    data_type: str,
    since: datetime,
    limit: int = Query(100, ge=1, le=1000),
    server: BranchServer = Depends(require_branch_server),
    db: Session = Depends(get_db),
):
    updates = sync_sessions.updates_since(db, server.branch_id, data_type, since, limit)
    return {
        "data_type": data_type,
        "since": since,
        "records_count": len(updates),
        "updates": updates,
        "timestamp": datetime.now(timezone.utc),
    }


# ── Health ───────────────────────────────────────────────────────────


@router.post("/api/branches/sync/health", response_model=HealthSnapshot)
def api_report_health(
    body: HealthReport,
    server: BranchServer = Depends(require_branch_server),
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_app_settings),
):
    health_service.report_health(db, server, body)
    return health_service.latest_health(server, settings)


@router.get("/api/branches/sync/health", response_model=HealthSnapshot)
def api_get_health(
    server: BranchServer = Depends(require_branch_server),
    settings: Settings = Depends(get_app_settings),
):
    return health_service.latest_health(server, settings)


@router.post("/api/branches/sync/ping", response_model=PongOut)
def api_ping(
    body: PingBody | None = None,
    server: BranchServer = Depends(require_branch_server),
    db: Session = Depends(get_db),
):
    body = body or PingBody()
    return health_service.ping(db, server, body.sequence, body.timestamp)
