"""Network API — probe branch servers, push to branches, read the health log."""

import logging

from fastapi import APIRouter, Depends, Query

from ..dependencies import get_dispatcher
from ..schemas.network import BranchResponse, HealthLogItem, SyncToBranchesRequest
from ..services.branch_dispatcher import BranchDispatcher

router = APIRouter(tags=["network"])
log = logging.getLogger(__name__)


@router.post("/api/network/branches/{branch_id}/test-connection", response_model=BranchResponse)
async def api_test_connection(branch_id: str, dispatcher: BranchDispatcher = Depends(get_dispatcher)):
    return await dispatcher.test_connection(branch_id)


@router.get("/api/network/branches/{branch_id}/status", response_model=BranchResponse)
async def api_branch_status(branch_id: str, dispatcher: BranchDispatcher = Depends(get_dispatcher)):
    return await dispatcher.get_branch_status(branch_id)


@router.post("/api/network/sync-to-branches")
async def api_sync_to_branches(
    body: SyncToBranchesRequest, dispatcher: BranchDispatcher = Depends(get_dispatcher)
):
    summary = await dispatcher.sync_to_branches(body.sync_type, body.data, body.branch_ids)
    log.info(
        f"Pushed {body.sync_type} to {summary['total']} branches: "
        f"{summary['successful']} ok, {summary['failed']} failed"
    )
    return summary


@router.get("/api/network/health-logs", response_model=list[HealthLogItem])
def api_health_logs(
    limit: int = Query(50, ge=1, le=500),
    branch_id: str | None = None,
    dispatcher: BranchDispatcher = Depends(get_dispatcher),
):
    return dispatcher.recent_health_logs(limit, branch_id)
