"""1C API — inbound webhook and integration status. Outbound sync answers 405."""

import logging

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from .. import onec_ingest
from ..cache.state_cache import StateCache
from ..database import get_db
from ..dependencies import get_cache
from ..schemas.onec import OneCWebhook

router = APIRouter(tags=["1c"])
log = logging.getLogger(__name__)


@router.post("/api/1c/webhook")
async def api_onec_webhook(
    body: OneCWebhook,
    db: Session = Depends(get_db),
    cache: StateCache = Depends(get_cache),
):
    return await onec_ingest.ingest(db, cache, body.entity_type, body.data, body.sync_timestamp)


@router.get("/api/1c/status")
async def api_onec_status(db: Session = Depends(get_db), cache: StateCache = Depends(get_cache)):
    return await onec_ingest.status(db, cache)


@router.post("/api/1c/sync")
def api_onec_sync(entity_type: str = "products"):
    onec_ingest.pull_from_onec(entity_type)


@router.get("/api/1c/export/{entity}")
def api_onec_export(entity: str):
    onec_ingest.export_to_onec(entity)
