"""
services/sync_sessions.py — Branch-initiated sync sessions

A branch asks chain-core for data (request), reports that it started
applying it (start / progress) and closes the session (complete). Each
session is one branch_sync_logs row.

Business Rules:
- State machine: initiated → in_progress → completed | failed;
  initiated may also jump straight to completed | failed
- Terminal sessions accept no further transitions (409)
- A branch only sees its own sessions; a foreign, unknown or malformed id
  is reported as not found
- A non-failed session of the same type started within the last hour
  blocks a new request unless force is set (409)
- progress: 100 when completed, 0 when failed, else processed/total

Called by: routers/branch_sync.py
Depends on: models (BranchSyncLog, Product, Employee, BranchInventory)
"""

import logging
import uuid
from datetime import datetime, timedelta, timezone

from sqlalchemy import case, func
from sqlalchemy.orm import Session

from ..exceptions import InvalidSyncTransition, SyncNotFound, UnsupportedEntity
from ..models import BranchInventory, BranchSyncLog, Employee, Product
from ..schemas.protocol import SessionStatus, SessionSyncType, SyncSessionOut

log = logging.getLogger(__name__)

RECENT_SYNC_WINDOW = timedelta(hours=1)

_TRANSITIONS = {
    SessionStatus.INITIATED: {SessionStatus.IN_PROGRESS, SessionStatus.COMPLETED, SessionStatus.FAILED},
    SessionStatus.IN_PROGRESS: {SessionStatus.IN_PROGRESS, SessionStatus.COMPLETED, SessionStatus.FAILED},
    SessionStatus.COMPLETED: set(),
    SessionStatus.FAILED: set(),
}

UPDATE_TYPES = ("products", "employees", "inventory")


def _now():
    return datetime.now(timezone.utc)


def _transition(session: BranchSyncLog, target: SessionStatus) -> None:
    current = SessionStatus(session.status)
    if target not in _TRANSITIONS[current]:
        raise InvalidSyncTransition(f"Cannot move sync {session.id} from {current.value} to {target.value}")
    session.status = target.value


def progress_of(session: BranchSyncLog) -> int:
    if session.status == SessionStatus.COMPLETED.value:
        return 100
    if session.status == SessionStatus.FAILED.value:
        return 0
    if session.records_total:
        return min(100, int((session.records_processed or 0) * 100 / session.records_total))
    return 0


def to_out(session: BranchSyncLog) -> SyncSessionOut:
    duration = None
    if session.started_at and session.completed_at:
        duration = (session.completed_at - session.started_at).total_seconds()
    return SyncSessionOut(
        sync_id=session.id,
        branch_id=session.branch_id,
        sync_type=session.sync_type,
        direction=session.direction,
        status=session.status,
        since=session.since,
        records_processed=session.records_processed or 0,
        records_total=session.records_total,
        records_failed=session.records_failed or 0,
        error_message=session.error_message,
        started_at=session.started_at,
        completed_at=session.completed_at,
        duration_seconds=duration,
        progress=progress_of(session),
    )


# ── Payload ─────────────────────────────────────────────────────────────


def _product_rows(db: Session, since: datetime | None, limit: int | None = None) -> list[dict]:
    q = db.query(Product).filter(Product.is_active.is_(True))
    if since:
        q = q.filter(Product.updated_at >= since)
    q = q.order_by(Product.updated_at.desc(), Product.id)
    if limit:
        q = q.limit(limit)
    return [
        {
            "id": p.id,
            "sku": p.sku,
            "barcode": p.barcode,
            "name": p.name,
            "price": float(p.price) if p.price is not None else None,
            "cost": float(p.cost) if p.cost is not None else None,
            "is_active": p.is_active,
            "updated_at": p.updated_at,
        }
        for p in q.all()
    ]


def _employee_rows(db: Session, branch_id: str, since: datetime | None, limit: int | None = None) -> list[dict]:
    q = db.query(Employee).filter(Employee.branch_id == branch_id, Employee.status == "active")
    if since:
        q = q.filter(Employee.updated_at >= since)
    q = q.order_by(Employee.updated_at.desc(), Employee.id)
    if limit:
        q = q.limit(limit)
    return [
        {
            "employee_id": e.employee_id,
            "name": e.name,
            "role": e.role,
            "status": e.status,
            "updated_at": e.updated_at,
        }
        for e in q.all()
    ]


def _inventory_rows(db: Session, branch_id: str, since: datetime | None, limit: int | None = None) -> list[dict]:
    q = (
        db.query(BranchInventory, Product)
        .join(Product, Product.id == BranchInventory.product_id)
        .filter(BranchInventory.branch_id == branch_id)
    )
    if since:
        q = q.filter(BranchInventory.last_updated >= since)
    q = q.order_by(BranchInventory.last_updated.desc(), BranchInventory.id)
    if limit:
        q = q.limit(limit)
    return [
        {
            "product_id": inv.product_id,
            "sku": p.sku,
            "barcode": p.barcode,
            "product_name": p.name,
            "quantity": inv.quantity,
            "min_stock": inv.min_stock,
            "last_updated": inv.last_updated,
        }
        for inv, p in q.all()
    ]


def collect_sync_data(db: Session, branch_id: str, sync_type: SessionSyncType, since: datetime | None) -> dict:
    """Data a branch needs for one session. Transactions flow branch → chain, so none are sent."""
    data = {}
    if sync_type in (SessionSyncType.PRODUCTS, SessionSyncType.FULL):
        data["products"] = _product_rows(db, since)
    if sync_type in (SessionSyncType.EMPLOYEES, SessionSyncType.FULL):
        data["employees"] = _employee_rows(db, branch_id, since)
    if sync_type in (SessionSyncType.INVENTORY, SessionSyncType.FULL):
        data["inventory"] = _inventory_rows(db, branch_id, since)
    return data


# ── Session lifecycle ───────────────────────────────────────────────────


def request_sync(
    db: Session,
    branch_id: str,
    sync_type: SessionSyncType,
    since: datetime | None = None,
    force: bool = False,
) -> tuple[BranchSyncLog, dict]:
    """Open a session and return it with the data to apply."""
    if not force:
        recent = (
            db.query(BranchSyncLog)
            .filter(
                BranchSyncLog.branch_id == branch_id,
                BranchSyncLog.sync_type == sync_type.value,
                BranchSyncLog.status != SessionStatus.FAILED.value,
                BranchSyncLog.started_at >= _now() - RECENT_SYNC_WINDOW,
            )
            .order_by(BranchSyncLog.started_at.desc())
            .first()
        )
        if recent:
            raise InvalidSyncTransition(
                f"Recent sync operation found ({recent.id}). Use force=true to override."
            )

    data = collect_sync_data(db, branch_id, sync_type, since)
    session = BranchSyncLog(
        id=str(uuid.uuid4()),
        branch_id=branch_id,
        sync_type=sync_type.value,
        direction="to_branch",
        status=SessionStatus.INITIATED.value,
        since=since,
        records_total=sum(len(rows) for rows in data.values()),
        started_at=_now(),
    )
    db.add(session)
    db.commit()
    log.info(f"Sync {session.id} requested by branch {branch_id}: {sync_type.value}, {session.records_total} records")
    return session, data


def get_sync(db: Session, sync_id: str, branch_id: str | None = None) -> BranchSyncLog:
    try:
        uuid.UUID(sync_id)
    except (TypeError, ValueError):
        raise SyncNotFound(sync_id)
    q = db.query(BranchSyncLog).filter(BranchSyncLog.id == sync_id)
    if branch_id is not None:
        q = q.filter(BranchSyncLog.branch_id == branch_id)
    session = q.first()
    if not session:
        raise SyncNotFound(sync_id)
    return session


def start_sync(db: Session, sync_id: str, branch_id: str | None = None, records_total: int | None = None) -> BranchSyncLog:
    session = get_sync(db, sync_id, branch_id)
    if session.status != SessionStatus.INITIATED.value:
        raise InvalidSyncTransition(f"Sync {sync_id} is already {session.status}")
    _transition(session, SessionStatus.IN_PROGRESS)
    if records_total is not None:
        session.records_total = records_total
    db.commit()
    return session


def report_progress(
    db: Session,
    sync_id: str,
    records_processed: int,
    records_total: int | None = None,
    branch_id: str | None = None,
) -> BranchSyncLog:
    session = get_sync(db, sync_id, branch_id)
    _transition(session, SessionStatus.IN_PROGRESS)
    session.records_processed = records_processed
    if records_total is not None:
        session.records_total = records_total
    db.commit()
    return session


def complete_sync(
    db: Session,
    sync_id: str,
    status: str,
    records_processed: int = 0,
    records_total: int | None = None,
    records_failed: int = 0,
    error_message: str | None = None,
    branch_id: str | None = None,
) -> BranchSyncLog:
    target = SessionStatus(status)
    if target not in (SessionStatus.COMPLETED, SessionStatus.FAILED):
        raise InvalidSyncTransition(f"Completion status must be completed or failed, got {status}")
    session = get_sync(db, sync_id, branch_id)
    _transition(session, target)
    session.records_processed = records_processed
    if records_total is not None:
        session.records_total = records_total
    session.records_failed = records_failed
    session.error_message = error_message
    session.completed_at = _now()
    db.commit()
    log.info(f"Sync {sync_id} {target.value}: {records_processed} processed, {records_failed} failed")
    return session


# ── Reads ───────────────────────────────────────────────────────────────


def sync_history(
    db: Session,
    branch_id: str,
    sync_type: str | None = None,
    status: str | None = None,
    limit: int = 50,
    offset: int = 0,
) -> list[BranchSyncLog]:
    q = db.query(BranchSyncLog).filter(BranchSyncLog.branch_id == branch_id)
    if sync_type:
        q = q.filter(BranchSyncLog.sync_type == sync_type)
    if status:
        q = q.filter(BranchSyncLog.status == status)
    return q.order_by(BranchSyncLog.started_at.desc(), BranchSyncLog.id).offset(offset).limit(limit).all()


def sync_metrics(db: Session, branch_id: str, include_breakdown: bool = False) -> dict:
    rows = db.query(BranchSyncLog).filter(BranchSyncLog.branch_id == branch_id).all()
    completed = [r for r in rows if r.status == SessionStatus.COMPLETED.value]
    durations = [
        (r.completed_at - r.started_at).total_seconds() for r in rows if r.completed_at and r.started_at
    ]
    metrics = {
        "total_syncs": len(rows),
        "successful_syncs": len(completed),
        "failed_syncs": sum(1 for r in rows if r.status == SessionStatus.FAILED.value),
        "active_syncs": sum(
            1 for r in rows if r.status in (SessionStatus.INITIATED.value, SessionStatus.IN_PROGRESS.value)
        ),
        "average_sync_time": sum(durations) / len(durations) if durations else None,
        "last_successful_sync": max((r.started_at for r in completed), default=None),
    }
    if include_breakdown:
        breakdown = (
            db.query(
                BranchSyncLog.sync_type,
                func.count(BranchSyncLog.id),
                func.sum(case((BranchSyncLog.status == "completed", 1), else_=0)),
                func.sum(case((BranchSyncLog.status == "failed", 1), else_=0)),
            )
            .filter(BranchSyncLog.branch_id == branch_id)
            .group_by(BranchSyncLog.sync_type)
            .order_by(BranchSyncLog.sync_type)
            .all()
        )
        metrics["by_sync_type"] = [
            {"sync_type": t, "total": total, "completed": int(ok or 0), "failed": int(bad or 0)}
            for t, total, ok, bad in breakdown
        ]
    return metrics


def updates_since(db: Session, branch_id: str, data_type: str, since: datetime, limit: int = 100) -> list[dict]:
    if data_type == "products":
        return _product_rows(db, since, limit)
    if data_type == "employees":
        return _employee_rows(db, branch_id, since, limit)
    if data_type == "inventory":
        return _inventory_rows(db, branch_id, since, limit)
    raise UnsupportedEntity(f"Unsupported data type: {data_type}")
