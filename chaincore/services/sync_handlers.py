"""
services/sync_handlers.py — Entity sync handlers run by the scheduler

One async function per SyncEntityType. Each reads what changed from the
database, pushes it to branches through the BranchDispatcher and returns
the number of records it handled.

Business Rules:
- Products and employees: rows updated since the task's previous run
  (everything on the first run)
- Inventory: rows not refreshed within inventory_freshness_minutes; rows of
  branches that accepted the push get last_updated stamped
- Transactions: completed rows within transaction_window_minutes are counted,
  nothing is pushed
- Branches: probe each branch server, mark online or error
- A task with branch_id only touches that branch; otherwise every online branch
- If targets existed and every push failed, the run fails (BranchPushFailed)

Called by: scheduler.py
Depends on: services/branch_dispatcher.py, models
"""

import logging
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Awaitable, Callable

from ..config import Settings
from ..exceptions import BranchPushFailed
from ..models import BranchInventory, BranchServer, Employee, Product, Transaction
from ..schemas.network import BranchSyncType
from ..schemas.sync import SyncEntityType, SyncTask
from .branch_dispatcher import BranchDispatcher

log = logging.getLogger(__name__)


@dataclass
class SyncContext:
    task: SyncTask
    previous_run: datetime | None
    session_factory: Callable
    dispatcher: BranchDispatcher
    settings: Settings


def _money(value):
    if isinstance(value, Decimal):
        return float(value)
    return value


def _targets(ctx: SyncContext, candidates: list[str] | None = None) -> list[str]:
    if ctx.task.branch_id:
        candidates = [ctx.task.branch_id]
    return ctx.dispatcher.online_branch_ids(candidates)


async def _push(ctx: SyncContext, sync_type: BranchSyncType, payloads: dict[str, object]) -> set[str]:
    """Send one payload per branch. Returns the branch ids that accepted it."""
    if not payloads:
        return set()
    accepted = set()
    for branch_id, payload in payloads.items():
        resp = await ctx.dispatcher.sync_to_branch(branch_id, sync_type, payload)
        if resp.success:
            accepted.add(branch_id)
        else:
            log.warning(f"{sync_type.value} push to branch {branch_id} failed: {resp.error}")
    if not accepted:
        raise BranchPushFailed(f"{sync_type.value} push failed for all {len(payloads)} branches")
    return accepted


# ── Handlers ────────────────────────────────────────────────────────────


async def sync_products(ctx: SyncContext) -> int:
    db = ctx.session_factory()
    try:
        q = db.query(Product).filter(Product.is_active.is_(True))
        if ctx.previous_run:
            q = q.filter(Product.updated_at > ctx.previous_run)
        products = [
            {
                "sku": p.sku,
                "barcode": p.barcode,
                "name": p.name,
                "price": _money(p.price),
                "cost": _money(p.cost),
                "updated_at": p.updated_at.isoformat() if p.updated_at else None,
            }
            for p in q.order_by(Product.id).all()
        ]
    finally:
        db.close()

    if not products:
        return 0
    targets = _targets(ctx)
    if not targets:
        log.info(f"Products sync: {len(products)} changed, no online branches")
        return 0
    await _push(ctx, BranchSyncType.PRODUCTS, {b: {"products": products} for b in targets})
    return len(products)


async def sync_inventory(ctx: SyncContext) -> int:
    cutoff = datetime.now(timezone.utc) - timedelta(minutes=ctx.settings.inventory_freshness_minutes)
    db = ctx.session_factory()
    try:
        q = (
            db.query(BranchInventory, Product.sku)
            .join(Product, Product.id == BranchInventory.product_id)
            .filter(BranchInventory.last_updated < cutoff)
        )
        if ctx.task.branch_id:
            q = q.filter(BranchInventory.branch_id == ctx.task.branch_id)
        by_branch: dict[str, list] = defaultdict(list)
        for inv, sku in q.order_by(BranchInventory.id).all():
            by_branch[inv.branch_id].append(
                {
                    "id": inv.id,
                    "sku": sku,
                    "product_id": inv.product_id,
                    "quantity": inv.quantity,
                    "min_stock": inv.min_stock,
                }
            )
    finally:
        db.close()

    if not by_branch:
        return 0
    targets = _targets(ctx, sorted(by_branch))
    accepted = await _push(
        ctx, BranchSyncType.INVENTORY, {b: {"inventory": by_branch[b]} for b in targets}
    )

    row_ids = [row["id"] for b in accepted for row in by_branch[b]]
    if not row_ids:
        return 0
    db = ctx.session_factory()
    try:
        db.query(BranchInventory).filter(BranchInventory.id.in_(row_ids)).update(
            {BranchInventory.last_updated: datetime.now(timezone.utc)}, synchronize_session=False
        )
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()
    return len(row_ids)


async def sync_transactions(ctx: SyncContext) -> int:
    since = datetime.now(timezone.utc) - timedelta(minutes=ctx.settings.transaction_window_minutes)
    db = ctx.session_factory()
    try:
        q = db.query(Transaction).filter(
            Transaction.status == "completed", Transaction.created_at >= since
        )
        if ctx.task.branch_id:
            q = q.filter(Transaction.branch_id == ctx.task.branch_id)
        return q.count()
    finally:
        db.close()


async def sync_employees(ctx: SyncContext) -> int:
    db = ctx.session_factory()
    try:
        q = db.query(Employee).filter(Employee.status == "active")
        if ctx.previous_run:
            q = q.filter(Employee.updated_at > ctx.previous_run)
        if ctx.task.branch_id:
            q = q.filter(Employee.branch_id == ctx.task.branch_id)
        by_branch: dict[str, list] = defaultdict(list)
        for e in q.order_by(Employee.id).all():
            by_branch[e.branch_id].append(
                {"employee_id": e.employee_id, "name": e.name, "role": e.role, "status": e.status}
            )
    finally:
        db.close()

    if not by_branch:
        return 0
    targets = _targets(ctx, sorted(by_branch))
    accepted = await _push(
        ctx, BranchSyncType.EMPLOYEES, {b: {"employees": by_branch[b]} for b in targets}
    )
    return sum(len(by_branch[b]) for b in accepted)


async def sync_branches(ctx: SyncContext) -> int:
    db = ctx.session_factory()
    try:
        q = db.query(BranchServer.branch_id).filter(BranchServer.is_active.is_(True))
        if ctx.task.branch_id:
            q = q.filter(BranchServer.branch_id == ctx.task.branch_id)
        branch_ids = [row[0] for row in q.distinct().order_by(BranchServer.branch_id).all()]
    finally:
        db.close()

    probed = 0
    for branch_id in branch_ids:
        resp = await ctx.dispatcher.test_connection(branch_id)
        if resp.server_id is None:
            continue
        probed += 1
        db = ctx.session_factory()
        try:
            db.query(BranchServer).filter(BranchServer.id == resp.server_id).update(
                {BranchServer.status: "online" if resp.success else "error"},
                synchronize_session=False,
            )
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()
    return probed


SYNC_HANDLERS: dict[SyncEntityType, Callable[[SyncContext], Awaitable[int]]] = {
    SyncEntityType.PRODUCTS: sync_products,
    SyncEntityType.INVENTORY: sync_inventory,
    SyncEntityType.TRANSACTIONS: sync_transactions,
    SyncEntityType.EMPLOYEES: sync_employees,
    SyncEntityType.BRANCHES: sync_branches,
}
