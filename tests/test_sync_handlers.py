"""
test_sync_handlers.py — Tests for services/sync_handlers.py

Each handler runs against the in-memory DB with a MockTransport-backed
dispatcher; assertions look at what was pushed and what was stamped.
"""

import json
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import httpx
import pytest

from chaincore.exceptions import BranchPushFailed
from chaincore.models import BranchInventory, BranchServer, Employee, Product, Transaction
from chaincore.schemas.sync import SyncEntityType, SyncTask
from chaincore.services.sync_handlers import (
    SyncContext,
    sync_branches,
    sync_employees,
    sync_inventory,
    sync_products,
    sync_transactions,
)
from conftest import TestSessionLocal, make_branch


def _ctx(dispatcher, settings, task_type, branch_id=None, previous_run=None):
    task = SyncTask(id=f"{task_type.value}_test", task_type=task_type, branch_id=branch_id, interval_minutes=5)
    return SyncContext(
        task=task,
        previous_run=previous_run,
        session_factory=TestSessionLocal,
        dispatcher=dispatcher,
        settings=settings,
    )


class Recorder:
    """MockTransport handler that records pushes and answers per host."""

    def __init__(self, failing_hosts=()):
        self.pushes = []
        self.failing_hosts = set(failing_hosts)

    def __call__(self, request: httpx.Request):
        body = json.loads(request.content) if request.content else None
        self.pushes.append((request.url.host, request.url.path, body))
        if request.url.host in self.failing_hosts:
            return httpx.Response(500)
        return httpx.Response(200, json={"ok": True})


def _product(db, sku, updated_at, price="9.99", active=True):
    p = Product(sku=sku, name=f"Item {sku}", price=Decimal(price), is_active=active, updated_at=updated_at)
    db.add(p)
    db.commit()
    return p


# ── Products ───────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_products_pushes_changes_since_previous_run(db_session, online_server, make_dispatcher, test_settings):
    now = datetime.now(timezone.utc)
    _product(db_session, "OLD-1", now - timedelta(days=2))
    _product(db_session, "NEW-1", now)
    _product(db_session, "OFF-1", now, active=False)
    rec = Recorder()

    count = await sync_products(
        _ctx(make_dispatcher(rec), test_settings, SyncEntityType.PRODUCTS, previous_run=now - timedelta(hours=1))
    )

    assert count == 1
    assert len(rec.pushes) == 1
    host, path, body = rec.pushes[0]
    assert path == "/api/chain-core/products/sync"
    assert [p["sku"] for p in body["products"]] == ["NEW-1"]
    assert body["products"][0]["price"] == 9.99


@pytest.mark.asyncio
async def test_products_first_run_sends_everything(db_session, online_server, make_dispatcher, test_settings):
    now = datetime.now(timezone.utc)
    _product(db_session, "A", now - timedelta(days=30))
    _product(db_session, "B", now)
    count = await sync_products(_ctx(make_dispatcher(Recorder()), test_settings, SyncEntityType.PRODUCTS))
    assert count == 2


@pytest.mark.asyncio
async def test_products_nothing_changed_skips_push(db_session, online_server, make_dispatcher, test_settings):
    rec = Recorder()
    assert await sync_products(_ctx(make_dispatcher(rec), test_settings, SyncEntityType.PRODUCTS)) == 0
    assert rec.pushes == []


@pytest.mark.asyncio
async def test_products_all_pushes_failed_raises(db_session, online_server, make_dispatcher, test_settings):
    _product(db_session, "A", datetime.now(timezone.utc))
    rec = Recorder(failing_hosts={"10.0.0.5"})
    with pytest.raises(BranchPushFailed):
        await sync_products(_ctx(make_dispatcher(rec), test_settings, SyncEntityType.PRODUCTS))


@pytest.mark.asyncio
async def test_products_partial_failure_still_succeeds(db_session, online_server, make_dispatcher, test_settings):
    make_branch(db_session, "b2", "YUN02", ip_address="10.0.2.2")
    _product(db_session, "A", datetime.now(timezone.utc))
    rec = Recorder(failing_hosts={"10.0.2.2"})
    count = await sync_products(_ctx(make_dispatcher(rec), test_settings, SyncEntityType.PRODUCTS))
    assert count == 1
    assert {h for h, _, _ in rec.pushes} == {"10.0.0.5", "10.0.2.2"}


@pytest.mark.asyncio
async def test_products_scoped_to_one_branch(db_session, online_server, make_dispatcher, test_settings):
    make_branch(db_session, "b2", "YUN02", ip_address="10.0.2.2")
    _product(db_session, "A", datetime.now(timezone.utc))
    rec = Recorder()
    await sync_products(_ctx(make_dispatcher(rec), test_settings, SyncEntityType.PRODUCTS, branch_id="b2"))
    assert [h for h, _, _ in rec.pushes] == ["10.0.2.2"]


# ── Inventory ──────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_inventory_pushes_stale_rows_and_stamps_them(db_session, online_server, make_dispatcher, test_settings):
    now = datetime.now(timezone.utc)
    p1 = _product(db_session, "A", now)
    p2 = _product(db_session, "B", now)
    stale = BranchInventory(branch_id="b1", product_id=p1.id, quantity=4, last_updated=now - timedelta(hours=3))
    fresh = BranchInventory(branch_id="b1", product_id=p2.id, quantity=8, last_updated=now)
    db_session.add_all([stale, fresh])
    db_session.commit()
    rec = Recorder()

    count = await sync_inventory(_ctx(make_dispatcher(rec), test_settings, SyncEntityType.INVENTORY))

    assert count == 1
    _, path, body = rec.pushes[0]
    assert path == "/api/chain-core/inventory"
    assert [row["sku"] for row in body["inventory"]] == ["A"]
    db_session.expire_all()
    assert db_session.get(BranchInventory, stale.id).last_updated > now - timedelta(minutes=1)


@pytest.mark.asyncio
async def test_inventory_failed_branch_not_stamped(db_session, online_server, make_dispatcher, test_settings):
    make_branch(db_session, "b2", "YUN02", ip_address="10.0.2.2")
    now = datetime.now(timezone.utc)
    p = _product(db_session, "A", now)
    old = now - timedelta(hours=3)
    ok_row = BranchInventory(branch_id="b1", product_id=p.id, quantity=1, last_updated=old)
    bad_row = BranchInventory(branch_id="b2", product_id=p.id, quantity=1, last_updated=old)
    db_session.add_all([ok_row, bad_row])
    db_session.commit()

    count = await sync_inventory(
        _ctx(make_dispatcher(Recorder(failing_hosts={"10.0.2.2"})), test_settings, SyncEntityType.INVENTORY)
    )

    assert count == 1
    db_session.expire_all()
    assert db_session.get(BranchInventory, ok_row.id).last_updated > old
    assert db_session.get(BranchInventory, bad_row.id).last_updated == old


# ── Transactions ───────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_transactions_counts_recent_completed(db_session, online_server, make_dispatcher, test_settings):
    now = datetime.now(timezone.utc)
    db_session.add_all(
        [
            Transaction(branch_id="b1", total_amount=Decimal("10"), status="completed", created_at=now),
            Transaction(branch_id="b1", total_amount=Decimal("5"), status="voided", created_at=now),
            Transaction(branch_id="b1", total_amount=Decimal("7"), status="completed", created_at=now - timedelta(days=1)),
        ]
    )
    db_session.commit()
    rec = Recorder()
    count = await sync_transactions(_ctx(make_dispatcher(rec), test_settings, SyncEntityType.TRANSACTIONS))
    assert count == 1
    assert rec.pushes == []


# ── Employees ──────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_employees_grouped_per_branch(db_session, online_server, make_dispatcher, test_settings):
    make_branch(db_session, "b2", "YUN02", ip_address="10.0.2.2")
    now = datetime.now(timezone.utc)
    db_session.add_all(
        [
            Employee(branch_id="b1", employee_id="E1", name="Aziza", role="cashier", updated_at=now),
            Employee(branch_id="b2", employee_id="E2", name="Bekzod", role="manager", updated_at=now),
            Employee(branch_id="b2", employee_id="E3", name="Dilnoza", status="terminated", updated_at=now),
        ]
    )
    db_session.commit()
    rec = Recorder()

    count = await sync_employees(_ctx(make_dispatcher(rec), test_settings, SyncEntityType.EMPLOYEES))

    assert count == 2
    sent = {host: [e["employee_id"] for e in body["employees"]] for host, _, body in rec.pushes}
    assert sent == {"10.0.0.5": ["E1"], "10.0.2.2": ["E2"]}


# ── Branches ───────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_branches_probe_sets_status(db_session, online_server, make_dispatcher, test_settings):
    down = make_branch(db_session, "b2", "YUN02", status="online", ip_address="10.0.2.2")
    rec = Recorder(failing_hosts={"10.0.2.2"})

    count = await sync_branches(_ctx(make_dispatcher(rec), test_settings, SyncEntityType.BRANCHES))

    assert count == 2
    assert {path for _, path, _ in rec.pushes} == {"/api/health"}
    db_session.expire_all()
    assert db_session.get(BranchServer, online_server.id).status == "online"
    assert db_session.get(BranchServer, down.id).status == "error"


@pytest.mark.asyncio
async def test_branches_probe_revives_offline_server(db_session, make_dispatcher, test_settings):
    server = make_branch(db_session, "b3", "SER03", status="offline")
    await sync_branches(_ctx(make_dispatcher(Recorder()), test_settings, SyncEntityType.BRANCHES))
    db_session.expire_all()
    assert db_session.get(BranchServer, server.id).status == "online"
