"""
test_sync_sessions.py — Tests for services/sync_sessions.py

Covers: session state machine, recent-session guard, branch scoping,
progress math, history filters, metrics and incremental updates.

Called by: pytest
Depends on: conftest (db_session, test_branch, make_branch)
"""

import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from chaincore.exceptions import InvalidSyncTransition, SyncNotFound, UnsupportedEntity
from chaincore.models import BranchInventory, BranchSyncLog, Employee, Product
from chaincore.schemas.protocol import SessionSyncType
from chaincore.services import sync_sessions as svc
from conftest import make_branch


@pytest.fixture()
def catalog(db_session, test_branch):
    now = datetime.now(timezone.utc)
    p1 = Product(sku="MILK-1", name="Milk", price=Decimal("1.20"), updated_at=now)
    p2 = Product(sku="BREAD-1", name="Bread", price=Decimal("0.80"), updated_at=now - timedelta(days=3))
    db_session.add_all([p1, p2])
    db_session.commit()
    db_session.add_all(
        [
            BranchInventory(branch_id="b1", product_id=p1.id, quantity=12, last_updated=now),
            Employee(branch_id="b1", employee_id="E1", name="Aziza", role="cashier", updated_at=now),
        ]
    )
    db_session.commit()
    return now


# ── request ────────────────────────────────────────────────────────────


def test_request_opens_initiated_session(db_session, catalog):
    session, data = svc.request_sync(db_session, "b1", SessionSyncType.PRODUCTS)
    assert session.status == "initiated"
    assert session.direction == "to_branch"
    assert session.records_total == 2
    assert [p["sku"] for p in data["products"]] == ["MILK-1", "BREAD-1"]
    assert set(data) == {"products"}
    uuid.UUID(session.id)


def test_request_full_collects_every_entity(db_session, catalog):
    _, data = svc.request_sync(db_session, "b1", SessionSyncType.FULL)
    assert set(data) == {"products", "employees", "inventory"}
    assert data["inventory"][0]["sku"] == "MILK-1"


def test_request_since_filters_rows(db_session, catalog):
    _, data = svc.request_sync(db_session, "b1", SessionSyncType.PRODUCTS, since=catalog - timedelta(hours=1))
    assert [p["sku"] for p in data["products"]] == ["MILK-1"]


def test_request_transactions_sends_nothing(db_session, test_branch):
    session, data = svc.request_sync(db_session, "b1", SessionSyncType.TRANSACTIONS)
    assert data == {}
    assert session.records_total == 0


def test_recent_session_blocks_new_request(db_session, catalog):
    svc.request_sync(db_session, "b1", SessionSyncType.PRODUCTS)
    with pytest.raises(InvalidSyncTransition, match="force=true"):
        svc.request_sync(db_session, "b1", SessionSyncType.PRODUCTS)


def test_force_overrides_recent_session(db_session, catalog):
    first, _ = svc.request_sync(db_session, "b1", SessionSyncType.PRODUCTS)
    second, _ = svc.request_sync(db_session, "b1", SessionSyncType.PRODUCTS, force=True)
    assert first.id != second.id


def test_failed_session_does_not_block(db_session, catalog):
    first, _ = svc.request_sync(db_session, "b1", SessionSyncType.PRODUCTS)
    svc.complete_sync(db_session, first.id, "failed", error_message="disk full")
    second, _ = svc.request_sync(db_session, "b1", SessionSyncType.PRODUCTS)
    assert second.status == "initiated"


def test_old_session_does_not_block(db_session, catalog):
    first, _ = svc.request_sync(db_session, "b1", SessionSyncType.PRODUCTS)
    first.started_at = datetime.now(timezone.utc) - timedelta(hours=2)
    db_session.commit()
    svc.request_sync(db_session, "b1", SessionSyncType.PRODUCTS)


def test_other_type_does_not_block(db_session, catalog):
    svc.request_sync(db_session, "b1", SessionSyncType.PRODUCTS)
    svc.request_sync(db_session, "b1", SessionSyncType.EMPLOYEES)


# ── lookup ─────────────────────────────────────────────────────────────


def test_malformed_id_is_not_found(db_session):
    with pytest.raises(SyncNotFound):
        svc.get_sync(db_session, "not-a-uuid")


def test_unknown_id_is_not_found(db_session):
    with pytest.raises(SyncNotFound):
        svc.get_sync(db_session, str(uuid.uuid4()))


def test_foreign_branch_cannot_see_session(db_session, catalog):
    make_branch(db_session, "b2", "YUN02")
    session, _ = svc.request_sync(db_session, "b1", SessionSyncType.PRODUCTS)
    with pytest.raises(SyncNotFound):
        svc.get_sync(db_session, session.id, branch_id="b2")
    assert svc.get_sync(db_session, session.id, branch_id="b1").id == session.id


# ── lifecycle ──────────────────────────────────────────────────────────


def test_full_lifecycle(db_session, catalog):
    session, _ = svc.request_sync(db_session, "b1", SessionSyncType.PRODUCTS)
    svc.start_sync(db_session, session.id, records_total=10)
    s = svc.report_progress(db_session, session.id, records_processed=4)
    assert s.status == "in_progress"
    assert svc.progress_of(s) == 40

    s = svc.complete_sync(db_session, session.id, "completed", records_processed=10, records_failed=1)
    out = svc.to_out(s)
    assert out.status == "completed"
    assert out.progress == 100
    assert out.records_failed == 1
    assert out.completed_at is not None
    assert out.duration_seconds is not None and out.duration_seconds >= 0


def test_initiated_may_complete_directly(db_session, catalog):
    session, _ = svc.request_sync(db_session, "b1", SessionSyncType.PRODUCTS)
    s = svc.complete_sync(db_session, session.id, "completed", records_processed=2)
    assert s.status == "completed"


def test_start_twice_rejected(db_session, catalog):
    session, _ = svc.request_sync(db_session, "b1", SessionSyncType.PRODUCTS)
    svc.start_sync(db_session, session.id)
    with pytest.raises(InvalidSyncTransition):
        svc.start_sync(db_session, session.id)


def test_terminal_session_is_frozen(db_session, catalog):
    session, _ = svc.request_sync(db_session, "b1", SessionSyncType.PRODUCTS)
    svc.complete_sync(db_session, session.id, "failed", error_message="boom")
    with pytest.raises(InvalidSyncTransition):
        svc.report_progress(db_session, session.id, records_processed=1)
    with pytest.raises(InvalidSyncTransition):
        svc.complete_sync(db_session, session.id, "completed")
    assert svc.progress_of(svc.get_sync(db_session, session.id)) == 0


def test_completion_needs_terminal_status(db_session, catalog):
    session, _ = svc.request_sync(db_session, "b1", SessionSyncType.PRODUCTS)
    with pytest.raises(InvalidSyncTransition):
        svc.complete_sync(db_session, session.id, "in_progress")


def test_progress_capped_and_zero_without_total():
    s = BranchSyncLog(status="in_progress", records_processed=15, records_total=10)
    assert svc.progress_of(s) == 100
    s.records_total = None
    assert svc.progress_of(s) == 0


# ── reads ──────────────────────────────────────────────────────────────


def _session(db, sync_type, status, started_at, completed_at=None, branch_id="b1"):
    row = BranchSyncLog(
        id=str(uuid.uuid4()),
        branch_id=branch_id,
        sync_type=sync_type,
        status=status,
        started_at=started_at,
        completed_at=completed_at,
    )
    db.add(row)
    db.commit()
    return row


def test_history_filters_and_orders(db_session, test_branch):
    now = datetime.now(timezone.utc)
    a = _session(db_session, "products", "completed", now - timedelta(hours=3))
    b = _session(db_session, "inventory", "failed", now - timedelta(hours=2))
    c = _session(db_session, "products", "initiated", now - timedelta(hours=1))

    assert [r.id for r in svc.sync_history(db_session, "b1")] == [c.id, b.id, a.id]
    assert [r.id for r in svc.sync_history(db_session, "b1", sync_type="products")] == [c.id, a.id]
    assert [r.id for r in svc.sync_history(db_session, "b1", status="failed")] == [b.id]
    assert [r.id for r in svc.sync_history(db_session, "b1", limit=1, offset=1)] == [b.id]
    assert svc.sync_history(db_session, "other") == []


def test_metrics(db_session, test_branch):
    now = datetime.now(timezone.utc)
    _session(db_session, "products", "completed", now - timedelta(minutes=10), now - timedelta(minutes=9))
    _session(db_session, "products", "completed", now - timedelta(minutes=5), now - timedelta(minutes=2))
    _session(db_session, "inventory", "failed", now - timedelta(minutes=4), now - timedelta(minutes=4))
    _session(db_session, "employees", "in_progress", now)

    m = svc.sync_metrics(db_session, "b1", include_breakdown=True)

    assert m["total_syncs"] == 4
    assert m["successful_syncs"] == 2
    assert m["failed_syncs"] == 1
    assert m["active_syncs"] == 1
    assert m["average_sync_time"] == pytest.approx((60 + 180 + 0) / 3)
    assert m["last_successful_sync"] == now - timedelta(minutes=5)
    by_type = {row["sync_type"]: row for row in m["by_sync_type"]}
    assert by_type["products"] == {"sync_type": "products", "total": 2, "completed": 2, "failed": 0}
    assert by_type["inventory"]["failed"] == 1


def test_metrics_empty_branch(db_session, test_branch):
    m = svc.sync_metrics(db_session, "b1")
    assert m["total_syncs"] == 0
    assert m["average_sync_time"] is None
    assert m["last_successful_sync"] is None
    assert "by_sync_type" not in m


def test_updates_since(db_session, catalog):
    since = catalog - timedelta(hours=1)
    assert [p["sku"] for p in svc.updates_since(db_session, "b1", "products", since)] == ["MILK-1"]
    assert [e["employee_id"] for e in svc.updates_since(db_session, "b1", "employees", since)] == ["E1"]
    assert [i["quantity"] for i in svc.updates_since(db_session, "b1", "inventory", since)] == [12]
    assert svc.updates_since(db_session, "b1", "products", catalog - timedelta(days=7), limit=1)[0]["sku"] == "MILK-1"


def test_updates_since_unknown_type(db_session, test_branch):
    with pytest.raises(UnsupportedEntity):
        svc.updates_since(db_session, "b1", "transactions", datetime.now(timezone.utc))
