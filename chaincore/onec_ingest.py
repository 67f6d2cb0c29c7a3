"""1C ERP boundary — receive-only.

1C pushes products, inventory and transactions to the webhook; chain-core
never calls out to 1C. Any outbound operation raises OutboundSyncDisabled so
callers get a clear 405 instead of a silent no-op.

Row rules:
  - products: upsert by sku; new products need a name
  - inventory: quantity set by (sku, branch_code); both must already exist
  - transactions: counted only, the branches own transaction rows

Rows that fail validation are skipped and reported; the rest of the batch
is still applied.
"""

import logging
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation

from sqlalchemy.orm import Session

from .cache.state_cache import StateCache
from .exceptions import OutboundSyncDisabled, UnsupportedEntity
from .models import Branch, BranchInventory, Product, SyncHistory
from .schemas.sync import SyncHistoryEntry

log = logging.getLogger(__name__)

SUPPORTED_ENTITIES = ("products", "inventory", "transactions")
LAST_SYNC_KEYS = {entity: f"1c_last_{entity}_sync" for entity in SUPPORTED_ENTITIES}


class RowError(ValueError):
    pass


def _decimal(value, field: str):
    if value is None or value == "":
        return None
    try:
        return Decimal(str(value))
    except InvalidOperation:
        raise RowError(f"invalid {field}: {value!r}")


def _apply_product(db: Session, row: dict) -> None:
    sku = str(row.get("sku") or "").strip()
    if not sku:
        raise RowError("missing sku")
    price = _decimal(row.get("price"), "price")
    cost = _decimal(row.get("cost"), "cost")
    product = db.query(Product).filter(Product.sku == sku).first()
    if product is None:
        if not row.get("name"):
            raise RowError(f"new product {sku} has no name")
        product = Product(sku=sku, name=row["name"])
        db.add(product)
    elif row.get("name"):
        product.name = row["name"]
    if "barcode" in row:
        product.barcode = row["barcode"]
    if price is not None:
        product.price = price
    if cost is not None:
        product.cost = cost
    if "is_active" in row:
        product.is_active = bool(row["is_active"])
    product.updated_at = datetime.now(timezone.utc)


def _apply_inventory(db: Session, row: dict) -> None:
    sku = str(row.get("sku") or row.get("product_guid") or "").strip()
    branch_code = str(row.get("branch_code") or "").strip()
    if not sku or not branch_code:
        raise RowError("inventory rows need sku and branch_code")
    quantity = row.get("quantity", row.get("available"))
    try:
        quantity = int(quantity)
    except (TypeError, ValueError):
        raise RowError(f"invalid quantity: {quantity!r}")

    product = db.query(Product).filter(Product.sku == sku).first()
    if product is None:
        raise RowError(f"product not found for sku {sku}")
    branch = db.query(Branch).filter(Branch.code == branch_code).first()
    if branch is None:
        raise RowError(f"branch not found for code {branch_code}")

    inv = (
        db.query(BranchInventory)
        .filter(BranchInventory.product_id == product.id, BranchInventory.branch_id == branch.id)
        .first()
    )
    if inv is None:
        inv = BranchInventory(product_id=product.id, branch_id=branch.id, min_stock=0)
        db.add(inv)
    inv.quantity = quantity
    inv.last_updated = datetime.now(timezone.utc)


def _check_transaction(db: Session, row: dict) -> None:
    if not isinstance(row, dict) or not row:
        raise RowError("empty transaction row")


_APPLIERS = {
    "products": _apply_product,
    "inventory": _apply_inventory,
    "transactions": _check_transaction,
}


async def ingest(
    db: Session,
    cache: StateCache,
    entity_type: str,
    rows: list[dict],
    sync_timestamp: datetime,
) -> dict:
    """Apply one webhook batch. Returns processed count and per-row errors."""
    apply = _APPLIERS.get(entity_type)
    if apply is None:
        raise UnsupportedEntity(f"Unsupported entity type: {entity_type}")

    processed = 0
    errors = []
    for i, row in enumerate(rows):
        try:
            apply(db, row)
            db.flush()
            processed += 1
        except RowError as e:
            errors.append(f"row {i}: {e}")
    db.add(
        SyncHistory(
            integration_type="1c",
            entity_type=entity_type,
            sync_status="completed",
            records_synced=processed,
            error_message="; ".join(errors)[:2000] if errors else None,
            started_at=sync_timestamp,
            completed_at=datetime.now(timezone.utc),
        )
    )
    db.commit()
    await cache.set(LAST_SYNC_KEYS[entity_type], datetime.now(timezone.utc).isoformat())
    log.info(f"1C import {entity_type}: {processed} applied, {len(errors)} skipped")
    return {"entity_type": entity_type, "processed_records": processed, "errors": errors}


async def last_sync_times(cache: StateCache) -> dict:
    return {entity: await cache.get(key) for entity, key in LAST_SYNC_KEYS.items()}


async def clear_sync_cache(cache: StateCache) -> None:
    for key in LAST_SYNC_KEYS.values():
        await cache.delete(key)


async def status(db: Session, cache: StateCache) -> dict:
    history = (
        db.query(SyncHistory)
        .filter(SyncHistory.integration_type == "1c")
        .order_by(SyncHistory.completed_at.desc(), SyncHistory.id.desc())
        .limit(10)
        .all()
    )
    return {
        "integration_status": "passive_receiver",
        "outbound_enabled": False,
        "supported_entities": list(SUPPORTED_ENTITIES),
        "last_imports": await last_sync_times(cache),
        "last_sync_history": [SyncHistoryEntry.model_validate(h) for h in history],
    }


def export_to_onec(entity_type: str, **filters):
    raise OutboundSyncDisabled(
        f"Outbound {entity_type} export is disabled; 1C retrieves data through the API"
    )


def pull_from_onec(entity_type: str, **filters):
    raise OutboundSyncDisabled(f"Pulling {entity_type} from 1C is disabled; 1C pushes to the webhook")
