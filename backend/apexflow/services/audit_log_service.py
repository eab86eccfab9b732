# Overview: Append-only stock movement log with deterministic identifiers.

"""
Inventory Log Invariants

- One row per stock movement; quantity_change is signed.
- Row ids are derived from what caused the movement, never from the clock:
    sale-{order_id}-{inventory_item_id}        billing deduction
    edit-{order_id}-{inventory_item_id}-{ref}  single-field correction
    bulk-{order_id}-{inventory_item_id}-{ref}  fulfill-all correction
    gr-in-{return_id}-{inventory_item_id}      goods return restock
    gr-out-{removal_id}-{inventory_item_id}    stock room removal
- Writing an id that already exists returns the existing row, so a retried
  reconciliation never logs a movement twice.
- The only delete path is delete_sale_log, used when a billed order is rejected.
- Rejection restores the net of an order's sale, edit and bulk rows per item.
"""

from __future__ import annotations

from flask import current_app

from ..extensions import db
from ..models import InventoryItem, InventoryLog

SALE = "sale"
EDIT = "edit"
BULK = "bulk"
GR_IN = "gr-in"
GR_OUT = "gr-out"

EFFECT_KINDS = {SALE, EDIT, BULK, GR_IN, GR_OUT}


def effect_key(kind: str, source_id: int | str, entity_id: int | str, ref: int | str | None = None) -> str:
    """
    Build the deterministic key for a side effect.

    kind + source document + affected entity (+ an optional reference such as
    the reconciliation intent id) fully determine the key, so the same effect
    always maps to the same row.
    """
    if kind not in EFFECT_KINDS:
        raise ValueError(f"Unknown effect kind '{kind}'")
    key = f"{kind}-{source_id}-{entity_id}"
    if ref is not None:
        key = f"{key}-{ref}"
    return key


def sale_log_id(order_id: int, inventory_item_id: int) -> str:
    return effect_key(SALE, order_id, inventory_item_id)


def record_movement(
    *,
    log_id: str,
    item: InventoryItem,
    quantity_change: int,
    current_stock: int,
    remarks: str,
    shop_name: str | None = None,
    order_id: int | None = None,
) -> InventoryLog:
    """
    Append a stock movement row.

    Does not commit; the caller's transaction owns the write.
    """
    existing = db.session.get(InventoryLog, log_id)
    if existing is not None:
        current_app.logger.debug("Inventory log %s already recorded", log_id)
        return existing

    kind = next((k for k in (GR_IN, GR_OUT, SALE, EDIT, BULK) if log_id.startswith(f"{k}-")), None)
    if kind is None:
        raise ValueError(f"Log id '{log_id}' does not start with a known effect kind")

    log = InventoryLog(
        id=log_id,
        instance_id=item.instance_id,
        item_id=item.id,
        order_id=order_id,
        effect_kind=kind,
        model_name=item.display_name,
        shop_name=shop_name,
        quantity_change=quantity_change,
        current_stock=current_stock,
        remarks=remarks,
    )
    db.session.add(log)
    db.session.flush()
    return log


def delete_sale_log(order_id: int, inventory_item_id: int) -> bool:
    """
    Remove the billing deduction row for one order/item pair.

    Looked up by its deterministic id; returns False when there is nothing
    to delete.
    """
    log = db.session.get(InventoryLog, sale_log_id(order_id, inventory_item_id))
    if log is None:
        return False
    db.session.delete(log)
    db.session.flush()
    return True


def list_logs(instance_id: str | None = None, *, item_id: int | None = None, limit: int = 200) -> list[InventoryLog]:
    q = db.session.query(InventoryLog)
    if instance_id is not None:
        q = q.filter(InventoryLog.instance_id == instance_id)
    if item_id is not None:
        q = q.filter(InventoryLog.item_id == item_id)
    return q.order_by(InventoryLog.created_at.desc(), InventoryLog.id.desc()).limit(limit).all()


def net_order_movements(order_id: int) -> dict[int, int]:
    """
    Signed stock change per inventory item from an order's sale and
    correction rows. Items that were never deducted do not appear.
    """
    rows = (
        db.session.query(InventoryLog.item_id, db.func.sum(InventoryLog.quantity_change))
        .filter(
            InventoryLog.order_id == order_id,
            InventoryLog.effect_kind.in_((SALE, EDIT, BULK)),
            InventoryLog.item_id.isnot(None),
        )
        .group_by(InventoryLog.item_id)
        .order_by(InventoryLog.item_id)
        .all()
    )
    return {item_id: int(total or 0) for item_id, total in rows}
