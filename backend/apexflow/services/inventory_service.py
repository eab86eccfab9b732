# Overview: Stock ledger for inventory items; signed deltas, zero floor, portal visibility sync.

from __future__ import annotations

import secrets

from flask import current_app
from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..models import InventoryItem, PortalLink, PortalLinkItem
from .concurrency import lock_for_update

"""
Stock Ledger Invariants

- InventoryItem.quantity is only written by apply_delta.
- Persisted quantity is never below zero; larger deductions are clamped.
- When an item reaches zero it is removed from every portal whitelist.
  That sync is best-effort: it runs in a SAVEPOINT and its failures are
  logged, never raised into the reconciliation that triggered it.
"""


class InventoryError(Exception):
    """Raised for inventory operation errors."""
    pass


def normalize_identity(brand: str, model: str, quality: str) -> tuple[str, str, str]:
    return tuple((part or "").strip().upper() for part in (brand, model, quality))


def identity_key(brand: str, model: str, quality: str) -> str:
    """Upper-cased "BRAND-MODEL-QUALITY" grouping key."""
    return "-".join(normalize_identity(brand, model, quality))


def fetch_inventory(instance_id: str | None = None) -> list[InventoryItem]:
    q = db.session.query(InventoryItem)
    if instance_id is not None:
        q = q.filter(InventoryItem.instance_id == instance_id)
    return q.order_by(InventoryItem.brand, InventoryItem.model, InventoryItem.quality).all()


def create_inventory_item(
    *,
    brand: str,
    model: str,
    quality: str,
    quantity: int = 0,
    price_cents: int = 0,
    instance_id: str | None = None,
    category: str | None = None,
    warehouse: str | None = None,
    location: str | None = None,
) -> InventoryItem:
    if quantity < 0:
        raise InventoryError("quantity must be >= 0")
    if price_cents < 0:
        raise InventoryError("price_cents must be >= 0")

    item = InventoryItem(
        instance_id=instance_id,
        brand=brand.strip(),
        model=model.strip(),
        quality=quality.strip(),
        quantity=quantity,
        price_cents=price_cents,
        category=category,
        warehouse=warehouse,
        location=location,
    )
    db.session.add(item)
    db.session.commit()
    return item


def find_inventory_item(
    instance_id: str | None,
    brand: str,
    model: str,
    quality: str,
) -> InventoryItem | None:
    """
    Case-insensitive, whitespace-trimmed match on the identity tuple.

    Kept for lines that predate inventory_item_id; new lines should carry the id.
    """
    b, m, q_ = normalize_identity(brand, model, quality)
    q = db.session.query(InventoryItem).filter(
        func.upper(func.trim(InventoryItem.brand)) == b,
        func.upper(func.trim(InventoryItem.model)) == m,
        func.upper(func.trim(InventoryItem.quality)) == q_,
    )
    if instance_id is not None:
        q = q.filter(InventoryItem.instance_id == instance_id)
    return q.order_by(InventoryItem.id.asc()).first()


def resolve_inventory_item(line, instance_id: str | None) -> InventoryItem | None:
    """
    Resolve the stock item for an order or return line.

    Prefers the line's inventory_item_id; falls back to the identity tuple.
    Returns None on a miss so the caller can skip just this side effect.
    """
    if line.inventory_item_id:
        item = db.session.get(InventoryItem, line.inventory_item_id)
        if item is not None:
            return item

    item = find_inventory_item(instance_id, line.brand, line.model, line.quality)
    if item is not None:
        current_app.logger.info(
            "Matched %s/%s/%s to inventory item %s by identity tuple",
            line.brand, line.model, line.quality, item.id,
        )
    return item


def apply_delta(item_id: int, quantity_delta: int) -> int:
    """
    Add a signed quantity to an item's stock and return the new quantity.

    Negative deltas remove stock. The result is clamped at zero. Does not
    commit; the caller's transaction owns the write.
    """
    item = lock_for_update(db.session.query(InventoryItem).filter_by(id=item_id)).first()
    if item is None:
        raise InventoryError(f"Inventory item {item_id} not found")

    new_quantity = item.quantity + quantity_delta
    if new_quantity < 0:
        current_app.logger.warning(
            "Clamping stock for item %s at 0 (requested %s)", item_id, new_quantity,
        )
        new_quantity = 0

    item.quantity = new_quantity
    db.session.flush()

    if new_quantity <= 0:
        sync_portal_visibility(item.id)

    return new_quantity


def sync_portal_visibility(item_id: int) -> int:
    """
    Remove an out-of-stock item from every portal whitelist.

    Returns the number of whitelists changed. Never raises.
    """
    try:
        with db.session.begin_nested():
            removed = (
                db.session.query(PortalLinkItem)
                .filter(PortalLinkItem.inventory_item_id == item_id)
                .delete(synchronize_session=False)
            )
    except SQLAlchemyError:
        current_app.logger.exception("Portal visibility sync failed for item %s", item_id)
        return 0

    if removed:
        current_app.logger.info("Item %s auto-removed from %s portal(s) due to zero stock", item_id, removed)
    return removed


# =============================================================================
# PORTAL LINKS
# =============================================================================

def create_portal_link(title: str, *, instance_id: str | None = None, warehouse: str | None = None) -> PortalLink:
    link = PortalLink(
        instance_id=instance_id,
        title=title.strip().upper(),
        code=secrets.token_hex(3).upper(),
        warehouse=warehouse,
        status="Enabled",
    )
    db.session.add(link)
    db.session.commit()
    return link


def allow_item_on_link(link_id: int, inventory_item_id: int) -> PortalLink:
    link = db.session.get(PortalLink, link_id)
    if link is None:
        raise InventoryError(f"Portal link {link_id} not found")
    if db.session.get(InventoryItem, inventory_item_id) is None:
        raise InventoryError(f"Inventory item {inventory_item_id} not found")

    exists = db.session.query(PortalLinkItem).filter_by(
        link_id=link_id, inventory_item_id=inventory_item_id
    ).first()
    if exists is None:
        db.session.add(PortalLinkItem(link_id=link_id, inventory_item_id=inventory_item_id))
        db.session.commit()
    return link


def visible_items_for_link(code: str) -> list[InventoryItem]:
    """Active, whitelisted items for an enabled portal link."""
    link = db.session.query(PortalLink).filter_by(code=code, status="Enabled").first()
    if link is None:
        return []
    return (
        db.session.query(InventoryItem)
        .join(PortalLinkItem, PortalLinkItem.inventory_item_id == InventoryItem.id)
        .filter(PortalLinkItem.link_id == link.id, InventoryItem.status != "Inactive")
        .order_by(InventoryItem.brand, InventoryItem.model)
        .all()
    )
