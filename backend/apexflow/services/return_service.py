# Overview: Goods returns (GR); customer credit, restock, stock-room projection and removals.

"""
Goods Return Service

WHY: A customer sends goods back. They get credit immediately and the pieces
go back into stock. Returned goods also sit in a "stock room" until they are
shipped out to the manufacturer or a repair vendor.

DESIGN PRINCIPLES:
- A return is final on creation: credit, restock, logs and the 'Return'
  ledger entry commit together
- DIRECT mode credits an amount with no lines and no stock movement
- The stock room is never stored; it is folded from return lines minus
  removals every time it is read
- Deleting a return removes the record only. Credit and stock stay; that
  gap has to be reconciled by hand
"""

from __future__ import annotations

from collections import defaultdict

from flask import current_app

from ..extensions import db
from ..models import GoodsReturn, GoodsReturnLine, InventoryItem, Order, StockRoomRemoval
from apexflow.time_utils import to_utc_z
from . import audit_log_service, customer_service, inventory_service
from .concurrency import run_with_retry
from .order_feed import publish_order_change
from .order_service import assign_order_number


class ReturnError(Exception):
    """Raised for goods return operation errors."""
    pass


MODE_LINES = "LINES"
MODE_DIRECT = "DIRECT"

RETURN_STATUS = "Return"
REMOVAL_REMARKS = "Physical stock sent to manufacturer/repairs"


def _clean_lines(lines: list[dict]) -> list[dict]:
    cleaned = []
    for raw in lines or []:
        qty = int(raw.get("quantity") or 0)
        if qty <= 0:
            continue
        price = int(raw.get("unit_price_cents") or 0)
        if price < 0:
            raise ReturnError("unit_price_cents must be >= 0")
        brand, model, quality = (str(raw.get(k) or "").strip() for k in ("brand", "model", "quality"))
        if not (brand and model and quality):
            raise ReturnError("Each return line needs brand, model and quality")
        cleaned.append({
            "inventory_item_id": raw.get("inventory_item_id"),
            "brand": brand,
            "model": model,
            "quality": quality,
            "category": raw.get("category"),
            "warehouse": raw.get("warehouse"),
            "quantity": qty,
            "unit_price_cents": price,
        })
    return cleaned


def finalize_return(
    customer_id: int,
    lines: list[dict] | None = None,
    *,
    direct_amount_cents: int | None = None,
    remarks: str | None = None,
    actor_name: str | None = None,
) -> tuple[GoodsReturn, list[str]]:
    """
    Record a goods return and credit the customer.

    Lines with a non-positive quantity are dropped. With direct_amount_cents
    the return is amount-only and lines are ignored.

    Returns:
        (goods return, status messages)

    Raises:
        ReturnError: nothing to return, or bad amounts
        CustomerError: customer not found
    """
    if direct_amount_cents is not None:
        if direct_amount_cents <= 0:
            raise ReturnError("direct_amount_cents must be > 0")
        mode = MODE_DIRECT
        cleaned = []
        total_credit = direct_amount_cents
    else:
        mode = MODE_LINES
        cleaned = _clean_lines(lines)
        if not cleaned:
            raise ReturnError("A goods return needs at least one line with quantity > 0")
        total_credit = sum(line["quantity"] * line["unit_price_cents"] for line in cleaned)

    def _op():
        customer = customer_service.get_customer(customer_id)
        messages: list[str] = []

        entry = Order(
            order_number="PENDING",
            instance_id=customer.instance_id,
            status=RETURN_STATUS,
            customer_id=customer.id,
            customer_name=customer.name,
            customer_subtext=customer.city,
            warehouse="Direct Adjustment" if mode == MODE_DIRECT else "Main GR Dept",
            invoice_status="Paid",
            remarks=remarks if mode == MODE_DIRECT else None,
            total_amount_cents=total_credit,
        )
        db.session.add(entry)
        number = assign_order_number(entry, "GR")

        goods_return = GoodsReturn(
            instance_id=customer.instance_id,
            return_number=number,
            customer_id=customer.id,
            customer_name=customer.name,
            ledger_order_id=entry.id,
            mode=mode,
            total_credit_cents=total_credit,
            remarks=remarks,
            created_by_name=actor_name,
        )
        for line in cleaned:
            goods_return.lines.append(GoodsReturnLine(**line))
        db.session.add(goods_return)
        db.session.flush()

        customer_service.apply_delta(customer.id, total_credit)

        # Two lines for the same stock item share one gr-in row
        restock: dict[int, int] = defaultdict(int)
        for line in goods_return.lines:
            stock = inventory_service.resolve_inventory_item(line, customer.instance_id)
            if stock is None:
                current_app.logger.warning(
                    "Return %s: no inventory match for %s/%s/%s; stock not restored",
                    number, line.brand, line.model, line.quality,
                )
                messages.append(f"Stock item not found for {line.brand} {line.model}; stock unchanged")
                continue
            line.inventory_item_id = stock.id
            restock[stock.id] += line.quantity

        for stock_id, qty in restock.items():
            new_quantity = inventory_service.apply_delta(stock_id, qty)
            audit_log_service.record_movement(
                log_id=audit_log_service.effect_key(audit_log_service.GR_IN, goods_return.id, stock_id),
                item=db.session.get(InventoryItem, stock_id),
                quantity_change=qty,
                current_stock=new_quantity,
                remarks=f"Goods Return Entry #{number}",
                shop_name=customer.name,
            )
            messages.append(f"Stock returned by {qty} pcs")

        db.session.commit()
        messages.insert(0, f"GR Finalized: {customer_service.format_amount(total_credit)} credited to {customer.name}")
        return goods_return, entry, messages

    goods_return, entry, messages = run_with_retry(_op)
    current_app.logger.info(
        "Goods return %s credited %s to customer %s", goods_return.return_number, total_credit, customer_id,
    )
    publish_order_change(entry)
    return goods_return, messages


def get_return(return_id: int) -> GoodsReturn:
    goods_return = db.session.get(GoodsReturn, return_id)
    if goods_return is None:
        raise ReturnError(f"Goods return {return_id} not found")
    return goods_return


def fetch_returns(instance_id: str | None = None, *, customer_id: int | None = None) -> list[GoodsReturn]:
    q = db.session.query(GoodsReturn)
    if instance_id is not None:
        q = q.filter(GoodsReturn.instance_id == instance_id)
    if customer_id is not None:
        q = q.filter(GoodsReturn.customer_id == customer_id)
    return q.order_by(GoodsReturn.created_at.desc(), GoodsReturn.id.desc()).all()


# =============================================================================
# STOCK ROOM
# =============================================================================

def stock_room_projection(instance_id: str | None = None) -> list[dict]:
    """
    Returned goods still in the stock room, grouped by BRAND-MODEL-QUALITY.

    quantity = returned pieces minus removed pieces, floored at 0. Only rows
    with something left are listed, largest first.
    """
    rows: dict[str, dict] = {}
    for goods_return in sorted(fetch_returns(instance_id), key=lambda r: (r.created_at, r.id)):
        for line in goods_return.lines:
            key = inventory_service.identity_key(line.brand, line.model, line.quality)
            row = rows.get(key)
            if row is None:
                row = rows[key] = {
                    "identity_key": key,
                    "brand": line.brand,
                    "model": line.model,
                    "quality": line.quality,
                    "category": line.category,
                    "warehouse": line.warehouse,
                    "quantity": 0,
                    "total_value_cents": 0,
                    "last_returned_at": None,
                    "history": [],
                }
            row["quantity"] += line.quantity
            row["total_value_cents"] += line.line_total_cents
            row["last_returned_at"] = to_utc_z(goods_return.created_at)
            row["history"].append({
                "return_number": goods_return.return_number,
                "customer_id": goods_return.customer_id,
                "customer_name": goods_return.customer_name,
                "quantity": line.quantity,
                "returned_at": to_utc_z(goods_return.created_at),
            })

    q = db.session.query(StockRoomRemoval)
    if instance_id is not None:
        q = q.filter(StockRoomRemoval.instance_id == instance_id)
    removed: dict[str, int] = defaultdict(int)
    for removal in q.all():
        removed[removal.identity_key] += removal.quantity

    projection = []
    for key, row in rows.items():
        row["quantity"] = max(0, row["quantity"] - removed.get(key, 0))
        if row["quantity"] > 0:
            projection.append(row)
    projection.sort(key=lambda r: r["quantity"], reverse=True)
    return projection


def record_removal(
    *,
    brand: str,
    model: str,
    quality: str,
    quantity: int,
    instance_id: str | None = None,
    remarks: str | None = None,
    actor_name: str | None = None,
) -> tuple[StockRoomRemoval, list[str]]:
    """
    Ship returned goods out of the stock room.

    Also takes the pieces out of main inventory (clamped at zero) and logs
    the movement. quantity must be positive and no more than the stock room
    currently holds for that item.
    """
    if quantity <= 0:
        raise ReturnError("Removal quantity must be > 0")

    key = inventory_service.identity_key(brand, model, quality)
    available = next((r["quantity"] for r in stock_room_projection(instance_id) if r["identity_key"] == key), 0)
    if quantity > available:
        raise ReturnError(f"Only {available} pcs of {key} are in the stock room")

    def _op():
        messages: list[str] = []
        stock = inventory_service.find_inventory_item(instance_id, brand, model, quality)

        removal = StockRoomRemoval(
            instance_id=instance_id,
            identity_key=key,
            inventory_item_id=stock.id if stock is not None else None,
            quantity=quantity,
            remarks=remarks or REMOVAL_REMARKS,
            created_by_name=actor_name,
        )
        db.session.add(removal)
        db.session.flush()

        if stock is None:
            current_app.logger.warning("Stock room removal %s: no inventory match for %s", removal.id, key)
            messages.append("Stock item not found; main inventory unchanged")
        else:
            new_quantity = inventory_service.apply_delta(stock.id, -quantity)
            audit_log_service.record_movement(
                log_id=audit_log_service.effect_key(audit_log_service.GR_OUT, removal.id, stock.id),
                item=stock,
                quantity_change=-quantity,
                current_stock=new_quantity,
                remarks=REMOVAL_REMARKS,
                shop_name="GR Outward Shipment",
            )

        db.session.commit()
        messages.insert(0, f"{quantity} units removed from GR stock room")
        return removal, messages

    return run_with_retry(_op)


def delete_return_record(return_id: int) -> list[str]:
    """
    Delete a goods return and its 'Return' ledger entry.

    The customer credit and restocked pieces are NOT reversed.
    """
    goods_return = get_return(return_id)
    number = goods_return.return_number
    ledger_order = db.session.get(Order, goods_return.ledger_order_id) if goods_return.ledger_order_id else None

    db.session.delete(goods_return)
    db.session.flush()
    if ledger_order is not None:
        db.session.delete(ledger_order)
    db.session.commit()

    current_app.logger.warning(
        "Goods return %s deleted; its credit and stock effects were not reversed", number,
    )
    return [
        "Log record removed",
        "Balance and stock were not adjusted; reconcile them manually if needed",
    ]
