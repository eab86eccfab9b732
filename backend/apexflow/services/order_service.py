# Overview: Order creation, numbering and lookups; item additions before billing.

from __future__ import annotations

from flask import current_app

from ..extensions import db
from ..models import Customer, InventoryItem, Order, OrderItem
from ..validation import NotFoundError
from apexflow.time_utils import utcnow
from . import order_lifecycle_service as lifecycle
from .inventory_service import normalize_identity
from .order_feed import publish_order_change


class OrderError(Exception):
    """Raised for order operation errors."""
    pass


def assign_order_number(order: Order, prefix: str) -> str:
    """
    Give a newly added order its human-readable number, e.g. ORD-000042.

    The row is flushed first so the number can be derived from its id.
    """
    db.session.flush()
    order.order_number = f"{prefix}-{order.id:06d}"
    return order.order_number


def get_order(order_id: int) -> Order:
    order = db.session.get(Order, order_id)
    if order is None:
        raise NotFoundError(f"Order {order_id} not found")
    return order


def fetch_orders(instance_id: str | None = None, *, status: str | None = None) -> list[Order]:
    q = db.session.query(Order)
    if instance_id is not None:
        q = q.filter(Order.instance_id == instance_id)
    if status is not None:
        q = q.filter(Order.status == status)
    return q.order_by(Order.created_at.desc(), Order.id.desc()).all()


def create_order(
    *,
    items: list[dict],
    customer_id: int | None = None,
    customer_name: str | None = None,
    customer_subtext: str | None = None,
    instance_id: str | None = None,
    warehouse: str | None = None,
    order_mode: str = "Offline",
    cargo_name: str | None = None,
    remarks: str | None = None,
) -> Order:
    """
    Create a 'fresh' order.

    With customer_id the customer's name and city fill any missing text
    fields. Without it, customer_name is required and the order relies on
    the name/location lookup when it is billed.
    """
    customer = None
    if customer_id is not None:
        customer = db.session.get(Customer, customer_id)
        if customer is None:
            raise OrderError(f"Customer {customer_id} not found")
        customer_name = customer_name or customer.name
        customer_subtext = customer_subtext or customer.city
        instance_id = instance_id or customer.instance_id

    if not customer_name:
        raise OrderError("customer_name is required when customer_id is not given")
    if not items:
        raise OrderError("An order needs at least one item")

    order = Order(
        order_number="PENDING",
        instance_id=instance_id,
        status=lifecycle.FRESH,
        customer_id=customer_id,
        customer_name=customer_name,
        customer_subtext=customer_subtext,
        warehouse=warehouse,
        order_mode=order_mode,
        cargo_name=cargo_name,
        remarks=remarks,
    )
    seen_identities, seen_stock_ids = set(), set()
    for line in items:
        identity = normalize_identity(line["brand"], line["model"], line["quality"])
        stock_id = line.get("inventory_item_id")
        if identity in seen_identities or (stock_id is not None and stock_id in seen_stock_ids):
            raise OrderError(f"{line['brand']} {line['model']} ({line['quality']}) is listed twice")
        seen_identities.add(identity)
        if stock_id is not None:
            seen_stock_ids.add(stock_id)

        order.items.append(OrderItem(
            inventory_item_id=line.get("inventory_item_id"),
            brand=line["brand"],
            model=line["model"],
            quality=line["quality"],
            category=line.get("category"),
            ordered_qty=line.get("ordered_qty", 0),
            fulfill_qty=line.get("fulfill_qty", 0),
            display_price_cents=line.get("display_price_cents", 0),
            final_price_cents=line.get("final_price_cents", line.get("display_price_cents", 0)),
        ))
    order.total_amount_cents = order.fulfilled_total_cents()

    db.session.add(order)
    assign_order_number(order, "ORD")
    if customer is not None:
        customer.total_orders = (customer.total_orders or 0) + 1
    db.session.commit()

    current_app.logger.info("Created order %s with %s item(s)", order.order_number, len(order.items))
    publish_order_change(order)
    return order


def add_item(order_id: int, inventory_item_id: int, actor: lifecycle.Actor) -> OrderItem:
    """
    Add one catalog item to an unbilled order at its list price.

    The new line starts with ordered_qty 1 and nothing fulfilled. A line
    with the same brand/model/quality is rejected.
    """
    order = get_order(order_id)
    lifecycle.ensure_can_edit(order.status, actor)
    if lifecycle.is_billed(order.status):
        raise lifecycle.OrderTransitionError("Cannot add items to a billed order")

    stock = db.session.get(InventoryItem, inventory_item_id)
    if stock is None:
        raise NotFoundError(f"Inventory item {inventory_item_id} not found")

    wanted = normalize_identity(stock.brand, stock.model, stock.quality)
    if any(normalize_identity(*item.identity) == wanted for item in order.items):
        raise OrderError(f"{stock.display_name} is already on this order")

    item = OrderItem(
        inventory_item_id=stock.id,
        brand=stock.brand,
        model=stock.model,
        quality=stock.quality,
        category=stock.category,
        ordered_qty=1,
        fulfill_qty=0,
        display_price_cents=stock.price_cents,
        final_price_cents=stock.price_cents,
    )
    order.items.append(item)
    order.updated_at = utcnow()
    db.session.commit()

    publish_order_change(order)
    return item
