# Overview: In-process change feed for orders; push subscriptions and snapshot merging.

"""
Order Change Feed

Subscribers register a callback and get back an unsubscribe callable.
Snapshots are published only after the change that produced them has been
committed, so a subscriber never sees state that later rolls back.

Callback failures are logged and do not affect the publisher or other
subscribers.
"""

from __future__ import annotations

import copy
from typing import Callable

from blinker import Namespace
from flask import current_app

from ..extensions import db
from ..models import Order

_signals = Namespace()
order_changed = _signals.signal("order-changed")


def publish_order_change(order: Order) -> None:
    """Push a committed order to every matching subscriber."""
    order_changed.send(
        order.instance_id,
        order_id=order.id,
        snapshot=order.to_dict(),
    )


def _guarded(callback: Callable, label: str) -> Callable:
    def _call(*args):
        try:
            callback(*args)
        except Exception:
            current_app.logger.exception("Order feed subscriber %s failed", label)
    return _call


def listen_to_orders(instance_id: str | None, callback: Callable[[list[dict]], None]) -> Callable[[], None]:
    """
    Subscribe to the full order list of one scope (None = every scope).

    callback receives the list of order snapshots, newest first, each time
    an order in the scope changes.
    """
    deliver = _guarded(callback, f"orders:{instance_id}")

    def _receiver(sender, **kwargs):
        if instance_id is not None and sender != instance_id:
            return
        q = db.session.query(Order)
        if instance_id is not None:
            q = q.filter(Order.instance_id == instance_id)
        orders = q.order_by(Order.created_at.desc(), Order.id.desc()).all()
        deliver([o.to_dict() for o in orders])

    order_changed.connect(_receiver, weak=False)
    return lambda: order_changed.disconnect(_receiver)


def listen_to_order_details(order_id: int, callback: Callable[[dict], None]) -> Callable[[], None]:
    """Subscribe to one order; callback receives its snapshot (with items)."""
    deliver = _guarded(callback, f"order:{order_id}")

    def _receiver(sender, **kwargs):
        if kwargs.get("order_id") != order_id:
            return
        deliver(kwargs["snapshot"])

    order_changed.connect(_receiver, weak=False)
    return lambda: order_changed.disconnect(_receiver)


def merge_order_snapshot(
    local_items: list[dict],
    pending_edits: dict[int, dict],
    snapshot: dict,
) -> tuple[dict, dict[int, dict]]:
    """
    Merge an incoming order snapshot into a client's local state.

    - Server item values win, except fields with an edit still in progress.
    - A pending edit the server already reflects is dropped.
    - A snapshot without items keeps the local item list.

    Returns (merged order dict, remaining pending edits). Inputs are not modified.
    """
    merged = copy.deepcopy(snapshot)
    remaining: dict[int, dict] = {}

    server_items = merged.get("items") or []
    if not server_items:
        merged["items"] = copy.deepcopy(local_items)
        return merged, copy.deepcopy(pending_edits)

    by_id = {item["id"]: item for item in server_items}
    for item_id, fields in pending_edits.items():
        item = by_id.get(item_id)
        if item is None:
            # Item no longer on the order; nothing to keep the edit for
            continue
        still_pending = {k: v for k, v in fields.items() if item.get(k) != v}
        if still_pending:
            item.update(still_pending)
            remaining[item_id] = still_pending

    merged["items"] = server_items
    return merged, remaining
