# Overview: Ledger reconciliation for order status changes and item edits; plans deltas and applies them atomically.

"""
Ledger Reconciliation

WHY: A billed order is reflected in two ledgers at once: the customer's
credit balance and the stock count of every fulfilled item. Each status
change or edit must move both ledgers by exactly the right amount, once.

FLOW (every entry point):
    1. Load the order and check the lifecycle rules for the actor.
    2. Build a ReconciliationPlan from the order's current values. Planning
       only reads; nothing is written yet.
    3. A plan with no ledger effects (unbilled edits, intra-billed moves) is
       applied and committed directly.
    4. Otherwise a ReconciliationIntent (PENDING) holding the plan is
       committed first, then the plan is applied and the intent flipped to
       APPLIED in one transaction.
    5. A failure rolls the transaction back, marks the intent FAILED and
       raises ReconciliationError. retry_intent() re-applies it later.

BASELINES:
- billed_amount_cents is what the customer's balance currently reflects.
  Post-billing edits move the balance by (new total - billed amount).
- The order's version_id is recorded on the intent. If the order changed in
  between, the intent is STALE and StaleOrderError tells the caller to
  re-plan instead of applying an outdated delta.

LOG IDS:
- Billing: sale-{order}-{item}. Rejection deletes exactly these rows and
  restores the net of the order's sale and correction rows per item.
- Corrections: edit-/bulk-{order}-{item}-v{order version}, one per baseline.
"""

from __future__ import annotations

import hashlib
import json
from dataclasses import asdict, dataclass, field

from flask import current_app
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db
from ..models import InventoryItem, Order, ReconciliationIntent, StaffMember
from ..validation import NotFoundError, ValidationError
from apexflow.time_utils import utcnow
from . import audit_log_service
from . import customer_service
from . import inventory_service
from . import order_lifecycle_service as lifecycle
from .concurrency import StaleOrderError, lock_for_update, run_with_retry
from .order_feed import publish_order_change


class ReconciliationError(Exception):
    """
    A reconciliation could not be applied. Nothing was written to the
    ledgers; the intent (if any) is FAILED and can be retried.
    """

    def __init__(self, message: str, *, intent_id: int | None = None):
        super().__init__(message)
        self.intent_id = intent_id


class DirtyOrderWarning(ReconciliationError):
    """fulfill_all would overwrite manual edits; repeat with force=True to proceed."""


# =============================================================================
# CONSTANTS
# =============================================================================

KIND_BILL = "BILL"
KIND_REVERSE = "REVERSE"
KIND_ADJUST = "ADJUST"
KIND_FULFILL_ALL = "FULFILL_ALL"
KIND_BULK_PRICE = "BULK_PRICE"
KIND_STATUS = "STATUS"
KIND_EDIT = "EDIT"

INTENT_PENDING = "PENDING"
INTENT_APPLIED = "APPLIED"
INTENT_FAILED = "FAILED"
INTENT_STALE = "STALE"

EDITABLE_FIELDS = ("fulfill_qty", "final_price_cents", "ordered_qty")


# =============================================================================
# PLAN
# =============================================================================

@dataclass
class StockMovement:
    order_item_id: int | None
    inventory_item_id: int
    quantity_delta: int  # signed; negative removes stock
    log_id: str | None
    remarks: str


@dataclass
class ReconciliationPlan:
    """Everything one reconciliation will write, as plain data."""
    kind: str
    order_id: int
    customer_id: int | None = None
    balance_delta_cents: int = 0
    movements: list[StockMovement] = field(default_factory=list)
    # inventory item ids whose sale-{order}-{item} log is deleted
    sale_logs_to_delete: list[int] = field(default_factory=list)
    # str(order_item_id) -> {field: value}
    item_updates: dict[str, dict] = field(default_factory=dict)
    status: str | None = None
    assigned_to_id: int | None = None
    assigned_to_name: str | None = None
    checked_by: str | None = None
    billed_amount_cents: int | None = None
    total_amount_cents: int | None = None
    messages: list[str] = field(default_factory=list)

    @property
    def has_ledger_effects(self) -> bool:
        return bool(
            (self.customer_id and self.balance_delta_cents)
            or self.movements
            or self.sale_logs_to_delete
        )

    def to_json(self) -> str:
        return json.dumps(asdict(self), sort_keys=True)

    @classmethod
    def from_dict(cls, data: dict) -> "ReconciliationPlan":
        data = dict(data)
        data["movements"] = [StockMovement(**m) for m in data.get("movements", [])]
        return cls(**data)


@dataclass
class ReconciliationResult:
    order: Order
    intent: ReconciliationIntent | None
    messages: list[str]

    def to_dict(self) -> dict:
        return {
            "order": self.order.to_dict(),
            "intent": self.intent.to_dict() if self.intent is not None else None,
            "messages": list(self.messages),
        }


# =============================================================================
# PLANNING HELPERS (read only)
# =============================================================================

def _line_state(order: Order) -> dict[int, dict]:
    return {
        item.id: {
            "fulfill_qty": item.fulfill_qty or 0,
            "final_price_cents": item.final_price_cents or 0,
            "ordered_qty": item.ordered_qty or 0,
        }
        for item in order.items
    }


def _project(before: dict[int, dict], overrides: dict[int, dict]) -> dict[int, dict]:
    after = {item_id: dict(values) for item_id, values in before.items()}
    for item_id, fields in overrides.items():
        after[item_id].update(fields)
    return after


def _total(lines: dict[int, dict]) -> int:
    return sum(v["fulfill_qty"] * v["final_price_cents"] for v in lines.values())


def _effective_overrides(before: dict[int, dict], overrides: dict[int, dict]) -> dict[int, dict]:
    """Drop override fields that match the stored value."""
    changed = {}
    for item_id, fields in overrides.items():
        diff = {k: v for k, v in fields.items() if before[item_id].get(k) != v}
        if diff:
            changed[item_id] = diff
    return changed


def _explicit_overrides(order: Order, explicit_items: list[dict] | None) -> dict[int, dict]:
    if not explicit_items:
        return {}
    known = {item.id for item in order.items}
    overrides: dict[int, dict] = {}
    for entry in explicit_items:
        item_id = entry.get("id")
        if item_id not in known:
            current_app.logger.warning("Ignoring item %s not on order %s", item_id, order.id)
            continue
        fields = {
            k: max(0, int(entry[k]))
            for k in ("fulfill_qty", "final_price_cents")
            if entry.get(k) is not None
        }
        if fields:
            overrides[item_id] = fields
    return overrides


def _resolve_customer_into(plan: ReconciliationPlan, order: Order) -> bool:
    customer = customer_service.resolve_customer(order)
    if customer is None:
        current_app.logger.warning("No customer found for order %s; balance left unchanged", order.id)
        plan.messages.append("Customer not found; balance unchanged")
        return False
    plan.customer_id = customer.id
    return True


def _resolve_stock(plan: ReconciliationPlan, order: Order, item) -> InventoryItem | None:
    stock = inventory_service.resolve_inventory_item(item, order.instance_id)
    if stock is None:
        current_app.logger.warning(
            "No inventory match for %s/%s/%s on order %s; stock left unchanged",
            item.brand, item.model, item.quality, order.id,
        )
        plan.messages.append(f"Stock item not found for {item.brand} {item.model}; stock unchanged")
    return stock


def _stock_message(delta: int, name: str) -> str:
    if delta < 0:
        return f"Stock reduced by {-delta} pcs ({name})"
    return f"Stock returned by {delta} pcs ({name})"


def _add_movement(
    plan: ReconciliationPlan,
    item,
    stock: InventoryItem,
    quantity_delta: int,
    log_id: str | None,
    remarks: str,
) -> None:
    """Add a movement, merging lines that resolve to the same stock item."""
    for movement in plan.movements:
        if movement.inventory_item_id == stock.id:
            movement.quantity_delta += quantity_delta
            return
    plan.movements.append(StockMovement(
        order_item_id=item.id if item is not None else None,
        inventory_item_id=stock.id,
        quantity_delta=quantity_delta,
        log_id=log_id,
        remarks=remarks,
    ))


def _plan_billing(plan: ReconciliationPlan, order: Order, after: dict[int, dict], new_status: str) -> None:
    current_total = _total(after)
    plan.kind = KIND_BILL
    plan.billed_amount_cents = current_total
    plan.total_amount_cents = current_total

    if current_total and _resolve_customer_into(plan, order):
        plan.balance_delta_cents = -current_total
        plan.messages.append(f"{customer_service.format_amount(current_total)} deducted from balance")

    for item in order.items:
        fulfill = after[item.id]["fulfill_qty"]
        if fulfill <= 0:
            continue
        stock = _resolve_stock(plan, order, item)
        if stock is None:
            continue
        _add_movement(
            plan, item, stock, -fulfill,
            audit_log_service.sale_log_id(order.id, stock.id),
            f"Automatic Deduction (Status: {new_status.upper()} on Order #{order.order_number})",
        )
        plan.messages.append(_stock_message(-fulfill, stock.display_name))


def _plan_reversal(plan: ReconciliationPlan, order: Order) -> None:
    """
    Undo billing. Stock comes back exactly as the order's sale and
    correction logs took it out, so a line that missed stock at billing
    restores nothing.
    """
    plan.billed_amount_cents = 0
    if (order.billed_amount_cents or 0) <= 0 and not lifecycle.is_billed(order.status):
        plan.messages.append("Order rejected")
        return

    plan.kind = KIND_REVERSE
    billed = order.billed_amount_cents or 0
    if billed and _resolve_customer_into(plan, order):
        plan.balance_delta_cents = billed
        plan.messages.append(f"{customer_service.format_amount(billed)} restored to balance")

    lines_by_stock = {item.inventory_item_id: item for item in order.items if item.inventory_item_id}
    for stock_id, net_change in audit_log_service.net_order_movements(order.id).items():
        plan.sale_logs_to_delete.append(stock_id)
        if net_change >= 0:
            continue
        stock = db.session.get(InventoryItem, stock_id)
        if stock is None:
            plan.messages.append(f"Stock item {stock_id} no longer exists; stock unchanged")
            continue
        _add_movement(
            plan, lines_by_stock.get(stock_id), stock, -net_change, None,
            f"Order #{order.order_number} rejected",
        )
        plan.messages.append(_stock_message(-net_change, stock.display_name))
    plan.messages.append("Order rejected: Credit and stock restored, history removed.")


def _plan_billed_adjustment(
    plan: ReconciliationPlan,
    order: Order,
    before: dict[int, dict],
    after: dict[int, dict],
    log_kind: str,
    remarks: str,
) -> None:
    """
    Reconcile edits to an already billed order against its baseline.

    Balance moves by (new total - billed amount). Stock moves by the change
    in fulfill_qty per item: more fulfilled means less stock.
    """
    new_total = _total(after)
    delta = new_total - (order.billed_amount_cents or 0)
    plan.billed_amount_cents = new_total
    plan.total_amount_cents = new_total

    if delta and _resolve_customer_into(plan, order):
        plan.balance_delta_cents = -delta
        verb = "deducted from" if delta > 0 else "added to"
        plan.messages.append(f"{customer_service.format_amount(delta)} {verb} balance")

    for item in order.items:
        qty_change = after[item.id]["fulfill_qty"] - before[item.id]["fulfill_qty"]
        if qty_change == 0:
            continue
        stock = _resolve_stock(plan, order, item)
        if stock is None:
            continue
        _add_movement(
            plan, item, stock, -qty_change,
            audit_log_service.effect_key(log_kind, order.id, stock.id, f"v{order.version_id}"),
            remarks,
        )
        plan.messages.append(_stock_message(-qty_change, stock.display_name))
    plan.movements = [m for m in plan.movements if m.quantity_delta]


def _plan_edit(
    order: Order,
    overrides: dict[int, dict],
    *,
    kind: str,
    log_kind: str,
    remarks: str,
) -> ReconciliationPlan:
    before = _line_state(order)
    overrides = _effective_overrides(before, overrides)
    after = _project(before, overrides)

    plan = ReconciliationPlan(
        kind=KIND_EDIT,
        order_id=order.id,
        item_updates={str(k): v for k, v in overrides.items()},
    )
    if not overrides:
        plan.messages.append("No changes")
        return plan

    if lifecycle.is_billed(order.status):
        plan.kind = kind
        _plan_billed_adjustment(plan, order, before, after, log_kind, remarks)
    else:
        plan.total_amount_cents = _total(after)
    return plan


# =============================================================================
# APPLY
# =============================================================================

def _load_order(order_id: int) -> Order:
    order = db.session.get(Order, order_id)
    if order is None:
        raise NotFoundError(f"Order {order_id} not found")
    return order


def _apply_plan(order: Order, plan: ReconciliationPlan) -> None:
    """Write a plan into the current transaction. Does not commit."""
    items_by_id = {item.id: item for item in order.items}
    for item_id, fields in plan.item_updates.items():
        item = items_by_id.get(int(item_id))
        if item is None:
            continue
        for name, value in fields.items():
            setattr(item, name, value)

    if plan.customer_id and plan.balance_delta_cents:
        customer_service.apply_delta(plan.customer_id, plan.balance_delta_cents)

    for movement in plan.movements:
        new_quantity = inventory_service.apply_delta(movement.inventory_item_id, movement.quantity_delta)
        if movement.log_id:
            stock = db.session.get(InventoryItem, movement.inventory_item_id)
            audit_log_service.record_movement(
                log_id=movement.log_id,
                item=stock,
                quantity_change=movement.quantity_delta,
                current_stock=new_quantity,
                remarks=movement.remarks,
                shop_name=order.customer_name,
                order_id=order.id,
            )

    for inventory_item_id in plan.sale_logs_to_delete:
        audit_log_service.delete_sale_log(order.id, inventory_item_id)

    if plan.status is not None:
        order.status = plan.status
    if plan.assigned_to_id is not None:
        order.assigned_to_id = plan.assigned_to_id
        order.assigned_to_name = plan.assigned_to_name
    if plan.checked_by is not None:
        order.checked_by = plan.checked_by
    if plan.billed_amount_cents is not None:
        order.billed_amount_cents = plan.billed_amount_cents
    if plan.total_amount_cents is not None:
        order.total_amount_cents = plan.total_amount_cents

    # Always touch the order row so its version moves with every change
    order.updated_at = utcnow()
    db.session.flush()


def _record_intent(order: Order, plan: ReconciliationPlan, actor: lifecycle.Actor | None) -> int:
    plan_json = plan.to_json()
    digest = hashlib.sha256(plan_json.encode("utf-8")).hexdigest()[:16]
    intent_key = f"{plan.kind}:{order.id}:v{order.version_id}:{digest}"

    intent = db.session.query(ReconciliationIntent).filter_by(intent_key=intent_key).first()
    if intent is None:
        intent = ReconciliationIntent(
            intent_key=intent_key,
            order_id=order.id,
            kind=plan.kind,
            status=INTENT_PENDING,
            order_version=order.version_id,
            balance_delta_cents=plan.balance_delta_cents,
            plan_json=plan_json,
            actor_role=actor.role if actor else None,
            actor_name=actor.name if actor else None,
        )
        db.session.add(intent)
    elif intent.status != INTENT_APPLIED:
        intent.status = INTENT_PENDING
        intent.error = None

    db.session.commit()
    return intent.id


def _mark_intent(intent_id: int, status: str, error: str) -> None:
    intent = db.session.get(ReconciliationIntent, intent_id)
    if intent is None:
        return
    intent.status = status
    intent.error = error[:2000]
    intent.attempts = (intent.attempts or 0) + 1
    db.session.commit()


def _apply_intent(intent_id: int) -> ReconciliationResult:
    intent = db.session.get(ReconciliationIntent, intent_id)
    if intent is None:
        raise NotFoundError(f"Reconciliation intent {intent_id} not found")

    if intent.status == INTENT_APPLIED:
        return ReconciliationResult(_load_order(intent.order_id), intent, ["Already applied"])

    plan = ReconciliationPlan.from_dict(intent.plan)
    order_version = intent.order_version

    try:
        order = lock_for_update(db.session.query(Order).filter_by(id=intent.order_id)).first()
        if order is None:
            raise NotFoundError(f"Order {intent.order_id} not found")
        if order.version_id != order_version:
            raise StaleOrderError(
                f"Order {order.id} is at version {order.version_id}, plan was built on {order_version}"
            )

        _apply_plan(order, plan)
        intent.status = INTENT_APPLIED
        intent.error = None
        intent.attempts = (intent.attempts or 0) + 1
        intent.applied_at = utcnow()
        db.session.commit()
    except (StaleOrderError, StaleDataError) as exc:
        db.session.rollback()
        _mark_intent(intent_id, INTENT_STALE, str(exc))
        raise
    except Exception as exc:
        db.session.rollback()
        current_app.logger.exception("Reconciliation intent %s failed", intent_id)
        _mark_intent(intent_id, INTENT_FAILED, str(exc))
        raise ReconciliationError(
            "Reconciliation failed; no ledger changes were applied", intent_id=intent_id,
        ) from exc

    current_app.logger.info(
        "Applied %s intent %s on order %s (balance %+d, %s stock movement(s))",
        plan.kind, intent.id, order.id, plan.balance_delta_cents, len(plan.movements),
    )
    publish_order_change(order)
    return ReconciliationResult(order, intent, plan.messages)


def _execute(order_id: int, build_plan, actor: lifecycle.Actor | None) -> ReconciliationResult:
    """
    Plan and apply one reconciliation, re-planning from fresh rows when a
    concurrent change makes the plan stale.
    """
    def _op():
        order = _load_order(order_id)
        plan = build_plan(order)

        if not plan.has_ledger_effects:
            _apply_plan(order, plan)
            db.session.commit()
            publish_order_change(order)
            return ReconciliationResult(order, None, plan.messages)

        intent_id = _record_intent(order, plan, actor)
        return _apply_intent(intent_id)

    return run_with_retry(_op)


# =============================================================================
# ENTRY POINTS
# =============================================================================

def update_status(
    order_id: int,
    new_status: str,
    actor: lifecycle.Actor,
    *,
    assigned_to_id: int | None = None,
    assigned_to_name: str | None = None,
    explicit_items: list[dict] | None = None,
) -> ReconciliationResult:
    """
    Move an order to new_status and apply the ledger effects of the move.

    explicit_items ([{id, fulfill_qty?, final_price_cents?}]) are the
    caller's freshest item values; they replace the stored ones before any
    totals are computed. Staff may confirm quantities this way but not
    prices.

    Raises:
        OrderTransitionError: transition not allowed for this actor
        StaleOrderError: order kept changing underneath the reconciliation
        ReconciliationError: applying the ledger effects failed
    """
    assigning = assigned_to_id is not None

    def _build(order: Order) -> ReconciliationPlan:
        from_status = order.status
        lifecycle.validate_transition(from_status, new_status, actor, assigning=assigning)

        plan = ReconciliationPlan(kind=KIND_STATUS, order_id=order.id, status=new_status)

        if assigning:
            staff = db.session.get(StaffMember, assigned_to_id)
            if staff is None or not staff.is_active or staff.role != lifecycle.ROLE_PICKER:
                raise lifecycle.OrderTransitionError(f"Staff member {assigned_to_id} cannot be assigned")
            plan.assigned_to_id = staff.id
            plan.assigned_to_name = assigned_to_name or staff.name
            plan.messages.append(f"Assigned to {plan.assigned_to_name}")

        if new_status == lifecycle.CHECKED:
            plan.checked_by = actor.name

        before = _line_state(order)
        overrides = _effective_overrides(before, _explicit_overrides(order, explicit_items))
        if actor.is_staff and any("final_price_cents" in fields for fields in overrides.values()):
            raise lifecycle.OrderTransitionError("Only an admin can change prices")
        after = _project(before, overrides)
        plan.item_updates = {str(k): v for k, v in overrides.items()}

        effect = lifecycle.transition_effect(from_status, new_status)
        if effect == lifecycle.EFFECT_REVERSE:
            _plan_reversal(plan, order)
        elif effect == lifecycle.EFFECT_BILL:
            _plan_billing(plan, order, after, new_status)
        elif lifecycle.is_billed(from_status) and overrides:
            if actor.is_staff:
                raise lifecycle.OrderTransitionError("Billed orders can only be edited by an admin")
            plan.kind = KIND_ADJUST
            _plan_billed_adjustment(
                plan, order, before, after, audit_log_service.EDIT,
                f"Manual Edit Correction (Order #{order.order_number})",
            )
        else:
            plan.total_amount_cents = _total(after)

        plan.messages.append(f"Status changed to {new_status}")
        return plan

    result = _execute(order_id, _build, actor)
    current_app.logger.info(
        "Order %s moved to %s by %s (%s)", order_id, new_status, actor.name or "-", actor.role,
    )
    return result


def update_item(
    order_id: int,
    item_id: int,
    field_name: str,
    value,
    actor: lifecycle.Actor,
) -> ReconciliationResult:
    """
    Edit one field of one order line. Admin only.

    On a billed order the balance moves by the change in total and, for
    fulfill_qty, stock moves by the change in quantity. Values below zero
    are stored as zero.
    """
    if field_name not in EDITABLE_FIELDS:
        raise ValidationError(f"field must be one of: {', '.join(EDITABLE_FIELDS)}")
    try:
        new_value = max(0, int(value))
    except (TypeError, ValueError):
        raise ValidationError(f"{field_name} must be an integer")

    def _build(order: Order) -> ReconciliationPlan:
        lifecycle.ensure_can_edit(order.status, actor)
        if item_id not in {item.id for item in order.items}:
            raise NotFoundError(f"Item {item_id} not found on order {order_id}")
        return _plan_edit(
            order,
            {item_id: {field_name: new_value}},
            kind=KIND_ADJUST,
            log_kind=audit_log_service.EDIT,
            remarks=f"Manual Edit Correction (Order #{order.order_number})",
        )

    return _execute(order_id, _build, actor)


def is_dirty(order: Order) -> bool:
    """True once anyone has fulfilled a piece or changed a price."""
    return any(
        (item.fulfill_qty or 0) > 0 or item.final_price_cents != item.display_price_cents
        for item in order.items
    )


def fulfill_all(order_id: int, actor: lifecycle.Actor, *, force: bool = False) -> ReconciliationResult:
    """
    Fulfill every line in full at its display price.

    Raises DirtyOrderWarning when it would overwrite edits, unless force.
    Running it again on a fully fulfilled order changes nothing.
    """
    def _build(order: Order) -> ReconciliationPlan:
        lifecycle.ensure_can_edit(order.status, actor)
        if is_dirty(order) and not force:
            raise DirtyOrderWarning("Order has edited quantities or prices; confirm to overwrite them")
        overrides = {
            item.id: {"fulfill_qty": item.ordered_qty or 0, "final_price_cents": item.display_price_cents or 0}
            for item in order.items
        }
        return _plan_edit(
            order,
            overrides,
            kind=KIND_FULFILL_ALL,
            log_kind=audit_log_service.BULK,
            remarks=f"Bulk Fulfill Protocol (Order #{order.order_number})",
        )

    return _execute(order_id, _build, actor)


def apply_bulk_price_reduction(order_id: int, amount_cents: int, actor: lifecycle.Actor) -> ReconciliationResult:
    """Lower every line's final price by amount_cents, never below zero."""
    if amount_cents < 0:
        raise ValidationError("amount_cents must be >= 0")

    def _build(order: Order) -> ReconciliationPlan:
        lifecycle.ensure_can_edit(order.status, actor)
        overrides = {
            item.id: {"final_price_cents": max(0, (item.final_price_cents or 0) - amount_cents)}
            for item in order.items
        }
        return _plan_edit(
            order,
            overrides,
            kind=KIND_BULK_PRICE,
            log_kind=audit_log_service.BULK,
            remarks=f"Bulk Price Reduction (Order #{order.order_number})",
        )

    return _execute(order_id, _build, actor)


# =============================================================================
# INTENT MAINTENANCE
# =============================================================================

def list_intents(status: str | None = None, *, limit: int = 100) -> list[ReconciliationIntent]:
    q = db.session.query(ReconciliationIntent)
    if status is not None:
        q = q.filter(ReconciliationIntent.status == status)
    return q.order_by(ReconciliationIntent.created_at.asc(), ReconciliationIntent.id.asc()).limit(limit).all()


def retry_intent(intent_id: int) -> ReconciliationResult:
    """
    Re-apply a PENDING or FAILED intent. APPLIED intents are a no-op.

    STALE intents are not retried: their plan was built on an old order
    version and must be recomputed by repeating the original request.
    """
    intent = db.session.get(ReconciliationIntent, intent_id)
    if intent is None:
        raise NotFoundError(f"Reconciliation intent {intent_id} not found")
    if intent.status == INTENT_STALE:
        raise StaleOrderError(f"Intent {intent_id} is stale; repeat the original change instead")
    return _apply_intent(intent_id)
