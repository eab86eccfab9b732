# Overview: Flask API routes for orders; status changes, item edits and bulk operations.

# backend/apexflow/routes/orders.py
"""
Order API Routes

Every ledger-moving route returns the updated order plus "messages": short
human-readable lines describing what was deducted, restored or skipped.

ROLES (X-Actor-Role header):
- Picker / Checker / Dispatcher: their own single status step, item edits
  before billing
- Super Admin: everything, including assignment, rejection, edits after
  billing, fulfill-all and bulk price reduction
"""

from flask import Blueprint, request, jsonify, g, current_app
from sqlalchemy.orm.exc import StaleDataError

from ..decorators import require_actor, require_role
from ..services import order_service, reconciliation_service
from ..services.concurrency import StaleOrderError
from ..services.order_lifecycle_service import OrderTransitionError, ROLE_SUPER_ADMIN
from ..services.order_service import OrderError
from ..services.reconciliation_service import DirtyOrderWarning, ReconciliationError
from ..validation import (
    NotFoundError,
    ValidationError,
    coerce_int,
    parse_amount_cents,
    parse_item_overrides,
    parse_order_lines,
    require_json,
)


orders_bp = Blueprint("orders", __name__, url_prefix="/api/orders")


def _domain_error_response(exc: Exception):
    """Map service exceptions to JSON error responses."""
    if isinstance(exc, ValidationError):
        return jsonify({"error": str(exc)}), 400
    if isinstance(exc, NotFoundError):
        return jsonify({"error": str(exc)}), 404
    if isinstance(exc, DirtyOrderWarning):
        return jsonify({"error": str(exc), "requires_confirmation": True}), 409
    if isinstance(exc, (OrderTransitionError, StaleOrderError, StaleDataError)):
        return jsonify({"error": str(exc)}), 409
    if isinstance(exc, OrderError):
        return jsonify({"error": str(exc)}), 400
    if isinstance(exc, ReconciliationError):
        return jsonify({"error": str(exc), "intent_id": exc.intent_id}), 500
    raise exc


DOMAIN_ERRORS = (
    ValidationError,
    NotFoundError,
    OrderTransitionError,
    StaleOrderError,
    StaleDataError,
    OrderError,
    ReconciliationError,
)


# =============================================================================
# ORDERS
# =============================================================================

@orders_bp.post("")
@require_actor
def create_order_route():
    """
    Create a fresh order.

    Request body:
    {
        "customer_id": 12,                  (or customer_name + customer_subtext)
        "instance_id": "main",              (optional)
        "warehouse": "Main",                (optional)
        "order_mode": "Offline",            (optional)
        "items": [{"brand": "...", "model": "...", "quality": "...",
                   "ordered_qty": 2, "display_price_cents": 50000,
                   "inventory_item_id": 3}]
    }
    """
    try:
        data = require_json(request.get_json(silent=True))
        customer_id = data.get("customer_id")
        order = order_service.create_order(
            items=parse_order_lines(data.get("items")),
            customer_id=coerce_int(customer_id, "customer_id") if customer_id is not None else None,
            customer_name=data.get("customer_name"),
            customer_subtext=data.get("customer_subtext"),
            instance_id=data.get("instance_id"),
            warehouse=data.get("warehouse"),
            order_mode=data.get("order_mode") or "Offline",
            cargo_name=data.get("cargo_name"),
            remarks=data.get("remarks"),
        )
        return jsonify({"order": order.to_dict(), "messages": [f"Order {order.order_number} created"]}), 201
    except DOMAIN_ERRORS as e:
        return _domain_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create order")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.get("")
def list_orders_route():
    instance_id = request.args.get("instance_id")
    status = request.args.get("status")
    orders = order_service.fetch_orders(instance_id, status=status)
    return jsonify({"orders": [o.to_dict() for o in orders]}), 200


@orders_bp.get("/<int:order_id>")
def get_order_route(order_id: int):
    try:
        order = order_service.get_order(order_id)
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    return jsonify({"order": order.to_dict()}), 200


# =============================================================================
# STATUS
# =============================================================================

@orders_bp.post("/<int:order_id>/status")
@require_actor
def update_status_route(order_id: int):
    """
    Move an order to a new status.

    Request body:
    {
        "status": "checked",
        "assigned_to_id": 4,          (Super Admin assignment only)
        "assigned_to_name": "Ravi",   (optional display override)
        "items": [{"id": 1, "fulfill_qty": 2, "final_price_cents": 50000}]  (optional)
    }

    Returns:
        200: {order, intent, messages}
        409: transition not allowed, or order changed concurrently
        500: ledger update failed (intent_id can be retried)
    """
    try:
        data = require_json(request.get_json(silent=True))
        status = (data.get("status") or "").strip()
        if not status:
            raise ValidationError("status is required")
        assigned_to_id = data.get("assigned_to_id")

        result = reconciliation_service.update_status(
            order_id,
            status,
            g.actor,
            assigned_to_id=coerce_int(assigned_to_id, "assigned_to_id") if assigned_to_id is not None else None,
            assigned_to_name=data.get("assigned_to_name"),
            explicit_items=parse_item_overrides(data.get("items")),
        )
        return jsonify(result.to_dict()), 200
    except DOMAIN_ERRORS as e:
        return _domain_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to update status of order %s", order_id)
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# ITEMS
# =============================================================================

@orders_bp.post("/<int:order_id>/items")
@require_actor
@require_role(ROLE_SUPER_ADMIN)
def add_item_route(order_id: int):
    """Add a catalog item to an unbilled order. Body: {"inventory_item_id": 3}"""
    try:
        data = require_json(request.get_json(silent=True))
        if data.get("inventory_item_id") is None:
            raise ValidationError("inventory_item_id is required")
        item = order_service.add_item(order_id, coerce_int(data["inventory_item_id"], "inventory_item_id"), g.actor)
        order = order_service.get_order(order_id)
        return jsonify({
            "order": order.to_dict(),
            "item": item.to_dict(),
            "messages": [f"{item.brand} {item.model} added"],
        }), 201
    except DOMAIN_ERRORS as e:
        return _domain_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to add item to order %s", order_id)
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.patch("/<int:order_id>/items/<int:item_id>")
@require_actor
@require_role(ROLE_SUPER_ADMIN)
def update_item_route(order_id: int, item_id: int):
    """
    Edit one item field.

    Request body:
    {
        "field": "fulfill_qty",   (fulfill_qty | final_price_cents | ordered_qty)
        "value": 3
    }
    """
    try:
        data = require_json(request.get_json(silent=True))
        field_name = data.get("field")
        if not field_name:
            raise ValidationError("field is required")
        if "value" not in data:
            raise ValidationError("value is required")

        result = reconciliation_service.update_item(
            order_id, item_id, field_name, coerce_int(data["value"], "value"), g.actor,
        )
        return jsonify(result.to_dict()), 200
    except DOMAIN_ERRORS as e:
        return _domain_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to update item %s on order %s", item_id, order_id)
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# BULK OPERATIONS
# =============================================================================

@orders_bp.post("/<int:order_id>/fulfill-all")
@require_actor
@require_role(ROLE_SUPER_ADMIN)
def fulfill_all_route(order_id: int):
    """
    Fulfill every item in full at display price.

    Request body (optional): {"force": true}

    Returns:
        409 with requires_confirmation when the order already has edits
    """
    try:
        data = request.get_json(silent=True) or {}
        result = reconciliation_service.fulfill_all(order_id, g.actor, force=bool(data.get("force")))
        return jsonify(result.to_dict()), 200
    except DOMAIN_ERRORS as e:
        return _domain_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to fulfill order %s", order_id)
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.post("/<int:order_id>/bulk-price-reduction")
@require_actor
@require_role(ROLE_SUPER_ADMIN)
def bulk_price_reduction_route(order_id: int):
    """Lower every final price. Body: {"amount_cents": 500}"""
    try:
        data = require_json(request.get_json(silent=True))
        if data.get("amount_cents") is None:
            raise ValidationError("amount_cents is required")
        amount_cents = parse_amount_cents(data["amount_cents"], allow_zero=True)
        result = reconciliation_service.apply_bulk_price_reduction(order_id, amount_cents, g.actor)
        return jsonify(result.to_dict()), 200
    except DOMAIN_ERRORS as e:
        return _domain_error_response(e)
    except Exception:
        current_app.logger.exception("Failed bulk price reduction on order %s", order_id)
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# RECONCILIATION INTENTS
# =============================================================================

@orders_bp.post("/intents/<int:intent_id>/retry")
@require_actor
@require_role(ROLE_SUPER_ADMIN)
def retry_intent_route(intent_id: int):
    try:
        result = reconciliation_service.retry_intent(intent_id)
        return jsonify(result.to_dict()), 200
    except DOMAIN_ERRORS as e:
        return _domain_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to retry intent %s", intent_id)
        return jsonify({"error": "Internal server error"}), 500
