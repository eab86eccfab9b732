# Overview: Flask API routes for customers; balances, firm totals and manual payments.

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_actor, require_role
from ..models import Customer
from ..services import customer_service
from ..services.customer_service import CustomerError
from ..services.order_lifecycle_service import ROLE_SUPER_ADMIN
from ..validation import (
    CUSTOMER_POLICY,
    ValidationError,
    coerce_int,
    parse_amount_cents,
    require_json,
    validate_payload,
)


customers_bp = Blueprint("customers", __name__, url_prefix="/api/customers")


def _customer_payload(customer: Customer) -> dict:
    data = customer.to_dict()
    data["displayed_balance_cents"] = customer_service.displayed_balance(customer.id)
    return data


@customers_bp.get("")
def list_customers_route():
    instance_id = request.args.get("instance_id")
    customers = customer_service.fetch_customers(instance_id)
    return jsonify({"customers": [_customer_payload(c) for c in customers]}), 200


@customers_bp.get("/<int:customer_id>")
def get_customer_route(customer_id: int):
    """Customer with the summed balance of its firm group."""
    try:
        customer = customer_service.get_customer(customer_id)
        members = customer_service.firm_members(customer_id)
    except CustomerError as e:
        return jsonify({"error": str(e)}), 404

    body = _customer_payload(customer)
    body["firm_members"] = [m.to_dict() for m in members]
    return jsonify({"customer": body}), 200


@customers_bp.get("/<int:customer_id>/ledger")
def customer_ledger_route(customer_id: int):
    try:
        return jsonify(customer_service.customer_ledger(customer_id)), 200
    except CustomerError as e:
        return jsonify({"error": str(e)}), 404


@customers_bp.post("")
@require_actor
@require_role(ROLE_SUPER_ADMIN)
def create_customer_route():
    try:
        patch = validate_payload(model=Customer, payload=request.get_json(silent=True), policy=CUSTOMER_POLICY)
        customer = customer_service.create_customer(**patch)
        return jsonify({"customer": _customer_payload(customer)}), 201
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except CustomerError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to create customer")
        return jsonify({"error": "Internal server error"}), 500


@customers_bp.post("/<int:customer_id>/payments")
@require_actor
@require_role(ROLE_SUPER_ADMIN)
def record_payment_route(customer_id: int):
    """
    Manual credit or debit.

    Request body:
    {
        "amount_cents": 100000,
        "direction": "Add",          (Add | Deduct)
        "remarks": "Cash received"   (optional)
    }
    """
    try:
        data = require_json(request.get_json(silent=True))
        if data.get("amount_cents") is None:
            raise ValidationError("amount_cents is required")
        amount_cents = parse_amount_cents(data["amount_cents"])
        direction = data.get("direction") or customer_service.DIRECTION_ADD

        entry, new_balance = customer_service.record_payment(
            customer_id,
            amount_cents,
            direction,
            remarks=data.get("remarks"),
            actor_name=g.actor.name,
        )
        verb = "added to" if direction == customer_service.DIRECTION_ADD else "deducted from"
        return jsonify({
            "payment": entry.to_dict(include_items=False),
            "balance_cents": new_balance,
            "messages": [f"{customer_service.format_amount(amount_cents)} {verb} balance"],
        }), 201
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except CustomerError as e:
        status = 404 if "not found" in str(e) else 400
        return jsonify({"error": str(e)}), status
    except Exception:
        current_app.logger.exception("Failed to record payment for customer %s", customer_id)
        return jsonify({"error": "Internal server error"}), 500


@customers_bp.post("/firms")
@require_actor
@require_role(ROLE_SUPER_ADMIN)
def create_firm_route():
    try:
        data = require_json(request.get_json(silent=True))
        firm = customer_service.create_firm(
            data.get("name") or "",
            instance_id=data.get("instance_id"),
            address=data.get("address"),
            gstin=data.get("gstin"),
            member_ids=[coerce_int(raw_id, "member_ids") for raw_id in data.get("member_ids") or []],
        )
        return jsonify({"firm": firm.to_dict()}), 201
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except CustomerError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to create firm")
        return jsonify({"error": "Internal server error"}), 500
