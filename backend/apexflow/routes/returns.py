# Overview: Flask API routes for goods returns; credit, stock room projection and removals.

# backend/apexflow/routes/returns.py
"""
Goods Return API Routes

- Returns are final on creation: the customer is credited and stock restored
- The stock room view is computed from return lines minus removals
- Deleting a return removes the record only, never its ledger effects

ROLES: Super Admin and GR.
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_actor, require_role
from ..services import return_service
from ..services.customer_service import CustomerError
from ..services.order_lifecycle_service import ROLE_GR, ROLE_SUPER_ADMIN
from ..services.return_service import ReturnError
from ..validation import ValidationError, coerce_int, parse_amount_cents, require_json


returns_bp = Blueprint("returns", __name__, url_prefix="/api/returns")


@returns_bp.get("")
def list_returns_route():
    instance_id = request.args.get("instance_id")
    customer_id = request.args.get("customer_id", type=int)
    returns = return_service.fetch_returns(instance_id, customer_id=customer_id)
    return jsonify({"returns": [r.to_dict() for r in returns]}), 200


@returns_bp.post("")
@require_actor
@require_role(ROLE_SUPER_ADMIN, ROLE_GR)
def create_return_route():
    """
    Finalize a goods return.

    Request body (itemized):
    {
        "customer_id": 12,
        "lines": [{"brand": "...", "model": "...", "quality": "...",
                   "quantity": 2, "unit_price_cents": 45000,
                   "inventory_item_id": 3}]
    }

    Request body (direct credit):
    {
        "customer_id": 12,
        "direct_amount_cents": 100000,
        "remarks": "Rate difference"
    }

    Returns:
        201: Return created, customer credited
        400: Nothing to return or invalid amounts
        404: Customer not found
    """
    try:
        data = require_json(request.get_json(silent=True))
        if data.get("customer_id") is None:
            raise ValidationError("customer_id is required")

        direct = data.get("direct_amount_cents")
        lines = data.get("lines")
        if lines is not None and not isinstance(lines, list):
            raise ValidationError("lines must be a list")
        if lines:
            for idx, line in enumerate(lines):
                if not isinstance(line, dict):
                    raise ValidationError(f"lines[{idx}] must be an object")
                line["quantity"] = coerce_int(line.get("quantity", 0), f"lines[{idx}].quantity")
                line["unit_price_cents"] = coerce_int(line.get("unit_price_cents", 0), f"lines[{idx}].unit_price_cents")

        goods_return, messages = return_service.finalize_return(
            coerce_int(data["customer_id"], "customer_id"),
            lines,
            direct_amount_cents=parse_amount_cents(direct, "direct_amount_cents") if direct is not None else None,
            remarks=data.get("remarks"),
            actor_name=g.actor.name,
        )
        return jsonify({"return": goods_return.to_dict(), "messages": messages}), 201
    except (ValidationError, ReturnError) as e:
        return jsonify({"error": str(e)}), 400
    except CustomerError as e:
        return jsonify({"error": str(e)}), 404
    except Exception:
        current_app.logger.exception("Failed to create goods return")
        return jsonify({"error": "Internal server error"}), 500


@returns_bp.get("/stock-room")
def stock_room_route():
    instance_id = request.args.get("instance_id")
    return jsonify({"stock_room": return_service.stock_room_projection(instance_id)}), 200


@returns_bp.post("/removals")
@require_actor
@require_role(ROLE_SUPER_ADMIN, ROLE_GR)
def record_removal_route():
    """
    Ship returned goods out of the stock room.

    Request body:
    {
        "brand": "...", "model": "...", "quality": "...",
        "quantity": 2,
        "instance_id": "main"   (optional)
    }
    """
    try:
        data = require_json(request.get_json(silent=True))
        for key in ("brand", "model", "quality"):
            if not (data.get(key) or "").strip():
                raise ValidationError(f"{key} is required")
        if data.get("quantity") is None:
            raise ValidationError("quantity is required")

        removal, messages = return_service.record_removal(
            brand=data["brand"],
            model=data["model"],
            quality=data["quality"],
            quantity=coerce_int(data["quantity"], "quantity"),
            instance_id=data.get("instance_id"),
            remarks=data.get("remarks"),
            actor_name=g.actor.name,
        )
        return jsonify({"removal": removal.to_dict(), "messages": messages}), 201
    except (ValidationError, ReturnError) as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to record stock room removal")
        return jsonify({"error": "Internal server error"}), 500


@returns_bp.delete("/<int:return_id>")
@require_actor
@require_role(ROLE_SUPER_ADMIN)
def delete_return_route(return_id: int):
    try:
        messages = return_service.delete_return_record(return_id)
        return jsonify({"deleted": return_id, "messages": messages}), 200
    except ReturnError as e:
        return jsonify({"error": str(e)}), 404
    except Exception:
        current_app.logger.exception("Failed to delete goods return %s", return_id)
        return jsonify({"error": "Internal server error"}), 500
