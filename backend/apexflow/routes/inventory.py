# Overview: Flask API routes for inventory; stock items, movement logs and portal links.

from flask import Blueprint, request, jsonify, current_app

from ..decorators import require_actor, require_role
from ..models import InventoryItem
from ..services import audit_log_service, inventory_service
from ..services.inventory_service import InventoryError
from ..services.order_lifecycle_service import ROLE_SUPER_ADMIN
from ..validation import INVENTORY_POLICY, ValidationError, coerce_int, require_json, validate_payload


inventory_bp = Blueprint("inventory", __name__, url_prefix="/api/inventory")


@inventory_bp.get("")
def list_inventory_route():
    instance_id = request.args.get("instance_id")
    items = inventory_service.fetch_inventory(instance_id)
    return jsonify({"items": [i.to_dict() for i in items]}), 200


@inventory_bp.post("")
@require_actor
@require_role(ROLE_SUPER_ADMIN)
def create_inventory_item_route():
    """
    Create a stock item.

    Request body:
    {
        "brand": "Samsung", "model": "A52", "quality": "OG",
        "quantity": 10, "price_cents": 120000,
        "instance_id": "main", "category": "Display", "warehouse": "Main"
    }
    """
    try:
        patch = validate_payload(model=InventoryItem, payload=request.get_json(silent=True), policy=INVENTORY_POLICY)
        item = inventory_service.create_inventory_item(**patch)
        return jsonify({"item": item.to_dict()}), 201
    except (ValidationError, InventoryError) as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to create inventory item")
        return jsonify({"error": "Internal server error"}), 500


@inventory_bp.get("/logs")
def list_inventory_logs_route():
    instance_id = request.args.get("instance_id")
    item_id = request.args.get("item_id", type=int)
    limit = request.args.get("limit", default=200, type=int)
    limit = max(1, min(limit, 1000))
    logs = audit_log_service.list_logs(instance_id, item_id=item_id, limit=limit)
    return jsonify({"logs": [log.to_dict() for log in logs]}), 200


# =============================================================================
# PORTAL LINKS
# =============================================================================

@inventory_bp.post("/links")
@require_actor
@require_role(ROLE_SUPER_ADMIN)
def create_link_route():
    try:
        data = require_json(request.get_json(silent=True))
        title = (data.get("title") or "").strip()
        if not title:
            raise ValidationError("title is required")
        link = inventory_service.create_portal_link(
            title, instance_id=data.get("instance_id"), warehouse=data.get("warehouse"),
        )
        return jsonify({"link": link.to_dict()}), 201
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to create portal link")
        return jsonify({"error": "Internal server error"}), 500


@inventory_bp.post("/links/<int:link_id>/items")
@require_actor
@require_role(ROLE_SUPER_ADMIN)
def allow_link_item_route(link_id: int):
    """Whitelist an item on a portal link. Body: {"inventory_item_id": 3}"""
    try:
        data = require_json(request.get_json(silent=True))
        if data.get("inventory_item_id") is None:
            raise ValidationError("inventory_item_id is required")
        link = inventory_service.allow_item_on_link(link_id, coerce_int(data["inventory_item_id"], "inventory_item_id"))
        return jsonify({"link": link.to_dict()}), 200
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except InventoryError as e:
        return jsonify({"error": str(e)}), 404
    except Exception:
        current_app.logger.exception("Failed to update portal link %s", link_id)
        return jsonify({"error": "Internal server error"}), 500


@inventory_bp.get("/links/<code>/items")
def visible_link_items_route(code: str):
    items = inventory_service.visible_items_for_link(code)
    return jsonify({"items": [i.to_dict() for i in items]}), 200
