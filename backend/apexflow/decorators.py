# Overview: Request decorators that establish the acting role for API routes.

from functools import wraps
from flask import request, jsonify, g

from .services.order_lifecycle_service import Actor, VALID_ROLES


def _actor_from_headers() -> Actor | None:
    role = (request.headers.get("X-Actor-Role") or "").strip()
    if role not in VALID_ROLES:
        return None

    raw_id = request.headers.get("X-Actor-Id")
    try:
        actor_id = int(raw_id) if raw_id else None
    except ValueError:
        actor_id = None

    name = (request.headers.get("X-Actor-Name") or "").strip() or None
    return Actor(role=role, id=actor_id, name=name)


def require_actor(f):
    """
    Establish who is acting from request headers.

    Sets g.actor from:
    - X-Actor-Role: Super Admin, Picker, Checker, Dispatcher or GR (required)
    - X-Actor-Id: staff member id (optional)
    - X-Actor-Name: display name used in logs and ledger entries (optional)

    The headers are trusted as given. Returns 400 when the role is missing
    or unknown.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        actor = _actor_from_headers()
        if actor is None:
            return jsonify({
                "error": "X-Actor-Role header required",
                "allowed_roles": sorted(VALID_ROLES),
            }), 400
        g.actor = actor
        return f(*args, **kwargs)

    return decorated_function


def require_role(*roles: str):
    """
    Restrict a route to the given roles. Apply after @require_actor.
    """
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            actor = getattr(g, "actor", None)
            if actor is None:
                return jsonify({"error": "X-Actor-Role header required"}), 400
            if actor.role not in roles:
                return jsonify({
                    "error": "Role not allowed",
                    "required_roles": list(roles),
                    "role": actor.role,
                }), 403
            return f(*args, **kwargs)

        return decorated_function
    return decorator
