# Overview: Request decorators for API routes; establish the acting caller and check roles.

from functools import wraps
from flask import request, jsonify, g

from .services.mutation_service import Actor

ROLE_ADMIN = "admin"
ROLE_MANAGER = "manager"
ROLE_STAFF = "staff"
ROLE_RETAILER = "retailer"


def _header_int(name: str):
    raw = request.headers.get(name)
    if raw is None or not raw.strip().isdigit():
        return None
    return int(raw.strip())


def require_actor(f):
    """
    Require an identified caller and establish tenant context.

    Authentication happens upstream (gateway / identity service). It forwards
    the caller as headers:
    - X-Actor-Id: the acting user id
    - X-Org-Id: the organization (tenant) the call is scoped to
    - X-Actor-Role: the caller's role, defaults to 'staff'

    Sets g.actor (an Actor) and g.org_id. Returns 401 when either id is
    missing or not an integer.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        actor_id = _header_int("X-Actor-Id")
        org_id = _header_int("X-Org-Id")
        if actor_id is None or org_id is None:
            return jsonify({"error": "Actor context required", "kind": "unauthenticated"}), 401

        role = (request.headers.get("X-Actor-Role") or ROLE_STAFF).strip().lower()
        g.actor = Actor(actor_id=actor_id, org_id=org_id, role=role)
        g.org_id = org_id
        return f(*args, **kwargs)

    return decorated_function


def require_role(*roles: str):
    """
    Require one of the given roles. Admin-policy routes (credit limits,
    account status, credit request decisions) use this.
    """
    allowed = {r.lower() for r in roles}

    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            # Ensure @require_actor was called first
            actor = getattr(g, "actor", None)
            if actor is None:
                return jsonify({"error": "Actor context required", "kind": "unauthenticated"}), 401

            if actor.role not in allowed:
                return jsonify({
                    "error": "Permission denied",
                    "kind": "forbidden",
                    "details": {"required_roles": sorted(allowed), "role": actor.role},
                }), 403

            return f(*args, **kwargs)

        return decorated_function

    return decorator
