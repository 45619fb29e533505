# backend/pharmaledger/routes/inventory.py
"""
Stock ledger routes.

All routes require an actor (see decorators.require_actor).
- Reads are open to every role in the org
- Raw movements and batches are restricted to admin/manager
- Adjustments need a written reason
"""
from flask import Blueprint, g, jsonify, request, current_app

from ..decorators import require_actor, require_role, ROLE_ADMIN, ROLE_MANAGER
from ..models import StockMovement
from ..services.errors import RecordNotFound
from ..services.mutation_service import build_facade
from ..validation import (
    ModelValidationPolicy,
    ValidationError,
    coerce_int,
    enforce_rules_adjustment,
    validate_payload,
)
from .responses import error_response, idempotency_key, run_mutation


inventory_bp = Blueprint("inventory", __name__, url_prefix="/api/inventory")

MOVEMENT_POLICY = ModelValidationPolicy(
    writable_fields={"product_id", "quantity_delta", "source_kind", "reason", "reference"},
    required_on_create={"product_id", "quantity_delta", "source_kind"},
)

ADJUSTMENT_POLICY = ModelValidationPolicy(
    writable_fields={"product_id", "quantity_delta", "reason", "reference"},
    required_on_create={"product_id", "quantity_delta", "reason"},
)

RETURN_POLICY = ModelValidationPolicy(
    writable_fields={"product_id", "reason", "reference"},
    required_on_create={"product_id", "quantity"},
    extra_fields={"quantity"},
)


@inventory_bp.post("/movements")
@require_actor
@require_role(ROLE_ADMIN, ROLE_MANAGER)
def apply_movement_route():
    payload = request.get_json(silent=True) or {}

    def call():
        patch = validate_payload(model=StockMovement, payload=payload, policy=MOVEMENT_POLICY)
        return build_facade().apply_movement(
            g.actor,
            product_id=patch["product_id"],
            quantity_delta=patch["quantity_delta"],
            source_kind=patch["source_kind"],
            reason=patch.get("reason"),
            reference=patch.get("reference"),
            idempotency_key=idempotency_key(),
        )

    return run_mutation("apply stock movement", call, created=True)


@inventory_bp.post("/movements/batch")
@require_actor
@require_role(ROLE_ADMIN, ROLE_MANAGER)
def apply_movements_route():
    """
    Apply several movements atomically: either all land or none do.

    Body: {"movements": [{product_id, quantity_delta, source_kind, reason?, reference?}, ...]}
    """
    payload = request.get_json(silent=True) or {}

    def call():
        raw = payload.get("movements")
        if not isinstance(raw, list) or not raw:
            raise ValidationError("movements must be a non-empty list")
        movements = [
            validate_payload(model=StockMovement, payload=item, policy=MOVEMENT_POLICY)
            for item in raw
        ]
        return build_facade().apply_movements(g.actor, movements, idempotency_key=idempotency_key())

    return run_mutation("apply stock movement batch", call, created=True)


@inventory_bp.post("/adjustments")
@require_actor
@require_role(ROLE_ADMIN, ROLE_MANAGER)
def record_adjustment_route():
    """Manual correction (count variance, damage, expiry). Sign picks add/remove."""
    payload = request.get_json(silent=True) or {}

    def call():
        patch = validate_payload(model=StockMovement, payload=payload, policy=ADJUSTMENT_POLICY)
        enforce_rules_adjustment(patch)
        return build_facade().record_adjustment(
            g.actor,
            product_id=patch["product_id"],
            quantity_delta=patch["quantity_delta"],
            reason=patch["reason"],
            reference=patch.get("reference"),
            idempotency_key=idempotency_key(),
        )

    return run_mutation("record stock adjustment", call, created=True)


@inventory_bp.post("/returns")
@require_actor
def record_return_route():
    payload = request.get_json(silent=True) or {}

    def call():
        patch = validate_payload(model=StockMovement, payload=payload, policy=RETURN_POLICY)
        quantity = coerce_int(patch["quantity"], "quantity")
        if quantity <= 0:
            raise ValidationError("quantity must be > 0")
        return build_facade().record_return(
            g.actor,
            product_id=patch["product_id"],
            quantity=quantity,
            reason=patch.get("reason"),
            reference=patch.get("reference"),
            idempotency_key=idempotency_key(),
        )

    return run_mutation("record return", call, created=True)


@inventory_bp.get("/products/<int:product_id>")
@require_actor
def get_product_route(product_id: int):
    facade = build_facade()
    try:
        product = facade.repository.get_product(g.org_id, product_id)
    except RecordNotFound as e:
        return error_response(e)
    return jsonify({"product": product.to_dict()}), 200


@inventory_bp.get("/products/<int:product_id>/movements")
@require_actor
def list_movements_route(product_id: int):
    limit = request.args.get("limit", default=100, type=int)
    limit = max(1, min(limit, current_app.config.get("AUDIT_MAX_PAGE_SIZE", 500)))

    facade = build_facade()
    try:
        movements = facade.stock_ledger.list_movements(org_id=g.org_id, product_id=product_id, limit=limit)
    except RecordNotFound as e:
        return error_response(e)
    return jsonify({"items": [m.to_dict() for m in movements], "limit": limit}), 200


@inventory_bp.get("/low-stock")
@require_actor
def list_low_stock_route():
    """Active products at or below min_stock; ?include_out_of_stock=false hides empty shelves."""
    include_out = request.args.get("include_out_of_stock", "true").lower() not in ("false", "0", "no")
    items = build_facade().stock_ledger.list_low_stock(org_id=g.org_id, include_out_of_stock=include_out)
    return jsonify({"items": items, "count": len(items)}), 200
