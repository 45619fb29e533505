# Overview: Flask API routes for retailer orders and their status transitions.

from flask import Blueprint, request, jsonify, g

from ..decorators import require_actor
from ..models import Order
from ..services.errors import RecordNotFound
from ..services.mutation_service import build_facade
from ..validation import ModelValidationPolicy, ValidationError, parse_lines, validate_payload
from .responses import error_response, idempotency_key, run_mutation


orders_bp = Blueprint("orders", __name__, url_prefix="/api/orders")

ORDER_POLICY = ModelValidationPolicy(
    writable_fields={"wholesaler_id", "retailer_id", "payment_method", "notes"},
    required_on_create={"wholesaler_id", "retailer_id", "lines"},
    extra_fields={"lines"},
)

TRANSITION_POLICY = ModelValidationPolicy(
    writable_fields={"status", "notes"},
    required_on_create={"status"},
)


@orders_bp.post("")
@require_actor
def create_order_route():
    payload = request.get_json(silent=True) or {}

    def call():
        patch = validate_payload(model=Order, payload=payload, policy=ORDER_POLICY)
        return build_facade().create_order(
            g.actor,
            wholesaler_id=patch["wholesaler_id"],
            retailer_id=patch["retailer_id"],
            lines=parse_lines(patch["lines"]),
            payment_method=patch.get("payment_method") or "cash",
            notes=patch.get("notes"),
            idempotency_key=idempotency_key(),
        )

    return run_mutation("create order", call, created=True)


@orders_bp.get("/<int:order_id>")
@require_actor
def get_order_route(order_id: int):
    facade = build_facade()
    try:
        order = facade.repository.get_order(g.org_id, order_id)
        history = facade.order_machine.history(org_id=g.org_id, order_id=order_id)
    except RecordNotFound as e:
        return error_response(e)
    return jsonify({
        "order": order.to_dict(include_lines=True),
        "history": [h.to_dict() for h in history],
    }), 200


@orders_bp.post("/<int:order_id>/transition")
@require_actor
def transition_order_route(order_id: int):
    """
    Move an order to its next status.

    Body: {"status": "confirmed", "notes": "optional"}

    Confirming reserves stock, cancelling releases it, delivering a credit
    order charges the retailer's account.
    """
    payload = request.get_json(silent=True) or {}

    def call():
        patch = validate_payload(model=Order, payload=payload, policy=TRANSITION_POLICY)
        if not patch.get("status"):
            raise ValidationError("status cannot be blank")
        return build_facade().transition_order(
            g.actor,
            order_id=order_id,
            target_status=patch["status"],
            notes=patch.get("notes"),
            idempotency_key=idempotency_key(),
        )

    return run_mutation("transition order", call)
