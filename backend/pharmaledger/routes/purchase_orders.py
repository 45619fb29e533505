# Overview: Flask API routes for purchase orders; receiving drives purchase-receipt stock movements.

from flask import Blueprint, request, jsonify, g

from ..decorators import require_actor, require_role, ROLE_ADMIN, ROLE_MANAGER, ROLE_STAFF
from ..services.errors import RecordNotFound
from ..services.mutation_service import build_facade
from ..validation import ValidationError, parse_purchase_lines, parse_received
from .responses import error_response, idempotency_key, run_mutation


purchase_orders_bp = Blueprint("purchase_orders", __name__, url_prefix="/api/purchase-orders")


@purchase_orders_bp.post("")
@require_actor
@require_role(ROLE_ADMIN, ROLE_MANAGER)
def create_purchase_order_route():
    """
    Open a pending purchase order.

    Body: {"po_number": str, "supplier_name"?: str, "notes"?: str,
           "lines": [{"product_id", "quantity", "unit_cost_cents"?}, ...]}
    """
    data = request.get_json(silent=True) or {}

    def call():
        po_number = data.get("po_number")
        if not isinstance(po_number, str) or not po_number.strip():
            raise ValidationError("po_number is required")
        return build_facade().create_purchase_order(
            g.actor,
            po_number=po_number,
            lines=parse_purchase_lines(data.get("lines")),
            supplier_name=data.get("supplier_name"),
            notes=data.get("notes"),
            idempotency_key=idempotency_key(),
        )

    return run_mutation("create purchase order", call, created=True)


@purchase_orders_bp.post("/<int:purchase_order_id>/approve")
@require_actor
@require_role(ROLE_ADMIN, ROLE_MANAGER)
def approve_purchase_order_route(purchase_order_id: int):
    def call():
        return build_facade().approve_purchase_order(
            g.actor, purchase_order_id=purchase_order_id, idempotency_key=idempotency_key()
        )

    return run_mutation("approve purchase order", call)


@purchase_orders_bp.get("/<int:purchase_order_id>")
@require_actor
def get_purchase_order_route(purchase_order_id: int):
    facade = build_facade()
    try:
        po = facade.repository.get_purchase_order(g.org_id, purchase_order_id)
    except RecordNotFound as e:
        return error_response(e)
    return jsonify({"purchase_order": po.to_dict(include_lines=True)}), 200


@purchase_orders_bp.post("/<int:purchase_order_id>/receive")
@require_actor
@require_role(ROLE_ADMIN, ROLE_MANAGER, ROLE_STAFF)
def receive_purchase_order_route(purchase_order_id: int):
    """
    Receive goods against an approved purchase order.

    Body (optional): {"received": {"<line_id>": quantity, ...}}
    Omitting "received" receives everything still outstanding.
    """
    data = request.get_json(silent=True) or {}

    def call():
        received = parse_received(data.get("received"))
        return build_facade().receive_purchase_order(
            g.actor,
            purchase_order_id=purchase_order_id,
            received=received,
            idempotency_key=idempotency_key(),
        )

    return run_mutation("receive purchase order", call)
