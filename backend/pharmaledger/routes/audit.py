# Overview: Flask API routes for the audit log; parses filters and returns keyset-paginated JSON.

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_actor, require_role, ROLE_ADMIN, ROLE_MANAGER
from ..models.audit import AUDIT_CATEGORIES
from ..services.audit_service import AuditQuery
from ..services.errors import InvalidRequest
from ..services.mutation_service import build_facade
from ..time_utils import parse_iso_datetime
from .responses import error_response

"""
Time semantics:
- API accepts ISO-8601 datetimes with Z/offsets; backend normalizes to UTC-naive internally.
- start_date/end_date filtering is inclusive on both ends.
- cursor is "<ISO-8601>|<id>" as returned in next_cursor.
"""

audit_bp = Blueprint("audit", __name__, url_prefix="/api/audit")


def _limit() -> int:
    max_size = current_app.config.get("AUDIT_MAX_PAGE_SIZE", 500)
    limit = request.args.get("limit", default=current_app.config.get("AUDIT_PAGE_SIZE", 100), type=int)
    return max(1, min(limit, max_size))


@audit_bp.get("")
@require_actor
@require_role(ROLE_ADMIN, ROLE_MANAGER)
def list_audit_entries_route():
    limit = _limit()

    start_raw = request.args.get("start_date")
    end_raw = request.args.get("end_date")
    try:
        start_dt = parse_iso_datetime(start_raw)
        end_dt = parse_iso_datetime(end_raw)
    except ValueError:
        return jsonify({
            "error": "start_date and end_date must be ISO-8601 datetimes",
            "kind": "validation_error",
            "details": {},
        }), 400

    category = request.args.get("category")
    if category and category not in AUDIT_CATEGORIES:
        return jsonify({
            "error": f"category must be one of {sorted(AUDIT_CATEGORIES)}",
            "kind": "validation_error",
            "details": {"category": category},
        }), 400

    filters = AuditQuery(
        resource_type=request.args.get("resource_type") or None,
        resource_id=request.args.get("resource_id") or None,
        category=category or None,
        actor_id=request.args.get("actor_id", type=int),
        action=request.args.get("action") or None,
        start=start_dt,
        end=end_dt,
    )

    try:
        page = build_facade().page(g.actor, filters, cursor=request.args.get("cursor"), limit=limit)
    except InvalidRequest as e:
        return error_response(e)

    return jsonify({
        "items": [entry.to_dict() for entry in page.items],
        "next_cursor": page.next_cursor,
        "limit": limit,
    }), 200


@audit_bp.get("/resources/<resource_type>/<resource_id>")
@require_actor
def resource_history_route(resource_type: str, resource_id: str):
    """Change history of one product, account, order or purchase order."""
    facade = build_facade()
    entries = facade.audit_log.resource_history(g.org_id, resource_type, resource_id, limit=_limit())
    return jsonify({"items": [entry.to_dict() for entry in entries]}), 200


@audit_bp.get("/actors/<int:actor_id>")
@require_actor
@require_role(ROLE_ADMIN, ROLE_MANAGER)
def actor_activity_route(actor_id: int):
    facade = build_facade()
    entries = facade.audit_log.actor_activity(g.org_id, actor_id, limit=_limit())
    return jsonify({"items": [entry.to_dict() for entry in entries]}), 200
