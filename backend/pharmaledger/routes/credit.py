# Overview: Flask API routes for credit accounts, credit transactions and credit requests.

"""
Credit routes.

SECURITY:
- Transactions (credit/payment/debit) require admin, manager or staff
- Status and limit changes, and credit request decisions, are admin-policy
  actions: admin or manager only
- Retailers may submit credit requests and read accounts of their org
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import (
    require_actor,
    require_role,
    ROLE_ADMIN,
    ROLE_MANAGER,
    ROLE_RETAILER,
    ROLE_STAFF,
)
from ..models import CreditAccount, CreditRequest, CreditTransaction
from ..services.errors import RecordNotFound
from ..services.mutation_service import build_facade
from ..validation import (
    ModelValidationPolicy,
    ValidationError,
    coerce_int,
    enforce_amount,
    validate_payload,
)
from .responses import error_response, idempotency_key, run_mutation


credit_bp = Blueprint("credit", __name__, url_prefix="/api/credit")

TRANSACTION_POLICY = ModelValidationPolicy(
    writable_fields={"type", "amount_cents", "reference"},
    required_on_create={"type", "amount_cents"},
)

STATUS_POLICY = ModelValidationPolicy(
    writable_fields={"status"},
    required_on_create={"status"},
    extra_fields={"reason"},
)

LIMIT_POLICY = ModelValidationPolicy(
    writable_fields={"credit_limit_cents"},
    required_on_create={"credit_limit_cents"},
    extra_fields={"reason"},
)

REQUEST_POLICY = ModelValidationPolicy(
    writable_fields={"wholesaler_id", "retailer_id", "requested_amount_cents", "business_name", "credit_purpose"},
    required_on_create={"wholesaler_id", "retailer_id", "requested_amount_cents"},
)


def _optional_text(value, field: str):
    if value is None:
        return None
    text = str(value).strip()
    if len(text) > 2000:
        raise ValidationError(f"{field} exceeds max length 2000")
    return text or None


@credit_bp.get("/accounts/<int:account_id>")
@require_actor
def get_account_route(account_id: int):
    facade = build_facade()
    try:
        account = facade.repository.get_account(g.org_id, account_id)
    except RecordNotFound as e:
        return error_response(e)
    return jsonify({"account": account.to_dict()}), 200


@credit_bp.get("/accounts/<int:account_id>/transactions")
@require_actor
def list_transactions_route(account_id: int):
    limit = request.args.get("limit", default=100, type=int)
    limit = max(1, min(limit, current_app.config.get("AUDIT_MAX_PAGE_SIZE", 500)))

    facade = build_facade()
    try:
        rows = facade.credit_ledger.list_transactions(org_id=g.org_id, account_id=account_id, limit=limit)
    except RecordNotFound as e:
        return error_response(e)
    return jsonify({"items": [r.to_dict() for r in rows], "limit": limit}), 200


@credit_bp.post("/accounts/<int:account_id>/transactions")
@require_actor
@require_role(ROLE_ADMIN, ROLE_MANAGER, ROLE_STAFF)
def record_transaction_route(account_id: int):
    """
    Record a credit, payment or debit.

    Over-limit credits succeed and come back with
    signals.credit_limit_exceeded; overpayments come back with
    signals.overpayment. Neither is an error.
    """
    payload = request.get_json(silent=True) or {}

    def call():
        patch = validate_payload(model=CreditTransaction, payload=payload, policy=TRANSACTION_POLICY)
        enforce_amount(patch.get("amount_cents"))
        return build_facade().record_credit_transaction(
            g.actor,
            account_id=account_id,
            type=patch["type"],
            amount_cents=patch["amount_cents"],
            reference=patch.get("reference"),
            idempotency_key=idempotency_key(),
        )

    return run_mutation("record credit transaction", call, created=True)


@credit_bp.post("/accounts/<int:account_id>/status")
@require_actor
@require_role(ROLE_ADMIN, ROLE_MANAGER)
def set_account_status_route(account_id: int):
    payload = request.get_json(silent=True) or {}

    def call():
        patch = validate_payload(model=CreditAccount, payload=payload, policy=STATUS_POLICY)
        return build_facade().set_account_status(
            g.actor,
            account_id=account_id,
            status=patch["status"],
            reason=_optional_text(patch.get("reason"), "reason"),
            idempotency_key=idempotency_key(),
        )

    return run_mutation("change credit account status", call)


@credit_bp.post("/accounts/<int:account_id>/limit")
@require_actor
@require_role(ROLE_ADMIN, ROLE_MANAGER)
def change_limit_route(account_id: int):
    payload = request.get_json(silent=True) or {}

    def call():
        patch = validate_payload(model=CreditAccount, payload=payload, policy=LIMIT_POLICY)
        enforce_amount(patch.get("credit_limit_cents"), "credit_limit_cents", allow_zero=True)
        return build_facade().change_credit_limit(
            g.actor,
            account_id=account_id,
            credit_limit_cents=patch["credit_limit_cents"],
            reason=_optional_text(patch.get("reason"), "reason"),
            idempotency_key=idempotency_key(),
        )

    return run_mutation("change credit limit", call)


@credit_bp.post("/requests")
@require_actor
@require_role(ROLE_ADMIN, ROLE_MANAGER, ROLE_STAFF, ROLE_RETAILER)
def submit_request_route():
    payload = request.get_json(silent=True) or {}

    def call():
        patch = validate_payload(model=CreditRequest, payload=payload, policy=REQUEST_POLICY)
        enforce_amount(patch.get("requested_amount_cents"), "requested_amount_cents")
        return build_facade().submit_credit_request(
            g.actor,
            wholesaler_id=patch["wholesaler_id"],
            retailer_id=patch["retailer_id"],
            requested_amount_cents=patch["requested_amount_cents"],
            business_name=patch.get("business_name"),
            credit_purpose=patch.get("credit_purpose"),
            idempotency_key=idempotency_key(),
        )

    return run_mutation("submit credit request", call, created=True)


@credit_bp.post("/requests/<int:request_id>/approve")
@require_actor
@require_role(ROLE_ADMIN, ROLE_MANAGER)
def approve_request_route(request_id: int):
    """Approve a credit request; opens the account or replaces its limit."""
    payload = request.get_json(silent=True) or {}

    def call():
        if "approved_limit_cents" not in payload:
            raise ValidationError("Missing required fields: approved_limit_cents")
        limit = coerce_int(payload["approved_limit_cents"], "approved_limit_cents")
        enforce_amount(limit, "approved_limit_cents", allow_zero=True)
        return build_facade().approve_credit_request(
            g.actor,
            request_id=request_id,
            approved_limit_cents=limit,
            notes=_optional_text(payload.get("notes"), "notes"),
            idempotency_key=idempotency_key(),
        )

    return run_mutation("approve credit request", call)


@credit_bp.post("/requests/<int:request_id>/reject")
@require_actor
@require_role(ROLE_ADMIN, ROLE_MANAGER)
def reject_request_route(request_id: int):
    payload = request.get_json(silent=True) or {}

    def call():
        return build_facade().reject_credit_request(
            g.actor,
            request_id=request_id,
            notes=_optional_text(payload.get("notes"), "notes"),
            idempotency_key=idempotency_key(),
        )

    return run_mutation("reject credit request", call)
