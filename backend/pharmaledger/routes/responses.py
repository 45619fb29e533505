# Overview: Shared helpers turning facade outcomes and ledger errors into JSON responses.

from flask import current_app, jsonify, request

from ..services.errors import ContentionTimeout, LedgerError
from ..validation import ValidationError

"""
Error mapping:
- validation failures (bad input)                      400
- unknown resource                                     404
- business rule refusals (stock, transitions, status)  409
- ContentionTimeout (safe to retry)                    503 + Retry-After
- anything else                                        500 (logged)
"""

STATUS_BY_KIND = {
    "not_found": 404,
    "account_not_found": 404,
    "insufficient_stock": 409,
    "invalid_transition": 409,
    "account_not_active": 409,
    "product_inactive": 409,
    "idempotency_conflict": 409,
}


def idempotency_key():
    key = request.headers.get("Idempotency-Key")
    if key is None:
        return None
    key = key.strip()
    if not key:
        return None
    if len(key) > 128:
        raise ValidationError("Idempotency-Key exceeds max length 128")
    return key


def error_response(err: LedgerError):
    return jsonify({"error": err.message, "kind": err.kind, "details": err.details}), STATUS_BY_KIND.get(err.kind, 400)


def outcome_response(outcome, *, created: bool = False):
    if not outcome.ok:
        return error_response(outcome.error)
    status = 201 if created and not outcome.replayed else 200
    return jsonify(outcome.to_dict()), status


def run_mutation(label: str, call, *, created: bool = False):
    """Invoke a facade call and map every way it can end to an HTTP response."""
    try:
        return outcome_response(call(), created=created)
    except ValidationError as e:
        return jsonify({"error": str(e), "kind": "validation_error", "details": {}}), 400
    except ContentionTimeout as e:
        current_app.logger.warning("%s: %s", label, e.message)
        response = jsonify({"error": e.message, "kind": e.kind, "details": e.details})
        response.headers["Retry-After"] = "1"
        return response, 503
    except Exception:
        current_app.logger.exception("Failed to %s", label)
        return jsonify({"error": "Internal server error", "kind": "internal_error", "details": {}}), 500
