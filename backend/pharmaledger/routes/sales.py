# Overview: Flask API route for POS checkout; parses input and returns JSON responses.

from flask import Blueprint, request, g

from ..decorators import require_actor
from ..services.mutation_service import build_facade
from ..validation import ValidationError, coerce_int, parse_lines
from .responses import idempotency_key, run_mutation


sales_bp = Blueprint("sales", __name__, url_prefix="/api/sales")


@sales_bp.post("")
@require_actor
def process_sale_route():
    """
    Check out a POS sale.

    Body:
        {"lines": [{"product_id": 1, "quantity": 2}, ...],
         "payment_method": "cash" | "card" | "mobile-money" | "credit",
         "reference": "optional receipt number",
         "credit_account_id": 7}            # only for credit sales

    Stock for every line and, for credit sales, the account charge are
    committed together or not at all.
    """
    data = request.get_json(silent=True) or {}

    def call():
        lines = parse_lines(data.get("lines"))
        payment_method = str(data.get("payment_method") or "cash").strip()
        reference = data.get("reference")
        if reference is not None:
            reference = str(reference).strip() or None
            if reference and len(reference) > 128:
                raise ValidationError("reference exceeds max length 128")
        credit_account_id = data.get("credit_account_id")
        if credit_account_id is not None:
            credit_account_id = coerce_int(credit_account_id, "credit_account_id")

        return build_facade().process_sale(
            g.actor,
            lines=lines,
            payment_method=payment_method,
            reference=reference,
            credit_account_id=credit_account_id,
            idempotency_key=idempotency_key(),
        )

    return run_mutation("process sale", call, created=True)
