from __future__ import annotations
from datetime import datetime
from pharmaledger.time_utils import parse_iso_datetime

from dataclasses import dataclass
from typing import Any

from sqlalchemy import Boolean, Integer, String, Text, DateTime
from sqlalchemy.orm import DeclarativeMeta


# Maximum money amount: 9,999,999.99 (999,999,999 cents)
# This prevents database overflow issues and nonsensical amounts
MAX_AMOUNT_CENTS = 999_999_999

# Largest single stock movement accepted over HTTP
MAX_QUANTITY = 1_000_000


class ValidationError(ValueError):
    """400-level input problem."""


@dataclass(frozen=True)
class ModelValidationPolicy:
    """
    Central policy layer:
    - writable_fields: what clients are allowed to set (security boundary)
    - required_on_create: fields required for POST
    - extra_fields: non-column keys the route handles itself (e.g. order lines)
    """
    writable_fields: set[str]
    required_on_create: set[str] = None  # type: ignore
    extra_fields: set[str] | None = None


def _columns_by_key(model: DeclarativeMeta) -> dict[str, Any]:
    mapper = model.__mapper__
    return {c.key: c for c in mapper.columns}


def coerce_int(value: Any, field: str) -> int:
    """Strict integer coercion: rejects bools, floats, decimals and scientific notation."""
    # Already an int (but not bool which is a subclass of int)
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    # String input - must be plain digits (with optional leading minus)
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{field} must be an integer")
        # Reject scientific notation (e.g., "1e15", "1E10")
        if 'e' in stripped.lower():
            raise ValidationError(f"{field} must be a plain integer (scientific notation not allowed)")
        # Reject decimal points (e.g., "12.5")
        if '.' in stripped:
            raise ValidationError(f"{field} must be an integer (no decimals)")
        try:
            return int(stripped)
        except ValueError:
            raise ValidationError(f"{field} must be an integer")
    # Reject floats explicitly
    if isinstance(value, float):
        raise ValidationError(f"{field} must be an integer, not a decimal")
    raise ValidationError(f"{field} must be an integer")


def _coerce_value(col, value: Any):
    coltype = col.type

    if value is None:
        return None

    if isinstance(coltype, Integer):
        return coerce_int(value, col.key)

    # Booleans
    if isinstance(coltype, Boolean):
        if isinstance(value, bool):
            return value
        raise ValidationError(f"{col.key} must be true or false")

    # Datetimes (accept ISO-8601 strings; normalize to UTC)
    if isinstance(coltype, DateTime):
        if isinstance(value, datetime):
            return value
        if isinstance(value, str):
            try:
                dt = parse_iso_datetime(value)
            except ValueError:
                raise ValidationError(f"{col.key} must be an ISO-8601 datetime")
            if dt is None:
                raise ValidationError(f"{col.key} must be an ISO-8601 datetime")
            return dt
        raise ValidationError(f"{col.key} must be a datetime")

    # Strings / Text
    if isinstance(coltype, (String, Text)):
        return str(value).strip()

    # Default: leave as-is
    return value


def validate_payload(
    *,
    model: DeclarativeMeta,
    payload: dict,
    policy: ModelValidationPolicy,
    partial: bool = False,
) -> dict:
    """
    Validates + normalizes incoming JSON against:
    - SQLAlchemy column metadata (nullable, type, String length)
    - a policy allowlist (writable_fields)
    - required_on_create (if partial=False)
    Returns a cleaned patch dict with only writable fields. Keys listed in
    extra_fields are passed through untouched for the route to validate.
    """
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    required = policy.required_on_create or set()
    extra = policy.extra_fields or set()
    if not partial:
        missing = sorted(f for f in required if f not in payload)
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")

    cols = _columns_by_key(model)

    # Reject unknown / non-writable fields
    for k in payload.keys():
        if k in extra:
            continue
        if k not in policy.writable_fields:
            raise ValidationError(f"Field not allowed: {k}")
        if k not in cols:
            raise ValidationError(f"Unknown field: {k}")

    patch: dict = {}

    for k, raw in payload.items():
        if k in extra:
            patch[k] = raw
            continue
        col = cols[k]

        # NULL handling
        if raw is None:
            if not col.nullable and k in required:
                raise ValidationError(f"{k} cannot be null")
            patch[k] = None
            continue

        val = _coerce_value(col, raw)

        # Blank string check for non-nullable text fields
        if isinstance(col.type, (String, Text)) and not col.nullable:
            if isinstance(val, str) and val == "":
                raise ValidationError(f"{k} cannot be blank")

        # Max length check for String(n)
        if isinstance(col.type, String) and col.type.length and isinstance(val, str):
            if len(val) > col.type.length:
                raise ValidationError(f"{k} exceeds max length {col.type.length}")

        patch[k] = val

    return patch


def enforce_amount(value: int, field: str = "amount_cents", *, allow_zero: bool = False) -> int:
    if value is None:
        raise ValidationError(f"{field} is required")
    if value < 0 or (value == 0 and not allow_zero):
        raise ValidationError(f"{field} must be {'>= 0' if allow_zero else '> 0'}")
    if value > MAX_AMOUNT_CENTS:
        raise ValidationError(f"{field} cannot exceed {MAX_AMOUNT_CENTS} ({MAX_AMOUNT_CENTS / 100:,.2f})")
    return value


def enforce_rules_adjustment(patch: dict) -> None:
    # Adjustments need a non-zero delta and a written reason
    delta = patch.get("quantity_delta")
    if delta is None or delta == 0:
        raise ValidationError("quantity_delta must be non-zero for adjustments")
    if abs(delta) > MAX_QUANTITY:
        raise ValidationError(f"quantity_delta cannot exceed {MAX_QUANTITY}")
    if not patch.get("reason"):
        raise ValidationError("reason is required for adjustments")


def parse_lines(raw: Any, *, field: str = "lines") -> list[dict]:
    """
    Normalize [{"product_id": .., "quantity": ..}, ...] from a JSON body.

    Quantities must be positive; the ledgers apply the sign.
    """
    if not isinstance(raw, list) or not raw:
        raise ValidationError(f"{field} must be a non-empty list")

    lines = []
    for index, item in enumerate(raw):
        if not isinstance(item, dict):
            raise ValidationError(f"{field}[{index}] must be an object")
        if "product_id" not in item or "quantity" not in item:
            raise ValidationError(f"{field}[{index}] needs product_id and quantity")
        product_id = coerce_int(item["product_id"], f"{field}[{index}].product_id")
        quantity = coerce_int(item["quantity"], f"{field}[{index}].quantity")
        if quantity <= 0:
            raise ValidationError(f"{field}[{index}].quantity must be > 0")
        if quantity > MAX_QUANTITY:
            raise ValidationError(f"{field}[{index}].quantity cannot exceed {MAX_QUANTITY}")
        lines.append({"product_id": product_id, "quantity": quantity})
    return lines


def parse_received(raw: Any) -> dict[int, int] | None:
    """Normalize a purchase-order receipt map {"<line_id>": qty}; None means 'everything outstanding'."""
    if raw is None:
        return None
    if not isinstance(raw, dict) or not raw:
        raise ValidationError("received must be a non-empty object of line_id -> quantity")
    received = {}
    for key, qty in raw.items():
        line_id = coerce_int(key, "received line_id")
        quantity = coerce_int(qty, f"received[{key}]")
        if quantity < 0:
            raise ValidationError(f"received[{key}] must be >= 0")
        received[line_id] = quantity
    return received


def parse_purchase_lines(raw: Any) -> list[dict]:
    """parse_lines plus an optional non-negative unit_cost_cents per line."""
    lines = parse_lines(raw)
    for index, (line, item) in enumerate(zip(lines, raw)):
        if item.get("unit_cost_cents") is None:
            continue
        cost = coerce_int(item["unit_cost_cents"], f"lines[{index}].unit_cost_cents")
        if cost < 0:
            raise ValidationError(f"lines[{index}].unit_cost_cents must be >= 0")
        line["unit_cost_cents"] = cost
    return lines
