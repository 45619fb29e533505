# Overview: Typed results returned by the ledger services and the mutation facade.

"""
Every facade call returns an Outcome:
- ok=True, value=<result>          something changed (maybe with business signals)
- ok=False, error=<LedgerError>    nothing changed
Business signals (credit_limit_exceeded, overpayment, low_stock_reached) are
carried on successful results, never as errors.
"""

from __future__ import annotations

from dataclasses import dataclass, field, asdict
from typing import Generic, Optional, TypeVar

from .errors import LedgerValidationError

SIGNAL_CREDIT_LIMIT_EXCEEDED = "credit_limit_exceeded"
SIGNAL_OVERPAYMENT = "overpayment"
SIGNAL_LOW_STOCK_REACHED = "low_stock_reached"


@dataclass(frozen=True)
class MovementResult:
    movement_id: int
    product_id: int
    source_kind: str
    quantity_delta: int
    previous_quantity: int
    new_quantity: int
    stock_status: str
    low_stock_reached: bool = False

    def signals(self) -> dict:
        if not self.low_stock_reached:
            return {}
        return {
            SIGNAL_LOW_STOCK_REACHED: [
                {"product_id": self.product_id, "quantity": self.new_quantity, "stock_status": self.stock_status}
            ]
        }

    @classmethod
    def from_dict(cls, data: dict) -> "MovementResult":
        return cls(**data)


@dataclass(frozen=True)
class BatchMovementResult:
    movements: list[MovementResult] = field(default_factory=list)

    def signals(self) -> dict:
        return _merge_signals(m.signals() for m in self.movements)

    @classmethod
    def from_dict(cls, data: dict) -> "BatchMovementResult":
        return cls(movements=[MovementResult.from_dict(m) for m in data.get("movements", [])])


@dataclass(frozen=True)
class TransactionResult:
    transaction_id: int
    account_id: int
    type: str
    amount_cents: int
    previous_balance_cents: int
    new_balance_cents: int
    credit_limit_cents: int
    credit_limit_exceeded: bool = False
    over_limit_by_cents: int = 0
    overpayment: bool = False
    overpayment_excess_cents: int = 0

    def signals(self) -> dict:
        signals = {}
        if self.credit_limit_exceeded:
            signals[SIGNAL_CREDIT_LIMIT_EXCEEDED] = {
                "account_id": self.account_id,
                "credit_limit_cents": self.credit_limit_cents,
                "balance_cents": self.new_balance_cents,
                "over_limit_by_cents": self.over_limit_by_cents,
            }
        if self.overpayment:
            signals[SIGNAL_OVERPAYMENT] = {
                "account_id": self.account_id,
                "excess_cents": self.overpayment_excess_cents,
            }
        return signals

    @classmethod
    def from_dict(cls, data: dict) -> "TransactionResult":
        return cls(**data)


@dataclass(frozen=True)
class TransitionResult:
    order_id: int
    previous_status: str
    status: str
    history_id: int
    movements: list[MovementResult] = field(default_factory=list)
    credit: Optional[TransactionResult] = None

    @property
    def credit_limit_exceeded(self) -> bool:
        return bool(self.credit and self.credit.credit_limit_exceeded)

    def signals(self) -> dict:
        parts = [m.signals() for m in self.movements]
        if self.credit is not None:
            parts.append(self.credit.signals())
        return _merge_signals(parts)

    @classmethod
    def from_dict(cls, data: dict) -> "TransitionResult":
        credit = data.get("credit")
        return cls(
            order_id=data["order_id"],
            previous_status=data["previous_status"],
            status=data["status"],
            history_id=data["history_id"],
            movements=[MovementResult.from_dict(m) for m in data.get("movements", [])],
            credit=TransactionResult.from_dict(credit) if credit else None,
        )


@dataclass(frozen=True)
class SaleResult:
    reference: str
    total_cents: int
    movements: list[MovementResult] = field(default_factory=list)
    credit: Optional[TransactionResult] = None

    def signals(self) -> dict:
        parts = [m.signals() for m in self.movements]
        if self.credit is not None:
            parts.append(self.credit.signals())
        return _merge_signals(parts)

    @classmethod
    def from_dict(cls, data: dict) -> "SaleResult":
        credit = data.get("credit")
        return cls(
            reference=data["reference"],
            total_cents=data["total_cents"],
            movements=[MovementResult.from_dict(m) for m in data.get("movements", [])],
            credit=TransactionResult.from_dict(credit) if credit else None,
        )


@dataclass(frozen=True)
class ReceiptResult:
    purchase_order_id: int
    status: str
    movements: list[MovementResult] = field(default_factory=list)

    def signals(self) -> dict:
        return {}

    @classmethod
    def from_dict(cls, data: dict) -> "ReceiptResult":
        return cls(
            purchase_order_id=data["purchase_order_id"],
            status=data["status"],
            movements=[MovementResult.from_dict(m) for m in data.get("movements", [])],
        )


@dataclass(frozen=True)
class RecordResult:
    """Result of a plain record-level operation (order created, account opened, ...)."""
    resource_type: str
    resource_id: int
    audit_entry_id: int
    data: dict = field(default_factory=dict)

    def signals(self) -> dict:
        return {}

    @classmethod
    def from_dict(cls, data: dict) -> "RecordResult":
        return cls(**data)


RESULT_TYPES = {
    cls.__name__: cls
    for cls in (
        MovementResult,
        BatchMovementResult,
        TransactionResult,
        TransitionResult,
        SaleResult,
        ReceiptResult,
        RecordResult,
    )
}


def dump_result(value) -> dict:
    """Serialize a result for idempotent replay."""
    return {"type": type(value).__name__, "data": asdict(value)}


def load_result(payload: dict):
    cls = RESULT_TYPES[payload["type"]]
    return cls.from_dict(payload["data"])


def _merge_signals(parts) -> dict:
    merged: dict = {}
    for signals in parts:
        for name, detail in signals.items():
            if name == SIGNAL_LOW_STOCK_REACHED:
                merged.setdefault(name, []).extend(detail)
            else:
                merged[name] = detail
    return merged


T = TypeVar("T")


@dataclass(frozen=True)
class Outcome(Generic[T]):
    value: Optional[T] = None
    error: Optional[LedgerValidationError] = None
    replayed: bool = False

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def error_kind(self) -> Optional[str]:
        return self.error.kind if self.error is not None else None

    @property
    def signals(self) -> dict:
        if self.value is None or not hasattr(self.value, "signals"):
            return {}
        return self.value.signals()

    @classmethod
    def success(cls, value: T, *, replayed: bool = False) -> "Outcome[T]":
        return cls(value=value, replayed=replayed)

    @classmethod
    def failure(cls, error: LedgerValidationError) -> "Outcome[T]":
        return cls(error=error)

    def to_dict(self) -> dict:
        if not self.ok:
            return {"ok": False, **self.error.to_dict()}
        return {
            "ok": True,
            "result": asdict(self.value) if self.value is not None else None,
            "signals": self.signals,
            "replayed": self.replayed,
        }
