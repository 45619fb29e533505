# Overview: Order status machine; legal transitions plus their stock and credit side effects.

from __future__ import annotations

from ..models import Order, OrderLine, OrderStatusChange
from ..models.audit import CATEGORY_ORDER
from ..models.credit import TX_CREDIT
from ..models.inventory import SOURCE_ORDER_RELEASE, SOURCE_ORDER_RESERVE
from ..models.orders import (
    ORDER_CANCELLED,
    ORDER_CONFIRMED,
    ORDER_DELIVERED,
    ORDER_OUT_FOR_DELIVERY,
    ORDER_PACKED,
    ORDER_PENDING,
    ORDER_SHIPPED,
    ORDER_STATUSES,
    PAYMENT_CHARGED_TO_CREDIT,
    PAYMENT_CREDIT,
    PAYMENT_METHODS,
)
from .errors import (
    AccountNotFound,
    InvalidQuantity,
    InvalidRequest,
    InvalidTransition,
    ProductInactive,
)
from .results import RecordResult, TransitionResult
from .stock_service import MovementRequest
"""
Order Status Machine Invariants (authoritative)

Lifecycle:
    pending -> confirmed -> packed -> shipped -> out-for-delivery -> delivered
    cancelled is reachable from every non-terminal status.
    delivered and cancelled are terminal. Anything else is InvalidTransition.

Side effects (same unit of work as the status change):
- pending -> confirmed: one order-reserve batch for all lines. A shortage on
  any line fails the confirmation; the order stays pending.
- -> cancelled while stock is reserved (confirmed .. out-for-delivery): one
  order-release batch reversing the reservation.
- -> delivered with payment_method 'credit': one credit transaction for the
  order total against the wholesaler/retailer account. Going over the limit
  is surfaced on the result and does not block delivery; a missing or
  non-active account does.

Record keeping:
- Each transition appends one OrderStatusChange row and one 'order' audit
  entry with before/after status.
"""


LEGAL_TRANSITIONS = {
    ORDER_PENDING: {ORDER_CONFIRMED, ORDER_CANCELLED},
    ORDER_CONFIRMED: {ORDER_PACKED, ORDER_CANCELLED},
    ORDER_PACKED: {ORDER_SHIPPED, ORDER_CANCELLED},
    ORDER_SHIPPED: {ORDER_OUT_FOR_DELIVERY, ORDER_CANCELLED},
    ORDER_OUT_FOR_DELIVERY: {ORDER_DELIVERED, ORDER_CANCELLED},
    ORDER_DELIVERED: set(),
    ORDER_CANCELLED: set(),
}


def can_transition(from_status: str, to_status: str) -> bool:
    return to_status in LEGAL_TRANSITIONS.get(from_status, set())


def _order_reference(order: Order) -> str:
    return f"order:{order.id}"


class OrderStatusMachine:
    def __init__(self, repository, stock_ledger, credit_ledger, audit_log):
        self.repository = repository
        self.stock_ledger = stock_ledger
        self.credit_ledger = credit_ledger
        self.audit_log = audit_log

    def create_order(
        self,
        *,
        org_id: int,
        wholesaler_id: int,
        retailer_id: int,
        lines: list[dict],
        actor_id: int,
        payment_method: str = "cash",
        notes: str | None = None,
    ) -> RecordResult:
        """
        Create a pending order. Unit prices are copied from the products now,
        so later price edits never change what the retailer owes.

        lines: [{"product_id": int, "quantity": int}, ...]
        """
        if payment_method not in PAYMENT_METHODS:
            raise InvalidRequest(
                f"Unknown payment method '{payment_method}'",
                details={"payment_method": payment_method, "allowed": sorted(PAYMENT_METHODS)},
            )
        if not lines:
            raise InvalidRequest("An order needs at least one line")

        order = Order(
            org_id=org_id,
            wholesaler_id=wholesaler_id,
            retailer_id=retailer_id,
            status=ORDER_PENDING,
            payment_method=payment_method,
            notes=notes,
            created_by_actor_id=actor_id,
        )
        self.repository.add(order)

        total = 0
        for raw in lines:
            if not isinstance(raw, dict):
                raise InvalidRequest("Each order line must be an object", details={"line": raw})
            product_id = raw.get("product_id")
            quantity = raw.get("quantity")
            if not isinstance(quantity, int) or isinstance(quantity, bool) or quantity <= 0:
                raise InvalidQuantity(
                    "Order line quantity must be a positive integer",
                    details={"product_id": product_id, "quantity": quantity},
                )
            product = self.repository.get_product(org_id, product_id)
            if not product.is_active:
                raise ProductInactive(
                    f"Product {product.id} is retired",
                    details={"product_id": product.id},
                )
            unit_price = product.unit_price_cents or 0
            line_total = unit_price * quantity
            total += line_total
            order.lines.append(
                OrderLine(
                    product_id=product.id,
                    quantity=quantity,
                    unit_price_cents=unit_price,
                    line_total_cents=line_total,
                )
            )

        order.total_cents = total
        self.repository.flush()

        self.repository.add(
            OrderStatusChange(
                order_id=order.id,
                previous_status=None,
                status=ORDER_PENDING,
                changed_by_actor_id=actor_id,
                notes=notes,
            )
        )
        self.repository.flush()

        entry_id = self.audit_log.record(
            org_id=org_id,
            actor_id=actor_id,
            action="order.created",
            resource_type="order",
            resource_id=order.id,
            category=CATEGORY_ORDER,
            after={"status": order.status, "total_cents": order.total_cents},
            details={
                "wholesaler_id": wholesaler_id,
                "retailer_id": retailer_id,
                "payment_method": payment_method,
                "line_count": len(order.lines),
            },
        )
        return RecordResult("order", order.id, entry_id, order.to_dict(include_lines=True))

    def transition(
        self,
        *,
        org_id: int,
        order_id: int,
        target_status: str,
        actor_id: int,
        notes: str | None = None,
    ) -> TransitionResult:
        order = self.repository.get_order(org_id, order_id, lock=True)
        previous_status = order.status
        previous_payment_status = order.payment_status
        # Unknown target statuses have no edge in LEGAL_TRANSITIONS either.
        if target_status not in ORDER_STATUSES or not can_transition(previous_status, target_status):
            raise InvalidTransition(order_id=order.id, from_status=previous_status, to_status=target_status)

        movements = []
        if target_status == ORDER_CONFIRMED:
            movements = self._move_lines(order, SOURCE_ORDER_RESERVE, actor_id=actor_id)
        elif target_status == ORDER_CANCELLED and order.holds_reservation:
            movements = self._move_lines(order, SOURCE_ORDER_RELEASE, actor_id=actor_id)

        credit = None
        if target_status == ORDER_DELIVERED and order.payment_method == PAYMENT_CREDIT:
            credit = self._charge_credit(order, actor_id=actor_id)
            order.payment_status = PAYMENT_CHARGED_TO_CREDIT

        order.status = target_status
        change = OrderStatusChange(
            order_id=order.id,
            previous_status=previous_status,
            status=target_status,
            changed_by_actor_id=actor_id,
            notes=notes,
        )
        self.repository.add(change)
        self.repository.flush()

        self.audit_log.record(
            org_id=org_id,
            actor_id=actor_id,
            action="order.transition",
            resource_type="order",
            resource_id=order.id,
            category=CATEGORY_ORDER,
            before={"status": previous_status, "payment_status": previous_payment_status},
            after={"status": order.status, "payment_status": order.payment_status},
            details={
                "notes": notes,
                "history_id": change.id,
                "movement_ids": [m.movement_id for m in movements],
                "credit_transaction_id": credit.transaction_id if credit else None,
            },
        )

        return TransitionResult(
            order_id=order.id,
            previous_status=previous_status,
            status=order.status,
            history_id=change.id,
            movements=movements,
            credit=credit,
        )

    def _move_lines(self, order: Order, source_kind: str, *, actor_id: int) -> list:
        sign = -1 if source_kind == SOURCE_ORDER_RESERVE else 1
        requests = [
            MovementRequest(
                product_id=line.product_id,
                quantity_delta=sign * line.quantity,
                source_kind=source_kind,
                reason=f"Order {order.id} {'confirmed' if sign < 0 else 'cancelled'}",
                reference=_order_reference(order),
                order_id=order.id,
            )
            for line in order.lines
        ]
        batch = self.stock_ledger.apply_movements(
            org_id=order.org_id, movements=requests, actor_id=actor_id
        )
        return batch.movements

    def _charge_credit(self, order: Order, *, actor_id: int):
        if order.total_cents <= 0:
            return None
        account = self.repository.find_account(
            order.org_id, order.wholesaler_id, order.retailer_id, lock=True
        )
        if account is None:
            raise AccountNotFound(wholesaler_id=order.wholesaler_id, retailer_id=order.retailer_id)
        return self.credit_ledger.apply_locked(
            account,
            type=TX_CREDIT,
            amount_cents=order.total_cents,
            actor_id=actor_id,
            reference=_order_reference(order),
            order_id=order.id,
        )

    def history(self, *, org_id: int, order_id: int) -> list[OrderStatusChange]:
        order = self.repository.get_order(org_id, order_id)
        return (
            self.repository.query(OrderStatusChange)
            .filter_by(order_id=order.id)
            .order_by(OrderStatusChange.changed_at.asc(), OrderStatusChange.id.asc())
            .all()
        )
