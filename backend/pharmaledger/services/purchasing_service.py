# Overview: Purchase order receiving; turns received lines into purchase-receipt stock movements.

from __future__ import annotations

from ..models import PurchaseOrder, PurchaseOrderLine
from ..models.audit import CATEGORY_PURCHASING
from ..models.inventory import SOURCE_PURCHASE_RECEIPT
from ..models.purchasing import (
    PO_APPROVED,
    PO_PARTIALLY_RECEIVED,
    PO_PENDING,
    PO_RECEIVED,
    RECEIVABLE_PO_STATUSES,
)
from ..time_utils import utcnow
from .errors import InvalidQuantity, InvalidRequest, ProductInactive
from .results import ReceiptResult, RecordResult
from .stock_service import MovementRequest


def _is_count(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


class PurchaseReceiving:
    def __init__(self, repository, stock_ledger, audit_log):
        self.repository = repository
        self.stock_ledger = stock_ledger
        self.audit_log = audit_log

    def create_purchase_order(
        self,
        *,
        org_id: int,
        po_number: str,
        lines: list[dict],
        actor_id: int,
        supplier_name: str | None = None,
        notes: str | None = None,
    ) -> RecordResult:
        """
        Open a pending purchase order with its lines.

        lines: [{"product_id": int, "quantity": int, "unit_cost_cents": int?}, ...]
        unit_cost_cents defaults to the product's current unit cost. No stock
        moves until the order is approved and received.
        """
        if not isinstance(po_number, str) or not po_number.strip():
            raise InvalidRequest("po_number is required")
        po_number = po_number.strip()
        if not lines:
            raise InvalidRequest("A purchase order needs at least one line")
        if self.repository.find_purchase_order_by_number(org_id, po_number) is not None:
            raise InvalidRequest(
                f"Purchase order number '{po_number}' is already in use",
                details={"po_number": po_number},
            )

        po = PurchaseOrder(
            org_id=org_id,
            po_number=po_number,
            supplier_name=supplier_name,
            status=PO_PENDING,
            notes=notes,
            created_by_actor_id=actor_id,
        )
        self.repository.add(po)

        total = 0
        for raw in lines:
            if not isinstance(raw, dict):
                raise InvalidRequest("Each purchase order line must be an object", details={"line": raw})
            product_id = raw.get("product_id")
            quantity = raw.get("quantity")
            if not _is_count(product_id):
                raise InvalidRequest("product_id must be an integer", details={"product_id": product_id})
            if not _is_count(quantity) or quantity <= 0:
                raise InvalidQuantity(
                    "Purchase order line quantity must be a positive integer",
                    details={"product_id": product_id, "quantity": quantity},
                )
            product = self.repository.get_product(org_id, product_id)
            if not product.is_active:
                raise ProductInactive(
                    f"Product {product.id} is retired",
                    details={"product_id": product.id},
                )
            unit_cost = raw.get("unit_cost_cents", product.unit_cost_cents)
            if unit_cost is not None and (not _is_count(unit_cost) or unit_cost < 0):
                raise InvalidQuantity(
                    "unit_cost_cents must be a non-negative integer",
                    details={"product_id": product_id, "unit_cost_cents": unit_cost},
                )
            total += (unit_cost or 0) * quantity
            po.lines.append(
                PurchaseOrderLine(product_id=product.id, quantity=quantity, unit_cost_cents=unit_cost)
            )

        po.total_cost_cents = total
        self.repository.flush()

        entry_id = self.audit_log.record(
            org_id=org_id,
            actor_id=actor_id,
            action="purchase_order.created",
            resource_type="purchase_order",
            resource_id=po.id,
            category=CATEGORY_PURCHASING,
            after={"status": po.status, "total_cost_cents": po.total_cost_cents},
            details={
                "po_number": po.po_number,
                "supplier_name": supplier_name,
                "line_count": len(po.lines),
            },
        )
        return RecordResult("purchase_order", po.id, entry_id, po.to_dict(include_lines=True))

    def approve(self, *, org_id: int, purchase_order_id: int, actor_id: int) -> RecordResult:
        po = self.repository.get_purchase_order(org_id, purchase_order_id, lock=True)
        if po.status != PO_PENDING:
            raise InvalidRequest(
                f"Purchase order {po.id} is {po.status} and cannot be approved",
                details={"purchase_order_id": po.id, "status": po.status},
            )

        po.status = PO_APPROVED
        self.repository.flush()

        entry_id = self.audit_log.record(
            org_id=org_id,
            actor_id=actor_id,
            action="purchase_order.approved",
            resource_type="purchase_order",
            resource_id=po.id,
            category=CATEGORY_PURCHASING,
            before={"status": PO_PENDING},
            after={"status": po.status},
            details={"po_number": po.po_number},
        )
        return RecordResult("purchase_order", po.id, entry_id, po.to_dict(include_lines=True))

    def receive(
        self,
        *,
        org_id: int,
        purchase_order_id: int,
        actor_id: int,
        received: dict[int, int] | None = None,
    ) -> ReceiptResult:
        """
        Receive a purchase order in full or in part.

        received maps line id -> quantity arriving now. None receives every
        outstanding quantity. Over-receiving a line is refused.
        """
        po = self.repository.get_purchase_order(org_id, purchase_order_id, lock=True)
        if po.status not in RECEIVABLE_PO_STATUSES:
            raise InvalidRequest(
                f"Purchase order {po.id} is {po.status} and cannot be received",
                details={"purchase_order_id": po.id, "status": po.status},
            )

        quantities = self._resolve_quantities(po, received)
        if not quantities:
            raise InvalidRequest(
                f"Nothing to receive on purchase order {po.id}",
                details={"purchase_order_id": po.id},
            )

        lines = {line.id: line for line in po.lines}
        requests = [
            MovementRequest(
                product_id=lines[line_id].product_id,
                quantity_delta=qty,
                source_kind=SOURCE_PURCHASE_RECEIPT,
                reason=f"Received on {po.po_number}",
                reference=po.po_number,
                purchase_order_id=po.id,
            )
            for line_id, qty in quantities.items()
        ]
        batch = self.stock_ledger.apply_movements(org_id=org_id, movements=requests, actor_id=actor_id)

        previous_status = po.status
        for line_id, qty in quantities.items():
            lines[line_id].received_quantity = (lines[line_id].received_quantity or 0) + qty

        if all(line.outstanding_quantity == 0 for line in po.lines):
            po.status = PO_RECEIVED
            po.received_at = utcnow()
        else:
            po.status = PO_PARTIALLY_RECEIVED
        self.repository.flush()

        self.audit_log.record(
            org_id=org_id,
            actor_id=actor_id,
            action="purchase_order.received",
            resource_type="purchase_order",
            resource_id=po.id,
            category=CATEGORY_PURCHASING,
            before={"status": previous_status},
            after={"status": po.status},
            details={
                "po_number": po.po_number,
                "received": {str(line_id): qty for line_id, qty in quantities.items()},
                "movement_ids": [m.movement_id for m in batch.movements],
            },
        )
        return ReceiptResult(purchase_order_id=po.id, status=po.status, movements=batch.movements)

    def _resolve_quantities(self, po: PurchaseOrder, received: dict | None) -> dict[int, int]:
        lines = {line.id: line for line in po.lines}
        if received is None:
            return {
                line.id: line.outstanding_quantity
                for line in po.lines
                if line.outstanding_quantity > 0
            }

        quantities = {}
        for line_id, qty in received.items():
            line = lines.get(line_id)
            if line is None:
                raise InvalidRequest(
                    f"Line {line_id} does not belong to purchase order {po.id}",
                    details={"purchase_order_id": po.id, "line_id": line_id},
                )
            if not isinstance(qty, int) or isinstance(qty, bool) or qty < 0:
                raise InvalidQuantity(
                    "Received quantity must be a non-negative integer",
                    details={"line_id": line_id, "quantity": qty},
                )
            if qty > line.outstanding_quantity:
                raise InvalidQuantity(
                    f"Line {line_id} has only {line.outstanding_quantity} outstanding",
                    details={
                        "line_id": line_id,
                        "quantity": qty,
                        "outstanding": line.outstanding_quantity,
                    },
                )
            if qty:
                quantities[line_id] = qty
        return quantities
