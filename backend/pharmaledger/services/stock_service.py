# Overview: Stock ledger; applies signed quantity movements to products and audits each one.

from __future__ import annotations

from collections import OrderedDict
from dataclasses import dataclass
from typing import Optional

from ..models import Product, StockMovement
from ..models.audit import CATEGORY_INVENTORY
from ..models.inventory import (
    SOURCE_KIND_DIRECTION,
    SOURCE_ORDER_RELEASE,
    STATUS_OUT_OF_STOCK,
    derive_stock_status,
)
from .errors import (
    InsufficientStock,
    InvalidQuantity,
    InvalidRequest,
    InvariantViolation,
    ProductInactive,
)
from .results import BatchMovementResult, MovementResult
"""
Stock Ledger Invariants (authoritative)

Inventory model:
- Product.quantity_on_hand is the single-writer counter; StockMovement rows
  are its history. SUM(quantity_delta) == quantity_on_hand for every product.
- The counter and the movement row are written in the same DB transaction,
  after the product row has been locked (SELECT ... FOR UPDATE + version_id).

Business invariants:
- On-hand quantity may never go negative. A movement that would make it
  negative fails with InsufficientStock and changes nothing.
- Each source kind has a fixed direction (sale/adjustment-remove/order-reserve
  are outbound, the rest inbound); a zero delta is never a movement.
- Stock status (in-stock / low-stock / out-of-stock) is derived from quantity
  on read and never stored.
- Retired products accept only order-release, so reservations can be undone.

Audit:
- Every movement appends exactly one audit entry (category 'inventory') with
  before/after quantity.

Batches:
- apply_movements locks products in ascending id order and applies the
  movements in that order. Any failure raises; the caller's unit of work
  rolls back every movement of the batch.
"""


@dataclass(frozen=True)
class MovementRequest:
    product_id: int
    quantity_delta: int
    source_kind: str
    reason: Optional[str] = None
    reference: Optional[str] = None
    order_id: Optional[int] = None
    purchase_order_id: Optional[int] = None


def validate_movement(request: MovementRequest) -> None:
    """
    Reject malformed movements before any row is locked.

    Raises:
        InvalidRequest: missing/non-integer product id, unknown source kind
        InvalidQuantity: non-integer, zero, or sign not matching the source kind
    """
    product_id = request.product_id
    if not isinstance(product_id, int) or isinstance(product_id, bool):
        raise InvalidRequest(
            "product_id must be an integer",
            details={"product_id": product_id},
        )

    direction = SOURCE_KIND_DIRECTION.get(request.source_kind)
    if direction is None:
        raise InvalidRequest(
            f"Unknown stock source kind '{request.source_kind}'",
            details={"source_kind": request.source_kind, "allowed": sorted(SOURCE_KIND_DIRECTION)},
        )

    delta = request.quantity_delta
    if not isinstance(delta, int) or isinstance(delta, bool):
        raise InvalidQuantity(
            "quantity_delta must be an integer",
            details={"product_id": request.product_id, "quantity_delta": delta},
        )
    if delta == 0:
        raise InvalidQuantity(
            "quantity_delta must be non-zero",
            details={"product_id": request.product_id, "quantity_delta": delta},
        )
    if (delta > 0) != (direction > 0):
        raise InvalidQuantity(
            f"'{request.source_kind}' movements must be {'positive' if direction > 0 else 'negative'}",
            details={
                "product_id": request.product_id,
                "quantity_delta": delta,
                "source_kind": request.source_kind,
            },
        )


class StockLedger:
    def __init__(self, repository, audit_log):
        self.repository = repository
        self.audit_log = audit_log

    def apply_movement(
        self,
        *,
        org_id: int,
        product_id: int,
        quantity_delta: int,
        source_kind: str,
        actor_id: int,
        reason: str | None = None,
        reference: str | None = None,
        order_id: int | None = None,
        purchase_order_id: int | None = None,
    ) -> MovementResult:
        request = MovementRequest(
            product_id=product_id,
            quantity_delta=quantity_delta,
            source_kind=source_kind,
            reason=reason,
            reference=reference,
            order_id=order_id,
            purchase_order_id=purchase_order_id,
        )
        validate_movement(request)
        product = self.repository.get_product(org_id, product_id, lock=True)
        return self._apply_locked(product, request, actor_id=actor_id)

    def apply_movements(
        self,
        *,
        org_id: int,
        movements: list[MovementRequest],
        actor_id: int,
    ) -> BatchMovementResult:
        """
        Apply a list of movements as one all-or-nothing batch.

        Results come back in application order (ascending product id, stable
        for several movements on the same product).
        """
        if not movements:
            raise InvalidRequest("A movement batch needs at least one movement")
        for request in movements:
            validate_movement(request)

        ordered = sorted(movements, key=lambda m: m.product_id)
        products = self.repository.lock_products(org_id, [m.product_id for m in ordered])

        self._check_batch_totals(products, ordered)

        results = [
            self._apply_locked(products[request.product_id], request, actor_id=actor_id)
            for request in ordered
        ]
        return BatchMovementResult(movements=results)

    def _check_batch_totals(self, products: dict[int, Product], ordered: list[MovementRequest]) -> None:
        # Report shortages against the whole batch's demand per product, so the
        # error shows the real deficit rather than whatever line tipped it over.
        net: "OrderedDict[int, int]" = OrderedDict()
        for request in ordered:
            net[request.product_id] = net.get(request.product_id, 0) + request.quantity_delta

        for product_id, total in net.items():
            on_hand = products[product_id].quantity_on_hand
            if on_hand + total < 0:
                raise InsufficientStock(product_id=product_id, on_hand=on_hand, requested=-total)

    def _apply_locked(self, product: Product, request: MovementRequest, *, actor_id: int) -> MovementResult:
        if not product.is_active and request.source_kind != SOURCE_ORDER_RELEASE:
            raise ProductInactive(
                f"Product {product.id} is retired",
                details={"product_id": product.id, "source_kind": request.source_kind},
            )

        previous = product.quantity_on_hand
        new_quantity = previous + request.quantity_delta
        if new_quantity < 0:
            raise InsufficientStock(
                product_id=product.id, on_hand=previous, requested=-request.quantity_delta
            )

        product.quantity_on_hand = new_quantity
        movement = StockMovement(
            org_id=product.org_id,
            product_id=product.id,
            quantity_delta=request.quantity_delta,
            source_kind=request.source_kind,
            reason=request.reason,
            reference=request.reference,
            actor_id=actor_id,
            resulting_quantity=new_quantity,
            order_id=request.order_id,
            purchase_order_id=request.purchase_order_id,
        )
        self.repository.add(movement)
        self.repository.flush()

        min_stock = product.min_stock or 0
        previous_status = derive_stock_status(previous, min_stock)
        new_status = derive_stock_status(new_quantity, min_stock)
        low_stock_reached = previous > min_stock >= new_quantity

        self.audit_log.record(
            org_id=product.org_id,
            actor_id=actor_id,
            action="stock.movement",
            resource_type="product",
            resource_id=product.id,
            category=CATEGORY_INVENTORY,
            before={"quantity_on_hand": previous, "stock_status": previous_status},
            after={"quantity_on_hand": new_quantity, "stock_status": new_status},
            details={
                "movement_id": movement.id,
                "source_kind": request.source_kind,
                "quantity_delta": request.quantity_delta,
                "reason": request.reason,
                "reference": request.reference,
                "order_id": request.order_id,
                "purchase_order_id": request.purchase_order_id,
            },
        )

        return MovementResult(
            movement_id=movement.id,
            product_id=product.id,
            source_kind=request.source_kind,
            quantity_delta=request.quantity_delta,
            previous_quantity=previous,
            new_quantity=new_quantity,
            stock_status=new_status,
            low_stock_reached=low_stock_reached,
        )

    def reconcile(self, *, org_id: int, product_id: int) -> dict:
        """
        Compare the stored counter with the movement history.

        Raises:
            InvariantViolation: quantity_on_hand != SUM(quantity_delta)
        """
        product = self.repository.get_product(org_id, product_id)
        history_total = self.repository.movement_total(product.id)
        if history_total != product.quantity_on_hand:
            raise InvariantViolation(
                f"Product {product.id} quantity {product.quantity_on_hand} "
                f"disagrees with movement history {history_total}",
                details={
                    "product_id": product.id,
                    "quantity_on_hand": product.quantity_on_hand,
                    "history_total": history_total,
                },
            )
        return {"product_id": product.id, "quantity_on_hand": product.quantity_on_hand}

    def list_low_stock(self, *, org_id: int, include_out_of_stock: bool = True) -> list[dict]:
        """
        Active products at or below their minimum stock, lowest quantity first.

        Each item is the product dict, which carries the derived stock_status.
        """
        products = (
            self.repository.query(Product)
            .filter(
                Product.org_id == org_id,
                Product.is_active.is_(True),
                Product.quantity_on_hand <= Product.min_stock,
            )
            .order_by(Product.quantity_on_hand.asc(), Product.id.asc())
            .all()
        )
        return [
            product.to_dict()
            for product in products
            if include_out_of_stock
            or derive_stock_status(product.quantity_on_hand, product.min_stock or 0) != STATUS_OUT_OF_STOCK
        ]

    def list_movements(self, *, org_id: int, product_id: int, limit: int = 200) -> list[StockMovement]:
        self.repository.get_product(org_id, product_id)
        return (
            self.repository.query(StockMovement)
            .filter_by(org_id=org_id, product_id=product_id)
            .order_by(StockMovement.occurred_at.desc(), StockMovement.id.desc())
            .limit(limit)
            .all()
        )
