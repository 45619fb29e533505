from __future__ import annotations

from ..extensions import db
from ..time_utils import utcnow, to_utc_z


# Stock movement source kinds and the sign each one must carry.
SOURCE_SALE = "sale"
SOURCE_ADJUSTMENT_ADD = "adjustment-add"
SOURCE_ADJUSTMENT_REMOVE = "adjustment-remove"
SOURCE_PURCHASE_RECEIPT = "purchase-receipt"
SOURCE_RETURN = "return"
SOURCE_ORDER_RESERVE = "order-reserve"
SOURCE_ORDER_RELEASE = "order-release"

SOURCE_KIND_DIRECTION = {
    SOURCE_SALE: -1,
    SOURCE_ADJUSTMENT_ADD: 1,
    SOURCE_ADJUSTMENT_REMOVE: -1,
    SOURCE_PURCHASE_RECEIPT: 1,
    SOURCE_RETURN: 1,
    SOURCE_ORDER_RESERVE: -1,
    SOURCE_ORDER_RELEASE: 1,
}

STATUS_IN_STOCK = "in-stock"
STATUS_LOW_STOCK = "low-stock"
STATUS_OUT_OF_STOCK = "out-of-stock"


def derive_stock_status(quantity: int, min_stock: int) -> str:
    """Stock status is a pure projection of quantity; it is never stored."""
    if quantity <= 0:
        return STATUS_OUT_OF_STOCK
    if quantity <= (min_stock or 0):
        return STATUS_LOW_STOCK
    return STATUS_IN_STOCK


class Product(db.Model):
    """
    Product master data plus the authoritative quantity on hand.

    MULTI-TENANT: Products are scoped to an organization via org_id.

    QUANTITY DESIGN DECISION:
    quantity_on_hand is a stored counter, but it is ONLY written by the stock
    ledger together with a StockMovement row in the same DB transaction.
    - SUM(stock_movements.quantity_delta) == quantity_on_hand at all times
    - CHECK constraint keeps the counter non-negative even if a caller bypasses
      the ledger
    - version_id_col turns a lost update into StaleDataError (retried)

    Products are never deleted; retirement flips is_active.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.UniqueConstraint("org_id", "sku", name="uq_products_org_sku"),
        db.CheckConstraint("quantity_on_hand >= 0", name="ck_products_quantity_non_negative"),
        db.CheckConstraint("min_stock >= 0", name="ck_products_min_stock_non_negative"),
        db.Index("ix_products_org_active", "org_id", "is_active"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, nullable=False, index=True)

    sku = db.Column(db.String(64), nullable=False)
    name = db.Column(db.String(255), nullable=False)

    quantity_on_hand = db.Column(db.Integer, nullable=False, default=0)
    min_stock = db.Column(db.Integer, nullable=False, default=0)
    max_stock = db.Column(db.Integer, nullable=True)

    # Authoritative storage in minor units
    unit_cost_cents = db.Column(db.Integer, nullable=True)
    unit_price_cents = db.Column(db.Integer, nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    __mapper_args__ = {"version_id_col": version_id}

    @property
    def stock_status(self) -> str:
        return derive_stock_status(self.quantity_on_hand or 0, self.min_stock or 0)

    def __repr__(self) -> str:
        return f"<Product id={self.id} sku={self.sku!r} qty={self.quantity_on_hand} org_id={self.org_id}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "org_id": self.org_id,
            "sku": self.sku,
            "name": self.name,
            "quantity_on_hand": self.quantity_on_hand,
            "min_stock": self.min_stock,
            "max_stock": self.max_stock,
            "stock_status": self.stock_status,
            "unit_cost_cents": self.unit_cost_cents,
            "unit_price_cents": self.unit_price_cents,
            "is_active": self.is_active,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class StockMovement(db.Model):
    """Immutable signed quantity change. Append-only: never updated or deleted."""
    __tablename__ = "stock_movements"
    __table_args__ = (
        db.CheckConstraint("quantity_delta <> 0", name="ck_stock_movements_delta_non_zero"),
        db.CheckConstraint("resulting_quantity >= 0", name="ck_stock_movements_result_non_negative"),
        db.Index("ix_stock_movements_product_occurred", "product_id", "occurred_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    quantity_delta = db.Column(db.Integer, nullable=False)
    source_kind = db.Column(db.String(32), nullable=False, index=True)
    reason = db.Column(db.String(255), nullable=True)
    reference = db.Column(db.String(128), nullable=True, index=True)

    actor_id = db.Column(db.Integer, nullable=False, index=True)

    # Snapshot of product quantity after this movement was applied
    resulting_quantity = db.Column(db.Integer, nullable=False)

    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=True, index=True)
    purchase_order_id = db.Column(db.Integer, db.ForeignKey("purchase_orders.id"), nullable=True, index=True)

    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, index=True)

    product = db.relationship("Product", backref=db.backref("movements", lazy="dynamic"))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "org_id": self.org_id,
            "product_id": self.product_id,
            "quantity_delta": self.quantity_delta,
            "source_kind": self.source_kind,
            "reason": self.reason,
            "reference": self.reference,
            "actor_id": self.actor_id,
            "resulting_quantity": self.resulting_quantity,
            "order_id": self.order_id,
            "purchase_order_id": self.purchase_order_id,
            "occurred_at": to_utc_z(self.occurred_at),
        }
