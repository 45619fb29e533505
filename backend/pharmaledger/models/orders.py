from __future__ import annotations

from ..extensions import db
from ..time_utils import utcnow, to_utc_z


ORDER_PENDING = "pending"
ORDER_CONFIRMED = "confirmed"
ORDER_PACKED = "packed"
ORDER_SHIPPED = "shipped"
ORDER_OUT_FOR_DELIVERY = "out-for-delivery"
ORDER_DELIVERED = "delivered"
ORDER_CANCELLED = "cancelled"

ORDER_STATUSES = (
    ORDER_PENDING,
    ORDER_CONFIRMED,
    ORDER_PACKED,
    ORDER_SHIPPED,
    ORDER_OUT_FOR_DELIVERY,
    ORDER_DELIVERED,
    ORDER_CANCELLED,
)
TERMINAL_ORDER_STATUSES = {ORDER_DELIVERED, ORDER_CANCELLED}

# Statuses in which the order's lines hold reserved stock
RESERVED_ORDER_STATUSES = {ORDER_CONFIRMED, ORDER_PACKED, ORDER_SHIPPED, ORDER_OUT_FOR_DELIVERY}

PAYMENT_CASH = "cash"
PAYMENT_CARD = "card"
PAYMENT_MOBILE_MONEY = "mobile-money"
PAYMENT_CREDIT = "credit"
PAYMENT_METHODS = {PAYMENT_CASH, PAYMENT_CARD, PAYMENT_MOBILE_MONEY, PAYMENT_CREDIT}

PAYMENT_UNPAID = "unpaid"
PAYMENT_PAID = "paid"
PAYMENT_CHARGED_TO_CREDIT = "charged-to-credit"


class Order(db.Model):
    """
    Retailer order placed with a wholesaler.

    Status is only changed by the order status machine; each transition
    appends an OrderStatusChange row and an audit entry.
    """
    __tablename__ = "orders"
    __table_args__ = (
        db.Index("ix_orders_org_status", "org_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, nullable=False, index=True)
    wholesaler_id = db.Column(db.Integer, nullable=False, index=True)
    retailer_id = db.Column(db.Integer, nullable=False, index=True)

    status = db.Column(db.String(32), nullable=False, default=ORDER_PENDING, index=True)
    payment_method = db.Column(db.String(32), nullable=False, default=PAYMENT_CASH)
    payment_status = db.Column(db.String(32), nullable=False, default=PAYMENT_UNPAID)
    total_cents = db.Column(db.Integer, nullable=False, default=0)
    notes = db.Column(db.Text, nullable=True)

    created_by_actor_id = db.Column(db.Integer, nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    lines = db.relationship("OrderLine", backref="order", lazy=True, order_by="OrderLine.id")

    __mapper_args__ = {"version_id_col": version_id}

    @property
    def holds_reservation(self) -> bool:
        return self.status in RESERVED_ORDER_STATUSES

    def to_dict(self, include_lines: bool = False) -> dict:
        data = {
            "id": self.id,
            "org_id": self.org_id,
            "wholesaler_id": self.wholesaler_id,
            "retailer_id": self.retailer_id,
            "status": self.status,
            "payment_method": self.payment_method,
            "payment_status": self.payment_status,
            "total_cents": self.total_cents,
            "notes": self.notes,
            "created_by_actor_id": self.created_by_actor_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
        if include_lines:
            data["lines"] = [line.to_dict() for line in self.lines]
        return data


class OrderLine(db.Model):
    """Line item with the unit price snapshotted at order time."""
    __tablename__ = "order_lines"
    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="ck_order_lines_quantity_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    line_total_cents = db.Column(db.Integer, nullable=False)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "product_id": self.product_id,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "line_total_cents": self.line_total_cents,
        }


class OrderStatusChange(db.Model):
    """Append-only order status history."""
    __tablename__ = "order_status_history"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    previous_status = db.Column(db.String(32), nullable=True)
    status = db.Column(db.String(32), nullable=False)
    changed_by_actor_id = db.Column(db.Integer, nullable=False)
    notes = db.Column(db.Text, nullable=True)
    changed_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, index=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "previous_status": self.previous_status,
            "status": self.status,
            "changed_by_actor_id": self.changed_by_actor_id,
            "notes": self.notes,
            "changed_at": to_utc_z(self.changed_at),
        }
