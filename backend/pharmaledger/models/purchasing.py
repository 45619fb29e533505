from __future__ import annotations

from ..extensions import db
from ..time_utils import utcnow, to_utc_z


PO_PENDING = "pending"
PO_APPROVED = "approved"
PO_PARTIALLY_RECEIVED = "partially-received"
PO_RECEIVED = "received"
PO_CANCELLED = "cancelled"

# Statuses a purchase order may be received from
RECEIVABLE_PO_STATUSES = {PO_APPROVED, PO_PARTIALLY_RECEIVED}


class PurchaseOrder(db.Model):
    """
    Supplier purchase order.

    Receiving a PO is the only path by which purchase-receipt stock movements
    are created. Status follows:
        pending -> approved -> (partially-received ->)* received
    and cancelled from pending/approved.
    """
    __tablename__ = "purchase_orders"
    __table_args__ = (
        db.UniqueConstraint("org_id", "po_number", name="uq_purchase_orders_org_number"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, nullable=False, index=True)
    po_number = db.Column(db.String(64), nullable=False)
    supplier_name = db.Column(db.String(255), nullable=True)

    status = db.Column(db.String(32), nullable=False, default=PO_PENDING, index=True)
    notes = db.Column(db.Text, nullable=True)
    total_cost_cents = db.Column(db.Integer, nullable=False, default=0)

    created_by_actor_id = db.Column(db.Integer, nullable=True)
    received_at = db.Column(db.DateTime(timezone=True), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    lines = db.relationship(
        "PurchaseOrderLine",
        backref="purchase_order",
        lazy=True,
        order_by="PurchaseOrderLine.id",
    )

    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self, include_lines: bool = False) -> dict:
        data = {
            "id": self.id,
            "org_id": self.org_id,
            "po_number": self.po_number,
            "supplier_name": self.supplier_name,
            "status": self.status,
            "notes": self.notes,
            "total_cost_cents": self.total_cost_cents,
            "created_by_actor_id": self.created_by_actor_id,
            "received_at": to_utc_z(self.received_at),
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
        if include_lines:
            data["lines"] = [line.to_dict() for line in self.lines]
        return data


class PurchaseOrderLine(db.Model):
    __tablename__ = "purchase_order_lines"
    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="ck_po_lines_quantity_positive"),
        db.CheckConstraint("received_quantity >= 0", name="ck_po_lines_received_non_negative"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    purchase_order_id = db.Column(db.Integer, db.ForeignKey("purchase_orders.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    quantity = db.Column(db.Integer, nullable=False)
    received_quantity = db.Column(db.Integer, nullable=False, default=0)
    unit_cost_cents = db.Column(db.Integer, nullable=True)

    @property
    def outstanding_quantity(self) -> int:
        return max(0, self.quantity - (self.received_quantity or 0))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "purchase_order_id": self.purchase_order_id,
            "product_id": self.product_id,
            "quantity": self.quantity,
            "received_quantity": self.received_quantity,
            "outstanding_quantity": self.outstanding_quantity,
            "unit_cost_cents": self.unit_cost_cents,
        }
