from __future__ import annotations

from ..extensions import db
from ..time_utils import utcnow, to_utc_z


CATEGORY_INVENTORY = "inventory"
CATEGORY_CREDIT = "credit"
CATEGORY_ORDER = "order"
CATEGORY_PURCHASING = "purchasing"
CATEGORY_ADMIN = "admin"
AUDIT_CATEGORIES = {
    CATEGORY_INVENTORY,
    CATEGORY_CREDIT,
    CATEGORY_ORDER,
    CATEGORY_PURCHASING,
    CATEGORY_ADMIN,
}


class AuditLogEntry(db.Model):
    """
    Append-only audit record: who did what to which resource, before and after.

    - Written inside the same DB transaction as the change it describes.
    - No update or delete path exists anywhere in the service layer.
    - created_at is assigned in Python (microsecond precision) so that
      (created_at DESC, id DESC) is a stable keyset ordering.
    """
    __tablename__ = "audit_log_entries"
    __table_args__ = (
        db.Index("ix_audit_org_created", "org_id", "created_at", "id"),
        db.Index("ix_audit_resource", "resource_type", "resource_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, nullable=False, index=True)

    actor_id = db.Column(db.Integer, nullable=False, index=True)
    action = db.Column(db.String(64), nullable=False, index=True)  # e.g. stock.movement, credit.transaction, order.transition
    category = db.Column(db.String(32), nullable=False, index=True)  # inventory, credit, order, purchasing, admin

    resource_type = db.Column(db.String(64), nullable=False, index=True)  # product, credit_account, order, ...
    resource_id = db.Column(db.String(64), nullable=True)

    before = db.Column(db.JSON, nullable=True)
    after = db.Column(db.JSON, nullable=True)
    details = db.Column(db.JSON, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "org_id": self.org_id,
            "actor_id": self.actor_id,
            "action": self.action,
            "category": self.category,
            "resource_type": self.resource_type,
            "resource_id": self.resource_id,
            "before": self.before,
            "after": self.after,
            "details": self.details,
            "created_at": to_utc_z(self.created_at),
        }


class IdempotencyRecord(db.Model):
    """
    Result of a successful facade call, keyed by a caller-supplied key.

    A replay with the same (org_id, key) returns result_payload instead of
    re-applying the mutation. A replay whose request_hash differs is refused.
    """
    __tablename__ = "idempotency_records"
    __table_args__ = (
        db.UniqueConstraint("org_id", "key", name="uq_idempotency_org_key"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, nullable=False)
    key = db.Column(db.String(128), nullable=False)
    operation = db.Column(db.String(64), nullable=False)
    request_hash = db.Column(db.String(64), nullable=True)  # sha256 of the canonical request
    actor_id = db.Column(db.Integer, nullable=False)
    result_payload = db.Column(db.JSON, nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, index=True)
