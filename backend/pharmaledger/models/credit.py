from __future__ import annotations

from ..extensions import db
from ..time_utils import utcnow, to_utc_z


ACCOUNT_ACTIVE = "active"
ACCOUNT_SUSPENDED = "suspended"
ACCOUNT_CLOSED = "closed"
ACCOUNT_STATUSES = {ACCOUNT_ACTIVE, ACCOUNT_SUSPENDED, ACCOUNT_CLOSED}

TX_CREDIT = "credit"    # goods taken on credit: balance +
TX_PAYMENT = "payment"  # retailer pays down: balance -
TX_DEBIT = "debit"      # fees / charges: balance +
TRANSACTION_TYPES = {TX_CREDIT, TX_PAYMENT, TX_DEBIT}

REQUEST_PENDING = "pending"
REQUEST_UNDER_REVIEW = "under-review"
REQUEST_APPROVED = "approved"
REQUEST_REJECTED = "rejected"
OPEN_REQUEST_STATUSES = {REQUEST_PENDING, REQUEST_UNDER_REVIEW}


class CreditRequest(db.Model):
    """A retailer's application for a credit line with a wholesaler."""
    __tablename__ = "credit_requests"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, nullable=False, index=True)
    wholesaler_id = db.Column(db.Integer, nullable=False, index=True)
    retailer_id = db.Column(db.Integer, nullable=False, index=True)

    business_name = db.Column(db.String(255), nullable=True)
    requested_amount_cents = db.Column(db.Integer, nullable=False)
    credit_purpose = db.Column(db.Text, nullable=True)

    status = db.Column(db.String(32), nullable=False, default=REQUEST_PENDING, index=True)
    reviewed_by_actor_id = db.Column(db.Integer, nullable=True)
    review_notes = db.Column(db.Text, nullable=True)
    approved_limit_cents = db.Column(db.Integer, nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "org_id": self.org_id,
            "wholesaler_id": self.wholesaler_id,
            "retailer_id": self.retailer_id,
            "business_name": self.business_name,
            "requested_amount_cents": self.requested_amount_cents,
            "credit_purpose": self.credit_purpose,
            "status": self.status,
            "reviewed_by_actor_id": self.reviewed_by_actor_id,
            "review_notes": self.review_notes,
            "approved_limit_cents": self.approved_limit_cents,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class CreditAccount(db.Model):
    """
    Wholesaler-issued credit line for one retailer.

    BALANCE DESIGN DECISION:
    balance_cents is the amount owed. It is written only by the credit ledger,
    together with a CreditTransaction in the same DB transaction, so
    SUM(credit_transactions.balance_delta_cents) == balance_cents always.

    Exceeding the limit is NOT blocked; is_over_limit is raised instead and
    must be resolved by someone with override authority (limit change or
    collections). It is cleared automatically once balance <= limit.
    """
    __tablename__ = "credit_accounts"
    __table_args__ = (
        db.UniqueConstraint("org_id", "wholesaler_id", "retailer_id", name="uq_credit_accounts_parties"),
        db.CheckConstraint("credit_limit_cents >= 0", name="ck_credit_accounts_limit_non_negative"),
        db.CheckConstraint("balance_cents >= 0", name="ck_credit_accounts_balance_non_negative"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, nullable=False, index=True)
    wholesaler_id = db.Column(db.Integer, nullable=False, index=True)
    retailer_id = db.Column(db.Integer, nullable=False, index=True)

    credit_limit_cents = db.Column(db.Integer, nullable=False, default=0)
    balance_cents = db.Column(db.Integer, nullable=False, default=0)
    status = db.Column(db.String(16), nullable=False, default=ACCOUNT_ACTIVE, index=True)
    is_over_limit = db.Column(db.Boolean, nullable=False, default=False)

    credit_request_id = db.Column(db.Integer, db.ForeignKey("credit_requests.id"), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    __mapper_args__ = {"version_id_col": version_id}

    @property
    def available_credit_cents(self) -> int:
        return (self.credit_limit_cents or 0) - (self.balance_cents or 0)

    def __repr__(self) -> str:
        return f"<CreditAccount id={self.id} retailer_id={self.retailer_id} balance={self.balance_cents}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "org_id": self.org_id,
            "wholesaler_id": self.wholesaler_id,
            "retailer_id": self.retailer_id,
            "credit_limit_cents": self.credit_limit_cents,
            "balance_cents": self.balance_cents,
            "available_credit_cents": self.available_credit_cents,
            "status": self.status,
            "is_over_limit": self.is_over_limit,
            "credit_request_id": self.credit_request_id,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class CreditTransaction(db.Model):
    """
    Immutable signed change to an account balance.

    amount_cents is what the caller asked for; balance_delta_cents is what was
    actually applied (they differ only when an overpayment is clamped at 0).
    """
    __tablename__ = "credit_transactions"
    __table_args__ = (
        db.CheckConstraint("amount_cents > 0", name="ck_credit_tx_amount_positive"),
        db.CheckConstraint("resulting_balance_cents >= 0", name="ck_credit_tx_result_non_negative"),
        db.Index("ix_credit_tx_account_occurred", "account_id", "occurred_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, nullable=False, index=True)
    account_id = db.Column(db.Integer, db.ForeignKey("credit_accounts.id"), nullable=False, index=True)

    type = db.Column(db.String(16), nullable=False, index=True)
    amount_cents = db.Column(db.Integer, nullable=False)
    balance_delta_cents = db.Column(db.Integer, nullable=False)
    resulting_balance_cents = db.Column(db.Integer, nullable=False)

    reference = db.Column(db.String(255), nullable=True)
    actor_id = db.Column(db.Integer, nullable=False, index=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=True, index=True)

    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, index=True)

    account = db.relationship("CreditAccount", backref=db.backref("transactions", lazy="dynamic"))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "org_id": self.org_id,
            "account_id": self.account_id,
            "type": self.type,
            "amount_cents": self.amount_cents,
            "balance_delta_cents": self.balance_delta_cents,
            "resulting_balance_cents": self.resulting_balance_cents,
            "reference": self.reference,
            "actor_id": self.actor_id,
            "order_id": self.order_id,
            "occurred_at": to_utc_z(self.occurred_at),
        }
