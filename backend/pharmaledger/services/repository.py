# Overview: Persistence repository handed to the ledgers; wraps one SQLAlchemy session.

"""
LedgerRepository is the only object in the services layer that talks to the
session. Ledgers receive it at construction, so there is no ambient
persistence client: tests and CLI commands can hand in any session.

All lookups are scoped by org_id. Reads that feed a mutation use lock=True,
which issues SELECT ... FOR UPDATE inside the current transaction.
"""

from __future__ import annotations

from datetime import datetime
from typing import Iterable, Optional

from sqlalchemy import func

from ..models import (
    Product,
    StockMovement,
    CreditAccount,
    CreditRequest,
    CreditTransaction,
    Order,
    PurchaseOrder,
    IdempotencyRecord,
)
from .concurrency import lock_for_update
from .errors import RecordNotFound


class LedgerRepository:
    def __init__(self, session):
        self.session = session

    # -- unit of work -----------------------------------------------------

    def add(self, obj):
        self.session.add(obj)
        return obj

    def flush(self) -> None:
        self.session.flush()

    def commit(self) -> None:
        self.session.commit()

    def rollback(self) -> None:
        self.session.rollback()

    def query(self, *entities):
        return self.session.query(*entities)

    # -- scoped lookups ---------------------------------------------------

    def _get(self, model, label: str, org_id: int, record_id: int, lock: bool):
        query = self.session.query(model).filter_by(id=record_id, org_id=org_id)
        if lock:
            query = lock_for_update(query)
        record = query.first()
        if record is None:
            raise RecordNotFound(label, record_id)
        return record

    def get_product(self, org_id: int, product_id: int, *, lock: bool = False) -> Product:
        return self._get(Product, "product", org_id, product_id, lock)

    def lock_products(self, org_id: int, product_ids: Iterable[int]) -> dict[int, Product]:
        """
        Lock every product row in ascending id order.

        WHY: two batches touching overlapping product sets must acquire row
        locks in the same order or they can deadlock each other.
        """
        locked = {}
        for product_id in sorted(set(product_ids)):
            locked[product_id] = self.get_product(org_id, product_id, lock=True)
        return locked

    def get_account(self, org_id: int, account_id: int, *, lock: bool = False) -> CreditAccount:
        return self._get(CreditAccount, "credit_account", org_id, account_id, lock)

    def find_account(
        self, org_id: int, wholesaler_id: int, retailer_id: int, *, lock: bool = False
    ) -> Optional[CreditAccount]:
        query = self.session.query(CreditAccount).filter_by(
            org_id=org_id, wholesaler_id=wholesaler_id, retailer_id=retailer_id
        )
        if lock:
            query = lock_for_update(query)
        return query.first()

    def get_credit_request(self, org_id: int, request_id: int, *, lock: bool = False) -> CreditRequest:
        return self._get(CreditRequest, "credit_request", org_id, request_id, lock)

    def get_order(self, org_id: int, order_id: int, *, lock: bool = False) -> Order:
        return self._get(Order, "order", org_id, order_id, lock)

    def get_purchase_order(self, org_id: int, purchase_order_id: int, *, lock: bool = False) -> PurchaseOrder:
        return self._get(PurchaseOrder, "purchase_order", org_id, purchase_order_id, lock)

    def find_purchase_order_by_number(self, org_id: int, po_number: str) -> Optional[PurchaseOrder]:
        return self.session.query(PurchaseOrder).filter_by(org_id=org_id, po_number=po_number).first()

    # -- history sums (reconciliation) -------------------------------------

    def movement_total(self, product_id: int) -> int:
        total = self.session.query(
            func.coalesce(func.sum(StockMovement.quantity_delta), 0)
        ).filter(StockMovement.product_id == product_id).scalar()
        return int(total or 0)

    def transaction_total(self, account_id: int) -> int:
        total = self.session.query(
            func.coalesce(func.sum(CreditTransaction.balance_delta_cents), 0)
        ).filter(CreditTransaction.account_id == account_id).scalar()
        return int(total or 0)

    def product_ids(self, org_id: int) -> list[int]:
        rows = self.session.query(Product.id).filter_by(org_id=org_id).order_by(Product.id).all()
        return [row[0] for row in rows]

    def account_ids(self, org_id: int) -> list[int]:
        rows = self.session.query(CreditAccount.id).filter_by(org_id=org_id).order_by(CreditAccount.id).all()
        return [row[0] for row in rows]

    # -- idempotency ------------------------------------------------------

    def find_idempotency(self, org_id: int, key: str) -> Optional[IdempotencyRecord]:
        return self.session.query(IdempotencyRecord).filter_by(org_id=org_id, key=key).first()

    def save_idempotency(
        self,
        *,
        org_id: int,
        key: str,
        operation: str,
        actor_id: int,
        payload: dict,
        request_hash: str | None = None,
    ) -> IdempotencyRecord:
        record = IdempotencyRecord(
            org_id=org_id,
            key=key,
            operation=operation,
            actor_id=actor_id,
            request_hash=request_hash,
            result_payload=payload,
        )
        self.session.add(record)
        self.session.flush()
        return record

    def purge_idempotency(self, older_than: datetime) -> int:
        deleted = self.session.query(IdempotencyRecord).filter(
            IdempotencyRecord.created_at < older_than
        ).delete(synchronize_session=False)
        self.session.commit()
        return int(deleted or 0)
