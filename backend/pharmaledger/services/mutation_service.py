# Overview: Mutation facade; runs every caller-visible ledger operation as one atomic unit of work.

"""
Mutation Facade (authoritative)

Every public method:
1. runs inside run_with_retry (OperationalError / StaleDataError are retried
   with a fresh read; exhaustion raises ContentionTimeout)
2. performs validate -> mutate -> audit through the injected ledgers
3. commits once at the end

Expected business failures (LedgerValidationError) roll the whole unit back
and come back as Outcome.failure(error); they are never raised to the caller.
Business signals (credit limit exceeded, overpayment, low stock) ride on a
successful Outcome.

Idempotency:
- A caller may pass idempotency_key. The successful result is stored under
  (org_id, key) in the same transaction as the mutation, so a resubmission
  returns the stored result (replayed=True) and changes nothing.
- Reusing a key for a different operation, or for the same operation with
  different arguments, is IdempotencyConflict. The arguments are compared
  through a sha256 of their canonical JSON.
- Failed calls store nothing, so they can be resubmitted under the same key.
"""

from __future__ import annotations

import hashlib
import json
import logging
import uuid
from dataclasses import asdict, dataclass, is_dataclass
from typing import Iterator, Optional

from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models.inventory import (
    SOURCE_ADJUSTMENT_ADD,
    SOURCE_ADJUSTMENT_REMOVE,
    SOURCE_RETURN,
    SOURCE_SALE,
)
from ..models.orders import PAYMENT_CREDIT, PAYMENT_METHODS
from ..models.credit import TX_CREDIT
from .audit_service import AuditLog, AuditPage, AuditQuery
from .concurrency import run_with_retry
from .credit_service import CreditLedger
from .errors import (
    IdempotencyConflict,
    InvalidQuantity,
    InvalidRequest,
    InvariantViolation,
    LedgerValidationError,
)
from .order_service import OrderStatusMachine
from .purchasing_service import PurchaseReceiving
from .repository import LedgerRepository
from .results import Outcome, RecordResult, SaleResult, dump_result, load_result
from .stock_service import MovementRequest, StockLedger

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Actor:
    """Authenticated caller as handed over by the identity layer."""
    actor_id: int
    org_id: int
    role: str = "staff"


def _positive_int(value, field: str) -> int:
    if not isinstance(value, int) or isinstance(value, bool) or value <= 0:
        raise InvalidQuantity(f"{field} must be a positive integer", details={field: value})
    return value


def _as_movement_request(raw) -> MovementRequest:
    if isinstance(raw, MovementRequest):
        return raw
    try:
        return MovementRequest(**raw)
    except TypeError as exc:
        raise InvalidRequest(f"Malformed movement: {exc}", details={"movement": raw})


def _canonical(value):
    if is_dataclass(value) and not isinstance(value, type):
        return _canonical(asdict(value))
    if isinstance(value, dict):
        return {str(k): _canonical(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_canonical(v) for v in value]
    return value


def _request_hash(operation: str, request: dict) -> str:
    canonical = json.dumps(
        {"operation": operation, "request": _canonical(request)},
        sort_keys=True,
        separators=(",", ":"),
        default=str,
    )
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


class MutationFacade:
    def __init__(
        self,
        repository: LedgerRepository,
        audit_log: Optional[AuditLog] = None,
        *,
        stock_ledger: Optional[StockLedger] = None,
        credit_ledger: Optional[CreditLedger] = None,
        order_machine: Optional[OrderStatusMachine] = None,
        receiving: Optional[PurchaseReceiving] = None,
        retry_attempts: int = 3,
        backoff_base: float = 0.1,
        audit_page_size: int = 100,
    ):
        self.repository = repository
        self.audit_log = audit_log or AuditLog(repository)
        self.stock_ledger = stock_ledger or StockLedger(repository, self.audit_log)
        self.credit_ledger = credit_ledger or CreditLedger(repository, self.audit_log)
        self.order_machine = order_machine or OrderStatusMachine(
            repository, self.stock_ledger, self.credit_ledger, self.audit_log
        )
        self.receiving = receiving or PurchaseReceiving(repository, self.stock_ledger, self.audit_log)
        self.retry_attempts = retry_attempts
        self.backoff_base = backoff_base
        self.audit_page_size = audit_page_size

    # -- unit of work ------------------------------------------------------

    def _replay(self, operation: str, actor: Actor, key: str, request_hash: str) -> Optional[Outcome]:
        existing = self.repository.find_idempotency(actor.org_id, key)
        if existing is None:
            return None
        if existing.operation != operation:
            raise IdempotencyConflict(
                f"Idempotency key '{key}' was already used for {existing.operation}",
                details={"key": key, "operation": operation, "stored_operation": existing.operation},
            )
        if existing.request_hash is not None and existing.request_hash != request_hash:
            raise IdempotencyConflict(
                f"Idempotency key '{key}' was already used for a different {operation} request",
                details={"key": key, "operation": operation},
            )
        value = load_result(existing.result_payload)
        # End the read transaction so a file-backed SQLite writer is not held up.
        self.repository.rollback()
        return Outcome.success(value, replayed=True)

    def _execute(
        self,
        operation: str,
        actor: Actor,
        work,
        *,
        idempotency_key: str | None = None,
        request: dict | None = None,
    ) -> Outcome:
        request_hash = _request_hash(operation, request or {})

        def unit() -> Outcome:
            if idempotency_key:
                replay = self._replay(operation, actor, idempotency_key, request_hash)
                if replay is not None:
                    return replay

            value = work()

            if idempotency_key:
                try:
                    self.repository.save_idempotency(
                        org_id=actor.org_id,
                        key=idempotency_key,
                        operation=operation,
                        actor_id=actor.actor_id,
                        payload=dump_result(value),
                        request_hash=request_hash,
                    )
                except IntegrityError:
                    # A concurrent call with the same key committed first.
                    self.repository.rollback()
                    replay = self._replay(operation, actor, idempotency_key, request_hash)
                    if replay is None:
                        raise
                    return replay

            self.repository.commit()
            return Outcome.success(value)

        try:
            return run_with_retry(
                unit,
                session=self.repository.session,
                attempts=self.retry_attempts,
                backoff_base=self.backoff_base,
                operation=operation,
            )
        except LedgerValidationError as err:
            self.repository.rollback()
            logger.info("%s rejected for actor %s: %s", operation, actor.actor_id, err.kind)
            return Outcome.failure(err)
        except Exception:
            self.repository.rollback()
            raise

    # -- stock ---------------------------------------------------------------

    def apply_movement(
        self,
        actor: Actor,
        *,
        product_id: int,
        quantity_delta: int,
        source_kind: str,
        reason: str | None = None,
        reference: str | None = None,
        idempotency_key: str | None = None,
    ) -> Outcome:
        return self._execute(
            "apply_movement",
            actor,
            lambda: self.stock_ledger.apply_movement(
                org_id=actor.org_id,
                product_id=product_id,
                quantity_delta=quantity_delta,
                source_kind=source_kind,
                actor_id=actor.actor_id,
                reason=reason,
                reference=reference,
            ),
            idempotency_key=idempotency_key,
            request={
                "product_id": product_id,
                "quantity_delta": quantity_delta,
                "source_kind": source_kind,
                "reason": reason,
                "reference": reference,
            },
        )

    def apply_movements(self, actor: Actor, movements: list, *, idempotency_key: str | None = None) -> Outcome:
        def work():
            requests = [_as_movement_request(m) for m in movements]
            return self.stock_ledger.apply_movements(
                org_id=actor.org_id, movements=requests, actor_id=actor.actor_id
            )

        return self._execute(
            "apply_movements", actor, work, idempotency_key=idempotency_key, request={"movements": movements}
        )

    def process_sale(
        self,
        actor: Actor,
        *,
        lines: list[dict],
        payment_method: str = "cash",
        reference: str | None = None,
        credit_account_id: int | None = None,
        idempotency_key: str | None = None,
    ) -> Outcome:
        """
        POS checkout: one sale movement per line, plus a credit transaction for
        the sale total when the retailer pays on credit. All or nothing.
        """
        def work() -> SaleResult:
            if payment_method not in PAYMENT_METHODS:
                raise InvalidRequest(
                    f"Unknown payment method '{payment_method}'",
                    details={"payment_method": payment_method, "allowed": sorted(PAYMENT_METHODS)},
                )
            if payment_method == PAYMENT_CREDIT and credit_account_id is None:
                raise InvalidRequest("credit_account_id is required for credit sales")
            if payment_method != PAYMENT_CREDIT and credit_account_id is not None:
                raise InvalidRequest(
                    "credit_account_id is only accepted for credit sales",
                    details={"payment_method": payment_method},
                )
            if not lines:
                raise InvalidRequest("A sale needs at least one line")

            sale_reference = reference or f"sale:{uuid.uuid4().hex[:12]}"
            requests = []
            for line in lines:
                if not isinstance(line, dict):
                    raise InvalidRequest("Each sale line must be an object", details={"line": line})
                quantity = _positive_int(line.get("quantity"), "quantity")
                requests.append(
                    MovementRequest(
                        product_id=line.get("product_id"),
                        quantity_delta=-quantity,
                        source_kind=SOURCE_SALE,
                        reason="POS sale",
                        reference=sale_reference,
                    )
                )

            batch = self.stock_ledger.apply_movements(
                org_id=actor.org_id, movements=requests, actor_id=actor.actor_id
            )
            total = sum(
                (self.repository.get_product(actor.org_id, r.product_id).unit_price_cents or 0)
                * -r.quantity_delta
                for r in requests
            )

            credit = None
            if payment_method == PAYMENT_CREDIT and total > 0:
                credit = self.credit_ledger.apply_transaction(
                    org_id=actor.org_id,
                    account_id=credit_account_id,
                    type=TX_CREDIT,
                    amount_cents=total,
                    actor_id=actor.actor_id,
                    reference=sale_reference,
                )
            return SaleResult(
                reference=sale_reference,
                total_cents=total,
                movements=batch.movements,
                credit=credit,
            )

        return self._execute(
            "process_sale",
            actor,
            work,
            idempotency_key=idempotency_key,
            request={
                "lines": lines,
                "payment_method": payment_method,
                "reference": reference,
                "credit_account_id": credit_account_id,
            },
        )

    def record_adjustment(
        self,
        actor: Actor,
        *,
        product_id: int,
        quantity_delta: int,
        reason: str,
        reference: str | None = None,
        idempotency_key: str | None = None,
    ) -> Outcome:
        def work():
            if not reason or not str(reason).strip():
                raise InvalidRequest("A reason is required for stock adjustments")
            source_kind = SOURCE_ADJUSTMENT_ADD
            if isinstance(quantity_delta, int) and quantity_delta < 0:
                source_kind = SOURCE_ADJUSTMENT_REMOVE
            return self.stock_ledger.apply_movement(
                org_id=actor.org_id,
                product_id=product_id,
                quantity_delta=quantity_delta,
                source_kind=source_kind,
                actor_id=actor.actor_id,
                reason=str(reason).strip(),
                reference=reference,
            )

        return self._execute(
            "record_adjustment",
            actor,
            work,
            idempotency_key=idempotency_key,
            request={
                "product_id": product_id,
                "quantity_delta": quantity_delta,
                "reason": reason,
                "reference": reference,
            },
        )

    def record_return(
        self,
        actor: Actor,
        *,
        product_id: int,
        quantity: int,
        reason: str | None = None,
        reference: str | None = None,
        idempotency_key: str | None = None,
    ) -> Outcome:
        def work():
            _positive_int(quantity, "quantity")
            return self.stock_ledger.apply_movement(
                org_id=actor.org_id,
                product_id=product_id,
                quantity_delta=quantity,
                source_kind=SOURCE_RETURN,
                actor_id=actor.actor_id,
                reason=reason or "Customer return",
                reference=reference,
            )

        return self._execute(
            "record_return",
            actor,
            work,
            idempotency_key=idempotency_key,
            request={"product_id": product_id, "quantity": quantity, "reason": reason, "reference": reference},
        )

    def create_purchase_order(
        self,
        actor: Actor,
        *,
        po_number: str,
        lines: list[dict],
        supplier_name: str | None = None,
        notes: str | None = None,
        idempotency_key: str | None = None,
    ) -> Outcome:
        return self._execute(
            "create_purchase_order",
            actor,
            lambda: self.receiving.create_purchase_order(
                org_id=actor.org_id,
                po_number=po_number,
                lines=lines,
                actor_id=actor.actor_id,
                supplier_name=supplier_name,
                notes=notes,
            ),
            idempotency_key=idempotency_key,
            request={"po_number": po_number, "lines": lines, "supplier_name": supplier_name, "notes": notes},
        )

    def approve_purchase_order(
        self, actor: Actor, *, purchase_order_id: int, idempotency_key: str | None = None
    ) -> Outcome:
        return self._execute(
            "approve_purchase_order",
            actor,
            lambda: self.receiving.approve(
                org_id=actor.org_id, purchase_order_id=purchase_order_id, actor_id=actor.actor_id
            ),
            idempotency_key=idempotency_key,
            request={"purchase_order_id": purchase_order_id},
        )

    def receive_purchase_order(
        self,
        actor: Actor,
        *,
        purchase_order_id: int,
        received: dict[int, int] | None = None,
        idempotency_key: str | None = None,
    ) -> Outcome:
        return self._execute(
            "receive_purchase_order",
            actor,
            lambda: self.receiving.receive(
                org_id=actor.org_id,
                purchase_order_id=purchase_order_id,
                actor_id=actor.actor_id,
                received=received,
            ),
            idempotency_key=idempotency_key,
            request={"purchase_order_id": purchase_order_id, "received": received},
        )

    # -- credit --------------------------------------------------------------

    def apply_transaction(
        self,
        actor: Actor,
        *,
        account_id: int,
        type: str,
        amount_cents: int,
        reference: str | None = None,
        idempotency_key: str | None = None,
    ) -> Outcome:
        return self._execute(
            "apply_transaction",
            actor,
            lambda: self.credit_ledger.apply_transaction(
                org_id=actor.org_id,
                account_id=account_id,
                type=type,
                amount_cents=amount_cents,
                actor_id=actor.actor_id,
                reference=reference,
            ),
            idempotency_key=idempotency_key,
            request={"account_id": account_id, "type": type, "amount_cents": amount_cents, "reference": reference},
        )

    record_credit_transaction = apply_transaction

    def submit_credit_request(
        self,
        actor: Actor,
        *,
        wholesaler_id: int,
        retailer_id: int,
        requested_amount_cents: int,
        business_name: str | None = None,
        credit_purpose: str | None = None,
        idempotency_key: str | None = None,
    ) -> Outcome:
        return self._execute(
            "submit_credit_request",
            actor,
            lambda: self.credit_ledger.submit_request(
                org_id=actor.org_id,
                wholesaler_id=wholesaler_id,
                retailer_id=retailer_id,
                requested_amount_cents=requested_amount_cents,
                actor_id=actor.actor_id,
                business_name=business_name,
                credit_purpose=credit_purpose,
            ),
            idempotency_key=idempotency_key,
            request={
                "wholesaler_id": wholesaler_id,
                "retailer_id": retailer_id,
                "requested_amount_cents": requested_amount_cents,
                "business_name": business_name,
                "credit_purpose": credit_purpose,
            },
        )

    def approve_credit_request(
        self,
        actor: Actor,
        *,
        request_id: int,
        approved_limit_cents: int,
        notes: str | None = None,
        idempotency_key: str | None = None,
    ) -> Outcome:
        return self._execute(
            "approve_credit_request",
            actor,
            lambda: self.credit_ledger.approve_request(
                org_id=actor.org_id,
                request_id=request_id,
                approved_limit_cents=approved_limit_cents,
                actor_id=actor.actor_id,
                notes=notes,
            ),
            idempotency_key=idempotency_key,
            request={"request_id": request_id, "approved_limit_cents": approved_limit_cents, "notes": notes},
        )

    def reject_credit_request(
        self,
        actor: Actor,
        *,
        request_id: int,
        notes: str | None = None,
        idempotency_key: str | None = None,
    ) -> Outcome:
        return self._execute(
            "reject_credit_request",
            actor,
            lambda: self.credit_ledger.reject_request(
                org_id=actor.org_id, request_id=request_id, actor_id=actor.actor_id, notes=notes
            ),
            idempotency_key=idempotency_key,
            request={"request_id": request_id, "notes": notes},
        )

    def set_account_status(
        self,
        actor: Actor,
        *,
        account_id: int,
        status: str,
        reason: str | None = None,
        idempotency_key: str | None = None,
    ) -> Outcome:
        return self._execute(
            "set_account_status",
            actor,
            lambda: self.credit_ledger.set_status(
                org_id=actor.org_id,
                account_id=account_id,
                status=status,
                actor_id=actor.actor_id,
                reason=reason,
            ),
            idempotency_key=idempotency_key,
            request={"account_id": account_id, "status": status, "reason": reason},
        )

    def change_credit_limit(
        self,
        actor: Actor,
        *,
        account_id: int,
        credit_limit_cents: int,
        reason: str | None = None,
        idempotency_key: str | None = None,
    ) -> Outcome:
        return self._execute(
            "change_credit_limit",
            actor,
            lambda: self.credit_ledger.change_limit(
                org_id=actor.org_id,
                account_id=account_id,
                credit_limit_cents=credit_limit_cents,
                actor_id=actor.actor_id,
                reason=reason,
            ),
            idempotency_key=idempotency_key,
            request={"account_id": account_id, "credit_limit_cents": credit_limit_cents, "reason": reason},
        )

    # -- orders --------------------------------------------------------------

    def create_order(
        self,
        actor: Actor,
        *,
        wholesaler_id: int,
        retailer_id: int,
        lines: list[dict],
        payment_method: str = "cash",
        notes: str | None = None,
        idempotency_key: str | None = None,
    ) -> Outcome:
        return self._execute(
            "create_order",
            actor,
            lambda: self.order_machine.create_order(
                org_id=actor.org_id,
                wholesaler_id=wholesaler_id,
                retailer_id=retailer_id,
                lines=lines,
                actor_id=actor.actor_id,
                payment_method=payment_method,
                notes=notes,
            ),
            idempotency_key=idempotency_key,
            request={
                "wholesaler_id": wholesaler_id,
                "retailer_id": retailer_id,
                "lines": lines,
                "payment_method": payment_method,
                "notes": notes,
            },
        )

    def transition(
        self,
        actor: Actor,
        *,
        order_id: int,
        target_status: str,
        notes: str | None = None,
        idempotency_key: str | None = None,
    ) -> Outcome:
        return self._execute(
            "transition",
            actor,
            lambda: self.order_machine.transition(
                org_id=actor.org_id,
                order_id=order_id,
                target_status=target_status,
                actor_id=actor.actor_id,
                notes=notes,
            ),
            idempotency_key=idempotency_key,
            request={"order_id": order_id, "target_status": target_status, "notes": notes},
        )

    transition_order = transition

    # -- audit ---------------------------------------------------------------

    def record(
        self,
        actor: Actor,
        *,
        action: str,
        resource_type: str,
        resource_id,
        category: str,
        before: dict | None = None,
        after: dict | None = None,
        details: dict | None = None,
    ) -> Outcome:
        """Append a free-standing audit entry (e.g. an admin note) in its own unit."""
        def work():
            entry_id = self.audit_log.record(
                org_id=actor.org_id,
                actor_id=actor.actor_id,
                action=action,
                resource_type=resource_type,
                resource_id=resource_id,
                category=category,
                before=before,
                after=after,
                details=details,
            )
            return RecordResult("audit_log_entry", entry_id, entry_id, {})

        return self._execute("record", actor, work)

    def query(self, actor: Actor, filters: AuditQuery | None = None, *, page_size: int | None = None) -> Iterator:
        if page_size is None:
            page_size = self.audit_page_size
        return self.audit_log.query(actor.org_id, filters, page_size=page_size)

    def page(
        self,
        actor: Actor,
        filters: AuditQuery | None = None,
        *,
        cursor: str | None = None,
        limit: int | None = None,
    ) -> AuditPage:
        if limit is None:
            limit = self.audit_page_size
        return self.audit_log.page(actor.org_id, filters, cursor=cursor, limit=limit)

    # -- maintenance ---------------------------------------------------------

    def reconcile_all(self, org_id: int) -> list[dict]:
        """
        Check every product and credit account of an org against its history.

        Returns the violations found (empty when the ledgers are consistent).
        """
        violations = []
        for product_id in self.repository.product_ids(org_id):
            try:
                self.stock_ledger.reconcile(org_id=org_id, product_id=product_id)
            except InvariantViolation as exc:
                logger.error("Stock invariant violated: %s", exc.message)
                violations.append({"kind": exc.kind, "resource_type": "product", **exc.details})
        for account_id in self.repository.account_ids(org_id):
            try:
                self.credit_ledger.reconcile(org_id=org_id, account_id=account_id)
            except InvariantViolation as exc:
                logger.error("Credit invariant violated: %s", exc.message)
                violations.append({"kind": exc.kind, "resource_type": "credit_account", **exc.details})
        return violations


def build_facade(session=None) -> MutationFacade:
    """Wire a facade from the current Flask app config."""
    config = current_app.config
    repository = LedgerRepository(session if session is not None else db.session)
    return MutationFacade(
        repository,
        retry_attempts=config.get("LEDGER_RETRY_ATTEMPTS", 3),
        backoff_base=config.get("LEDGER_RETRY_BACKOFF_SECONDS", 0.1),
        audit_page_size=config.get("AUDIT_PAGE_SIZE", 100),
    )
