# Overview: Credit ledger; applies credit/payment/debit transactions and credit-line policy actions.

"""
Credit Ledger Invariants (authoritative)

Balance model:
- CreditAccount.balance_cents is the amount the retailer owes. It is written
  only here, together with a CreditTransaction row, in one DB transaction.
- SUM(credit_transactions.balance_delta_cents) == balance_cents always.

Transaction rules:
- credit  (goods on credit)  balance += amount   requires status 'active'
- debit   (fees / charges)   balance += amount   refused on 'closed' accounts
- payment (pay down)         balance -= amount   allowed in every status;
  clamped at 0, the excess is reported as an overpayment signal.

Limit policy:
- Going over the limit is never silently allowed or silently blocked. The
  transaction succeeds, the result carries credit_limit_exceeded, and the
  account's is_over_limit flag is raised until balance <= limit again
  (payment or limit change by someone with override authority).

Audit:
- One 'credit' audit entry per transaction (before/after balance).
- Account status changes, limit changes and credit request decisions are
  admin-policy actions and get their own 'admin' entries.
"""

from __future__ import annotations

from ..models import CreditAccount, CreditRequest, CreditTransaction
from ..models.audit import CATEGORY_ADMIN, CATEGORY_CREDIT
from ..models.credit import (
    ACCOUNT_ACTIVE,
    ACCOUNT_CLOSED,
    ACCOUNT_STATUSES,
    OPEN_REQUEST_STATUSES,
    REQUEST_APPROVED,
    REQUEST_PENDING,
    REQUEST_REJECTED,
    TRANSACTION_TYPES,
    TX_CREDIT,
    TX_DEBIT,
    TX_PAYMENT,
)
from .errors import (
    AccountNotActive,
    InvalidAmount,
    InvalidRequest,
    InvariantViolation,
)
from .results import RecordResult, TransactionResult


def _require_amount(value, field: str, *, allow_zero: bool = False) -> int:
    if not isinstance(value, int) or isinstance(value, bool):
        raise InvalidAmount(f"{field} must be an integer", details={field: value})
    if value < 0 or (value == 0 and not allow_zero):
        bound = "non-negative" if allow_zero else "positive"
        raise InvalidAmount(f"{field} must be {bound}", details={field: value})
    return value


def _account_snapshot(account: CreditAccount) -> dict:
    return {
        "balance_cents": account.balance_cents,
        "credit_limit_cents": account.credit_limit_cents,
        "available_credit_cents": account.available_credit_cents,
        "status": account.status,
        "is_over_limit": account.is_over_limit,
    }


class CreditLedger:
    def __init__(self, repository, audit_log):
        self.repository = repository
        self.audit_log = audit_log

    # -- transactions ------------------------------------------------------

    def apply_transaction(
        self,
        *,
        org_id: int,
        account_id: int,
        type: str,
        amount_cents: int,
        actor_id: int,
        reference: str | None = None,
        order_id: int | None = None,
    ) -> TransactionResult:
        if type not in TRANSACTION_TYPES:
            raise InvalidRequest(
                f"Unknown credit transaction type '{type}'",
                details={"type": type, "allowed": sorted(TRANSACTION_TYPES)},
            )
        _require_amount(amount_cents, "amount_cents")

        account = self.repository.get_account(org_id, account_id, lock=True)
        return self.apply_locked(
            account,
            type=type,
            amount_cents=amount_cents,
            actor_id=actor_id,
            reference=reference,
            order_id=order_id,
        )

    def apply_locked(
        self,
        account: CreditAccount,
        *,
        type: str,
        amount_cents: int,
        actor_id: int,
        reference: str | None = None,
        order_id: int | None = None,
    ) -> TransactionResult:
        """Apply a transaction to an account row the caller already locked."""
        if type == TX_CREDIT and account.status != ACCOUNT_ACTIVE:
            raise AccountNotActive(account_id=account.id, status=account.status, transaction_type=type)
        if type == TX_DEBIT and account.status == ACCOUNT_CLOSED:
            raise AccountNotActive(account_id=account.id, status=account.status, transaction_type=type)

        before = _account_snapshot(account)
        previous = account.balance_cents
        overpayment_excess = 0

        if type == TX_PAYMENT:
            applied = min(amount_cents, previous)
            overpayment_excess = amount_cents - applied
            delta = -applied
        else:
            delta = amount_cents

        new_balance = previous + delta
        limit = account.credit_limit_cents
        account.balance_cents = new_balance
        account.is_over_limit = new_balance > limit
        credit_limit_exceeded = type != TX_PAYMENT and new_balance > limit

        tx = CreditTransaction(
            org_id=account.org_id,
            account_id=account.id,
            type=type,
            amount_cents=amount_cents,
            balance_delta_cents=delta,
            resulting_balance_cents=new_balance,
            reference=reference,
            actor_id=actor_id,
            order_id=order_id,
        )
        self.repository.add(tx)
        self.repository.flush()

        over_limit_by = max(0, new_balance - limit) if credit_limit_exceeded else 0
        self.audit_log.record(
            org_id=account.org_id,
            actor_id=actor_id,
            action="credit.transaction",
            resource_type="credit_account",
            resource_id=account.id,
            category=CATEGORY_CREDIT,
            before=before,
            after=_account_snapshot(account),
            details={
                "transaction_id": tx.id,
                "type": type,
                "amount_cents": amount_cents,
                "balance_delta_cents": delta,
                "reference": reference,
                "order_id": order_id,
                "credit_limit_exceeded": credit_limit_exceeded,
                "over_limit_by_cents": over_limit_by,
                "overpayment_excess_cents": overpayment_excess,
            },
        )

        return TransactionResult(
            transaction_id=tx.id,
            account_id=account.id,
            type=type,
            amount_cents=amount_cents,
            previous_balance_cents=previous,
            new_balance_cents=new_balance,
            credit_limit_cents=limit,
            credit_limit_exceeded=credit_limit_exceeded,
            over_limit_by_cents=over_limit_by,
            overpayment=overpayment_excess > 0,
            overpayment_excess_cents=overpayment_excess,
        )

    # -- credit requests -----------------------------------------------------

    def submit_request(
        self,
        *,
        org_id: int,
        wholesaler_id: int,
        retailer_id: int,
        requested_amount_cents: int,
        actor_id: int,
        business_name: str | None = None,
        credit_purpose: str | None = None,
    ) -> RecordResult:
        _require_amount(requested_amount_cents, "requested_amount_cents")
        request = CreditRequest(
            org_id=org_id,
            wholesaler_id=wholesaler_id,
            retailer_id=retailer_id,
            requested_amount_cents=requested_amount_cents,
            business_name=business_name,
            credit_purpose=credit_purpose,
            status=REQUEST_PENDING,
        )
        self.repository.add(request)
        self.repository.flush()

        entry_id = self.audit_log.record(
            org_id=org_id,
            actor_id=actor_id,
            action="credit_request.submitted",
            resource_type="credit_request",
            resource_id=request.id,
            category=CATEGORY_CREDIT,
            after=request.to_dict(),
        )
        return RecordResult("credit_request", request.id, entry_id, request.to_dict())

    def approve_request(
        self,
        *,
        org_id: int,
        request_id: int,
        approved_limit_cents: int,
        actor_id: int,
        notes: str | None = None,
    ) -> RecordResult:
        """
        Approve a credit request and open the credit line it asked for.

        If the retailer already holds an account with this wholesaler, its limit
        is replaced by the approved limit instead of opening a second account.
        """
        _require_amount(approved_limit_cents, "approved_limit_cents", allow_zero=True)
        request = self.repository.get_credit_request(org_id, request_id, lock=True)
        if request.status not in OPEN_REQUEST_STATUSES:
            raise InvalidRequest(
                f"Credit request {request.id} is already {request.status}",
                details={"request_id": request.id, "status": request.status},
            )

        account = self.repository.find_account(
            org_id, request.wholesaler_id, request.retailer_id, lock=True
        )
        before = _account_snapshot(account) if account is not None else None
        if account is None:
            account = CreditAccount(
                org_id=org_id,
                wholesaler_id=request.wholesaler_id,
                retailer_id=request.retailer_id,
                credit_limit_cents=approved_limit_cents,
                balance_cents=0,
                status=ACCOUNT_ACTIVE,
                is_over_limit=False,
                credit_request_id=request.id,
            )
            self.repository.add(account)
        else:
            account.credit_limit_cents = approved_limit_cents
            account.is_over_limit = account.balance_cents > approved_limit_cents
            account.credit_request_id = request.id

        request.status = REQUEST_APPROVED
        request.approved_limit_cents = approved_limit_cents
        request.reviewed_by_actor_id = actor_id
        request.review_notes = notes
        self.repository.flush()

        entry_id = self.audit_log.record(
            org_id=org_id,
            actor_id=actor_id,
            action="credit_request.approved",
            resource_type="credit_account",
            resource_id=account.id,
            category=CATEGORY_ADMIN,
            before=before,
            after=_account_snapshot(account),
            details={
                "credit_request_id": request.id,
                "requested_amount_cents": request.requested_amount_cents,
                "approved_limit_cents": approved_limit_cents,
                "notes": notes,
            },
        )
        return RecordResult("credit_account", account.id, entry_id, account.to_dict())

    def reject_request(
        self,
        *,
        org_id: int,
        request_id: int,
        actor_id: int,
        notes: str | None = None,
    ) -> RecordResult:
        request = self.repository.get_credit_request(org_id, request_id, lock=True)
        if request.status not in OPEN_REQUEST_STATUSES:
            raise InvalidRequest(
                f"Credit request {request.id} is already {request.status}",
                details={"request_id": request.id, "status": request.status},
            )
        previous_status = request.status
        request.status = REQUEST_REJECTED
        request.reviewed_by_actor_id = actor_id
        request.review_notes = notes
        self.repository.flush()

        entry_id = self.audit_log.record(
            org_id=org_id,
            actor_id=actor_id,
            action="credit_request.rejected",
            resource_type="credit_request",
            resource_id=request.id,
            category=CATEGORY_ADMIN,
            before={"status": previous_status},
            after={"status": request.status},
            details={"notes": notes},
        )
        return RecordResult("credit_request", request.id, entry_id, request.to_dict())

    # -- admin policy --------------------------------------------------------

    def set_status(
        self,
        *,
        org_id: int,
        account_id: int,
        status: str,
        actor_id: int,
        reason: str | None = None,
    ) -> RecordResult:
        """
        Suspend, reactivate or close an account.

        Closed is terminal. Suspended/closed accounts still accept payments.
        """
        if status not in ACCOUNT_STATUSES:
            raise InvalidRequest(
                f"Unknown account status '{status}'",
                details={"status": status, "allowed": sorted(ACCOUNT_STATUSES)},
            )
        account = self.repository.get_account(org_id, account_id, lock=True)
        if account.status == ACCOUNT_CLOSED:
            raise InvalidRequest(
                f"Credit account {account.id} is closed",
                details={"account_id": account.id, "status": account.status},
            )
        if account.status == status:
            raise InvalidRequest(
                f"Credit account {account.id} is already {status}",
                details={"account_id": account.id, "status": status},
            )

        before = _account_snapshot(account)
        account.status = status
        self.repository.flush()

        entry_id = self.audit_log.record(
            org_id=org_id,
            actor_id=actor_id,
            action="credit_account.status_changed",
            resource_type="credit_account",
            resource_id=account.id,
            category=CATEGORY_ADMIN,
            before=before,
            after=_account_snapshot(account),
            details={"reason": reason},
        )
        return RecordResult("credit_account", account.id, entry_id, account.to_dict())

    def change_limit(
        self,
        *,
        org_id: int,
        account_id: int,
        credit_limit_cents: int,
        actor_id: int,
        reason: str | None = None,
    ) -> RecordResult:
        _require_amount(credit_limit_cents, "credit_limit_cents", allow_zero=True)
        account = self.repository.get_account(org_id, account_id, lock=True)

        before = _account_snapshot(account)
        account.credit_limit_cents = credit_limit_cents
        account.is_over_limit = account.balance_cents > credit_limit_cents
        self.repository.flush()

        entry_id = self.audit_log.record(
            org_id=org_id,
            actor_id=actor_id,
            action="credit_account.limit_changed",
            resource_type="credit_account",
            resource_id=account.id,
            category=CATEGORY_ADMIN,
            before=before,
            after=_account_snapshot(account),
            details={"reason": reason},
        )
        return RecordResult("credit_account", account.id, entry_id, account.to_dict())

    # -- reads -----------------------------------------------------------------

    def reconcile(self, *, org_id: int, account_id: int) -> dict:
        """
        Raises:
            InvariantViolation: balance_cents != SUM(balance_delta_cents)
        """
        account = self.repository.get_account(org_id, account_id)
        history_total = self.repository.transaction_total(account.id)
        if history_total != account.balance_cents:
            raise InvariantViolation(
                f"Credit account {account.id} balance {account.balance_cents} "
                f"disagrees with transaction history {history_total}",
                details={
                    "account_id": account.id,
                    "balance_cents": account.balance_cents,
                    "history_total": history_total,
                },
            )
        return {"account_id": account.id, "balance_cents": account.balance_cents}

    def list_transactions(self, *, org_id: int, account_id: int, limit: int = 200) -> list[CreditTransaction]:
        self.repository.get_account(org_id, account_id)
        return (
            self.repository.query(CreditTransaction)
            .filter_by(org_id=org_id, account_id=account_id)
            .order_by(CreditTransaction.occurred_at.desc(), CreditTransaction.id.desc())
            .limit(limit)
            .all()
        )
