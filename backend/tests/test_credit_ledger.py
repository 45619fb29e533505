# Overview: Pytest coverage for credit transactions, limit policy and credit-line administration.

import pytest
from sqlalchemy import update

from pharmaledger.models import AuditLogEntry, CreditAccount, CreditRequest, CreditTransaction
from pharmaledger.services.errors import InvariantViolation

from ledger_helpers import transaction_total


def _account(session, account_id):
    return session.get(CreditAccount, account_id)


class TestApplyTransaction:

    def test_credit_over_limit_succeeds_and_is_flagged(self, db_session, facade, actor, make_account):
        """Limit 1,000,000, balance 0: a 1,200,000 credit lands but is flagged."""
        account = make_account(1_000_000)

        outcome = facade.apply_transaction(actor, account_id=account.id, type="credit", amount_cents=1_200_000)

        assert outcome.ok
        result = outcome.value
        assert result.new_balance_cents == 1_200_000
        assert result.credit_limit_exceeded is True
        assert result.over_limit_by_cents == 200_000
        assert outcome.signals["credit_limit_exceeded"]["over_limit_by_cents"] == 200_000
        account = _account(db_session, account.id)
        assert account.balance_cents == 1_200_000
        assert account.is_over_limit is True

    def test_overpayment_clamps_balance_at_zero(self, db_session, facade, actor, make_account):
        """Balance 500,000, payment 800,000: balance 0, excess 300,000 reported."""
        account = make_account(1_000_000, balance_cents=500_000)

        outcome = facade.apply_transaction(actor, account_id=account.id, type="payment", amount_cents=800_000)

        assert outcome.ok
        result = outcome.value
        assert result.new_balance_cents == 0
        assert result.overpayment is True
        assert result.overpayment_excess_cents == 300_000
        assert outcome.signals["overpayment"]["excess_cents"] == 300_000

        tx = db_session.get(CreditTransaction, result.transaction_id)
        assert tx.amount_cents == 800_000
        assert tx.balance_delta_cents == -500_000
        assert tx.resulting_balance_cents == 0

    def test_payment_back_under_limit_clears_flag(self, db_session, facade, actor, make_account):
        account = make_account(100_000, balance_cents=150_000)
        assert _account(db_session, account.id).is_over_limit is True

        outcome = facade.apply_transaction(actor, account_id=account.id, type="payment", amount_cents=60_000)

        assert outcome.ok
        assert outcome.value.credit_limit_exceeded is False
        assert _account(db_session, account.id).is_over_limit is False

    def test_debit_increases_balance(self, facade, actor, make_account):
        account = make_account(100_000, balance_cents=10_000)

        outcome = facade.apply_transaction(actor, account_id=account.id, type="debit", amount_cents=2_500)

        assert outcome.ok
        assert outcome.value.previous_balance_cents == 10_000
        assert outcome.value.new_balance_cents == 12_500

    @pytest.mark.parametrize("amount", [0, -100])
    def test_non_positive_amount_is_rejected(self, db_session, facade, actor, make_account, amount):
        account = make_account()

        outcome = facade.apply_transaction(actor, account_id=account.id, type="credit", amount_cents=amount)

        assert outcome.error_kind == "invalid_amount"
        assert db_session.query(CreditTransaction).filter_by(account_id=account.id).count() == 0

    def test_unknown_type_is_rejected(self, facade, actor, make_account):
        account = make_account()

        outcome = facade.apply_transaction(actor, account_id=account.id, type="refund", amount_cents=100)

        assert outcome.error_kind == "invalid_request"

    def test_suspended_account_refuses_credit_but_accepts_payment(self, db_session, facade, actor, make_account):
        account = make_account(100_000, balance_cents=40_000, status="suspended")

        credit = facade.apply_transaction(actor, account_id=account.id, type="credit", amount_cents=1_000)
        payment = facade.apply_transaction(actor, account_id=account.id, type="payment", amount_cents=10_000)

        assert credit.error_kind == "account_not_active"
        assert credit.error.details["status"] == "suspended"
        assert payment.ok
        assert _account(db_session, account.id).balance_cents == 30_000

    def test_closed_account_refuses_debit(self, facade, actor, make_account):
        account = make_account(100_000, balance_cents=5_000, status="closed")

        outcome = facade.apply_transaction(actor, account_id=account.id, type="debit", amount_cents=500)

        assert outcome.error_kind == "account_not_active"

    def test_transaction_writes_one_matching_audit_entry(self, db_session, facade, actor, make_account):
        account = make_account(100_000, balance_cents=20_000)
        before_count = db_session.query(AuditLogEntry).filter_by(
            resource_type="credit_account", resource_id=str(account.id)
        ).count()

        outcome = facade.apply_transaction(actor, account_id=account.id, type="credit", amount_cents=5_000)

        entries = (
            db_session.query(AuditLogEntry)
            .filter_by(resource_type="credit_account", resource_id=str(account.id))
            .order_by(AuditLogEntry.id.desc())
            .all()
        )
        assert len(entries) == before_count + 1
        entry = entries[0]
        assert entry.category == "credit"
        assert entry.before["balance_cents"] == outcome.value.previous_balance_cents == 20_000
        assert entry.after["balance_cents"] == outcome.value.new_balance_cents == 25_000
        assert entry.details["transaction_id"] == outcome.value.transaction_id


class TestCreditInvariant:

    def test_balance_matches_transaction_history(self, db_session, facade, actor, make_account):
        account = make_account(50_000)

        facade.apply_transaction(actor, account_id=account.id, type="credit", amount_cents=30_000)
        facade.apply_transaction(actor, account_id=account.id, type="credit", amount_cents=40_000)
        facade.apply_transaction(actor, account_id=account.id, type="payment", amount_cents=25_000)
        facade.apply_transaction(actor, account_id=account.id, type="debit", amount_cents=1_000)
        facade.apply_transaction(actor, account_id=account.id, type="payment", amount_cents=99_000)
        facade.apply_transaction(actor, account_id=account.id, type="credit", amount_cents=0)  # refused

        account = _account(db_session, account.id)
        assert account.balance_cents == 0
        assert transaction_total(db_session, account.id) == account.balance_cents
        facade.credit_ledger.reconcile(org_id=actor.org_id, account_id=account.id)

    def test_reconcile_detects_balance_drift(self, db_session, facade, actor, make_account):
        account = make_account(50_000, balance_cents=1_000)
        db_session.execute(update(CreditAccount).where(CreditAccount.id == account.id).values(balance_cents=7))
        db_session.commit()

        with pytest.raises(InvariantViolation):
            facade.credit_ledger.reconcile(org_id=actor.org_id, account_id=account.id)


class TestCreditAdministration:
    """Admin-policy actions: each writes an 'admin' audit entry."""

    def _request(self, facade, actor, amount=250_000, retailer_id=777):
        outcome = facade.submit_credit_request(
            actor,
            wholesaler_id=500,
            retailer_id=retailer_id,
            requested_amount_cents=amount,
            business_name="Corner Pharmacy",
        )
        assert outcome.ok
        return outcome.value.resource_id

    def test_approving_request_opens_account(self, db_session, facade, actor):
        request_id = self._request(facade, actor)

        outcome = facade.approve_credit_request(
            actor, request_id=request_id, approved_limit_cents=200_000, notes="Two years of history"
        )

        assert outcome.ok
        account = _account(db_session, outcome.value.resource_id)
        assert account.credit_limit_cents == 200_000
        assert account.balance_cents == 0
        assert account.status == "active"
        assert account.credit_request_id == request_id
        assert db_session.get(CreditRequest, request_id).status == "approved"

        entry = db_session.get(AuditLogEntry, outcome.value.audit_entry_id)
        assert entry.category == "admin"
        assert entry.action == "credit_request.approved"

    def test_approving_for_existing_account_replaces_limit(self, db_session, facade, actor, make_account):
        account = make_account(100_000, balance_cents=150_000, retailer_id=777)
        request_id = self._request(facade, actor, retailer_id=777)

        outcome = facade.approve_credit_request(actor, request_id=request_id, approved_limit_cents=300_000)

        assert outcome.ok
        assert outcome.value.resource_id == account.id
        account = _account(db_session, account.id)
        assert account.credit_limit_cents == 300_000
        assert account.is_over_limit is False
        assert db_session.query(CreditAccount).filter_by(retailer_id=777).count() == 1

    def test_request_cannot_be_decided_twice(self, facade, actor):
        request_id = self._request(facade, actor)
        assert facade.reject_credit_request(actor, request_id=request_id, notes="Incomplete documents").ok

        outcome = facade.approve_credit_request(actor, request_id=request_id, approved_limit_cents=10_000)

        assert outcome.error_kind == "invalid_request"

    def test_limit_change_recomputes_over_limit_flag(self, db_session, facade, actor, make_account):
        account = make_account(100_000, balance_cents=80_000)

        outcome = facade.change_credit_limit(
            actor, account_id=account.id, credit_limit_cents=50_000, reason="Late payments"
        )

        assert outcome.ok
        account = _account(db_session, account.id)
        assert account.credit_limit_cents == 50_000
        assert account.is_over_limit is True
        entry = db_session.get(AuditLogEntry, outcome.value.audit_entry_id)
        assert entry.category == "admin"
        assert entry.before["credit_limit_cents"] == 100_000
        assert entry.after["credit_limit_cents"] == 50_000

    def test_status_changes(self, db_session, facade, actor, make_account):
        account = make_account()

        suspended = facade.set_account_status(actor, account_id=account.id, status="suspended", reason="Audit")
        again = facade.set_account_status(actor, account_id=account.id, status="suspended")
        closed = facade.set_account_status(actor, account_id=account.id, status="closed")
        reopened = facade.set_account_status(actor, account_id=account.id, status="active")

        assert suspended.ok
        assert again.error_kind == "invalid_request"
        assert closed.ok
        assert reopened.error_kind == "invalid_request"
        assert _account(db_session, account.id).status == "closed"
