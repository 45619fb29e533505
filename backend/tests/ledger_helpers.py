"""Plain helpers shared by the ledger tests."""

from sqlalchemy import func

from pharmaledger.models import CreditTransaction, StockMovement

ORG_ID = 1


def movement_total(session, product_id):
    """SUM(quantity_delta) for a product, straight from the table."""
    return session.query(func.coalesce(func.sum(StockMovement.quantity_delta), 0)).filter(
        StockMovement.product_id == product_id
    ).scalar()


def transaction_total(session, account_id):
    """SUM(balance_delta_cents) for an account, straight from the table."""
    return session.query(func.coalesce(func.sum(CreditTransaction.balance_delta_cents), 0)).filter(
        CreditTransaction.account_id == account_id
    ).scalar()


def actor_headers(actor_id=10, org_id=ORG_ID, role="manager", **extra):
    headers = {"X-Actor-Id": str(actor_id), "X-Org-Id": str(org_id), "X-Actor-Role": role}
    headers.update(extra)
    return headers
