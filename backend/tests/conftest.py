"""
Pytest fixtures for pharmaledger backend tests.

Provides test database setup, actor fixtures, ledger record factories and a
test client.
"""

import pytest

from pharmaledger import create_app
from pharmaledger.config import TestConfig
from pharmaledger.extensions import db
from pharmaledger.models import (
    CreditAccount,
    Product,
    PurchaseOrder,
    PurchaseOrderLine,
)
from pharmaledger.models.purchasing import PO_APPROVED
from pharmaledger.services.mutation_service import Actor, build_facade

ORG_ID = 1
OTHER_ORG_ID = 2
WHOLESALER_ID = 500
RETAILER_ID = 900


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app(TestConfig)

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def actor():
    """Store manager of organization 1."""
    return Actor(actor_id=10, org_id=ORG_ID, role="manager")


@pytest.fixture(scope='function')
def other_actor():
    """Manager of a different organization (tenant isolation checks)."""
    return Actor(actor_id=20, org_id=OTHER_ORG_ID, role="manager")


@pytest.fixture(scope='function')
def facade(db_session):
    return build_facade(db_session)


@pytest.fixture(scope='function')
def make_product(db_session, facade):
    """
    Create a product and bring it to `quantity` through an opening-stock
    adjustment, so its movement history always explains its quantity.
    """
    counter = {"n": 0}

    def _make(quantity=0, *, min_stock=0, price_cents=1000, org_id=ORG_ID, is_active=True, sku=None):
        counter["n"] += 1
        product = Product(
            org_id=org_id,
            sku=sku or f"SKU-{counter['n']:04d}",
            name=f"Test Product {counter['n']}",
            min_stock=min_stock,
            unit_price_cents=price_cents,
            unit_cost_cents=price_cents // 2,
        )
        db_session.add(product)
        db_session.commit()

        if quantity:
            outcome = facade.record_adjustment(
                Actor(actor_id=1, org_id=org_id, role="admin"),
                product_id=product.id,
                quantity_delta=quantity,
                reason="Opening stock",
            )
            assert outcome.ok, outcome.error

        if not is_active:
            product.is_active = False
            db_session.commit()
        return product

    return _make


@pytest.fixture(scope='function')
def make_account(db_session, facade):
    """Create an active credit account, optionally with an opening balance."""
    counter = {"n": 0}

    def _make(limit_cents=1_000_000, *, balance_cents=0, status="active", org_id=ORG_ID,
              wholesaler_id=WHOLESALER_ID, retailer_id=None):
        counter["n"] += 1
        account = CreditAccount(
            org_id=org_id,
            wholesaler_id=wholesaler_id,
            retailer_id=retailer_id if retailer_id is not None else RETAILER_ID + counter["n"],
            credit_limit_cents=limit_cents,
            balance_cents=0,
            status="active",
            is_over_limit=False,
        )
        db_session.add(account)
        db_session.commit()

        if balance_cents:
            outcome = facade.apply_transaction(
                Actor(actor_id=1, org_id=org_id, role="admin"),
                account_id=account.id,
                type="credit",
                amount_cents=balance_cents,
                reference="Opening balance",
            )
            assert outcome.ok, outcome.error

        if status != "active":
            account.status = status
            db_session.commit()
        return account

    return _make


@pytest.fixture(scope='function')
def make_purchase_order(db_session):
    """Create an approved purchase order: lines = [(product, quantity), ...]."""
    counter = {"n": 0}

    def _make(lines, *, status=PO_APPROVED, org_id=ORG_ID):
        counter["n"] += 1
        po = PurchaseOrder(
            org_id=org_id,
            po_number=f"PO-{counter['n']:05d}",
            supplier_name="Acme Pharma Supply",
            status=status,
            created_by_actor_id=10,
        )
        for product, quantity in lines:
            po.lines.append(
                PurchaseOrderLine(product_id=product.id, quantity=quantity, unit_cost_cents=product.unit_cost_cents)
            )
        po.total_cost_cents = sum((p.unit_cost_cents or 0) * q for p, q in lines)
        db_session.add(po)
        db_session.commit()
        return po

    return _make
