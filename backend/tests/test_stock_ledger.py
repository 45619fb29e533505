# Overview: Pytest coverage for stock movements, batches, reconciliation and stock status.

"""
Stock Ledger Tests

Covers:
- quantity never goes negative (single movements and batches)
- movement direction rules per source kind
- batches are all-or-nothing and applied in product id order
- derived stock status and the low-stock signal
- quantity_on_hand == SUM(movements) and its reconciliation check
- one audit entry per movement with matching before/after
"""

import pytest
from sqlalchemy import update

from pharmaledger.models import AuditLogEntry, Product, StockMovement
from pharmaledger.services.errors import InvariantViolation
from pharmaledger.services.stock_service import MovementRequest

from ledger_helpers import movement_total


def _audit_count(session, product_id):
    return session.query(AuditLogEntry).filter_by(
        resource_type="product", resource_id=str(product_id)
    ).count()


class TestApplyMovement:
    """Single movements through the mutation facade."""

    def test_oversell_fails_and_leaves_quantity_unchanged(self, db_session, facade, actor, make_product):
        """Quantity 10, min 5: selling 12 is refused and nothing moves."""
        product = make_product(10, min_stock=5)
        movements_before = db_session.query(StockMovement).filter_by(product_id=product.id).count()

        outcome = facade.apply_movement(actor, product_id=product.id, quantity_delta=-12, source_kind="sale")

        assert not outcome.ok
        assert outcome.error_kind == "insufficient_stock"
        assert outcome.error.details["on_hand"] == 10
        assert outcome.error.details["requested"] == 12
        assert outcome.error.details["deficit"] == 2
        assert db_session.get(Product, product.id).quantity_on_hand == 10
        assert db_session.query(StockMovement).filter_by(product_id=product.id).count() == movements_before

    def test_sale_records_movement_and_reports_low_stock(self, db_session, facade, actor, make_product):
        product = make_product(10, min_stock=5)

        outcome = facade.apply_movement(
            actor, product_id=product.id, quantity_delta=-6, source_kind="sale", reference="RCPT-1"
        )

        assert outcome.ok
        result = outcome.value
        assert result.previous_quantity == 10
        assert result.new_quantity == 4
        assert result.stock_status == "low-stock"
        assert result.low_stock_reached is True
        assert outcome.signals["low_stock_reached"][0]["product_id"] == product.id

        movement = db_session.get(StockMovement, result.movement_id)
        assert movement.quantity_delta == -6
        assert movement.source_kind == "sale"
        assert movement.resulting_quantity == 4
        assert movement.actor_id == actor.actor_id
        assert movement.reference == "RCPT-1"

    def test_low_stock_signal_only_when_crossing_threshold(self, facade, actor, make_product):
        product = make_product(4, min_stock=5)

        outcome = facade.apply_movement(actor, product_id=product.id, quantity_delta=-1, source_kind="sale")

        assert outcome.ok
        assert outcome.value.low_stock_reached is False
        assert outcome.signals == {}

    def test_selling_last_unit_is_out_of_stock(self, facade, actor, make_product):
        product = make_product(3)

        outcome = facade.apply_movement(actor, product_id=product.id, quantity_delta=-3, source_kind="sale")

        assert outcome.ok
        assert outcome.value.new_quantity == 0
        assert outcome.value.stock_status == "out-of-stock"

    @pytest.mark.parametrize("delta,kind,expected", [
        (3, "sale", "invalid_quantity"),
        (-3, "purchase-receipt", "invalid_quantity"),
        (0, "adjustment-add", "invalid_quantity"),
        (5, "teleport", "invalid_request"),
    ])
    def test_malformed_movements_are_rejected(self, db_session, facade, actor, make_product, delta, kind, expected):
        product = make_product(10)

        outcome = facade.apply_movement(actor, product_id=product.id, quantity_delta=delta, source_kind=kind)

        assert not outcome.ok
        assert outcome.error_kind == expected
        assert db_session.get(Product, product.id).quantity_on_hand == 10

    def test_retired_product_accepts_only_release(self, db_session, facade, actor, make_product):
        product = make_product(5, is_active=False)

        sale = facade.apply_movement(actor, product_id=product.id, quantity_delta=-1, source_kind="sale")
        release = facade.apply_movement(actor, product_id=product.id, quantity_delta=2, source_kind="order-release")

        assert sale.error_kind == "product_inactive"
        assert release.ok
        assert db_session.get(Product, product.id).quantity_on_hand == 7

    def test_other_org_cannot_move_stock(self, db_session, facade, other_actor, make_product):
        product = make_product(5)

        outcome = facade.apply_movement(other_actor, product_id=product.id, quantity_delta=-1, source_kind="sale")

        assert outcome.error_kind == "not_found"
        assert db_session.get(Product, product.id).quantity_on_hand == 5

    def test_each_movement_writes_one_matching_audit_entry(self, db_session, facade, actor, make_product):
        product = make_product(10, min_stock=2)
        entries_before = _audit_count(db_session, product.id)

        outcome = facade.apply_movement(actor, product_id=product.id, quantity_delta=-4, source_kind="sale")

        assert _audit_count(db_session, product.id) == entries_before + 1
        entry = (
            db_session.query(AuditLogEntry)
            .filter_by(resource_type="product", resource_id=str(product.id))
            .order_by(AuditLogEntry.id.desc())
            .first()
        )
        assert entry.category == "inventory"
        assert entry.action == "stock.movement"
        assert entry.actor_id == actor.actor_id
        assert entry.before["quantity_on_hand"] == outcome.value.previous_quantity == 10
        assert entry.after["quantity_on_hand"] == outcome.value.new_quantity == 6
        assert entry.details["movement_id"] == outcome.value.movement_id

    def test_failed_movement_writes_no_audit_entry(self, db_session, facade, actor, make_product):
        product = make_product(1)
        entries_before = _audit_count(db_session, product.id)

        facade.apply_movement(actor, product_id=product.id, quantity_delta=-2, source_kind="sale")

        assert _audit_count(db_session, product.id) == entries_before


class TestApplyMovements:
    """Batches are all-or-nothing."""

    def test_failing_line_leaves_every_product_unchanged(self, db_session, facade, actor, make_product):
        p1 = make_product(5)
        p2 = make_product(1)
        p3 = make_product(8)
        movement_count = db_session.query(StockMovement).count()
        audit_count = db_session.query(AuditLogEntry).count()

        outcome = facade.apply_movements(actor, [
            MovementRequest(product_id=p1.id, quantity_delta=-2, source_kind="sale"),
            MovementRequest(product_id=p2.id, quantity_delta=-3, source_kind="sale"),
            MovementRequest(product_id=p3.id, quantity_delta=-1, source_kind="sale"),
        ])

        assert not outcome.ok
        assert outcome.error_kind == "insufficient_stock"
        assert outcome.error.details["product_id"] == p2.id
        assert db_session.get(Product, p1.id).quantity_on_hand == 5
        assert db_session.get(Product, p2.id).quantity_on_hand == 1
        assert db_session.get(Product, p3.id).quantity_on_hand == 8
        assert db_session.query(StockMovement).count() == movement_count
        assert db_session.query(AuditLogEntry).count() == audit_count

    def test_shortage_is_reported_against_whole_batch_demand(self, facade, actor, make_product):
        product = make_product(5)

        outcome = facade.apply_movements(actor, [
            {"product_id": product.id, "quantity_delta": -3, "source_kind": "sale"},
            {"product_id": product.id, "quantity_delta": -3, "source_kind": "sale"},
        ])

        assert outcome.error_kind == "insufficient_stock"
        assert outcome.error.details["requested"] == 6
        assert outcome.error.details["deficit"] == 1

    def test_movements_are_applied_in_product_id_order(self, facade, actor, make_product):
        first = make_product(10)
        second = make_product(10)

        outcome = facade.apply_movements(actor, [
            MovementRequest(product_id=second.id, quantity_delta=-1, source_kind="sale"),
            MovementRequest(product_id=first.id, quantity_delta=-2, source_kind="sale"),
        ])

        assert outcome.ok
        assert [m.product_id for m in outcome.value.movements] == [first.id, second.id]
        assert [m.new_quantity for m in outcome.value.movements] == [8, 9]

    def test_empty_batch_is_rejected(self, facade, actor):
        outcome = facade.apply_movements(actor, [])

        assert outcome.error_kind == "invalid_request"

    @pytest.mark.parametrize("bad_id", [None, "7", 1.5, True])
    def test_non_integer_product_id_is_rejected(self, db_session, facade, actor, make_product, bad_id):
        product = make_product(5)
        movement_count = db_session.query(StockMovement).count()

        outcome = facade.apply_movements(actor, [
            {"product_id": bad_id, "quantity_delta": -1, "source_kind": "sale"},
            {"product_id": product.id, "quantity_delta": -1, "source_kind": "sale"},
        ])

        assert outcome.error_kind == "invalid_request"
        assert outcome.error.details == {"product_id": bad_id}
        assert db_session.get(Product, product.id).quantity_on_hand == 5
        assert db_session.query(StockMovement).count() == movement_count

    def test_non_mapping_movement_is_rejected(self, facade, actor):
        outcome = facade.apply_movements(actor, ["sale 3 of product 1"])

        assert outcome.error_kind == "invalid_request"


class TestLowStockListing:

    def test_lists_products_at_or_below_minimum(self, facade, actor, other_actor, make_product):
        healthy = make_product(10, min_stock=3)
        at_minimum = make_product(3, min_stock=3)
        empty = make_product(0, min_stock=2)
        retired = make_product(1, min_stock=5, is_active=False)
        make_product(0, min_stock=5, org_id=other_actor.org_id)

        items = facade.stock_ledger.list_low_stock(org_id=actor.org_id)

        assert [(i["id"], i["stock_status"]) for i in items] == [
            (empty.id, "out-of-stock"),
            (at_minimum.id, "low-stock"),
        ]
        assert healthy.id not in {i["id"] for i in items}
        assert retired.id not in {i["id"] for i in items}

    def test_out_of_stock_can_be_excluded(self, facade, actor, make_product):
        make_product(0, min_stock=2)
        low = make_product(1, min_stock=2)

        items = facade.stock_ledger.list_low_stock(org_id=actor.org_id, include_out_of_stock=False)

        assert [i["id"] for i in items] == [low.id]

    def test_listing_follows_sales_that_cross_the_threshold(self, facade, actor, make_product):
        product = make_product(6, min_stock=4)
        assert facade.stock_ledger.list_low_stock(org_id=actor.org_id) == []

        outcome = facade.apply_movement(actor, product_id=product.id, quantity_delta=-2, source_kind="sale")

        assert outcome.value.low_stock_reached
        assert [i["id"] for i in facade.stock_ledger.list_low_stock(org_id=actor.org_id)] == [product.id]


class TestAdjustmentsAndReturns:

    def test_adjustment_requires_reason(self, db_session, facade, actor, make_product):
        product = make_product(5)

        outcome = facade.record_adjustment(actor, product_id=product.id, quantity_delta=-1, reason="  ")

        assert outcome.error_kind == "invalid_request"
        assert db_session.get(Product, product.id).quantity_on_hand == 5

    def test_negative_adjustment_is_a_removal(self, facade, actor, make_product):
        product = make_product(5)

        outcome = facade.record_adjustment(
            actor, product_id=product.id, quantity_delta=-2, reason="Expired batch destroyed"
        )

        assert outcome.ok
        assert outcome.value.source_kind == "adjustment-remove"
        assert outcome.value.new_quantity == 3

    def test_return_adds_stock(self, facade, actor, make_product):
        product = make_product(5)

        outcome = facade.record_return(actor, product_id=product.id, quantity=2, reference="RCPT-9")

        assert outcome.ok
        assert outcome.value.source_kind == "return"
        assert outcome.value.quantity_delta == 2
        assert outcome.value.new_quantity == 7

    def test_return_quantity_must_be_positive(self, facade, actor, make_product):
        product = make_product(5)

        outcome = facade.record_return(actor, product_id=product.id, quantity=-2)

        assert outcome.error_kind == "invalid_quantity"


class TestStockInvariant:
    """quantity_on_hand always equals the sum of the product's movements."""

    def test_quantity_matches_movement_history(self, db_session, facade, actor, make_product):
        product = make_product(20, min_stock=3)

        facade.apply_movement(actor, product_id=product.id, quantity_delta=-7, source_kind="sale")
        facade.apply_movement(actor, product_id=product.id, quantity_delta=-30, source_kind="sale")  # refused
        facade.record_return(actor, product_id=product.id, quantity=2)
        facade.record_adjustment(actor, product_id=product.id, quantity_delta=-1, reason="Damaged")

        product = db_session.get(Product, product.id)
        assert product.quantity_on_hand == 14
        assert movement_total(db_session, product.id) == product.quantity_on_hand
        assert facade.stock_ledger.reconcile(org_id=actor.org_id, product_id=product.id) == {
            "product_id": product.id,
            "quantity_on_hand": 14,
        }

    def test_reconcile_detects_counter_drift(self, db_session, facade, actor, make_product):
        product = make_product(5)
        db_session.execute(update(Product).where(Product.id == product.id).values(quantity_on_hand=9))
        db_session.commit()

        with pytest.raises(InvariantViolation) as exc:
            facade.stock_ledger.reconcile(org_id=actor.org_id, product_id=product.id)

        assert exc.value.details["history_total"] == 5
        assert exc.value.details["quantity_on_hand"] == 9

        violations = facade.reconcile_all(actor.org_id)
        assert [v["product_id"] for v in violations] == [product.id]
