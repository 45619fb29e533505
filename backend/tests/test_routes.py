# Overview: HTTP-level tests for actor headers, role checks, status mapping and idempotency keys.

from datetime import timedelta

import pytest

from pharmaledger.models import IdempotencyRecord, Product
from pharmaledger.services.errors import ContentionTimeout
from pharmaledger.services.mutation_service import MutationFacade
from pharmaledger.time_utils import utcnow

from ledger_helpers import actor_headers


class TestActorContext:

    def test_missing_headers_is_401(self, client, db_session):
        resp = client.post("/api/sales", json={"lines": [{"product_id": 1, "quantity": 1}]})

        assert resp.status_code == 401
        assert resp.get_json()["kind"] == "unauthenticated"

    def test_non_numeric_actor_is_401(self, client, db_session):
        resp = client.get("/api/inventory/products/1", headers={"X-Actor-Id": "bob", "X-Org-Id": "1"})

        assert resp.status_code == 401

    def test_staff_cannot_post_raw_movements(self, client, db_session, make_product):
        product = make_product(5)

        resp = client.post(
            "/api/inventory/movements",
            json={"product_id": product.id, "quantity_delta": -1, "source_kind": "sale"},
            headers=actor_headers(role="staff"),
        )

        assert resp.status_code == 403
        assert db_session.get(Product, product.id).quantity_on_hand == 5

    def test_staff_cannot_read_audit_log(self, client, db_session):
        resp = client.get("/api/audit", headers=actor_headers(role="staff"))

        assert resp.status_code == 403


class TestInventoryRoutes:

    def test_movement_created(self, client, db_session, make_product):
        product = make_product(10, min_stock=5)

        resp = client.post(
            "/api/inventory/movements",
            json={"product_id": product.id, "quantity_delta": -6, "source_kind": "sale"},
            headers=actor_headers(),
        )

        assert resp.status_code == 201
        body = resp.get_json()
        assert body["ok"] is True
        assert body["result"]["new_quantity"] == 4
        assert body["signals"]["low_stock_reached"][0]["product_id"] == product.id

    def test_oversell_is_409(self, client, db_session, make_product):
        product = make_product(10)

        resp = client.post(
            "/api/inventory/movements",
            json={"product_id": product.id, "quantity_delta": -12, "source_kind": "sale"},
            headers=actor_headers(),
        )

        assert resp.status_code == 409
        body = resp.get_json()
        assert body["kind"] == "insufficient_stock"
        assert body["details"]["deficit"] == 2

    def test_unknown_field_is_400(self, client, db_session, make_product):
        product = make_product(10)

        resp = client.post(
            "/api/inventory/movements",
            json={"product_id": product.id, "quantity_delta": -1, "source_kind": "sale", "quantity_on_hand": 99},
            headers=actor_headers(),
        )

        assert resp.status_code == 400

    def test_adjustment_without_reason_is_400(self, client, db_session, make_product):
        product = make_product(10)

        resp = client.post(
            "/api/inventory/adjustments",
            json={"product_id": product.id, "quantity_delta": -1, "reason": ""},
            headers=actor_headers(),
        )

        assert resp.status_code == 400

    def test_other_org_product_is_404(self, client, db_session, make_product):
        product = make_product(5)

        resp = client.get(f"/api/inventory/products/{product.id}", headers=actor_headers(org_id=2))

        assert resp.status_code == 404

    def test_low_stock_listing(self, client, db_session, make_product):
        make_product(10, min_stock=2)
        low = make_product(2, min_stock=2)
        empty = make_product(0, min_stock=1)

        everything = client.get("/api/inventory/low-stock", headers=actor_headers(role="staff"))
        in_stock_only = client.get("/api/inventory/low-stock?include_out_of_stock=false", headers=actor_headers())

        assert everything.status_code == 200
        assert [i["id"] for i in everything.get_json()["items"]] == [empty.id, low.id]
        assert [i["id"] for i in in_stock_only.get_json()["items"]] == [low.id]

    def test_movement_history(self, client, db_session, make_product):
        product = make_product(5)

        resp = client.get(f"/api/inventory/products/{product.id}/movements", headers=actor_headers())

        assert resp.status_code == 200
        items = resp.get_json()["items"]
        assert [(m["source_kind"], m["quantity_delta"]) for m in items] == [("adjustment-add", 5)]


class TestIdempotencyKeyHeader:

    def test_replay_returns_200_with_same_result(self, client, db_session, make_product):
        product = make_product(10)
        body = {"lines": [{"product_id": product.id, "quantity": 2}], "reference": "RCPT-55"}
        headers = actor_headers(**{"Idempotency-Key": "till-3-0007"})

        first = client.post("/api/sales", json=body, headers=headers)
        second = client.post("/api/sales", json=body, headers=headers)

        assert first.status_code == 201
        assert second.status_code == 200
        assert second.get_json()["replayed"] is True
        assert second.get_json()["result"] == first.get_json()["result"]
        db_session.expire_all()
        assert db_session.get(Product, product.id).quantity_on_hand == 8

    def test_same_key_with_different_body_is_409(self, client, db_session, make_product):
        product = make_product(10)
        headers = actor_headers(**{"Idempotency-Key": "till-3-0008"})

        first = client.post("/api/sales", json={"lines": [{"product_id": product.id, "quantity": 1}]},
                            headers=headers)
        second = client.post("/api/sales", json={"lines": [{"product_id": product.id, "quantity": 5}]},
                             headers=headers)

        assert first.status_code == 201
        assert second.status_code == 409
        assert second.get_json()["kind"] == "idempotency_conflict"
        db_session.expire_all()
        assert db_session.get(Product, product.id).quantity_on_hand == 9

    def test_overlong_key_is_400(self, client, db_session, make_product):
        product = make_product(10)

        resp = client.post(
            "/api/sales",
            json={"lines": [{"product_id": product.id, "quantity": 1}]},
            headers=actor_headers(**{"Idempotency-Key": "k" * 129}),
        )

        assert resp.status_code == 400


class TestCreditRoutes:

    def test_over_limit_credit_is_created_with_signal(self, client, db_session, make_account):
        account = make_account(1_000_000)

        resp = client.post(
            f"/api/credit/accounts/{account.id}/transactions",
            json={"type": "credit", "amount_cents": 1_200_000},
            headers=actor_headers(role="staff"),
        )

        assert resp.status_code == 201
        body = resp.get_json()
        assert body["result"]["new_balance_cents"] == 1_200_000
        assert body["signals"]["credit_limit_exceeded"]["over_limit_by_cents"] == 200_000

    def test_decimal_amount_is_400(self, client, db_session, make_account):
        account = make_account()

        resp = client.post(
            f"/api/credit/accounts/{account.id}/transactions",
            json={"type": "credit", "amount_cents": 12.5},
            headers=actor_headers(),
        )

        assert resp.status_code == 400

    def test_suspended_account_is_409(self, client, db_session, make_account):
        account = make_account(status="suspended")

        resp = client.post(
            f"/api/credit/accounts/{account.id}/transactions",
            json={"type": "credit", "amount_cents": 100},
            headers=actor_headers(),
        )

        assert resp.status_code == 409
        assert resp.get_json()["kind"] == "account_not_active"

    def test_limit_change_requires_manager(self, client, db_session, make_account):
        account = make_account()

        denied = client.post(
            f"/api/credit/accounts/{account.id}/limit",
            json={"credit_limit_cents": 5},
            headers=actor_headers(role="staff"),
        )
        allowed = client.post(
            f"/api/credit/accounts/{account.id}/limit",
            json={"credit_limit_cents": 5, "reason": "Risk review"},
            headers=actor_headers(role="admin"),
        )

        assert denied.status_code == 403
        assert allowed.status_code == 200

    def test_request_approval_flow(self, client, db_session):
        submitted = client.post(
            "/api/credit/requests",
            json={"wholesaler_id": 500, "retailer_id": 321, "requested_amount_cents": 50_000},
            headers=actor_headers(role="retailer"),
        )
        request_id = submitted.get_json()["result"]["resource_id"]

        approved = client.post(
            f"/api/credit/requests/{request_id}/approve",
            json={"approved_limit_cents": 40_000},
            headers=actor_headers(),
        )

        assert submitted.status_code == 201
        assert approved.status_code == 200
        account = approved.get_json()["result"]["data"]
        assert account["credit_limit_cents"] == 40_000
        assert account["retailer_id"] == 321


class TestOrderRoutes:

    def test_order_lifecycle_over_http(self, client, db_session, make_product):
        product = make_product(5)
        created = client.post(
            "/api/orders",
            json={"wholesaler_id": 500, "retailer_id": 900, "lines": [{"product_id": product.id, "quantity": 2}]},
            headers=actor_headers(),
        )
        order_id = created.get_json()["result"]["resource_id"]

        confirmed = client.post(f"/api/orders/{order_id}/transition", json={"status": "confirmed"},
                                headers=actor_headers())
        backwards = client.post(f"/api/orders/{order_id}/transition", json={"status": "pending"},
                                headers=actor_headers())
        detail = client.get(f"/api/orders/{order_id}", headers=actor_headers())

        assert created.status_code == 201
        assert confirmed.status_code == 200
        assert backwards.status_code == 409
        assert backwards.get_json()["kind"] == "invalid_transition"
        body = detail.get_json()
        assert body["order"]["status"] == "confirmed"
        assert [h["status"] for h in body["history"]] == ["pending", "confirmed"]


class TestPurchaseOrderRoutes:

    def test_create_approve_and_receive_over_http(self, client, db_session, make_product):
        product = make_product(0)

        created = client.post(
            "/api/purchase-orders",
            json={
                "po_number": "PO-HTTP-1",
                "supplier_name": "Acme Pharma Supply",
                "lines": [{"product_id": product.id, "quantity": 5, "unit_cost_cents": 120}],
            },
            headers=actor_headers(),
        )
        po_id = created.get_json()["result"]["resource_id"]
        approved = client.post(f"/api/purchase-orders/{po_id}/approve", headers=actor_headers())
        received = client.post(f"/api/purchase-orders/{po_id}/receive", json={}, headers=actor_headers(role="staff"))

        assert created.status_code == 201
        assert created.get_json()["result"]["data"]["total_cost_cents"] == 600
        assert approved.status_code == 200
        assert received.status_code == 200
        assert received.get_json()["result"]["status"] == "received"
        db_session.expire_all()
        assert db_session.get(Product, product.id).quantity_on_hand == 5

    def test_staff_cannot_create_purchase_orders(self, client, db_session, make_product):
        product = make_product(0)

        resp = client.post(
            "/api/purchase-orders",
            json={"po_number": "PO-HTTP-2", "lines": [{"product_id": product.id, "quantity": 1}]},
            headers=actor_headers(role="staff"),
        )

        assert resp.status_code == 403

    @pytest.mark.parametrize("body", [
        {"lines": [{"product_id": 1, "quantity": 1}]},
        {"po_number": "PO-HTTP-3", "lines": []},
        {"po_number": "PO-HTTP-3", "lines": [{"product_id": 1, "quantity": 1, "unit_cost_cents": -1}]},
    ])
    def test_malformed_body_is_400(self, client, db_session, body):
        resp = client.post("/api/purchase-orders", json=body, headers=actor_headers())

        assert resp.status_code == 400

    def test_receive_with_string_line_ids(self, client, db_session, make_product, make_purchase_order):
        product = make_product(0)
        po = make_purchase_order([(product, 6)])
        line_id = po.lines[0].id

        resp = client.post(
            f"/api/purchase-orders/{po.id}/receive",
            json={"received": {str(line_id): 2}},
            headers=actor_headers(role="staff"),
        )

        assert resp.status_code == 200
        assert resp.get_json()["result"]["status"] == "partially-received"
        db_session.expire_all()
        assert db_session.get(Product, product.id).quantity_on_hand == 2


class TestAuditRoutes:

    def test_pages_with_cursor(self, client, db_session, make_product):
        make_product(5)
        make_product(5)
        make_product(5)

        first = client.get("/api/audit?limit=2", headers=actor_headers())
        cursor = first.get_json()["next_cursor"]
        second = client.get("/api/audit", query_string={"limit": 2, "cursor": cursor}, headers=actor_headers())

        assert first.status_code == 200
        assert len(first.get_json()["items"]) == 2
        assert cursor is not None
        assert len(second.get_json()["items"]) == 1
        assert second.get_json()["next_cursor"] is None

    def test_bad_cursor_is_400(self, client, db_session):
        resp = client.get("/api/audit?cursor=nope", headers=actor_headers())

        assert resp.status_code == 400

    def test_bad_category_is_400(self, client, db_session):
        resp = client.get("/api/audit?category=gossip", headers=actor_headers())

        assert resp.status_code == 400

    def test_resource_history(self, client, db_session, make_product):
        product = make_product(5)

        resp = client.get(f"/api/audit/resources/product/{product.id}", headers=actor_headers(role="staff"))

        assert resp.status_code == 200
        assert [e["action"] for e in resp.get_json()["items"]] == ["stock.movement"]


class TestSystemRoutes:

    def test_contention_timeout_is_503(self, client, db_session, make_product, monkeypatch):
        product = make_product(5)

        def contended(self, actor, **kwargs):
            raise ContentionTimeout("process_sale could not complete due to contention; safe to retry")

        monkeypatch.setattr(MutationFacade, "process_sale", contended)

        resp = client.post(
            "/api/sales",
            json={"lines": [{"product_id": product.id, "quantity": 1}]},
            headers=actor_headers(),
        )

        assert resp.status_code == 503
        assert resp.headers["Retry-After"] == "1"
        assert resp.get_json()["kind"] == "contention_timeout"

    def test_health(self, client, db_session):
        resp = client.get("/health")

        assert resp.status_code == 200
        assert resp.get_json()["checks"]["database"]["status"] == "healthy"
        assert resp.get_json()["checks"]["idempotency_store"]["status"] == "healthy"

    def test_health_reports_expired_idempotency_backlog(self, client, db_session):
        db_session.add(IdempotencyRecord(org_id=1, key="stale", operation="apply_movement", actor_id=1,
                                         result_payload={}, created_at=utcnow() - timedelta(hours=200)))
        db_session.commit()

        resp = client.get("/health")

        assert resp.status_code == 200
        body = resp.get_json()
        assert body["status"] == "degraded"
        assert body["checks"]["idempotency_store"]["details"]["expired_pending_purge"] == 1

    @pytest.mark.parametrize("origin,allowed", [("http://localhost:5173", True), ("http://evil.test", False)])
    def test_cors_allowlist(self, client, db_session, origin, allowed):
        resp = client.get("/version", headers={"Origin": origin})

        assert ("Access-Control-Allow-Origin" in resp.headers) is allowed
