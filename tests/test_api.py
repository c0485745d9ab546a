"""HTTP-level tests: routes, error envelope, stock intelligence endpoints."""

from __future__ import annotations

from datetime import datetime, timedelta
from decimal import Decimal

import pytest

from models import (
    Campaign, CampaignStatus, ColorDemandAnalysis, DiscountRequest, InventorySignals, InventoryStatus,
    Order, OrderStatus, VehicleInventory,
)

JUSTIFICATION = "Loyal customer trading in two vehicles"
VIN = "JTMHV05J604123456"


def create_order(client, total="100000"):
    resp = client.post("/api/orders", json={
        "customer_name": "Aisha Rahman",
        "salesperson_id": "sp-001",
        "total_amount": total,
    })
    assert resp.status_code == 201
    return resp.json()


def submit_discount(client, order_id, requested="13000", **extra):
    return client.post(f"/api/orders/{order_id}/discounts", json={
        "original_price": "100000",
        "requested_discount": requested,
        "justification": JUSTIFICATION,
        "requested_by": "sp-001",
        **extra,
    })


def add_unit(db, catalog, vin, days, color="white", status=InventoryStatus.IN_YARD, **signals):
    unit = VehicleInventory(
        vin=vin,
        variant_id=catalog["variant"].id,
        exterior_color_id=catalog[color].id,
        status=status,
        stock_date=datetime.utcnow() - timedelta(days=days),
    )
    db.add(unit)
    db.flush()
    db.add(InventorySignals(inventory_id=unit.id, **signals))
    db.commit()
    return unit


class TestHealth:
    def test_health(self, client):
        resp = client.get("/api/health")
        assert resp.status_code == 200
        assert resp.json()["status"] == "ok"


class TestOrders:
    def test_create_and_get(self, client):
        order = create_order(client)
        resp = client.get(f"/api/orders/{order['id']}")
        assert resp.status_code == 200
        assert resp.json()["status"] == "NEW"
        assert Decimal(resp.json()["total_amount"]) == Decimal("100000")

    def test_missing_order_envelope(self, client):
        resp = client.get("/api/orders/nope")
        assert resp.status_code == 404
        assert resp.json() == {"error": {"code": "NOT_FOUND", "message": "Order not found"}}


class TestDiscountRoutes:
    def test_full_two_level_flow(self, client):
        order = create_order(client)

        resp = submit_discount(client, order["id"])
        assert resp.status_code == 201
        discount = resp.json()["discount"]
        assert discount["status"] == "PENDING_BM"
        assert Decimal(discount["final_price"]) == Decimal("87000")
        assert Decimal(discount["discount_percentage"]) == Decimal("13")
        assert discount["required_approval"] == "Branch Manager + General Manager"
        assert discount["next_approver_role"] == "BRANCH_MANAGER"

        resp = client.put(f"/api/discounts/{discount['id']}/approve", json={
            "approved_by": "bm-001", "approver_role": "BRANCH_MANAGER",
        })
        assert resp.status_code == 200
        assert resp.json()["discount"]["status"] == "PENDING_GM"
        assert resp.json()["discount"]["next_approver_role"] == "GENERAL_MANAGER"

        resp = client.put(f"/api/discounts/{discount['id']}/approve", json={
            "approved_by": "gm-001", "approver_role": "GENERAL_MANAGER", "comment": "OK",
        })
        assert resp.status_code == 200
        assert resp.json()["discount"]["status"] == "APPROVED"
        assert resp.json()["discount"]["next_approver_role"] is None

        order_after = client.get(f"/api/orders/{order['id']}").json()
        assert Decimal(order_after["total_amount"]) == Decimal("87000")

        listed = client.get(f"/api/orders/{order['id']}/discounts").json()
        assert [d["status"] for d in listed] == ["APPROVED"]

    def test_gm_first_is_sequence_error(self, client):
        order = create_order(client)
        discount = submit_discount(client, order["id"]).json()["discount"]
        resp = client.put(f"/api/discounts/{discount['id']}/approve", json={
            "approved_by": "gm-001", "approver_role": "GENERAL_MANAGER",
        })
        assert resp.status_code == 409
        assert resp.json()["error"]["code"] == "SEQUENCE_ERROR"

    def test_terminal_state_is_conflict(self, client):
        order = create_order(client)
        discount = submit_discount(client, order["id"]).json()["discount"]
        client.put(f"/api/discounts/{discount['id']}/reject", json={
            "rejected_by": "bm-001", "reason": "Margin too thin on this unit",
        })
        resp = client.put(f"/api/discounts/{discount['id']}/approve", json={
            "approved_by": "bm-001", "approver_role": "BRANCH_MANAGER",
        })
        assert resp.status_code == 409
        assert resp.json()["error"]["code"] == "INVALID_STATE"

    def test_unknown_role_is_bad_request(self, client):
        order = create_order(client)
        discount = submit_discount(client, order["id"]).json()["discount"]
        resp = client.put(f"/api/discounts/{discount['id']}/approve", json={
            "approved_by": "root", "approver_role": "ADMIN",
        })
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "BAD_REQUEST"

    def test_unknown_field_is_bad_request(self, client):
        order = create_order(client)
        resp = submit_discount(client, order["id"], status="APPROVED")
        assert resp.status_code == 400

    def test_policy_errors_listed(self, client):
        order = create_order(client)
        resp = submit_discount(client, order["id"], requested="30000")
        assert resp.status_code == 400
        details = resp.json()["error"]["details"]
        assert details["errors"] == ["Discount exceeds maximum allowed (25%)"]
        assert len(details["warnings"]) == 2

    @pytest.mark.parametrize("field,value", [
        ("original_price", "10.004"),
        ("original_price", "1e-30"),
        ("requested_discount", "1e30"),
    ])
    def test_money_outside_column_precision_is_bad_request(self, client, db, field, value):
        order = create_order(client)
        body = {
            "original_price": "100000",
            "requested_discount": "1",
            "justification": JUSTIFICATION,
            "requested_by": "sp-001",
            field: value,
        }
        resp = client.post(f"/api/orders/{order['id']}/discounts", json=body)
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "BAD_REQUEST"
        assert db.query(DiscountRequest).count() == 0

    def test_submit_to_missing_order(self, client):
        resp = submit_discount(client, "nope")
        assert resp.status_code == 404

    def test_duplicate_open_request(self, client):
        order = create_order(client)
        submit_discount(client, order["id"])
        resp = submit_discount(client, order["id"])
        assert resp.status_code == 400
        assert "already a pending discount request" in resp.json()["error"]["message"]

    def test_pending_queue(self, client):
        first = create_order(client)
        second = create_order(client)
        d1 = submit_discount(client, first["id"]).json()["discount"]
        submit_discount(client, second["id"], requested="4000")
        client.put(f"/api/discounts/{d1['id']}/approve", json={
            "approved_by": "bm-001", "approver_role": "BRANCH_MANAGER",
        })

        body = client.get("/api/discounts/pending").json()
        assert body["stats"]["pending_bm"] == 1
        assert body["stats"]["pending_gm"] == 1
        assert Decimal(body["stats"]["total_pending_value"]) == Decimal("17000")
        assert body["meta"]["total"] == 2

        gm_queue = client.get("/api/discounts/pending", params={"approver_role": "GENERAL_MANAGER"}).json()
        assert [d["id"] for d in gm_queue["discounts"]] == [d1["id"]]
        assert gm_queue["discounts"][0]["order"]["id"] == first["id"]

        paged = client.get("/api/discounts/pending", params={"page": 2, "page_size": 1}).json()
        assert len(paged["discounts"]) == 1
        assert paged["meta"]["total_pages"] == 2

    def test_notifications(self, client):
        order = create_order(client)
        submit_discount(client, order["id"])
        notes = client.get("/api/notifications", params={"recipient": "branch-manager"}).json()
        assert len(notes) == 1
        assert notes[0]["title"] == "Discount Approval Required"
        assert notes[0]["is_read"] is False


class TestBrandRules:
    def test_sources(self, client):
        assert client.get("/api/brands/bmw/discount-rules").json()["source"] == "builtin"
        assert client.get("/api/brands/LADA/discount-rules").json()["source"] == "default"

    def test_update_then_submit(self, client):
        resp = client.put("/api/brands/LEXUS/discount-rules", json={
            "name": "Lexus",
            "rules": [
                {"max_amount": 2000, "required_level": 1},
                {"max_amount": None, "required_level": 2},
            ],
        })
        assert resp.status_code == 200
        assert resp.json()["source"] == "brand"
        assert resp.json()["rules"][0] == {"max_amount": 2000.0, "required_level": 1}

        order = create_order(client)
        discount = submit_discount(client, order["id"], requested="2500", brand_code="lexus").json()["discount"]
        assert discount["required_level"] == 2

    def test_rules_need_unbounded_tier(self, client):
        resp = client.put("/api/brands/LEXUS/discount-rules", json={
            "rules": [{"max_amount": 2000, "required_level": 1}],
        })
        assert resp.status_code == 400

    def test_level_out_of_range(self, client):
        resp = client.put("/api/brands/LEXUS/discount-rules", json={
            "rules": [{"max_amount": None, "required_level": 3}],
        })
        assert resp.status_code == 400


class TestInventory:
    def test_intake_decodes_vin(self, client, catalog):
        resp = client.post("/api/inventory", json={
            "vin": VIN.lower(),
            "variant_id": catalog["variant"].id,
            "exterior_color_id": catalog["white"].id,
        })
        assert resp.status_code == 201
        body = resp.json()
        assert body["vin"] == VIN
        assert body["decoded_make"] == "TOYOTA"
        assert body["model_year"] == 2024
        assert body["status"] == "IN_TRANSIT"

        signals = client.get(f"/api/inventory/{body['id']}/signals").json()
        assert signals["recent_inquiries"] == 0

    def test_invalid_vin(self, client, catalog):
        resp = client.post("/api/inventory", json={
            "vin": "JTMHV05J6O4123456",
            "variant_id": catalog["variant"].id,
            "exterior_color_id": catalog["white"].id,
        })
        assert resp.status_code == 400

    def test_duplicate_vin(self, client, catalog):
        payload = {
            "vin": VIN,
            "variant_id": catalog["variant"].id,
            "exterior_color_id": catalog["white"].id,
        }
        client.post("/api/inventory", json=payload)
        resp = client.post("/api/inventory", json=payload)
        assert resp.status_code == 400

    def test_unknown_variant(self, client, catalog):
        resp = client.post("/api/inventory", json={
            "vin": VIN, "variant_id": "nope", "exterior_color_id": catalog["white"].id,
        })
        assert resp.status_code == 404

    def test_update_signals(self, client, db, catalog):
        unit = add_unit(db, catalog, VIN, days=10)
        resp = client.put(f"/api/inventory/{unit.id}/signals", json={"recent_inquiries": 4})
        assert resp.status_code == 200
        assert resp.json()["recent_inquiries"] == 4
        assert resp.json()["recent_test_drives"] == 0

    def test_negative_signal_rejected(self, client, db, catalog):
        unit = add_unit(db, catalog, VIN, days=10)
        resp = client.put(f"/api/inventory/{unit.id}/signals", json={"recent_inquiries": -1})
        assert resp.status_code == 400


class TestStockIntelligence:
    def test_priority_push_ranking(self, client, db, catalog):
        add_unit(db, catalog, "JTMHV05J604000001", days=130)
        add_unit(db, catalog, "JTMHV05J604000002", days=5, recent_inquiries=3)
        add_unit(db, catalog, "JTMHV05J604000003", days=200, status=InventoryStatus.SOLD)

        body = client.get("/api/stock/intelligence/priority-push").json()
        assert [i["vin"] for i in body["items"]] == ["JTMHV05J604000001", "JTMHV05J604000002"]
        top = body["items"][0]
        assert top["scores"]["aging_risk"] == "CRITICAL"
        assert top["recommended_action"]["code"] == "DISCOUNT_OR_SWAP"
        assert top["vehicle"] == "Toyota Land Cruiser GXR 2024"
        assert body["summary"]["total"] == 2
        assert body["summary"]["currency"] == "AED"
        assert Decimal(body["summary"]["at_risk_value"]) == Decimal("250000")

        filtered = client.get("/api/stock/intelligence/priority-push", params={"urgency": "THIS_MONTH"}).json()
        assert [i["vin"] for i in filtered["items"]] == ["JTMHV05J604000002"]
        assert filtered["summary"]["total"] == 2

    def test_active_campaign_and_popular_color(self, client, db, catalog):
        add_unit(db, catalog, VIN, days=45)
        now = datetime.utcnow()
        db.add(Campaign(
            variant_id=catalog["variant"].id, name="Summer Drive", discount_value=Decimal("5000"),
            status=CampaignStatus.ACTIVE, start_date=now - timedelta(days=5), end_date=now + timedelta(days=5),
        ))
        db.add(ColorDemandAnalysis(
            variant_id=catalog["variant"].id, exterior_color_id=catalog["white"].id,
            month="2024-05", demand_score=85, supply_score=30,
        ))
        db.commit()

        item = client.get("/api/stock/intelligence/priority-push").json()["items"][0]
        assert item["has_active_campaign"] is True
        assert item["campaign"]["name"] == "Summer Drive"
        # base 50 + popular color 10 + campaign 5
        assert item["scores"]["closeability"] == 65

    def test_aging_forecast(self, client, db, catalog):
        add_unit(db, catalog, "JTMHV05J604000001", days=55)
        add_unit(db, catalog, "JTMHV05J604000002", days=130)

        body = client.get("/api/stock/intelligence/aging-forecast").json()
        assert body["total"] == 2
        assert body["inventory"][0]["days_in_stock"] == 130
        assert body["risk_distribution"]["critical"] == 1
        assert body["risk_distribution"]["medium"] == 1
        assert body["forecast"]["next_7_days"]["will_reach_aging"] == 1

        critical = client.get(
            "/api/stock/intelligence/aging-forecast", params={"risk_level": "CRITICAL"},
        ).json()
        assert [i["days_in_stock"] for i in critical["inventory"]] == [130]

    def test_overview(self, client, db, catalog):
        add_unit(db, catalog, "JTMHV05J604000001", days=10)
        add_unit(db, catalog, "JTMHV05J604000002", days=130)
        add_unit(db, catalog, "JTMHV05J604000003", days=3, status=InventoryStatus.RESERVED)

        body = client.get("/api/stock/intelligence/overview").json()
        assert body["counts"]["total"] == 2
        assert body["counts"]["reserved"] == 1
        assert body["aging"] == {"fresh": 1, "aging": 0, "stale": 0, "critical": 1}
        assert Decimal(body["value"]["total"]) == Decimal("500000")
        assert Decimal(body["value"]["at_risk"]) == Decimal("250000")
        assert body["value"]["at_risk_percentage"] == 50
        assert body["top_brands"] == [{"name": "Toyota", "count": 2}]

    def test_demand_supply(self, client, db, catalog):
        add_unit(db, catalog, "JTMHV05J604000001", days=10, color="white")
        add_unit(db, catalog, "JTMHV05J604000002", days=10, color="white")
        add_unit(db, catalog, "JTMHV05J604000003", days=10, color="black")
        db.add_all([
            ColorDemandAnalysis(
                variant_id=catalog["variant"].id, exterior_color_id=catalog["white"].id,
                month="2024-04", demand_score=10, supply_score=90,
            ),
            ColorDemandAnalysis(
                variant_id=catalog["variant"].id, exterior_color_id=catalog["white"].id,
                month="2024-05", demand_score=80, supply_score=30,
            ),
        ])
        db.commit()

        body = client.get("/api/stock/intelligence/demand-supply").json()
        rows = {r["color"]: r for r in body["matrix"]}
        assert rows["Pearl White"]["stock_count"] == 2
        assert rows["Pearl White"]["mismatch"]["status"] == "UNDERSUPPLIED"
        assert rows["Pearl White"]["mismatch"]["mismatch_score"] == 50
        assert rows["Attitude Black"]["mismatch"]["status"] == "BALANCED"
        assert body["summary"]["undersupplied"]["count"] == 1


class TestBackoffice:
    def test_sla_board(self, client, db):
        now = datetime.utcnow()
        db.add_all([
            Order(customer_name="On Track", salesperson_id="sp-1",
                  status=OrderStatus.BOOKING_DONE, updated_at=now - timedelta(hours=2)),
            Order(customer_name="Late", salesperson_id="sp-1",
                  status=OrderStatus.READY_FOR_DELIVERY, updated_at=now - timedelta(hours=30)),
            Order(customer_name="Untracked", salesperson_id="sp-1", status=OrderStatus.NEW),
        ])
        db.commit()

        body = client.get("/api/backoffice/workflow").json()
        assert body["sla_compliance"] == 50
        assert body["meta"]["total"] == 2
        late = next(i for i in body["items"] if i["customer_name"] == "Late")
        assert late["sla_status"] == "overdue"
        assert late["stage"] == "Ready for Delivery"

        delivery = client.get("/api/backoffice/workflow", params={"stage": "delivery"}).json()
        assert [i["customer_name"] for i in delivery["items"]] == ["Late"]
        assert delivery["sla_compliance"] == 50

    def test_unknown_stage(self, client):
        resp = client.get("/api/backoffice/workflow", params={"stage": "paint"})
        assert resp.status_code == 400
