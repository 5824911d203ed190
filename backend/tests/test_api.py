"""HTTP layer through the Flask test client."""

import pytest

IMEI = "123456789012"


@pytest.fixture
def stocked(client, loc_a, phone_model):
    response = client.post("/api/events", json={
        "kind": "INCOMING",
        "imei": IMEI,
        "location_id": loc_a.id,
        "phone_model_id": phone_model.id,
        "occurred_on": "2024-01-10",
        "metadata": {"cost_price": 1_000_000},
    })
    assert response.status_code == 201, response.json
    return response.json


class TestSystem:
    def test_health(self, client, db_session):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json["database"]["status"] == "healthy"


class TestReference:
    def test_locations(self, client, db_session):
        created = client.post("/api/locations", json={"name": "A", "description": "Main shop"})
        assert created.status_code == 201

        duplicate = client.post("/api/locations", json={"name": "a"})
        assert duplicate.status_code == 409
        assert duplicate.json["code"] == "conflict"

        listed = client.get("/api/locations")
        assert [loc["name"] for loc in listed.json["locations"]] == ["A"]

    def test_brand_lifecycle(self, client, db_session):
        brand = client.post("/api/brands", json={"name": "Vivo"}).json
        renamed = client.patch(f"/api/brands/{brand['id']}", json={"name": "vivo"})
        assert renamed.status_code == 200
        assert renamed.json["name"] == "vivo"

        assert client.delete(f"/api/brands/{brand['id']}").status_code == 200
        assert client.delete(f"/api/brands/{brand['id']}").status_code == 404

    def test_brand_with_stock_history_cannot_be_deleted(self, client, stocked, brand):
        response = client.delete(f"/api/brands/{brand.id}")
        assert response.status_code == 409

    def test_phone_model_srp(self, client, brand):
        created = client.post("/api/phone-models", json={
            "brand_id": brand.id, "model": "S24", "storage_capacity": "256", "srp": "12000000",
        })
        assert created.status_code == 201
        assert created.json["srp"] == 12_000_000

        updated = client.patch(f"/api/phone-models/{created.json['id']}", json={"srp": 11_500_000})
        assert updated.json["srp"] == 11_500_000

        rejected = client.patch(f"/api/phone-models/{created.json['id']}", json={"model": "S25"})
        assert rejected.status_code == 400

        negative = client.patch(f"/api/phone-models/{created.json['id']}", json={"srp": -1})
        assert negative.status_code == 400


class TestEvents:
    def test_record_and_duplicate(self, client, stocked, loc_b, phone_model):
        assert stocked["kind"] == "INCOMING"
        assert stocked["metadata"] == {"cost_price": 1_000_000}

        duplicate = client.post("/api/events", json={
            "kind": "INCOMING",
            "imei": IMEI,
            "location_id": loc_b.id,
            "phone_model_id": phone_model.id,
            "occurred_on": "2024-01-11",
        })
        assert duplicate.status_code == 409
        assert duplicate.json["code"] == "duplicate_imei_open"

    def test_validation_errors(self, client, loc_a, phone_model):
        bad_kind = client.post("/api/events", json={
            "kind": "LOST", "imei": IMEI, "location_id": loc_a.id,
            "phone_model_id": phone_model.id, "occurred_on": "2024-01-10",
        })
        assert bad_kind.status_code == 400
        assert bad_kind.json["code"] == "validation_error"

        unknown_location = client.post("/api/events", json={
            "kind": "INCOMING", "imei": IMEI, "location_id": 999,
            "phone_model_id": phone_model.id, "occurred_on": "2024-01-10",
        })
        assert unknown_location.status_code == 404

    def test_sale_uses_srp(self, client, stocked):
        sale = client.post("/api/events/sale", json={"imei": IMEI, "occurred_on": "2024-01-12"})
        assert sale.status_code == 201
        assert sale.json["metadata"]["selling_price"] == 1_500_000

        again = client.post("/api/events/sale", json={"imei": IMEI, "occurred_on": "2024-01-12"})
        assert again.status_code == 409
        assert again.json["code"] == "unit_not_available"

        unit = client.get(f"/api/stock/units/{IMEI}").json
        assert unit["unit"]["status"] == "sold"
        sale_row = [r for r in unit["rows"] if r["date"] == "2024-01-12"][0]
        assert sale_row["profit_loss"] == 500_000

    def test_transfer(self, client, stocked, loc_b):
        response = client.post("/api/events/transfer", json={
            "imei": IMEI, "to_location_id": loc_b.id, "occurred_on": "2024-01-15",
        })
        assert response.status_code == 201
        assert response.json["transfer_in"]["location_id"] == loc_b.id

        inventory = client.get("/api/stock/inventory", query_string={"date": "2024-01-15"}).json
        assert [u["location_id"] for u in inventory["units"]] == [loc_b.id]

    def test_history(self, client, stocked):
        response = client.get("/api/events", query_string={
            "imei": IMEI[:6], "from_date": "2024-01-01", "to_date": "2024-01-31",
        })
        assert response.status_code == 200
        assert response.json["count"] == 1

        bad = client.get("/api/events", query_string={"from_date": "yesterday"})
        assert bad.status_code == 400


class TestStock:
    def test_rollover_and_aggregates(self, client, stocked):
        rolled = client.post("/api/stock/rollover", json={"date": "2024-01-11"})
        assert rolled.status_code == 200
        assert rolled.json == {"date": "2024-01-11", "seeded_units": 1, "rerolled_aggregates": 1}

        aggregates = client.get("/api/stock/aggregates", query_string={"date": "2024-01-11"}).json
        assert aggregates["aggregates"][0]["morning_stock"] == 1
        assert aggregates["aggregates"][0]["imei"] is None

    def test_unknown_unit(self, client, db_session):
        assert client.get("/api/stock/units/000000000000").status_code == 404


class TestReports:
    def test_kpi_and_dashboard(self, client, stocked):
        kpi = client.get("/api/reports/kpi", query_string={"date": "2024-01-31"})
        assert kpi.status_code == 200
        assert kpi.json["oldest_unit"]["imei"] == IMEI

        dashboard = client.get("/api/reports/dashboard", query_string={"date": "2024-01-10"}).json
        assert dashboard["incoming_today"] == 1

        trend = client.get("/api/reports/trend", query_string={"date": "2024-01-31", "days": 7}).json
        assert len(trend["points"]) == 7

        assert client.get("/api/reports/brands", query_string={"date": "2024-01-31"}).status_code == 200
        low = client.get("/api/reports/low-stock", query_string={"date": "2024-01-31"}).json
        assert low["items"][0]["in_stock"] == 1


class TestAdmin:
    def test_reset(self, client, stocked):
        refused = client.post("/api/admin/reset", json={"confirmation_token": "yes"})
        assert refused.status_code == 400

        done = client.post("/api/admin/reset", json={"confirmation_token": "RESET DATA", "actor": "owner"})
        assert done.status_code == 200
        assert done.json["events_deleted"] == 1

        audit = client.get("/api/admin/audit", query_string={"action": "data.reset"}).json
        assert len(audit["events"]) == 1

    def test_delete_unit(self, client, stocked):
        response = client.delete(f"/api/admin/units/{IMEI}", json={
            "confirmation_token": f"DELETE {IMEI}", "authorized_by": "owner",
        })
        assert response.status_code == 200
        assert response.json["events_deleted"] == 1

    def test_import(self, client, loc_a, phone_model):
        response = client.post("/api/admin/import", json={"rows": [{
            "date": "2024-01-02", "location_id": loc_a.id, "phone_model_id": phone_model.id,
            "imei": IMEI, "incoming": 1, "night_stock": 1,
        }]})
        assert response.status_code == 201
        assert response.json["imported"] == 1
