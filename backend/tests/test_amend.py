"""Amending a unit's details through CORRECTION events."""

from datetime import date

import pytest

from hpstock.models import AdminAuditEvent, StockEvent
from hpstock.services import stock_service
from hpstock.services.reconciliation_service import get_row
from hpstock.validation import (
    DuplicateImeiOpen,
    ReferenceNotFound,
    UnitNotAvailable,
    ValidationError,
)

IMEI = "356789012345670"
FIXED_IMEI = "356789012345677"
AMEND_DAY = date(2024, 1, 4)


@pytest.fixture
def unit(record, loc_a, phone_model):
    return record("INCOMING", IMEI, loc_a, phone_model, date(2024, 1, 1), metadata={"cost_price": 1_000_000})


def _amend(**kwargs):
    kwargs.setdefault("imei", IMEI)
    kwargs.setdefault("today", date(2024, 3, 1))
    return stock_service.amend_unit(**kwargs)


class TestDetails:
    def test_notes_and_cost_on_unit_in_stock(self, db_session, unit, loc_a, phone_model, today):
        result = _amend(notes="scratched back", cost_price=950_000, occurred_on=AMEND_DAY, actor="owner")

        assert result["rekeyed"] is False
        [ev] = result["events"]
        assert (ev.kind, ev.qty, ev.occurred_on) == ("CORRECTION", 0, AMEND_DAY)
        assert ev.meta == {"amendment": True, "cost_price": 950_000}
        assert (result["unit"].cost_price, result["unit"].notes) == (950_000, "scratched back")

        row = get_row(AMEND_DAY, loc_a.id, phone_model.id, IMEI)
        assert (row.morning_stock, row.adjustment, row.night_stock) == (1, 0, 1)

        sale = stock_service.sell_unit(imei=IMEI, occurred_on=date(2024, 1, 6), selling_price=1_200_000, today=today)
        assert sale.meta["cost_price"] == 950_000
        assert get_row(date(2024, 1, 6), loc_a.id, phone_model.id, IMEI).profit_loss == 250_000

        audit = db_session.query(AdminAuditEvent).filter_by(action="unit.amended").one()
        assert (audit.imei, audit.actor) == (IMEI, "owner")
        assert audit.detail["changes"] == {"notes": "scratched back", "cost_price": 950_000}
        assert audit.detail["events"] == [ev.id]

    def test_selling_price_restates_the_sale(self, db_session, unit, record, loc_a, phone_model):
        record("SOLD", IMEI, loc_a, phone_model, date(2024, 1, 5))
        assert get_row(date(2024, 1, 5), loc_a.id, phone_model.id, IMEI).profit_loss == 500_000

        result = _amend(selling_price=1_400_000)

        assert result["events"][0].occurred_on == date(2024, 1, 5)
        row = get_row(date(2024, 1, 5), loc_a.id, phone_model.id, IMEI)
        assert (row.selling_price, row.profit_loss, row.night_stock) == (1_400_000, 400_000, 0)
        assert stock_service.get_unit(IMEI).status == "sold"

    def test_selling_price_needs_a_sale(self, db_session, unit):
        with pytest.raises(ValidationError, match="sold unit"):
            _amend(selling_price=1_400_000)

    def test_not_dated_before_the_last_move(self, db_session, unit):
        with pytest.raises(ValidationError, match="last movement"):
            _amend(notes="late", occurred_on=date(2023, 12, 31))

    def test_nothing_to_amend(self, db_session, unit):
        with pytest.raises(ValidationError, match="Nothing to amend"):
            _amend()
        with pytest.raises(ValidationError, match="Nothing to amend"):
            _amend(new_imei=IMEI)

    def test_unknown_unit(self, db_session):
        with pytest.raises(ReferenceNotFound):
            _amend(notes="who")


class TestRekey:
    def test_imei_typo_moves_the_unit(self, db_session, unit, loc_a, phone_model):
        result = _amend(new_imei=FIXED_IMEI, occurred_on=AMEND_DAY)

        assert result["rekeyed"] is True
        assert result["imei"] == FIXED_IMEI
        assert [(ev.imei, ev.qty) for ev in result["events"]] == [(IMEI, -1), (FIXED_IMEI, 1)]

        fixed = stock_service.get_unit(FIXED_IMEI)
        assert (fixed.status, fixed.location_id) == ("available", loc_a.id)
        assert (fixed.entry_date, fixed.cost_price) == (date(2024, 1, 1), 1_000_000)
        assert stock_service.get_unit(IMEI).status == "returned"

        assert get_row(AMEND_DAY, loc_a.id, phone_model.id, IMEI).night_stock == 0
        assert get_row(AMEND_DAY, loc_a.id, phone_model.id, FIXED_IMEI).night_stock == 1
        assert get_row(AMEND_DAY, loc_a.id, phone_model.id, None).night_stock == 1

    def test_new_imei_must_be_unused(self, db_session, unit, record, loc_a, phone_model):
        record("INCOMING", FIXED_IMEI, loc_a, phone_model, date(2024, 1, 2))

        with pytest.raises(DuplicateImeiOpen):
            _amend(new_imei=FIXED_IMEI, occurred_on=AMEND_DAY)

        assert db_session.query(StockEvent).count() == 2
        assert stock_service.get_unit(IMEI).status == "available"

    def test_location_and_model_change(self, db_session, unit, loc_a, loc_b, phone_model, other_model):
        _amend(location_id=loc_b.id, phone_model_id=other_model.id, occurred_on=AMEND_DAY)

        moved = stock_service.get_unit(IMEI)
        assert (moved.location_id, moved.phone_model_id) == (loc_b.id, other_model.id)
        assert (moved.entry_date, moved.cost_price) == (date(2024, 1, 1), 1_000_000)
        assert get_row(AMEND_DAY, loc_a.id, phone_model.id, None).night_stock == 0
        assert get_row(AMEND_DAY, loc_b.id, other_model.id, None).night_stock == 1

    def test_sold_unit_cannot_be_rekeyed(self, db_session, unit, record, loc_a, loc_b, phone_model):
        record("SOLD", IMEI, loc_a, phone_model, date(2024, 1, 5))

        with pytest.raises(UnitNotAvailable):
            _amend(location_id=loc_b.id)


class TestAmendRoute:
    @pytest.fixture
    def stocked(self, client, loc_a, phone_model):
        response = client.post("/api/events", json={
            "kind": "INCOMING",
            "imei": IMEI,
            "location_id": loc_a.id,
            "phone_model_id": phone_model.id,
            "occurred_on": "2024-01-10",
            "metadata": {"cost_price": 1_000_000},
        })
        assert response.status_code == 201, response.json

    def test_patch_details(self, client, stocked):
        response = client.patch(f"/api/stock/units/{IMEI}", json={
            "notes": "box missing",
            "cost_price": 990_000,
            "occurred_on": "2024-01-12",
            "actor": "owner",
        })

        assert response.status_code == 200, response.json
        assert response.json["rekeyed"] is False
        assert response.json["unit"]["cost_price"] == 990_000
        assert response.json["unit"]["notes"] == "box missing"
        assert response.json["events"][0]["qty"] == 0

    def test_patch_rename_collision(self, client, stocked, loc_a, phone_model):
        client.post("/api/events", json={
            "kind": "INCOMING",
            "imei": FIXED_IMEI,
            "location_id": loc_a.id,
            "phone_model_id": phone_model.id,
            "occurred_on": "2024-01-10",
        })

        response = client.patch(f"/api/stock/units/{IMEI}", json={"new_imei": FIXED_IMEI})

        assert response.status_code == 409
        assert response.json["code"] == "duplicate_imei_open"

    def test_patch_rejects_unknown_fields(self, client, stocked):
        response = client.patch(f"/api/stock/units/{IMEI}", json={"status": "sold"})
        assert response.status_code == 400
