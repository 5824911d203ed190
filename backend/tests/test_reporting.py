"""Read-side reports: inventory, KPIs, history and dashboards."""

from datetime import date

import pytest

from hpstock.services import reporting_service
from hpstock.validation import ValidationError

REFERENCE = date(2024, 2, 29)


@pytest.fixture
def sales_history(record, loc_a, loc_b, phone_model, other_model):
    """
    Samsung units 1..6 and one Xiaomi unit (4), booked in date order.

    Held at 2024-02-29: unit 1 (A, since 01-01) and unit 2 (B, since 01-15).
    Sold: 3 on 01-30 (outside the 30-day window), 4 on 01-31, 6 on 02-10,
    5 on 02-29.
    """
    cost = {"cost_price": 1_000_000}
    record("INCOMING", "100000000001", loc_a, phone_model, date(2024, 1, 1), metadata=cost)
    record("INCOMING", "100000000002", loc_b, phone_model, date(2024, 1, 15), metadata=cost)
    record("INCOMING", "100000000003", loc_a, phone_model, date(2024, 1, 20), metadata=cost)
    record("INCOMING", "100000000004", loc_a, other_model, date(2024, 1, 20), metadata={"cost_price": 1_500_000})
    record("SOLD", "100000000003", loc_a, phone_model, date(2024, 1, 30), metadata={"selling_price": 1_400_000})
    record("SOLD", "100000000004", loc_a, other_model, date(2024, 1, 31), metadata={"selling_price": 2_000_000})
    record("INCOMING", "100000000005", loc_a, phone_model, date(2024, 2, 1), metadata=cost)
    record("INCOMING", "100000000006", loc_a, phone_model, date(2024, 2, 1), metadata=cost)
    record("SOLD", "100000000006", loc_a, phone_model, date(2024, 2, 10))
    record("SOLD", "100000000005", loc_a, phone_model, date(2024, 2, 29), metadata={"selling_price": 1_500_000})


class TestInventory:
    def test_units_on_hand_by_date(self, db_session, sales_history):
        def imeis(day, **kwargs):
            return sorted(r.imei for r in reporting_service.list_inventory(day, **kwargs))

        assert imeis(date(2023, 12, 31)) == []
        assert imeis(date(2024, 2, 15)) == ["100000000001", "100000000002", "100000000005"]
        assert imeis(REFERENCE) == ["100000000001", "100000000002"]

    def test_location_filter(self, db_session, sales_history, loc_b):
        rows = reporting_service.list_inventory(REFERENCE, location_id=loc_b.id)
        assert [r.imei for r in rows] == ["100000000002"]


class TestKpi:
    def test_thirty_day_window(self, db_session, sales_history, phone_model):
        kpi = reporting_service.kpi_summary(REFERENCE)

        assert kpi["from_date"] == "2024-01-31"
        assert kpi["to_date"] == "2024-02-29"
        assert kpi["units_sold"] == 3
        assert kpi["revenue"] == 5_000_000
        assert kpi["profit_loss"] == 1_500_000
        assert kpi["best_selling_brand"]["name"] == "Samsung"
        assert kpi["best_selling_brand"]["sold"] == 2
        assert kpi["best_selling_model"]["phone_model_id"] == phone_model.id

    def test_oldest_unit(self, db_session, sales_history):
        oldest = reporting_service.kpi_summary(REFERENCE)["oldest_unit"]
        assert oldest["imei"] == "100000000001"
        assert oldest["entry_date"] == "2024-01-01"
        assert oldest["days_held"] == 59

    def test_location_scope(self, db_session, sales_history, loc_b):
        kpi = reporting_service.kpi_summary(REFERENCE, location_id=loc_b.id)
        assert kpi["units_sold"] == 0
        assert kpi["best_selling_brand"] is None
        assert kpi["oldest_unit"]["imei"] == "100000000002"

    def test_empty_shop(self, db_session):
        kpi = reporting_service.kpi_summary(REFERENCE)
        assert (kpi["units_sold"], kpi["revenue"], kpi["profit_loss"]) == (0, 0, 0)
        assert kpi["oldest_unit"] is None


class TestHistory:
    def test_default_window_newest_first(self, db_session, sales_history):
        events = reporting_service.list_history(reference_date=REFERENCE)

        assert len(events) == 5
        assert (events[0].imei, events[0].kind) == ("100000000005", "SOLD")
        assert events[-1].occurred_on == date(2024, 1, 31)

    def test_prefix_kind_and_limit(self, db_session, sales_history):
        by_imei = reporting_service.list_history(reference_date=REFERENCE, imei_prefix="100000000005")
        assert {ev.kind for ev in by_imei} == {"INCOMING", "SOLD"}

        sold = reporting_service.list_history(
            reference_date=REFERENCE, from_date=date(2024, 1, 1), kind="sold",
        )
        assert len(sold) == 4

        assert len(reporting_service.list_history(reference_date=REFERENCE, limit=2)) == 2

    def test_inverted_range_rejected(self, db_session):
        with pytest.raises(ValidationError):
            reporting_service.list_history(
                reference_date=REFERENCE, from_date=date(2024, 2, 1), to_date=date(2024, 1, 1),
            )


class TestDashboards:
    def test_dashboard_stats(self, db_session, sales_history):
        closing_day = reporting_service.dashboard_stats(REFERENCE)
        assert closing_day["sold_today"] == 1
        assert closing_day["revenue_today"] == 1_500_000
        assert closing_day["total_stock"] == 2
        assert closing_day["incoming_today"] == 0
        assert closing_day["discrepancies"] == 0

        arrival_day = reporting_service.dashboard_stats(date(2024, 2, 1))
        assert arrival_day["incoming_today"] == 2
        assert arrival_day["total_stock"] == 4

    def test_trend(self, db_session, sales_history):
        trend = reporting_service.trend_report(REFERENCE, days=30)

        assert len(trend["points"]) == 30
        assert trend["points"][0]["date"] == "2024-01-31"
        assert trend["total_sold"] == 3
        assert trend["total_incoming"] == 2

    def test_brand_performance(self, db_session, sales_history):
        brands = reporting_service.brand_performance(REFERENCE)

        assert [b["brand"] for b in brands] == ["Samsung", "Xiaomi"]
        samsung = brands[0]
        assert (samsung["units_sold"], samsung["revenue"], samsung["in_stock"]) == (2, 3_000_000, 2)

    def test_low_stock(self, db_session, sales_history, loc_a, other_model):
        items = reporting_service.low_stock(REFERENCE, threshold=5)
        assert len(items) == 3
        assert items[0]["phone_model_id"] == other_model.id
        assert items[0]["in_stock"] == 0

        only_empty = reporting_service.low_stock(REFERENCE, threshold=1)
        assert [(i["location_id"], i["phone_model_id"]) for i in only_empty] == [(loc_a.id, other_model.id)]

    def test_window_must_be_positive(self, db_session):
        with pytest.raises(ValidationError):
            reporting_service.trend_report(REFERENCE, days=0)
