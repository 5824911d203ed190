"""Shape rules for ledger events and payload coercion."""

from datetime import date

import pytest

from hpstock.models import StockEvent
from hpstock.routes.events import EVENT_POLICY
from hpstock.validation import (
    MAX_PRICE,
    ValidationError,
    enforce_rules_phone_model,
    enforce_rules_stock_event,
    parse_date_field,
    validate_payload,
)

TODAY = date(2024, 3, 1)


def _rules(**overrides):
    kwargs = {
        "kind": "INCOMING",
        "imei": "123456789012",
        "qty": 1,
        "occurred_on": date(2024, 1, 5),
        "metadata": None,
        "today": TODAY,
    }
    kwargs.update(overrides)
    enforce_rules_stock_event(**kwargs)


class TestStockEventRules:
    def test_valid_incoming_passes(self):
        _rules(metadata={"cost_price": 1_000_000})

    def test_unknown_kind_rejected(self):
        with pytest.raises(ValidationError, match="kind must be one of"):
            _rules(kind="LOST")

    @pytest.mark.parametrize("imei", [None, "", "   ", "123456789"])
    def test_imei_required_and_min_length(self, imei):
        with pytest.raises(ValidationError, match="imei"):
            _rules(imei=imei)

    def test_ten_character_imei_is_enough(self):
        _rules(imei="1234567890")

    def test_future_date_rejected(self):
        with pytest.raises(ValidationError, match="future"):
            _rules(occurred_on=date(2024, 3, 2))

    def test_today_is_allowed(self):
        _rules(occurred_on=TODAY)

    def test_missing_date_rejected(self):
        with pytest.raises(ValidationError, match="occurred_on is required"):
            _rules(occurred_on=None)

    @pytest.mark.parametrize("kind", ["INCOMING", "SOLD", "RETURN_IN", "RETURN_OUT", "TRANSFER_IN", "TRANSFER_OUT"])
    def test_non_correction_kinds_require_qty_one(self, kind):
        with pytest.raises(ValidationError, match="qty must be 1"):
            _rules(kind=kind, qty=2)

    def test_correction_is_a_signed_delta(self):
        _rules(kind="CORRECTION", qty=-3)
        _rules(kind="CORRECTION", qty=2)

    def test_correction_rejects_zero(self):
        with pytest.raises(ValidationError, match="non-zero"):
            _rules(kind="CORRECTION", qty=0)

    def test_amendment_carries_no_quantity(self):
        _rules(kind="CORRECTION", qty=0, metadata={"amendment": True, "cost_price": 950_000})
        with pytest.raises(ValidationError, match="qty must be 0"):
            _rules(kind="CORRECTION", qty=1, metadata={"amendment": True})

    def test_boolean_qty_rejected(self):
        with pytest.raises(ValidationError, match="qty must be an integer"):
            _rules(qty=True)

    def test_negative_price_rejected(self):
        with pytest.raises(ValidationError, match="metadata.cost_price must be >= 0"):
            _rules(metadata={"cost_price": -1})

    def test_price_ceiling(self):
        with pytest.raises(ValidationError, match="cannot exceed"):
            _rules(kind="SOLD", metadata={"selling_price": MAX_PRICE + 1})

    def test_decimal_price_rejected(self):
        with pytest.raises(ValidationError, match="must be an integer"):
            _rules(metadata={"selling_price": 1500.5})


class TestPayloadValidation:
    def test_event_payload_is_coerced(self):
        patch = validate_payload(
            model=StockEvent,
            payload={
                "kind": "INCOMING",
                "imei": " 123456789012 ",
                "location_id": "1",
                "phone_model_id": 2,
                "occurred_on": "2024-01-05",
                "metadata": {"cost_price": 1_000_000},
            },
            policy=EVENT_POLICY,
            partial=False,
        )
        assert patch["imei"] == "123456789012"
        assert patch["location_id"] == 1
        assert patch["occurred_on"] == date(2024, 1, 5)
        assert patch["metadata"] == {"cost_price": 1_000_000}

    def test_missing_required_fields(self):
        with pytest.raises(ValidationError, match="Missing required fields: imei, occurred_on"):
            validate_payload(
                model=StockEvent,
                payload={"kind": "INCOMING", "location_id": 1, "phone_model_id": 1},
                policy=EVENT_POLICY,
                partial=False,
            )

    def test_unknown_field_rejected(self):
        with pytest.raises(ValidationError, match="Field not allowed: created_at"):
            validate_payload(
                model=StockEvent,
                payload={"created_at": "2024-01-01"},
                policy=EVENT_POLICY,
                partial=True,
            )

    def test_bad_date_rejected(self):
        with pytest.raises(ValidationError, match="ISO-8601 date"):
            validate_payload(
                model=StockEvent,
                payload={"occurred_on": "05/01/2024"},
                policy=EVENT_POLICY,
                partial=True,
            )

    def test_float_qty_rejected(self):
        with pytest.raises(ValidationError, match="not a decimal"):
            validate_payload(model=StockEvent, payload={"qty": 1.5}, policy=EVENT_POLICY, partial=True)

    def test_metadata_must_be_object(self):
        with pytest.raises(ValidationError, match="metadata must be an object"):
            validate_payload(model=StockEvent, payload={"metadata": [1]}, policy=EVENT_POLICY, partial=True)

    def test_imei_length_limit(self):
        with pytest.raises(ValidationError, match="exceeds max length 32"):
            validate_payload(model=StockEvent, payload={"imei": "9" * 33}, policy=EVENT_POLICY, partial=True)


def test_phone_model_srp_must_be_non_negative():
    enforce_rules_phone_model({"srp": None})
    with pytest.raises(ValidationError, match="srp must be >= 0"):
        enforce_rules_phone_model({"srp": -5})


def test_parse_date_field():
    assert parse_date_field("date", None) is None
    assert parse_date_field("date", "2024-02-29") == date(2024, 2, 29)
    with pytest.raises(ValidationError, match="date must be an ISO-8601 date"):
        parse_date_field("date", "2024-02-30")
