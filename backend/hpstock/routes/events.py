# Overview: Flask API routes for the stock ledger; record events, sales, transfers and list history.

from flask import Blueprint, request

from ..decorators import handle_stock_errors
from ..models import StockEvent
from ..services import reporting_service, stock_service
from ..validation import (
    ModelValidationPolicy,
    ValidationError,
    parse_date_field,
    validate_payload,
)

"""
Date semantics:
- occurred_on is the business date (YYYY-MM-DD); omitted means the shop's today.
- History windows are inclusive on both ends.
"""

EVENT_POLICY = ModelValidationPolicy(
    writable_fields={"kind", "imei", "location_id", "phone_model_id", "occurred_on", "qty", "notes", "metadata"},
    required_on_create={"kind", "imei", "location_id", "phone_model_id", "occurred_on"},
    field_aliases={"metadata": "meta"},
)

events_bp = Blueprint("events", __name__, url_prefix="/api/events")


def _optional_int(payload: dict, key: str) -> int | None:
    value = payload.get(key)
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"{key} must be an integer")
    return value


def _required_imei(payload: dict) -> str:
    imei = payload.get("imei")
    if not isinstance(imei, str) or not imei.strip():
        raise ValidationError("imei is required")
    return imei


@events_bp.post("")
@handle_stock_errors
def record_event_route():
    """
    Append one ledger event.

    Request body:
    {
        "kind": "INCOMING" | "SOLD" | "RETURN_IN" | "RETURN_OUT" |
                "TRANSFER_IN" | "TRANSFER_OUT" | "CORRECTION",
        "imei": str,
        "location_id": int,
        "phone_model_id": int,
        "occurred_on": "YYYY-MM-DD",
        "qty": int (optional, default 1; signed delta for CORRECTION),
        "notes": str (optional),
        "metadata": {"cost_price": int, "selling_price": int, ...} (optional)
    }
    """
    payload = request.get_json(silent=True) or {}
    patch = validate_payload(model=StockEvent, payload=payload, policy=EVENT_POLICY, partial=False)

    event = stock_service.record_event(
        kind=patch["kind"],
        imei=patch["imei"],
        location_id=patch["location_id"],
        phone_model_id=patch["phone_model_id"],
        occurred_on=patch["occurred_on"],
        qty=patch.get("qty") if patch.get("qty") is not None else 1,
        notes=patch.get("notes"),
        metadata=patch.get("metadata"),
    )
    return event.to_dict(), 201


@events_bp.post("/sale")
@handle_stock_errors
def sell_unit_route():
    payload = request.get_json(silent=True) or {}
    event = stock_service.sell_unit(
        imei=_required_imei(payload),
        occurred_on=parse_date_field("occurred_on", payload.get("occurred_on")),
        selling_price=_optional_int(payload, "selling_price"),
        notes=payload.get("notes"),
    )
    return event.to_dict(), 201


@events_bp.post("/transfer")
@handle_stock_errors
def transfer_unit_route():
    payload = request.get_json(silent=True) or {}
    to_location_id = _optional_int(payload, "to_location_id")
    if to_location_id is None:
        raise ValidationError("to_location_id is required")

    result = stock_service.transfer_unit(
        imei=_required_imei(payload),
        to_location_id=to_location_id,
        occurred_on=parse_date_field("occurred_on", payload.get("occurred_on")),
        notes=payload.get("notes"),
    )
    return {
        "transfer_out": result["transfer_out"].to_dict(),
        "transfer_in": result["transfer_in"].to_dict(),
        "resumed": result["resumed"],
        "completed": result["completed"],
    }, 201


@events_bp.get("")
@handle_stock_errors
def list_history_route():
    """
    Query params:
    - imei: IMEI prefix (optional)
    - from_date / to_date: YYYY-MM-DD (optional; default the 30 days ending today)
    - kind, location_id (optional)
    - limit: int (optional, default 100, max 500)
    """
    reference_date = stock_service.resolve_today(parse_date_field("reference_date", request.args.get("reference_date")))
    limit = request.args.get("limit", type=int)
    if limit is not None:
        limit = max(1, min(limit, 500))

    events = reporting_service.list_history(
        reference_date=reference_date,
        from_date=parse_date_field("from_date", request.args.get("from_date")),
        to_date=parse_date_field("to_date", request.args.get("to_date")),
        imei_prefix=request.args.get("imei"),
        kind=request.args.get("kind"),
        location_id=request.args.get("location_id", type=int),
        limit=limit,
    )
    return {"events": [ev.to_dict() for ev in events], "count": len(events)}
