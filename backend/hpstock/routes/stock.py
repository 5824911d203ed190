# Overview: Flask API routes for derived stock rows; aggregates, inventory, unit detail and rollover.

from flask import Blueprint, request

from ..decorators import handle_stock_errors
from ..models import StockEntry
from ..services import reporting_service, rollover_service, stock_service
from ..services.ledger_service import events_for_imei
from ..validation import ModelValidationPolicy, ReferenceNotFound, parse_date_field, validate_payload

AMEND_POLICY = ModelValidationPolicy(
    writable_fields={"notes", "cost_price", "selling_price", "new_imei", "phone_model_id", "location_id", "occurred_on"},
    field_aliases={"new_imei": "imei", "occurred_on": "date"},
)

stock_bp = Blueprint("stock", __name__, url_prefix="/api/stock")


def _day_arg(name: str = "date"):
    return stock_service.resolve_today(parse_date_field(name, request.args.get(name)))


@stock_bp.get("/aggregates")
@handle_stock_errors
def aggregates_route():
    day = _day_arg()
    rows = stock_service.get_aggregate(day, location_id=request.args.get("location_id", type=int))
    return {"date": day.isoformat(), "aggregates": [row.to_dict() for row in rows]}


@stock_bp.get("/inventory")
@handle_stock_errors
def inventory_route():
    day = _day_arg()
    rows = reporting_service.list_inventory(day, location_id=request.args.get("location_id", type=int))
    return {
        "date": day.isoformat(),
        "units": [row.to_dict() for row in rows],
        "total": sum(row.night_stock for row in rows),
    }


@stock_bp.get("/units/<imei>")
@handle_stock_errors
def unit_route(imei: str):
    unit = stock_service.get_unit(imei)
    if unit is None:
        raise ReferenceNotFound(f"IMEI {imei} has no ledger events")
    return {
        "unit": unit.to_dict(),
        "rows": [row.to_dict() for row in stock_service.unit_rows(imei)],
        "events": [ev.to_dict() for ev in events_for_imei(imei.strip())],
    }


@stock_bp.post("/rollover")
@handle_stock_errors
def rollover_route():
    payload = request.get_json(silent=True) or {}
    today = stock_service.resolve_today(parse_date_field("date", payload.get("date")))
    result = rollover_service.rollover_if_needed(today)
    return result.to_dict()


@stock_bp.patch("/units/<imei>")
@handle_stock_errors
def amend_unit_route(imei: str):
    """
    Correct a unit's notes, prices, IMEI, model or location.

    Request body (every field optional, at least one required):
    {
        "notes": str,
        "cost_price": int,
        "selling_price": int (sold units only),
        "new_imei": str,
        "phone_model_id": int,
        "location_id": int,
        "occurred_on": "YYYY-MM-DD",
        "actor": str
    }
    """
    payload = dict(request.get_json(silent=True) or {})
    actor = payload.pop("actor", None)
    patch = validate_payload(model=StockEntry, payload=payload, policy=AMEND_POLICY, partial=True)

    result = stock_service.amend_unit(imei=imei, actor=actor, **patch)
    return {
        "imei": result["imei"],
        "rekeyed": result["rekeyed"],
        "events": [ev.to_dict() for ev in result["events"]],
        "unit": result["unit"].to_dict(),
    }
