# Overview: Bulk import of daily stock rows, replayed as ledger events through the normal write path.

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Any

from flask import current_app

from ..extensions import db
from ..models.stock import (
    KIND_CORRECTION,
    KIND_INCOMING,
    KIND_RETURN_IN,
    KIND_SOLD,
)
from ..time_utils import parse_iso_date
from ..validation import StockError, ValidationError
from .audit_service import append_audit_event
from .reconciliation_service import night_stock_on
from .reference_service import find_location_by_name, find_phone_model, get_location, get_phone_model
from .stock_service import record_event, resolve_today

"""
Each row describes one unit-day in the stock_entries shape:

    {"date": "2024-01-05", "location": "A" | "location_id": 1,
     "brand": "Samsung", "model": "A15", "storage_capacity": "128"
       | "phone_model_id": 3,
     "imei": "...", "morning_stock": 0, "incoming": 1, "add_stock": 0,
     "returns": 0, "sold": 0, "adjustment": 0, "night_stock": 1,
     "cost_price": 1000000, "selling_price": null, "notes": "..."}

Rows are never written to stock_entries directly. They become events in a
fixed order (opening balance, incoming, add_stock, returns, sold,
adjustment) so the engine derives the same figures. A row that fails is
reported with its 1-based row number; other rows still import.
"""

FLOW_COUNT_FIELDS = ("incoming", "add_stock", "returns", "sold")
NUMERIC_FIELDS = ("morning_stock", "adjustment", "night_stock") + FLOW_COUNT_FIELDS


@dataclass
class ImportResult:
    rows: int = 0
    imported: int = 0
    events: int = 0
    errors: list[dict] = field(default_factory=list)
    mismatches: list[dict] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "rows": self.rows,
            "imported": self.imported,
            "events": self.events,
            "errors": self.errors,
            "mismatches": self.mismatches,
        }


@dataclass
class SeedRow:
    row_number: int
    day: date
    location_id: int
    phone_model_id: int
    imei: str
    morning_stock: int
    incoming: int
    add_stock: int
    returns: int
    sold: int
    adjustment: int
    night_stock: int | None
    cost_price: int | None
    selling_price: int | None
    notes: str | None


def _as_int(row: dict, key: str, default: int | None = 0) -> int | None:
    raw = row.get(key)
    if raw is None or raw == "":
        return default
    if isinstance(raw, bool):
        raise ValidationError(f"{key} must be an integer")
    if isinstance(raw, int):
        return raw
    if isinstance(raw, float) and raw.is_integer():
        return int(raw)
    try:
        return int(str(raw).strip())
    except ValueError:
        raise ValidationError(f"{key} must be an integer")


def _resolve_location(row: dict) -> int:
    if row.get("location_id") not in (None, ""):
        return get_location(_as_int(row, "location_id")).id
    name = str(row.get("location") or "").strip()
    if not name:
        raise ValidationError("location or location_id is required")
    location = find_location_by_name(name)
    if location is None:
        raise ValidationError(f"Unknown location {name!r}")
    return location.id


def _resolve_phone_model(row: dict) -> int:
    if row.get("phone_model_id") not in (None, ""):
        return get_phone_model(_as_int(row, "phone_model_id")).id
    brand = str(row.get("brand") or "").strip()
    model = str(row.get("model") or "").strip()
    if not brand or not model:
        raise ValidationError("phone_model_id or brand and model are required")
    phone_model = find_phone_model(brand, model, row.get("storage_capacity"))
    if phone_model is None:
        raise ValidationError(f"Unknown phone model {brand} {model}")
    return phone_model.id


def parse_seed_row(row: Any, row_number: int) -> SeedRow:
    if not isinstance(row, dict):
        raise ValidationError("row must be an object")

    day = row.get("date")
    try:
        day = parse_iso_date(day)
    except ValueError:
        raise ValidationError("date must be an ISO-8601 date (YYYY-MM-DD)")
    if day is None:
        raise ValidationError("date is required")

    imei = str(row.get("imei") or "").strip()
    if not imei:
        raise ValidationError("imei is required")

    values = {key: _as_int(row, key) for key in NUMERIC_FIELDS if key != "night_stock"}
    for key in FLOW_COUNT_FIELDS + ("morning_stock",):
        if values[key] < 0:
            raise ValidationError(f"{key} must be >= 0")
    for key in FLOW_COUNT_FIELDS:
        if values[key] > 1:
            raise ValidationError(f"{key} must be 0 or 1 for a single IMEI")

    notes = row.get("notes")
    return SeedRow(
        row_number=row_number,
        day=day,
        location_id=_resolve_location(row),
        phone_model_id=_resolve_phone_model(row),
        imei=imei,
        night_stock=_as_int(row, "night_stock", default=None),
        cost_price=_as_int(row, "cost_price", default=None),
        selling_price=_as_int(row, "selling_price", default=None),
        notes=str(notes).strip() if notes not in (None, "") else None,
        **values,
    )


def _events_for(seed: SeedRow, carried: int) -> list[dict]:
    base = {
        "imei": seed.imei,
        "location_id": seed.location_id,
        "phone_model_id": seed.phone_model_id,
        "occurred_on": seed.day,
        "notes": seed.notes,
    }
    events = []

    if seed.morning_stock != carried:
        if seed.morning_stock > 0:
            events.append({
                **base,
                "kind": KIND_CORRECTION,
                "qty": seed.morning_stock,
                "metadata": {"opening_balance": True, "cost_price": seed.cost_price, "source": "import"},
            })
        else:
            events.append({
                **base,
                "kind": KIND_CORRECTION,
                "qty": -carried,
                "metadata": {"source": "import"},
            })

    if seed.incoming:
        events.append({**base, "kind": KIND_INCOMING, "metadata": {"cost_price": seed.cost_price, "source": "import"}})
    if seed.add_stock:
        events.append({
            **base,
            "kind": KIND_INCOMING,
            "metadata": {"add_stock": True, "cost_price": seed.cost_price, "source": "import"},
        })
    if seed.returns:
        events.append({**base, "kind": KIND_RETURN_IN, "metadata": {"cost_price": seed.cost_price, "source": "import"}})
    if seed.sold:
        events.append({
            **base,
            "kind": KIND_SOLD,
            "metadata": {"cost_price": seed.cost_price, "selling_price": seed.selling_price, "source": "import"},
        })
    if seed.adjustment:
        events.append({**base, "kind": KIND_CORRECTION, "qty": seed.adjustment, "metadata": {"source": "import"}})

    for ev in events:
        ev["metadata"] = {k: v for k, v in ev["metadata"].items() if v is not None}
    return events


def import_seed_rows(rows: list, *, today: date | None = None, actor: str | None = None) -> ImportResult:
    """
    Replay seed rows through record_event, oldest date first.

    Returns an ImportResult; row problems are collected, not raised.
    """
    if not isinstance(rows, list):
        raise ValidationError("rows must be a list")
    today = resolve_today(today)
    result = ImportResult(rows=len(rows))

    parsed: list[SeedRow] = []
    for number, raw in enumerate(rows, start=1):
        try:
            parsed.append(parse_seed_row(raw, number))
        except StockError as e:
            result.errors.append({"row": number, "error": str(e), "code": e.code})

    parsed.sort(key=lambda s: (s.day, s.row_number))
    for seed in parsed:
        carried = night_stock_on(seed.day - timedelta(days=1), seed.location_id, seed.phone_model_id, seed.imei)
        try:
            last = None
            for event_args in _events_for(seed, carried):
                last = record_event(today=today, **event_args)
                result.events += 1
        except StockError as e:
            result.errors.append({"row": seed.row_number, "error": str(e), "code": e.code})
            continue

        result.imported += 1
        if seed.night_stock is not None:
            derived = night_stock_on(seed.day, seed.location_id, seed.phone_model_id, seed.imei)
            if derived != seed.night_stock:
                mismatch = {"row": seed.row_number, "imei": seed.imei, "provided": seed.night_stock, "derived": derived}
                result.mismatches.append(mismatch)
                current_app.logger.warning(
                    "Import row %s: night_stock %s provided, %s derived from events (imei=%s)",
                    seed.row_number, seed.night_stock, derived, seed.imei,
                )
        if last is None:
            current_app.logger.info("Import row %s produced no events (imei=%s)", seed.row_number, seed.imei)

    result.errors.sort(key=lambda e: e["row"])
    append_audit_event(action="import.completed", actor=actor, detail=result.to_dict())
    db.session.commit()

    current_app.logger.info(
        "Import finished: %s of %s rows, %s events, %s errors",
        result.imported, result.rows, result.events, len(result.errors),
    )
    return result
