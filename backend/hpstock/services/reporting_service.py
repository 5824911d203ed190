# Overview: Read-side reports over stock_entries and the ledger; inventory, KPIs, history, trends.

from __future__ import annotations

from datetime import date, timedelta

from flask import current_app
from sqlalchemy import func

from ..extensions import db
from ..models import Brand, Location, PhoneModel, StockEntry, StockEvent
from ..validation import ValidationError
from .ledger_service import events_for_imei, find_by_date_range, fold_unit_status
from .reconciliation_service import latest_unit_rows


def _window(reference_date: date, days: int) -> tuple[date, date]:
    if days < 1:
        raise ValidationError("days must be >= 1")
    return reference_date - timedelta(days=days - 1), reference_date


def list_inventory(day: date, location_id: int | None = None) -> list[StockEntry]:
    """Units on hand at close of `day`."""
    return (
        latest_unit_rows(day, location_id)
        .filter(StockEntry.night_stock > 0)
        .order_by(StockEntry.location_id.asc(), StockEntry.phone_model_id.asc(), StockEntry.imei.asc())
        .all()
    )


def _sale_rows(start: date, end: date, location_id: int | None = None):
    q = db.session.query(StockEntry).filter(
        StockEntry.imei.isnot(None),
        StockEntry.sale_date.isnot(None),
        StockEntry.sale_date >= start,
        StockEntry.sale_date <= end,
    )
    if location_id is not None:
        q = q.filter(StockEntry.location_id == location_id)
    return q


def _sales_totals(start: date, end: date, location_id: int | None = None) -> dict:
    row = (
        _sale_rows(start, end, location_id)
        .with_entities(
            func.count(StockEntry.id).label("sold"),
            func.coalesce(func.sum(StockEntry.selling_price), 0).label("revenue"),
            func.coalesce(func.sum(StockEntry.profit_loss), 0).label("profit_loss"),
        )
        .one()
    )
    return {
        "sold": int(row.sold or 0),
        "revenue": int(row.revenue or 0),
        "profit_loss": int(row.profit_loss or 0),
    }


def oldest_held_unit(reference_date: date, location_id: int | None = None) -> dict | None:
    """The on-hand unit with the earliest continuous entry date."""
    oldest = None
    for row in list_inventory(reference_date, location_id):
        state = fold_unit_status(events_for_imei(row.imei, as_of=reference_date))
        if state is None or state.entry_date is None:
            continue
        if oldest is None or state.entry_date < oldest[1]:
            oldest = (row, state.entry_date)

    if oldest is None:
        return None
    row, entry_date = oldest
    return {
        "imei": row.imei,
        "location_id": row.location_id,
        "location": row.location.name if row.location else None,
        "phone_model_id": row.phone_model_id,
        "phone_model": row.phone_model.display_name if row.phone_model else None,
        "entry_date": entry_date.isoformat(),
        "days_held": (reference_date - entry_date).days,
    }


def _best_sellers(start: date, end: date, location_id: int | None = None) -> tuple[dict | None, dict | None]:
    by_model = (
        _sale_rows(start, end, location_id)
        .join(PhoneModel, PhoneModel.id == StockEntry.phone_model_id)
        .with_entities(PhoneModel.id, func.count(StockEntry.id).label("sold"))
        .group_by(PhoneModel.id)
        .order_by(func.count(StockEntry.id).desc(), PhoneModel.id.asc())
        .first()
    )
    by_brand = (
        _sale_rows(start, end, location_id)
        .join(PhoneModel, PhoneModel.id == StockEntry.phone_model_id)
        .join(Brand, Brand.id == PhoneModel.brand_id)
        .with_entities(Brand.id, Brand.name, func.count(StockEntry.id).label("sold"))
        .group_by(Brand.id, Brand.name)
        .order_by(func.count(StockEntry.id).desc(), Brand.name.asc())
        .first()
    )

    best_model = None
    if by_model is not None:
        phone_model = db.session.get(PhoneModel, by_model[0])
        best_model = {
            "phone_model_id": phone_model.id,
            "name": phone_model.display_name,
            "sold": int(by_model.sold),
        }
    best_brand = None
    if by_brand is not None:
        best_brand = {"brand_id": by_brand[0], "name": by_brand[1], "sold": int(by_brand.sold)}
    return best_brand, best_model


def kpi_summary(
    reference_date: date,
    location_id: int | None = None,
    window_days: int | None = None,
) -> dict:
    """
    Trailing-window KPIs ending at reference_date (inclusive).

    The default window is KPI_WINDOW_DAYS (30): reference_date - 29 through
    reference_date.
    """
    days = window_days or current_app.config.get("KPI_WINDOW_DAYS", 30)
    start, end = _window(reference_date, days)

    totals = _sales_totals(start, end, location_id)
    best_brand, best_model = _best_sellers(start, end, location_id)

    return {
        "from_date": start.isoformat(),
        "to_date": end.isoformat(),
        "location_id": location_id,
        "units_sold": totals["sold"],
        "revenue": totals["revenue"],
        "profit_loss": totals["profit_loss"],
        "oldest_unit": oldest_held_unit(reference_date, location_id),
        "best_selling_brand": best_brand,
        "best_selling_model": best_model,
    }


def list_history(
    *,
    reference_date: date,
    from_date: date | None = None,
    to_date: date | None = None,
    imei_prefix: str | None = None,
    kind: str | None = None,
    location_id: int | None = None,
    limit: int | None = None,
) -> list[StockEvent]:
    """Ledger audit listing, newest first. Defaults to the 30 days ending at reference_date."""
    to_date = to_date or reference_date
    from_date = from_date or (to_date - timedelta(days=29))
    if from_date > to_date:
        raise ValidationError("from_date must be on or before to_date")

    limit = limit or current_app.config.get("HISTORY_DEFAULT_LIMIT", 100)
    if limit < 1:
        raise ValidationError("limit must be >= 1")

    q = find_by_date_range(
        from_date=from_date,
        to_date=to_date,
        location_id=location_id,
        imei_prefix=(imei_prefix or "").strip() or None,
        kind=(kind or "").strip().upper() or None,
    )
    return q.limit(limit).all()


def dashboard_stats(day: date, location_id: int | None = None) -> dict:
    sales = _sales_totals(day, day, location_id)

    on_hand = list_inventory(day, location_id)

    flows = db.session.query(
        func.coalesce(func.sum(StockEntry.incoming), 0).label("incoming"),
        func.coalesce(func.sum(StockEntry.add_stock), 0).label("add_stock"),
    ).filter(
        StockEntry.date == day,
        StockEntry.imei.isnot(None),
    )
    if location_id is not None:
        flows = flows.filter(StockEntry.location_id == location_id)
    flows = flows.one()

    flagged = db.session.query(func.count(StockEntry.id)).filter(
        StockEntry.imei.isnot(None),
        StockEntry.is_inconsistent.is_(True),
        StockEntry.date <= day,
    )
    if location_id is not None:
        flagged = flagged.filter(StockEntry.location_id == location_id)

    return {
        "date": day.isoformat(),
        "location_id": location_id,
        "sold_today": sales["sold"],
        "revenue_today": sales["revenue"],
        "profit_today": sales["profit_loss"],
        "total_stock": sum(row.night_stock for row in on_hand),
        "incoming_today": int(flows.incoming) + int(flows.add_stock),
        "discrepancies": int(flagged.scalar() or 0),
    }


def trend_report(reference_date: date, days: int = 30, location_id: int | None = None) -> dict:
    """Per-day sold / incoming / closing stock over the window, zero-filled."""
    start, end = _window(reference_date, days)

    q = db.session.query(
        StockEntry.date,
        func.coalesce(func.sum(StockEntry.sold), 0).label("sold"),
        func.coalesce(func.sum(StockEntry.incoming + StockEntry.add_stock), 0).label("incoming"),
        func.coalesce(func.sum(StockEntry.night_stock), 0).label("night_stock"),
    ).filter(
        StockEntry.imei.is_(None),
        StockEntry.date >= start,
        StockEntry.date <= end,
    )
    if location_id is not None:
        q = q.filter(StockEntry.location_id == location_id)
    by_day = {row.date: row for row in q.group_by(StockEntry.date).all()}

    points = []
    day = start
    while day <= end:
        row = by_day.get(day)
        points.append({
            "date": day.isoformat(),
            "sold": int(row.sold) if row else 0,
            "incoming": int(row.incoming) if row else 0,
            "night_stock": int(row.night_stock) if row else 0,
        })
        day += timedelta(days=1)

    stocked = [int(row.night_stock) for row in by_day.values()]
    return {
        "from_date": start.isoformat(),
        "to_date": end.isoformat(),
        "points": points,
        "total_sold": sum(p["sold"] for p in points),
        "total_incoming": sum(p["incoming"] for p in points),
        "average_night_stock": round(sum(stocked) / len(stocked), 2) if stocked else 0,
    }


def brand_performance(reference_date: date, days: int = 30, location_id: int | None = None) -> list[dict]:
    start, end = _window(reference_date, days)

    sold = {
        brand_id: (int(count), int(revenue or 0), int(profit or 0))
        for brand_id, count, revenue, profit in (
            _sale_rows(start, end, location_id)
            .join(PhoneModel, PhoneModel.id == StockEntry.phone_model_id)
            .with_entities(
                PhoneModel.brand_id,
                func.count(StockEntry.id),
                func.sum(StockEntry.selling_price),
                func.sum(StockEntry.profit_loss),
            )
            .group_by(PhoneModel.brand_id)
            .all()
        )
    }

    in_stock: dict[int, int] = {}
    for row in list_inventory(reference_date, location_id):
        brand_id = row.phone_model.brand_id
        in_stock[brand_id] = in_stock.get(brand_id, 0) + row.night_stock

    out = []
    for brand in db.session.query(Brand).order_by(Brand.name.asc()).all():
        units, revenue, profit = sold.get(brand.id, (0, 0, 0))
        stock = in_stock.get(brand.id, 0)
        if not units and not stock:
            continue
        out.append({
            "brand_id": brand.id,
            "brand": brand.name,
            "units_sold": units,
            "revenue": revenue,
            "profit_loss": profit,
            "in_stock": stock,
        })
    out.sort(key=lambda r: (-r["units_sold"], r["brand"]))
    return out


def low_stock(reference_date: date, threshold: int | None = None, location_id: int | None = None) -> list[dict]:
    """
    (location, model) pairs that have held stock before and now hold fewer
    than `threshold` units, lowest first.
    """
    threshold = threshold if threshold is not None else current_app.config.get("LOW_STOCK_THRESHOLD", 5)

    counts: dict[tuple[int, int], int] = {}
    for row in latest_unit_rows(reference_date, location_id).all():
        key = (row.location_id, row.phone_model_id)
        counts[key] = counts.get(key, 0) + max(row.night_stock, 0)

    out = []
    for (location_id_, phone_model_id), count in counts.items():
        if count >= threshold:
            continue
        location = db.session.get(Location, location_id_)
        phone_model = db.session.get(PhoneModel, phone_model_id)
        out.append({
            "location_id": location_id_,
            "location": location.name if location else None,
            "phone_model_id": phone_model_id,
            "phone_model": phone_model.display_name if phone_model else None,
            "in_stock": count,
            "threshold": threshold,
        })
    out.sort(key=lambda r: (r["in_stock"], r["location_id"], r["phone_model_id"]))
    return out
