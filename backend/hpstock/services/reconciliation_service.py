# Overview: Rebuilds stock_entries from stock_events; the cascade behind every ledger write.

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from typing import Iterable, Optional

from flask import current_app
from sqlalchemy import and_, case, func

from ..extensions import db
from ..models import StockEntry, StockEvent
from ..models.stock import (
    KIND_CORRECTION,
    KIND_INCOMING,
    KIND_RETURN_IN,
    KIND_RETURN_OUT,
    KIND_SOLD,
    KIND_TRANSFER_IN,
    KIND_TRANSFER_OUT,
)
from .concurrency import lock_for_update
from .ledger_service import events_for_unit_day
"""
Reconciliation Invariants (authoritative)

Unit row (date, location, model, imei):
- Flow fields are the kind-bucketed sum of that IMEI's events at that
  location and model dated exactly `date` (occurred_on, never created_at).
- morning_stock = night_stock of the latest earlier row of the same unit key,
  or 0 on the first day. A day holding an opening balance is independently
  set: its morning_stock is the opening balance.
- night_stock = morning + incoming + add_stock + returns - sold + adjustment,
  clamped at 0. A clamp marks the row is_inconsistent; the write still lands.

Aggregate row (date, location, model, NULL):
- Every numeric field is the sum of the same-day unit rows.

Cascade:
- After a day is refolded its night stock is carried into the next existing
  row of the unit key, repeating until a stored morning_stock already agrees
  (fixed point), an independently-set day, or the last row. Days without rows
  are not created; they are seeded lazily by events or the rollover.
"""


@dataclass
class DayTotals:
    incoming: int = 0
    add_stock: int = 0
    sold: int = 0
    returns: int = 0
    adjustment: int = 0
    opening: Optional[int] = None
    cost_price: Optional[int] = None
    selling_price: Optional[int] = None
    sale_date: Optional[date] = None
    notes: Optional[str] = None


@dataclass
class ReconcileResult:
    location_id: int
    phone_model_id: int
    imei: str
    touched_days: list[date] = field(default_factory=list)
    flagged_days: list[date] = field(default_factory=list)

    def changed_keys(self) -> list[dict]:
        keys = []
        for day in self.touched_days:
            for imei in (self.imei, None):
                keys.append({
                    "date": day.isoformat(),
                    "location_id": self.location_id,
                    "phone_model_id": self.phone_model_id,
                    "imei": imei,
                })
        return keys


def bucket_events(events: Iterable[StockEvent]) -> DayTotals:
    """
    Fold one unit-day's events into flow buckets.

    The numeric fold is order-independent. Events are expected in created_at
    order so that the last event's notes and prices win.
    """
    totals = DayTotals()
    for ev in events:
        meta = ev.meta or {}
        if ev.kind == KIND_INCOMING:
            if meta.get("add_stock"):
                totals.add_stock += ev.qty
            else:
                totals.incoming += ev.qty
        elif ev.kind == KIND_TRANSFER_IN:
            totals.incoming += ev.qty
        elif ev.kind == KIND_RETURN_IN:
            totals.returns += ev.qty
        elif ev.kind in (KIND_SOLD, KIND_RETURN_OUT, KIND_TRANSFER_OUT):
            totals.sold += ev.qty
        elif ev.kind == KIND_CORRECTION:
            if meta.get("opening_balance"):
                totals.opening = (totals.opening or 0) + ev.qty
            else:
                totals.adjustment += ev.qty

        if ev.kind == KIND_SOLD:
            totals.selling_price = meta.get("selling_price")
            totals.cost_price = meta.get("cost_price")
            totals.sale_date = ev.occurred_on
        elif meta.get("amendment"):
            for key in ("cost_price", "selling_price"):
                if meta.get(key) is not None:
                    setattr(totals, key, meta[key])

        if ev.notes:
            totals.notes = ev.notes
    return totals


def compute_night_stock(morning_stock: int, totals: DayTotals) -> tuple[int, bool]:
    """Returns (night_stock, clamped)."""
    raw = (
        morning_stock
        + totals.incoming
        + totals.add_stock
        + totals.returns
        - totals.sold
        + totals.adjustment
    )
    if raw < 0:
        return 0, True
    return raw, False


def _key_query(location_id: int, phone_model_id: int, imei: Optional[str]):
    q = db.session.query(StockEntry).filter(
        StockEntry.location_id == location_id,
        StockEntry.phone_model_id == phone_model_id,
    )
    if imei is None:
        return q.filter(StockEntry.imei.is_(None))
    return q.filter(StockEntry.imei == imei)


def get_row(day: date, location_id: int, phone_model_id: int, imei: Optional[str], *, lock: bool = False):
    q = _key_query(location_id, phone_model_id, imei).filter(StockEntry.date == day)
    if lock:
        q = lock_for_update(q)
    return q.first()


def previous_row(day: date, location_id: int, phone_model_id: int, imei: Optional[str]):
    return (
        _key_query(location_id, phone_model_id, imei)
        .filter(StockEntry.date < day)
        .order_by(StockEntry.date.desc())
        .first()
    )


def next_row(day: date, location_id: int, phone_model_id: int, imei: Optional[str]):
    return (
        _key_query(location_id, phone_model_id, imei)
        .filter(StockEntry.date > day)
        .order_by(StockEntry.date.asc())
        .first()
    )


def _new_row(day: date, location_id: int, phone_model_id: int, imei: Optional[str]) -> StockEntry:
    row = StockEntry(
        date=day,
        location_id=location_id,
        phone_model_id=phone_model_id,
        imei=imei,
        morning_stock=0,
        incoming=0,
        add_stock=0,
        sold=0,
        returns=0,
        adjustment=0,
        night_stock=0,
        is_inconsistent=False,
    )
    db.session.add(row)
    return row


def _refold_unit_day(
    day: date,
    location_id: int,
    phone_model_id: int,
    imei: str,
    carried_morning: int,
) -> tuple[StockEntry, DayTotals, bool]:
    events = events_for_unit_day(
        imei=imei,
        location_id=location_id,
        phone_model_id=phone_model_id,
        day=day,
    )
    totals = bucket_events(events)

    row = get_row(day, location_id, phone_model_id, imei, lock=True)
    if row is None:
        row = _new_row(day, location_id, phone_model_id, imei)

    morning = totals.opening if totals.opening is not None else carried_morning
    night, clamped = compute_night_stock(morning, totals)

    row.morning_stock = morning
    row.incoming = totals.incoming
    row.add_stock = totals.add_stock
    row.sold = totals.sold
    row.returns = totals.returns
    row.adjustment = totals.adjustment
    row.night_stock = night
    row.is_inconsistent = clamped
    row.cost_price = totals.cost_price
    row.selling_price = totals.selling_price
    if totals.selling_price is not None and totals.cost_price is not None:
        row.profit_loss = totals.selling_price - totals.cost_price
    else:
        row.profit_loss = None
    row.sale_date = totals.sale_date
    if totals.notes is not None:
        row.notes = totals.notes

    if clamped:
        current_app.logger.warning(
            "NegativeStockDetected: imei=%s location_id=%s phone_model_id=%s date=%s; "
            "night stock clamped to 0, row flagged for review",
            imei, location_id, phone_model_id, day.isoformat(),
        )

    db.session.flush()
    return row, totals, clamped


def _has_opening_balance(day: date, location_id: int, phone_model_id: int, imei: str) -> bool:
    events = events_for_unit_day(
        imei=imei,
        location_id=location_id,
        phone_model_id=phone_model_id,
        day=day,
    )
    return bucket_events(events).opening is not None


def reroll_aggregate(day: date, location_id: int, phone_model_id: int) -> StockEntry | None:
    """
    Recompute the (day, location, model, NULL) row as the sum of that day's
    unit rows. Removes the aggregate row when no unit rows remain.
    """
    sums = (
        db.session.query(
            func.count(StockEntry.id).label("units"),
            func.coalesce(func.sum(StockEntry.morning_stock), 0).label("morning_stock"),
            func.coalesce(func.sum(StockEntry.incoming), 0).label("incoming"),
            func.coalesce(func.sum(StockEntry.add_stock), 0).label("add_stock"),
            func.coalesce(func.sum(StockEntry.sold), 0).label("sold"),
            func.coalesce(func.sum(StockEntry.returns), 0).label("returns"),
            func.coalesce(func.sum(StockEntry.adjustment), 0).label("adjustment"),
            func.coalesce(func.sum(StockEntry.night_stock), 0).label("night_stock"),
            func.coalesce(
                func.sum(case((StockEntry.is_inconsistent.is_(True), 1), else_=0)), 0
            ).label("flagged"),
        )
        .filter(
            StockEntry.date == day,
            StockEntry.location_id == location_id,
            StockEntry.phone_model_id == phone_model_id,
            StockEntry.imei.isnot(None),
        )
        .one()
    )

    agg = get_row(day, location_id, phone_model_id, None, lock=True)
    if not sums.units:
        if agg is not None:
            db.session.delete(agg)
            db.session.flush()
        return None

    if agg is None:
        agg = _new_row(day, location_id, phone_model_id, None)

    agg.morning_stock = int(sums.morning_stock)
    agg.incoming = int(sums.incoming)
    agg.add_stock = int(sums.add_stock)
    agg.sold = int(sums.sold)
    agg.returns = int(sums.returns)
    agg.adjustment = int(sums.adjustment)
    agg.night_stock = int(sums.night_stock)
    agg.is_inconsistent = bool(sums.flagged)
    db.session.flush()
    return agg


def reconcile_key(
    *,
    occurred_on: date,
    location_id: int,
    phone_model_id: int,
    imei: str,
    force: bool = False,
) -> ReconcileResult:
    """
    Refold the unit row for occurred_on and cascade forward.

    force=True refolds every later row of the unit key instead of stopping at
    the first fixed point (used by rebuilds and replays).

    Caller holds the IMEI key lock and owns the transaction; nothing is
    committed here.
    """
    result = ReconcileResult(location_id=location_id, phone_model_id=phone_model_id, imei=imei)

    prev = previous_row(occurred_on, location_id, phone_model_id, imei)
    carried = prev.night_stock if prev is not None else 0

    day = occurred_on
    row, _, clamped = _refold_unit_day(day, location_id, phone_model_id, imei, carried)
    result.touched_days.append(day)
    if clamped:
        result.flagged_days.append(day)

    while True:
        nxt = next_row(day, location_id, phone_model_id, imei)
        if nxt is None:
            break
        if not force:
            if nxt.morning_stock == row.night_stock:
                break
            if _has_opening_balance(nxt.date, location_id, phone_model_id, imei):
                break
        day = nxt.date
        row, _, clamped = _refold_unit_day(day, location_id, phone_model_id, imei, row.night_stock)
        result.touched_days.append(day)
        if clamped:
            result.flagged_days.append(day)

    for touched in result.touched_days:
        reroll_aggregate(touched, location_id, phone_model_id)

    return result


def rebuild_imei(imei: str) -> list[ReconcileResult]:
    """
    Replay every unit key of an IMEI from its earliest event.

    Equivalent to folding the full history from scratch: every row from the
    first event onward is refolded regardless of fixed points.
    """
    starts = (
        db.session.query(
            StockEvent.location_id,
            StockEvent.phone_model_id,
            func.min(StockEvent.occurred_on).label("first_day"),
        )
        .filter(StockEvent.imei == imei)
        .group_by(StockEvent.location_id, StockEvent.phone_model_id)
        .all()
    )

    results = []
    for location_id, phone_model_id, first_day in starts:
        # Rows dated before the first event can only be leftovers
        stale = (
            _key_query(location_id, phone_model_id, imei)
            .filter(StockEntry.date < first_day)
            .all()
        )
        stale_days = sorted({row.date for row in stale})
        for row in stale:
            db.session.delete(row)
        db.session.flush()
        for stale_day in stale_days:
            reroll_aggregate(stale_day, location_id, phone_model_id)

        results.append(
            reconcile_key(
                occurred_on=first_day,
                location_id=location_id,
                phone_model_id=phone_model_id,
                imei=imei,
                force=True,
            )
        )
    return results


def night_stock_on(day: date, location_id: int, phone_model_id: int, imei: str) -> int:
    """Unit-level stock at close of `day`: the latest row on or before it, else 0."""
    row = (
        _key_query(location_id, phone_model_id, imei)
        .filter(StockEntry.date <= day)
        .order_by(StockEntry.date.desc())
        .first()
    )
    return row.night_stock if row is not None else 0


def imei_night_stock_on(day: date, imei: str) -> int:
    """Stock held under an IMEI at close of `day`, summed over every location and model."""
    return sum(max(row.night_stock, 0) for row in latest_unit_rows(day, imei=imei).all())


def latest_unit_rows(day: date, location_id: int | None = None, imei: str | None = None):
    """Query of each unit key's latest row dated on or before `day`."""
    latest = db.session.query(
        StockEntry.imei.label("imei"),
        StockEntry.location_id.label("location_id"),
        StockEntry.phone_model_id.label("phone_model_id"),
        func.max(StockEntry.date).label("last_date"),
    ).filter(
        StockEntry.imei.isnot(None),
        StockEntry.date <= day,
    )
    if location_id is not None:
        latest = latest.filter(StockEntry.location_id == location_id)
    if imei is not None:
        latest = latest.filter(StockEntry.imei == imei)
    latest = latest.group_by(
        StockEntry.imei, StockEntry.location_id, StockEntry.phone_model_id
    ).subquery()

    return db.session.query(StockEntry).join(
        latest,
        and_(
            StockEntry.imei == latest.c.imei,
            StockEntry.location_id == latest.c.location_id,
            StockEntry.phone_model_id == latest.c.phone_model_id,
            StockEntry.date == latest.c.last_date,
        ),
    )
