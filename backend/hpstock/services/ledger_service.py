# Overview: Service-layer operations for the stock event ledger; append and point lookups.

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import Iterable, Optional

from sqlalchemy import func

from ..extensions import db
from ..models import StockEvent
from ..models.stock import (
    CLOSING_KINDS,
    KIND_CORRECTION,
    KIND_RETURN_OUT,
    KIND_SOLD,
    KIND_TRANSFER_IN,
    KIND_TRANSFER_OUT,
    OPENING_KINDS,
    STATUS_AVAILABLE,
    STATUS_RETURNED,
    STATUS_SOLD,
    STATUS_TRANSFERRED,
)
from ..validation import DuplicateImeiOpen
from hpstock.time_utils import parse_iso_date, utcnow
"""
Stock Ledger Invariants (authoritative)

- Append-only: events are never updated; corrections are new CORRECTION events.
- occurred_on is business date; created_at is system time (audit ordering only).
- At most one open incoming-type event per IMEI at any time.
- The only deletion path is stock_service.delete_unit (administrative, audited).
"""


CLOSED_STATUS_BY_KIND = {
    KIND_SOLD: STATUS_SOLD,
    KIND_RETURN_OUT: STATUS_RETURNED,
    KIND_TRANSFER_OUT: STATUS_TRANSFERRED,
    # a negative CORRECTION writes the unit off
    KIND_CORRECTION: STATUS_RETURNED,
}


@dataclass
class UnitState:
    """Result of folding every ledger event of one IMEI."""
    imei: str
    status: str
    balance: int
    open_event: Optional[StockEvent]
    last_event: StockEvent
    location_id: int
    phone_model_id: int
    entry_date: Optional[date]
    transaction_date: Optional[date]
    cost_price: Optional[int] = None
    notes: Optional[str] = None


def is_amendment(ev: StockEvent) -> bool:
    """A zero-qty CORRECTION that only restates notes or prices."""
    return ev.kind == KIND_CORRECTION and bool((ev.meta or {}).get("amendment"))


def events_for_imei(imei: str, as_of: date | None = None) -> list[StockEvent]:
    q = db.session.query(StockEvent).filter(StockEvent.imei == imei)
    if as_of is not None:
        q = q.filter(StockEvent.occurred_on <= as_of)
    return q.order_by(StockEvent.created_at.asc(), StockEvent.id.asc()).all()


def fold_unit_status(events: Iterable[StockEvent]) -> UnitState | None:
    """
    Fold an IMEI's events (in created_at order) into its current state.

    Openers add to the balance, closers subtract; CORRECTION adds its signed
    qty. The unit is open while the balance is positive, and its location is
    that of the latest opening event. Amendments only update notes and
    cost_price; last_event is the latest event that moved the unit.
    """
    state: UnitState | None = None
    for ev in events:
        if state is None:
            state = UnitState(
                imei=ev.imei,
                status=STATUS_AVAILABLE,
                balance=0,
                open_event=None,
                last_event=ev,
                location_id=ev.location_id,
                phone_model_id=ev.phone_model_id,
                entry_date=None,
                transaction_date=None,
            )

        meta = ev.meta or {}
        if meta.get("cost_price") is not None:
            state.cost_price = meta["cost_price"]
        if is_amendment(ev):
            if ev.notes is not None:
                state.notes = ev.notes
            continue

        was_open = state.balance > 0
        state.balance += ev.signed_qty
        state.last_event = ev
        state.notes = ev.notes

        opens = ev.kind in OPENING_KINDS or (ev.kind == KIND_CORRECTION and ev.qty > 0)
        if opens:
            # a transfer hand-over keeps the first entry date
            handed_over = ev.kind == KIND_TRANSFER_IN and state.status == STATUS_TRANSFERRED
            if not was_open and not handed_over:
                # a re-keyed unit (new IMEI, model or location) keeps its entry date
                state.entry_date = parse_iso_date(meta.get("entry_date")) or ev.occurred_on
                state.transaction_date = None
            state.open_event = ev
            state.location_id = ev.location_id
            state.phone_model_id = ev.phone_model_id

        if state.balance > 0:
            state.status = STATUS_AVAILABLE
        else:
            if was_open or ev.kind in CLOSING_KINDS or ev.kind == KIND_CORRECTION:
                state.status = CLOSED_STATUS_BY_KIND.get(ev.kind, STATUS_RETURNED)
                state.transaction_date = ev.occurred_on
            state.open_event = None
    return state


def find_open_event(imei: str) -> StockEvent | None:
    """Latest unclosed incoming-type event for an IMEI, or None."""
    state = fold_unit_status(events_for_imei(imei))
    if state is None:
        return None
    return state.open_event


def append_event(
    *,
    occurred_on: date,
    imei: str,
    location_id: int,
    phone_model_id: int,
    kind: str,
    qty: int = 1,
    notes: str | None = None,
    metadata: dict | None = None,
    check_duplicate_open: bool = False,
) -> StockEvent:
    """
    Append one event. Flushes (id assigned) but does not commit.

    check_duplicate_open re-checks the open-IMEI invariant at insert time;
    callers hold the IMEI key lock so the check and the insert are atomic
    with respect to other writers of the same unit.
    """
    if check_duplicate_open:
        existing = find_open_event(imei)
        if existing is not None:
            raise DuplicateImeiOpen(
                f"IMEI {imei} is already in stock (event {existing.id}, "
                f"location {existing.location_id})"
            )

    ev = StockEvent(
        occurred_on=occurred_on,
        imei=imei,
        location_id=location_id,
        phone_model_id=phone_model_id,
        kind=kind,
        qty=qty,
        notes=notes,
        meta=dict(metadata or {}),
        created_at=utcnow(),
    )
    db.session.add(ev)
    db.session.flush()  # ensures ev.id is assigned without committing
    return ev


def find_by_date_range(
    *,
    from_date: date,
    to_date: date,
    location_id: int | None = None,
    imei_prefix: str | None = None,
    kind: str | None = None,
):
    """
    Events dated within [from_date, to_date] (inclusive), newest first.

    Returns an unexecuted query: iterating it runs the SELECT, iterating
    again re-runs it, and .limit() can bound it further.
    """
    q = db.session.query(StockEvent).filter(
        StockEvent.occurred_on >= from_date,
        StockEvent.occurred_on <= to_date,
    )
    if location_id is not None:
        q = q.filter(StockEvent.location_id == location_id)
    if imei_prefix:
        q = q.filter(StockEvent.imei.like(f"{imei_prefix}%"))
    if kind:
        q = q.filter(StockEvent.kind == kind)
    return q.order_by(StockEvent.created_at.desc(), StockEvent.id.desc())


def events_for_unit_day(
    *,
    imei: str,
    location_id: int,
    phone_model_id: int,
    day: date,
) -> list[StockEvent]:
    return (
        db.session.query(StockEvent)
        .filter(
            StockEvent.imei == imei,
            StockEvent.location_id == location_id,
            StockEvent.phone_model_id == phone_model_id,
            StockEvent.occurred_on == day,
        )
        .order_by(StockEvent.created_at.asc(), StockEvent.id.asc())
        .all()
    )


def last_movement_date(imei: str) -> date | None:
    """Latest occurred_on among the IMEI's non-CORRECTION events."""
    return (
        db.session.query(func.max(StockEvent.occurred_on))
        .filter(StockEvent.imei == imei, StockEvent.kind != KIND_CORRECTION)
        .scalar()
    )
