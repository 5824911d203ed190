# Overview: Stock write path (validate, append, reconcile, commit, notify) and unit reads.

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import Optional

from flask import current_app

from ..extensions import db
from ..models import Location, StockEntry, StockEvent
from ..models.stock import (
    KIND_CORRECTION,
    KIND_INCOMING,
    KIND_RETURN_IN,
    KIND_RETURN_OUT,
    KIND_SOLD,
    KIND_TRANSFER_IN,
    KIND_TRANSFER_OUT,
    STATUS_AVAILABLE,
    STATUS_SOLD,
    STATUS_TRANSFERRED,
)
from ..time_utils import business_today, to_iso_date
from ..validation import (
    DuplicateImeiOpen,
    ReferenceNotFound,
    UnitNotAvailable,
    ValidationError,
    enforce_rules_stock_event,
)
from .audit_service import append_audit_event
from .concurrency import key_lock, run_with_retry
from .ledger_service import (
    append_event,
    events_for_imei,
    fold_unit_status,
    is_amendment,
    last_movement_date,
)
from .notification_service import publish_changes
from .reconciliation_service import (
    ReconcileResult,
    imei_night_stock_on,
    night_stock_on,
    rebuild_imei,
    reconcile_key,
    reroll_aggregate,
)
from .reference_service import get_location, get_phone_model

"""
Write path invariants:

- One event per call; its append, reconciliation and cascade commit together
  or not at all.
- The IMEI key lock is held from the ledger-dependent checks through commit.
- Notifications go out only after a successful commit.
- Transfers are two separate calls (TRANSFER_OUT then TRANSFER_IN); a
  re-run resumes from whichever half is missing.
- A movement may not be dated before a later movement of the same IMEI;
  retroactive fixes are CORRECTION events.
"""


def resolve_today(today: date | None = None) -> date:
    if today is not None:
        return today
    return business_today(current_app.config["BUSINESS_TIMEZONE"])


def _normalize_imei(imei) -> str:
    return str(imei or "").strip()


@dataclass
class StockUnit:
    imei: str
    status: str
    location_id: int
    phone_model_id: int
    entry_date: Optional[date]
    transaction_date: Optional[date]
    cost_price: Optional[int]
    notes: Optional[str]

    def to_dict(self) -> dict:
        return {
            "imei": self.imei,
            "status": self.status,
            "location_id": self.location_id,
            "phone_model_id": self.phone_model_id,
            "entry_date": to_iso_date(self.entry_date),
            "transaction_date": to_iso_date(self.transaction_date),
            "cost_price": self.cost_price,
            "notes": self.notes,
        }


def _require_open_at(imei: str, location_id: int, phone_model_id: int, occurred_on: date):
    state = fold_unit_status(events_for_imei(imei))
    if state is None or state.open_event is None:
        raise UnitNotAvailable(f"IMEI {imei} is not in stock")
    if state.location_id != location_id:
        raise UnitNotAvailable(f"IMEI {imei} is not in stock at location {location_id}")
    if state.phone_model_id != phone_model_id:
        raise UnitNotAvailable(f"IMEI {imei} is recorded under a different phone model")
    if night_stock_on(occurred_on, location_id, phone_model_id, imei) <= 0:
        raise UnitNotAvailable(f"IMEI {imei} has no stock on {occurred_on.isoformat()}")
    moved_on = last_movement_date(imei)
    if moved_on is not None and moved_on > occurred_on:
        raise UnitNotAvailable(
            f"IMEI {imei} moved again on {moved_on.isoformat()}; "
            f"use a CORRECTION to change history before that date"
        )
    return state


def _require_not_held(imei: str, occurred_on: date) -> None:
    if imei_night_stock_on(occurred_on, imei) > 0:
        raise DuplicateImeiOpen(f"IMEI {imei} was already in stock on {occurred_on.isoformat()}")
    moved_on = last_movement_date(imei)
    if moved_on is not None and moved_on > occurred_on:
        raise DuplicateImeiOpen(
            f"IMEI {imei} has ledger history after {occurred_on.isoformat()} "
            f"(last movement {moved_on.isoformat()})"
        )


def _require_transfer_pair(imei: str, location_id: int, phone_model_id: int, occurred_on: date) -> StockEvent:
    state = fold_unit_status(events_for_imei(imei))
    out = state.last_event if state is not None else None
    if out is None or out.kind != KIND_TRANSFER_OUT or state.status != STATUS_TRANSFERRED:
        raise UnitNotAvailable(f"IMEI {imei} has no pending TRANSFER_OUT")
    if out.occurred_on != occurred_on:
        raise UnitNotAvailable("TRANSFER_IN must share the TRANSFER_OUT business date")
    if out.location_id == location_id:
        raise UnitNotAvailable("TRANSFER_IN must be at a different location than TRANSFER_OUT")
    target = (out.meta or {}).get("to_location_id")
    if target is not None and target != location_id:
        raise UnitNotAvailable(f"IMEI {imei} is in transit to location {target}")
    if out.phone_model_id != phone_model_id:
        raise UnitNotAvailable(f"IMEI {imei} is recorded under a different phone model")
    return out


def _record_locked(
    *,
    kind: str,
    imei: str,
    location_id: int,
    phone_model_id: int,
    occurred_on: date,
    qty: int,
    notes: str | None,
    metadata: dict,
) -> tuple[StockEvent, ReconcileResult]:
    get_location(location_id)
    phone_model = get_phone_model(phone_model_id)

    if kind in (KIND_SOLD, KIND_RETURN_OUT, KIND_TRANSFER_OUT):
        state = _require_open_at(imei, location_id, phone_model_id, occurred_on)
        if kind == KIND_SOLD:
            if metadata.get("cost_price") is None:
                metadata["cost_price"] = state.cost_price
            if metadata.get("selling_price") is None:
                metadata["selling_price"] = phone_model.srp
    elif kind == KIND_TRANSFER_IN:
        _require_transfer_pair(imei, location_id, phone_model_id, occurred_on)
    elif kind in (KIND_INCOMING, KIND_RETURN_IN):
        _require_not_held(imei, occurred_on)

    ev = append_event(
        occurred_on=occurred_on,
        imei=imei,
        location_id=location_id,
        phone_model_id=phone_model_id,
        kind=kind,
        qty=qty,
        notes=notes,
        metadata=metadata,
        check_duplicate_open=kind in (KIND_INCOMING, KIND_RETURN_IN),
    )
    result = reconcile_key(
        occurred_on=occurred_on,
        location_id=location_id,
        phone_model_id=phone_model_id,
        imei=imei,
    )
    return ev, result


def _check_event_shape(*, kind, imei, qty, occurred_on, metadata, today) -> None:
    enforce_rules_stock_event(
        kind=kind,
        imei=imei,
        qty=qty,
        occurred_on=occurred_on,
        metadata=metadata,
        today=today,
        min_imei_length=current_app.config.get("MIN_IMEI_LENGTH", 10),
    )


def record_event(
    *,
    kind: str,
    imei: str,
    location_id: int,
    phone_model_id: int,
    occurred_on: date,
    qty: int = 1,
    notes: str | None = None,
    metadata: dict | None = None,
    today: date | None = None,
) -> StockEvent:
    """
    Append one ledger event and bring stock_entries up to date.

    Raises ValidationError for shape problems, ReferenceNotFound for unknown
    ids, DuplicateImeiOpen / UnitNotAvailable for ledger conflicts and
    ConcurrencyConflict when retries run out. Nothing is persisted on error.
    """
    imei = _normalize_imei(imei)
    kind = (kind or "").strip().upper()
    _check_event_shape(
        kind=kind,
        imei=imei,
        qty=qty,
        occurred_on=occurred_on,
        metadata=metadata,
        today=resolve_today(today),
    )

    def _op():
        with key_lock(imei):
            try:
                ev, result = _record_locked(
                    kind=kind,
                    imei=imei,
                    location_id=location_id,
                    phone_model_id=phone_model_id,
                    occurred_on=occurred_on,
                    qty=qty,
                    notes=notes,
                    metadata=dict(metadata or {}),
                )
                db.session.commit()
            except Exception:
                db.session.rollback()
                raise
        publish_changes(result.changed_keys(), reason="event.recorded")
        return ev

    return run_with_retry(_op)


def sell_unit(
    *,
    imei: str,
    occurred_on: date | None = None,
    selling_price: int | None = None,
    notes: str | None = None,
    today: date | None = None,
) -> StockEvent:
    """
    Sell a unit where it currently sits. selling_price defaults to the
    model's SRP; cost_price is the unit's recorded cost.
    """
    today = resolve_today(today)
    imei = _normalize_imei(imei)
    state = fold_unit_status(events_for_imei(imei))
    if state is None or state.status != STATUS_AVAILABLE:
        raise UnitNotAvailable(f"IMEI {imei} is not in stock")

    metadata = {}
    if selling_price is not None:
        metadata["selling_price"] = selling_price

    return record_event(
        kind=KIND_SOLD,
        imei=imei,
        location_id=state.location_id,
        phone_model_id=state.phone_model_id,
        occurred_on=occurred_on or today,
        notes=notes,
        metadata=metadata,
        today=today,
    )


def transfer_unit(
    *,
    imei: str,
    to_location_id: int,
    occurred_on: date | None = None,
    notes: str | None = None,
    today: date | None = None,
) -> dict:
    """
    Move a unit to another location as TRANSFER_OUT + TRANSFER_IN.

    Safe to repeat: a pending TRANSFER_OUT to the same destination is
    completed, and an already completed pair is returned without writing.
    """
    today = resolve_today(today)
    imei = _normalize_imei(imei)
    destination = get_location(to_location_id)

    events = events_for_imei(imei)
    state = fold_unit_status(events)
    if state is None:
        raise UnitNotAvailable(f"IMEI {imei} is not in stock")

    moves = [ev for ev in events if not is_amendment(ev)]
    last = state.last_event
    if (
        last.kind == KIND_TRANSFER_IN
        and last.location_id == to_location_id
        and len(moves) >= 2
        and moves[-2].kind == KIND_TRANSFER_OUT
        and (occurred_on is None or last.occurred_on == occurred_on)
    ):
        return {"transfer_out": moves[-2], "transfer_in": last, "resumed": False, "completed": True}

    resumed = last.kind == KIND_TRANSFER_OUT and state.status == STATUS_TRANSFERRED
    if resumed:
        if (last.meta or {}).get("to_location_id") != to_location_id:
            raise UnitNotAvailable(f"IMEI {imei} is already in transit to another location")
        pending = last
    else:
        if state.status != STATUS_AVAILABLE:
            raise UnitNotAvailable(f"IMEI {imei} is not in stock")
        if state.location_id == to_location_id:
            raise ValidationError("Unit is already at the destination location")

        source = get_location(state.location_id)
        pending = record_event(
            kind=KIND_TRANSFER_OUT,
            imei=imei,
            location_id=source.id,
            phone_model_id=state.phone_model_id,
            occurred_on=occurred_on or today,
            notes=notes,
            metadata={
                "to_location_id": destination.id,
                "to_location_name": destination.name,
                "cost_price": state.cost_price,
            },
            today=today,
        )

    source = db.session.get(Location, pending.location_id)
    incoming = record_event(
        kind=KIND_TRANSFER_IN,
        imei=imei,
        location_id=destination.id,
        phone_model_id=pending.phone_model_id,
        occurred_on=pending.occurred_on,
        notes=notes,
        metadata={
            "from_location_id": source.id,
            "from_location_name": source.name,
            "cost_price": (pending.meta or {}).get("cost_price"),
        },
        today=today,
    )
    return {
        "transfer_out": pending,
        "transfer_in": incoming,
        "resumed": resumed,
        "completed": True,
    }


def amend_unit(
    *,
    imei: str,
    notes: str | None = None,
    cost_price: int | None = None,
    selling_price: int | None = None,
    new_imei: str | None = None,
    phone_model_id: int | None = None,
    location_id: int | None = None,
    occurred_on: date | None = None,
    actor: str | None = None,
    today: date | None = None,
) -> dict:
    """
    Correct a unit's recorded details without rewriting its ledger.

    Notes and prices become one zero-qty amendment CORRECTION. It is dated
    the sale for a sold unit, so the sale row's profit is restated, and
    occurred_on (default today) at the unit's current key otherwise.

    A new IMEI, model or location re-keys a unit in stock: a CORRECTION of
    -1 under the old key and +1 under the new one on the same day. The +1
    carries the entry date and cost so the unit keeps its age and price.
    """
    today = resolve_today(today)
    imei = _normalize_imei(imei)
    new_imei = _normalize_imei(new_imei) or None
    if new_imei == imei:
        new_imei = None
    if all(v is None for v in (notes, cost_price, selling_price, new_imei, phone_model_id, location_id)):
        raise ValidationError("Nothing to amend")

    def _op():
        with key_lock(imei, new_imei):
            try:
                state = fold_unit_status(events_for_imei(imei))
                if state is None:
                    raise ReferenceNotFound(f"No ledger events for IMEI {imei}")

                target_model = phone_model_id if phone_model_id is not None else state.phone_model_id
                target_location = location_id if location_id is not None else state.location_id
                rekey = (
                    new_imei is not None
                    or target_model != state.phone_model_id
                    or target_location != state.location_id
                )
                if selling_price is not None and state.status != STATUS_SOLD:
                    raise ValidationError("selling_price can only be amended on a sold unit")
                if rekey and state.status != STATUS_AVAILABLE:
                    raise UnitNotAvailable(f"IMEI {imei} must be in stock to change its IMEI, model or location")
                if new_imei is not None and events_for_imei(new_imei):
                    raise DuplicateImeiOpen(f"IMEI {new_imei} already has ledger history")

                written = []
                if rekey:
                    day = occurred_on or today
                    get_location(target_location)
                    get_phone_model(target_model)
                    _require_open_at(imei, state.location_id, state.phone_model_id, day)
                    target_imei = new_imei or imei
                    unit_cost = cost_price if cost_price is not None else state.cost_price
                    moves = (
                        (imei, state.location_id, state.phone_model_id, -1, {
                            "rekeyed_to": {
                                "imei": target_imei,
                                "location_id": target_location,
                                "phone_model_id": target_model,
                            },
                        }),
                        (target_imei, target_location, target_model, 1, {
                            "rekeyed_from": {
                                "imei": imei,
                                "location_id": state.location_id,
                                "phone_model_id": state.phone_model_id,
                            },
                            "entry_date": to_iso_date(state.entry_date),
                            "cost_price": unit_cost,
                        }),
                    )
                    for move_imei, move_location, move_model, qty, metadata in moves:
                        metadata = {k: v for k, v in metadata.items() if v is not None}
                        _check_event_shape(
                            kind=KIND_CORRECTION, imei=move_imei, qty=qty,
                            occurred_on=day, metadata=metadata, today=today,
                        )
                        written.append(_record_locked(
                            kind=KIND_CORRECTION,
                            imei=move_imei,
                            location_id=move_location,
                            phone_model_id=move_model,
                            occurred_on=day,
                            qty=qty,
                            notes=notes,
                            metadata=metadata,
                        ))
                else:
                    if notes is None and cost_price is None and selling_price is None:
                        raise ValidationError("Nothing to amend")
                    target_imei = imei
                    if state.status != STATUS_AVAILABLE:
                        # closed units are amended on the day that closed them
                        day = state.transaction_date
                        at = state.last_event
                        key = (at.location_id, at.phone_model_id)
                    else:
                        day = occurred_on or today
                        key = (state.location_id, state.phone_model_id)
                        moved_on = last_movement_date(imei)
                        if moved_on is not None and moved_on > day:
                            raise ValidationError(
                                f"occurred_on must be on or after {moved_on.isoformat()}, the unit's last movement"
                            )
                    metadata = {"amendment": True}
                    if cost_price is not None:
                        metadata["cost_price"] = cost_price
                    if selling_price is not None:
                        metadata["selling_price"] = selling_price
                    _check_event_shape(
                        kind=KIND_CORRECTION, imei=imei, qty=0,
                        occurred_on=day, metadata=metadata, today=today,
                    )
                    written.append(_record_locked(
                        kind=KIND_CORRECTION,
                        imei=imei,
                        location_id=key[0],
                        phone_model_id=key[1],
                        occurred_on=day,
                        qty=0,
                        notes=notes,
                        metadata=metadata,
                    ))

                changes = {
                    name: value
                    for name, value in (
                        ("notes", notes),
                        ("cost_price", cost_price),
                        ("selling_price", selling_price),
                        ("new_imei", new_imei),
                        ("phone_model_id", phone_model_id),
                        ("location_id", location_id),
                    )
                    if value is not None
                }
                append_audit_event(
                    action="unit.amended",
                    actor=actor,
                    imei=imei,
                    detail={"changes": changes, "events": [ev.id for ev, _ in written]},
                )
                db.session.commit()
            except Exception:
                db.session.rollback()
                raise

        keys = [k for _, result in written for k in result.changed_keys()]
        publish_changes(keys, reason="unit.amended")
        return {
            "imei": target_imei,
            "rekeyed": rekey,
            "events": [ev for ev, _ in written],
            "unit": get_unit(target_imei),
        }

    return run_with_retry(_op)


def get_unit(imei: str, as_of: date | None = None) -> StockUnit | None:
    imei = _normalize_imei(imei)
    state = fold_unit_status(events_for_imei(imei, as_of=as_of))
    if state is None:
        return None

    return StockUnit(
        imei=imei,
        status=state.status,
        location_id=state.location_id,
        phone_model_id=state.phone_model_id,
        entry_date=state.entry_date,
        transaction_date=state.transaction_date,
        cost_price=state.cost_price,
        notes=state.notes,
    )


def get_aggregate(day: date, location_id: int | None = None) -> list[StockEntry]:
    """Aggregate (imei NULL) rows stored for exactly `day`."""
    q = db.session.query(StockEntry).filter(
        StockEntry.date == day,
        StockEntry.imei.is_(None),
    )
    if location_id is not None:
        q = q.filter(StockEntry.location_id == location_id)
    return q.order_by(StockEntry.location_id.asc(), StockEntry.phone_model_id.asc()).all()


def unit_rows(imei: str) -> list[StockEntry]:
    return (
        db.session.query(StockEntry)
        .filter(StockEntry.imei == _normalize_imei(imei))
        .order_by(StockEntry.date.asc(), StockEntry.location_id.asc())
        .all()
    )


def rebuild(imei: str) -> list[ReconcileResult]:
    """Replay an IMEI's whole history into stock_entries."""
    imei = _normalize_imei(imei)

    def _op():
        with key_lock(imei):
            try:
                if not events_for_imei(imei):
                    raise ReferenceNotFound(f"No ledger events for IMEI {imei}")
                results = rebuild_imei(imei)
                db.session.commit()
            except Exception:
                db.session.rollback()
                raise
        keys = [k for r in results for k in r.changed_keys()]
        publish_changes(keys, reason="unit.rebuilt")
        return results

    return run_with_retry(_op)


def delete_unit(*, imei: str, confirmation_token: str | None, authorized_by: str | None) -> dict:
    """
    Administrative removal of every ledger event and stock row of an IMEI.

    The only path that deletes ledger events. Requires the token
    "DELETE <imei>" and a named operator; the action is audited.
    """
    imei = _normalize_imei(imei)
    if not authorized_by or not str(authorized_by).strip():
        raise ValidationError("authorized_by is required")
    if confirmation_token != f"DELETE {imei}":
        raise ValidationError(f'confirmation_token must be "DELETE {imei}"')

    def _op():
        with key_lock(imei):
            try:
                events = db.session.query(StockEvent).filter(StockEvent.imei == imei).all()
                if not events:
                    raise ReferenceNotFound(f"No ledger events for IMEI {imei}")
                rows = db.session.query(StockEntry).filter(StockEntry.imei == imei).all()
                affected = sorted({(r.date, r.location_id, r.phone_model_id) for r in rows})

                for row in rows:
                    db.session.delete(row)
                for ev in events:
                    db.session.delete(ev)
                db.session.flush()

                for day, location_id, phone_model_id in affected:
                    reroll_aggregate(day, location_id, phone_model_id)

                summary = {
                    "imei": imei,
                    "events_deleted": len(events),
                    "rows_deleted": len(rows),
                }
                append_audit_event(
                    action="unit.deleted",
                    actor=str(authorized_by).strip(),
                    imei=imei,
                    detail=summary,
                )
                db.session.commit()
            except Exception:
                db.session.rollback()
                raise

        current_app.logger.warning(
            "Unit %s deleted by %s (%s events, %s rows)",
            imei, authorized_by, summary["events_deleted"], summary["rows_deleted"],
        )
        keys = []
        for day, location_id, phone_model_id in affected:
            for key_imei in (imei, None):
                keys.append({
                    "date": day.isoformat(),
                    "location_id": location_id,
                    "phone_model_id": phone_model_id,
                    "imei": key_imei,
                })
        publish_changes(keys, reason="unit.deleted")
        return summary

    return run_with_retry(_op)


def reset_all(*, confirmation_token: str | None, actor: str | None = None) -> dict:
    """
    Wipe the ledger and every derived stock row in one transaction.

    Reference data and the admin audit trail survive.
    """
    phrase = current_app.config.get("RESET_CONFIRMATION_PHRASE", "RESET DATA")
    if confirmation_token != phrase:
        raise ValidationError(f'confirmation_token must be "{phrase}"')

    def _op():
        try:
            rows_deleted = db.session.query(StockEntry).delete(synchronize_session=False)
            events_deleted = db.session.query(StockEvent).delete(synchronize_session=False)
            summary = {"events_deleted": events_deleted, "rows_deleted": rows_deleted}
            append_audit_event(action="data.reset", actor=actor, detail=summary)
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise
        current_app.logger.warning(
            "Stock data reset by %s (%s events, %s rows)",
            actor or "unknown", events_deleted, rows_deleted,
        )
        publish_changes([], reason="data.reset")
        return summary

    return run_with_retry(_op)
