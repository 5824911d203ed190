# Overview: Daily rollover; opens today's stock rows from yesterday's closing stock.

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, timedelta

from flask import current_app

from ..extensions import db
from ..models import StockEntry
from .concurrency import key_lock, run_with_retry
from .notification_service import publish_changes
from .reconciliation_service import get_row, latest_unit_rows, reroll_aggregate


@dataclass
class RolloverResult:
    day: date
    seeded_units: list[dict] = field(default_factory=list)
    rerolled: list[tuple[int, int]] = field(default_factory=list)

    def changed_keys(self) -> list[dict]:
        keys = [dict(unit) for unit in self.seeded_units]
        for location_id, phone_model_id in self.rerolled:
            keys.append({
                "date": self.day.isoformat(),
                "location_id": location_id,
                "phone_model_id": phone_model_id,
                "imei": None,
            })
        return keys

    def to_dict(self) -> dict:
        return {
            "date": self.day.isoformat(),
            "seeded_units": len(self.seeded_units),
            "rerolled_aggregates": len(self.rerolled),
        }


def _seed_unit_row(today: date, source: StockEntry) -> StockEntry:
    row = StockEntry(
        date=today,
        location_id=source.location_id,
        phone_model_id=source.phone_model_id,
        imei=source.imei,
        morning_stock=source.night_stock,
        incoming=0,
        add_stock=0,
        sold=0,
        returns=0,
        adjustment=0,
        night_stock=source.night_stock,
        is_inconsistent=False,
    )
    db.session.add(row)
    return row


def rollover_if_needed(today: date) -> RolloverResult:
    """
    Open `today` from the closing stock of `today - 1`.

    Every unit key whose latest row on or before yesterday still holds stock
    gets a row today (morning = night = that closing stock, no flows) unless
    one exists. Skipped days are not backfilled. Each
    (location, model) aggregate of yesterday is re-rolled for today when
    today has none yet or gained seeded units. Running it twice is a no-op.
    """
    yesterday = today - timedelta(days=1)

    def _op():
        carried = (
            latest_unit_rows(yesterday)
            .filter(StockEntry.night_stock > 0)
            .order_by(StockEntry.location_id.asc(), StockEntry.phone_model_id.asc(), StockEntry.imei.asc())
            .all()
        )
        result = RolloverResult(day=today)

        with key_lock(*{row.imei for row in carried}):
            try:
                seeded_pairs = set()
                for source in carried:
                    if get_row(today, source.location_id, source.phone_model_id, source.imei) is not None:
                        continue
                    _seed_unit_row(today, source)
                    seeded_pairs.add((source.location_id, source.phone_model_id))
                    result.seeded_units.append({
                        "date": today.isoformat(),
                        "location_id": source.location_id,
                        "phone_model_id": source.phone_model_id,
                        "imei": source.imei,
                    })
                db.session.flush()

                yesterday_pairs = {
                    (location_id, phone_model_id)
                    for location_id, phone_model_id in (
                        db.session.query(StockEntry.location_id, StockEntry.phone_model_id)
                        .filter(StockEntry.date == yesterday, StockEntry.imei.is_(None))
                        .all()
                    )
                }
                for pair in sorted(yesterday_pairs | seeded_pairs):
                    location_id, phone_model_id = pair
                    has_today = get_row(today, location_id, phone_model_id, None) is not None
                    if has_today and pair not in seeded_pairs:
                        continue
                    if reroll_aggregate(today, location_id, phone_model_id) is not None:
                        result.rerolled.append(pair)

                db.session.commit()
            except Exception:
                db.session.rollback()
                raise

        current_app.logger.info(
            "Rollover %s: %s unit rows seeded, %s aggregates re-rolled",
            today.isoformat(), len(result.seeded_units), len(result.rerolled),
        )
        if result.seeded_units or result.rerolled:
            publish_changes(result.changed_keys(), reason="rollover")
        return result

    return run_with_retry(_op)
