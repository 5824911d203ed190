# Overview: Change notifications published after each committed stock write.

from __future__ import annotations

from blinker import Namespace

"""
Subscribers (realtime push, cache invalidation) connect to stock_changed and
receive the changed keys; there is no other contract. Signals are only sent
after the transaction commits.

    @stock_changed.connect
    def on_change(sender, keys, reason):
        ...

Each key is {"date", "location_id", "phone_model_id", "imei"}; imei None is
the aggregate row. reason names the operation ("event.recorded",
"rollover", "unit.deleted", "data.reset", ...).
"""

_signals = Namespace()

stock_changed = _signals.signal("stock-changed")


def _dedupe(keys) -> list[dict]:
    seen = set()
    out = []
    for key in keys:
        marker = (key.get("date"), key.get("location_id"), key.get("phone_model_id"), key.get("imei"))
        if marker in seen:
            continue
        seen.add(marker)
        out.append(key)
    return out


def publish_changes(keys, *, reason: str, sender=None) -> list[dict]:
    keys = _dedupe(keys)
    stock_changed.send(sender or "hpstock", keys=keys, reason=reason)
    return keys
