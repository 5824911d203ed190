# Overview: Append-only trail of administrative stock actions.

from __future__ import annotations

from ..extensions import db
from ..models import AdminAuditEvent


def append_audit_event(
    *,
    action: str,
    actor: str | None = None,
    imei: str | None = None,
    detail: dict | None = None,
) -> AdminAuditEvent:
    """
    Append-only admin audit event.

    - No domain logic here.
    - Written in the same transaction as the action it records.
    """
    ev = AdminAuditEvent(
        action=action,
        actor=actor,
        imei=imei,
        detail=detail,
    )
    db.session.add(ev)
    db.session.flush()  # ensures ev.id is assigned without committing
    return ev


def list_audit_events(*, action: str | None = None, limit: int = 100) -> list[AdminAuditEvent]:
    q = db.session.query(AdminAuditEvent)
    if action:
        q = q.filter(AdminAuditEvent.action == action)
    return q.order_by(AdminAuditEvent.created_at.desc(), AdminAuditEvent.id.desc()).limit(limit).all()
