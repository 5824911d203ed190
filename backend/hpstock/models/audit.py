from __future__ import annotations

from ..extensions import db
from hpstock.time_utils import to_utc_z


class AdminAuditEvent(db.Model):
    """
    Append-only record of administrative actions that bypass the ledger's
    append-only discipline (unit deletion, full reset), bulk-load it or
    amend a unit's recorded details.

    Not cleared by a full reset.
    """
    __tablename__ = "admin_audit_events"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)

    action = db.Column(db.String(64), nullable=False, index=True)  # e.g., unit.deleted, unit.amended, data.reset
    actor = db.Column(db.String(120), nullable=True)
    imei = db.Column(db.String(32), nullable=True, index=True)
    detail = db.Column(db.JSON, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "action": self.action,
            "actor": self.actor,
            "imei": self.imei,
            "detail": self.detail,
            "created_at": to_utc_z(self.created_at),
        }
