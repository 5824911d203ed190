from __future__ import annotations

from ..extensions import db
from hpstock.time_utils import to_iso_date, to_utc_z


# Event kinds
KIND_INCOMING = "INCOMING"
KIND_SOLD = "SOLD"
KIND_RETURN_IN = "RETURN_IN"
KIND_RETURN_OUT = "RETURN_OUT"
KIND_TRANSFER_IN = "TRANSFER_IN"
KIND_TRANSFER_OUT = "TRANSFER_OUT"
KIND_CORRECTION = "CORRECTION"

EVENT_KINDS = (
    KIND_INCOMING,
    KIND_SOLD,
    KIND_RETURN_IN,
    KIND_RETURN_OUT,
    KIND_TRANSFER_IN,
    KIND_TRANSFER_OUT,
    KIND_CORRECTION,
)

# A unit is "open" (held in stock) after one of these...
OPENING_KINDS = {KIND_INCOMING, KIND_RETURN_IN, KIND_TRANSFER_IN}
# ...and closed again by one of these. CORRECTION opens or closes by its sign.
CLOSING_KINDS = {KIND_SOLD, KIND_RETURN_OUT, KIND_TRANSFER_OUT}

# Unit status (read side)
STATUS_AVAILABLE = "available"
STATUS_SOLD = "sold"
STATUS_TRANSFERRED = "transferred"
STATUS_RETURNED = "returned"


class StockEvent(db.Model):
    """
    Append-only stock ledger row. Source of truth for every stock figure.

    occurred_on is the business date the transaction is attributed to;
    created_at is system time and only orders events for audit.

    qty is 1 for every kind except CORRECTION, whose qty is a signed delta.
    """
    __tablename__ = "stock_events"
    __table_args__ = (
        db.Index("ix_stock_events_imei_created", "imei", "created_at"),
        db.Index("ix_stock_events_key_day", "imei", "location_id", "phone_model_id", "occurred_on"),
        db.Index("ix_stock_events_occurred_on", "occurred_on"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    occurred_on = db.Column(db.Date, nullable=False)
    imei = db.Column(db.String(32), nullable=False)

    location_id = db.Column(db.Integer, db.ForeignKey("stock_locations.id"), nullable=False, index=True)
    phone_model_id = db.Column(db.Integer, db.ForeignKey("phone_models.id"), nullable=False, index=True)

    kind = db.Column(db.String(16), nullable=False, index=True)
    qty = db.Column(db.Integer, nullable=False, default=1)

    notes = db.Column(db.Text, nullable=True)
    # "metadata" is reserved on declarative classes
    meta = db.Column("metadata", db.JSON, nullable=False, default=dict)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    location = db.relationship("Location")
    phone_model = db.relationship("PhoneModel")

    def __repr__(self) -> str:
        return (
            f"<StockEvent id={self.id} kind={self.kind} imei={self.imei!r} "
            f"occurred_on={self.occurred_on} location_id={self.location_id}>"
        )

    @property
    def signed_qty(self) -> int:
        """Effect of this event on the unit's on-hand balance."""
        if self.kind == KIND_CORRECTION:
            return self.qty
        if self.kind in CLOSING_KINDS:
            return -self.qty
        return self.qty

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "occurred_on": to_iso_date(self.occurred_on),
            "imei": self.imei,
            "location_id": self.location_id,
            "location": self.location.name if self.location else None,
            "phone_model_id": self.phone_model_id,
            "phone_model": self.phone_model.display_name if self.phone_model else None,
            "kind": self.kind,
            "qty": self.qty,
            "notes": self.notes,
            "metadata": self.meta or {},
            "created_at": to_utc_z(self.created_at),
        }


class StockEntry(db.Model):
    """
    Derived daily stock row, rebuilt from stock_events by the reconciliation
    engine.

    imei NULL marks the (date, location, model) aggregate row, which always
    holds the sum of that day's unit rows. night_stock is never authoritative
    on its own; it is recomputed from the other fields.
    """
    __tablename__ = "stock_entries"
    __table_args__ = (
        db.UniqueConstraint("date", "location_id", "phone_model_id", "imei", name="uq_stock_entries_key"),
        db.Index("ix_stock_entries_unit_key", "imei", "location_id", "phone_model_id", "date"),
        db.Index("ix_stock_entries_date_location", "date", "location_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    date = db.Column(db.Date, nullable=False)
    location_id = db.Column(db.Integer, db.ForeignKey("stock_locations.id"), nullable=False, index=True)
    phone_model_id = db.Column(db.Integer, db.ForeignKey("phone_models.id"), nullable=False, index=True)
    imei = db.Column(db.String(32), nullable=True)

    morning_stock = db.Column(db.Integer, nullable=False, default=0)
    incoming = db.Column(db.Integer, nullable=False, default=0)
    add_stock = db.Column(db.Integer, nullable=False, default=0)
    sold = db.Column(db.Integer, nullable=False, default=0)
    returns = db.Column(db.Integer, nullable=False, default=0)
    adjustment = db.Column(db.Integer, nullable=False, default=0)
    night_stock = db.Column(db.Integer, nullable=False, default=0)

    # Populated on unit rows that close with a sale
    cost_price = db.Column(db.Integer, nullable=True)
    selling_price = db.Column(db.Integer, nullable=True)
    profit_loss = db.Column(db.Integer, nullable=True)
    sale_date = db.Column(db.Date, nullable=True)

    notes = db.Column(db.Text, nullable=True)

    # Set when the fold produced a negative night stock that had to be clamped
    is_inconsistent = db.Column(db.Boolean, nullable=False, default=False)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    location = db.relationship("Location")
    phone_model = db.relationship("PhoneModel")

    __mapper_args__ = {"version_id_col": version_id}

    FLOW_FIELDS = ("incoming", "add_stock", "sold", "returns", "adjustment")

    def __repr__(self) -> str:
        return (
            f"<StockEntry date={self.date} location_id={self.location_id} "
            f"phone_model_id={self.phone_model_id} imei={self.imei!r} night={self.night_stock}>"
        )

    @property
    def is_aggregate(self) -> bool:
        return self.imei is None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "date": to_iso_date(self.date),
            "location_id": self.location_id,
            "location": self.location.name if self.location else None,
            "phone_model_id": self.phone_model_id,
            "phone_model": self.phone_model.display_name if self.phone_model else None,
            "imei": self.imei,
            "morning_stock": self.morning_stock,
            "incoming": self.incoming,
            "add_stock": self.add_stock,
            "sold": self.sold,
            "returns": self.returns,
            "adjustment": self.adjustment,
            "night_stock": self.night_stock,
            "cost_price": self.cost_price,
            "selling_price": self.selling_price,
            "profit_loss": self.profit_loss,
            "sale_date": to_iso_date(self.sale_date),
            "notes": self.notes,
            "is_inconsistent": self.is_inconsistent,
            "updated_at": to_utc_z(self.updated_at),
        }
