from __future__ import annotations

from ..extensions import db
from hpstock.time_utils import to_utc_z


class Location(db.Model):
    """
    A physical shop location stock is held at.

    The shop runs two locations; transfers move units between them.
    """
    __tablename__ = "stock_locations"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(120), nullable=False, unique=True)
    description = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    def __repr__(self) -> str:
        return f"<Location id={self.id} name={self.name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class Brand(db.Model):
    __tablename__ = "brands"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(120), nullable=False, unique=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    def __repr__(self) -> str:
        return f"<Brand id={self.id} name={self.name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class PhoneModel(db.Model):
    """
    Phone model master data.

    SRP (suggested retail price) is the default selling price offered when a
    unit of this model is sold. Prices are whole Rupiah.
    """
    __tablename__ = "phone_models"
    __table_args__ = (
        db.UniqueConstraint(
            "brand_id", "model", "storage_capacity", "color",
            name="uq_phone_models_brand_model_storage_color",
        ),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    brand_id = db.Column(db.Integer, db.ForeignKey("brands.id"), nullable=False, index=True)
    model = db.Column(db.String(120), nullable=False)
    storage_capacity = db.Column(db.String(32), nullable=True)
    color = db.Column(db.String(64), nullable=True)
    srp = db.Column(db.Integer, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    brand = db.relationship("Brand", backref=db.backref("phone_models", lazy=True))

    def __repr__(self) -> str:
        return f"<PhoneModel id={self.id} model={self.model!r} brand_id={self.brand_id}>"

    @property
    def display_name(self) -> str:
        parts = [self.brand.name if self.brand else None, self.model, self.storage_capacity]
        return " ".join(p for p in parts if p)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "brand_id": self.brand_id,
            "brand": self.brand.name if self.brand else None,
            "model": self.model,
            "storage_capacity": self.storage_capacity,
            "color": self.color,
            "srp": self.srp,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
