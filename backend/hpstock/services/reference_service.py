# Overview: Service-layer operations for locations, brands and phone models.

from __future__ import annotations

from sqlalchemy import func

from ..extensions import db
from ..models import Brand, Location, PhoneModel, StockEvent
from ..validation import ConflictError, ReferenceNotFound, ValidationError
from .concurrency import lock_for_update, run_with_retry


def get_location(location_id: int) -> Location:
    location = db.session.query(Location).filter_by(id=location_id).first()
    if location is None:
        raise ReferenceNotFound(f"Location {location_id} not found")
    return location


def get_phone_model(phone_model_id: int) -> PhoneModel:
    phone_model = db.session.query(PhoneModel).filter_by(id=phone_model_id).first()
    if phone_model is None:
        raise ReferenceNotFound(f"Phone model {phone_model_id} not found")
    return phone_model


def list_locations() -> list[Location]:
    return db.session.query(Location).order_by(Location.name.asc()).all()


def find_location_by_name(name: str) -> Location | None:
    return (
        db.session.query(Location)
        .filter(func.upper(Location.name) == name.strip().upper())
        .first()
    )


def create_location(name: str, description: str | None = None) -> Location:
    def _op():
        clean = (name or "").strip()
        if not clean:
            raise ValidationError("Location name is required")
        if find_location_by_name(clean) is not None:
            raise ConflictError(f"Location {clean!r} already exists")

        location = Location(name=clean, description=description)
        db.session.add(location)
        db.session.commit()
        return location

    return run_with_retry(_op)


def list_brands() -> list[Brand]:
    return db.session.query(Brand).order_by(Brand.name.asc()).all()


def get_or_create_brand(name: str) -> Brand:
    clean = (name or "").strip()
    if not clean:
        raise ValidationError("Brand name is required")
    brand = db.session.query(Brand).filter(func.upper(Brand.name) == clean.upper()).first()
    if brand is None:
        brand = Brand(name=clean)
        db.session.add(brand)
        db.session.flush()
    return brand


def create_brand(name: str) -> Brand:
    def _op():
        clean = (name or "").strip()
        if db.session.query(Brand).filter(func.upper(Brand.name) == clean.upper()).first():
            raise ConflictError(f"Brand {clean!r} already exists")
        brand = get_or_create_brand(clean)
        db.session.commit()
        return brand

    return run_with_retry(_op)


def rename_brand(brand_id: int, new_name: str) -> Brand:
    def _op():
        brand = lock_for_update(db.session.query(Brand).filter_by(id=brand_id)).first()
        if brand is None:
            raise ReferenceNotFound(f"Brand {brand_id} not found")
        clean = (new_name or "").strip()
        if not clean:
            raise ValidationError("Brand name is required")
        clash = (
            db.session.query(Brand)
            .filter(func.upper(Brand.name) == clean.upper(), Brand.id != brand_id)
            .first()
        )
        if clash:
            raise ConflictError(f"Brand {clean!r} already exists")
        brand.name = clean
        db.session.commit()
        return brand

    return run_with_retry(_op)


def delete_brand(brand_id: int) -> None:
    """Delete a brand and its phone models, refusing when any model has stock history."""
    def _op():
        brand = lock_for_update(db.session.query(Brand).filter_by(id=brand_id)).first()
        if brand is None:
            raise ReferenceNotFound(f"Brand {brand_id} not found")

        model_ids = [m.id for m in brand.phone_models]
        if model_ids:
            in_use = (
                db.session.query(StockEvent.id)
                .filter(StockEvent.phone_model_id.in_(model_ids))
                .first()
            )
            if in_use:
                raise ConflictError("Brand has phone models with stock history and cannot be deleted")
            db.session.query(PhoneModel).filter(PhoneModel.id.in_(model_ids)).delete(synchronize_session=False)

        db.session.delete(brand)
        db.session.commit()

    return run_with_retry(_op)


def list_phone_models(brand_id: int | None = None) -> list[PhoneModel]:
    q = db.session.query(PhoneModel).join(Brand, Brand.id == PhoneModel.brand_id)
    if brand_id is not None:
        q = q.filter(PhoneModel.brand_id == brand_id)
    return q.order_by(Brand.name.asc(), PhoneModel.model.asc()).all()


def find_phone_model(brand: str, model: str, storage_capacity: str | None = None) -> PhoneModel | None:
    """
    Case-insensitive lookup by brand / model / storage.

    Falls back to a model without storage capacity when no exact storage
    match exists; "6/128" style RAM/storage values match on the storage part.
    """
    storage = (storage_capacity or "").strip()
    if "/" in storage:
        storage = storage.split("/", 1)[1].strip()

    q = (
        db.session.query(PhoneModel)
        .join(Brand, Brand.id == PhoneModel.brand_id)
        .filter(
            func.upper(Brand.name) == brand.strip().upper(),
            func.upper(PhoneModel.model) == model.strip().upper(),
        )
    )
    if storage:
        exact = q.filter(func.upper(PhoneModel.storage_capacity) == storage.upper()).first()
        if exact:
            return exact
    return q.filter(
        (PhoneModel.storage_capacity.is_(None)) | (PhoneModel.storage_capacity == "")
    ).first()


def create_phone_model(
    *,
    brand_id: int,
    model: str,
    storage_capacity: str | None = None,
    color: str | None = None,
    srp: int | None = None,
) -> PhoneModel:
    def _op():
        brand = db.session.query(Brand).filter_by(id=brand_id).first()
        if brand is None:
            raise ReferenceNotFound(f"Brand {brand_id} not found")

        clash = db.session.query(PhoneModel).filter_by(
            brand_id=brand_id,
            model=model,
            storage_capacity=storage_capacity,
            color=color,
        ).first()
        if clash:
            raise ConflictError("Phone model already exists")

        phone_model = PhoneModel(
            brand_id=brand_id,
            model=model,
            storage_capacity=storage_capacity,
            color=color,
            srp=srp,
        )
        db.session.add(phone_model)
        db.session.commit()
        return phone_model

    return run_with_retry(_op)


def update_phone_model_srp(phone_model_id: int, srp: int | None) -> PhoneModel:
    def _op():
        phone_model = lock_for_update(db.session.query(PhoneModel).filter_by(id=phone_model_id)).first()
        if phone_model is None:
            raise ReferenceNotFound(f"Phone model {phone_model_id} not found")
        phone_model.srp = srp
        db.session.commit()
        return phone_model

    return run_with_retry(_op)
