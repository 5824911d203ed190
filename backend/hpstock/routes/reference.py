# Overview: Flask API routes for locations, brands and phone models; parses input and returns JSON responses.

from flask import Blueprint, request

from ..decorators import handle_stock_errors
from ..models import Location, PhoneModel
from ..services import reference_service
from ..validation import (
    ModelValidationPolicy,
    ValidationError,
    enforce_rules_phone_model,
    validate_payload,
)

LOCATION_POLICY = ModelValidationPolicy(
    writable_fields={"name", "description"},
    required_on_create={"name"},
)

PHONE_MODEL_POLICY = ModelValidationPolicy(
    writable_fields={"brand_id", "model", "storage_capacity", "color", "srp"},
    required_on_create={"brand_id", "model"},
)

PHONE_MODEL_PATCH_POLICY = ModelValidationPolicy(writable_fields={"srp"})

reference_bp = Blueprint("reference", __name__, url_prefix="/api")


@reference_bp.get("/locations")
@handle_stock_errors
def list_locations_route():
    return {"locations": [loc.to_dict() for loc in reference_service.list_locations()]}


@reference_bp.post("/locations")
@handle_stock_errors
def create_location_route():
    payload = request.get_json(silent=True) or {}
    patch = validate_payload(model=Location, payload=payload, policy=LOCATION_POLICY, partial=False)
    location = reference_service.create_location(patch["name"], patch.get("description"))
    return location.to_dict(), 201


@reference_bp.get("/brands")
@handle_stock_errors
def list_brands_route():
    return {"brands": [brand.to_dict() for brand in reference_service.list_brands()]}


def _brand_name(payload: dict) -> str:
    name = payload.get("name")
    if not isinstance(name, str) or not name.strip():
        raise ValidationError("name is required")
    return name


@reference_bp.post("/brands")
@handle_stock_errors
def create_brand_route():
    payload = request.get_json(silent=True) or {}
    brand = reference_service.create_brand(_brand_name(payload))
    return brand.to_dict(), 201


@reference_bp.patch("/brands/<int:brand_id>")
@handle_stock_errors
def rename_brand_route(brand_id: int):
    payload = request.get_json(silent=True) or {}
    brand = reference_service.rename_brand(brand_id, _brand_name(payload))
    return brand.to_dict()


@reference_bp.delete("/brands/<int:brand_id>")
@handle_stock_errors
def delete_brand_route(brand_id: int):
    reference_service.delete_brand(brand_id)
    return {"deleted": True, "brand_id": brand_id}


@reference_bp.get("/phone-models")
@handle_stock_errors
def list_phone_models_route():
    brand_id = request.args.get("brand_id", type=int)
    models = reference_service.list_phone_models(brand_id=brand_id)
    return {"phone_models": [m.to_dict() for m in models]}


@reference_bp.post("/phone-models")
@handle_stock_errors
def create_phone_model_route():
    payload = request.get_json(silent=True) or {}
    patch = validate_payload(model=PhoneModel, payload=payload, policy=PHONE_MODEL_POLICY, partial=False)
    enforce_rules_phone_model(patch)
    phone_model = reference_service.create_phone_model(**patch)
    return phone_model.to_dict(), 201


@reference_bp.patch("/phone-models/<int:phone_model_id>")
@handle_stock_errors
def update_phone_model_route(phone_model_id: int):
    """Only the SRP is editable once a model exists."""
    payload = request.get_json(silent=True) or {}
    patch = validate_payload(model=PhoneModel, payload=payload, policy=PHONE_MODEL_PATCH_POLICY, partial=True)
    if "srp" not in patch:
        raise ValidationError("srp is required")
    enforce_rules_phone_model(patch)
    phone_model = reference_service.update_phone_model_srp(phone_model_id, patch["srp"])
    return phone_model.to_dict()
