# Overview: Flask API routes for administrative stock operations; reset, unit deletion, bulk import.

from flask import Blueprint, request

from ..decorators import handle_stock_errors
from ..services import import_service, stock_service
from ..services.audit_service import list_audit_events

"""
Every route here is destructive or bulk. Each requires an explicit
confirmation token in the body and is recorded in admin_audit_events.
"""

admin_bp = Blueprint("admin", __name__, url_prefix="/api/admin")


@admin_bp.post("/reset")
@handle_stock_errors
def reset_route():
    """
    Request body:
    {"confirmation_token": "RESET DATA", "actor": str (optional)}
    """
    payload = request.get_json(silent=True) or {}
    summary = stock_service.reset_all(
        confirmation_token=payload.get("confirmation_token"),
        actor=payload.get("actor"),
    )
    return summary


@admin_bp.delete("/units/<imei>")
@handle_stock_errors
def delete_unit_route(imei: str):
    """
    Request body:
    {"confirmation_token": "DELETE <imei>", "authorized_by": str}
    """
    payload = request.get_json(silent=True) or {}
    return stock_service.delete_unit(
        imei=imei,
        confirmation_token=payload.get("confirmation_token"),
        authorized_by=payload.get("authorized_by"),
    )


@admin_bp.post("/import")
@handle_stock_errors
def import_route():
    payload = request.get_json(silent=True) or {}
    result = import_service.import_seed_rows(
        payload.get("rows"),
        actor=payload.get("actor"),
    )
    status = 201 if result.imported else 400
    return result.to_dict(), status


@admin_bp.get("/audit")
@handle_stock_errors
def audit_route():
    limit = max(1, min(request.args.get("limit", default=100, type=int), 500))
    events = list_audit_events(action=request.args.get("action"), limit=limit)
    return {"events": [ev.to_dict() for ev in events]}
