# Overview: Flask API routes for dashboards and analytics over the stock ledger.

from flask import Blueprint, request

from ..decorators import handle_stock_errors
from ..services import reporting_service, stock_service
from ..validation import parse_date_field

reports_bp = Blueprint("reports", __name__, url_prefix="/api/reports")


def _reference_date():
    return stock_service.resolve_today(parse_date_field("date", request.args.get("date")))


def _days(default: int = 30) -> int:
    days = request.args.get("days", default=default, type=int)
    return max(1, min(days, 366))


@reports_bp.get("/kpi")
@handle_stock_errors
def kpi_route():
    return reporting_service.kpi_summary(
        _reference_date(),
        location_id=request.args.get("location_id", type=int),
    )


@reports_bp.get("/dashboard")
@handle_stock_errors
def dashboard_route():
    return reporting_service.dashboard_stats(
        _reference_date(),
        location_id=request.args.get("location_id", type=int),
    )


@reports_bp.get("/trend")
@handle_stock_errors
def trend_route():
    return reporting_service.trend_report(
        _reference_date(),
        days=_days(),
        location_id=request.args.get("location_id", type=int),
    )


@reports_bp.get("/brands")
@handle_stock_errors
def brands_route():
    brands = reporting_service.brand_performance(
        _reference_date(),
        days=_days(),
        location_id=request.args.get("location_id", type=int),
    )
    return {"brands": brands}


@reports_bp.get("/low-stock")
@handle_stock_errors
def low_stock_route():
    items = reporting_service.low_stock(
        _reference_date(),
        threshold=request.args.get("threshold", type=int),
        location_id=request.args.get("location_id", type=int),
    )
    return {"items": items}
