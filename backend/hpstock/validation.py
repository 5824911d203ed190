from __future__ import annotations
from datetime import date
from hpstock.time_utils import parse_iso_date

from dataclasses import dataclass
from typing import Any

from sqlalchemy import Boolean, Date, Integer, JSON, String, Text
from sqlalchemy.orm import DeclarativeMeta

from .models.stock import EVENT_KINDS, KIND_CORRECTION


# Maximum price: Rp 999,999,999,999
# This prevents database overflow issues and nonsensical prices
MAX_PRICE = 999_999_999_999

PRICE_METADATA_KEYS = ("cost_price", "selling_price")


class StockError(ValueError):
    """
    Base for every error the stock core reports to its callers.

    code is a stable identifier the front end switches on to show a
    kind-specific message; http_status is what the routes answer with.
    """
    code = "stock_error"
    http_status = 400


class ValidationError(StockError):
    """400-level input problem."""
    code = "validation_error"


class ReferenceNotFound(StockError):
    """Unknown location / phone model / brand id."""
    code = "reference_not_found"
    http_status = 404


class DuplicateImeiOpen(StockError):
    """The IMEI already has an open incoming-type event."""
    code = "duplicate_imei_open"
    http_status = 409


class UnitNotAvailable(StockError):
    """No open event for the IMEI at this location, or zero night stock."""
    code = "unit_not_available"
    http_status = 409


class ConcurrencyConflict(StockError):
    """Two writers raced on the same key; the caller should retry."""
    code = "concurrency_conflict"
    http_status = 409


class ConflictError(StockError):
    """409-level business rule conflict (e.g., duplicate location name)."""
    code = "conflict"
    http_status = 409


@dataclass(frozen=True)
class ModelValidationPolicy:
    """
    Central policy layer:
    - writable_fields: what clients are allowed to set (security boundary)
    - required_on_create: fields required for POST
    - field_aliases: JSON key -> model attribute, for columns whose attribute
      name differs from the wire name (e.g., "metadata" -> meta)
    """
    writable_fields: set[str]
    required_on_create: set[str] = None  # type: ignore
    field_aliases: dict[str, str] | None = None


def _columns_by_key(model: DeclarativeMeta) -> dict[str, Any]:
    mapper = model.__mapper__
    return {c.key: c for c in mapper.column_attrs}


def _coerce_value(key: str, col, value: Any):
    coltype = col.columns[0].type

    if value is None:
        return None

    # Integers - strict validation to reject floats and scientific notation
    if isinstance(coltype, Integer):
        # Already an int (but not bool which is a subclass of int)
        if isinstance(value, int) and not isinstance(value, bool):
            return value
        # String input - must be plain digits (with optional leading minus)
        if isinstance(value, str):
            stripped = value.strip()
            if not stripped:
                raise ValidationError(f"{key} must be an integer")
            # Reject scientific notation (e.g., "1e15", "1E10")
            if 'e' in stripped.lower():
                raise ValidationError(f"{key} must be a plain integer (scientific notation not allowed)")
            # Reject decimal points (e.g., "12.5")
            if '.' in stripped:
                raise ValidationError(f"{key} must be an integer (no decimals)")
            try:
                return int(stripped)
            except ValueError:
                raise ValidationError(f"{key} must be an integer")
        # Reject floats explicitly
        if isinstance(value, float):
            raise ValidationError(f"{key} must be an integer, not a decimal")
        # Other types
        raise ValidationError(f"{key} must be an integer")

    # Booleans
    if isinstance(coltype, Boolean):
        if isinstance(value, bool):
            return value
        # fallback: truthiness
        return bool(value)

    # Business dates (accept YYYY-MM-DD)
    if isinstance(coltype, Date):
        if isinstance(value, date):
            return value
        if isinstance(value, str):
            try:
                d = parse_iso_date(value)
            except ValueError:
                raise ValidationError(f"{key} must be an ISO-8601 date (YYYY-MM-DD)")
            if d is None:
                raise ValidationError(f"{key} must be an ISO-8601 date (YYYY-MM-DD)")
            return d
        raise ValidationError(f"{key} must be a date")

    # JSON maps
    if isinstance(coltype, JSON):
        if not isinstance(value, dict):
            raise ValidationError(f"{key} must be an object")
        return value

    # Strings / Text
    if isinstance(coltype, (String, Text)):
        return str(value).strip()

    # Default: leave as-is
    return value


def validate_payload(
    *,
    model: DeclarativeMeta,
    payload: dict,
    policy: ModelValidationPolicy,
    partial: bool,
) -> dict:
    """
    Validates + normalizes incoming JSON against:
    - SQLAlchemy column metadata (nullable, type, String length)
    - a policy allowlist (writable_fields)
    - required_on_create (if partial=False)
    Returns a cleaned patch dict with only writable fields, keyed by the
    wire name.

    partial=False: create semantics (enforce required_on_create)
    partial=True: patch semantics (validate only provided keys)
    """
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    required = policy.required_on_create or set()
    if not partial:
        missing = sorted(f for f in required if payload.get(f) in (None, ""))
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")

    cols = _columns_by_key(model)
    aliases = policy.field_aliases or {}

    # Reject unknown / non-writable fields
    for k in payload.keys():
        if k not in policy.writable_fields:
            raise ValidationError(f"Field not allowed: {k}")
        if aliases.get(k, k) not in cols:
            raise ValidationError(f"Unknown field: {k}")

    patch: dict = {}

    for k, raw in payload.items():
        col = cols[aliases.get(k, k)]
        column = col.columns[0]

        # NULL handling
        if raw is None:
            if not column.nullable:
                raise ValidationError(f"{k} cannot be null")
            patch[k] = None
            continue

        val = _coerce_value(k, col, raw)

        # Blank string check for non-nullable text fields
        if isinstance(column.type, (String, Text)) and not column.nullable:
            if isinstance(val, str) and val == "":
                raise ValidationError(f"{k} cannot be blank")

        # Max length check for String(n)
        if isinstance(column.type, String) and column.type.length and isinstance(val, str):
            if len(val) > column.type.length:
                raise ValidationError(f"{k} exceeds max length {column.type.length}")

        patch[k] = val

    return patch


def _check_price(name: str, value) -> None:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"{name} must be an integer")
    if value < 0:
        raise ValidationError(f"{name} must be >= 0")
    if value > MAX_PRICE:
        raise ValidationError(f"{name} cannot exceed {MAX_PRICE}")


def enforce_rules_phone_model(patch: dict) -> None:
    if "srp" in patch and patch["srp"] is not None:
        _check_price("srp", patch["srp"])


def enforce_rules_stock_event(
    *,
    kind: str,
    imei: str | None,
    qty: int | None,
    occurred_on: date | None,
    metadata: dict | None,
    today: date,
    min_imei_length: int = 10,
) -> None:
    """
    Shape rules for a proposed ledger event. Pure: no database access.

    The ledger-dependent rules (duplicate open IMEI, unit availability,
    transfer pairing) are checked by stock_service under the IMEI lock.
    """
    if kind not in EVENT_KINDS:
        raise ValidationError(f"kind must be one of {', '.join(EVENT_KINDS)}")

    if imei is None or not str(imei).strip():
        raise ValidationError("imei is required")
    if len(str(imei).strip()) < min_imei_length:
        raise ValidationError(f"imei must be at least {min_imei_length} characters")

    if occurred_on is None:
        raise ValidationError("occurred_on is required")
    if occurred_on > today:
        raise ValidationError("occurred_on cannot be in the future")

    if qty is None or isinstance(qty, bool) or not isinstance(qty, int):
        raise ValidationError("qty must be an integer")
    if kind == KIND_CORRECTION:
        # Signed delta applied to the unit's adjustment bucket; an amendment
        # carries only notes or prices
        amendment = isinstance(metadata, dict) and bool(metadata.get("amendment"))
        if amendment and qty != 0:
            raise ValidationError("qty must be 0 for an amendment CORRECTION")
        if not amendment and qty == 0:
            raise ValidationError("qty must be non-zero for CORRECTION")
    elif qty != 1:
        raise ValidationError(f"qty must be 1 for {kind}")

    if metadata is not None:
        if not isinstance(metadata, dict):
            raise ValidationError("metadata must be an object")
        for key in PRICE_METADATA_KEYS:
            if metadata.get(key) is not None:
                _check_price(f"metadata.{key}", metadata[key])


def parse_date_field(name: str, value) -> date | None:
    """Parse an optional YYYY-MM-DD request value, raising ValidationError on bad input."""
    try:
        return parse_iso_date(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{name} must be an ISO-8601 date (YYYY-MM-DD)")
