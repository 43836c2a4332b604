from __future__ import annotations
from datetime import datetime

from dataclasses import dataclass
from typing import Any

from sqlalchemy import Boolean, Integer, String, Text, DateTime
from sqlalchemy.orm import DeclarativeMeta

from gasledger.time_utils import parse_iso_datetime


# Upper bound for any single amount: 99,999,999.99 in minor units
MAX_AMOUNT_CENTS = 9_999_999_999

PHONE_DIGITS = 10

REPAYMENT_METHODS = {"cash", "cheque"}
CYLINDER_DIRECTIONS = {"out", "in"}


class ValidationError(ValueError):
    """400-level input problem."""

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


class ConflictError(ValueError):
    """409-level business rule conflict (e.g., deleting a customer with history)."""


@dataclass(frozen=True)
class ModelValidationPolicy:
    """
    Central policy layer:
    - writable_fields: what clients are allowed to set
    - required_on_create: fields required for POST
    """
    writable_fields: set[str]
    required_on_create: set[str] = None  # type: ignore


def _columns_by_key(model: DeclarativeMeta) -> dict[str, Any]:
    mapper = model.__mapper__
    return {c.key: c for c in mapper.columns}


def coerce_int(field: str, value: Any) -> int:
    """Strict integer coercion: rejects bools, floats, decimals and scientific notation."""
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{field} must be an integer")
        if "e" in stripped.lower():
            raise ValidationError(f"{field} must be a plain integer (scientific notation not allowed)")
        if "." in stripped:
            raise ValidationError(f"{field} must be an integer (no decimals)")
        try:
            return int(stripped)
        except ValueError:
            raise ValidationError(f"{field} must be an integer")
    if isinstance(value, float):
        raise ValidationError(f"{field} must be an integer, not a decimal")
    raise ValidationError(f"{field} must be an integer")


def coerce_datetime_field(field: str, value: Any) -> datetime:
    if isinstance(value, datetime):
        return value
    if isinstance(value, str):
        try:
            dt = parse_iso_datetime(value)
        except ValueError:
            raise ValidationError(f"{field} must be an ISO-8601 datetime")
        if dt is None:
            raise ValidationError(f"{field} must be an ISO-8601 datetime")
        return dt
    raise ValidationError(f"{field} must be a datetime")


def _coerce_value(col, value: Any):
    coltype = col.type

    if value is None:
        return None
    if isinstance(coltype, Integer):
        return coerce_int(col.key, value)
    if isinstance(coltype, Boolean):
        if isinstance(value, bool):
            return value
        return bool(value)
    if isinstance(coltype, DateTime):
        return coerce_datetime_field(col.key, value)
    if isinstance(coltype, (String, Text)):
        return str(value).strip()
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
    Returns a cleaned patch dict with only writable fields.
    """
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    required = policy.required_on_create or set()
    if not partial:
        missing = sorted(f for f in required if f not in payload)
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")

    cols = _columns_by_key(model)

    for k in payload.keys():
        if k not in policy.writable_fields:
            raise ValidationError(f"Field not allowed: {k}")
        if k not in cols:
            raise ValidationError(f"Unknown field: {k}")

    patch: dict = {}

    for k, raw in payload.items():
        col = cols[k]

        if raw is None:
            if not col.nullable:
                raise ValidationError(f"{k} cannot be null")
            patch[k] = None
            continue

        val = _coerce_value(col, raw)

        if isinstance(col.type, (String, Text)) and not col.nullable:
            if isinstance(val, str) and val == "":
                raise ValidationError(f"{k} cannot be blank")

        if isinstance(col.type, String) and col.type.length and isinstance(val, str):
            if len(val) > col.type.length:
                raise ValidationError(f"{k} exceeds max length {col.type.length}")

        patch[k] = val

    return patch


# =============================================================================
# DOMAIN RULES
# =============================================================================

def enforce_rules_customer(patch: dict) -> None:
    """Phone, when present, must be exactly ten digits."""
    phone = patch.get("phone")
    if phone:
        if not phone.isdigit() or len(phone) != PHONE_DIGITS:
            raise ValidationError(f"phone must be exactly {PHONE_DIGITS} digits")


def _amount(payload: dict, field: str, *, required: bool = True, allow_zero: bool = False) -> int:
    if field not in payload or payload[field] is None:
        if required:
            raise ValidationError(f"{field} is required")
        return 0
    value = coerce_int(field, payload[field])
    if value < 0 or (value == 0 and not allow_zero):
        raise ValidationError(f"{field} must be {'>= 0' if allow_zero else '> 0'}")
    if value > MAX_AMOUNT_CENTS:
        raise ValidationError(f"{field} cannot exceed {MAX_AMOUNT_CENTS}")
    return value


def _optional_text(payload: dict, field: str, max_length: int = 255) -> str | None:
    raw = payload.get(field)
    if raw is None:
        return None
    text = str(raw).strip()
    if len(text) > max_length:
        raise ValidationError(f"{field} exceeds max length {max_length}")
    return text or None


def _optional_date(payload: dict, field: str = "occurred_at") -> datetime | None:
    raw = payload.get(field)
    if raw is None or raw == "":
        return None
    return coerce_datetime_field(field, raw)


def validate_invoice_payload(payload: dict) -> dict:
    """Validate a point-of-sale invoice request before it reaches the ledger."""
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")
    if "customer_id" not in payload:
        raise ValidationError("customer_id is required")

    items = payload.get("items")
    if not isinstance(items, list) or not items:
        raise ValidationError("items must be a non-empty list")

    cleaned_items = []
    for idx, item in enumerate(items):
        if not isinstance(item, dict):
            raise ValidationError(f"items[{idx}] must be an object")
        if item.get("product_id") is None:
            raise ValidationError(f"items[{idx}].product_id is required")
        quantity = coerce_int(f"items[{idx}].quantity", item.get("quantity", 1))
        if quantity <= 0:
            raise ValidationError(f"items[{idx}].quantity must be > 0")
        cleaned_items.append({
            "product_id": coerce_int(f"items[{idx}].product_id", item["product_id"]),
            "quantity": quantity,
        })

    return {
        "customer_id": coerce_int("customer_id", payload["customer_id"]),
        "items": cleaned_items,
        "total_amount_cents": _amount(payload, "total_amount_cents"),
        "cash_cents": _amount(payload, "cash_cents", required=False, allow_zero=True),
        "cheque_cents": _amount(payload, "cheque_cents", required=False, allow_zero=True),
        "cheque_number": _optional_text(payload, "cheque_number", 64),
        "cheque_date": _optional_date(payload, "cheque_date"),
        "occurred_at": _optional_date(payload),
    }


def validate_manual_debt_payload(payload: dict) -> dict:
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")
    if "customer_id" not in payload:
        raise ValidationError("customer_id is required")
    return {
        "customer_id": coerce_int("customer_id", payload["customer_id"]),
        "amount_cents": _amount(payload, "amount_cents"),
        "note": _optional_text(payload, "note", 200) or "",
        "occurred_at": _optional_date(payload),
    }


def validate_repayment_payload(payload: dict) -> dict:
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")
    if "customer_id" not in payload:
        raise ValidationError("customer_id is required")

    method = str(payload.get("method") or "cash").strip().lower()
    if method not in REPAYMENT_METHODS:
        raise ValidationError(f"method must be one of {sorted(REPAYMENT_METHODS)}")

    return {
        "customer_id": coerce_int("customer_id", payload["customer_id"]),
        "amount_cents": _amount(payload, "amount_cents"),
        "method": method,
        "note": _optional_text(payload, "note"),
        "occurred_at": _optional_date(payload),
    }


def validate_cylinder_payload(payload: dict) -> dict:
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")
    if "customer_id" not in payload:
        raise ValidationError("customer_id is required")
    if payload.get("product_id") is None and not payload.get("product_name"):
        raise ValidationError("product_id or product_name is required")

    direction = str(payload.get("type") or "").strip().lower()
    if direction not in CYLINDER_DIRECTIONS:
        raise ValidationError(f"type must be one of {sorted(CYLINDER_DIRECTIONS)}")

    quantity = coerce_int("quantity", payload.get("quantity"))
    if quantity <= 0:
        raise ValidationError("quantity must be > 0")

    product_id = payload.get("product_id")
    return {
        "customer_id": coerce_int("customer_id", payload["customer_id"]),
        "product_id": coerce_int("product_id", product_id) if product_id is not None else None,
        "product_name": _optional_text(payload, "product_name", 128),
        "quantity": quantity,
        "direction": direction,
        "note": _optional_text(payload, "note"),
        "occurred_at": _optional_date(payload),
    }


def validate_date_payload(payload: dict) -> datetime:
    if not isinstance(payload, dict) or payload.get("occurred_at") in (None, ""):
        raise ValidationError("occurred_at is required")
    return coerce_datetime_field("occurred_at", payload["occurred_at"])
