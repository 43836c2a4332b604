# Overview: Flask API routes for the customer registry; parses input and returns JSON responses.

# backend/gasledger/routes/customers.py
"""
Customer registry routes.

Ledger-derived fields (balance_cents, total_purchases_cents, serial_number,
cylinder balances) are read-only here; the policy allowlist rejects them.
"""
from flask import Blueprint, request, current_app
from ..services import customer_service
from ..models import Customer
from ..validation import (
    ModelValidationPolicy,
    validate_payload,
    enforce_rules_customer,
    ValidationError,
    ConflictError,
)
from ..decorators import require_admin_confirmation

CUSTOMER_POLICY = ModelValidationPolicy(
    writable_fields={"name", "customer_type", "city", "village", "neighborhood", "phone", "whatsapp"},
    required_on_create={"name"},
)

customers_bp = Blueprint("customers", __name__, url_prefix="/api/customers")


def _flag(name: str) -> bool:
    return (request.args.get(name) or "").strip().lower() in {"1", "true", "yes"}


@customers_bp.get("")
def list_customers():
    """
    List customers, debtors first.

    Query params:
    - q: str (optional) - search name, phone, city or serial number
    - debtors_only: bool (optional)
    """
    customers = customer_service.list_customers(
        search=request.args.get("q"),
        debtors_only=_flag("debtors_only"),
    )
    return {"items": [c.to_dict() for c in customers], "count": len(customers)}


@customers_bp.get("/summary")
def customers_summary():
    return customer_service.debt_summary()


@customers_bp.get("/dashboard")
def customers_dashboard():
    """Revenue today, receivables, payables and debtors with no recent repayment."""
    return customer_service.dashboard_summary()


@customers_bp.post("")
def create_customer_route():
    payload = request.get_json(silent=True) or {}

    try:
        patch = validate_payload(model=Customer, payload=payload, policy=CUSTOMER_POLICY, partial=False)
        enforce_rules_customer(patch)
        created = customer_service.create_customer(patch=patch)
    except ValidationError as e:
        return {"error": str(e)}, 400
    except Exception:
        current_app.logger.exception("Failed to create customer")
        return {"error": "Failed to create customer"}, 500

    return created.to_dict(), 201


@customers_bp.get("/<int:customer_id>")
def get_customer_route(customer_id: int):
    c = customer_service.get_customer(customer_id)
    if not c:
        return {"error": "Customer not found"}, 404
    return c.to_dict()


@customers_bp.put("/<int:customer_id>")
def update_customer_route(customer_id: int):
    payload = request.get_json(silent=True) or {}

    try:
        patch = validate_payload(model=Customer, payload=payload, policy=CUSTOMER_POLICY, partial=True)
        enforce_rules_customer(patch)
    except ValidationError as e:
        return {"error": str(e)}, 400

    updated = customer_service.update_customer(customer_id=customer_id, patch=patch)
    if not updated:
        return {"error": "Customer not found"}, 404
    return updated.to_dict()


@customers_bp.delete("/<int:customer_id>")
@require_admin_confirmation
def delete_customer_route(customer_id: int):
    try:
        deleted = customer_service.delete_customer(customer_id=customer_id)
    except ConflictError as e:
        return {"error": str(e)}, 409

    if not deleted:
        return {"error": "Customer not found"}, 404
    return "", 204


@customers_bp.get("/<int:customer_id>/statement")
def customer_statement_route(customer_id: int):
    statement = customer_service.get_customer_statement(customer_id)
    if statement is None:
        return {"error": "Customer not found"}, 404
    return statement
