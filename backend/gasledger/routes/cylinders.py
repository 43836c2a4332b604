# Overview: Flask API routes for cylinder loans and returns; parses input and returns JSON responses.

# backend/gasledger/routes/cylinders.py
"""
Cylinder Tracking Routes

"out" loans cylinders to a customer, "in" takes them back. A return larger
than what the customer holds is refused with 400 and a details object:

    {"error": "...", "details": {"customer_id", "product_id",
                                 "requested_quantity", "holding"}}
"""

from flask import Blueprint, request, jsonify

from ..services import ledger_service, products_service, customer_service
from ..services.guard_service import get_cylinder_holdings, outstanding_cylinder_totals
from ..validation import validate_cylinder_payload, validate_date_payload, coerce_int, ValidationError
from ..decorators import require_admin_confirmation, json_error


cylinders_bp = Blueprint("cylinders", __name__, url_prefix="/api/cylinders")


@cylinders_bp.get("/transactions")
def list_cylinder_transactions_route():
    """
    Query params:
    - customer_id: int (optional)
    - product_id: int (optional)
    - limit: int (optional)
    """
    txs = ledger_service.list_cylinder_transactions(
        customer_id=request.args.get("customer_id", type=int),
        product_id=request.args.get("product_id", type=int),
        limit=request.args.get("limit", type=int),
    )
    return jsonify({"items": [t.to_dict() for t in txs], "count": len(txs)})


@cylinders_bp.post("/transactions")
def create_cylinder_transaction_route():
    """
    Record a cylinder movement.

    Request body:
    {
        "customer_id": 1,
        "product_id": 2,          (or "product_name": "12kg")
        "quantity": 3,
        "type": "out" | "in",
        "note": "...",            (optional)
        "occurred_at": "..."      (optional)
    }
    """
    try:
        data = validate_cylinder_payload(request.get_json(silent=True))
        product_id = data["product_id"]
        if product_id is None:
            product = products_service.find_product_by_name(data["product_name"])
            if product is None:
                raise ValidationError(f"Product '{data['product_name']}' not found")
            product_id = product.id

        tx = ledger_service.record_cylinder_transaction(
            customer_id=data["customer_id"],
            product_id=product_id,
            quantity=data["quantity"],
            direction=data["direction"],
            note=data["note"],
            occurred_at=data["occurred_at"],
        )
        return jsonify(tx.to_dict()), 201
    except Exception as e:
        return json_error(e, "record cylinder transaction")


@cylinders_bp.patch("/transactions/<int:tx_id>/date")
def update_cylinder_transaction_date_route(tx_id: int):
    try:
        new_date = validate_date_payload(request.get_json(silent=True))
        tx = ledger_service.update_cylinder_transaction_date(tx_id, new_date)
    except Exception as e:
        return json_error(e, "update cylinder transaction date")

    if tx is None:
        return jsonify({"error": "Cylinder transaction not found"}), 404
    return jsonify(tx.to_dict())


@cylinders_bp.delete("/transactions/<int:tx_id>")
@require_admin_confirmation
def delete_cylinder_transaction_route(tx_id: int):
    try:
        raw_customer = request.args.get("customer_id")
        customer_id = coerce_int("customer_id", raw_customer) if raw_customer else None
        deleted = ledger_service.delete_cylinder_transaction(tx_id, customer_id)
    except Exception as e:
        return json_error(e, "delete cylinder transaction")

    if deleted is None:
        return jsonify({"error": "Cylinder transaction not found"}), 404
    return jsonify({"deleted": deleted})


@cylinders_bp.get("/holdings/<int:customer_id>")
def customer_holdings_route(customer_id: int):
    if customer_service.get_customer(customer_id) is None:
        return jsonify({"error": "Customer not found"}), 404
    return jsonify({"customer_id": customer_id, "holdings": get_cylinder_holdings(customer_id)})


@cylinders_bp.get("/summary")
def cylinders_summary_route():
    """Units out on loan per product, and how many customers hold any."""
    return jsonify(outstanding_cylinder_totals())
