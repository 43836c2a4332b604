# Overview: Flask API routes for invoices and manual debts; parses input and returns JSON responses.

# backend/gasledger/routes/invoices.py
"""
Invoice API Routes

DESIGN:
- Invoices are append-only apart from delete and date edit
- Every write goes through ledger_service, which updates the customer's
  balance and total purchases in the same transaction
- Deletes need the admin confirmation header when a password is set
"""

from flask import Blueprint, request, jsonify

from ..services import ledger_service
from ..validation import (
    validate_invoice_payload,
    validate_manual_debt_payload,
    validate_date_payload,
    coerce_int,
)
from ..decorators import require_admin_confirmation, json_error


invoices_bp = Blueprint("invoices", __name__, url_prefix="/api/invoices")


@invoices_bp.get("")
def list_invoices_route():
    """
    Query params:
    - customer_id: int (optional)
    - limit: int (optional)
    """
    invoices = ledger_service.list_invoices(
        customer_id=request.args.get("customer_id", type=int),
        limit=request.args.get("limit", type=int),
    )
    return jsonify({"items": [i.to_dict() for i in invoices], "count": len(invoices)})


@invoices_bp.post("")
def create_invoice_route():
    """
    Record a sale.

    Request body:
    {
        "customer_id": 1,
        "items": [{"product_id": 2, "quantity": 3}],
        "total_amount_cents": 150000,
        "cash_cents": 100000,
        "cheque_cents": 0,            (optional)
        "cheque_number": "A-123",     (optional)
        "cheque_date": "2024-05-01",  (optional)
        "occurred_at": "2024-04-30T10:00:00Z"  (optional, defaults to now)
    }

    debt_cents = total - cash - cheque is added to the customer's balance.
    """
    try:
        data = validate_invoice_payload(request.get_json(silent=True))
        invoice = ledger_service.record_invoice(**data)
        return jsonify(invoice.to_dict()), 201
    except Exception as e:
        return json_error(e, "record invoice")


@invoices_bp.post("/manual-debt")
def create_manual_debt_route():
    """Inject a pre-existing balance: {"customer_id", "amount_cents", "note"}."""
    try:
        data = validate_manual_debt_payload(request.get_json(silent=True))
        invoice = ledger_service.record_manual_debt(
            data["customer_id"],
            data["amount_cents"],
            data["note"],
            occurred_at=data["occurred_at"],
        )
        return jsonify(invoice.to_dict()), 201
    except Exception as e:
        return json_error(e, "record manual debt")


@invoices_bp.patch("/<int:invoice_id>/date")
def update_invoice_date_route(invoice_id: int):
    try:
        new_date = validate_date_payload(request.get_json(silent=True))
        invoice = ledger_service.update_invoice_date(invoice_id, new_date)
    except Exception as e:
        return json_error(e, "update invoice date")

    if invoice is None:
        return jsonify({"error": "Invoice not found"}), 404
    return jsonify(invoice.to_dict())


@invoices_bp.delete("/<int:invoice_id>")
@require_admin_confirmation
def delete_invoice_route(invoice_id: int):
    """
    Delete an invoice and reverse its effect on the customer.

    Query params:
    - customer_id: int (optional) - refuse if the invoice belongs to someone else
    """
    try:
        raw_customer = request.args.get("customer_id")
        customer_id = coerce_int("customer_id", raw_customer) if raw_customer else None
        deleted = ledger_service.delete_invoice(invoice_id, customer_id)
    except Exception as e:
        return json_error(e, "delete invoice")

    if deleted is None:
        return jsonify({"error": "Invoice not found"}), 404
    return jsonify({"deleted": deleted})
