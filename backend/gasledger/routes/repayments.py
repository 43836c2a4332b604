# Overview: Flask API routes for debt repayments; parses input and returns JSON responses.

# backend/gasledger/routes/repayments.py
from flask import Blueprint, request, jsonify

from ..services import ledger_service
from ..validation import validate_repayment_payload, validate_date_payload, coerce_int
from ..decorators import require_admin_confirmation, json_error


repayments_bp = Blueprint("repayments", __name__, url_prefix="/api/repayments")


@repayments_bp.get("")
def list_repayments_route():
    repayments = ledger_service.list_repayments(
        customer_id=request.args.get("customer_id", type=int),
        limit=request.args.get("limit", type=int),
    )
    return jsonify({"items": [r.to_dict() for r in repayments], "count": len(repayments)})


@repayments_bp.post("")
def create_repayment_route():
    """
    Record a repayment.

    Request body:
    {
        "customer_id": 1,
        "amount_cents": 50000,
        "method": "cash" | "cheque",  (optional, default cash)
        "note": "...",                (optional)
        "occurred_at": "..."          (optional)
    }
    """
    try:
        data = validate_repayment_payload(request.get_json(silent=True))
        repayment = ledger_service.record_repayment(**data)
        return jsonify(repayment.to_dict()), 201
    except Exception as e:
        return json_error(e, "record repayment")


@repayments_bp.patch("/<int:repayment_id>/date")
def update_repayment_date_route(repayment_id: int):
    try:
        new_date = validate_date_payload(request.get_json(silent=True))
        repayment = ledger_service.update_repayment_date(repayment_id, new_date)
    except Exception as e:
        return json_error(e, "update repayment date")

    if repayment is None:
        return jsonify({"error": "Repayment not found"}), 404
    return jsonify(repayment.to_dict())


@repayments_bp.delete("/<int:repayment_id>")
@require_admin_confirmation
def delete_repayment_route(repayment_id: int):
    try:
        raw_customer = request.args.get("customer_id")
        customer_id = coerce_int("customer_id", raw_customer) if raw_customer else None
        deleted = ledger_service.delete_repayment(repayment_id, customer_id)
    except Exception as e:
        return json_error(e, "delete repayment")

    if deleted is None:
        return jsonify({"error": "Repayment not found"}), 404
    return jsonify({"deleted": deleted})
