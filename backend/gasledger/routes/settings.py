# Overview: Flask API routes for settings operations; parses input and returns JSON responses.

# backend/gasledger/routes/settings.py
from flask import Blueprint, request, jsonify

from ..services import settings_service
from ..decorators import require_admin_confirmation, json_error


settings_bp = Blueprint("settings", __name__, url_prefix="/api/settings")


@settings_bp.get("")
def get_settings_route():
    return jsonify(settings_service.get_settings())


@settings_bp.put("")
def update_settings_route():
    try:
        return jsonify(settings_service.update_settings(request.get_json(silent=True)))
    except Exception as e:
        return json_error(e, "update settings")


@settings_bp.put("/admin-password")
@require_admin_confirmation
def set_admin_password_route():
    """
    Set, change or clear ({"password": null}) the admin password.

    Changing an existing password requires the current one in X-Admin-Password.
    """
    payload = request.get_json(silent=True) or {}
    if "password" not in payload:
        return jsonify({"error": "password is required"}), 400
    try:
        settings_service.set_admin_password(payload["password"])
    except Exception as e:
        return json_error(e, "set admin password")
    return jsonify({"has_admin_password": settings_service.has_admin_password()})


@settings_bp.post("/admin-password/verify")
def verify_admin_password_route():
    payload = request.get_json(silent=True) or {}
    return jsonify({"valid": settings_service.verify_admin_password(payload.get("password"))})


@settings_bp.get("/customer-types")
def get_customer_types_route():
    return jsonify({"items": settings_service.get_customer_types()})


@settings_bp.put("/customer-types")
def save_customer_types_route():
    payload = request.get_json(silent=True) or {}
    try:
        types = settings_service.save_customer_types(payload.get("items"))
    except Exception as e:
        return json_error(e, "save customer types")
    return jsonify({"items": types})
