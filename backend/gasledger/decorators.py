# Overview: Request decorators and shared error mapping for API routes.

from functools import wraps
from flask import request, jsonify, current_app

from .services import settings_service
from .services.guard_service import CylinderReturnError
from .services.ledger_service import LedgerError, CustomerNotFoundError
from .services.sync_service import SyncError
from .validation import ValidationError, ConflictError

ADMIN_PASSWORD_HEADER = "X-Admin-Password"


def require_admin_confirmation(f):
    """
    Confirm a destructive action with the admin password.

    The password travels in the X-Admin-Password header. When no admin
    password has been configured, the action is allowed.

    SECURITY: Returns 403 on a missing or wrong password.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        password = request.headers.get(ADMIN_PASSWORD_HEADER)
        if not settings_service.verify_admin_password(password):
            return jsonify({"error": "Admin password required"}), 403
        return f(*args, **kwargs)

    return decorated_function


def json_error(exc: Exception, action: str):
    """Map a service exception to a JSON error response."""
    if isinstance(exc, CylinderReturnError):
        return jsonify({"error": str(exc), "details": exc.details}), 400
    if isinstance(exc, ValidationError):
        return jsonify({"error": str(exc)}), 400
    if isinstance(exc, ConflictError):
        return jsonify({"error": str(exc)}), 409
    if isinstance(exc, CustomerNotFoundError):
        return jsonify({"error": str(exc)}), 404
    if isinstance(exc, LedgerError):
        return jsonify({"error": str(exc), "details": exc.details}), 400
    if isinstance(exc, SyncError):
        return jsonify({"error": str(exc)}), 502
    current_app.logger.exception("Failed to %s", action)
    return jsonify({"error": "Internal server error"}), 500
