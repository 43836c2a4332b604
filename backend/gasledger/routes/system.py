# backend/gasledger/routes/system.py
"""
System endpoints: health, reconciliation, replication and snapshots.

Snapshot import and factory reset replace or destroy every record, so they
require the admin confirmation header when a password is configured.
"""

import time
from flask import Blueprint, current_app, request, jsonify
from ..extensions import db
from ..models import Customer, Product, Invoice, Repayment, CylinderTransaction
from ..services import reconciliation_service, sync_service, snapshot_service
from ..decorators import require_admin_confirmation, json_error
from gasledger.time_utils import utcnow, to_utc_z

system_bp = Blueprint("system", __name__)


def check_database_health() -> dict:
    """
    Check database connectivity and basic operations.

    Returns dict with status and details.
    """
    start_time = time.time()
    try:
        details = {
            "customers": db.session.query(Customer).count(),
            "products": db.session.query(Product).count(),
            "invoices": db.session.query(Invoice).count(),
            "repayments": db.session.query(Repayment).count(),
            "cylinder_transactions": db.session.query(CylinderTransaction).count(),
        }
        elapsed_ms = (time.time() - start_time) * 1000
        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": details,
        }
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Database health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Database error",
        }


@system_bp.get("/api/health")
def health():
    database = check_database_health()
    status = 200 if database["status"] == "healthy" else 503
    return jsonify({
        "status": database["status"],
        "timestamp": to_utc_z(utcnow()),
        "database": database,
        "sync": sync_service.get_sync_status() if database["status"] == "healthy" else None,
    }), status


@system_bp.post("/api/system/reconcile")
def reconcile_route():
    """Recompute every cached balance from the history. ?dry_run=true reports only."""
    dry_run = (request.args.get("dry_run") or "").strip().lower() in {"1", "true", "yes"}
    try:
        return jsonify(reconciliation_service.reconcile_all(dry_run=dry_run))
    except Exception as e:
        return json_error(e, "reconcile balances")


@system_bp.get("/api/system/sync")
def sync_status_route():
    return jsonify(sync_service.get_sync_status())


@system_bp.post("/api/system/sync/push")
def sync_push_route():
    result = sync_service.push_pending()
    return jsonify(result), 200 if result["ok"] else 502


@system_bp.post("/api/system/sync/pull")
@require_admin_confirmation
def sync_pull_route():
    """Replace local data with the remote snapshot. ?force=true discards pending local changes."""
    force = (request.args.get("force") or "").strip().lower() in {"1", "true", "yes"}
    try:
        return jsonify(sync_service.pull_snapshot(force=force))
    except sync_service.SyncError as e:
        if not current_app.config.get("SYNC_REMOTE_URL"):
            return jsonify({"error": str(e)}), 400
        return json_error(e, "pull snapshot")
    except Exception as e:
        return json_error(e, "pull snapshot")


@system_bp.get("/api/system/snapshot")
def export_snapshot_route():
    return jsonify(snapshot_service.export_snapshot())


@system_bp.post("/api/system/snapshot")
@require_admin_confirmation
def import_snapshot_route():
    try:
        return jsonify(snapshot_service.import_snapshot(request.get_json(silent=True)))
    except Exception as e:
        return json_error(e, "import snapshot")


@system_bp.post("/api/system/factory-reset")
@require_admin_confirmation
def factory_reset_route():
    try:
        snapshot_service.factory_reset()
    except Exception as e:
        return json_error(e, "factory reset")
    return jsonify({"ok": True})
