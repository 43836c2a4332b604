# Overview: Service-layer operations for remote replication; outbox, push and pull.

"""
Remote Replication Service

The local database is the source of truth. Every ledger write appends an
outbox entry in the same DB transaction; pushing that outbox to the remote
replica happens afterwards, in the background, and its failure only sets
the sticky needs_sync flag. A push never blocks, rejects or rolls back the
local write it describes.

Remote contract (JSON over HTTP):
- POST {SYNC_REMOTE_URL}/changes   body {"changes": [outbox entry, ...]}
- GET  {SYNC_REMOTE_URL}/snapshot  returns an export_snapshot()-shaped document
"""

from __future__ import annotations

import json
import threading

import httpx
from flask import current_app

from ..extensions import db
from ..models import SyncOutboxEntry
from ..validation import ConflictError
from . import settings_service


OP_UPSERT = "UPSERT"
OP_DELETE = "DELETE"

ENTITY_CUSTOMER = "customer"
ENTITY_PRODUCT = "product"
ENTITY_INVOICE = "invoice"
ENTITY_REPAYMENT = "repayment"
ENTITY_CYLINDER_TRANSACTION = "cylinder_transaction"

_push_guard = threading.Lock()


class SyncError(Exception):
    """Raised when a user-initiated pull cannot complete."""
    pass


def enqueue_change(entity_type: str, entity_id: int, operation: str, payload: dict | None = None) -> SyncOutboxEntry:
    """
    Record a pending change. Does not commit: the caller's transaction
    commits the change and its outbox entry together.
    """
    entry = SyncOutboxEntry(
        entity_type=entity_type,
        entity_id=entity_id,
        operation=operation,
        payload_json=json.dumps(payload) if payload is not None else None,
    )
    db.session.add(entry)
    return entry


def pending_count() -> int:
    return db.session.query(SyncOutboxEntry).count()


def has_pending_changes() -> bool:
    """True while the sticky flag is set or any change is still in the outbox."""
    return settings_service.is_sync_needed() or pending_count() > 0


def get_sync_status() -> dict:
    last_failed = (
        db.session.query(SyncOutboxEntry)
        .filter(SyncOutboxEntry.last_error.isnot(None))
        .order_by(SyncOutboxEntry.id.desc())
        .first()
    )
    return {
        "remote_configured": bool(current_app.config.get("SYNC_REMOTE_URL")),
        "needs_sync": settings_service.is_sync_needed(),
        "pending_changes": pending_count(),
        "has_pending_changes": has_pending_changes(),
        "last_error": last_failed.last_error if last_failed else None,
    }


def _remote_url(path: str) -> str | None:
    remote = current_app.config.get("SYNC_REMOTE_URL")
    if not remote:
        return None
    return f"{remote.rstrip('/')}/{path.lstrip('/')}"


def push_pending(*, client: httpx.Client | None = None) -> dict:
    """
    Push one batch of outbox entries to the remote replica.

    Never raises for transport problems: errors and timeouts are recorded on
    the entries and set the needs_sync flag.
    """
    url = _remote_url("changes")
    if url is None:
        if pending_count():
            settings_service.mark_sync_needed()
        return {"ok": False, "pushed": 0, "remaining": pending_count(), "error": "Remote replication is not configured"}

    batch_size = current_app.config.get("SYNC_BATCH_SIZE", 200)
    entries = (
        db.session.query(SyncOutboxEntry)
        .order_by(SyncOutboxEntry.id.asc())
        .limit(batch_size)
        .all()
    )
    if not entries:
        settings_service.mark_sync_done()
        return {"ok": True, "pushed": 0, "remaining": 0, "error": None}

    body = {"changes": [e.to_dict() for e in entries]}
    owns_client = client is None
    if owns_client:
        client = httpx.Client(timeout=current_app.config.get("SYNC_TIMEOUT_SECONDS", 10))

    try:
        response = client.post(url, json=body)
        response.raise_for_status()
    except (httpx.HTTPError, httpx.InvalidURL) as exc:
        message = f"{type(exc).__name__}: {exc}"[:255]
        for entry in entries:
            entry.attempts = (entry.attempts or 0) + 1
            entry.last_error = message
        settings_service.mark_sync_needed(commit=False)
        db.session.commit()
        current_app.logger.warning("Sync push failed (%d pending): %s", pending_count(), message)
        return {"ok": False, "pushed": 0, "remaining": pending_count(), "error": message}
    finally:
        if owns_client:
            client.close()

    pushed_ids = [e.id for e in entries]
    db.session.query(SyncOutboxEntry).filter(SyncOutboxEntry.id.in_(pushed_ids)).delete(synchronize_session=False)
    db.session.commit()

    remaining = pending_count()
    if remaining == 0:
        settings_service.mark_sync_done()
    else:
        settings_service.mark_sync_needed()
    return {"ok": True, "pushed": len(pushed_ids), "remaining": remaining, "error": None}


def _background_push(app) -> None:
    if not _push_guard.acquire(blocking=False):
        return
    try:
        with app.app_context():
            push_pending()
    except Exception:
        app.logger.exception("Background sync push failed")
    finally:
        _push_guard.release()


def schedule_push(app=None) -> bool:
    """
    Fire-and-forget push after a local commit.

    Returns True if a background push was started.
    """
    app = app or current_app._get_current_object()
    if not app.config.get("SYNC_AUTO_PUSH") or not app.config.get("SYNC_REMOTE_URL"):
        return False
    thread = threading.Thread(target=_background_push, args=(app,), name="gasledger-sync-push", daemon=True)
    thread.start()
    return True


def pull_snapshot(*, client: httpx.Client | None = None, force: bool = False) -> dict:
    """
    Replace local data with the remote snapshot, then reconcile balances.

    Refused while local changes are pending unless force=True (force drops
    the outbox: those changes are overwritten by the snapshot).
    """
    from . import snapshot_service

    url = _remote_url("snapshot")
    if url is None:
        raise SyncError("Remote replication is not configured")
    if not force and has_pending_changes():
        raise ConflictError("Local changes are pending; push them first or pull with force")

    owns_client = client is None
    if owns_client:
        client = httpx.Client(timeout=current_app.config.get("SYNC_TIMEOUT_SECONDS", 10))
    try:
        response = client.get(url)
        response.raise_for_status()
        data = response.json()
    except (httpx.HTTPError, httpx.InvalidURL, ValueError) as exc:
        raise SyncError(f"Pull failed: {exc}") from exc
    finally:
        if owns_client:
            client.close()

    result = snapshot_service.import_snapshot(data)

    if force:
        db.session.query(SyncOutboxEntry).delete(synchronize_session=False)
        settings_service.mark_sync_done(commit=False)
        db.session.commit()
    return result
