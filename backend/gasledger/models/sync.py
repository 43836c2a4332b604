from __future__ import annotations

import json

from ..extensions import db
from gasledger.time_utils import to_utc_z


class SyncOutboxEntry(db.Model):
    """
    One local change not yet acknowledged by the remote replica.

    Written inside the same DB transaction as the change it describes and
    removed only after a successful push.
    """
    __tablename__ = "sync_outbox"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    entity_type = db.Column(db.String(32), nullable=False, index=True)  # customer, product, invoice, repayment, cylinder_transaction
    entity_id = db.Column(db.Integer, nullable=False)
    operation = db.Column(db.String(16), nullable=False)  # UPSERT, DELETE
    payload_json = db.Column(db.Text, nullable=True)

    attempts = db.Column(db.Integer, nullable=False, default=0)
    last_error = db.Column(db.String(255), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "operation": self.operation,
            "payload": json.loads(self.payload_json) if self.payload_json else None,
            "attempts": self.attempts,
            "last_error": self.last_error,
            "created_at": to_utc_z(self.created_at),
        }
