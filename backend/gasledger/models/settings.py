from __future__ import annotations

import json

from ..extensions import db
from gasledger.time_utils import to_utc_z


class AppSetting(db.Model):
    """Process-wide key-value settings; values are stored as JSON text."""
    __tablename__ = "app_settings"
    __table_args__ = (
        db.UniqueConstraint("key", name="uq_app_settings_key"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    key = db.Column(db.String(128), nullable=False)
    value_json = db.Column(db.Text, nullable=True)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    @property
    def value(self):
        if self.value_json is None:
            return None
        return json.loads(self.value_json)

    @value.setter
    def value(self, new_value) -> None:
        self.value_json = None if new_value is None else json.dumps(new_value)

    def to_dict(self) -> dict:
        return {
            "key": self.key,
            "value": self.value,
            "updated_at": to_utc_z(self.updated_at),
        }
