from __future__ import annotations

from ..extensions import db
from gasledger.time_utils import to_utc_z


class Product(db.Model):
    """
    Catalog entry (a cylinder size or accessory).

    No price: every sale total is negotiated and entered by hand.
    Inactive products are hidden from new sales but stay valid for history.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.Index("ix_products_active_name", "is_active", "name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(128), nullable=False)
    size = db.Column(db.String(64), nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "size": self.size,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }
