from __future__ import annotations

from ..extensions import db
from gasledger.time_utils import to_utc_z


class Customer(db.Model):
    """
    Customer registry entry with its cached ledger state.

    balance_cents and the cylinder balances are DERIVED values: they are only
    written by the ledger service and the reconciliation pass, and are always
    recomputable from the invoice/repayment/cylinder transaction history.

    Sign of balance_cents: positive = customer owes the business,
    negative = business owes the customer (credit), zero = settled.
    """
    __tablename__ = "customers"
    __table_args__ = (
        db.UniqueConstraint("serial_number", name="uq_customers_serial_number"),
        db.Index("ix_customers_name", "name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # Dense, human-facing number (max existing + 1). Nullable only for
    # imported legacy rows until assign_missing_serial_numbers() backfills them.
    serial_number = db.Column(db.Integer, nullable=True)

    name = db.Column(db.String(255), nullable=False)
    customer_type = db.Column(db.String(64), nullable=True)
    city = db.Column(db.String(128), nullable=True)
    village = db.Column(db.String(128), nullable=True)
    neighborhood = db.Column(db.String(128), nullable=True)
    phone = db.Column(db.String(32), nullable=True)
    whatsapp = db.Column(db.String(32), nullable=True)

    # Denormalized aggregates (maintained by ledger_service)
    total_purchases_cents = db.Column(db.Integer, nullable=False, default=0)
    balance_cents = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version_id}

    def cylinder_balance_map(self) -> dict[int, int]:
        return {
            row.product_id: row.quantity
            for row in self.cylinder_balances
            if row.quantity != 0
        }

    def to_dict(self) -> dict:
        holdings = [row for row in self.cylinder_balances if row.quantity != 0]
        holdings.sort(key=lambda row: row.product_id)
        return {
            "id": self.id,
            "serial_number": self.serial_number,
            "name": self.name,
            "customer_type": self.customer_type,
            "city": self.city,
            "village": self.village,
            "neighborhood": self.neighborhood,
            "phone": self.phone,
            "whatsapp": self.whatsapp,
            "total_purchases_cents": self.total_purchases_cents,
            "balance_cents": self.balance_cents,
            "cylinder_balance": {str(row.product_id): row.quantity for row in holdings},
            "cylinder_holdings": [row.to_dict() for row in holdings],
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "version_id": self.version_id,
        }


class CustomerCylinderBalance(db.Model):
    """
    Units of one product currently on loan to one customer.

    Keyed by product id so that renaming a product never orphans a holding;
    the display name is resolved from the product at read time.
    """
    __tablename__ = "customer_cylinder_balances"
    __table_args__ = (
        db.UniqueConstraint("customer_id", "product_id", name="uq_cylinder_balance_customer_product"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    quantity = db.Column(db.Integer, nullable=False, default=0)

    customer = db.relationship("Customer", backref=db.backref("cylinder_balances", lazy=True))
    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "product_id": self.product_id,
            "product_name": self.product.name if self.product else None,
            "quantity": self.quantity,
        }
