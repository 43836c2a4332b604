from __future__ import annotations

from ..extensions import db
from gasledger.time_utils import to_utc_z

"""
Ledger records (invoices, repayments, cylinder transactions).

- customer_id is a plain indexed column, not a foreign key: history outlives
  the customer row, and customer_name is snapshotted at creation time.
- occurred_at is business time (editable); created_at is system time.
- Rows are only created/deleted/re-dated through services.ledger_service,
  which keeps the owning customer's cached balances in step.
"""

INVOICE_KIND_SALE = "SALE"
INVOICE_KIND_MANUAL_DEBT = "MANUAL_DEBT"

INVOICE_STATUS_PAID = "paid"
INVOICE_STATUS_DEBT = "debt"
INVOICE_STATUS_PARTIAL = "partial"

CYLINDER_OUT = "out"
CYLINDER_IN = "in"


class Invoice(db.Model):
    """
    A sale (or a synthetic manual-debt entry).

    total_amount_cents is agreed at sale time, not computed from prices.
    debt_cents = total - cash - cheque; negative means overpayment (credit).
    """
    __tablename__ = "invoices"
    __table_args__ = (
        db.Index("ix_invoices_customer_occurred", "customer_id", "occurred_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    customer_id = db.Column(db.Integer, nullable=False, index=True)
    customer_name = db.Column(db.String(255), nullable=False, default="")
    kind = db.Column(db.String(16), nullable=False, default=INVOICE_KIND_SALE)

    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, index=True)

    total_amount_cents = db.Column(db.Integer, nullable=False)
    cash_cents = db.Column(db.Integer, nullable=False, default=0)
    cheque_cents = db.Column(db.Integer, nullable=False, default=0)
    cheque_number = db.Column(db.String(64), nullable=True)
    cheque_date = db.Column(db.DateTime(timezone=True), nullable=True)
    debt_cents = db.Column(db.Integer, nullable=False, default=0)

    status = db.Column(db.String(16), nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    lines = db.relationship(
        "InvoiceLine",
        backref="invoice",
        lazy=True,
        order_by="InvoiceLine.position",
        cascade="all, delete-orphan",
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "customer_id": self.customer_id,
            "customer_name": self.customer_name,
            "kind": self.kind,
            "occurred_at": to_utc_z(self.occurred_at),
            "items": [line.to_dict() for line in self.lines],
            "total_amount_cents": self.total_amount_cents,
            "payment_details": {
                "cash_cents": self.cash_cents,
                "cheque_cents": self.cheque_cents,
                "cheque_number": self.cheque_number,
                "cheque_date": to_utc_z(self.cheque_date) if self.cheque_date else None,
                "debt_cents": self.debt_cents,
            },
            "status": self.status,
            "created_at": to_utc_z(self.created_at),
        }


class InvoiceLine(db.Model):
    """Line item; product_name is copied so later renames do not rewrite history."""
    __tablename__ = "invoice_lines"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    invoice_id = db.Column(db.Integer, db.ForeignKey("invoices.id"), nullable=False, index=True)
    position = db.Column(db.Integer, nullable=False, default=0)

    # NULL for the manual-debt placeholder line
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=True)
    product_name = db.Column(db.String(255), nullable=False)
    quantity = db.Column(db.Integer, nullable=False)

    def to_dict(self) -> dict:
        return {
            "product_id": self.product_id,
            "product_name": self.product_name,
            "quantity": self.quantity,
        }


class Repayment(db.Model):
    """Money received from a customer against their balance."""
    __tablename__ = "repayments"
    __table_args__ = (
        db.Index("ix_repayments_customer_occurred", "customer_id", "occurred_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    customer_id = db.Column(db.Integer, nullable=False, index=True)
    customer_name = db.Column(db.String(255), nullable=False, default="")

    amount_cents = db.Column(db.Integer, nullable=False)
    method = db.Column(db.String(16), nullable=False, default="cash")  # cash, cheque
    note = db.Column(db.String(255), nullable=True)

    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, index=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "customer_id": self.customer_id,
            "customer_name": self.customer_name,
            "amount_cents": self.amount_cents,
            "method": self.method,
            "note": self.note,
            "occurred_at": to_utc_z(self.occurred_at),
            "created_at": to_utc_z(self.created_at),
        }


class CylinderTransaction(db.Model):
    """
    Cylinder loan movement.

    out = given to the customer (holding += quantity)
    in  = returned by the customer (holding -= quantity, guarded)
    """
    __tablename__ = "cylinder_transactions"
    __table_args__ = (
        db.Index("ix_cylinder_tx_customer_product", "customer_id", "product_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    customer_id = db.Column(db.Integer, nullable=False, index=True)
    customer_name = db.Column(db.String(255), nullable=False, default="")

    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    product_name = db.Column(db.String(128), nullable=False)
    quantity = db.Column(db.Integer, nullable=False)
    direction = db.Column(db.String(8), nullable=False)  # out, in
    note = db.Column(db.String(255), nullable=True)

    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, index=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    @property
    def signed_quantity(self) -> int:
        return self.quantity if self.direction == CYLINDER_OUT else -self.quantity

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "customer_id": self.customer_id,
            "customer_name": self.customer_name,
            "product_id": self.product_id,
            "product_name": self.product_name,
            "quantity": self.quantity,
            "type": self.direction,
            "note": self.note,
            "occurred_at": to_utc_z(self.occurred_at),
            "created_at": to_utc_z(self.created_at),
        }
