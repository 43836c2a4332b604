# Overview: Cylinder holding reads and the pre-commit guard for cylinder returns.

from __future__ import annotations

from sqlalchemy import func

from ..extensions import db
from ..models import Customer, CustomerCylinderBalance, Product
from ..validation import ValidationError
from .concurrency import lock_for_update


class CylinderReturnError(ValidationError):
    """A return (or reversal) would take more cylinders back than the customer holds."""
    pass


def _holding_row(customer_id: int, product_id: int, *, for_update: bool = False) -> CustomerCylinderBalance | None:
    q = db.session.query(CustomerCylinderBalance).filter_by(customer_id=customer_id, product_id=product_id)
    if for_update:
        q = lock_for_update(q)
    # Bypass the identity map: the guard must see the committed value, not a stale copy.
    return q.populate_existing().first()


def get_cylinder_holding(customer_id: int, product_id: int) -> int:
    row = _holding_row(customer_id, product_id)
    return row.quantity if row else 0


def get_cylinder_holdings(customer_id: int) -> list[dict]:
    """Non-zero holdings of one customer, names resolved from the catalog."""
    rows = (
        db.session.query(CustomerCylinderBalance, Product.name)
        .join(Product, Product.id == CustomerCylinderBalance.product_id)
        .filter(CustomerCylinderBalance.customer_id == customer_id)
        .filter(CustomerCylinderBalance.quantity != 0)
        .order_by(Product.name.asc(), Product.id.asc())
        .all()
    )
    return [
        {"product_id": row.product_id, "product_name": name, "quantity": row.quantity}
        for row, name in rows
    ]


def check_cylinder_return(customer_id: int, product_id: int, quantity: int, *, product_name: str | None = None) -> int:
    """
    Validate that `quantity` units can come back from the customer.

    Must run inside the customer's lock, immediately before the commit it
    protects. Returns the current holding.

    Raises:
        CylinderReturnError: nothing is out, or more than is out is requested
    """
    holding = 0
    row = _holding_row(customer_id, product_id, for_update=True)
    if row is not None:
        holding = row.quantity

    label = product_name or f"product {product_id}"
    details = {
        "customer_id": customer_id,
        "product_id": product_id,
        "requested_quantity": quantity,
        "holding": holding,
    }
    if holding <= 0:
        raise CylinderReturnError(
            f"Customer holds no {label} cylinders; nothing to return (requested {quantity})",
            details=details,
        )
    if quantity > holding:
        raise CylinderReturnError(
            f"Requested quantity ({quantity}) is greater than the {label} cylinders held by the customer ({holding})",
            details=details,
        )
    return holding


def apply_cylinder_delta(customer_id: int, product_id: int, delta: int) -> int:
    """Add delta to a holding (creating the row on first use). Returns the new value."""
    row = _holding_row(customer_id, product_id, for_update=True)
    if row is None:
        row = CustomerCylinderBalance(customer_id=customer_id, product_id=product_id, quantity=0)
        db.session.add(row)
    row.quantity = (row.quantity or 0) + delta
    return row.quantity


def outstanding_cylinder_totals() -> dict:
    """Per-product units out on loan across all customers, plus active borrower count."""
    rows = (
        db.session.query(
            Product.id,
            Product.name,
            func.sum(CustomerCylinderBalance.quantity),
            func.count(CustomerCylinderBalance.customer_id),
        )
        .join(CustomerCylinderBalance, CustomerCylinderBalance.product_id == Product.id)
        .filter(CustomerCylinderBalance.quantity > 0)
        .group_by(Product.id, Product.name)
        .order_by(Product.name.asc())
        .all()
    )
    borrowers = (
        db.session.query(func.count(func.distinct(CustomerCylinderBalance.customer_id)))
        .join(Customer, Customer.id == CustomerCylinderBalance.customer_id)
        .filter(CustomerCylinderBalance.quantity != 0)
        .scalar()
    ) or 0
    products = [
        {"product_id": pid, "product_name": name, "quantity": int(total or 0), "customers": int(count)}
        for pid, name, total, count in rows
    ]
    return {
        "products": products,
        "total_out": sum(p["quantity"] for p in products),
        "customers_with_loans": int(borrowers),
    }
