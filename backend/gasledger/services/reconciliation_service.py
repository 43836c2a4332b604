# Overview: Full recomputation of cached customer balances from the transaction history.

"""
Reconciliation Pass

Self-heals drift between a customer's cached balances and the ledger they
are derived from (partial syncs, crashed writes, manual data edits).

- Monetary: balance = sum(invoice.debt_cents) - sum(repayment.amount_cents)
- Cylinders: holding[product] = sum(out.quantity) - sum(in.quantity)

Each customer is recomputed and overwritten under the same customer lock the
ledger writes use, so a pass never reads a half-applied write. Corrections
are logged, not alarmed. Running a pass twice in a row yields no corrections
on the second run.
"""

from __future__ import annotations

from flask import current_app
from sqlalchemy import case, func

from ..extensions import db
from ..models import Customer, CustomerCylinderBalance, Invoice, Repayment, CylinderTransaction
from ..models.ledger import CYLINDER_OUT
from .concurrency import customer_lock, lock_for_update


def ledger_balance(customer_id: int) -> int:
    """The authoritative monetary balance of one customer."""
    invoiced = (
        db.session.query(func.coalesce(func.sum(Invoice.debt_cents), 0))
        .filter(Invoice.customer_id == customer_id)
        .scalar()
    )
    repaid = (
        db.session.query(func.coalesce(func.sum(Repayment.amount_cents), 0))
        .filter(Repayment.customer_id == customer_id)
        .scalar()
    )
    return int(invoiced or 0) - int(repaid or 0)


def ledger_cylinder_holdings(customer_id: int) -> dict[int, int]:
    """The authoritative per-product holding of one customer (zero entries included)."""
    signed = case(
        (CylinderTransaction.direction == CYLINDER_OUT, CylinderTransaction.quantity),
        else_=-CylinderTransaction.quantity,
    )
    rows = (
        db.session.query(CylinderTransaction.product_id, func.sum(signed))
        .filter(CylinderTransaction.customer_id == customer_id)
        .group_by(CylinderTransaction.product_id)
        .all()
    )
    return {product_id: int(total or 0) for product_id, total in rows}


def _customer_ids() -> list[int]:
    return [cid for (cid,) in db.session.query(Customer.id).order_by(Customer.id.asc()).all()]


def _locked_customer(customer_id: int) -> Customer | None:
    return (
        lock_for_update(db.session.query(Customer).filter_by(id=customer_id))
        .populate_existing()
        .first()
    )


def recalculate_all_balances(*, dry_run: bool = False) -> list[dict]:
    """
    Overwrite every customer's balance_cents that disagrees with the ledger.

    Returns one correction dict per changed customer. dry_run reports
    without writing.
    """
    corrections: list[dict] = []
    for customer_id in _customer_ids():
        with customer_lock(customer_id):
            customer = _locked_customer(customer_id)
            if customer is None:
                continue
            correct = ledger_balance(customer_id)
            if customer.balance_cents != correct:
                current_app.logger.info(
                    "Correcting balance for customer %s (#%s %s): %s -> %s",
                    customer.id, customer.serial_number, customer.name, customer.balance_cents, correct,
                )
                corrections.append({
                    "customer_id": customer.id,
                    "serial_number": customer.serial_number,
                    "name": customer.name,
                    "old": customer.balance_cents,
                    "new": correct,
                })
                if not dry_run:
                    customer.balance_cents = correct
            if dry_run:
                db.session.rollback()
            else:
                db.session.commit()

    if corrections and not dry_run:
        current_app.logger.info("Customer balances recalculated: %d corrected", len(corrections))
    return corrections


def recalculate_all_cylinder_balances(*, dry_run: bool = False) -> list[dict]:
    """Cylinder counterpart of recalculate_all_balances(), one entry per (customer, product)."""
    corrections: list[dict] = []
    for customer_id in _customer_ids():
        with customer_lock(customer_id):
            customer = _locked_customer(customer_id)
            if customer is None:
                continue
            truth = ledger_cylinder_holdings(customer_id)
            rows = {
                row.product_id: row
                for row in lock_for_update(
                    db.session.query(CustomerCylinderBalance).filter_by(customer_id=customer_id)
                ).populate_existing().all()
            }

            for product_id in sorted(set(truth) | set(rows)):
                correct = truth.get(product_id, 0)
                row = rows.get(product_id)
                cached = row.quantity if row else 0
                if cached == correct:
                    continue
                current_app.logger.info(
                    "Correcting cylinder balance for customer %s (#%s), product %s: %s -> %s",
                    customer.id, customer.serial_number, product_id, cached, correct,
                )
                corrections.append({
                    "customer_id": customer.id,
                    "serial_number": customer.serial_number,
                    "name": customer.name,
                    "product_id": product_id,
                    "old": cached,
                    "new": correct,
                })
                if dry_run:
                    continue
                if row is None:
                    db.session.add(CustomerCylinderBalance(customer_id=customer_id, product_id=product_id, quantity=correct))
                else:
                    row.quantity = correct

            if dry_run:
                db.session.rollback()
            else:
                db.session.commit()
    return corrections


def reconcile_all(*, dry_run: bool = False) -> dict:
    balances = recalculate_all_balances(dry_run=dry_run)
    cylinders = recalculate_all_cylinder_balances(dry_run=dry_run)
    return {
        "dry_run": dry_run,
        "balances": balances,
        "cylinder_balances": cylinders,
        "corrected": len(balances) + len(cylinders),
    }
