# Overview: Service-layer operations for the customer registry; encapsulates business logic and database work.

"""
Customer Registry Service

Profile data only. The ledger-derived fields (balance_cents,
total_purchases_cents, cylinder balances) are never writable here; they
change through ledger_service and reconciliation_service alone.

Serial numbers are dense and unique: a new customer gets max(existing) + 1.
"""

from __future__ import annotations

from datetime import datetime, timedelta

from sqlalchemy import case, func, or_, cast, String
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Customer, Invoice, Repayment, CylinderTransaction
from ..validation import ConflictError, ValidationError
from gasledger.time_utils import utcnow, to_utc_z
from .concurrency import run_with_retry, serial_allocation_lock
from .guard_service import get_cylinder_holdings
from . import sync_service
from .sync_service import OP_UPSERT, OP_DELETE, ENTITY_CUSTOMER

CUSTOMER_MUTABLE_FIELDS = {
    "name", "customer_type", "city", "village", "neighborhood", "phone", "whatsapp",
}


def apply_customer_patch(c: Customer, patch: dict) -> None:
    for k, v in patch.items():
        if k not in CUSTOMER_MUTABLE_FIELDS:
            continue
        setattr(c, k, v)


def next_serial_number() -> int:
    current = db.session.query(func.max(Customer.serial_number)).scalar()
    return (current or 0) + 1


def get_customer(customer_id: int) -> Customer | None:
    return db.session.get(Customer, customer_id)


def create_customer(*, patch: dict) -> Customer:
    """
    Create a customer with zero balances and the next serial number.

    Raises:
        ValidationError: name missing
    """
    if not (patch.get("name") or "").strip():
        raise ValidationError("name is required")

    def _op():
        c = Customer(serial_number=next_serial_number(), total_purchases_cents=0, balance_cents=0)
        apply_customer_patch(c, patch)
        db.session.add(c)
        db.session.flush()
        sync_service.enqueue_change(ENTITY_CUSTOMER, c.id, OP_UPSERT, c.to_dict())
        db.session.commit()
        return c

    with serial_allocation_lock():
        try:
            customer = run_with_retry(_op, retry_on=(IntegrityError,))
        except Exception:
            db.session.rollback()
            raise
    sync_service.schedule_push()
    return customer


def update_customer(*, customer_id: int, patch: dict) -> Customer | None:
    c = db.session.get(Customer, customer_id)
    if c is None:
        return None
    apply_customer_patch(c, patch)
    db.session.flush()
    sync_service.enqueue_change(ENTITY_CUSTOMER, c.id, OP_UPSERT, c.to_dict())
    db.session.commit()
    sync_service.schedule_push()
    return c


def has_history(customer_id: int) -> bool:
    for model in (Invoice, Repayment, CylinderTransaction):
        if db.session.query(model.id).filter(model.customer_id == customer_id).first() is not None:
            return True
    return False


def delete_customer(*, customer_id: int) -> bool:
    """
    Delete a customer that has no ledger history.

    Returns False if not found.

    Raises:
        ConflictError: any invoice, repayment or cylinder transaction references the customer
    """
    c = db.session.get(Customer, customer_id)
    if c is None:
        return False
    if has_history(customer_id):
        raise ConflictError(
            f"Customer #{c.serial_number} has ledger history and cannot be deleted"
        )

    for row in list(c.cylinder_balances):
        db.session.delete(row)
    db.session.delete(c)
    sync_service.enqueue_change(ENTITY_CUSTOMER, customer_id, OP_DELETE)
    db.session.commit()
    sync_service.schedule_push()
    return True


def list_customers(*, search: str | None = None, debtors_only: bool = False) -> list[Customer]:
    """
    Customers filtered by a free-text search over name, phone, city and
    serial number. Debtors (balance > 0) come first, then by name.
    """
    q = db.session.query(Customer)
    if search:
        term = f"%{search.strip()}%"
        q = q.filter(or_(
            Customer.name.ilike(term),
            Customer.phone.ilike(term),
            Customer.city.ilike(term),
            cast(Customer.serial_number, String).ilike(term),
        ))
    if debtors_only:
        q = q.filter(Customer.balance_cents > 0)

    debtor_first = case((Customer.balance_cents > 0, 0), else_=1)
    return q.order_by(debtor_first, Customer.name.asc(), Customer.id.asc()).all()


def debt_summary() -> dict:
    total, debtors = (
        db.session.query(
            func.coalesce(func.sum(Customer.balance_cents), 0),
            func.count(Customer.id),
        )
        .filter(Customer.balance_cents > 0)
        .one()
    )
    return {"total_debt_cents": int(total or 0), "debtors_count": int(debtors or 0)}


STAGNANT_DEBT_DAYS = 30


def dashboard_summary(*, now: datetime | None = None) -> dict:
    """
    Headline figures for the dashboard.

    - revenue_today_cents: total of invoices dated since midnight UTC today
    - total_receivables_cents: sum of positive balances
    - total_payables_cents: sum of |balance| over customers in credit
    - stagnant_debtors: debtors with no repayment in the last 30 days,
      largest balance first
    """
    now = now or utcnow()
    day_start = now.replace(hour=0, minute=0, second=0, microsecond=0)
    cutoff = now - timedelta(days=STAGNANT_DEBT_DAYS)

    revenue_today = (
        db.session.query(func.coalesce(func.sum(Invoice.total_amount_cents), 0))
        .filter(Invoice.occurred_at >= day_start)
        .scalar()
    )
    payables = (
        db.session.query(func.coalesce(func.sum(-Customer.balance_cents), 0))
        .filter(Customer.balance_cents < 0)
        .scalar()
    )

    last_repayment = (
        db.session.query(
            Repayment.customer_id.label("customer_id"),
            func.max(Repayment.occurred_at).label("last_repayment_at"),
        )
        .group_by(Repayment.customer_id)
        .subquery()
    )
    stagnant = (
        db.session.query(Customer, last_repayment.c.last_repayment_at)
        .outerjoin(last_repayment, last_repayment.c.customer_id == Customer.id)
        .filter(Customer.balance_cents > 0)
        .filter(or_(
            last_repayment.c.last_repayment_at.is_(None),
            last_repayment.c.last_repayment_at < cutoff,
        ))
        .order_by(Customer.balance_cents.desc(), Customer.id.asc())
        .all()
    )

    debts = debt_summary()
    return {
        "revenue_today_cents": int(revenue_today or 0),
        "total_receivables_cents": debts["total_debt_cents"],
        "debtors_count": debts["debtors_count"],
        "total_payables_cents": int(payables or 0),
        "stagnant_debtors": [
            {
                "customer_id": c.id,
                "serial_number": c.serial_number,
                "name": c.name,
                "phone": c.phone,
                "balance_cents": c.balance_cents,
                "last_repayment_at": to_utc_z(last_at),
            }
            for c, last_at in stagnant
        ],
    }


def get_customer_statement(customer_id: int) -> dict | None:
    """
    Chronological money history with a running balance, plus cylinder
    movements and current holdings.
    """
    c = db.session.get(Customer, customer_id)
    if c is None:
        return None

    entries = []
    invoices = db.session.query(Invoice).filter(Invoice.customer_id == customer_id).all()
    for inv in invoices:
        details = ", ".join(f"{line.product_name} ({line.quantity})" for line in inv.lines)
        entries.append({
            "entry_type": "invoice",
            "id": inv.id,
            "occurred_at": inv.occurred_at,
            "description": details,
            "debit_cents": inv.debt_cents,
            "credit_cents": 0,
            "total_amount_cents": inv.total_amount_cents,
        })
    repayments = db.session.query(Repayment).filter(Repayment.customer_id == customer_id).all()
    for rep in repayments:
        entries.append({
            "entry_type": "repayment",
            "id": rep.id,
            "occurred_at": rep.occurred_at,
            "description": rep.note or rep.method,
            "debit_cents": 0,
            "credit_cents": rep.amount_cents,
            "total_amount_cents": rep.amount_cents,
        })

    entries.sort(key=lambda e: (e["occurred_at"], 0 if e["entry_type"] == "invoice" else 1, e["id"]))
    running = 0
    for entry in entries:
        running += entry["debit_cents"] - entry["credit_cents"]
        entry["running_balance_cents"] = running
        entry["occurred_at"] = to_utc_z(entry["occurred_at"])

    cylinder_rows = (
        db.session.query(CylinderTransaction)
        .filter(CylinderTransaction.customer_id == customer_id)
        .order_by(CylinderTransaction.occurred_at.asc(), CylinderTransaction.id.asc())
        .all()
    )

    return {
        "customer": c.to_dict(),
        "entries": entries,
        "ledger_balance_cents": running,
        "cylinder_transactions": [tx.to_dict() for tx in cylinder_rows],
        "cylinder_holdings": get_cylinder_holdings(customer_id),
    }


def assign_missing_serial_numbers() -> int:
    """
    Legacy migration: give imported rows without a serial the next free
    numbers, in id order. Returns how many were assigned.
    """
    with serial_allocation_lock():
        missing = (
            db.session.query(Customer)
            .filter(Customer.serial_number.is_(None))
            .order_by(Customer.id.asc())
            .all()
        )
        if not missing:
            return 0
        serial = next_serial_number()
        for c in missing:
            c.serial_number = serial
            serial += 1
        db.session.commit()
        return len(missing)
