# Overview: Service-layer operations for the customer ledger; the only sanctioned writer of
# invoices, repayments, cylinder transactions and the balances derived from them.

"""
Ledger Engine

Every commit-effecting operation has the same two-phase shape, executed as
ONE database transaction under the owning customer's lock:

1. mutate the transaction collection (insert / delete the record)
2. mutate the single affected customer's derived state
   (balance_cents, total_purchases_cents, cylinder holding)

plus an outbox entry for replication. After the commit the background push
is scheduled; its outcome never affects the local write.

Invariants maintained here (and re-established by reconciliation_service):
- customer.balance_cents == sum(invoice.debt_cents) - sum(repayment.amount_cents)
- holding(customer, product) == sum(out.quantity) - sum(in.quantity) >= 0

Amount validation (positive amounts, required fields) happens in the calling
layer (validation.py); the engine trusts its inputs apart from the cylinder
guard and the customer lookup.
"""

from __future__ import annotations

from datetime import datetime

from flask import current_app

from ..extensions import db
from ..models import Customer, Product, Invoice, InvoiceLine, Repayment, CylinderTransaction
from ..models.ledger import (
    INVOICE_KIND_SALE,
    INVOICE_KIND_MANUAL_DEBT,
    INVOICE_STATUS_PAID,
    INVOICE_STATUS_DEBT,
    INVOICE_STATUS_PARTIAL,
    CYLINDER_OUT,
    CYLINDER_IN,
)
from ..validation import ValidationError
from gasledger.time_utils import utcnow, coerce_datetime
from .concurrency import lock_for_update, run_with_retry, commit_for_customer
from .guard_service import check_cylinder_return, apply_cylinder_delta, CylinderReturnError
from . import sync_service
from .sync_service import (
    OP_UPSERT,
    OP_DELETE,
    ENTITY_CUSTOMER,
    ENTITY_INVOICE,
    ENTITY_REPAYMENT,
    ENTITY_CYLINDER_TRANSACTION,
)


MANUAL_DEBT_LABEL = "Previous balance / manual debt"


class LedgerError(Exception):
    """Raised for ledger operation errors."""
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


class CustomerNotFoundError(LedgerError):
    pass


# =============================================================================
# HELPERS
# =============================================================================

def invoice_status(total_amount_cents: int, debt_cents: int) -> str:
    """paid if nothing is owed, debt if nothing was paid, partial otherwise."""
    if debt_cents <= 0:
        return INVOICE_STATUS_PAID
    if debt_cents >= total_amount_cents:
        return INVOICE_STATUS_DEBT
    return INVOICE_STATUS_PARTIAL


def _load_customer(customer_id: int, *, strict: bool | None = None) -> Customer | None:
    """
    Fetch the customer row locked for update, bypassing the identity map.

    strict=None follows LEDGER_REQUIRE_CUSTOMER. When not strict, a missing
    customer returns None and the caller skips the balance mutation.
    """
    customer = (
        lock_for_update(db.session.query(Customer).filter_by(id=customer_id))
        .populate_existing()
        .first()
    )
    if customer is not None:
        return customer

    if strict is None:
        strict = current_app.config.get("LEDGER_REQUIRE_CUSTOMER", True)
    if strict:
        raise CustomerNotFoundError(f"Customer {customer_id} not found", details={"customer_id": customer_id})
    current_app.logger.warning(
        "Ledger write references unknown customer %s; record kept, balances untouched", customer_id
    )
    return None


def _check_owner(kind: str, record_id: int, owner_id: int, customer_id: int | None) -> None:
    if customer_id is not None and customer_id != owner_id:
        raise LedgerError(
            f"{kind} {record_id} does not belong to customer {customer_id}",
            details={"owner_customer_id": owner_id, "customer_id": customer_id},
        )


def _enqueue_customer(customer: Customer | None) -> None:
    if customer is None:
        return
    db.session.flush()
    db.session.expire(customer, ["cylinder_balances"])
    sync_service.enqueue_change(ENTITY_CUSTOMER, customer.id, OP_UPSERT, customer.to_dict())


def _build_lines(items: list[dict]) -> list[InvoiceLine]:
    lines = []
    for position, item in enumerate(items):
        product_id = item.get("product_id")
        product_name = item.get("product_name")
        if product_id is not None:
            product = db.session.get(Product, product_id)
            if product is None:
                raise ValidationError(f"Product {product_id} not found")
            product_name = product.name
        elif not product_name:
            raise ValidationError(f"items[{position}] needs a product_id or a product_name")
        lines.append(InvoiceLine(
            position=position,
            product_id=product_id,
            product_name=product_name,
            quantity=item.get("quantity", 1),
        ))
    return lines


# =============================================================================
# INVOICES
# =============================================================================

def record_invoice(
    *,
    customer_id: int,
    items: list[dict],
    total_amount_cents: int,
    cash_cents: int = 0,
    cheque_cents: int = 0,
    cheque_number: str | None = None,
    cheque_date: datetime | None = None,
    occurred_at: datetime | None = None,
    kind: str = INVOICE_KIND_SALE,
) -> Invoice:
    """
    Append a sale and apply it to the customer.

    debt = total - cash - cheque is ADDED to the balance; a negative debt
    (overpayment) therefore lowers it. total is added to total purchases.

    Raises:
        CustomerNotFoundError: unknown customer while LEDGER_REQUIRE_CUSTOMER is on
        ValidationError: a line references an unknown product
    """
    debt_cents = total_amount_cents - cash_cents - cheque_cents

    def _op():
        lines = _build_lines(items)
        customer = _load_customer(customer_id)

        invoice = Invoice(
            customer_id=customer_id,
            customer_name=customer.name if customer else "",
            kind=kind,
            occurred_at=coerce_datetime(occurred_at) or utcnow(),
            total_amount_cents=total_amount_cents,
            cash_cents=cash_cents,
            cheque_cents=cheque_cents,
            cheque_number=cheque_number,
            cheque_date=coerce_datetime(cheque_date),
            debt_cents=debt_cents,
            status=invoice_status(total_amount_cents, debt_cents),
        )
        invoice.lines = lines
        db.session.add(invoice)
        db.session.flush()

        if customer is not None:
            customer.total_purchases_cents = (customer.total_purchases_cents or 0) + total_amount_cents
            customer.balance_cents = (customer.balance_cents or 0) + debt_cents

        sync_service.enqueue_change(ENTITY_INVOICE, invoice.id, OP_UPSERT, invoice.to_dict())
        _enqueue_customer(customer)
        db.session.commit()
        return invoice

    invoice = commit_for_customer(customer_id, _op)
    sync_service.schedule_push()
    return invoice


def record_manual_debt(
    customer_id: int,
    amount_cents: int,
    note: str = "",
    *,
    occurred_at: datetime | None = None,
) -> Invoice:
    """Inject a pre-existing balance as a synthetic invoice with one placeholder line."""
    label = f"{MANUAL_DEBT_LABEL}: {note}" if note else MANUAL_DEBT_LABEL
    return record_invoice(
        customer_id=customer_id,
        items=[{"product_id": None, "product_name": label, "quantity": 1}],
        total_amount_cents=amount_cents,
        occurred_at=occurred_at,
        kind=INVOICE_KIND_MANUAL_DEBT,
    )


def delete_invoice(invoice_id: int, customer_id: int | None = None) -> dict | None:
    """
    Remove an invoice and reverse its effects.

    total purchases is floored at zero; the balance loses exactly the debt
    the invoice added. Returns the deleted invoice as a dict, or None if it
    does not exist.
    """
    invoice = db.session.get(Invoice, invoice_id)
    if invoice is None:
        return None
    owner_id = invoice.customer_id
    _check_owner("Invoice", invoice_id, owner_id, customer_id)

    def _op():
        inv = lock_for_update(db.session.query(Invoice).filter_by(id=invoice_id)).first()
        if inv is None:
            return None
        deleted = inv.to_dict()
        customer = _load_customer(owner_id, strict=False)

        if customer is not None:
            customer.total_purchases_cents = max(0, (customer.total_purchases_cents or 0) - inv.total_amount_cents)
            customer.balance_cents = (customer.balance_cents or 0) - inv.debt_cents

        db.session.delete(inv)
        sync_service.enqueue_change(ENTITY_INVOICE, invoice_id, OP_DELETE)
        _enqueue_customer(customer)
        db.session.commit()
        return deleted

    deleted = commit_for_customer(owner_id, _op)
    if deleted is not None:
        sync_service.schedule_push()
    return deleted


def update_invoice_date(invoice_id: int, new_date) -> Invoice | None:
    """Metadata-only: balances are untouched, ordering of history views changes."""
    return _reschedule(Invoice, ENTITY_INVOICE, invoice_id, new_date)


def list_invoices(customer_id: int | None = None, limit: int | None = None) -> list[Invoice]:
    q = db.session.query(Invoice)
    if customer_id is not None:
        q = q.filter(Invoice.customer_id == customer_id)
    q = q.order_by(Invoice.occurred_at.desc(), Invoice.id.desc())
    if limit:
        q = q.limit(limit)
    return q.all()


# =============================================================================
# REPAYMENTS
# =============================================================================

def record_repayment(
    *,
    customer_id: int,
    amount_cents: int,
    method: str = "cash",
    note: str | None = None,
    occurred_at: datetime | None = None,
) -> Repayment:
    """Append a repayment; the customer's balance decreases by the amount."""
    def _op():
        customer = _load_customer(customer_id)

        repayment = Repayment(
            customer_id=customer_id,
            customer_name=customer.name if customer else "",
            amount_cents=amount_cents,
            method=method,
            note=note,
            occurred_at=coerce_datetime(occurred_at) or utcnow(),
        )
        db.session.add(repayment)
        db.session.flush()

        if customer is not None:
            customer.balance_cents = (customer.balance_cents or 0) - amount_cents

        sync_service.enqueue_change(ENTITY_REPAYMENT, repayment.id, OP_UPSERT, repayment.to_dict())
        _enqueue_customer(customer)
        db.session.commit()
        return repayment

    repayment = commit_for_customer(customer_id, _op)
    sync_service.schedule_push()
    return repayment


def delete_repayment(repayment_id: int, customer_id: int | None = None) -> dict | None:
    """Remove a repayment; the customer's balance increases back by the amount."""
    repayment = db.session.get(Repayment, repayment_id)
    if repayment is None:
        return None
    owner_id = repayment.customer_id
    _check_owner("Repayment", repayment_id, owner_id, customer_id)

    def _op():
        rep = lock_for_update(db.session.query(Repayment).filter_by(id=repayment_id)).first()
        if rep is None:
            return None
        deleted = rep.to_dict()
        customer = _load_customer(owner_id, strict=False)

        if customer is not None:
            customer.balance_cents = (customer.balance_cents or 0) + rep.amount_cents

        db.session.delete(rep)
        sync_service.enqueue_change(ENTITY_REPAYMENT, repayment_id, OP_DELETE)
        _enqueue_customer(customer)
        db.session.commit()
        return deleted

    deleted = commit_for_customer(owner_id, _op)
    if deleted is not None:
        sync_service.schedule_push()
    return deleted


def update_repayment_date(repayment_id: int, new_date) -> Repayment | None:
    return _reschedule(Repayment, ENTITY_REPAYMENT, repayment_id, new_date)


def list_repayments(customer_id: int | None = None, limit: int | None = None) -> list[Repayment]:
    q = db.session.query(Repayment)
    if customer_id is not None:
        q = q.filter(Repayment.customer_id == customer_id)
    q = q.order_by(Repayment.occurred_at.desc(), Repayment.id.desc())
    if limit:
        q = q.limit(limit)
    return q.all()


# =============================================================================
# CYLINDER TRANSACTIONS
# =============================================================================

def record_cylinder_transaction(
    *,
    customer_id: int,
    product_id: int,
    quantity: int,
    direction: str,
    note: str | None = None,
    occurred_at: datetime | None = None,
) -> CylinderTransaction:
    """
    Append a cylinder movement and apply +quantity (out) / -quantity (in)
    to the customer's holding of that product.

    Returns are validated against the authoritative holding inside the
    customer lock, in the same transaction as the write.

    Raises:
        CylinderReturnError: an "in" larger than the current holding
        ValidationError: unknown product or direction
    """
    if direction not in (CYLINDER_OUT, CYLINDER_IN):
        raise ValidationError(f"Invalid cylinder transaction type: {direction}")

    def _op():
        product = db.session.get(Product, product_id)
        if product is None:
            raise ValidationError(f"Product {product_id} not found")
        customer = _load_customer(customer_id)

        if direction == CYLINDER_IN:
            check_cylinder_return(customer_id, product_id, quantity, product_name=product.name)

        tx = CylinderTransaction(
            customer_id=customer_id,
            customer_name=customer.name if customer else "",
            product_id=product_id,
            product_name=product.name,
            quantity=quantity,
            direction=direction,
            note=note,
            occurred_at=coerce_datetime(occurred_at) or utcnow(),
        )
        db.session.add(tx)
        db.session.flush()

        if customer is not None:
            apply_cylinder_delta(customer_id, product_id, tx.signed_quantity)

        sync_service.enqueue_change(ENTITY_CYLINDER_TRANSACTION, tx.id, OP_UPSERT, tx.to_dict())
        _enqueue_customer(customer)
        db.session.commit()
        return tx

    tx = commit_for_customer(customer_id, _op)
    sync_service.schedule_push()
    return tx


def delete_cylinder_transaction(tx_id: int, customer_id: int | None = None) -> dict | None:
    """
    Remove a cylinder movement and apply the inverse delta.

    Undoing an "out" takes cylinders back, so it is guarded like a return:
    it is refused when the customer no longer holds that many.
    """
    tx = db.session.get(CylinderTransaction, tx_id)
    if tx is None:
        return None
    owner_id = tx.customer_id
    _check_owner("Cylinder transaction", tx_id, owner_id, customer_id)

    def _op():
        row = lock_for_update(db.session.query(CylinderTransaction).filter_by(id=tx_id)).first()
        if row is None:
            return None
        deleted = row.to_dict()
        customer = _load_customer(owner_id, strict=False)

        if customer is not None:
            if row.direction == CYLINDER_OUT:
                try:
                    check_cylinder_return(owner_id, row.product_id, row.quantity, product_name=row.product_name)
                except CylinderReturnError as exc:
                    raise CylinderReturnError(
                        f"Cannot delete delivery {tx_id}: the customer holds {exc.details['holding']} "
                        f"{row.product_name} cylinders, fewer than the {row.quantity} it delivered",
                        details=exc.details,
                    ) from exc
            apply_cylinder_delta(owner_id, row.product_id, -row.signed_quantity)

        db.session.delete(row)
        sync_service.enqueue_change(ENTITY_CYLINDER_TRANSACTION, tx_id, OP_DELETE)
        _enqueue_customer(customer)
        db.session.commit()
        return deleted

    deleted = commit_for_customer(owner_id, _op)
    if deleted is not None:
        sync_service.schedule_push()
    return deleted


def update_cylinder_transaction_date(tx_id: int, new_date) -> CylinderTransaction | None:
    return _reschedule(CylinderTransaction, ENTITY_CYLINDER_TRANSACTION, tx_id, new_date)


def list_cylinder_transactions(
    customer_id: int | None = None,
    product_id: int | None = None,
    limit: int | None = None,
) -> list[CylinderTransaction]:
    q = db.session.query(CylinderTransaction)
    if customer_id is not None:
        q = q.filter(CylinderTransaction.customer_id == customer_id)
    if product_id is not None:
        q = q.filter(CylinderTransaction.product_id == product_id)
    q = q.order_by(CylinderTransaction.occurred_at.desc(), CylinderTransaction.id.desc())
    if limit:
        q = q.limit(limit)
    return q.all()


# =============================================================================
# DATE EDITS
# =============================================================================

def _reschedule(model, entity_type: str, record_id: int, new_date):
    """
    Change business time only. No temporal invariant is enforced: a
    repayment may be dated before the invoice it pays.
    """
    occurred_at = coerce_datetime(new_date)
    if occurred_at is None:
        raise ValidationError("occurred_at is required")

    def _op():
        record = lock_for_update(db.session.query(model).filter_by(id=record_id)).first()
        if record is None:
            return None
        record.occurred_at = occurred_at
        db.session.flush()
        sync_service.enqueue_change(entity_type, record.id, OP_UPSERT, record.to_dict())
        db.session.commit()
        return record

    try:
        record = run_with_retry(_op)
    except Exception:
        db.session.rollback()
        raise
    if record is not None:
        sync_service.schedule_push()
    return record
