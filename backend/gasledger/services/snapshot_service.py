# Overview: Whole-store snapshot export/import (backup restore and remote pull) and factory reset.

"""
Snapshot shape (mirrors the to_dict() of every model):

{
  "customers": [...], "products": [...], "invoices": [...],
  "repayments": [...], "cylinder_transactions": [...],
  "customer_types": [...], "settings": {...}, "exported_at": "...Z"
}

Import is a full replace of the ledger collections, ids preserved. Older
snapshots may lack serial_number, is_active or cylinder_balance; those are
backfilled. Cached balances are never trusted: reconciliation runs after
every import.
"""

from __future__ import annotations

from ..extensions import db
from ..models import (
    Customer,
    CustomerCylinderBalance,
    Product,
    Invoice,
    InvoiceLine,
    Repayment,
    CylinderTransaction,
    AppSetting,
    SyncOutboxEntry,
)
from ..models.ledger import INVOICE_KIND_SALE, CYLINDER_OUT, CYLINDER_IN
from ..validation import ValidationError, coerce_int
from gasledger.time_utils import utcnow, to_utc_z, coerce_datetime
from . import settings_service, customer_service, reconciliation_service
from .ledger_service import invoice_status

REQUIRED_KEYS = ("customers", "products", "invoices")

_LEDGER_MODELS_DELETE_ORDER = (
    InvoiceLine,
    Invoice,
    Repayment,
    CylinderTransaction,
    CustomerCylinderBalance,
    Customer,
    Product,
)


def export_snapshot() -> dict:
    public_settings = settings_service.get_settings()
    public_settings.pop("has_admin_password", None)
    public_settings.pop("needs_sync", None)
    return {
        "customers": [c.to_dict() for c in db.session.query(Customer).order_by(Customer.id.asc()).all()],
        "products": [p.to_dict() for p in db.session.query(Product).order_by(Product.id.asc()).all()],
        "invoices": [i.to_dict() for i in db.session.query(Invoice).order_by(Invoice.occurred_at.desc(), Invoice.id.desc()).all()],
        "repayments": [r.to_dict() for r in db.session.query(Repayment).order_by(Repayment.occurred_at.desc(), Repayment.id.desc()).all()],
        "cylinder_transactions": [
            t.to_dict()
            for t in db.session.query(CylinderTransaction).order_by(CylinderTransaction.occurred_at.desc(), CylinderTransaction.id.desc()).all()
        ],
        "customer_types": settings_service.get_customer_types(),
        "settings": public_settings,
        "exported_at": to_utc_z(utcnow()),
    }


def _wipe_ledger() -> None:
    for model in _LEDGER_MODELS_DELETE_ORDER:
        db.session.query(model).delete(synchronize_session=False)
    # Drop stale instances so re-inserted rows can reuse their ids.
    db.session.expunge_all()


def _when(raw) -> object:
    try:
        return coerce_datetime(raw) or utcnow()
    except ValueError:
        raise ValidationError(f"Invalid date in snapshot: {raw!r}")


def _import_product(row: dict) -> Product:
    return Product(
        id=coerce_int("product.id", row["id"]),
        name=row.get("name") or f"Product {row['id']}",
        size=row.get("size"),
        is_active=bool(row["is_active"]) if row.get("is_active") is not None else True,
    )


def _import_customer(row: dict) -> Customer:
    serial = row.get("serial_number")
    return Customer(
        id=coerce_int("customer.id", row["id"]),
        serial_number=coerce_int("customer.serial_number", serial) if serial else None,
        name=row.get("name") or "",
        customer_type=row.get("customer_type"),
        city=row.get("city"),
        village=row.get("village"),
        neighborhood=row.get("neighborhood"),
        phone=row.get("phone"),
        whatsapp=row.get("whatsapp"),
        total_purchases_cents=coerce_int("customer.total_purchases_cents", row.get("total_purchases_cents") or 0),
        balance_cents=coerce_int("customer.balance_cents", row.get("balance_cents") or 0),
    )


def _import_invoice(row: dict) -> Invoice:
    payment = row.get("payment_details") or {}
    total = coerce_int("invoice.total_amount_cents", row.get("total_amount_cents") or 0)
    cash = coerce_int("invoice.cash_cents", payment.get("cash_cents") or 0)
    cheque = coerce_int("invoice.cheque_cents", payment.get("cheque_cents") or 0)
    debt = payment.get("debt_cents")
    debt = coerce_int("invoice.debt_cents", debt) if debt is not None else total - cash - cheque

    invoice = Invoice(
        id=coerce_int("invoice.id", row["id"]),
        customer_id=coerce_int("invoice.customer_id", row["customer_id"]),
        customer_name=row.get("customer_name") or "",
        kind=row.get("kind") or INVOICE_KIND_SALE,
        occurred_at=_when(row.get("occurred_at")),
        total_amount_cents=total,
        cash_cents=cash,
        cheque_cents=cheque,
        cheque_number=payment.get("cheque_number"),
        cheque_date=coerce_datetime(payment.get("cheque_date")),
        debt_cents=debt,
        status=row.get("status") or invoice_status(total, debt),
    )
    invoice.lines = [
        InvoiceLine(
            position=position,
            product_id=coerce_int("invoice.items.product_id", item["product_id"]) if item.get("product_id") is not None else None,
            product_name=item.get("product_name") or "",
            quantity=coerce_int("invoice.items.quantity", item.get("quantity") or 1),
        )
        for position, item in enumerate(row.get("items") or [])
    ]
    return invoice


def _import_repayment(row: dict) -> Repayment:
    return Repayment(
        id=coerce_int("repayment.id", row["id"]),
        customer_id=coerce_int("repayment.customer_id", row["customer_id"]),
        customer_name=row.get("customer_name") or "",
        amount_cents=coerce_int("repayment.amount_cents", row.get("amount_cents") or 0),
        method=row.get("method") or "cash",
        note=row.get("note"),
        occurred_at=_when(row.get("occurred_at")),
    )


def _import_cylinder_transaction(row: dict, product_names: dict[int, str]) -> CylinderTransaction:
    direction = row.get("type") or row.get("direction")
    if direction not in (CYLINDER_OUT, CYLINDER_IN):
        raise ValidationError(f"Invalid cylinder transaction type in snapshot: {direction!r}")
    product_id = coerce_int("cylinder_transaction.product_id", row["product_id"])
    return CylinderTransaction(
        id=coerce_int("cylinder_transaction.id", row["id"]),
        customer_id=coerce_int("cylinder_transaction.customer_id", row["customer_id"]),
        customer_name=row.get("customer_name") or "",
        product_id=product_id,
        product_name=row.get("product_name") or product_names.get(product_id, ""),
        quantity=coerce_int("cylinder_transaction.quantity", row.get("quantity")),
        direction=direction,
        note=row.get("note"),
        occurred_at=_when(row.get("occurred_at")),
    )


def _import_cylinder_balances(row: dict, product_ids: set[int], ids_by_name: dict[str, int]) -> list[CustomerCylinderBalance]:
    """
    Holdings keyed by product id, or by product name in older snapshots.

    Unknown products are skipped; reconciliation rebuilds holdings from the
    cylinder history anyway.
    """
    raw = row.get("cylinder_balance") or {}
    if not isinstance(raw, dict):
        raise ValidationError(f"cylinder_balance of customer {row['id']} must be an object")

    customer_id = coerce_int("customer.id", row["id"])
    quantities: dict[int, int] = {}
    for key, qty in raw.items():
        key = str(key).strip()
        product_id = int(key) if key.isdigit() else ids_by_name.get(key)
        quantity = coerce_int("customer.cylinder_balance", qty)
        if product_id in product_ids:
            quantities[product_id] = quantities.get(product_id, 0) + quantity
    return [
        CustomerCylinderBalance(customer_id=customer_id, product_id=product_id, quantity=quantity)
        for product_id, quantity in sorted(quantities.items())
        if quantity
    ]


def _require_unique(label: str, values) -> None:
    seen = set()
    duplicates = set()
    for value in values:
        if value is None:
            continue
        if value in seen:
            duplicates.add(value)
        seen.add(value)
    if duplicates:
        raise ValidationError(f"Snapshot has duplicate {label}: {sorted(duplicates)}")


def import_snapshot(data: dict) -> dict:
    """
    Replace every ledger collection with the snapshot's content, then
    backfill legacy fields and reconcile all cached balances.

    Settings and customer types are merged only when present. The outbox,
    sync flag and admin password are local state and are left untouched.

    Raises:
        ValidationError: snapshot malformed (nothing is written)
    """
    if not isinstance(data, dict):
        raise ValidationError("Snapshot must be a JSON object")
    missing = [k for k in REQUIRED_KEYS if not isinstance(data.get(k), list)]
    if missing:
        raise ValidationError(f"Snapshot missing collections: {', '.join(missing)}")

    try:
        products = [_import_product(r) for r in data["products"]]
        product_ids = {p.id for p in products}
        product_names = {p.id: p.name for p in products}
        customers = [_import_customer(r) for r in data["customers"]]
        ids_by_name = {p.name: p.id for p in reversed(products)}
        cylinder_balances = [
            balance
            for r in data["customers"]
            for balance in _import_cylinder_balances(r, product_ids, ids_by_name)
        ]
        invoices = [_import_invoice(r) for r in data["invoices"]]
        repayments = [_import_repayment(r) for r in data.get("repayments") or []]
        cylinder_txs = [
            _import_cylinder_transaction(r, product_names)
            for r in data.get("cylinder_transactions") or []
        ]
    except (KeyError, TypeError) as exc:
        raise ValidationError(f"Malformed snapshot record: {exc}")

    _require_unique("product ids", [p.id for p in products])
    _require_unique("customer ids", [c.id for c in customers])
    _require_unique("customer serial numbers", [c.serial_number for c in customers])
    _require_unique("invoice ids", [i.id for i in invoices])
    _require_unique("repayment ids", [r.id for r in repayments])
    _require_unique("cylinder transaction ids", [t.id for t in cylinder_txs])

    unknown_products = sorted({tx.product_id for tx in cylinder_txs} - product_ids)
    if unknown_products:
        raise ValidationError(f"Cylinder transactions reference unknown products: {unknown_products}")
    for invoice in invoices:
        for line in invoice.lines:
            if line.product_id is not None and line.product_id not in product_ids:
                line.product_id = None

    try:
        _wipe_ledger()
        db.session.add_all(products)
        db.session.flush()
        db.session.add_all(customers)
        db.session.flush()

        db.session.add_all(cylinder_balances)
        db.session.add_all(invoices)
        db.session.add_all(repayments)
        db.session.add_all(cylinder_txs)

        if isinstance(data.get("customer_types"), list) and data["customer_types"]:
            settings_service.save_customer_types(data["customer_types"], commit=False)
        if isinstance(data.get("settings"), dict):
            public = {
                k: v for k, v in data["settings"].items()
                if k in settings_service.PUBLIC_SETTINGS_DEFAULTS
            }
            if public:
                settings_service.update_settings(public, commit=False)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    serials_assigned = customer_service.assign_missing_serial_numbers()
    reconciliation = reconciliation_service.reconcile_all()

    return {
        "customers": len(customers),
        "products": len(products),
        "invoices": len(invoices),
        "repayments": len(repayments),
        "cylinder_transactions": len(cylinder_txs),
        "serials_assigned": serials_assigned,
        "reconciliation": reconciliation,
    }


def factory_reset() -> None:
    """Wipe every collection, settings, and the outbox."""
    _wipe_ledger()
    db.session.query(SyncOutboxEntry).delete(synchronize_session=False)
    db.session.query(AppSetting).delete(synchronize_session=False)
    db.session.commit()
