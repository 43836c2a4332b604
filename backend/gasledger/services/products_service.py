# backend/gasledger/services/products_service.py
"""
Products Service

Products are never hard-deleted: invoice lines and cylinder balances keep
referring to them. Deactivation hides a product from new sales only.
Renames never rewrite history because names are snapshotted on every
invoice line and cylinder transaction.
"""
from __future__ import annotations
from ..extensions import db
from ..models import Product
from ..validation import ValidationError
from . import sync_service
from .sync_service import OP_UPSERT, ENTITY_PRODUCT

PRODUCT_MUTABLE_FIELDS = {"name", "size", "is_active"}


def apply_product_patch(p: Product, patch: dict) -> None:
    for k, v in patch.items():
        if k not in PRODUCT_MUTABLE_FIELDS:
            continue
        setattr(p, k, v)


def list_products(*, active_only: bool = False) -> list[Product]:
    q = db.session.query(Product)
    if active_only:
        q = q.filter(Product.is_active.is_(True))
    return q.order_by(Product.name.asc(), Product.id.asc()).all()


def get_product(product_id: int) -> Product | None:
    return db.session.get(Product, product_id)


def find_product_by_name(name: str, *, active_only: bool = False) -> Product | None:
    """Exact name match; active products win over inactive ones with the same name."""
    q = db.session.query(Product).filter(Product.name == name.strip())
    if active_only:
        q = q.filter(Product.is_active.is_(True))
    return q.order_by(Product.is_active.desc(), Product.id.asc()).first()


def _commit_product(p: Product) -> Product:
    db.session.flush()
    sync_service.enqueue_change(ENTITY_PRODUCT, p.id, OP_UPSERT, p.to_dict())
    db.session.commit()
    sync_service.schedule_push()
    return p


def create_product(*, patch: dict) -> Product:
    """
    Create product using a validated patch dict.

    Raises:
        ValidationError: name missing
    """
    if not (patch.get("name") or "").strip():
        raise ValidationError("name is required")

    p = Product(is_active=True)
    apply_product_patch(p, patch)
    db.session.add(p)
    return _commit_product(p)


def update_product(*, product_id: int, patch: dict) -> Product | None:
    p = db.session.get(Product, product_id)
    if p is None:
        return None
    apply_product_patch(p, patch)
    return _commit_product(p)


def deactivate_product(*, product_id: int) -> bool:
    """
    Soft-delete a product.

    Returns True if deactivated (or already inactive), False if not found.
    """
    p = db.session.get(Product, product_id)
    if p is None:
        return False
    if p.is_active:
        p.is_active = False
        _commit_product(p)
    return True
