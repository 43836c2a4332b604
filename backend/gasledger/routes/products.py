# Overview: Flask API routes for the product catalog; parses input and returns JSON responses.

# backend/gasledger/routes/products.py
"""
Product catalog routes.

Products are soft-deleted (deactivated); history keeps referring to them.
"""
from flask import Blueprint, request
from ..services import products_service
from ..models import Product
from ..validation import (
    ModelValidationPolicy,
    validate_payload,
    ValidationError,
)
from ..decorators import require_admin_confirmation

PRODUCT_POLICY = ModelValidationPolicy(
    writable_fields={"name", "size", "is_active"},
    required_on_create={"name"},
)

products_bp = Blueprint("products", __name__, url_prefix="/api/products")


@products_bp.get("")
def list_products():
    """
    List products by name.

    Query params:
    - active_only: bool (optional) - hide deactivated products (sales screens)
    """
    active_only = (request.args.get("active_only") or "").strip().lower() in {"1", "true", "yes"}
    products = products_service.list_products(active_only=active_only)
    return {"items": [p.to_dict() for p in products], "count": len(products)}


@products_bp.post("")
def create_product_route():
    payload = request.get_json(silent=True) or {}

    try:
        patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_POLICY, partial=False)
        created = products_service.create_product(patch=patch)
    except ValidationError as e:
        return {"error": str(e)}, 400

    return created.to_dict(), 201


@products_bp.get("/<int:product_id>")
def get_product_route(product_id: int):
    p = products_service.get_product(product_id)
    if not p:
        return {"error": "Product not found"}, 404
    return p.to_dict()


@products_bp.put("/<int:product_id>")
def update_product_route(product_id: int):
    payload = request.get_json(silent=True) or {}

    try:
        patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_POLICY, partial=True)
    except ValidationError as e:
        return {"error": str(e)}, 400

    updated = products_service.update_product(product_id=product_id, patch=patch)
    if not updated:
        return {"error": "Product not found"}, 404
    return updated.to_dict()


@products_bp.delete("/<int:product_id>")
@require_admin_confirmation
def delete_product_route(product_id: int):
    """Deactivate a product (soft delete)."""
    if not products_service.deactivate_product(product_id=product_id):
        return {"error": "Product not found"}, 404
    return "", 204
