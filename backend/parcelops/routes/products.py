# backend/parcelops/routes/products.py
"""
Product catalog and batch receiving routes.

Time semantics:
- received_at accepts ISO-8601 datetimes with Z/offsets; stored UTC-naive.
- Batches are listed in FIFO order (oldest first).
"""
from flask import Blueprint, request, current_app

from ..models import Product, InventoryBatch
from ..validation import (
    ModelValidationPolicy,
    validate_payload,
    ValidationError,
    NotFoundError,
    ConflictError,
    enforce_rules_product,
    enforce_rules_batch_receive,
)
from ..services import products_service, batch_service


products_bp = Blueprint("products", __name__, url_prefix="/api/products")

PRODUCT_CREATE_POLICY = ModelValidationPolicy(
    writable_fields={"name", "default_cogs_cents", "current_stock"},
    required_on_create={"name"},
)

PRODUCT_UPDATE_POLICY = ModelValidationPolicy(
    writable_fields={"name", "default_cogs_cents"},
)

BATCH_RECEIVE_POLICY = ModelValidationPolicy(
    writable_fields={"quantity_received", "unit_cost_cents", "received_at", "supplier_reference", "notes"},
    required_on_create={"quantity_received", "unit_cost_cents"},
)


@products_bp.get("")
def list_products_route():
    return {"products": [p.to_dict() for p in products_service.list_products()]}, 200


@products_bp.post("")
def create_product_route():
    payload = request.get_json(silent=True) or {}

    try:
        patch = validate_payload(
            model=Product,
            payload=payload,
            policy=PRODUCT_CREATE_POLICY,
            partial=False,
        )
        enforce_rules_product(patch)
        product = products_service.create_product(
            name=patch["name"],
            default_cogs_cents=patch.get("default_cogs_cents") or 0,
            current_stock=patch.get("current_stock") or 0,
        )
    except ValidationError as e:
        return {"error": str(e)}, 400
    except ConflictError as e:
        return {"error": str(e)}, 409

    return {"product": product.to_dict()}, 201


@products_bp.patch("/<int:product_id>")
def update_product_route(product_id: int):
    """
    Update name or default cost.

    Recorded order costs are never recalculated from default_cogs_cents.
    """
    payload = request.get_json(silent=True) or {}

    try:
        patch = validate_payload(
            model=Product,
            payload=payload,
            policy=PRODUCT_UPDATE_POLICY,
            partial=True,
        )
        enforce_rules_product(patch)
        product = products_service.update_product(product_id, patch)
    except ValidationError as e:
        return {"error": str(e)}, 400
    except NotFoundError as e:
        return {"error": str(e)}, 404
    except ConflictError as e:
        return {"error": str(e)}, 409

    return {"product": product.to_dict()}, 200


@products_bp.delete("/<int:product_id>")
def delete_product_route(product_id: int):
    try:
        products_service.delete_product(product_id)
    except NotFoundError as e:
        return {"error": str(e)}, 404
    except ConflictError as e:
        return {"error": str(e)}, 409
    return {"deleted": product_id}, 200


@products_bp.get("/<int:product_id>/batches")
def list_batches_route(product_id: int):
    active_only = request.args.get("active_only", "false").lower() in ("1", "true", "yes")
    try:
        batches = batch_service.get_batches_for_product(product_id, active_only=active_only)
    except NotFoundError as e:
        return {"error": str(e)}, 404
    return {"product_id": product_id, "batches": [b.to_dict() for b in batches]}, 200


@products_bp.post("/<int:product_id>/batches")
def receive_batch_route(product_id: int):
    """Receive stock as a new FIFO batch."""
    payload = request.get_json(silent=True) or {}

    try:
        patch = validate_payload(
            model=InventoryBatch,
            payload=payload,
            policy=BATCH_RECEIVE_POLICY,
            partial=False,
        )
        enforce_rules_batch_receive(patch)
        batch = batch_service.add_batch(
            product_id=product_id,
            quantity=patch["quantity_received"],
            unit_cost_cents=patch["unit_cost_cents"],
            received_at=patch.get("received_at"),
            supplier_reference=patch.get("supplier_reference"),
            notes=patch.get("notes"),
        )
    except ValidationError as e:
        return {"error": str(e)}, 400
    except NotFoundError as e:
        return {"error": str(e)}, 404
    except Exception:
        current_app.logger.exception("Failed to receive batch")
        return {"error": "Internal server error"}, 500

    product = products_service.get_product(product_id)
    return {"batch": batch.to_dict(), "product": product.to_dict()}, 201
