# backend/parcelops/routes/inventory.py
"""
Inventory valuation and maintenance routes.

Quantities move only through the FIFO allocator; nothing here writes
current_stock directly except reconcile, which recomputes it from batches.
"""
from flask import Blueprint, request, current_app

from ..validation import (
    ValidationError,
    NotFoundError,
    ConflictError,
    coerce_int,
    require_positive_quantity,
)
from ..services import batch_service, fifo_service


inventory_bp = Blueprint("inventory", __name__, url_prefix="/api/inventory")


@inventory_bp.get("/summary")
def inventory_summary_route():
    """Per-product remaining stock, active batches and weighted average cost."""
    return {"products": fifo_service.get_product_cost_summary()}, 200


@inventory_bp.post("/reconcile")
def reconcile_route():
    """
    Recompute Product.current_stock from batch rows.

    Body (optional): {"product_id": int, "dry_run": bool}
    """
    payload = request.get_json(silent=True) or {}

    try:
        product_id = payload.get("product_id")
        if product_id is not None:
            product_id = coerce_int("product_id", product_id)
        dry_run = payload.get("dry_run", False)
        if not isinstance(dry_run, bool):
            raise ValidationError("dry_run must be true or false")
        drift = batch_service.reconcile_current_stock(product_id=product_id, dry_run=dry_run)
    except ValidationError as e:
        return {"error": str(e)}, 400
    except Exception:
        current_app.logger.exception("Stock reconciliation failed")
        return {"error": "Internal server error"}, 500

    return {"dry_run": dry_run, "drift_count": len(drift), "drift": drift}, 200


@inventory_bp.post("/allocate")
def allocate_route():
    """
    Low-level FIFO allocation of one product to an order.

    Does not mark the order as allocated; use /api/orders/<id>/allocate for
    the guarded, allocate-once path.
    """
    payload = request.get_json(silent=True) or {}

    try:
        missing = sorted(k for k in ("product_id", "order_id", "quantity") if k not in payload)
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")
        product_id = coerce_int("product_id", payload["product_id"])
        order_id = coerce_int("order_id", payload["order_id"])
        quantity = require_positive_quantity(payload["quantity"])
        result = fifo_service.allocate(product_id, order_id, quantity)
    except ValidationError as e:
        return {"error": str(e)}, 400
    except NotFoundError as e:
        return {"error": str(e)}, 404
    except ConflictError as e:
        return {"error": str(e)}, 409
    except Exception:
        current_app.logger.exception("FIFO allocation failed")
        return {"error": "Internal server error"}, 500

    return {"allocation": result.to_dict()}, 200


@inventory_bp.post("/seed-batches")
def seed_batches_route():
    """One-time: convert pre-FIFO stock counts into initial batches."""
    payload = request.get_json(silent=True) or {}

    try:
        batches = batch_service.seed_initial_batches(received_at=payload.get("received_at"))
    except ValidationError as e:
        return {"error": str(e)}, 400

    return {"created_count": len(batches), "batches": [b.to_dict() for b in batches]}, 201
