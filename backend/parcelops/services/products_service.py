# Overview: Service-layer operations for the product catalog.

from __future__ import annotations

from flask import current_app

from ..extensions import db
from ..models import Product, InventoryBatch, name_key
from ..validation import ConflictError, NotFoundError, ValidationError
from .concurrency import lock_for_update, run_with_retry


def get_product(product_id: int, *, lock: bool = False) -> Product:
    query = db.session.query(Product).filter_by(id=product_id)
    if lock:
        query = lock_for_update(query)
    product = query.first()
    if product is None:
        raise NotFoundError(f"product {product_id} not found")
    return product


def list_products() -> list[Product]:
    return db.session.query(Product).order_by(Product.name.asc()).all()


def find_product_by_name(name: str) -> Product | None:
    """Case-insensitive exact lookup."""
    return db.session.query(Product).filter_by(name_key=name_key(name)).first()


def create_product(*, name: str, default_cogs_cents: int = 0, current_stock: int = 0) -> Product:
    """
    Create a catalog product.

    current_stock is only accepted for catalog setup before batches exist;
    seed_initial_batches() later turns it into one FIFO layer.
    """
    cleaned = " ".join((name or "").split())
    if not cleaned:
        raise ValidationError("name cannot be blank")
    if current_stock < 0:
        raise ValidationError("current_stock must be >= 0")

    def _op():
        if find_product_by_name(cleaned) is not None:
            raise ConflictError(f"product named {cleaned!r} already exists")
        product = Product(
            name=cleaned,
            name_key=name_key(cleaned),
            default_cogs_cents=default_cogs_cents,
            current_stock=current_stock,
        )
        db.session.add(product)
        db.session.commit()
        return product

    product = run_with_retry(_op)
    current_app.logger.info("Created product %s (%r)", product.id, product.name)
    return product


def update_product(product_id: int, patch: dict) -> Product:
    """
    Update name and/or default cost.

    Changing default_cogs_cents never touches recorded order costs or batch
    costs; those are frozen at allocation time.
    """
    def _op():
        product = get_product(product_id, lock=True)
        if "name" in patch:
            cleaned = " ".join((patch["name"] or "").split())
            if not cleaned:
                raise ValidationError("name cannot be blank")
            existing = find_product_by_name(cleaned)
            if existing is not None and existing.id != product.id:
                raise ConflictError(f"product named {cleaned!r} already exists")
            product.name = cleaned
            product.name_key = name_key(cleaned)
        if "default_cogs_cents" in patch:
            product.default_cogs_cents = patch["default_cogs_cents"]
        db.session.commit()
        return product

    return run_with_retry(_op)


def delete_product(product_id: int) -> None:
    """Products referenced by batches are kept for cost history."""
    def _op():
        product = get_product(product_id, lock=True)
        batch_count = db.session.query(InventoryBatch).filter_by(product_id=product.id).count()
        if batch_count:
            raise ConflictError(
                f"product {product_id} has {batch_count} inventory batches and cannot be deleted"
            )
        db.session.delete(product)
        db.session.commit()

    run_with_retry(_op)
