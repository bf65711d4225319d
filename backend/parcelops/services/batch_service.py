# Overview: Batch Store; receiving stock as FIFO cost layers and keeping the stock cache honest.

# backend/parcelops/services/batch_service.py
"""
Batch Store Invariants (authoritative)

- One InventoryBatch per stock receipt; quantity_received and unit_cost_cents
  never change after creation.
- 0 <= remaining_quantity <= quantity_received at all times.
- FIFO order is received_at ASC, id ASC.
- Batches are never deleted.
- Product.current_stock is a cache of SUM(remaining_quantity); every writer
  updates both in the same transaction. reconcile_current_stock() repairs drift.
"""

from __future__ import annotations

from datetime import datetime, timedelta

from flask import current_app
from sqlalchemy import exists, func

from ..extensions import db
from ..models import Product, InventoryBatch
from ..time_utils import utcnow, normalize_datetime
from ..validation import ValidationError
from .concurrency import run_with_retry
from .products_service import get_product


def _parse_received_at(value) -> datetime:
    if value is None:
        return utcnow()
    try:
        dt = normalize_datetime(value)
    except ValueError:
        raise ValidationError("invalid received_at")
    if dt is None:
        raise ValidationError("invalid received_at")
    return dt


def _add_batch_inner(
    *,
    product: Product,
    quantity: int,
    unit_cost_cents: int,
    received_dt: datetime,
    supplier_reference: str | None = None,
    notes: str | None = None,
    update_stock_cache: bool = True,
) -> InventoryBatch:
    """Core RECEIVE logic without locking, retry or commit."""
    batch = InventoryBatch(
        product_id=product.id,
        quantity_received=quantity,
        remaining_quantity=quantity,
        unit_cost_cents=unit_cost_cents,
        received_at=received_dt,
        supplier_reference=supplier_reference,
        notes=notes,
    )
    db.session.add(batch)
    if update_stock_cache:
        product.current_stock = (product.current_stock or 0) + quantity
    db.session.flush()
    return batch


def add_batch(
    *,
    product_id: int,
    quantity: int,
    unit_cost_cents: int,
    received_at=None,
    supplier_reference: str | None = None,
    notes: str | None = None,
) -> InventoryBatch:
    """
    Receive stock as a new FIFO layer and bump the product's stock cache.

    A backdated received_at is allowed (late data entry) and slots the batch
    into FIFO order accordingly; future timestamps are rejected.
    """
    if quantity is None or quantity <= 0:
        raise ValidationError("quantity must be > 0")
    if unit_cost_cents is None or unit_cost_cents < 0:
        raise ValidationError("unit_cost_cents must be >= 0")

    received_dt = _parse_received_at(received_at)
    if received_dt > (utcnow() + timedelta(minutes=2)):
        raise ValidationError("received_at cannot be in the future")

    def _op():
        product = get_product(product_id, lock=True)
        batch = _add_batch_inner(
            product=product,
            quantity=quantity,
            unit_cost_cents=unit_cost_cents,
            received_dt=received_dt,
            supplier_reference=supplier_reference,
            notes=notes,
        )
        db.session.commit()
        return batch

    batch = run_with_retry(_op)
    current_app.logger.info(
        "Received batch %s for product %s: %s units at %s cents",
        batch.id, product_id, quantity, unit_cost_cents,
    )
    return batch


def get_batches_for_product(product_id: int, *, active_only: bool = False) -> list[InventoryBatch]:
    """All batches for a product in FIFO order (oldest first)."""
    get_product(product_id)
    query = db.session.query(InventoryBatch).filter(InventoryBatch.product_id == product_id)
    if active_only:
        query = query.filter(InventoryBatch.remaining_quantity > 0)
    return query.order_by(InventoryBatch.received_at.asc(), InventoryBatch.id.asc()).all()


def seed_initial_batches(*, received_at=None) -> list[InventoryBatch]:
    """
    One-time migration: turn each product's pre-FIFO current_stock into a
    single batch at default_cogs_cents.

    Products that already have batches are skipped, so the command is safe to
    re-run. current_stock is not incremented; it already counts these units.
    Default received_at is one day before now so the seed is the oldest layer.
    """
    seed_dt = _parse_received_at(received_at) if received_at is not None else utcnow() - timedelta(days=1)
    note = current_app.config.get("INITIAL_BATCH_NOTE", "Initial batch from existing inventory")

    has_batches = exists().where(InventoryBatch.product_id == Product.id)

    def _op():
        products = db.session.query(Product).filter(
            Product.current_stock > 0,
            ~has_batches,
        ).order_by(Product.id.asc()).all()

        created = []
        for product in products:
            batch = _add_batch_inner(
                product=product,
                quantity=product.current_stock,
                unit_cost_cents=product.default_cogs_cents or 0,
                received_dt=seed_dt,
                notes=note,
                update_stock_cache=False,
            )
            created.append(batch)
            current_app.logger.info(
                "Created initial batch for %s: %s units at %s cents",
                product.name, batch.quantity_received, batch.unit_cost_cents,
            )
        db.session.commit()
        return created

    return run_with_retry(_op)


def batch_remaining_totals(product_id: int | None = None) -> dict[int, int]:
    """SUM(remaining_quantity) per product, from batch rows."""
    query = db.session.query(
        InventoryBatch.product_id,
        func.coalesce(func.sum(InventoryBatch.remaining_quantity), 0),
    )
    if product_id is not None:
        query = query.filter(InventoryBatch.product_id == product_id)
    rows = query.group_by(InventoryBatch.product_id).all()
    return {pid: int(total or 0) for pid, total in rows}


def reconcile_current_stock(*, product_id: int | None = None, dry_run: bool = False) -> list[dict]:
    """
    Recompute Product.current_stock from batch rows.

    Returns one entry per drifted product:
    {"product_id", "product_name", "cached", "actual"}.
    With dry_run=True nothing is written.
    """
    def _op():
        query = db.session.query(Product)
        if product_id is not None:
            query = query.filter(Product.id == product_id)
        products = query.order_by(Product.id.asc()).all()
        totals = batch_remaining_totals(product_id)

        drift = []
        for product in products:
            actual = totals.get(product.id, 0)
            if product.current_stock != actual:
                drift.append({
                    "product_id": product.id,
                    "product_name": product.name,
                    "cached": product.current_stock,
                    "actual": actual,
                })
                if not dry_run:
                    product.current_stock = actual

        if dry_run:
            db.session.rollback()
        else:
            db.session.commit()
        return drift

    drift = run_with_retry(_op)
    for entry in drift:
        current_app.logger.warning(
            "Stock cache drift for product %s: cached=%s actual=%s%s",
            entry["product_id"], entry["cached"], entry["actual"],
            " (dry run)" if dry_run else " (repaired)",
        )
    return drift
