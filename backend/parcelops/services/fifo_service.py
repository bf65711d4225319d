# Overview: FIFO allocator, allocation ledger and reversal engine.

# backend/parcelops/services/fifo_service.py
"""
FIFO Cost Allocation Invariants (authoritative)

Allocation:
- Batches are consumed oldest-first: received_at ASC, then id ASC.
- Each call takes min(remaining, still_needed) per batch, writes one ledger
  row per batch touched, and decrements the batch in the SAME transaction.
- Partial fulfillment is not rolled back here; the result reports
  success=False and the caller decides (order_service rolls the whole order
  back). No batch ever goes below zero.
- Product.current_stock moves by the quantity actually allocated.
- Allocation amounts are always derived from batch rows, never from the
  current_stock cache.
- Nothing is drawn for an order whose return is already received.

Reversal:
- Stock goes back only while it is out: ledger rows exist and the return
  toggle has not already restocked them.
- Ledger rows are grouped by batch and the summed quantity goes back to the
  exact batch it came from (clamped at quantity_received).
- Rows whose batch or product no longer exists are skipped and reported; the
  rest of the order is still restored.
- Ledger rows are deleted and the allocation flag cleared in the same
  transaction.

Costs:
- unit_cost_cents on a ledger row is the batch cost at allocation time.
  Nothing in this module reads Product.default_cogs_cents for order costs.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime

from flask import current_app
from sqlalchemy import case, func

from ..extensions import db
from ..models import Product, InventoryBatch, Order, AllocationLineItem
from ..time_utils import utcnow
from ..validation import ConflictError, NotFoundError, require_positive_quantity
from .concurrency import lock_for_update, run_with_retry
from .products_service import get_product


# =============================================================================
# RESULT TYPES
# =============================================================================

@dataclass(frozen=True)
class AllocatedLine:
    batch_id: int
    quantity: int
    unit_cost_cents: int

    @property
    def total_cost_cents(self) -> int:
        return self.quantity * self.unit_cost_cents

    def to_dict(self) -> dict:
        return {
            "batch_id": self.batch_id,
            "quantity": self.quantity,
            "unit_cost_cents": self.unit_cost_cents,
            "total_cost_cents": self.total_cost_cents,
        }


@dataclass(frozen=True)
class AllocationResult:
    product_id: int
    order_id: int
    requested_quantity: int
    allocated_quantity: int
    total_cost_cents: int
    lines: tuple[AllocatedLine, ...] = ()

    @property
    def success(self) -> bool:
        return self.allocated_quantity == self.requested_quantity

    @property
    def shortfall(self) -> int:
        return self.requested_quantity - self.allocated_quantity

    def to_dict(self) -> dict:
        return {
            "product_id": self.product_id,
            "order_id": self.order_id,
            "requested_quantity": self.requested_quantity,
            "allocated_quantity": self.allocated_quantity,
            "total_cost_cents": self.total_cost_cents,
            "success": self.success,
            "lines": [line.to_dict() for line in self.lines],
        }


@dataclass
class LedgerShift:
    """Outcome of moving an order's ledger quantities into or out of batches."""
    moved_quantity: int = 0
    clamped_quantity: int = 0
    missing_batch_ids: list[int] = field(default_factory=list)
    missing_product_ids: list[int] = field(default_factory=list)

    @property
    def complete(self) -> bool:
        return not self.missing_batch_ids and not self.missing_product_ids


@dataclass(frozen=True)
class ReversalResult:
    order_id: int
    line_count: int
    restored_quantity: int
    stock_restored: bool
    missing_batch_ids: tuple[int, ...] = ()
    missing_product_ids: tuple[int, ...] = ()

    @property
    def success(self) -> bool:
        return not self.missing_batch_ids and not self.missing_product_ids

    def to_dict(self) -> dict:
        return {
            "order_id": self.order_id,
            "success": self.success,
            "line_count": self.line_count,
            "restored_quantity": self.restored_quantity,
            "stock_restored": self.stock_restored,
            "missing_batch_ids": list(self.missing_batch_ids),
            "missing_product_ids": list(self.missing_product_ids),
        }


# =============================================================================
# HELPERS
# =============================================================================

def get_order(order_id: int, *, lock: bool = False) -> Order:
    query = db.session.query(Order).filter_by(id=order_id)
    if lock:
        query = lock_for_update(query)
    order = query.first()
    if order is None:
        raise NotFoundError(f"order {order_id} not found")
    return order


def apply_stock_delta(product: Product, delta: int) -> None:
    """Move the current_stock cache, flooring at zero and logging drift."""
    new_value = (product.current_stock or 0) + delta
    if new_value < 0:
        current_app.logger.warning(
            "Stock cache for product %s would go negative (%s); clamping to 0. "
            "Run inventory reconcile.",
            product.id, new_value,
        )
        new_value = 0
    product.current_stock = new_value


def _fifo_batches_query(product_id: int):
    return db.session.query(InventoryBatch).filter(
        InventoryBatch.product_id == product_id,
        InventoryBatch.remaining_quantity > 0,
    ).order_by(
        InventoryBatch.received_at.asc(),
        InventoryBatch.id.asc(),
    )


def _ledger_lines(order_id: int) -> list[AllocationLineItem]:
    return db.session.query(AllocationLineItem).filter_by(
        order_id=order_id
    ).order_by(AllocationLineItem.id.asc()).all()


# =============================================================================
# ALLOCATION
# =============================================================================

def _allocate_inner(
    *,
    product: Product,
    order: Order,
    quantity: int,
    allocated_at: datetime,
) -> AllocationResult:
    """Core FIFO walk without retry or commit. Caller owns the transaction."""
    batches = lock_for_update(_fifo_batches_query(product.id)).all()

    still_needed = quantity
    total_cost = 0
    lines: list[AllocatedLine] = []

    for batch in batches:
        if still_needed == 0:
            break

        taken = min(batch.remaining_quantity, still_needed)
        if taken <= 0:
            continue

        batch.remaining_quantity -= taken

        db.session.add(AllocationLineItem(
            order_id=order.id,
            product_id=product.id,
            batch_id=batch.id,
            product_name=product.name,
            quantity=taken,
            unit_cost_cents=batch.unit_cost_cents,
            total_cost_cents=taken * batch.unit_cost_cents,
            allocated_at=allocated_at,
        ))

        lines.append(AllocatedLine(batch.id, taken, batch.unit_cost_cents))
        total_cost += taken * batch.unit_cost_cents
        still_needed -= taken

    allocated = quantity - still_needed
    if allocated:
        apply_stock_delta(product, -allocated)

    db.session.flush()

    return AllocationResult(
        product_id=product.id,
        order_id=order.id,
        requested_quantity=quantity,
        allocated_quantity=allocated,
        total_cost_cents=total_cost,
        lines=tuple(lines),
    )


def allocate(product_id: int, order_id: int, quantity: int) -> AllocationResult:
    """
    Allocate `quantity` units of a product to an order, oldest batches first.

    Out-of-stock is a result, not an error: success=False with whatever could
    be allocated. Non-positive quantity, unknown product or unknown order raise
    before anything is mutated, and so does an order whose return is already
    received (ConflictError).

    NOTE: this does not check or set Order.cogs_allocated. Order-level
    allocate-once is enforced by order_service.allocate_order().
    """
    quantity = require_positive_quantity(quantity)

    def _op():
        product = get_product(product_id, lock=True)
        order = get_order(order_id, lock=True)
        if order.return_received:
            raise ConflictError(f"order {order_id} is marked return received; nothing can be allocated")
        result = _allocate_inner(
            product=product,
            order=order,
            quantity=quantity,
            allocated_at=utcnow(),
        )
        db.session.commit()
        return result

    result = run_with_retry(_op)
    log_allocation(result)
    return result


def log_allocation(result: AllocationResult, *, product_label: str | None = None) -> None:
    label = product_label or f"product {result.product_id}"
    if result.success:
        current_app.logger.info(
            "Allocated %s units of %s to order %s, total cost %s cents",
            result.allocated_quantity, label, result.order_id, result.total_cost_cents,
        )
    else:
        current_app.logger.warning(
            "Could not fully allocate %s of %s units of %s for order %s",
            result.shortfall, result.requested_quantity, label, result.order_id,
        )


# =============================================================================
# LEDGER QUANTITY MOVEMENT (shared by reversal and return toggles)
# =============================================================================

def shift_ledger_stock(lines: list[AllocationLineItem], *, direction: int) -> LedgerShift:
    """
    Move an order's ledger quantities back into (+1) or out of (-1) the exact
    batches they were drawn from, keeping current_stock in step.

    Restores clamp at quantity_received, removals clamp at zero; any clamped
    units are logged and counted. Missing batch/product rows are skipped.
    No commit.
    """
    if direction not in (1, -1):
        raise ValueError("direction must be 1 or -1")

    shift = LedgerShift()
    if not lines:
        return shift

    per_batch: dict[int, int] = defaultdict(int)
    for line in lines:
        per_batch[line.batch_id] += line.quantity

    batches = {
        b.id: b
        for b in lock_for_update(
            db.session.query(InventoryBatch).filter(InventoryBatch.id.in_(per_batch.keys()))
        ).all()
    }

    moved_by_product: dict[int, int] = defaultdict(int)
    for batch_id in sorted(per_batch):
        wanted = per_batch[batch_id]
        batch = batches.get(batch_id)
        if batch is None:
            current_app.logger.warning(
                "Batch %s referenced by ledger no longer exists; skipping %s units",
                batch_id, wanted,
            )
            shift.missing_batch_ids.append(batch_id)
            continue

        if direction > 0:
            room = batch.quantity_received - batch.remaining_quantity
            moved = min(wanted, room)
        else:
            moved = min(wanted, batch.remaining_quantity)

        if moved < wanted:
            current_app.logger.warning(
                "Batch %s could only absorb %s of %s units (%s)",
                batch_id, moved, wanted, "restore" if direction > 0 else "removal",
            )
            shift.clamped_quantity += wanted - moved

        batch.remaining_quantity += direction * moved
        moved_by_product[batch.product_id] += moved
        shift.moved_quantity += moved

    products = {
        p.id: p
        for p in lock_for_update(
            db.session.query(Product).filter(Product.id.in_(moved_by_product.keys()))
        ).all()
    } if moved_by_product else {}

    for product_id, moved in sorted(moved_by_product.items()):
        product = products.get(product_id)
        if product is None:
            current_app.logger.warning(
                "Product %s referenced by ledger no longer exists; stock cache not updated",
                product_id,
            )
            shift.missing_product_ids.append(product_id)
            continue
        apply_stock_delta(product, direction * moved)

    db.session.flush()
    return shift


# =============================================================================
# REVERSAL
# =============================================================================

def _reverse_inner(order: Order) -> ReversalResult:
    """
    Undo an order's allocation without retry or commit.

    If the return toggle already put the units back, only the ledger is
    dropped. return_received is left as is.
    """
    lines = _ledger_lines(order.id)
    restore_stock = order.stock_is_out(lines)

    shift = LedgerShift()
    if restore_stock:
        shift = shift_ledger_stock(lines, direction=1)

    if lines:
        db.session.query(AllocationLineItem).filter_by(
            order_id=order.id
        ).delete(synchronize_session="fetch")
        db.session.expire(order, ["line_items"])

    order.cogs_allocated = False
    order.precogs_cents = None
    db.session.flush()

    return ReversalResult(
        order_id=order.id,
        line_count=len(lines),
        restored_quantity=shift.moved_quantity,
        stock_restored=restore_stock,
        missing_batch_ids=tuple(shift.missing_batch_ids),
        missing_product_ids=tuple(shift.missing_product_ids),
    )


def reverse(order_id: int) -> ReversalResult:
    """
    Put an order's allocated units back into their original batches and clear
    its ledger and allocation flag.

    An order without ledger rows is a no-op success. If the order's return was
    already received, its units are on the shelf, so only the ledger is dropped.
    """
    def _op():
        order = get_order(order_id, lock=True)
        result = _reverse_inner(order)
        db.session.commit()
        return result

    result = run_with_retry(_op)
    if result.success:
        current_app.logger.info(
            "Reversed order %s: %s ledger rows, %s units restored",
            order_id, result.line_count, result.restored_quantity,
        )
    else:
        current_app.logger.warning(
            "Partially reversed order %s: missing batches %s, missing products %s",
            order_id, list(result.missing_batch_ids), list(result.missing_product_ids),
        )
    return result


# =============================================================================
# QUERIES
# =============================================================================

def get_line_items_for_order(order_id: int) -> list[AllocationLineItem]:
    """Ledger rows for an order in allocation order."""
    get_order(order_id)
    return db.session.query(AllocationLineItem).filter_by(
        order_id=order_id
    ).order_by(
        AllocationLineItem.allocated_at.asc(),
        AllocationLineItem.id.asc(),
    ).all()


def get_product_cost_summary() -> list[dict]:
    """
    Per-product inventory valuation for dashboards.

    weighted_avg_cost_cents = SUM(remaining * unit_cost) / SUM(remaining) over
    active batches (nearest-cent, half-up); falls back to default_cogs_cents
    when nothing is on hand.
    """
    active = case((InventoryBatch.remaining_quantity > 0, 1), else_=0)

    rows = db.session.query(
        Product.id,
        Product.name,
        Product.current_stock,
        Product.default_cogs_cents,
        func.coalesce(func.sum(InventoryBatch.remaining_quantity), 0).label("remaining"),
        func.coalesce(func.sum(active), 0).label("active_batches"),
        func.coalesce(
            func.sum(InventoryBatch.remaining_quantity * InventoryBatch.unit_cost_cents), 0
        ).label("value"),
    ).outerjoin(
        InventoryBatch, InventoryBatch.product_id == Product.id
    ).group_by(
        Product.id, Product.name, Product.current_stock, Product.default_cogs_cents,
    ).order_by(Product.name.asc()).all()

    summary = []
    for row in rows:
        remaining = int(row.remaining or 0)
        value = int(row.value or 0)
        if remaining > 0:
            weighted = (value + (remaining // 2)) // remaining
        else:
            weighted = row.default_cogs_cents
        summary.append({
            "product_id": row.id,
            "product_name": row.name,
            "current_stock": row.current_stock,
            "remaining_total": remaining,
            "active_batch_count": int(row.active_batches or 0),
            "weighted_avg_cost_cents": weighted,
            "inventory_value_cents": value,
            "stock_drift": row.current_stock - remaining,
        })
    return summary


def calculate_delivered_orders_cogs(order_ids: list[int]) -> dict:
    """
    Total recorded cost and per-product breakdown for the given orders, read
    from the ledger (costs as allocated, not current catalog costs).
    """
    if not order_ids:
        return {"total_cogs_cents": 0, "product_breakdown": {}}

    rows = db.session.query(
        AllocationLineItem.product_name,
        func.sum(AllocationLineItem.total_cost_cents),
    ).filter(
        AllocationLineItem.order_id.in_(order_ids)
    ).group_by(AllocationLineItem.product_name).all()

    breakdown = {name: int(total or 0) for name, total in rows}
    return {
        "total_cogs_cents": sum(breakdown.values()),
        "product_breakdown": breakdown,
    }
