"""
Order lifecycle bridge between parcel orders and FIFO inventory.

WHY: The FIFO allocator knows nothing about orders beyond an id. This module
owns every order-level rule that decides WHEN stock moves and WHEN costs
freeze.

DESIGN PRINCIPLES:
- Allocate-once: the order row is locked and Order.cogs_allocated is checked
  and set inside the allocation transaction. A retried call is a no-op.
- All-or-nothing per order: if any resolved line cannot be fully allocated,
  the whole order's allocation is rolled back and the order stays
  Unallocated. No partial ledger is left behind.
- Return toggles move the ledger's quantities back into / out of the SAME
  batches; the ledger and allocation flag stay so cost history survives.
  Un-marking is refused if the batches no longer hold those units.
- An order whose return is received is never allocated.
- Deletion reverses through the ledger unless the units are already back on
  the shelf via the return toggle.
- Cost freeze: the first transition to the delivered status copies
  precogs_cents into cogs_cents. cogs_cents is never written again.
- Bulk operations run one transaction per order and aggregate failures.

COST STATES:
1. UNALLOCATED  - no ledger rows, precogs_cents empty
2. PROVISIONAL  - ledger rows exist, precogs_cents = FIFO total
3. FINALIZED    - cogs_cents frozen on first delivery
"""

from __future__ import annotations

from dataclasses import dataclass, field

from flask import current_app
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from ..extensions import db
from ..models import Order
from ..time_utils import utcnow
from ..validation import ConflictError, NotFoundError, ValidationError
from .concurrency import run_with_retry
from .products_service import get_product
from .fifo_service import (
    AllocationResult,
    ReversalResult,
    _allocate_inner,
    _reverse_inner,
    get_line_items_for_order,
    get_order,
    log_allocation,
    shift_ledger_stock,
)
from .product_resolver import get_resolver


class InventoryRestoreError(ConflictError):
    """Raised when an order's stock cannot be fully put back."""


# =============================================================================
# RESULT TYPES
# =============================================================================

@dataclass(frozen=True)
class OrderAllocationResult:
    order_id: int
    allocated: bool
    already_allocated: bool = False
    total_cost_cents: int = 0
    results: tuple[AllocationResult, ...] = ()
    warnings: tuple[str, ...] = ()

    @property
    def success(self) -> bool:
        return self.allocated or self.already_allocated

    def to_dict(self) -> dict:
        return {
            "order_id": self.order_id,
            "success": self.success,
            "allocated": self.allocated,
            "already_allocated": self.already_allocated,
            "total_cost_cents": self.total_cost_cents,
            "results": [r.to_dict() for r in self.results],
            "warnings": list(self.warnings),
        }


@dataclass(frozen=True)
class ToggleResult:
    order_id: int
    return_received: bool
    changed: bool
    moved_quantity: int = 0
    clamped_quantity: int = 0
    missing_batch_ids: tuple[int, ...] = ()
    missing_product_ids: tuple[int, ...] = ()

    @property
    def success(self) -> bool:
        return not self.clamped_quantity and not self.missing_batch_ids and not self.missing_product_ids

    def to_dict(self) -> dict:
        return {
            "order_id": self.order_id,
            "success": self.success,
            "return_received": self.return_received,
            "changed": self.changed,
            "moved_quantity": self.moved_quantity,
            "clamped_quantity": self.clamped_quantity,
            "missing_batch_ids": list(self.missing_batch_ids),
            "missing_product_ids": list(self.missing_product_ids),
        }


@dataclass
class BulkResult:
    succeeded: list = field(default_factory=list)
    failed: list[dict] = field(default_factory=list)

    @property
    def success_count(self) -> int:
        return len(self.succeeded)

    @property
    def failure_count(self) -> int:
        return len(self.failed)

    def to_dict(self) -> dict:
        return {
            "success_count": self.success_count,
            "failure_count": self.failure_count,
            "succeeded": list(self.succeeded),
            "failed": list(self.failed),
        }


# =============================================================================
# ORDER CREATION & ALLOCATION
# =============================================================================

def get_order_by_tracking(tracking_number: str) -> Order:
    order = db.session.query(Order).filter_by(tracking_number=tracking_number.strip()).first()
    if order is None:
        raise NotFoundError(f"order with tracking number {tracking_number!r} not found")
    return order


def create_order(
    *,
    tracking_number: str,
    product_description: str | None = None,
    order_ref: str | None = None,
    customer_name: str | None = None,
    customer_city: str | None = None,
    amount_cents: int | None = None,
    courier_fee_cents: int = 0,
    order_status: str = "dispatched",
    dispatch_date=None,
    allocate: bool = True,
    resolver=None,
) -> tuple[Order, OrderAllocationResult | None]:
    """
    Insert an order and, by default, run the guarded FIFO allocation for it.

    The order row is committed first; a failed allocation leaves a valid
    Unallocated order that can be retried with allocate_order().
    """
    tracking = (tracking_number or "").strip()
    if not tracking:
        raise ValidationError("tracking_number is required")

    order = Order(
        tracking_number=tracking,
        order_ref=order_ref,
        customer_name=customer_name,
        customer_city=customer_city,
        product_description=product_description,
        amount_cents=amount_cents,
        courier_fee_cents=courier_fee_cents or 0,
        order_status=(order_status or "dispatched").strip().lower(),
        dispatch_date=dispatch_date,
    )
    db.session.add(order)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise ConflictError(f"order with tracking number {tracking!r} already exists")

    current_app.logger.info("Created order %s (%s)", order.id, order.tracking_number)

    allocation = None
    if allocate:
        allocation = allocate_order(order.id, resolver=resolver)
    return order, allocation


def allocate_order(order_id: int, *, resolver=None) -> OrderAllocationResult:
    """
    Resolve the order's description and allocate every line FIFO, once.

    The resolver runs before the allocation transaction. Inside it the order
    row is locked and both flags re-checked, so concurrent or retried calls
    cannot double-deduct. An order already marked return received is left
    alone with a warning. Matches with a non-positive quantity are skipped
    with a warning, like unmatched items.
    """
    order = get_order(order_id)
    if order.cogs_allocated:
        return OrderAllocationResult(order_id=order_id, allocated=False, already_allocated=True,
                                     total_cost_cents=order.precogs_cents or 0)
    if order.return_received:
        return _returned_result(order_id)

    skipped = []
    matches = []
    for match in (resolver or get_resolver()).resolve(order.product_description):
        if match.quantity > 0:
            matches.append(match)
        else:
            skipped.append(f"skipped {match.label}: quantity {match.quantity} is not positive")

    if not matches:
        warnings = tuple(skipped) or (f"no catalog product matched {order.product_description!r}",)
        current_app.logger.warning("Order %s not allocated: %s", order_id, "; ".join(warnings))
        return OrderAllocationResult(order_id=order_id, allocated=False, warnings=warnings)

    def _op():
        locked = get_order(order_id, lock=True)
        if locked.cogs_allocated:
            return OrderAllocationResult(order_id=order_id, allocated=False, already_allocated=True,
                                         total_cost_cents=locked.precogs_cents or 0)
        if locked.return_received:
            return _returned_result(order_id)

        allocated_at = utcnow()
        results = []
        for match in matches:
            product = get_product(match.product_id, lock=True)
            results.append(_allocate_inner(
                product=product,
                order=locked,
                quantity=match.quantity,
                allocated_at=allocated_at,
            ))

        shortfalls = tuple(
            f"could not fully allocate {r.shortfall} of {r.requested_quantity} units of {m.label}"
            for r, m in zip(results, matches) if not r.success
        )
        if shortfalls:
            db.session.rollback()
            return OrderAllocationResult(order_id=order_id, allocated=False, results=tuple(results),
                                         warnings=tuple(skipped) + shortfalls)

        total = sum(r.total_cost_cents for r in results)
        locked.cogs_allocated = True
        locked.precogs_cents = total
        db.session.commit()
        return OrderAllocationResult(order_id=order_id, allocated=True, total_cost_cents=total,
                                     results=tuple(results), warnings=tuple(skipped))

    outcome = run_with_retry(_op)

    for result, match in zip(outcome.results, matches):
        log_allocation(result, product_label=match.label)
    if outcome.results and not outcome.allocated:
        current_app.logger.warning(
            "Order %s left unallocated; stock rolled back: %s", order_id, "; ".join(outcome.warnings)
        )
    elif skipped:
        current_app.logger.warning("Order %s: %s", order_id, "; ".join(skipped))
    return outcome


def _returned_result(order_id: int) -> OrderAllocationResult:
    message = "return already received; nothing allocated"
    current_app.logger.warning("Order %s not allocated: %s", order_id, message)
    return OrderAllocationResult(order_id=order_id, allocated=False, warnings=(message,))


# =============================================================================
# STATUS & COST FINALIZATION
# =============================================================================

def _finalize_cost(order: Order) -> None:
    if order.cogs_cents is not None:
        return
    if order.precogs_cents is None:
        current_app.logger.warning(
            "Order %s delivered without a FIFO allocation; final cost left empty", order.id
        )
        return
    order.cogs_cents = order.precogs_cents
    order.cost_finalized_at = utcnow()


def update_order_status(order_id: int, status: str, *, courier_fee_cents: int | None = None) -> Order:
    """
    Record a carrier status (and fee). Reaching the delivered status for the
    first time freezes the order's cost.
    """
    new_status = (status or "").strip().lower()
    if not new_status:
        raise ValidationError("status is required")
    if courier_fee_cents is not None and courier_fee_cents < 0:
        raise ValidationError("courier_fee_cents must be >= 0")

    delivered = current_app.config.get("DELIVERED_STATUS", "delivered")

    def _op():
        order = get_order(order_id, lock=True)
        previous = order.order_status
        order.order_status = new_status
        if courier_fee_cents is not None:
            order.courier_fee_cents = courier_fee_cents
        if new_status == delivered:
            _finalize_cost(order)
        db.session.commit()
        return order, previous

    order, previous = run_with_retry(_op)
    if previous != new_status:
        current_app.logger.info("Order %s status %s -> %s", order_id, previous, new_status)
    return order


# =============================================================================
# RETURN TOGGLE
# =============================================================================

def set_return_received(order_id: int, received: bool) -> ToggleResult:
    """
    Mark whether a return physically came back.

    false -> true puts the ledger quantities back into their batches;
    true -> false takes the same quantities out of the same batches again.
    Stock moves whenever the order has ledger rows, whichever allocator wrote
    them. The ledger and allocation flag are untouched. Missing batch/product
    rows are skipped and reported.

    Un-marking raises ConflictError if the batches no longer hold all of the
    ledger's units (they were drawn by later orders); nothing is written.
    If the flag write fails, everything rolls back and the error propagates.
    """
    received = bool(received)

    def _op():
        order = get_order(order_id, lock=True)
        if bool(order.return_received) == received:
            return ToggleResult(order_id=order_id, return_received=received, changed=False)

        lines = get_line_items_for_order(order.id)
        shift = shift_ledger_stock(lines, direction=1 if received else -1)
        if not received and shift.clamped_quantity:
            raise ConflictError(
                f"cannot unmark return for order {order_id}: {shift.clamped_quantity} returned "
                f"units were already allocated to other orders"
            )

        order.return_received = received
        db.session.commit()
        return ToggleResult(
            order_id=order_id,
            return_received=received,
            changed=True,
            moved_quantity=shift.moved_quantity,
            clamped_quantity=shift.clamped_quantity,
            missing_batch_ids=tuple(shift.missing_batch_ids),
            missing_product_ids=tuple(shift.missing_product_ids),
        )

    result = run_with_retry(_op)
    if result.changed:
        current_app.logger.info(
            "Order %s return_received=%s; %s units %s",
            order_id, received, result.moved_quantity, "restocked" if received else "removed",
        )
    if not result.success:
        current_app.logger.warning(
            "Inventory restore incomplete for order %s: %s units clamped, missing batches %s, "
            "missing products %s",
            order_id, result.clamped_quantity, list(result.missing_batch_ids),
            list(result.missing_product_ids),
        )
    return result


def bulk_mark_returns_received(tracking_numbers: list[str]) -> BulkResult:
    """Mark many returns received by tracking number, one transaction each."""
    bulk = BulkResult()
    for tracking_number in tracking_numbers:
        try:
            order = get_order_by_tracking(tracking_number)
            result = set_return_received(order.id, True)
        except (ValueError, SQLAlchemyError) as exc:
            db.session.rollback()
            current_app.logger.warning("Return update failed for %s: %s", tracking_number, exc)
            bulk.failed.append({"tracking_number": tracking_number, "error": str(exc)})
            continue
        if result.success:
            bulk.succeeded.append(tracking_number)
        else:
            bulk.failed.append({
                "tracking_number": tracking_number,
                "error": f"inventory restore failed for order {order.id}",
            })
    return bulk


# =============================================================================
# DELETION
# =============================================================================

def delete_order(order_id: int, *, force: bool = False) -> ReversalResult:
    """
    Reverse an order's allocation and delete it, in one transaction.

    Stock is restored only while it is still out (ledger rows exist and the
    return is not received). If the ledger points at batches/products that no longer
    exist the delete is refused unless force=True.
    """
    def _op():
        order = get_order(order_id, lock=True)
        reversal = _reverse_inner(order)
        if not reversal.success and not force:
            raise InventoryRestoreError(
                f"inventory restore failed for order {order_id}: "
                f"missing batches {list(reversal.missing_batch_ids)}, "
                f"missing products {list(reversal.missing_product_ids)}"
            )
        db.session.delete(order)
        db.session.commit()
        return reversal

    reversal = run_with_retry(_op)
    current_app.logger.info(
        "Deleted order %s; %s units restored from %s ledger rows",
        order_id, reversal.restored_quantity, reversal.line_count,
    )
    if not reversal.success:
        current_app.logger.warning("Order %s force-deleted with incomplete inventory restore", order_id)
    return reversal


def bulk_delete_orders(order_ids: list[int], *, force: bool = False) -> BulkResult:
    """
    Delete many orders, one transaction each. A failure on one order never
    rolls back or blocks the others.
    """
    bulk = BulkResult()
    for order_id in order_ids:
        try:
            delete_order(order_id, force=force)
        except (ValueError, SQLAlchemyError) as exc:
            db.session.rollback()
            current_app.logger.warning("Bulk delete: order %s failed: %s", order_id, exc)
            bulk.failed.append({"order_id": order_id, "error": str(exc)})
            continue
        bulk.succeeded.append(order_id)

    current_app.logger.info(
        "Bulk delete finished: %s deleted, %s failed", bulk.success_count, bulk.failure_count
    )
    return bulk


def list_orders(*, status: str | None = None, limit: int = 200) -> list[Order]:
    query = db.session.query(Order)
    if status:
        query = query.filter(Order.order_status == status.strip().lower())
    return query.order_by(Order.created_at.desc(), Order.id.desc()).limit(limit).all()
