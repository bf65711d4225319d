# Overview: Pytest coverage for the FIFO allocator.

"""
FIFO Allocation Tests

Verifies that:
1. Batches are consumed oldest received_at first, insertion order on ties
2. One ledger row is written per batch touched, at that batch's cost
3. Shortfalls are reported as results, never errors, and never go negative
4. Invalid input is rejected before anything is mutated
5. The current_stock cache follows the allocation but never limits it
"""

import pytest
from conftest import remaining
from parcelops.extensions import db
from parcelops.models import Product, AllocationLineItem
from parcelops.services import fifo_service
from parcelops.validation import ValidationError, NotFoundError


@pytest.fixture
def lamp(make_product):
    return make_product("Snow Lamp", default_cogs_cents=999)


class TestFifoOrdering:

    def test_oldest_batch_consumed_first(self, db_session, lamp, receive, make_order):
        """8 units span the 5-unit oldest batch and 3 of the next."""
        older = receive(lamp, 5, 100, days=0)
        newer = receive(lamp, 10, 150, days=1)
        order = make_order(allocate=False)

        result = fifo_service.allocate(lamp.id, order.id, 8)

        assert result.success is True
        assert result.allocated_quantity == 8
        assert result.total_cost_cents == 5 * 100 + 3 * 150
        assert [(l.batch_id, l.quantity, l.unit_cost_cents) for l in result.lines] == [
            (older.id, 5, 100),
            (newer.id, 3, 150),
        ]
        assert remaining(older.id) == 0
        assert remaining(newer.id) == 7

    def test_backdated_batch_is_consumed_before_later_receipts(self, db_session, lamp, receive, make_order):
        """received_at decides FIFO order, not insertion order."""
        later = receive(lamp, 4, 300, days=5)
        backdated = receive(lamp, 4, 100, days=1)
        order = make_order(allocate=False)

        result = fifo_service.allocate(lamp.id, order.id, 2)

        assert [l.batch_id for l in result.lines] == [backdated.id]
        assert result.total_cost_cents == 200
        assert remaining(later.id) == 4

    def test_ties_on_received_at_use_insertion_order(self, db_session, lamp, receive, make_order):
        first = receive(lamp, 2, 110, days=2)
        second = receive(lamp, 2, 220, days=2)
        order = make_order(allocate=False)

        result = fifo_service.allocate(lamp.id, order.id, 3)

        assert [(l.batch_id, l.quantity) for l in result.lines] == [(first.id, 2), (second.id, 1)]
        assert result.total_cost_cents == 2 * 110 + 220

    def test_ledger_rows_carry_batch_cost_not_default_cost(self, db_session, lamp, receive, make_order):
        batch = receive(lamp, 10, 125)
        order = make_order(allocate=False)

        fifo_service.allocate(lamp.id, order.id, 4)

        rows = db_session.query(AllocationLineItem).filter_by(order_id=order.id).all()
        assert len(rows) == 1
        assert rows[0].batch_id == batch.id
        assert rows[0].unit_cost_cents == 125
        assert rows[0].total_cost_cents == 500
        assert rows[0].product_name == "Snow Lamp"


class TestShortfall:

    def test_partial_allocation_reports_shortfall(self, db_session, lamp, receive, make_order):
        a = receive(lamp, 3, 100, days=0)
        b = receive(lamp, 1, 200, days=1)
        order = make_order(allocate=False)

        result = fifo_service.allocate(lamp.id, order.id, 6)

        assert result.success is False
        assert result.allocated_quantity == 4
        assert result.shortfall == 2
        assert result.total_cost_cents == 3 * 100 + 200
        assert remaining(a.id) == 0
        assert remaining(b.id) == 0
        assert db_session.get(Product, lamp.id).current_stock == 0

    def test_no_batches_allocates_nothing(self, db_session, lamp, make_order):
        order = make_order(allocate=False)

        result = fifo_service.allocate(lamp.id, order.id, 2)

        assert result.success is False
        assert result.allocated_quantity == 0
        assert result.lines == ()
        assert db_session.query(AllocationLineItem).count() == 0


class TestInputGuards:

    @pytest.mark.parametrize("quantity", [0, -3])
    def test_non_positive_quantity_rejected(self, db_session, lamp, receive, make_order, quantity):
        batch = receive(lamp, 5, 100)
        order = make_order(allocate=False)

        with pytest.raises(ValidationError):
            fifo_service.allocate(lamp.id, order.id, quantity)

        assert remaining(batch.id) == 5
        assert db_session.query(AllocationLineItem).count() == 0

    def test_unknown_product(self, db_session, make_order):
        order = make_order(allocate=False)
        with pytest.raises(NotFoundError):
            fifo_service.allocate(999999, order.id, 1)

    def test_unknown_order(self, db_session, lamp, receive):
        batch = receive(lamp, 5, 100)
        with pytest.raises(NotFoundError):
            fifo_service.allocate(lamp.id, 999999, 1)
        assert remaining(batch.id) == 5


class TestStockCache:

    def test_cache_decrements_by_allocated_quantity(self, db_session, lamp, receive, make_order):
        receive(lamp, 10, 100)
        order = make_order(allocate=False)

        fifo_service.allocate(lamp.id, order.id, 4)

        assert db_session.get(Product, lamp.id).current_stock == 6

    def test_allocation_reads_batches_not_cache(self, db_session, lamp, receive, make_order):
        """A drifted cache of 0 does not block allocating stock that batches hold."""
        batch = receive(lamp, 5, 100)
        db_session.query(Product).filter_by(id=lamp.id).update({"current_stock": 0})
        db_session.commit()
        order = make_order(allocate=False)

        result = fifo_service.allocate(lamp.id, order.id, 3)

        assert result.success is True
        assert remaining(batch.id) == 2
        assert db_session.get(Product, lamp.id).current_stock == 0

    def test_batch_totals_conserved_across_orders(self, db_session, lamp, receive, make_order):
        """SUM(remaining) + SUM(ledger quantity) == SUM(received)."""
        receive(lamp, 4, 100, days=0)
        receive(lamp, 6, 150, days=1)
        for qty in (3, 2, 4):
            fifo_service.allocate(lamp.id, make_order(allocate=False).id, qty)

        batches = db_session.get(Product, lamp.id).batches
        on_hand = sum(b.remaining_quantity for b in batches)
        received = sum(b.quantity_received for b in batches)
        allocated = db_session.query(db.func.sum(AllocationLineItem.quantity)).scalar()

        assert on_hand + allocated == received
        assert on_hand == 1
