# Overview: Pytest coverage for batch receiving, seeding, reconciliation and valuation.

from datetime import timedelta

import pytest
from conftest import T0
from parcelops.models import Product, InventoryBatch
from parcelops.services import batch_service, fifo_service, order_service, products_service
from parcelops.time_utils import utcnow
from parcelops.validation import ValidationError, NotFoundError, ConflictError


class TestAddBatch:

    def test_receive_creates_full_batch_and_bumps_cache(self, db_session, make_product):
        product = make_product("Snow Lamp")

        batch = batch_service.add_batch(
            product_id=product.id,
            quantity=12,
            unit_cost_cents=250,
            received_at="2026-01-05T10:00:00Z",
            supplier_reference="PO-77",
        )

        assert batch.quantity_received == 12
        assert batch.remaining_quantity == 12
        assert batch.unit_cost_cents == 250
        assert batch.received_at == T0.replace(day=5, hour=10)
        assert batch.supplier_reference == "PO-77"
        assert db_session.get(Product, product.id).current_stock == 12

    def test_received_at_defaults_to_now(self, db_session, make_product):
        product = make_product("Snow Lamp")
        before = utcnow() - timedelta(seconds=5)

        batch = batch_service.add_batch(product_id=product.id, quantity=1, unit_cost_cents=0)

        assert batch.received_at >= before

    @pytest.mark.parametrize("quantity,cost", [(0, 100), (-2, 100), (3, -1)])
    def test_invalid_quantity_or_cost(self, db_session, make_product, quantity, cost):
        product = make_product("Snow Lamp")
        with pytest.raises(ValidationError):
            batch_service.add_batch(product_id=product.id, quantity=quantity, unit_cost_cents=cost)
        assert db_session.query(InventoryBatch).count() == 0

    def test_future_received_at_rejected(self, db_session, make_product):
        product = make_product("Snow Lamp")
        with pytest.raises(ValidationError):
            batch_service.add_batch(
                product_id=product.id,
                quantity=1,
                unit_cost_cents=100,
                received_at=utcnow() + timedelta(days=1),
            )

    def test_unknown_product(self, db_session):
        with pytest.raises(NotFoundError):
            batch_service.add_batch(product_id=999999, quantity=1, unit_cost_cents=100)

    def test_batches_listed_in_fifo_order(self, db_session, make_product, receive):
        product = make_product("Snow Lamp")
        late = receive(product, 1, 100, days=3).id
        early = receive(product, 2, 100, days=1).id
        same_day = receive(product, 3, 100, days=1).id
        fifo_service.allocate(product.id, _order_id(), 2)

        everything = batch_service.get_batches_for_product(product.id)
        active = batch_service.get_batches_for_product(product.id, active_only=True)

        assert [b.id for b in everything] == [early, same_day, late]
        assert [b.id for b in active] == [same_day, late]

    def test_product_with_batches_cannot_be_deleted(self, db_session, make_product, receive):
        product = make_product("Snow Lamp")
        receive(product, 1, 100)
        with pytest.raises(ConflictError):
            products_service.delete_product(product.id)


def _order_id():
    order, _ = order_service.create_order(tracking_number="TRK-FIFO", allocate=False)
    return order.id


class TestSeedInitialBatches:

    def test_seed_converts_existing_stock(self, db_session, make_product):
        product = make_product("Legacy Lamp", default_cogs_cents=300, current_stock=12)

        created = batch_service.seed_initial_batches()

        assert len(created) == 1
        batch = created[0]
        assert batch.product_id == product.id
        assert batch.quantity_received == 12
        assert batch.remaining_quantity == 12
        assert batch.unit_cost_cents == 300
        assert batch.notes == "Initial batch from existing inventory"
        # Cache already counted these units
        assert db_session.get(Product, product.id).current_stock == 12

    def test_seed_skips_products_with_batches_or_no_stock(self, db_session, make_product, receive):
        stocked = make_product("Stocked Lamp", current_stock=5)
        receive(stocked, 2, 100)
        make_product("Empty Lamp", current_stock=0)

        assert batch_service.seed_initial_batches() == []

    def test_seed_is_idempotent(self, db_session, make_product):
        make_product("Legacy Lamp", default_cogs_cents=300, current_stock=4)

        assert len(batch_service.seed_initial_batches()) == 1
        assert batch_service.seed_initial_batches() == []
        assert db_session.query(InventoryBatch).count() == 1

    def test_seed_batch_is_oldest_layer(self, db_session, make_product):
        product = make_product("Legacy Lamp", default_cogs_cents=300, current_stock=2)
        seeded = batch_service.seed_initial_batches()[0].id
        fresh = batch_service.add_batch(product_id=product.id, quantity=5, unit_cost_cents=400).id

        result = fifo_service.allocate(product.id, _order_id(), 3)

        assert [(l.batch_id, l.quantity) for l in result.lines] == [(seeded, 2), (fresh, 1)]


class TestReconcile:

    def _drift(self, db_session, product, value):
        db_session.query(Product).filter_by(id=product.id).update({"current_stock": value})
        db_session.commit()

    def test_dry_run_reports_without_writing(self, db_session, make_product, receive):
        product = make_product("Snow Lamp")
        receive(product, 6, 100)
        self._drift(db_session, product, 2)

        drift = batch_service.reconcile_current_stock(dry_run=True)

        assert drift == [{
            "product_id": product.id,
            "product_name": "Snow Lamp",
            "cached": 2,
            "actual": 6,
        }]
        assert db_session.get(Product, product.id).current_stock == 2

    def test_reconcile_repairs_cache(self, db_session, make_product, receive):
        product = make_product("Snow Lamp")
        receive(product, 6, 100)
        self._drift(db_session, product, 40)

        batch_service.reconcile_current_stock()

        assert db_session.get(Product, product.id).current_stock == 6
        assert batch_service.reconcile_current_stock() == []

    def test_product_without_batches_reconciles_to_zero(self, db_session, make_product):
        product = make_product("Phantom Lamp", current_stock=3)

        drift = batch_service.reconcile_current_stock(product_id=product.id)

        assert drift[0]["actual"] == 0
        assert db_session.get(Product, product.id).current_stock == 0


class TestCostSummary:

    def test_weighted_average_over_active_batches(self, db_session, make_product, receive):
        product = make_product("Snow Lamp", default_cogs_cents=999)
        receive(product, 4, 100, days=0)
        receive(product, 6, 200, days=1)

        row = fifo_service.get_product_cost_summary()[0]

        assert row["product_id"] == product.id
        assert row["remaining_total"] == 10
        assert row["active_batch_count"] == 2
        assert row["inventory_value_cents"] == 1600
        assert row["weighted_avg_cost_cents"] == 160
        assert row["stock_drift"] == 0

    def test_weighted_average_rounds_half_up(self, db_session, make_product, receive):
        product = make_product("Snow Lamp")
        receive(product, 1, 100, days=0)
        receive(product, 2, 101, days=1)

        row = fifo_service.get_product_cost_summary()[0]

        # 302 / 3 = 100.67
        assert row["weighted_avg_cost_cents"] == 101

    def test_exhausted_batches_not_counted_active(self, db_session, make_product, receive):
        product = make_product("Snow Lamp")
        receive(product, 2, 100, days=0)
        receive(product, 3, 300, days=1)
        fifo_service.allocate(product.id, _order_id(), 2)

        row = fifo_service.get_product_cost_summary()[0]

        assert row["active_batch_count"] == 1
        assert row["remaining_total"] == 3
        assert row["weighted_avg_cost_cents"] == 300

    def test_no_stock_falls_back_to_default_cost(self, db_session, make_product):
        make_product("Snow Lamp", default_cogs_cents=450)

        row = fifo_service.get_product_cost_summary()[0]

        assert row["remaining_total"] == 0
        assert row["active_batch_count"] == 0
        assert row["weighted_avg_cost_cents"] == 450
