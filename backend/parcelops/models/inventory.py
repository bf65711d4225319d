from __future__ import annotations

from ..extensions import db
from parcelops.time_utils import to_utc_z


def name_key(name: str) -> str:
    """Case-insensitive uniqueness key for catalog names."""
    return " ".join((name or "").split()).lower()


class Product(db.Model):
    """
    Catalog product.

    STOCK CACHE:
    current_stock is a denormalized cache of SUM(inventory_batches.remaining_quantity).
    - Allocation, reversal, return toggles and receives maintain it in the same
      DB transaction as the batch rows they touch.
    - It is NEVER used to decide how much can be allocated; the batch rows are
      the source of truth. See batch_service.reconcile_current_stock().

    default_cogs_cents is only a fallback cost for products with no batches
    (initial batch seeding, dashboard summary). Recorded order costs never
    read it.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.UniqueConstraint("name_key", name="uq_products_name_key"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    name = db.Column(db.String(255), nullable=False)
    # lower(trimmed name); enforces case-insensitive uniqueness
    name_key = db.Column(db.String(255), nullable=False)

    current_stock = db.Column(db.Integer, nullable=False, default=0)
    default_cogs_cents = db.Column(db.Integer, nullable=False, default=0)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Product id={self.id} name={self.name!r} current_stock={self.current_stock}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "current_stock": self.current_stock,
            "default_cogs_cents": self.default_cogs_cents,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class InventoryBatch(db.Model):
    """
    One stock receipt at a fixed unit cost (a FIFO cost layer).

    FIFO ORDER: received_at ASC, then id ASC (insertion order breaks ties).

    quantity_received and unit_cost_cents are immutable after creation.
    remaining_quantity is only changed by allocation (decrement), reversal and
    return toggles (increment/decrement by ledger quantities).

    Batches are never deleted; exhausted layers stay for cost history.
    """
    __tablename__ = "inventory_batches"

    id = db.Column(db.Integer, primary_key=True)

    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    quantity_received = db.Column(db.Integer, nullable=False)
    remaining_quantity = db.Column(db.Integer, nullable=False)
    unit_cost_cents = db.Column(db.Integer, nullable=False)

    received_at = db.Column(db.DateTime(timezone=True), nullable=False, index=True)

    supplier_reference = db.Column(db.String(128), nullable=True)
    notes = db.Column(db.String(255), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    product = db.relationship("Product", backref=db.backref("batches", lazy=True))

    __table_args__ = (
        db.CheckConstraint(
            "remaining_quantity >= 0 AND remaining_quantity <= quantity_received",
            name="ck_batches_remaining_bounds",
        ),
        db.Index("ix_batches_product_fifo", "product_id", "received_at", "id"),
        {"sqlite_autoincrement": True},
    )
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def is_active(self) -> bool:
        return self.remaining_quantity > 0

    def __repr__(self) -> str:
        return (
            f"<InventoryBatch id={self.id} product_id={self.product_id} "
            f"remaining={self.remaining_quantity}/{self.quantity_received} cost={self.unit_cost_cents}>"
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "quantity_received": self.quantity_received,
            "remaining_quantity": self.remaining_quantity,
            "unit_cost_cents": self.unit_cost_cents,
            "received_at": to_utc_z(self.received_at),
            "supplier_reference": self.supplier_reference,
            "notes": self.notes,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
