from __future__ import annotations

from ..extensions import db
from parcelops.time_utils import to_utc_z


class Order(db.Model):
    """
    Parcel order.

    COST FIELDS:
    - precogs_cents: provisional FIFO cost, written by the guarded allocation.
    - cogs_cents: final cost, copied from precogs_cents on the FIRST transition
      to the delivered status and never written again.

    STOCK STATE (ledger rows decide, not cogs_allocated):
    ledger rows  return_received  meaning
    none         False            no stock drawn
    some         False            stock is out of the batches
    some         True             ledger kept, units are back in the same batches
    none         True             parcel came back; nothing may be drawn for it

    cogs_allocated only records that the guarded order allocation ran. Rows
    written by the low-level allocator leave it False but still count as
    stock out.
    """
    __tablename__ = "orders"
    __table_args__ = (
        db.Index("ix_orders_status", "order_status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    tracking_number = db.Column(db.String(64), nullable=False, unique=True)
    order_ref = db.Column(db.String(64), nullable=True)

    customer_name = db.Column(db.String(255), nullable=True)
    customer_city = db.Column(db.String(128), nullable=True)

    # Free text from the carrier label, e.g. "[2 x Sunset Lamp - Large]"
    product_description = db.Column(db.Text, nullable=True)

    amount_cents = db.Column(db.Integer, nullable=True)
    courier_fee_cents = db.Column(db.Integer, nullable=False, default=0)

    order_status = db.Column(db.String(32), nullable=False, default="dispatched")
    dispatch_date = db.Column(db.Date, nullable=True)

    return_received = db.Column(db.Boolean, nullable=False, default=False)

    cogs_allocated = db.Column(db.Boolean, nullable=False, default=False)
    precogs_cents = db.Column(db.Integer, nullable=True)
    cogs_cents = db.Column(db.Integer, nullable=True)
    cost_finalized_at = db.Column(db.DateTime(timezone=True), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    line_items = db.relationship(
        "AllocationLineItem",
        backref="order",
        lazy=True,
        order_by="AllocationLineItem.id",
        passive_deletes=True,
    )

    __mapper_args__ = {"version_id_col": version_id}

    def stock_is_out(self, ledger_lines) -> bool:
        """True while the units in `ledger_lines` are drawn and not back on the shelf."""
        return bool(ledger_lines) and not self.return_received

    @property
    def cost_state(self) -> str:
        if self.cogs_cents is not None:
            return "FINALIZED"
        if self.cogs_allocated:
            return "PROVISIONAL"
        return "UNALLOCATED"

    def __repr__(self) -> str:
        return f"<Order id={self.id} tracking={self.tracking_number!r} status={self.order_status!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tracking_number": self.tracking_number,
            "order_ref": self.order_ref,
            "customer_name": self.customer_name,
            "customer_city": self.customer_city,
            "product_description": self.product_description,
            "amount_cents": self.amount_cents,
            "courier_fee_cents": self.courier_fee_cents,
            "order_status": self.order_status,
            "dispatch_date": self.dispatch_date.isoformat() if self.dispatch_date else None,
            "return_received": self.return_received,
            "cogs_allocated": self.cogs_allocated,
            "precogs_cents": self.precogs_cents,
            "cogs_cents": self.cogs_cents,
            "cost_state": self.cost_state,
            "cost_finalized_at": to_utc_z(self.cost_finalized_at),
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class AllocationLineItem(db.Model):
    """
    Ledger row: order X consumed `quantity` units of product P from batch B at
    unit_cost_cents each.

    One row per (allocation call, batch touched). Summing quantity per batch
    for an order gives exactly what reversal must put back.
    """
    __tablename__ = "order_line_items"

    id = db.Column(db.Integer, primary_key=True)

    order_id = db.Column(db.Integer, db.ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    batch_id = db.Column(db.Integer, db.ForeignKey("inventory_batches.id"), nullable=False, index=True)

    # Snapshot for reporting; survives catalog renames
    product_name = db.Column(db.String(255), nullable=False)

    quantity = db.Column(db.Integer, nullable=False)
    unit_cost_cents = db.Column(db.Integer, nullable=False)
    total_cost_cents = db.Column(db.Integer, nullable=False)

    allocated_at = db.Column(db.DateTime(timezone=True), nullable=False)

    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="ck_line_items_quantity_positive"),
        {"sqlite_autoincrement": True},
    )

    def __repr__(self) -> str:
        return (
            f"<AllocationLineItem id={self.id} order_id={self.order_id} "
            f"batch_id={self.batch_id} qty={self.quantity} cost={self.unit_cost_cents}>"
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "product_id": self.product_id,
            "batch_id": self.batch_id,
            "product_name": self.product_name,
            "quantity": self.quantity,
            "unit_cost_cents": self.unit_cost_cents,
            "total_cost_cents": self.total_cost_cents,
            "allocated_at": to_utc_z(self.allocated_at),
        }
