# Overview: Single-flight re-check of non-final orders against a carrier status source.

from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from datetime import date
from typing import Callable, Optional

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..models import Order
from . import order_service


@dataclass(frozen=True)
class StatusUpdate:
    """What the carrier reports for one tracking number."""
    status: str
    courier_fee_cents: Optional[int] = None


# (tracking_number, dispatch_date) -> StatusUpdate | None
StatusSource = Callable[[str, Optional[date]], Optional[StatusUpdate]]


@dataclass
class SweepResult:
    checked: int = 0
    updated: int = 0
    failed: int = 0

    def to_dict(self) -> dict:
        return {"checked": self.checked, "updated": self.updated, "failed": self.failed}


class SweepUnavailableError(RuntimeError):
    """No carrier status source has been configured."""


class StatusSweeper:
    """
    Owns the "sweep is running" state for one app.

    run() is single-flight: a second caller while a sweep is in progress gets
    None back immediately instead of starting a parallel sweep.
    """

    def __init__(self, status_source: StatusSource | None = None):
        self.status_source = status_source
        self._lock = threading.Lock()

    def is_sweep_in_progress(self) -> bool:
        return self._lock.locked()

    def run(self, status_source: StatusSource | None = None) -> SweepResult | None:
        source = status_source or self.status_source
        if source is None:
            raise SweepUnavailableError("no carrier status source configured")

        if not self._lock.acquire(blocking=False):
            current_app.logger.info("Status sweep is already running")
            return None
        try:
            return self._sweep(source)
        finally:
            self._lock.release()

    def _sweep(self, source: StatusSource) -> SweepResult:
        final_statuses = tuple(current_app.config.get("FINAL_ORDER_STATUSES", ("delivered", "returned")))
        delay = current_app.config.get("SWEEP_REQUEST_DELAY_SECONDS", 0)

        pending = db.session.query(
            Order.id, Order.tracking_number, Order.order_status, Order.dispatch_date,
        ).filter(
            ~Order.order_status.in_(final_statuses)
        ).order_by(Order.id.asc()).all()
        # Carrier calls happen outside any open transaction
        db.session.commit()

        current_app.logger.info("Starting order status sweep: %s orders to check", len(pending))
        result = SweepResult()

        for index, row in enumerate(pending):
            if index and delay:
                time.sleep(delay)
            result.checked += 1

            try:
                update = source(row.tracking_number, row.dispatch_date)
            except Exception:
                current_app.logger.exception("Carrier lookup failed for %s", row.tracking_number)
                result.failed += 1
                continue

            if update is None or update.status.strip().lower() == row.order_status:
                continue

            try:
                order_service.update_order_status(
                    row.id, update.status, courier_fee_cents=update.courier_fee_cents
                )
            except (ValueError, SQLAlchemyError) as exc:
                db.session.rollback()
                current_app.logger.warning("Status update failed for order %s: %s", row.id, exc)
                result.failed += 1
                continue
            result.updated += 1

        current_app.logger.info(
            "Completed order status sweep: %s checked, %s updated, %s failed",
            result.checked, result.updated, result.failed,
        )
        return result


def get_status_sweeper() -> StatusSweeper:
    sweeper = current_app.extensions.get("status_sweeper")
    if sweeper is None:
        sweeper = StatusSweeper()
        current_app.extensions["status_sweeper"] = sweeper
    return sweeper
