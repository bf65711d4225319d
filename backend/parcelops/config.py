# backend/parcelops/config.py
from __future__ import annotations
import os


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/parcelops.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///parcelops.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Orders in these statuses are never re-checked by the status sweep
    FINAL_ORDER_STATUSES = ("delivered", "returned")
    # First transition into this status freezes the order's cost
    DELIVERED_STATUS = "delivered"

    # Pause between carrier lookups during a sweep (rate limiting)
    SWEEP_REQUEST_DELAY_SECONDS = float(os.environ.get("SWEEP_REQUEST_DELAY_SECONDS", "0.5"))

    INITIAL_BATCH_NOTE = "Initial batch from existing inventory"

    # Callable (tracking_number, dispatch_date) -> StatusUpdate | None; the
    # carrier client lives outside this service and is injected here.
    CARRIER_STATUS_SOURCE = None
