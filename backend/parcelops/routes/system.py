# backend/parcelops/routes/system.py
"""
System health and version endpoints.

Health covers database connectivity and the inventory stock cache, which is
the one derived value that can silently drift.
"""

import sys
import time
from flask import Blueprint, current_app
from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..models import Product, InventoryBatch, Order
from ..services.batch_service import batch_remaining_totals
from ..services.status_sweep import get_status_sweeper
from parcelops.time_utils import utcnow, to_utc_z

system_bp = Blueprint("system", __name__)


def check_database_health() -> dict:
    """Check database connectivity with a few cheap counts."""
    start_time = time.time()
    try:
        product_count = db.session.query(Product).count()
        batch_count = db.session.query(InventoryBatch).count()
        order_count = db.session.query(Order).count()

        elapsed_ms = (time.time() - start_time) * 1000
        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {
                "products": product_count,
                "batches": batch_count,
                "orders": order_count,
            }
        }
    except SQLAlchemyError:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Database health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Database error"
        }


def check_stock_cache_health() -> dict:
    """
    Compare Product.current_stock with batch totals.

    Drift is reported as degraded; `flask inventory reconcile` repairs it.
    """
    start_time = time.time()
    try:
        totals = batch_remaining_totals()
        drifted = [
            product_id
            for product_id, cached in db.session.query(Product.id, Product.current_stock).all()
            if cached != totals.get(product_id, 0)
        ]
        elapsed_ms = (time.time() - start_time) * 1000
        return {
            "status": "degraded" if drifted else "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {"drifted_product_ids": drifted},
        }
    except SQLAlchemyError:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Stock cache health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Database error"
        }


@system_bp.get("/health")
def health():
    """
    Health check endpoint.

    Returns:
    - 200: healthy or degraded (still operational)
    - 503: database unreachable
    """
    start_time = time.time()

    database_health = check_database_health()
    stock_health = check_stock_cache_health()

    all_checks = [database_health, stock_health]
    if any(check["status"] == "unhealthy" for check in all_checks):
        overall_status, http_status = "unhealthy", 503
    elif any(check["status"] == "degraded" for check in all_checks):
        overall_status, http_status = "degraded", 200
    else:
        overall_status, http_status = "healthy", 200

    total_elapsed_ms = (time.time() - start_time) * 1000

    response = {
        "status": overall_status,
        "timestamp": to_utc_z(utcnow()),
        "total_latency_ms": round(total_elapsed_ms, 2),
        "sweep_in_progress": get_status_sweeper().is_sweep_in_progress(),
        "checks": {
            "database": database_health,
            "stock_cache": stock_health,
        }
    }

    return response, http_status


@system_bp.get("/version")
def version():
    """Non-sensitive deployment information."""
    env = "production" if not current_app.debug else "development"

    return {
        "api_version": "1.0.0",
        "environment": env,
        "python_version": sys.version.split()[0],
        "server_time": to_utc_z(utcnow()),
    }
