# backend/parcelops/routes/orders.py
"""
Order lifecycle routes.

Order lifecycle (cost side):
1. Created -> guarded FIFO allocation (precogs_cents)
2. Status updates from the carrier; first delivery freezes cogs_cents
3. Returns toggle stock back into / out of the original batches
4. Delete reverses the allocation unless the return already restocked it
"""
from flask import Blueprint, request, current_app

from ..models import Order
from ..validation import (
    ModelValidationPolicy,
    validate_payload,
    ValidationError,
    NotFoundError,
    ConflictError,
    coerce_int,
    enforce_rules_order,
)
from ..services import order_service, fifo_service
from ..services.status_sweep import get_status_sweeper, SweepUnavailableError


orders_bp = Blueprint("orders", __name__, url_prefix="/api/orders")

ORDER_CREATE_POLICY = ModelValidationPolicy(
    writable_fields={
        "tracking_number",
        "order_ref",
        "customer_name",
        "customer_city",
        "product_description",
        "amount_cents",
        "courier_fee_cents",
        "order_status",
        "dispatch_date",
    },
    required_on_create={"tracking_number", "product_description"},
)


def _id_list(payload: dict, key: str) -> list[int]:
    values = payload.get(key)
    if not isinstance(values, list) or not values:
        raise ValidationError(f"{key} must be a non-empty list")
    return [coerce_int(key, v) for v in values]


def _bool_field(payload: dict, key: str, default: bool = False) -> bool:
    value = payload.get(key, default)
    if not isinstance(value, bool):
        raise ValidationError(f"{key} must be true or false")
    return value


@orders_bp.get("")
def list_orders_route():
    status = request.args.get("status")
    try:
        limit = coerce_int("limit", request.args.get("limit", "200"))
    except ValidationError as e:
        return {"error": str(e)}, 400
    orders = order_service.list_orders(status=status, limit=max(1, min(limit, 1000)))
    return {"orders": [o.to_dict() for o in orders]}, 200


@orders_bp.post("")
def create_order_route():
    """
    Create an order and allocate its stock.

    Query param allocate=false skips allocation (import of historical data).
    """
    payload = request.get_json(silent=True) or {}
    allocate = request.args.get("allocate", "true").lower() not in ("0", "false", "no")

    try:
        patch = validate_payload(
            model=Order,
            payload=payload,
            policy=ORDER_CREATE_POLICY,
            partial=False,
        )
        enforce_rules_order(patch)
        order, allocation = order_service.create_order(allocate=allocate, **patch)
    except ValidationError as e:
        return {"error": str(e)}, 400
    except ConflictError as e:
        return {"error": str(e)}, 409
    except Exception:
        current_app.logger.exception("Order creation failed")
        return {"error": "Internal server error"}, 500

    return {
        "order": order.to_dict(),
        "allocation": allocation.to_dict() if allocation else None,
    }, 201


@orders_bp.get("/<int:order_id>")
def get_order_route(order_id: int):
    try:
        order = fifo_service.get_order(order_id)
    except NotFoundError as e:
        return {"error": str(e)}, 404
    return {"order": order.to_dict()}, 200


@orders_bp.get("/<int:order_id>/line-items")
def get_line_items_route(order_id: int):
    try:
        lines = fifo_service.get_line_items_for_order(order_id)
    except NotFoundError as e:
        return {"error": str(e)}, 404
    return {
        "order_id": order_id,
        "line_items": [line.to_dict() for line in lines],
        "total_cost_cents": sum(line.total_cost_cents for line in lines),
    }, 200


@orders_bp.post("/<int:order_id>/allocate")
def allocate_order_route(order_id: int):
    """
    Guarded allocation: a no-op if the order is already allocated.

    A shortfall is not an error; the response carries warnings and the order
    stays unallocated.
    """
    try:
        result = order_service.allocate_order(order_id)
    except ValidationError as e:
        return {"error": str(e)}, 400
    except NotFoundError as e:
        return {"error": str(e)}, 404
    except Exception:
        current_app.logger.exception("Order allocation failed")
        return {"error": "Internal server error"}, 500

    return {"allocation": result.to_dict()}, 200


@orders_bp.post("/<int:order_id>/reverse")
def reverse_order_route(order_id: int):
    try:
        result = fifo_service.reverse(order_id)
    except NotFoundError as e:
        return {"error": str(e)}, 404
    except Exception:
        current_app.logger.exception("Order reversal failed")
        return {"error": "Internal server error"}, 500

    return {"reversal": result.to_dict()}, 200


@orders_bp.post("/<int:order_id>/status")
def update_status_route(order_id: int):
    """Body: {"status": str, "courier_fee_cents": int (optional)}"""
    payload = request.get_json(silent=True) or {}

    try:
        status = payload.get("status")
        if not isinstance(status, str):
            raise ValidationError("status is required")
        fee = payload.get("courier_fee_cents")
        if fee is not None:
            fee = coerce_int("courier_fee_cents", fee)
            enforce_rules_order({"courier_fee_cents": fee})
        order = order_service.update_order_status(order_id, status, courier_fee_cents=fee)
    except ValidationError as e:
        return {"error": str(e)}, 400
    except NotFoundError as e:
        return {"error": str(e)}, 404
    except Exception:
        current_app.logger.exception("Order status update failed")
        return {"error": "Internal server error"}, 500

    return {"order": order.to_dict()}, 200


@orders_bp.post("/<int:order_id>/return-received")
def return_received_route(order_id: int):
    """Body: {"received": bool}"""
    payload = request.get_json(silent=True) or {}

    try:
        if "received" not in payload:
            raise ValidationError("received is required")
        received = _bool_field(payload, "received")
        result = order_service.set_return_received(order_id, received)
    except ValidationError as e:
        return {"error": str(e)}, 400
    except NotFoundError as e:
        return {"error": str(e)}, 404
    except ConflictError as e:
        return {"error": str(e)}, 409
    except Exception:
        current_app.logger.exception("Return toggle failed")
        return {"error": "Internal server error"}, 500

    return {"toggle": result.to_dict()}, 200


@orders_bp.post("/returns-received")
def bulk_returns_received_route():
    """Body: {"tracking_numbers": [str, ...]}"""
    payload = request.get_json(silent=True) or {}
    tracking_numbers = payload.get("tracking_numbers")
    if not isinstance(tracking_numbers, list) or not tracking_numbers:
        return {"error": "tracking_numbers must be a non-empty list"}, 400

    result = order_service.bulk_mark_returns_received([str(t) for t in tracking_numbers])
    return result.to_dict(), 200


@orders_bp.delete("/<int:order_id>")
def delete_order_route(order_id: int):
    """Query param force=true deletes even if some stock cannot be restored."""
    force = request.args.get("force", "false").lower() in ("1", "true", "yes")

    try:
        result = order_service.delete_order(order_id, force=force)
    except NotFoundError as e:
        return {"error": str(e)}, 404
    except ConflictError as e:
        return {"error": str(e)}, 409
    except Exception:
        current_app.logger.exception("Order deletion failed")
        return {"error": "Internal server error"}, 500

    return {"deleted": order_id, "reversal": result.to_dict()}, 200


@orders_bp.post("/bulk-delete")
def bulk_delete_route():
    """Body: {"order_ids": [int, ...], "force": bool}"""
    payload = request.get_json(silent=True) or {}

    try:
        order_ids = _id_list(payload, "order_ids")
        force = _bool_field(payload, "force")
    except ValidationError as e:
        return {"error": str(e)}, 400

    result = order_service.bulk_delete_orders(order_ids, force=force)
    return result.to_dict(), 200


@orders_bp.post("/delivered-cogs")
def delivered_cogs_route():
    """Body: {"order_ids": [int, ...]}; costs as recorded in the ledger."""
    payload = request.get_json(silent=True) or {}

    try:
        order_ids = _id_list(payload, "order_ids")
    except ValidationError as e:
        return {"error": str(e)}, 400

    return fifo_service.calculate_delivered_orders_cogs(order_ids), 200


@orders_bp.get("/sweep")
def sweep_status_route():
    return {"in_progress": get_status_sweeper().is_sweep_in_progress()}, 200


@orders_bp.post("/sweep")
def run_sweep_route():
    """Re-check every non-final order with the configured carrier source."""
    sweeper = get_status_sweeper()
    try:
        result = sweeper.run()
    except SweepUnavailableError as e:
        return {"error": str(e)}, 503
    except Exception:
        current_app.logger.exception("Status sweep failed")
        return {"error": "Internal server error"}, 500

    if result is None:
        return {"error": "status sweep already in progress"}, 409
    return {"sweep": result.to_dict()}, 200
