# Overview: Order-level stock flows; fulfilment (sale + loyalty award) and cancellation compensation.

from __future__ import annotations

from flask import current_app

from ..models import Order
from ..models.orders import OPEN_ORDER_STATUSES
from . import loyalty_service
from .cart import OrderContext, resolve_cart
from .errors import CartError
from .packaging_service import UnitCache
from .stock_mutation_service import apply_restore, apply_sale


def _require_order(order) -> Order:
    if order is None or getattr(order, "id", None) is None:
        raise CartError("Order is missing or has no id")
    return order


def fulfil_order(order: Order, *, loyalty=loyalty_service, unit_cache: UnitCache | None = None) -> dict:
    """
    Take an order's cart out of stock and award loyalty points on its total.

    Award failures are logged and reported, never raised.
    """
    order = _require_order(order)
    unit_cache = unit_cache or UnitCache()

    lines = resolve_cart(order.lines, unit_cache=unit_cache)
    outcomes = apply_sale(lines, OrderContext.from_order(order))

    result = {
        "order_id": order.id,
        "sale_outcomes": outcomes,
        "points_awarded": None,
        "error": None,
    }

    if order.customer_id is None:
        return result

    try:
        result["points_awarded"] = loyalty.award(order.customer_id, order.id, order.total_cents)
    except Exception as exc:
        current_app.logger.exception("Loyalty award failed for order %s", order.id)
        result["error"] = str(exc)

    return result


def cancel_order(
    order: Order,
    *,
    loyalty=loyalty_service,
    wait: bool = True,
    executor=None,
    unit_cache: UnitCache | None = None,
) -> dict:
    """
    Compensate a cancelled order: put its stock back and return its points.

    Steps run independently; a loyalty failure never undoes or hides a stock
    restore. Raises only for a malformed order or an unreachable store.
    The order's status is left to the caller.
    """
    order = _require_order(order)
    ctx = OrderContext.from_order(order)

    result = {
        "stock_restored": False,
        "points_restored": False,
        "points_restored_details": None,
        "earned_points_removed": None,
        "error": None,
        "restore_outcomes": None,
        "restore_futures": None,
    }

    lines = list(order.lines)
    if lines:
        restored = apply_restore(lines, ctx, wait=wait, executor=executor, unit_cache=unit_cache)
        result["restore_outcomes" if wait else "restore_futures"] = restored
        result["stock_restored"] = True
        current_app.logger.info("Stock restore initiated for order %s (%s line(s))", order.id, len(lines))

    points_used = order.loyalty_points_used or 0
    if points_used > 0:
        try:
            details = loyalty.restore(order.customer_id, order.id, points_used)
        except Exception as exc:
            current_app.logger.exception("Loyalty restore raised for order %s", order.id)
            details = {"success": False, "points_restored": 0, "error": str(exc)}

        result["points_restored_details"] = details
        result["points_restored"] = bool(details.get("success"))
        if not result["points_restored"]:
            result["error"] = details.get("error")
            current_app.logger.error(
                "Loyalty points not restored for order %s: %s", order.id, result["error"]
            )

    if order.customer_id is not None and order.status in OPEN_ORDER_STATUSES:
        try:
            result["earned_points_removed"] = loyalty.remove_earned_points(order.customer_id, order.id)
        except Exception as exc:
            current_app.logger.exception("Removing earned points failed for order %s", order.id)
            result["earned_points_removed"] = {"success": False, "points_removed": 0, "error": str(exc)}

    return result
