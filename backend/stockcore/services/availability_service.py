# Overview: Reservation-aware sellable availability per product and packaging variant.

from __future__ import annotations

from decimal import Decimal, ROUND_HALF_UP

from ..extensions import db
from ..models import Order, OrderLine, Product
from ..models.orders import OPEN_ORDER_STATUSES
from .errors import MissingEntityError
from .packaging_service import UnitCache, list_active_units, variant_count
"""
Availability Semantics (authoritative)

- reserved = SUM(quantity x pack_qty of the selected unit) over lines of
  orders still PENDING or PROCESSING whose product_id is this product.
  A line with no (or an unknown) selected unit reserves with pack_qty = 1.
- available = max(0, stock - reserved). Raw stock may be negative; available
  never is.
- Per active variant: available_units = floor(available / pack_qty);
  is_available iff available_units > 0.
- Read-only: nothing here writes to the session.
"""


def get_reserved_quantity(product_id: int, unit_cache: UnitCache | None = None) -> int:
    """Base units committed to open orders for this product."""
    unit_cache = unit_cache or UnitCache()

    rows = (
        db.session.query(OrderLine.quantity, OrderLine.selected_unit_id)
        .join(Order, Order.id == OrderLine.order_id)
        .filter(
            Order.status.in_(OPEN_ORDER_STATUSES),
            OrderLine.product_id == product_id,
            OrderLine.is_combo.is_(False),
        )
        .all()
    )

    reserved = Decimal(0)
    for quantity, unit_id in rows:
        if not quantity or quantity <= 0:
            continue
        reserved += Decimal(quantity) * unit_cache.pack_qty_for(unit_id)

    return int(reserved.to_integral_value(rounding=ROUND_HALF_UP))


def get_availability(product_id: int, *, unit_cache: UnitCache | None = None) -> dict:
    row = (
        db.session.query(Product.id, Product.stock)
        .filter(Product.id == product_id)
        .first()
    )
    if row is None:
        raise MissingEntityError(f"Product {product_id} not found", details={"product_id": product_id})

    stock = row.stock or 0
    reserved = get_reserved_quantity(product_id, unit_cache=unit_cache)
    available = max(0, stock - reserved)

    per_variant = []
    for unit in list_active_units(product_id):
        available_units = variant_count(available, unit.pack_qty)
        per_variant.append({
            "unit_id": unit.id,
            "unit_name": unit.display_name,
            "pack_qty": str(unit.pack_qty) if unit.pack_qty is not None else None,
            "price_cents": unit.price_cents,
            "available_units": available_units,
            "is_available": available_units > 0,
            "is_default": unit.is_default,
        })

    return {
        "product_id": product_id,
        "stock": stock,
        "reserved": reserved,
        "available": available,
        "has_stock": available > 0,
        "per_variant": per_variant,
        "available_variants": [v for v in per_variant if v["is_available"]],
    }
