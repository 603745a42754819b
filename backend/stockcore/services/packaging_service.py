"""
Packaging model: conversion between sellable units and base inventory units.

RULES:
- pack_qty is the number of base units one sale of a variant consumes.
- stock is always counted in base units; variant counts are derived by
  floor division.
- pack_qty <= 0 is a data error. Price math returns the raw price instead of
  dividing; quantity math falls back to a pack of 1.
- At most one default unit per product: saving a default unit clears the
  flag on every sibling in a single UPDATE.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP, InvalidOperation

from ..extensions import db
from ..models import ProductUnit


ONE = Decimal("1")


def _as_decimal(value) -> Decimal | None:
    if value is None:
        return None
    if isinstance(value, Decimal):
        return value
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError):
        return None


def effective_pack_qty(pack_qty) -> Decimal:
    """pack_qty as a Decimal, or 1 when missing or not positive."""
    pack = _as_decimal(pack_qty)
    if pack is None or pack <= 0:
        return ONE
    return pack


def price_per_base_unit(unit: ProductUnit) -> Decimal:
    """Price (cents) of one base unit when bought through this variant."""
    price = Decimal(unit.price_cents or 0)
    pack = _as_decimal(unit.pack_qty)
    if pack is None or pack <= 0:
        return price
    return price / pack


def to_base_units(quantity: int, pack_qty) -> int:
    """
    Convert a count of variant units to base units.

    Fractional results (rational pack_qty) are rounded half-up, since stock
    is stored as an integer.
    """
    exact = Decimal(quantity) * effective_pack_qty(pack_qty)
    return int(exact.to_integral_value(rounding=ROUND_HALF_UP))


def variant_count(available: int, pack_qty) -> int:
    """How many whole variant units fit in `available` base units."""
    pack = _as_decimal(pack_qty)
    if pack is None or pack <= 0 or available <= 0:
        return 0
    return int(Decimal(available) // pack)


def calculate_savings(unit: ProductUnit, base_unit_price_cents: int) -> int:
    """Cents saved by buying this variant instead of the same base units one by one."""
    if not base_unit_price_cents or base_unit_price_cents <= 0:
        return 0
    equivalent = Decimal(base_unit_price_cents) * effective_pack_qty(unit.pack_qty)
    savings = equivalent - Decimal(unit.price_cents or 0)
    return max(0, int(savings.to_integral_value(rounding=ROUND_HALF_UP)))


def is_better_value(unit: ProductUnit, other: ProductUnit) -> bool:
    return price_per_base_unit(unit) < price_per_base_unit(other)


def best_value_unit(product_id: int) -> ProductUnit | None:
    """Active, available unit with the lowest price per base unit."""
    units = (
        db.session.query(ProductUnit)
        .filter_by(product_id=product_id, is_active=True, is_available=True)
        .order_by(ProductUnit.id.asc())
        .all()
    )
    if not units:
        return None
    return min(units, key=price_per_base_unit)


def list_active_units(product_id: int) -> list[ProductUnit]:
    return (
        db.session.query(ProductUnit)
        .filter_by(product_id=product_id, is_active=True)
        .order_by(ProductUnit.is_default.desc(), ProductUnit.id.asc())
        .all()
    )


def find_matching_unit(product_id: int, unit_id: int | None = None) -> ProductUnit | None:
    """
    Packaging unit for (product, unit id).

    Without a unit id the product's default unit wins, then the oldest unit.
    A unit id that belongs to another product does not match.
    """
    q = db.session.query(ProductUnit).filter(ProductUnit.product_id == product_id)
    if unit_id is not None:
        q = q.filter(ProductUnit.id == unit_id)
    return q.order_by(ProductUnit.is_default.desc(), ProductUnit.id.asc()).first()


def save_product_unit(unit: ProductUnit, *, commit: bool = True) -> ProductUnit:
    """
    Persist a packaging unit, keeping at most one default per product.
    """
    if unit.product_id is None:
        raise ValueError("product unit requires product_id")
    if unit.pack_qty is None:
        unit.pack_qty = ONE
    pack = _as_decimal(unit.pack_qty)
    if pack is None or pack <= 0:
        raise ValueError("pack_qty must be positive")

    db.session.add(unit)
    db.session.flush()

    if unit.is_default:
        db.session.query(ProductUnit).filter(
            ProductUnit.product_id == unit.product_id,
            ProductUnit.id != unit.id,
            ProductUnit.is_default.is_(True),
        ).update({ProductUnit.is_default: False}, synchronize_session="fetch")

    if commit:
        db.session.commit()
    return unit


@dataclass(frozen=True)
class UnitSnapshot:
    id: int
    product_id: int
    pack_qty: Decimal
    is_active: bool


class UnitCache:
    """
    Request- or job-scoped cache of resolved packaging units.

    Construct one per unit of work and pass it in; nothing is cached at
    module level. Misses are not cached, so a unit created later in the same
    scope is still found.
    """

    def __init__(self):
        self._entries: dict[int, UnitSnapshot] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, unit_id: int | None) -> UnitSnapshot | None:
        if unit_id is None:
            return None
        cached = self._entries.get(unit_id)
        if cached is not None:
            return cached

        unit = db.session.get(ProductUnit, unit_id)
        if unit is None:
            return None
        snapshot = UnitSnapshot(
            id=unit.id,
            product_id=unit.product_id,
            pack_qty=effective_pack_qty(unit.pack_qty),
            is_active=unit.is_active,
        )
        self._entries[unit_id] = snapshot
        return snapshot

    def pack_qty_for(self, unit_id: int | None) -> Decimal:
        snapshot = self.get(unit_id)
        return snapshot.pack_qty if snapshot else ONE

    def clear(self) -> None:
        self._entries.clear()
