"""
Cart normalization: raw order/cart entries -> ResolvedCartLine values.

WHY: Cart entries arrive in several shapes (ORM OrderLine rows, JSON
payloads using camelCase or Mongo-style ids). They are normalized ONCE here
so the stock engine never re-derives field precedence.

PRODUCT ID PRECEDENCE (first present wins):
    product_id, productId, _id, id

QUANTITY SEMANTICS:
- ResolvedCartLine.quantity is in BASE units (what stock moves by).
- ResolvedCartLine.order_quantity is the count as ordered (variants or combos).

resolve_cart() is the upstream decomposition used before a sale: combo lines
become one line per constituent product (tagged with a combo reference for
provenance) and packaging-unit quantities are converted to base units.
normalize_line() only reshapes a single entry and never converts units.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass

from flask import current_app

from ..models import Order, OrderLine
from .errors import CartError
from .packaging_service import UnitCache, to_base_units


PRODUCT_ID_KEYS = ("product_id", "productId", "_id", "id")


@dataclass(frozen=True)
class ResolvedCartLine:
    product_id: int
    quantity: int
    order_quantity: int
    unit_price_cents: int = 0
    selected_unit_id: int | None = None
    combo_reference: str | None = None
    title: str | None = None

    @property
    def is_combo_constituent(self) -> bool:
        return self.combo_reference is not None


@dataclass(frozen=True)
class OrderContext:
    """Who/what a stock change belongs to, for the ledger."""
    order_id: int | str
    invoice: str | None = None
    acting_user_id: int | None = None

    @classmethod
    def from_order(cls, order: Order) -> "OrderContext":
        if getattr(order, "id", None) is None:
            raise CartError("Order has no id")
        return cls(order_id=order.id, invoice=order.invoice, acting_user_id=order.admin_user_id)


def _coerce_id(value, field: str) -> int:
    if isinstance(value, bool):
        raise CartError(f"{field} must be an integer id", details={field: value})
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    raise CartError(f"{field} must be an integer id", details={field: value})


def _coerce_quantity(value) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise CartError("quantity must be an integer", details={"quantity": value})
    return value


def coerce_cents(value) -> int:
    if value is None or value == "":
        return 0
    if isinstance(value, bool):
        raise CartError("unit_price_cents must be an integer", details={"unit_price_cents": value})
    try:
        return int(value)
    except (TypeError, ValueError):
        raise CartError("unit_price_cents must be an integer", details={"unit_price_cents": value}) from None


def _first_present(raw: Mapping, keys: Iterable[str]):
    for key in keys:
        value = raw.get(key)
        if value is not None:
            return value
    return None


def as_mapping(line) -> Mapping:
    if isinstance(line, OrderLine):
        return line.to_dict() | {"id": None}
    if isinstance(line, Mapping):
        return line
    raise CartError("cart line must be a mapping or OrderLine", details={"type": type(line).__name__})


def normalize_line(line) -> ResolvedCartLine:
    """Reshape one cart entry. Quantity is taken as base units as-is."""
    if isinstance(line, ResolvedCartLine):
        return line

    raw = as_mapping(line)
    product_ref = _first_present(raw, PRODUCT_ID_KEYS)
    if product_ref is None:
        raise CartError("cart line has no product id", details={"line": dict(raw)})

    quantity = _coerce_quantity(raw.get("quantity"))
    order_quantity = raw.get("order_quantity", raw.get("orderQuantity", quantity))
    unit_ref = _first_present(raw, ("selected_unit_id", "selectedUnitId"))

    return ResolvedCartLine(
        product_id=_coerce_id(product_ref, "product_id"),
        quantity=quantity,
        order_quantity=_coerce_quantity(order_quantity),
        unit_price_cents=coerce_cents(_first_present(raw, ("unit_price_cents", "unitPriceCents"))),
        selected_unit_id=_coerce_id(unit_ref, "selected_unit_id") if unit_ref is not None else None,
        combo_reference=_first_present(raw, ("combo_reference", "comboReference")),
        title=raw.get("title"),
    )


def combo_reference_for(title: str | None) -> str:
    return f"Combo: {title or 'Combo Deal'}"


def selected_products_of(raw: Mapping) -> dict[int, int]:
    """Constituent map {product_id: units per combo} of a combo entry ({} when absent)."""
    selected = raw.get("selected_products", raw.get("selectedProducts"))
    if not selected:
        return {}
    if not isinstance(selected, Mapping):
        raise CartError("selected_products must be a mapping", details={"selected_products": selected})
    return {
        _coerce_id(pid, "selected_products key"): _coerce_quantity(qty)
        for pid, qty in selected.items()
    }


def is_combo_entry(raw: Mapping) -> bool:
    flag = raw.get("is_combo", raw.get("isCombo"))
    return flag is True or flag == "true"


def resolve_cart(lines, unit_cache: UnitCache | None = None) -> list[ResolvedCartLine]:
    """
    Decompose an order cart into base-unit lines for apply_sale.

    - combo entry: one line per constituent, quantity = combos x per-combo units
    - regular entry: quantity = ordered units x pack_qty of the selected unit
      (pack of 1 when the unit is missing or unresolvable)
    """
    unit_cache = unit_cache or UnitCache()
    resolved: list[ResolvedCartLine] = []

    for line in lines:
        raw = as_mapping(line)
        quantity = _coerce_quantity(raw.get("quantity"))
        price = coerce_cents(_first_present(raw, ("unit_price_cents", "unitPriceCents")))
        title = raw.get("title")

        if is_combo_entry(raw):
            constituents = selected_products_of(raw)
            if not constituents:
                current_app.logger.warning(
                    "Combo line %r has no selected products; nothing to resolve", title
                )
                continue
            reference = combo_reference_for(title)
            for product_id, per_combo in constituents.items():
                resolved.append(ResolvedCartLine(
                    product_id=product_id,
                    quantity=quantity * per_combo,
                    order_quantity=quantity * per_combo,
                    unit_price_cents=price,
                    combo_reference=reference,
                    title=title,
                ))
            continue

        base = normalize_line(raw)
        pack_qty = unit_cache.pack_qty_for(base.selected_unit_id)
        resolved.append(ResolvedCartLine(
            product_id=base.product_id,
            quantity=to_base_units(quantity, pack_qty),
            order_quantity=quantity,
            unit_price_cents=price,
            selected_unit_id=base.selected_unit_id,
            title=title,
        ))

    return resolved
