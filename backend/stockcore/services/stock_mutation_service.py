# Overview: Applies sale and restore stock deltas per cart line; writes pending-sync and ledger side effects.

from __future__ import annotations

from collections.abc import Callable
from concurrent.futures import Executor, Future
from dataclasses import dataclass, field

from flask import current_app
from sqlalchemy.exc import DataError, IntegrityError, OperationalError

from ..extensions import db
from ..models import Product, ProductUnit
from .cart import (
    OrderContext,
    ResolvedCartLine,
    as_mapping,
    coerce_cents,
    combo_reference_for,
    is_combo_entry,
    normalize_line,
    selected_products_of,
)
from .concurrency import atomic_increment, read_columns
from .errors import CartError, ResolutionError, StockError, MissingEntityError
from .identity_service import resolve_acting_user
from .packaging_service import UnitCache, find_matching_unit, to_base_units
from .stock_ledger_service import (
    MOVEMENT_RESTORE,
    MOVEMENT_SALE,
    append_stock_movement,
    snapshot_product,
)
"""
Stock Mutation Invariants (authoritative)

Per line, in order, each step committing on its own:
1. stock/sales delta in ONE atomic UPDATE keyed by product id (missing
   product -> line failed, next line continues)
2. pending_sync_qty delta on the matching packaging unit (best effort)
3. one StockMovement (skipped with a warning when no acting user resolves)

Lines are independent: no cross-line atomicity, no retries, no idempotency.
Re-applying the same cart applies it twice.

Caught per line: StockError (except CartError), IntegrityError, DataError.
Propagated: CartError (malformed input), OperationalError (store down).

Sale quantities are base units (resolve_cart converts upstream); sales move
by the order-level quantity (variants or combo units as ordered).
Restore works from the ORDER lines:
- combo line: base = combos x per-combo units; stock += base, sales -= base
- regular line: base = quantity x pack_qty; stock += base, sales -= quantity
"""


STATUS_APPLIED = "applied"
STATUS_SKIPPED = "skipped"
STATUS_FAILED = "failed"

_LINE_ERRORS = (StockError, IntegrityError, DataError)


@dataclass
class LineOutcome:
    product_id: int | None
    status: str
    quantity: int = 0
    quantity_before: int | None = None
    quantity_after: int | None = None
    movement_id: int | None = None
    warnings: list[str] = field(default_factory=list)
    error: str | None = None

    def to_dict(self) -> dict:
        return {
            "product_id": self.product_id,
            "status": self.status,
            "quantity": self.quantity,
            "quantity_before": self.quantity_before,
            "quantity_after": self.quantity_after,
            "movement_id": self.movement_id,
            "warnings": list(self.warnings),
            "error": self.error,
        }


@dataclass(frozen=True)
class StockDelta:
    """One product's planned change: what a single line job applies.

    quantity is the base units moved; stock_delta carries the sign.
    """
    product_id: int
    quantity: int
    stock_delta: int
    sales_delta: int
    unit_price_cents: int = 0
    selected_unit_id: int | None = None
    combo_reference: str | None = None
    title: str | None = None

    @property
    def is_combo_constituent(self) -> bool:
        return self.combo_reference is not None


def _sale_reference(ctx: OrderContext, delta: StockDelta) -> str:
    if delta.is_combo_constituent:
        return f"Combo Order: {ctx.order_id} - {delta.title or 'Combo Deal'}"
    return f"Order: {ctx.order_id}"


def _restore_reference(ctx: OrderContext | None, delta: StockDelta) -> str:
    order_ref = ctx.order_id if ctx is not None else "unknown"
    prefix = "Combo " if delta.is_combo_constituent else ""
    return f"{prefix}Cancelled Order: {order_ref}"


def _order_ref(ctx: OrderContext | None):
    return ctx.order_id if ctx is not None else None


def _adjust_pending_sync(delta: StockDelta, ctx: OrderContext | None, outcome: LineOutcome) -> None:
    unit = find_matching_unit(delta.product_id, delta.selected_unit_id)
    if unit is None:
        message = f"No packaging unit matches product {delta.product_id} (unit {delta.selected_unit_id}); pending sync not updated"
        current_app.logger.warning("%s (order %s)", message, _order_ref(ctx))
        outcome.warnings.append(message)
        return

    atomic_increment(ProductUnit, unit.id, pending_sync_qty=delta.stock_delta)
    db.session.commit()


def _write_movement(
    delta: StockDelta,
    ctx: OrderContext | None,
    outcome: LineOutcome,
    *,
    movement_type: str,
    reference: str,
    resolve_user: Callable[[int | None], int],
) -> None:
    try:
        acting_user_id = resolve_user(ctx.acting_user_id if ctx is not None else None)
    except ResolutionError as exc:
        message = f"Unaudited stock change on product {delta.product_id}: {exc}"
        current_app.logger.warning("%s (order %s)", message, _order_ref(ctx))
        outcome.warnings.append(message)
        return

    movement = append_stock_movement(
        product_id=delta.product_id,
        movement_type=movement_type,
        quantity_before=outcome.quantity_before,
        quantity_changed=delta.stock_delta,
        acting_user_id=acting_user_id,
        snapshot=snapshot_product(delta.product_id),
        reference_document=reference,
        invoice_number=ctx.invoice if ctx is not None else None,
        cost_per_unit_cents=delta.unit_price_cents,
        is_combo_constituent=delta.is_combo_constituent,
        combo_description=delta.combo_reference,
    )
    outcome.movement_id = movement.id


def _stock_level_warnings(delta: StockDelta, outcome: LineOutcome) -> None:
    remaining = outcome.quantity_after
    if remaining is None:
        return
    messages = []
    if remaining <= current_app.config["LOW_STOCK_THRESHOLD"]:
        messages.append(f"Product {delta.product_id} is low on stock (stock={remaining})")
    if remaining <= 0:
        messages.append(f"Product {delta.product_id} is out of stock (stock={remaining})")
    for message in messages:
        current_app.logger.warning(message)
        outcome.warnings.append(message)


def _degrade(step: str, delta: StockDelta, ctx: OrderContext | None, outcome: LineOutcome, exc: Exception) -> None:
    db.session.rollback()
    message = f"{step} failed after stock change on product {delta.product_id}: {exc}"
    current_app.logger.warning("%s (order %s)", message, _order_ref(ctx))
    outcome.warnings.append(message)


def _apply_delta(
    delta: StockDelta,
    ctx: OrderContext | None,
    *,
    movement_type: str,
    reference: str,
    resolve_user: Callable[[int | None], int],
) -> LineOutcome:
    if delta.quantity <= 0:
        return LineOutcome(delta.product_id, STATUS_SKIPPED, quantity=delta.quantity)

    try:
        matched = atomic_increment(
            Product, delta.product_id,
            stock=delta.stock_delta,
            sales=delta.sales_delta,
        )
        if not matched:
            raise MissingEntityError(
                f"Product {delta.product_id} not found",
                details={"product_id": delta.product_id},
            )
        # Read inside the same transaction: the row stays write-locked until commit
        row = read_columns(Product, delta.product_id, "stock")
        db.session.commit()
    except _LINE_ERRORS as exc:
        if isinstance(exc, CartError):
            raise
        db.session.rollback()
        current_app.logger.error(
            "%s of product %s failed (order %s): %s",
            movement_type, delta.product_id, _order_ref(ctx), exc,
        )
        return LineOutcome(delta.product_id, STATUS_FAILED, quantity=delta.quantity, error=str(exc))

    outcome = LineOutcome(
        delta.product_id,
        STATUS_APPLIED,
        quantity=delta.quantity,
        quantity_before=row.stock - delta.stock_delta,
        quantity_after=row.stock,
    )
    current_app.logger.info(
        "%s applied: product=%s stock %s -> %s (order %s)",
        movement_type, delta.product_id, outcome.quantity_before, outcome.quantity_after, _order_ref(ctx),
    )

    try:
        _adjust_pending_sync(delta, ctx, outcome)
    except _LINE_ERRORS as exc:
        if isinstance(exc, CartError):
            raise
        _degrade("Pending sync update", delta, ctx, outcome, exc)

    try:
        _write_movement(
            delta, ctx, outcome,
            movement_type=movement_type,
            reference=reference,
            resolve_user=resolve_user,
        )
    except _LINE_ERRORS as exc:
        if isinstance(exc, CartError):
            raise
        _degrade("Ledger write", delta, ctx, outcome, exc)

    return outcome


def _critical(operation: str, ctx: OrderContext | None):
    db.session.rollback()
    current_app.logger.exception("%s aborted (order %s)", operation, _order_ref(ctx))


# =============================================================================
# SALE
# =============================================================================

def apply_sale(
    lines,
    order_context: OrderContext,
    *,
    resolve_user: Callable[[int | None], int] = resolve_acting_user,
) -> list[LineOutcome]:
    """
    Decrement stock (and increment sales) for each cart line.

    Lines are ResolvedCartLine values or raw mappings; a raw quantity is
    taken as base units. Stock moves by `quantity`, sales by `order_quantity`
    (equal to `quantity` unless the line says otherwise). Combo constituents carry combo_reference and are
    applied exactly like any other line.

    Malformed input raises CartError before any line is applied.
    """
    if order_context is None:
        raise CartError("apply_sale requires an order context")

    resolved = [normalize_line(line) for line in lines]
    outcomes: list[LineOutcome] = []

    try:
        for line in resolved:
            delta = StockDelta(
                product_id=line.product_id,
                quantity=line.quantity,
                stock_delta=-line.quantity,
                sales_delta=line.order_quantity,
                unit_price_cents=line.unit_price_cents,
                selected_unit_id=line.selected_unit_id,
                combo_reference=line.combo_reference,
                title=line.title,
            )
            outcome = _apply_delta(
                delta, order_context,
                movement_type=MOVEMENT_SALE,
                reference=_sale_reference(order_context, delta),
                resolve_user=resolve_user,
            )
            if outcome.status == STATUS_APPLIED:
                _stock_level_warnings(delta, outcome)
            outcomes.append(outcome)
    except OperationalError:
        _critical("Sale", order_context)
        raise

    return outcomes


# =============================================================================
# RESTORE
# =============================================================================

def plan_restore(lines, unit_cache: UnitCache | None = None) -> list[StockDelta]:
    """
    Turn order lines into the deltas a cancellation restores.

    Stock goes back in base units and sales by the quantity as ordered,
    mirroring apply_sale over resolve_cart output.
    """
    unit_cache = unit_cache or UnitCache()
    deltas: list[StockDelta] = []

    for line in lines:
        if isinstance(line, ResolvedCartLine):
            deltas.append(StockDelta(
                product_id=line.product_id,
                quantity=line.quantity,
                stock_delta=line.quantity,
                sales_delta=-line.order_quantity,
                unit_price_cents=line.unit_price_cents,
                selected_unit_id=line.selected_unit_id,
                combo_reference=line.combo_reference,
                title=line.title,
            ))
            continue

        raw = as_mapping(line)

        if is_combo_entry(raw):
            constituents = selected_products_of(raw)
            if not constituents:
                current_app.logger.warning(
                    "Combo line %r has no selected products; nothing to restore", raw.get("title")
                )
                continue
            combos = raw.get("quantity")
            if isinstance(combos, bool) or not isinstance(combos, int):
                raise CartError("quantity must be an integer", details={"quantity": combos})
            reference = combo_reference_for(raw.get("title"))
            for product_id, per_combo in constituents.items():
                base = combos * per_combo
                deltas.append(StockDelta(
                    product_id=product_id,
                    quantity=base,
                    stock_delta=base,
                    sales_delta=-base,
                    unit_price_cents=coerce_cents(raw.get("unit_price_cents", raw.get("unitPriceCents"))),
                    combo_reference=reference,
                    title=raw.get("title"),
                ))
            continue

        entry = normalize_line(raw)
        base = to_base_units(entry.quantity, unit_cache.pack_qty_for(entry.selected_unit_id))
        deltas.append(StockDelta(
            product_id=entry.product_id,
            quantity=base,
            stock_delta=base,
            sales_delta=-entry.quantity,
            unit_price_cents=entry.unit_price_cents,
            selected_unit_id=entry.selected_unit_id,
            title=entry.title,
        ))

    return deltas


def _restore_one(
    delta: StockDelta,
    ctx: OrderContext | None,
    resolve_user: Callable[[int | None], int],
) -> LineOutcome:
    try:
        return _apply_delta(
            delta, ctx,
            movement_type=MOVEMENT_RESTORE,
            reference=_restore_reference(ctx, delta),
            resolve_user=resolve_user,
        )
    except OperationalError:
        _critical("Restore", ctx)
        raise


def _restore_job(app, delta: StockDelta, ctx: OrderContext | None, resolve_user) -> LineOutcome:
    with app.app_context():
        return _restore_one(delta, ctx, resolve_user)


def apply_restore(
    lines,
    order_context: OrderContext | None = None,
    *,
    wait: bool = True,
    executor: Executor | None = None,
    unit_cache: UnitCache | None = None,
    resolve_user: Callable[[int | None], int] = resolve_acting_user,
) -> list[LineOutcome] | list[Future]:
    """
    Put stock back for cancelled order lines.

    wait=True applies every line before returning the outcomes.
    wait=False submits one job per line to `executor` (default: the app's
    restore executor) and returns the futures; each job runs in its own
    application context.
    """
    deltas = plan_restore(lines, unit_cache=unit_cache)

    if wait:
        return [_restore_one(delta, order_context, resolve_user) for delta in deltas]

    app = current_app._get_current_object()
    executor = executor or app.extensions.get("stock_restore_executor")
    if executor is None:
        raise RuntimeError("Restore executor has been shut down")
    futures = [
        executor.submit(_restore_job, app, delta, order_context, resolve_user)
        for delta in deltas
    ]
    current_app.logger.info(
        "Restore detached: %s job(s) submitted (order %s)", len(futures), _order_ref(order_context)
    )
    return futures
