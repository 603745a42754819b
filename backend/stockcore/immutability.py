"""
ORM-level immutability for the stock ledger.

StockMovement rows are append-only. After the INSERT:
- UPDATE is allowed only when every changed column is a sync field
  (StockMovement.SYNC_MUTABLE_FIELDS), i.e. the external sync consumer
  recording an attempt.
- DELETE is never allowed.

The check runs in SessionEvents.before_flush, before any SQL is emitted,
so a violation leaves the database untouched. Bulk query.update() calls
bypass the ORM; the balance rule is additionally a CHECK constraint on the
table.
"""

from sqlalchemy import event, inspect
from sqlalchemy.orm import Session

from .services.errors import ImmutabilityViolationError


def _changed_columns(obj) -> set[str]:
    state = inspect(obj)
    changed = set()
    for attr in state.mapper.column_attrs:
        if state.attrs[attr.key].history.has_changes():
            changed.add(attr.key)
    return changed


def _check_stock_movement_immutability(session, flush_context, instances):
    from .models import StockMovement

    for obj in list(session.deleted):
        if isinstance(obj, StockMovement):
            raise ImmutabilityViolationError(
                "Stock movements cannot be deleted",
                details={"movement_id": obj.id},
            )

    for obj in list(session.dirty):
        if not isinstance(obj, StockMovement):
            continue
        forbidden = _changed_columns(obj) - StockMovement.SYNC_MUTABLE_FIELDS
        if forbidden:
            raise ImmutabilityViolationError(
                "Stock movements are immutable",
                details={"movement_id": obj.id, "fields": sorted(forbidden)},
            )


def register_immutability_listeners() -> None:
    """Install the ledger guard on every Session. Safe to call repeatedly."""
    if not event.contains(Session, "before_flush", _check_stock_movement_immutability):
        event.listen(Session, "before_flush", _check_stock_movement_immutability)
