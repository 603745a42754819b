# Overview: Atomic single-row counter updates and column reads.

from __future__ import annotations

from ..extensions import db


def atomic_increment(model, row_id: int, **deltas: int) -> bool:
    """
    Apply `column = column + delta` for each keyword in ONE UPDATE statement.

    The read-modify-write happens inside the database, so concurrent callers
    never lose each other's increments. Returns False when no row matched.

    Does not commit.
    """
    if not deltas:
        raise ValueError("atomic_increment needs at least one column delta")

    values = {
        getattr(model, column): getattr(model, column) + delta
        for column, delta in deltas.items()
    }
    matched = (
        db.session.query(model)
        .filter(model.id == row_id)
        .update(values, synchronize_session="fetch")
    )
    return matched > 0


def read_columns(model, row_id: int, *columns: str):
    """Fresh read of selected columns for one row (None when missing)."""
    return (
        db.session.query(*[getattr(model, c) for c in columns])
        .filter(model.id == row_id)
        .first()
    )
