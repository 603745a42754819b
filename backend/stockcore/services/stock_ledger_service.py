# Overview: Service-layer operations for the stock ledger; append-only movement records.

from __future__ import annotations

import math
import secrets
import string
import time
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import func, or_

from ..extensions import db
from ..models import Product, StockMovement
from stockcore.time_utils import utcnow, start_of_day, days_before
from .errors import MissingEntityError
"""
Stock Ledger Invariants (authoritative)

- One StockMovement per stock-affecting line item per order event.
- quantity_after = quantity_before + quantity_changed, always.
- Product title/SKU/external id are captured at write time and never re-derived.
- Rows are append-only. The only permitted mutation is the external sync
  consumer recording an attempt (record_sync_attempt). Enforced by
  stockcore.immutability.
- movement_date is business time (when stock moved); created_at is system time.
"""


MOVEMENT_SALE = "sale"
MOVEMENT_RESTORE = "restore"
MOVEMENT_TYPES = ("sale", "restore", "purchase", "adjustment", "return", "transfer", "sync")

SYNC_PENDING = "pending"
SYNC_SYNCED = "synced"
SYNC_FAILED = "failed"
SYNC_RETRY = "retry"
SYNC_STATUSES = (SYNC_PENDING, SYNC_SYNCED, SYNC_FAILED, SYNC_RETRY)

_UID_ALPHABET = string.ascii_lowercase + string.digits


@dataclass(frozen=True)
class ProductSnapshot:
    title: str | None
    sku: str | None
    external_id: str | None


def snapshot_product(product_id: int) -> ProductSnapshot:
    row = (
        db.session.query(Product.title, Product.sku, Product.external_id)
        .filter(Product.id == product_id)
        .first()
    )
    if row is None:
        raise MissingEntityError(f"Product {product_id} not found", details={"product_id": product_id})
    return ProductSnapshot(title=row.title, sku=row.sku, external_id=row.external_id)


def new_movement_uid() -> str:
    suffix = "".join(secrets.choice(_UID_ALPHABET) for _ in range(9))
    return f"MOV-{int(time.time() * 1000)}-{suffix}"


def append_stock_movement(
    *,
    product_id: int,
    movement_type: str,
    quantity_before: int,
    quantity_changed: int,
    acting_user_id: int,
    snapshot: ProductSnapshot | None = None,
    reference_document: str | None = None,
    invoice_number: str | None = None,
    cost_per_unit_cents: int = 0,
    is_combo_constituent: bool = False,
    combo_description: str | None = None,
    reason: str | None = None,
    store_location: str | None = None,
    movement_date: datetime | None = None,
    commit: bool = True,
) -> StockMovement:
    """
    Append one immutable stock movement.

    total_value_cents is cost_per_unit_cents x |quantity_changed|.
    """
    if movement_type not in MOVEMENT_TYPES:
        raise ValueError(f"unknown movement_type {movement_type!r}")

    snapshot = snapshot or snapshot_product(product_id)

    movement = StockMovement(
        movement_uid=new_movement_uid(),
        product_id=product_id,
        product_title=snapshot.title,
        product_sku=snapshot.sku,
        external_id=snapshot.external_id,
        movement_type=movement_type,
        quantity_before=quantity_before,
        quantity_changed=quantity_changed,
        quantity_after=quantity_before + quantity_changed,
        movement_date=movement_date or utcnow(),
        invoice_number=invoice_number,
        reference_document=reference_document,
        reason=reason,
        store_location=store_location,
        acting_user_id=acting_user_id,
        cost_per_unit_cents=cost_per_unit_cents,
        total_value_cents=cost_per_unit_cents * abs(quantity_changed),
        is_combo_constituent=is_combo_constituent,
        combo_description=combo_description,
        sync_status=SYNC_PENDING,
        sync_attempts=0,
    )
    db.session.add(movement)
    if commit:
        db.session.commit()
    else:
        db.session.flush()
    return movement


def record_sync_attempt(
    movement_id: int,
    status: str,
    response: dict | None = None,
    error: str | None = None,
) -> StockMovement:
    """The external sync consumer's transition on a movement."""
    if status not in SYNC_STATUSES:
        raise ValueError(f"unknown sync status {status!r}")

    movement = db.session.get(StockMovement, movement_id)
    if movement is None:
        raise MissingEntityError(f"Stock movement {movement_id} not found", details={"movement_id": movement_id})

    movement.sync_status = status
    movement.sync_attempts = (movement.sync_attempts or 0) + 1
    movement.last_sync_attempt_at = utcnow()
    if response is not None:
        movement.sync_response = response
    if error is not None:
        movement.sync_error_message = error

    db.session.commit()
    return movement


def list_stock_movements(
    *,
    product_id: int | None = None,
    movement_type: str | None = None,
    sync_status: str | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
    search: str | None = None,
    page: int = 1,
    limit: int = 10,
) -> dict:
    """Filtered, paginated movements, newest first. Date bounds are inclusive."""
    page = max(1, page)
    limit = max(1, min(limit, 500))

    q = db.session.query(StockMovement)
    if product_id is not None:
        q = q.filter(StockMovement.product_id == product_id)
    if movement_type:
        q = q.filter(StockMovement.movement_type == movement_type)
    if sync_status:
        q = q.filter(StockMovement.sync_status == sync_status)
    if start is not None:
        q = q.filter(StockMovement.movement_date >= start)
    if end is not None:
        q = q.filter(StockMovement.movement_date <= end)
    if search:
        pattern = f"%{search}%"
        q = q.filter(or_(
            StockMovement.invoice_number.ilike(pattern),
            StockMovement.reference_document.ilike(pattern),
            StockMovement.reason.ilike(pattern),
        ))

    total = q.count()
    items = (
        q.order_by(StockMovement.movement_date.desc(), StockMovement.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    pages = math.ceil(total / limit) if total else 0

    return {
        "items": [m.to_dict() for m in items],
        "pagination": {
            "page": page,
            "limit": limit,
            "total": total,
            "pages": pages,
            "has_next": page < pages,
            "has_prev": page > 1,
        },
    }


def get_movement_statistics(now: datetime | None = None) -> dict:
    now = now or utcnow()
    today = start_of_day(now)
    week_start = days_before(today, 7)

    def _count(*criteria) -> int:
        return db.session.query(func.count(StockMovement.id)).filter(*criteria).scalar() or 0

    total = _count()
    by_status = {status: _count(StockMovement.sync_status == status) for status in SYNC_STATUSES}

    type_rows = (
        db.session.query(
            StockMovement.movement_type,
            func.count(StockMovement.id),
            func.coalesce(func.sum(StockMovement.total_value_cents), 0),
        )
        .group_by(StockMovement.movement_type)
        .all()
    )

    return {
        "today_movements": _count(StockMovement.movement_date >= today),
        "week_movements": _count(StockMovement.movement_date >= week_start),
        "total_movements": total,
        "sync_status": by_status,
        "movement_types": [
            {"movement_type": mtype, "count": count, "total_value_cents": int(value)}
            for mtype, count, value in type_rows
        ],
        "sync_success_rate": round(by_status[SYNC_SYNCED] * 100 / total) if total else 0,
    }
