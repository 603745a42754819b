from __future__ import annotations

from decimal import Decimal

from ..extensions import db
from stockcore.time_utils import to_utc_z


class Unit(db.Model):
    """
    Global unit-of-measure definition (e.g. "Piece", "Dozen", "Case").

    Units are shared across products. The per-product conversion to base
    units lives on ProductUnit.pack_qty, not here.
    """
    __tablename__ = "units"
    __table_args__ = (
        db.UniqueConstraint("name", name="uq_units_name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(64), nullable=False)
    short_code = db.Column(db.String(16), nullable=True)
    is_base = db.Column(db.Boolean, nullable=False, default=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "short_code": self.short_code,
            "is_base": self.is_base,
            "is_active": self.is_active,
        }


class Product(db.Model):
    """
    Product stock record.

    STOCK SEMANTICS:
    - stock is ALWAYS expressed in base units, never in packaged units.
    - stock may go negative under concurrent sales; it is never auto-clamped.
    - sales is the cumulative "times sold" counter.

    Both counters are mutated only through single-statement atomic UPDATEs
    (see services/concurrency.atomic_increment), never read-modify-write
    in Python.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.UniqueConstraint("sku", name="uq_products_sku"),
        db.Index("ix_products_active", "is_active"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    sku = db.Column(db.String(64), nullable=True)
    title = db.Column(db.String(255), nullable=False)

    # Identifier in the external inventory system of record
    external_id = db.Column(db.String(64), nullable=True, index=True)

    stock = db.Column(db.Integer, nullable=False, default=0)
    sales = db.Column(db.Integer, nullable=False, default=0)

    basic_unit_id = db.Column(db.Integer, db.ForeignKey("units.id"), nullable=True, index=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    basic_unit = db.relationship("Unit")

    def __repr__(self) -> str:
        return f"<Product id={self.id} sku={self.sku!r} title={self.title!r} stock={self.stock}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sku": self.sku,
            "title": self.title,
            "external_id": self.external_id,
            "stock": self.stock,
            "sales": self.sales,
            "basic_unit_id": self.basic_unit_id,
            "is_active": self.is_active,
            "location_stocks": [loc.to_dict() for loc in self.location_stocks],
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class ProductLocationStock(db.Model):
    """
    Flat per-location breakdown of a product's stock (base units).

    Informational only: the rows are expected to sum to Product.stock but
    the engine never reconciles them.
    """
    __tablename__ = "product_location_stocks"
    __table_args__ = (
        db.UniqueConstraint("product_id", "location_id", name="uq_location_stock_product_location"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    location_id = db.Column(db.Integer, nullable=False, index=True)
    name = db.Column(db.String(128), nullable=True)
    quantity = db.Column(db.Integer, nullable=False, default=0)

    product = db.relationship("Product", backref=db.backref("location_stocks", lazy=True))

    def to_dict(self) -> dict:
        return {
            "location_id": self.location_id,
            "name": self.name,
            "quantity": self.quantity,
        }


class ProductUnit(db.Model):
    """
    One sellable packaging variant of a product.

    pack_qty: base units consumed by one sale of this variant (e.g. 12 for a dozen).
    pending_sync_qty: signed accumulator of base-unit deltas awaiting push to
    the external inventory system (decremented on sale, incremented on restore).

    INVARIANT: at most one is_default=True row per product. Enforced by
    packaging_service.save_product_unit, which clears other defaults first.
    """
    __tablename__ = "product_units"
    __table_args__ = (
        db.Index("ix_product_units_product_active", "product_id", "is_active"),
        db.Index("ix_product_units_product_unit", "product_id", "unit_id"),
        db.Index("ix_product_units_pending_sync", "pending_sync_qty"),
        db.UniqueConstraint("barcode", name="uq_product_units_barcode"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    unit_id = db.Column(db.Integer, db.ForeignKey("units.id"), nullable=True, index=True)

    pack_qty = db.Column(db.Numeric(12, 3), nullable=False, default=Decimal("1"))
    price_cents = db.Column(db.Integer, nullable=False, default=0)
    cost_price_cents = db.Column(db.Integer, nullable=False, default=0)

    sku = db.Column(db.String(64), nullable=True)
    barcode = db.Column(db.String(64), nullable=True)
    title = db.Column(db.String(255), nullable=True)

    is_default = db.Column(db.Boolean, nullable=False, default=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    is_available = db.Column(db.Boolean, nullable=False, default=True)

    min_order_quantity = db.Column(db.Integer, nullable=False, default=1)
    max_order_quantity = db.Column(db.Integer, nullable=True)

    pending_sync_qty = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    product = db.relationship("Product", backref=db.backref("units", lazy=True))
    unit = db.relationship("Unit")

    @property
    def display_name(self) -> str:
        if self.title:
            return self.title
        if self.unit is not None:
            return self.unit.name
        return "N/A"

    @property
    def price_per_base_unit(self) -> Decimal:
        from stockcore.services.packaging_service import price_per_base_unit
        return price_per_base_unit(self)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "unit_id": self.unit_id,
            "display_name": self.display_name,
            "pack_qty": str(self.pack_qty) if self.pack_qty is not None else None,
            "price_cents": self.price_cents,
            "cost_price_cents": self.cost_price_cents,
            "sku": self.sku,
            "barcode": self.barcode,
            "is_default": self.is_default,
            "is_active": self.is_active,
            "is_available": self.is_available,
            "min_order_quantity": self.min_order_quantity,
            "max_order_quantity": self.max_order_quantity,
            "pending_sync_qty": self.pending_sync_qty,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class StockMovement(db.Model):
    """
    Append-only stock ledger entry.

    IMMUTABLE: once written, only the sync fields (SYNC_MUTABLE_FIELDS) may
    change, and only via stock_ledger_service.record_sync_attempt. Rows are
    never deleted. See stockcore.immutability.

    Product title/SKU/external id are denormalized at write time so the
    audit trail shows what the product was called when it moved.
    """
    __tablename__ = "stock_movements"
    __table_args__ = (
        db.CheckConstraint(
            "quantity_after = quantity_before + quantity_changed",
            name="ck_stock_movements_balance",
        ),
        db.Index("ix_stock_movements_product_date", "product_id", "movement_date"),
        db.Index("ix_stock_movements_type", "movement_type"),
        db.Index("ix_stock_movements_sync_status", "sync_status"),
        {"sqlite_autoincrement": True},
    )

    SYNC_MUTABLE_FIELDS = frozenset({
        "sync_status",
        "sync_attempts",
        "last_sync_attempt_at",
        "sync_response",
        "sync_error_message",
    })

    id = db.Column(db.Integer, primary_key=True)
    movement_uid = db.Column(db.String(40), nullable=False, unique=True)

    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    product_title = db.Column(db.String(255), nullable=True)
    product_sku = db.Column(db.String(64), nullable=True)
    external_id = db.Column(db.String(64), nullable=True)

    # sale, restore, purchase, adjustment, return, transfer, sync
    movement_type = db.Column(db.String(16), nullable=False)

    quantity_before = db.Column(db.Integer, nullable=False)
    quantity_changed = db.Column(db.Integer, nullable=False)
    quantity_after = db.Column(db.Integer, nullable=False)

    movement_date = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    invoice_number = db.Column(db.String(64), nullable=True, index=True)
    reference_document = db.Column(db.String(255), nullable=True)
    reason = db.Column(db.String(255), nullable=True)
    store_location = db.Column(db.String(128), nullable=True)

    acting_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    cost_per_unit_cents = db.Column(db.Integer, nullable=False, default=0)
    total_value_cents = db.Column(db.Integer, nullable=False, default=0)

    is_combo_constituent = db.Column(db.Boolean, nullable=False, default=False)
    combo_description = db.Column(db.String(255), nullable=True)

    # pending, synced, failed, retry
    sync_status = db.Column(db.String(16), nullable=False, default="pending")
    sync_attempts = db.Column(db.Integer, nullable=False, default=0)
    last_sync_attempt_at = db.Column(db.DateTime(timezone=True), nullable=True)
    sync_response = db.Column(db.JSON, nullable=True)
    sync_error_message = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    product = db.relationship("Product")
    acting_user = db.relationship("User")

    @property
    def is_incoming(self) -> bool:
        return self.quantity_changed > 0

    @property
    def is_outgoing(self) -> bool:
        return self.quantity_changed < 0

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "movement_uid": self.movement_uid,
            "product_id": self.product_id,
            "product_title": self.product_title,
            "product_sku": self.product_sku,
            "external_id": self.external_id,
            "movement_type": self.movement_type,
            "quantity_before": self.quantity_before,
            "quantity_changed": self.quantity_changed,
            "quantity_after": self.quantity_after,
            "movement_date": to_utc_z(self.movement_date),
            "invoice_number": self.invoice_number,
            "reference_document": self.reference_document,
            "reason": self.reason,
            "store_location": self.store_location,
            "acting_user_id": self.acting_user_id,
            "cost_per_unit_cents": self.cost_per_unit_cents,
            "total_value_cents": self.total_value_cents,
            "is_combo_constituent": self.is_combo_constituent,
            "combo_description": self.combo_description,
            "sync_status": self.sync_status,
            "sync_attempts": self.sync_attempts,
            "last_sync_attempt_at": to_utc_z(self.last_sync_attempt_at) if self.last_sync_attempt_at else None,
            "sync_error_message": self.sync_error_message,
            "created_at": to_utc_z(self.created_at),
        }
