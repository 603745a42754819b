from __future__ import annotations

from ..extensions import db
from stockcore.time_utils import to_utc_z


ORDER_STATUS_PENDING = "PENDING"
ORDER_STATUS_PROCESSING = "PROCESSING"
ORDER_STATUS_DELIVERED = "DELIVERED"
ORDER_STATUS_CANCELLED = "CANCELLED"

# Orders in these states hold a reservation against on-hand stock
OPEN_ORDER_STATUSES = (ORDER_STATUS_PENDING, ORDER_STATUS_PROCESSING)


class Order(db.Model):
    """
    Customer order document.

    Owned by the order-placement side of the catalog; this service only
    reads it (reservations, cancellation) and never changes its status.
    """
    __tablename__ = "orders"
    __table_args__ = (
        db.UniqueConstraint("invoice", name="uq_orders_invoice"),
        db.Index("ix_orders_status_created", "status", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    invoice = db.Column(db.String(64), nullable=True)

    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=True, index=True)

    # Back-office user who handled the order; attributed on stock movements
    admin_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    status = db.Column(db.String(16), nullable=False, default=ORDER_STATUS_PENDING, index=True)

    total_cents = db.Column(db.Integer, nullable=False, default=0)
    loyalty_points_used = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    customer = db.relationship("Customer", backref=db.backref("orders", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "invoice": self.invoice,
            "customer_id": self.customer_id,
            "admin_user_id": self.admin_user_id,
            "status": self.status,
            "total_cents": self.total_cents,
            "loyalty_points_used": self.loyalty_points_used,
            "lines": [line.to_dict() for line in self.lines],
            "created_at": to_utc_z(self.created_at),
        }


class OrderLine(db.Model):
    """
    One cart entry of an order.

    Regular lines reference a product (and optionally the packaging unit that
    was purchased); quantity counts packaging-variant units.

    Combo lines (is_combo=True) carry no product of their own. selected_products
    maps constituent product id -> units per combo, and quantity counts combos.
    """
    __tablename__ = "order_lines"
    __table_args__ = (
        db.Index("ix_order_lines_product", "product_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)

    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=True)
    selected_unit_id = db.Column(db.Integer, db.ForeignKey("product_units.id"), nullable=True)

    title = db.Column(db.String(255), nullable=True)
    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False, default=0)

    is_combo = db.Column(db.Boolean, nullable=False, default=False)
    selected_products = db.Column(db.JSON, nullable=True)

    order = db.relationship("Order", backref=db.backref("lines", lazy=True, order_by="OrderLine.id"))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "product_id": self.product_id,
            "selected_unit_id": self.selected_unit_id,
            "title": self.title,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "is_combo": self.is_combo,
            "selected_products": self.selected_products,
        }
