from __future__ import annotations

from ..extensions import db
from stockcore.time_utils import to_utc_z


class Customer(db.Model):
    """
    Customer master data for orders and loyalty.

    Denormalized purchase aggregates are updated when loyalty points are
    awarded for a fulfilled order.
    """
    __tablename__ = "customers"
    __table_args__ = (
        db.UniqueConstraint("email", name="uq_customers_email"),
        db.Index("ix_customers_active", "is_active"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    name = db.Column(db.String(255), nullable=False)
    email = db.Column(db.String(255), nullable=True)
    phone = db.Column(db.String(32), nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    total_spent_cents = db.Column(db.Integer, nullable=False, default=0)
    total_orders = db.Column(db.Integer, nullable=False, default=0)
    last_order_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "phone": self.phone,
            "is_active": self.is_active,
            "total_spent_cents": self.total_spent_cents,
            "total_orders": self.total_orders,
            "last_order_at": to_utc_z(self.last_order_at) if self.last_order_at else None,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class CustomerRewardAccount(db.Model):
    """
    Loyalty/rewards account for a customer.

    WHY: Tracks points balance and lifetime earning/redemption.
    One account per customer; created lazily on first award.
    """
    __tablename__ = "customer_reward_accounts"
    __table_args__ = (
        db.UniqueConstraint("customer_id", name="uq_reward_accounts_customer"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=False, index=True)

    points_balance = db.Column(db.Integer, nullable=False, default=0)
    lifetime_points_earned = db.Column(db.Integer, nullable=False, default=0)
    lifetime_points_redeemed = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    customer = db.relationship("Customer", backref=db.backref("reward_account", uselist=False, lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "customer_id": self.customer_id,
            "points_balance": self.points_balance,
            "lifetime_points_earned": self.lifetime_points_earned,
            "lifetime_points_redeemed": self.lifetime_points_redeemed,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class CustomerRewardTransaction(db.Model):
    """
    Append-only ledger of reward point events.

    TRANSACTION TYPES:
    - EARNED: Base points earned from an order
    - BONUS: Threshold bonus points for a large order
    - REDEEMED: Points spent as an order discount
    - EXPIRED: Points expired per policy
    - REFUND: Points given back (cancelled order) or taken back (earned
      points of a cancelled order, negative)

    Only `status` changes after creation (ACTIVE -> USED / EXPIRED).
    """
    __tablename__ = "customer_reward_transactions"
    __table_args__ = (
        db.Index("ix_reward_txns_account_occurred", "reward_account_id", "occurred_at"),
        db.Index("ix_reward_txns_order_type", "order_id", "transaction_type"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    reward_account_id = db.Column(db.Integer, db.ForeignKey("customer_reward_accounts.id"), nullable=False, index=True)

    transaction_type = db.Column(db.String(16), nullable=False, index=True)
    points = db.Column(db.Integer, nullable=False)  # Positive for earn/refund, negative for redeem/expire
    balance_after = db.Column(db.Integer, nullable=False)

    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=True, index=True)
    reason = db.Column(db.String(255), nullable=True)

    status = db.Column(db.String(16), nullable=False, default="ACTIVE")
    expires_at = db.Column(db.DateTime(timezone=True), nullable=True)

    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    reward_account = db.relationship("CustomerRewardAccount", backref=db.backref("transactions", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "reward_account_id": self.reward_account_id,
            "transaction_type": self.transaction_type,
            "points": self.points,
            "balance_after": self.balance_after,
            "order_id": self.order_id,
            "reason": self.reason,
            "status": self.status,
            "expires_at": to_utc_z(self.expires_at) if self.expires_at else None,
            "occurred_at": to_utc_z(self.occurred_at),
        }
