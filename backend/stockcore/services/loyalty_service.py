# Overview: Loyalty points award/restore contract over the customer reward ledger.

from __future__ import annotations

from datetime import timedelta

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..models import Customer, CustomerRewardAccount, CustomerRewardTransaction
from stockcore.time_utils import utcnow
from .errors import MissingEntityError, StockError
"""
Loyalty Ledger Semantics (authoritative)

- Points are integers. 1 point per whole currency unit spent (configurable),
  plus the bonus of the highest threshold the order total reaches.
- Every balance change appends one CustomerRewardTransaction carrying
  balance_after; only `status` changes on existing rows.
- EARNED/BONUS rows expire LOYALTY_POINTS_EXPIRY_DAYS after award.
- Cancelling an order:
    restore(): gives back points the customer spent on it (REFUND, positive)
    remove_earned_points(): takes back points the order earned (REFUND,
    negative) and marks the earning rows USED
"""


TXN_EARNED = "EARNED"
TXN_BONUS = "BONUS"
TXN_REDEEMED = "REDEEMED"
TXN_EXPIRED = "EXPIRED"
TXN_REFUND = "REFUND"

STATUS_ACTIVE = "ACTIVE"
STATUS_USED = "USED"
STATUS_EXPIRED = "EXPIRED"


def calculate_points_earned(order_total_cents: int) -> dict:
    per_unit = current_app.config["LOYALTY_POINTS_PER_CURRENCY_UNIT"]
    base_points = max(0, (order_total_cents * per_unit) // 100)

    bonus_points = 0
    for amount, bonus in current_app.config["LOYALTY_BONUS_THRESHOLDS"]:
        if order_total_cents >= amount * 100:
            bonus_points = bonus

    return {
        "base_points": base_points,
        "bonus_points": bonus_points,
        "total_points": base_points + bonus_points,
    }


def get_or_create_account(customer_id: int) -> CustomerRewardAccount:
    customer = db.session.get(Customer, customer_id)
    if customer is None:
        raise MissingEntityError(f"Customer {customer_id} not found", details={"customer_id": customer_id})

    account = (
        db.session.query(CustomerRewardAccount)
        .filter_by(customer_id=customer_id)
        .first()
    )
    if account is None:
        account = CustomerRewardAccount(
            customer_id=customer_id,
            points_balance=0,
            lifetime_points_earned=0,
            lifetime_points_redeemed=0,
        )
        db.session.add(account)
        db.session.flush()
    return account


def _append(account, transaction_type, points, *, order_id=None, reason=None, expires_at=None):
    account.points_balance += points
    txn = CustomerRewardTransaction(
        reward_account_id=account.id,
        transaction_type=transaction_type,
        points=points,
        balance_after=account.points_balance,
        order_id=order_id,
        reason=reason,
        status=STATUS_ACTIVE,
        expires_at=expires_at,
        occurred_at=utcnow(),
    )
    db.session.add(txn)
    return txn


def award(customer_id: int, order_id: int, order_total_cents: int) -> dict:
    """
    Award points for a fulfilled order and roll the purchase into the
    customer's aggregates.

    Raises MissingEntityError for an unknown customer.
    """
    account = get_or_create_account(customer_id)
    breakdown = calculate_points_earned(order_total_cents)
    expires_at = utcnow() + timedelta(days=current_app.config["LOYALTY_POINTS_EXPIRY_DAYS"])

    if breakdown["base_points"] > 0:
        _append(
            account, TXN_EARNED, breakdown["base_points"],
            order_id=order_id,
            reason=f"Earned {breakdown['base_points']} points from order #{order_id}",
            expires_at=expires_at,
        )
    if breakdown["bonus_points"] > 0:
        _append(
            account, TXN_BONUS, breakdown["bonus_points"],
            order_id=order_id,
            reason=f"Bonus {breakdown['bonus_points']} points for order #{order_id}",
            expires_at=expires_at,
        )
    account.lifetime_points_earned += breakdown["total_points"]

    customer = account.customer
    customer.total_spent_cents += order_total_cents
    customer.total_orders += 1
    customer.last_order_at = utcnow()

    db.session.commit()
    current_app.logger.info(
        "Awarded %s loyalty points to customer %s (order %s)",
        breakdown["total_points"], customer_id, order_id,
    )
    return {
        "success": True,
        "points_awarded": breakdown["total_points"],
        "breakdown": breakdown,
    }


def restore(customer_id: int, order_id: int, points_used: int) -> dict:
    """
    Give back points spent on a cancelled order.

    Never raises: failures come back as {"success": False, "error": ...}.
    """
    if not points_used or points_used <= 0:
        return {"success": True, "points_restored": 0, "message": "No points to restore"}

    try:
        account = get_or_create_account(customer_id)
        txn = _append(
            account, TXN_REFUND, points_used,
            order_id=order_id,
            reason=f"Refunded {points_used} points from cancelled order #{order_id}",
        )
        account.lifetime_points_redeemed = max(0, account.lifetime_points_redeemed - points_used)
        db.session.commit()
    except (StockError, SQLAlchemyError) as exc:
        db.session.rollback()
        current_app.logger.error(
            "Failed to restore %s loyalty points to customer %s (order %s): %s",
            points_used, customer_id, order_id, exc,
        )
        return {"success": False, "points_restored": 0, "error": str(exc)}

    current_app.logger.info(
        "Restored %s loyalty points to customer %s (order %s)", points_used, customer_id, order_id
    )
    return {
        "success": True,
        "points_restored": points_used,
        "new_balance": account.points_balance,
        "transaction_id": txn.id,
    }


def remove_earned_points(customer_id: int, order_id: int) -> dict:
    if db.session.get(Customer, customer_id) is None:
        raise MissingEntityError(f"Customer {customer_id} not found", details={"customer_id": customer_id})

    account = (
        db.session.query(CustomerRewardAccount)
        .filter_by(customer_id=customer_id)
        .first()
    )
    if account is None:
        return {"success": True, "points_removed": 0, "new_balance": 0}

    earned = (
        db.session.query(CustomerRewardTransaction)
        .filter(
            CustomerRewardTransaction.reward_account_id == account.id,
            CustomerRewardTransaction.order_id == order_id,
            CustomerRewardTransaction.transaction_type.in_((TXN_EARNED, TXN_BONUS)),
            CustomerRewardTransaction.status == STATUS_ACTIVE,
        )
        .order_by(CustomerRewardTransaction.id.asc())
        .all()
    )
    if not earned:
        return {"success": True, "points_removed": 0, "new_balance": account.points_balance}

    removed = 0
    for txn in earned:
        txn.status = STATUS_USED
        _append(
            account, TXN_REFUND, -txn.points,
            order_id=order_id,
            reason=f"Removed {txn.points} points from cancelled order #{order_id}",
        )
        removed += txn.points
    account.lifetime_points_earned = max(0, account.lifetime_points_earned - removed)

    db.session.commit()
    current_app.logger.info(
        "Removed %s earned loyalty points from customer %s (order %s)", removed, customer_id, order_id
    )
    return {"success": True, "points_removed": removed, "new_balance": account.points_balance}
