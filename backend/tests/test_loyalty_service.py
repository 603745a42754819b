"""
Tests for the loyalty contract: points math, award, restore, removal.
"""

import pytest

from stockcore.models import Customer, CustomerRewardTransaction
from stockcore.services import loyalty_service
from stockcore.services.errors import MissingEntityError
from factories import make_order


@pytest.mark.parametrize("total_cents, base, bonus", [
    (0, 0, 0),
    (4999, 49, 0),
    (50000, 500, 50),
    (99999, 999, 50),
    (100000, 1000, 150),
    (250000, 2500, 400),
])
def test_calculate_points_earned(app, total_cents, base, bonus):
    with app.app_context():
        result = loyalty_service.calculate_points_earned(total_cents)
    assert result == {"base_points": base, "bonus_points": bonus, "total_points": base + bonus}


def test_award_creates_account_and_transactions(db_session, customer):
    order = make_order(db_session, [], customer_id=customer.id)

    result = loyalty_service.award(customer.id, order.id, 120000)

    assert result["success"] is True
    assert result["points_awarded"] == 1350
    account = customer.reward_account
    assert account.points_balance == 1350
    assert account.lifetime_points_earned == 1350

    txns = (
        db_session.query(CustomerRewardTransaction)
        .filter_by(reward_account_id=account.id)
        .order_by(CustomerRewardTransaction.id.asc())
        .all()
    )
    assert [(t.transaction_type, t.points, t.balance_after) for t in txns] == [
        ("EARNED", 1200, 1200),
        ("BONUS", 150, 1350),
    ]
    assert all(t.expires_at is not None for t in txns)

    db_session.expire_all()
    refreshed = db_session.get(Customer, customer.id)
    assert refreshed.total_spent_cents == 120000
    assert refreshed.total_orders == 1


def test_award_unknown_customer(db_session):
    with pytest.raises(MissingEntityError):
        loyalty_service.award(424242, 1, 1000)


def test_restore_returns_points(db_session, customer):
    order = make_order(db_session, [], customer_id=customer.id)

    result = loyalty_service.restore(customer.id, order.id, 50)

    assert result["success"] is True
    assert result["points_restored"] == 50
    assert result["new_balance"] == 50
    txn = db_session.get(CustomerRewardTransaction, result["transaction_id"])
    assert txn.transaction_type == "REFUND"
    assert txn.order_id == order.id


def test_restore_never_raises(db_session):
    result = loyalty_service.restore(424242, 1, 50)

    assert result["success"] is False
    assert result["points_restored"] == 0
    assert "not found" in result["error"]


def test_restore_nothing(db_session, customer):
    result = loyalty_service.restore(customer.id, 1, 0)
    assert result == {"success": True, "points_restored": 0, "message": "No points to restore"}


def test_remove_earned_points_once(db_session, customer):
    order = make_order(db_session, [], customer_id=customer.id)
    loyalty_service.award(customer.id, order.id, 60000)

    first = loyalty_service.remove_earned_points(customer.id, order.id)
    second = loyalty_service.remove_earned_points(customer.id, order.id)

    assert first["points_removed"] == 650
    assert first["new_balance"] == 0
    assert second["points_removed"] == 0

    statuses = {
        t.transaction_type: t.status
        for t in db_session.query(CustomerRewardTransaction).filter(
            CustomerRewardTransaction.transaction_type.in_(("EARNED", "BONUS"))
        )
    }
    assert statuses == {"EARNED": "USED", "BONUS": "USED"}


def test_remove_earned_points_without_account(db_session, customer):
    result = loyalty_service.remove_earned_points(customer.id, 1)
    assert result["points_removed"] == 0
