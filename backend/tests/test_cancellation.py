"""
Tests for order fulfilment and cancellation compensation.
"""

from concurrent.futures import ThreadPoolExecutor

import pytest

from stockcore import create_app, shutdown_restore_executor
from stockcore.extensions import db
from stockcore.models import CustomerRewardAccount, Order, Product, StockMovement, User
from stockcore.services import loyalty_service
from stockcore.services.errors import CartError
from stockcore.services.order_service import cancel_order, fulfil_order
from stockcore.services.cart import ResolvedCartLine
from stockcore.services.stock_mutation_service import STATUS_APPLIED, apply_restore
from factories import make_order, make_product


class FakeLoyalty:
    """Records calls; restore answers with a canned result."""

    def __init__(self, restore_result=None, restore_error=None):
        self.calls = []
        self.restore_result = restore_result or {"success": True, "points_restored": 0}
        self.restore_error = restore_error

    def restore(self, customer_id, order_id, points_used):
        self.calls.append(("restore", customer_id, order_id, points_used))
        if self.restore_error is not None:
            raise self.restore_error
        return self.restore_result

    def remove_earned_points(self, customer_id, order_id):
        self.calls.append(("remove_earned_points", customer_id, order_id))
        return {"success": True, "points_removed": 0}

    def award(self, customer_id, order_id, order_total_cents):
        self.calls.append(("award", customer_id, order_id, order_total_cents))
        return {"success": True, "points_awarded": 0}


def _stock(session, product_id):
    session.expire_all()
    return session.get(Product, product_id).stock


@pytest.fixture
def paid_order(db_session, admin, customer, product_a):
    """Delivered order that used 50 loyalty points, already taken out of stock."""
    order = make_order(
        db_session,
        [{"product_id": product_a.id, "quantity": 4, "unit_price_cents": 500}],
        status="DELIVERED",
        customer_id=customer.id,
        admin_user_id=admin.id,
        total_cents=2000,
        loyalty_points_used=50,
    )
    fulfil_order(order, loyalty=FakeLoyalty())
    return order


class TestCancelOrder:
    def test_points_restore_called_with_exact_arguments(self, db_session, paid_order, customer):
        loyalty = FakeLoyalty(restore_result={"success": True, "points_restored": 50})

        result = cancel_order(paid_order, loyalty=loyalty)

        assert ("restore", customer.id, paid_order.id, 50) in loyalty.calls
        assert result["stock_restored"] is True
        assert result["points_restored"] is True
        assert result["points_restored_details"]["points_restored"] == 50
        assert result["error"] is None

    def test_loyalty_failure_does_not_undo_stock_restore(self, db_session, paid_order, product_a):
        assert _stock(db_session, product_a.id) == 96
        loyalty = FakeLoyalty(restore_result={"success": False, "points_restored": 0, "error": "ledger locked"})

        result = cancel_order(paid_order, loyalty=loyalty)

        assert result["stock_restored"] is True
        assert result["points_restored"] is False
        assert result["error"] == "ledger locked"
        assert _stock(db_session, product_a.id) == 100

    def test_loyalty_exception_is_captured(self, db_session, paid_order, product_a):
        loyalty = FakeLoyalty(restore_error=RuntimeError("loyalty service down"))

        result = cancel_order(paid_order, loyalty=loyalty)

        assert result["stock_restored"] is True
        assert result["points_restored"] is False
        assert "loyalty service down" in result["error"]
        assert _stock(db_session, product_a.id) == 100

    def test_restore_outcomes_are_reported(self, db_session, paid_order, product_a):
        result = cancel_order(paid_order, loyalty=FakeLoyalty())

        assert [o.status for o in result["restore_outcomes"]] == [STATUS_APPLIED]
        assert result["restore_futures"] is None
        restore = (
            db_session.query(StockMovement)
            .filter_by(product_id=product_a.id, movement_type="restore")
            .one()
        )
        assert restore.reference_document == f"Cancelled Order: {paid_order.id}"

    def test_no_points_used_skips_loyalty_restore(self, db_session, admin, product_a):
        order = make_order(db_session, [{"product_id": product_a.id, "quantity": 1}], status="DELIVERED")
        loyalty = FakeLoyalty()

        result = cancel_order(order, loyalty=loyalty)

        assert loyalty.calls == []
        assert result["points_restored"] is False
        assert result["points_restored_details"] is None

    def test_order_without_lines(self, db_session, admin):
        order = make_order(db_session, [], status="DELIVERED")

        result = cancel_order(order, loyalty=FakeLoyalty())

        assert result["stock_restored"] is False
        assert result["restore_outcomes"] is None

    def test_open_order_removes_earned_points(self, db_session, admin, customer, product_a):
        order = make_order(
            db_session,
            [{"product_id": product_a.id, "quantity": 1}],
            status="PROCESSING",
            customer_id=customer.id,
        )
        loyalty = FakeLoyalty()

        cancel_order(order, loyalty=loyalty)

        assert ("remove_earned_points", customer.id, order.id) in loyalty.calls

    def test_delivered_order_keeps_earned_points(self, db_session, paid_order):
        loyalty = FakeLoyalty()

        result = cancel_order(paid_order, loyalty=loyalty)

        assert result["earned_points_removed"] is None
        assert not any(call[0] == "remove_earned_points" for call in loyalty.calls)

    def test_status_is_left_to_caller(self, db_session, paid_order):
        cancel_order(paid_order, loyalty=FakeLoyalty())

        db_session.expire_all()
        assert db_session.get(Order, paid_order.id).status == "DELIVERED"

    def test_malformed_order_raises(self, db_session):
        with pytest.raises(CartError):
            cancel_order(None, loyalty=FakeLoyalty())
        with pytest.raises(CartError):
            cancel_order(Order(status="PENDING"), loyalty=FakeLoyalty())

    def test_with_real_loyalty_ledger(self, db_session, admin, customer, product_a):
        order = make_order(
            db_session,
            [{"product_id": product_a.id, "quantity": 2}],
            status="PENDING",
            customer_id=customer.id,
            total_cents=60000,
            loyalty_points_used=50,
        )
        fulfil_order(order)
        # 600 currency units -> 600 base + 50 bonus
        account = db_session.query(CustomerRewardAccount).filter_by(customer_id=customer.id).one()
        assert account.points_balance == 650

        result = cancel_order(order)

        assert result["points_restored"] is True
        assert result["earned_points_removed"]["points_removed"] == 650
        db_session.expire_all()
        account = db_session.query(CustomerRewardAccount).filter_by(customer_id=customer.id).one()
        assert account.points_balance == 50


    def test_pack_order_round_trip_restores_stock_and_sales(self, db_session, admin, product_a, six_pack):
        order = make_order(
            db_session,
            [{"product_id": product_a.id, "selected_unit_id": six_pack.id, "quantity": 2}],
            status="DELIVERED",
        )

        fulfil_order(order, loyalty=FakeLoyalty())
        db_session.expire_all()
        sold = db_session.get(Product, product_a.id)
        assert (sold.stock, sold.sales) == (88, 2)

        cancel_order(order, loyalty=FakeLoyalty())
        db_session.expire_all()
        restored = db_session.get(Product, product_a.id)
        assert (restored.stock, restored.sales) == (100, 0)


class TestFulfilOrder:
    def test_sells_and_awards(self, db_session, admin, customer, product_a):
        order = make_order(
            db_session,
            [{"product_id": product_a.id, "quantity": 3}],
            customer_id=customer.id,
            total_cents=1500,
        )
        loyalty = FakeLoyalty()

        result = fulfil_order(order, loyalty=loyalty)

        assert [o.status for o in result["sale_outcomes"]] == [STATUS_APPLIED]
        assert ("award", customer.id, order.id, 1500) in loyalty.calls
        assert _stock(db_session, product_a.id) == 97

    def test_award_failure_is_reported(self, db_session, admin, product_a):
        order = make_order(db_session, [{"product_id": product_a.id, "quantity": 1}], customer_id=424242)

        result = fulfil_order(order, loyalty=loyalty_service)

        assert "not found" in result["error"]
        assert _stock(db_session, product_a.id) == 99


def test_detached_restore_completes_in_worker_threads(tmp_path):
    """Fire-and-forget restore on a file database, awaited here through the futures."""
    app = create_app({
        "TESTING": True,
        "SQLALCHEMY_DATABASE_URI": f"sqlite:///{tmp_path / 'restore.sqlite3'}",
    })
    executor = ThreadPoolExecutor(max_workers=1)

    try:
        with app.app_context():
            db.create_all()
            admin = User(username="admin", email="admin@stockcore.local", role="Super Admin")
            db.session.add(admin)
            db.session.commit()

            first = make_product(db.session, "First", stock=10)
            second = make_product(db.session, "Second", stock=20)
            order = make_order(
                db.session,
                [
                    {"product_id": first.id, "quantity": 4},
                    {"product_id": second.id, "quantity": 6},
                ],
                status="DELIVERED",
                admin_user_id=admin.id,
            )

            result = cancel_order(order, loyalty=FakeLoyalty(), wait=False, executor=executor)

            assert result["stock_restored"] is True
            assert result["restore_outcomes"] is None
            outcomes = [future.result(timeout=30) for future in result["restore_futures"]]
            assert [o.status for o in outcomes] == [STATUS_APPLIED, STATUS_APPLIED]

            db.session.expire_all()
            assert db.session.get(Product, first.id).stock == 14
            assert db.session.get(Product, second.id).stock == 26
            assert db.session.query(StockMovement).filter_by(movement_type="restore").count() == 2

            db.session.remove()
            db.drop_all()
    finally:
        executor.shutdown(wait=True)
        shutdown_restore_executor(app)


def test_shutdown_restore_executor():
    app = create_app({
        "TESTING": True,
        "SQLALCHEMY_DATABASE_URI": "sqlite:///:memory:",
    })
    executor = app.extensions["stock_restore_executor"]

    shutdown_restore_executor(app)
    shutdown_restore_executor(app)

    assert "stock_restore_executor" not in app.extensions
    with pytest.raises(RuntimeError):
        executor.submit(print)
    with app.app_context():
        with pytest.raises(RuntimeError):
            apply_restore([ResolvedCartLine(product_id=1, quantity=1, order_quantity=1)], wait=False)
