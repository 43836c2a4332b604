# Overview: Pytest coverage for the cylinder return guard, including concurrent returns.

"""
Consistency Guard Tests

A customer's holding of a product is an integer >= 0:
- out(q) always succeeds, holding += q
- in(q) succeeds only when 0 < q <= holding, otherwise nothing changes
"""

import threading

import pytest

from gasledger import create_app
from gasledger.extensions import db
from gasledger.models import CylinderTransaction
from gasledger.services import ledger_service, customer_service, products_service
from gasledger.services import concurrency
from gasledger.services.guard_service import (
    CylinderReturnError,
    check_cylinder_return,
    get_cylinder_holding,
    get_cylinder_holdings,
    outstanding_cylinder_totals,
)


def _move(customer, product, quantity, direction):
    return ledger_service.record_cylinder_transaction(
        customer_id=customer.id, product_id=product.id, quantity=quantity, direction=direction,
    )


class TestReturnGuard:
    def test_guard_sequence(self, db_session, customer, product_12kg):
        _move(customer, product_12kg, 3, "out")

        with pytest.raises(CylinderReturnError) as exc:
            _move(customer, product_12kg, 4, "in")
        assert exc.value.details == {
            "customer_id": customer.id,
            "product_id": product_12kg.id,
            "requested_quantity": 4,
            "holding": 3,
        }
        assert get_cylinder_holding(customer.id, product_12kg.id) == 3

        _move(customer, product_12kg, 3, "in")
        assert get_cylinder_holding(customer.id, product_12kg.id) == 0

        with pytest.raises(CylinderReturnError) as exc:
            _move(customer, product_12kg, 1, "in")
        assert exc.value.details["holding"] == 0

        assert get_cylinder_holding(customer.id, product_12kg.id) == 0
        assert db_session.query(CylinderTransaction).count() == 2

    def test_return_with_nothing_out(self, db_session, customer, product_12kg):
        with pytest.raises(CylinderReturnError, match="nothing to return"):
            _move(customer, product_12kg, 1, "in")

    def test_holdings_do_not_mix_products(self, db_session, customer, product_12kg, product_50kg):
        _move(customer, product_50kg, 5, "out")

        with pytest.raises(CylinderReturnError):
            _move(customer, product_12kg, 1, "in")

    def test_check_returns_current_holding(self, db_session, customer, product_12kg):
        _move(customer, product_12kg, 6, "out")
        assert check_cylinder_return(customer.id, product_12kg.id, 6) == 6

    def test_deleting_delivery_already_returned_is_refused(self, db_session, customer, product_12kg):
        delivery = _move(customer, product_12kg, 3, "out")
        _move(customer, product_12kg, 2, "in")

        with pytest.raises(CylinderReturnError):
            ledger_service.delete_cylinder_transaction(delivery.id, customer.id)

        assert get_cylinder_holding(customer.id, product_12kg.id) == 1
        assert db_session.get(CylinderTransaction, delivery.id) is not None

    def test_deleting_return_restores_holding(self, db_session, customer, product_12kg):
        _move(customer, product_12kg, 3, "out")
        ret = _move(customer, product_12kg, 3, "in")

        ledger_service.delete_cylinder_transaction(ret.id, customer.id)
        assert get_cylinder_holding(customer.id, product_12kg.id) == 3


class TestCylinderReporting:
    def test_holdings_resolve_current_names(self, db_session, customer, product_12kg):
        _move(customer, product_12kg, 2, "out")
        products_service.update_product(product_id=product_12kg.id, patch={"name": "12kg Butane"})

        assert get_cylinder_holdings(customer.id) == [
            {"product_id": product_12kg.id, "product_name": "12kg Butane", "quantity": 2},
        ]

    def test_outstanding_totals(self, db_session, customer, other_customer, product_12kg, product_50kg):
        _move(customer, product_12kg, 2, "out")
        _move(other_customer, product_12kg, 3, "out")
        _move(other_customer, product_50kg, 1, "out")
        _move(other_customer, product_50kg, 1, "in")

        totals = outstanding_cylinder_totals()

        assert totals["total_out"] == 5
        assert totals["customers_with_loans"] == 2
        assert totals["products"] == [
            {"product_id": product_12kg.id, "product_name": "12kg", "quantity": 5, "customers": 2},
        ]


class TestConcurrentReturns:
    """Two terminals returning the same cylinders must not jointly overdraw."""

    def test_customer_lock_is_shared_and_reentrant(self):
        assert concurrency._lock_for(7) is concurrency._lock_for(7)
        assert concurrency._lock_for(7) is not concurrency._lock_for(8)

        with concurrency.customer_lock(7):
            with concurrency.customer_lock(7):
                held = len(concurrency._customer_locks)
        assert len(concurrency._customer_locks) == held

    def test_concurrent_returns_cannot_overdraw(self, tmp_path):
        app = create_app({
            'TESTING': True,
            'SQLALCHEMY_DATABASE_URI': f"sqlite:///{tmp_path / 'ledger.sqlite3'}",
            'RECONCILE_ON_STARTUP': False,
            'SYNC_AUTO_PUSH': False,
            'SYNC_REMOTE_URL': None,
        })

        with app.app_context():
            db.create_all()
            customer = customer_service.create_customer(patch={"name": "Concurrent Customer"})
            product = products_service.create_product(patch={"name": "25kg"})
            customer_id, product_id = customer.id, product.id
            ledger_service.record_cylinder_transaction(
                customer_id=customer_id, product_id=product_id, quantity=3, direction="out",
            )

        workers = 4
        barrier = threading.Barrier(workers)
        outcomes = []
        outcomes_lock = threading.Lock()

        def _return_two():
            with app.app_context():
                barrier.wait()
                try:
                    ledger_service.record_cylinder_transaction(
                        customer_id=customer_id, product_id=product_id, quantity=2, direction="in",
                    )
                    result = "ok"
                except CylinderReturnError:
                    result = "refused"
                finally:
                    db.session.remove()
                with outcomes_lock:
                    outcomes.append(result)

        threads = [threading.Thread(target=_return_two) for _ in range(workers)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=30)

        assert sorted(outcomes) == ["ok", "refused", "refused", "refused"]

        with app.app_context():
            assert get_cylinder_holding(customer_id, product_id) == 1
            returns = db.session.query(CylinderTransaction).filter_by(direction="in").count()
            assert returns == 1
            db.session.remove()
            db.drop_all()
