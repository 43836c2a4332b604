# Overview: Pytest coverage for the reconciliation pass over money and cylinder balances.

from gasledger.extensions import db
from gasledger.models import Customer, CustomerCylinderBalance
from gasledger.services import ledger_service, reconciliation_service
from gasledger.services.guard_service import get_cylinder_holding


def _history(customer, product):
    ledger_service.record_invoice(
        customer_id=customer.id,
        items=[{"product_id": product.id, "quantity": 2}],
        total_amount_cents=10000,
        cash_cents=2500,
    )
    ledger_service.record_manual_debt(customer.id, 1200, "carried over")
    ledger_service.record_repayment(customer_id=customer.id, amount_cents=4000)
    ledger_service.record_cylinder_transaction(
        customer_id=customer.id, product_id=product.id, quantity=4, direction="out",
    )
    ledger_service.record_cylinder_transaction(
        customer_id=customer.id, product_id=product.id, quantity=1, direction="in",
    )


def _corrupt_balance(customer_id, value):
    db.session.query(Customer).filter_by(id=customer_id).update({"balance_cents": value})
    db.session.commit()


class TestMonetaryReconciliation:
    def test_correct_balances_are_left_alone(self, db_session, customer, product_12kg):
        _history(customer, product_12kg)
        assert reconciliation_service.recalculate_all_balances() == []

    def test_drift_is_corrected(self, db_session, customer, other_customer, product_12kg):
        _history(customer, product_12kg)
        _corrupt_balance(customer.id, 999999)
        _corrupt_balance(other_customer.id, -5)

        corrections = reconciliation_service.recalculate_all_balances()

        assert {c["customer_id"]: (c["old"], c["new"]) for c in corrections} == {
            customer.id: (999999, 4700),
            other_customer.id: (-5, 0),
        }
        db_session.refresh(customer)
        db_session.refresh(other_customer)
        assert customer.balance_cents == reconciliation_service.ledger_balance(customer.id) == 4700
        assert other_customer.balance_cents == 0

    def test_second_pass_finds_nothing(self, db_session, customer, product_12kg):
        _history(customer, product_12kg)
        _corrupt_balance(customer.id, 1)

        first = reconciliation_service.recalculate_all_balances()
        db_session.refresh(customer)
        after_first = customer.balance_cents

        assert len(first) == 1
        assert reconciliation_service.recalculate_all_balances() == []
        db_session.refresh(customer)
        assert customer.balance_cents == after_first

    def test_dry_run_reports_without_writing(self, db_session, customer, product_12kg):
        _history(customer, product_12kg)
        _corrupt_balance(customer.id, 42)

        corrections = reconciliation_service.recalculate_all_balances(dry_run=True)

        assert corrections[0]["new"] == 4700
        db_session.expire_all()
        assert db_session.get(Customer, customer.id).balance_cents == 42

    def test_corrections_are_logged(self, db_session, customer, caplog):
        _corrupt_balance(customer.id, 300)

        with caplog.at_level("INFO"):
            reconciliation_service.recalculate_all_balances()

        assert "Correcting balance for customer" in caplog.text


class TestCylinderReconciliation:
    def test_cylinder_drift_is_corrected(self, db_session, customer, product_12kg, product_50kg):
        _history(customer, product_12kg)
        row = db_session.query(CustomerCylinderBalance).filter_by(
            customer_id=customer.id, product_id=product_12kg.id,
        ).one()
        row.quantity = 10
        db_session.add(CustomerCylinderBalance(customer_id=customer.id, product_id=product_50kg.id, quantity=2))
        db_session.commit()

        corrections = reconciliation_service.recalculate_all_cylinder_balances()

        assert {(c["product_id"], c["old"], c["new"]) for c in corrections} == {
            (product_12kg.id, 10, 3),
            (product_50kg.id, 2, 0),
        }
        assert get_cylinder_holding(customer.id, product_12kg.id) == 3
        assert get_cylinder_holding(customer.id, product_50kg.id) == 0
        assert reconciliation_service.recalculate_all_cylinder_balances() == []

    def test_missing_balance_row_is_rebuilt(self, db_session, customer, product_12kg):
        _history(customer, product_12kg)
        db_session.query(CustomerCylinderBalance).delete()
        db_session.commit()

        result = reconciliation_service.reconcile_all()

        assert result["corrected"] == 1
        assert get_cylinder_holding(customer.id, product_12kg.id) == 3
