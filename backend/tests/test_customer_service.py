# Overview: Pytest coverage for the customer registry and product catalog services.

from datetime import datetime

import pytest

from gasledger.extensions import db
from gasledger.models import Customer, Product
from gasledger.services import customer_service, products_service, ledger_service
from gasledger.validation import ValidationError, ConflictError, enforce_rules_customer


class TestSerialNumbers:
    def test_serials_never_repeat(self, db_session):
        created = [customer_service.create_customer(patch={"name": f"Customer {i}"}) for i in range(5)]
        customer_service.delete_customer(customer_id=created[4].id)
        customer_service.delete_customer(customer_id=created[1].id)
        created += [customer_service.create_customer(patch={"name": f"Late {i}"}) for i in range(3)]

        serials = [c.serial_number for c in db_session.query(Customer).all()]
        assert len(serials) == len(set(serials)) == 6
        assert None not in serials

    def test_new_serial_is_max_plus_one(self, db_session):
        first = customer_service.create_customer(patch={"name": "First"})
        first.serial_number = 40
        db_session.commit()

        assert customer_service.create_customer(patch={"name": "Second"}).serial_number == 41

    def test_assign_missing_serial_numbers(self, db_session, customer):
        db_session.add_all([Customer(name="Legacy A"), Customer(name="Legacy B")])
        db_session.commit()

        assert customer_service.assign_missing_serial_numbers() == 2
        serials = sorted(c.serial_number for c in db_session.query(Customer).all())
        assert serials == [1, 2, 3]
        assert customer_service.assign_missing_serial_numbers() == 0


class TestCustomerRegistry:
    def test_create_starts_at_zero(self, db_session, customer):
        assert customer.balance_cents == 0
        assert customer.total_purchases_cents == 0
        assert customer.to_dict()["cylinder_balance"] == {}

    def test_name_required(self, db_session):
        with pytest.raises(ValidationError):
            customer_service.create_customer(patch={"name": "  "})

    def test_phone_must_have_ten_digits(self):
        enforce_rules_customer({"phone": "0912345678"})
        with pytest.raises(ValidationError):
            enforce_rules_customer({"phone": "12345"})
        with pytest.raises(ValidationError):
            enforce_rules_customer({"phone": "09123456ab"})

    def test_update_ignores_ledger_fields(self, db_session, customer):
        customer_service.update_customer(
            customer_id=customer.id,
            patch={"city": "Port Sudan", "balance_cents": 10, "serial_number": 99},
        )

        db_session.refresh(customer)
        assert customer.city == "Port Sudan"
        assert customer.balance_cents == 0
        assert customer.serial_number == 1

    def test_delete_with_history_is_refused(self, db_session, customer):
        ledger_service.record_manual_debt(customer.id, 100)

        with pytest.raises(ConflictError):
            customer_service.delete_customer(customer_id=customer.id)
        assert db_session.get(Customer, customer.id) is not None

    def test_delete_without_history(self, db_session, customer):
        assert customer_service.delete_customer(customer_id=customer.id) is True
        assert customer_service.delete_customer(customer_id=customer.id) is False

    def test_search_and_debtors_first(self, db_session, customer, other_customer):
        ledger_service.record_manual_debt(other_customer.id, 700)

        names = [c.name for c in customer_service.list_customers()]
        assert names == ["Omdurman Clinic", "Al Noor Hospital"]

        assert [c.id for c in customer_service.list_customers(search="khartoum")] == [customer.id]
        assert [c.id for c in customer_service.list_customers(search="091234")] == [customer.id]
        assert [c.id for c in customer_service.list_customers(debtors_only=True)] == [other_customer.id]

    def test_debt_summary(self, db_session, customer, other_customer):
        ledger_service.record_manual_debt(customer.id, 300)
        ledger_service.record_manual_debt(other_customer.id, 200)
        ledger_service.record_repayment(customer_id=other_customer.id, amount_cents=500)

        assert customer_service.debt_summary() == {"total_debt_cents": 300, "debtors_count": 1}

    def test_dashboard_summary(self, db_session, customer, other_customer):
        now = datetime(2024, 6, 15, 12, 0)
        in_credit = customer_service.create_customer(patch={"name": "Blue Nile Restaurant"})
        long_silent = customer_service.create_customer(patch={"name": "Kassala Bakery"})

        ledger_service.record_manual_debt(customer.id, 1000, occurred_at="2024-06-15T08:00:00Z")
        ledger_service.record_repayment(customer_id=customer.id, amount_cents=200, occurred_at="2024-05-01")
        ledger_service.record_manual_debt(other_customer.id, 300, occurred_at="2024-06-14T23:59:00Z")
        ledger_service.record_repayment(
            customer_id=other_customer.id, amount_cents=100, occurred_at="2024-05-16T12:00:00Z",
        )
        ledger_service.record_repayment(customer_id=in_credit.id, amount_cents=500, occurred_at="2024-06-14")
        ledger_service.record_manual_debt(long_silent.id, 5000, occurred_at="2024-01-01")

        summary = customer_service.dashboard_summary(now=now)

        assert summary["revenue_today_cents"] == 1000
        assert summary["total_receivables_cents"] == 800 + 200 + 5000
        assert summary["total_payables_cents"] == 500
        assert [d["customer_id"] for d in summary["stagnant_debtors"]] == [long_silent.id, customer.id]
        assert summary["stagnant_debtors"][0]["last_repayment_at"] is None
        assert summary["stagnant_debtors"][1]["last_repayment_at"] == "2024-05-01T00:00:00Z"


class TestStatement:
    def test_running_balance(self, db_session, customer, product_12kg):
        ledger_service.record_invoice(
            customer_id=customer.id,
            items=[{"product_id": product_12kg.id, "quantity": 1}],
            total_amount_cents=1000,
            occurred_at="2024-01-01T09:00:00Z",
        )
        ledger_service.record_repayment(customer_id=customer.id, amount_cents=400, occurred_at="2024-01-05")
        ledger_service.record_cylinder_transaction(
            customer_id=customer.id, product_id=product_12kg.id, quantity=1, direction="out",
        )

        statement = customer_service.get_customer_statement(customer.id)

        assert [(e["entry_type"], e["running_balance_cents"]) for e in statement["entries"]] == [
            ("invoice", 1000),
            ("repayment", 600),
        ]
        assert statement["entries"][0]["occurred_at"] == "2024-01-01T09:00:00Z"
        assert statement["ledger_balance_cents"] == 600
        assert statement["customer"]["balance_cents"] == 600
        assert len(statement["cylinder_transactions"]) == 1
        assert statement["cylinder_holdings"][0]["quantity"] == 1

    def test_unknown_customer(self, db_session):
        assert customer_service.get_customer_statement(404) is None


class TestProducts:
    def test_deactivate_hides_from_active_list(self, db_session, product_12kg, product_50kg):
        assert products_service.deactivate_product(product_id=product_50kg.id) is True

        assert [p.name for p in products_service.list_products(active_only=True)] == ["12kg"]
        assert len(products_service.list_products()) == 2
        assert db_session.get(Product, product_50kg.id).is_active is False

    def test_deactivate_unknown(self, db_session):
        assert products_service.deactivate_product(product_id=404) is False

    def test_find_by_name(self, db_session, product_12kg):
        assert products_service.find_product_by_name(" 12kg ").id == product_12kg.id
        assert products_service.find_product_by_name("9kg") is None

    def test_name_required(self, db_session):
        with pytest.raises(ValidationError):
            products_service.create_product(patch={"size": "5kg"})
