# Overview: Pytest coverage for snapshot export/import and factory reset.

import pytest

from gasledger.extensions import db
from gasledger.models import Customer, Product, Invoice, Repayment, CylinderTransaction, AppSetting, SyncOutboxEntry
from gasledger.services import ledger_service, settings_service, snapshot_service
from gasledger.services.guard_service import get_cylinder_holding
from gasledger.validation import ValidationError


def _populate(customer, product):
    ledger_service.record_invoice(
        customer_id=customer.id,
        items=[{"product_id": product.id, "quantity": 3}],
        total_amount_cents=4500,
        cash_cents=1500,
        cheque_cents=1000,
        cheque_number="991",
        occurred_at="2024-04-01T10:00:00Z",
    )
    ledger_service.record_repayment(customer_id=customer.id, amount_cents=700, note="partial", occurred_at="2024-04-03")
    ledger_service.record_cylinder_transaction(
        customer_id=customer.id, product_id=product.id, quantity=3, direction="out", occurred_at="2024-04-01",
    )


class TestExportImport:
    def test_export_shape(self, db_session, customer, product_12kg):
        _populate(customer, product_12kg)

        data = snapshot_service.export_snapshot()

        assert set(data) >= {
            "customers", "products", "invoices", "repayments",
            "cylinder_transactions", "customer_types", "settings", "exported_at",
        }
        assert data["customers"][0]["balance_cents"] == 1300
        assert data["customers"][0]["cylinder_balance"] == {str(product_12kg.id): 3}
        assert data["invoices"][0]["payment_details"]["debt_cents"] == 2000
        assert data["cylinder_transactions"][0]["type"] == "out"
        assert "admin_password_hash" not in data["settings"]
        assert data["exported_at"].endswith("Z")

    def test_import_restores_exported_state(self, db_session, customer, product_12kg):
        _populate(customer, product_12kg)
        exported = snapshot_service.export_snapshot()
        customer_id, product_id = customer.id, product_12kg.id

        ledger_service.record_manual_debt(customer_id, 5000)
        summary = snapshot_service.import_snapshot(exported)

        assert summary["invoices"] == 1
        assert summary["reconciliation"]["corrected"] == 0
        restored = db_session.get(Customer, customer_id)
        assert restored.balance_cents == 1300
        assert restored.serial_number == exported["customers"][0]["serial_number"]
        assert get_cylinder_holding(customer_id, product_id) == 3
        invoice = db_session.query(Invoice).one()
        assert invoice.cheque_number == "991"
        assert [(l.product_id, l.quantity) for l in invoice.lines] == [(product_id, 3)]
        assert db_session.query(Repayment).one().note == "partial"

    def test_import_backfills_legacy_records(self, db_session):
        legacy = {
            "customers": [
                {"id": 1, "name": "Old Customer", "balance_cents": 12345},
                {"id": 2, "name": "Older Customer", "serial_number": 5},
            ],
            "products": [{"id": 1, "name": "12kg"}],
            "invoices": [],
            "repayments": [{"id": 1, "customer_id": 2, "amount_cents": 100, "occurred_at": "2023-01-01"}],
            "cylinder_transactions": [
                {"id": 1, "customer_id": 1, "product_id": 1, "quantity": 2, "type": "out", "occurred_at": "2023-01-01"},
            ],
        }

        summary = snapshot_service.import_snapshot(legacy)

        assert summary["serials_assigned"] == 1
        assert db_session.get(Customer, 1).serial_number == 6
        assert db_session.get(Product, 1).is_active is True
        assert db_session.get(Customer, 1).balance_cents == 0
        assert db_session.get(Customer, 2).balance_cents == -100
        assert get_cylinder_holding(1, 1) == 2
        assert db_session.get(CylinderTransaction, 1).product_name == "12kg"

    def test_import_accepts_name_keyed_holdings(self, db_session, customer, product_12kg):
        _populate(customer, product_12kg)
        exported = snapshot_service.export_snapshot()
        customer_id, product_id = customer.id, product_12kg.id
        exported["customers"][0]["cylinder_balance"] = {"12kg": 2, "9kg": 4}

        summary = snapshot_service.import_snapshot(exported)

        corrections = summary["reconciliation"]["cylinder_balances"]
        assert [(c["product_id"], c["old"], c["new"]) for c in corrections] == [(product_id, 2, 3)]
        assert get_cylinder_holding(customer_id, product_id) == 3

    def test_import_keeps_local_sync_state(self, db_session, customer):
        settings_service.set_admin_password("s3cret")
        pending = db_session.query(SyncOutboxEntry).count()

        snapshot_service.import_snapshot({"customers": [], "products": [], "invoices": []})

        assert settings_service.has_admin_password() is True
        assert db_session.query(SyncOutboxEntry).count() == pending
        assert db_session.query(Customer).count() == 0

    def test_import_merges_settings(self, db_session):
        snapshot_service.import_snapshot({
            "customers": [], "products": [], "invoices": [],
            "customer_types": ["Bakery", "Hotel"],
            "settings": {"backup_email": "ops@example.com", "needs_sync": True, "unknown": 1},
        })

        assert settings_service.get_customer_types() == ["Bakery", "Hotel"]
        assert settings_service.get_settings()["backup_email"] == "ops@example.com"
        assert settings_service.is_sync_needed() is False

    @pytest.mark.parametrize("payload", [
        None,
        [],
        {"customers": []},
        {"customers": [], "products": [], "invoices": [{"customer_id": 1}]},
        {"customers": [], "products": [], "invoices": [],
         "cylinder_transactions": [{"id": 1, "customer_id": 1, "product_id": 9, "quantity": 1, "type": "out"}]},
        {"customers": [], "products": [], "invoices": [], "settings": {"storage_limit_mb": -1}},
        {"customers": [{"id": 1, "name": "A", "cylinder_balance": {"1": "many"}}], "products": [{"id": 1, "name": "12kg"}], "invoices": []},
        {"customers": [{"id": 1, "name": "A", "cylinder_balance": ["12kg"]}], "products": [], "invoices": []},
        {"customers": [{"id": 1, "name": "A"}, {"id": 1, "name": "B"}], "products": [], "invoices": []},
        {"customers": [{"id": 1, "name": "A", "serial_number": 4}, {"id": 2, "name": "B", "serial_number": 4}],
         "products": [], "invoices": []},
        {"customers": [], "products": [{"id": 1, "name": "12kg"}, {"id": 1, "name": "50kg"}], "invoices": []},
    ])
    def test_malformed_snapshot_changes_nothing(self, db_session, customer, payload):
        with pytest.raises(ValidationError):
            snapshot_service.import_snapshot(payload)

        assert db_session.query(Customer).count() == 1


class TestFactoryReset:
    def test_factory_reset_wipes_everything(self, db_session, customer, product_12kg):
        _populate(customer, product_12kg)
        settings_service.set_admin_password("s3cret")

        snapshot_service.factory_reset()

        for model in (Customer, Product, Invoice, Repayment, CylinderTransaction, AppSetting, SyncOutboxEntry):
            assert db.session.query(model).count() == 0
        assert settings_service.has_admin_password() is False
        assert settings_service.get_customer_types() == settings_service.DEFAULT_CUSTOMER_TYPES
