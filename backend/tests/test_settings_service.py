import unittest

from gasledger import create_app
from gasledger.extensions import db
from gasledger.models import AppSetting
from gasledger.services import settings_service
from gasledger.validation import ValidationError


class SettingsServiceTests(unittest.TestCase):
    @classmethod
    def setUpClass(cls):
        cls.app = create_app({
            "TESTING": True,
            "SQLALCHEMY_DATABASE_URI": "sqlite:///:memory:",
            "RECONCILE_ON_STARTUP": False,
            "SYNC_AUTO_PUSH": False,
        })
        cls.ctx = cls.app.app_context()
        cls.ctx.push()
        db.create_all()

    @classmethod
    def tearDownClass(cls):
        db.session.remove()
        db.drop_all()
        cls.ctx.pop()

    def setUp(self):
        db.session.query(AppSetting).delete()
        db.session.commit()

    def test_defaults(self):
        settings = settings_service.get_settings()
        self.assertEqual(settings["storage_limit_mb"], 9000)
        self.assertEqual(settings["allowed_emails"], [])
        self.assertFalse(settings["has_admin_password"])
        self.assertFalse(settings["needs_sync"])

    def test_update_settings_normalizes(self):
        settings = settings_service.update_settings({
            "allowed_emails": [" Owner@Example.com ", ""],
            "auto_backup_enabled": True,
        })
        self.assertEqual(settings["allowed_emails"], ["owner@example.com"])
        self.assertTrue(settings["auto_backup_enabled"])

    def test_update_settings_rejects_unknown_and_bad_values(self):
        with self.assertRaises(ValidationError):
            settings_service.update_settings({"admin_password_hash": "x"})
        with self.assertRaises(ValidationError):
            settings_service.update_settings({"storage_limit_mb": -1})
        with self.assertRaises(ValidationError):
            settings_service.update_settings({"auto_backup_enabled": "yes"})

    def test_admin_password_lifecycle(self):
        self.assertTrue(settings_service.verify_admin_password(None))

        settings_service.set_admin_password("open-sesame")
        self.assertTrue(settings_service.has_admin_password())
        self.assertTrue(settings_service.verify_admin_password("open-sesame"))
        self.assertFalse(settings_service.verify_admin_password("wrong"))
        self.assertFalse(settings_service.verify_admin_password(None))

        stored = db.session.query(AppSetting).filter_by(key=settings_service.KEY_ADMIN_PASSWORD_HASH).one()
        self.assertNotIn("open-sesame", stored.value_json)
        self.assertNotIn("admin_password_hash", settings_service.get_settings())

        settings_service.set_admin_password(None)
        self.assertFalse(settings_service.has_admin_password())

    def test_admin_password_min_length(self):
        with self.assertRaises(ValidationError):
            settings_service.set_admin_password("abc")

    def test_customer_types(self):
        self.assertEqual(settings_service.get_customer_types(), settings_service.DEFAULT_CUSTOMER_TYPES)
        self.assertTrue(settings_service.ensure_defaults_seeded())
        self.assertFalse(settings_service.ensure_defaults_seeded())

        saved = settings_service.save_customer_types([" Bakery ", "Hotel", "Bakery", ""])
        self.assertEqual(saved, ["Bakery", "Hotel"])
        self.assertEqual(settings_service.get_customer_types(), ["Bakery", "Hotel"])

        with self.assertRaises(ValidationError):
            settings_service.save_customer_types([])

    def test_sync_flag_is_sticky(self):
        settings_service.mark_sync_needed()
        settings_service.mark_sync_needed()
        self.assertTrue(settings_service.is_sync_needed())
        self.assertTrue(settings_service.get_settings()["needs_sync"])

        settings_service.mark_sync_done()
        self.assertFalse(settings_service.is_sync_needed())
