# backend/gasledger/__init__.py
import logging

from flask import Flask, request
from sqlalchemy import inspect

from .config import Config
from .extensions import db, migrate



def create_app(test_config: dict | None = None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    if test_config:
        app.config.update(test_config)

    app.logger.setLevel(getattr(logging, str(app.config.get("LOG_LEVEL", "INFO")).upper(), logging.INFO))

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    # Register blueprints
    from .routes.system import system_bp
    from .routes.customers import customers_bp
    from .routes.products import products_bp
    from .routes.invoices import invoices_bp
    from .routes.repayments import repayments_bp
    from .routes.cylinders import cylinders_bp
    from .routes.settings import settings_bp

    app.register_blueprint(system_bp)
    app.register_blueprint(customers_bp)
    app.register_blueprint(products_bp)
    app.register_blueprint(invoices_bp)
    app.register_blueprint(repayments_bp)
    app.register_blueprint(cylinders_bp)
    app.register_blueprint(settings_bp)

    @app.after_request
    def add_cors_headers(response):
        origin = request.headers.get("Origin")
        allowed_origins = {
            "http://localhost:5173",
            "http://127.0.0.1:5173",
            "http://localhost:4173",
            "http://127.0.0.1:4173",
        }
        if origin in allowed_origins:
            response.headers["Access-Control-Allow-Origin"] = origin
            response.headers["Vary"] = "Origin"
            response.headers["Access-Control-Allow-Headers"] = "Content-Type, X-Admin-Password"
            response.headers["Access-Control-Allow-Methods"] = "GET,POST,PUT,DELETE,PATCH,OPTIONS"
        return response

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    with app.app_context():
        run_startup_maintenance(app)

    return app


def run_startup_maintenance(app: Flask) -> None:
    """
    Serial backfill and balance reconciliation on a schema that already exists.

    A fresh database (before `flask system init` or `flask db upgrade`) is left alone.
    """
    if not inspect(db.engine).has_table("customers"):
        return

    from .services import customer_service, reconciliation_service

    assigned = customer_service.assign_missing_serial_numbers()
    if assigned:
        app.logger.info("Assigned serial numbers to %d legacy customers", assigned)

    if app.config.get("RECONCILE_ON_STARTUP"):
        result = reconciliation_service.reconcile_all()
        app.logger.info("Startup reconciliation finished: %d corrected", result["corrected"])
    db.session.remove()
