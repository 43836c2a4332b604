# Overview: Flask CLI command groups for bootstrap, ledger maintenance, and replication.

# backend/gasledger/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init
#   Idempotent bootstrap: creates tables, seeds customer types, backfills serial numbers.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
# - python -m flask system wipe --yes
#   Factory reset: delete every customer, product, transaction, setting and pending change.
#
# Ledger maintenance:
# - python -m flask ledger reconcile [--dry-run]
#   Recompute every cached money and cylinder balance from the transaction history.
# - python -m flask ledger holdings [--customer-id 3]
#   Cylinders out on loan per product (or one customer's holdings).
#
# Replication:
# - python -m flask sync status
#   Show pending changes and the needs-sync flag.
# - python -m flask sync push
#   Push one batch of pending changes to SYNC_REMOTE_URL.
# - python -m flask sync pull [--force]
#   Replace local data with the remote snapshot (--force discards pending local changes).
#
# Settings:
# - python -m flask settings set-admin-password [--clear]
#   Set (prompts) or clear the password that confirms destructive actions.

import click
from flask.cli import with_appcontext

from .extensions import db
from .services import (
    customer_service,
    reconciliation_service,
    settings_service,
    snapshot_service,
    sync_service,
)
from .services.guard_service import get_cylinder_holdings, outstanding_cylinder_totals
from .validation import ValidationError, ConflictError


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init')
@with_appcontext
def init_system():
    """
    Initialize the ledger database.

    Creates:
    - All tables (if missing)
    - Default customer-type labels (first run only)
    - Serial numbers for legacy customers without one
    """
    click.echo("START Initializing gas ledger...")

    db.create_all()
    click.echo("PASS Tables ready")

    if settings_service.ensure_defaults_seeded():
        click.echo(f"PASS Seeded customer types: {', '.join(settings_service.get_customer_types())}")
    else:
        click.echo("PASS Customer types already configured")

    assigned = customer_service.assign_missing_serial_numbers()
    click.echo(f"PASS Assigned {assigned} missing serial numbers")

    click.echo("DONE Gas ledger initialized")


@system_group.command('reset-db')
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def reset_db(yes):
    """
    DANGER: Drop all tables and recreate schema.

    This will DELETE ALL DATA!
    """
    if not yes:
        click.confirm("WARN This will DELETE ALL DATA. Are you sure?", abort=True)

    click.echo("DELETE  Dropping all tables...")
    db.drop_all()

    click.echo("BUILD  Creating all tables...")
    db.create_all()

    click.echo("PASS Database reset complete. Run 'python -m flask system init' to initialize.")


@system_group.command('wipe')
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def wipe_data(yes):
    """
    Factory reset: remove every record and setting, keep the schema.
    """
    if not yes:
        click.confirm("WARN This will DELETE all customers, products and transactions. Are you sure?", abort=True)

    snapshot_service.factory_reset()
    click.echo("PASS All data wiped")


@click.group('ledger')
def ledger_group():
    """Ledger consistency commands."""


@ledger_group.command('reconcile')
@click.option('--dry-run', is_flag=True, help='Report corrections without writing them')
@with_appcontext
def reconcile(dry_run):
    """Recompute every cached balance from the transaction history."""
    result = reconciliation_service.reconcile_all(dry_run=dry_run)

    for c in result["balances"]:
        click.echo(f"BALANCE #{c['serial_number']} {c['name']}: {c['old']} -> {c['new']}")
    for c in result["cylinder_balances"]:
        click.echo(f"CYLINDER #{c['serial_number']} {c['name']} product {c['product_id']}: {c['old']} -> {c['new']}")

    prefix = "DRY RUN " if dry_run else ""
    click.echo(f"{prefix}PASS {result['corrected']} corrections")


@ledger_group.command('holdings')
@click.option('--customer-id', type=int, default=None, help='Show one customer only')
@with_appcontext
def holdings(customer_id):
    """Cylinders currently out on loan."""
    if customer_id is not None:
        rows = get_cylinder_holdings(customer_id)
        if not rows:
            click.echo("No cylinders held.")
            return
        for row in rows:
            click.echo(f"{row['product_name']:<30} {row['quantity']:>6}")
        return

    totals = outstanding_cylinder_totals()
    for row in totals["products"]:
        click.echo(f"{row['product_name']:<30} {row['quantity']:>6}  ({row['customers']} customers)")
    click.echo(f"TOTAL {totals['total_out']} cylinders with {totals['customers_with_loans']} customers")


@click.group('sync')
def sync_group():
    """Remote replication commands."""


@sync_group.command('status')
@with_appcontext
def sync_status():
    status = sync_service.get_sync_status()
    click.echo(f"Remote configured: {'yes' if status['remote_configured'] else 'no'}")
    click.echo(f"Needs sync:        {'yes' if status['needs_sync'] else 'no'}")
    click.echo(f"Pending changes:   {status['pending_changes']}")
    if status["last_error"]:
        click.echo(f"Last error:        {status['last_error']}")


@sync_group.command('push')
@with_appcontext
def sync_push():
    result = sync_service.push_pending()
    if result["ok"]:
        click.echo(f"PASS Pushed {result['pushed']} changes ({result['remaining']} remaining)")
    else:
        click.echo(f"FAIL {result['error']} ({result['remaining']} pending)")


@sync_group.command('pull')
@click.option('--force', is_flag=True, help='Discard pending local changes')
@with_appcontext
def sync_pull(force):
    """Replace local data with the remote snapshot."""
    try:
        result = sync_service.pull_snapshot(force=force)
    except (sync_service.SyncError, ConflictError, ValidationError) as e:
        raise click.ClickException(str(e))
    click.echo(
        f"PASS Imported {result['customers']} customers, {result['invoices']} invoices, "
        f"{result['repayments']} repayments, {result['cylinder_transactions']} cylinder transactions"
    )


@click.group('settings')
def settings_group():
    """Settings commands."""


@settings_group.command('set-admin-password')
@click.option('--clear', is_flag=True, help='Remove the admin password')
@with_appcontext
def set_admin_password(clear):
    if clear:
        settings_service.set_admin_password(None)
        click.echo("PASS Admin password cleared")
        return
    password = click.prompt("Admin password", hide_input=True, confirmation_prompt=True)
    try:
        settings_service.set_admin_password(password)
    except ValidationError as e:
        raise click.ClickException(str(e))
    click.echo("PASS Admin password set")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(ledger_group)
    app.cli.add_command(sync_group)
    app.cli.add_command(settings_group)
