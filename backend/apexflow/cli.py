# Overview: Flask CLI command groups for bootstrap, reconciliation repair and goods-return inspection.

# backend/apexflow/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init-db
#   Create all tables (idempotent).
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
# - python -m flask system add-staff --name "Ravi" --role Picker
#   Add a staff member that orders can be assigned to.
#
# Reconciliation intents:
# - python -m flask reconcile pending [--status FAILED]
#   List intents that have not been applied.
# - python -m flask reconcile retry 42
#   Re-apply one PENDING/FAILED intent.
# - python -m flask reconcile retry-all
#   Re-apply every PENDING/FAILED intent, oldest first.
#
# Goods returns:
# - python -m flask returns stock-room [--instance-id main]
#   Print the computed stock room (returned pieces not yet shipped out).

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import StaffMember
from .services import reconciliation_service, return_service
from .services.concurrency import StaleOrderError
from .services.order_lifecycle_service import VALID_ROLES
from .services.reconciliation_service import ReconciliationError


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create all tables that do not exist yet."""
    db.create_all()
    click.echo("PASS Database tables created.")


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

    click.echo("PASS Database reset complete.")


@system_group.command('add-staff')
@click.option('--name', prompt=True, help='Display name')
@click.option('--role', prompt=True, type=click.Choice(sorted(VALID_ROLES)), help='Staff role')
@click.option('--instance-id', default=None, help='Scope id')
@click.option('--phone', default=None)
@with_appcontext
def add_staff(name, role, instance_id, phone):
    """Add a staff member."""
    staff = StaffMember(name=name.strip(), role=role, instance_id=instance_id, phone=phone, is_active=True)
    db.session.add(staff)
    db.session.commit()
    click.echo(f"PASS Created {role} '{staff.name}' (ID: {staff.id})")


@click.group('reconcile')
def reconcile_group():
    """Inspect and repair reconciliation intents."""


@reconcile_group.command('pending')
@click.option('--status', type=click.Choice(['PENDING', 'FAILED', 'STALE']), default=None,
              help='Only this status (default: PENDING and FAILED)')
@click.option('--limit', default=100, show_default=True)
@with_appcontext
def list_pending(status, limit):
    """List intents that have not been applied."""
    if status:
        intents = reconciliation_service.list_intents(status, limit=limit)
    else:
        intents = (
            reconciliation_service.list_intents(reconciliation_service.INTENT_PENDING, limit=limit)
            + reconciliation_service.list_intents(reconciliation_service.INTENT_FAILED, limit=limit)
        )

    if not intents:
        click.echo("PASS No open reconciliation intents.")
        return

    click.echo(f"{'ID':<6} {'STATUS':<8} {'KIND':<12} {'ORDER':<8} {'BALANCE':>10} {'TRIES':>5}  ERROR")
    for intent in intents:
        click.echo(
            f"{intent.id:<6} {intent.status:<8} {intent.kind:<12} {intent.order_id:<8} "
            f"{intent.balance_delta_cents:>10} {intent.attempts:>5}  {(intent.error or '')[:60]}"
        )


@reconcile_group.command('retry')
@click.argument('intent_id', type=int)
@with_appcontext
def retry_one(intent_id):
    """Re-apply one intent."""
    try:
        result = reconciliation_service.retry_intent(intent_id)
    except (ReconciliationError, StaleOrderError) as e:
        raise click.ClickException(str(e))
    click.echo(f"PASS Intent {intent_id} applied on order {result.order.order_number}")
    for message in result.messages:
        click.echo(f"  - {message}")


@reconcile_group.command('retry-all')
@with_appcontext
def retry_all():
    """Re-apply every PENDING/FAILED intent, oldest first."""
    intents = (
        reconciliation_service.list_intents(reconciliation_service.INTENT_PENDING, limit=1000)
        + reconciliation_service.list_intents(reconciliation_service.INTENT_FAILED, limit=1000)
    )
    applied = failed = 0
    for intent_id in sorted(i.id for i in intents):
        try:
            reconciliation_service.retry_intent(intent_id)
            applied += 1
        except (ReconciliationError, StaleOrderError) as e:
            failed += 1
            click.echo(f"FAIL Intent {intent_id}: {e}")
    click.echo(f"PASS {applied} applied, {failed} failed")


@click.group('returns')
def returns_group():
    """Goods return inspection."""


@returns_group.command('stock-room')
@click.option('--instance-id', default=None, help='Scope id')
@with_appcontext
def stock_room(instance_id):
    """Print the stock room projection."""
    rows = return_service.stock_room_projection(instance_id)
    if not rows:
        click.echo("Stock room is empty.")
        return
    click.echo(f"{'ITEM':<50} {'QTY':>6} {'VALUE':>12}")
    for row in rows:
        click.echo(f"{row['identity_key'][:50]:<50} {row['quantity']:>6} {row['total_value_cents']:>12}")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(reconcile_group)
    app.cli.add_command(returns_group)
