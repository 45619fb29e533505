# Overview: Flask CLI command groups for schema bootstrap, reconciliation, and maintenance.

# backend/pharmaledger/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Point Flask at the app factory: export FLASK_APP=pharmaledger (PowerShell: $env:FLASK_APP="pharmaledger").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init-db
#   Create any missing tables (use 'flask db upgrade' for migrated deployments).
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Ledger maintenance:
# - python -m flask ledger reconcile [--org-id 1]
#   Check every product quantity and credit balance against its history.
#   Exits with status 1 when any invariant is violated.
# - python -m flask ledger purge-idempotency [--hours 72]
#   Delete idempotency records older than the retention window.
# - python -m flask ledger audit-tail --org-id 1 [--resource-type product --resource-id 5] [--limit 20]
#   Print the newest audit entries.

import click
from datetime import timedelta
from flask import current_app
from flask.cli import with_appcontext
from sqlalchemy import select, union

from .extensions import db
from .models import CreditAccount, Product
from .services.audit_service import AuditQuery
from .services.mutation_service import build_facade
from .time_utils import to_utc_z, utcnow


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create all tables that do not exist yet."""
    db.create_all()
    click.echo("PASS Tables created.")


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


@click.group('ledger')
def ledger_group():
    """Stock and credit ledger maintenance commands."""


def _all_org_ids() -> list[int]:
    rows = db.session.execute(
        union(select(Product.org_id), select(CreditAccount.org_id))
    ).all()
    return sorted(row[0] for row in rows)


@ledger_group.command('reconcile')
@click.option('--org-id', type=int, default=None, help='Limit the sweep to one organization')
@with_appcontext
def reconcile_cli(org_id):
    """
    Verify quantity_on_hand == SUM(movements) and balance == SUM(transactions).
    """
    facade = build_facade()
    org_ids = [org_id] if org_id is not None else _all_org_ids()

    total_violations = 0
    for oid in org_ids:
        violations = facade.reconcile_all(oid)
        total_violations += len(violations)
        if not violations:
            click.echo(f"PASS org {oid}: ledgers consistent")
            continue
        for v in violations:
            click.echo(f"FAIL org {oid}: {v}")

    if total_violations:
        click.echo(f"\n{total_violations} invariant violation(s) found.")
        raise SystemExit(1)
    click.echo(f"\nChecked {len(org_ids)} organization(s); no violations.")


@ledger_group.command('purge-idempotency')
@click.option('--hours', type=int, default=None, help='Retention window (defaults to IDEMPOTENCY_TTL_HOURS)')
@with_appcontext
def purge_idempotency_cli(hours):
    """Delete idempotency records past their retention window."""
    if hours is None:
        hours = current_app.config.get("IDEMPOTENCY_TTL_HOURS", 72)
    if hours < 0:
        raise click.BadParameter("hours must be >= 0", param_hint="--hours")

    facade = build_facade()
    deleted = facade.repository.purge_idempotency(utcnow() - timedelta(hours=hours))
    click.echo(f"Deleted {deleted} idempotency records older than {hours} hours.")


@ledger_group.command('audit-tail')
@click.option('--org-id', type=int, required=True)
@click.option('--resource-type', default=None)
@click.option('--resource-id', default=None)
@click.option('--category', default=None)
@click.option('--limit', type=click.IntRange(min=1), default=20, show_default=True)
@with_appcontext
def audit_tail_cli(org_id, resource_type, resource_id, category, limit):
    """Print the newest audit entries, newest first."""
    facade = build_facade()
    filters = AuditQuery(resource_type=resource_type, resource_id=resource_id, category=category)

    click.echo(f"\n{'ID':<8} {'When':<28} {'Actor':<7} {'Category':<11} {'Action':<30} Resource")
    click.echo("=" * 100)
    shown = 0
    for entry in facade.audit_log.query(org_id, filters, page_size=min(limit, 100)):
        click.echo(
            f"{entry.id:<8} {to_utc_z(entry.created_at):<28} {entry.actor_id:<7} "
            f"{entry.category:<11} {entry.action:<30} {entry.resource_type}:{entry.resource_id}"
        )
        shown += 1
        if shown >= limit:
            break
    click.echo("=" * 100 + "\n")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(ledger_group)
