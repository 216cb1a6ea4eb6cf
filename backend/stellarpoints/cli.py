# Overview: Flask CLI command groups for bootstrap, inspection, and ledger maintenance.

# backend/stellarpoints/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init
#   Create all tables (idempotent).
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# User inspection/bootstrap:
# - python -m flask users createsu <utorid> <email> <password>
#   Create a verified superuser.
# - python -m flask users list
#   List all accounts with role and balance.
#
# Ledger maintenance:
# - python -m flask ledger verify
#   Replay every account's transactions and report balances that drifted.

import click
from flask.cli import with_appcontext

from .errors import PointsError
from .extensions import db
from .models import Account
from .services import account_service, ledger_service


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init')
@with_appcontext
def init_db():
    """Create all tables that do not exist yet."""
    db.create_all()
    click.echo("OK Database tables created")


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
    click.echo("CREATE  Recreating schema...")
    db.create_all()
    click.echo("OK Database reset complete")


@click.group('users')
def users_group():
    """Account inspection and bootstrap commands."""


@users_group.command('createsu')
@click.argument('utorid')
@click.argument('email')
@click.argument('password')
@with_appcontext
def create_superuser(utorid, email, password):
    """Create a verified superuser."""
    try:
        account = account_service.create_superuser(utorid, email, password)
    except PointsError as e:
        raise click.ClickException(e.message)
    click.echo(f"OK Superuser {account.utorid} created (id={account.id})")


@users_group.command('list')
@with_appcontext
def list_users():
    """List all accounts with role and balance."""
    accounts = db.session.query(Account).order_by(Account.id).all()

    if not accounts:
        click.echo("No users found.")
        return

    click.echo("\n" + "=" * 80)
    click.echo(f"{'ID':<5} {'UTORid':<10} {'Role':<11} {'Points':>8}  {'Verified':<9} {'Suspicious':<10} Email")
    click.echo("=" * 80)

    for account in accounts:
        verified = "Yes" if account.verified else "No"
        suspicious = "Yes" if account.suspicious else "No"
        click.echo(
            f"{account.id:<5} {account.utorid:<10} {account.role:<11} {account.points:>8}  "
            f"{verified:<9} {suspicious:<10} {account.email}"
        )

    click.echo("=" * 80 + "\n")


@click.group('ledger')
def ledger_group():
    """Ledger maintenance commands."""


@ledger_group.command('verify')
@with_appcontext
def verify_ledger():
    """Replay every account's ledger and compare with its running total."""
    mismatches = ledger_service.find_mismatched_balances()
    if not mismatches:
        click.echo("OK All balances match the ledger")
        return

    for account, replayed in mismatches:
        click.echo(f"MISMATCH {account.utorid}: points={account.points} ledger={replayed}")
    raise click.ClickException(f"{len(mismatches)} balance(s) differ from the ledger")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(users_group)
    app.cli.add_command(ledger_group)
