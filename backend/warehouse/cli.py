# Overview: Flask CLI command groups for startup phases and user inspection.

# backend/warehouse/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# Startup phases:
# - python -m flask system startup
#   Run all three phases in order (database, reconcile, admin). Exit 1 on failure.
# - python -m flask system init-db
#   Create the database/application role (PostgreSQL admin URL) and tables.
# - python -m flask system reconcile-users
#   Mirror identity provider accounts into the users table.
# - python -m flask system bootstrap-admin
#   Create or adopt the configured initial manager if no manager exists.
#
# User inspection:
# - python -m flask users list [--active-only]
#   List local users with role, active flag and identity provider link.

import sys

import click
from flask import current_app
from flask.cli import with_appcontext

from .services import startup_service, user_service


def _fail(message: str) -> None:
    current_app.logger.exception(message)
    click.echo(f"FAIL {message}", err=True)
    sys.exit(1)


@click.group('system')
def system_group():
    """Startup phases and repair commands."""


@system_group.command('startup')
@with_appcontext
def startup():
    """Run database setup, user reconcile and admin bootstrap in order."""
    try:
        startup_service.run_startup()
    except Exception:
        _fail("Startup failed")
    click.echo("PASS Startup completed")


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Ensure database, application role and tables exist."""
    try:
        startup_service.ensure_database()
    except Exception:
        _fail("Database initialization failed")
    click.echo("PASS Database ready")


@system_group.command('reconcile-users')
@with_appcontext
def reconcile_users():
    """Synchronize local users with the identity provider."""
    try:
        result = startup_service.reconcile_users()
    except Exception:
        _fail("User reconcile failed")

    if result.skipped:
        click.echo("WARN  Identity provider unavailable, reconcile skipped")
        return
    click.echo(
        f"PASS Reconciled users: {len(result.created)} created, "
        f"{len(result.updated)} updated, {len(result.deactivated)} deactivated"
    )
    for username in result.created:
        click.echo(f"   + {username}")
    for username in result.updated:
        click.echo(f"   ~ {username}")
    for username in result.deactivated:
        click.echo(f"   - {username}")


@system_group.command('bootstrap-admin')
@with_appcontext
def bootstrap_admin():
    """Create or adopt the initial manager account."""
    try:
        user = startup_service.bootstrap_admin()
    except Exception:
        _fail("Initial admin setup failed")

    if user is None:
        click.echo("PASS A manager already exists, nothing to do")
    else:
        click.echo(f"PASS Initial manager ready: {user.username} (ID: {user.id})")


@click.group('users')
def users_group():
    """User inspection commands."""


@users_group.command('list')
@click.option('--active-only', is_flag=True, help='Only show active users')
@with_appcontext
def list_users(active_only):
    """List all users with their roles."""
    users = user_service.list_users(active_only=active_only)

    if not users:
        click.echo("No users found.")
        return

    click.echo("\n" + "="*100)
    click.echo(f"{'ID':<5} {'Username':<25} {'Role':<10} {'Active':<8} {'External ID'}")
    click.echo("="*100)

    for user in users:
        active_str = "Yes" if user.active else "No"
        click.echo(f"{user.id:<5} {user.username:<25} {user.role:<10} {active_str:<8} {user.external_id or '-'}")

    click.echo("="*100 + "\n")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(users_group)
