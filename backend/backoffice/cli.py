# Overview: Flask CLI command groups for bootstrap, user management and ledger checks.

# backend/backoffice/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap:
# - python -m flask system init
#   Idempotent bootstrap: creates tables and the default superadmin.
#
# Users:
# - python -m flask users list
#   List all users with role and active status.
# - python -m flask users create --email admin@backoffice.local --name Admin --password "Password123!" --role ADMIN
#   Create a user (prompts if options are omitted).
# - python -m flask users deactivate --email staff@backoffice.local
#   Deactivate a user and revoke their sessions.
#
# Inventory:
# - python -m flask inventory verify [--product-id 1]
#   Replay the inventory log and report products whose ledger disagrees
#   with the stored quantity. Exits 1 when problems are found.

import click
from flask.cli import with_appcontext

from .errors import DomainError
from .extensions import db
from .models import User, USER_ROLES
from .services.auth_service import create_user
from .services.inventory_service import verify_ledger
from .services.session_service import revoke_all_user_sessions


@click.group('system')
def system_group():
    """System bootstrap commands."""


@system_group.command('init')
@click.option('--email', default='admin@backoffice.local', help='Superadmin email')
@click.option('--password', default='Password123!', help='Superadmin password')
@with_appcontext
def init_system(email, password):
    """
    Create tables (if missing) and a default SUPERADMIN.

    SECURITY: Change the default password immediately in production!
    """
    click.echo("START Initializing backoffice...")
    db.create_all()
    click.echo("PASS Tables ready")

    existing = db.session.query(User).filter_by(role="SUPERADMIN").first()
    if existing:
        click.echo(f"WARN  Superadmin already exists ({existing.email}), skipping...")
        return

    try:
        user = create_user(email=email, name="Super Admin", password=password, role="SUPERADMIN")
    except DomainError as e:
        click.echo(f"FAIL Failed to create superadmin: {e.message}")
        raise SystemExit(1)

    click.echo(f"PASS Created superadmin: {user.email}")
    click.echo("\nSECURITY WARNING: change the default password in production!")


@click.group('users')
def users_group():
    """User management commands."""


@users_group.command('create')
@click.option('--email', prompt=True, help='Email address')
@click.option('--name', prompt=True, help='Display name')
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True, help='Password')
@click.option('--role', type=click.Choice(list(USER_ROLES)), default='STAFF', show_default=True, help='Role')
@with_appcontext
def create_user_cli(email, name, password, role):
    """
    Create a new user.

    Password must meet strength requirements:
    - Minimum 8 characters
    - At least one uppercase letter
    - At least one lowercase letter
    - At least one digit
    - At least one special character
    """
    try:
        user = create_user(email=email, name=name, password=password, role=role)
    except DomainError as e:
        click.echo(f"FAIL Failed to create user: {e.message}")
        raise SystemExit(1)

    click.echo(f"PASS Created user: {user.email} with role '{user.role}'")


@users_group.command('list')
@with_appcontext
def list_users_cli():
    """List all users."""
    users = db.session.query(User).order_by(User.id).all()
    if not users:
        click.echo("No users found.")
        return
    for u in users:
        status = "active" if u.is_active else "inactive"
        click.echo(f"{u.id:>4}  {u.email:<32} {u.role:<10} {status}")


@users_group.command('deactivate')
@click.option('--email', prompt=True, help='Email address')
@with_appcontext
def deactivate_user_cli(email):
    """Deactivate a user and revoke every open session."""
    user = db.session.query(User).filter_by(email=email.strip().lower()).first()
    if not user:
        click.echo(f"FAIL User {email} not found")
        raise SystemExit(1)

    user.is_active = False
    db.session.commit()
    revoked = revoke_all_user_sessions(user.id, reason="User deactivated")
    click.echo(f"PASS Deactivated {user.email}; revoked {revoked} session(s)")


@click.group('inventory')
def inventory_group():
    """Inventory ledger commands."""


@inventory_group.command('verify')
@click.option('--product-id', type=int, default=None, help='Check a single product')
@with_appcontext
def verify_inventory_cli(product_id):
    """Replay the inventory log against stored quantities."""
    problems = verify_ledger(product_id)
    if not problems:
        click.echo("PASS Inventory ledger is consistent")
        return

    for p in problems:
        detail = ", ".join(f"{k}={v}" for k, v in p.items() if k not in ("product_id", "problem"))
        click.echo(f"FAIL product {p['product_id']}: {p['problem']} ({detail})")
    click.echo(f"\n{len(problems)} problem(s) found")
    raise SystemExit(1)


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(users_group)
    app.cli.add_command(inventory_group)
