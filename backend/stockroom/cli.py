# Overview: Flask CLI command groups for bootstrap, user management and ledger checks.

# backend/stockroom/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap:
# - python -m flask system init [--password "..."]
#   Create tables (if missing) and one user per role. Idempotent.
#
# Users:
# - python -m flask users list
# - python -m flask users create --full-name "Ana Lima" --email ana@stockroom.local --role HR
#   Prompts for the password.
#
# Ledger:
# - python -m flask ledger verify
#   Replays every item's movements and reports items whose quantity diverges.

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import User, UserRole
from .services import user_service, movement_service
from .validation import ValidationError, ConflictError


DEFAULT_USERS = [
    ("Administrator", "admin@stockroom.local", UserRole.ADMIN),
    ("Warehouse Manager", "manager@stockroom.local", UserRole.WAREHOUSE_MANAGER),
    ("Human Resources", "hr@stockroom.local", UserRole.HR),
    ("Employee", "employee@stockroom.local", UserRole.EMPLOYEE),
]


@click.group('system')
def system_group():
    """System bootstrap commands."""


@system_group.command('init')
@click.option('--password', default='Password123!', help='Password for the seeded users')
@with_appcontext
def init_system(password):
    """
    Create tables and seed one user per role.

    SECURITY: Change the seeded passwords immediately in production!
    """
    click.echo("START Initializing stockroom...")
    db.create_all()
    click.echo("PASS Tables ready")

    for full_name, email, role in DEFAULT_USERS:
        if db.session.query(User).filter_by(email=email).first():
            click.echo(f"WARN  User '{email}' already exists, skipping...")
            continue
        user_service.register_user(full_name=full_name, email=email, password=password, role=role)
        click.echo(f"PASS Created user: {email} with role '{role.value}'")

    click.echo("DONE stockroom initialized")


@click.group('users')
def users_group():
    """User inspection and bootstrap commands."""


@users_group.command('list')
@with_appcontext
def list_users_cli():
    """List all users with role and active status."""
    users = db.session.query(User).order_by(User.id.asc()).all()
    if not users:
        click.echo("No users found.")
        return
    for u in users:
        status = "active" if u.is_active else "inactive"
        click.echo(f"{u.id:>4}  {u.email:<40} {u.role:<18} {status}")


@users_group.command('create')
@click.option('--full-name', prompt=True, help='Full name')
@click.option('--email', prompt=True, help='Email address')
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True, help='Password')
@click.option('--role', type=click.Choice(UserRole.values(), case_sensitive=False), prompt=True, help='Role')
@click.option('--cost-center', default=None, help='Cost center')
@with_appcontext
def create_user_cli(full_name, email, password, role, cost_center):
    """Create a new user."""
    try:
        user = user_service.register_user(
            full_name=full_name,
            email=email,
            password=password,
            role=role,
            cost_center=cost_center,
        )
    except (ValidationError, ConflictError) as e:
        click.echo(f"FAIL {e}")
        raise SystemExit(1)
    click.echo(f"PASS Created user {user.email} (ID: {user.id}, role: {user.role})")


@click.group('ledger')
def ledger_group():
    """Ledger consistency commands."""


@ledger_group.command('verify')
@with_appcontext
def verify_ledger_cli():
    """Compare every item's quantity with the replay of its movements."""
    mismatches = movement_service.verify_ledger()
    if not mismatches:
        click.echo("PASS Every item quantity matches its ledger")
        return
    for m in mismatches:
        click.echo(
            f"FAIL item {m['item_id']} ({m['sku']}): quantity={m['quantity']} ledger={m['ledger_quantity']}"
        )
    raise SystemExit(1)


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(users_group)
    app.cli.add_command(ledger_group)
