# Overview: Flask CLI command groups for bootstrap, inspection, and maintenance.

# backend/stocksage/cli.py
# Commands Legend (run from the repository root):
# Prereqs:
# - Activate your virtualenv and `pip install -e .`
# - Set FLASK_APP to the factory (PowerShell: $env:FLASK_APP="stocksage:create_app").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init
#   Idempotent bootstrap: creates tables (if missing) and the default admin user.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# User inspection/bootstrap:
# - python -m flask users list [--include-guests]
#   List accounts with role and active status.
# - python -m flask users create --name "Jane" --business-name "Jane's Shop" --email jane@example.com --password "Password123" --role user
#   Create an account (prompts if options are omitted).
#
# Maintenance:
# - python -m flask maintenance cleanup-sessions --retention-days 30
#   Delete expired/revoked sessions older than the retention window.
# - python -m flask maintenance prune-guest-pool
#   Delete least-recently-accessed pooled guest accounts beyond GUEST_POOL_MAX_SIZE.

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import User
from .services.auth_service import AuthValidationError, DuplicateAccountError, register_user
from .services import session_service
from .services.guest_pool import get_guest_pool


DEFAULT_ADMIN_EMAIL = "admin@stocksage.local"
DEFAULT_ADMIN_PASSWORD = "Password123"


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init')
@with_appcontext
def init_system():
    """
    Initialize StockSage: schema and the default admin account.

    SECURITY: Change the admin password immediately in production!
    """
    click.echo("START Initializing StockSage...")

    db.create_all()
    click.echo("PASS Schema ready")

    existing = db.session.query(User).filter_by(email=DEFAULT_ADMIN_EMAIL).first()
    if existing:
        click.echo(f"WARN  User '{DEFAULT_ADMIN_EMAIL}' already exists, skipping...")
    else:
        try:
            register_user(
                name="Administrator",
                business_name="StockSage",
                email=DEFAULT_ADMIN_EMAIL,
                password=DEFAULT_ADMIN_PASSWORD,
                role="admin",
            )
            click.echo(f"PASS Created user: {DEFAULT_ADMIN_EMAIL} with role 'admin'")
        except (AuthValidationError, DuplicateAccountError) as e:
            click.echo(f"FAIL Failed to create admin user: {str(e)}")

    click.echo("\n" + "="*60)
    click.echo("DONE StockSage Initialized Successfully!")
    click.echo("="*60)
    click.echo("\nDefault Credentials (CHANGE IN PRODUCTION!):")
    click.echo(f"   admin -> {DEFAULT_ADMIN_EMAIL} / {DEFAULT_ADMIN_PASSWORD}")
    click.echo("")


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


@click.group('users')
def users_group():
    """User inspection and bootstrap commands."""


@users_group.command('create')
@click.option('--name', prompt=True, help='Display name')
@click.option('--business-name', prompt=True, help='Business name')
@click.option('--email', prompt=True, help='Email address')
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True, help='Password')
@click.option('--role', type=click.Choice(['user', 'admin']), default='user', show_default=True, help='Role')
@with_appcontext
def create_user_cli(name, business_name, email, password, role):
    """
    Create a new account.

    Password must meet strength requirements:
    - Minimum 8 characters
    - At least one uppercase letter
    - At least one lowercase letter
    - At least one digit
    """
    try:
        user = register_user(
            name=name,
            business_name=business_name,
            email=email,
            password=password,
            role=role,
        )
    except AuthValidationError as e:
        click.echo(f"FAIL Validation failed: {str(e)}")
        return
    except DuplicateAccountError as e:
        click.echo(f"FAIL {str(e)}")
        return

    click.echo(f"PASS Created user: {user.email} (ID: {user.id}) with role '{user.role}'")
    click.echo("SECURITY Password securely hashed with bcrypt")


@users_group.command('list')
@click.option('--include-guests', is_flag=True, help='Also list guest accounts')
@with_appcontext
def list_users(include_guests):
    """List accounts with role and status."""
    query = db.session.query(User)
    if not include_guests:
        query = query.filter(User.role != "guest")
    users = query.order_by(User.created_at).all()

    if not users:
        click.echo("No users found.")
        return

    click.echo("\n" + "="*100)
    click.echo(f"{'ID':<34} {'Email':<36} {'Role':<8} {'Active':<7} {'Business'}")
    click.echo("-"*100)
    for user in users:
        active = "yes" if user.is_active else "no"
        click.echo(f"{user.id:<34} {user.email:<36} {user.role:<8} {active:<7} {user.business_name or ''}")
    click.echo("="*100 + "\n")


@click.group('maintenance')
def maintenance_group():
    """Maintenance commands."""


@maintenance_group.command('cleanup-sessions')
@click.option('--retention-days', type=int, default=30, show_default=True)
@with_appcontext
def cleanup_sessions_cli(retention_days):
    """Delete expired or revoked sessions older than the retention window."""
    deleted = session_service.cleanup_expired_sessions(retention_days=retention_days)
    click.echo(f"Deleted {deleted} sessions older than {retention_days} days.")


@maintenance_group.command('prune-guest-pool')
@with_appcontext
def prune_guest_pool_cli():
    """Evict least-recently-accessed pooled guest accounts beyond the pool size."""
    pool = get_guest_pool()
    if pool is None:
        click.echo("WARN  Identity provider not configured; nothing to prune.")
        return

    deleted = pool.evict()
    click.echo(f"Deleted {deleted} pooled guest accounts (max size {pool.max_size}).")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(users_group)
    app.cli.add_command(maintenance_group)
