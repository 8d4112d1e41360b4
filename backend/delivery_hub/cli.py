# Overview: Flask CLI command groups for bootstrap, inspection, and maintenance.

# backend/delivery_hub/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init [--branch "Main Branch"]
#   Idempotent bootstrap: creates tables, a default branch and the admin/warehouse/branch users.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# User inspection/bootstrap:
# - python -m flask users list [--role branch]
#   List all users with role, branch and active status.
# - python -m flask users create --username clerk --password "Password123!" --role branch --branch-id 1
#   Create a user (prompts if options are omitted).
#
# Delivery repair:
# - python -m flask deliveries reconcile
#   Bring request statuses back in line with their deliveries.
#
# Maintenance:
# - python -m flask maintenance cleanup-sessions
#   Delete expired/revoked sessions older than 30 days.

import click
from flask.cli import with_appcontext

from .errors import DeliveryHubError
from .extensions import db
from .models import Branch, User
from .models.auth import ROLES
from .services import delivery_service, session_service
from .services.auth_service import create_user, list_users as query_users
from .services.branch_service import create_branch


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init')
@click.option('--branch', 'branch_name', default='Main Branch', help='Default branch name')
@with_appcontext
def init_system(branch_name):
    """
    Initialize the delivery hub: schema, a default branch and default users.

    Creates:
    - All tables (if missing)
    - Default branch (if no branch exists)
    - Users: admin, warehouse, branch (bound to the default branch)
    - All passwords default to: "Password123!"

    SECURITY: Change passwords immediately in production!
    """
    click.echo("START Initializing delivery hub...")

    db.create_all()

    branch = db.session.query(Branch).order_by(Branch.id).first()
    if not branch:
        branch = create_branch(branch_name)
        click.echo(f"PASS Created default branch: {branch.name} (ID: {branch.id})")
    else:
        click.echo(f"PASS Using existing branch: {branch.name} (ID: {branch.id})")

    click.echo("\nUSERS Creating default users...")
    default_password = "Password123!"
    default_users = [
        ("admin", "Administrator", "admin", None),
        ("warehouse", "Warehouse Staff", "warehouse", None),
        ("branch", "Branch Staff", "branch", branch.id),
    ]

    for username, full_name, role, branch_id in default_users:
        if db.session.query(User).filter_by(username=username).first():
            click.echo(f"WARN  User '{username}' already exists, skipping...")
            continue
        try:
            create_user(
                username=username,
                password=default_password,
                role=role,
                branch_id=branch_id,
                full_name=full_name,
            )
            click.echo(f"PASS Created user: {username} with role '{role}'")
        except DeliveryHubError as e:
            click.echo(f"FAIL Failed to create user '{username}': {e.message}")

    click.echo("\nDONE Delivery hub initialized.")
    click.echo("\nDefault Credentials (CHANGE IN PRODUCTION!):")
    click.echo("   admin / warehouse / branch -> Password123!")


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
@click.option('--username', prompt=True, help='Username')
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True, help='Password')
@click.option('--role', type=click.Choice(list(ROLES)), prompt=True, help='Role')
@click.option('--branch-id', type=int, default=None, help='Branch ID (required for branch users)')
@click.option('--full-name', default=None, help='Display name')
@click.option('--email', default=None, help='Email address')
@with_appcontext
def create_user_cli(username, password, role, branch_id, full_name, email):
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
        user = create_user(
            username=username,
            password=password,
            role=role,
            branch_id=branch_id,
            full_name=full_name,
            email=email,
        )
    except DeliveryHubError as e:
        raise click.ClickException(e.message)

    click.echo(f"PASS Created user '{user.username}' (ID: {user.id}) with role '{user.role}'")


@users_group.command('list')
@click.option('--role', type=click.Choice(list(ROLES)), default=None, help='Filter by role')
@with_appcontext
def list_users(role):
    """List all users with role, branch and active status."""
    users = query_users(role=role)

    if not users:
        click.echo("No users found.")
        return

    click.echo("\n" + "="*80)
    click.echo(f"{'ID':<5} {'Username':<20} {'Role':<10} {'Branch':<25} {'Active'}")
    click.echo("="*80)

    for user in users:
        branch_name = user.branch.name if user.branch else '-'
        active_str = "Yes" if user.is_active else "No"
        click.echo(f"{user.id:<5} {user.username:<20} {user.role:<10} {branch_name:<25} {active_str}")

    click.echo("="*80 + "\n")


@click.group('deliveries')
def deliveries_group():
    """Delivery repair commands."""


@deliveries_group.command('reconcile')
@with_appcontext
def reconcile_deliveries():
    """
    Re-derive bound request statuses from their deliveries.

    Status propagation from a delivery to its request is best-effort; this
    repairs requests left behind when it failed.
    """
    fixed = delivery_service.reconcile_request_statuses()
    click.echo(f"PASS Reconciled {fixed} request(s)")


@click.group('maintenance')
def maintenance_group():
    """Maintenance commands."""


@maintenance_group.command('cleanup-sessions')
@with_appcontext
def cleanup_sessions():
    """Delete expired and revoked sessions older than 30 days."""
    deleted = session_service.cleanup_expired_sessions()
    click.echo(f"PASS Deleted {deleted} session(s)")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(users_group)
    app.cli.add_command(deliveries_group)
    app.cli.add_command(maintenance_group)
