# Overview: Flask CLI command groups for bootstrap, inspection, and maintenance.

# backend/shoppos/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP (PowerShell: $env:FLASK_APP="shoppos:create_app").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init
#   Create tables and seed the default plans (idempotent).
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Plans:
# - python -m flask plans seed
#   Insert missing default plans (starter, professional, enterprise).
# - python -m flask plans list
#
# Tenant management (MULTI-TENANT):
# - python -m flask tenants create --name "Corner Shop" --owner-email owner@shop.local [--plan starter]
# - python -m flask tenants list
# - python -m flask tenants set-status 3 suspended --reason "Unpaid invoice"
# - python -m flask tenants recount [--tenant-id 3]
#   Rebuild usage counters from actual rows.
#
# Users:
# - python -m flask users create --name "Ann" --email ann@shop.local --password "Password123!" [--role owner]
# - python -m flask users create-superadmin --name "Ops" --email ops@shop.local --password "Password123!"

import click
from flask.cli import with_appcontext

from .errors import PosError
from .extensions import db
from .models import Tenant, User
from .models.tenancy import TENANT_STATUSES
from .services import auth_service, subscription_service, tenant_service, usage_service


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init')
@with_appcontext
def init_system():
    """
    Initialize ShopPOS: create tables and seed the default plans.

    Safe to run repeatedly; existing rows are left alone.
    """
    click.echo("START Initializing ShopPOS...")
    db.create_all()
    created = subscription_service.seed_default_plans()
    click.echo(f"PASS Tables ready, {len(created)} plan(s) seeded")
    click.echo("\nNext: flask users create ... and flask tenants create ...")


@system_group.command('reset-db')
@click.option('--yes', is_flag=True, help='Confirm destructive reset')
@with_appcontext
def reset_db(yes):
    """DEV/TEST only: drop and recreate all tables."""
    if not yes:
        click.echo("FAIL Refusing to reset without --yes")
        raise SystemExit(1)
    db.drop_all()
    db.create_all()
    click.echo("PASS Database reset")


@click.group('plans')
def plans_group():
    """Subscription plan catalogue."""


@plans_group.command('seed')
@with_appcontext
def seed_plans():
    created = subscription_service.seed_default_plans()
    if not created:
        click.echo("PASS All default plans already present")
        return
    for plan in created:
        click.echo(f"PASS Created plan: {plan.slug}")


@plans_group.command('list')
@click.option('--all', 'show_all', is_flag=True, help='Include inactive plans')
@with_appcontext
def list_plans(show_all):
    plans = subscription_service.list_plans(active_only=not show_all)
    if not plans:
        click.echo("No plans found. Run: flask plans seed")
        return

    click.echo("\n" + "="*80)
    click.echo(f"{'ID':<5} {'Slug':<15} {'Monthly':<10} {'Users':<7} {'Products':<10} {'Customers':<10} {'Tx/month'}")
    click.echo("="*80)
    for plan in plans:
        click.echo(
            f"{plan.id:<5} {plan.slug:<15} {plan.monthly_price_cents / 100:<10.2f} "
            f"{plan.max_users:<7} {plan.max_products:<10} {plan.max_customers:<10} "
            f"{plan.max_transactions_per_month}"
        )
    click.echo("="*80 + "\n")


@click.group('tenants')
def tenants_group():
    """Tenant management commands."""


@tenants_group.command('create')
@click.option('--name', required=True, help='Tenant (shop) name')
@click.option('--owner-email', required=True, help='Email of an existing user who will own the tenant')
@click.option('--plan', 'plan_slug', default=None, help='Plan slug (default: cheapest active plan)')
@with_appcontext
def create_tenant_cli(name, owner_email, plan_slug):
    owner = db.session.query(User).filter_by(email=auth_service.normalize_email(owner_email)).first()
    if owner is None:
        click.echo(f"FAIL No user with email {owner_email}")
        raise SystemExit(1)

    try:
        tenant = tenant_service.create_tenant(name, owner, plan_slug=plan_slug)
    except PosError as e:
        click.echo(f"FAIL {e.message}")
        raise SystemExit(1)

    click.echo(f"PASS Created tenant: {tenant.name} (ID: {tenant.id}, Slug: {tenant.slug}, Status: {tenant.status})")


@tenants_group.command('list')
@with_appcontext
def list_tenants():
    tenants = db.session.query(Tenant).order_by(Tenant.id).all()
    if not tenants:
        click.echo("No tenants found.")
        return

    click.echo("\n" + "="*90)
    click.echo(f"{'ID':<5} {'Name':<28} {'Slug':<20} {'Status':<11} {'Users':<6} {'Products':<9} {'Sales'}")
    click.echo("="*90)
    for t in tenants:
        click.echo(
            f"{t.id:<5} {t.name[:27]:<28} {t.slug[:19]:<20} {t.status:<11} "
            f"{t.total_users:<6} {t.total_products:<9} {t.total_sales}"
        )
    click.echo("="*90 + "\n")


@tenants_group.command('set-status')
@click.argument('tenant_id', type=int)
@click.argument('status', type=click.Choice(TENANT_STATUSES))
@click.option('--reason', default=None, help='Suspension reason')
@with_appcontext
def set_tenant_status(tenant_id, status, reason):
    tenant = db.session.get(Tenant, tenant_id)
    if tenant is None:
        click.echo(f"FAIL Tenant {tenant_id} not found")
        raise SystemExit(1)
    tenant_service.set_status(tenant, status, reason=reason)
    click.echo(f"PASS Tenant {tenant.id} is now {tenant.status}")


@tenants_group.command('recount')
@click.option('--tenant-id', type=int, default=None, help='Only this tenant')
@with_appcontext
def recount(tenant_id):
    """Rebuild usage counters from actual rows."""
    changes = usage_service.recount_usage(tenant_id=tenant_id)
    if not changes:
        click.echo("PASS Usage counters are consistent")
        return
    for change in changes:
        click.echo(f"WARN Tenant {change['tenant_id']}: {change['before']} -> {change['after']}")
    click.echo(f"PASS Repaired {len(changes)} tenant(s)")


@click.group('users')
def users_group():
    """User bootstrap commands."""


def _create_user(name, email, password, role):
    try:
        user = auth_service.create_user(name=name, email=email, password=password, role=role)
    except PosError as e:
        click.echo(f"FAIL {e.message}")
        raise SystemExit(1)
    click.echo(f"PASS Created user: {user.email} (ID: {user.id}, Role: {user.role})")


@users_group.command('create')
@click.option('--name', prompt=True)
@click.option('--email', prompt=True)
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True)
@click.option('--role', default='owner', type=click.Choice(['owner', 'admin', 'manager', 'cashier']))
@with_appcontext
def create_user_cli(name, email, password, role):
    """Create a user (prompts if options are omitted)."""
    _create_user(name, email, password, role)


@users_group.command('create-superadmin')
@click.option('--name', prompt=True)
@click.option('--email', prompt=True)
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True)
@with_appcontext
def create_superadmin_cli(name, email, password):
    """Create a platform operator that bypasses tenant membership checks."""
    _create_user(name, email, password, 'superadmin')


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(plans_group)
    app.cli.add_command(tenants_group)
    app.cli.add_command(users_group)
