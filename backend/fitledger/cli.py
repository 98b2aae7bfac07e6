# Overview: Flask CLI command groups for bootstrap, ledger audits, and webhook operations.

# backend/fitledger/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to fitledger (PowerShell: $env:FLASK_APP="fitledger").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap:
# - python -m flask system init-db
#   Create all tables that don't exist yet (idempotent).
#
# Tenant management:
# - python -m flask tenants list
#   List all tenants.
# - python -m flask tenants create --name "Iron Temple" --code "IRON"
#   Create a new tenant.
# - python -m flask branches create --tenant-id 1 --name "Downtown" --code "DT"
#   Add a branch to a tenant.
#
# Ledger audits:
# - python -m flask ledger recompute 42
#   Re-derive paid/balance/status of invoice 42 from its payment and refund history.
#
# Webhook operations:
# - python -m flask webhooks failed --limit 20
#   List gateway events that failed or were not applied.
# - python -m flask webhooks replay 17
#   Re-dispatch stored webhook event 17.
#
# Permission inspection:
# - python -m flask perms list --module invoices
#   List catalog permissions.
# - python -m flask perms show-role front_desk
#   Show the default grants of a role.

import click
from flask.cli import with_appcontext

from .errors import ServiceError
from .extensions import db
from .models import Branch, Tenant
from .permissions import DEFAULT_ROLE_PERMISSIONS, PERMISSION_DEFINITIONS
from .services import reconciliation_service, webhook_service


@click.group('system')
def system_group():
    """System bootstrap commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create missing tables."""
    db.create_all()
    click.echo("PASS Database tables created.")


# =============================================================================
# TENANT MANAGEMENT COMMANDS
# =============================================================================

@click.group('tenants')
def tenants_group():
    """Tenant management commands."""


@tenants_group.command('list')
@with_appcontext
def list_tenants():
    """List all tenants."""
    tenants = db.session.query(Tenant).order_by(Tenant.id).all()

    if not tenants:
        click.echo("No tenants found.")
        return

    click.echo("\n" + "="*70)
    click.echo(f"{'ID':<5} {'Name':<30} {'Code':<15} {'Active':<8} {'Branches'}")
    click.echo("="*70)

    for tenant in tenants:
        branch_count = db.session.query(Branch).filter_by(tenant_id=tenant.id).count()
        active_str = "Yes" if tenant.is_active else "No"
        click.echo(f"{tenant.id:<5} {tenant.name:<30} {tenant.code or '-':<15} {active_str:<8} {branch_count}")

    click.echo("="*70 + "\n")


@tenants_group.command('create')
@click.option('--name', required=True, help='Tenant name')
@click.option('--code', required=True, help='Short code (unique)')
@with_appcontext
def create_tenant_cli(name, code):
    """Create a new tenant."""
    existing = db.session.query(Tenant).filter_by(code=code).first()
    if existing:
        click.echo(f"FAIL Tenant with code '{code}' already exists")
        return

    tenant = Tenant(name=name, code=code, is_active=True)
    db.session.add(tenant)
    db.session.commit()

    click.echo(f"PASS Created tenant: {tenant.name} (ID: {tenant.id}, Code: {tenant.code})")


@click.group('branches')
def branches_group():
    """Branch management commands."""


@branches_group.command('create')
@click.option('--tenant-id', type=int, required=True, help='Tenant ID')
@click.option('--name', required=True, help='Branch name')
@click.option('--code', required=True, help='Branch code (unique within tenant)')
@with_appcontext
def create_branch_cli(tenant_id, name, code):
    """Add a branch to a tenant."""
    tenant = db.session.get(Tenant, tenant_id)
    if not tenant:
        click.echo(f"FAIL Tenant ID {tenant_id} not found")
        return

    existing = db.session.query(Branch).filter(
        Branch.tenant_id == tenant_id,
        (Branch.name == name) | (Branch.code == code),
    ).first()
    if existing:
        click.echo(f"FAIL Branch '{name}' or code '{code}' already exists in this tenant")
        return

    branch = Branch(tenant_id=tenant_id, name=name, code=code)
    db.session.add(branch)
    db.session.commit()

    click.echo(f"PASS Created branch: {branch.name} (ID: {branch.id}) in tenant '{tenant.name}'")


# =============================================================================
# LEDGER COMMANDS
# =============================================================================

@click.group('ledger')
def ledger_group():
    """Invoice ledger audit commands."""


@ledger_group.command('recompute')
@click.argument('invoice_id', type=int)
@with_appcontext
def recompute_invoice_cli(invoice_id):
    """Recompute one invoice's totals from its history."""
    try:
        invoice, before = reconciliation_service.reconcile_invoice(invoice_id)
    except ValueError as e:
        click.echo(f"FAIL {e}")
        return

    after = {
        "paid_amount": str(invoice.paid_amount),
        "balance_amount": str(invoice.balance_amount),
        "status": invoice.status,
    }
    changed = {k for k in after if str(before[k]) != str(after[k])}

    click.echo(f"Invoice {invoice.invoice_number} (ID: {invoice.id})")
    for key in ("paid_amount", "balance_amount", "status"):
        marker = "*" if key in changed else " "
        click.echo(f"  {marker} {key:<16} {before[key]} -> {after[key]}")
    click.echo("PASS No drift." if not changed else f"WARN Corrected {len(changed)} field(s).")


# =============================================================================
# WEBHOOK COMMANDS
# =============================================================================

@click.group('webhooks')
def webhooks_group():
    """Payment gateway webhook operations."""


@webhooks_group.command('failed')
@click.option('--limit', type=int, default=50, show_default=True)
@with_appcontext
def list_failed_webhooks(limit):
    """List failed or unapplied webhook events."""
    events = webhook_service.list_failed_events(limit=limit)

    if not events:
        click.echo("No failed webhook events.")
        return

    for event in events:
        state = "PROCESSED" if event.is_processed else "PENDING"
        click.echo(
            f"[{event.id}] {event.gateway} {event.event_type} id={event.event_id or '-'} "
            f"attempts={event.attempt_count} {state} error={event.error_message or '-'}"
        )


@webhooks_group.command('replay')
@click.argument('event_id', type=int)
@with_appcontext
def replay_webhook_cli(event_id):
    """Re-dispatch a stored webhook event."""
    try:
        result = webhook_service.replay_webhook_event(event_id)
    except ServiceError as e:
        click.echo(f"FAIL {e.message}")
        return

    if result.success:
        click.echo(f"PASS {result.message}")
    else:
        click.echo(f"FAIL {result.error}")


# =============================================================================
# PERMISSION COMMANDS
# =============================================================================

@click.group('perms')
def perms_group():
    """Permission inspection commands."""


@perms_group.command('list')
@click.option('--module', 'module_name', help='Filter by module')
def list_permissions(module_name):
    """List catalog permissions."""
    for code, name, description, module in PERMISSION_DEFINITIONS:
        if module_name and module != module_name:
            continue
        click.echo(f"{code:<24} {name:<28} {description}")


@perms_group.command('show-role')
@click.argument('role_name')
def show_role(role_name):
    """Show the default grants of a role."""
    grants = DEFAULT_ROLE_PERMISSIONS.get(role_name)
    if grants is None:
        click.echo(f"FAIL Unknown role '{role_name}'. Known: {', '.join(sorted(DEFAULT_ROLE_PERMISSIONS))}")
        return
    for grant in grants:
        click.echo(grant)


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(tenants_group)
    app.cli.add_command(branches_group)
    app.cli.add_command(ledger_group)
    app.cli.add_command(webhooks_group)
    app.cli.add_command(perms_group)
