# Overview: Flask CLI command groups for bootstrap, minting and maintenance.

# backend/mocards/cli.py
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
# Cards:
# - python -m flask cards generate --count 10000 --page-size 100 --requested-by admin
#   Mint cards as consecutive batches of at most page-size cards.
# - python -m flask cards lookup MOC-1760000000000-007
#   Read-only card + perk view (no passcodes).
# - python -m flask cards expire [--as-of 2026-01-01T00:00:00Z]
#   Persist activated -> expired for cards past their expiry.
#
# Clinics:
# - python -m flask clinics create --name "Smile Dental" --plan professional
#   Register a clinic; prints the temporary password once.
# - python -m flask clinics list

import click
from flask.cli import with_appcontext

from .extensions import db
from .services import batch_service, clinic_service, lifecycle_service, lookup_service
from .services.errors import CardError
from .time_utils import parse_iso_datetime, utcnow


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init')
@with_appcontext
def init_system():
    """Create all tables that do not exist yet."""
    click.echo("BUILD  Creating tables...")
    db.create_all()
    click.echo("PASS Database ready.")


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


@click.group('cards')
def cards_group():
    """Card minting, lookup and maintenance."""


@cards_group.command('generate')
@click.option('--count', type=int, required=True, help='Total number of cards to mint')
@click.option('--page-size', type=int, default=None, help='Cards per batch (default CARD_BATCH_PAGE_SIZE)')
@click.option('--requested-by', default='cli', show_default=True, help='Admin identifier recorded on the batches')
@click.option('--prefix', default=None, help='Control number prefix (default CARD_CONTROL_PREFIX)')
@with_appcontext
def generate_cards(count, page_size, requested_by, prefix):
    """Mint cards in batches."""
    try:
        batches = batch_service.generate_batches(
            requested_by,
            count,
            page_size=page_size,
            prefix=prefix,
        )
    except CardError as exc:
        raise click.ClickException(f"{exc.code}: {exc.message} {exc.details}")

    for batch in batches:
        click.echo(f"PASS {batch.batch_number}: {batch.cards_generated}/{batch.total_cards} cards ({batch.status})")
    click.echo(f"PASS Minted {sum(b.cards_generated for b in batches)} cards in {len(batches)} batches.")


@cards_group.command('lookup')
@click.argument('control_number')
@with_appcontext
def lookup_card(control_number):
    """Show a card and its perks."""
    try:
        card = lookup_service.lookup_card(control_number)
    except CardError as exc:
        raise click.ClickException(exc.message)

    click.echo(f"{card['control_number']}  status={card['status']}  clinic={card['assigned_clinic_id'] or '-'}")
    click.echo(f"  activated={card['activated_at'] or '-'}  expires={card['expires_at'] or '-'}")
    for perk in card["perks"]:
        mark = "x" if perk["claimed"] else " "
        click.echo(f"  [{mark}] {perk['label']}")
    click.echo(f"  {card['perks_remaining']} of {len(card['perks'])} perks remaining")


@cards_group.command('expire')
@click.option('--as-of', 'as_of', default=None, help='ISO-8601 timestamp (default: now, UTC)')
@with_appcontext
def expire_cards(as_of):
    """Persist expiry for activated cards past expires_at."""
    try:
        now = parse_iso_datetime(as_of) if as_of else utcnow()
    except ValueError:
        raise click.BadParameter("must be an ISO-8601 datetime", param_hint="--as-of")
    count = lifecycle_service.expire_due_cards(now=now)
    click.echo(f"PASS Expired {count} card(s) as of {now.isoformat()}Z")


@click.group('clinics')
def clinics_group():
    """Clinic onboarding and inspection."""


@clinics_group.command('create')
@click.option('--name', required=True, help='Clinic name')
@click.option('--plan', default='basic', show_default=True,
              type=click.Choice(sorted(clinic_service.SUBSCRIPTION_PLANS)), help='Subscription plan')
@click.option('--owner', default=None, help='Owner name')
@click.option('--email', default=None, help='Contact email')
@click.option('--phone', default=None, help='Contact phone')
@with_appcontext
def create_clinic(name, plan, owner, email, phone):
    """Register a clinic and print its credentials."""
    try:
        clinic, credentials = clinic_service.create_clinic(
            name,
            subscription_plan=plan,
            owner_name=owner,
            contact_email=email,
            contact_phone=phone,
        )
    except CardError as exc:
        raise click.ClickException(exc.message)

    click.echo(f"PASS Created clinic {clinic.clinic_name} (ID: {clinic.id})")
    click.echo(f"  code:     {credentials.clinic_code}")
    click.echo(f"  password: {credentials.password}")
    click.echo("WARN The password is shown only once.")


@clinics_group.command('list')
@with_appcontext
def list_clinics():
    """List all clinics."""
    clinics = clinic_service.list_clinics()
    if not clinics:
        click.echo("No clinics found.")
        return

    click.echo("\n" + "="*90)
    click.echo(f"{'ID':<5} {'Code':<10} {'Name':<30} {'Plan':<14} {'Limit':<7} {'Active'}")
    click.echo("="*90)
    for clinic in clinics:
        active_str = "Yes" if clinic.is_active else "No"
        click.echo(
            f"{clinic.id:<5} {clinic.clinic_code:<10} {clinic.clinic_name:<30} "
            f"{clinic.subscription_plan:<14} {clinic.monthly_card_limit:<7} {active_str}"
        )
    click.echo("="*90 + "\n")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(cards_group)
    app.cli.add_command(clinics_group)
