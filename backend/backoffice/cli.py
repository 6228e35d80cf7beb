# Overview: Flask CLI command groups for bootstrap and lottery maintenance.

# backend/backoffice/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init-db
#   Create all tables that do not exist yet (non-destructive).
# - python -m flask system init [--org "Org Name"] [--org-code DEFAULT]
#   Idempotent bootstrap: default organization, store, manager and cashier users.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Lottery setup:
# - python -m flask lottery create-game --code 0042 --name "Lucky 7s" --price-cents 500 --tickets-per-pack 150 [--store-id 1]
#   Create a global game, or a store-scoped one with --store-id.
# - python -m flask lottery create-bin --store-id 1 --name "Bin 1" [--location "Counter"]
#   Append a bin after the store's last bin.
# - python -m flask lottery packs --store-id 1 [--status ACTIVE]
#   List packs of a store.
#
# Maintenance:
# - python -m flask lottery expire-pending-closes
#   Return days whose staged close has expired to OPEN.

import click
from flask.cli import with_appcontext

from .errors import AppError
from .extensions import db
from .models import Organization, Store, User
from .services import bin_service, day_close_service, pack_service


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create missing tables."""
    db.create_all()
    click.echo("PASS Tables created.")


@system_group.command('init')
@click.option('--org', 'org_name', default='Default Organization', help='Organization name')
@click.option('--org-code', default='DEFAULT', help='Organization code')
@with_appcontext
def init_system(org_name, org_code):
    """
    Initialize a default organization, store and staff.

    Creates (when missing):
    - Default organization
    - Default store within the organization
    - Users: manager, cashier (attribution only, no credentials)
    """
    click.echo("START Initializing lottery back office...")

    org = db.session.query(Organization).filter_by(code=org_code).first()
    if not org:
        org = Organization(name=org_name, code=org_code, is_active=True)
        db.session.add(org)
        db.session.commit()
        click.echo(f"PASS Created organization: {org.name} (ID: {org.id}, Code: {org.code})")
    else:
        click.echo(f"PASS Using existing organization: {org.name} (ID: {org.id})")

    store = db.session.query(Store).filter_by(org_id=org.id).first()
    if not store:
        store = Store(org_id=org.id, name="Main Store")
        db.session.add(store)
        db.session.commit()
        click.echo(f"PASS Created default store: {store.name} (ID: {store.id})")
    else:
        click.echo(f"PASS Using existing store: {store.name} (ID: {store.id})")

    for username, display_name in (("manager", "Store Manager"), ("cashier", "Cashier")):
        existing = db.session.query(User).filter_by(org_id=org.id, username=username).first()
        if existing:
            click.echo(f"WARN  User '{username}' already exists in org, skipping...")
            continue
        user = User(org_id=org.id, store_id=store.id, username=username, display_name=display_name)
        db.session.add(user)
        db.session.commit()
        click.echo(f"PASS Created user: {username} (ID: {user.id})")

    click.echo("DONE Initialized.")


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


@click.group('lottery')
def lottery_group():
    """Lottery setup and maintenance commands."""


@lottery_group.command('create-game')
@click.option('--code', 'game_code', required=True, help='4-digit game code')
@click.option('--name', required=True, help='Game name')
@click.option('--price-cents', type=int, required=True, help='Ticket price in cents')
@click.option('--tickets-per-pack', type=int, required=True, help='Tickets in one pack')
@click.option('--store-id', type=int, default=None, help='Store for a store-scoped game (omit for global)')
@with_appcontext
def create_game_cli(game_code, name, price_cents, tickets_per_pack, store_id):
    """Create a lottery game definition."""
    try:
        game = pack_service.create_game(
            game_code=game_code,
            name=name,
            price_cents=price_cents,
            tickets_per_pack=tickets_per_pack,
            store_id=store_id,
        )
    except AppError as e:
        raise click.ClickException(f"{e.code}: {e.message}")

    scope = f"store {game.store_id}" if game.store_id else "global"
    click.echo(f"PASS Created game {game.game_code} '{game.name}' ({scope}, ID: {game.id})")


@lottery_group.command('create-bin')
@click.option('--store-id', type=int, required=True, help='Store ID')
@click.option('--name', required=True, help='Bin name')
@click.option('--location', default=None, help='Where the bin is')
@with_appcontext
def create_bin_cli(store_id, name, location):
    """Create a lottery bin."""
    try:
        lottery_bin = bin_service.create_bin(store_id, name=name, location=location)
    except AppError as e:
        raise click.ClickException(f"{e.code}: {e.message}")

    click.echo(f"PASS Created bin #{lottery_bin.bin_number} '{lottery_bin.name}' (ID: {lottery_bin.id})")


@lottery_group.command('packs')
@click.option('--store-id', type=int, required=True, help='Store ID')
@click.option('--status', default=None, help='RECEIVED, ACTIVE, DEPLETED or RETURNED')
@with_appcontext
def list_packs_cli(store_id, status):
    """List packs of a store."""
    try:
        packs = pack_service.list_packs(store_id, status=status)
    except AppError as e:
        raise click.ClickException(f"{e.code}: {e.message}")

    if not packs:
        click.echo("No packs found.")
        return
    for pack in packs:
        bin_label = pack.current_bin_id if pack.current_bin_id is not None else "-"
        click.echo(
            f"{pack.id:>6}  game {pack.game_id:<5} pack {pack.pack_number}  "
            f"{pack.serial_start}-{pack.serial_end}  {pack.status:<9} bin {bin_label}"
        )


@lottery_group.command('expire-pending-closes')
@with_appcontext
def expire_pending_closes_cli():
    """Return days whose staged close has expired to OPEN."""
    count = day_close_service.expire_pending_closes()
    click.echo(f"PASS Expired {count} pending day close(s).")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(lottery_group)
