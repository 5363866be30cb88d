# Overview: Flask CLI command groups for bootstrap and rental/order inspection.

# backend/atelier/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to atelier (PowerShell: $env:FLASK_APP="atelier").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init-db [--demo]
#   Create all tables (idempotent); --demo adds a location, a client and a few garments.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Rental calendar:
# - python -m flask rentals calendar 5
#   Print the blocked windows and days of garment 5.
# - python -m flask rentals check 5 --delivery-date 2026-05-01 --days 3
#   Check whether garment 5 can be rented for a window.
#
# Order inspection:
# - python -m flask orders show 12
#   Print an order with its items, payments, custodies and finish blockers.

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import Client, Cloth, Inventory
from .services import order_service, rental_service
from .services.payment_service import get_payment_summary
from .validation import DomainError
from .time_utils import to_iso_date


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init-db')
@click.option('--demo', is_flag=True, help='Also create a demo location, client and garments')
@with_appcontext
def init_db(demo):
    """Create all tables (safe to re-run)."""
    click.echo("BUILD  Creating tables...")
    db.create_all()

    if demo:
        inventory = db.session.query(Inventory).filter_by(name="Main Branch").first()
        if not inventory:
            inventory = Inventory(name="Main Branch", entity_type="branch")
            db.session.add(inventory)
            db.session.flush()
            click.echo(f"PASS Created inventory: {inventory.name} (ID: {inventory.id})")
        else:
            click.echo(f"PASS Using existing inventory: {inventory.name} (ID: {inventory.id})")

        if not db.session.query(Client).filter_by(name="Walk-in Client").first():
            client = Client(name="Walk-in Client", phone="000")
            db.session.add(client)
            db.session.flush()
            click.echo(f"PASS Created client: {client.name} (ID: {client.id})")

        for code, name in [("DR-001", "Evening dress"), ("DR-002", "Wedding dress"), ("SU-001", "Black suit")]:
            if db.session.query(Cloth).filter_by(code=code).first():
                click.echo(f"WARN  Cloth '{code}' already exists, skipping...")
                continue
            db.session.add(Cloth(code=code, name=name, inventory_id=inventory.id))
            click.echo(f"PASS Created cloth: {code} ({name})")

        db.session.commit()

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

    click.echo("PASS Database reset complete. Run 'python -m flask system init-db --demo' for sample data.")


@click.group('rentals')
def rentals_group():
    """Rental calendar inspection."""


@rentals_group.command('calendar')
@click.argument('cloth_id', type=int)
@with_appcontext
def rentals_calendar(cloth_id):
    """Print the blocked windows and days of a garment."""
    try:
        report = rental_service.unavailability_report(cloth_id)
    except DomainError as e:
        raise click.ClickException(e.message)

    click.echo(f"Cloth {report['cloth_code']} (ID: {report['cloth_id']}) status={report['cloth_status']}")
    click.echo(f"Buffer days: {report['buffer_days']}")
    if not report["unavailable_ranges"]:
        click.echo("No bookings. Available now.")
        return

    click.echo("\n" + "=" * 60)
    click.echo(f"{'Rent':<8} {'Order':<8} {'Delivery':<12} {'Return':<12} {'Blocked'}")
    click.echo("=" * 60)
    for w in report["unavailable_ranges"]:
        click.echo(
            f"{w['rent_id']:<8} {w['order_id']:<8} {w['delivery_date']:<12} {w['return_date']:<12} "
            f"{w['start']}..{w['end']}"
        )
    click.echo(f"\n{len(report['unavailable_days'])} blocked day(s); available from {report['available_from']}")


@rentals_group.command('check')
@click.argument('cloth_id', type=int)
@click.option('--delivery-date', required=True, help='Delivery date (YYYY-MM-DD)')
@click.option('--days', 'days_of_rent', type=int, required=True, help='Days of rent')
@click.option('--exclude-order-id', type=int, default=None, help='Ignore bookings of this order')
@with_appcontext
def rentals_check(cloth_id, delivery_date, days_of_rent, exclude_order_id):
    """Check whether a garment can be rented for a window."""
    if db.session.get(Cloth, cloth_id) is None:
        raise click.ClickException(f"Cloth {cloth_id} not found")
    try:
        conflicts = rental_service.find_conflicts(
            cloth_id, delivery_date, days_of_rent, exclude_order_id=exclude_order_id
        )
    except DomainError as e:
        raise click.ClickException(e.message)

    if not conflicts:
        click.echo(f"PASS Cloth {cloth_id} is available from {delivery_date} for {days_of_rent} day(s)")
        return

    click.echo(f"FAIL Cloth {cloth_id} is not available from {delivery_date} for {days_of_rent} day(s)")
    for w in conflicts:
        click.echo(f"   - order {w.order_id}: blocked {to_iso_date(w.start)}..{to_iso_date(w.end)}")


@click.group('orders')
def orders_group():
    """Order inspection."""


@orders_group.command('show')
@click.argument('order_id', type=int)
@with_appcontext
def orders_show(order_id):
    """Print an order snapshot."""
    try:
        order = order_service.get_order(order_id)
        summary = get_payment_summary(order_id)
    except DomainError as e:
        raise click.ClickException(e.message)

    click.echo(f"Order {order.id} [{order.status}] type={order.order_type} client={order.client_id}")
    click.echo(
        f"Total: {order.total_price_cents}  Paid: {summary['paid_cents']}  "
        f"Remaining: {summary['remaining_cents']}  Fees paid: {summary['fee_paid_cents']}"
    )

    click.echo("\nItems:")
    for item in order.items:
        window = ""
        if item.delivery_date:
            window = f" {to_iso_date(item.delivery_date)}..{to_iso_date(item.return_date)}"
        click.echo(f"   - cloth {item.cloth_id} {item.type} [{item.status}] {item.line_total_cents}{window}")

    click.echo("\nPayments:")
    for p in order.payments:
        click.echo(f"   - #{p.id} {p.payment_type} {p.amount_cents} [{p.status}]")

    click.echo("\nCustodies:")
    for c in order.custodies:
        click.echo(f"   - #{c.id} {c.type} '{c.description}' [{c.status}] proofs={len(c.returns)}")

    if order.status == "delivered":
        blockers = order_service.finish_blockers(order)
        if blockers:
            click.echo("\nCannot finish yet:")
            for reason in blockers:
                click.echo(f"   - {reason}")
        else:
            click.echo("\nReady to finish.")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(rentals_group)
    app.cli.add_command(orders_group)
