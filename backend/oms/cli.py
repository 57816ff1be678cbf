# Overview: Flask CLI command groups for bootstrap, inspection, and daily inventory jobs.

# backend/oms/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init-db
#   Create all tables that do not exist yet (use `flask db upgrade` for managed schemas).
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
# - python -m flask system jobs
#   List the registered background jobs and their next run time.
#
# Order inspection/recovery:
# - python -m flask orders show 42
#   Print an order with its items, derived state and ledger movements.
# - python -m flask orders list [--all] [--limit 50]
#   List orders: today first, then upcoming, then past.
# - python -m flask orders reconcile [--date 2025-01-31]
#   Manually run the deferred-order sweep (defaults to today, business timezone).
#
# Inventory:
# - python -m flask inventory open-day [--date 2025-01-31]
#   Create the day's snapshots for every active product (idempotent).
# - python -m flask inventory stock 7 [--date 2025-01-31]
#   Show a product's snapshot and ledger balance.
# - python -m flask inventory low-stock [--date 2025-01-31]
#   List products at or below their minimum stock.

import click
from flask import current_app
from flask.cli import with_appcontext

from .extensions import db
from .scheduler import get_job_status
from .services import ledger_service, order_service, reconciliation_service
from .time_utils import get_clock, parse_iso_date


def _date_option(value):
    try:
        return parse_iso_date(value)
    except ValueError:
        raise click.BadParameter(f"invalid date {value!r}, expected YYYY-MM-DD")


def _format_cents(value):
    return f"{(value or 0) / 100:,.2f}"


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create missing tables from the model metadata."""
    from . import models  # noqa: F401

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


@system_group.command('jobs')
@with_appcontext
def list_jobs():
    """List background jobs registered on this app."""
    jobs = get_job_status(current_app)
    if not jobs:
        click.echo("Scheduler not initialized (set SCHEDULER_ENABLED=true).")
        return
    for job in jobs:
        click.echo(f"{job['id']:<30} {job['next_run_time'] or '-':<30} {job['trigger']}")


@click.group('orders')
def orders_group():
    """Order inspection and recovery commands."""


@orders_group.command('show')
@click.argument('order_id', type=int)
@with_appcontext
def show_order(order_id):
    """Print one order with its items and ledger movements."""
    try:
        order = order_service.get_order(order_id)
    except order_service.OrderNotFoundError as e:
        raise click.ClickException(str(e))

    click.echo("\n" + "="*80)
    click.echo(f"Order {order.order_number}  (ID: {order.id})  state: {order.state}")
    click.echo("="*80)
    click.echo(f"Invoice:   {order.invoice_number or '-'}"
               + (f"  (previously {order.previous_invoice_number})" if order.previous_invoice_number else ""))
    click.echo(f"Customer:  {order.customer_code} - {order.customer_name}")
    click.echo(f"Dates:     order {order.order_date.isoformat()}  invoice {order.invoice_date.isoformat()}")
    click.echo(f"Totals:    subtotal {_format_cents(order.subtotal_cents)}  "
               f"tax {_format_cents(order.tax_amount_cents)}  total {_format_cents(order.grand_total_cents)}")

    click.echo(f"\n{'#':<4} {'Code':<15} {'Name':<30} {'Qty':>6} {'Price':>12} {'Total':>14}")
    for item in order.items:
        click.echo(
            f"{item.line_number:<4} {item.product_code:<15} {item.product_name[:30]:<30} "
            f"{item.quantity:>6} {_format_cents(item.unit_price_cents):>12} {_format_cents(item.line_total_cents):>14}"
        )

    movements = ledger_service.movements_for_order(order.id)
    click.echo(f"\nLedger movements ({len(movements)}):")
    for m in movements:
        click.echo(f"  {m.business_date.isoformat()}  {m.kind:<16} product {m.product_id:<6} {m.quantity:>+8}")


@orders_group.command('list')
@click.option('--all', 'show_all', is_flag=True, help='Include deleted orders')
@click.option('--limit', default=50, type=int, help='Maximum rows')
@with_appcontext
def list_orders_cli(show_all, limit):
    """List orders, today's first."""
    orders = order_service.list_orders(include_deleted=show_all, limit=limit)
    if not orders:
        click.echo("No orders found.")
        return

    click.echo("\n" + "="*100)
    click.echo(f"{'ID':<6} {'Number':<18} {'Invoice':<24} {'Invoice Date':<13} {'Customer':<20} {'State'}")
    click.echo("="*100)
    for order in orders:
        click.echo(
            f"{order.id:<6} {order.order_number:<18} {order.invoice_number or '-':<24} "
            f"{order.invoice_date.isoformat():<13} {order.customer_name[:20]:<20} {order.state}"
        )


@orders_group.command('reconcile')
@click.option('--date', 'date_str', default=None, help='Business date (YYYY-MM-DD), defaults to today')
@with_appcontext
def reconcile(date_str):
    """Run the deferred-order sweep now."""
    business_date = _date_option(date_str)
    summary = reconciliation_service.trigger_reconciliation(business_date)

    click.echo(f"Reconciliation for {summary.business_date.isoformat()}")
    click.echo(f"  found:     {summary.found}")
    click.echo(f"  processed: {summary.processed}")
    click.echo(f"  skipped:   {summary.skipped}")
    click.echo(f"  errors:    {summary.errors}")
    for detail in summary.details:
        if detail["status"] == reconciliation_service.STATUS_ERROR:
            click.echo(f"FAIL {detail['order_number']} (ID: {detail['order_id']}): {detail['error']}")
    if summary.errors:
        raise SystemExit(1)


@click.group('inventory')
def inventory_group():
    """Inventory snapshot commands."""


@inventory_group.command('open-day')
@click.option('--date', 'date_str', default=None, help='Business date (YYYY-MM-DD), defaults to today')
@with_appcontext
def open_day(date_str):
    """Create the day's inventory snapshots."""
    business_date = _date_option(date_str) or get_clock().today()
    created = reconciliation_service.open_business_day(business_date)
    click.echo(f"PASS {created} snapshot(s) created for {business_date.isoformat()}")


@inventory_group.command('stock')
@click.argument('product_id', type=int)
@click.option('--date', 'date_str', default=None, help='Business date (YYYY-MM-DD), defaults to today')
@with_appcontext
def show_stock(product_id, date_str):
    """Show a product's snapshot for the day and its ledger balance."""
    business_date = _date_option(date_str) or get_clock().today()
    snapshot = ledger_service.get_snapshot(product_id, business_date)

    click.echo(f"Product {product_id} on {business_date.isoformat()}")
    if snapshot:
        click.echo(f"  opening:    {snapshot.opening_stock}")
        click.echo(f"  incoming:   {snapshot.incoming_quantity}")
        click.echo(f"  reserved:   {snapshot.reserved_quantity}")
        click.echo(f"  adjustment: {snapshot.adjustment_quantity}")
        click.echo(f"  closing:    {snapshot.closing_stock}  (minimum {snapshot.minimum_stock})")
    else:
        click.echo("  no snapshot for this day")
    click.echo(f"  current stock: {ledger_service.get_current_stock(product_id, business_date)}")
    click.echo(f"  ledger sum:    {ledger_service.get_ledger_balance(product_id, business_date)}")


@inventory_group.command('low-stock')
@click.option('--date', 'date_str', default=None, help='Business date (YYYY-MM-DD), defaults to today')
@with_appcontext
def low_stock(date_str):
    """List products at or below their minimum stock."""
    business_date = _date_option(date_str) or get_clock().today()
    snapshots = ledger_service.list_low_stock(business_date)
    if not snapshots:
        click.echo(f"No low-stock products on {business_date.isoformat()}.")
        return
    click.echo(f"{'Product':<10} {'Closing':>10} {'Minimum':>10}")
    for s in snapshots:
        click.echo(f"{s.product_id:<10} {s.closing_stock:>10} {s.minimum_stock:>10}")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(orders_group)
    app.cli.add_command(inventory_group)
