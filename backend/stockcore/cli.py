# Overview: Flask CLI command group for stock inspection and maintenance.

# backend/stockcore/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask stock <command> [options]
#
# Bootstrap:
# - python -m flask stock init-db
#   Create all tables and a default "Super Admin" user when none exists.
#
# Inspection:
# - python -m flask stock availability 12
#   Show stock, reserved and sellable quantity per packaging variant.
# - python -m flask stock movements --product-id 12 --type sale --sync-status pending --limit 20
#   List recent stock movements (newest first).
# - python -m flask stock stats
#   Movement counts by day/week/sync status/type.
#
# Compensation:
# - python -m flask stock cancel-order 42
#   Restore stock and loyalty points for an order (waits for every line).

import click
from flask import current_app
from flask.cli import with_appcontext

from .extensions import db
from .models import Order, User
from .services.availability_service import get_availability
from .services.errors import StockError
from .services.order_service import cancel_order
from .services.stock_ledger_service import (
    MOVEMENT_TYPES,
    SYNC_STATUSES,
    get_movement_statistics,
    list_stock_movements,
)
from .time_utils import parse_iso_datetime


@click.group('stock')
def stock_group():
    """Stock inspection and compensation commands."""


@stock_group.command('init-db')
@with_appcontext
def init_db():
    """Create tables and the default admin user (idempotent)."""
    db.create_all()
    click.echo("PASS Tables created")

    role = current_app.config["DEFAULT_ADMIN_ROLE"]
    existing = db.session.query(User).filter_by(role=role).first()
    if existing:
        click.echo(f"WARN  Default admin already exists: {existing.username} (ID: {existing.id})")
        return

    admin = User(username="admin", email="admin@stockcore.local", role=role, is_active=True)
    db.session.add(admin)
    db.session.commit()
    click.echo(f"PASS Created default admin: {admin.username} (ID: {admin.id}, role '{role}')")


@stock_group.command('availability')
@click.argument('product_id', type=int)
@with_appcontext
def availability_cli(product_id):
    """
    Show sellable availability for a product.

    Example:
        flask stock availability 12
    """
    try:
        result = get_availability(product_id)
    except StockError as e:
        click.echo(f"FAIL {e}")
        raise SystemExit(1)

    click.echo(f"Product {result['product_id']}: stock={result['stock']} "
               f"reserved={result['reserved']} available={result['available']}")
    if not result["per_variant"]:
        click.echo("  (no active packaging units)")
    for v in result["per_variant"]:
        default = " [default]" if v["is_default"] else ""
        status = "OK" if v["is_available"] else "--"
        click.echo(f"  {status} unit {v['unit_id']:<5} {v['unit_name']:<20} "
                   f"pack={v['pack_qty']:<8} units={v['available_units']}{default}")


@stock_group.command('movements')
@click.option('--product-id', type=int, help='Filter by product ID')
@click.option('--type', 'movement_type', type=click.Choice(MOVEMENT_TYPES), help='Filter by movement type')
@click.option('--sync-status', type=click.Choice(SYNC_STATUSES), help='Filter by sync status')
@click.option('--start', help='Only movements at or after this ISO-8601 time')
@click.option('--end', help='Only movements at or before this ISO-8601 time')
@click.option('--search', help='Match invoice, reference or reason')
@click.option('--limit', type=int, default=20, help='Max movements to show')
@with_appcontext
def movements_cli(product_id, movement_type, sync_status, start, end, search, limit):
    """
    List recent stock movements.

    Example:
        flask stock movements
        flask stock movements --product-id 12 --type sale
        flask stock movements --start 2026-10-01T00:00:00Z --search INV-
    """
    try:
        start_at = parse_iso_datetime(start)
        end_at = parse_iso_datetime(end)
    except ValueError as exc:
        click.echo(f"FAIL Invalid date: {exc}")
        raise SystemExit(1)

    page = list_stock_movements(
        product_id=product_id,
        movement_type=movement_type,
        sync_status=sync_status,
        start=start_at,
        end=end_at,
        search=search,
        limit=limit,
    )
    if not page["items"]:
        click.echo("No stock movements found")
        return

    click.echo(f"\nStock movements ({page['pagination']['total']} total):")
    click.echo("-" * 100)
    for m in page["items"]:
        click.echo(
            f"{m['movement_date']}  {m['movement_type']:<8} product={m['product_id']:<6} "
            f"{m['quantity_before']:>6} {m['quantity_changed']:+6} -> {m['quantity_after']:<6} "
            f"{m['sync_status']:<8} {m['reference_document'] or ''}"
        )


@stock_group.command('stats')
@with_appcontext
def stats_cli():
    """Movement statistics."""
    stats = get_movement_statistics()
    click.echo(f"Today: {stats['today_movements']}  Last 7 days: {stats['week_movements']}  "
               f"Total: {stats['total_movements']}")
    click.echo("Sync status: " + ", ".join(f"{k}={v}" for k, v in stats["sync_status"].items()))
    click.echo(f"Sync success rate: {stats['sync_success_rate']}%")
    for row in stats["movement_types"]:
        click.echo(f"  {row['movement_type']:<10} count={row['count']:<6} value_cents={row['total_value_cents']}")


@stock_group.command('cancel-order')
@click.argument('order_id', type=int)
@with_appcontext
def cancel_order_cli(order_id):
    """
    Restore stock and loyalty points for an order.

    Does not change the order's status.
    """
    order = db.session.get(Order, order_id)
    if order is None:
        click.echo(f"FAIL Order {order_id} not found")
        raise SystemExit(1)

    result = cancel_order(order, wait=True)

    click.echo(f"Stock restored: {result['stock_restored']}")
    for outcome in result["restore_outcomes"] or []:
        click.echo(f"  {outcome.status:<8} product={outcome.product_id} qty={outcome.quantity}"
                   + (f" error={outcome.error}" if outcome.error else ""))
        for warning in outcome.warnings:
            click.echo(f"  WARN  {warning}")
    click.echo(f"Points restored: {result['points_restored']}")
    if result["error"]:
        click.echo(f"FAIL {result['error']}")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(stock_group)
