# Overview: Flask CLI command groups for schema reset and inventory maintenance.

# backend/parcelops/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System:
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Inventory:
# - python -m flask inventory add-batch --product-id 1 --quantity 50 --unit-cost-cents 1250
#   Receive a new FIFO batch (optionally --received-at 2026-01-31T09:00:00Z).
# - python -m flask inventory seed-batches
#   One-time: create an initial batch for every product that has stock but no batches.
# - python -m flask inventory reconcile [--dry-run] [--product-id 1]
#   Recompute Product.current_stock from batch remaining quantities.
# - python -m flask inventory summary
#   Print remaining stock, active batches and weighted average cost per product.

import click
from flask.cli import with_appcontext

from .extensions import db
from .validation import ValidationError, NotFoundError
from .services import batch_service, fifo_service


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


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

    click.echo("PASS Database reset complete. Run 'python -m flask inventory seed-batches' after importing products.")


@click.group('inventory')
def inventory_group():
    """FIFO batch receiving and stock maintenance."""


@inventory_group.command('add-batch')
@click.option('--product-id', required=True, type=int)
@click.option('--quantity', required=True, type=int)
@click.option('--unit-cost-cents', required=True, type=int)
@click.option('--received-at', default=None, help='ISO-8601 timestamp (defaults to now)')
@click.option('--supplier-reference', default=None)
@click.option('--notes', default=None)
@with_appcontext
def add_batch_cmd(product_id, quantity, unit_cost_cents, received_at, supplier_reference, notes):
    """Receive stock as a new FIFO batch."""
    try:
        batch = batch_service.add_batch(
            product_id=product_id,
            quantity=quantity,
            unit_cost_cents=unit_cost_cents,
            received_at=received_at,
            supplier_reference=supplier_reference,
            notes=notes,
        )
    except (ValidationError, NotFoundError) as e:
        click.echo(f"FAIL {e}")
        return

    click.echo(
        f"PASS Batch {batch.id}: {batch.quantity_received} units at {batch.unit_cost_cents} cents "
        f"for product {product_id}"
    )


@inventory_group.command('seed-batches')
@with_appcontext
def seed_batches_cmd():
    """Create initial batches from existing stock counts (safe to re-run)."""
    batches = batch_service.seed_initial_batches()
    if not batches:
        click.echo("PASS Nothing to seed; every stocked product already has batches.")
        return

    for batch in batches:
        click.echo(f"  product {batch.product_id}: {batch.quantity_received} units at {batch.unit_cost_cents} cents")
    click.echo(f"PASS Created {len(batches)} initial batch(es)")


@inventory_group.command('reconcile')
@click.option('--dry-run', is_flag=True, help='Report drift without writing')
@click.option('--product-id', type=int, default=None)
@with_appcontext
def reconcile_cmd(dry_run, product_id):
    """Recompute Product.current_stock from batch rows."""
    drift = batch_service.reconcile_current_stock(product_id=product_id, dry_run=dry_run)
    if not drift:
        click.echo("PASS Stock cache matches batch totals.")
        return

    for entry in drift:
        click.echo(
            f"  {entry['product_name']} (id={entry['product_id']}): "
            f"cached={entry['cached']} actual={entry['actual']}"
        )
    if dry_run:
        click.echo(f"WARN {len(drift)} product(s) drifted (dry run, nothing written)")
    else:
        click.echo(f"PASS Repaired {len(drift)} product(s)")


@inventory_group.command('summary')
@with_appcontext
def summary_cmd():
    """Print per-product FIFO valuation."""
    rows = fifo_service.get_product_cost_summary()
    if not rows:
        click.echo("No products found.")
        return

    click.echo(f"{'ID':<6} {'Product':<32} {'Stock':>7} {'Batches':>8} {'Avg cost':>10} {'Drift':>6}")
    for row in rows:
        click.echo(
            f"{row['product_id']:<6} {row['product_name'][:32]:<32} {row['remaining_total']:>7} "
            f"{row['active_batch_count']:>8} {row['weighted_avg_cost_cents']:>10} {row['stock_drift']:>6}"
        )


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(inventory_group)
