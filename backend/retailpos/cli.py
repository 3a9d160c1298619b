# Overview: Flask CLI command groups for bootstrap, stock intake, and inspection.

# backend/retailpos/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init-db
#   Create all tables (no-op for tables that already exist).
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
# - python -m flask system seed-demo
#   Idempotent demo data: a cashier, a customer, two products with stock.
#
# Stock:
# - python -m flask stock receive --product-id 1 --quantity 10 --unit-cost 12.50
#   Receive a batch (RECEIPT movement).
# - python -m flask stock batches --product-id 1
#   List a product's batches, oldest first.
#
# Sales:
# - python -m flask sales list --limit 20
#   List recent sales with totals and state.
# - python -m flask sales status BILL-20260211-0001
#   Show payment status of a sale.

from decimal import Decimal

import click
from flask.cli import with_appcontext

from .errors import SettlementError
from .extensions import db
from .models import User, Customer, Product
from .services import stock_ledger_service, sales_service, payment_service


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create all tables."""
    db.create_all()
    click.echo("PASS Tables created.")


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

    click.echo("PASS Database reset complete. Run 'python -m flask system seed-demo' for demo data.")


@system_group.command('seed-demo')
@with_appcontext
def seed_demo():
    """
    Create demo records if missing.

    Creates:
    - User: cashier
    - Customer: Walk-in Demo
    - Products: DEMO-001 (two batches), DEMO-002 (one batch)
    """
    cashier = db.session.query(User).filter_by(username="cashier").first()
    if not cashier:
        cashier = User(username="cashier", full_name="Demo Cashier", is_active=True)
        db.session.add(cashier)
        db.session.commit()
        click.echo(f"PASS Created user: cashier (ID: {cashier.id})")

    if not db.session.query(Customer).filter_by(name="Walk-in Demo").first():
        customer = Customer(name="Walk-in Demo", is_active=True)
        db.session.add(customer)
        db.session.commit()
        click.echo(f"PASS Created customer: Walk-in Demo (ID: {customer.id})")

    demo_products = [
        ("DEMO-001", "Demo Coffee Beans 1kg", "Grocery", "25.00", [(5, "10.00"), (10, "12.00")]),
        ("DEMO-002", "Demo Mug", "Homeware", "8.50", [(20, "3.20")]),
    ]
    for sku, name, category, price, batches in demo_products:
        if db.session.query(Product).filter_by(sku=sku).first():
            click.echo(f"SKIP Product {sku} already exists")
            continue
        product = Product(sku=sku, name=name, category=category, price=Decimal(price), is_active=True)
        db.session.add(product)
        db.session.commit()
        for quantity, unit_cost in batches:
            stock_ledger_service.receive_batch(
                product_id=product.id,
                quantity=quantity,
                unit_cost=unit_cost,
                actor_user_id=cashier.id,
                note="Demo seed",
            )
        click.echo(f"PASS Created product {sku} with {len(batches)} batch(es)")

    click.echo("PASS Demo data ready.")


@click.group('stock')
def stock_group():
    """Stock batch commands."""


@stock_group.command('receive')
@click.option('--product-id', type=int, required=True, help='Product ID')
@click.option('--quantity', type=int, required=True, help='Units received')
@click.option('--unit-cost', required=True, help='Cost per unit, e.g. 12.50')
@click.option('--batch-number', default=None, help='Supplier batch number')
@click.option('--lot-number', default=None, help='Lot number')
@with_appcontext
def receive_stock(product_id, quantity, unit_cost, batch_number, lot_number):
    """Receive a batch of stock for a product."""
    try:
        batch = stock_ledger_service.receive_batch(
            product_id=product_id,
            quantity=quantity,
            unit_cost=unit_cost,
            batch_number=batch_number,
            lot_number=lot_number,
        )
    except SettlementError as e:
        raise click.ClickException(f"{e.code}: {e}")
    click.echo(
        f"PASS Batch {batch.id} received: {batch.received_quantity} @ {batch.unit_cost} "
        f"(available now: {stock_ledger_service.get_available(product_id)})"
    )


@stock_group.command('batches')
@click.option('--product-id', type=int, required=True, help='Product ID')
@click.option('--all', 'show_all', is_flag=True, help='Include exhausted batches')
@with_appcontext
def list_batches_cli(product_id, show_all):
    """List a product's batches in FIFO order."""
    try:
        batches = stock_ledger_service.list_batches(product_id, include_exhausted=show_all)
    except SettlementError as e:
        raise click.ClickException(f"{e.code}: {e}")

    if not batches:
        click.echo("No batches found.")
        return

    click.echo("\n" + "=" * 80)
    click.echo(f"{'ID':<6} {'Received':<22} {'Recv Qty':<10} {'Avail':<8} {'Unit Cost':<12} {'Active'}")
    click.echo("=" * 80)
    for b in batches:
        click.echo(
            f"{b.id:<6} {b.received_at.strftime('%Y-%m-%d %H:%M:%S'):<22} "
            f"{b.received_quantity:<10} {b.available_quantity:<8} {str(b.unit_cost):<12} "
            f"{'Yes' if b.is_active else 'No'}"
        )
    click.echo("=" * 80 + "\n")


@click.group('sales')
def sales_group():
    """Sale inspection commands."""


@sales_group.command('list')
@click.option('--limit', type=int, default=20, help='Max number of sales to show')
@with_appcontext
def list_sales_cli(limit):
    """List recent sales."""
    sales, total = sales_service.list_sales(limit=limit)
    if not sales:
        click.echo("No sales found.")
        return

    click.echo(f"\nShowing {len(sales)} of {total} sale(s)")
    click.echo("=" * 80)
    click.echo(f"{'ID':<6} {'Bill Number':<22} {'Subtotal':<12} {'Total':<12} {'State'}")
    click.echo("=" * 80)
    for sale in sales:
        click.echo(
            f"{sale.id:<6} {sale.bill_number:<22} {str(sale.subtotal_amount):<12} "
            f"{str(sale.total_amount):<12} {sales_service.sale_state(sale)}"
        )
    click.echo("=" * 80 + "\n")


@sales_group.command('status')
@click.argument('bill_number')
@with_appcontext
def sale_status_cli(bill_number):
    """Show payment status for a bill number."""
    try:
        sale = sales_service.get_sale_by_bill_number(bill_number)
        status = payment_service.get_payment_status(sale.id)
    except SettlementError as e:
        raise click.ClickException(f"{e.code}: {e}")

    click.echo(f"Bill:      {status['bill_number']}")
    click.echo(f"Total:     {status['total_amount']}")
    click.echo(f"Paid:      {status['total_paid']}")
    click.echo(f"Balance:   {status['balance']}")
    click.echo(f"Settled:   {'Yes' if status['is_fully_paid'] else 'No'}")
    for method, amount in status["by_method"].items():
        click.echo(f"  {method:<15} {amount}")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(stock_group)
    app.cli.add_command(sales_group)
