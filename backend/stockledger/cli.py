# Overview: Flask CLI command groups for bootstrap, stock operations, and inspection.

# backend/stockledger/cli.py
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
# Shops:
# - python -m flask shops create --name "Main Shop" --code MAIN
#
# Products / stock:
# - python -m flask products create --shop-id 1 --name "Rice 1kg" --cost 0.80 --price 1.20 --stock 50
# - python -m flask products receive --shop-id 1 --product-id 3 --quantity 20 --unit-cost 0.85
# - python -m flask products adjust --shop-id 1 --product-id 3 --quantity 42 --note "Shelf count"
# - python -m flask products history --shop-id 1 --product-id 3 --limit 20
# - python -m flask products layers --shop-id 1 --product-id 3 [--open-only]
# - python -m flask products low-stock --shop-id 1
#
# Sales:
# - python -m flask sales list --shop-id 1 [--status completed] [--limit 20]
# - python -m flask sales show --shop-id 1 --sale-id 12
# - python -m flask sales cancel --shop-id 1 --sale-id 12 --yes
#
# Customers:
# - python -m flask customers create --shop-id 1 --name "Ama Mensah" --credit-limit 500
# - python -m flask customers pay --shop-id 1 --customer-id 4 --amount 25.00 --payment-method mobile_money

import json

import click
from flask.cli import with_appcontext

from .errors import EngineError
from .extensions import db
from .models import Shop
from .services import catalog_service, cost_layer_service, credit_service, movement_service, sales_service
from .time_utils import parse_iso_datetime


def _fail(exc: EngineError) -> None:
    click.echo(f"FAIL {exc.kind.value}: {exc}")
    if exc.details:
        click.echo(f"   Details: {json.dumps(exc.details, default=str)}")
    raise SystemExit(1)


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

    click.echo("PASS Database reset complete. Run 'python -m flask shops create' to add a shop.")


@click.group('shops')
def shops_group():
    """Shop (tenant) management commands."""


@shops_group.command('create')
@click.option('--name', required=True, help='Shop name')
@click.option('--code', required=True, help='Short code (unique)')
@with_appcontext
def create_shop_cli(name, code):
    """Create a new shop."""
    existing = db.session.query(Shop).filter_by(code=code).first()
    if existing:
        click.echo(f"FAIL Shop with code '{code}' already exists")
        raise SystemExit(1)

    shop = Shop(name=name, code=code)
    db.session.add(shop)
    db.session.commit()
    click.echo(f"PASS Created shop: {shop.name} (ID: {shop.id}, Code: {shop.code})")


@click.group('products')
def products_group():
    """Product and stock commands."""


@products_group.command('create')
@click.option('--shop-id', type=int, required=True)
@click.option('--name', required=True)
@click.option('--sku')
@click.option('--barcode')
@click.option('--cost', 'cost_price', default='0', show_default=True, help='Unit cost price')
@click.option('--price', 'selling_price', default='0', show_default=True, help='Selling price')
@click.option('--stock', 'stock_quantity', default='0', show_default=True, help='Opening stock')
@click.option('--min-stock', 'min_stock_level', default='0', show_default=True)
@click.option('--user-id', type=int, help='Acting user ID (audit only)')
@with_appcontext
def create_product_cli(shop_id, name, sku, barcode, cost_price, selling_price, stock_quantity, min_stock_level, user_id):
    """Create a product; opening stock gets its own cost layer."""
    try:
        product = catalog_service.create_product(
            shop_id,
            user_id,
            name=name,
            sku=sku,
            barcode=barcode,
            cost_price=cost_price,
            selling_price=selling_price,
            stock_quantity=stock_quantity,
            min_stock_level=min_stock_level,
        )
    except EngineError as e:
        _fail(e)
    click.echo(f"PASS Created product: {product.name} (ID: {product.id})")
    click.echo(f"   Stock: {product.stock_quantity} @ cost {product.cost_price}")


@products_group.command('receive')
@click.option('--shop-id', type=int, required=True)
@click.option('--product-id', type=int, required=True)
@click.option('--quantity', required=True)
@click.option('--unit-cost', help='Defaults to the current cost price')
@click.option('--note')
@click.option('--user-id', type=int, help='Acting user ID (audit only)')
@with_appcontext
def receive_stock_cli(shop_id, product_id, quantity, unit_cost, note, user_id):
    """Receive stock into a new FIFO cost layer."""
    try:
        product = catalog_service.receive_stock(shop_id, product_id, user_id, quantity, unit_cost=unit_cost, note=note)
    except EngineError as e:
        _fail(e)
    click.echo(f"PASS Received {quantity} x {product.name}. Stock now {product.stock_quantity}")


@products_group.command('adjust')
@click.option('--shop-id', type=int, required=True)
@click.option('--product-id', type=int, required=True)
@click.option('--quantity', required=True, help='Counted quantity on hand')
@click.option('--note')
@click.option('--user-id', type=int, help='Acting user ID (audit only)')
@with_appcontext
def adjust_stock_cli(shop_id, product_id, quantity, note, user_id):
    """Set stock to a counted quantity."""
    try:
        product = catalog_service.adjust_stock(shop_id, product_id, user_id, quantity, note=note)
    except EngineError as e:
        _fail(e)
    click.echo(f"PASS {product.name} stock set to {product.stock_quantity}")


@products_group.command('history')
@click.option('--shop-id', type=int, required=True)
@click.option('--product-id', type=int, required=True)
@click.option('--limit', type=int, default=50, show_default=True)
@with_appcontext
def stock_history_cli(shop_id, product_id, limit):
    """Show stock movements, newest first."""
    try:
        product = catalog_service.get_product(shop_id, product_id)
    except EngineError as e:
        _fail(e)

    click.echo(f"\nStock history: {product.name} (ID: {product.id})")
    click.echo("=" * 96)
    click.echo(f"{'When':<22} {'Action':<12} {'Delta':>12} {'Before':>12} {'After':>12}  Notes")
    click.echo("-" * 96)
    count = 0
    for m in movement_service.history(shop_id, product_id, limit=limit):
        count += 1
        click.echo(
            f"{str(m.created_at):<22} {m.action:<12} {str(m.quantity_delta):>12} "
            f"{str(m.previous_quantity):>12} {str(m.new_quantity):>12}  {m.notes or ''}"
        )
    if not count:
        click.echo("No movements recorded.")


@products_group.command('layers')
@click.option('--shop-id', type=int, required=True)
@click.option('--product-id', type=int, required=True)
@click.option('--open-only', is_flag=True, help='Only layers with remaining quantity')
@with_appcontext
def cost_layers_cli(shop_id, product_id, open_only):
    """Show FIFO cost layers in consumption order."""
    try:
        product = catalog_service.get_product(shop_id, product_id)
    except EngineError as e:
        _fail(e)

    layers = cost_layer_service.list_layers(shop_id, product_id, open_only=open_only)
    click.echo(f"\nCost layers: {product.name} (ID: {product.id})")
    click.echo("=" * 88)
    click.echo(f"{'ID':<6} {'Source':<14} {'Unit cost':>12} {'Initial':>12} {'Remaining':>12}  Received")
    click.echo("-" * 88)
    for layer in layers:
        click.echo(
            f"{layer.id:<6} {layer.source_type:<14} {str(layer.unit_cost):>12} "
            f"{str(layer.initial_quantity):>12} {str(layer.remaining_quantity):>12}  {layer.received_at}"
        )
    if not layers:
        click.echo("No cost layers.")

    covered = cost_layer_service.remaining_quantity(shop_id, product_id)
    click.echo(f"\nStock on hand: {product.stock_quantity}  Covered by layers: {covered}")
    if covered != product.stock_quantity:
        click.echo("WARN Stock and cost layers disagree; uncovered units sell at cost price.")


@products_group.command('low-stock')
@click.option('--shop-id', type=int, required=True)
@with_appcontext
def low_stock_cli(shop_id):
    """List active products at or below their minimum stock level."""
    products = catalog_service.list_low_stock(shop_id)
    if not products:
        click.echo("No low-stock products.")
        return
    for p in products:
        click.echo(f"{p.id:<6} {p.name:<40} stock={p.stock_quantity} min={p.min_stock_level}")


@click.group('sales')
def sales_group():
    """Sale inspection and cancellation commands."""


@sales_group.command('list')
@click.option('--shop-id', type=int, required=True)
@click.option('--status', type=click.Choice(['completed', 'cancelled']))
@click.option('--payment-method')
@click.option('--customer-id', type=int)
@click.option('--start', help='ISO-8601 lower bound on created_at')
@click.option('--end', help='ISO-8601 upper bound on created_at')
@click.option('--limit', type=int, default=20, show_default=True)
@with_appcontext
def list_sales_cli(shop_id, status, payment_method, customer_id, start, end, limit):
    """List sales, newest first."""
    try:
        start_dt = parse_iso_datetime(start)
        end_dt = parse_iso_datetime(end)
    except ValueError as e:
        raise click.BadParameter(str(e))

    sales = sales_service.list_sales(
        shop_id,
        start=start_dt,
        end=end_dt,
        customer_id=customer_id,
        payment_method=payment_method,
        status=status,
        limit=limit,
    )
    if not sales:
        click.echo("No sales found.")
        return

    click.echo("\n" + "=" * 100)
    click.echo(f"{'ID':<6} {'Number':<32} {'Status':<10} {'Method':<14} {'Final':>12} {'Refunded':>12}")
    click.echo("-" * 100)
    for s in sales:
        click.echo(
            f"{s.id:<6} {s.sale_number:<32} {s.status:<10} {s.payment_method:<14} "
            f"{str(s.final_amount):>12} {str(s.refunded_amount):>12}"
        )


@sales_group.command('show')
@click.option('--shop-id', type=int, required=True)
@click.option('--sale-id', type=int, required=True)
@with_appcontext
def show_sale_cli(shop_id, sale_id):
    """Print a sale with items, cost of goods, returns and refunds as JSON."""
    try:
        sale = sales_service.get_sale(sale_id, shop_id)
    except EngineError as e:
        _fail(e)
    click.echo(json.dumps(sales_service.sale_to_dict(sale), indent=2))


@sales_group.command('cancel')
@click.option('--shop-id', type=int, required=True)
@click.option('--sale-id', type=int, required=True)
@click.option('--user-id', type=int, help='Acting user ID (audit only)')
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def cancel_sale_cli(shop_id, sale_id, user_id, yes):
    """Cancel a completed sale: restock, restore cost layers, release credit."""
    if not yes:
        click.confirm(f"WARN Cancel sale {sale_id}?", abort=True)
    try:
        sale = sales_service.cancel_sale(sale_id, shop_id, user_id)
    except EngineError as e:
        _fail(e)
    click.echo(f"PASS Sale {sale.sale_number} cancelled")


@click.group('customers')
def customers_group():
    """Customer and credit commands."""


@customers_group.command('create')
@click.option('--shop-id', type=int, required=True)
@click.option('--name', required=True)
@click.option('--phone')
@click.option('--email')
@click.option('--credit-limit', default='0', show_default=True, help='0 means no limit')
@with_appcontext
def create_customer_cli(shop_id, name, phone, email, credit_limit):
    """Create a customer."""
    try:
        catalog_service.get_shop(shop_id)
        customer = credit_service.create_customer(
            shop_id, name=name, phone=phone, email=email, credit_limit=credit_limit,
        )
    except EngineError as e:
        _fail(e)
    click.echo(f"PASS Created customer: {customer.name} (ID: {customer.id})")


@customers_group.command('pay')
@click.option('--shop-id', type=int, required=True)
@click.option('--customer-id', type=int, required=True)
@click.option('--amount', required=True)
@click.option('--payment-method', default='cash', show_default=True)
@click.option('--notes')
@click.option('--user-id', type=int, help='Acting user ID (audit only)')
@with_appcontext
def credit_payment_cli(shop_id, customer_id, amount, payment_method, notes, user_id):
    """Record a payment against a customer's outstanding credit."""
    try:
        customer = credit_service.record_credit_payment(
            shop_id, customer_id, user_id, amount, payment_method=payment_method, notes=notes,
        )
    except EngineError as e:
        _fail(e)
    click.echo(f"PASS Payment recorded. {customer.name} owes {customer.credit_balance}")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(shops_group)
    app.cli.add_command(products_group)
    app.cli.add_command(sales_group)
    app.cli.add_command(customers_group)
