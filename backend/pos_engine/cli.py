# Overview: Flask CLI command groups for bootstrap and till inspection.

# backend/pos_engine/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap:
# - python -m flask system init-db
#   Create all tables (use `flask db upgrade` for migration-managed databases).
# - python -m flask system seed-demo [--tenant "Demo Retail"]
#   Idempotent demo data: tenant, store, cashier, products with stock, tax, walk-in customer, till.
#
# Till inspection/bootstrap:
# - python -m flask tills list --store-id 1
#   List tills with their open session.
# - python -m flask tills create --store-id 1 --name "Front Counter"
#   Create a till.
# - python -m flask tills sessions --till-id 1 --status CLOSED --limit 20
#   List recent till sessions with optional filters.

from decimal import Decimal

import click
from flask import current_app
from flask.cli import with_appcontext

from .extensions import db
from .money import format_cents
from .models import Tenant, Store, User, Category, Product, Tax, Customer, Till, TillSession
from .services.errors import PosError
from .services.inventory_service import adjust_stock
from .services.till_service import TillService
from .validation import ValidationError


@click.group('system')
def system_group():
    """System bootstrap commands."""


@system_group.command('init-db')
@with_appcontext
def init_db_cli():
    """Create all tables that do not exist yet."""
    db.create_all()
    click.echo("PASS Database tables created")


@system_group.command('seed-demo')
@click.option('--tenant', 'tenant_name', default='Demo Retail', help='Tenant name')
@click.option('--tenant-code', default='DEMO', help='Tenant code')
@with_appcontext
def seed_demo_cli(tenant_name, tenant_code):
    """
    Seed a demo tenant that can post sales immediately.

    Creates (when missing):
    - Tenant with default loyalty rates
    - Main Store and a cashier user
    - Two products with 50 units of stock each
    - A 10% VAT rate
    - The WALKIN customer
    - Till "Till 1"
    """
    click.echo("START Seeding demo data...")

    tenant = db.session.query(Tenant).filter_by(code=tenant_code).first()
    if not tenant:
        tenant = Tenant(
            name=tenant_name,
            code=tenant_code,
            loyalty_earn_rate=Decimal("1"),
            loyalty_redeem_rate=Decimal("0.10"),
        )
        db.session.add(tenant)
        db.session.commit()
        click.echo(f"PASS Created tenant: {tenant.name} (ID: {tenant.id})")
    else:
        click.echo(f"PASS Using existing tenant: {tenant.name} (ID: {tenant.id})")

    store = db.session.query(Store).filter_by(tenant_id=tenant.id, code="MAIN").first()
    if not store:
        store = Store(tenant_id=tenant.id, name="Main Store", code="MAIN")
        db.session.add(store)
        db.session.commit()
        click.echo(f"PASS Created store: {store.name} (ID: {store.id})")

    cashier = db.session.query(User).filter_by(tenant_id=tenant.id, username="cashier").first()
    if not cashier:
        cashier = User(tenant_id=tenant.id, username="cashier", name="Demo Cashier")
        db.session.add(cashier)
        db.session.commit()
        click.echo(f"PASS Created user: {cashier.username} (ID: {cashier.id})")

    category = db.session.query(Category).filter_by(tenant_id=tenant.id, name="General").first()
    if not category:
        category = Category(tenant_id=tenant.id, name="General")
        db.session.add(category)
        db.session.commit()

    demo_products = [
        ("DEMO-001", "Coffee Beans 250g", 899, 450),
        ("DEMO-002", "Ceramic Mug", 1250, 500),
    ]
    for sku, name, price_cents, cost_cents in demo_products:
        product = db.session.query(Product).filter_by(tenant_id=tenant.id, sku=sku).first()
        if product:
            continue
        product = Product(
            tenant_id=tenant.id,
            category_id=category.id,
            sku=sku,
            name=name,
            price_cents=price_cents,
            cost_cents=cost_cents,
        )
        db.session.add(product)
        db.session.commit()
        adjust_stock(
            db.session,
            store_id=store.id,
            product_id=product.id,
            quantity_delta=50,
            user_id=cashier.id,
            reason="Demo opening stock",
        )
        click.echo(f"PASS Created product: {sku} {name} (50 in stock)")

    if not db.session.query(Tax).filter_by(tenant_id=tenant.id).first():
        db.session.add(Tax(tenant_id=tenant.id, name="VAT", rate_bps=1000))
        db.session.commit()
        click.echo("PASS Created tax: VAT 10%")

    walk_in_code = current_app.config.get("POS_WALK_IN_CUSTOMER_CODE") or "WALKIN"
    if not db.session.query(Customer).filter_by(tenant_id=tenant.id, code=walk_in_code).first():
        db.session.add(Customer(
            tenant_id=tenant.id,
            name="Walk-in Customer",
            code=walk_in_code,
            is_loyalty_member=False,
        ))
        db.session.commit()
        click.echo(f"PASS Created walk-in customer ({walk_in_code})")

    if not db.session.query(Till).filter_by(store_id=store.id).first():
        till = TillService(db.session).create_till(tenant.id, store.id, "Till 1")
        click.echo(f"PASS Created till: {till.name} (ID: {till.id})")

    click.echo("\nDONE Demo data ready")
    click.echo(f"   Headers: X-Tenant-Id: {tenant.id}  X-Store-Id: {store.id}  X-User-Id: {cashier.id}")


@click.group('tills')
def tills_group():
    """Till inspection and bootstrap commands."""


@tills_group.command('create')
@click.option('--store-id', type=int, required=True, help='Store ID')
@click.option('--name', required=True, help='Till name (unique within the store)')
@with_appcontext
def create_till_cli(store_id, name):
    """
    Create a till.

    Example:
        flask tills create --store-id 1 --name "Front Counter"
    """
    store = db.session.get(Store, store_id)
    if not store:
        click.echo(f"FAIL Store {store_id} not found")
        return

    try:
        till = TillService(db.session).create_till(store.tenant_id, store.id, name)
    except (PosError, ValidationError) as e:
        click.echo(f"FAIL Error: {str(e)}")
        return

    click.echo(f"PASS Created till: {till.name}")
    click.echo(f"   Store ID: {till.store_id}")
    click.echo(f"   Till ID: {till.id}")


@tills_group.command('list')
@click.option('--store-id', type=int, help='Filter by store ID')
@with_appcontext
def list_tills_cli(store_id):
    """
    List tills and their open session.

    Example:
        flask tills list
        flask tills list --store-id 1
    """
    query = db.session.query(Till)
    if store_id:
        query = query.filter_by(store_id=store_id)
    tills = query.order_by(Till.store_id, Till.name).all()

    if not tills:
        click.echo("No tills found.")
        return

    click.echo("\n" + "="*80)
    click.echo(f"{'ID':<5} {'Store':<7} {'Name':<25} {'Status':<8} {'Open Session'}")
    click.echo("="*80)

    for till in tills:
        open_session = db.session.query(TillSession).filter_by(till_id=till.id, status="OPEN").first()
        session_label = f"#{open_session.id} (user {open_session.user_id})" if open_session else "-"
        click.echo(f"{till.id:<5} {till.store_id:<7} {till.name:<25} {till.status:<8} {session_label}")

    click.echo("="*80 + "\n")


@tills_group.command('sessions')
@click.option('--till-id', type=int, help='Filter by till ID')
@click.option('--status', type=click.Choice(['OPEN', 'CLOSED']), help='Filter by status')
@click.option('--limit', type=int, default=20, help='Max sessions to show')
@with_appcontext
def list_sessions_cli(till_id, status, limit):
    """
    List till sessions.

    Example:
        flask tills sessions
        flask tills sessions --till-id 1
        flask tills sessions --status OPEN
    """
    query = db.session.query(TillSession)
    if till_id:
        query = query.filter_by(till_id=till_id)
    if status:
        query = query.filter_by(status=status)

    sessions = query.order_by(TillSession.opened_at.desc()).limit(limit).all()

    if not sessions:
        click.echo("No sessions found.")
        return

    click.echo("\n" + "="*100)
    click.echo(f"{'ID':<5} {'Till':<20} {'User':<15} {'Status':<8} {'Opened':<20} {'Expected':<12} {'Variance'}")
    click.echo("="*100)

    for till_session in sessions:
        opened = till_session.opened_at.strftime("%Y-%m-%d %H:%M") if till_session.opened_at else "-"
        expected = format_cents(till_session.expected_cash_cents)
        variance = f"{till_session.variance_cents / 100:+.2f}" if till_session.variance_cents is not None else "-"
        click.echo(
            f"{till_session.id:<5} {till_session.till.name:<20} {till_session.user.username:<15} "
            f"{till_session.status:<8} {opened:<20} {expected:<12} {variance}"
        )

    click.echo("="*100 + "\n")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(tills_group)
