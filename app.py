# Flask Home Bakery Dashboard
# Application factory, configuration and the views for the three roles:
# production (logs batches), sales (logs sales) and admin (analytics and corrections)

# Import necessary Flask components for web application functionality
from flask import Flask, render_template, request, redirect, url_for, flash, abort
from datetime import datetime, timezone
import logging
import os  # Operating system interface

from models import db, Product, InventoryBatch, SalesLog
from reconciliation import (
    PRICING_MODES,
    RANGE_GRANULARITY,
    RANGES,
    day_key,
    find_day,
    get_timezone,
    month_start,
    production_stats,
    range_start,
    reconcile_daily,
    sales_trend,
    stock_ledger,
    summarize_period,
    week_start,
)
from store import (
    BakeryStore,
    ConflictError,
    RecordNotFoundError,
    StoreUnavailableError,
    ValidationError,
    parse_quantity,
)

__all__ = ['create_app', 'engine_options', 'db', 'Product', 'InventoryBatch', 'SalesLog']


def engine_options(database_uri, timeout):
    """SQLite waits up to ``timeout`` on a locked file; pooled engines wait on checkout."""
    timeout = float(timeout)
    if database_uri.startswith('sqlite'):
        return {'connect_args': {'timeout': timeout}}
    return {'pool_timeout': timeout, 'pool_pre_ping': True}


# ==================== APPLICATION FACTORY ====================

def create_app(test_config=None):
    """
    Application factory function that creates and configures the Flask application.

    Args:
        test_config (dict, optional): Configuration dictionary for testing.
                                    If provided, overrides default config settings.

    Returns:
        Flask: Configured Flask application instance ready to run.
    """
    app = Flask(__name__, template_folder='templates')

    # ==================== APPLICATION CONFIGURATION ====================
    # SQLite database in the project root unless DATABASE_URL points elsewhere
    project_root = os.path.abspath(os.path.dirname(__file__))
    db_path = os.path.join(project_root, 'bakery.db')
    app.config.from_mapping(
        SECRET_KEY=os.environ.get('FLASK_SECRET', 'dev-secret'),  # Secret key for flash messages
        SQLALCHEMY_DATABASE_URI=os.environ.get('DATABASE_URL', f"sqlite:///{db_path}"),
        SQLALCHEMY_TRACK_MODIFICATIONS=False,  # Disable modification tracking for performance
        STORE_TIMEOUT=float(os.environ.get('STORE_TIMEOUT', '10')),  # Seconds to wait on the database
        REPORT_TIMEZONE=os.environ.get('REPORT_TIMEZONE', 'UTC'),  # Timezone that defines a "day"
        SALE_PRICING=os.environ.get('SALE_PRICING', 'current'),  # 'current' or 'recorded'
        SALES_RECORDER=os.environ.get('SALES_RECORDER', 'Sales counter'),  # Default logged_by label
        CURRENCY=os.environ.get('CURRENCY', 'RM'),
        LOG_LEVEL=os.environ.get('LOG_LEVEL', 'INFO'),
    )

    # Override config with test settings if provided (useful for unit tests)
    if test_config:
        app.config.update(test_config)

    # Fail fast on settings the reports cannot work with
    app.config['REPORT_TZ'] = get_timezone(app.config['REPORT_TIMEZONE'])
    if app.config['SALE_PRICING'] not in PRICING_MODES:
        raise ValueError(f"SALE_PRICING must be one of {', '.join(PRICING_MODES)}")

    app.config.setdefault('SQLALCHEMY_ENGINE_OPTIONS', engine_options(
        app.config['SQLALCHEMY_DATABASE_URI'], app.config['STORE_TIMEOUT']))

    # ==================== LOGGING ====================
    logging.basicConfig(format='%(asctime)s %(levelname)s %(name)s: %(message)s')
    app.logger.setLevel(app.config['LOG_LEVEL'])
    for name in ('store', 'reconciliation'):
        logging.getLogger(name).setLevel(app.config['LOG_LEVEL'])

    # Initialize SQLAlchemy with the Flask app
    db.init_app(app)

    with app.app_context():
        db.create_all()

    store = BakeryStore()

    # ==================== HELPERS ====================

    def now():
        return datetime.now(timezone.utc)

    def report_tz():
        return app.config['REPORT_TZ']

    def pricing():
        return app.config['SALE_PRICING']

    def form_quantities(products):
        """
        Read ``qty_<product id>`` fields for the given products.
        Blank and zero entries are skipped; anything else must be a whole number.
        """
        quantities = []
        for product in products:
            raw = request.form.get(f'qty_{product.id}', '').strip()
            if not raw:
                continue
            quantity = parse_quantity(raw)
            if quantity > 0:
                quantities.append((product, quantity))
        return quantities

    @app.template_filter('money')
    def money(value):
        """Format a Decimal amount with the configured currency prefix."""
        return f"{app.config['CURRENCY']} {value:.2f}"

    # ==================== ERROR HANDLERS ====================

    @app.errorhandler(StoreUnavailableError)
    def store_unavailable(exc):
        """
        Database unreachable or failing: show a notice with a manual retry.
        Retrying reloads the whole page, which re-fetches every record set.
        """
        app.logger.error('Store unavailable on %s %s: %s', request.method, request.path, exc)
        retry_url = request.url if request.method == 'GET' else (request.referrer or url_for('home'))
        return render_template('error.html', message=str(exc), retry_url=retry_url), 503

    @app.errorhandler(RecordNotFoundError)
    def record_not_found(exc):
        app.logger.info('Not found: %s', exc)
        return render_template('error.html', message='That record no longer exists.',
                               retry_url=url_for('home')), 404

    # ==================== HOME ====================

    @app.route('/')
    def home():
        """Role picker: production, sales or admin."""
        return render_template('home.html')

    # ==================== PRODUCTION ROUTES ====================

    @app.route('/production')
    def production_dashboard():
        """
        Production overview: units made this week and this month, the month's
        production value at the prices captured on each batch, and the month's
        best-selling item.
        """
        current = now()
        tz = report_tz()
        since = min(week_start(current, tz), month_start(current, tz))
        products, productions, sales = store.load_snapshot(since)
        stats = production_stats(products, productions, sales, current, tz)
        return render_template('production/dashboard.html', stats=stats)

    @app.route('/production/today', methods=['GET', 'POST'])
    def production_today():
        """
        Daily production entry.
        GET: Show active products with a quantity field each, plus the hidden ones
        POST: Save every non-zero quantity as a production batch in one insert
        """
        products = store.list_products()
        active = [p for p in products if p.active]

        if request.method == 'POST':
            try:
                entries = form_quantities(active)
                if not entries:
                    flash('Please add at least one item first!')
                    return redirect(url_for('production_today'))
                # Batches keep the price at the time they were made
                store.insert_production_events([
                    {'product_id': product.id, 'quantity': quantity, 'unit_price': product.price}
                    for product, quantity in entries
                ])
            except ValidationError as exc:
                flash(str(exc))
                return redirect(url_for('production_today'))

            flash('Successfully saved!')
            return redirect(url_for('production_dashboard'))

        hidden = [p for p in products if not p.active]
        return render_template('production/today.html', products=active, hidden=hidden)

    @app.route('/production/products/<int:product_id>/toggle', methods=['POST'])
    def production_toggle_product(product_id):
        """Show or hide a product in the daily entry forms."""
        product = store.get_product(product_id)
        updated = store.update_product(product_id, active=not product.active)
        flash(f"{updated.name} is now {'shown' if updated.active else 'hidden'}.")
        return redirect(url_for('production_today'))

    @app.route('/production/menu/add', methods=['GET', 'POST'])
    def production_add_menu():
        """
        Add a new menu item.
        GET: Show the form
        POST: Validate name and price, then create an active product
        """
        if request.method == 'POST':
            name = request.form.get('name', '')
            price = request.form.get('price', '')
            image_url = request.form.get('image_url', '').strip() or None
            if not name.strip() or not price.strip():
                flash('Please fill in name and price')
                return redirect(url_for('production_add_menu'))
            try:
                store.insert_product(name, price, image_ref=image_url, active=True)
            except ValidationError as exc:
                flash(str(exc))
                return redirect(url_for('production_add_menu'))
            flash('Menu item added successfully!')
            return redirect(url_for('production_today'))

        return render_template('production/menu_form.html')

    @app.route('/production/history')
    def production_history():
        """Production grouped by day, valued at each batch's stored unit price."""
        products = store.list_products()
        productions = store.list_production_events()
        days = reconcile_daily(products, productions, [], tz=report_tz(), pricing=pricing())
        return render_template('production/history.html', days=days)

    # ==================== SALES ROUTES ====================

    def todays_stock():
        """Active products with what was made and sold so far today."""
        current = now()
        tz = report_tz()
        products, productions, sales = store.load_snapshot(range_start('today', current, tz))
        days = reconcile_daily(products, productions, sales, tz=tz, pricing=pricing())
        today = find_day(days, day_key(current, tz))
        lines = []
        for product in products:
            if not product.active:
                continue
            summary = today.products.get(product.id) if today else None
            lines.append({
                'product': product,
                'made': summary.produced if summary else 0,
                'sold': summary.sold if summary else 0,
                'remaining': summary.remaining if summary else 0,
                'made_value': summary.production_value if summary else 0,
                'sold_value': summary.revenue if summary else 0,
            })
        return lines

    @app.route('/sales', methods=['GET', 'POST'])
    def sales_today():
        """
        Daily sales entry against today's stock.
        GET: Show today's made/sold/remaining per active product
        POST: Record every non-zero quantity; a sale may not exceed today's remaining stock
        """
        lines = todays_stock()

        if request.method == 'POST':
            recorder = request.form.get('logged_by', '').strip() or app.config['SALES_RECORDER']
            try:
                entries = form_quantities([line['product'] for line in lines])
                if not entries:
                    flash('No sales recorded to submit.')
                    return redirect(url_for('sales_today'))
                remaining = {line['product'].id: line['remaining'] for line in lines}
                for product, quantity in entries:
                    if quantity > remaining.get(product.id, 0):
                        flash(f'Not enough stock for {product.name}.')
                        return redirect(url_for('sales_today'))
                store.insert_sale_events([
                    {'product_id': product.id, 'quantity': quantity, 'recorded_by': recorder}
                    for product, quantity in entries
                ])
            except ValidationError as exc:
                flash(str(exc))
                return redirect(url_for('sales_today'))

            flash('Sales recorded!')
            return redirect(url_for('sales_today'))

        made_value = sum((line['made_value'] for line in lines), 0)
        sold_value = sum((line['sold_value'] for line in lines), 0)
        in_stock = [line for line in lines if line['remaining'] > 0]
        return render_template('sales/today.html', lines=in_stock, made_value=made_value,
                               sold_value=sold_value, recorder=app.config['SALES_RECORDER'])

    @app.route('/sales/history')
    def sales_history():
        """Per-day sold and unsold lines, most recent day first."""
        products, productions, sales = store.load_snapshot()
        days = reconcile_daily(products, productions, sales, tz=report_tz(), pricing=pricing())
        return render_template('sales/history.html', days=days)

    # ==================== ADMIN ROUTES ====================

    @app.route('/admin')
    def admin_dashboard():
        """
        Admin analytics for a time range (?range=today|week|month|year).
        Shows revenue, units made and sold, unsold value, best and worst
        seller, the sales trend and per-product performance.
        """
        range_name = request.args.get('range', 'today')
        if range_name not in RANGES:
            abort(400)
        tz = report_tz()
        products, productions, sales = store.load_snapshot(range_start(range_name, now(), tz))
        summary = summarize_period(products, productions, sales, pricing=pricing())
        trend = sales_trend(products, sales, RANGE_GRANULARITY[range_name], tz=tz, pricing=pricing())
        return render_template('admin/dashboard.html', summary=summary, trend=trend,
                               range_name=range_name, ranges=RANGES)

    @app.route('/admin/history')
    def admin_history():
        """Full daily reconciliation with per-record edit and delete."""
        products, productions, sales = store.load_snapshot()
        days = reconcile_daily(products, productions, sales, tz=report_tz(), pricing=pricing())
        return render_template('admin/history.html', days=days)

    @app.route('/admin/history/<any(production, sale):kind>/<int:record_id>/edit', methods=['POST'])
    def admin_edit_record(kind, record_id):
        """Correct the quantity of one production or sale record."""
        try:
            store.update_event_quantity(kind, record_id, request.form.get('quantity', ''),
                                        expected_version=request.form.get('version'))
        except (ValidationError, ConflictError) as exc:
            flash(str(exc))
            return redirect(url_for('admin_history'))
        flash('Record updated.')
        return redirect(url_for('admin_history'))

    @app.route('/admin/history/<any(production, sale):kind>/<int:record_id>/delete', methods=['POST'])
    def admin_delete_record(kind, record_id):
        """Delete one production or sale record after explicit confirmation."""
        if request.form.get('confirm') != 'yes':
            flash('Please confirm the deletion.')
            return redirect(url_for('admin_history'))
        store.delete_event(kind, record_id)
        flash('Record deleted.')
        return redirect(url_for('admin_history'))

    @app.route('/admin/products')
    def admin_products():
        """Product list with price, name and visibility controls."""
        return render_template('admin/products.html', products=store.list_products())

    @app.route('/admin/products/<int:product_id>/edit', methods=['POST'])
    def admin_edit_product(product_id):
        """
        Edit a product's name and current price.
        A new price applies to future batches and, under current pricing, to past sales too.
        """
        try:
            store.update_product(
                product_id,
                name=request.form.get('name', ''),
                price=request.form.get('price', ''),
                expected_version=request.form.get('version'),
            )
        except (ValidationError, ConflictError) as exc:
            flash(str(exc))
            return redirect(url_for('admin_products'))
        flash('Product updated.')
        return redirect(url_for('admin_products'))

    @app.route('/admin/products/<int:product_id>/toggle', methods=['POST'])
    def admin_toggle_product(product_id):
        product = store.get_product(product_id)
        store.update_product(product_id, active=not product.active)
        flash('Product updated.')
        return redirect(url_for('admin_products'))

    @app.route('/admin/ledger')
    def admin_ledger():
        """
        Running stock per product at the close of each day, carrying stock
        forward across days. Needs the full history, so no range filter.
        """
        products, productions, sales = store.load_snapshot()
        entries = stock_ledger(products, productions, sales, tz=report_tz())
        return render_template('admin/ledger.html', entries=entries)

    return app


# ==================== APPLICATION ENTRY POINT ====================

if __name__ == '__main__':
    create_app().run(debug=True, host='127.0.0.1', port=5000)
