from datetime import datetime
from decimal import Decimal

import pytest

from app import create_app, db, engine_options, SalesLog, InventoryBatch
from store import BakeryStore, StoreUnavailableError

MONDAY = datetime(2024, 3, 4, 8, 0)
TUESDAY = datetime(2024, 3, 5, 9, 0)


@pytest.fixture
def history(make_product, make_batch, make_sale):
    """Apam: 10 made and 4 sold on Monday, 5 more sold on Tuesday."""
    pid = make_product('Apam', '1.00')
    bid = make_batch(pid, 10, '1.00', created_at=MONDAY)
    sid = make_sale(pid, 4, created_at=MONDAY.replace(hour=15))
    make_sale(pid, 5, created_at=TUESDAY)
    return {'product': pid, 'batch': bid, 'sale': sid}


def test_admin_history_reconciles_per_day(client, history):
    rv = client.get('/admin/history')
    assert rv.status_code == 200
    assert b'Admin History' in rv.data
    assert b'Monday, 4 March 2024' in rv.data
    assert b'Made 10, sold 4, unsold 6, revenue RM 4.00' in rv.data
    # stock made on Monday is not netted against Tuesday's sales
    assert b'Made 0, sold 5, unsold 0, revenue RM 5.00' in rv.data
    # newest day first
    assert rv.data.index(b'Tuesday, 5 March 2024') < rv.data.index(b'Monday, 4 March 2024')


def test_price_change_revalues_past_sales(client, history):
    client.post(f"/admin/products/{history['product']}/edit", data={'name': 'Apam', 'price': '2.00'})

    rv = client.get('/admin/history')
    assert b'Made 10, sold 4, unsold 6, revenue RM 8.00' in rv.data
    with client.application.app_context():
        assert db.session.get(InventoryBatch, history['batch']).unit_price == Decimal('1.00')


def test_edit_record_quantity(client, history):
    resp = client.post(f"/admin/history/sale/{history['sale']}/edit", data={'quantity': '6', 'version': '1'},
                       follow_redirects=True)
    assert b'Record updated.' in resp.data
    assert b'Made 10, sold 6, unsold 4, revenue RM 6.00' in resp.data

    resp = client.post(f"/admin/history/sale/{history['sale']}/edit", data={'quantity': '-1'},
                       follow_redirects=True)
    assert b'Invalid quantity' in resp.data
    with client.application.app_context():
        assert db.session.get(SalesLog, history['sale']).quantity_sold == 6


def test_delete_record_requires_confirmation(client, history):
    url = f"/admin/history/production/{history['batch']}/delete"

    resp = client.post(url, data={}, follow_redirects=True)
    assert b'Please confirm the deletion.' in resp.data
    with client.application.app_context():
        assert db.session.get(InventoryBatch, history['batch']) is not None

    resp = client.post(url, data={'confirm': 'yes'}, follow_redirects=True)
    assert b'Record deleted.' in resp.data
    with client.application.app_context():
        assert db.session.get(InventoryBatch, history['batch']) is None

    assert client.post(url, data={'confirm': 'yes'}).status_code == 404


def test_unknown_record_kind_is_404(client, history):
    assert client.post(f"/admin/history/refund/{history['sale']}/edit", data={'quantity': '1'}).status_code == 404


def test_sales_history_shows_unsold_and_unknown(client, history, make_sale):
    make_sale(4242, 2, created_at=MONDAY.replace(hour=16))

    rv = client.get('/sales/history')
    assert rv.status_code == 200
    assert b'Sales History' in rv.data
    assert b'unsold' in rv.data
    assert b'Unknown' in rv.data
    assert b'6 sold, RM 4.00 revenue, RM 6.00 unsold' in rv.data


def test_production_history(client, history):
    rv = client.get('/production/history')
    assert b'Production History' in rv.data
    assert b'10 items, RM 10.00' in rv.data


def test_ledger_carries_stock_forward(client, history):
    rv = client.get('/admin/ledger')
    assert rv.status_code == 200
    assert b'Stock Ledger' in rv.data
    assert b'2024-03-05' in rv.data
    assert b'(oversold)' not in rv.data


def test_ledger_flags_oversold(client, make_product, make_sale):
    pid = make_product('Apam', '1.00')
    make_sale(pid, 3, created_at=MONDAY)
    rv = client.get('/admin/ledger')
    assert b'(oversold)' in rv.data


def test_admin_dashboard_ranges(client, make_product, make_batch, make_sale):
    pid = make_product('Apam', '1.50')
    make_batch(pid, 10, '1.50')
    make_sale(pid, 4)

    rv = client.get('/admin')
    assert rv.status_code == 200
    assert b'Admin Dashboard' in rv.data
    assert b'RM 6.00' in rv.data  # revenue
    assert b'RM 9.00' in rv.data  # unsold value
    assert b'Apam (4 sold)' in rv.data

    for name in ('week', 'month', 'year'):
        assert client.get(f'/admin?range={name}').status_code == 200
    assert client.get('/admin?range=decade').status_code == 400


def test_production_dashboard(client, make_product, make_batch, make_sale):
    pid = make_product('Apam', '1.50')
    make_batch(pid, 10, '1.50')
    make_sale(pid, 4)

    rv = client.get('/production')
    assert b'Production Overview' in rv.data
    assert b'RM 15.00' in rv.data
    assert b'Apam' in rv.data


def test_store_failure_offers_retry(client, monkeypatch):
    def unavailable(self, active_only=False):
        raise StoreUnavailableError('Could not load products. Please try again.')

    monkeypatch.setattr(BakeryStore, 'list_products', unavailable)

    rv = client.get('/admin/products')
    assert rv.status_code == 503
    assert b'Could not load products' in rv.data
    assert b'Try again' in rv.data


def test_recorded_pricing_mode(make_product, make_batch, make_sale):
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SALE_PRICING': 'recorded',
    })
    with app.app_context():
        db.create_all()
        pid = make_product('Apam', '2.00')
        make_batch(pid, 10, '1.00', created_at=MONDAY)
        make_sale(pid, 4, created_at=MONDAY, unit_price='1.00')

    rv = app.test_client().get('/admin/history')
    assert b'Made 10, sold 4, unsold 6, revenue RM 4.00' in rv.data


def test_invalid_settings_fail_fast():
    with pytest.raises(ValueError):
        create_app({'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:', 'SALE_PRICING': 'average'})
    with pytest.raises(ValueError):
        create_app({'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:', 'REPORT_TIMEZONE': 'Nowhere/Town'})


def test_store_timeout_sets_engine_options():
    app = create_app({'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:', 'STORE_TIMEOUT': 3})
    assert app.config['SQLALCHEMY_ENGINE_OPTIONS'] == {'connect_args': {'timeout': 3.0}}

    assert engine_options('postgresql://bakery@db/bakery', '2.5') == {'pool_timeout': 2.5, 'pool_pre_ping': True}


def test_explicit_engine_options_are_kept():
    options = {'connect_args': {'timeout': 1}}
    app = create_app({'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:', 'SQLALCHEMY_ENGINE_OPTIONS': options})
    assert app.config['SQLALCHEMY_ENGINE_OPTIONS'] == options
