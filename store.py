# Store layer: every read and write the dashboard makes against the database
# Wraps the Flask-SQLAlchemy session and converts rows to plain records for
# the reconciliation module.

import logging
import re
from contextlib import contextmanager
from datetime import timezone
from decimal import Decimal, InvalidOperation

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError

from models import db, InventoryBatch, Product, SalesLog
from reconciliation import to_money

logger = logging.getLogger(__name__)

# Event kind -> (model, quantity column name)
EVENT_KINDS = {
    'production': (InventoryBatch, 'quantity_made'),
    'sale': (SalesLog, 'quantity_sold'),
}

_QUANTITY_RE = re.compile(r'^\d+$')

# Column limits: Integer quantities/versions and Numeric(10, 2) prices
MAX_QUANTITY = 2 ** 31 - 1
MAX_PRICE = Decimal('99999999.99')


# ==================== ERRORS ====================

class StoreError(Exception):
    """Base class for store failures."""


class StoreUnavailableError(StoreError):
    """The database could not be read or written. The caller should re-fetch."""


class RecordNotFoundError(StoreError):
    """An edit or delete referenced a row that does not exist."""


class ConflictError(StoreError):
    """The row changed since the caller read it (version mismatch)."""


class ValidationError(ValueError):
    """User input rejected before any store call."""


# ==================== VALIDATION ====================

def parse_quantity(value, allow_zero=True):
    """
    Parse a whole, non-negative unit count from form input or an int.

    Raises:
        ValidationError: for blanks, signs, decimals or anything non-numeric.
    """
    if isinstance(value, bool):
        raise ValidationError('Invalid quantity')
    if isinstance(value, int):
        quantity = value
    else:
        text = str(value if value is not None else '').strip()
        if not _QUANTITY_RE.match(text):
            raise ValidationError('Invalid quantity')
        quantity = int(text)
    if quantity < 0 or (quantity == 0 and not allow_zero):
        raise ValidationError('Quantity must be positive.' if not allow_zero else 'Invalid quantity')
    if quantity > MAX_QUANTITY:
        raise ValidationError('Quantity is too large.')
    return quantity


def parse_price(value):
    """Parse a non-negative price into a 2dp Decimal that fits the price columns."""
    try:
        price = Decimal(str(value).strip())
        if not price.is_finite() or price < 0:
            raise ValidationError('Invalid price')
        price = to_money(price)
    except (InvalidOperation, ValueError):
        raise ValidationError('Invalid price')
    if price > MAX_PRICE:
        raise ValidationError('Invalid price')
    return price


def parse_name(value):
    name = (value or '').strip()
    if not name:
        raise ValidationError('Product name is required.')
    return name


def event_model(kind):
    """Return ``(model, quantity_column)`` for an event kind."""
    try:
        return EVENT_KINDS[kind]
    except KeyError:
        raise ValidationError(f'Unknown record type: {kind}')


def as_store_time(moment):
    # Columns hold naive UTC timestamps
    if moment is None or moment.tzinfo is None:
        return moment
    return moment.astimezone(timezone.utc).replace(tzinfo=None)


# ==================== STORE ====================

class BakeryStore:
    """
    Reads and writes for products, production batches and sales logs.

    Every database error is rolled back, logged and re-raised as
    :class:`StoreUnavailableError`. There is no retry here; views surface the
    error and the user retries the whole page.
    """

    def __init__(self, session=None):
        self.session = session if session is not None else db.session

    @contextmanager
    def _call(self, action):
        try:
            yield
        except SQLAlchemyError as exc:
            self.session.rollback()
            logger.exception('Store call failed: %s', action)
            raise StoreUnavailableError(f'Could not {action}. Please try again.') from exc

    # ---------- reads ----------

    def list_products(self, active_only=False):
        query = select(Product).order_by(Product.name, Product.id)
        if active_only:
            query = query.where(Product.is_active.is_(True))
        with self._call('load products'):
            rows = self.session.execute(query).scalars().all()
        return [row.to_record() for row in rows]

    def _list_events(self, model, since, action):
        query = select(model).order_by(model.created_at.desc(), model.id.desc())
        if since is not None:
            query = query.where(model.created_at >= as_store_time(since))
        with self._call(action):
            rows = self.session.execute(query).scalars().all()
        return [row.to_record() for row in rows]

    def list_production_events(self, since=None):
        """Production events newest first, optionally from ``since`` onwards."""
        return self._list_events(InventoryBatch, since, 'load production batches')

    def list_sale_events(self, since=None):
        """Sale events newest first, optionally from ``since`` onwards."""
        return self._list_events(SalesLog, since, 'load sales')

    def load_snapshot(self, since=None):
        """The three record sets a report needs, read in one go."""
        return (
            self.list_products(),
            self.list_production_events(since),
            self.list_sale_events(since),
        )

    def get_product(self, product_id):
        with self._call('load product'):
            row = self.session.get(Product, product_id)
        if row is None:
            raise RecordNotFoundError(f'Product {product_id} not found')
        return row.to_record()

    # ---------- inserts ----------

    def _known_products(self, product_ids):
        with self._call('load products'):
            rows = self.session.execute(select(Product).where(Product.id.in_(set(product_ids)))).scalars().all()
        return {row.id: row for row in rows}

    def insert_production_events(self, batch):
        """
        Bulk insert production batches in one commit.

        Each item is ``{'product_id', 'quantity', 'unit_price'}``. All items are
        validated before anything is written.
        """
        items = [
            (item['product_id'], parse_quantity(item['quantity'], allow_zero=False), parse_price(item['unit_price']))
            for item in batch
        ]
        if not items:
            raise ValidationError('Please add at least one item first!')
        known = self._known_products(pid for pid, _, _ in items)
        missing = [pid for pid, _, _ in items if pid not in known]
        if missing:
            raise ValidationError(f'Unknown product: {missing[0]}')

        with self._call('save production batches'):
            for product_id, quantity, unit_price in items:
                self.session.add(InventoryBatch(product_id=product_id, quantity_made=quantity, unit_price=unit_price))
            self.session.commit()
        logger.info('Recorded %d production batches (%d units)', len(items), sum(q for _, q, _ in items))
        return len(items)

    def insert_sale_events(self, batch):
        """
        Bulk insert sales in one commit.

        Each item is ``{'product_id', 'quantity', 'recorded_by'}``. The product's
        current price is stored with each sale as its price snapshot.
        """
        items = [
            (item['product_id'], parse_quantity(item['quantity'], allow_zero=False), (item.get('recorded_by') or '').strip())
            for item in batch
        ]
        if not items:
            raise ValidationError('No sales recorded to submit.')
        known = self._known_products(pid for pid, _, _ in items)
        missing = [pid for pid, _, _ in items if pid not in known]
        if missing:
            raise ValidationError(f'Unknown product: {missing[0]}')

        with self._call('save sales'):
            for product_id, quantity, recorded_by in items:
                self.session.add(SalesLog(
                    product_id=product_id,
                    quantity_sold=quantity,
                    logged_by=recorded_by,
                    unit_price=to_money(known[product_id].default_price),
                ))
            self.session.commit()
        logger.info('Recorded %d sales (%d units)', len(items), sum(q for _, q, _ in items))
        return len(items)

    def insert_product(self, name, price, image_ref=None, active=True):
        name = parse_name(name)
        price = parse_price(price)
        with self._call('add product'):
            product = Product(name=name, default_price=price, image_url=image_ref or None, is_active=bool(active))
            self.session.add(product)
            self.session.commit()
        logger.info('Added product %s (%s) at %s', product.id, name, price)
        return product.to_record()

    # ---------- updates ----------

    def _compare_and_set(self, model, row_id, values, expected_version, action):
        """
        Update one row and bump its version.

        With ``expected_version`` the update only applies if the stored version
        still matches; otherwise the last write wins.
        """
        stmt = update(model).where(model.id == row_id)
        if expected_version is not None:
            stmt = stmt.where(model.version == expected_version)
        stmt = stmt.values(version=model.version + 1, **values)

        with self._call(action):
            result = self.session.execute(stmt)
            if result.rowcount == 0:
                self.session.rollback()
                exists = self.session.get(model, row_id) is not None
            else:
                self.session.commit()
                exists = True
        if result.rowcount == 0:
            if not exists:
                raise RecordNotFoundError(f'{model.__tablename__} {row_id} not found')
            raise ConflictError('This record was changed by someone else. Reload and try again.')

    def update_event_quantity(self, kind, event_id, new_quantity, expected_version=None):
        """Replace the quantity of a production or sale event."""
        model, column = event_model(kind)
        quantity = parse_quantity(new_quantity)
        version = None if expected_version in (None, '') else parse_quantity(expected_version)
        self._compare_and_set(model, event_id, {column: quantity}, version, 'update record')
        logger.info('Set %s %s quantity to %d', kind, event_id, quantity)
        return quantity

    def delete_event(self, kind, event_id):
        model, _ = event_model(kind)
        with self._call('delete record'):
            row = self.session.get(model, event_id)
            if row is not None:
                self.session.delete(row)
                self.session.commit()
        if row is None:
            raise RecordNotFoundError(f'{kind} {event_id} not found')
        logger.info('Deleted %s %s', kind, event_id)

    def update_product(self, product_id, name=None, price=None, active=None, expected_version=None):
        """Edit a product's name, current price and/or active flag."""
        values = {}
        if name is not None:
            values['name'] = parse_name(name)
        if price is not None:
            values['default_price'] = parse_price(price)
        if active is not None:
            values['is_active'] = bool(active)
        if not values:
            raise ValidationError('Nothing to update.')
        version = None if expected_version in (None, '') else parse_quantity(expected_version)
        self._compare_and_set(Product, product_id, values, version, 'update product')
        logger.info('Updated product %s: %s', product_id, ', '.join(sorted(values)))
        return self.get_product(product_id)
