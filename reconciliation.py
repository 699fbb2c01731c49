# Daily reconciliation of the bakery's production and sales logs
# Pure functions over plain records: no Flask, no database access.

import calendar
import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

from zoneinfo import ZoneInfo

logger = logging.getLogger(__name__)

ZERO = Decimal('0.00')

# Sale valuation modes
PRICING_CURRENT = 'current'    # value sales at the product's current price
PRICING_RECORDED = 'recorded'  # value sales at the price captured when logged
PRICING_MODES = (PRICING_CURRENT, PRICING_RECORDED)

# Analytics ranges and the trend granularity each one uses
RANGE_GRANULARITY = {
    'today': 'hour',
    'week': 'day',
    'month': 'day',
    'year': 'month',
}
RANGES = tuple(RANGE_GRANULARITY)

UNKNOWN_NAME = 'Unknown'


# ==================== INPUT RECORDS ====================

@dataclass(frozen=True)
class ProductRecord:
    """A menu item as the aggregator sees it. ``price`` is the current price."""
    id: Any
    name: str
    price: Decimal
    active: bool = True
    image_url: Optional[str] = None
    version: int = 1


@dataclass(frozen=True)
class ProductionEvent:
    """One batch of ``quantity`` units made, valued at its own ``unit_price``."""
    id: Any
    product_id: Any
    quantity: int
    unit_price: Decimal
    created_at: datetime
    version: int = 1


@dataclass(frozen=True)
class SaleEvent:
    """One sale of ``quantity`` units. ``unit_price`` is the optional snapshot."""
    id: Any
    product_id: Any
    quantity: int
    created_at: datetime
    recorded_by: str = ''
    unit_price: Optional[Decimal] = None
    version: int = 1


UNKNOWN_PRODUCT = ProductRecord(id=None, name=UNKNOWN_NAME, price=ZERO, active=False)


# ==================== OUTPUT SUMMARIES ====================

@dataclass
class DailyProductSummary:
    """Production and sales of one product within one day bucket."""
    day: date
    product_id: Any
    product_name: str
    price: Decimal
    known: bool = True
    produced: int = 0
    sold: int = 0
    unsold: int = 0
    revenue: Decimal = ZERO
    unsold_value: Decimal = ZERO
    production_value: Decimal = ZERO
    production_events: List[ProductionEvent] = field(default_factory=list)
    sale_events: List[SaleEvent] = field(default_factory=list)

    @property
    def remaining(self):
        # Unclamped; negative when the day sold stock made earlier
        return self.produced - self.sold


@dataclass
class DailySummary:
    """All product summaries for one calendar day plus the day's totals."""
    day: date
    total_revenue: Decimal = ZERO
    total_unsold_value: Decimal = ZERO
    total_items_sold: int = 0
    total_produced: int = 0
    production_value: Decimal = ZERO
    products: Dict[Any, DailyProductSummary] = field(default_factory=dict)

    @property
    def label(self):
        return f"{calendar.day_name[self.day.weekday()]}, {self.day.day} {calendar.month_name[self.day.month]} {self.day.year}"

    def product_summaries(self):
        """Product summaries ordered by name, unknown buckets last."""
        return sorted(
            self.products.values(),
            key=lambda p: (not p.known, p.product_name.lower(), str(p.product_id)),
        )


@dataclass
class LedgerEntry:
    """Running stock of one product at the close of one day."""
    day: date
    product_id: Any
    product_name: str
    known: bool
    opening: int
    produced: int
    sold: int
    closing: int

    @property
    def oversold(self):
        return self.closing < 0

    @property
    def on_hand(self):
        return max(0, self.closing)


@dataclass
class ProductPerformance:
    product_id: Any
    name: str
    known: bool = True
    made: int = 0
    sold: int = 0
    revenue: Decimal = ZERO
    unsold: int = 0
    unsold_value: Decimal = ZERO


@dataclass
class PeriodSummary:
    """Totals over an analytics range, as shown on the admin dashboard."""
    total_revenue: Decimal = ZERO
    total_made: int = 0
    total_sold: int = 0
    unsold_value: Decimal = ZERO
    best_seller: Optional[Tuple[str, int]] = None
    worst_seller: Optional[Tuple[str, int]] = None
    performance: List[ProductPerformance] = field(default_factory=list)


@dataclass(frozen=True)
class TrendPoint:
    key: datetime  # canonical, sortable bucket start
    label: str
    total: Decimal


@dataclass(frozen=True)
class ProductionStats:
    week_count: int
    month_count: int
    month_value: Decimal
    top_item: Optional[str]


# ==================== HELPERS ====================

def to_money(value):
    """Coerce a price-like value to a 2dp Decimal. ``None`` is zero."""
    if value is None:
        return ZERO
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(ZERO)


def get_timezone(name):
    """Resolve a reporting timezone name. Raises ``ValueError`` if unknown."""
    try:
        return ZoneInfo(name)
    except (KeyError, ValueError) as exc:
        raise ValueError(f'Unknown reporting timezone: {name!r}') from exc


def to_local(timestamp, tz):
    # Store timestamps are naive UTC
    if timestamp.tzinfo is None:
        timestamp = timestamp.replace(tzinfo=timezone.utc)
    return timestamp.astimezone(tz)


def day_key(timestamp, tz=timezone.utc):
    """Calendar date of ``timestamp`` in the reporting timezone."""
    return to_local(timestamp, tz).date()


def build_product_lookup(products):
    return {p.id: p for p in products}


def resolve_product(lookup, product_id):
    """Return the product for ``product_id`` or the ``Unknown`` sentinel."""
    return lookup.get(product_id, UNKNOWN_PRODUCT)


def sale_price(sale, product, pricing=PRICING_CURRENT):
    """Unit price a sale is valued at under the given pricing mode."""
    if pricing == PRICING_RECORDED and sale.unit_price is not None:
        return to_money(sale.unit_price)
    return to_money(product.price)


def _check_pricing(pricing):
    if pricing not in PRICING_MODES:
        raise ValueError(f'Unknown pricing mode: {pricing!r}')


# ==================== DAILY RECONCILIATION ====================

def reconcile_daily(products, productions, sales, tz=timezone.utc, pricing=PRICING_CURRENT):
    """
    Group production and sale events by calendar day and product.

    Every event lands in exactly one day bucket. Events whose product id is
    not in ``products`` are grouped under an ``Unknown`` bucket priced at
    zero, so totals stay complete when a product row is missing.

    Unsold stock is day-scoped: ``max(0, produced - sold)`` for the same
    product on the same day. Stock made on an earlier day and sold today is
    not netted across days; see :func:`stock_ledger` for running stock.

    Returns:
        list[DailySummary]: most recent day first.
    """
    _check_pricing(pricing)
    lookup = build_product_lookup(products)
    days: Dict[date, DailySummary] = {}

    def bucket(timestamp, product_id):
        key = day_key(timestamp, tz)
        day = days.get(key)
        if day is None:
            day = days[key] = DailySummary(day=key)
        summary = day.products.get(product_id)
        if summary is None:
            product = resolve_product(lookup, product_id)
            summary = day.products[product_id] = DailyProductSummary(
                day=key,
                product_id=product_id,
                product_name=product.name,
                price=to_money(product.price),
                known=product is not UNKNOWN_PRODUCT,
            )
        return day, summary

    production_count = 0
    for event in productions:
        day, summary = bucket(event.created_at, event.product_id)
        value = event.quantity * to_money(event.unit_price)
        summary.produced += event.quantity
        summary.production_value += value
        summary.production_events.append(event)
        day.total_produced += event.quantity
        day.production_value += value
        production_count += 1

    sale_count = 0
    for event in sales:
        day, summary = bucket(event.created_at, event.product_id)
        product = resolve_product(lookup, event.product_id)
        revenue = event.quantity * sale_price(event, product, pricing)
        summary.sold += event.quantity
        summary.revenue += revenue
        summary.sale_events.append(event)
        day.total_revenue += revenue
        day.total_items_sold += event.quantity
        sale_count += 1

    for day in days.values():
        for summary in day.products.values():
            summary.unsold = max(0, summary.produced - summary.sold)
            if summary.unsold > 0:
                summary.unsold_value = summary.unsold * summary.price
                day.total_unsold_value += summary.unsold_value
            summary.production_events.sort(key=lambda e: to_local(e.created_at, tz), reverse=True)
            summary.sale_events.sort(key=lambda e: to_local(e.created_at, tz), reverse=True)

    logger.debug('Reconciled %d production and %d sale events into %d days',
                 production_count, sale_count, len(days))
    return sorted(days.values(), key=lambda d: d.day, reverse=True)


def find_day(summaries, day):
    """Return the summary for ``day`` from :func:`reconcile_daily` output, or ``None``."""
    for summary in summaries:
        if summary.day == day:
            return summary
    return None


# ==================== RUNNING STOCK LEDGER ====================

def stock_ledger(products, productions, sales, tz=timezone.utc):
    """
    Running stock per product, sampled at the close of each day with activity.

    ``closing`` is cumulative produced minus cumulative sold up to and
    including the day. It goes negative when more was sold than was ever
    recorded as made; :attr:`LedgerEntry.oversold` flags that. Pass the full
    event history, otherwise opening balances start from zero at the first
    event given.

    Returns:
        list[LedgerEntry]: most recent day first, then by product name.
    """
    lookup = build_product_lookup(products)
    produced = defaultdict(lambda: defaultdict(int))
    sold = defaultdict(lambda: defaultdict(int))

    for event in productions:
        produced[event.product_id][day_key(event.created_at, tz)] += event.quantity
    for event in sales:
        sold[event.product_id][day_key(event.created_at, tz)] += event.quantity

    entries = []
    for product_id in set(produced) | set(sold):
        product = resolve_product(lookup, product_id)
        running = 0
        for key in sorted(set(produced[product_id]) | set(sold[product_id])):
            made = produced[product_id].get(key, 0)
            out = sold[product_id].get(key, 0)
            entries.append(LedgerEntry(
                day=key,
                product_id=product_id,
                product_name=product.name,
                known=product is not UNKNOWN_PRODUCT,
                opening=running,
                produced=made,
                sold=out,
                closing=running + made - out,
            ))
            running += made - out

    entries.sort(key=lambda e: (e.product_name.lower(), str(e.product_id)))
    entries.sort(key=lambda e: e.day, reverse=True)
    return entries


# ==================== PERIOD ANALYTICS ====================

def range_start(range_name, now, tz=timezone.utc):
    """
    Start of an analytics range ending at ``now``.

    ``today`` starts at local midnight, ``week`` 7 days back, ``month`` one
    calendar month back and ``year`` one year back (day clamped to the end of
    shorter months).
    """
    if range_name not in RANGE_GRANULARITY:
        raise ValueError(f'Unknown range: {range_name!r}')
    local = to_local(now, tz)
    if range_name == 'today':
        return datetime.combine(local.date(), time.min, tzinfo=tz)
    if range_name == 'week':
        return local - timedelta(days=7)
    if range_name == 'month':
        year, month = (local.year, local.month - 1) if local.month > 1 else (local.year - 1, 12)
    else:
        year, month = local.year - 1, local.month
    day = min(local.day, calendar.monthrange(year, month)[1])
    return local.replace(year=year, month=month, day=day)


def summarize_period(products, productions, sales, pricing=PRICING_CURRENT):
    """
    Totals and per-product performance over whatever events are passed in.

    The best seller is the product with the most units sold (none when
    nothing sold). The worst seller is the product with the fewest units sold
    among those made in the period. Ties go to the first product by name.
    """
    _check_pricing(pricing)
    lookup = build_product_lookup(products)
    stats: Dict[Any, ProductPerformance] = {
        p.id: ProductPerformance(product_id=p.id, name=p.name) for p in products
    }

    def entry(product_id):
        if product_id not in stats:
            stats[product_id] = ProductPerformance(product_id=product_id, name=UNKNOWN_NAME, known=False)
        return stats[product_id]

    result = PeriodSummary()
    for event in productions:
        entry(event.product_id).made += event.quantity
        result.total_made += event.quantity
    for event in sales:
        revenue = event.quantity * sale_price(event, resolve_product(lookup, event.product_id), pricing)
        perf = entry(event.product_id)
        perf.sold += event.quantity
        perf.revenue += revenue
        result.total_sold += event.quantity
        result.total_revenue += revenue

    ordered = sorted(stats.values(), key=lambda p: (not p.known, p.name.lower(), str(p.product_id)))
    for perf in ordered:
        perf.unsold = max(0, perf.made - perf.sold)
        perf.unsold_value = perf.unsold * to_money(resolve_product(lookup, perf.product_id).price)
        result.unsold_value += perf.unsold_value
        if perf.sold > 0 and (result.best_seller is None or perf.sold > result.best_seller[1]):
            result.best_seller = (perf.name, perf.sold)
        if perf.made > 0 and (result.worst_seller is None or perf.sold < result.worst_seller[1]):
            result.worst_seller = (perf.name, perf.sold)

    # stable sort keeps name order among equal revenue
    result.performance = sorted(ordered, key=lambda p: p.revenue, reverse=True)
    return result


def _trend_bucket(local, granularity):
    if granularity == 'hour':
        key = local.replace(minute=0, second=0, microsecond=0)
        return key, key.strftime('%H:00')
    if granularity == 'day':
        key = datetime.combine(local.date(), time.min, tzinfo=local.tzinfo)
        return key, f'{key.day} {calendar.month_abbr[key.month]}'
    if granularity == 'month':
        key = datetime(local.year, local.month, 1, tzinfo=local.tzinfo)
        return key, f'{calendar.month_abbr[key.month]} {key.year}'
    raise ValueError(f'Unknown granularity: {granularity!r}')


def sales_trend(products, sales, granularity, tz=timezone.utc, pricing=PRICING_CURRENT):
    """Sales revenue per hour, day or month bucket, oldest bucket first."""
    _check_pricing(pricing)
    lookup = build_product_lookup(products)
    totals: Dict[datetime, Decimal] = {}
    labels: Dict[datetime, str] = {}
    for event in sales:
        key, label = _trend_bucket(to_local(event.created_at, tz), granularity)
        price = sale_price(event, resolve_product(lookup, event.product_id), pricing)
        totals[key] = totals.get(key, ZERO) + event.quantity * price
        labels[key] = label
    return [TrendPoint(key=k, label=labels[k], total=totals[k]) for k in sorted(totals)]


def week_start(now, tz=timezone.utc):
    """Local midnight of the most recent Sunday."""
    local = to_local(now, tz)
    sunday = local.date() - timedelta(days=(local.weekday() + 1) % 7)
    return datetime.combine(sunday, time.min, tzinfo=tz)


def month_start(now, tz=timezone.utc):
    local = to_local(now, tz)
    return datetime.combine(local.date().replace(day=1), time.min, tzinfo=tz)


def production_stats(products, productions, sales, now, tz=timezone.utc):
    """
    Production dashboard figures: units made since the start of the week and
    of the month, the month's production value at stored unit prices, and the
    month's top-selling product name.
    """
    lookup = build_product_lookup(products)
    since_week = week_start(now, tz)
    since_month = month_start(now, tz)

    week_count = month_count = 0
    month_value = ZERO
    for event in productions:
        created = to_local(event.created_at, tz)
        if created >= since_week:
            week_count += event.quantity
        if created >= since_month:
            month_count += event.quantity
            month_value += event.quantity * to_money(event.unit_price)

    counts: Dict[str, int] = defaultdict(int)
    for event in sales:
        if to_local(event.created_at, tz) >= since_month:
            counts[resolve_product(lookup, event.product_id).name] += event.quantity

    top_item = None
    best = 0
    for name in sorted(counts):
        if counts[name] > best:
            top_item, best = name, counts[name]

    return ProductionStats(week_count=week_count, month_count=month_count,
                           month_value=month_value, top_item=top_item)
