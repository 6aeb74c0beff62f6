"""Revenue reads: orders, markets and courses, and the reports built on them."""

import asyncio
from datetime import date
from typing import Optional

from sqlalchemy.orm import Session

from .aggregation import (
    is_paid,
    month_over_month,
    month_window,
    previous_month_window,
    recent_revenue_transactions,
    revenue_by_month,
    revenue_by_source,
    revenue_summary,
    year_window,
)
from .crud import date_bounds
from .database import DataSource
from .models import Course, Market, Order
from .results import FetchResult, derive

ORDER_COLUMNS = (Order.id, Order.order_number, Order.created_at, Order.payment_status, Order.total_amount, Order.shipping_cost)
MARKET_COLUMNS = (Market.id, Market.name, Market.end_date, Market.final_incoming, Market.created_at)
COURSE_COLUMNS = (Course.id, Course.date, Course.course_name, Course.total_amount, Course.created_at)


def _rows(query) -> list:
    return [dict(row._mapping) for row in query.all()]


async def fetch_orders(source: DataSource, date_from=None, date_to=None) -> FetchResult:
    """Orders whose payment was received, newest first."""
    def query(db: Session):
        q = date_bounds(db.query(*ORDER_COLUMNS), Order.created_at, date_from, date_to, timestamp=True)
        return [row for row in _rows(q.order_by(Order.created_at.desc(), Order.id.desc())) if is_paid(row)]

    return await source.read(query, [], "orders")


async def fetch_markets(source: DataSource, date_from=None, date_to=None) -> FetchResult:
    def query(db: Session):
        q = date_bounds(db.query(*MARKET_COLUMNS), Market.end_date, date_from, date_to)
        return _rows(q.order_by(Market.end_date.desc(), Market.id.desc()))

    return await source.read(query, [], "markets")


async def fetch_courses(source: DataSource, date_from=None, date_to=None) -> FetchResult:
    def query(db: Session):
        q = date_bounds(db.query(*COURSE_COLUMNS), Course.date, date_from, date_to)
        return _rows(q.order_by(Course.date.desc(), Course.id.desc()))

    return await source.read(query, [], "courses")


async def _fetch_sources(source: DataSource, date_from=None, date_to=None):
    return await asyncio.gather(
        fetch_orders(source, date_from, date_to),
        fetch_markets(source, date_from, date_to),
        fetch_courses(source, date_from, date_to),
    )


async def fetch_revenue_summary(source: DataSource, date_from=None, date_to=None) -> FetchResult:
    orders, markets, courses = await _fetch_sources(source, date_from, date_to)
    return derive(revenue_summary(orders.data, markets.data, courses.data), orders, markets, courses)


async def fetch_revenue_by_month(source: DataSource, year: int) -> FetchResult:
    orders, markets, courses = await _fetch_sources(source, *year_window(year))
    return derive(revenue_by_month(orders.data, markets.data, courses.data, year), orders, markets, courses)


async def fetch_revenue_by_source(source: DataSource, date_from=None, date_to=None) -> FetchResult:
    summary = await fetch_revenue_summary(source, date_from, date_to)
    return summary.with_data(revenue_by_source(summary.data))


async def fetch_month_over_month_revenue(source: DataSource, today: Optional[date] = None) -> FetchResult:
    today = today or date.today()
    current, previous = await asyncio.gather(
        fetch_revenue_summary(source, *month_window(today)),
        fetch_revenue_summary(source, *previous_month_window(today)),
    )
    data = month_over_month(current.data.total_revenue, previous.data.total_revenue)
    return derive(data, current, previous)


async def fetch_recent_revenue_transactions(source: DataSource, limit: int = 5) -> FetchResult:
    orders, markets, courses = await _fetch_sources(source)
    return derive(recent_revenue_transactions(orders.data, markets.data, courses.data, limit), orders, markets, courses)

