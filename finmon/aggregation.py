"""Folds over already-fetched rows.

Nothing here does I/O. Sums go through ``math.fsum`` so a bucket total does
not depend on the order the rows arrived in.
"""

import calendar
import math
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from itertools import chain
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

MONTHS = ["Jan", "Feb", "Mar", "Apr", "May", "Jun", "Jul", "Aug", "Sep", "Oct", "Nov", "Dec"]

PAID_STATUSES = frozenset({"PAID", "COMPLETED", "SETTLED", "PROCESSED", "APPROVED"})
UNCATEGORIZED = "Uncategorized"

ORDER = "Order"
MARKET = "Market"
COURSE = "Course"

FORECAST_PERIODS = 6
GROWTH_WINDOW = 3
GROWTH_LIMIT = 0.2


# Row access

def _get(row: Any, key: str, default=None):
    if isinstance(row, Mapping):
        return row.get(key, default)
    return getattr(row, key, default)


def _amount(value) -> float:
    try:
        return float(value or 0)
    except (TypeError, ValueError):
        return 0.0


def to_date(value) -> Optional[date]:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        try:
            return datetime.fromisoformat(value.strip().replace("Z", "+00:00")).date()
        except ValueError:
            return None
    return None


def to_datetime(value) -> Optional[datetime]:
    if isinstance(value, datetime):
        return value.replace(tzinfo=None)
    if isinstance(value, str) and "T" in value:
        try:
            return datetime.fromisoformat(value.strip().replace("Z", "+00:00")).replace(tzinfo=None)
        except ValueError:
            return None
    day = to_date(value)
    return datetime.combine(day, time.min) if day else None


def month_label(day: date) -> str:
    return MONTHS[day.month - 1]


# Date windows

def month_window(day: date) -> Tuple[date, date]:
    last = calendar.monthrange(day.year, day.month)[1]
    return day.replace(day=1), day.replace(day=last)


def previous_month_window(day: date) -> Tuple[date, date]:
    return month_window(day.replace(day=1) - timedelta(days=1))


def year_window(year: int) -> Tuple[date, date]:
    return date(year, 1, 1), date(year, 12, 31)


# Monthly bucketing

def _bucket(rows: Iterable, year: int, date_of: Callable, amount_of: Callable) -> Dict[str, List[float]]:
    buckets: Dict[str, List[float]] = {month: [] for month in MONTHS}
    for row in rows:
        day = to_date(date_of(row))
        if day is None or day.year != year:
            continue
        buckets[month_label(day)].append(amount_of(row))
    return buckets


def monthly_totals(rows: Iterable, year: int, date_key: str = "date", amount_key: str = "amount") -> List[dict]:
    """Twelve ``{"month", "total"}`` buckets, Jan..Dec, for rows dated in ``year``."""
    buckets = _bucket(
        rows,
        year,
        lambda row: _get(row, date_key),
        lambda row: _amount(_get(row, amount_key)),
    )
    return [{"month": month, "total": math.fsum(buckets[month])} for month in MONTHS]


def total_amount(rows: Iterable, amount_key: str = "amount") -> float:
    return math.fsum(_amount(_get(row, amount_key)) for row in rows)


def expenses_by_category(rows: Iterable) -> List[dict]:
    amounts: Dict[Any, List[float]] = {}
    names: Dict[Any, str] = {}
    for row in rows:
        category_id = _get(row, "category_id")
        name = _get(row, "category_name") or UNCATEGORIZED
        amounts.setdefault(category_id, []).append(_amount(_get(row, "amount")))
        names[category_id] = min(names.get(category_id, name), name)

    totals = [
        {"category_id": category_id, "category_name": names[category_id], "total": math.fsum(values)}
        for category_id, values in amounts.items()
    ]
    return sorted(totals, key=lambda item: (-item["total"], item["category_name"], str(item["category_id"])))


# Revenue

@dataclass(frozen=True)
class RevenueTransaction:
    id: str
    date: Optional[datetime]
    description: str
    amount: float
    source: str


@dataclass(frozen=True)
class RevenueSummary:
    total_revenue: float = 0.0
    order_revenue: float = 0.0
    market_revenue: float = 0.0
    course_revenue: float = 0.0
    order_count: int = 0
    market_count: int = 0
    course_count: int = 0


@dataclass(frozen=True)
class RevenueBySource:
    source: str
    amount: float
    percentage: float


@dataclass(frozen=True)
class RevenueByMonth:
    month: str
    order_revenue: float = 0.0
    market_revenue: float = 0.0
    course_revenue: float = 0.0
    total_revenue: float = 0.0


def is_paid(order) -> bool:
    return str(_get(order, "payment_status") or "").upper() in PAID_STATUSES


def order_amount(order) -> float:
    return _amount(_get(order, "total_amount")) + _amount(_get(order, "shipping_cost"))


def market_amount(market) -> float:
    return _amount(_get(market, "final_incoming"))


def course_amount(course) -> float:
    return _amount(_get(course, "total_amount"))


def revenue_transactions(orders: Iterable, markets: Iterable, courses: Iterable) -> List[RevenueTransaction]:
    """Orders, markets and courses in the common {date, description, amount, source} shape."""
    transactions = [
        RevenueTransaction(
            id=f"order-{_get(order, 'id')}",
            date=to_datetime(_get(order, "created_at")),
            description=f"Order #{_get(order, 'order_number')}",
            amount=order_amount(order),
            source=ORDER,
        )
        for order in orders
    ]
    transactions += [
        RevenueTransaction(
            id=f"market-{_get(market, 'id')}",
            date=to_datetime(_get(market, "end_date")),
            description=f"Market: {_get(market, 'name')}",
            amount=market_amount(market),
            source=MARKET,
        )
        for market in markets
    ]
    transactions += [
        RevenueTransaction(
            id=f"course-{_get(course, 'id')}",
            date=to_datetime(_get(course, "date")),
            description=f"Course: {_get(course, 'course_name')}",
            amount=course_amount(course),
            source=COURSE,
        )
        for course in courses
    ]
    return transactions


def recent_revenue_transactions(orders, markets, courses, limit: int = 5) -> List[RevenueTransaction]:
    transactions = revenue_transactions(orders, markets, courses)
    transactions.sort(key=lambda t: (t.date or datetime.min, t.id), reverse=True)
    return transactions[:limit]


def revenue_summary(orders: Sequence, markets: Sequence, courses: Sequence) -> RevenueSummary:
    order_amounts = [order_amount(order) for order in orders]
    market_amounts = [market_amount(market) for market in markets]
    course_amounts = [course_amount(course) for course in courses]
    return RevenueSummary(
        total_revenue=math.fsum(chain(order_amounts, market_amounts, course_amounts)),
        order_revenue=math.fsum(order_amounts),
        market_revenue=math.fsum(market_amounts),
        course_revenue=math.fsum(course_amounts),
        order_count=len(order_amounts),
        market_count=len(market_amounts),
        course_count=len(course_amounts),
    )


def revenue_by_source(summary: RevenueSummary) -> List[RevenueBySource]:
    total = summary.total_revenue

    def share(amount: float) -> float:
        return amount / total * 100 if total else 0.0

    return [
        RevenueBySource("Orders", summary.order_revenue, share(summary.order_revenue)),
        RevenueBySource("Markets", summary.market_revenue, share(summary.market_revenue)),
        RevenueBySource("Courses", summary.course_revenue, share(summary.course_revenue)),
    ]


def revenue_by_month(orders: Iterable, markets: Iterable, courses: Iterable, year: int) -> List[RevenueByMonth]:
    by_order = _bucket(orders, year, lambda o: _get(o, "created_at"), order_amount)
    by_market = _bucket(markets, year, lambda m: _get(m, "end_date"), market_amount)
    by_course = _bucket(courses, year, lambda c: _get(c, "date"), course_amount)
    return [
        RevenueByMonth(
            month=month,
            order_revenue=math.fsum(by_order[month]),
            market_revenue=math.fsum(by_market[month]),
            course_revenue=math.fsum(by_course[month]),
            total_revenue=math.fsum(chain(by_order[month], by_market[month], by_course[month])),
        )
        for month in MONTHS
    ]


# Profit & loss

@dataclass(frozen=True)
class ProfitLossRow:
    month: str
    revenue: float
    expenses: float
    profit: float
    profit_margin: float


def revenue_month_map(rows: Iterable[RevenueByMonth]) -> Dict[str, float]:
    return {row.month: row.total_revenue for row in rows}


def expense_month_map(rows: Iterable[Mapping]) -> Dict[str, float]:
    return {row["month"]: row["total"] for row in rows}


def _month_order(labels: Iterable[str]) -> List[str]:
    labels = set(labels)
    known = [month for month in MONTHS if month in labels]
    return known + sorted(labels.difference(MONTHS))


def profit_loss_rows(revenue: Mapping[str, float], expenses: Mapping[str, float]) -> List[ProfitLossRow]:
    """Merge monthly revenue and expenses; a month missing on one side counts as 0."""
    rows = []
    for month in _month_order(chain(revenue, expenses)):
        month_revenue = float(revenue.get(month, 0))
        month_expenses = float(expenses.get(month, 0))
        profit = month_revenue - month_expenses
        rows.append(ProfitLossRow(
            month=month,
            revenue=month_revenue,
            expenses=month_expenses,
            profit=profit,
            profit_margin=profit / month_revenue * 100 if month_revenue else 0.0,
        ))
    return rows


# Period-over-period change

@dataclass(frozen=True)
class MonthOverMonth:
    current: float = 0.0
    previous: float = 0.0
    percent_change: float = 0.0


def percent_change(current: float, previous: float) -> float:
    # no baseline, no change
    if not previous:
        return 0.0
    return (current - previous) / abs(previous) * 100


def month_over_month(current: float, previous: float) -> MonthOverMonth:
    return MonthOverMonth(current=current, previous=previous, percent_change=percent_change(current, previous))


# Forecast

@dataclass(frozen=True)
class ForecastRow:
    month: str
    revenue: float
    expenses: float
    profit: float
    is_forecast: bool = True


def growth_rate(values: Sequence[float], window: int = GROWTH_WINDOW, limit: float = GROWTH_LIMIT) -> float:
    """Mean period-over-period growth over the trailing ``window`` values, clamped to +/- ``limit``."""
    trailing = list(values)[-window:]
    if len(trailing) < 2:
        return 0.0
    steps = [(cur - prev) / prev if prev else 0.0 for prev, cur in zip(trailing, trailing[1:])]
    rate = sum(steps) / len(steps)
    return max(-limit, min(limit, rate))


def project(values: Sequence[float], periods: int = FORECAST_PERIODS) -> List[float]:
    if not values:
        return []
    rate = growth_rate(values)
    last = values[-1]
    return [last * (1 + rate) ** n for n in range(1, periods + 1)]


def forecast_rows(rows: Sequence[ProfitLossRow], periods: int = FORECAST_PERIODS) -> List[ForecastRow]:
    if not rows:
        return []
    last = rows[-1].month
    start = MONTHS.index(last) if last in MONTHS else len(MONTHS) - 1
    revenue = project([row.revenue for row in rows], periods)
    expenses = project([row.expenses for row in rows], periods)
    return [
        ForecastRow(
            month=MONTHS[(start + n) % 12],
            revenue=revenue[n - 1],
            expenses=expenses[n - 1],
            profit=revenue[n - 1] - expenses[n - 1],
        )
        for n in range(1, periods + 1)
    ]


# Analytics

@dataclass(frozen=True)
class AnalyticsMetrics:
    total_revenue: float = 0.0
    total_expenses: float = 0.0
    total_profit: float = 0.0
    profit_margin: float = 0.0
    revenue_growth: float = 0.0
    expense_growth: float = 0.0


def analytics_metrics(rows: Sequence[ProfitLossRow]) -> AnalyticsMetrics:
    if not rows:
        return AnalyticsMetrics()

    total_revenue = math.fsum(row.revenue for row in rows)
    total_expenses = math.fsum(row.expenses for row in rows)
    total_profit = total_revenue - total_expenses

    revenue_growth = expense_growth = 0.0
    if len(rows) >= 2:
        first, last = rows[0], rows[-1]
        revenue_growth = percent_change(last.revenue, first.revenue)
        expense_growth = percent_change(last.expenses, first.expenses)

    return AnalyticsMetrics(
        total_revenue=total_revenue,
        total_expenses=total_expenses,
        total_profit=total_profit,
        profit_margin=total_profit / total_revenue * 100 if total_revenue > 0 else 0.0,
        revenue_growth=revenue_growth,
        expense_growth=expense_growth,
    )
