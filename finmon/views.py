"""Page loaders: the reads a page needs, joined, then folded for the template."""

import math
from datetime import date
from typing import Optional

from . import crud, revenue
from .aggregation import (
    analytics_metrics,
    expense_month_map,
    forecast_rows,
    month_window,
    percent_change,
    previous_month_window,
    profit_loss_rows,
    revenue_by_source,
    revenue_month_map,
    revenue_summary,
    year_window,
)
from .database import DataSource
from .loading import LoadScope, load_errors

RECENT_EXPENSES = 5
RECENT_REVENUE = 3


async def load_dashboard(source: DataSource, scope: LoadScope, today: Optional[date] = None) -> dict:
    today = today or date.today()
    last_month = previous_month_window(today)
    this_month = month_window(today)

    results = await scope.gather(
        expenses=crud.fetch_expenses(source),
        categories=crud.fetch_expenses_by_category(source),
        monthly=crud.fetch_monthly_expenses(source, today.year),
        total=crud.fetch_total_expenses(source),
        last_month_total=crud.fetch_total_expenses(source, *last_month),
        current_month_total=crud.fetch_total_expenses(source, *this_month),
        revenue_summary=revenue.fetch_revenue_summary(source),
        revenue_mom=revenue.fetch_month_over_month_revenue(source, today),
        recent_revenue=revenue.fetch_recent_revenue_transactions(source, RECENT_REVENUE),
    )

    current_total = results["current_month_total"].data
    last_total = results["last_month_total"].data
    revenue_mom = results["revenue_mom"].data

    net_income = revenue_mom.current - current_total
    previous_net_income = revenue_mom.previous - last_total

    return {
        "year": today.year,
        "recent_expenses": results["expenses"].data[:RECENT_EXPENSES],
        "expense_count": len(results["expenses"].data),
        "category_expenses": results["categories"].data,
        "monthly_expenses": results["monthly"].data,
        "total_expenses": results["total"].data,
        "current_month_total": current_total,
        "last_month_total": last_total,
        "expense_change": percent_change(current_total, last_total),
        "revenue_summary": results["revenue_summary"].data,
        "revenue_mom": revenue_mom,
        "net_income": net_income,
        "net_income_change": percent_change(net_income, previous_net_income),
        "recent_revenue": results["recent_revenue"].data,
        "errors": load_errors(results),
    }


def _matches(text, q: str) -> bool:
    return not q or q.lower() in str(text or "").lower()


def filter_expenses(rows, q: str = "", category_id: str = "") -> list:
    """Description search plus an optional category; an empty value matches everything."""
    return [
        row for row in rows
        if _matches(row["description"], q) and (not category_id or str(row["category_id"]) == category_id)
    ]


async def load_expenses(source: DataSource, scope: LoadScope, q: str = "", category_id: str = "") -> dict:
    results = await scope.gather(
        expenses=crud.fetch_expenses(source),
        categories=crud.fetch_categories(source),
    )
    expenses = filter_expenses(results["expenses"].data, q.strip(), category_id)
    return {
        "expenses": expenses,
        "categories": results["categories"].data,
        "total": math.fsum(e["amount"] or 0 for e in expenses),
        "q": q,
        "category_id": category_id,
        "errors": load_errors(results),
    }


REVENUE_SOURCES = ("all", "orders", "markets", "courses")


def filter_revenue(orders, markets, courses, q: str = "", source: str = "all"):
    """Name search across the three tables; ``source`` hides the other two."""
    def keep(rows, name_key, kind):
        if source not in ("all", kind):
            return []
        return [row for row in rows if _matches(row[name_key], q)]

    return (
        keep(orders, "order_number", "orders"),
        keep(markets, "name", "markets"),
        keep(courses, "course_name", "courses"),
    )


async def load_revenue(source: DataSource, scope: LoadScope, q: str = "", source_filter: str = "all") -> dict:
    results = await scope.gather(
        orders=revenue.fetch_orders(source),
        markets=revenue.fetch_markets(source),
        courses=revenue.fetch_courses(source),
    )
    orders, markets, courses = (results[k].data for k in ("orders", "markets", "courses"))
    # totals stay over everything; the filters only narrow the tables
    summary = revenue_summary(orders, markets, courses)
    shown_orders, shown_markets, shown_courses = filter_revenue(orders, markets, courses, q.strip(), source_filter)
    return {
        "orders": shown_orders,
        "markets": shown_markets,
        "courses": shown_courses,
        "q": q,
        "source": source_filter,
        "source_options": REVENUE_SOURCES,
        "summary": summary,
        "sources": revenue_by_source(summary),
        "errors": load_errors(results),
    }


async def _monthly_inputs(source: DataSource, scope: LoadScope, year: int):
    return await scope.gather(
        revenue=revenue.fetch_revenue_by_month(source, year),
        expenses=crud.fetch_monthly_expenses(source, year),
        categories=crud.fetch_expenses_by_category(source, *year_window(year)),
    )


async def load_reports(source: DataSource, scope: LoadScope, year: int) -> dict:
    results = await _monthly_inputs(source, scope, year)
    rows = profit_loss_rows(
        revenue_month_map(results["revenue"].data),
        expense_month_map(results["expenses"].data),
    )
    metrics = analytics_metrics(rows)
    return {
        "year": year,
        "monthly_revenue": results["revenue"].data,
        "monthly_expenses": results["expenses"].data,
        "category_expenses": results["categories"].data,
        "profit_loss": rows,
        "totals": metrics,
        "errors": load_errors(results),
    }


async def load_analytics(source: DataSource, scope: LoadScope, year: int, today: Optional[date] = None) -> dict:
    today = today or date.today()
    results = await _monthly_inputs(source, scope, year)
    combined = profit_loss_rows(
        revenue_month_map(results["revenue"].data),
        expense_month_map(results["expenses"].data),
    )
    # months after today have no data yet and would drag the trend to zero
    history = combined[:today.month] if year == today.year else combined
    return {
        "year": year,
        "combined": combined,
        "history": history,
        "forecast": forecast_rows(history),
        "metrics": analytics_metrics(combined),
        "category_expenses": results["categories"].data,
        "errors": load_errors(results),
    }
