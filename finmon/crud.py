from datetime import date, datetime, time, timedelta

from sqlalchemy.orm import Session, joinedload

from .aggregation import UNCATEGORIZED, expenses_by_category, monthly_totals, to_date, total_amount, year_window
from .database import DataAccessError, DataSource
from .models import Category, Expense, Profile, utcnow
from .results import FetchResult
from .schemas import ExpenseIn, ProfileIn


def date_bounds(query, column, date_from=None, date_to=None, timestamp: bool = False):
    """Restrict ``query`` to whole days from ``date_from`` to ``date_to`` inclusive."""
    start, end = to_date(date_from), to_date(date_to)
    if timestamp:
        if start:
            query = query.filter(column >= datetime.combine(start, time.min))
        # the last representable day has no next midnight
        if end and end < date.max:
            query = query.filter(column < datetime.combine(end + timedelta(days=1), time.min))
        return query
    if start:
        query = query.filter(column >= start)
    if end:
        query = query.filter(column <= end)
    return query


def _expense_row(expense: Expense) -> dict:
    row = expense.to_dict()
    row["category_name"] = expense.category.name if expense.category else UNCATEGORIZED
    return row


# Profiles

async def fetch_profile(source: DataSource, user_id: str) -> FetchResult:
    def query(db: Session):
        profile = db.get(Profile, user_id)
        return profile.to_dict() if profile else None

    return await source.read(query, None, "profile")


async def update_profile(source: DataSource, user_id: str, email: str, data: ProfileIn) -> dict:
    def upsert(db: Session):
        profile = db.get(Profile, user_id)
        if profile is None:
            profile = Profile(id=user_id, email=email)
            db.add(profile)
        profile.full_name = data.full_name
        profile.updated_at = utcnow()
        db.flush()
        return profile.to_dict()

    return await source.write(upsert, "profile")


# Categories

async def fetch_categories(source: DataSource) -> FetchResult:
    def query(db: Session):
        categories = db.query(Category).order_by(Category.name).all()
        return [{"id": c.id, "name": c.name} for c in categories]

    return await source.read(query, [], "categories")


# Expenses

async def fetch_expenses(source: DataSource, date_from=None, date_to=None) -> FetchResult:
    def query(db: Session):
        q = db.query(Expense).options(joinedload(Expense.category))
        q = date_bounds(q, Expense.date, date_from, date_to)
        return [_expense_row(e) for e in q.order_by(Expense.date.desc(), Expense.id.desc()).all()]

    return await source.read(query, [], "expenses")


async def fetch_expense(source: DataSource, expense_id: int) -> FetchResult:
    def query(db: Session):
        expense = db.query(Expense).options(joinedload(Expense.category)).filter(Expense.id == expense_id).first()
        return _expense_row(expense) if expense else None

    return await source.read(query, None, "expense")


async def fetch_expenses_by_year(source: DataSource, year: int) -> FetchResult:
    start, end = year_window(year)
    return await fetch_expenses(source, start, end)


async def fetch_expenses_by_category(source: DataSource, date_from=None, date_to=None) -> FetchResult:
    result = await fetch_expenses(source, date_from, date_to)
    return result.with_data(expenses_by_category(result.data))


async def fetch_monthly_expenses(source: DataSource, year: int) -> FetchResult:
    start, end = year_window(year)

    def query(db: Session):
        q = date_bounds(db.query(Expense.date, Expense.amount), Expense.date, start, end)
        return [{"date": row.date, "amount": row.amount} for row in q.all()]

    result = await source.read(query, [], "monthly expenses")
    return result.with_data(monthly_totals(result.data, year))


async def fetch_total_expenses(source: DataSource, date_from=None, date_to=None) -> FetchResult:
    def query(db: Session):
        q = date_bounds(db.query(Expense.amount), Expense.date, date_from, date_to)
        return [{"amount": row.amount} for row in q.all()]

    result = await source.read(query, [], "total expenses")
    return result.with_data(total_amount(result.data))


def _apply(expense: Expense, data: ExpenseIn) -> None:
    for field, value in data.model_dump().items():
        setattr(expense, field, value)


async def insert_expense(source: DataSource, data: ExpenseIn) -> dict:
    def insert(db: Session):
        expense = Expense()
        _apply(expense, data)
        db.add(expense)
        db.flush()
        return expense.to_dict()

    return await source.write(insert, "expense")


async def update_expense(source: DataSource, expense_id: int, data: ExpenseIn) -> dict:
    def update(db: Session):
        expense = db.get(Expense, expense_id)
        if expense is None:
            raise DataAccessError(f"Expense {expense_id} not found")
        _apply(expense, data)
        expense.updated_at = utcnow()
        db.flush()
        return expense.to_dict()

    return await source.write(update, "expense")


async def delete_expense(source: DataSource, expense_id: int) -> bool:
    def delete(db: Session):
        expense = db.get(Expense, expense_id)
        if expense is None:
            return False
        db.delete(expense)
        return True

    return await source.write(delete, "expense")

