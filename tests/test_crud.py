from datetime import date

import pytest

from finmon import crud
from finmon.config import ConfigurationError
from finmon.database import DataAccessError, DataSource
from finmon.models import Category, Expense
from finmon.results import CONFIG_ERROR, FETCH_ERROR
from finmon.schemas import ExpenseIn, ProfileIn


@pytest.fixture
def categories(seed):
    return seed(Category(name="Flour"), Category(name="Butter"))


@pytest.fixture
def expenses(seed, categories):
    flour, butter = categories
    return seed(
        Expense(date=date(2024, 3, 15), category_id=flour, description="Rye flour", amount=50),
        Expense(date=date(2024, 3, 20), category_id=butter, description="Butter block", amount=30),
        Expense(date=date(2023, 12, 31), category_id=flour, description="Spelt", amount=12.5),
    )


@pytest.mark.asyncio
async def test_monthly_expenses(source, expenses):
    result = await crud.fetch_monthly_expenses(source, 2024)
    assert result.ok
    totals = {bucket["month"]: bucket["total"] for bucket in result.data}
    assert totals["Mar"] == 80
    assert sum(totals.values()) == 80
    assert len(totals) == 12


@pytest.mark.asyncio
async def test_fetch_expenses_newest_first(source, expenses):
    result = await crud.fetch_expenses(source)
    assert [e["description"] for e in result.data] == ["Butter block", "Rye flour", "Spelt"]
    assert result.data[0]["category_name"] == "Butter"


@pytest.mark.asyncio
async def test_fetch_expenses_date_bounds_are_inclusive(source, expenses):
    result = await crud.fetch_expenses(source, date(2024, 3, 15), date(2024, 3, 20))
    assert len(result.data) == 2
    by_year = await crud.fetch_expenses_by_year(source, 2023)
    assert [e["description"] for e in by_year.data] == ["Spelt"]


@pytest.mark.asyncio
async def test_totals_and_categories(source, expenses):
    total = await crud.fetch_total_expenses(source)
    assert total.data == 92.5
    march = await crud.fetch_total_expenses(source, "2024-03-01", "2024-03-31")
    assert march.data == 80

    by_category = await crud.fetch_expenses_by_category(source)
    assert [(c["category_name"], c["total"]) for c in by_category.data] == [("Flour", 62.5), ("Butter", 30)]


@pytest.mark.asyncio
async def test_fetch_categories(source, categories):
    result = await crud.fetch_categories(source)
    assert [c["name"] for c in result.data] == ["Butter", "Flour"]


@pytest.mark.asyncio
async def test_empty_is_not_an_error(source):
    result = await crud.fetch_expenses(source)
    assert result.ok
    assert result.data == []


@pytest.mark.asyncio
async def test_failed_read_returns_default_and_error(broken_source):
    result = await crud.fetch_monthly_expenses(broken_source, 2024)
    assert not result.ok
    assert result.error_kind == FETCH_ERROR
    assert result.error == "Failed to load monthly expenses"
    assert [b["total"] for b in result.data] == [0] * 12

    total = await crud.fetch_total_expenses(broken_source)
    assert total.data == 0
    assert total.error == "Failed to load total expenses"


@pytest.mark.asyncio
async def test_unconfigured_source():
    source = DataSource(None, missing=["DATABASE_URL", "SECRET_KEY"])
    result = await crud.fetch_expenses(source)
    assert result.is_config_error
    assert result.error_kind == CONFIG_ERROR
    assert "DATABASE_URL, SECRET_KEY" in result.error
    assert result.data == []

    with pytest.raises(ConfigurationError):
        await crud.insert_expense(source, ExpenseIn(date=date(2024, 1, 1), category_id=1, description="x", amount=1))


@pytest.mark.asyncio
async def test_insert_update_delete(source, categories):
    flour, butter = categories
    created = await crud.insert_expense(source, ExpenseIn(
        date=date(2024, 5, 1), category_id=flour, description="  Wheat  ", amount=20, quantity="", unit="kg",
    ))
    assert created["description"] == "Wheat"
    assert created["quantity"] is None

    updated = await crud.update_expense(source, created["id"], ExpenseIn(
        date=date(2024, 5, 2), category_id=butter, description="Wheat", amount=25,
    ))
    assert updated["amount"] == 25

    fetched = await crud.fetch_expense(source, created["id"])
    assert fetched.data["category_name"] == "Butter"
    assert fetched.data["date"] == date(2024, 5, 2)

    assert await crud.delete_expense(source, created["id"]) is True
    assert await crud.delete_expense(source, created["id"]) is False
    missing = await crud.fetch_expense(source, created["id"])
    assert missing.ok and missing.data is None


@pytest.mark.asyncio
async def test_update_missing_expense(source):
    with pytest.raises(DataAccessError):
        await crud.update_expense(source, 999, ExpenseIn(
            date=date(2024, 5, 2), category_id=1, description="Wheat", amount=25,
        ))


@pytest.mark.asyncio
async def test_profile_upsert(source):
    saved = await crud.update_profile(source, "user-9", "nine@example.com", ProfileIn(full_name="Nine"))
    assert saved["full_name"] == "Nine"
    fetched = await crud.fetch_profile(source, "user-9")
    assert fetched.data["email"] == "nine@example.com"
    assert (await crud.fetch_profile(source, "nobody")).data is None
