"""
Input schemas for the forms that write to the database.
"""

import datetime as dt
from typing import Optional

from pydantic import BaseModel, Field, field_validator


class ExpenseIn(BaseModel):
    """
    Expense form
    Table: "expenses"
    """
    date: dt.date = Field(..., description="Day the expense was incurred")
    category_id: int = Field(..., description="Category reference")
    description: str = Field(..., min_length=1, description="What was bought")
    amount: float = Field(..., ge=0, description="Non-negative amount")
    quantity: Optional[float] = Field(None, ge=0)
    unit: Optional[str] = None
    note: Optional[str] = None

    @field_validator("description")
    @classmethod
    def strip_description(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("Description is required")
        return value

    @field_validator("quantity", "unit", "note", mode="before")
    @classmethod
    def blank_to_none(cls, value):
        if isinstance(value, str) and not value.strip():
            return None
        return value


class ProfileIn(BaseModel):
    """
    Profile form
    Table: "profiles"
    """
    full_name: str = Field("", max_length=200)
