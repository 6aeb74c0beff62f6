# finmon/models.py

import uuid
from datetime import datetime, timezone

from sqlalchemy import Column, Date, DateTime, Float, ForeignKey, Integer, String, Text, event
from sqlalchemy.orm import relationship

from .database import Base


def utcnow() -> datetime:
    # naive UTC, the way DateTime columns store it
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _uuid() -> str:
    return str(uuid.uuid4())


class DictMixin:
    def to_dict(self) -> dict:
        return {c.name: getattr(self, c.name) for c in self.__table__.columns}


# Identity store of the auth provider

class User(DictMixin, Base):
    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=_uuid)
    email = Column(String, unique=True, nullable=False, index=True)
    password = Column(String, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    sessions = relationship("AuthSession", back_populates="user", cascade="all, delete-orphan")


class AuthSession(Base):
    __tablename__ = "auth_sessions"

    access_token = Column(String, primary_key=True)
    refresh_token = Column(String, unique=True, nullable=False, index=True)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    issued_at = Column(DateTime, nullable=False)
    expires_at = Column(DateTime, nullable=False)
    refresh_expires_at = Column(DateTime, nullable=False)

    user = relationship("User", back_populates="sessions")


class LoginCode(Base):
    __tablename__ = "login_codes"

    code = Column(String, primary_key=True)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    expires_at = Column(DateTime, nullable=False)
    used_at = Column(DateTime)


class Profile(DictMixin, Base):
    __tablename__ = "profiles"

    id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True)
    email = Column(String, nullable=False)
    full_name = Column(String)
    avatar_url = Column(String)
    role = Column(String, default="user")
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)


@event.listens_for(User, "after_insert")
def create_profile(mapper, connection, target):
    # every new identity gets a matching profile row
    connection.execute(
        Profile.__table__.insert().values(
            id=target.id,
            email=target.email,
            role="user",
            created_at=utcnow(),
            updated_at=utcnow(),
        )
    )


# Expenses

class Category(DictMixin, Base):
    __tablename__ = "categories"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    description = Column(Text)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    expenses = relationship("Expense", back_populates="category")


class Expense(DictMixin, Base):
    __tablename__ = "expenses"

    id = Column(Integer, primary_key=True, index=True)
    date = Column(Date, nullable=False, index=True)
    category_id = Column(Integer, ForeignKey("categories.id"))
    description = Column(String, nullable=False)
    quantity = Column(Float)
    unit = Column(String)
    amount = Column(Float, nullable=False)
    cost_per_100g = Column(Float)
    note = Column(Text)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    category = relationship("Category", back_populates="expenses")


# Revenue sources

class Order(DictMixin, Base):
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, index=True)
    order_number = Column(String, nullable=False)
    created_at = Column(DateTime, default=utcnow, index=True)
    customer_id = Column(Integer)
    status = Column(String)
    order_type = Column(String)
    payment_status = Column(String)
    payment_method = Column(String)
    delivery_method = Column(String)
    total_amount = Column(Float, nullable=False, default=0)
    shipping_cost = Column(Float, default=0)
    notes = Column(Text)
    pickup_date = Column(Date)
    delivery_address = Column(String)
    amount_received = Column(Float)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)


class Market(DictMixin, Base):
    __tablename__ = "markets"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    location = Column(String)
    start_date = Column(Date)
    end_date = Column(Date, index=True)
    final_incoming = Column(Float, default=0)
    result = Column(String)
    organization_name = Column(String)
    commission_to_pay = Column(Float)
    fee = Column(Float)
    created_at = Column(DateTime, default=utcnow)


class Course(DictMixin, Base):
    __tablename__ = "courses"

    id = Column(Integer, primary_key=True, index=True)
    date = Column(Date, nullable=False, index=True)
    course_name = Column(String, nullable=False)
    duration = Column(String)
    location = Column(String)
    max_participants = Column(Integer)
    registration_fee = Column(Float)
    total_amount = Column(Float, nullable=False, default=0)
    course_description = Column(Text)
    instructor_name = Column(String)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)
