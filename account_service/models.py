from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import JSON
from sqlmodel import Column, Field, SQLModel, String


def utcnow() -> datetime:
    """Naive UTC; SQLite drops tzinfo on the way back."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def as_utc(value: datetime) -> datetime:
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


class AccountType(str, Enum):
    checking = "checking"
    savings = "savings"
    credit = "credit"
    investment = "investment"
    cash = "cash"


class LinkStatus(str, Enum):
    unlinked = "unlinked"
    linked = "linked"
    error = "error"


class TransactionType(str, Enum):
    income = "income"
    expense = "expense"
    transfer = "transfer"


class Category(str, Enum):
    # income
    salary = "salary"
    freelance = "freelance"
    investment = "investment"
    gift = "gift"
    refund = "refund"
    other_income = "other-income"
    # expense
    food = "food"
    transportation = "transportation"
    shopping = "shopping"
    entertainment = "entertainment"
    bills = "bills"
    healthcare = "healthcare"
    education = "education"
    travel = "travel"
    groceries = "groceries"
    rent = "rent"
    utilities = "utilities"
    insurance = "insurance"
    subscriptions = "subscriptions"
    other_expense = "other-expense"
    transfer = "transfer"


class RecurringFrequency(str, Enum):
    daily = "daily"
    weekly = "weekly"
    monthly = "monthly"
    yearly = "yearly"


class Account(SQLModel, table=True):
    __tablename__ = "accounts"

    id: Optional[int] = Field(default=None, primary_key=True)
    owner_id: str = Field(index=True)
    name: str = Field(max_length=50)
    type: AccountType
    opening_balance: Decimal = Field(default=Decimal("0"), max_digits=14, decimal_places=2)
    balance: Decimal = Field(default=Decimal("0"), max_digits=14, decimal_places=2)
    currency: str = Field(default="USD", max_length=3)
    description: Optional[str] = Field(default=None, max_length=200)
    is_active: bool = Field(default=True, index=True)
    color: str = "#3B82F6"
    icon: str = "wallet"

    external_account_id: Optional[str] = Field(default=None, index=True)
    external_item_id: Optional[str] = Field(default=None, index=True)
    external_access_token: Optional[str] = None
    link_status: LinkStatus = LinkStatus.unlinked
    last_synced_at: Optional[datetime] = None

    version: int = 0
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class Transaction(SQLModel, table=True):
    __tablename__ = "transactions"

    id: Optional[int] = Field(default=None, primary_key=True)
    owner_id: str = Field(index=True)
    account_id: int = Field(foreign_key="accounts.id", index=True)
    amount: Decimal = Field(max_digits=14, decimal_places=2)
    type: TransactionType
    category: Category
    description: str = Field(max_length=200)
    date: datetime = Field(default_factory=utcnow, index=True)
    tags: list[str] = Field(default_factory=list, sa_column=Column(JSON))
    location: Optional[str] = None
    is_recurring: bool = False
    recurring_frequency: Optional[RecurringFrequency] = None
    is_urgent: bool = False
    balance_after: Decimal = Field(default=Decimal("0"), max_digits=14, decimal_places=2)

    external_id: Optional[str] = Field(default=None, sa_column=Column(String, unique=True, nullable=True))
    is_synced: bool = False

    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class SyncJob(SQLModel, table=True):
    """Lease row held while a sync runs; replaces an in-process 'running' flag."""

    __tablename__ = "sync_jobs"

    name: str = Field(primary_key=True)
    owner: str
    started_at: datetime = Field(default_factory=utcnow)
