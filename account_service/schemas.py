from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from .models import AccountType, Category, LinkStatus, RecurringFrequency, TransactionType


class CamelModel(BaseModel):
    """JSON uses camelCase; Python code keeps snake_case."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


# -- accounts --------------------------------------------------------------

class AccountIn(CamelModel):
    name: str = Field(min_length=1, max_length=50)
    type: AccountType
    balance: Decimal = Decimal("0")
    currency: str = Field(default="USD", min_length=3, max_length=3)
    description: Optional[str] = Field(default=None, max_length=200)
    color: Optional[str] = None
    icon: Optional[str] = None

    @field_validator("name")
    @classmethod
    def strip_name(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Account name is required")
        return v

    @field_validator("currency")
    @classmethod
    def upper_currency(cls, v: str) -> str:
        return v.upper()


class AccountPatch(CamelModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=50)
    type: Optional[AccountType] = None
    description: Optional[str] = Field(default=None, max_length=200)
    color: Optional[str] = None
    icon: Optional[str] = None


class AccountOut(CamelModel):
    id: int
    name: str
    type: AccountType
    balance: float
    opening_balance: float
    currency: str
    description: Optional[str] = None
    is_active: bool
    color: str
    icon: str
    external_account_id: Optional[str] = None
    link_status: LinkStatus
    last_synced_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime


class AccountEnvelope(CamelModel):
    message: Optional[str] = None
    account: AccountOut


class AccountList(CamelModel):
    accounts: list[AccountOut]
    total_balance: float
    count: int


class AccountStats(CamelModel):
    total_accounts: int
    total_balance: float
    accounts_by_type: dict[str, int]
    balance_by_type: dict[str, float]


# -- transactions ----------------------------------------------------------

class TransactionIn(CamelModel):
    account_id: int
    amount: Decimal
    type: TransactionType
    category: Optional[Category] = None
    description: str = Field(min_length=1, max_length=200)
    date: Optional[datetime] = None
    tags: Optional[list[str]] = None
    location: Optional[str] = None
    is_recurring: bool = False
    recurring_frequency: Optional[RecurringFrequency] = None

    @field_validator("description")
    @classmethod
    def strip_description(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Description is required")
        return v

    @field_validator("tags")
    @classmethod
    def strip_tags(cls, v: Optional[list[str]]) -> Optional[list[str]]:
        if v is None:
            return v
        return [t.strip() for t in v if t and t.strip()]


class TransactionPatch(CamelModel):
    amount: Optional[Decimal] = None
    type: Optional[TransactionType] = None
    category: Optional[Category] = None
    description: Optional[str] = Field(default=None, min_length=1, max_length=200)
    date: Optional[datetime] = None
    tags: Optional[list[str]] = None
    location: Optional[str] = None
    is_recurring: Optional[bool] = None
    recurring_frequency: Optional[RecurringFrequency] = None


class TransactionOut(CamelModel):
    id: int
    account_id: int
    amount: float
    type: TransactionType
    category: Category
    description: str
    date: datetime
    tags: list[str] = []
    location: Optional[str] = None
    is_recurring: bool
    recurring_frequency: Optional[RecurringFrequency] = None
    is_urgent: bool
    balance_after: float
    external_id: Optional[str] = None
    is_synced: bool
    created_at: datetime
    updated_at: datetime


class TransactionEnvelope(CamelModel):
    message: Optional[str] = None
    transaction: TransactionOut


class Pagination(CamelModel):
    current: int
    pages: int
    total: int
    has_next: bool
    has_prev: bool


class TransactionPage(CamelModel):
    transactions: list[TransactionOut]
    pagination: Pagination


class AccountDetail(CamelModel):
    account: AccountOut
    recent_transactions: list[TransactionOut]


class ImportRow(CamelModel):
    date: Optional[datetime] = None
    description: str = Field(min_length=1, max_length=200)
    amount: Decimal
    type: Optional[TransactionType] = None
    category: Optional[Category] = None


class ImportIn(CamelModel):
    account_id: int
    transactions: list[ImportRow]


class ImportResult(CamelModel):
    imported: int
    errors: list[str]
    transactions: list[TransactionOut]


class CategorizeIn(CamelModel):
    description: str
    amount: Decimal = Decimal("-1")


class SuggestionOut(CamelModel):
    category: Category
    confidence: float
    reason: str


class CategorizeOut(CamelModel):
    category: Category
    confidence: float
    suggestions: list[SuggestionOut]


# -- banking ---------------------------------------------------------------
# aggregator-facing bodies keep the aggregator's snake_case names

class PublicTokenIn(BaseModel):
    public_token: str


class AccessTokenIn(BaseModel):
    access_token: str
    item_id: Optional[str] = None


class SyncTransactionsIn(BaseModel):
    access_token: str
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None


class WebhookIn(BaseModel):
    webhook_type: Optional[str] = None
    webhook_code: Optional[str] = None
    item_id: Optional[str] = None


class SyncItemIn(BaseModel):
    item_id: str
