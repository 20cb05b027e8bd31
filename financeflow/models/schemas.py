import re
from datetime import date as dt_date, datetime
from decimal import Decimal
from typing import Literal

from pydantic import BaseModel, Field, field_validator, model_validator

from financeflow.constants import DEFAULT_CATEGORY_COLOR, SUPPORTED_CURRENCIES

HEX_COLOR = r"^#[0-9A-Fa-f]{6}$"

CategoryType = Literal["expense", "income"]
CardType = Literal["debit", "credit", "cash", "savings", "other"]


def _strip(value):
    return value.strip() if isinstance(value, str) else value


def _lower(value):
    return value.strip().lower() if isinstance(value, str) else value


def _supported_currency(value: str) -> str:
    value = value.strip().upper()
    if value not in SUPPORTED_CURRENCIES:
        raise ValueError(f"Unsupported currency: {value}")
    return value


def parse_period(value) -> dt_date:
    """Normalizes YYYY-MM, YYYY-MM-DD or a date to the first day of that month."""
    if isinstance(value, datetime):
        value = value.date()
    if isinstance(value, dt_date):
        return value.replace(day=1)
    if isinstance(value, str):
        value = value.strip()
        if re.fullmatch(r"\d{4}-\d{2}", value):
            value = f"{value}-01"
        try:
            return datetime.strptime(value, "%Y-%m-%d").date().replace(day=1)
        except ValueError:
            pass
    raise ValueError("Period must be in YYYY-MM or YYYY-MM-DD format")


# --- Profile Models ---
class Profile(BaseModel):
    id: str
    currency: str
    created_at: datetime | None = None

    class Config:
        from_attributes = True


class ProfileCurrencyUpdate(BaseModel):
    currency: str = Field(min_length=3, max_length=3)

    normalize = field_validator("currency")(_supported_currency)


# --- Category Models ---
class CategoryCreate(BaseModel):
    name: str = Field(min_length=1, max_length=50)
    color: str = Field(default=DEFAULT_CATEGORY_COLOR, pattern=HEX_COLOR)
    type: CategoryType

    strip_name = field_validator("name", mode="before")(_strip)
    lower_type = field_validator("type", mode="before")(_lower)


class CategoryUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=50)
    color: str | None = Field(default=None, pattern=HEX_COLOR)
    type: CategoryType | None = None

    strip_name = field_validator("name", mode="before")(_strip)
    lower_type = field_validator("type", mode="before")(_lower)


class Category(BaseModel):
    id: int
    name: str
    color: str
    type: str

    class Config:
        from_attributes = True


# --- Tag Models ---
class TagCreate(BaseModel):
    name: str = Field(min_length=1, max_length=100)

    strip_name = field_validator("name", mode="before")(_strip)


class Tag(BaseModel):
    id: int
    name: str

    class Config:
        from_attributes = True


# --- Payment Method Models ---
class PaymentMethodCreate(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    currency: str
    card_type: CardType | None = None
    color: str | None = Field(default=None, pattern=HEX_COLOR)
    is_default: bool = False

    strip_name = field_validator("name", mode="before")(_strip)
    normalize_currency = field_validator("currency")(_supported_currency)

    @field_validator("color")
    @classmethod
    def upper_color(cls, v):
        return v.upper() if v else v


class PaymentMethodUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=100)
    card_type: CardType | None = None
    color: str | None = Field(default=None, pattern=HEX_COLOR)
    is_default: bool | None = None
    # Accepted only so that a change attempt can be rejected with a clear message
    currency: str | None = None

    strip_name = field_validator("name", mode="before")(_strip)

    @field_validator("color")
    @classmethod
    def upper_color(cls, v):
        return v.upper() if v else v


class PaymentMethodBrief(BaseModel):
    id: int
    name: str
    currency: str
    color: str | None = None

    class Config:
        from_attributes = True


class PaymentMethod(PaymentMethodBrief):
    card_type: str | None = None
    is_default: bool
    is_active: bool
    created_at: datetime | None = None
    balance: Decimal | None = None


# --- Transaction Models ---
class TransactionCreate(BaseModel):
    amount: Decimal = Field(gt=0, max_digits=12, decimal_places=2)
    type: Literal["income", "expense"] = "expense"
    category_id: int
    payment_method_id: int | None = None
    date: dt_date = Field(default_factory=dt_date.today)
    description: str | None = Field(default=None, max_length=500)
    tag_ids: list[int] = []
    manual_exchange_rate: Decimal | None = Field(default=None, gt=0)

    lower_type = field_validator("type", mode="before")(_lower)


class TransactionUpdate(BaseModel):
    amount: Decimal | None = Field(default=None, gt=0, max_digits=12, decimal_places=2)
    type: Literal["income", "expense"] | None = None
    category_id: int | None = None
    payment_method_id: int | None = None
    date: dt_date | None = None
    description: str | None = Field(default=None, max_length=500)
    tag_ids: list[int] | None = None
    manual_exchange_rate: Decimal | None = Field(default=None, gt=0)

    lower_type = field_validator("type", mode="before")(_lower)


class Transaction(BaseModel):
    id: int
    amount: Decimal
    native_amount: Decimal | None = None
    exchange_rate: Decimal | None = None
    base_currency: str | None = None
    type: str
    date: dt_date
    description: str | None = None
    category_id: int | None = None
    payment_method_id: int
    linked_transaction_id: int | None = None
    category: Category | None = None
    payment_method: PaymentMethodBrief | None = None
    tags: list[Tag] = []
    created_at: datetime | None = None

    class Config:
        from_attributes = True


# --- Transfer Models ---
class TransferCreate(BaseModel):
    source_payment_method_id: int
    destination_payment_method_id: int
    amount: Decimal = Field(gt=0, max_digits=12, decimal_places=2)
    date: dt_date = Field(default_factory=dt_date.today)
    description: str | None = Field(default=None, max_length=500)

    @model_validator(mode="after")
    def check_distinct(self):
        if self.source_payment_method_id == self.destination_payment_method_id:
            raise ValueError("Source and destination payment methods must be different")
        return self


class TransferCreated(BaseModel):
    source_transaction_id: int
    destination_transaction_id: int
    exchange_rate: Decimal


class TransferPair(BaseModel):
    withdrawal: Transaction
    deposit: Transaction
    exchange_rate: Decimal


# --- Budget Models ---
class BudgetCreate(BaseModel):
    amount: Decimal = Field(gt=0, max_digits=12, decimal_places=2)
    period: dt_date
    category_id: int | None = None
    tag_id: int | None = None

    normalize_period = field_validator("period", mode="before")(parse_period)

    @model_validator(mode="after")
    def check_target(self):
        if (self.category_id is None) == (self.tag_id is None):
            raise ValueError("Budget must have either a categoryId OR a tagId, not both")
        return self


class BudgetUpdate(BaseModel):
    amount: Decimal | None = Field(default=None, gt=0, max_digits=12, decimal_places=2)
    period: dt_date | None = None

    @field_validator("period", mode="before")
    @classmethod
    def normalize_period(cls, v):
        return parse_period(v) if v is not None else v


class Budget(BaseModel):
    id: int
    amount: Decimal
    period: dt_date
    category_id: int | None = None
    tag_id: int | None = None
    category: Category | None = None
    tag: Tag | None = None
    created_at: datetime | None = None

    class Config:
        from_attributes = True


class BudgetProgress(BaseModel):
    budget_id: int
    budget_name: str
    target_type: Literal["category", "tag"]
    category_id: int | None = None
    tag_id: int | None = None
    budget_amount: Decimal
    spent_amount: Decimal
    spent_percentage: Decimal
    is_overspent: bool
    period_start: dt_date
    period_end: dt_date


class BudgetBreakdownItem(BaseModel):
    payment_method_id: int
    payment_method_name: str
    payment_method_currency: str
    payment_method_color: str | None = None
    amount: Decimal
    transaction_count: int
    percentage: Decimal


class BudgetBreakdown(BaseModel):
    budget_id: int
    budget_name: str
    budget_amount: Decimal
    total_spent: Decimal
    payment_methods: list[BudgetBreakdownItem]


# --- Exchange Rate Models ---
class RateLookup(BaseModel):
    rate: Decimal | None = None
    source: Literal["fresh", "stale", "api", "not_found"]
    fetched_at: datetime | None = None
    expires_at: datetime | None = None


class ManualRateCreate(BaseModel):
    from_currency: str
    to_currency: str
    rate: Decimal = Field(gt=0)

    normalize_from = field_validator("from_currency")(_supported_currency)
    normalize_to = field_validator("to_currency")(_supported_currency)

    @model_validator(mode="after")
    def check_pair(self):
        if self.from_currency == self.to_currency:
            raise ValueError("Currencies must be different")
        return self


# --- Template Models ---
class TemplateCreate(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    amount: Decimal | None = Field(default=None, gt=0, max_digits=12, decimal_places=2)
    category_id: int | None = None
    payment_method_id: int | None = None
    description: str | None = Field(default=None, max_length=500)
    is_favorite: bool = False
    tag_ids: list[int] = []

    strip_name = field_validator("name", mode="before")(_strip)


class TemplateUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=100)
    amount: Decimal | None = Field(default=None, gt=0, max_digits=12, decimal_places=2)
    category_id: int | None = None
    payment_method_id: int | None = None
    description: str | None = Field(default=None, max_length=500)
    is_favorite: bool | None = None
    tag_ids: list[int] | None = None

    strip_name = field_validator("name", mode="before")(_strip)


class Template(BaseModel):
    id: int
    name: str
    amount: Decimal | None = None
    category_id: int | None = None
    payment_method_id: int | None = None
    description: str | None = None
    is_favorite: bool
    category: Category | None = None
    payment_method: PaymentMethodBrief | None = None
    tags: list[Tag] = []

    class Config:
        from_attributes = True


class TemplateUse(BaseModel):
    amount: Decimal | None = Field(default=None, gt=0, max_digits=12, decimal_places=2)
    date: dt_date | None = None
    description: str | None = Field(default=None, max_length=500)
