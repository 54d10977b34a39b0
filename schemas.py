import datetime as dt
from datetime import date
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from models import CategoryType, Frequency, TransactionOrigin


class CycleIn(BaseModel):
    start_date: date
    end_date: date
    starting_balance_cents: int = 0
    income_planned_cents: int = Field(default=0, ge=0)
    income_actual_cents: Optional[int] = Field(default=None, ge=0)
    target_end_balance_cents: int = 0

    @model_validator(mode="after")
    def _end_after_start(self) -> "CycleIn":
        if self.end_date <= self.start_date:
            raise ValueError("Cycle end date must be after start date")
        return self


class CycleRolloverIn(BaseModel):
    starting_balance_cents: Optional[int] = None
    income_planned_cents: Optional[int] = Field(default=None, ge=0)
    target_end_balance_cents: Optional[int] = None


class CategoryIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    type: CategoryType
    icon: Optional[str] = Field(default=None, max_length=16)
    sort_order: int = 0


class ManualOrigin(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["manual"] = "manual"


class CsvOrigin(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["csv"] = "csv"
    import_hash: str = Field(..., min_length=1, max_length=255)


class RecurringOrigin(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["recurring"] = "recurring"
    recurring_transaction_id: int


Origin = Annotated[
    Union[ManualOrigin, CsvOrigin, RecurringOrigin], Field(discriminator="kind")
]


def origin_of(txn) -> Union[ManualOrigin, CsvOrigin, RecurringOrigin]:
    """Rebuild the tagged origin from a stored transaction row."""
    if txn.origin == TransactionOrigin.recurring:
        return RecurringOrigin(recurring_transaction_id=txn.recurring_transaction_id)
    if txn.origin == TransactionOrigin.csv:
        return CsvOrigin(import_hash=txn.import_hash)
    return ManualOrigin()


class TransactionIn(BaseModel):
    cycle_id: int
    date: dt.date
    description: str = Field(..., min_length=1, max_length=200)
    merchant: Optional[str] = Field(default=None, max_length=200)
    amount_cents: int
    category_id: Optional[int] = None
    is_planned: bool = False
    origin: Origin = Field(default_factory=ManualOrigin)
    notes: Optional[str] = None

    @field_validator("amount_cents")
    @classmethod
    def _amount_nonzero(cls, value: int) -> int:
        if value == 0:
            raise ValueError("Amount cannot be zero")
        return value

    @property
    def recurring_transaction_id(self) -> Optional[int]:
        if isinstance(self.origin, RecurringOrigin):
            return self.origin.recurring_transaction_id
        return None


class QuickAddIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    amount_cents: int = Field(..., gt=0)
    description: str = Field(..., min_length=1, max_length=200)
    merchant: Optional[str] = Field(default=None, max_length=200)
    date: Optional[dt.date] = None
    category: Optional[str] = Field(default=None, max_length=100)
    is_income: bool = False


class BulkCategoryIn(BaseModel):
    transaction_ids: list[int] = Field(..., min_length=1)
    category_id: Optional[int] = None


class BudgetIn(BaseModel):
    category_id: int
    planned_amount_cents: int = Field(..., ge=0)


class RecurringTransactionIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=120)
    amount_cents: int = Field(..., gt=0)
    category_id: Optional[int] = None
    frequency: Frequency
    day_of_week: Optional[int] = Field(default=None, ge=0, le=6)
    day_of_month: Optional[int] = Field(default=None, ge=1, le=31)
    is_active: bool = True
    notes: Optional[str] = None


class PaydayIn(BaseModel):
    payday_date: Optional[date] = None


class MerchantRuleIn(BaseModel):
    merchant_match: str = Field(..., min_length=1, max_length=200)
    default_category_id: int
