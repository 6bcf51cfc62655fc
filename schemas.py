import datetime as dt
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

from models import MonthDayPolicy, RecurrenceKind

YearMonth = Annotated[str, Field(pattern=r"^\d{4}-(0[1-9]|1[0-2])$")]
RawAmount = Union[float, str]


class Record(BaseModel):
    """Base for persisted records.

    Records are immutable and hashable so collections of them can key the
    timeline cache, and they read/write the camelCase keys of the stored
    documents.
    """

    model_config = ConfigDict(
        frozen=True,
        populate_by_name=True,
        alias_generator=to_camel,
        allow_inf_nan=False,
    )

    def to_document(self) -> dict:
        return self.model_dump(by_alias=True, mode="json", exclude_none=True)


def _blank_to_none(value: Optional[str]) -> Optional[str]:
    if isinstance(value, str) and not value.strip():
        return None
    return value


OptionalRef = Annotated[Optional[str], BeforeValidator(_blank_to_none)]


class Transaction(Record):
    id: str
    date: dt.date
    description: str
    amount: float
    category: OptionalRef = None
    budget_id: OptionalRef = None
    recurring: bool = False


class RecurringTransaction(Record):
    id: str
    description: str
    amount: float
    kind: RecurrenceKind = Field(alias="type")
    day_of_month: Optional[int] = Field(default=None, ge=1, le=31)
    # 0 = Sunday, matching the stored documents
    day_of_week: Optional[int] = Field(default=None, ge=0, le=6)
    start_date: dt.date
    end_date: Optional[dt.date] = None
    category: OptionalRef = None
    budget_id: OptionalRef = None
    month_day_policy: MonthDayPolicy = MonthDayPolicy.snap_to_end


class Category(Record):
    id: str
    name: str


class SingleMonth(Record):
    mode: Literal["single"] = "single"
    month: YearMonth


class RecurringSchedule(Record):
    mode: Literal["recurring"] = "recurring"
    from_month: Optional[YearMonth] = None


class MonthRange(Record):
    mode: Literal["range"] = "range"
    start: YearMonth
    end: YearMonth

    @model_validator(mode="after")
    def _check_order(self) -> "MonthRange":
        if self.start > self.end:
            raise ValueError("Budget range start must not be after its end")
        return self


BudgetSchedule = Annotated[
    Union[SingleMonth, RecurringSchedule, MonthRange], Field(discriminator="mode")
]


class Budget(Record):
    id: str
    category_id: str
    amount: float
    schedule: BudgetSchedule

    @model_validator(mode="before")
    @classmethod
    def _from_flat_document(cls, data: object) -> object:
        """Accept the flat ``month``/``endMonth``/``recurring`` document shape."""
        if not isinstance(data, dict) or "schedule" in data:
            return data
        data = dict(data)
        month = data.pop("month", None)
        end_month = data.pop("endMonth", None) or data.pop("end_month", None)
        recurring = data.pop("recurring", False) is True
        if recurring:
            data["schedule"] = {"mode": "recurring", "fromMonth": month}
        elif month and end_month:
            data["schedule"] = {"mode": "range", "start": month, "end": end_month}
        elif month:
            data["schedule"] = {"mode": "single", "month": month}
        else:
            data["schedule"] = {"mode": "recurring", "fromMonth": None}
        return data


class Goal(Record):
    id: str
    name: str
    target: float = Field(..., gt=0)
    notes: Optional[str] = None


class UserProfile(Record):
    id: str
    name: str


class SnapshotBundle(BaseModel):
    """Export/import document. Absent keys are left untouched on import."""

    model_config = ConfigDict(populate_by_name=True)

    transactions: Optional[list[Transaction]] = None
    recurrings: Optional[list[RecurringTransaction]] = None
    categories: Optional[list[Category]] = None
    budgets: Optional[list[Budget]] = None


class Payload(BaseModel):
    model_config = ConfigDict(populate_by_name=True, alias_generator=to_camel)


class ProfileIn(Payload):
    name: str = Field(..., min_length=1, max_length=100)


class TransactionIn(Payload):
    date: dt.date
    description: str = Field(..., min_length=1, max_length=200)
    amount: RawAmount
    category: Optional[str] = None
    budget_id: Optional[str] = None


class RecurringTransactionIn(Payload):
    description: str = Field(..., min_length=1, max_length=200)
    amount: RawAmount
    kind: RecurrenceKind = Field(alias="type")
    day_of_month: Optional[int] = Field(default=None, ge=1, le=31)
    day_of_week: Optional[int] = Field(default=None, ge=0, le=6)
    start_date: dt.date
    end_date: Optional[dt.date] = None
    category: Optional[str] = None
    budget_id: Optional[str] = None
    month_day_policy: MonthDayPolicy = MonthDayPolicy.snap_to_end


class BudgetIn(Payload):
    category_id: str
    amount: RawAmount
    schedule: BudgetSchedule


class CategoryIn(Payload):
    name: str = Field(..., min_length=1, max_length=100)
    budget_amount: Optional[RawAmount] = None
    budget_schedule: Optional[BudgetSchedule] = None


class GoalIn(Payload):
    name: str = Field(..., min_length=1, max_length=120)
    target: RawAmount
    notes: Optional[str] = None
