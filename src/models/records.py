"""
Core Data Models for the ExpenseSight data layer

Records themselves are plain dictionaries owned by the UI (an expense, a goal,
a bill, ...). The only thing this layer relies on is a stable ``id`` field.
The models here describe everything AROUND the records: which domain they
belong to, how a read is filtered, and what a write reports back.

DESIGN DECISION: Result shapes are Pydantic models, not exceptions.
Read paths degrade to empty results, write paths always return a
MutationResult so the caller knows whether remote state changed.
"""

import calendar
import re
from datetime import date, timedelta
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


Record = dict[str, Any]

ID_FIELD = "id"


# =============================================================================
# ENUMS - Finite set of valid values
# =============================================================================

class Domain(str, Enum):
    """
    Record domains.

    Each domain has its own remote sub-collection under the owner and its
    own cache prefix, so it can be invalidated independently.
    """
    EXPENSES = "expenses"
    TAGS = "tags"
    BUDGET = "budget"
    GOALS = "goals"
    BILLS = "bills"
    NOTIFICATIONS = "notifications"
    INCOME = "income"
    INVESTMENTS = "investments"


class BillFrequency(str, Enum):
    """How often a bill recurs."""
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    YEARLY = "yearly"
    ONCE = "once"


class DomainSpec(BaseModel):
    """Remote layout and default ordering of one domain."""
    model_config = ConfigDict(frozen=True)

    domain: Domain
    collection: str
    id_prefix: str
    order_field: Optional[str] = None
    descending: bool = True
    date_field: str = "date"


DOMAIN_SPECS: dict[Domain, DomainSpec] = {
    Domain.EXPENSES: DomainSpec(
        domain=Domain.EXPENSES, collection="expenses", id_prefix="exp",
        order_field="date",
    ),
    Domain.TAGS: DomainSpec(
        domain=Domain.TAGS, collection="tags", id_prefix="tag",
        date_field="createdAt",
    ),
    Domain.BUDGET: DomainSpec(
        domain=Domain.BUDGET, collection="budgets", id_prefix="budget",
        order_field="month", date_field="month",
    ),
    Domain.GOALS: DomainSpec(
        domain=Domain.GOALS, collection="goals", id_prefix="goal",
        order_field="createdAt", date_field="createdAt",
    ),
    Domain.BILLS: DomainSpec(
        domain=Domain.BILLS, collection="bills", id_prefix="bill",
        order_field="dueDay", descending=False, date_field="nextDueDate",
    ),
    Domain.NOTIFICATIONS: DomainSpec(
        domain=Domain.NOTIFICATIONS, collection="notifications", id_prefix="notif",
        order_field="createdAt", date_field="createdAt",
    ),
    Domain.INCOME: DomainSpec(
        domain=Domain.INCOME, collection="income", id_prefix="inc",
        order_field="date",
    ),
    Domain.INVESTMENTS: DomainSpec(
        domain=Domain.INVESTMENTS, collection="investments", id_prefix="inv",
        order_field="createdAt", date_field="lastUpdated",
    ),
}


def domain_spec(domain: Domain) -> DomainSpec:
    return DOMAIN_SPECS[Domain(domain)]


# =============================================================================
# READ PATH
# =============================================================================

class QueryFilters(BaseModel):
    """
    Filters accepted by the read path.

    Dates are inclusive and compared as ``YYYY-MM-DD`` strings, which sort
    the same way as the dates they represent.
    """
    model_config = ConfigDict(frozen=True, str_strip_whitespace=True)

    start_date: Optional[str] = Field(
        default=None,
        description="Inclusive lower bound on the domain date field"
    )
    end_date: Optional[str] = Field(
        default=None,
        description="Inclusive upper bound on the domain date field"
    )
    category: Optional[str] = Field(
        default=None,
        description="Equality filter applied client-side ('all' disables it)"
    )
    limit_count: int = Field(
        default=500,
        ge=1,
        description="Maximum number of records read from the store"
    )

    @field_validator("start_date", "end_date", mode="before")
    @classmethod
    def coerce_date(cls, v: Any) -> Optional[str]:
        if v is None or v == "":
            return None
        if isinstance(v, date):
            return v.isoformat()
        if isinstance(v, str):
            return v
        raise ValueError(f"Expected a date or ISO date string, got {type(v).__name__}")

    @field_validator("category", mode="before")
    @classmethod
    def normalize_category(cls, v: Any) -> Optional[str]:
        if v is None or v == "" or v == "all":
            return None
        return v

    @model_validator(mode="after")
    def validate_range(self) -> "QueryFilters":
        if self.start_date and self.end_date and self.start_date > self.end_date:
            raise ValueError("start_date cannot be after end_date")
        return self

    @property
    def has_range(self) -> bool:
        return bool(self.start_date or self.end_date)

    def signature(self) -> str:
        """Deterministic encoding used as the filter part of a cache key."""
        return "|".join([
            self.start_date or "",
            self.end_date or "",
            self.category or "",
            str(self.limit_count),
        ])

    def matches_range(self, record: Record, date_field: str) -> bool:
        value = record.get(date_field)
        if self.start_date and (value is None or str(value) < self.start_date):
            return False
        if self.end_date and (value is None or str(value) > self.end_date):
            return False
        return True

    def matches_category(self, record: Record) -> bool:
        return self.category is None or record.get("category") == self.category


# =============================================================================
# WRITE PATH
# =============================================================================

class MutationResult(BaseModel):
    """
    Outcome of a write.

    ``success`` is only True once the remote store acknowledged the write;
    by then the local cache has already been patched or invalidated.
    """

    success: bool
    count: Optional[int] = Field(
        default=None,
        description="Number of records written (batched operations)"
    )
    record_id: Optional[str] = Field(
        default=None,
        description="Identifier of the created/affected record"
    )
    new_value: Optional[float] = Field(
        default=None,
        description="Authoritative value after a counter increment"
    )
    error: Optional[str] = None
    details: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def ok(cls, **kwargs: Any) -> "MutationResult":
        return cls(success=True, **kwargs)

    @classmethod
    def failed(cls, error: str, **kwargs: Any) -> "MutationResult":
        return cls(success=False, error=error, **kwargs)


# =============================================================================
# DEFAULT DOCUMENTS
# =============================================================================

PREDEFINED_TAGS: tuple[Record, ...] = (
    {"name": "work", "color": "blue", "isCustom": False},
    {"name": "personal", "color": "purple", "isCustom": False},
    {"name": "gift", "color": "pink", "isCustom": False},
    {"name": "reimbursable", "color": "green", "isCustom": False},
    {"name": "recurring", "color": "orange", "isCustom": False},
    {"name": "splurge", "color": "red", "isCustom": False},
    {"name": "essential", "color": "teal", "isCustom": False},
)

DEFAULT_NOTIFICATION_SETTINGS: Record = {
    "enabled": False,
    "dailySummary": {"enabled": True, "time": "21:00"},
    "weeklyCheckin": {"enabled": True, "day": "sunday"},
    "budgetWarnings": {"enabled": True, "threshold": 80},
    "billReminders": {"enabled": True, "daysBefore": 1},
    "goalUpdates": {"enabled": True},
}


# =============================================================================
# BILL SCHEDULING
# =============================================================================

def add_months(start: date, months: int) -> date:
    """Shift a date by whole months, clamping the day to the month's end."""
    month_index = start.month - 1 + months
    year = start.year + month_index // 12
    month = month_index % 12 + 1
    day = min(start.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def first_due_date(due_day: int, today: date) -> date:
    """
    First due date for a new bill: this month's ``due_day`` if still ahead,
    otherwise next month's.
    """
    day = min(max(due_day, 1), calendar.monthrange(today.year, today.month)[1])
    candidate = today.replace(day=day)
    if candidate <= today:
        candidate = add_months(today.replace(day=1), 1)
        candidate = candidate.replace(
            day=min(max(due_day, 1), calendar.monthrange(candidate.year, candidate.month)[1])
        )
    return candidate


def next_due_date(current_due: date, frequency: BillFrequency) -> Optional[date]:
    """Due date following ``current_due``; None for one-time bills."""
    frequency = BillFrequency(frequency)
    if frequency == BillFrequency.ONCE:
        return None
    if frequency == BillFrequency.QUARTERLY:
        return add_months(current_due, 3)
    if frequency == BillFrequency.YEARLY:
        return add_months(current_due, 12)
    return add_months(current_due, 1)


def days_until(due: str, today: date) -> Optional[int]:
    try:
        return (date.fromisoformat(due) - today).days
    except (TypeError, ValueError):
        return None


def date_window(days: int, today: date) -> tuple[str, str]:
    """``(today - days, today)`` as ISO strings."""
    return (today - timedelta(days=days)).isoformat(), today.isoformat()


# =============================================================================
# MONTHLY BUDGETS
# =============================================================================

MONTH_PATTERN = re.compile(r"^\d{4}-(0[1-9]|1[0-2])$")

DEFAULT_CURRENCY = "INR"

MANUAL_ENTRIES_FIELD = "manualEntries"


def is_month(value: Any) -> bool:
    return isinstance(value, str) and bool(MONTH_PATTERN.match(value))


def month_of(day: date) -> str:
    """``YYYY-MM`` of a date."""
    return f"{day.year:04d}-{day.month:02d}"


def shift_month(month: str, months: int) -> str:
    """``YYYY-MM`` moved by whole months (negative goes back)."""
    year, number = (int(part) for part in month.split("-"))
    return month_of(add_months(date(year, number, 1), months))


def budget_document_id(owner_id: Any, month: str) -> str:
    """One budget document per owner and month: ``<owner>_<YYYY-MM>``."""
    return f"{str(owner_id).strip()}_{month}"
