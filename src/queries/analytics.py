"""
Expense Analytics

Deterministic aggregations over expense records already returned by the
QueryExecutor. Nothing here talks to the store.

Conventions:
- ``isPending`` expenses are ignored everywhere
- ``isRefund`` expenses count as refunds, not spending
- ``cancelled`` expenses are ignored by the frequency analysis
"""

from collections import defaultdict
from typing import Iterable, Optional

from pydantic import BaseModel, Field

from src.models.records import Record


class ExpenseStats(BaseModel):
    """Totals and breakdowns for a set of expenses."""

    total_spent: float = 0.0
    total_refunds: float = 0.0
    net_spent: float = 0.0
    expense_count: int = 0
    category_breakdown: dict[str, float] = Field(default_factory=dict)
    daily_totals: dict[str, float] = Field(default_factory=dict)
    average_expense: float = 0.0


class MonthlyAmount(BaseModel):
    month: str = Field(..., description="YYYY-MM")
    amount: float


class FrequentExpense(BaseModel):
    """A description the owner keeps entering, usable as a quick template."""

    description: str
    category: Optional[str] = None
    count: int
    avg_amount: int


def _amount(expense: Record) -> float:
    try:
        return float(expense.get("amount") or 0)
    except (TypeError, ValueError):
        return 0.0


def expense_stats(expenses: Iterable[Record]) -> ExpenseStats:
    total_spent = 0.0
    total_refunds = 0.0
    count = 0
    categories: dict[str, float] = defaultdict(float)
    daily: dict[str, float] = defaultdict(float)

    for expense in expenses:
        if expense.get("isPending"):
            continue
        amount = _amount(expense)
        if expense.get("isRefund"):
            total_refunds += amount
            continue
        total_spent += amount
        count += 1
        categories[expense.get("category") or "Other"] += amount
        if expense.get("date"):
            daily[expense["date"]] += amount

    return ExpenseStats(
        total_spent=total_spent,
        total_refunds=total_refunds,
        net_spent=total_spent - total_refunds,
        expense_count=count,
        category_breakdown=dict(categories),
        daily_totals=dict(daily),
        average_expense=total_spent / count if count else 0.0,
    )


def monthly_trend(expenses: Iterable[Record], months: int = 6) -> list[MonthlyAmount]:
    """Spending per month for the last ``months`` months that have any data."""
    totals: dict[str, float] = defaultdict(float)
    for expense in expenses:
        if expense.get("isPending") or expense.get("isRefund"):
            continue
        date_value = str(expense.get("date") or "")
        if len(date_value) < 7:
            continue
        totals[date_value[:7]] += _amount(expense)

    recent = sorted(totals)[-months:] if months > 0 else []
    return [MonthlyAmount(month=month, amount=totals[month]) for month in recent]


def frequent_expenses(expenses: Iterable[Record], top_n: int = 5) -> list[FrequentExpense]:
    """
    Most repeated descriptions (case-insensitive), used at least twice.

    The first spelling seen is kept for display.
    """
    stats: dict[str, dict] = {}
    for expense in expenses:
        if expense.get("isRefund") or expense.get("cancelled") or expense.get("isPending"):
            continue
        description = str(expense.get("description") or "").strip()
        if not description:
            continue
        entry = stats.setdefault(description.lower(), {
            "description": description,
            "category": expense.get("category"),
            "count": 0,
            "total": 0.0,
        })
        entry["count"] += 1
        entry["total"] += _amount(expense)

    ranked = sorted(
        (s for s in stats.values() if s["count"] >= 2),
        key=lambda s: s["count"],
        reverse=True,
    )
    return [
        FrequentExpense(
            description=s["description"],
            category=s["category"],
            count=s["count"],
            avg_amount=round(s["total"] / s["count"]),
        )
        for s in ranked[:top_n]
    ]
