"""Query execution package."""

from src.queries.analytics import (
    ExpenseStats,
    FrequentExpense,
    MonthlyAmount,
    expense_stats,
    frequent_expenses,
    monthly_trend,
)
from src.queries.executor import QueryExecutor

__all__ = [
    "ExpenseStats",
    "FrequentExpense",
    "MonthlyAmount",
    "QueryExecutor",
    "expense_stats",
    "frequent_expenses",
    "monthly_trend",
]
