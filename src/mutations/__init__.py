"""Write path: batched mutations, atomic counters, monthly budgets and cache reconciliation."""

from src.mutations.base import NOT_CONFIGURED, RemoteWriter, generate_record_id
from src.mutations.budgets import MonthlyBudgetService, generate_entry_id
from src.mutations.coordinator import MutationCoordinator, chunked
from src.mutations.counters import CounterService

__all__ = [
    "NOT_CONFIGURED",
    "CounterService",
    "MonthlyBudgetService",
    "MutationCoordinator",
    "RemoteWriter",
    "chunked",
    "generate_entry_id",
    "generate_record_id",
]
