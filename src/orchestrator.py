"""
Main Orchestrator for the ExpenseSight data layer

This module ties the cache, the read path and the write path together
behind one facade, ExpenseSightData, with one method per UI operation:
expenses, tags, goals, bills, income, investments, monthly budgets and
settings.

DESIGN DECISION: The facade owns exactly one EntryCache.
The executor, the coordinator and the counter service all receive that
same instance, so a write patches or invalidates exactly what the next
read will look at. No module-level cache exists.

Every operation is owner-scoped. Without a configured store (or without
an owner id) reads return empty defaults and writes return
"storage not configured"; nothing raises.
"""

import copy
from datetime import date
from typing import Callable, Iterable, Optional, Union

import structlog
from pydantic import ValidationError

from src.audit import AuditLogger, configure_logging
from src.cache import EntryCache, reset_all, reset_owner
from src.config import Settings, get_settings
from src.models.records import (
    DEFAULT_NOTIFICATION_SETTINGS,
    ID_FIELD,
    PREDEFINED_TAGS,
    BillFrequency,
    Domain,
    MutationResult,
    QueryFilters,
    Record,
    budget_document_id,
    date_window,
    days_until,
    first_due_date,
    is_month,
    month_of,
    next_due_date,
    shift_month,
)
from src.mutations import (
    NOT_CONFIGURED,
    CounterService,
    MonthlyBudgetService,
    MutationCoordinator,
)
from src.queries import (
    ExpenseStats,
    FrequentExpense,
    MonthlyAmount,
    QueryExecutor,
    expense_stats,
    frequent_expenses,
    monthly_trend,
)
from src.services.storage import DocumentStoreInterface, PathBuilder, StorageError


logger = structlog.get_logger(__name__)

OwnerId = Union[str, int]

GOAL_CONTRIBUTIONS = "contributions"
INVESTMENT_TRANSACTIONS = "transactions"


class ExpenseSightData:
    """
    Owner-scoped data access for the ExpenseSight UI.

    Args:
        store: Remote document store; None disables storage
        settings: Application settings (defaults to get_settings())
        cache: Shared entry cache (built from settings when omitted)
        audit_logger: Audit sink shared by every component
        clock: Monotonic clock for the cache TTL
        today: Current calendar date, for bill scheduling and date windows
        now: Current timestamp as an ISO string, stamped on writes
    """

    def __init__(
        self,
        store: Optional[DocumentStoreInterface],
        settings: Optional[Settings] = None,
        cache: Optional[EntryCache] = None,
        audit_logger: Optional[AuditLogger] = None,
        clock: Optional[Callable[[], float]] = None,
        today: Optional[Callable[[], date]] = None,
        now: Optional[Callable[[], str]] = None,
    ):
        settings = settings or get_settings()
        cache_settings = settings.cache
        data_settings = settings.data

        self._store = store
        self._today = today or date.today
        self._audit = audit_logger or AuditLogger()
        self._cache = cache or EntryCache(
            ttl_seconds=cache_settings.ttl_seconds,
            max_entries=cache_settings.max_entries,
            clock=clock,
        )
        paths = PathBuilder(settings.firestore.root_collection)

        self.queries = QueryExecutor(
            store,
            self._cache,
            paths=paths,
            timeout_seconds=data_settings.remote_timeout_seconds,
            default_limit=data_settings.default_limit_count,
            audit_logger=self._audit,
        )
        writer_options = dict(
            paths=paths,
            timeout_seconds=data_settings.remote_timeout_seconds,
            audit_logger=self._audit,
            now=now,
        )
        self.mutations = MutationCoordinator(
            store,
            self._cache,
            max_batch_operations=data_settings.max_batch_operations,
            **writer_options,
        )
        self.counters = CounterService(store, self._cache, **writer_options)
        self.budgets = MonthlyBudgetService(store, self._cache, **writer_options)

    @property
    def cache(self) -> EntryCache:
        return self._cache

    @property
    def is_configured(self) -> bool:
        return self._store is not None

    def _disabled(self, owner_id: Optional[OwnerId]) -> bool:
        return self._store is None or owner_id is None or not str(owner_id).strip()

    # =========================================================================
    # GENERIC
    # =========================================================================

    async def query(
        self,
        owner_id: OwnerId,
        domain: Domain,
        start_date: Optional[Union[str, date]] = None,
        end_date: Optional[Union[str, date]] = None,
        category: Optional[str] = None,
        limit_count: Optional[int] = None,
        use_cache: bool = True,
    ) -> list[Record]:
        """Generic filtered read; filters that cannot be built give an empty list."""
        try:
            filters = QueryFilters(
                start_date=start_date,
                end_date=end_date,
                category=category,
                limit_count=limit_count or self.queries.default_limit,
            )
        except ValidationError as e:
            self._audit.log_validation_failed("query", str(e))
            return []
        return await self.queries.query(owner_id, domain, filters, use_cache=use_cache)

    # =========================================================================
    # EXPENSES
    # =========================================================================

    async def get_expenses(
        self,
        owner_id: OwnerId,
        start_date: Optional[Union[str, date]] = None,
        end_date: Optional[Union[str, date]] = None,
        category: Optional[str] = None,
        limit_count: Optional[int] = None,
        use_cache: bool = True,
    ) -> list[Record]:
        """Expenses newest first, optionally within a date range and category."""
        return await self.query(
            owner_id, Domain.EXPENSES, start_date, end_date, category, limit_count, use_cache,
        )

    async def get_expense(self, owner_id: OwnerId, expense_id: str) -> Optional[Record]:
        return await self.queries.get_record(owner_id, Domain.EXPENSES, expense_id)

    async def add_expenses(self, owner_id: OwnerId, expenses: Iterable[Record]) -> MutationResult:
        return await self.mutations.create_many(owner_id, Domain.EXPENSES, expenses)

    async def add_expense(self, owner_id: OwnerId, expense: Record) -> MutationResult:
        return await self.mutations.create(owner_id, Domain.EXPENSES, expense)

    async def update_expense(
        self,
        owner_id: OwnerId,
        expense_id: str,
        fields: Record,
    ) -> MutationResult:
        return await self.mutations.update(owner_id, Domain.EXPENSES, expense_id, fields)

    async def delete_expense(self, owner_id: OwnerId, expense_id: str) -> MutationResult:
        return await self.mutations.delete(owner_id, Domain.EXPENSES, expense_id)

    async def delete_expenses(
        self,
        owner_id: OwnerId,
        expense_ids: Iterable[str],
    ) -> MutationResult:
        return await self.mutations.delete_many(owner_id, Domain.EXPENSES, expense_ids)

    async def delete_all_expenses(self, owner_id: OwnerId) -> MutationResult:
        """Wipe the owner's expenses. The caller confirms intent first."""
        return await self.mutations.delete_all(owner_id, Domain.EXPENSES)

    async def get_recent_expenses(self, owner_id: OwnerId, days: int = 7) -> list[Record]:
        """
        Expenses of the last ``days`` days, always read from the store.

        Used for duplicate checks, where a stale list would hide an entry
        that was just added from another session.
        """
        start, end = date_window(days, self._today())
        return await self.get_expenses(owner_id, start_date=start, end_date=end, use_cache=False)

    # =========================================================================
    # ANALYTICS
    # =========================================================================

    async def get_expense_stats(
        self,
        owner_id: OwnerId,
        start_date: Optional[Union[str, date]] = None,
        end_date: Optional[Union[str, date]] = None,
    ) -> ExpenseStats:
        expenses = await self.get_expenses(owner_id, start_date=start_date, end_date=end_date)
        return expense_stats(expenses)

    async def get_monthly_trend(self, owner_id: OwnerId, months: int = 6) -> list[MonthlyAmount]:
        return monthly_trend(await self.get_expenses(owner_id), months)

    async def get_frequent_expenses(
        self,
        owner_id: OwnerId,
        top_n: int = 5,
    ) -> list[FrequentExpense]:
        return frequent_expenses(await self.get_expenses(owner_id), top_n)

    # =========================================================================
    # TAGS
    # =========================================================================

    async def get_tags(self, owner_id: OwnerId) -> list[Record]:
        """Predefined tags followed by custom tags; a custom tag replaces a predefined one of the same name."""
        custom = await self.query(owner_id, Domain.TAGS)
        custom_names = {str(t.get("name", "")).lower() for t in custom}
        predefined = [
            dict(t) for t in PREDEFINED_TAGS if t["name"].lower() not in custom_names
        ]
        return predefined + custom

    async def create_tag(self, owner_id: OwnerId, name: str, color: str = "stone") -> MutationResult:
        name = (name or "").strip().lower()
        if not name:
            self._audit.log_validation_failed("create_tag", "Tag name is required")
            return MutationResult.failed("Tag name is required")
        return await self.mutations.create(owner_id, Domain.TAGS, {
            "name": name,
            "color": color or "stone",
            "isCustom": True,
            "usageCount": 0,
        })

    async def delete_tag(self, owner_id: OwnerId, tag_id: str) -> MutationResult:
        return await self.mutations.delete(owner_id, Domain.TAGS, tag_id)

    async def increment_tag_usage(self, owner_id: OwnerId, tag_name: str) -> MutationResult:
        """Count one more use of a custom tag, looked up by name."""
        if self._disabled(owner_id):
            return MutationResult.failed(NOT_CONFIGURED)
        wanted = (tag_name or "").strip().lower()
        tags = await self.query(owner_id, Domain.TAGS)
        match = next((t for t in tags if str(t.get("name", "")).lower() == wanted), None)
        if not wanted or match is None:
            return MutationResult.failed("not found")
        return await self.counters.increment_field(
            owner_id, Domain.TAGS, match[ID_FIELD], "usageCount", 1,
        )

    # =========================================================================
    # GOALS
    # =========================================================================

    async def get_goals(self, owner_id: OwnerId) -> list[Record]:
        return await self.query(owner_id, Domain.GOALS)

    async def create_goal(self, owner_id: OwnerId, goal: Record) -> MutationResult:
        if not goal or not goal.get("name"):
            self._audit.log_validation_failed("create_goal", "Goal name is required")
            return MutationResult.failed("Goal name is required")
        return await self.mutations.create(owner_id, Domain.GOALS, {
            "name": goal["name"],
            "targetAmount": goal.get("targetAmount") or 0,
            "currentAmount": goal.get("currentAmount") or 0,
            "deadline": goal.get("deadline"),
            "category": goal.get("category"),
            "trackingType": goal.get("trackingType") or "savings",
            "suggestedCutbacks": goal.get("suggestedCutbacks") or [],
            "isActive": True,
        })

    async def update_goal(self, owner_id: OwnerId, goal_id: str, fields: Record) -> MutationResult:
        return await self.mutations.update(owner_id, Domain.GOALS, goal_id, fields)

    async def delete_goal(self, owner_id: OwnerId, goal_id: str) -> MutationResult:
        return await self.mutations.delete(owner_id, Domain.GOALS, goal_id)

    async def add_to_goal(
        self,
        owner_id: OwnerId,
        goal_id: str,
        amount: float,
        note: Optional[str] = None,
    ) -> MutationResult:
        """
        Add ``amount`` to a goal's ``currentAmount`` and record the contribution.

        The contribution is written only after the increment succeeded.
        A failed contribution write is reported in ``details`` without
        turning the (already applied) increment into a failure.
        """
        result = await self.counters.increment_field(
            owner_id, Domain.GOALS, goal_id, "currentAmount", amount,
        )
        if not result.success:
            return result

        contribution = await self.mutations.add_subrecord(
            owner_id, Domain.GOALS, goal_id, GOAL_CONTRIBUTIONS, {
                "amount": amount,
                "date": self._today().isoformat(),
                "note": note,
            },
        )
        if contribution.success:
            result.details["contribution_id"] = contribution.record_id
        else:
            result.details["contribution_error"] = contribution.error
        return result

    async def get_goal_contributions(self, owner_id: OwnerId, goal_id: str) -> list[Record]:
        return await self.queries.list_subrecords(
            owner_id, Domain.GOALS, goal_id, GOAL_CONTRIBUTIONS,
        )

    # =========================================================================
    # BILLS
    # =========================================================================

    async def get_bills(self, owner_id: OwnerId) -> list[Record]:
        """Bills ordered by day of month."""
        return await self.query(owner_id, Domain.BILLS)

    async def create_bill(self, owner_id: OwnerId, bill: Record) -> MutationResult:
        if not bill or not bill.get("name"):
            self._audit.log_validation_failed("create_bill", "Bill name is required")
            return MutationResult.failed("Bill name is required")
        due_day = int(bill.get("dueDay") or 1)
        return await self.mutations.create(owner_id, Domain.BILLS, {
            "name": bill["name"],
            "amount": bill.get("amount") or 0,
            "category": bill.get("category") or "Utilities",
            "dueDay": due_day,
            "frequency": bill.get("frequency") or BillFrequency.MONTHLY.value,
            "isAutoPay": bool(bill.get("isAutoPay")),
            "reminderDays": bill.get("reminderDays") or [1],
            "lastPaidDate": None,
            "nextDueDate": first_due_date(due_day, self._today()).isoformat(),
            "isActive": True,
        })

    async def update_bill(self, owner_id: OwnerId, bill_id: str, fields: Record) -> MutationResult:
        return await self.mutations.update(owner_id, Domain.BILLS, bill_id, fields)

    async def delete_bill(self, owner_id: OwnerId, bill_id: str) -> MutationResult:
        return await self.mutations.delete(owner_id, Domain.BILLS, bill_id)

    async def mark_bill_paid(
        self,
        owner_id: OwnerId,
        bill_id: str,
        paid_date: Optional[Union[str, date]] = None,
    ) -> MutationResult:
        """
        Record a payment and move ``nextDueDate`` on by the bill's frequency.

        One-time bills are deactivated instead. ``details["nextDueDate"]``
        carries the new due date (None for one-time bills). A bill that
        could not be read is reported with the store error, not as missing.
        """
        if self._disabled(owner_id):
            return MutationResult.failed(NOT_CONFIGURED)
        try:
            bill = await self.queries.read_record(owner_id, Domain.BILLS, bill_id)
        except StorageError as e:
            return MutationResult.failed(str(e), record_id=bill_id)
        if bill is None:
            return MutationResult.failed("not found", record_id=bill_id)

        today = self._today()
        if isinstance(paid_date, date):
            paid_date = paid_date.isoformat()
        changes: Record = {"lastPaidDate": paid_date or today.isoformat()}

        try:
            frequency = BillFrequency(bill.get("frequency") or BillFrequency.MONTHLY)
        except ValueError:
            frequency = BillFrequency.MONTHLY
        try:
            current_due = date.fromisoformat(str(bill.get("nextDueDate")))
        except ValueError:
            current_due = today

        following = next_due_date(current_due, frequency)
        if following is None:
            changes["isActive"] = False
        else:
            changes["nextDueDate"] = following.isoformat()

        result = await self.mutations.update(owner_id, Domain.BILLS, bill_id, changes)
        if result.success:
            result.details["nextDueDate"] = changes.get("nextDueDate")
        return result

    async def get_upcoming_bills(self, owner_id: OwnerId, days: int = 7) -> list[Record]:
        """Active bills due between today and ``days`` days from now, soonest first."""
        today = self._today()
        upcoming = []
        for bill in await self.get_bills(owner_id):
            if not bill.get("isActive"):
                continue
            remaining = days_until(bill.get("nextDueDate"), today)
            if remaining is not None and 0 <= remaining <= days:
                upcoming.append(bill)
        return sorted(upcoming, key=lambda b: b["nextDueDate"])

    # =========================================================================
    # INCOME & INVESTMENTS
    # =========================================================================

    async def get_income(
        self,
        owner_id: OwnerId,
        start_date: Optional[Union[str, date]] = None,
        end_date: Optional[Union[str, date]] = None,
    ) -> list[Record]:
        return await self.query(owner_id, Domain.INCOME, start_date, end_date)

    async def add_income(self, owner_id: OwnerId, income: Record) -> MutationResult:
        return await self.mutations.create(owner_id, Domain.INCOME, income)

    async def update_income(self, owner_id: OwnerId, income_id: str, fields: Record) -> MutationResult:
        return await self.mutations.update(owner_id, Domain.INCOME, income_id, fields)

    async def delete_income(self, owner_id: OwnerId, income_id: str) -> MutationResult:
        return await self.mutations.delete(owner_id, Domain.INCOME, income_id)

    async def get_investments(self, owner_id: OwnerId) -> list[Record]:
        return await self.query(owner_id, Domain.INVESTMENTS)

    async def add_investment(self, owner_id: OwnerId, investment: Record) -> MutationResult:
        return await self.mutations.create(owner_id, Domain.INVESTMENTS, investment)

    async def update_investment(
        self,
        owner_id: OwnerId,
        investment_id: str,
        fields: Record,
    ) -> MutationResult:
        return await self.mutations.update(owner_id, Domain.INVESTMENTS, investment_id, fields)

    async def delete_investment(self, owner_id: OwnerId, investment_id: str) -> MutationResult:
        return await self.mutations.delete(owner_id, Domain.INVESTMENTS, investment_id)

    async def add_investment_transaction(
        self,
        owner_id: OwnerId,
        investment_id: str,
        transaction: Record,
    ) -> MutationResult:
        return await self.mutations.add_subrecord(
            owner_id, Domain.INVESTMENTS, investment_id, INVESTMENT_TRANSACTIONS, transaction,
        )

    async def get_investment_transactions(
        self,
        owner_id: OwnerId,
        investment_id: str,
    ) -> list[Record]:
        return await self.queries.list_subrecords(
            owner_id, Domain.INVESTMENTS, investment_id, INVESTMENT_TRANSACTIONS,
        )

    # =========================================================================
    # MONTHLY BUDGETS
    # =========================================================================

    async def get_budget(
        self,
        owner_id: OwnerId,
        month: str,
        use_cache: bool = True,
    ) -> Optional[Record]:
        """The budget of ``month`` (``YYYY-MM``), or None when none was set."""
        if not is_month(month):
            self._audit.log_validation_failed(
                "get_budget", f"Month must be written YYYY-MM, got {month!r}",
            )
            return None
        if self._disabled(owner_id):
            return None
        return await self.queries.get_document(
            owner_id, Domain.BUDGET, budget_document_id(owner_id, month), use_cache=use_cache,
        )

    async def save_budget(self, owner_id: OwnerId, month: str, budget: Record) -> MutationResult:
        """Create or update the month's limits (``overallLimit``, ``currency``, ``categoryLimits``)."""
        return await self.budgets.save_budget(owner_id, month, budget)

    async def add_manual_entry(self, owner_id: OwnerId, month: str, entry: Record) -> MutationResult:
        return await self.budgets.add_manual_entry(owner_id, month, entry)

    async def delete_manual_entry(
        self,
        owner_id: OwnerId,
        month: str,
        entry_id: str,
    ) -> MutationResult:
        return await self.budgets.delete_manual_entry(owner_id, month, entry_id)

    async def delete_budget(self, owner_id: OwnerId, month: str) -> MutationResult:
        return await self.budgets.delete_budget(owner_id, month)

    async def get_budget_history(self, owner_id: OwnerId, months: int = 6) -> list[Record]:
        """
        Budgets of the current month and the ``months - 1`` before it,
        newest first. Months without a budget are skipped.
        """
        current = month_of(self._today())
        history = []
        for offset in range(max(months, 0)):
            budget = await self.get_budget(owner_id, shift_month(current, -offset))
            if budget is not None:
                history.append(budget)
        return history

    async def copy_budget_from_previous_month(
        self,
        owner_id: OwnerId,
        target_month: str,
    ) -> MutationResult:
        """
        Start ``target_month`` with the previous month's limits.

        Manual entries are not copied. The previous month is read fresh
        from the store; "not found" means it really has no budget.
        """
        if self._disabled(owner_id):
            return MutationResult.failed(NOT_CONFIGURED)
        if not is_month(target_month):
            message = f"Month must be written YYYY-MM, got {target_month!r}"
            self._audit.log_validation_failed("copy_budget_from_previous_month", message)
            return MutationResult.failed(message)

        previous_month = shift_month(target_month, -1)
        try:
            previous = await self.queries.read_record(
                owner_id, Domain.BUDGET, budget_document_id(owner_id, previous_month),
            )
        except StorageError as e:
            return MutationResult.failed(str(e))
        if previous is None:
            return MutationResult.failed("not found", details={"month": previous_month})

        return await self.budgets.save_budget(owner_id, target_month, {
            "overallLimit": previous.get("overallLimit"),
            "currency": previous.get("currency"),
            "categoryLimits": previous.get("categoryLimits"),
        })

    # =========================================================================
    # SETTINGS
    # =========================================================================

    async def get_budget_settings(self, owner_id: OwnerId) -> Optional[Record]:
        """The owner's budget settings, or None when never saved."""
        return await self.queries.get_settings_document(owner_id, Domain.BUDGET)

    async def save_budget_settings(self, owner_id: OwnerId, budget: Record) -> MutationResult:
        return await self.mutations.save_settings(owner_id, Domain.BUDGET, budget)

    async def get_notification_settings(self, owner_id: OwnerId) -> Record:
        """The owner's notification settings, falling back to the defaults."""
        return await self.queries.get_settings_document(
            owner_id,
            Domain.NOTIFICATIONS,
            default=copy.deepcopy(DEFAULT_NOTIFICATION_SETTINGS),
        )

    async def save_notification_settings(
        self,
        owner_id: OwnerId,
        settings: Record,
    ) -> MutationResult:
        return await self.mutations.save_settings(owner_id, Domain.NOTIFICATIONS, settings)

    # =========================================================================
    # SESSION
    # =========================================================================

    def logout(self, owner_id: OwnerId) -> int:
        """Drop everything cached for ``owner_id``. Local only."""
        return reset_owner(self._cache, owner_id, audit_logger=self._audit)

    def reset_cache(self) -> int:
        return reset_all(self._cache, audit_logger=self._audit)


def create_data_layer(
    settings: Optional[Settings] = None,
    store: Optional[DocumentStoreInterface] = None,
    clock: Optional[Callable[[], float]] = None,
    today: Optional[Callable[[], date]] = None,
) -> ExpenseSightData:
    """
    Factory function to create the data layer.

    Args:
        settings: Application settings (defaults to get_settings())
        store: Explicit document store. When omitted, Firestore is used
               if a project id is configured; otherwise storage stays
               disabled and the app runs without persistence.
        clock: Cache clock override
        today: Calendar override

    Returns:
        A ready ExpenseSightData facade
    """
    settings = settings or get_settings()
    configure_logging(settings.app.log_level)

    if store is None:
        firestore_settings = settings.firestore
        if firestore_settings.is_configured:
            from src.services.storage.firestore import FirestoreClient, FirestoreDocumentStore

            store = FirestoreDocumentStore(
                FirestoreClient(firestore_settings),
                write_retry_attempts=settings.data.write_retry_attempts,
            )
        else:
            logger.warning(
                "storage_not_configured",
                message="FIRESTORE_PROJECT_ID is not set; running without persistence",
            )

    return ExpenseSightData(store, settings=settings, clock=clock, today=today)
