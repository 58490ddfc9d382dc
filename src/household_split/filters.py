"""Derives the visible expense subset from a snapshot and the filter state."""

from collections.abc import Iterable
from datetime import date

from .models import ExpenseRecord, FilterState, SettlementFilter


def first_day_of_month(today: date | None = None) -> str:
    """ISO date string of the first day of the current month."""
    today = today or date.today()
    return today.replace(day=1).isoformat()


def matches_query(expense: ExpenseRecord, query: str) -> bool:
    """Case-insensitive match against description and category."""
    if not query.strip():
        return True
    haystack = f"{expense.description} {expense.category}".lower()
    return query.lower() in haystack


def matches_settlement(expense: ExpenseRecord, settlement: SettlementFilter) -> bool:
    if settlement is SettlementFilter.SETTLED:
        return expense.conciliado
    if settlement is SettlementFilter.PENDING:
        return not expense.conciliado
    return True


def filter_expenses(
    expenses: Iterable[ExpenseRecord],
    state: FilterState,
    today: date | None = None,
) -> list[ExpenseRecord]:
    """
    Apply the time window, settlement and search filters.

    ISO-8601 dates are zero padded, so the month window is a plain string
    comparison. Input order is preserved.

    Args:
        expenses: Latest full snapshot
        state: Current filter state
        today: Reference date for the month window (defaults to today)

    Returns:
        Expenses matching every active filter
    """
    month_start = first_day_of_month(today) if state.this_month else ""

    return [
        expense
        for expense in expenses
        if (not month_start or expense.date >= month_start)
        and matches_settlement(expense, state.settlement)
        and matches_query(expense, state.query)
    ]


def balance_source(expenses: Iterable[ExpenseRecord]) -> list[ExpenseRecord]:
    """Unsettled expenses, the set balances are computed over."""
    return [expense for expense in expenses if not expense.conciliado]
