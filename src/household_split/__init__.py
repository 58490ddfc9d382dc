"""HouseholdSplit - Shared expense ledger and balances for a two-person household."""

__version__ = "0.1.0"

from .balances import compute_balances, net_for_user
from .config import Settings, load_settings
from .db import Database
from .filters import filter_expenses
from .household import HouseholdResolver, MigrationTracker, household_id
from .identity import build_key_set, keys_for_user, normalize_key, primary_key
from .models import (
    BalanceSummary,
    ExpenseRecord,
    FilterState,
    Identity,
    SettlementFilter,
    SplitEntry,
)
from .service import LedgerService

__all__ = [
    "Settings",
    "load_settings",
    "Database",
    "BalanceSummary",
    "ExpenseRecord",
    "FilterState",
    "Identity",
    "SettlementFilter",
    "SplitEntry",
    "build_key_set",
    "compute_balances",
    "filter_expenses",
    "household_id",
    "keys_for_user",
    "net_for_user",
    "normalize_key",
    "primary_key",
    "HouseholdResolver",
    "MigrationTracker",
    "LedgerService",
]
