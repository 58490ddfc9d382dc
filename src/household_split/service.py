"""Service layer that composes identity, storage and the balance engine.

A LedgerService is one signed-in session: it owns the partner preference,
the live subscription for the active household, the migration state and the
filter state. Derived views (visible expenses, balances, row nets) are
recomputed from the latest snapshot on every call.
"""

import logging
from collections.abc import Callable
from datetime import date
from decimal import Decimal, InvalidOperation

from .balances import compute_balances, net_for_user
from .config import Settings
from .exceptions import InvalidExpenseError, RecordNotFoundError
from .filters import balance_source, filter_expenses
from .household import HouseholdAddress, HouseholdResolver
from .identity import build_key_set, keys_for_user, normalize_key, primary_key
from .models import (
    ZERO,
    BalanceSummary,
    ExpenseInput,
    ExpenseRecord,
    FilterState,
    Identity,
    SplitEntry,
    to_decimal,
)
from .splits import EVEN_SPLIT, ONE, complement_ratio, week_label_from_iso
from .storage import ExpenseSource, PreferenceStore, RecordWriter, Subscription

logger = logging.getLogger(__name__)

PARTNER_PREFERENCE_KEY = "partnerEmail"

# Largest amount accepted on input (whole pesos)
MAX_AMOUNT = Decimal("999999999999999")

ConfirmCallback = Callable[[list[ExpenseRecord]], bool]


class LedgerService:
    """Shared-expense ledger for one signed-in session."""

    def __init__(
        self,
        settings: Settings,
        source: ExpenseSource,
        writer: RecordWriter,
        preferences: PreferenceStore,
        user: Identity | None = None,
    ):
        """Initialize the service and subscribe to the active household."""
        self.settings = settings
        self.source = source
        self.writer = writer
        self.preferences = preferences
        self.user = user
        self.filters = FilterState()
        self.expenses: list[ExpenseRecord] = []
        self.resolver = HouseholdResolver(HouseholdAddress())
        self._subscription: Subscription | None = None
        self._generation = 0
        self.partner = self._load_partner()
        self._resubscribe()

    # ========================================================================
    # Identity
    # ========================================================================

    @property
    def you_keys(self) -> frozenset[str]:
        return keys_for_user(self.user)

    @property
    def partner_keys(self) -> frozenset[str]:
        return build_key_set(self.partner)

    @property
    def address(self) -> HouseholdAddress:
        return self.resolver.address

    @property
    def display_name(self) -> str:
        """Name to greet the signed-in party with."""
        if self.user is None:
            return ""
        return self.user.display_name or self.user.email or self.user.uid

    def sign_in(self, user: Identity) -> None:
        """Switch to a signed-in user and resubscribe."""
        self.user = user
        self.partner = self._load_partner()
        self._resubscribe()

    def sign_out(self) -> None:
        """Drop the user, the subscription and the snapshot."""
        self.user = None
        self._resubscribe()

    def set_partner(self, partner: str) -> None:
        """Change the partner, persist the preference and resubscribe."""
        self.partner = partner.strip()
        if self.user is not None and self.partner:
            self.preferences.set_preference(PARTNER_PREFERENCE_KEY, self.partner)
        self._resubscribe()

    def _load_partner(self) -> str:
        stored = self.preferences.get_preference(PARTNER_PREFERENCE_KEY)
        return stored or self.settings.default_partner_email

    # ========================================================================
    # Subscription lifecycle
    # ========================================================================

    def _resubscribe(self) -> None:
        """
        Replace the subscription for the current identity pair.

        The old handle is closed before the new one opens, and snapshots
        tagged with an older generation are discarded.
        """
        if self._subscription is not None:
            self._subscription.close()
            self._subscription = None

        self._generation += 1
        self.expenses = []
        self.resolver = HouseholdResolver.for_pair(self.user, self.partner)

        if self.user is None or not self.address.resolved:
            logger.debug("Household unresolved, not subscribing")
            return

        generation = self._generation

        def on_snapshot(records: list[ExpenseRecord]) -> None:
            if generation != self._generation:
                logger.debug("Discarding snapshot from a closed subscription")
                return
            self._apply_snapshot(records)

        self._subscription = self.source.subscribe(self.address.ids, on_snapshot)
        logger.info(f"Subscribed to household {', '.join(self.address.ids)}")

    def _apply_snapshot(self, records: list[ExpenseRecord]) -> None:
        self.expenses = list(records)
        logger.debug(f"Received snapshot with {len(self.expenses)} expenses")
        self.resolver.reconcile(self.expenses, self.writer)

    def close(self) -> None:
        """Tear down the subscription."""
        if self._subscription is not None:
            self._subscription.close()
            self._subscription = None
        self._generation += 1

    # ========================================================================
    # Derived views
    # ========================================================================

    def visible_expenses(self, today: date | None = None) -> list[ExpenseRecord]:
        """Expenses passing the current filters, newest first."""
        return filter_expenses(self.expenses, self.filters, today=today)

    def balances(self, today: date | None = None) -> BalanceSummary:
        """Balance summary over the unsettled part of the visible expenses."""
        if self.user is None:
            return BalanceSummary()
        return compute_balances(
            balance_source(self.visible_expenses(today)),
            self.you_keys,
            self.partner_keys,
        )

    def row_nets(
        self, today: date | None = None
    ) -> list[tuple[ExpenseRecord, Decimal]]:
        """Visible expenses paired with their net effect on your balance."""
        keys = self.you_keys
        return [
            (expense, net_for_user(expense, keys))
            for expense in self.visible_expenses(today)
        ]

    def find_expense(self, record_id: str) -> ExpenseRecord:
        """Look up an expense of the active household by id."""
        for expense in self.expenses:
            if expense.id == record_id and self.resolver.belongs(expense):
                return expense
        raise RecordNotFoundError(record_id)

    # ========================================================================
    # Writes
    # ========================================================================

    def add_expense(self, data: ExpenseInput) -> str:
        """
        Validate and store a new expense for the active household.

        Raises:
            InvalidExpenseError: If the input is rejected (nothing is written)
            RecordWriteError: If the store rejects the write
        """
        if self.user is None:
            raise InvalidExpenseError("Sign in before recording expenses")
        if not self.address.write_id:
            raise InvalidExpenseError("Set a partner before recording expenses")

        record = self._build_record(data)
        record.household_id = self.address.write_id
        record.created_by = primary_key(self.user)

        record_id = self.writer.create(record)
        logger.info(f"Added expense {record_id}: {record.description}")
        return record_id

    def edit_expense(self, record_id: str, data: ExpenseInput) -> None:
        """Replace every editable field of an existing expense."""
        existing = self.find_expense(record_id)
        record = self._build_record(data)
        record.household_id = existing.household_id
        self.writer.replace(record_id, record)
        logger.info(f"Edited expense {record_id}")

    def set_settled(self, record_ids: list[str], settled: bool = True) -> None:
        """Flag expenses as settled (or pending) in one atomic batch."""
        if not record_ids:
            return
        self.writer.batch_update(list(record_ids), {"conciliado": settled})
        logger.info(
            f"Marked {len(record_ids)} expenses as {'settled' if settled else 'pending'}"
        )

    def delete_expenses(self, record_ids: list[str], confirm: ConfirmCallback) -> bool:
        """
        Delete expenses after an explicit confirmation.

        Args:
            record_ids: Ids to delete
            confirm: Called with the targeted records; must return True to go on

        Returns:
            True if deleted, False if nothing was selected or the user declined
        """
        if not record_ids:
            return False

        targets = [self.find_expense(record_id) for record_id in record_ids]
        if not confirm(targets):
            logger.info("Deletion declined")
            return False

        if len(record_ids) == 1:
            self.writer.delete(record_ids[0])
        else:
            self.writer.batch_delete(list(record_ids))
        logger.info(f"Deleted {len(record_ids)} expenses")
        return True

    def input_from_record(self, record: ExpenseRecord) -> ExpenseInput:
        """Prefill edit values from a stored expense."""
        your_entries = [
            entry
            for entry in record.split
            if normalize_key(entry.uid_or_email) in self.you_keys
        ]
        your_ratio = to_decimal(your_entries[0].ratio) if your_entries else EVEN_SPLIT
        your_ratio = max(ZERO, min(ONE, your_ratio))

        payer = normalize_key(record.payer_uid)
        if payer in self.you_keys:
            payer = primary_key(self.user)

        return ExpenseInput(
            date=record.date or date.today().isoformat(),
            description=record.description,
            category=record.category or self.settings.default_category,
            cost_center=record.cost_center or self.settings.default_cost_center,
            amount=record.amount,
            conciliado=record.conciliado,
            payer=payer or primary_key(self.user),
            your_ratio=your_ratio,
        )

    def _build_record(self, data: ExpenseInput) -> ExpenseRecord:
        """Validate input and build the record fields shared by add and edit."""
        description = data.description.strip()
        if not description:
            raise InvalidExpenseError("Description is required")

        raw_amount = "" if data.amount is None else str(data.amount).strip()
        if not raw_amount:
            raise InvalidExpenseError("Amount is required")
        try:
            amount = Decimal(raw_amount)
        except InvalidOperation as e:
            raise InvalidExpenseError(f"Amount is not a number: {raw_amount!r}") from e
        if not amount.is_finite():
            raise InvalidExpenseError(f"Amount is not a number: {raw_amount!r}")
        if amount < 0:
            raise InvalidExpenseError("Amount cannot be negative")
        if amount > MAX_AMOUNT:
            raise InvalidExpenseError(f"Amount cannot exceed {MAX_AMOUNT:,}")

        try:
            week_label = week_label_from_iso(data.date)
        except ValueError as e:
            raise InvalidExpenseError(f"Date must be YYYY-MM-DD: {data.date!r}") from e

        your_ratio = to_decimal(data.your_ratio)
        if not ZERO <= your_ratio <= 1:
            raise InvalidExpenseError("Your ratio must be between 0 and 1")

        your_key = primary_key(self.user)
        partner_key = normalize_key(self.partner)
        split = [SplitEntry(uid_or_email=your_key, ratio=your_ratio)]
        if partner_key:
            split.append(
                SplitEntry(uid_or_email=partner_key, ratio=complement_ratio(your_ratio))
            )

        payer = normalize_key(data.payer)
        if not payer or payer in self.you_keys:
            payer = your_key

        return ExpenseRecord(
            date=data.date,
            week_label=week_label,
            description=description,
            category=data.category or self.settings.default_category,
            cost_center=data.cost_center or self.settings.default_cost_center,
            amount=amount,
            conciliado=data.conciliado,
            payer_uid=payer,
            split=split,
        )
