"""Tests for the LedgerService layer."""

from datetime import date
from decimal import Decimal
from unittest.mock import MagicMock

import pytest

from household_split.config import Settings
from household_split.db import Database
from household_split.exceptions import (
    BatchWriteError,
    InvalidExpenseError,
    RecordNotFoundError,
    RecordWriteError,
)
from household_split.models import (
    ExpenseInput,
    ExpenseRecord,
    FilterState,
    Identity,
    SettlementFilter,
    SplitEntry,
)
from household_split.service import PARTNER_PREFERENCE_KEY, LedgerService

CURRENT_ID = "partner@y.com__you@x.com"
LEGACY_ID = "partner@y.com__uid-1"


@pytest.fixture
def mock_settings(tmp_path):
    """Create settings without reading the environment file."""
    return Settings(
        _env_file=None,
        database_path=tmp_path / "test.db",
        default_partner_email="partner@y.com",
    )


@pytest.fixture
def mock_db(mock_settings):
    """Create a temporary database."""
    db = Database(mock_settings.database_path)
    yield db
    db.close()


@pytest.fixture
def user():
    return Identity(uid="uid-1", email="You@X.com")


@pytest.fixture
def service(mock_settings, mock_db, user):
    """Create a LedgerService backed by the temporary database."""
    svc = LedgerService(mock_settings, mock_db, mock_db, mock_db, user=user)
    yield svc
    svc.close()


def expense_input(**kwargs) -> ExpenseInput:
    values = {"date": "2024-05-10", "description": "Groceries", "amount": "25000"}
    values.update(kwargs)
    return ExpenseInput(**values)


def legacy_record(**kwargs) -> ExpenseRecord:
    values = {
        "date": "2024-04-01",
        "description": "Old rent",
        "amount": 1000,
        "payer_uid": "uid-1",
        "split": [SplitEntry(uid_or_email="uid-1", ratio=0.5)],
        "household_id": LEGACY_ID,
        "created_by": "uid-1",
    }
    values.update(kwargs)
    return ExpenseRecord(**values)


class TestAddExpense:
    """Tests for recording new expenses."""

    def test_add_appears_in_snapshot(self, service):
        record_id = service.add_expense(expense_input())

        assert [e.id for e in service.expenses] == [record_id]
        stored = service.expenses[0]
        assert stored.household_id == CURRENT_ID
        assert stored.created_by == "you@x.com"
        assert stored.payer_uid == "you@x.com"
        assert stored.week_label == "2024-19"
        assert stored.category == "General"
        assert stored.cost_center == "Shared"

    def test_split_uses_complement(self, service):
        service.add_expense(expense_input(your_ratio=Decimal("0.3")))

        split = service.expenses[0].split
        assert [(s.uid_or_email, s.ratio) for s in split] == [
            ("you@x.com", Decimal("0.3")),
            ("partner@y.com", Decimal("0.7")),
        ]

    def test_partner_as_payer(self, service):
        service.add_expense(expense_input(payer="Partner@Y.com"))

        assert service.expenses[0].payer_uid == "partner@y.com"
        assert service.balances().you.balance == Decimal("-12500")

    @pytest.mark.parametrize(
        "overrides",
        [
            {"description": "   "},
            {"amount": None},
            {"amount": ""},
            {"amount": "abc"},
            {"amount": "-10"},
            {"amount": "NaN"},
            {"date": "10/05/2024"},
            {"your_ratio": Decimal("1.5")},
            {"amount": "1e16"},
            {"amount": "1" + "0" * 29},
        ],
    )
    def test_invalid_input_writes_nothing(self, service, mock_db, overrides):
        with pytest.raises(InvalidExpenseError):
            service.add_expense(expense_input(**overrides))

        assert mock_db.snapshot([CURRENT_ID, LEGACY_ID]) == []

    def test_requires_household(self, mock_settings, mock_db, user):
        mock_settings.default_partner_email = ""
        svc = LedgerService(mock_settings, mock_db, mock_db, mock_db, user=user)

        with pytest.raises(InvalidExpenseError):
            svc.add_expense(expense_input())

    def test_requires_user(self, mock_settings, mock_db):
        svc = LedgerService(mock_settings, mock_db, mock_db, mock_db)

        with pytest.raises(InvalidExpenseError):
            svc.add_expense(expense_input())


class TestBalances:
    """Tests for the derived views."""

    def test_even_split(self, service):
        service.add_expense(expense_input())

        summary = service.balances()

        assert summary.you.gasto == 12500
        assert summary.you.aporto == 25000
        assert summary.you.balance == 12500
        assert summary.partner.balance == -12500

    def test_settled_expenses_excluded(self, service):
        service.add_expense(expense_input())
        service.add_expense(expense_input(amount="8000", conciliado=True))
        service.filters = FilterState(settlement=SettlementFilter.ALL)

        assert len(service.visible_expenses()) == 2
        assert service.balances().you.aporto == 25000

    def test_row_nets(self, service):
        service.add_expense(expense_input())
        service.add_expense(expense_input(amount="1000", payer="partner@y.com"))

        nets = sorted(net for _, net in service.row_nets())

        assert nets == [Decimal("-500"), Decimal("12500")]
        assert sum(nets) == service.balances().you.balance

    def test_month_filter(self, service):
        service.add_expense(expense_input(date="2024-05-02"))
        service.add_expense(expense_input(date="2024-04-28"))
        service.filters = FilterState(this_month=True)

        visible = service.visible_expenses(today=date(2024, 5, 15))

        assert [e.date for e in visible] == ["2024-05-02"]

    def test_signed_out(self, mock_settings, mock_db):
        svc = LedgerService(mock_settings, mock_db, mock_db, mock_db)
        assert svc.balances().you.balance == 0
        assert svc.expenses == []


class TestMigration:
    """Tests for the legacy household id migration."""

    def test_legacy_records_are_migrated(self, mock_settings, mock_db, user):
        record_id = mock_db.create(legacy_record())

        svc = LedgerService(mock_settings, mock_db, mock_db, mock_db, user=user)

        assert mock_db.get_expense(record_id).household_id == CURRENT_ID
        assert [e.household_id for e in svc.expenses] == [CURRENT_ID]
        assert svc.balances().you.aporto == 1000

    def test_failed_migration_is_retried(self, mock_settings, mock_db, user):
        record_id = mock_db.create(legacy_record())
        writer = MagicMock()

        def update_fields(target_id, fields):
            attempts = [c.args[0] for c in writer.update_fields.call_args_list]
            if target_id == record_id and attempts.count(record_id) == 1:
                raise RecordWriteError(target_id)

        writer.update_fields.side_effect = update_fields

        svc = LedgerService(mock_settings, mock_db, writer, mock_db, user=user)
        assert writer.update_fields.call_count == 1
        assert record_id not in svc.resolver.tracker

        # Any later publish retries the failed record
        mock_db.create(legacy_record(description="Newer"))
        assert writer.update_fields.call_count == 3
        assert record_id in svc.resolver.tracker

        # Successful attempts are not repeated
        mock_db.create(legacy_record(description="Newest"))
        attempted = [c.args[0] for c in writer.update_fields.call_args_list]
        assert attempted.count(record_id) == 2

    def test_no_migration_without_legacy_records(self, service, mock_db):
        service.add_expense(expense_input())
        assert len(service.resolver.tracker) == 0


class TestSubscriptionLifecycle:
    """Tests for resubscription on identity changes."""

    def test_set_partner_resubscribes(self, service, mock_db):
        old = service._subscription
        service.add_expense(expense_input())

        service.set_partner("other@z.com")

        assert not old.active
        assert service.expenses == []
        assert service.address.current_id == "other@z.com__you@x.com"
        assert mock_db.get_preference(PARTNER_PREFERENCE_KEY) == "other@z.com"

    def test_stored_partner_preferred(self, mock_settings, mock_db, user):
        mock_db.set_preference(PARTNER_PREFERENCE_KEY, "stored@z.com")
        svc = LedgerService(mock_settings, mock_db, mock_db, mock_db, user=user)
        assert svc.partner == "stored@z.com"

    def test_stale_snapshot_ignored(self, mock_settings, user):
        source = MagicMock()
        preferences = MagicMock()
        preferences.get_preference.return_value = None
        svc = LedgerService(mock_settings, source, MagicMock(), preferences, user=user)
        first_callback = source.subscribe.call_args.args[1]

        svc.set_partner("other@z.com")
        first_callback([ExpenseRecord(id="x", date="2024-05-01", household_id=CURRENT_ID)])

        assert svc.expenses == []
        assert source.subscribe.call_count == 2

    def test_find_expense_only_in_active_household(self, mock_settings, user):
        source = MagicMock()
        preferences = MagicMock()
        preferences.get_preference.return_value = None
        svc = LedgerService(mock_settings, source, MagicMock(), preferences, user=user)
        on_snapshot = source.subscribe.call_args.args[1]

        on_snapshot(
            [
                ExpenseRecord(id="mine", date="2024-05-01", household_id=LEGACY_ID),
                ExpenseRecord(id="foreign", date="2024-05-01", household_id="a__b"),
            ]
        )

        assert svc.find_expense("mine").id == "mine"
        with pytest.raises(RecordNotFoundError):
            svc.find_expense("foreign")

    def test_no_subscription_without_user(self, mock_settings):
        source = MagicMock()
        preferences = MagicMock()
        preferences.get_preference.return_value = None

        LedgerService(mock_settings, source, MagicMock(), preferences)

        source.subscribe.assert_not_called()

    def test_sign_out_closes_subscription(self, service):
        subscription = service._subscription
        service.sign_out()
        assert not subscription.active
        assert service.expenses == []


class TestEditSettleDelete:
    """Tests for edits and bulk operations."""

    def test_edit_keeps_household_and_creator(self, service, mock_db):
        record_id = service.add_expense(expense_input())
        data = service.input_from_record(service.find_expense(record_id))
        data.description = "Big groceries"
        data.amount = "30000"

        service.edit_expense(record_id, data)

        stored = mock_db.get_expense(record_id)
        assert stored.description == "Big groceries"
        assert stored.amount == 30000
        assert stored.household_id == CURRENT_ID
        assert stored.created_by == "you@x.com"

    def test_input_from_legacy_record(self, service):
        record = legacy_record(
            split=[
                SplitEntry(uid_or_email="uid-1", ratio=0.25),
                SplitEntry(uid_or_email="partner@y.com", ratio=0.75),
            ]
        )

        data = service.input_from_record(record)

        assert data.your_ratio == Decimal("0.25")
        assert data.payer == "you@x.com"

    def test_input_without_your_entry(self, service):
        data = service.input_from_record(legacy_record(split=[]))
        assert data.your_ratio == Decimal("0.5")

    def test_input_clamps_stored_ratio(self, service):
        record = legacy_record(split=[SplitEntry(uid_or_email="uid-1", ratio=1.5)])
        assert service.input_from_record(record).your_ratio == 1

    def test_edit_record_with_out_of_range_ratio(self, service, mock_db):
        """Editing another field keeps working when the stored ratio is off."""
        record_id = mock_db.create(
            legacy_record(
                household_id=CURRENT_ID,
                split=[SplitEntry(uid_or_email="uid-1", ratio=1.5)],
            )
        )
        data = service.input_from_record(service.find_expense(record_id))
        data.description = "New text"

        service.edit_expense(record_id, data)

        stored = mock_db.get_expense(record_id)
        assert stored.description == "New text"
        assert [(s.uid_or_email, s.ratio) for s in stored.split] == [
            ("you@x.com", Decimal("1")),
            ("partner@y.com", Decimal("0")),
        ]

    def test_settle(self, service):
        ids = [service.add_expense(expense_input()) for _ in range(2)]

        service.set_settled(ids)

        assert service.visible_expenses() == []

    def test_settle_failure_propagates(self, service, mock_db):
        record_id = service.add_expense(expense_input())

        with pytest.raises(BatchWriteError):
            service.set_settled([record_id, "missing"])

        assert not mock_db.get_expense(record_id).conciliado

    def test_delete_declined(self, service):
        record_id = service.add_expense(expense_input())

        assert service.delete_expenses([record_id], lambda targets: False) is False
        assert len(service.expenses) == 1

    def test_delete_confirmed(self, service):
        ids = [service.add_expense(expense_input()) for _ in range(2)]
        confirm = MagicMock(return_value=True)

        assert service.delete_expenses(ids, confirm) is True

        assert len(confirm.call_args.args[0]) == 2
        assert service.expenses == []

    def test_delete_nothing_selected(self, service):
        confirm = MagicMock()
        assert service.delete_expenses([], confirm) is False
        confirm.assert_not_called()


class TestDisplayName:
    def test_prefers_display_name(self, mock_settings, mock_db):
        user = Identity(uid="uid-1", email="you@x.com", display_name="Juan Perez")
        svc = LedgerService(mock_settings, mock_db, mock_db, mock_db, user=user)
        assert svc.display_name == "Juan Perez"

    def test_falls_back_to_email(self, service):
        assert service.display_name == "You@X.com"

    def test_signed_out(self, mock_settings, mock_db):
        svc = LedgerService(mock_settings, mock_db, mock_db, mock_db)
        assert svc.display_name == ""
