"""Abstract interfaces for the collaborators the ledger core consumes.

The core never talks to a concrete store. It subscribes to full snapshots
through an ExpenseSource, writes through a RecordWriter and keeps the partner
preference in a PreferenceStore. The SQLite Database implements all three.
"""

from abc import ABC, abstractmethod
from collections.abc import Callable, Iterable
from typing import Any

from .models import ExpenseRecord

SnapshotCallback = Callable[[list[ExpenseRecord]], None]


class Subscription(ABC):
    """Handle for a live snapshot subscription."""

    @property
    @abstractmethod
    def active(self) -> bool:
        """Whether the subscription still delivers snapshots."""
        pass

    @abstractmethod
    def close(self) -> None:
        """Stop delivery and release resources. Safe to call twice."""
        pass


class ExpenseSource(ABC):
    """Source of full expense snapshots scoped to a household."""

    @abstractmethod
    def snapshot(self, household_ids: Iterable[str]) -> list[ExpenseRecord]:
        """
        Read the current records for the given household ids.

        Returns:
            Records ordered by date descending
        """
        pass

    @abstractmethod
    def subscribe(
        self, household_ids: Iterable[str], callback: SnapshotCallback
    ) -> Subscription:
        """
        Subscribe to snapshots for the given household ids.

        The callback receives the current snapshot immediately and again
        after every change, always as a complete replacement list.
        """
        pass


class RecordWriter(ABC):
    """
    Write side of the expense store.

    Every method succeeds or fails as a unit and raises RecordWriteError
    (BatchWriteError for batches) on failure.
    """

    @abstractmethod
    def create(self, record: ExpenseRecord) -> str:
        """Store a new record and return its id."""
        pass

    @abstractmethod
    def replace(self, record_id: str, record: ExpenseRecord) -> None:
        """Replace every field of an existing record."""
        pass

    @abstractmethod
    def update_fields(self, record_id: str, fields: dict[str, Any]) -> None:
        """Update some stored fields (document keys) of a record."""
        pass

    @abstractmethod
    def delete(self, record_id: str) -> None:
        pass

    @abstractmethod
    def batch_update(self, record_ids: list[str], fields: dict[str, Any]) -> None:
        """Update the same fields on all records, atomically."""
        pass

    @abstractmethod
    def batch_delete(self, record_ids: list[str]) -> None:
        """Delete all records, atomically."""
        pass


class PreferenceStore(ABC):
    """Persisted key/value preferences. Last write wins."""

    @abstractmethod
    def get_preference(self, key: str) -> str | None:
        pass

    @abstractmethod
    def set_preference(self, key: str, value: str) -> None:
        pass
