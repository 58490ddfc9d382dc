"""SQLite database operations for HouseholdSplit."""

import json
import logging
import sqlite3
from collections.abc import Iterable
from datetime import datetime
from pathlib import Path
from typing import Any
from uuid import uuid4

from .exceptions import BatchWriteError, RecordNotFoundError, RecordWriteError
from .models import ExpenseRecord, SplitEntry, to_decimal
from .splits import week_label_from_iso
from .storage import (
    ExpenseSource,
    PreferenceStore,
    RecordWriter,
    SnapshotCallback,
    Subscription,
)

logger = logging.getLogger(__name__)

# Stored document key -> column
FIELD_COLUMNS = {
    "date": "date",
    "weekLabel": "week_label",
    "description": "description",
    "category": "category",
    "costCenter": "cost_center",
    "amount": "amount",
    "conciliado": "conciliado",
    "payerUid": "payer_uid",
    "split": "split",
    "householdId": "household_id",
    "createdBy": "created_by",
    "createdAt": "created_at",
    "updatedAt": "updated_at",
}

_SELECT_EXPENSE = """
    SELECT id, date, week_label, description, category, cost_center, amount,
           conciliado, payer_uid, split, household_id, created_by,
           created_at, updated_at
    FROM expenses
"""


def _column_value(key: str, value: Any) -> Any:
    """Convert a document value into its column representation."""
    if key == "amount":
        return str(to_decimal(value))
    if key == "conciliado":
        return 1 if value else 0
    if key == "split":
        entries = [
            entry if isinstance(entry, SplitEntry) else SplitEntry.model_validate(entry)
            for entry in value or []
        ]
        return json.dumps(
            [entry.model_dump(mode="json", by_alias=True) for entry in entries]
        )
    if isinstance(value, datetime):
        return value.isoformat()
    return value


def _fill_week_label(document: dict[str, Any]) -> None:
    """Derive weekLabel from date when the document lacks one."""
    if document.get("weekLabel") or not document.get("date"):
        return
    try:
        document["weekLabel"] = week_label_from_iso(document["date"])
    except ValueError:
        logger.warning(f"Cannot derive week label from date {document['date']!r}")


def _row_to_record(row: sqlite3.Row) -> ExpenseRecord:
    return ExpenseRecord.model_validate(
        {
            "id": row["id"],
            "date": row["date"],
            "weekLabel": row["week_label"],
            "description": row["description"],
            "category": row["category"],
            "costCenter": row["cost_center"],
            "amount": row["amount"],
            "conciliado": bool(row["conciliado"]),
            "payerUid": row["payer_uid"],
            "split": json.loads(row["split"] or "[]"),
            "householdId": row["household_id"],
            "createdBy": row["created_by"],
            "createdAt": row["created_at"],
            "updatedAt": row["updated_at"],
        }
    )


class _DatabaseSubscription(Subscription):
    """Snapshot subscription owned by a Database."""

    def __init__(
        self, database: "Database", household_ids: tuple[str, ...], callback: SnapshotCallback
    ):
        self.database = database
        self.household_ids = household_ids
        self.callback = callback
        self.stale = False
        self._active = True

    @property
    def active(self) -> bool:
        return self._active

    def deliver(self, records: list[ExpenseRecord]) -> None:
        if self._active:
            self.callback(records)

    def close(self) -> None:
        if not self._active:
            return
        self._active = False
        self.database._unsubscribe(self)


class Database(ExpenseSource, RecordWriter, PreferenceStore):
    """SQLite database manager."""

    def __init__(self, db_path: Path):
        """Initialize database connection."""
        self.db_path = db_path
        self.conn = sqlite3.connect(str(db_path))
        self.conn.row_factory = sqlite3.Row
        self._subscriptions: list[_DatabaseSubscription] = []
        self._publishing = False
        self._init_schema()

    def _init_schema(self):
        """Initialize database schema."""
        cursor = self.conn.cursor()

        # Expenses table
        cursor.execute(
            """
            CREATE TABLE IF NOT EXISTS expenses (
                id TEXT PRIMARY KEY,
                household_id TEXT NOT NULL,
                date TEXT NOT NULL,
                week_label TEXT NOT NULL DEFAULT '',
                description TEXT NOT NULL DEFAULT '',
                category TEXT NOT NULL DEFAULT '',
                cost_center TEXT NOT NULL DEFAULT '',
                amount TEXT NOT NULL DEFAULT '0',
                conciliado INTEGER NOT NULL DEFAULT 0,
                payer_uid TEXT NOT NULL DEFAULT '',
                split TEXT NOT NULL DEFAULT '[]',
                created_by TEXT NOT NULL DEFAULT '',
                created_at TIMESTAMP,
                updated_at TIMESTAMP
            )
        """
        )
        cursor.execute(
            """
            CREATE INDEX IF NOT EXISTS idx_expenses_household_date
            ON expenses (household_id, date)
        """
        )

        # Config table
        cursor.execute(
            """
            CREATE TABLE IF NOT EXISTS config (
                key TEXT PRIMARY KEY,
                value TEXT NOT NULL,
                updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        """
        )

        self.conn.commit()

    def close(self):
        """Close database connection and drop all subscriptions."""
        for subscription in list(self._subscriptions):
            subscription.close()
        self.conn.close()

    # ========================================================================
    # Preference operations
    # ========================================================================

    def get_preference(self, key: str) -> str | None:
        """Get a preference value by key."""
        cursor = self.conn.cursor()
        cursor.execute("SELECT value FROM config WHERE key = ?", (key,))
        row = cursor.fetchone()
        return str(row["value"]) if row else None

    def set_preference(self, key: str, value: str) -> None:
        """Set a preference value."""
        cursor = self.conn.cursor()
        cursor.execute(
            """
            INSERT INTO config (key, value, updated_at)
            VALUES (?, ?, ?)
            ON CONFLICT(key) DO UPDATE SET
                value = excluded.value,
                updated_at = excluded.updated_at
            """,
            (key, value, datetime.now().isoformat()),
        )
        self.conn.commit()

    # ========================================================================
    # Read operations
    # ========================================================================

    def get_expense(self, record_id: str) -> ExpenseRecord | None:
        """Get an expense by id."""
        cursor = self.conn.cursor()
        cursor.execute(_SELECT_EXPENSE + " WHERE id = ?", (record_id,))
        row = cursor.fetchone()
        return _row_to_record(row) if row else None

    def snapshot(self, household_ids: Iterable[str]) -> list[ExpenseRecord]:
        """Get all expenses of the given households, newest date first."""
        ids = [hid for hid in dict.fromkeys(household_ids) if hid]
        if not ids:
            return []

        placeholders = ", ".join("?" for _ in ids)
        cursor = self.conn.cursor()
        cursor.execute(
            _SELECT_EXPENSE
            + f" WHERE household_id IN ({placeholders})"
            + " ORDER BY date DESC, created_at DESC",
            ids,
        )
        return [_row_to_record(row) for row in cursor.fetchall()]

    # ========================================================================
    # Subscriptions
    # ========================================================================

    def subscribe(
        self, household_ids: Iterable[str], callback: SnapshotCallback
    ) -> Subscription:
        """Subscribe to snapshots; the current snapshot is delivered at once."""
        subscription = _DatabaseSubscription(self, tuple(household_ids), callback)
        self._subscriptions.append(subscription)
        logger.debug(f"Subscribed to households {subscription.household_ids}")
        self._publish([subscription])
        return subscription

    def _unsubscribe(self, subscription: _DatabaseSubscription) -> None:
        if subscription in self._subscriptions:
            self._subscriptions.remove(subscription)
            logger.debug(f"Unsubscribed from households {subscription.household_ids}")

    def _publish(self, subscriptions: Iterable[_DatabaseSubscription]) -> None:
        """
        Push fresh snapshots to stale subscriptions.

        Writes issued from inside a callback only mark subscriptions stale;
        the outer loop delivers them once the current callback returns.
        """
        for subscription in subscriptions:
            subscription.stale = True
        if self._publishing:
            return

        self._publishing = True
        try:
            while True:
                stale = [s for s in self._subscriptions if s.active and s.stale]
                if not stale:
                    break
                for subscription in stale:
                    subscription.stale = False
                    subscription.deliver(self.snapshot(subscription.household_ids))
        finally:
            self._publishing = False

    def _changed(self) -> None:
        self._publish(self._subscriptions)

    # ========================================================================
    # Write operations
    # ========================================================================

    def create(self, record: ExpenseRecord) -> str:
        """Insert a new expense and return its generated id."""
        record_id = uuid4().hex
        now = datetime.now()
        document = record.to_document()
        document["createdAt"] = record.created_at or now
        document["updatedAt"] = record.updated_at or now
        _fill_week_label(document)

        columns = ["id"] + [FIELD_COLUMNS[key] for key in document]
        values = [record_id] + [_column_value(key, value) for key, value in document.items()]
        placeholders = ", ".join("?" for _ in columns)

        try:
            with self.conn:
                self.conn.execute(
                    f"INSERT INTO expenses ({', '.join(columns)}) VALUES ({placeholders})",
                    values,
                )
        except sqlite3.Error as e:
            raise RecordWriteError(None, f"Failed to create expense: {e}") from e

        logger.info(f"Created expense {record_id} in household {record.household_id}")
        self._changed()
        return record_id

    def replace(self, record_id: str, record: ExpenseRecord) -> None:
        """Replace all fields of an expense. Creation audit fields are kept."""
        document = record.to_document()
        for key in ("createdAt", "createdBy"):
            document.pop(key, None)
        self._update(record_id, document)
        logger.info(f"Replaced expense {record_id}")

    def update_fields(self, record_id: str, fields: dict[str, Any]) -> None:
        """Update some fields of an expense."""
        self._update(record_id, fields)
        logger.info(f"Updated {sorted(fields)} on expense {record_id}")

    def delete(self, record_id: str) -> None:
        """Delete an expense."""
        try:
            with self.conn:
                cursor = self.conn.execute(
                    "DELETE FROM expenses WHERE id = ?", (record_id,)
                )
        except sqlite3.Error as e:
            raise RecordWriteError(record_id, f"Failed to delete {record_id}: {e}") from e
        if cursor.rowcount == 0:
            raise RecordNotFoundError(record_id)

        logger.info(f"Deleted expense {record_id}")
        self._changed()

    def batch_update(self, record_ids: list[str], fields: dict[str, Any]) -> None:
        """Update the same fields on every expense, all or nothing."""
        assignments, values = self._assignments(fields, batch_ids=record_ids)
        try:
            with self.conn:
                self._require_all(record_ids)
                for record_id in record_ids:
                    self.conn.execute(
                        f"UPDATE expenses SET {assignments} WHERE id = ?",
                        [*values, record_id],
                    )
        except (sqlite3.Error, RecordNotFoundError) as e:
            raise BatchWriteError(record_ids, f"Batch update rolled back: {e}") from e

        logger.info(f"Updated {sorted(fields)} on {len(record_ids)} expenses")
        self._changed()

    def batch_delete(self, record_ids: list[str]) -> None:
        """Delete every expense, all or nothing."""
        try:
            with self.conn:
                self._require_all(record_ids)
                self.conn.executemany(
                    "DELETE FROM expenses WHERE id = ?",
                    [(record_id,) for record_id in record_ids],
                )
        except (sqlite3.Error, RecordNotFoundError) as e:
            raise BatchWriteError(record_ids, f"Batch delete rolled back: {e}") from e

        logger.info(f"Deleted {len(record_ids)} expenses")
        self._changed()

    def _assignments(
        self,
        fields: dict[str, Any],
        record_id: str | None = None,
        batch_ids: list[str] | None = None,
    ) -> tuple[str, list[Any]]:
        """Build the SET clause for document fields, stamping updatedAt."""
        unknown = sorted(set(fields) - set(FIELD_COLUMNS))
        if unknown:
            message = f"Unknown expense fields: {unknown}"
            if batch_ids is not None:
                raise BatchWriteError(batch_ids, message)
            raise RecordWriteError(record_id, message)

        document = dict(fields)
        if document.get("updatedAt") is None:
            document["updatedAt"] = datetime.now()
        _fill_week_label(document)

        assignments = ", ".join(f"{FIELD_COLUMNS[key]} = ?" for key in document)
        values = [_column_value(key, value) for key, value in document.items()]
        return assignments, values

    def _update(self, record_id: str, fields: dict[str, Any]) -> None:
        assignments, values = self._assignments(fields, record_id=record_id)
        try:
            with self.conn:
                cursor = self.conn.execute(
                    f"UPDATE expenses SET {assignments} WHERE id = ?",
                    [*values, record_id],
                )
        except sqlite3.Error as e:
            raise RecordWriteError(record_id, f"Failed to update {record_id}: {e}") from e
        if cursor.rowcount == 0:
            raise RecordNotFoundError(record_id)

        self._changed()

    def _require_all(self, record_ids: list[str]) -> None:
        """Raise RecordNotFoundError for the first id that does not exist."""
        cursor = self.conn.cursor()
        for record_id in record_ids:
            cursor.execute("SELECT 1 FROM expenses WHERE id = ?", (record_id,))
            if cursor.fetchone() is None:
                raise RecordNotFoundError(record_id)
