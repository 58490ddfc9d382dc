"""Household id derivation and legacy-id reconciliation.

Two schemes address the same household:

- CURRENT: both parties' email keys.
- LEGACY: the signed-in party's account id plus the partner's email key.

Records written under the legacy id are rewritten to the current id in the
background, at most once per record per session.
"""

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from enum import Enum

from .exceptions import HouseholdSplitError
from .identity import normalize_key
from .models import ExpenseRecord, Identity
from .storage import RecordWriter

logger = logging.getLogger(__name__)

HOUSEHOLD_ID_DELIMITER = "__"


class HouseholdScheme(str, Enum):
    """Household id generation scheme."""

    CURRENT = "current"
    LEGACY = "legacy"


def household_id(key_a: str | None, key_b: str | None) -> str:
    """
    Build the household id for two member keys.

    The keys are normalized and sorted so the id is symmetric.

    Returns:
        The household id, or "" if either key normalizes to empty
    """
    a = normalize_key(key_a)
    b = normalize_key(key_b)
    if not a or not b:
        return ""
    return HOUSEHOLD_ID_DELIMITER.join(sorted([a, b]))


def current_household_id(user: Identity | None, partner: str | None) -> str:
    """Household id under the email-based scheme."""
    if user is None:
        return ""
    return household_id(user.email, partner)


def legacy_household_id(user: Identity | None, partner: str | None) -> str:
    """Household id under the account-id scheme."""
    if user is None:
        return ""
    return household_id(user.uid, partner)


def scheme_household_id(
    scheme: HouseholdScheme, user: Identity | None, partner: str | None
) -> str:
    """Household id for the given scheme."""
    if scheme is HouseholdScheme.CURRENT:
        return current_household_id(user, partner)
    return legacy_household_id(user, partner)


@dataclass(frozen=True)
class HouseholdAddress:
    """The household ids valid for one identity pair."""

    current_id: str = ""
    legacy_id: str = ""

    @property
    def ids(self) -> tuple[str, ...]:
        """Resolvable ids, deduplicated, current first."""
        ids: list[str] = []
        for hid in (self.current_id, self.legacy_id):
            if hid and hid not in ids:
                ids.append(hid)
        return tuple(ids)

    @property
    def write_id(self) -> str:
        """Id new records are written under."""
        return self.current_id or self.legacy_id

    @property
    def resolved(self) -> bool:
        return bool(self.ids)

    @property
    def needs_migration(self) -> bool:
        """True when legacy records must be rewritten to the current id."""
        return bool(
            self.current_id and self.legacy_id and self.current_id != self.legacy_id
        )


def resolve_household(user: Identity | None, partner: str | None) -> HouseholdAddress:
    """Resolve the household address for the signed-in user and partner."""
    if not normalize_key(partner):
        return HouseholdAddress()
    return HouseholdAddress(
        current_id=scheme_household_id(HouseholdScheme.CURRENT, user, partner),
        legacy_id=scheme_household_id(HouseholdScheme.LEGACY, user, partner),
    )


@dataclass
class MigrationTracker:
    """Record ids whose household migration was attempted this session."""

    attempted: set[str] = field(default_factory=set)

    def add(self, record_id: str) -> None:
        self.attempted.add(record_id)

    def discard(self, record_id: str) -> None:
        self.attempted.discard(record_id)

    def __contains__(self, record_id: object) -> bool:
        return record_id in self.attempted

    def __len__(self) -> int:
        return len(self.attempted)


class HouseholdResolver:
    """Owns the household address and migration state for one session."""

    def __init__(self, address: HouseholdAddress, tracker: MigrationTracker | None = None):
        """Initialize the resolver."""
        self.address = address
        self.tracker = tracker if tracker is not None else MigrationTracker()

    @classmethod
    def for_pair(cls, user: Identity | None, partner: str | None) -> "HouseholdResolver":
        """Create a resolver for an identity pair with fresh migration state."""
        return cls(resolve_household(user, partner))

    def belongs(self, record: ExpenseRecord) -> bool:
        """Whether a record is addressed by either household id."""
        return bool(record.household_id) and record.household_id in self.address.ids

    def pending_migrations(self, snapshot: Iterable[ExpenseRecord]) -> list[ExpenseRecord]:
        """Records still carrying the legacy id and not yet attempted."""
        if not self.address.needs_migration:
            return []
        return [
            record
            for record in snapshot
            if record.id
            and record.household_id == self.address.legacy_id
            and record.id not in self.tracker
        ]

    def reconcile(
        self, snapshot: Iterable[ExpenseRecord], writer: RecordWriter
    ) -> list[str]:
        """
        Rewrite legacy-addressed records to the current household id.

        Best effort: a failed write is rolled back in the tracker so the next
        snapshot containing the record retries it. Failures are logged and
        never raised.

        Args:
            snapshot: Latest full snapshot from the expense source
            writer: Record writer used for the field update

        Returns:
            Ids of records migrated successfully
        """
        if not self.address.needs_migration:
            logger.debug("No household migration needed")
            return []

        migrated = []
        for record in self.pending_migrations(snapshot):
            record_id = str(record.id)
            self.tracker.add(record_id)
            try:
                writer.update_fields(
                    record_id, {"householdId": self.address.current_id}
                )
            except HouseholdSplitError as e:
                self.tracker.discard(record_id)
                logger.warning(f"Household migration failed for {record_id}: {e}")
                continue
            migrated.append(record_id)
            logger.info(
                f"Migrated expense {record_id} from {self.address.legacy_id} "
                f"to {self.address.current_id}"
            )

        return migrated
