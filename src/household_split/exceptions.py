"""Custom exceptions for HouseholdSplit."""


class HouseholdSplitError(Exception):
    """Base exception for all HouseholdSplit errors."""

    pass


class ConfigurationError(HouseholdSplitError):
    """Raised when configuration is invalid or missing."""

    pass


class InvalidExpenseError(HouseholdSplitError):
    """Raised when an expense is rejected before any write is attempted."""

    pass


class RecordWriteError(HouseholdSplitError):
    """Raised when the store rejects a single-record write."""

    def __init__(self, record_id: str | None, message: str | None = None):
        self.record_id = record_id
        super().__init__(message or f"Failed to write expense {record_id}")


class RecordNotFoundError(RecordWriteError):
    """Raised when a write targets an expense that does not exist."""

    def __init__(self, record_id: str):
        super().__init__(record_id, f"Expense {record_id} does not exist")


class BatchWriteError(HouseholdSplitError):
    """Raised when a bulk write is rejected. No record in the batch changed."""

    def __init__(self, record_ids: list[str], message: str | None = None):
        self.record_ids = list(record_ids)
        super().__init__(
            message
            or f"Batch write over {len(self.record_ids)} expenses was rolled back"
        )
