class LedgerError(Exception):
    """Base class for every failure the ledger store reports."""


class ValidationError(LedgerError, ValueError):
    def __init__(self, field: str, reason: str) -> None:
        super().__init__(f"{field}: {reason}")
        self.field = field
        self.reason = reason


class NotFoundError(LedgerError, ValueError):
    def __init__(self, entry_id: int) -> None:
        super().__init__("Expense not found")
        self.entry_id = entry_id


class StorageError(LedgerError, RuntimeError):
    """The database rejected or failed an operation. Never retried by the store."""

    def __init__(self, cause: BaseException) -> None:
        super().__init__(f"Storage operation failed: {cause}")
        self.cause = cause


class SchemaError(LedgerError, RuntimeError):
    """An existing ``expenses`` table does not have the shape the store needs."""
