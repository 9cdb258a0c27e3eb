"""
Storage Exceptions

Every failure the store reports is a StorageError subclass.
Nothing here is retried internally: retry policy belongs to the caller.
"""


class StorageError(Exception):
    """Base exception for storage errors."""
    pass


class StoreUnavailableError(StorageError):
    """Raised when the physical store cannot be opened or created."""
    pass


class MigrationError(StorageError):
    """Raised when the migration list is invalid or a step fails to apply."""
    pass


class UniqueViolationError(StorageError):
    """Raised when an insert collides with a unique column."""
    pass


class NotFoundError(StorageError):
    """Raised when a single-row lookup matches zero or several rows."""
    pass


class QueryFailedError(StorageError):
    """Raised when a statement or result mapping fails (a defect, not a condition)."""
    pass


class LockUnavailableError(StorageError):
    """Raised when the connection guard cannot be acquired."""
    pass


class InvalidTransactionError(StorageError):
    """Raised when a money movement intent is malformed."""
    pass


class InvalidRequestError(StorageError):
    """Raised when an add-user or add-account request fails validation."""
    pass
