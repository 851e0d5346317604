"""
Custom exceptions for the memory store.

Both storage backends raise these exceptions so callers can handle
errors the same way regardless of which engine is underneath.

Not-found is never an exception: ``get`` returns ``None``, ``delete``
returns ``False`` and ``search`` returns an empty list.
"""


class MemoryStoreError(Exception):
    """Base exception for all memory store errors."""

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ValidationError(MemoryStoreError):
    """Raised when input is rejected before anything is written."""

    def __init__(self, field: str, reason: str, value: str | None = None):
        details = {"field": field, "reason": reason}
        if value is not None:
            details["value"] = value
        super().__init__(f"Validation failed for {field}: {reason}", details)
        self.field = field
        self.reason = reason
        self.value = value


class NotInitializedError(MemoryStoreError):
    """Raised when an adapter is used before ``initialize()``."""

    def __init__(self, operation: str):
        super().__init__(
            f"Database not initialised: cannot run {operation} before initialize()",
            {"operation": operation},
        )
        self.operation = operation


class StorageConnectionError(MemoryStoreError):
    """Raised when opening or initializing a store fails.

    Note: Named StorageConnectionError to avoid shadowing the builtin ConnectionError.
    """

    def __init__(self, endpoint: str, cause: Exception | None = None):
        details = {"endpoint": endpoint}
        if cause:
            details["cause"] = str(cause)
        super().__init__(f"Connection failed to {endpoint}", details)
        self.endpoint = endpoint
        self.cause = cause


class MigrationError(MemoryStoreError):
    """Raised when the legacy -> native migration fails.

    The legacy store is left untouched and any partially written native
    store is removed, so the next startup retries from a clean slate.
    """

    def __init__(self, source: str, target: str, cause: Exception | None = None):
        details = {"source": source, "target": target}
        if cause:
            details["cause"] = str(cause)
        message = (
            f"Migration from {source} to {target} failed"
            + (f": {cause}" if cause else "")
            + ". The legacy database was left untouched and the partial target was"
            " removed; restart to retry, or run scripts/migrate_to_native.py to"
            " migrate manually."
        )
        super().__init__(message, details)
        self.source = source
        self.target = target
        self.cause = cause
