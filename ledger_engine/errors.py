"""
Error taxonomy for the ledger engine.

Every error carries a human-readable message meant to be shown to the
caller as-is. Errors are raised to the caller; they are never used for
internal control flow.
"""

from typing import Optional


class LedgerError(Exception):
    """Base exception for all ledger engine errors."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(LedgerError):
    """
    Input was rejected before anything was written.

    Fully recoverable: the caller can retry with corrected input.
    """

    def __init__(self, message: str, issues: Optional[list] = None):
        super().__init__(message)
        self.issues = issues or []


class NothingToBillError(ValidationError):
    """Close-bill requested on a cycle with no open balance."""
    pass


class FrozenRecordError(ValidationError):
    """Attempted to change a card expense that was already billed."""
    pass


class NotFoundError(LedgerError):
    """Record, series, card or category does not exist for this owner."""
    pass


class AuthorizationError(LedgerError):
    """No authenticated owner identity was supplied."""
    pass


class StorageError(LedgerError):
    """Base exception for storage backend failures."""
    pass


class AtomicityFailure(StorageError):
    """A batch could not be committed. Nothing from it was applied."""
    pass


class ConnectionError(StorageError):
    """Could not connect to the storage backend."""
    pass
