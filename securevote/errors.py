# securevote/errors.py
from typing import Optional


class LedgerError(Exception):
    """Base class for ledger failures."""


class LedgerFormatError(LedgerError, ValueError):
    """Import payload is not a well-formed ledger document.

    `index` points at the offending entry when the problem is inside one.
    """

    def __init__(self, message: str, index: Optional[int] = None):
        super().__init__(message)
        self.index = index


class LedgerPersistenceError(LedgerError):
    """The backing store could not be read or written."""


class LedgerConflictError(LedgerPersistenceError):
    """Another writer changed the ledger between this writer's read and write."""
