"""Failure types raised by the ledger components."""

from __future__ import annotations

from typing import Optional


class LedgerError(Exception):
    """Base class for every ledger failure."""


class NotFound(LedgerError):
    """A referenced student, teacher, row or action does not exist."""

    def __init__(self, kind: str, identifier: object):
        self.kind = kind
        self.identifier = identifier
        super().__init__(f"{kind} not found: {identifier}")


class ValidationError(LedgerError):
    """Input rejected before any write happened."""

    def __init__(self, message: str, field: Optional[str] = None):
        self.field = field
        super().__init__(message)


class Conflict(LedgerError):
    """The row changed between read and write, or a duplicate was detected."""


class BestEffortFailure(LedgerError):
    """A secondary side effect failed after the primary write committed."""

    def __init__(self, label: str, cause: BaseException):
        self.label = label
        self.cause = cause
        super().__init__(f"{label} failed: {cause}")


class UndoFailure(LedgerError):
    """A logged action could not be reverted."""

    def __init__(self, action_id: str, reason: str):
        self.action_id = action_id
        self.reason = reason
        super().__init__(f"Cannot revert {action_id}: {reason}")


class LedgerStoreError(LedgerError):
    """The backing spreadsheet rejected or failed a read/write."""
