# errors.py
"""
Error taxonomy shared by every store component.

- NotFoundError        missing key / preset / source / image set
- AlreadyExistsError   unique-name collision on create or rename
- InvalidStateError    corrupt or malformed persisted data
- StoreIOError         connection / transaction failure in the engine
- OperationCancelledError  caller deadline expired or cancel signal set
"""
from __future__ import annotations


class StoreError(Exception):
    """Base exception for all store errors."""


class NotFoundError(StoreError):
    """Raised when the requested entity does not exist."""

    def __init__(self, kind: str, identifier: object, message: str | None = None):
        self.kind = kind
        self.identifier = identifier
        super().__init__(message or f"{kind} {identifier!r} not found")


class NoImagesError(NotFoundError):
    """Raised when a capture source has no stored images yet."""

    def __init__(self, source_id: int):
        super().__init__(
            "captured image",
            source_id,
            f"no captured images found for source ID {source_id}",
        )
        self.source_id = source_id


class AlreadyExistsError(StoreError):
    """Raised on a unique-name collision."""

    def __init__(self, kind: str, identifier: object):
        self.kind = kind
        self.identifier = identifier
        super().__init__(f"{kind} with name {identifier!r} already exists")


class InvalidStateError(StoreError):
    """Raised when persisted data cannot be decoded. Never repaired silently."""


class StoreIOError(StoreError):
    """Raised when the underlying engine fails; carries the operation context."""

    def __init__(self, operation: str, identifier: object = None, detail: str | None = None):
        self.operation = operation
        self.identifier = identifier
        msg = f"failed to {operation}"
        if identifier is not None:
            msg += f" ({identifier!r})"
        if detail:
            msg += f": {detail}"
        super().__init__(msg)


class MigrationError(StoreIOError):
    """Raised when the schema cannot be brought up to date. Fatal at startup."""


class OperationCancelledError(StoreError):
    """Raised when an operation is aborted by its deadline or cancel signal."""

    def __init__(self, operation: str, reason: str = "deadline exceeded"):
        self.operation = operation
        self.reason = reason
        super().__init__(f"{operation} aborted: {reason}")
