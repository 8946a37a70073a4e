"""Exception hierarchy shared by the Repair Desk core."""

from __future__ import annotations


class RepairDeskError(Exception):
    """Base class for every domain error raised by the package."""


class ValidationError(RepairDeskError):
    """Raised when a requested operation violates a domain constraint."""


class NotFoundError(ValidationError):
    """Raised when a referenced record, phone, or bill id is unknown."""


class PersistenceWarning(UserWarning):
    """Reported when a durable flush fails.

    Instances are never raised by the record store. They are logged, kept on
    :attr:`RecordStore.warnings` and handed to registered listeners while the
    in-memory snapshot stays authoritative.
    """

    def __init__(self, message: str, *, cause: BaseException | None = None) -> None:
        super().__init__(message)
        self.cause = cause
