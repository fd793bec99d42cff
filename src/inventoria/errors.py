"""Exceptions raised by the persistence gateway and the backup subsystem."""
from __future__ import annotations

from collections.abc import Sequence


class DuplicateUsername(Exception):
    """Raised when a user is created with a username that already exists."""

    def __init__(self, username: str) -> None:
        super().__init__(f"Username {username!r} already exists")
        self.username = username


class BackupError(Exception):
    """Base class for backup import/export failures."""


class MalformedDocument(BackupError):
    """The payload is not a decodable JSON object."""

    def __init__(self, message: str = "Invalid JSON format in backup file") -> None:
        super().__init__(message)


class BackupValidationError(BackupError):
    """A snapshot was rejected before the store was touched."""


class InvalidFormat(BackupValidationError):
    def __init__(self) -> None:
        super().__init__(
            "Invalid backup data format - expected arrays for items, categories, and users"
        )


class MissingCategories(BackupValidationError):
    def __init__(self) -> None:
        super().__init__("Cannot import items without categories")


class NoUsers(BackupValidationError):
    def __init__(self) -> None:
        super().__init__("Backup must contain at least one user")


class IncompleteRecord(BackupValidationError):
    """A record of ``kind`` lacks one of its required fields."""

    def __init__(self, kind: str, fields: Sequence[str], index: int | None = None) -> None:
        self.kind = kind
        self.fields = tuple(fields)
        self.index = index
        super().__init__(f"All {_plural(kind)} must have {_join_fields(self.fields)}")


class ImportWriteFailed(BackupError):
    """Creating a record failed after the store had been cleared.

    ``recovered`` reports whether the default administrator could be
    restored afterwards; partial data from earlier writes stays in place.
    """

    def __init__(self, kind: str, label: str, cause: BaseException) -> None:
        self.kind = kind
        self.label = label
        self.cause = cause
        self.recovered = False
        super().__init__(f'Failed to create {kind} "{label}": {cause}')


class ExportReadFailed(BackupError):
    def __init__(self, cause: BaseException) -> None:
        self.cause = cause
        super().__init__(f"Failed to export backup: {cause}")


def _plural(kind: str) -> str:
    if kind.endswith("y"):
        return kind[:-1] + "ies"
    return kind + "s"


def _join_fields(fields: Sequence[str]) -> str:
    if len(fields) <= 1:
        return "".join(fields)
    return ", ".join(fields[:-1]) + ", and " + fields[-1]


__all__ = [
    "DuplicateUsername",
    "BackupError",
    "MalformedDocument",
    "BackupValidationError",
    "InvalidFormat",
    "MissingCategories",
    "NoUsers",
    "IncompleteRecord",
    "ImportWriteFailed",
    "ExportReadFailed",
]
