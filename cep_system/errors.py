"""Exceptions raised by the storage and service layers."""

from __future__ import annotations


class RepositoryError(RuntimeError):
    """Base exception for configuration store errors."""


class DuplicateRecordError(RepositoryError):
    """Raised when an insert reuses an id that already exists."""


class RecordNotFoundError(RepositoryError):
    """Raised when a requested record is missing."""


class UnknownEntityTypeError(RepositoryError):
    """Raised when an entity type string names no known table."""


class ConflictError(RepositoryError):
    """Raised when an entity was saved by someone else after the client loaded it."""

    def __init__(self, entity_type: str, entity_id: str, stored_at: str, known_at: str) -> None:
        super().__init__(
            f"{entity_type} {entity_id!r} was modified at {stored_at}, "
            f"after the last known update {known_at}"
        )
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.stored_at = stored_at
        self.known_at = known_at


__all__ = [
    "RepositoryError",
    "DuplicateRecordError",
    "RecordNotFoundError",
    "UnknownEntityTypeError",
    "ConflictError",
]
