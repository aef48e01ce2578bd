from __future__ import annotations

from typing import Optional


class KeyCustodyError(Exception):
    """Base class for failures surfaced by the key store to the UI."""


class ValidationError(KeyCustodyError):
    """A required field is missing or malformed. Raised before any backend call."""


class NotFoundError(KeyCustodyError):
    def __init__(self, kind: str, entity_id: str) -> None:
        super().__init__(f"{kind} '{entity_id}' not found")
        self.kind = kind
        self.entity_id = entity_id


class InvalidStateError(KeyCustodyError):
    """The operation would break the available/issued state machine."""


class PersistenceError(KeyCustodyError):
    def __init__(self, message: str, status: Optional[int] = None) -> None:
        super().__init__(message)
        self.status = status


__all__ = [
    "KeyCustodyError",
    "ValidationError",
    "NotFoundError",
    "InvalidStateError",
    "PersistenceError",
]
