from __future__ import annotations

from typing import Any, Dict, Optional


class StoreError(Exception):
    """Base class for identity store failures."""

    def __init__(self, message: str, detail: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.detail = detail or {}


class ConstraintViolation(StoreError):
    """Raised when a storage-layer uniqueness constraint is violated."""


class AlreadyExists(ConstraintViolation):
    """An identity with the same email (or id) is already stored."""


class NotFound(StoreError):
    """No identity matches the lookup key."""


class StoreUnavailable(StoreError):
    """The backing store timed out or could not be reached; safe to retry."""


class OperationCancelled(StoreError):
    """The caller cancelled the operation or its deadline passed before it started."""


__all__ = [
    "StoreError",
    "ConstraintViolation",
    "AlreadyExists",
    "NotFound",
    "StoreUnavailable",
    "OperationCancelled",
]
