"""Error taxonomy for the user store and leaderboard engine.

Each error maps onto one HTTP status in ``quizboard.app``:

* ``ValidationError`` -> 400
* ``NotFound`` -> 404
* ``StorageError`` (and ``DuplicateUserError``) -> 500
* ``PartialBatchFailure`` -> 500
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Sequence

if TYPE_CHECKING:
    from quizboard.db import UserRecord


class QuizboardError(Exception):
    """Base exception for all quizboard errors."""


class ValidationError(QuizboardError):
    """Raised when required input is missing or malformed."""


class NotFound(QuizboardError):
    """Raised when a point operation targets an unknown id or email."""

    def __init__(self, key: str, message: str = "user not found"):
        self.key = key
        super().__init__(message)


class StorageError(QuizboardError):
    """Raised when the backend is unreachable or a statement fails."""


class DuplicateUserError(StorageError):
    """Raised when an insert collides with an existing row on a unique key."""

    def __init__(self, email: str):
        self.email = email
        super().__init__(f"a user with email '{email}' already exists")


class PartialBatchFailure(QuizboardError):
    """Raised when a bulk reconciliation stops part way through.

    Rows reconciled before the failing record stay committed; they are
    exposed on ``committed`` so callers can report how far the batch got.
    """

    def __init__(self, cause: Exception, committed: Sequence["UserRecord"]):
        self.cause = cause
        self.committed = list(committed)
        super().__init__(str(cause) or "bulk upsert failed")
