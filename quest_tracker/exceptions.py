"""
Error taxonomy for the collection manager.

NotFoundError, RangeError and InvalidStatusError are caller errors raised
synchronously before any state changes. PersistenceError is transient and is
resolved by reconciliation inside the sync controller. InvariantViolation
signals a bug in the store itself.
"""


class QuestTrackerError(Exception):
    """Base class for all collection manager errors."""


class NotFoundError(QuestTrackerError):
    """
    Raised when a mutation references a game id that is not in the expected bucket,
    or when metadata for a game cannot be found.
    """

    def __init__(self, message: str, game_id: int | None = None):
        super().__init__(message)
        self.game_id = game_id


class RangeError(QuestTrackerError):
    """Raised when reorder indices fall outside the bucket."""

    def __init__(self, message: str, index: int, size: int):
        super().__init__(message)
        self.index = index
        self.size = size


class InvalidStatusError(QuestTrackerError):
    """Raised for operations a bucket does not support (e.g. reordering a non-backlog bucket)."""


class PersistenceError(QuestTrackerError):
    """
    Raised when the durable store fails to read or write.

    Never fatal: the sync controller reconciles by rereading the affected buckets.
    """


class InvariantViolation(AssertionError):
    """Raised when a bucket invariant does not hold after a mutation."""
