"""Exception types raised by the batch engine."""

from __future__ import annotations


class BatchEngineError(Exception):
    """Base class for batch engine failures."""


class OrderFetchError(BatchEngineError):
    """Pending orders could not be read; the whole run is meaningless."""


class BatchPersistenceError(BatchEngineError):
    """A write failed while materializing one batch.

    Scoped to the batch being written; sibling batches keep going.
    """

    def __init__(self, message: str, *, stage: str, batch_id: str | None = None) -> None:
        super().__init__(message)
        self.stage = stage
        self.batch_id = batch_id
