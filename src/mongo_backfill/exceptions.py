"""Custom exceptions for mongo-backfill."""

from __future__ import annotations

from typing import Any, Optional


class BackfillError(Exception):
    """Base exception for mongo-backfill."""

    pass


class ConfigurationError(BackfillError):
    """Raised when configuration is missing or invalid."""

    pass


class SourceUnavailableError(BackfillError):
    """Raised when a read or write against the document source fails."""

    pass


class MalformedDocumentError(BackfillError):
    """Raised when a document field has a shape the patch computer cannot use."""

    def __init__(self, document_id: Any, field: str, message: str) -> None:
        super().__init__(f"Document {document_id!r}: {message}")
        self.document_id = document_id
        self.field = field


class PartialCommitError(BackfillError):
    """Raised when a batch fails to commit.

    ``committed`` is the number of documents written by earlier batches,
    which stay in place.
    """

    def __init__(self, batch_index: int, committed: int, cause: Optional[BaseException] = None) -> None:
        super().__init__(
            f"Batch {batch_index} failed to commit after {committed} documents were updated: {cause}"
        )
        self.batch_index = batch_index
        self.committed = committed
        self.cause = cause
