from __future__ import annotations


class BulkImportError(Exception):
    """Base class for every fatal import error."""


class SchemaMismatch(BulkImportError):
    """Input shape does not fit the target (arity, unknown column, mixed models)."""


class RecordTooLarge(BulkImportError):
    def __init__(self, index: int, size: int, limit: int):
        self.index = index
        self.size = size
        self.limit = limit
        super().__init__(
            f"Row {index}: rendered size {size} bytes does not fit a {limit}-byte statement"
        )


class ExecutionFailure(BulkImportError):
    """A batch statement failed at the database. Earlier batches stay committed."""

    def __init__(self, batch_index: int, num_committed: int, message: str):
        self.batch_index = batch_index
        self.num_committed = num_committed
        super().__init__(f"Batch {batch_index} failed after {num_committed} committed rows: {message}")
