"""
Exception hierarchy for CSV imports.

Row-level errors (subclasses of RowError) are isolated to a single row: the
import logs them, counts the row as a skipped item and moves on. Anything else
raised while an import is running is treated as systemic and aborts it.
"""
from typing import Optional


class CsvImportError(Exception):
    """Base exception for the import package."""
    pass


class ImportConfigurationError(CsvImportError):
    """Raised when an import is configured with invalid values or after it has started."""
    pass


class ColumnMapsError(CsvImportError):
    """Raised when persisted column maps cannot be decoded into a valid mapping."""

    def __init__(self, message: str, payload: Optional[object] = None):
        self.payload = payload
        self.message = message
        super().__init__(self.message)


class InvalidRowError(CsvImportError):
    """Raised by the row source for a malformed row when invalid rows are not skipped."""

    def __init__(self, row_index: int, expected_columns: int, actual_columns: int):
        self.row_index = row_index
        self.expected_columns = expected_columns
        self.actual_columns = actual_columns
        self.message = (
            f"Row {row_index} has {actual_columns} columns, expected {expected_columns}."
        )
        super().__init__(self.message)


class RowError(CsvImportError):
    """Base class for failures that only affect the row being imported."""
    pass


class UnusableRowError(RowError):
    """Raised by the column mapper when a row cannot be mapped."""
    pass


class RecordValidationError(RowError):
    """Raised by a record store when a record fails validation."""

    def __init__(self, message: str, errors: Optional[dict] = None):
        self.errors = errors or {}
        self.message = message
        super().__init__(self.message)


class FileIngestError(RowError):
    """Raised by a record store when a file attachment cannot be ingested."""

    def __init__(self, source: str, message: str):
        self.source = source
        self.message = f"Could not ingest file '{source}': {message}"
        super().__init__(self.message)
