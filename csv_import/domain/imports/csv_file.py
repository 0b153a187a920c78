"""
Row source for CSV imports.

CsvFile reads a delimited file lazily: the first row holds the column names
and every following row is yielded with its 1-based position in the file.
Rows whose column count differs from the header are malformed; by default
they raise InvalidRowError, with skip_invalid_rows(True) they are passed over
and counted instead.
"""
import csv
import logging
import os
from typing import Iterator, List, Optional, Tuple

from csv_import.exceptions import InvalidRowError

logger = logging.getLogger(__name__)


class CsvFile:
    """A CSV file on disk that can be iterated from the start any number of times."""

    def __init__(self, file_path: str, delimiter: str = ",", encoding: str = "utf-8-sig"):
        self.file_path = file_path
        self.delimiter = delimiter
        self.encoding = encoding
        self._skip_invalid = False
        self._skipped_count = 0
        self._column_names: Optional[List[str]] = None

    def skip_invalid_rows(self, flag: bool = True) -> None:
        self._skip_invalid = bool(flag)

    @property
    def skipped_count(self) -> int:
        """Malformed rows skipped so far by the current iteration."""
        return self._skipped_count

    @property
    def column_names(self) -> List[str]:
        if self._column_names is None:
            with open(self.file_path, newline="", encoding=self.encoding) as handle:
                reader = csv.reader(handle, delimiter=self.delimiter)
                self._column_names = [name.strip() for name in next(reader, [])]
        return self._column_names

    def iterate(self) -> Iterator[Tuple[int, List[str]]]:
        """
        Yield (row_index, values) for each well-formed data row.

        Every call starts again at the beginning of the file and resets the
        skipped-row counter.
        """
        if not os.path.exists(self.file_path):
            raise FileNotFoundError(f"CSV file not found: {self.file_path}")

        self._skipped_count = 0
        with open(self.file_path, newline="", encoding=self.encoding) as handle:
            reader = csv.reader(handle, delimiter=self.delimiter)
            header = next(reader, None)
            if header is None:
                logger.info(f"CSV file {self.file_path} is empty")
                return
            self._column_names = [name.strip() for name in header]
            expected = len(header)

            for index, row in enumerate(reader, start=1):
                if len(row) != expected:
                    if not self._skip_invalid:
                        raise InvalidRowError(index, expected, len(row))
                    self._skipped_count += 1
                    logger.debug(
                        f"Skipped malformed row {index} in {self.file_path} "
                        f"({len(row)} columns, expected {expected})"
                    )
                    continue
                yield index, row

    def __iter__(self) -> Iterator[Tuple[int, List[str]]]:
        return self.iterate()
