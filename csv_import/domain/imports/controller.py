"""
Import controller: the lifecycle of one CSV import.

The controller owns the import's status, drives the row loop, and undoes a
finished import. Status moves along these paths only:

    None --start()--> In Progress --(rows exhausted)--> Completed
                      In Progress --(batch checkpoint)--> Waiting --resume()--> In Progress
                      In Progress --(systemic error)--> General Error
                      In Progress --stop()--> Stopped
    any state but In Progress --undo()--> Undo In Progress --> Completed Undo

Each row is committed on its own: a created record is committed together with
its ledger entry and the row cursor, and a failed row is committed with the
skip counter and the cursor. Resuming passes over rows at or before the
cursor, so a row is imported at most once however often the import pauses.
"""
import logging
from enum import Enum
from typing import Callable, Dict, List, Optional, Sequence

from sqlalchemy.orm import Session

from csv_import.core.config import settings
from csv_import.db.models import Import
from csv_import.domain.imports.column_maps import ColumnMapSet
from csv_import.domain.imports.csv_file import CsvFile
from csv_import.domain.imports.ledger import ImportLedger
from csv_import.exceptions import (
    FileIngestError,
    RecordValidationError,
    RowError,
    UnusableRowError,
)
from csv_import.integrations.record_store import RecordMetadata, RecordStore

logger = logging.getLogger(__name__)


class ImportStatus(str, Enum):
    IN_PROGRESS = "In Progress"
    COMPLETED = "Completed"
    UNDO_IN_PROGRESS = "Undo In Progress"
    COMPLETED_UNDO = "Completed Undo"
    GENERAL_ERROR = "General Error"
    STOPPED = "Stopped"
    PAUSED = "Waiting"


class ImportLogAdapter(logging.LoggerAdapter):
    """Prefix every message with the import it belongs to."""

    def process(self, msg, kwargs):
        return f"[CsvImport #{self.extra['import'].id}] {msg}", kwargs


def default_row_source(import_: Import) -> CsvFile:
    return CsvFile(import_.file_path, import_.delimiter)


class ImportController:
    """Drives one import through start/pause/resume/finish/stop/undo."""

    def __init__(
        self,
        session: Session,
        import_: Import,
        store: RecordStore,
        logger: Optional[logging.Logger] = None,
        row_source: Callable[[Import], CsvFile] = default_row_source,
        batch_size: Optional[int] = None,
        undo_page_size: Optional[int] = None,
    ):
        self.session = session
        self.import_ = import_
        self.store = store
        self.row_source = row_source
        self.log = ImportLogAdapter(logger or logging.getLogger(__name__), {"import": import_})
        if batch_size is None:
            batch_size = import_.batch_size or settings.import_batch_size
        self.batch_size = max(int(batch_size or 0), 0)
        self.undo_page_size = undo_page_size or settings.undo_page_size
        self._imported_count = 0

    # -- state ---------------------------------------------------------------

    @property
    def status(self) -> Optional[ImportStatus]:
        return ImportStatus(self.import_.status) if self.import_.status else None

    @property
    def ledger(self) -> ImportLedger:
        return ImportLedger(self.session, self.import_.id)

    def is_error(self) -> bool:
        return self.status == ImportStatus.GENERAL_ERROR

    def is_paused(self) -> bool:
        return self.status == ImportStatus.PAUSED

    def is_finished(self) -> bool:
        return self.status == ImportStatus.COMPLETED

    def is_undone(self) -> bool:
        return self.status == ImportStatus.COMPLETED_UNDO

    def force_save(self) -> None:
        """Write the import immediately, whatever else is pending in the session."""
        self.session.add(self.import_)
        self.session.commit()

    def _set_status(self, status: ImportStatus) -> None:
        self.import_.status = status.value
        self.force_save()

    # -- lifecycle -----------------------------------------------------------

    def start(self) -> bool:
        """
        Import the CSV file from the first row.

        An import can only be started once; to import the same file again,
        create a new import.

        Returns:
            False if the run ended in General Error, True otherwise (including
            when it paused on a batch checkpoint)
        """
        if self.import_.status is not None:
            self.log.warning(f"Cannot start an import with status '{self.import_.status}'.")
            return False

        self._set_status(ImportStatus.IN_PROGRESS)
        self.log.info(f"Started import of {self.import_.original_filename or self.import_.file_path}")
        self._import_loop()
        return not self.is_error()

    def resume(self) -> bool:
        if not self.is_paused():
            self.log.warning("Cannot resume an import that has not been paused.")
            return False

        self._set_status(ImportStatus.IN_PROGRESS)
        self.log.info(f"Resumed import after row {self.import_.last_row_index}")
        self._import_loop()
        return not self.is_error()

    def pause(self) -> bool:
        if self.status != ImportStatus.IN_PROGRESS:
            self.log.warning("Cannot pause an import that is not in progress.")
            return False

        self._set_status(ImportStatus.PAUSED)
        return True

    def finish(self) -> bool:
        if self.is_finished():
            self.log.warning("Cannot finish an import that is already finished.")
            return False
        if self.status != ImportStatus.IN_PROGRESS:
            self.log.warning("Cannot finish an import that is not in progress.")
            return False

        self._set_status(ImportStatus.COMPLETED)
        self.log.info(
            f"Finished importing {self._imported_count} items in this run "
            f"({self.get_progress()})."
        )
        return True

    def stop(self) -> bool:
        """
        Mark an import that is still in progress as stopped.

        Anything besides In Progress means the run already ended on its own, so
        this does nothing in that case.
        """
        if self.status != ImportStatus.IN_PROGRESS:
            return False

        # Drop whatever an interrupted row left uncommitted.
        self.session.rollback()
        self._set_status(ImportStatus.STOPPED)
        self.log.warning(f"Import stopped after row {self.import_.last_row_index}")
        return True

    # -- row loop ------------------------------------------------------------

    def _record_metadata(self) -> RecordMetadata:
        return RecordMetadata(
            public=bool(self.import_.is_public),
            featured=bool(self.import_.is_featured),
            item_type_id=self.import_.item_type_id,
            collection_id=self.import_.collection_id,
        )

    def _import_loop(self) -> bool:
        self._imported_count = 0
        try:
            maps = self.import_.column_maps
            metadata = self._record_metadata()
            rows = self.row_source(self.import_)
            rows.skip_invalid_rows(True)
            cursor = self.import_.last_row_index or 0

            self.log.debug(f"Row loop started (batch size {self.batch_size or 'unbounded'})")
            iterator = rows.iterate()
            seen_skips = 0
            pending = next(iterator, None)

            while pending is not None:
                index, row = pending
                new_skips = rows.skipped_count - seen_skips
                seen_skips = rows.skipped_count

                if index <= cursor:
                    # Committed by an earlier run.
                    pending = next(iterator, None)
                    continue

                self.import_.skipped_row_count += new_skips
                created = self._add_item_from_row(index, row, maps, metadata)
                pending = next(iterator, None)

                if (
                    created
                    and self.batch_size
                    and self._imported_count % self.batch_size == 0
                    and pending is not None
                ):
                    self.log.info(f"Finished batch of {self.batch_size} items at row {index}")
                    return self.pause()

            self.import_.skipped_row_count += rows.skipped_count - seen_skips
            return self.finish()
        except Exception:
            self.session.rollback()
            self.import_.status = ImportStatus.GENERAL_ERROR.value
            self.force_save()
            self.log.exception(f"Import failed after row {self.import_.last_row_index}")
            raise
        except BaseException:
            # Interrupted mid-row; the status is left for stop() to settle.
            self.session.rollback()
            raise

    def _add_item_from_row(
        self, index: int, row: Sequence[str], maps: ColumnMapSet, metadata: RecordMetadata
    ) -> bool:
        """
        Create one record from a row.

        Returns:
            True if the record was created and recorded in the ledger, False if
            the row was skipped
        """
        try:
            result = maps.map(row)
        except UnusableRowError as e:
            return self._skip_item(index, e)

        try:
            item = self.store.create_record(result.fields, result.tags, metadata)
        except RecordValidationError as e:
            return self._skip_item(index, e)

        for source in result.file_refs:
            try:
                self.store.ingest_file(item, source, ignore_invalid=False)
            except FileIngestError as e:
                self.store.delete_record(item)
                return self._skip_item(index, e)

        # Makes it easy to undo the import later.
        self.ledger.add(item.id)
        self.import_.last_row_index = index
        self.force_save()
        self._imported_count += 1
        return True

    def _skip_item(self, index: int, error: RowError) -> bool:
        self.log.error(f"Skipped row {index}: {error}")
        self.import_.skipped_item_count += 1
        self.import_.last_row_index = index
        self.force_save()
        return False

    # -- undo ----------------------------------------------------------------

    def undo(self) -> bool:
        """
        Delete every record this import created, one page of the ledger at a time.

        Safe to call again after an interruption: deleted pages are gone from
        the ledger, so only the remaining records are touched.
        """
        if self.status == ImportStatus.IN_PROGRESS:
            self.log.warning("Cannot undo an import that is in progress.")
            return False
        if self.is_undone() and self.ledger.count() == 0:
            self.log.info("Import has already been undone.")
            return True

        self._set_status(ImportStatus.UNDO_IN_PROGRESS)
        self.log.info("Started undoing import")

        ledger = self.ledger
        deleted = 0
        try:
            while True:
                item_ids = ledger.item_ids(self.undo_page_size)
                if not item_ids:
                    break
                records = self.store.fetch_records(item_ids)
                for record in records:
                    self.store.delete_record(record)
                if len(records) < len(item_ids):
                    self.log.debug(f"{len(item_ids) - len(records)} items were already deleted")
                ledger.remove(item_ids)
                deleted += len(records)
        except Exception:
            self.session.rollback()
            self.log.exception(f"Undo interrupted after deleting {deleted} items")
            raise

        self._set_status(ImportStatus.COMPLETED_UNDO)
        self.log.info(f"Finished undoing import ({deleted} items deleted)")
        return True

    # -- progress ------------------------------------------------------------

    def get_imported_item_count(self) -> int:
        """
        Number of records currently recorded for this import.

        While an import is being undone this shrinks to show how many records
        are left to delete.
        """
        return self.ledger.count()

    def progress_summary(self) -> Dict[str, int]:
        return {
            "Imported": self.get_imported_item_count(),
            "Skipped Rows": self.import_.skipped_row_count or 0,
            "Skipped Items": self.import_.skipped_item_count or 0,
        }

    def get_progress(self) -> str:
        progress: List[str] = [f"{key}: {value}" for key, value in self.progress_summary().items()]
        return " / ".join(progress)
