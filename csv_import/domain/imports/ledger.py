"""
Ledger of records created by each import.

Every record an import creates gets one ImportedItem row. The ledger is what
progress counts are derived from and what undo walks to find records to
delete, so entries are committed as soon as they are added.
"""
import logging
from typing import List, Sequence

from sqlalchemy import delete, func, select
from sqlalchemy.orm import Session

from csv_import.db.models import ImportedItem

logger = logging.getLogger(__name__)


class ImportLedger:
    """Append-only association between one import and the records it created."""

    def __init__(self, session: Session, import_id: int):
        self.session = session
        self.import_id = import_id

    def add(self, item_id: int) -> ImportedItem:
        """Stage a ledger entry; the caller commits it together with the import state."""
        entry = ImportedItem(import_id=self.import_id, item_id=item_id)
        self.session.add(entry)
        return entry

    def count(self) -> int:
        query = select(func.count(ImportedItem.id)).where(ImportedItem.import_id == self.import_id)
        return self.session.execute(query).scalar() or 0

    def item_ids(self, limit: int) -> List[int]:
        """Return up to `limit` item ids still recorded for this import."""
        query = (
            select(ImportedItem.item_id)
            .where(ImportedItem.import_id == self.import_id)
            .order_by(ImportedItem.id)
            .limit(limit)
        )
        return list(self.session.execute(query).scalars())

    def remove(self, item_ids: Sequence[int]) -> int:
        """Delete and commit the ledger entries for the given item ids."""
        if not item_ids:
            return 0
        result = self.session.execute(
            delete(ImportedItem)
            .where(ImportedItem.import_id == self.import_id)
            .where(ImportedItem.item_id.in_(list(item_ids)))
        )
        self.session.commit()
        logger.debug(f"Removed {result.rowcount} ledger entries for import {self.import_id}")
        return result.rowcount
