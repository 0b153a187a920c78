"""
Record store integration: where imported rows end up.

The import controller only talks to the RecordStore protocol. SqlRecordStore
is the default implementation; it writes items, their fields and tags with
SQLAlchemy and downloads file attachments over HTTP with requests.

Writes are flushed but not committed; the controller commits a created record
together with its ledger entry so both land or neither does. Files downloaded
since the last commit are removed again if the session rolls back.
"""
import logging
import os
import uuid
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Protocol, Sequence
from urllib.parse import unquote, urlparse

import requests
from sqlalchemy import event, select
from sqlalchemy.orm import Session

from csv_import.core.config import settings
from csv_import.db.models import Item, ItemField, ItemFile, ItemTag
from csv_import.exceptions import FileIngestError, RecordValidationError

logger = logging.getLogger(__name__)

MAX_NAME_LENGTH = 255
DOWNLOAD_CHUNK_SIZE = 64 * 1024


@dataclass(frozen=True)
class RecordMetadata:
    """Import-wide settings applied to every record an import creates."""
    public: bool = False
    featured: bool = False
    item_type_id: Optional[int] = None
    collection_id: Optional[int] = None


class RecordStore(Protocol):
    def create_record(
        self, fields: Dict[str, List[str]], tags: List[str], metadata: RecordMetadata
    ) -> Any:
        """Create a record, raising RecordValidationError when it is invalid."""
        ...

    def ingest_file(self, record: Any, source: str, ignore_invalid: bool = False) -> Any:
        """Attach a file to a record, raising FileIngestError when it is invalid."""
        ...

    def delete_record(self, record: Any) -> None:
        ...

    def fetch_records(self, record_ids: Sequence[int]) -> List[Any]:
        """Return the records that still exist among `record_ids`."""
        ...


def _validate_record(fields: Dict[str, List[str]], tags: Iterable[str]) -> Dict[str, str]:
    errors: Dict[str, str] = {}
    for name, values in fields.items():
        if not name or not name.strip():
            errors["fields"] = "Field names cannot be blank."
        elif len(name) > MAX_NAME_LENGTH:
            errors[name] = f"Field name is longer than {MAX_NAME_LENGTH} characters."
        elif any(not isinstance(value, str) for value in values):
            errors[name] = "Field values must be text."
    for tag in tags:
        if len(tag) > MAX_NAME_LENGTH:
            errors["tags"] = f"Tag '{tag[:40]}...' is longer than {MAX_NAME_LENGTH} characters."
    return errors


class SqlRecordStore:
    """Record store backed by the items tables and a local file directory."""

    def __init__(
        self,
        session: Session,
        storage_dir: Optional[str] = None,
        http: Optional[requests.Session] = None,
        timeout: Optional[int] = None,
        max_file_size_mb: Optional[int] = None,
    ):
        self.session = session
        self.storage_dir = storage_dir or settings.file_storage_dir
        self.http = http or requests.Session()
        self.timeout = timeout or settings.file_download_timeout_seconds
        self.max_file_bytes = (max_file_size_mb or settings.file_max_size_mb) * 1024 * 1024
        self._uncommitted_paths: List[str] = []
        event.listen(session, "after_commit", self._forget_uncommitted_files)
        event.listen(session, "after_rollback", self._discard_uncommitted_files)

    def create_record(
        self, fields: Dict[str, List[str]], tags: List[str], metadata: RecordMetadata
    ) -> Item:
        errors = _validate_record(fields, tags)
        if errors:
            raise RecordValidationError(
                "Record is invalid: " + "; ".join(f"{key}: {msg}" for key, msg in errors.items()),
                errors,
            )

        item = Item(
            public=metadata.public,
            featured=metadata.featured,
            item_type_id=metadata.item_type_id,
            collection_id=metadata.collection_id,
        )
        for name, values in fields.items():
            for position, value in enumerate(values):
                item.fields.append(ItemField(name=name, text=value, position=position))
        for tag in tags:
            item.tags.append(ItemTag(name=tag))

        self.session.add(item)
        self.session.flush()
        logger.debug(f"Created item {item.id} with {len(fields)} fields and {len(tags)} tags")
        return item

    def ingest_file(self, record: Item, source: str, ignore_invalid: bool = False) -> Optional[ItemFile]:
        """
        Download `source` and attach it to the record.

        Args:
            record: Item the file belongs to
            source: HTTP(S) URL of the file
            ignore_invalid: Log and skip invalid files instead of raising

        Returns:
            The created ItemFile, or None when an invalid file was ignored

        Raises:
            FileIngestError: If the file cannot be downloaded or is invalid
        """
        try:
            return self._download(record, source)
        except FileIngestError as e:
            if not ignore_invalid:
                raise
            logger.warning(f"Ignoring invalid file for item {record.id}: {e.message}")
            return None

    def _download(self, record: Item, source: str) -> ItemFile:
        parsed = urlparse(source)
        if parsed.scheme not in ("http", "https"):
            raise FileIngestError(source, f"unsupported scheme '{parsed.scheme or 'none'}'")

        filename = os.path.basename(unquote(parsed.path)) or "download"
        os.makedirs(self.storage_dir, exist_ok=True)
        stored_path = os.path.join(self.storage_dir, f"{uuid.uuid4().hex}_{filename}")

        size = 0
        try:
            with self.http.get(source, stream=True, timeout=self.timeout) as response:
                response.raise_for_status()
                mime_type = response.headers.get("Content-Type")
                with open(stored_path, "wb") as handle:
                    for chunk in response.iter_content(chunk_size=DOWNLOAD_CHUNK_SIZE):
                        size += len(chunk)
                        if size > self.max_file_bytes:
                            raise FileIngestError(source, f"file exceeds {self.max_file_bytes} bytes")
                        handle.write(chunk)
        except requests.RequestException as e:
            _remove_quietly(stored_path)
            raise FileIngestError(source, str(e))
        except FileIngestError:
            _remove_quietly(stored_path)
            raise

        if size == 0:
            _remove_quietly(stored_path)
            raise FileIngestError(source, "file is empty")

        item_file = ItemFile(
            source=source,
            filename=filename,
            path=stored_path,
            size_bytes=size,
            mime_type=mime_type,
        )
        self._uncommitted_paths.append(stored_path)
        record.files.append(item_file)
        self.session.flush()
        logger.debug(f"Stored {source} for item {record.id} at {stored_path} ({size} bytes)")
        return item_file

    def _forget_uncommitted_files(self, session: Session) -> None:
        self._uncommitted_paths.clear()

    def _discard_uncommitted_files(self, session: Session) -> None:
        if self._uncommitted_paths:
            logger.info(f"Removing {len(self._uncommitted_paths)} stored files from rolled back rows")
        for path in self._uncommitted_paths:
            _remove_quietly(path)
        self._uncommitted_paths.clear()

    def delete_record(self, record: Item) -> None:
        for item_file in list(record.files):
            _remove_quietly(item_file.path)
        self.session.delete(record)
        self.session.flush()

    def fetch_records(self, record_ids: Sequence[int]) -> List[Item]:
        if not record_ids:
            return []
        query = select(Item).where(Item.id.in_(list(record_ids)))
        return list(self.session.execute(query).scalars())


def _remove_quietly(path: str) -> None:
    try:
        os.remove(path)
    except FileNotFoundError:
        pass
