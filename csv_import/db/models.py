"""
ORM models for imports, the imported-item ledger, and the default record store.
"""
from datetime import datetime, timezone
from typing import Any, Iterable, Optional, Union

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import relationship, validates

from csv_import.db.session import Base
from csv_import.domain.imports.column_maps import (
    ColumnMap,
    ColumnMapSet,
    decode_column_maps,
    encode_column_maps,
)
from csv_import.exceptions import ImportConfigurationError


def _utcnow() -> datetime:
    """Return a timezone-aware UTC timestamp."""
    return datetime.now(timezone.utc)


# Columns that make up an import's configuration. They are frozen once the
# import has a status.
CONFIGURATION_FIELDS = (
    "original_filename",
    "file_path",
    "delimiter",
    "collection_id",
    "item_type_id",
    "is_public",
    "is_featured",
    "batch_size",
    "serialized_column_maps",
)


class Import(Base):
    """One CSV import: its configuration, status and skip counters."""
    __tablename__ = "csv_import_imports"

    id = Column(Integer, primary_key=True, index=True)

    # Configuration
    original_filename = Column(String(255))
    file_path = Column(Text)
    delimiter = Column(String(1), nullable=False, default=",")
    collection_id = Column(Integer)
    item_type_id = Column(Integer)
    is_public = Column(Boolean, nullable=False, default=False)
    is_featured = Column(Boolean, nullable=False, default=False)
    batch_size = Column(Integer, nullable=False, default=0)
    serialized_column_maps = Column(JSON)

    # Run state
    status = Column(String(32), index=True)
    skipped_row_count = Column(Integer, nullable=False, default=0)
    skipped_item_count = Column(Integer, nullable=False, default=0)
    last_row_index = Column(Integer, nullable=False, default=0)

    added = Column(DateTime, default=_utcnow)
    updated_at = Column(DateTime, default=_utcnow, onupdate=_utcnow)

    def __init__(self, **kwargs: Any):
        kwargs.setdefault("delimiter", ",")
        kwargs.setdefault("is_public", False)
        kwargs.setdefault("is_featured", False)
        kwargs.setdefault("batch_size", 0)
        kwargs.setdefault("skipped_row_count", 0)
        kwargs.setdefault("skipped_item_count", 0)
        kwargs.setdefault("last_row_index", 0)
        super().__init__(**kwargs)

    def __repr__(self) -> str:
        return f"<Import id={self.id} file={self.original_filename!r} status={self.status!r}>"

    def _ensure_configurable(self, key: str) -> None:
        if self.status is not None:
            raise ImportConfigurationError(
                f"Cannot change '{key}' on import {self.id}: it has already been started "
                f"(status '{self.status}')."
            )

    @validates("original_filename", "file_path")
    def _validate_path(self, key: str, value: Optional[str]) -> Optional[str]:
        self._ensure_configurable(key)
        return None if value is None else str(value)

    @validates("delimiter")
    def _validate_delimiter(self, key: str, value: str) -> str:
        self._ensure_configurable(key)
        if not isinstance(value, str) or len(value) != 1:
            raise ImportConfigurationError(f"Column delimiter must be a single character, got {value!r}.")
        return value

    @validates("collection_id", "item_type_id")
    def _validate_id(self, key: str, value: Any) -> Optional[int]:
        self._ensure_configurable(key)
        if value is None or value == "":
            return None
        try:
            return int(value)
        except (TypeError, ValueError):
            raise ImportConfigurationError(f"'{key}' must be an integer, got {value!r}.")

    @validates("is_public", "is_featured")
    def _validate_flag(self, key: str, value: Any) -> bool:
        self._ensure_configurable(key)
        return bool(value)

    @validates("batch_size")
    def _validate_batch_size(self, key: str, value: Any) -> int:
        self._ensure_configurable(key)
        size = int(value or 0)
        if size < 0:
            raise ImportConfigurationError(f"Batch size cannot be negative, got {size}.")
        return size

    @validates("serialized_column_maps")
    def _validate_serialized_maps(self, key: str, value: Any) -> Any:
        self._ensure_configurable(key)
        self._column_maps = None
        return value

    @property
    def column_maps(self) -> ColumnMapSet:
        """Decoded column maps, loaded from the persisted encoding on first access."""
        maps = getattr(self, "_column_maps", None)
        if maps is None:
            maps = decode_column_maps(self.serialized_column_maps)
            self._column_maps = maps
        return maps

    def set_column_maps(self, maps: Union[ColumnMapSet, Iterable[Union[ColumnMap, dict]]]) -> None:
        """Set the column maps from a ColumnMapSet or a list of maps."""
        if isinstance(maps, ColumnMapSet):
            map_set = maps
        elif isinstance(maps, (list, tuple)):
            map_set = ColumnMapSet(maps=list(maps))
        else:
            raise TypeError(
                "Maps must be either a list or an instance of ColumnMapSet, "
                f"got {type(maps).__name__}."
            )
        self.serialized_column_maps = encode_column_maps(map_set)
        self._column_maps = map_set


class ImportedItem(Base):
    """Ledger entry: one record created by one import."""
    __tablename__ = "csv_import_imported_items"

    id = Column(Integer, primary_key=True)
    # Not a foreign key: deleting an import leaves its ledger to undo().
    import_id = Column(Integer, nullable=False, index=True)
    item_id = Column(Integer, nullable=False, index=True)


class Item(Base):
    """A record created from a CSV row."""
    __tablename__ = "items"

    id = Column(Integer, primary_key=True, index=True)
    item_type_id = Column(Integer)
    collection_id = Column(Integer, index=True)
    public = Column(Boolean, nullable=False, default=False)
    featured = Column(Boolean, nullable=False, default=False)
    added = Column(DateTime, default=_utcnow)

    fields = relationship(
        "ItemField", back_populates="item", cascade="all, delete-orphan", order_by="ItemField.position"
    )
    tags = relationship("ItemTag", back_populates="item", cascade="all, delete-orphan")
    files = relationship("ItemFile", back_populates="item", cascade="all, delete-orphan")

    def field_values(self, name: str) -> list:
        return [field.text for field in self.fields if field.name == name]


class ItemField(Base):
    __tablename__ = "item_fields"

    id = Column(Integer, primary_key=True)
    item_id = Column(Integer, ForeignKey("items.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    text = Column(Text, nullable=False)
    position = Column(Integer, nullable=False, default=0)

    item = relationship("Item", back_populates="fields")


class ItemTag(Base):
    __tablename__ = "item_tags"

    id = Column(Integer, primary_key=True)
    item_id = Column(Integer, ForeignKey("items.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(255), nullable=False, index=True)

    item = relationship("Item", back_populates="tags")


class ItemFile(Base):
    __tablename__ = "item_files"

    id = Column(Integer, primary_key=True)
    item_id = Column(Integer, ForeignKey("items.id", ondelete="CASCADE"), nullable=False, index=True)
    source = Column(Text, nullable=False)
    filename = Column(String(255), nullable=False)
    path = Column(Text, nullable=False)
    size_bytes = Column(Integer)
    mime_type = Column(String(255))
    added = Column(DateTime, default=_utcnow)

    item = relationship("Item", back_populates="files")
