"""
Column maps: rules assigning CSV columns to record fields, tags and files.

A ColumnMapSet is persisted on the import as a versioned JSON document:

    {"version": 1, "maps": [{"column_index": 0, "target": "field", "key": "Title"}, ...]}

and decoded back into typed models, so a corrupt or outdated document is
rejected when the import first needs its maps rather than half-way through a
row.
"""
import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence

from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from csv_import.exceptions import ColumnMapsError, UnusableRowError

logger = logging.getLogger(__name__)

COLUMN_MAPS_VERSION = 1


class TargetKind(str, Enum):
    FIELD = "field"
    TAG = "tag"
    FILE = "file"


@dataclass
class MappedRow:
    """Result of mapping one row: field values, tags and file sources."""
    fields: Dict[str, List[str]] = field(default_factory=dict)
    tags: List[str] = field(default_factory=list)
    file_refs: List[str] = field(default_factory=list)

    def is_empty(self) -> bool:
        return not (self.fields or self.tags or self.file_refs)


def _split_values(value: str, delimiter: str) -> List[str]:
    return [part.strip() for part in value.split(delimiter) if part.strip()]


class ColumnMap(BaseModel):
    column_index: int = Field(ge=0)
    target: TargetKind
    key: Optional[str] = None  # Field name, required for field maps
    delimiter: str = ","  # Separates several tags or file sources in one cell

    @field_validator("delimiter")
    def validate_delimiter(cls, value: str) -> str:
        if not value:
            raise ValueError("delimiter cannot be empty")
        return value

    @model_validator(mode="after")
    def validate_key(self) -> "ColumnMap":
        if self.target == TargetKind.FIELD:
            if not self.key or not self.key.strip():
                raise ValueError("field maps require a key")
            self.key = self.key.strip()
        return self

    def apply(self, value: str, result: MappedRow) -> None:
        """Add the contribution of one cell to the mapping result."""
        if self.target == TargetKind.FIELD:
            text = value.strip()
            if text:
                result.fields.setdefault(self.key, []).append(text)
        elif self.target == TargetKind.TAG:
            for tag in _split_values(value, self.delimiter):
                if tag not in result.tags:
                    result.tags.append(tag)
        else:
            result.file_refs.extend(_split_values(value, self.delimiter))


class ColumnMapSet(BaseModel):
    maps: List[ColumnMap] = Field(default_factory=list)

    def __len__(self) -> int:
        return len(self.maps)

    def map(self, row: Sequence[str]) -> MappedRow:
        """
        Map a row to fields, tags and file sources.

        Args:
            row: Cell values of one CSV row, in column order

        Returns:
            MappedRow with every map applied in order

        Raises:
            UnusableRowError: If a mapped column does not exist in the row
        """
        result = MappedRow()
        for column_map in self.maps:
            if column_map.column_index >= len(row):
                raise UnusableRowError(
                    f"Column {column_map.column_index} is mapped but the row only has {len(row)} columns."
                )
            column_map.apply(row[column_map.column_index] or "", result)
        return result


def encode_column_maps(map_set: ColumnMapSet) -> Dict[str, Any]:
    """Encode column maps into the versioned document stored on the import."""
    return {
        "version": COLUMN_MAPS_VERSION,
        "maps": [column_map.model_dump(mode="json") for column_map in map_set.maps],
    }


def decode_column_maps(payload: Any) -> ColumnMapSet:
    """
    Decode a stored column maps document.

    Raises:
        ColumnMapsError: If the document is missing, malformed or of an
            unsupported version
    """
    if payload is None:
        raise ColumnMapsError("Import has no column maps.")

    if isinstance(payload, (str, bytes)):
        try:
            payload = json.loads(payload)
        except ValueError as e:
            raise ColumnMapsError(f"Column maps are not valid JSON: {e}", payload)

    if not isinstance(payload, dict):
        raise ColumnMapsError(
            f"Column maps must be a JSON object, got {type(payload).__name__}.", payload
        )

    version = payload.get("version")
    if version != COLUMN_MAPS_VERSION:
        raise ColumnMapsError(f"Unsupported column maps version: {version!r}.", payload)

    try:
        return ColumnMapSet(maps=payload.get("maps") or [])
    except ValidationError as e:
        logger.error(f"Invalid column maps document: {e}")
        raise ColumnMapsError(f"Column maps are invalid: {e}", payload)
