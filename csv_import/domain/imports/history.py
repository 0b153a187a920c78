"""
Creating, looking up and deleting imports.
"""
import logging
import os
import shutil
import uuid
from typing import List, Optional, Sequence, Union

from sqlalchemy import select
from sqlalchemy.orm import Session

from csv_import.core.config import settings
from csv_import.db.models import Import
from csv_import.domain.imports.column_maps import ColumnMap, ColumnMapSet

logger = logging.getLogger(__name__)


def create_import(
    session: Session,
    source_path: str,
    column_maps: Union[ColumnMapSet, Sequence[Union[ColumnMap, dict]]],
    *,
    original_filename: Optional[str] = None,
    delimiter: str = ",",
    collection_id: Optional[int] = None,
    item_type_id: Optional[int] = None,
    is_public: bool = False,
    is_featured: bool = False,
    batch_size: int = 0,
    upload_dir: Optional[str] = None,
) -> Import:
    """
    Copy a CSV file into the upload directory and persist a new import for it.

    Args:
        session: Database session
        source_path: Path of the CSV file to import
        column_maps: Column maps as a ColumnMapSet or a list of maps
        original_filename: Name shown for the import (defaults to the file name)
        delimiter: Column delimiter of the file
        collection_id: Collection the created items are added to
        item_type_id: Item type of the created items
        is_public: Whether created items are public
        is_featured: Whether created items are featured
        batch_size: Items to create per job before pausing (0 = no batching)
        upload_dir: Directory the file is copied to (defaults to settings)

    Returns:
        The persisted Import, not yet started
    """
    if not os.path.isfile(source_path):
        raise FileNotFoundError(f"CSV file not found: {source_path}")

    original_filename = original_filename or os.path.basename(source_path)
    target_dir = upload_dir or settings.import_upload_dir
    os.makedirs(target_dir, exist_ok=True)
    stored_path = os.path.join(target_dir, f"{uuid.uuid4().hex}_{os.path.basename(source_path)}")
    shutil.copyfile(source_path, stored_path)

    import_ = Import(
        original_filename=original_filename,
        file_path=stored_path,
        delimiter=delimiter,
        collection_id=collection_id,
        item_type_id=item_type_id,
        is_public=is_public,
        is_featured=is_featured,
        batch_size=batch_size,
    )
    import_.set_column_maps(column_maps if isinstance(column_maps, ColumnMapSet) else list(column_maps))
    session.add(import_)
    session.commit()
    logger.info(f"Created import {import_.id} for '{original_filename}' ({stored_path})")
    return import_


def get_import(session: Session, import_id: int) -> Optional[Import]:
    return session.get(Import, import_id)


def list_imports(session: Session, limit: int = 50, offset: int = 0) -> List[Import]:
    """Most recent imports first."""
    query = select(Import).order_by(Import.id.desc()).limit(limit).offset(offset)
    return list(session.execute(query).scalars())


def delete_import(session: Session, import_: Import) -> None:
    """
    Delete an import and its stored CSV file.

    Items the import created are left alone; undo the import first to remove them.
    """
    import_id = import_.id
    file_path = import_.file_path
    session.delete(import_)
    session.commit()
    if file_path and os.path.exists(file_path):
        os.remove(file_path)
    logger.info(f"Deleted import {import_id}")
