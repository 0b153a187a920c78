"""
Tests for undoing imports through the ledger.
"""
import pytest

from csv_import.db.models import Import, ImportedItem
from csv_import.domain.imports.controller import ImportController, ImportStatus
from tests.utils.rows import item_rows


@pytest.fixture
def completed_import(session, store):
    """A completed import with `count` ledger entries backed by fake records."""
    def _make(count):
        import_ = Import(original_filename="items.csv", file_path="/tmp/items.csv")
        import_.set_column_maps([])
        import_.status = ImportStatus.COMPLETED.value
        session.add(import_)
        session.commit()
        for item_id in store.add_existing(count):
            session.add(ImportedItem(import_id=import_.id, item_id=item_id))
        session.commit()
        return import_

    return _make


def test_undo_deletes_in_pages_of_one_hundred(session, store, completed_import):
    import_ = completed_import(250)
    controller = ImportController(session, import_, store, undo_page_size=100)
    remaining = []
    original_fetch = store.fetch_records

    def tracking_fetch(record_ids):
        remaining.append(controller.get_imported_item_count())
        return original_fetch(record_ids)

    store.fetch_records = tracking_fetch

    assert controller.undo() is True

    assert [len(ids) for ids in store.fetch_calls] == [100, 100, 50]
    assert remaining == [250, 150, 50]
    assert controller.status == ImportStatus.COMPLETED_UNDO
    assert controller.get_imported_item_count() == 0
    assert store.records == {}


def test_undo_is_idempotent(session, store, completed_import):
    import_ = completed_import(3)
    controller = ImportController(session, import_, store)
    controller.undo()
    deleted = list(store.deleted_ids)

    assert controller.undo() is True

    assert store.deleted_ids == deleted
    assert controller.status == ImportStatus.COMPLETED_UNDO
    assert session.query(ImportedItem).filter_by(import_id=import_.id).count() == 0


def test_records_already_deleted_are_skipped(session, store, completed_import):
    import_ = completed_import(4)
    del store.records[2]
    controller = ImportController(session, import_, store)

    controller.undo()

    assert sorted(store.deleted_ids) == [1, 3, 4]
    assert controller.get_imported_item_count() == 0


def test_undo_only_touches_its_own_ledger(session, store, completed_import):
    first = completed_import(2)
    second = completed_import(2)

    ImportController(session, first, store).undo()

    assert store.titles() == ["Existing 3", "Existing 4"]
    assert ImportController(session, second, store).get_imported_item_count() == 2


def test_interrupted_undo_picks_up_remaining_entries(session, store, completed_import):
    import_ = completed_import(250)
    store.fail_delete_after = 100
    controller = ImportController(session, import_, store, undo_page_size=100)

    with pytest.raises(ConnectionError):
        controller.undo()

    assert controller.status == ImportStatus.UNDO_IN_PROGRESS
    assert controller.get_imported_item_count() == 150

    store.fail_delete_after = None
    assert controller.undo() is True

    assert controller.status == ImportStatus.COMPLETED_UNDO
    assert controller.get_imported_item_count() == 0
    assert len(store.deleted_ids) == 250


def test_undo_is_refused_while_in_progress(session, store, completed_import):
    import_ = completed_import(1)
    import_.status = ImportStatus.IN_PROGRESS.value
    session.commit()
    controller = ImportController(session, import_, store)

    assert controller.undo() is False
    assert controller.get_imported_item_count() == 1


def test_undo_after_a_real_import(make_import, make_controller, store):
    import_ = make_import(item_rows(5), batch_size=2)
    controller = make_controller(import_)
    controller.start()

    # A paused import can be undone too.
    assert controller.undo() is True

    assert store.records == {}
    assert controller.get_progress() == "Imported: 0 / Skipped Rows: 0 / Skipped Items: 0"
