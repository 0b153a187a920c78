import os

import pytest

from csv_import.db.models import Import, Item
from csv_import.domain.imports.controller import ImportController, ImportStatus
from csv_import.domain.imports.history import create_import, delete_import, get_import, list_imports
from csv_import.domain.imports.jobs import drain_import, run_import_job, running_import
from csv_import.integrations.record_store import SqlRecordStore
from tests.utils.http import FakeHttp, FakeResponse
from tests.utils.rows import DEFAULT_MAPS, HEADER, item_rows


def test_running_import_stops_an_import_left_in_progress(session, make_import, store):
    import_ = make_import(item_rows(2))
    controller = ImportController(session, import_, store)

    with pytest.raises(KeyboardInterrupt):
        with running_import(controller):
            import_.status = ImportStatus.IN_PROGRESS.value
            session.commit()
            raise KeyboardInterrupt()

    assert controller.status == ImportStatus.STOPPED


def test_interrupted_row_is_not_committed(session, make_import, tmp_path):
    rows = item_rows(3)
    rows[0][3] = "http://example.com/one.jpg"
    rows[1][3] = "http://example.com/two.jpg"
    import_ = make_import(rows)
    http = FakeHttp({
        "http://example.com/one.jpg": FakeResponse(b"one"),
        "http://example.com/two.jpg": KeyboardInterrupt(),
    })
    storage_dir = tmp_path / "files"
    store = SqlRecordStore(session, storage_dir=str(storage_dir), http=http)
    controller = ImportController(session, import_, store)

    with pytest.raises(KeyboardInterrupt):
        with running_import(controller):
            controller.start()

    assert controller.status == ImportStatus.STOPPED
    assert import_.last_row_index == 1
    assert session.query(Item).count() == 1
    assert controller.get_imported_item_count() == 1
    assert len(os.listdir(storage_dir)) == 1

    assert controller.undo() is True
    assert session.query(Item).count() == 0


def test_running_import_leaves_finished_imports_alone(session, make_import, store):
    import_ = make_import(item_rows(2))
    controller = ImportController(session, import_, store)

    with running_import(controller):
        controller.start()

    assert controller.status == ImportStatus.COMPLETED


def test_run_import_job_starts_and_resumes(session, make_import, store):
    import_ = make_import(item_rows(3), batch_size=2)

    assert run_import_job(import_.id, "start", session=session, store_factory=lambda s: store) is True
    assert import_.status == ImportStatus.PAUSED.value

    assert run_import_job(import_.id, "resume", session=session, store_factory=lambda s: store) is True
    assert import_.status == ImportStatus.COMPLETED.value
    assert store.titles() == ["Item 1", "Item 2", "Item 3"]


def test_failed_job_leaves_general_error_not_stopped(session, make_import, store):
    import_ = make_import(item_rows(3))
    store.broken_titles.add("Item 2")

    with pytest.raises(ConnectionError):
        run_import_job(import_.id, session=session, store_factory=lambda s: store)

    assert import_.status == ImportStatus.GENERAL_ERROR.value


def test_drain_import_runs_one_job_per_batch(session, make_import, store):
    import_ = make_import(item_rows(5))

    jobs = drain_import(import_.id, session=session, batch_size=2, store_factory=lambda s: store)

    assert jobs == 3
    assert import_.status == ImportStatus.COMPLETED.value
    assert len(store.records) == 5


def test_run_import_job_validates_its_arguments(session):
    with pytest.raises(ValueError):
        run_import_job(1, "explode", session=session)
    with pytest.raises(LookupError):
        run_import_job(404, "start", session=session)


def test_create_import_copies_the_source_file(session, write_csv, tmp_path):
    source = write_csv([HEADER] + item_rows(1), name="source.csv")

    import_ = create_import(
        session,
        source,
        DEFAULT_MAPS,
        collection_id=2,
        is_featured=True,
        batch_size=10,
        upload_dir=str(tmp_path / "uploads"),
    )

    assert import_.id is not None
    assert import_.status is None
    assert import_.original_filename == "source.csv"
    assert import_.file_path != source
    assert os.path.exists(import_.file_path)
    assert import_.column_maps.maps == DEFAULT_MAPS
    assert [found.id for found in list_imports(session)] == [import_.id]


def test_delete_import_removes_its_file_but_not_its_items(session, write_csv, tmp_path, store):
    source = write_csv([HEADER] + item_rows(2), name="source.csv")
    import_ = create_import(session, source, DEFAULT_MAPS, upload_dir=str(tmp_path / "uploads"))
    import_id, stored_path = import_.id, import_.file_path
    ImportController(session, import_, store).start()

    delete_import(session, import_)

    assert get_import(session, import_id) is None
    assert not os.path.exists(stored_path)
    assert len(store.records) == 2
    assert session.query(Import).count() == 0
