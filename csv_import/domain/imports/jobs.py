"""
Job entry points for running imports.

A job loads the import, builds a controller and runs one step of it. The
running_import guard makes sure an import a job leaves behind is never stuck
in "In Progress": whichever way the job exits (return, exception, Ctrl-C),
an import still in progress is marked Stopped.
"""
import logging
from contextlib import contextmanager
from typing import Callable, Iterator, Optional

from sqlalchemy.orm import Session

from csv_import.db.session import session_scope
from csv_import.domain.imports.controller import ImportController, ImportStatus
from csv_import.domain.imports.history import get_import
from csv_import.integrations.record_store import RecordStore, SqlRecordStore

logger = logging.getLogger(__name__)

JOB_METHODS = ("start", "resume", "undo")


@contextmanager
def running_import(controller: ImportController) -> Iterator[ImportController]:
    """Yield the controller and stop the import on exit if it is still in progress."""
    try:
        yield controller
    finally:
        try:
            if controller.stop():
                logger.warning(f"Import {controller.import_.id} was still in progress and has been stopped")
        except Exception:
            # Don't mask the error that ended the job.
            logger.exception(f"Could not mark import {controller.import_.id} as stopped")


def _run(
    session: Session,
    import_id: int,
    method: str,
    batch_size: Optional[int],
    store_factory: Optional[Callable[[Session], RecordStore]],
) -> bool:
    import_ = get_import(session, import_id)
    if import_ is None:
        raise LookupError(f"Import {import_id} not found")

    store = store_factory(session) if store_factory else SqlRecordStore(session)
    controller = ImportController(session, import_, store, batch_size=batch_size)
    with running_import(controller):
        result = getattr(controller, method)()
        logger.info(f"Import {import_id} {method} finished with status '{import_.status}' ({controller.get_progress()})")
        return result


def run_import_job(
    import_id: int,
    method: str = "start",
    *,
    session: Optional[Session] = None,
    batch_size: Optional[int] = None,
    store_factory: Optional[Callable[[Session], RecordStore]] = None,
) -> bool:
    """
    Run one step of an import: start it, resume it after a pause, or undo it.

    Args:
        import_id: ID of the import
        method: "start", "resume" or "undo"
        session: Session to use; a new one is opened and closed when omitted
        batch_size: Override for the import's batch size
        store_factory: Builds the record store for the session (defaults to SqlRecordStore)

    Returns:
        The controller method's result
    """
    if method not in JOB_METHODS:
        raise ValueError(f"Unknown import job method '{method}'. Expected one of {JOB_METHODS}.")

    if session is not None:
        return _run(session, import_id, method, batch_size, store_factory)
    with session_scope() as scoped:
        return _run(scoped, import_id, method, batch_size, store_factory)


def drain_import(
    import_id: int,
    *,
    session: Optional[Session] = None,
    batch_size: Optional[int] = None,
    store_factory: Optional[Callable[[Session], RecordStore]] = None,
    max_jobs: Optional[int] = None,
) -> int:
    """
    Start an import and keep resuming it until it stops pausing.

    Each batch runs as its own job, the way a queue would re-dispatch a
    paused import.

    Returns:
        Number of jobs run
    """
    jobs = 1
    run_import_job(import_id, "start", session=session, batch_size=batch_size, store_factory=store_factory)
    while max_jobs is None or jobs < max_jobs:
        if not _is_paused(import_id, session):
            break
        run_import_job(import_id, "resume", session=session, batch_size=batch_size, store_factory=store_factory)
        jobs += 1
    return jobs


def _is_paused(import_id: int, session: Optional[Session]) -> bool:
    if session is not None:
        import_ = get_import(session, import_id)
        return import_ is not None and import_.status == ImportStatus.PAUSED.value
    with session_scope() as scoped:
        import_ = get_import(scoped, import_id)
        return import_ is not None and import_.status == ImportStatus.PAUSED.value
