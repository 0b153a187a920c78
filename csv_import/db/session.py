import logging
from contextlib import contextmanager

from sqlalchemy import create_engine, text
from sqlalchemy.engine.url import make_url
from sqlalchemy.orm import declarative_base, sessionmaker

from csv_import.core.config import settings

logger = logging.getLogger(__name__)

_engine = None


def _report_connection_failure(exc: Exception) -> None:
    """Log high-signal diagnostics when the database cannot be reached."""
    logger.warning(f"Could not connect to database: {exc}")

    try:
        url = make_url(settings.database_url)
    except Exception as parse_error:  # pragma: no cover
        logger.warning(f"Unable to parse DATABASE_URL ({parse_error}); skipping detailed diagnostics.")
        return

    logger.warning(
        "Database connection settings: dialect=%s driver=%s host=%s port=%s database=%s",
        url.get_backend_name(),
        url.get_driver_name() or "default",
        url.host or "localhost",
        url.port or "(default)",
        url.database,
    )


def _engine_options(url: str) -> dict:
    if url.startswith("sqlite"):
        # Jobs and the CLI may share one SQLite file across threads.
        return {"connect_args": {"check_same_thread": False}}
    return {"pool_pre_ping": True}


def get_engine():
    """Engine for settings.database_url, created on first use."""
    global _engine
    if _engine is not None:
        return _engine

    _engine = create_engine(settings.database_url, **_engine_options(settings.database_url))
    try:
        with _engine.connect() as conn:
            conn.execute(text("SELECT 1"))
    except Exception as e:
        # Keep the engine; commands that need the database will fail with the real error.
        _report_connection_failure(e)
    return _engine


Base = declarative_base()

_session_factory = None


def get_session_local():
    global _session_factory
    if _session_factory is None:
        _session_factory = sessionmaker(bind=get_engine(), autoflush=False)
    return _session_factory


def init_db(engine=None) -> None:
    """Create the import, ledger and record tables if they don't exist."""
    # Registers the models on Base.metadata.
    from csv_import.db import models  # noqa: F401

    Base.metadata.create_all(bind=engine or get_engine())
    logger.info("csv_import tables created/verified successfully")


@contextmanager
def session_scope():
    """Provide a session that is rolled back on error and always closed."""
    SessionLocal = get_session_local()
    session = SessionLocal()
    try:
        yield session
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
