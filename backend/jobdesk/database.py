import logging

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker

from .config import DATABASE_URL

logger = logging.getLogger(__name__)

Base = declarative_base()


def _set_sqlite_pragmas(dbapi_connection, connection_record):  # noqa: ANN001
    try:
        cursor = dbapi_connection.cursor()
        # WAL lets cache reads proceed while a sweep is writing.
        cursor.execute("PRAGMA journal_mode=WAL;")
        cursor.execute("PRAGMA busy_timeout=30000;")
        cursor.close()
    except Exception as e:
        logger.warning("Failed to set SQLite pragmas: %s", e)


def make_engine(url: str) -> Engine:
    url = (url or "").strip()
    kwargs = {"pool_pre_ping": True}
    if url.startswith("sqlite"):
        # uvicorn may touch the session from worker threads (sync dependencies).
        kwargs["connect_args"] = {"check_same_thread": False, "timeout": 30}
    eng = create_engine(url, **kwargs)
    if url.startswith("sqlite"):
        event.listen(eng, "connect", _set_sqlite_pragmas)
    return eng


engine = make_engine(DATABASE_URL)

SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
)


def init_db(bind: Engine | None = None):
    # Import models so they register with SQLAlchemy metadata before create_all.
    from .models import kv_cache  # noqa: F401

    Base.metadata.create_all(bind=bind or engine)
