from contextlib import contextmanager
from functools import lru_cache
from pathlib import Path
from typing import Iterator, Optional

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from config import get_settings


def _enable_sqlite_pragmas(dbapi_conn, _record):
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA journal_mode=WAL;")
    cursor.execute("PRAGMA foreign_keys=ON;")
    cursor.close()


def create_db_engine(database_url: str) -> Engine:
    """Engine for ``database_url``; file-backed SQLite gets its directory and pragmas."""
    url = make_url(database_url)
    if url.get_backend_name() != "sqlite":
        return create_engine(database_url)

    eng = create_engine(database_url, connect_args={"check_same_thread": False})
    if url.database and url.database != ":memory:":
        Path(url.database).resolve().parent.mkdir(parents=True, exist_ok=True)
        event.listen(eng, "connect", _enable_sqlite_pragmas)
    return eng


@lru_cache(maxsize=1)
def get_engine() -> Engine:
    return create_db_engine(get_settings().database_url)


SessionLocal = sessionmaker(autoflush=False, expire_on_commit=False)


def new_session() -> Session:
    return SessionLocal(bind=get_engine())


class Base(DeclarativeBase):
    pass


def init_db(bind: Optional[Engine] = None) -> None:
    # Import for side effects: registers every table on Base.metadata.
    import models  # noqa: F401

    Base.metadata.create_all(bind or get_engine())


@contextmanager
def session_scope() -> Iterator[Session]:
    session = new_session()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
