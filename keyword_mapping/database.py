"""Research store plumbing: one cached engine, scoped sessions and table creation."""

import os
import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Generator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker
from sqlalchemy.pool import StaticPool

logger = logging.getLogger(__name__)

DEFAULT_DATABASE_URL = "sqlite:///data/keyword_mapping.db"
MEMORY_URLS = ("sqlite://", "sqlite:///:memory:")


class Base(DeclarativeBase):
    """Shared metadata for the research tables."""
    pass


_engine: Engine | None = None
_SessionFactory: sessionmaker | None = None


def _on_sqlite_connect(dbapi_conn, connection_record):
    """Per-connection pragmas for file databases.

    WAL lets ``kwmap status`` read while a clustering run commits.
    """
    cursor = dbapi_conn.cursor()
    for pragma in ("journal_mode=WAL", "synchronous=NORMAL", "busy_timeout=5000"):
        cursor.execute(f"PRAGMA {pragma};")
    cursor.close()


def _engine_options(database_url: str, echo: bool) -> dict[str, Any]:
    options: dict[str, Any] = {"echo": echo, "pool_pre_ping": True}
    if not database_url.startswith("sqlite"):
        return options

    options["connect_args"] = {"check_same_thread": False}
    if database_url in MEMORY_URLS:
        # Every session must reach the same in-memory database.
        options["poolclass"] = StaticPool
    else:
        Path(database_url.replace("sqlite:///", "")).parent.mkdir(parents=True, exist_ok=True)
    return options


def get_engine(database_url: str | None = None, echo: bool = False) -> Engine:
    """Engine shared by the whole process, built on first use.

    The URL comes from the argument, then ``DATABASE_URL``, then a SQLite
    file under ``data/``. Later calls return the cached engine and ignore
    their arguments.
    """
    global _engine
    if _engine is None:
        url = database_url or os.getenv("DATABASE_URL", DEFAULT_DATABASE_URL)
        _engine = create_engine(url, **_engine_options(url, echo))
        if url.startswith("sqlite") and url not in MEMORY_URLS:
            event.listen(_engine, "connect", _on_sqlite_connect)
        logger.info("Research store engine ready: %s", url)
    return _engine


def get_session_factory(engine: Engine | None = None) -> sessionmaker:
    global _SessionFactory
    if _SessionFactory is None:
        _SessionFactory = sessionmaker(bind=engine or get_engine(), expire_on_commit=False)
    return _SessionFactory


@contextmanager
def get_session() -> Generator[Session, None, None]:
    """Unit of work for the repository.

    Commits when the block exits cleanly, rolls back and re-raises when it
    does not. Loaded rows stay readable after the block.

    Usage::

        with get_session() as session:
            session.add(KeywordResearch(query="matcha"))
    """
    session = get_session_factory()()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def _register_models() -> None:
    # Importing the models package attaches every table to Base.metadata.
    import keyword_mapping.models  # noqa: F401


def init_db(database_url: str | None = None, echo: bool = False) -> None:
    """Create the research tables if they are missing."""
    engine = get_engine(database_url=database_url, echo=echo)
    _register_models()
    Base.metadata.create_all(bind=engine)
    logger.info("Research tables ready.")


def reset_db(database_url: str | None = None) -> None:
    """Drop every research table and create it again empty."""
    engine = get_engine(database_url=database_url)
    _register_models()
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    logger.warning("Research tables dropped and recreated.")


def reset_engine() -> None:
    """Forget the cached engine so the next call can bind a different URL."""
    global _engine, _SessionFactory
    if _engine is not None:
        _engine.dispose()
    _engine = None
    _SessionFactory = None
