"""Run history database.

Release runs are recorded in a small SQL database (SQLite by default) so
partial runs can be found after the fact. This module owns the declarative
base, opening the database, and the transactional session scope.
"""

from collections.abc import Generator
from contextlib import contextmanager
from pathlib import Path

from sqlalchemy import Engine, create_engine
from sqlalchemy.engine import make_url
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker


class Base(DeclarativeBase):
    """Base class for run history models."""


def sqlite_file(db_url: str) -> Path | None:
    """Return the database file of a file-backed SQLite URL, else None."""
    url = make_url(db_url)
    if url.get_backend_name() != "sqlite":
        return None
    if not url.database or url.database == ":memory:":
        return None
    return Path(url.database)


def create_history_engine(db_url: str) -> Engine:
    """Create an engine for the run history database.

    The directory holding a SQLite database file is created on demand.
    """
    connect_args: dict[str, object] = {}
    db_file = sqlite_file(db_url)
    if make_url(db_url).get_backend_name() == "sqlite":
        connect_args["check_same_thread"] = False
    if db_file is not None:
        db_file.parent.mkdir(parents=True, exist_ok=True)
    return create_engine(db_url, connect_args=connect_args)


def open_history(db_url: str) -> sessionmaker[Session]:
    """Open the run history, creating its tables if needed.

    Args:
        db_url: Database URL, e.g. ``sqlite:///~/.local/share/.../db.sqlite``.

    Returns:
        Session factory bound to the database.
    """
    from image_release.runs import models as runs_models  # noqa: F401

    engine = create_history_engine(db_url)
    Base.metadata.create_all(bind=engine)
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


@contextmanager
def history_session(
    session_factory: sessionmaker[Session],
) -> Generator[Session, None, None]:
    """Session that commits on success and rolls back on error."""
    session = session_factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


__all__ = [
    "Base",
    "create_history_engine",
    "history_session",
    "open_history",
    "sqlite_file",
]
