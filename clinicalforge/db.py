"""Database engine and session management."""

import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional

from sqlalchemy import create_engine
from sqlalchemy.engine import make_url
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from .config import get_settings
from .errors import StorageTimeout


settings = get_settings()


class Base(DeclarativeBase):
    """SQLAlchemy declarative base."""

    pass


def _ensure_sqlite_dir(url: str) -> None:
    database = make_url(url).database
    if database and database != ":memory:":
        Path(database).parent.mkdir(parents=True, exist_ok=True)


# SQLite needs ``check_same_thread=False``; storage calls run on executor threads
if settings.database_url.startswith("sqlite"):
    _ensure_sqlite_dir(settings.database_url)
engine = create_engine(
    settings.database_url, connect_args={"check_same_thread": False}
    if settings.database_url.startswith("sqlite")
    else {}
)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


class CommitDeadline:
    """Decides, once, whether a write commits or is abandoned.

    The executor thread calls ``commit``; the waiting coroutine calls
    ``expire`` when its timeout fires. Whichever gets the lock first wins, so a
    write the caller was told timed out is always rolled back.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.expired = False
        self.committing = False

    def commit(self, session: Session) -> None:
        with self._lock:
            if self.expired:
                raise StorageTimeout("Deadline passed before commit; write rolled back")
            self.committing = True
        session.commit()

    def expire(self) -> bool:
        """Abandon the write; ``False`` if its commit has already started."""

        with self._lock:
            if self.committing:
                return False
            self.expired = True
            return True


@contextmanager
def session_scope(
    factory: sessionmaker = SessionLocal, deadline: Optional[CommitDeadline] = None
) -> Iterator[Session]:
    """Transactional session context manager."""

    session: Session = factory()
    try:
        yield session
        if deadline is not None:
            deadline.commit(session)
        else:
            session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def get_db() -> Iterator[Session]:
    """FastAPI dependency yielding a request-scoped session."""

    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
