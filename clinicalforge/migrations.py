"""Plain-SQL schema migrations for SQLite submission stores.

``migrations/sql/NNNN_description.sql`` files are applied in version order and
recorded in ``schema_migrations``. Before the first pending file runs, the
database file is copied to ``<name>.bak``. Other backends are managed outside
the app and are left untouched.
"""

from __future__ import annotations

import logging
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import List, Set

from sqlalchemy import text
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import OperationalError

logger = logging.getLogger(__name__)

MIGRATIONS_DIR = Path(__file__).resolve().parents[1] / "migrations" / "sql"

# re-running an ALTER on a table created by ``create_all`` hits these
_IGNORABLE = ("duplicate column name", "already exists")


@dataclass(frozen=True)
class Migration:
    version: str
    path: Path

    @classmethod
    def from_path(cls, path: Path) -> "Migration":
        return cls(version=path.stem.split("_", 1)[0], path=path)

    def statements(self) -> List[str]:
        body = "\n".join(
            line
            for line in self.path.read_text(encoding="utf-8").splitlines()
            if not line.lstrip().startswith("--")
        )
        return [chunk.strip() for chunk in body.split(";") if chunk.strip()]


def run_migrations(engine: Engine, migrations_dir: Path = MIGRATIONS_DIR) -> List[str]:
    """Apply every pending migration; returns the versions this call applied."""

    if engine.url.get_backend_name() != "sqlite":
        logger.debug("Skipping SQL migrations for %s", engine.url.get_backend_name())
        return []

    with engine.begin() as conn:
        _ensure_ledger(conn)
        done = _applied_versions(conn)

    pending = [migration for migration in _discover(migrations_dir) if migration.version not in done]
    if not pending:
        return []

    _backup(engine)
    for migration in pending:
        with engine.begin() as conn:
            _apply(conn, migration)
        logger.info("Applied migration %s", migration.path.name)
    return [migration.version for migration in pending]


def _ensure_ledger(conn: Connection) -> None:
    conn.execute(
        text(
            "CREATE TABLE IF NOT EXISTS schema_migrations ("
            "version TEXT PRIMARY KEY, "
            "applied_at DATETIME DEFAULT CURRENT_TIMESTAMP"
            ")"
        )
    )


def _applied_versions(conn: Connection) -> Set[str]:
    return set(conn.execute(text("SELECT version FROM schema_migrations")).scalars())


def _discover(migrations_dir: Path) -> List[Migration]:
    if not migrations_dir.is_dir():
        return []
    return sorted(
        (Migration.from_path(path) for path in migrations_dir.glob("*.sql")),
        key=lambda migration: migration.version,
    )


def _apply(conn: Connection, migration: Migration) -> None:
    for statement in migration.statements():
        try:
            conn.execute(text(statement))
        except OperationalError as exc:
            if not any(marker in str(exc).lower() for marker in _IGNORABLE):
                raise
            logger.debug("Migration %s: ignoring %s", migration.version, exc.orig)
    conn.execute(
        text("INSERT INTO schema_migrations (version) VALUES (:version)"),
        {"version": migration.version},
    )


def _backup(engine: Engine) -> None:
    database = engine.url.database
    if not database or database == ":memory:":
        return
    source = Path(database)
    if source.exists():
        shutil.copy2(source, source.with_name(source.name + ".bak"))
