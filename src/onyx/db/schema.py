"""Database schema initialization and version checks."""

from __future__ import annotations

import sqlite3

from onyx.db.migrations import MIGRATIONS, run_migrations

CURRENT_VERSION = MIGRATIONS[-1][0]


class SchemaVersionError(RuntimeError):
    """The database was written by a newer Onyx than the one running."""


def get_schema_version(conn: sqlite3.Connection) -> int:
    """Highest applied migration, or 0 for a fresh database."""
    exists = conn.execute(
        "SELECT 1 FROM sqlite_master WHERE type = 'table' AND name = 'schema_version'"
    ).fetchone()
    if exists is None:
        return 0
    (version,) = conn.execute("SELECT MAX(version) FROM schema_version").fetchone()
    return version or 0


def initialize(conn: sqlite3.Connection) -> None:
    """Bring the schema up to CURRENT_VERSION (idempotent).

    Raises:
        SchemaVersionError: the database is ahead of this code.
    """
    found = get_schema_version(conn)
    if found > CURRENT_VERSION:
        raise SchemaVersionError(
            f"Database schema v{found} is newer than this Onyx (v{CURRENT_VERSION}). "
            "Upgrade onyx."
        )
    run_migrations(conn)
