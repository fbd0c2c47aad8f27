"""Onyx database layer."""

from onyx.db.connection import Database
from onyx.db.migrations import MIGRATIONS, run_migrations
from onyx.db.repository import Repository
from onyx.db.schema import initialize

__all__ = [
    "Database",
    "Repository",
    "initialize",
    "run_migrations",
    "MIGRATIONS",
]
