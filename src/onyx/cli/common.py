"""Helpers shared by the onyx CLI commands."""

from __future__ import annotations

import sqlite3
from pathlib import Path

from onyx.config import OnyxConfig, load_config
from onyx.db.connection import Database
from onyx.db.schema import initialize
from onyx.log import setup_logger

DEFAULT_DB = Path(".onyx.db")


def open_db(db_path: Path) -> sqlite3.Connection:
    db = Database(db_path)
    conn = db.connect()
    initialize(conn)
    return conn


def load_settings(db_path: Path) -> OnyxConfig:
    """Load the config that sits next to *db_path* and configure logging from it."""
    cfg = load_config(db_path.resolve().parent)
    setup_logger(cfg.logging.level, cfg.logging.file)
    return cfg
