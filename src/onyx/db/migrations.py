"""Forward-only migration runner for the Onyx database schema.

Chunk embeddings live in a plain table (float32 blobs) and are scored with
sqlite-vec's ``vec_distance_cosine()``; no vec0 virtual tables are used.
"""

from __future__ import annotations

import sqlite3

# schema_version is the bootstrap table, created before migrations run.
_CREATE_SCHEMA_VERSION = """
CREATE TABLE IF NOT EXISTS schema_version (
    version     INTEGER NOT NULL,
    applied_at  DATETIME NOT NULL DEFAULT (datetime('now'))
)
"""

_V1_SQL = """
CREATE TABLE IF NOT EXISTS documents (
    id          TEXT PRIMARY KEY,
    project_id  TEXT NOT NULL,
    type        TEXT NOT NULL DEFAULT 'doc'
                CHECK (type IN ('doc', 'note', 'adr', 'lesson', 'snippet')),
    title       TEXT NOT NULL,
    status      TEXT NOT NULL DEFAULT 'draft'
                CHECK (status IN ('draft', 'approved', 'deprecated')),
    tags        TEXT NOT NULL DEFAULT '[]',
    pinned      INTEGER NOT NULL DEFAULT 0,
    created_at  TEXT NOT NULL,
    updated_at  TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_documents_project ON documents(project_id);

CREATE TABLE IF NOT EXISTS document_versions (
    id                  TEXT PRIMARY KEY,
    document_id         TEXT NOT NULL REFERENCES documents(id) ON DELETE CASCADE,
    version             INTEGER NOT NULL CHECK (version >= 1),
    content_markdown    TEXT NOT NULL,
    content_hash        TEXT NOT NULL,
    change_reason       TEXT,
    created_by          TEXT,
    created_at          TEXT NOT NULL,
    UNIQUE (document_id, version)
);

CREATE TABLE IF NOT EXISTS chunks (
    id                  TEXT PRIMARY KEY,
    document_version_id TEXT NOT NULL REFERENCES document_versions(id) ON DELETE CASCADE,
    chunk_index         INTEGER NOT NULL,
    heading_path        TEXT,
    content             TEXT NOT NULL,
    token_count         INTEGER NOT NULL,
    created_at          TEXT NOT NULL,
    UNIQUE (document_version_id, chunk_index)
);

-- Lexical index. rowid = chunks.rowid; triggers keep it in sync, including
-- rows removed by ON DELETE CASCADE from documents / document_versions.
CREATE VIRTUAL TABLE IF NOT EXISTS chunks_fts USING fts5(content, tokenize='porter ascii');

CREATE TRIGGER IF NOT EXISTS chunks_fts_ai AFTER INSERT ON chunks BEGIN
    INSERT INTO chunks_fts(rowid, content) VALUES (new.rowid, new.content);
END;

CREATE TRIGGER IF NOT EXISTS chunks_fts_ad AFTER DELETE ON chunks BEGIN
    DELETE FROM chunks_fts WHERE rowid = old.rowid;
END;

CREATE TABLE IF NOT EXISTS chunk_embeddings (
    id          TEXT PRIMARY KEY,
    chunk_id    TEXT NOT NULL REFERENCES chunks(id) ON DELETE CASCADE,
    embedding   BLOB NOT NULL,
    model       TEXT NOT NULL,
    created_at  TEXT NOT NULL,
    UNIQUE (chunk_id, model)
);

CREATE TABLE IF NOT EXISTS sources (
    id              TEXT PRIMARY KEY,
    project_id      TEXT NOT NULL,
    url             TEXT NOT NULL,
    title           TEXT,
    fetched_at      TEXT,
    etag            TEXT,
    content_hash    TEXT
);

CREATE TABLE IF NOT EXISTS source_snapshots (
    id                  TEXT PRIMARY KEY,
    source_id           TEXT NOT NULL REFERENCES sources(id) ON DELETE CASCADE,
    content_markdown    TEXT NOT NULL,
    content_hash        TEXT NOT NULL,
    fetched_at          TEXT NOT NULL
);
"""

# Append-only. Each entry: (version: int, sql: str).
MIGRATIONS: list[tuple[int, str]] = [
    (1, _V1_SQL),
]


def run_migrations(conn: sqlite3.Connection) -> None:
    """Apply all pending migrations in ascending version order.

    Idempotent: safe to call on a database at any version.
    """
    conn.execute(_CREATE_SCHEMA_VERSION)
    conn.commit()

    row = conn.execute("SELECT MAX(version) FROM schema_version").fetchone()
    current = row[0] if row[0] is not None else 0

    for version, sql in MIGRATIONS:
        if version > current:
            conn.executescript(sql)
            conn.execute(
                "INSERT INTO schema_version (version) VALUES (?)", (version,)
            )
            conn.commit()
