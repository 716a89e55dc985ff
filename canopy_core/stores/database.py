from __future__ import annotations

import threading
from pathlib import Path
from typing import Iterable

import duckdb

from canopy_core.logging import get_logger

logger = get_logger(__name__)

SCHEMA_STATEMENTS = (
    """
    CREATE TABLE IF NOT EXISTS documents (
        id VARCHAR PRIMARY KEY,
        workspace_id VARCHAR NOT NULL,
        title VARCHAR,
        description VARCHAR,
        mime_type VARCHAR,
        tags VARCHAR[],
        ai_summary VARCHAR,
        searchable_text VARCHAR,
        detailed_analysis VARCHAR,
        storage_path VARCHAR,
        thumbnail_path VARCHAR,
        text_embedding FLOAT[],
        visual_embedding FLOAT[],
        created_at TIMESTAMP DEFAULT current_timestamp
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS document_frames (
        id VARCHAR PRIMARY KEY,
        document_id VARCHAR NOT NULL,
        workspace_id VARCHAR NOT NULL,
        start_time DOUBLE NOT NULL,
        description VARCHAR,
        storage_path VARCHAR,
        visual_embedding FLOAT[]
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS scratches (
        id VARCHAR PRIMARY KEY,
        workspace_id VARCHAR NOT NULL,
        title VARCHAR,
        searchable_text VARCHAR,
        thumbnail_url VARCHAR,
        created_at TIMESTAMP DEFAULT current_timestamp
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS notes (
        id VARCHAR PRIMARY KEY,
        workspace_id VARCHAR NOT NULL,
        title VARCHAR,
        content VARCHAR,
        searchable_text VARCHAR,
        created_at TIMESTAMP DEFAULT current_timestamp
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS links (
        id VARCHAR PRIMARY KEY,
        workspace_id VARCHAR NOT NULL,
        title VARCHAR,
        url VARCHAR,
        thumbnail_url VARCHAR,
        video_url VARCHAR
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS link_transcripts (
        id VARCHAR PRIMARY KEY,
        link_id VARCHAR NOT NULL,
        text VARCHAR,
        start_time DOUBLE,
        end_time DOUBLE
    )
    """,
    "CREATE SEQUENCE IF NOT EXISTS search_history_seq START 1",
    """
    CREATE TABLE IF NOT EXISTS search_history (
        id VARCHAR PRIMARY KEY,
        seq BIGINT DEFAULT nextval('search_history_seq'),
        workspace_id VARCHAR NOT NULL,
        user_id VARCHAR NOT NULL,
        query VARCHAR NOT NULL,
        result_count INTEGER NOT NULL,
        search_type VARCHAR NOT NULL,
        created_at TIMESTAMP NOT NULL,
        UNIQUE (workspace_id, user_id, query)
    )
    """,
)


class Database:
    """Shared DuckDB connection; every operation runs on its own cursor."""

    def __init__(self, path: str) -> None:
        self.path = path
        if path != ":memory:":
            Path(path).parent.mkdir(parents=True, exist_ok=True)
        self._conn = duckdb.connect(path)
        self._lock = threading.Lock()
        self._init_schema()
        logger.info("DuckDB database opened", extra={"database_path": path})

    def _init_schema(self) -> None:
        with self._lock:
            for statement in SCHEMA_STATEMENTS:
                self._conn.execute(statement)

    def cursor(self) -> duckdb.DuckDBPyConnection:
        with self._lock:
            return self._conn.cursor()

    def query_rows(self, sql: str, params: Iterable[object] = ()) -> list[tuple]:
        cur = self.cursor()
        try:
            return cur.execute(sql, list(params)).fetchall()
        finally:
            cur.close()

    def execute(self, sql: str, params: Iterable[object] = ()) -> None:
        cur = self.cursor()
        try:
            cur.execute(sql, list(params))
        finally:
            cur.close()

    def close(self) -> None:
        with self._lock:
            self._conn.close()


_DATABASES: dict[str, Database] = {}
_DATABASES_LOCK = threading.Lock()


def get_database(path: str) -> Database:
    with _DATABASES_LOCK:
        db = _DATABASES.get(path)
        if db is None:
            db = Database(path)
            _DATABASES[path] = db
        return db


def close_databases() -> None:
    with _DATABASES_LOCK:
        for db in _DATABASES.values():
            db.close()
        _DATABASES.clear()
