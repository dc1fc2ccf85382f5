from __future__ import annotations

import json
import logging
import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any, cast

from podcast_digest.errors import DatabaseError

LOGGER = logging.getLogger("podcast_digest.database")

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS podcasts (
    id TEXT PRIMARY KEY,
    url TEXT NOT NULL,
    platform TEXT NOT NULL,
    youtube_url TEXT NULL,
    title TEXT NOT NULL,
    show_name TEXT NOT NULL,
    transcript TEXT NULL,
    has_transcript INTEGER NOT NULL DEFAULT 0,
    thumbnail_url TEXT NULL,
    duration INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_podcasts_url
ON podcasts(url);

CREATE TABLE IF NOT EXISTS summaries (
    id TEXT PRIMARY KEY,
    podcast_id TEXT NOT NULL REFERENCES podcasts(id),
    user_id TEXT NULL,
    status TEXT NOT NULL,
    summary_text TEXT NOT NULL DEFAULT '',
    error_message TEXT NULL,
    status_history_json TEXT NOT NULL,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    completed_at TEXT NULL,
    failed_at TEXT NULL
);

CREATE INDEX IF NOT EXISTS idx_summaries_status_updated
ON summaries(status, updated_at);

CREATE TABLE IF NOT EXISTS failed_youtube_searches (
    id TEXT PRIMARY KEY,
    search_query TEXT NOT NULL,
    spotify_show_name TEXT NOT NULL,
    spotify_title TEXT NOT NULL,
    spotify_url TEXT NOT NULL,
    resolved_youtube_url TEXT NULL,
    resolved INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS job_queue (
    id TEXT PRIMARY KEY,
    job_type TEXT NOT NULL,
    payload_json TEXT NOT NULL,
    status TEXT NOT NULL,
    attempts INTEGER NOT NULL DEFAULT 0,
    available_at TEXT NOT NULL,
    leased_until TEXT NULL,
    last_error TEXT NULL,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_job_queue_status_available
ON job_queue(status, available_at);

CREATE TABLE IF NOT EXISTS feedback (
    id TEXT PRIMARY KEY,
    user_id TEXT NULL,
    feedback_type TEXT NOT NULL,
    feedback_text TEXT NOT NULL,
    summary_id TEXT NULL,
    podcast_id TEXT NULL,
    page_url TEXT NULL,
    browser_info_json TEXT NULL,
    tags_json TEXT NOT NULL DEFAULT '[]',
    status TEXT NOT NULL,
    admin_notes TEXT NULL,
    priority INTEGER NULL,
    submitted_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_feedback_submitted
ON feedback(submitted_at);
"""


class Database:
    def __init__(self, path: Path, *, busy_timeout_seconds: float = 10.0) -> None:
        self._path = path
        self._busy_timeout_seconds = busy_timeout_seconds

    @property
    def path(self) -> Path:
        return self._path

    @contextmanager
    def connection(
        self,
        operation: str = "query",
        *,
        immediate: bool = False,
    ) -> Iterator[sqlite3.Connection]:
        """
        Open a connection for one unit of work and commit it on success.

        `immediate=True` takes the write lock up front so read-modify-write
        sequences cannot interleave with another writer.
        """
        try:
            conn = sqlite3.connect(self._path, timeout=self._busy_timeout_seconds)
        except sqlite3.Error as exc:
            raise _wrap_error(exc, operation=operation, path=self._path) from exc

        conn.row_factory = sqlite3.Row
        try:
            conn.execute("PRAGMA foreign_keys = ON")
            if immediate:
                conn.execute("BEGIN IMMEDIATE")
            yield conn
            conn.commit()
        except sqlite3.Error as exc:
            conn.rollback()
            raise _wrap_error(exc, operation=operation, path=self._path) from exc
        finally:
            conn.close()

    def initialize(self) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        with self.connection("initialize") as conn:
            conn.executescript(SCHEMA_SQL)


def _wrap_error(exc: sqlite3.Error, *, operation: str, path: Path) -> DatabaseError:
    code = getattr(exc, "sqlite_errorname", None) or type(exc).__name__
    LOGGER.error(
        "database operation failed operation=%s code=%s path=%s",
        operation,
        code,
        path,
        exc_info=exc,
    )
    return DatabaseError(
        f"Database operation '{operation}' failed: {exc}",
        code=str(code),
        operation=operation,
        context={"path": str(path)},
    )


def load_json_list(raw: object) -> list[dict[str, Any]]:
    if not isinstance(raw, str):
        return []
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError:
        return []
    if not isinstance(parsed, list):
        return []
    entries: list[dict[str, Any]] = []
    for item in cast(list[object], parsed):
        if isinstance(item, dict):
            raw_dict = cast(dict[object, object], item)
            entries.append({str(key): value for key, value in raw_dict.items()})
    return entries


def none_if_empty(value: Any) -> str | None:
    if isinstance(value, str) and value.strip():
        return value
    return None
