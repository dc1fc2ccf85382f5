from __future__ import annotations

import sqlite3
from dataclasses import dataclass
from typing import Any
from uuid import uuid4

from podcast_digest.errors import RecordNotFoundError
from podcast_digest.models.metadata import PlatformMetadata
from podcast_digest.models.status import Platform
from podcast_digest.repositories.common import utc_now_iso
from podcast_digest.repositories.database import Database, none_if_empty

UPDATABLE_PODCAST_FIELDS: frozenset[str] = frozenset(
    {
        "youtube_url",
        "title",
        "show_name",
        "transcript",
        "has_transcript",
        "thumbnail_url",
        "duration",
    }
)


@dataclass(frozen=True)
class PodcastRecord:
    id: str
    url: str
    platform: Platform
    youtube_url: str | None
    title: str
    show_name: str
    transcript: str | None
    has_transcript: bool
    thumbnail_url: str | None
    duration: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "url": self.url,
            "platform": self.platform.value,
            "youtube_url": self.youtube_url,
            "title": self.title,
            "show_name": self.show_name,
            "has_transcript": self.has_transcript,
            "thumbnail_url": self.thumbnail_url,
            "duration": self.duration,
        }


@dataclass(frozen=True)
class FailedYouTubeSearch:
    search_query: str
    spotify_show_name: str
    spotify_title: str
    spotify_url: str
    resolved_youtube_url: str | None = None
    resolved: bool = False
    created_at: str | None = None


class PodcastRepository:
    def __init__(self, db: Database) -> None:
        self._db = db

    def create_podcast(
        self,
        metadata: PlatformMetadata,
        *,
        url: str,
        podcast_id: str | None = None,
    ) -> PodcastRecord:
        resolved_id = podcast_id or str(uuid4())
        youtube_url = metadata.url if metadata.platform == Platform.YOUTUBE else None
        now = utc_now_iso()
        with self._db.connection("create_podcast") as conn:
            conn.execute(
                """
                INSERT INTO podcasts
                (id, url, platform, youtube_url, title, show_name, transcript,
                 has_transcript, thumbnail_url, duration, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, NULL, 0, ?, ?, ?, ?)
                """,
                (
                    resolved_id,
                    url,
                    metadata.platform.value,
                    youtube_url,
                    metadata.title,
                    metadata.show_name,
                    metadata.thumbnail_url,
                    metadata.duration_seconds,
                    now,
                    now,
                ),
            )
        return self._require(resolved_id)

    def get_podcast(self, podcast_id: str) -> PodcastRecord | None:
        with self._db.connection("get_podcast") as conn:
            row = conn.execute("SELECT * FROM podcasts WHERE id = ?", (podcast_id,)).fetchone()
        if row is None:
            return None
        return _row_to_podcast(row)

    def find_podcast_by_url(self, url: str) -> PodcastRecord | None:
        with self._db.connection("find_podcast_by_url") as conn:
            row = conn.execute(
                "SELECT * FROM podcasts WHERE url = ? ORDER BY created_at ASC LIMIT 1",
                (url,),
            ).fetchone()
        if row is None:
            return None
        return _row_to_podcast(row)

    def update_podcast(self, podcast_id: str, **fields: Any) -> PodcastRecord:
        unknown = sorted(set(fields) - UPDATABLE_PODCAST_FIELDS)
        if unknown:
            raise ValueError(f"Unsupported podcast fields: {', '.join(unknown)}")
        if not fields:
            return self._require(podcast_id)

        assignments = [f"{name} = ?" for name in fields]
        params: list[Any] = [
            int(value) if name == "has_transcript" else value for name, value in fields.items()
        ]
        with self._db.connection("update_podcast") as conn:
            cursor = conn.execute(
                f"UPDATE podcasts SET {', '.join(assignments)}, updated_at = ? WHERE id = ?",
                (*params, utc_now_iso(), podcast_id),
            )
            if cursor.rowcount == 0:
                raise RecordNotFoundError("podcast", podcast_id)
        return self._require(podcast_id)

    def set_youtube_url_once(self, podcast_id: str, youtube_url: str) -> bool:
        with self._db.connection("set_youtube_url_once") as conn:
            cursor = conn.execute(
                """
                UPDATE podcasts
                SET youtube_url = ?, updated_at = ?
                WHERE id = ? AND youtube_url IS NULL
                """,
                (youtube_url, utc_now_iso(), podcast_id),
            )
        return cursor.rowcount > 0

    def log_failed_youtube_search(self, record: FailedYouTubeSearch) -> str:
        record_id = str(uuid4())
        with self._db.connection("log_failed_youtube_search") as conn:
            conn.execute(
                """
                INSERT INTO failed_youtube_searches
                (id, search_query, spotify_show_name, spotify_title, spotify_url,
                 resolved_youtube_url, resolved, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    record_id,
                    record.search_query,
                    record.spotify_show_name,
                    record.spotify_title,
                    record.spotify_url,
                    record.resolved_youtube_url,
                    int(record.resolved),
                    record.created_at or utc_now_iso(),
                ),
            )
        return record_id

    def list_failed_youtube_searches(self, limit: int = 100) -> list[FailedYouTubeSearch]:
        with self._db.connection("list_failed_youtube_searches") as conn:
            rows = conn.execute(
                """
                SELECT *
                FROM failed_youtube_searches
                ORDER BY created_at DESC
                LIMIT ?
                """,
                (limit,),
            ).fetchall()
        return [
            FailedYouTubeSearch(
                search_query=str(row["search_query"]),
                spotify_show_name=str(row["spotify_show_name"]),
                spotify_title=str(row["spotify_title"]),
                spotify_url=str(row["spotify_url"]),
                resolved_youtube_url=none_if_empty(row["resolved_youtube_url"]),
                resolved=bool(row["resolved"]),
                created_at=str(row["created_at"]),
            )
            for row in rows
        ]

    def _require(self, podcast_id: str) -> PodcastRecord:
        podcast = self.get_podcast(podcast_id)
        if podcast is None:
            raise RecordNotFoundError("podcast", podcast_id)
        return podcast


def _row_to_podcast(row: sqlite3.Row) -> PodcastRecord:
    return PodcastRecord(
        id=str(row["id"]),
        url=str(row["url"]),
        platform=Platform(str(row["platform"])),
        youtube_url=none_if_empty(row["youtube_url"]),
        title=str(row["title"]),
        show_name=str(row["show_name"]),
        transcript=none_if_empty(row["transcript"]),
        has_transcript=bool(row["has_transcript"]),
        thumbnail_url=none_if_empty(row["thumbnail_url"]),
        duration=int(row["duration"] or 0),
    )
