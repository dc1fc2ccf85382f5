from __future__ import annotations

from typing import Any, Protocol

from podcast_digest.models.status import ProcessingStatus
from podcast_digest.repositories.podcast_repository import FailedYouTubeSearch, PodcastRecord
from podcast_digest.repositories.summary_repository import SummaryRecord


class SummaryStore(Protocol):
    def get_summary(self, summary_id: str) -> SummaryRecord | None:
        ...

    def update_summary_status(
        self,
        summary_id: str,
        status: ProcessingStatus,
        error: str | None = None,
        *,
        expected_status: ProcessingStatus | None = None,
    ) -> bool:
        ...

    def append_summary(
        self,
        summary_id: str,
        text: str,
        *,
        status: ProcessingStatus | None = None,
    ) -> bool:
        ...

    def list_in_progress(self, limit: int = 500) -> list[SummaryRecord]:
        ...


class PodcastStore(Protocol):
    def get_podcast(self, podcast_id: str) -> PodcastRecord | None:
        ...

    def update_podcast(self, podcast_id: str, **fields: Any) -> PodcastRecord:
        ...

    def set_youtube_url_once(self, podcast_id: str, youtube_url: str) -> bool:
        ...

    def find_podcast_by_url(self, url: str) -> PodcastRecord | None:
        ...


class FailedSearchLog(Protocol):
    def log_failed_youtube_search(self, record: FailedYouTubeSearch) -> str:
        ...
