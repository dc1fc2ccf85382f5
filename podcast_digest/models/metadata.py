from __future__ import annotations

from dataclasses import dataclass

from podcast_digest.models.status import Platform


@dataclass(frozen=True)
class PlatformMetadata:
    platform: Platform
    platform_id: str
    url: str
    title: str
    show_name: str
    duration_seconds: int
    thumbnail_url: str | None = None


@dataclass(frozen=True)
class YouTubeVideoDetails:
    video_id: str
    title: str
    channel_title: str
    duration_seconds: int
    view_count: int | None = None
    thumbnail_url: str | None = None

    @property
    def url(self) -> str:
        return f"https://www.youtube.com/watch?v={self.video_id}"
