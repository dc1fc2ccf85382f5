from __future__ import annotations

import logging
import re
from collections.abc import Callable
from importlib import import_module
from typing import Any

from podcast_digest.errors import PlatformError
from podcast_digest.models.metadata import PlatformMetadata, YouTubeVideoDetails
from podcast_digest.models.status import Platform
from podcast_digest.services.http_json import (
    as_dict,
    as_list,
    coerce_int,
    coerce_nonempty_string,
)
from podcast_digest.services.url_parsing import (
    YOUTUBE_VIDEO_ID_PATTERN,
    build_youtube_url,
    extract_youtube_video_id,
)

LOGGER = logging.getLogger("podcast_digest.youtube")

ISO8601_DURATION_PATTERN = re.compile(
    r"^P(?:(?P<days>\d+)D)?(?:T(?:(?P<hours>\d+)H)?(?:(?P<minutes>\d+)M)?(?:(?P<seconds>\d+)S)?)?$"
)
_THUMBNAIL_PREFERENCE: tuple[str, ...] = ("high", "medium", "default", "standard", "maxres")


def parse_duration(raw_value: object) -> int:
    """Convert `PT#H#M#S` notation to seconds; anything unparseable is 0."""
    if not isinstance(raw_value, str):
        return 0
    normalized = raw_value.strip().upper()
    if not normalized or normalized in {"P", "PT"}:
        return 0
    matched = ISO8601_DURATION_PATTERN.match(normalized)
    if matched is None:
        return 0

    days = int(matched.group("days") or 0)
    hours = int(matched.group("hours") or 0)
    minutes = int(matched.group("minutes") or 0)
    seconds = int(matched.group("seconds") or 0)
    return days * 86_400 + hours * 3_600 + minutes * 60 + seconds


class YouTubeClient:
    def __init__(self, *, api_key: str | None) -> None:
        self._api_key = api_key

    @property
    def configured(self) -> bool:
        return self._api_key is not None

    def get_info(self, url_or_id: str) -> PlatformMetadata:
        video_id = _resolve_video_id(url_or_id)
        if video_id is None:
            raise PlatformError(
                "Invalid YouTube URL.",
                platform=Platform.YOUTUBE,
                code="INVALID_URL",
                context={"url": url_or_id},
            )

        details = self.get_videos([video_id])
        if not details:
            raise PlatformError(
                "YouTube video not found.",
                platform=Platform.YOUTUBE,
                code="VIDEO_NOT_FOUND",
                context={"video_id": video_id},
            )

        video = details[0]
        return PlatformMetadata(
            platform=Platform.YOUTUBE,
            platform_id=video.video_id,
            url=build_youtube_url(video.video_id),
            title=video.title,
            show_name=video.channel_title,
            duration_seconds=video.duration_seconds,
            thumbnail_url=video.thumbnail_url,
        )

    def search(self, query: str, *, max_results: int = 5) -> list[str]:
        payload = self._execute(
            "search",
            lambda client: client.search().list(
                part="snippet",
                type="video",
                q=query,
                maxResults=max(1, min(max_results, 50)),
            ),
        )
        video_ids: list[str] = []
        for raw_item in as_list(payload.get("items")):
            item_id = as_dict(as_dict(raw_item).get("id"))
            video_id = coerce_nonempty_string(item_id.get("videoId"))
            if video_id is not None and video_id not in video_ids:
                video_ids.append(video_id)
        LOGGER.debug("youtube search query=%s results=%s", query, len(video_ids))
        return video_ids

    def get_videos(self, video_ids: list[str]) -> list[YouTubeVideoDetails]:
        if not video_ids:
            return []
        payload = self._execute(
            "videos",
            lambda client: client.videos().list(
                part="snippet,contentDetails,statistics",
                id=",".join(video_ids),
            ),
        )
        by_id: dict[str, YouTubeVideoDetails] = {}
        for raw_item in as_list(payload.get("items")):
            details = _parse_video_item(as_dict(raw_item))
            if details is not None:
                by_id[details.video_id] = details
        # Keep the caller's (search result) order.
        return [by_id[video_id] for video_id in video_ids if video_id in by_id]

    def _execute(self, operation: str, build_request: Callable[[Any], Any]) -> dict[str, Any]:
        if self._api_key is None:
            raise PlatformError(
                "YouTube API key is missing. Set PODCAST_DIGEST_YOUTUBE_API_KEY.",
                platform=Platform.YOUTUBE,
                code="API_ERROR",
                context={"operation": operation},
            )
        build_fn: Any = import_module("googleapiclient.discovery").build
        http_error_cls: Any = import_module("googleapiclient.errors").HttpError

        # Built per call: the underlying httplib2 transport is not thread-safe.
        client = build_fn("youtube", "v3", developerKey=self._api_key, cache_discovery=False)
        try:
            return as_dict(build_request(client).execute())
        except http_error_cls as exc:
            status_code = coerce_int(getattr(getattr(exc, "resp", None), "status", None)) or 0
            message = _http_error_message(exc)
            LOGGER.warning(
                "youtube api error operation=%s status=%s message=%s",
                operation,
                status_code,
                message,
            )
            raise PlatformError(
                f"YouTube API error: {message}",
                platform=Platform.YOUTUBE,
                code="API_ERROR",
                context={"operation": operation, "status_code": status_code},
            ) from exc
        except OSError as exc:
            raise PlatformError(
                f"YouTube API request failed: {exc}",
                platform=Platform.YOUTUBE,
                code="API_ERROR",
                context={"operation": operation},
            ) from exc


def _resolve_video_id(url_or_id: str) -> str | None:
    candidate = url_or_id.strip()
    if YOUTUBE_VIDEO_ID_PATTERN.match(candidate):
        return candidate
    return extract_youtube_video_id(candidate)


def _parse_video_item(item: dict[str, Any]) -> YouTubeVideoDetails | None:
    video_id = coerce_nonempty_string(item.get("id"))
    if video_id is None:
        return None
    snippet = as_dict(item.get("snippet"))
    content_details = as_dict(item.get("contentDetails"))
    statistics = as_dict(item.get("statistics"))
    return YouTubeVideoDetails(
        video_id=video_id,
        title=coerce_nonempty_string(snippet.get("title")) or video_id,
        channel_title=coerce_nonempty_string(snippet.get("channelTitle")) or "",
        duration_seconds=parse_duration(content_details.get("duration")),
        view_count=coerce_int(statistics.get("viewCount")),
        thumbnail_url=_extract_thumbnail_url(snippet),
    )


def _extract_thumbnail_url(snippet: dict[str, Any]) -> str | None:
    thumbnails = as_dict(snippet.get("thumbnails"))
    for quality in _THUMBNAIL_PREFERENCE:
        url_value = coerce_nonempty_string(as_dict(thumbnails.get(quality)).get("url"))
        if url_value is not None:
            return url_value
    return None


def _http_error_message(exc: Exception) -> str:
    reason = coerce_nonempty_string(getattr(exc, "reason", None))
    return reason or str(exc)
