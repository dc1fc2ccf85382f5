from __future__ import annotations

import logging
import re
import subprocess
import sys
import tempfile
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import StrEnum
from importlib import import_module
from pathlib import Path
from typing import Any, Protocol, cast

from youtube_transcript_api import NoTranscriptFound, TranscriptsDisabled, YouTubeTranscriptApi

from podcast_digest.services.http_json import (
    HttpRequestError,
    as_dict,
    as_list,
    coerce_nonempty_string,
    fetch_json,
)
from podcast_digest.services.url_parsing import build_spotify_episode_url, build_youtube_url

LOGGER = logging.getLogger("podcast_digest.transcripts")

SUPADATA_PENDING_JOB_STATUSES: frozenset[str] = frozenset(
    {"queued", "pending", "processing", "running", "in_progress"}
)
YOUTUBE_CAPTIONS_SCOPE = ["https://www.googleapis.com/auth/youtube.force-ssl"]
VTT_TAG_PATTERN = re.compile(r"<[^>]*>")
VTT_CUE_INDEX_PATTERN = re.compile(r"^\d+$")


class TranscriptSourceName(StrEnum):
    SUPADATA = "supadata"
    YOUTUBE_TRANSCRIPT_API = "youtube_transcript_api"
    YT_DLP = "yt_dlp"
    YOUTUBE_CAPTIONS_API = "youtube_captions_api"
    SPOTIFY = "spotify"


@dataclass(frozen=True)
class TranscriptResult:
    text: str
    source: TranscriptSourceName
    available: bool = True
    segments: list[dict[str, Any]] = field(default_factory=list)


class TranscriptSourceError(Exception):
    pass


class SupadataTranscriptError(TranscriptSourceError):
    pass


class TranscriptSource(Protocol):
    @property
    def name(self) -> TranscriptSourceName:
        ...

    def get_transcript(self, video_id: str) -> TranscriptResult | None:
        """Return the transcript, `None` when the source has none for this id."""
        ...


def clean_vtt_text(raw_vtt: str, *, collapse_repeats: bool = False) -> str:
    """
    Reduce a WebVTT document to its spoken text.

    Drops the `WEBVTT` header block, cue timing lines, numeric cue indexes and
    inline markup, then joins what is left with single spaces.
    """
    lines: list[str] = []
    in_header = False
    for raw_line in raw_vtt.splitlines():
        line = raw_line.strip()
        if line.startswith("WEBVTT"):
            in_header = True
            continue
        if in_header:
            if not line:
                in_header = False
            continue
        if not line or "-->" in line or VTT_CUE_INDEX_PATTERN.match(line):
            continue
        text = " ".join(VTT_TAG_PATTERN.sub("", line).split())
        if not text:
            continue
        if collapse_repeats and lines and lines[-1] == text:
            continue
        lines.append(text)
    return " ".join(lines).strip()


class SupadataTranscriptSource:
    """Supadata transcript API; handles both inline results and async jobs."""

    def __init__(
        self,
        *,
        api_key: str,
        base_url: str = "https://api.supadata.ai/v1",
        transcript_mode: str = "native",
        language: str = "en",
        http_timeout_seconds: float = 30.0,
        poll_interval_seconds: float = 1.0,
        poll_max_attempts: int = 30,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._api_key = api_key
        self._base_url = _normalize_supadata_base_url(base_url)
        self._transcript_mode = _normalize_supadata_transcript_mode(transcript_mode)
        self._language = language
        self._http_timeout_seconds = http_timeout_seconds
        self._poll_interval_seconds = poll_interval_seconds
        self._poll_max_attempts = max(1, poll_max_attempts)
        self._sleep = sleep

    @property
    def name(self) -> TranscriptSourceName:
        return TranscriptSourceName.SUPADATA

    def get_transcript(self, video_id: str) -> TranscriptResult | None:
        return self.fetch_for_url(build_youtube_url(video_id), source=self.name)

    def fetch_for_url(
        self,
        media_url: str,
        *,
        source: TranscriptSourceName,
    ) -> TranscriptResult | None:
        status_code, payload = self._fetch(
            f"{self._base_url}/transcript",
            params={
                "url": media_url,
                "text": "false",
                "mode": self._transcript_mode,
                "lang": self._language,
            },
        )
        request_id = _extract_supadata_request_id(payload)

        if status_code == 202:
            job_id = _extract_supadata_job_id(payload)
            if job_id is None:
                raise SupadataTranscriptError(
                    "Supadata transcript job was accepted but no job ID was returned."
                )
            payload, request_id = self._poll_job(job_id)
            status_code = 200

        if status_code >= 400:
            if _is_supadata_transcript_unavailable(payload):
                LOGGER.info(
                    "supadata transcript unavailable url=%s provider_request_id=%s",
                    media_url,
                    request_id,
                )
                return None
            message = _extract_supadata_error_message(payload)
            if message is None:
                message = f"Supadata transcript request failed (status {status_code})."
            raise SupadataTranscriptError(_with_provider_request_id(message, request_id))

        segments = _extract_supadata_segments(payload)
        transcript_text = _extract_supadata_transcript_text(payload, segments=segments)
        if not transcript_text:
            return None
        return TranscriptResult(text=transcript_text, source=source, segments=segments)

    def _poll_job(self, job_id: str) -> tuple[dict[str, Any], str | None]:
        request_id: str | None = None
        for attempt in range(self._poll_max_attempts):
            status_code, payload = self._fetch(f"{self._base_url}/transcript/{job_id}", params=None)
            current_request_id = _extract_supadata_request_id(payload)
            if current_request_id is not None:
                request_id = current_request_id

            if status_code == 206:
                return payload, request_id
            if status_code >= 400:
                message = _extract_supadata_error_message(payload)
                if message is None:
                    message = f"Supadata transcript job failed (status {status_code})."
                raise SupadataTranscriptError(_with_provider_request_id(message, request_id))

            job_status = _extract_supadata_job_status(payload)
            if job_status is not None and job_status in SUPADATA_PENDING_JOB_STATUSES:
                if attempt < self._poll_max_attempts - 1:
                    self._sleep(self._poll_interval_seconds)
                    continue
                break

            return payload, request_id

        raise SupadataTranscriptError(
            _with_provider_request_id(
                "Supadata transcript job timed out before completion.",
                request_id,
            )
        )

    def _fetch(
        self,
        url: str,
        *,
        params: dict[str, str] | None,
    ) -> tuple[int, dict[str, Any]]:
        try:
            return fetch_json(
                url=url,
                timeout_seconds=self._http_timeout_seconds,
                headers={"x-api-key": self._api_key},
                params=params,
            )
        except HttpRequestError as exc:
            raise SupadataTranscriptError(f"Supadata request failed: {exc}") from exc


class YouTubeTranscriptApiSource:
    """Direct scrape of YouTube's timed text through `youtube-transcript-api`."""

    def __init__(
        self,
        *,
        languages: tuple[str, ...] = ("en",),
        api_factory: Callable[[], Any] = YouTubeTranscriptApi,
    ) -> None:
        self._languages = list(languages)
        self._api_factory = api_factory

    @property
    def name(self) -> TranscriptSourceName:
        return TranscriptSourceName.YOUTUBE_TRANSCRIPT_API

    def get_transcript(self, video_id: str) -> TranscriptResult | None:
        api = self._api_factory()
        try:
            transcript_list = api.list(video_id)
        except TranscriptsDisabled:
            LOGGER.info("youtube transcript disabled video_id=%s", video_id)
            return None

        try:
            transcript = transcript_list.find_manually_created_transcript(self._languages)
        except NoTranscriptFound:
            try:
                transcript = transcript_list.find_generated_transcript(self._languages)
            except NoTranscriptFound:
                return None

        segments: list[dict[str, Any]] = []
        for entry in transcript.fetch():
            text = " ".join(str(getattr(entry, "text", "")).split())
            if not text:
                continue
            segments.append(
                {
                    "text": text,
                    "start": float(getattr(entry, "start", 0.0)),
                    "duration": float(getattr(entry, "duration", 0.0)),
                }
            )
        text = " ".join(segment["text"] for segment in segments).strip()
        if not text:
            return None
        return TranscriptResult(text=text, source=self.name, segments=segments)


class YouTubeCaptionsApiSource:
    """Official YouTube Data API captions; needs an OAuth token with caption access."""

    def __init__(self, *, token_path: Path, client_secret_path: Path) -> None:
        self._token_path = token_path
        self._client_secret_path = client_secret_path

    @property
    def name(self) -> TranscriptSourceName:
        return TranscriptSourceName.YOUTUBE_CAPTIONS_API

    def get_transcript(self, video_id: str) -> TranscriptResult | None:
        client = _build_youtube_oauth_client(
            token_path=self._token_path,
            client_secret_path=self._client_secret_path,
        )
        response = as_dict(client.captions().list(part="snippet", videoId=video_id).execute())
        caption_id = select_english_caption_track(as_list(response.get("items")))
        if caption_id is None:
            LOGGER.info("youtube captions no_english_track video_id=%s", video_id)
            return None

        raw_body = client.captions().download(id=caption_id, tfmt="vtt").execute()
        if isinstance(raw_body, bytes):
            raw_vtt = raw_body.decode("utf-8", errors="replace")
        else:
            raw_vtt = str(raw_body)
        text = clean_vtt_text(raw_vtt)
        if not text:
            return None
        return TranscriptResult(text=text, source=self.name)


def select_english_caption_track(items: list[Any]) -> str | None:
    """Prefer the auto-generated (ASR) English track, then any English track."""
    english_tracks: list[tuple[str, str]] = []
    for raw_item in items:
        item = as_dict(raw_item)
        caption_id = coerce_nonempty_string(item.get("id"))
        snippet = as_dict(item.get("snippet"))
        language = (coerce_nonempty_string(snippet.get("language")) or "").lower()
        if caption_id is None or not _is_english(language):
            continue
        track_kind = (coerce_nonempty_string(snippet.get("trackKind")) or "").lower()
        english_tracks.append((caption_id, track_kind))

    for caption_id, track_kind in english_tracks:
        if track_kind == "asr":
            return caption_id
    if english_tracks:
        return english_tracks[0][0]
    return None


class YtDlpTranscriptSource:
    def __init__(self, *, binary: str | None = None, timeout_seconds: float = 120.0) -> None:
        # Without an explicit executable, run the installed yt_dlp package.
        self._launcher = [binary] if binary else [sys.executable, "-m", "yt_dlp"]
        self._timeout_seconds = timeout_seconds

    @property
    def name(self) -> TranscriptSourceName:
        return TranscriptSourceName.YT_DLP

    def get_transcript(self, video_id: str) -> TranscriptResult | None:
        with tempfile.TemporaryDirectory(prefix="podcast-digest-ytdlp-") as work_dir:
            command = [
                *self._launcher,
                "--skip-download",
                "--write-subs",
                "--write-auto-subs",
                "--sub-langs",
                "en.*,en",
                "--sub-format",
                "vtt",
                "--output",
                str(Path(work_dir) / "%(id)s.%(ext)s"),
                build_youtube_url(video_id),
            ]
            try:
                completed = subprocess.run(
                    command,
                    check=False,
                    capture_output=True,
                    text=True,
                    timeout=self._timeout_seconds,
                )
            except (OSError, subprocess.TimeoutExpired) as exc:
                raise TranscriptSourceError(f"yt-dlp could not run: {exc}") from exc
            if completed.returncode != 0:
                stderr = completed.stderr.strip()
                raise TranscriptSourceError(f"yt-dlp failed ({completed.returncode}): {stderr}")

            subtitle_files = sorted(Path(work_dir).glob(f"{video_id}*.vtt"))
            if not subtitle_files:
                return None
            raw_vtt = subtitle_files[0].read_text(encoding="utf-8", errors="replace")

        # Auto captions repeat each line while it scrolls.
        text = clean_vtt_text(raw_vtt, collapse_repeats=True)
        if not text:
            return None
        return TranscriptResult(text=text, source=self.name)


class SpotifyTranscriptSource:
    """
    Experimental Spotify transcripts, fetched through Supadata's universal
    transcript endpoint. This is the only Spotify source.
    """

    def __init__(self, supadata: SupadataTranscriptSource) -> None:
        self._supadata = supadata

    @property
    def name(self) -> TranscriptSourceName:
        return TranscriptSourceName.SPOTIFY

    def get_transcript(self, video_id: str) -> TranscriptResult | None:
        return self._supadata.fetch_for_url(build_spotify_episode_url(video_id), source=self.name)


def _is_english(language: str) -> bool:
    return language == "en" or language.startswith("en-")


def _build_youtube_oauth_client(*, token_path: Path, client_secret_path: Path) -> Any:
    request_cls: Any = import_module("google.auth.transport.requests").Request
    credentials_cls: Any = import_module("google.oauth2.credentials").Credentials
    build_fn: Any = import_module("googleapiclient.discovery").build

    if not token_path.is_file():
        raise TranscriptSourceError(
            f"Missing YouTube OAuth token at {token_path} "
            f"(authorize with the client secret at {client_secret_path})."
        )

    credentials: Any = credentials_cls.from_authorized_user_file(
        str(token_path), YOUTUBE_CAPTIONS_SCOPE
    )
    if not credentials.valid:
        if not (credentials.expired and credentials.refresh_token):
            raise TranscriptSourceError(f"YouTube OAuth token at {token_path} is not usable.")
        try:
            credentials.refresh(request_cls())
        except Exception as exc:
            LOGGER.warning(
                "youtube oauth token_refresh_failed token_path=%s",
                token_path,
                exc_info=True,
            )
            raise TranscriptSourceError(f"Failed to refresh YouTube OAuth token: {exc}") from exc
        token_path.write_text(str(credentials.to_json()), encoding="utf-8")

    return build_fn("youtube", "v3", credentials=credentials, cache_discovery=False)


def _with_provider_request_id(message: str, request_id: str | None) -> str:
    if request_id is None:
        return message
    return f"{message} (supadata_request_id={request_id})"


def _supadata_containers(payload: dict[str, Any]) -> tuple[dict[str, Any], ...]:
    return (payload, as_dict(payload.get("data")), as_dict(payload.get("result")))


def _extract_supadata_transcript_text(
    payload: dict[str, Any],
    *,
    segments: list[dict[str, Any]],
) -> str:
    for container in _supadata_containers(payload):
        for key in ("content", "text", "transcript"):
            candidate = coerce_nonempty_string(container.get(key))
            if candidate is not None:
                return candidate

    # `content` may also arrive as a list of timed chunks.
    return " ".join(segment["text"] for segment in segments).strip()


def _extract_supadata_segments(payload: dict[str, Any]) -> list[dict[str, Any]]:
    for container in _supadata_containers(payload):
        for key in ("content", "segments"):
            segments = _normalize_supadata_segments(container.get(key))
            if segments:
                return segments
    return []


def _normalize_supadata_segments(raw_segments: object) -> list[dict[str, Any]]:
    if not isinstance(raw_segments, list):
        return []

    segments: list[dict[str, Any]] = []
    for raw_segment in cast(list[Any], raw_segments):
        segment = as_dict(raw_segment)
        text = coerce_nonempty_string(segment.get("text")) or coerce_nonempty_string(
            segment.get("content")
        )
        if text is None:
            continue

        normalized: dict[str, Any] = {"text": text}
        start = _coerce_segment_time(segment.get("offset"), milliseconds=True)
        if start is None:
            start = _coerce_segment_time(segment.get("start"), milliseconds=False)
        if start is not None:
            normalized["start"] = start
        duration = _coerce_segment_time(segment.get("duration"), milliseconds=True)
        if duration is not None:
            normalized["duration"] = duration
        segments.append(normalized)
    return segments


def _coerce_segment_time(raw_value: object, *, milliseconds: bool) -> float | None:
    if isinstance(raw_value, bool) or not isinstance(raw_value, int | float | str):
        return None
    try:
        seconds = float(raw_value) / (1000.0 if milliseconds else 1.0)
    except ValueError:
        return None
    return max(0.0, seconds)


def _first_supadata_string(payload: dict[str, Any], *keys: str) -> str | None:
    for container in _supadata_containers(payload):
        for key in keys:
            value = container.get(key)
            # Errors arrive either as a string or as `{"message": ...}`.
            text = coerce_nonempty_string(value) or coerce_nonempty_string(
                as_dict(value).get("message")
            )
            if text is not None:
                return text
    return None


def _extract_supadata_job_id(payload: dict[str, Any]) -> str | None:
    return _first_supadata_string(payload, "jobId", "job_id", "id")


def _extract_supadata_job_status(payload: dict[str, Any]) -> str | None:
    status = _first_supadata_string(payload, "status")
    return status.lower() if status is not None else None


def _extract_supadata_error_message(payload: dict[str, Any]) -> str | None:
    return _first_supadata_string(payload, "message", "detail", "error")


def _extract_supadata_request_id(payload: dict[str, Any]) -> str | None:
    return _first_supadata_string(payload, "_request_id", "request_id", "requestId")


def _is_supadata_transcript_unavailable(payload: dict[str, Any]) -> bool:
    for container in _supadata_containers(payload):
        for key in ("error", "message", "detail", "details"):
            value = container.get(key)
            if not isinstance(value, str):
                continue
            normalized = value.strip().lower()
            if "transcript-unavailable" in normalized or "transcript unavailable" in normalized:
                return True
    return False


def _normalize_supadata_transcript_mode(raw_value: str) -> str:
    normalized = raw_value.strip().lower()
    if normalized in {"native", "auto", "generate"}:
        return normalized
    return "native"


def _normalize_supadata_base_url(raw_value: str) -> str:
    trimmed = raw_value.strip()
    if not trimmed:
        return "https://api.supadata.ai/v1"
    return trimmed.rstrip("/")
