from __future__ import annotations

import re
from urllib.parse import parse_qs, urlparse

from podcast_digest.models.status import Platform

YOUTUBE_VIDEO_ID_PATTERN = re.compile(r"^[A-Za-z0-9_-]{11}$")
# Catch-all for layouts the structured parser does not know about, e.g.
# `youtube.com/user/<name>#p/u/1/<id>`.
YOUTUBE_FALLBACK_PATTERN = re.compile(
    r"(?:youtube\.com/(?:[^/]+/.+/|(?:v|e(?:mbed)?)/|.*[?&]v=)|youtu\.be/)([^\"&?/\s]{11})"
)
SPOTIFY_URI_PATTERN = re.compile(r"^spotify:episode:([A-Za-z0-9]+)$")
SPOTIFY_ID_PATTERN = re.compile(r"^[A-Za-z0-9]+$")

_YOUTUBE_HOSTS: frozenset[str] = frozenset(
    {
        "youtube.com",
        "m.youtube.com",
        "music.youtube.com",
        "youtube-nocookie.com",
    }
)
_YOUTUBE_SHORT_HOSTS: frozenset[str] = frozenset({"youtu.be"})
_YOUTUBE_PATH_PREFIXES: frozenset[str] = frozenset({"embed", "shorts", "v", "e", "live"})
_SPOTIFY_HOSTS: frozenset[str] = frozenset({"open.spotify.com", "spotify.com", "play.spotify.com"})


def extract_youtube_video_id(url: str) -> str | None:
    candidate = url.strip() if isinstance(url, str) else ""
    if not candidate:
        return None

    host, path, query = _split_url(candidate)
    if host in _YOUTUBE_SHORT_HOSTS:
        segments = _path_segments(path)
        return _valid_youtube_id(segments[0] if segments else None)

    if host in _YOUTUBE_HOSTS:
        segments = _path_segments(path)
        if segments and segments[0] in _YOUTUBE_PATH_PREFIXES:
            return _valid_youtube_id(segments[1] if len(segments) > 1 else None)

        # Covers `/watch?v=` and the legacy `/ytscreeningroom?v=` page.
        values = parse_qs(query).get("v")
        if values:
            return _valid_youtube_id(values[0])

    matched = YOUTUBE_FALLBACK_PATTERN.search(candidate)
    if matched is None:
        return None
    return _valid_youtube_id(matched.group(1))


def extract_spotify_episode_id(url: str) -> str | None:
    candidate = url.strip() if isinstance(url, str) else ""
    if not candidate:
        return None

    uri_match = SPOTIFY_URI_PATTERN.match(candidate)
    if uri_match is not None:
        return uri_match.group(1)

    host, path, _ = _split_url(candidate)
    if host not in _SPOTIFY_HOSTS:
        return None

    segments = _path_segments(path)
    for index, segment in enumerate(segments[:-1]):
        if segment == "episode":
            episode_id = segments[index + 1]
            if SPOTIFY_ID_PATTERN.match(episode_id):
                return episode_id
            return None
    return None


def detect_platform(url: str) -> Platform | None:
    candidate = url.strip() if isinstance(url, str) else ""
    if not candidate:
        return None
    if candidate.startswith("spotify:"):
        return Platform.SPOTIFY

    host, _, _ = _split_url(candidate)
    if host in _YOUTUBE_HOSTS or host in _YOUTUBE_SHORT_HOSTS:
        return Platform.YOUTUBE
    if host in _SPOTIFY_HOSTS:
        return Platform.SPOTIFY
    return None


def is_youtube_url(url: str) -> bool:
    return detect_platform(url) == Platform.YOUTUBE


def is_spotify_url(url: str) -> bool:
    return detect_platform(url) == Platform.SPOTIFY


def build_youtube_url(video_id: str) -> str:
    return f"https://www.youtube.com/watch?v={video_id}"


def build_spotify_episode_url(episode_id: str) -> str:
    return f"https://open.spotify.com/episode/{episode_id}"


def _split_url(candidate: str) -> tuple[str, str, str]:
    with_scheme = candidate if "://" in candidate else f"https://{candidate}"
    try:
        parsed = urlparse(with_scheme)
        raw_host = parsed.hostname or ""
    except ValueError:
        return "", "", ""

    host = raw_host.lower()
    if host.startswith("www."):
        host = host[4:]
    return host, parsed.path, parsed.query


def _path_segments(path: str) -> list[str]:
    return [segment for segment in path.split("/") if segment]


def _valid_youtube_id(raw_value: str | None) -> str | None:
    if raw_value is None:
        return None
    video_id = raw_value.strip()
    if YOUTUBE_VIDEO_ID_PATTERN.match(video_id):
        return video_id
    return None
