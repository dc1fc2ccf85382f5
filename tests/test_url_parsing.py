from __future__ import annotations

import pytest

from podcast_digest.models.status import Platform
from podcast_digest.services.url_parsing import (
    build_spotify_episode_url,
    build_youtube_url,
    detect_platform,
    extract_spotify_episode_id,
    extract_youtube_video_id,
    is_spotify_url,
    is_youtube_url,
)

VIDEO_ID = "dQw4w9WgXcQ"
EPISODE_ID = "4rOoJ6Egrf8K2IrywzwOMk"


@pytest.mark.parametrize(
    "url",
    [
        f"https://www.youtube.com/watch?v={VIDEO_ID}",
        f"https://www.youtube.com/watch?feature=share&v={VIDEO_ID}",
        f"https://m.youtube.com/watch?v={VIDEO_ID}&t=42",
        f"https://youtu.be/{VIDEO_ID}",
        f"https://youtu.be/{VIDEO_ID}?si=tracking",
        f"https://www.youtube.com/embed/{VIDEO_ID}",
        f"https://www.youtube.com/shorts/{VIDEO_ID}",
        f"https://www.youtube.com/v/{VIDEO_ID}?version=3",
        f"https://www.youtube.com/live/{VIDEO_ID}",
        f"http://www.youtube.com/ytscreeningroom?v={VIDEO_ID}",
        f"youtube.com/watch?v={VIDEO_ID}",
        f"  https://www.youtube.com/watch?v={VIDEO_ID}  ",
    ],
)
def test_extract_youtube_video_id_accepts_known_layouts(url: str) -> None:
    assert extract_youtube_video_id(url) == VIDEO_ID


def test_extract_youtube_video_id_uses_fallback_for_legacy_user_urls() -> None:
    url = "http://www.youtube.com/user/Scobleizer#p/u/1/1p3vcRhsYGo"
    assert extract_youtube_video_id(url) == "1p3vcRhsYGo"


@pytest.mark.parametrize(
    "url",
    [
        "",
        "https://youtu.be/",
        "https://www.youtube.com/watch?v=tooShort",
        "https://www.youtube.com/",
        f"https://example.com/watch?v={VIDEO_ID}",
        "not a url at all",
    ],
)
def test_extract_youtube_video_id_rejects_invalid_urls(url: str) -> None:
    assert extract_youtube_video_id(url) is None


@pytest.mark.parametrize(
    "url",
    [
        f"https://open.spotify.com/episode/{EPISODE_ID}",
        f"https://open.spotify.com/episode/{EPISODE_ID}?si=abc123",
        f"https://open.spotify.com/intl-de/episode/{EPISODE_ID}",
        f"spotify:episode:{EPISODE_ID}",
    ],
)
def test_extract_spotify_episode_id(url: str) -> None:
    assert extract_spotify_episode_id(url) == EPISODE_ID


@pytest.mark.parametrize(
    "url",
    [
        "https://open.spotify.com/show/2MAi0BvDc6GTFvKFPXnkCL",
        "https://open.spotify.com/episode/",
        f"https://example.com/episode/{EPISODE_ID}",
        "spotify:track:4uLU6hMCjMI75M1A2tKUQC",
    ],
)
def test_extract_spotify_episode_id_rejects_other_urls(url: str) -> None:
    assert extract_spotify_episode_id(url) is None


def test_detect_platform() -> None:
    assert detect_platform(f"https://youtu.be/{VIDEO_ID}") == Platform.YOUTUBE
    assert detect_platform(f"https://open.spotify.com/episode/{EPISODE_ID}") == Platform.SPOTIFY
    assert detect_platform(f"spotify:episode:{EPISODE_ID}") == Platform.SPOTIFY
    assert detect_platform("https://vimeo.com/123") is None
    assert detect_platform("") is None
    assert is_youtube_url(f"https://www.youtube.com/watch?v={VIDEO_ID}")
    assert is_spotify_url(f"https://open.spotify.com/episode/{EPISODE_ID}")
    assert not is_spotify_url(f"https://www.youtube.com/watch?v={VIDEO_ID}")


def test_canonical_url_builders_round_trip_through_extractors() -> None:
    assert extract_youtube_video_id(build_youtube_url(VIDEO_ID)) == VIDEO_ID
    assert extract_spotify_episode_id(build_spotify_episode_url(EPISODE_ID)) == EPISODE_ID
