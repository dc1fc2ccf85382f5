from __future__ import annotations

import types
from typing import Any

import pytest

from podcast_digest.errors import PlatformError
from podcast_digest.models.status import Platform
from podcast_digest.services.youtube_client import YouTubeClient, parse_duration

VIDEO_ID = "dQw4w9WgXcQ"


def _video_item(
    video_id: str,
    *,
    title: str,
    duration: str = "PT10M",
    views: str = "1234",
) -> dict[str, Any]:
    return {
        "id": video_id,
        "snippet": {
            "title": title,
            "channelTitle": "Test Channel",
            "thumbnails": {
                "default": {"url": f"https://i.ytimg.com/vi/{video_id}/default.jpg"},
                "high": {"url": f"https://i.ytimg.com/vi/{video_id}/hqdefault.jpg"},
            },
        },
        "contentDetails": {"duration": duration},
        "statistics": {"viewCount": views},
    }


class _FakeHttpError(Exception):
    def __init__(self, status: int, reason: str) -> None:
        super().__init__(f"<HttpError {status} {reason}>")
        self.resp = types.SimpleNamespace(status=status)
        self.reason = reason


class _FakeRequest:
    def __init__(self, result: dict[str, Any] | Exception) -> None:
        self._result = result

    def execute(self) -> dict[str, Any]:
        if isinstance(self._result, Exception):
            raise self._result
        return self._result


class _FakeYouTubeApi:
    """Stands in for `googleapiclient.discovery.build("youtube", "v3", ...)`."""

    def __init__(self, responses: list[dict[str, Any] | Exception]) -> None:
        self._responses = list(responses)
        self.build_kwargs: list[dict[str, Any]] = []
        self.calls: list[tuple[str, dict[str, Any]]] = []
        self._resource = ""

    def build(self, service_name: str, version: str, **kwargs: Any) -> _FakeYouTubeApi:
        assert (service_name, version) == ("youtube", "v3")
        self.build_kwargs.append(kwargs)
        return self

    def search(self) -> _FakeYouTubeApi:
        self._resource = "search"
        return self

    def videos(self) -> _FakeYouTubeApi:
        self._resource = "videos"
        return self

    def list(self, **kwargs: Any) -> _FakeRequest:
        self.calls.append((self._resource, kwargs))
        return _FakeRequest(self._responses.pop(0))


def _install(monkeypatch: pytest.MonkeyPatch, api: _FakeYouTubeApi) -> None:
    def fake_import_module(name: str) -> object:
        if name == "googleapiclient.discovery":
            return types.SimpleNamespace(build=api.build)
        if name == "googleapiclient.errors":
            return types.SimpleNamespace(HttpError=_FakeHttpError)
        raise AssertionError(f"Unexpected module import: {name}")

    monkeypatch.setattr("podcast_digest.services.youtube_client.import_module", fake_import_module)


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("PT1H2M3S", 3723),
        ("PT45S", 45),
        ("PT10M", 600),
        ("P1DT1H", 90_000),
        ("pt2m", 120),
        ("PT", 0),
        ("P", 0),
        ("", 0),
        ("1:02:03", 0),
        (None, 0),
    ],
)
def test_parse_duration(raw: object, expected: int) -> None:
    assert parse_duration(raw) == expected


def test_get_info_maps_video_metadata(monkeypatch: pytest.MonkeyPatch) -> None:
    api = _FakeYouTubeApi([{"items": [_video_item(VIDEO_ID, title="Episode 12")]}])
    _install(monkeypatch, api)
    client = YouTubeClient(api_key="test-key")

    metadata = client.get_info(f"https://youtu.be/{VIDEO_ID}")

    assert metadata.platform == Platform.YOUTUBE
    assert metadata.platform_id == VIDEO_ID
    assert metadata.url == f"https://www.youtube.com/watch?v={VIDEO_ID}"
    assert metadata.title == "Episode 12"
    assert metadata.show_name == "Test Channel"
    assert metadata.duration_seconds == 600
    assert metadata.thumbnail_url == f"https://i.ytimg.com/vi/{VIDEO_ID}/hqdefault.jpg"

    assert api.build_kwargs == [{"developerKey": "test-key", "cache_discovery": False}]
    assert api.calls == [
        ("videos", {"part": "snippet,contentDetails,statistics", "id": VIDEO_ID}),
    ]


def test_get_info_rejects_invalid_url_without_calling_api(monkeypatch: pytest.MonkeyPatch) -> None:
    api = _FakeYouTubeApi([])
    _install(monkeypatch, api)
    client = YouTubeClient(api_key="test-key")

    with pytest.raises(PlatformError) as exc_info:
        client.get_info("https://www.youtube.com/watch?v=nope")

    assert exc_info.value.code == "INVALID_URL"
    assert exc_info.value.platform == Platform.YOUTUBE
    assert api.calls == []


def test_get_info_raises_not_found_for_empty_items(monkeypatch: pytest.MonkeyPatch) -> None:
    _install(monkeypatch, _FakeYouTubeApi([{"items": []}]))
    client = YouTubeClient(api_key="test-key")

    with pytest.raises(PlatformError) as exc_info:
        client.get_info(VIDEO_ID)

    assert exc_info.value.code == "VIDEO_NOT_FOUND"


def test_http_error_maps_to_api_error(monkeypatch: pytest.MonkeyPatch) -> None:
    _install(monkeypatch, _FakeYouTubeApi([_FakeHttpError(403, "quotaExceeded")]))
    client = YouTubeClient(api_key="test-key")

    with pytest.raises(PlatformError) as exc_info:
        client.get_info(VIDEO_ID)

    assert exc_info.value.code == "API_ERROR"
    assert "quotaExceeded" in str(exc_info.value)
    assert exc_info.value.context["status_code"] == 403


def test_transport_failure_maps_to_api_error(monkeypatch: pytest.MonkeyPatch) -> None:
    _install(monkeypatch, _FakeYouTubeApi([TimeoutError("timed out")]))
    client = YouTubeClient(api_key="test-key")

    with pytest.raises(PlatformError) as exc_info:
        client.get_info(VIDEO_ID)

    assert exc_info.value.code == "API_ERROR"
    assert "timed out" in str(exc_info.value)


def test_missing_api_key_is_api_error() -> None:
    client = YouTubeClient(api_key=None)

    assert client.configured is False
    with pytest.raises(PlatformError) as exc_info:
        client.search("anything")
    assert exc_info.value.code == "API_ERROR"


def test_search_returns_unique_video_ids(monkeypatch: pytest.MonkeyPatch) -> None:
    api = _FakeYouTubeApi(
        [
            {
                "items": [
                    {"id": {"kind": "youtube#video", "videoId": "aaaaaaaaaaa"}},
                    {"id": {"kind": "youtube#video", "videoId": "bbbbbbbbbbb"}},
                    {"id": {"kind": "youtube#video", "videoId": "aaaaaaaaaaa"}},
                    {"id": {"kind": "youtube#channel", "channelId": "UC123"}},
                ]
            }
        ]
    )
    _install(monkeypatch, api)
    client = YouTubeClient(api_key="test-key")

    assert client.search("some episode podcast", max_results=5) == ["aaaaaaaaaaa", "bbbbbbbbbbb"]
    assert api.calls == [
        (
            "search",
            {"part": "snippet", "type": "video", "q": "some episode podcast", "maxResults": 5},
        )
    ]


def test_get_videos_keeps_requested_order(monkeypatch: pytest.MonkeyPatch) -> None:
    api = _FakeYouTubeApi(
        [
            {
                "items": [
                    _video_item("bbbbbbbbbbb", title="Second", views="10"),
                    _video_item("aaaaaaaaaaa", title="First", duration="PT1H"),
                ]
            }
        ]
    )
    _install(monkeypatch, api)
    client = YouTubeClient(api_key="test-key")

    videos = client.get_videos(["aaaaaaaaaaa", "ccccccccccc", "bbbbbbbbbbb"])

    assert [video.video_id for video in videos] == ["aaaaaaaaaaa", "bbbbbbbbbbb"]
    assert videos[0].duration_seconds == 3600
    assert videos[1].view_count == 10
    assert api.calls[0][1]["id"] == "aaaaaaaaaaa,ccccccccccc,bbbbbbbbbbb"


def test_get_videos_with_no_ids_skips_the_api(monkeypatch: pytest.MonkeyPatch) -> None:
    api = _FakeYouTubeApi([])
    _install(monkeypatch, api)

    assert YouTubeClient(api_key="test-key").get_videos([]) == []
    assert api.build_kwargs == []
