from __future__ import annotations

from collections.abc import Iterator
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from podcast_digest.dependencies import reset_cached_dependencies
from podcast_digest.main import create_app

_SECRET_ENV_VARS: tuple[str, ...] = (
    "PODCAST_DIGEST_ANTHROPIC_API_KEY",
    "PODCAST_DIGEST_SUPADATA_API_KEY",
    "PODCAST_DIGEST_YOUTUBE_API_KEY",
    "PODCAST_DIGEST_SPOTIFY_CLIENT_ID",
    "PODCAST_DIGEST_SPOTIFY_CLIENT_SECRET",
)


@pytest.fixture(autouse=True)
def _isolated_secrets(monkeypatch: pytest.MonkeyPatch) -> None:  # pyright: ignore[reportUnusedFunction]
    for name in _SECRET_ENV_VARS:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def client(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Iterator[TestClient]:
    data_dir = tmp_path / "runtime-data"
    data_dir.mkdir(parents=True, exist_ok=True)

    monkeypatch.setenv("PODCAST_DIGEST_DATA_DIR", str(data_dir))
    monkeypatch.setenv("PODCAST_DIGEST_ENVIRONMENT", "development")
    monkeypatch.setenv("PODCAST_DIGEST_WORKER_ENABLED", "0")
    monkeypatch.setenv("PODCAST_DIGEST_TELEMETRY_SINK", "none")
    monkeypatch.setenv("PODCAST_DIGEST_YOUTUBE_API_KEY", "test-youtube-key")
    monkeypatch.setenv("PODCAST_DIGEST_SPOTIFY_CLIENT_ID", "test-spotify-id")
    monkeypatch.setenv("PODCAST_DIGEST_SPOTIFY_CLIENT_SECRET", "test-spotify-secret")
    reset_cached_dependencies()

    app = create_app()
    with TestClient(app) as test_client:
        yield test_client

    reset_cached_dependencies()
