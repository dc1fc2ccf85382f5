from __future__ import annotations

import base64
import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from podcast_digest.errors import PlatformError
from podcast_digest.models.metadata import PlatformMetadata
from podcast_digest.models.status import Platform
from podcast_digest.services.http_json import (
    HttpRequestError,
    as_dict,
    as_list,
    coerce_int,
    coerce_nonempty_string,
    fetch_json,
)
from podcast_digest.services.url_parsing import (
    SPOTIFY_ID_PATTERN,
    build_spotify_episode_url,
    extract_spotify_episode_id,
)

LOGGER = logging.getLogger("podcast_digest.spotify")

SPOTIFY_API_BASE_URL = "https://api.spotify.com/v1"
SPOTIFY_TOKEN_URL = "https://accounts.spotify.com/api/token"
TOKEN_REFRESH_BUFFER_SECONDS = 300


@dataclass(frozen=True)
class _AccessToken:
    value: str
    expires_at: float


class SpotifyClient:
    def __init__(
        self,
        *,
        client_id: str | None,
        client_secret: str | None,
        market: str = "US",
        timeout_seconds: float = 10.0,
        api_base_url: str = SPOTIFY_API_BASE_URL,
        token_url: str = SPOTIFY_TOKEN_URL,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._client_id = client_id
        self._client_secret = client_secret
        self._market = market
        self._timeout_seconds = timeout_seconds
        self._api_base_url = api_base_url.rstrip("/")
        self._token_url = token_url
        self._clock = clock
        self._token: _AccessToken | None = None
        self._token_lock = threading.Lock()

    @property
    def configured(self) -> bool:
        return self._client_id is not None and self._client_secret is not None

    def get_info(self, url_or_id: str) -> PlatformMetadata:
        episode_id = _resolve_episode_id(url_or_id)
        if episode_id is None:
            raise PlatformError(
                "Invalid Spotify episode URL.",
                platform=Platform.SPOTIFY,
                code="INVALID_URL",
                context={"url": url_or_id},
            )

        status_code, payload = self._get(f"episodes/{episode_id}", {"market": self._market})
        if status_code == 401:
            # Token revoked server-side before its advertised expiry.
            self.invalidate_token()
            status_code, payload = self._get(f"episodes/{episode_id}", {"market": self._market})
        if status_code in {400, 404}:
            raise PlatformError(
                "Spotify episode not found.",
                platform=Platform.SPOTIFY,
                code="VIDEO_NOT_FOUND",
                context={"episode_id": episode_id, "status_code": status_code},
            )
        if status_code >= 400:
            raise PlatformError(
                f"Spotify API error: {_extract_error_message(payload) or status_code}",
                platform=Platform.SPOTIFY,
                code="API_ERROR",
                context={"episode_id": episode_id, "status_code": status_code},
            )

        show = as_dict(payload.get("show"))
        images = as_list(payload.get("images"))
        duration_ms = coerce_int(payload.get("duration_ms")) or 0
        return PlatformMetadata(
            platform=Platform.SPOTIFY,
            platform_id=episode_id,
            url=build_spotify_episode_url(episode_id),
            title=coerce_nonempty_string(payload.get("name")) or episode_id,
            show_name=coerce_nonempty_string(show.get("name")) or "",
            duration_seconds=duration_ms // 1000,
            thumbnail_url=(
                coerce_nonempty_string(as_dict(images[0]).get("url")) if images else None
            ),
        )

    def access_token(self) -> str:
        """Return a bearer token that stays valid for at least the refresh buffer."""
        with self._token_lock:
            token = self._token
            if token is None or self._clock() >= token.expires_at - TOKEN_REFRESH_BUFFER_SECONDS:
                token = self._request_token()
                self._token = token
            return token.value

    def invalidate_token(self) -> None:
        with self._token_lock:
            self._token = None

    def _request_token(self) -> _AccessToken:
        if self._client_id is None or self._client_secret is None:
            raise PlatformError(
                "Spotify credentials are missing. Set PODCAST_DIGEST_SPOTIFY_CLIENT_ID "
                "and PODCAST_DIGEST_SPOTIFY_CLIENT_SECRET.",
                platform=Platform.SPOTIFY,
                code="API_ERROR",
                context={"operation": "token"},
            )
        basic = base64.b64encode(
            f"{self._client_id}:{self._client_secret}".encode()
        ).decode("ascii")
        requested_at = self._clock()
        try:
            status_code, payload = fetch_json(
                url=self._token_url,
                timeout_seconds=self._timeout_seconds,
                headers={"authorization": f"Basic {basic}"},
                method="POST",
                form={"grant_type": "client_credentials"},
            )
        except HttpRequestError as exc:
            raise PlatformError(
                f"Spotify token request failed: {exc}",
                platform=Platform.SPOTIFY,
                code="API_ERROR",
                context={"operation": "token"},
            ) from exc

        access_token = coerce_nonempty_string(payload.get("access_token"))
        if status_code >= 400 or access_token is None:
            raise PlatformError(
                f"Spotify token request rejected: {_extract_error_message(payload) or status_code}",
                platform=Platform.SPOTIFY,
                code="API_ERROR",
                context={"operation": "token", "status_code": status_code},
            )
        expires_in = coerce_int(payload.get("expires_in")) or 3600
        LOGGER.info("spotify token refreshed expires_in=%s", expires_in)
        return _AccessToken(value=access_token, expires_at=requested_at + expires_in)

    def _get(self, path: str, params: dict[str, str]) -> tuple[int, dict[str, Any]]:
        token = self.access_token()
        try:
            return fetch_json(
                url=f"{self._api_base_url}/{path}",
                timeout_seconds=self._timeout_seconds,
                headers={"authorization": f"Bearer {token}"},
                params=params,
            )
        except HttpRequestError as exc:
            raise PlatformError(
                f"Spotify API request failed: {exc}",
                platform=Platform.SPOTIFY,
                code="API_ERROR",
                context={"operation": path},
            ) from exc


def _resolve_episode_id(url_or_id: str) -> str | None:
    candidate = url_or_id.strip()
    episode_id = extract_spotify_episode_id(candidate)
    if episode_id is not None:
        return episode_id
    if "/" not in candidate and ":" not in candidate and SPOTIFY_ID_PATTERN.match(candidate):
        return candidate
    return None


def _extract_error_message(payload: dict[str, Any]) -> str | None:
    error = payload.get("error")
    if isinstance(error, str):
        description = coerce_nonempty_string(payload.get("error_description"))
        return description or coerce_nonempty_string(error)
    return coerce_nonempty_string(as_dict(error).get("message"))
