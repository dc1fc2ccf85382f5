from __future__ import annotations

import logging
import time
from collections.abc import Iterable, Mapping
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from typing import Literal

from podcast_digest.errors import TranscriptError
from podcast_digest.models.status import Platform
from podcast_digest.services.transcript_sources import (
    TranscriptResult,
    TranscriptSource,
    TranscriptSourceName,
)
from podcast_digest.services.url_parsing import (
    detect_platform,
    extract_spotify_episode_id,
    extract_youtube_video_id,
)

LOGGER = logging.getLogger("podcast_digest.transcripts")

Environment = Literal["production", "development"]

DEFAULT_RESOLVE_TIMEOUT_SECONDS = 300.0

SOURCE_ORDER: dict[str, tuple[TranscriptSourceName, ...]] = {
    "production": (
        TranscriptSourceName.SUPADATA,
        TranscriptSourceName.YOUTUBE_TRANSCRIPT_API,
        TranscriptSourceName.YT_DLP,
        TranscriptSourceName.YOUTUBE_CAPTIONS_API,
    ),
    "development": (
        TranscriptSourceName.YOUTUBE_TRANSCRIPT_API,
        TranscriptSourceName.YT_DLP,
        TranscriptSourceName.YOUTUBE_CAPTIONS_API,
        TranscriptSourceName.SUPADATA,
    ),
}


def source_order(environment: str) -> tuple[TranscriptSourceName, ...]:
    normalized = environment.strip().lower()
    if normalized not in SOURCE_ORDER:
        raise ValueError(f"Unknown environment for transcript source order: {environment!r}")
    return SOURCE_ORDER[normalized]


def pick_round_winner(
    done: Iterable[Future[TranscriptResult | None]],
    futures: Mapping[Future[TranscriptResult | None], tuple[int, TranscriptSource]],
    *,
    errors: dict[str, str],
    exceptions: list[Exception],
    video_id: str,
) -> TranscriptResult | None:
    """
    Settle the futures finished in one wake-up and return the usable result of
    the earliest-ranked source among them.

    Every other finished source is recorded in `errors` (and raised exceptions
    in `exceptions`); losing successful results are dropped.
    """
    winner: TranscriptResult | None = None
    for future in sorted(done, key=lambda item: futures[item][0]):
        _, source = futures[future]
        try:
            result = future.result()
        except Exception as exc:
            errors[source.name] = f"{type(exc).__name__}: {exc}"
            exceptions.append(exc)
            LOGGER.info(
                "transcript source_failed source=%s video_id=%s error=%s",
                source.name,
                video_id,
                errors[source.name],
            )
            continue
        if result is None or not result.text.strip():
            errors[source.name] = "no transcript returned"
            continue
        if winner is None:
            winner = result
    return winner


class TranscriptResolver:
    """
    Resolve transcripts by racing every configured source.

    All sources for a video start at once. The first finished source with
    non-empty text wins; when several finish within the same wake-up, the one
    earlier in the environment's order wins. Slower sources are left to finish
    on their own and their results are dropped.

    Spotify episodes go to the single Spotify source. There is no fallback
    chain for Spotify.
    """

    def __init__(
        self,
        *,
        sources: Mapping[TranscriptSourceName, TranscriptSource],
        environment: Environment,
        spotify_source: TranscriptSource | None = None,
        timeout_seconds: float | None = DEFAULT_RESOLVE_TIMEOUT_SECONDS,
    ) -> None:
        self._sources = dict(sources)
        self._environment = environment
        self._spotify_source = spotify_source
        self._timeout_seconds = timeout_seconds

    @property
    def environment(self) -> str:
        return self._environment

    @property
    def ordered_sources(self) -> list[TranscriptSource]:
        return [
            self._sources[name]
            for name in source_order(self._environment)
            if name in self._sources
        ]

    def resolve(self, url: str) -> TranscriptResult:
        platform = detect_platform(url)
        if platform == Platform.SPOTIFY:
            episode_id = extract_spotify_episode_id(url)
            if episode_id is None:
                raise TranscriptError("Invalid Spotify episode URL.", code="INVALID_URL", url=url)
            return self._resolve_spotify(episode_id, url=url)

        if platform == Platform.YOUTUBE:
            video_id = extract_youtube_video_id(url)
            if video_id is None:
                raise TranscriptError("Invalid YouTube URL.", code="INVALID_URL", url=url)
            return self.resolve_video(video_id, url=url)

        raise TranscriptError("Unsupported URL for transcripts.", code="INVALID_URL", url=url)

    def resolve_video(self, video_id: str, *, url: str) -> TranscriptResult:
        sources = self.ordered_sources
        if not sources:
            raise TranscriptError(
                "No transcript sources are configured.",
                code="ALL_SOURCES_FAILED",
                url=url,
            )

        started_at = time.perf_counter()
        errors: dict[str, str] = {}
        exceptions: list[Exception] = []
        executor = ThreadPoolExecutor(
            max_workers=len(sources),
            thread_name_prefix="transcript-source",
        )
        futures: dict[Future[TranscriptResult | None], tuple[int, TranscriptSource]] = {
            executor.submit(source.get_transcript, video_id): (rank, source)
            for rank, source in enumerate(sources)
        }
        pending = set(futures)
        deadline = (
            None if self._timeout_seconds is None else started_at + self._timeout_seconds
        )
        try:
            while pending:
                remaining = None if deadline is None else deadline - time.perf_counter()
                if remaining is not None and remaining <= 0:
                    for future in pending:
                        errors[futures[future][1].name] = (
                            f"timed out after {self._timeout_seconds:.0f}s"
                        )
                    break
                done, pending = wait(pending, timeout=remaining, return_when=FIRST_COMPLETED)
                winner = pick_round_winner(
                    done,
                    futures,
                    errors=errors,
                    exceptions=exceptions,
                    video_id=video_id,
                )
                if winner is not None:
                    LOGGER.info(
                        "transcript resolved source=%s video_id=%s duration_ms=%s",
                        winner.source,
                        video_id,
                        int((time.perf_counter() - started_at) * 1000),
                    )
                    return winner
        finally:
            # Losing sources keep running in the background.
            executor.shutdown(wait=False)

        LOGGER.warning(
            "transcript all_sources_failed video_id=%s errors=%s",
            video_id,
            errors,
        )
        error = TranscriptError(
            "All transcript sources failed.",
            code="ALL_SOURCES_FAILED",
            url=url,
            errors=errors,
        )
        if exceptions:
            raise error from ExceptionGroup("transcript sources failed", exceptions)
        raise error

    def _resolve_spotify(self, episode_id: str, *, url: str) -> TranscriptResult:
        if self._spotify_source is None:
            raise TranscriptError(
                "Spotify transcripts are not configured.",
                code="NO_TRANSCRIPT",
                url=url,
            )
        try:
            result = self._spotify_source.get_transcript(episode_id)
        except Exception as exc:
            raise TranscriptError(
                "Spotify transcript fetch failed.",
                code="NO_TRANSCRIPT",
                url=url,
                errors={self._spotify_source.name: f"{type(exc).__name__}: {exc}"},
            ) from exc
        if result is None or not result.text.strip():
            raise TranscriptError(
                "No transcript available for this Spotify episode.",
                code="NO_TRANSCRIPT",
                url=url,
            )
        return result
