from __future__ import annotations

import logging
from dataclasses import dataclass

from podcast_digest.errors import PlatformError, RecordNotFoundError, ValidationError
from podcast_digest.models.job_contracts import (
    PROCESS_PODCAST_JOB_TYPE,
    build_process_podcast_job,
)
from podcast_digest.models.status import Platform
from podcast_digest.repositories.podcast_repository import PodcastRecord, PodcastRepository
from podcast_digest.repositories.queue_repository import QueueRepository
from podcast_digest.repositories.summary_repository import SummaryRecord, SummaryRepository
from podcast_digest.services.job_processor import MetadataClient
from podcast_digest.services.url_parsing import (
    build_spotify_episode_url,
    build_youtube_url,
    detect_platform,
    extract_spotify_episode_id,
    extract_youtube_video_id,
)
from podcast_digest.telemetry import TelemetryClient

LOGGER = logging.getLogger("podcast_digest.intake")


@dataclass(frozen=True)
class SubmissionResult:
    podcast: PodcastRecord
    summary: SummaryRecord
    job_id: str


class PodcastIntakeService:
    """Turn a submitted URL into podcast + summary records and a queued job."""

    def __init__(
        self,
        *,
        podcasts: PodcastRepository,
        summaries: SummaryRepository,
        queue: QueueRepository,
        youtube_client: MetadataClient,
        spotify_client: MetadataClient,
        telemetry: TelemetryClient | None = None,
    ) -> None:
        self._podcasts = podcasts
        self._summaries = summaries
        self._queue = queue
        self._youtube_client = youtube_client
        self._spotify_client = spotify_client
        self._telemetry = telemetry if telemetry is not None else TelemetryClient.disabled()

    def submit(self, url: str, *, user_id: str | None = None) -> SubmissionResult:
        platform, canonical_url = canonicalize_url(url)
        podcast = self._podcasts.find_podcast_by_url(canonical_url)
        if podcast is None:
            client = self._youtube_client if platform == Platform.YOUTUBE else self._spotify_client
            metadata = client.get_info(canonical_url)
            podcast = self._podcasts.create_podcast(metadata, url=canonical_url)
            LOGGER.info(
                "intake podcast_created podcast_id=%s platform=%s",
                podcast.id,
                platform,
            )

        summary = self._summaries.create_summary(podcast_id=podcast.id, user_id=user_id)
        job_id = self._enqueue(podcast, summary, user_id=user_id)
        self._telemetry.emit(
            "intake.submitted",
            podcast_id=podcast.id,
            summary_id=summary.id,
            platform=platform.value,
        )
        return SubmissionResult(podcast=podcast, summary=summary, job_id=job_id)

    def retry_summary(self, summary_id: str) -> SubmissionResult:
        """User-triggered retry: FAILED -> IN_QUEUE plus a new job for the same summary."""
        summary = self._summaries.get_summary(summary_id)
        if summary is None:
            raise RecordNotFoundError("summary", summary_id)
        podcast = self._podcasts.get_podcast(summary.podcast_id)
        if podcast is None:
            raise RecordNotFoundError("podcast", summary.podcast_id)
        canonicalize_url(podcast.url)

        reset = self._summaries.reset_for_retry(summary_id)
        job_id = self._enqueue(podcast, reset, user_id=reset.user_id)
        self._telemetry.emit("intake.retry", summary_id=summary_id, podcast_id=podcast.id)
        return SubmissionResult(podcast=podcast, summary=reset, job_id=job_id)

    def _enqueue(
        self,
        podcast: PodcastRecord,
        summary: SummaryRecord,
        *,
        user_id: str | None,
    ) -> str:
        job = build_process_podcast_job(
            podcast_id=podcast.id,
            summary_id=summary.id,
            url=podcast.url,
            platform=podcast.platform,
            user_id=user_id,
        )
        return self._queue.enqueue(job.to_message(), job_type=PROCESS_PODCAST_JOB_TYPE)


def canonicalize_url(url: str) -> tuple[Platform, str]:
    platform = detect_platform(url)
    if platform is None:
        raise ValidationError(
            "Unsupported podcast URL.",
            errors=["url: only YouTube and Spotify URLs are supported"],
        )
    if platform == Platform.YOUTUBE:
        video_id = extract_youtube_video_id(url)
        if video_id is None:
            raise PlatformError(
                "Invalid YouTube URL.",
                platform=platform,
                code="INVALID_URL",
                context={"url": url},
            )
        return platform, build_youtube_url(video_id)

    episode_id = extract_spotify_episode_id(url)
    if episode_id is None:
        raise PlatformError(
            "Invalid Spotify episode URL.",
            platform=platform,
            code="INVALID_URL",
            context={"url": url},
        )
    return platform, build_spotify_episode_url(episode_id)
