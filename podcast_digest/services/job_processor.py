from __future__ import annotations

import logging
import time
from typing import Any, Protocol

from structlog.contextvars import bind_contextvars, reset_contextvars

from podcast_digest.errors import (
    InvalidStatusTransitionError,
    PlatformError,
    RecordNotFoundError,
    TranscriptError,
    ValidationError,
)
from podcast_digest.models.job_contracts import ProcessPodcastJob, parse_job_payload
from podcast_digest.models.metadata import PlatformMetadata
from podcast_digest.models.status import Platform, ProcessingStatus
from podcast_digest.repositories.interfaces import PodcastStore, SummaryStore
from podcast_digest.repositories.podcast_repository import PodcastRecord
from podcast_digest.repositories.summary_repository import SummaryRecord
from podcast_digest.services.platform_matcher import PlatformMatcher
from podcast_digest.services.summary_generator import SummaryGenerator
from podcast_digest.services.transcript_resolver import TranscriptResolver
from podcast_digest.telemetry import TelemetryClient

LOGGER = logging.getLogger("podcast_digest.processor")

NO_MATCH_MESSAGE = "Unable to find a video transcript to summarize"
INTERRUPTED_GENERATION_MESSAGE = (
    "Summary generation was interrupted and cannot be resumed; retry the summary."
)

# Failures that redelivering the job cannot fix.
PERMANENT_JOB_ERRORS: tuple[type[Exception], ...] = (
    ValidationError,
    RecordNotFoundError,
    InvalidStatusTransitionError,
)

_PIPELINE_RANK: dict[ProcessingStatus, int] = {
    ProcessingStatus.IN_QUEUE: 0,
    ProcessingStatus.FETCHING_TRANSCRIPT: 1,
    ProcessingStatus.GENERATING_SUMMARY: 2,
}


class MetadataClient(Protocol):
    def get_info(self, url_or_id: str) -> PlatformMetadata:
        ...


class JobProcessor:
    """
    Drive one PROCESS_PODCAST job through the summary status machine.

    in_queue -> fetching_transcript -> generating_summary -> completed. A
    failure is re-raised after it is recorded as `failed`, except that a
    retryable failure on a non-final attempt leaves the summary where it
    stopped so the redelivered job can pick it up again.
    Redelivered jobs are safe: terminal summaries are skipped and steps the
    summary already passed are not re-applied.
    """

    def __init__(
        self,
        *,
        summaries: SummaryStore,
        podcasts: PodcastStore,
        resolver: TranscriptResolver,
        generator: SummaryGenerator,
        matcher: PlatformMatcher | None = None,
        spotify_client: MetadataClient | None = None,
        telemetry: TelemetryClient | None = None,
    ) -> None:
        self._summaries = summaries
        self._podcasts = podcasts
        self._resolver = resolver
        self._generator = generator
        self._matcher = matcher
        self._spotify_client = spotify_client
        self._telemetry = telemetry if telemetry is not None else TelemetryClient.disabled()

    def process(self, message: Any, *, final_attempt: bool = True) -> SummaryRecord:
        job = parse_job_payload(message)
        context_tokens = bind_contextvars(summary_id=job.summary_id, podcast_id=job.podcast_id)
        started_at = time.perf_counter()
        self._telemetry.emit("job.process.start", summary_id=job.summary_id)
        try:
            summary = self._run(job, final_attempt=final_attempt)
        except Exception as exc:
            self._telemetry.emit(
                "job.process.error",
                summary_id=job.summary_id,
                duration_ms=int((time.perf_counter() - started_at) * 1000),
                error_type=type(exc).__name__,
            )
            raise
        else:
            self._telemetry.emit(
                "job.process.finish",
                summary_id=job.summary_id,
                duration_ms=int((time.perf_counter() - started_at) * 1000),
                outcome=summary.status.value,
            )
            return summary
        finally:
            reset_contextvars(**context_tokens)

    def _run(self, job: ProcessPodcastJob, *, final_attempt: bool) -> SummaryRecord:
        summary = self._require_summary(job.summary_id)
        if summary.status.is_terminal:
            LOGGER.info(
                "processor job_skipped summary_id=%s status=%s",
                job.summary_id,
                summary.status,
            )
            return summary

        podcast = self._podcasts.get_podcast(job.podcast_id)
        if podcast is None:
            raise RecordNotFoundError("podcast", job.podcast_id)

        try:
            self._process(job, summary, podcast)
        except Exception as exc:
            if (
                final_attempt
                or is_permanent_failure(exc)
                or self._has_partial_summary(job.summary_id)
            ):
                self._mark_failed(job.summary_id, _failure_message(exc))
            else:
                LOGGER.info(
                    "processor job_retryable summary_id=%s error=%s",
                    job.summary_id,
                    _failure_message(exc),
                )
            raise
        return self._require_summary(job.summary_id)

    def _process(
        self,
        job: ProcessPodcastJob,
        summary: SummaryRecord,
        podcast: PodcastRecord,
    ) -> None:
        summary_id = job.summary_id
        if summary.status == ProcessingStatus.GENERATING_SUMMARY and summary.summary_text:
            # The earlier stream is gone; regenerating would have to shrink the text.
            self._mark_failed(summary_id, INTERRUPTED_GENERATION_MESSAGE)
            return

        transcript_url = self._transcript_url(job, podcast)
        if transcript_url is None:
            self._mark_failed(summary_id, NO_MATCH_MESSAGE)
            return

        self._advance(summary_id, ProcessingStatus.FETCHING_TRANSCRIPT)
        if podcast.has_transcript and podcast.transcript:
            transcript_text = podcast.transcript
        else:
            transcript = self._resolver.resolve(transcript_url)
            transcript_text = transcript.text
            self._podcasts.update_podcast(
                podcast.id,
                transcript=transcript_text,
                has_transcript=True,
            )
            self._telemetry.emit(
                "transcript.resolved",
                summary_id=summary_id,
                source=transcript.source.value,
                character_count=len(transcript_text),
            )

        self._advance(summary_id, ProcessingStatus.GENERATING_SUMMARY)
        accumulated = ""
        for chunk in self._generator.stream(transcript_text):
            accumulated += chunk
            self._summaries.append_summary(
                summary_id,
                accumulated,
                status=ProcessingStatus.GENERATING_SUMMARY,
            )

        self._advance(summary_id, ProcessingStatus.COMPLETED)

    def _transcript_url(self, job: ProcessPodcastJob, podcast: PodcastRecord) -> str | None:
        if podcast.youtube_url:
            return podcast.youtube_url
        if podcast.platform != Platform.SPOTIFY:
            return job.url
        if self._matcher is None:
            # Without YouTube search, use the experimental Spotify transcript source.
            return podcast.url

        episode = self._spotify_metadata(podcast)
        match = self._matcher.find_match(episode)
        if match is None:
            self._telemetry.emit("matcher.no_match", podcast_id=podcast.id)
            return None

        if not self._podcasts.set_youtube_url_once(podcast.id, match.video.url):
            refreshed = self._podcasts.get_podcast(podcast.id)
            if refreshed is not None and refreshed.youtube_url:
                return refreshed.youtube_url
        self._telemetry.emit(
            "matcher.match",
            podcast_id=podcast.id,
            score=round(match.score, 3),
        )
        return match.video.url

    def _spotify_metadata(self, podcast: PodcastRecord) -> PlatformMetadata:
        if self._spotify_client is not None:
            return self._spotify_client.get_info(podcast.url)
        return PlatformMetadata(
            platform=Platform.SPOTIFY,
            platform_id=podcast.id,
            url=podcast.url,
            title=podcast.title,
            show_name=podcast.show_name,
            duration_seconds=podcast.duration,
            thumbnail_url=podcast.thumbnail_url,
        )

    def _advance(self, summary_id: str, target: ProcessingStatus) -> None:
        summary = self._require_summary(summary_id)
        current = summary.status
        if current == target:
            return
        if (
            target in _PIPELINE_RANK
            and current in _PIPELINE_RANK
            and _PIPELINE_RANK[current] > _PIPELINE_RANK[target]
        ):
            return
        if not self._summaries.update_summary_status(
            summary_id, target, expected_status=current
        ):
            latest = self._require_summary(summary_id)
            raise InvalidStatusTransitionError(summary_id, latest.status.value, target.value)

    def _mark_failed(self, summary_id: str, message: str) -> None:
        try:
            changed = self._summaries.update_summary_status(
                summary_id, ProcessingStatus.FAILED, message
            )
        except InvalidStatusTransitionError:
            LOGGER.warning(
                "processor mark_failed_skipped summary_id=%s reason=terminal",
                summary_id,
            )
            return
        if changed:
            LOGGER.info("processor job_failed summary_id=%s error=%s", summary_id, message)

    def _has_partial_summary(self, summary_id: str) -> bool:
        # Text can only grow, so a half-streamed summary cannot be regenerated.
        summary = self._summaries.get_summary(summary_id)
        return summary is not None and bool(summary.summary_text)

    def _require_summary(self, summary_id: str) -> SummaryRecord:
        summary = self._summaries.get_summary(summary_id)
        if summary is None:
            raise RecordNotFoundError("summary", summary_id)
        return summary


def is_permanent_failure(exc: Exception) -> bool:
    if isinstance(exc, PERMANENT_JOB_ERRORS):
        return True
    if isinstance(exc, TranscriptError):
        return exc.code != "ALL_SOURCES_FAILED"
    if isinstance(exc, PlatformError):
        return exc.code != "API_ERROR"
    return False


def _failure_message(exc: Exception) -> str:
    message = str(exc).strip()
    if not message:
        return type(exc).__name__
    if len(message) <= 500:
        return message
    return f"{message[:497]}..."
