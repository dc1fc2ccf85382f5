from __future__ import annotations

from datetime import timedelta
from functools import lru_cache

from podcast_digest.config import AppSettings, load_settings
from podcast_digest.models.status import ProcessingStatus
from podcast_digest.repositories.database import Database
from podcast_digest.repositories.feedback_repository import FeedbackRepository
from podcast_digest.repositories.podcast_repository import PodcastRepository
from podcast_digest.repositories.queue_repository import QueueRepository
from podcast_digest.repositories.summary_repository import SummaryRepository
from podcast_digest.services.job_processor import JobProcessor
from podcast_digest.services.platform_matcher import PlatformMatcher
from podcast_digest.services.podcast_intake import PodcastIntakeService
from podcast_digest.services.spotify_client import SpotifyClient
from podcast_digest.services.summary_generator import SummaryGenerator
from podcast_digest.services.timeout_sweeper import TimeoutSweeper
from podcast_digest.services.transcript_resolver import TranscriptResolver
from podcast_digest.services.transcript_sources import (
    SpotifyTranscriptSource,
    SupadataTranscriptSource,
    TranscriptSource,
    TranscriptSourceName,
    YouTubeCaptionsApiSource,
    YouTubeTranscriptApiSource,
    YtDlpTranscriptSource,
)
from podcast_digest.services.worker_service import WorkerService
from podcast_digest.services.youtube_client import YouTubeClient
from podcast_digest.telemetry import TelemetryClient, build_telemetry_client


@lru_cache(maxsize=1)
def get_settings() -> AppSettings:
    return load_settings()


@lru_cache(maxsize=1)
def get_database() -> Database:
    database = Database(get_settings().db_path)
    database.initialize()
    return database


@lru_cache(maxsize=1)
def get_telemetry() -> TelemetryClient:
    settings = get_settings()
    return build_telemetry_client(
        enabled=settings.telemetry_enabled,
        sink=settings.telemetry_sink,
    )


def get_summary_repository() -> SummaryRepository:
    return SummaryRepository(get_database())


def get_feedback_repository() -> FeedbackRepository:
    return FeedbackRepository(get_database())


def get_podcast_repository() -> PodcastRepository:
    return PodcastRepository(get_database())


def get_queue_repository() -> QueueRepository:
    return QueueRepository(get_database())


@lru_cache(maxsize=1)
def get_youtube_client() -> YouTubeClient:
    settings = get_settings()
    return YouTubeClient(api_key=settings.youtube_api_key)


@lru_cache(maxsize=1)
def get_spotify_client() -> SpotifyClient:
    settings = get_settings()
    return SpotifyClient(
        client_id=settings.spotify_client_id,
        client_secret=settings.spotify_client_secret,
        market=settings.spotify_market,
        timeout_seconds=settings.http_timeout_seconds,
    )


def _build_supadata_source(settings: AppSettings) -> SupadataTranscriptSource | None:
    if settings.supadata_api_key is None:
        return None
    return SupadataTranscriptSource(
        api_key=settings.supadata_api_key,
        base_url=settings.supadata_base_url,
        transcript_mode=settings.supadata_transcript_mode,
        http_timeout_seconds=settings.supadata_http_timeout_seconds,
        poll_interval_seconds=settings.supadata_poll_interval_seconds,
        poll_max_attempts=settings.supadata_poll_max_attempts,
    )


def build_transcript_sources(
    settings: AppSettings,
) -> dict[TranscriptSourceName, TranscriptSource]:
    """Sources that can run with the current configuration, keyed by name."""
    sources: dict[TranscriptSourceName, TranscriptSource] = {
        TranscriptSourceName.YOUTUBE_TRANSCRIPT_API: YouTubeTranscriptApiSource(),
    }
    supadata = _build_supadata_source(settings)
    if supadata is not None:
        sources[TranscriptSourceName.SUPADATA] = supadata
    if settings.yt_dlp_enabled:
        sources[TranscriptSourceName.YT_DLP] = YtDlpTranscriptSource(
            binary=settings.yt_dlp_binary,
            timeout_seconds=settings.yt_dlp_timeout_seconds,
        )
    if settings.youtube_captions_enabled and settings.youtube_oauth_token_path.is_file():
        sources[TranscriptSourceName.YOUTUBE_CAPTIONS_API] = YouTubeCaptionsApiSource(
            token_path=settings.youtube_oauth_token_path,
            client_secret_path=settings.youtube_oauth_client_secret_path,
        )
    return sources


@lru_cache(maxsize=1)
def get_transcript_resolver() -> TranscriptResolver:
    settings = get_settings()
    supadata = _build_supadata_source(settings)
    return TranscriptResolver(
        sources=build_transcript_sources(settings),
        environment=settings.environment,
        spotify_source=SpotifyTranscriptSource(supadata) if supadata is not None else None,
        timeout_seconds=settings.transcript_resolve_timeout_seconds,
    )


@lru_cache(maxsize=1)
def get_summary_generator() -> SummaryGenerator:
    settings = get_settings()
    return SummaryGenerator(
        api_key=settings.anthropic_api_key,
        model=settings.anthropic_model,
        max_tokens=settings.anthropic_max_tokens,
        timeout_seconds=settings.summary_timeout_seconds,
    )


def get_platform_matcher() -> PlatformMatcher | None:
    youtube = get_youtube_client()
    if not youtube.configured:
        return None
    settings = get_settings()
    return PlatformMatcher(
        youtube=youtube,
        failed_search_log=get_podcast_repository(),
        threshold=settings.match_threshold,
        results_per_query=settings.match_results_per_query,
    )


@lru_cache(maxsize=1)
def get_job_processor() -> JobProcessor:
    spotify = get_spotify_client()
    return JobProcessor(
        summaries=get_summary_repository(),
        podcasts=get_podcast_repository(),
        resolver=get_transcript_resolver(),
        generator=get_summary_generator(),
        matcher=get_platform_matcher(),
        spotify_client=spotify if spotify.configured else None,
        telemetry=get_telemetry(),
    )


@lru_cache(maxsize=1)
def get_timeout_sweeper() -> TimeoutSweeper:
    settings = get_settings()
    return TimeoutSweeper(
        get_summary_repository(),
        thresholds={
            ProcessingStatus.IN_QUEUE: timedelta(seconds=settings.timeout_in_queue_seconds),
            ProcessingStatus.FETCHING_TRANSCRIPT: timedelta(
                seconds=settings.timeout_fetching_transcript_seconds
            ),
            ProcessingStatus.GENERATING_SUMMARY: timedelta(
                seconds=settings.timeout_generating_summary_seconds
            ),
        },
        default_threshold=timedelta(seconds=settings.timeout_default_seconds),
        telemetry=get_telemetry(),
    )


@lru_cache(maxsize=1)
def get_intake_service() -> PodcastIntakeService:
    return PodcastIntakeService(
        podcasts=get_podcast_repository(),
        summaries=get_summary_repository(),
        queue=get_queue_repository(),
        youtube_client=get_youtube_client(),
        spotify_client=get_spotify_client(),
        telemetry=get_telemetry(),
    )


def build_worker_service() -> WorkerService:
    settings = get_settings()
    return WorkerService(
        processor=get_job_processor(),
        queue=get_queue_repository(),
        sweeper=get_timeout_sweeper(),
        poll_interval_seconds=settings.worker_poll_interval_seconds,
        sweep_interval_seconds=settings.timeout_sweep_interval_seconds,
        max_attempts=settings.queue_max_attempts,
        backoff_base_seconds=settings.queue_backoff_base_seconds,
        lease_seconds=settings.queue_lease_seconds,
        telemetry=get_telemetry(),
    )


def reset_cached_dependencies() -> None:
    get_intake_service.cache_clear()
    get_timeout_sweeper.cache_clear()
    get_job_processor.cache_clear()
    get_summary_generator.cache_clear()
    get_transcript_resolver.cache_clear()
    get_spotify_client.cache_clear()
    get_youtube_client.cache_clear()
    get_telemetry.cache_clear()
    get_database.cache_clear()
    get_settings.cache_clear()
