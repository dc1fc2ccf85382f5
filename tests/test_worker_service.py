from __future__ import annotations

import threading
from collections.abc import Iterator
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any, cast

import pytest

from podcast_digest.errors import DatabaseError, TranscriptError, ValidationError
from podcast_digest.models.job_contracts import build_process_podcast_job
from podcast_digest.models.metadata import PlatformMetadata
from podcast_digest.models.status import Platform, ProcessingStatus
from podcast_digest.repositories.database import Database
from podcast_digest.repositories.podcast_repository import PodcastRepository
from podcast_digest.repositories.queue_repository import DEAD, DONE, QUEUED, QueueRepository
from podcast_digest.repositories.summary_repository import SummaryRepository
from podcast_digest.services.job_processor import JobProcessor
from podcast_digest.services.transcript_sources import TranscriptResult, TranscriptSourceName
from podcast_digest.services.worker_service import WorkerService
from podcast_digest.telemetry import MemoryTelemetrySink, TelemetryClient

VIDEO_ID = "dQw4w9WgXcQ"
VIDEO_URL = f"https://www.youtube.com/watch?v={VIDEO_ID}"


class _Clock:
    def __init__(self) -> None:
        self.now = datetime(2026, 3, 1, 9, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now


class _FakeProcessor:
    def __init__(self, errors: list[Exception | None] | None = None) -> None:
        self._errors = list(errors or [])
        self.messages: list[Any] = []
        self.final_attempts: list[bool] = []
        self.called = threading.Event()

    def process(self, message: Any, *, final_attempt: bool = True) -> None:
        self.messages.append(message)
        self.final_attempts.append(final_attempt)
        self.called.set()
        error = self._errors.pop(0) if self._errors else None
        if error is not None:
            raise error


class _FakeSweeper:
    def __init__(self) -> None:
        self.calls = 0
        self.called = threading.Event()

    def sweep(self) -> None:
        self.calls += 1
        self.called.set()


def _queue(tmp_path: Path, clock: _Clock) -> QueueRepository:
    db = Database(tmp_path / "state.db")
    db.initialize()
    return QueueRepository(db, clock=clock)


def _worker(processor: _FakeProcessor, queue: QueueRepository, **kwargs: Any) -> WorkerService:
    return WorkerService(processor=cast(Any, processor), queue=queue, **kwargs)


def _transient_error() -> DatabaseError:
    return DatabaseError(
        "Database operation 'append_summary' failed: database is locked",
        code="SQLITE_BUSY",
        operation="append_summary",
    )


def test_successful_job_is_acked(tmp_path: Path) -> None:
    queue = _queue(tmp_path, _Clock())
    job_id = queue.enqueue({"type": "PROCESS_PODCAST"}, job_type="PROCESS_PODCAST")
    processor = _FakeProcessor()

    assert _worker(processor, queue).run_once() is True

    assert processor.messages == [{"type": "PROCESS_PODCAST"}]
    assert queue.get_job_status(job_id) == DONE


def test_empty_queue_does_nothing(tmp_path: Path) -> None:
    assert _worker(_FakeProcessor(), _queue(tmp_path, _Clock())).run_once() is False


def test_invalid_job_is_rejected_without_retry(tmp_path: Path) -> None:
    queue = _queue(tmp_path, _Clock())
    job_id = queue.enqueue({"type": "nope"}, job_type="PROCESS_PODCAST")
    processor = _FakeProcessor([ValidationError("Invalid job payload.", errors=["type: bad"])])

    _worker(processor, queue).run_once()

    assert queue.get_job_status(job_id) == DEAD
    assert queue.claim_next(lease_seconds=60) is None


def test_transient_failure_is_retried_with_backoff(tmp_path: Path) -> None:
    clock = _Clock()
    queue = _queue(tmp_path, clock)
    job_id = queue.enqueue({"n": 1}, job_type="PROCESS_PODCAST")
    processor = _FakeProcessor([_transient_error(), None])
    worker = _worker(processor, queue, backoff_base_seconds=5.0)

    worker.run_once()

    assert queue.get_job_status(job_id) == QUEUED
    assert worker.run_once() is False
    clock.now += timedelta(seconds=5)
    assert worker.run_once() is True
    assert queue.get_job_status(job_id) == DONE
    assert len(processor.messages) == 2


def test_retry_delay_doubles_per_attempt(tmp_path: Path) -> None:
    worker = _worker(_FakeProcessor(), _queue(tmp_path, _Clock()), backoff_base_seconds=5.0)

    assert [worker.retry_delay_seconds(attempt) for attempt in (1, 2, 3)] == [5.0, 10.0, 20.0]


def test_job_is_dropped_after_max_attempts(tmp_path: Path) -> None:
    clock = _Clock()
    queue = _queue(tmp_path, clock)
    job_id = queue.enqueue({"n": 1}, job_type="PROCESS_PODCAST")
    processor = _FakeProcessor([_transient_error(), _transient_error()])
    worker = _worker(processor, queue, max_attempts=2, backoff_base_seconds=1.0)

    worker.run_once()
    clock.now += timedelta(seconds=1)
    worker.run_once()

    assert queue.get_job_status(job_id) == DEAD
    assert len(processor.messages) == 2
    assert processor.final_attempts == [False, True]


def test_background_thread_runs_jobs_and_sweeps(tmp_path: Path) -> None:
    queue = _queue(tmp_path, _Clock())
    queue.enqueue({"n": 1}, job_type="PROCESS_PODCAST")
    processor = _FakeProcessor()
    sweeper = _FakeSweeper()
    sink = MemoryTelemetrySink()
    worker = _worker(
        processor,
        queue,
        sweeper=cast(Any, sweeper),
        poll_interval_seconds=0.1,
        telemetry=TelemetryClient(enabled=True, sink=sink),
    )

    worker.start()
    try:
        assert processor.called.wait(timeout=5)
        assert sweeper.called.wait(timeout=5)
    finally:
        worker.stop()

    assert sweeper.calls >= 1
    assert "worker.tick.finish" in sink.names()


@pytest.mark.parametrize("attempts", [0, 1])
def test_first_attempt_uses_base_delay(tmp_path: Path, attempts: int) -> None:
    worker = _worker(_FakeProcessor(), _queue(tmp_path, _Clock()), backoff_base_seconds=2.5)

    assert worker.retry_delay_seconds(attempts) == 2.5


class _FlakyResolver:
    def __init__(self, errors: list[Exception]) -> None:
        self._errors = list(errors)
        self.calls = 0

    def resolve(self, url: str) -> TranscriptResult:
        self.calls += 1
        if self._errors:
            raise self._errors.pop(0)
        return TranscriptResult(text="full transcript", source=TranscriptSourceName.SUPADATA)


class _StaticGenerator:
    def stream(self, transcript: str) -> Iterator[str]:
        yield "## Overview\n"
        yield "Soup."


def _pipeline(
    tmp_path: Path,
    clock: _Clock,
    resolver: _FlakyResolver,
) -> tuple[QueueRepository, SummaryRepository, JobProcessor, str, str]:
    db = Database(tmp_path / "state.db")
    db.initialize()
    queue = QueueRepository(db, clock=clock)
    summaries = SummaryRepository(db)
    podcasts = PodcastRepository(db)
    podcast = podcasts.create_podcast(
        PlatformMetadata(
            platform=Platform.YOUTUBE,
            platform_id=VIDEO_ID,
            url=VIDEO_URL,
            title="Episode 12",
            show_name="Test Channel",
            duration_seconds=600,
        ),
        url=VIDEO_URL,
    )
    summary = summaries.create_summary(podcast_id=podcast.id)
    message = build_process_podcast_job(
        podcast_id=podcast.id,
        summary_id=summary.id,
        url=VIDEO_URL,
        platform=Platform.YOUTUBE,
    ).to_message()
    job_id = queue.enqueue(message, job_type="PROCESS_PODCAST")
    processor = JobProcessor(
        summaries=summaries,
        podcasts=podcasts,
        resolver=cast(Any, resolver),
        generator=cast(Any, _StaticGenerator()),
    )
    return queue, summaries, processor, job_id, summary.id


def _all_sources_failed() -> TranscriptError:
    return TranscriptError(
        "All transcript sources failed.",
        code="ALL_SOURCES_FAILED",
        url=VIDEO_URL,
        errors={"supadata": "connection reset"},
    )


def test_transient_transcript_failure_is_redelivered_and_completes(tmp_path: Path) -> None:
    clock = _Clock()
    resolver = _FlakyResolver([_all_sources_failed()])
    queue, summaries, processor, job_id, summary_id = _pipeline(tmp_path, clock, resolver)
    worker = WorkerService(processor=processor, queue=queue, max_attempts=3, backoff_base_seconds=0)

    assert worker.run_once() is True
    assert queue.get_job_status(job_id) == QUEUED
    pending = summaries.get_summary(summary_id)
    assert pending is not None
    assert pending.status == ProcessingStatus.FETCHING_TRANSCRIPT
    assert pending.error_message is None

    assert worker.run_once() is True
    assert queue.get_job_status(job_id) == DONE
    completed = summaries.get_summary(summary_id)
    assert completed is not None
    assert completed.status == ProcessingStatus.COMPLETED
    assert completed.summary_text == "## Overview\nSoup."
    assert resolver.calls == 2


def test_last_attempt_records_the_failure(tmp_path: Path) -> None:
    clock = _Clock()
    resolver = _FlakyResolver([_all_sources_failed(), _all_sources_failed()])
    queue, summaries, processor, job_id, summary_id = _pipeline(tmp_path, clock, resolver)
    worker = WorkerService(processor=processor, queue=queue, max_attempts=2, backoff_base_seconds=0)

    worker.run_once()
    worker.run_once()

    assert queue.get_job_status(job_id) == DEAD
    failed = summaries.get_summary(summary_id)
    assert failed is not None
    assert failed.status == ProcessingStatus.FAILED
    assert failed.error_message == "All transcript sources failed."
    assert resolver.calls == 2


def test_missing_transcript_fails_without_redelivery(tmp_path: Path) -> None:
    clock = _Clock()
    resolver = _FlakyResolver(
        [TranscriptError("No transcript available.", code="NO_TRANSCRIPT", url=VIDEO_URL)]
    )
    queue, summaries, processor, job_id, summary_id = _pipeline(tmp_path, clock, resolver)
    worker = WorkerService(processor=processor, queue=queue, max_attempts=3, backoff_base_seconds=0)

    worker.run_once()

    assert queue.get_job_status(job_id) == DEAD
    assert worker.run_once() is False
    failed = summaries.get_summary(summary_id)
    assert failed is not None
    assert failed.status == ProcessingStatus.FAILED
    assert resolver.calls == 1
