from __future__ import annotations

from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest

from podcast_digest.errors import DatabaseError, InvalidStatusTransitionError, RecordNotFoundError
from podcast_digest.models.metadata import PlatformMetadata
from podcast_digest.models.status import FeedbackStatus, FeedbackType, Platform, ProcessingStatus
from podcast_digest.repositories.database import Database
from podcast_digest.repositories.feedback_repository import FeedbackRepository, NewFeedback
from podcast_digest.repositories.podcast_repository import FailedYouTubeSearch, PodcastRepository
from podcast_digest.repositories.queue_repository import (
    DEAD,
    DONE,
    LEASED,
    QUEUED,
    QueueRepository,
)
from podcast_digest.repositories.summary_repository import (
    DEFAULT_FAILURE_MESSAGE,
    SummaryRepository,
)

VIDEO_URL = "https://www.youtube.com/watch?v=dQw4w9WgXcQ"


class _Clock:
    def __init__(self) -> None:
        self.now = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


def _database(tmp_path: Path) -> Database:
    db = Database(tmp_path / "state.db")
    db.initialize()
    return db


def _metadata(platform: Platform = Platform.YOUTUBE) -> PlatformMetadata:
    if platform == Platform.YOUTUBE:
        return PlatformMetadata(
            platform=Platform.YOUTUBE,
            platform_id="dQw4w9WgXcQ",
            url=VIDEO_URL,
            title="Episode 12",
            show_name="Test Channel",
            duration_seconds=600,
        )
    return PlatformMetadata(
        platform=Platform.SPOTIFY,
        platform_id="4rOoJ6Egrf8K2IrywzwOMk",
        url="https://open.spotify.com/episode/4rOoJ6Egrf8K2IrywzwOMk",
        title="How Markets Really Work",
        show_name="The Economics Hour",
        duration_seconds=3600,
    )


def _summary_fixture(tmp_path: Path) -> tuple[SummaryRepository, _Clock, str]:
    db = _database(tmp_path)
    podcast = PodcastRepository(db).create_podcast(_metadata(), url=VIDEO_URL)
    clock = _Clock()
    summaries = SummaryRepository(db, clock=clock)
    summary = summaries.create_summary(podcast_id=podcast.id, user_id="user-1")
    return summaries, clock, summary.id


def test_summary_walks_the_status_machine(tmp_path: Path) -> None:
    summaries, clock, summary_id = _summary_fixture(tmp_path)

    for status in (
        ProcessingStatus.FETCHING_TRANSCRIPT,
        ProcessingStatus.GENERATING_SUMMARY,
        ProcessingStatus.COMPLETED,
    ):
        clock.advance(seconds=5)
        assert summaries.update_summary_status(summary_id, status) is True

    summary = summaries.get_summary(summary_id)
    assert summary is not None
    assert summary.status == ProcessingStatus.COMPLETED
    assert summary.user_id == "user-1"
    assert [entry.status for entry in summary.status_history] == [
        ProcessingStatus.IN_QUEUE,
        ProcessingStatus.FETCHING_TRANSCRIPT,
        ProcessingStatus.GENERATING_SUMMARY,
        ProcessingStatus.COMPLETED,
    ]
    timestamps = [entry.timestamp for entry in summary.status_history]
    assert timestamps == sorted(timestamps)
    assert summary.completed_at == clock.now
    assert summary.failed_at is None


def test_repeating_current_status_is_a_no_op(tmp_path: Path) -> None:
    summaries, _, summary_id = _summary_fixture(tmp_path)

    assert summaries.update_summary_status(summary_id, ProcessingStatus.FETCHING_TRANSCRIPT)
    assert not summaries.update_summary_status(summary_id, ProcessingStatus.FETCHING_TRANSCRIPT)

    summary = summaries.get_summary(summary_id)
    assert summary is not None
    assert len(summary.status_history) == 2


def test_backward_and_terminal_transitions_are_rejected(tmp_path: Path) -> None:
    summaries, _, summary_id = _summary_fixture(tmp_path)

    with pytest.raises(InvalidStatusTransitionError):
        summaries.update_summary_status(summary_id, ProcessingStatus.COMPLETED)

    summaries.update_summary_status(summary_id, ProcessingStatus.FAILED)
    with pytest.raises(InvalidStatusTransitionError):
        summaries.update_summary_status(summary_id, ProcessingStatus.IN_QUEUE)


def test_history_timestamps_never_go_backwards(tmp_path: Path) -> None:
    summaries, clock, summary_id = _summary_fixture(tmp_path)
    created_at = clock.now

    clock.advance(minutes=-10)
    summaries.update_summary_status(summary_id, ProcessingStatus.FETCHING_TRANSCRIPT)

    summary = summaries.get_summary(summary_id)
    assert summary is not None
    assert summary.status_history[-1].timestamp == created_at


def test_expected_status_guards_concurrent_writes(tmp_path: Path) -> None:
    summaries, _, summary_id = _summary_fixture(tmp_path)
    summaries.update_summary_status(summary_id, ProcessingStatus.FETCHING_TRANSCRIPT)

    written = summaries.update_summary_status(
        summary_id,
        ProcessingStatus.FAILED,
        "timed out",
        expected_status=ProcessingStatus.IN_QUEUE,
    )

    assert written is False
    summary = summaries.get_summary(summary_id)
    assert summary is not None
    assert summary.status == ProcessingStatus.FETCHING_TRANSCRIPT


def test_failure_without_message_uses_default(tmp_path: Path) -> None:
    summaries, _, summary_id = _summary_fixture(tmp_path)

    summaries.update_summary_status(summary_id, ProcessingStatus.FAILED)

    summary = summaries.get_summary(summary_id)
    assert summary is not None
    assert summary.error_message == DEFAULT_FAILURE_MESSAGE
    assert summary.status_history[-1].message == DEFAULT_FAILURE_MESSAGE
    assert summary.failed_at is not None


def test_append_summary_only_accepts_extensions(tmp_path: Path) -> None:
    summaries, _, summary_id = _summary_fixture(tmp_path)
    summaries.update_summary_status(summary_id, ProcessingStatus.FETCHING_TRANSCRIPT)
    summaries.update_summary_status(summary_id, ProcessingStatus.GENERATING_SUMMARY)
    generating = ProcessingStatus.GENERATING_SUMMARY

    assert summaries.append_summary(summary_id, "## Overview", status=generating)
    assert summaries.append_summary(summary_id, "## Overview\nA show", status=generating)
    assert not summaries.append_summary(summary_id, "## Overview\nA show", status=generating)
    assert not summaries.append_summary(summary_id, "## Overview", status=generating)
    assert not summaries.append_summary(summary_id, "Something different entirely")

    summary = summaries.get_summary(summary_id)
    assert summary is not None
    assert summary.summary_text == "## Overview\nA show"


def test_append_summary_requires_expected_status(tmp_path: Path) -> None:
    summaries, _, summary_id = _summary_fixture(tmp_path)

    appended = summaries.append_summary(
        summary_id,
        "text",
        status=ProcessingStatus.GENERATING_SUMMARY,
    )

    assert appended is False
    with pytest.raises(RecordNotFoundError):
        summaries.append_summary("missing", "text")


def test_reset_for_retry_only_from_failed(tmp_path: Path) -> None:
    summaries, _, summary_id = _summary_fixture(tmp_path)

    with pytest.raises(InvalidStatusTransitionError):
        summaries.reset_for_retry(summary_id)

    summaries.update_summary_status(summary_id, ProcessingStatus.FETCHING_TRANSCRIPT)
    summaries.update_summary_status(summary_id, ProcessingStatus.GENERATING_SUMMARY)
    summaries.append_summary(summary_id, "partial")
    summaries.update_summary_status(summary_id, ProcessingStatus.FAILED, "stream dropped")

    summary = summaries.reset_for_retry(summary_id)

    assert summary.status == ProcessingStatus.IN_QUEUE
    assert summary.summary_text == ""
    assert summary.error_message is None
    assert summary.failed_at is None
    assert summary.status_history[-1].message == "Retry requested"
    assert len(summary.status_history) == 5


def test_list_in_progress_excludes_terminal_summaries(tmp_path: Path) -> None:
    db = _database(tmp_path)
    podcast = PodcastRepository(db).create_podcast(_metadata(), url=VIDEO_URL)
    summaries = SummaryRepository(db)
    waiting = summaries.create_summary(podcast_id=podcast.id)
    finished = summaries.create_summary(podcast_id=podcast.id)
    summaries.update_summary_status(finished.id, ProcessingStatus.FAILED)

    assert [summary.id for summary in summaries.list_in_progress()] == [waiting.id]


def test_summary_requires_existing_podcast(tmp_path: Path) -> None:
    summaries = SummaryRepository(_database(tmp_path))

    with pytest.raises(DatabaseError) as exc_info:
        summaries.create_summary(podcast_id="missing-podcast")

    assert exc_info.value.operation == "create_summary"


def test_podcast_repository_round_trip(tmp_path: Path) -> None:
    podcasts = PodcastRepository(_database(tmp_path))
    spotify = _metadata(Platform.SPOTIFY)

    podcast = podcasts.create_podcast(spotify, url=spotify.url)

    assert podcast.platform == Platform.SPOTIFY
    assert podcast.youtube_url is None
    assert podcast.has_transcript is False
    assert podcasts.find_podcast_by_url(spotify.url) == podcast
    assert podcasts.find_podcast_by_url(VIDEO_URL) is None

    assert podcasts.set_youtube_url_once(podcast.id, VIDEO_URL) is True
    assert podcasts.set_youtube_url_once(podcast.id, "https://youtu.be/other") is False

    updated = podcasts.update_podcast(podcast.id, transcript="words", has_transcript=True)
    assert updated.youtube_url == VIDEO_URL
    assert updated.transcript == "words"
    assert updated.has_transcript is True

    with pytest.raises(ValueError):
        podcasts.update_podcast(podcast.id, platform="youtube")
    with pytest.raises(RecordNotFoundError):
        podcasts.update_podcast("missing", title="x")


def test_youtube_podcast_stores_youtube_url(tmp_path: Path) -> None:
    podcast = PodcastRepository(_database(tmp_path)).create_podcast(_metadata(), url=VIDEO_URL)

    assert podcast.youtube_url == VIDEO_URL
    assert podcast.duration == 600


def test_failed_youtube_searches_are_logged(tmp_path: Path) -> None:
    podcasts = PodcastRepository(_database(tmp_path))

    record_id = podcasts.log_failed_youtube_search(
        FailedYouTubeSearch(
            search_query="How Markets Really Work The Economics Hour podcast",
            spotify_show_name="The Economics Hour",
            spotify_title="How Markets Really Work",
            spotify_url="https://open.spotify.com/episode/4rOoJ6Egrf8K2IrywzwOMk",
        )
    )

    assert record_id
    [logged] = podcasts.list_failed_youtube_searches()
    assert logged.search_query == "How Markets Really Work The Economics Hour podcast"
    assert logged.resolved is False
    assert logged.created_at is not None


def test_queue_claim_ack_and_counts(tmp_path: Path) -> None:
    clock = _Clock()
    queue = QueueRepository(_database(tmp_path), clock=clock)
    first = queue.enqueue({"n": 1}, job_type="process-podcast")
    clock.advance(seconds=1)
    second = queue.enqueue({"n": 2}, job_type="process-podcast")

    claimed = queue.claim_next(lease_seconds=60)

    assert claimed is not None
    assert claimed.job_id == first
    assert claimed.payload == {"n": 1}
    assert claimed.attempts == 1
    assert queue.get_job_status(first) == LEASED

    queue.ack(first)

    assert queue.get_job_status(first) == DONE
    assert queue.counts_by_status() == {DONE: 1, QUEUED: 1}
    assert queue.get_job_status(second) == QUEUED
    assert queue.get_job_status("job_missing") is None


def test_queue_delays_and_lease_expiry(tmp_path: Path) -> None:
    clock = _Clock()
    queue = QueueRepository(_database(tmp_path), clock=clock)
    job_id = queue.enqueue({"n": 1}, job_type="process-podcast")

    claimed = queue.claim_next(lease_seconds=60)
    assert claimed is not None
    queue.release_for_retry(job_id, "boom", delay_seconds=30)

    clock.advance(seconds=29)
    assert queue.claim_next(lease_seconds=60) is None
    clock.advance(seconds=1)
    retried = queue.claim_next(lease_seconds=60)
    assert retried is not None
    assert retried.attempts == 2

    clock.advance(seconds=59)
    assert queue.claim_next(lease_seconds=60) is None
    clock.advance(seconds=1)
    redelivered = queue.claim_next(lease_seconds=60)
    assert redelivered is not None
    assert redelivered.attempts == 3


def test_queue_rejected_jobs_are_never_redelivered(tmp_path: Path) -> None:
    clock = _Clock()
    queue = QueueRepository(_database(tmp_path), clock=clock)
    job_id = queue.enqueue({"n": 1}, job_type="process-podcast")
    assert queue.claim_next(lease_seconds=1) is not None

    queue.reject(job_id, "invalid payload")
    clock.advance(hours=1)

    assert queue.get_job_status(job_id) == DEAD
    assert queue.claim_next(lease_seconds=1) is None


def test_delete_summary_removes_the_last_summary_with_its_podcast(tmp_path: Path) -> None:
    db = _database(tmp_path)
    podcasts = PodcastRepository(db)
    podcast = podcasts.create_podcast(_metadata(), url=VIDEO_URL)
    summaries = SummaryRepository(db)
    first = summaries.create_summary(podcast_id=podcast.id)
    second = summaries.create_summary(podcast_id=podcast.id)
    summaries.update_summary_status(second.id, ProcessingStatus.FAILED, "no transcript")

    assert summaries.delete_summary(first.id) is False
    assert summaries.get_summary(first.id) is None
    assert podcasts.get_podcast(podcast.id) is not None

    assert summaries.delete_summary(second.id) is True
    assert podcasts.get_podcast(podcast.id) is None


def test_delete_summary_refuses_summaries_in_progress(tmp_path: Path) -> None:
    summaries, _, summary_id = _summary_fixture(tmp_path)
    summaries.update_summary_status(summary_id, ProcessingStatus.FETCHING_TRANSCRIPT)

    with pytest.raises(InvalidStatusTransitionError):
        summaries.delete_summary(summary_id)
    with pytest.raises(RecordNotFoundError):
        summaries.delete_summary("missing-summary")

    assert summaries.get_summary(summary_id) is not None


def test_feedback_create_list_and_update(tmp_path: Path) -> None:
    clock = _Clock()
    feedback = FeedbackRepository(_database(tmp_path), clock=clock)
    bug = feedback.create_feedback(
        NewFeedback(
            feedback_type=FeedbackType.BUG,
            feedback_text="Stream stopped halfway",
            user_id="user-1",
            summary_id="summary-1",
            browser_info={"userAgent": "test-agent"},
            tags=["stream"],
        )
    )
    clock.advance(minutes=1)
    idea = feedback.create_feedback(
        NewFeedback(feedback_type=FeedbackType.FEATURE_REQUEST, feedback_text="Export to PDF")
    )

    assert bug.status == FeedbackStatus.NEW
    assert bug.tags == ("stream",)
    assert bug.browser_info == {"userAgent": "test-agent"}
    assert idea.user_id is None
    assert [item.id for item in feedback.list_feedback()] == [idea.id, bug.id]
    assert [item.id for item in feedback.list_feedback(sort="oldest")] == [bug.id, idea.id]
    assert [item.id for item in feedback.list_feedback(user_id="user-1")] == [bug.id]
    assert [item.id for item in feedback.list_feedback(feedback_type=FeedbackType.BUG)] == [bug.id]

    clock.advance(minutes=1)
    reviewed = feedback.update_feedback(
        idea.id,
        status=FeedbackStatus.REVIEWED,
        admin_notes="Planned",
        priority=2,
    )

    assert reviewed.status == FeedbackStatus.REVIEWED
    assert reviewed.admin_notes == "Planned"
    assert reviewed.priority == 2
    assert reviewed.feedback_text == "Export to PDF"
    assert reviewed.updated_at > reviewed.submitted_at
    assert [item.id for item in feedback.list_feedback(status=FeedbackStatus.NEW)] == [bug.id]
    assert [item.id for item in feedback.list_feedback(sort="priority")] == [idea.id, bug.id]


def test_update_missing_feedback_is_not_found(tmp_path: Path) -> None:
    feedback = FeedbackRepository(_database(tmp_path))

    with pytest.raises(RecordNotFoundError):
        feedback.update_feedback("missing", status=FeedbackStatus.CLOSED)
    assert feedback.get_feedback("missing") is None
