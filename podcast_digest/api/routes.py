from __future__ import annotations

import json
import time
from collections.abc import Iterator
from typing import Annotated, Literal

from fastapi import APIRouter, Depends, Query, Response
from fastapi.responses import StreamingResponse
from structlog.contextvars import bind_contextvars, reset_contextvars

from podcast_digest.dependencies import (
    get_feedback_repository,
    get_intake_service,
    get_summary_repository,
    get_timeout_sweeper,
)
from podcast_digest.errors import RecordNotFoundError, ValidationError
from podcast_digest.models.api_contracts import (
    CreateFeedbackRequest,
    FeedbackResponse,
    SubmitPodcastRequest,
    SubmitPodcastResponse,
    SummaryResponse,
    TimeoutStatisticsResponse,
    TimeoutSweepResponse,
    UpdateFeedbackRequest,
)
from podcast_digest.models.status import FeedbackStatus, FeedbackType, ProcessingStatus
from podcast_digest.repositories.feedback_repository import FeedbackRepository, NewFeedback
from podcast_digest.repositories.summary_repository import SummaryRecord, SummaryRepository
from podcast_digest.services.podcast_intake import PodcastIntakeService
from podcast_digest.services.timeout_sweeper import TimeoutSweeper

router = APIRouter()

STREAM_POLL_INTERVAL_SECONDS = 0.5
STREAM_MAX_SECONDS = 900.0
STREAM_DONE_EVENT = "data: [DONE]\n\n"


def _sse_event(payload: dict[str, str]) -> str:
    return f"data: {json.dumps(payload)}\n\n"


def _require_summary(summaries: SummaryRepository, summary_id: str) -> SummaryRecord:
    summary = summaries.get_summary(summary_id)
    if summary is None:
        raise RecordNotFoundError("summary", summary_id)
    return summary


def stream_summary_events(
    summaries: SummaryRepository,
    summary_id: str,
    *,
    poll_interval_seconds: float = STREAM_POLL_INTERVAL_SECONDS,
    max_seconds: float = STREAM_MAX_SECONDS,
) -> Iterator[str]:
    """
    Server-sent events for a summary's persisted text.

    Each event carries only the text added since the previous event. The stream
    ends with `[DONE]` once the summary is terminal; a failure is reported as an
    `error` event first.
    """
    sent = ""
    deadline = time.monotonic() + max_seconds
    while True:
        summary = summaries.get_summary(summary_id)
        if summary is None:
            yield _sse_event({"error": f"summary not found: {summary_id}"})
            yield STREAM_DONE_EVENT
            return

        text = summary.summary_text
        if not text.startswith(sent):
            # The summary was reset for a retry.
            sent = ""
        if len(text) > len(sent):
            yield _sse_event({"text": text[len(sent):]})
            sent = text

        if summary.status == ProcessingStatus.COMPLETED:
            yield STREAM_DONE_EVENT
            return
        if summary.status == ProcessingStatus.FAILED:
            yield _sse_event({"error": summary.error_message or "Processing failed"})
            yield STREAM_DONE_EVENT
            return
        if time.monotonic() >= deadline:
            yield _sse_event({"error": "Timed out waiting for the summary."})
            yield STREAM_DONE_EVENT
            return
        time.sleep(poll_interval_seconds)


@router.post(
    "/podcasts",
    response_model=SubmitPodcastResponse,
    status_code=202,
    tags=["podcasts"],
    operation_id="submit_podcast",
)
def submit_podcast(
    request: SubmitPodcastRequest,
    intake: Annotated[PodcastIntakeService, Depends(get_intake_service)],
) -> SubmitPodcastResponse:
    context_tokens = bind_contextvars(submitted_url=request.url)
    try:
        result = intake.submit(request.url, user_id=request.user_id)
    finally:
        reset_contextvars(**context_tokens)
    return SubmitPodcastResponse(
        podcast_id=result.podcast.id,
        summary_id=result.summary.id,
        status=result.summary.status,
    )


@router.get(
    "/summaries/{summary_id}",
    response_model=SummaryResponse,
    tags=["summaries"],
    operation_id="get_summary",
)
def get_summary(
    summary_id: str,
    summaries: Annotated[SummaryRepository, Depends(get_summary_repository)],
) -> SummaryResponse:
    return SummaryResponse.from_record(_require_summary(summaries, summary_id))


@router.get(
    "/summaries/{summary_id}/stream",
    tags=["summaries"],
    operation_id="stream_summary",
)
def stream_summary(
    summary_id: str,
    summaries: Annotated[SummaryRepository, Depends(get_summary_repository)],
) -> StreamingResponse:
    _require_summary(summaries, summary_id)
    return StreamingResponse(
        stream_summary_events(summaries, summary_id),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


@router.post(
    "/summaries/{summary_id}/retry",
    response_model=SubmitPodcastResponse,
    status_code=202,
    tags=["summaries"],
    operation_id="retry_summary",
)
def retry_summary(
    summary_id: str,
    intake: Annotated[PodcastIntakeService, Depends(get_intake_service)],
) -> SubmitPodcastResponse:
    result = intake.retry_summary(summary_id)
    return SubmitPodcastResponse(
        podcast_id=result.podcast.id,
        summary_id=result.summary.id,
        status=result.summary.status,
    )


@router.delete(
    "/summaries/{summary_id}",
    status_code=204,
    tags=["summaries"],
    operation_id="delete_summary",
)
def delete_summary(
    summary_id: str,
    summaries: Annotated[SummaryRepository, Depends(get_summary_repository)],
) -> Response:
    summaries.delete_summary(summary_id)
    return Response(status_code=204)


@router.get(
    "/admin/timeouts",
    response_model=TimeoutStatisticsResponse,
    tags=["admin"],
    operation_id="timeout_statistics",
)
def timeout_statistics(
    sweeper: Annotated[TimeoutSweeper, Depends(get_timeout_sweeper)],
) -> TimeoutStatisticsResponse:
    return TimeoutStatisticsResponse.model_validate(sweeper.statistics().to_dict())


@router.post(
    "/admin/timeouts/check",
    response_model=TimeoutSweepResponse,
    tags=["admin"],
    operation_id="run_timeout_sweep",
)
def run_timeout_sweep(
    sweeper: Annotated[TimeoutSweeper, Depends(get_timeout_sweeper)],
) -> TimeoutSweepResponse:
    return TimeoutSweepResponse.model_validate(sweeper.sweep().to_dict())


def _admin_feedback_filter(value: str) -> tuple[FeedbackStatus | None, FeedbackType | None]:
    """`all`, `new` (status) or a feedback type."""
    normalized = value.strip().lower()
    if normalized in ("", "all"):
        return None, None
    if normalized == FeedbackStatus.NEW:
        return FeedbackStatus.NEW, None
    try:
        return None, FeedbackType(normalized)
    except ValueError as exc:
        raise ValidationError(
            "Invalid feedback filter.",
            errors=[f"filter: expected all, new or a feedback type, got {value!r}"],
        ) from exc


@router.post(
    "/feedback",
    response_model=FeedbackResponse,
    status_code=201,
    tags=["feedback"],
    operation_id="submit_feedback",
)
def submit_feedback(
    request: CreateFeedbackRequest,
    feedback: Annotated[FeedbackRepository, Depends(get_feedback_repository)],
) -> FeedbackResponse:
    record = feedback.create_feedback(
        NewFeedback(
            feedback_type=request.feedback_type,
            feedback_text=request.feedback_text,
            user_id=request.user_id,
            summary_id=request.summary_id,
            podcast_id=request.podcast_id,
            page_url=request.page_url,
            browser_info=request.browser_info,
            tags=request.tags,
        )
    )
    return FeedbackResponse.from_record(record)


@router.get(
    "/feedback",
    response_model=list[FeedbackResponse],
    tags=["feedback"],
    operation_id="list_user_feedback",
)
def list_user_feedback(
    user_id: Annotated[str, Query(min_length=1, max_length=120)],
    feedback: Annotated[FeedbackRepository, Depends(get_feedback_repository)],
) -> list[FeedbackResponse]:
    return [
        FeedbackResponse.from_record(record)
        for record in feedback.list_feedback(user_id=user_id.strip())
    ]


@router.get(
    "/admin/feedback",
    response_model=list[FeedbackResponse],
    tags=["admin"],
    operation_id="list_feedback",
)
def list_feedback(
    feedback: Annotated[FeedbackRepository, Depends(get_feedback_repository)],
    feedback_filter: Annotated[str, Query(alias="filter")] = "all",
    sort: Literal["newest", "oldest", "priority"] = "newest",
) -> list[FeedbackResponse]:
    status, feedback_type = _admin_feedback_filter(feedback_filter)
    records = feedback.list_feedback(status=status, feedback_type=feedback_type, sort=sort)
    return [FeedbackResponse.from_record(record) for record in records]


@router.get(
    "/admin/feedback/{feedback_id}",
    response_model=FeedbackResponse,
    tags=["admin"],
    operation_id="get_feedback",
)
def get_feedback(
    feedback_id: str,
    feedback: Annotated[FeedbackRepository, Depends(get_feedback_repository)],
) -> FeedbackResponse:
    record = feedback.get_feedback(feedback_id)
    if record is None:
        raise RecordNotFoundError("feedback", feedback_id)
    return FeedbackResponse.from_record(record)


@router.patch(
    "/admin/feedback/{feedback_id}",
    response_model=FeedbackResponse,
    tags=["admin"],
    operation_id="update_feedback",
)
def update_feedback(
    feedback_id: str,
    request: UpdateFeedbackRequest,
    feedback: Annotated[FeedbackRepository, Depends(get_feedback_repository)],
) -> FeedbackResponse:
    record = feedback.update_feedback(
        feedback_id,
        status=request.status,
        admin_notes=request.admin_notes,
        priority=request.priority,
        tags=request.tags,
    )
    return FeedbackResponse.from_record(record)
