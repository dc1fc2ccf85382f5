from __future__ import annotations

from enum import StrEnum


class ProcessingStatus(StrEnum):
    IN_QUEUE = "in_queue"
    FETCHING_TRANSCRIPT = "fetching_transcript"
    GENERATING_SUMMARY = "generating_summary"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


class Platform(StrEnum):
    YOUTUBE = "youtube"
    SPOTIFY = "spotify"


TERMINAL_STATUSES: frozenset[ProcessingStatus] = frozenset(
    {ProcessingStatus.COMPLETED, ProcessingStatus.FAILED}
)
IN_PROGRESS_STATUSES: tuple[ProcessingStatus, ...] = (
    ProcessingStatus.IN_QUEUE,
    ProcessingStatus.FETCHING_TRANSCRIPT,
    ProcessingStatus.GENERATING_SUMMARY,
)

# Forward transitions the processor may apply. FAILED -> IN_QUEUE is not listed:
# it is only reachable through `allowed_retry_transition`.
_FORWARD_TRANSITIONS: dict[ProcessingStatus, frozenset[ProcessingStatus]] = {
    ProcessingStatus.IN_QUEUE: frozenset(
        {ProcessingStatus.FETCHING_TRANSCRIPT, ProcessingStatus.FAILED}
    ),
    ProcessingStatus.FETCHING_TRANSCRIPT: frozenset(
        {ProcessingStatus.GENERATING_SUMMARY, ProcessingStatus.FAILED}
    ),
    ProcessingStatus.GENERATING_SUMMARY: frozenset(
        {ProcessingStatus.COMPLETED, ProcessingStatus.FAILED}
    ),
    ProcessingStatus.COMPLETED: frozenset(),
    ProcessingStatus.FAILED: frozenset(),
}


def is_allowed_transition(current: ProcessingStatus, requested: ProcessingStatus) -> bool:
    return requested in _FORWARD_TRANSITIONS[current]


def allowed_retry_transition(current: ProcessingStatus) -> bool:
    return current == ProcessingStatus.FAILED


class FeedbackType(StrEnum):
    GENERAL = "general"
    BUG = "bug"
    FEATURE_REQUEST = "feature_request"
    SUMMARY_QUALITY = "summary_quality"
    SUMMARY_RETRY_LIMIT = "summary_retry_limit"


class FeedbackStatus(StrEnum):
    NEW = "new"
    REVIEWED = "reviewed"
    IMPLEMENTED = "implemented"
    CLOSED = "closed"
