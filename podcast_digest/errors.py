from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Any, Literal

PlatformErrorCode = Literal["INVALID_URL", "VIDEO_NOT_FOUND", "API_ERROR"]
TranscriptErrorCode = Literal["INVALID_URL", "NO_TRANSCRIPT", "ALL_SOURCES_FAILED"]


class PodcastDigestError(Exception):
    pass


class PlatformError(PodcastDigestError):
    """Metadata lookup against YouTube or Spotify failed."""

    def __init__(
        self,
        message: str,
        *,
        platform: str,
        code: PlatformErrorCode,
        context: Mapping[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.platform = platform
        self.code: PlatformErrorCode = code
        self.context: dict[str, Any] = dict(context or {})


class TranscriptError(PodcastDigestError):
    """
    No transcript could be produced for a URL.

    `errors` maps each attempted source name to the message it failed with, so a
    single ALL_SOURCES_FAILED error carries the full diagnostics of the fan-out.
    """

    def __init__(
        self,
        message: str,
        *,
        code: TranscriptErrorCode,
        url: str,
        errors: Mapping[str, str] | None = None,
    ) -> None:
        super().__init__(message)
        self.code: TranscriptErrorCode = code
        self.url = url
        self.errors: dict[str, str] = dict(errors or {})


class ValidationError(PodcastDigestError):
    def __init__(self, message: str, *, errors: Sequence[str] = ()) -> None:
        super().__init__(message)
        self.errors: list[str] = list(errors)


class DatabaseError(PodcastDigestError):
    def __init__(
        self,
        message: str,
        *,
        code: str,
        operation: str,
        context: Mapping[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.operation = operation
        self.context: dict[str, Any] = dict(context or {})


class RecordNotFoundError(PodcastDigestError):
    def __init__(self, kind: str, record_id: str) -> None:
        super().__init__(f"{kind} not found: {record_id}")
        self.kind = kind
        self.record_id = record_id


class InvalidStatusTransitionError(PodcastDigestError):
    def __init__(self, summary_id: str, current: str, requested: str) -> None:
        super().__init__(
            f"Summary {summary_id} cannot move from {current} to {requested}."
        )
        self.summary_id = summary_id
        self.current = current
        self.requested = requested


class SummaryGenerationError(PodcastDigestError):
    pass
