from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from podcast_digest.models.status import FeedbackStatus, FeedbackType, ProcessingStatus
from podcast_digest.repositories.feedback_repository import FeedbackRecord
from podcast_digest.repositories.summary_repository import SummaryRecord


def _normalize_optional_text(value: object) -> str | None:
    if not isinstance(value, str):
        return None
    normalized = value.strip()
    return normalized or None


class SubmitPodcastRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    url: str = Field(min_length=1, max_length=2048)
    user_id: str | None = Field(default=None, max_length=120)

    @field_validator("url")
    @classmethod
    def _validate_url(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError("url must not be blank")
        if any(ord(character) < 32 for character in normalized):
            raise ValueError("url contains control characters")
        return normalized

    @field_validator("user_id", mode="before")
    @classmethod
    def _normalize_user_id(cls, value: object) -> str | None:
        return _normalize_optional_text(value)


class SubmitPodcastResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")

    podcast_id: str
    summary_id: str
    status: ProcessingStatus


class StatusHistoryItem(BaseModel):
    model_config = ConfigDict(extra="forbid")

    status: ProcessingStatus
    timestamp: str
    message: str | None = None


class SummaryResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")

    id: str
    podcast_id: str
    user_id: str | None
    status: ProcessingStatus
    summary_text: str
    error_message: str | None
    status_history: list[StatusHistoryItem]
    created_at: str
    updated_at: str
    completed_at: str | None
    failed_at: str | None

    @classmethod
    def from_record(cls, record: SummaryRecord) -> SummaryResponse:
        return cls.model_validate(record.to_dict())


class TimeoutStatisticsResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")

    total: int
    by_status: dict[str, int]
    at_risk: int
    stalled: int


class TimeoutSweepResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")

    checked: int
    timed_out: int
    skipped: int
    errors: int
    failed_summary_ids: list[str]


class CreateFeedbackRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    feedback_type: FeedbackType
    feedback_text: str = Field(min_length=1, max_length=5000)
    user_id: str | None = Field(default=None, max_length=120)
    summary_id: str | None = Field(default=None, max_length=120)
    podcast_id: str | None = Field(default=None, max_length=120)
    page_url: str | None = Field(default=None, max_length=2048)
    browser_info: dict[str, Any] | None = None
    tags: list[str] = Field(default_factory=list, max_length=20)

    @field_validator("feedback_text")
    @classmethod
    def _validate_text(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError("feedback_text must not be blank")
        return normalized

    @field_validator("user_id", "summary_id", "podcast_id", "page_url", mode="before")
    @classmethod
    def _normalize_optional(cls, value: object) -> str | None:
        return _normalize_optional_text(value)


class UpdateFeedbackRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    status: FeedbackStatus | None = None
    admin_notes: str | None = Field(default=None, max_length=5000)
    priority: int | None = Field(default=None, ge=1, le=5)
    tags: list[str] | None = Field(default=None, max_length=20)


class FeedbackResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")

    id: str
    user_id: str | None
    feedback_type: FeedbackType
    feedback_text: str
    summary_id: str | None
    podcast_id: str | None
    page_url: str | None
    browser_info: dict[str, Any] | None
    tags: list[str]
    status: FeedbackStatus
    admin_notes: str | None
    priority: int | None
    submitted_at: str
    updated_at: str

    @classmethod
    def from_record(cls, record: FeedbackRecord) -> FeedbackResponse:
        return cls.model_validate(record.to_dict())
