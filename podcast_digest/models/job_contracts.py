from __future__ import annotations

from typing import Any, Literal
from uuid import UUID

from pydantic import AnyHttpUrl, BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from podcast_digest.errors import ValidationError
from podcast_digest.models.status import Platform

PROCESS_PODCAST_JOB_TYPE = "PROCESS_PODCAST"


class ProcessPodcastData(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True, populate_by_name=True)

    podcast_id: UUID = Field(alias="podcastId")
    summary_id: UUID = Field(alias="summaryId")
    url: AnyHttpUrl
    type: Platform | None = None
    user_id: str | None = Field(default=None, alias="userId")


class ProcessPodcastJob(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    type: Literal["PROCESS_PODCAST"]
    data: ProcessPodcastData

    @property
    def summary_id(self) -> str:
        return str(self.data.summary_id)

    @property
    def podcast_id(self) -> str:
        return str(self.data.podcast_id)

    @property
    def url(self) -> str:
        return str(self.data.url)

    def to_message(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


def build_process_podcast_job(
    *,
    podcast_id: str,
    summary_id: str,
    url: str,
    platform: Platform | None = None,
    user_id: str | None = None,
) -> ProcessPodcastJob:
    return parse_job_payload(
        {
            "type": PROCESS_PODCAST_JOB_TYPE,
            "data": {
                "podcastId": podcast_id,
                "summaryId": summary_id,
                "url": url,
                "type": platform,
                "userId": user_id,
            },
        }
    )


def parse_job_payload(raw: Any) -> ProcessPodcastJob:
    """Validate a queue message; malformed payloads are rejected permanently."""
    try:
        return ProcessPodcastJob.model_validate(raw)
    except PydanticValidationError as exc:
        messages = [
            f"{'.'.join(str(part) for part in error['loc'])}: {error['msg']}"
            for error in exc.errors()
        ]
        raise ValidationError("Invalid job payload.", errors=messages) from exc
