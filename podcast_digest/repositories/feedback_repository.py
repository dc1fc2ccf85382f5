from __future__ import annotations

import json
import logging
import sqlite3
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Literal, cast
from uuid import uuid4

from podcast_digest.errors import RecordNotFoundError
from podcast_digest.models.status import FeedbackStatus, FeedbackType
from podcast_digest.repositories.common import parse_iso_datetime, utc_now
from podcast_digest.repositories.database import Database, none_if_empty

LOGGER = logging.getLogger("podcast_digest.feedback")

FeedbackSort = Literal["newest", "oldest", "priority"]

_ORDER_BY: dict[str, str] = {
    "newest": "submitted_at DESC",
    "oldest": "submitted_at ASC",
    # Unprioritized entries go last.
    "priority": "priority IS NULL, priority ASC, submitted_at DESC",
}


@dataclass(frozen=True)
class FeedbackRecord:
    id: str
    user_id: str | None
    feedback_type: FeedbackType
    feedback_text: str
    summary_id: str | None
    podcast_id: str | None
    page_url: str | None
    browser_info: dict[str, Any] | None
    tags: tuple[str, ...]
    status: FeedbackStatus
    admin_notes: str | None
    priority: int | None
    submitted_at: datetime
    updated_at: datetime

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "feedback_type": self.feedback_type.value,
            "feedback_text": self.feedback_text,
            "summary_id": self.summary_id,
            "podcast_id": self.podcast_id,
            "page_url": self.page_url,
            "browser_info": self.browser_info,
            "tags": list(self.tags),
            "status": self.status.value,
            "admin_notes": self.admin_notes,
            "priority": self.priority,
            "submitted_at": self.submitted_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }


@dataclass(frozen=True)
class NewFeedback:
    feedback_type: FeedbackType
    feedback_text: str
    user_id: str | None = None
    summary_id: str | None = None
    podcast_id: str | None = None
    page_url: str | None = None
    browser_info: Mapping[str, Any] | None = None
    tags: Sequence[str] = field(default_factory=tuple)


class FeedbackRepository:
    """User feedback and its admin triage fields."""

    def __init__(self, db: Database, *, clock: Callable[[], datetime] = utc_now) -> None:
        self._db = db
        self._clock = clock

    def create_feedback(self, feedback: NewFeedback) -> FeedbackRecord:
        feedback_id = str(uuid4())
        now = self._clock().isoformat()
        browser_info = (
            json.dumps(dict(feedback.browser_info)) if feedback.browser_info is not None else None
        )
        with self._db.connection("create_feedback") as conn:
            conn.execute(
                """
                INSERT INTO feedback
                (id, user_id, feedback_type, feedback_text, summary_id, podcast_id, page_url,
                 browser_info_json, tags_json, status, admin_notes, priority,
                 submitted_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, NULL, NULL, ?, ?)
                """,
                (
                    feedback_id,
                    feedback.user_id,
                    feedback.feedback_type.value,
                    feedback.feedback_text,
                    feedback.summary_id,
                    feedback.podcast_id,
                    feedback.page_url,
                    browser_info,
                    json.dumps(list(feedback.tags)),
                    FeedbackStatus.NEW.value,
                    now,
                    now,
                ),
            )
        LOGGER.info(
            "feedback created feedback_id=%s type=%s summary_id=%s",
            feedback_id,
            feedback.feedback_type,
            feedback.summary_id,
        )
        return self._require(feedback_id)

    def get_feedback(self, feedback_id: str) -> FeedbackRecord | None:
        with self._db.connection("get_feedback") as conn:
            row = conn.execute("SELECT * FROM feedback WHERE id = ?", (feedback_id,)).fetchone()
        if row is None:
            return None
        return _row_to_feedback(row)

    def list_feedback(
        self,
        *,
        user_id: str | None = None,
        status: FeedbackStatus | None = None,
        feedback_type: FeedbackType | None = None,
        sort: FeedbackSort = "newest",
    ) -> list[FeedbackRecord]:
        conditions: list[str] = []
        params: list[Any] = []
        for column, value in (
            ("user_id", user_id),
            ("status", status),
            ("feedback_type", feedback_type),
        ):
            if value is not None:
                conditions.append(f"{column} = ?")
                params.append(str(value))
        where = f"WHERE {' AND '.join(conditions)}" if conditions else ""
        with self._db.connection("list_feedback") as conn:
            rows = conn.execute(
                f"SELECT * FROM feedback {where} ORDER BY {_ORDER_BY[sort]}",
                params,
            ).fetchall()
        return [_row_to_feedback(row) for row in rows]

    def update_feedback(
        self,
        feedback_id: str,
        *,
        status: FeedbackStatus | None = None,
        admin_notes: str | None = None,
        priority: int | None = None,
        tags: Sequence[str] | None = None,
    ) -> FeedbackRecord:
        """Apply the given triage fields; fields left as None keep their value."""
        assignments: list[str] = []
        params: list[Any] = []
        if status is not None:
            assignments.append("status = ?")
            params.append(status.value)
        if admin_notes is not None:
            assignments.append("admin_notes = ?")
            params.append(admin_notes)
        if priority is not None:
            assignments.append("priority = ?")
            params.append(priority)
        if tags is not None:
            assignments.append("tags_json = ?")
            params.append(json.dumps(list(tags)))
        assignments.append("updated_at = ?")
        params.extend([self._clock().isoformat(), feedback_id])

        with self._db.connection("update_feedback") as conn:
            cursor = conn.execute(
                f"UPDATE feedback SET {', '.join(assignments)} WHERE id = ?",
                params,
            )
            if cursor.rowcount == 0:
                raise RecordNotFoundError("feedback", feedback_id)
        return self._require(feedback_id)

    def _require(self, feedback_id: str) -> FeedbackRecord:
        feedback = self.get_feedback(feedback_id)
        if feedback is None:
            raise RecordNotFoundError("feedback", feedback_id)
        return feedback


def _row_to_feedback(row: sqlite3.Row) -> FeedbackRecord:
    raw_priority = row["priority"]
    return FeedbackRecord(
        id=str(row["id"]),
        user_id=none_if_empty(row["user_id"]),
        feedback_type=FeedbackType(str(row["feedback_type"])),
        feedback_text=str(row["feedback_text"]),
        summary_id=none_if_empty(row["summary_id"]),
        podcast_id=none_if_empty(row["podcast_id"]),
        page_url=none_if_empty(row["page_url"]),
        browser_info=_load_browser_info(row["browser_info_json"]),
        tags=_load_tags(row["tags_json"]),
        status=FeedbackStatus(str(row["status"])),
        admin_notes=none_if_empty(row["admin_notes"]),
        priority=int(raw_priority) if raw_priority is not None else None,
        submitted_at=parse_iso_datetime(str(row["submitted_at"])),
        updated_at=parse_iso_datetime(str(row["updated_at"])),
    )


def _load_tags(raw: object) -> tuple[str, ...]:
    if not isinstance(raw, str):
        return ()
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError:
        return ()
    if not isinstance(parsed, list):
        return ()
    return tuple(item for item in cast(list[object], parsed) if isinstance(item, str))


def _load_browser_info(raw: object) -> dict[str, Any] | None:
    if not isinstance(raw, str):
        return None
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError:
        return None
    if not isinstance(parsed, dict):
        return None
    return {str(key): value for key, value in cast(dict[object, Any], parsed).items()}
