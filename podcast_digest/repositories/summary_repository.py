from __future__ import annotations

import json
import logging
import sqlite3
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from typing import Any
from uuid import uuid4

from podcast_digest.errors import InvalidStatusTransitionError, RecordNotFoundError
from podcast_digest.models.status import (
    IN_PROGRESS_STATUSES,
    ProcessingStatus,
    allowed_retry_transition,
    is_allowed_transition,
)
from podcast_digest.repositories.common import parse_iso_datetime, utc_now
from podcast_digest.repositories.database import Database, load_json_list, none_if_empty

LOGGER = logging.getLogger("podcast_digest.summaries")

DEFAULT_FAILURE_MESSAGE = "Processing failed"
RETRY_HISTORY_MESSAGE = "Retry requested"
DELETABLE_STATUSES: frozenset[ProcessingStatus] = frozenset(
    {ProcessingStatus.IN_QUEUE, ProcessingStatus.FAILED}
)


@dataclass(frozen=True)
class StatusHistoryEntry:
    status: ProcessingStatus
    timestamp: datetime
    message: str | None = None

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "status": self.status.value,
            "timestamp": self.timestamp.isoformat(),
        }
        if self.message is not None:
            payload["message"] = self.message
        return payload


@dataclass(frozen=True)
class SummaryRecord:
    id: str
    podcast_id: str
    user_id: str | None
    status: ProcessingStatus
    summary_text: str
    error_message: str | None
    status_history: tuple[StatusHistoryEntry, ...]
    created_at: datetime
    updated_at: datetime
    completed_at: datetime | None
    failed_at: datetime | None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "podcast_id": self.podcast_id,
            "user_id": self.user_id,
            "status": self.status.value,
            "summary_text": self.summary_text,
            "error_message": self.error_message,
            "status_history": [entry.to_dict() for entry in self.status_history],
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
            "completed_at": _isoformat_or_none(self.completed_at),
            "failed_at": _isoformat_or_none(self.failed_at),
        }


class SummaryRepository:
    """
    Summary records and their status machine.

    Every status write is a read-modify-write inside an IMMEDIATE transaction.
    Re-applying the current status is a no-op, which keeps replayed jobs from
    duplicating `status_history` entries.
    """

    def __init__(self, db: Database, *, clock: Callable[[], datetime] = utc_now) -> None:
        self._db = db
        self._clock = clock

    def create_summary(
        self,
        *,
        podcast_id: str,
        user_id: str | None = None,
        summary_id: str | None = None,
    ) -> SummaryRecord:
        resolved_id = summary_id or str(uuid4())
        now = self._clock()
        history = [StatusHistoryEntry(status=ProcessingStatus.IN_QUEUE, timestamp=now)]
        with self._db.connection("create_summary") as conn:
            conn.execute(
                """
                INSERT INTO summaries
                (id, podcast_id, user_id, status, summary_text, error_message,
                 status_history_json, created_at, updated_at, completed_at, failed_at)
                VALUES (?, ?, ?, ?, '', NULL, ?, ?, ?, NULL, NULL)
                """,
                (
                    resolved_id,
                    podcast_id,
                    user_id,
                    ProcessingStatus.IN_QUEUE.value,
                    _dump_history(history),
                    now.isoformat(),
                    now.isoformat(),
                ),
            )
        return self._require(resolved_id)

    def get_summary(self, summary_id: str) -> SummaryRecord | None:
        with self._db.connection("get_summary") as conn:
            row = _select_summary(conn, summary_id)
        if row is None:
            return None
        return _row_to_summary(row)

    def update_summary_status(
        self,
        summary_id: str,
        status: ProcessingStatus,
        error: str | None = None,
        *,
        expected_status: ProcessingStatus | None = None,
    ) -> bool:
        """
        Move a summary to `status`, returning whether anything was written.

        With `expected_status`, the write only happens while the stored status
        still equals it; a concurrent transition makes this return False.
        """
        with self._db.connection("update_summary_status", immediate=True) as conn:
            row = _select_summary(conn, summary_id)
            if row is None:
                raise RecordNotFoundError("summary", summary_id)

            current = ProcessingStatus(str(row["status"]))
            if expected_status is not None and current != expected_status:
                LOGGER.info(
                    "summary status_write_skipped summary_id=%s expected=%s current=%s",
                    summary_id,
                    expected_status,
                    current,
                )
                return False
            if current == status:
                return False
            if not is_allowed_transition(current, status):
                raise InvalidStatusTransitionError(summary_id, current.value, status.value)

            history = _history_from_row(row)
            now = _next_timestamp(self._clock(), history)
            message = error
            if status == ProcessingStatus.FAILED and not message:
                message = DEFAULT_FAILURE_MESSAGE
            history.append(StatusHistoryEntry(status=status, timestamp=now, message=message))

            assignments = ["status = ?", "status_history_json = ?", "updated_at = ?"]
            params: list[Any] = [status.value, _dump_history(history), now.isoformat()]
            if status == ProcessingStatus.FAILED:
                assignments.extend(["failed_at = ?", "error_message = ?"])
                params.extend([now.isoformat(), message])
            elif status == ProcessingStatus.COMPLETED:
                assignments.append("completed_at = ?")
                params.append(now.isoformat())
            params.append(summary_id)
            conn.execute(
                f"UPDATE summaries SET {', '.join(assignments)} WHERE id = ?",
                params,
            )

        LOGGER.info(
            "summary status_changed summary_id=%s from=%s to=%s",
            summary_id,
            current,
            status,
        )
        return True

    def append_summary(
        self,
        summary_id: str,
        text: str,
        *,
        status: ProcessingStatus | None = None,
    ) -> bool:
        """
        Store `text` as the accumulated summary when it extends what is stored.

        Readers therefore only ever see a growing prefix of the final text:
        equal text (a replayed chunk) and anything that is not an extension are
        ignored. With `status`, the write also requires the summary to be in it.
        """
        with self._db.connection("append_summary", immediate=True) as conn:
            row = _select_summary(conn, summary_id)
            if row is None:
                raise RecordNotFoundError("summary", summary_id)
            if status is not None and str(row["status"]) != status.value:
                return False

            stored = str(row["summary_text"] or "")
            if len(text) <= len(stored) or not text.startswith(stored):
                if text != stored:
                    LOGGER.warning(
                        "summary append_rejected summary_id=%s stored_length=%s new_length=%s",
                        summary_id,
                        len(stored),
                        len(text),
                    )
                return False

            now = _next_timestamp(self._clock(), _history_from_row(row))
            conn.execute(
                "UPDATE summaries SET summary_text = ?, updated_at = ? WHERE id = ?",
                (text, now.isoformat(), summary_id),
            )
        return True

    def reset_for_retry(self, summary_id: str) -> SummaryRecord:
        """Explicit user retry: the only way out of FAILED."""
        with self._db.connection("reset_for_retry", immediate=True) as conn:
            row = _select_summary(conn, summary_id)
            if row is None:
                raise RecordNotFoundError("summary", summary_id)
            current = ProcessingStatus(str(row["status"]))
            if not allowed_retry_transition(current):
                raise InvalidStatusTransitionError(
                    summary_id, current.value, ProcessingStatus.IN_QUEUE.value
                )

            history = _history_from_row(row)
            now = _next_timestamp(self._clock(), history)
            history.append(
                StatusHistoryEntry(
                    status=ProcessingStatus.IN_QUEUE,
                    timestamp=now,
                    message=RETRY_HISTORY_MESSAGE,
                )
            )
            conn.execute(
                """
                UPDATE summaries
                SET status = ?, status_history_json = ?, updated_at = ?, summary_text = '',
                    error_message = NULL, failed_at = NULL, completed_at = NULL
                WHERE id = ?
                """,
                (
                    ProcessingStatus.IN_QUEUE.value,
                    _dump_history(history),
                    now.isoformat(),
                    summary_id,
                ),
            )
        LOGGER.info("summary retry_reset summary_id=%s", summary_id)
        return self._require(summary_id)

    def delete_summary(self, summary_id: str) -> bool:
        """
        Delete a queued or failed summary; returns whether its podcast went too.

        A podcast is deleted together with its last summary. Summaries that are
        being processed or have completed cannot be deleted.
        """
        with self._db.connection("delete_summary", immediate=True) as conn:
            row = _select_summary(conn, summary_id)
            if row is None:
                raise RecordNotFoundError("summary", summary_id)
            current = ProcessingStatus(str(row["status"]))
            if current not in DELETABLE_STATUSES:
                raise InvalidStatusTransitionError(summary_id, current.value, "deleted")

            podcast_id = str(row["podcast_id"])
            conn.execute("DELETE FROM summaries WHERE id = ?", (summary_id,))
            remaining = conn.execute(
                "SELECT COUNT(*) FROM summaries WHERE podcast_id = ?",
                (podcast_id,),
            ).fetchone()[0]
            podcast_deleted = remaining == 0
            if podcast_deleted:
                conn.execute("DELETE FROM podcasts WHERE id = ?", (podcast_id,))

        LOGGER.info(
            "summary deleted summary_id=%s podcast_id=%s podcast_deleted=%s",
            summary_id,
            podcast_id,
            podcast_deleted,
        )
        return podcast_deleted

    def list_in_progress(self, limit: int = 500) -> list[SummaryRecord]:
        placeholders = ", ".join("?" for _ in IN_PROGRESS_STATUSES)
        with self._db.connection("list_in_progress") as conn:
            rows = conn.execute(
                f"""
                SELECT *
                FROM summaries
                WHERE status IN ({placeholders})
                ORDER BY updated_at ASC
                LIMIT ?
                """,
                (*[status.value for status in IN_PROGRESS_STATUSES], limit),
            ).fetchall()
        return [_row_to_summary(row) for row in rows]

    def _require(self, summary_id: str) -> SummaryRecord:
        summary = self.get_summary(summary_id)
        if summary is None:
            raise RecordNotFoundError("summary", summary_id)
        return summary


def _select_summary(conn: sqlite3.Connection, summary_id: str) -> sqlite3.Row | None:
    return conn.execute("SELECT * FROM summaries WHERE id = ?", (summary_id,)).fetchone()


def _row_to_summary(row: sqlite3.Row) -> SummaryRecord:
    return SummaryRecord(
        id=str(row["id"]),
        podcast_id=str(row["podcast_id"]),
        user_id=none_if_empty(row["user_id"]),
        status=ProcessingStatus(str(row["status"])),
        summary_text=str(row["summary_text"] or ""),
        error_message=none_if_empty(row["error_message"]),
        status_history=tuple(_history_from_row(row)),
        created_at=parse_iso_datetime(str(row["created_at"])),
        updated_at=parse_iso_datetime(str(row["updated_at"])),
        completed_at=_parse_optional_datetime(row["completed_at"]),
        failed_at=_parse_optional_datetime(row["failed_at"]),
    )


def _history_from_row(row: sqlite3.Row) -> list[StatusHistoryEntry]:
    entries: list[StatusHistoryEntry] = []
    for raw_entry in load_json_list(row["status_history_json"]):
        raw_status = raw_entry.get("status")
        raw_timestamp = raw_entry.get("timestamp")
        if not isinstance(raw_status, str) or not isinstance(raw_timestamp, str):
            continue
        raw_message = raw_entry.get("message")
        entries.append(
            StatusHistoryEntry(
                status=ProcessingStatus(raw_status),
                timestamp=parse_iso_datetime(raw_timestamp),
                message=raw_message if isinstance(raw_message, str) else None,
            )
        )
    return entries


def _dump_history(history: list[StatusHistoryEntry]) -> str:
    return json.dumps([entry.to_dict() for entry in history])


def _next_timestamp(now: datetime, history: list[StatusHistoryEntry]) -> datetime:
    # History timestamps never go backwards, even if the wall clock does.
    if history and history[-1].timestamp > now:
        return history[-1].timestamp
    return now


def _parse_optional_datetime(raw: object) -> datetime | None:
    if isinstance(raw, str) and raw.strip():
        return parse_iso_datetime(raw)
    return None


def _isoformat_or_none(value: datetime | None) -> str | None:
    if value is None:
        return None
    return value.isoformat()
