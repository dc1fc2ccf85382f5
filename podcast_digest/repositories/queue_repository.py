from __future__ import annotations

import json
import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, cast
from uuid import uuid4

from podcast_digest.repositories.common import utc_now
from podcast_digest.repositories.database import Database

LOGGER = logging.getLogger("podcast_digest.queue")

QUEUED = "queued"
LEASED = "leased"
DONE = "done"
DEAD = "dead"


@dataclass(frozen=True)
class QueuedJob:
    job_id: str
    job_type: str
    payload: Any
    attempts: int


class QueueRepository:
    """
    SQLite-backed at-least-once job queue.

    A claimed job is leased; if the worker dies before acking, the lease
    expires and the job is handed out again.
    """

    def __init__(self, db: Database, *, clock: Callable[[], datetime] = utc_now) -> None:
        self._db = db
        self._clock = clock

    def enqueue(self, message: dict[str, Any], *, job_type: str, delay_seconds: float = 0) -> str:
        job_id = f"job_{uuid4().hex}"
        now = self._clock()
        with self._db.connection("enqueue") as conn:
            conn.execute(
                """
                INSERT INTO job_queue
                (id, job_type, payload_json, status, attempts, available_at,
                 leased_until, last_error, created_at, updated_at)
                VALUES (?, ?, ?, ?, 0, ?, NULL, NULL, ?, ?)
                """,
                (
                    job_id,
                    job_type,
                    json.dumps(message, sort_keys=True),
                    QUEUED,
                    (now + timedelta(seconds=delay_seconds)).isoformat(),
                    now.isoformat(),
                    now.isoformat(),
                ),
            )
        LOGGER.info("queue enqueued job_id=%s job_type=%s", job_id, job_type)
        return job_id

    def claim_next(self, *, lease_seconds: float) -> QueuedJob | None:
        now = self._clock()
        with self._db.connection("claim_next", immediate=True) as conn:
            row = conn.execute(
                """
                SELECT id, job_type, payload_json, attempts
                FROM job_queue
                WHERE (status = ? AND available_at <= ?)
                   OR (status = ? AND leased_until <= ?)
                ORDER BY available_at ASC, created_at ASC
                LIMIT 1
                """,
                (QUEUED, now.isoformat(), LEASED, now.isoformat()),
            ).fetchone()
            if row is None:
                return None

            attempts = int(row["attempts"]) + 1
            conn.execute(
                """
                UPDATE job_queue
                SET status = ?, attempts = ?, leased_until = ?, updated_at = ?
                WHERE id = ?
                """,
                (
                    LEASED,
                    attempts,
                    (now + timedelta(seconds=lease_seconds)).isoformat(),
                    now.isoformat(),
                    str(row["id"]),
                ),
            )
        return QueuedJob(
            job_id=str(row["id"]),
            job_type=str(row["job_type"]),
            payload=_load_payload(str(row["payload_json"])),
            attempts=attempts,
        )

    def ack(self, job_id: str) -> None:
        self._set_status(job_id, DONE, error=None, operation="ack")

    def reject(self, job_id: str, error: str) -> None:
        """Drop a job permanently; it is never redelivered."""
        self._set_status(job_id, DEAD, error=error, operation="reject")
        LOGGER.warning("queue rejected job_id=%s error=%s", job_id, error)

    def release_for_retry(self, job_id: str, error: str, *, delay_seconds: float) -> None:
        now = self._clock()
        with self._db.connection("release_for_retry") as conn:
            conn.execute(
                """
                UPDATE job_queue
                SET status = ?, available_at = ?, leased_until = NULL,
                    last_error = ?, updated_at = ?
                WHERE id = ?
                """,
                (
                    QUEUED,
                    (now + timedelta(seconds=delay_seconds)).isoformat(),
                    error,
                    now.isoformat(),
                    job_id,
                ),
            )

    def counts_by_status(self) -> dict[str, int]:
        with self._db.connection("queue_counts") as conn:
            rows = conn.execute(
                "SELECT status, COUNT(*) AS total FROM job_queue GROUP BY status"
            ).fetchall()
        return {str(row["status"]): int(row["total"]) for row in rows}

    def get_job_status(self, job_id: str) -> str | None:
        with self._db.connection("get_job_status") as conn:
            row = conn.execute("SELECT status FROM job_queue WHERE id = ?", (job_id,)).fetchone()
        if row is None:
            return None
        return str(row["status"])

    def _set_status(self, job_id: str, status: str, *, error: str | None, operation: str) -> None:
        with self._db.connection(operation) as conn:
            conn.execute(
                """
                UPDATE job_queue
                SET status = ?, leased_until = NULL, last_error = COALESCE(?, last_error),
                    updated_at = ?
                WHERE id = ?
                """,
                (status, error, self._clock().isoformat(), job_id),
            )


def _load_payload(raw: str) -> Any:
    try:
        return cast(object, json.loads(raw))
    except json.JSONDecodeError:
        return None
