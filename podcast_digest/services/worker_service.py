from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from uuid import uuid4

from structlog.contextvars import bind_contextvars, reset_contextvars

from podcast_digest.errors import PodcastDigestError, ValidationError
from podcast_digest.repositories.queue_repository import QueuedJob, QueueRepository
from podcast_digest.services.job_processor import JobProcessor, is_permanent_failure
from podcast_digest.services.timeout_sweeper import TimeoutSweeper
from podcast_digest.telemetry import TelemetryClient

LOGGER = logging.getLogger("podcast_digest.worker")


class WorkerService:
    """
    Background loop that consumes the job queue and runs the timeout sweeper.

    Jobs and sweeps run on independent cadences in one daemon thread.
    """

    def __init__(
        self,
        *,
        processor: JobProcessor,
        queue: QueueRepository,
        sweeper: TimeoutSweeper | None = None,
        poll_interval_seconds: float = 2.0,
        sweep_interval_seconds: float = 300.0,
        max_attempts: int = 3,
        backoff_base_seconds: float = 5.0,
        lease_seconds: float = 900.0,
        jobs_per_tick: int = 10,
        telemetry: TelemetryClient | None = None,
    ) -> None:
        self._processor = processor
        self._queue = queue
        self._sweeper = sweeper
        self._poll_interval_seconds = max(0.1, poll_interval_seconds)
        self._sweep_interval_seconds = max(1.0, sweep_interval_seconds)
        self._max_attempts = max(1, max_attempts)
        self._backoff_base_seconds = max(0.0, backoff_base_seconds)
        self._lease_seconds = max(1.0, lease_seconds)
        self._jobs_per_tick = max(1, jobs_per_tick)
        self._telemetry = telemetry if telemetry is not None else TelemetryClient.disabled()
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return

        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run_loop, name="podcast-digest-worker")
        self._thread.daemon = True
        self._thread.start()

    def stop(self) -> None:
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout=3)
            self._thread = None

    def run_once(self) -> bool:
        """Process at most one queued job; returns whether a job was claimed."""
        job = self._queue.claim_next(lease_seconds=self._lease_seconds)
        if job is None:
            return False
        self._handle_job(job)
        return True

    def retry_delay_seconds(self, attempts: int) -> float:
        return self._backoff_base_seconds * (2 ** max(0, attempts - 1))

    def _run_loop(self) -> None:
        next_jobs_tick = 0.0
        next_sweep_tick = 0.0
        while not self._stop_event.is_set():
            now = time.monotonic()
            if now >= next_jobs_tick:
                self._run_tick("jobs", self._drain_queue)
                next_jobs_tick = now + self._poll_interval_seconds

            if self._sweeper is not None and now >= next_sweep_tick:
                self._run_tick("timeouts", self._sweeper.sweep)
                next_sweep_tick = now + self._sweep_interval_seconds

            sleep_for_seconds = next_jobs_tick - now
            if self._sweeper is not None:
                sleep_for_seconds = min(sleep_for_seconds, next_sweep_tick - now)
            self._stop_event.wait(max(0.0, sleep_for_seconds))

    def _drain_queue(self) -> None:
        for _ in range(self._jobs_per_tick):
            if self._stop_event.is_set() or not self.run_once():
                return

    def _run_tick(self, tick_type: str, action: Callable[[], object]) -> None:
        tick_id = uuid4().hex
        tick_tokens = bind_contextvars(worker_tick_id=tick_id, worker_tick_type=tick_type)
        started_at = time.perf_counter()
        self._telemetry.emit("worker.tick.start", tick_id=tick_id, tick_type=tick_type)
        try:
            action()
        except Exception as exc:
            self._telemetry.emit(
                "worker.tick.error",
                tick_id=tick_id,
                tick_type=tick_type,
                duration_ms=int((time.perf_counter() - started_at) * 1000),
                error_type=type(exc).__name__,
            )
            LOGGER.warning("worker %s tick failed", tick_type, exc_info=True)
        else:
            self._telemetry.emit(
                "worker.tick.finish",
                tick_id=tick_id,
                tick_type=tick_type,
                duration_ms=int((time.perf_counter() - started_at) * 1000),
                outcome="ok",
            )
        finally:
            reset_contextvars(**tick_tokens)

    def _handle_job(self, job: QueuedJob) -> None:
        job_tokens = bind_contextvars(queue_job_id=job.job_id, queue_attempt=job.attempts)
        try:
            self._processor.process(
                job.payload,
                final_attempt=job.attempts >= self._max_attempts,
            )
        except Exception as exc:
            if is_permanent_failure(exc):
                self._queue.reject(job.job_id, _describe(exc))
            elif job.attempts >= self._max_attempts:
                LOGGER.warning(
                    "worker job_exhausted job_id=%s attempts=%s",
                    job.job_id,
                    job.attempts,
                    exc_info=True,
                )
                self._queue.reject(job.job_id, _describe(exc))
            else:
                delay = self.retry_delay_seconds(job.attempts)
                LOGGER.info(
                    "worker job_retry_scheduled job_id=%s attempts=%s delay_seconds=%s error=%s",
                    job.job_id,
                    job.attempts,
                    delay,
                    _describe(exc),
                )
                self._queue.release_for_retry(job.job_id, _describe(exc), delay_seconds=delay)
        else:
            self._queue.ack(job.job_id)
        finally:
            reset_contextvars(**job_tokens)


def _describe(exc: Exception) -> str:
    if isinstance(exc, ValidationError) and exc.errors:
        return f"{exc}: {'; '.join(exc.errors)}"
    if isinstance(exc, PodcastDigestError):
        return str(exc)
    return f"{type(exc).__name__}: {exc}"
