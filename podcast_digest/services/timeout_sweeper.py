from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

from podcast_digest.models.status import IN_PROGRESS_STATUSES, ProcessingStatus
from podcast_digest.repositories.common import utc_now
from podcast_digest.repositories.interfaces import SummaryStore
from podcast_digest.telemetry import TelemetryClient

LOGGER = logging.getLogger("podcast_digest.timeouts")

DEFAULT_TIMEOUT_THRESHOLDS: dict[ProcessingStatus, timedelta] = {
    ProcessingStatus.IN_QUEUE: timedelta(hours=1),
    ProcessingStatus.FETCHING_TRANSCRIPT: timedelta(hours=2),
    ProcessingStatus.GENERATING_SUMMARY: timedelta(hours=4),
}
DEFAULT_TIMEOUT_THRESHOLD = timedelta(hours=2)
AT_RISK_FRACTION = 0.75
TIMEOUT_MESSAGE_TEMPLATE = "Summary processing timed out while in {status} status"
SWEEP_BATCH_LIMIT = 5_000


@dataclass(frozen=True)
class SweepResult:
    checked: int
    timed_out: int
    skipped: int
    errors: int
    failed_summary_ids: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "checked": self.checked,
            "timed_out": self.timed_out,
            "skipped": self.skipped,
            "errors": self.errors,
            "failed_summary_ids": list(self.failed_summary_ids),
        }


@dataclass(frozen=True)
class TimeoutStatistics:
    total: int
    by_status: dict[str, int] = field(default_factory=dict)
    at_risk: int = 0
    stalled: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "total": self.total,
            "by_status": dict(self.by_status),
            "at_risk": self.at_risk,
            "stalled": self.stalled,
        }


class TimeoutSweeper:
    """
    Fail summaries that sat in one non-terminal status for too long.

    The failure is written conditionally on the status observed during the
    scan, so a summary that completed in the meantime is left alone. Timeouts
    only mark state; in-flight work is not interrupted.
    """

    def __init__(
        self,
        summaries: SummaryStore,
        *,
        thresholds: Mapping[ProcessingStatus, timedelta] | None = None,
        default_threshold: timedelta = DEFAULT_TIMEOUT_THRESHOLD,
        clock: Callable[[], datetime] = utc_now,
        telemetry: TelemetryClient | None = None,
    ) -> None:
        self._summaries = summaries
        self._thresholds = dict(DEFAULT_TIMEOUT_THRESHOLDS)
        if thresholds is not None:
            self._thresholds.update(thresholds)
        self._default_threshold = default_threshold
        self._clock = clock
        self._telemetry = telemetry if telemetry is not None else TelemetryClient.disabled()

    def threshold_for(self, status: ProcessingStatus) -> timedelta:
        return self._thresholds.get(status, self._default_threshold)

    def sweep(self) -> SweepResult:
        now = self._clock()
        summaries = self._summaries.list_in_progress(limit=SWEEP_BATCH_LIMIT)
        timed_out = 0
        skipped = 0
        errors = 0
        failed_ids: list[str] = []
        for summary in summaries:
            try:
                if now - summary.updated_at <= self.threshold_for(summary.status):
                    continue
                message = TIMEOUT_MESSAGE_TEMPLATE.format(status=summary.status.value)
                changed = self._summaries.update_summary_status(
                    summary.id,
                    ProcessingStatus.FAILED,
                    message,
                    expected_status=summary.status,
                )
            except Exception:
                errors += 1
                LOGGER.warning(
                    "timeout sweep summary_failed summary_id=%s",
                    summary.id,
                    exc_info=True,
                )
                continue

            if changed:
                timed_out += 1
                failed_ids.append(summary.id)
                LOGGER.info(
                    "timeout sweep marked_failed summary_id=%s status=%s",
                    summary.id,
                    summary.status,
                )
            else:
                skipped += 1

        result = SweepResult(
            checked=len(summaries),
            timed_out=timed_out,
            skipped=skipped,
            errors=errors,
            failed_summary_ids=tuple(failed_ids),
        )
        self._telemetry.emit(
            "timeouts.sweep.finish",
            checked=result.checked,
            timed_out=result.timed_out,
            skipped=result.skipped,
            errors=result.errors,
        )
        return result

    def statistics(self) -> TimeoutStatistics:
        now = self._clock()
        by_status = {status.value: 0 for status in IN_PROGRESS_STATUSES}
        at_risk = 0
        stalled = 0
        summaries = self._summaries.list_in_progress(limit=SWEEP_BATCH_LIMIT)
        for summary in summaries:
            by_status[summary.status.value] = by_status.get(summary.status.value, 0) + 1
            threshold_seconds = self.threshold_for(summary.status).total_seconds()
            elapsed_seconds = (now - summary.updated_at).total_seconds()
            if elapsed_seconds > threshold_seconds:
                stalled += 1
            elif elapsed_seconds > threshold_seconds * AT_RISK_FRACTION:
                at_risk += 1
        return TimeoutStatistics(
            total=len(summaries),
            by_status=by_status,
            at_risk=at_risk,
            stalled=stalled,
        )
