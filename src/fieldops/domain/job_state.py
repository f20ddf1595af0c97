"""
Job lifecycle rules.

Implements:
- the status transition table and its input requirements (JobStateMachine)
- the time-in-status event log step (advance_status_events)
- the field writes that accompany a status change (status_field_updates)
- time-in-status aggregation for reports (status_durations, format_duration)
"""

from __future__ import annotations

import uuid
from collections.abc import Callable, Iterable
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Any

from fieldops.domain.exceptions import InvalidTransition, ValidationError
from fieldops.domain.models import Job, JobStatus, JobStatusEvent, parse_timestamp

# States a technician is actively working in; only these can be paused.
ACTIVE_STATUSES = frozenset(
    {JobStatus.ON_THE_WAY, JobStatus.ON_SITE_DIAGNOSTICS, JobStatus.ON_SITE_REPAIR}
)

# Terminal states close the running event without opening a new one.
UNTRACKED_STATUSES = frozenset({JobStatus.INVOICED, JobStatus.CANCELED})

_CANCELABLE = frozenset(
    {
        JobStatus.OPEN,
        JobStatus.ON_THE_WAY,
        JobStatus.ON_SITE_DIAGNOSTICS,
        JobStatus.ON_SITE_REPAIR,
        JobStatus.PAUSED,
    }
)

TRANSITIONS: dict[JobStatus, frozenset[JobStatus]] = {
    JobStatus.OPEN: frozenset({JobStatus.ON_THE_WAY}),
    JobStatus.ON_THE_WAY: frozenset(
        {JobStatus.ON_SITE_DIAGNOSTICS, JobStatus.ON_SITE_REPAIR, JobStatus.OPEN}
    ),
    JobStatus.ON_SITE_DIAGNOSTICS: frozenset({JobStatus.ON_SITE_REPAIR}),
    JobStatus.ON_SITE_REPAIR: frozenset(
        {JobStatus.ON_SITE_DIAGNOSTICS, JobStatus.FINISHED}
    ),
    JobStatus.PAUSED: frozenset(
        {JobStatus.ON_THE_WAY, JobStatus.ON_SITE_DIAGNOSTICS, JobStatus.ON_SITE_REPAIR}
    ),
    JobStatus.FINISHED: frozenset({JobStatus.INVOICED}),
    JobStatus.INVOICED: frozenset(),
    JobStatus.CANCELED: frozenset(),
}


@dataclass(frozen=True)
class StatusChange:
    """A validated status change, ready to hand to the gateway."""

    job_id: str
    current: JobStatus
    target: JobStatus
    notes: str | None = None
    last_active_status: JobStatus | None = None  # Set only when pausing

    def as_payload(self) -> dict[str, Any]:
        """Serialize for ``set_job_status`` (immediate or queued)."""
        options: dict[str, Any] = {}
        if self.notes:
            options["notes"] = self.notes
        if self.last_active_status is not None:
            options["last_active_status"] = self.last_active_status.value
        return {"job_id": self.job_id, "status": self.target.value, "options": options}


class JobStateMachine:
    """
    Governs a job's status progression.

    Transitions are triggered by user actions only. The machine validates
    the move and its required inputs; it performs no I/O.
    """

    def allowed_targets(self, job: Job) -> frozenset[JobStatus]:
        targets = set(TRANSITIONS[job.status])
        if job.status in ACTIVE_STATUSES:
            targets.add(JobStatus.PAUSED)
        if job.status in _CANCELABLE:
            targets.add(JobStatus.CANCELED)
        if job.status == JobStatus.PAUSED:
            resume = self.resume_target(job)
            targets -= {JobStatus.ON_SITE_DIAGNOSTICS, JobStatus.ON_SITE_REPAIR} - {
                resume
            }
        return frozenset(targets)

    def can_transition(self, job: Job, target: JobStatus) -> bool:
        return target in self.allowed_targets(job)

    def arrival_target(self, job: Job) -> JobStatus:
        """Where a technician lands on arrival: the paused state, else diagnostics."""
        if job.last_active_status is not None and job.last_active_status.is_on_site:
            return job.last_active_status
        return JobStatus.ON_SITE_DIAGNOSTICS

    def resume_target(self, job: Job) -> JobStatus:
        """Status a paused job returns to."""
        if job.last_active_status is not None:
            return job.last_active_status
        return JobStatus.ON_SITE_DIAGNOSTICS

    def plan(
        self,
        job: Job,
        target: JobStatus,
        *,
        reason: str | None = None,
        repair_description: str | None = None,
    ) -> StatusChange:
        """
        Validate a transition and build the change to apply.

        Args:
            job: Job in its last known state
            target: Requested status
            reason: Pause or cancel reason (required for those targets)
            repair_description: Required to finish, falls back to the job's

        Returns:
            StatusChange describing the write

        Raises:
            InvalidTransition: If target is not reachable from the job's status
            ValidationError: If a required input is missing
        """
        if not self.can_transition(job, target):
            raise InvalidTransition(job.status.value, target.value)

        reason = (reason or "").strip()
        if target == JobStatus.PAUSED:
            if not reason:
                raise ValidationError("Pause reason required.")
            return StatusChange(
                job_id=job.job_id,
                current=job.status,
                target=target,
                notes=reason,
                last_active_status=job.status,
            )

        if target == JobStatus.CANCELED and not reason:
            raise ValidationError("Cancel reason required.")

        if target == JobStatus.FINISHED:
            description = (repair_description or job.repair_description or "").strip()
            if not description:
                raise ValidationError("Repair description required.")

        return StatusChange(
            job_id=job.job_id,
            current=job.status,
            target=target,
            notes=reason or None,
        )


# =============================================================================
# STATUS EVENT LOG
# =============================================================================


@dataclass(frozen=True)
class StatusEventChange:
    """Events closed and opened by one status change."""

    closed: tuple[JobStatusEvent, ...]
    opened: JobStatusEvent | None


def _duration(started_at: str, now: datetime) -> int:
    return max(0, int((now - parse_timestamp(started_at)).total_seconds()))


def advance_status_events(
    events: Iterable[JobStatusEvent],
    job_id: str,
    new_status: JobStatus,
    now: datetime,
    notes: str | None = None,
    id_factory: Callable[[], str] = lambda: str(uuid.uuid4()),
) -> StatusEventChange:
    """
    Close the job's active event and open one for the new status.

    Transitions into invoiced or canceled close without opening.
    """
    closed = tuple(
        replace(
            event,
            ended_at=now.isoformat(),
            duration_seconds=_duration(event.started_at, now),
        )
        for event in events
        if event.job_id == job_id and event.is_active
    )
    opened = None
    if new_status not in UNTRACKED_STATUSES:
        opened = JobStatusEvent(
            event_id=id_factory(),
            job_id=job_id,
            event_type=new_status.value,
            started_at=now.isoformat(),
            notes=notes,
        )
    return StatusEventChange(closed=closed, opened=opened)


_TIMESTAMP_FIELDS = {
    JobStatus.ON_THE_WAY: "on_the_way_at",
    JobStatus.FINISHED: "finished_at",
    JobStatus.INVOICED: "invoiced_at",
    JobStatus.CANCELED: "canceled_at",
}


def status_timestamp_field(status: JobStatus) -> str | None:
    if status.is_on_site:
        return "arrived_at"
    return _TIMESTAMP_FIELDS.get(status)


def status_field_updates(
    job: Job,
    status: JobStatus,
    now: datetime,
    last_active_status: JobStatus | None = None,
) -> dict[str, Any]:
    """
    Job columns written together with a status change.

    ``last_active_status`` is written when pausing and cleared once the
    technician is back on site.
    """
    updates: dict[str, Any] = {"status": status.value}
    stamp = status_timestamp_field(status)
    if stamp == "arrived_at":
        if not job.arrived_at:
            updates[stamp] = now.isoformat()
    elif stamp:
        updates[stamp] = now.isoformat()

    if status == JobStatus.PAUSED:
        updates["last_active_status"] = (
            last_active_status.value if last_active_status else job.status.value
        )
    elif status.is_on_site:
        updates["last_active_status"] = None
    return updates


# =============================================================================
# TIME IN STATUS
# =============================================================================


def status_durations(events: Iterable[JobStatusEvent]) -> dict[str, int]:
    """Sum closed event durations per status."""
    totals: dict[str, int] = {}
    for event in events:
        if not event.duration_seconds:
            continue
        totals[event.event_type] = totals.get(event.event_type, 0) + event.duration_seconds
    return totals


def format_duration(seconds: int | float | None) -> str:
    """Render seconds as ``"1h 5m"`` or ``"7m"``."""
    if not seconds:
        return "0m"
    minutes = int(seconds // 60)
    hours, remaining = divmod(minutes, 60)
    if hours:
        return f"{hours}h {remaining}m"
    return f"{remaining}m"
