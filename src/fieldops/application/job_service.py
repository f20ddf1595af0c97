"""
Job lifecycle use cases.

Every status change is validated locally by the JobStateMachine, then
dispatched through the OfflineOrchestrator so it is applied now or queued
for replay. The session's current job only moves forward once the remote
store has accepted the change.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Mapping, Sequence
from dataclasses import replace
from typing import TYPE_CHECKING, Any

from fieldops.application.action_handlers import (
    ADD_REPAIR,
    CANCEL_JOB,
    CREATE_JOB,
    GENERATE_REPORTS,
    MARK_JOB_INVOICED,
    SET_JOB_STATUS,
    STOP_SHOP_TIMER,
    UPDATE_JOB,
)
from fieldops.domain.exceptions import ValidationError
from fieldops.domain.job_state import JobStateMachine, StatusChange
from fieldops.domain.models import ExecutionResult, Job, JobStatus, utc_now

if TYPE_CHECKING:
    from fieldops.application.orchestrator import OfflineOrchestrator
    from fieldops.application.session import SessionContext

logger = logging.getLogger(__name__)

FINAL_CHECKLIST: tuple[str, ...] = (
    "Verify all repair parts are tight, affixed, and in original appearance",
    "Verify all parts are accounted for and trash is picked up",
    "Adjust timer in MCP to 80% and select a direction if water is required to verify repair",
    "Start system and verify all towers are moving (if unable to see all towers, "
    "verify 1st tower moves at least 3 times)",
    "If water running verify end gun turns off and on",
    "Contact supervisor or customer if system is desired to be left running",
    "If desired to be left running make changes and finish; if no confirmation "
    "turn off system and main power disconnect",
    "Verify all panel doors are closed",
)


def misc_parts_narrative(misc_parts: Sequence[Mapping[str, Any]]) -> str:
    """``"Misc parts: Fuse (x2), Wire nut (x1)"``; empty when there are none."""
    entries = [
        f"{part['name']} (x{part.get('qty') or 1})" for part in misc_parts if part.get("name")
    ]
    return f"Misc parts: {', '.join(entries)}" if entries else ""


def unchecked_items(checklist: Mapping[str, bool]) -> list[str]:
    return [item for item in FINAL_CHECKLIST if not checklist.get(item)]


class JobLifecycleService:
    """
    Drives a job through open, en route, on site, finished and beyond.

    Methods return the ExecutionResult of the dispatched action. Missing
    required input raises ValidationError and an illegal move raises
    InvalidTransition, both before anything is sent or queued.
    """

    def __init__(
        self,
        orchestrator: OfflineOrchestrator,
        session: SessionContext,
        machine: JobStateMachine | None = None,
    ) -> None:
        self._orchestrator = orchestrator
        self._session = session
        self._machine = machine or JobStateMachine()

    @property
    def machine(self) -> JobStateMachine:
        return self._machine

    # =========================================================================
    # CREATION
    # =========================================================================

    def create_job(self, fields: Mapping[str, Any]) -> ExecutionResult:
        """
        Create a job in ``open`` status.

        The id is generated here so that actions queued after an offline
        creation can already refer to the job. When queued, the result's
        value is the optimistic local Job.
        """
        if not fields.get("customer_id"):
            raise ValidationError("Customer required.")
        payload = {
            **fields,
            "id": fields.get("id") or str(uuid.uuid4()),
            "status": JobStatus.OPEN.value,
            "created_at": utc_now().isoformat(),
        }
        result = self._orchestrator.execute_or_queue(CREATE_JOB, payload)
        if result.queued:
            return replace(result, value=Job.from_record(payload))
        return result

    # =========================================================================
    # TRANSITIONS
    # =========================================================================

    def _dispatch(self, change: StatusChange) -> ExecutionResult:
        logger.info(
            "Job %s: %s -> %s", change.job_id, change.current.value, change.target.value
        )
        result = self._orchestrator.execute_or_queue(SET_JOB_STATUS, change.as_payload())
        if result.applied and result.value is not None:
            self._session.set_job(result.value)
        return result

    def take_job(self, job: Job) -> ExecutionResult:
        """Accept a job: stop the in-shop timer, then go en route."""
        change = self._machine.plan(job, JobStatus.ON_THE_WAY)
        if self._session.tech_id:
            self._orchestrator.execute_or_queue(
                STOP_SHOP_TIMER, {"tech_id": self._session.tech_id}
            )
        return self._dispatch(change)

    def release_job(self, job: Job) -> ExecutionResult:
        """Turn back before arriving; the job returns to the open pool."""
        return self._dispatch(self._machine.plan(job, JobStatus.OPEN))

    def arrive(self, job: Job) -> ExecutionResult:
        """Arrive on site, into the paused-from status or diagnostics."""
        target = self._machine.arrival_target(job)
        result = self._dispatch(self._machine.plan(job, target))
        if not result.failed:
            screen = "repair" if target == JobStatus.ON_SITE_REPAIR else "diagnostics"
            self._session.save_last_screen(screen, job.job_id)
        return result

    def enter_diagnostics(self, job: Job) -> ExecutionResult | None:
        """Move to diagnostics; None when the job is already there."""
        if job.status == JobStatus.ON_SITE_DIAGNOSTICS:
            return None
        return self._dispatch(self._machine.plan(job, JobStatus.ON_SITE_DIAGNOSTICS))

    def enter_repair(self, job: Job, problem_description: str | None = None) -> ExecutionResult | None:
        """Move to repair, recording the found problem when given."""
        problem = (problem_description or "").strip()
        if job.status == JobStatus.ON_SITE_REPAIR:
            return self._update(job.job_id, {"problem_description": problem}) if problem else None
        change = self._machine.plan(job, JobStatus.ON_SITE_REPAIR)
        if problem:
            update = self._update(job.job_id, {"problem_description": problem})
            if update.failed:
                return update
        return self._dispatch(change)

    def pause(self, job: Job, reason: str) -> ExecutionResult:
        return self._dispatch(self._machine.plan(job, JobStatus.PAUSED, reason=reason))

    def resume(self, job: Job) -> ExecutionResult:
        """Return a paused job to the status it was paused from."""
        if job.status != JobStatus.PAUSED:
            raise ValidationError("Only paused jobs can be resumed.")
        return self._dispatch(self._machine.plan(job, self._machine.resume_target(job)))

    def cancel(self, job: Job, reason: str) -> ExecutionResult:
        change = self._machine.plan(job, JobStatus.CANCELED, reason=reason)
        result = self._orchestrator.execute_or_queue(
            CANCEL_JOB, {"job_id": job.job_id, "reason": change.notes}
        )
        if result.applied and result.value is not None:
            self._session.set_job(result.value)
        return result

    def mark_invoiced(self, job: Job) -> ExecutionResult:
        self._machine.plan(job, JobStatus.INVOICED)
        return self._orchestrator.execute_or_queue(MARK_JOB_INVOICED, {"job_id": job.job_id})

    # =========================================================================
    # REPAIR AND COMPLETION
    # =========================================================================

    def _update(self, job_id: str, fields: dict[str, Any]) -> ExecutionResult:
        return self._orchestrator.execute_or_queue(UPDATE_JOB, {"job_id": job_id, "fields": fields})

    def complete_repair(self, job: Job, repair_description: str) -> ExecutionResult:
        """Store the repair description and log it as a repair entry."""
        description = (repair_description or "").strip()
        if not description:
            raise ValidationError("Repair description required.")
        result = self._update(job.job_id, {"repair_description": description})
        if result.failed:
            return result
        repair = self._orchestrator.execute_or_queue(
            ADD_REPAIR,
            {
                "id": str(uuid.uuid4()),
                "job_id": job.job_id,
                "description": description,
                "tech_id": self._session.tech_id,
                "created_at": utc_now().isoformat(),
            },
        )
        if not repair.failed:
            self._session.save_last_screen("checklist", job.job_id)
        return repair

    def finish_job(
        self,
        job: Job,
        repair_description: str | None = None,
        checklist: Mapping[str, bool] | None = None,
        unable_reason: str | None = None,
        misc_parts: Sequence[Mapping[str, Any]] = (),
    ) -> ExecutionResult:
        """
        Submit the final checklist and finish the job.

        Args:
            job: Job in ``on_site_repair``
            repair_description: Falls back to the job's stored description
            checklist: Final checklist item -> checked
            unable_reason: Required when any checklist item is unchecked
            misc_parts: Non-inventory parts (``name``, ``qty``) appended to
                the stored repair description

        Returns:
            Result of the ``finished`` status change

        Raises:
            ValidationError: On a missing repair description or an incomplete
                checklist without a reason
        """
        self._machine.plan(job, JobStatus.FINISHED, repair_description=repair_description)
        missing = unchecked_items(checklist or {})
        reason = (unable_reason or "").strip()
        if missing and not reason:
            raise ValidationError("Complete all checklist items or use Unable to Perform.")

        description = (repair_description or job.repair_description).strip()
        narrative = misc_parts_narrative(misc_parts)
        fields: dict[str, Any] = {
            "repair_description": f"{description}\n\n{narrative}" if narrative else description
        }
        if missing:
            note = f"Final checklist incomplete ({len(missing)} item(s)). Unable to perform: {reason}"
            fields["office_notes"] = f"{job.office_notes}\n{note}".strip()

        update = self._update(job.job_id, fields)
        if update.failed:
            return update

        result = self._dispatch(self._machine.plan(job, JobStatus.FINISHED, repair_description=description))
        if result.failed:
            return result

        if self._orchestrator.handles(GENERATE_REPORTS):
            self._orchestrator.execute_or_queue(GENERATE_REPORTS, {"job_id": job.job_id})
        self._session.clear_last_screen()
        return result
