"""
Job report content and publication.

Reports are built as renderer-independent ReportDocuments, rendered through
a ReportRendererInterface, uploaded to the report bucket and attached to
the job.
"""

from __future__ import annotations

import json
import logging
import uuid
from collections.abc import Callable, Mapping, Sequence
from datetime import datetime
from typing import TYPE_CHECKING, Any

from fieldops.domain.diagnostics import RunEvent, RunEventType, WorkflowRun
from fieldops.domain.job_state import format_duration, status_durations
from fieldops.domain.models import Job, JobPart, ReportDocument, ReportSection, utc_now

if TYPE_CHECKING:
    from fieldops.domain.interfaces import DataGatewayInterface, ReportRendererInterface

logger = logging.getLogger(__name__)

_TIME_IN_STATUS = (
    ("Open", "open"),
    ("On The Way", "on_the_way"),
    ("Diagnostics", "on_site_diagnostics"),
    ("Repair", "on_site_repair"),
    ("Paused", "paused"),
)


def _diagnostics_summary(runs: Sequence[tuple[WorkflowRun, Sequence[RunEvent]]]) -> list[str]:
    lines = []
    for run, events in runs:
        outcomes = [
            e.payload.get("outcome") for e in events if e.event_type == RunEventType.STEP_COMPLETED
        ]
        good = sum(1 for o in outcomes if o == "good")
        lines.append(
            f"{run.workflow_id}: {len(outcomes)} step(s), {good} good, "
            f"{len(outcomes) - good} bad ({run.status.value})"
        )
    return lines


def build_job_report(
    kind: str,
    job: Job,
    parts: Sequence[JobPart],
    repairs: Sequence[Mapping[str, Any]],
    durations: Mapping[str, int],
    runs: Sequence[tuple[WorkflowRun, Sequence[RunEvent]]] = (),
) -> ReportDocument:
    """
    Build the customer or tech work order report.

    The tech report also carries the office notes, which stay internal.
    """
    repair = job.repair_description or (repairs[-1].get("description") if repairs else "") or "N/A"
    sections = [
        ReportSection(
            "Customer & Field",
            rows=(("Customer", job.customer_id or ""), ("Field", job.field_id or "")),
        ),
        ReportSection(
            "Job Details",
            rows=(
                ("Tech", job.tech_id or ""),
                ("Helpers", ", ".join(job.helpers) or "None"),
                ("Truck", job.truck_id or ""),
                ("Job Type", job.job_type_id or ""),
                ("Description", job.description),
            ),
        ),
        ReportSection(
            "Problem & Repair Summary",
            rows=(("Problem", job.problem_description or "N/A"), ("Repair", repair)),
        ),
        ReportSection("Diagnostics", lines=tuple(_diagnostics_summary(runs)) or ("None recorded",)),
        ReportSection(
            "Parts Used",
            lines=tuple(f"{p.product_name or 'Part'} (x{p.qty})" for p in parts) or ("None",),
        ),
        ReportSection(
            "Time in Status",
            rows=tuple((label, format_duration(durations.get(key))) for label, key in _TIME_IN_STATUS),
        ),
        ReportSection(
            "Timestamps",
            rows=(("Created", job.created_at), ("Finished", job.finished_at or "Pending")),
        ),
    ]
    if kind == "tech" and job.office_notes:
        sections.insert(3, ReportSection("Office Notes", lines=tuple(job.office_notes.splitlines())))
    label = "Customer" if kind == "customer" else "Tech"
    return ReportDocument(
        kind=kind,
        title=f"Work Order Report - {label}",
        job_id=job.job_id,
        sections=tuple(sections),
    )


def build_diagnostics_report(
    job: Job,
    runs: Sequence[tuple[WorkflowRun, Sequence[RunEvent]]],
    durations: Mapping[str, int],
    generated_at: datetime,
    titles: Mapping[str, str] | None = None,
) -> ReportDocument:
    """Build the diagnostics report: every run with its full event trail."""
    titles = titles or {}
    lines: list[str] = []
    for index, (run, events) in enumerate(runs, start=1):
        lines.append(
            f"Run {index}: {titles.get(run.workflow_id, 'Workflow')} - "
            f"{titles.get(run.brand_id, 'Brand')}"
        )
        for event in events:
            label = event.event_type.value.replace("_", " ")
            payload = json.dumps(event.payload, sort_keys=True) if event.payload else ""
            lines.append(f"  - {label}: {payload}" if payload else f"  - {label}")

    return ReportDocument(
        kind="diagnostics",
        title="Diagnostics Workflow Report",
        job_id=job.job_id,
        sections=(
            ReportSection(
                "Job",
                rows=(
                    ("Customer", job.customer_id or ""),
                    ("Field", job.field_id or ""),
                    ("Job Type", job.job_type_id or ""),
                ),
            ),
            ReportSection(
                "Workflow Runs",
                lines=tuple(lines) or ("No diagnostics workflow runs recorded.",),
            ),
            ReportSection(
                "Totals",
                rows=(
                    ("Diagnostics", format_duration(durations.get("on_site_diagnostics"))),
                    ("Repair", format_duration(durations.get("on_site_repair"))),
                ),
            ),
            ReportSection("Generated", rows=(("Generated", generated_at.isoformat()),)),
        ),
    )


def report_attachment_id(job_id: str, attachment_type: str) -> str:
    """Stable attachment id, so re-publishing a job's report overwrites it."""
    return str(uuid.uuid5(uuid.NAMESPACE_URL, f"fieldops:{job_id}:{attachment_type}"))


class ReportService:
    """Builds, renders, uploads and attaches the reports of a finished job."""

    def __init__(
        self,
        gateway: DataGatewayInterface,
        renderer: ReportRendererInterface,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._gateway = gateway
        self._renderer = renderer
        self._clock = clock

    def _titles(self) -> dict[str, str]:
        titles: dict[str, str] = {}
        for workflow in self._gateway.list_diagnostic_workflows():
            titles[workflow.workflow_id] = workflow.title
            for brand in self._gateway.list_diagnostic_workflow_brands(workflow.workflow_id):
                titles[brand.brand_id] = brand.brand_name
        return titles

    def build(self, job_id: str) -> list[ReportDocument]:
        """Collect job data and build the customer, tech and diagnostics reports."""
        job = self._gateway.get_job(job_id)
        parts = self._gateway.list_job_parts(job_id)
        repairs = self._gateway.list_job_repairs(job_id)
        durations = status_durations(self._gateway.list_job_events(job_id))
        runs = [
            (run, self._gateway.list_diagnostic_run_events(run.run_id))
            for run in self._gateway.list_diagnostic_workflow_runs(job_id)
        ]
        return [
            build_job_report("customer", job, parts, repairs, durations, runs),
            build_job_report("tech", job, parts, repairs, durations, runs),
            build_diagnostics_report(job, runs, durations, self._clock(), self._titles()),
        ]

    def generate(self, job_id: str) -> dict[str, str]:
        """
        Publish all reports of a job.

        Returns:
            Attachment type -> public URL of the uploaded report
        """
        urls: dict[str, str] = {}
        for report in self.build(job_id):
            data = self._renderer.render(report)
            filename = f"{report.kind}-report.{self._renderer.extension}"
            url = self._gateway.upload_report(job_id, filename, data, self._renderer.content_type)
            self._gateway.add_attachment(
                {
                    "id": report_attachment_id(job_id, report.attachment_type),
                    "job_id": job_id,
                    "attachment_type": report.attachment_type,
                    "file_url": url,
                }
            )
            urls[report.attachment_type] = url
        logger.info("Generated %d report(s) for job %s", len(urls), job_id)
        return urls
