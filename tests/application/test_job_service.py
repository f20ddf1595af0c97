"""Tests for JobLifecycleService."""

import pytest

from fieldops.application.job_service import (
    FINAL_CHECKLIST,
    misc_parts_narrative,
    unchecked_items,
)
from fieldops.domain.exceptions import InvalidTransition, ReportRenderError, ValidationError
from fieldops.domain.models import JobStatus
from fieldops.infrastructure.reports import PlainTextReportRenderer

ALL_CHECKED = {item: True for item in FINAL_CHECKLIST}


def event_types(gateway, job_id: str) -> list[str]:
    return [e.event_type for e in gateway.list_job_events(job_id)]


class TestCreateJob:
    """Tests for job creation."""

    def test_creates_open_job_with_initial_event(self, jobs, gateway) -> None:
        result = jobs.create_job({"customer_id": "cust-1", "description": "Leak"})

        job = result.value
        assert result.applied
        assert job.status == JobStatus.OPEN
        assert job.job_id in gateway.jobs
        events = gateway.list_job_events(job.job_id)
        assert [(e.event_type, e.notes) for e in events] == [("open", "Created job")]

    def test_customer_is_required(self, jobs, gateway) -> None:
        with pytest.raises(ValidationError, match="Customer required."):
            jobs.create_job({"description": "Leak"})
        assert gateway.calls == []

    def test_offline_creation_returns_local_job(self, jobs, connectivity, queue) -> None:
        connectivity.go_offline()

        result = jobs.create_job({"customer_id": "cust-1"})

        assert result.queued
        assert result.value.status == JobStatus.OPEN
        assert queue.list_all()[0].payload["id"] == result.value.job_id


class TestTransitions:
    """Tests for status changes driven by the technician."""

    def test_take_job_stops_shop_timer_and_goes_en_route(
        self, jobs, gateway, open_job, session
    ) -> None:
        gateway.start_shop_timer("tech-1")

        result = jobs.take_job(open_job)

        assert result.value.status == JobStatus.ON_THE_WAY
        assert result.value.on_the_way_at is not None
        assert gateway.shop_timers[0]["ended_at"] is not None
        assert session.current_job.status == JobStatus.ON_THE_WAY

    def test_release_returns_job_to_open(self, jobs, open_job, gateway) -> None:
        on_the_way = jobs.take_job(open_job).value

        result = jobs.release_job(on_the_way)

        assert result.value.status == JobStatus.OPEN
        assert event_types(gateway, open_job.job_id) == ["open", "on_the_way", "open"]

    def test_arrive_lands_in_diagnostics(self, diagnostics_job, session) -> None:
        assert diagnostics_job.arrived_at is not None
        assert session.last_screen.screen == "diagnostics"

    def test_open_job_cannot_skip_to_repair(self, jobs, open_job, gateway) -> None:
        with pytest.raises(InvalidTransition):
            jobs.enter_repair(open_job)
        assert gateway.calls == []

    def test_enter_repair_records_problem(self, jobs, diagnostics_job, gateway) -> None:
        result = jobs.enter_repair(diagnostics_job, "  Blown fuse  ")

        assert result.value.status == JobStatus.ON_SITE_REPAIR
        assert gateway.jobs[diagnostics_job.job_id]["problem_description"] == "Blown fuse"

    def test_enter_diagnostics_is_noop_when_already_there(self, jobs, diagnostics_job) -> None:
        assert jobs.enter_diagnostics(diagnostics_job) is None

    def test_repair_back_to_diagnostics(self, jobs, diagnostics_job) -> None:
        repair = jobs.enter_repair(diagnostics_job).value

        result = jobs.enter_diagnostics(repair)

        assert result.value.status == JobStatus.ON_SITE_DIAGNOSTICS

    def test_event_durations_follow_the_clock(self, diagnostics_job, gateway) -> None:
        events = gateway.list_job_events(diagnostics_job.job_id)

        on_the_way = next(e for e in events if e.event_type == "on_the_way")
        assert on_the_way.duration_seconds == 30 * 60
        assert [e.is_active for e in events] == [False, False, True]


class TestPauseResume:
    """Tests for pausing and resuming work."""

    def test_pause_requires_reason(self, jobs, diagnostics_job) -> None:
        with pytest.raises(ValidationError, match="Pause reason required."):
            jobs.pause(diagnostics_job, "   ")

    def test_pause_remembers_active_status(self, jobs, diagnostics_job, gateway) -> None:
        repair = jobs.enter_repair(diagnostics_job).value

        paused = jobs.pause(repair, "Waiting on parts").value

        assert paused.status == JobStatus.PAUSED
        assert paused.last_active_status == JobStatus.ON_SITE_REPAIR
        assert gateway.list_job_events(repair.job_id)[-1].notes == "Waiting on parts"

    def test_resume_returns_to_paused_from_status(self, jobs, diagnostics_job) -> None:
        repair = jobs.enter_repair(diagnostics_job).value
        paused = jobs.pause(repair, "Lunch").value

        resumed = jobs.resume(paused).value

        assert resumed.status == JobStatus.ON_SITE_REPAIR
        assert resumed.last_active_status is None

    def test_paused_job_cannot_jump_to_other_on_site_status(
        self, jobs, diagnostics_job
    ) -> None:
        paused = jobs.pause(diagnostics_job, "Storm").value

        with pytest.raises(InvalidTransition):
            jobs.enter_repair(paused)

    def test_resume_requires_paused_job(self, jobs, diagnostics_job) -> None:
        with pytest.raises(ValidationError, match="Only paused jobs"):
            jobs.resume(diagnostics_job)


class TestCancelAndInvoice:
    """Tests for the terminal transitions."""

    def test_cancel_requires_reason(self, jobs, open_job) -> None:
        with pytest.raises(ValidationError, match="Cancel reason required."):
            jobs.cancel(open_job, "")

    def test_cancel_closes_event_log(self, jobs, open_job, gateway) -> None:
        result = jobs.cancel(open_job, "Customer fixed it")

        assert result.value.status == JobStatus.CANCELED
        events = gateway.list_job_events(open_job.job_id)
        assert all(not e.is_active for e in events)
        assert events[-1].event_type == "open"

    def test_finished_job_cannot_be_canceled(self, jobs, diagnostics_job) -> None:
        repair = jobs.enter_repair(diagnostics_job).value
        finished = jobs.finish_job(repair, "Replaced fuse", ALL_CHECKED).value

        with pytest.raises(InvalidTransition):
            jobs.cancel(finished, "Too late")

    def test_invoice_only_after_finish(self, jobs, open_job) -> None:
        with pytest.raises(InvalidTransition):
            jobs.mark_invoiced(open_job)


class TestRepairCompletion:
    """Tests for repair description, checklist and finish."""

    def test_complete_repair_requires_description(self, jobs, diagnostics_job) -> None:
        with pytest.raises(ValidationError, match="Repair description required."):
            jobs.complete_repair(diagnostics_job, " ")

    def test_complete_repair_logs_repair_entry(
        self, jobs, diagnostics_job, gateway, session
    ) -> None:
        repair = jobs.enter_repair(diagnostics_job).value

        result = jobs.complete_repair(repair, "Replaced 30A fuse")

        assert result.applied
        assert gateway.jobs[repair.job_id]["repair_description"] == "Replaced 30A fuse"
        assert gateway.list_job_repairs(repair.job_id)[0]["description"] == "Replaced 30A fuse"
        assert session.last_screen.screen == "checklist"

    def test_finish_with_full_checklist(self, jobs, diagnostics_job, gateway, session) -> None:
        repair = jobs.enter_repair(diagnostics_job).value

        result = jobs.finish_job(
            repair,
            "Replaced fuse",
            ALL_CHECKED,
            misc_parts=[{"name": "Fuse", "qty": 2}],
        )

        assert result.value.status == JobStatus.FINISHED
        record = gateway.jobs[repair.job_id]
        assert record["repair_description"] == "Replaced fuse\n\nMisc parts: Fuse (x2)"
        assert session.last_screen is None
        kinds = {a["attachment_type"] for a in gateway.list_attachments(repair.job_id)}
        assert kinds == {"customer_report", "tech_report", "diagnostics_report"}

    def test_incomplete_checklist_needs_unable_reason(self, jobs, diagnostics_job) -> None:
        repair = jobs.enter_repair(diagnostics_job).value

        with pytest.raises(ValidationError, match="Unable to Perform"):
            jobs.finish_job(repair, "Replaced fuse", {FINAL_CHECKLIST[0]: True})

    def test_unable_to_perform_writes_office_note(
        self, jobs, diagnostics_job, gateway
    ) -> None:
        repair = jobs.enter_repair(diagnostics_job).value

        jobs.finish_job(repair, "Replaced fuse", {}, unable_reason="No water available")

        notes = gateway.jobs[repair.job_id]["office_notes"]
        assert f"({len(FINAL_CHECKLIST)} item(s))" in notes
        assert "No water available" in notes

    def test_finish_requires_repair_description(self, jobs, diagnostics_job) -> None:
        repair = jobs.enter_repair(diagnostics_job).value

        with pytest.raises(ValidationError, match="Repair description required."):
            jobs.finish_job(repair, None, ALL_CHECKED)


class TestOffline:
    """Tests for lifecycle changes made without connectivity."""

    def test_offline_transitions_replay_in_order(
        self, jobs, open_job, gateway, connectivity, orchestrator, clock
    ) -> None:
        connectivity.go_offline()
        on_the_way = jobs.take_job(open_job)
        assert on_the_way.queued

        connectivity.go_online()
        clock.advance(minutes=5)
        report = orchestrator.sync_outbox()

        assert report.complete
        assert gateway.jobs[open_job.job_id]["status"] == "on_the_way"

    def test_remote_rejection_leaves_session_unchanged(
        self, jobs, open_job, gateway, session
    ) -> None:
        session.set_job(open_job)
        gateway.fail_on("set_job_status")

        result = jobs.take_job(open_job)

        assert result.failed
        assert session.current_job.status == JobStatus.OPEN


class TestHelpers:
    def test_misc_parts_narrative(self) -> None:
        parts = [{"name": "Fuse", "qty": 2}, {"name": "Wire nut"}, {"name": ""}]
        assert misc_parts_narrative(parts) == "Misc parts: Fuse (x2), Wire nut (x1)"
        assert misc_parts_narrative([]) == ""

    def test_unchecked_items(self) -> None:
        assert unchecked_items(ALL_CHECKED) == []
        assert len(unchecked_items({})) == 8


class TestFinishWithReportFailure:
    """Finishing a job survives a report that cannot be rendered."""

    def test_render_failure_does_not_block_finish(
        self, jobs, diagnostics_job, gateway, session, notifier, monkeypatch
    ) -> None:
        def broken(self, report):
            raise ReportRenderError(f"Could not render {report.title}: layout")

        monkeypatch.setattr(PlainTextReportRenderer, "render", broken)
        repair = jobs.enter_repair(diagnostics_job).value

        result = jobs.finish_job(repair, "Replaced fuse", ALL_CHECKED)

        assert result.value.status == JobStatus.FINISHED
        assert gateway.jobs[repair.job_id]["status"] == "finished"
        assert gateway.list_attachments(repair.job_id) == []
        assert session.last_screen is None
        assert any("Could not render" in text for text in notifier.texts)
