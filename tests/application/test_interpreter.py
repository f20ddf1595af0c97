"""Tests for DiagnosticInterpreter walking the pump workflow."""

import copy

import pytest

from fieldops.application.interpreter import DiagnosticInterpreter, InterpreterPhase
from fieldops.domain.diagnostics import RunEventType, RunStatus
from fieldops.domain.exceptions import (
    GatewayConnectionError,
    IndeterminateEvaluation,
    RunConflict,
    ValidationError,
    WorkflowIntegrityError,
)
from fieldops.domain.models import JobStatus

BAD_VOLTAGE = {"v_l1_l2": "250"}
GOOD_VOLTAGE = {"v_l1_l2": "231.5"}


@pytest.fixture
def started(interpreter, diagnostics_job):
    """Run started on the published Valley brand."""
    interpreter.start_run(diagnostics_job, "wf-pump", "brand-valley")
    return interpreter


def event_types(gateway, run_id: str) -> list[str]:
    return [e.event_type.value for e in gateway.list_diagnostic_run_events(run_id)]


def walk_to_repair(interpreter) -> None:
    interpreter.submit_readings(BAD_VOLTAGE)


def walk_to_verify(interpreter) -> None:
    walk_to_repair(interpreter)
    interpreter.add_photo(b"jpeg", "before.jpg", kind="before")
    interpreter.start_repair()
    interpreter.complete_repair()


class TestStartRun:
    """Tests for selecting and starting a workflow."""

    def test_only_published_brands_are_selectable(self, interpreter) -> None:
        selectable = interpreter.list_selectable_workflows()

        assert len(selectable) == 1
        workflow, brands = selectable[0]
        assert workflow.workflow_id == "wf-pump"
        assert [b.brand_id for b in brands] == ["brand-valley"]

    def test_start_persists_run_on_first_node(self, started, gateway, session) -> None:
        state = started.state

        assert state.current_node_id == "n-voltage"
        assert state.phase == InterpreterPhase.CHECK
        record = gateway.runs[state.run.run_id]
        assert record["current_node_id"] == "n-voltage"
        assert record["workflow_version_hash"] == state.graph.version_hash
        assert session.current_run_id == state.run.run_id
        assert event_types(gateway, state.run.run_id) == ["workflow_started", "step_started"]

    def test_draft_brand_is_rejected(self, interpreter, diagnostics_job) -> None:
        with pytest.raises(ValidationError, match="Select a published workflow brand."):
            interpreter.start_run(diagnostics_job, "wf-pump", "brand-draft")

    def test_second_run_conflicts(self, started, diagnostics_job) -> None:
        with pytest.raises(RunConflict) as exc_info:
            started.start_run(diagnostics_job, "wf-pump", "brand-valley")
        assert exc_info.value.run_id == started.state.run.run_id

    def test_start_needs_connectivity(self, interpreter, diagnostics_job, connectivity) -> None:
        connectivity.go_offline()

        with pytest.raises(GatewayConnectionError):
            interpreter.start_run(diagnostics_job, "wf-pump", "brand-valley")

    def test_no_state_before_start(self, interpreter) -> None:
        with pytest.raises(ValidationError, match="No diagnostics workflow"):
            interpreter.state


class TestCheckNodes:
    """Tests for readings and manual checks."""

    def test_good_readings_go_to_end(self, started, gateway) -> None:
        assert started.submit_readings(GOOD_VOLTAGE) == "good"

        state = started.state
        assert state.current_node_id == "n-end"
        assert state.phase == InterpreterPhase.END
        assert gateway.runs[state.run.run_id]["current_node_id"] == "n-end"

    def test_readings_event_carries_raw_entries_and_results(self, started, gateway) -> None:
        started.submit_readings(BAD_VOLTAGE)

        events = gateway.list_diagnostic_run_events(started.state.run.run_id)
        recorded = next(e for e in events if e.event_type == RunEventType.READINGS_RECORDED)
        assert recorded.payload == {
            "readings": {"v_l1_l2": "250"},
            "results": {"v_l1_l2": False},
            "outcome": "bad",
        }
        completed = next(e for e in events if e.event_type == RunEventType.STEP_COMPLETED)
        assert completed.payload["outcome"] == "bad"
        assert completed.payload["manual"] is False

    def test_invalid_entry_is_rejected_without_recording(self, started, gateway) -> None:
        with pytest.raises(IndeterminateEvaluation) as exc_info:
            started.submit_readings({"v_l1_l2": "abc"})

        assert exc_info.value.invalid_readings == ("v_l1_l2",)
        assert started.state.current_node_id == "n-voltage"
        assert event_types(gateway, started.state.run.run_id) == [
            "workflow_started",
            "step_started",
        ]

    def test_readings_node_cannot_be_marked_by_hand(self, started) -> None:
        with pytest.raises(ValidationError, match="Enter the readings"):
            started.mark_check(True)

    def test_step_duration_uses_clock(self, started, gateway, clock) -> None:
        clock.advance(seconds=95)

        started.submit_readings(GOOD_VOLTAGE)

        events = gateway.list_diagnostic_run_events(started.state.run.run_id)
        completed = next(e for e in events if e.event_type == RunEventType.STEP_COMPLETED)
        assert completed.payload["duration_seconds"] == 95

    def test_unmatched_outcome_exhausts_branch(self, started) -> None:
        walk_to_verify(started)

        assert started.mark_check(False) == "bad"

        assert started.state.phase == InterpreterPhase.EXHAUSTED
        with pytest.raises(ValidationError, match="Restart"):
            started.mark_check(True)

    def test_restart_returns_to_first_node(self, started) -> None:
        walk_to_verify(started)
        started.mark_check(False)

        state = started.restart()

        assert state.current_node_id == "n-voltage"
        assert state.phase == InterpreterPhase.CHECK


class TestRepairNodes:
    """Tests for the repair step and its job status side effects."""

    def test_entering_repair_moves_job_to_repair(self, started, session) -> None:
        walk_to_repair(started)

        assert started.state.phase == InterpreterPhase.REPAIR
        assert session.current_job.status == JobStatus.ON_SITE_REPAIR

    def test_before_photo_required(self, started) -> None:
        walk_to_repair(started)

        with pytest.raises(ValidationError, match="before photo"):
            started.start_repair()

    def test_complete_requires_start(self, started) -> None:
        walk_to_repair(started)

        with pytest.raises(ValidationError, match="Start the repair first."):
            started.complete_repair()

    def test_photo_is_uploaded_and_attached(self, started, gateway) -> None:
        walk_to_repair(started)

        url = started.add_photo(b"jpeg", "before.jpg", kind="before")

        job_id = started.state.run.job_id
        assert url.startswith(f"memory://fieldops/job-photos/{job_id}/")
        assert url.endswith(".jpg")
        assert gateway.list_attachments(job_id)[0]["file_url"] == url

    def test_completed_repair_returns_job_to_diagnostics(self, started, session, gateway) -> None:
        walk_to_verify(started)

        assert started.state.current_node_id == "n-verify"
        assert session.current_job.status == JobStatus.ON_SITE_DIAGNOSTICS
        types = event_types(gateway, started.state.run.run_id)
        assert "repair_started" in types
        assert "repair_completed" in types

    def test_add_part_debits_truck(self, started, gateway) -> None:
        walk_to_repair(started)

        result = started.add_part("p-fuse", 2)

        assert result.applied
        assert gateway.inventory[("truck-1", "p-fuse")]["qty"] == 8
        events = gateway.list_diagnostic_run_events(started.state.run.run_id)
        part = next(e for e in events if e.event_type == RunEventType.PART_ADDED)
        assert part.payload["product_id"] == "p-fuse"
        assert part.payload["qty"] == 2

    def test_add_part_requires_quantity(self, started) -> None:
        with pytest.raises(ValidationError, match="Select part and quantity."):
            started.add_part("p-fuse", 0)

    def test_non_inventory_part_is_logged_only(self, started, gateway) -> None:
        started.add_non_inventory_part("Hose clamp", 2)

        assert started.state.misc_parts == [{"name": "Hose clamp", "qty": 2}]
        assert gateway.inventory[("truck-1", "p-fuse")]["qty"] == 10


class TestEndNode:
    """Tests for closing the run."""

    def test_closure_reason_required(self, started) -> None:
        started.submit_readings(GOOD_VOLTAGE)

        with pytest.raises(ValidationError, match="Closure reason required."):
            started.complete_workflow("  ")

    def test_unresolved_needs_follow_up(self, started) -> None:
        started.submit_readings(GOOD_VOLTAGE)

        with pytest.raises(ValidationError, match="Follow-up notes required."):
            started.complete_workflow("Needs parts", resolved=False)

    def test_complete_marks_run_completed(self, started, gateway, session) -> None:
        started.submit_readings(GOOD_VOLTAGE)

        run = started.complete_workflow("Repaired", office_notes=" Bill later ")

        assert run.status == RunStatus.COMPLETED
        assert gateway.runs[run.run_id]["status"] == "completed"
        assert session.current_run_id is None
        assert session.last_screen.screen == "checklist"
        completed = gateway.list_diagnostic_run_events(run.run_id)[-1]
        assert completed.payload == {
            "reason": "Repaired",
            "resolved": True,
            "follow_up": "",
            "office_notes": "Bill later",
        }

    def test_completed_run_cannot_continue(self, started) -> None:
        started.submit_readings(GOOD_VOLTAGE)
        started.complete_workflow("Repaired")

        with pytest.raises(ValidationError, match="already completed"):
            started.restart()

    def test_end_requires_end_node(self, started) -> None:
        with pytest.raises(ValidationError, match="not reached an end step"):
            started.complete_workflow("Repaired")


class TestOfflineWalk:
    """Tests for a run continued without connectivity."""

    def test_events_queue_and_replay_in_order(
        self, started, gateway, connectivity, orchestrator, queue
    ) -> None:
        run_id = started.state.run.run_id
        connectivity.go_offline()

        walk_to_repair(started)

        assert started.state.current_node_id == "n-replace-fuse"
        assert gateway.runs[run_id]["current_node_id"] == "n-voltage"
        assert queue.list_all()

        connectivity.go_online()
        report = orchestrator.sync_outbox()

        assert report.complete
        assert gateway.runs[run_id]["current_node_id"] == "n-replace-fuse"
        assert event_types(gateway, run_id)[-3:] == [
            "readings_recorded",
            "step_completed",
            "step_started",
        ]
        assert gateway.jobs[started.state.run.job_id]["status"] == "on_site_repair"

    def test_offline_repair_round_trip_returns_job_to_diagnostics(
        self, interpreter, diagnostics_job, gateway, connectivity, orchestrator
    ) -> None:
        nodes = copy.deepcopy(gateway.nodes["brand-valley"])
        nodes[1]["data"]["require_before_photo"] = False
        gateway.add_brand("brand-quick", "wf-pump", "Reinke", nodes, gateway.edges["brand-valley"])
        interpreter.start_run(diagnostics_job, "wf-pump", "brand-quick")
        connectivity.go_offline()

        interpreter.submit_readings(BAD_VOLTAGE)
        interpreter.start_repair()
        interpreter.complete_repair()

        assert interpreter.state.current_node_id == "n-verify"
        assert interpreter.state.pending_job_status == JobStatus.ON_SITE_DIAGNOSTICS
        assert gateway.jobs["job-1"]["status"] == "on_site_diagnostics"

        connectivity.go_online()
        report = orchestrator.sync_outbox()

        assert report.complete
        assert gateway.jobs["job-1"]["status"] == "on_site_diagnostics"
        statuses = [e.event_type for e in gateway.list_job_events("job-1")]
        assert statuses[-2:] == ["on_site_repair", "on_site_diagnostics"]

    def test_pending_status_clears_once_replayed(
        self, started, connectivity, orchestrator, session
    ) -> None:
        connectivity.go_offline()
        walk_to_repair(started)
        assert started.state.pending_job_status == JobStatus.ON_SITE_REPAIR

        connectivity.go_online()
        orchestrator.sync_outbox()
        started.add_photo(b"jpeg", "before.jpg", kind="before")
        started.start_repair()
        started.complete_repair()

        assert started.state.pending_job_status is None
        assert session.current_job.status == JobStatus.ON_SITE_DIAGNOSTICS

    def test_photos_need_connectivity(self, started, connectivity) -> None:
        walk_to_repair(started)
        connectivity.go_offline()

        with pytest.raises(GatewayConnectionError):
            started.add_photo(b"jpeg", "before.jpg", kind="before")


class TestResume:
    """Tests for rebuilding a run after a reload."""

    def _fresh(self, gateway, orchestrator, jobs, session, clock) -> DiagnosticInterpreter:
        return DiagnosticInterpreter(gateway, orchestrator, jobs, session, clock)

    def test_resume_restores_node_and_repair_progress(
        self, started, gateway, orchestrator, jobs, session, clock
    ) -> None:
        walk_to_repair(started)
        started.add_photo(b"jpeg", "before.jpg", kind="before")
        started.start_repair()
        started.add_non_inventory_part("Hose clamp")

        restored = self._fresh(gateway, orchestrator, jobs, session, clock)
        state = restored.resume_for_job(started.state.run.job_id)

        assert state.current_node_id == "n-replace-fuse"
        assert state.phase == InterpreterPhase.REPAIR
        assert state.repair_started_at is not None
        assert state.last_outcome == "bad"
        assert [p["kind"] for p in state.photos] == ["before"]
        assert state.misc_parts == [{"name": "Hose clamp", "qty": 1}]
        assert not state.graph_changed
        restored.complete_repair()
        assert restored.state.current_node_id == "n-verify"

    def test_resume_without_run_returns_none(
        self, interpreter, diagnostics_job
    ) -> None:
        assert interpreter.resume_for_job(diagnostics_job.job_id) is None

    def test_resume_flags_changed_graph(
        self, started, gateway, orchestrator, jobs, session, clock
    ) -> None:
        gateway.nodes["brand-valley"][2]["title"] = "Does the tower walk?"

        state = self._fresh(gateway, orchestrator, jobs, session, clock).resume_run(
            started.state.run.run_id
        )

        assert state.graph_changed
        assert state.current_node_id == "n-voltage"

    def test_resume_fails_when_node_is_gone(
        self, started, gateway, orchestrator, jobs, session, clock
    ) -> None:
        gateway.runs[started.state.run.run_id]["current_node_id"] = "n-removed"

        with pytest.raises(WorkflowIntegrityError):
            self._fresh(gateway, orchestrator, jobs, session, clock).resume_run(
                started.state.run.run_id
            )

    def test_completed_run_cannot_be_resumed(
        self, started, gateway, orchestrator, jobs, session, clock
    ) -> None:
        started.submit_readings(GOOD_VOLTAGE)
        started.complete_workflow("Repaired")

        with pytest.raises(ValidationError, match="already completed"):
            self._fresh(gateway, orchestrator, jobs, session, clock).resume_run(
                started.state.run.run_id
            )

    def test_resume_replays_queued_moves_first(
        self, started, gateway, orchestrator, jobs, session, clock, connectivity, queue
    ) -> None:
        run_id = started.state.run.run_id
        connectivity.go_offline()
        started.submit_readings(GOOD_VOLTAGE)
        connectivity.go_online()

        state = self._fresh(gateway, orchestrator, jobs, session, clock).resume_run(run_id)

        assert state.current_node_id == "n-end"
        assert state.phase == InterpreterPhase.END
        assert queue.list_all() == []
        assert gateway.runs[run_id]["current_node_id"] == "n-end"

    def test_resume_overlays_moves_still_queued(
        self, started, gateway, orchestrator, jobs, session, clock, connectivity, queue
    ) -> None:
        run_id = started.state.run.run_id
        connectivity.go_offline()
        started.submit_readings(GOOD_VOLTAGE)
        connectivity.go_online()
        gateway.fail_on("create_diagnostic_run_event")

        state = self._fresh(gateway, orchestrator, jobs, session, clock).resume_run(run_id)

        assert gateway.runs[run_id]["current_node_id"] == "n-voltage"
        assert queue.list_all()
        assert state.current_node_id == "n-end"
        assert state.last_outcome == "good"
