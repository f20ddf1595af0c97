"""
Diagnostic workflow interpreter.

Walks a brand's graph node by node for one job. Every move persists the
run's ``current_node_id`` before the in-memory state advances, and every
decision is recorded as an append-only run event, so a reload resumes at
the same node with the same history.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Any

from fieldops.application.action_handlers import (
    ADD_ATTACHMENT,
    ADD_JOB_PART,
    CREATE_RUN_EVENT,
    UPDATE_RUN,
)
from fieldops.application.run_event_emitter import RunEventEmitter
from fieldops.domain.diagnostics import (
    CheckNode,
    DiagnosticWorkflow,
    EdgeCondition,
    EndNode,
    RepairNode,
    RunEvent,
    RunEventType,
    RunStatus,
    WorkflowBrand,
    WorkflowRun,
)
from fieldops.domain.exceptions import (
    GatewayConnectionError,
    GatewayError,
    GraphDefinitionError,
    IndeterminateEvaluation,
    RunConflict,
    ValidationError,
    WorkflowIntegrityError,
)
from fieldops.domain.graph import Node, WorkflowGraph
from fieldops.domain.models import ExecutionResult, Job, JobStatus, parse_timestamp, utc_now
from fieldops.domain.rollup import evaluate_check

if TYPE_CHECKING:
    from fieldops.application.job_service import JobLifecycleService
    from fieldops.application.orchestrator import OfflineOrchestrator
    from fieldops.application.session import SessionContext
    from fieldops.domain.interfaces import DataGatewayInterface

logger = logging.getLogger(__name__)


class InterpreterPhase(str, Enum):
    CHECK = "check"  # Waiting for readings or a manual Good/Bad
    REPAIR = "repair"
    END = "end"  # Waiting for the closure form
    EXHAUSTED = "exhausted"  # No edge matched; only a restart is possible
    COMPLETED = "completed"


@dataclass
class InterpreterState:
    """
    In-memory position of a run.

    Attributes:
        run: Run record as last persisted
        graph: Graph being walked
        current_node_id: Node the technician is on
        phase: What the interpreter is waiting for
        step_started_at: When the current node was entered
        repair_started_at: When "Start Repair" was pressed on the current node
        photos: Photos added during the run (``node_id``, ``url``, ``kind``)
        misc_parts: Non-inventory parts added (``name``, ``qty``)
        graph_changed: The live graph no longer matches the run's version hash
        last_outcome: Outcome of the last completed check ("good"/"bad")
        pending_job_status: Job status queued by the walk but not yet replayed
    """

    run: WorkflowRun
    graph: WorkflowGraph
    current_node_id: str | None
    phase: InterpreterPhase
    step_started_at: datetime | None = None
    repair_started_at: datetime | None = None
    photos: list[dict[str, Any]] = field(default_factory=list)
    misc_parts: list[dict[str, Any]] = field(default_factory=list)
    graph_changed: bool = False
    last_outcome: str | None = None
    pending_job_status: JobStatus | None = None

    @property
    def current_node(self) -> Node | None:
        if self.current_node_id is None:
            return None
        return self.graph.node(self.current_node_id)


def _phase_for(node: Node) -> InterpreterPhase:
    match node:
        case CheckNode():
            return InterpreterPhase.CHECK
        case RepairNode():
            return InterpreterPhase.REPAIR
        case EndNode():
            return InterpreterPhase.END
    raise GraphDefinitionError(f"Unsupported node type: {type(node).__name__}")


class DiagnosticInterpreter:
    """
    Runs diagnostic workflows against the session's current job.

    Starting and resuming need the remote store (the graph is fetched
    live). Once a run is open, events, part additions and run updates go
    through the orchestrator and are queued while offline.
    """

    def __init__(
        self,
        gateway: DataGatewayInterface,
        orchestrator: OfflineOrchestrator,
        jobs: JobLifecycleService,
        session: SessionContext,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._gateway = gateway
        self._orchestrator = orchestrator
        self._jobs = jobs
        self._session = session
        self._clock = clock
        self._state: InterpreterState | None = None
        self._emitter: RunEventEmitter | None = None

    @property
    def state(self) -> InterpreterState:
        if self._state is None:
            raise ValidationError("No diagnostics workflow is running.")
        return self._state

    @property
    def emitter(self) -> RunEventEmitter:
        if self._emitter is None:
            raise ValidationError("No diagnostics workflow is running.")
        return self._emitter

    # =========================================================================
    # SELECTION AND START
    # =========================================================================

    def list_selectable_workflows(self) -> list[tuple[DiagnosticWorkflow, list[WorkflowBrand]]]:
        """Workflows with at least one published brand."""
        selectable = []
        for workflow in self._gateway.list_diagnostic_workflows():
            brands = [
                b
                for b in self._gateway.list_diagnostic_workflow_brands(workflow.workflow_id)
                if b.is_published
            ]
            if brands:
                selectable.append((workflow, brands))
        return selectable

    def find_in_progress_run(self, job_id: str) -> WorkflowRun | None:
        for run in self._gateway.list_diagnostic_workflow_runs(job_id):
            if run.status == RunStatus.IN_PROGRESS:
                return run
        return None

    def _load_graph(self, brand_id: str) -> WorkflowGraph:
        return WorkflowGraph.from_records(
            self._gateway.list_diagnostic_nodes(brand_id),
            self._gateway.list_diagnostic_edges(brand_id),
        )

    def _require_online(self, operation: str) -> None:
        if not self._orchestrator.is_online():
            raise GatewayConnectionError("Device is offline", operation=operation)

    def start_run(self, job: Job, workflow_id: str, brand_id: str) -> InterpreterState:
        """
        Create a run on the first node of a published brand graph.

        Queued actions are replayed first, so a run completed offline does
        not block the new one.

        Raises:
            GatewayConnectionError: If the device is offline
            ValidationError: If the brand is not published for the workflow
            RunConflict: If the job already has a run in progress
            GraphDefinitionError: If the graph is empty or malformed
        """
        self._require_online("Start diagnostics")
        self._drain_outbox()
        brands = self._gateway.list_diagnostic_workflow_brands(workflow_id)
        if not any(b.brand_id == brand_id and b.is_published for b in brands):
            raise ValidationError("Select a published workflow brand.")

        existing = self.find_in_progress_run(job.job_id)
        if existing is not None:
            raise RunConflict(job.job_id, existing.run_id)

        graph = self._load_graph(brand_id)
        first = graph.first_node
        run = self._gateway.create_diagnostic_workflow_run(
            {
                "id": str(uuid.uuid4()),
                "job_id": job.job_id,
                "workflow_id": workflow_id,
                "brand_id": brand_id,
                "workflow_version_hash": graph.version_hash,
                "status": RunStatus.IN_PROGRESS.value,
                "current_node_id": first.id,
                "created_at": self._clock().isoformat(),
            }
        )
        logger.info("Started run %s for job %s on node %s", run.run_id, job.job_id, first.id)

        if self._session.job_id != job.job_id:
            self._session.set_job(job)
        self._session.set_run(run.run_id)
        self._emitter = RunEventEmitter(self._orchestrator, run.run_id, self._clock)
        self._state = InterpreterState(
            run=run, graph=graph, current_node_id=None, phase=_phase_for(first)
        )
        self._emitter.workflow_started(first.id, workflow_id, brand_id, graph.version_hash)
        self._enter(first, persist=False)
        return self._state

    # =========================================================================
    # NODE ENTRY
    # =========================================================================

    def _seconds_since(self, start: datetime | None) -> int:
        if start is None:
            return 0
        return max(0, int((self._clock() - start).total_seconds()))

    def _persist(self, fields: dict[str, Any], operation: str) -> ExecutionResult:
        state = self.state
        result = self._orchestrator.execute_or_queue(
            UPDATE_RUN, {"run_id": state.run.run_id, "fields": fields}
        )
        if result.failed:
            raise GatewayError(result.error or "Run update rejected", operation=operation)
        return result

    def _enter(self, node: Node, persist: bool = True) -> None:
        state = self.state
        if persist:
            self._persist({"current_node_id": node.id}, "Advance workflow")
        state.run = replace(state.run, current_node_id=node.id)
        state.current_node_id = node.id
        state.phase = _phase_for(node)
        state.step_started_at = self._clock()
        state.repair_started_at = None
        self.emitter.step_started(node.id, node.node_type)

        job = self._current_job()
        match node:
            case CheckNode():
                if job is not None and job.status == JobStatus.ON_SITE_REPAIR:
                    self._track_status(
                        self._jobs.enter_diagnostics(job), JobStatus.ON_SITE_DIAGNOSTICS
                    )
            case RepairNode():
                if job is not None and job.status.is_on_site:
                    self._track_status(self._jobs.enter_repair(job), JobStatus.ON_SITE_REPAIR)
            case EndNode():
                self._session.save_last_screen("diagnostics", state.run.job_id)

    def _current_job(self) -> Job | None:
        """The run's job, at the status it will have once queued changes replay."""
        job = self._session.current_job
        if job is None or job.job_id != self.state.run.job_id:
            return None
        pending = self.state.pending_job_status
        if pending is not None and not self._orchestrator.pending():
            # Replayed; the session job is authoritative again
            self.state.pending_job_status = pending = None
        if pending is not None and pending != job.status:
            return replace(job, status=pending)
        return job

    def _track_status(self, result: ExecutionResult | None, status: JobStatus) -> None:
        if result is None or result.failed:
            return
        self.state.pending_job_status = status if result.queued else None

    def _node_of(self, node_type: type, message: str) -> Any:
        state = self.state
        if state.phase == InterpreterPhase.COMPLETED:
            raise ValidationError("The workflow is already completed.")
        if state.phase == InterpreterPhase.EXHAUSTED:
            raise ValidationError("This branch of the workflow has ended. Restart to continue.")
        node = state.current_node
        if not isinstance(node, node_type):
            raise ValidationError(message)
        return node

    # =========================================================================
    # CHECK NODES
    # =========================================================================

    def submit_readings(self, entries: Mapping[str, Any]) -> str:
        """
        Evaluate the readings of the current check node and advance.

        Returns:
            "good" or "bad"

        Raises:
            IndeterminateEvaluation: If any entry is not a usable number or
                the rollup cannot be decided; nothing is recorded
        """
        node: CheckNode = self._node_of(CheckNode, "The current step is not a check.")
        if node.data.is_manual:
            raise ValidationError("This check has no readings. Mark it Good or Bad.")

        results, outcome = evaluate_check(node.data, entries)
        if outcome is None:
            raise IndeterminateEvaluation("Enter a valid number for every reading.", results)

        recorded = {r.id: entries.get(r.id) for r in node.data.readings}
        self.emitter.readings_recorded(node.id, recorded, results, outcome)
        return self._complete_check(node, outcome, manual=False)

    def mark_check(self, good: bool) -> str:
        """Decide a check without readings by hand."""
        node: CheckNode = self._node_of(CheckNode, "The current step is not a check.")
        if not node.data.is_manual:
            raise ValidationError("Enter the readings for this check.")
        return self._complete_check(node, good, manual=True)

    def _complete_check(self, node: CheckNode, good: bool, manual: bool) -> str:
        state = self.state
        condition = EdgeCondition.GOOD if good else EdgeCondition.BAD
        self.emitter.step_completed(
            node.id, condition.value, self._seconds_since(state.step_started_at), manual
        )
        state.last_outcome = condition.value

        target = state.graph.follow(node.id, condition)
        if target is None:
            logger.info("Run %s exhausted at %s (%s)", state.run.run_id, node.id, condition.value)
            state.phase = InterpreterPhase.EXHAUSTED
        else:
            self._enter(target)
        return condition.value

    # =========================================================================
    # PARTS AND PHOTOS
    # =========================================================================

    def add_part(self, product_id: str, qty: int) -> ExecutionResult:
        """Use an inventory part on the job, debiting the session's truck."""
        state = self.state
        if not product_id or not qty or qty < 1:
            raise ValidationError("Select part and quantity.")
        part_id = str(uuid.uuid4())
        result = self._orchestrator.execute_or_queue(
            ADD_JOB_PART,
            {
                "part_id": part_id,
                "job_id": state.run.job_id,
                "product_id": product_id,
                "qty": qty,
                "truck_id": self._session.truck_id,
            },
        )
        if not result.failed:
            self.emitter.part_added(state.current_node_id, part_id, product_id, qty)
        return result

    def add_non_inventory_part(self, name: str, qty: int = 1) -> ExecutionResult:
        """Log an ad-hoc part; nothing is debited."""
        name = (name or "").strip()
        if not name or qty < 1:
            raise ValidationError("Part name and quantity required.")
        result = self.emitter.non_inventory_part(self.state.current_node_id, name, qty)
        if not result.failed:
            self.state.misc_parts.append({"name": name, "qty": qty})
        return result

    def add_photo(self, data: bytes, filename: str, kind: str = "photo") -> str:
        """
        Upload a photo, attach it to the job and log it on the current node.

        Args:
            data: Image bytes
            filename: Original file name
            kind: "before", "after" or "photo"

        Returns:
            Public URL of the stored photo
        """
        state = self.state
        if not data:
            raise ValidationError("Select a photo.")
        self._require_online("Upload photo")
        url = self._gateway.upload_job_photo(data, filename, prefix=state.run.job_id)
        self._orchestrator.execute_or_queue(
            ADD_ATTACHMENT,
            {
                "id": str(uuid.uuid4()),
                "job_id": state.run.job_id,
                "attachment_type": "photo",
                "file_url": url,
            },
        )
        self.emitter.photo_added(state.current_node_id, url, kind)
        state.photos.append({"node_id": state.current_node_id, "url": url, "kind": kind})
        return url

    def _has_photo(self, kind: str) -> bool:
        state = self.state
        return any(
            p["kind"] == kind and p["node_id"] == state.current_node_id for p in state.photos
        )

    # =========================================================================
    # REPAIR NODES
    # =========================================================================

    def start_repair(self) -> None:
        node: RepairNode = self._node_of(RepairNode, "The current step is not a repair.")
        if node.data.require_before_photo and not self._has_photo("before"):
            raise ValidationError("A before photo is required to start the repair.")
        self.state.repair_started_at = self._clock()
        self.emitter.repair_started(node.id)

    def complete_repair(self) -> Node | None:
        """
        Finish the current repair and follow its ``next`` edge.

        Returns:
            The node entered, or None when the repair has no ``next`` edge
        """
        state = self.state
        node: RepairNode = self._node_of(RepairNode, "The current step is not a repair.")
        if state.repair_started_at is None:
            raise ValidationError("Start the repair first.")
        if node.data.require_after_photo and not self._has_photo("after"):
            raise ValidationError("An after photo is required to complete the repair.")

        self.emitter.repair_completed(node.id, self._seconds_since(state.repair_started_at))
        target = state.graph.follow(node.id, EdgeCondition.NEXT)
        if target is None:
            logger.info("Run %s exhausted at repair %s", state.run.run_id, node.id)
            state.phase = InterpreterPhase.EXHAUSTED
            return None
        self._enter(target)
        return target

    # =========================================================================
    # END NODES
    # =========================================================================

    def complete_workflow(
        self,
        reason: str,
        resolved: bool = True,
        follow_up: str = "",
        office_notes: str = "",
    ) -> WorkflowRun:
        """
        Close the run from an end node.

        Raises:
            ValidationError: If the closure reason is empty
        """
        state = self.state
        node: EndNode = self._node_of(EndNode, "The workflow has not reached an end step.")
        reason = (reason or "").strip()
        if not reason:
            raise ValidationError("Closure reason required.")
        follow_up = (follow_up or "").strip()
        if node.data.require_follow_up_notes and not resolved and not follow_up:
            raise ValidationError("Follow-up notes required.")

        completed_at = self._clock().isoformat()
        self._persist(
            {"status": RunStatus.COMPLETED.value, "completed_at": completed_at},
            "Complete workflow",
        )
        self.emitter.workflow_completed(node.id, reason, resolved, follow_up, office_notes.strip())
        state.run = replace(state.run, status=RunStatus.COMPLETED, completed_at=completed_at)
        state.phase = InterpreterPhase.COMPLETED
        logger.info("Completed run %s", state.run.run_id)

        self._session.set_run(None)
        self._session.save_last_screen("checklist", state.run.job_id)
        return state.run

    def restart(self) -> InterpreterState:
        """Walk the same run again from the first node."""
        state = self.state
        if state.phase == InterpreterPhase.COMPLETED:
            raise ValidationError("The workflow is already completed.")
        state.last_outcome = None
        self._enter(state.graph.first_node)
        return state

    # =========================================================================
    # RESUME
    # =========================================================================

    def resume_run(self, run_id: str) -> InterpreterState:
        """
        Rebuild interpreter state for an in-progress run.

        Queued actions are replayed first. Run updates and events that are
        still queued afterwards are laid over the stored run, so the walk
        resumes where the technician left it.

        The graph is fetched live. When its hash differs from the run's
        ``workflow_version_hash`` the drift is logged and flagged on the
        state; the walk continues as long as the current node still exists.

        Raises:
            ValidationError: If the run is already completed
            WorkflowIntegrityError: If the run's current node is gone
        """
        self._require_online("Resume diagnostics")
        self._drain_outbox()
        run, events = self._with_queued(
            self._gateway.get_diagnostic_workflow_run(run_id),
            self._gateway.list_diagnostic_run_events(run_id),
        )
        if run.status != RunStatus.IN_PROGRESS:
            raise ValidationError("This diagnostics run is already completed.")

        graph = self._load_graph(run.brand_id)
        graph_changed = graph.version_hash != run.workflow_version_hash
        if graph_changed:
            logger.warning(
                "Run %s: graph changed since start (%s -> %s)",
                run.run_id,
                run.workflow_version_hash[:12],
                graph.version_hash[:12],
            )

        node_id = run.current_node_id or graph.first_node.id
        if node_id not in graph:
            raise WorkflowIntegrityError(
                f"Run {run.run_id} is on node {node_id}, which no longer exists in the workflow"
            )
        node = graph.node(node_id)

        state = InterpreterState(
            run=run,
            graph=graph,
            current_node_id=node_id,
            phase=_phase_for(node),
            graph_changed=graph_changed,
        )
        self._restore_from_events(state, events)
        self._state = state
        self._emitter = RunEventEmitter(self._orchestrator, run.run_id, self._clock)
        self._emitter.events = list(events)
        self._session.set_run(run.run_id)
        return state

    def _drain_outbox(self) -> None:
        report = self._orchestrator.sync_outbox()
        if not report.complete:
            logger.warning(
                "%d queued action(s) not replayed before reading the run: %s",
                report.remaining,
                report.error,
            )

    def _with_queued(
        self, run: WorkflowRun, events: list[RunEvent]
    ) -> tuple[WorkflowRun, list[RunEvent]]:
        """Overlay run updates and run events still waiting in the queue."""
        events = list(events)
        known = {e.event_id for e in events}
        for item in self._orchestrator.pending():
            if item.payload.get("run_id") != run.run_id:
                continue
            if item.action == UPDATE_RUN:
                fields = item.payload.get("fields") or {}
                if fields.get("current_node_id"):
                    run = replace(run, current_node_id=fields["current_node_id"])
                if fields.get("status") == RunStatus.COMPLETED.value:
                    run = replace(
                        run, status=RunStatus.COMPLETED, completed_at=fields.get("completed_at")
                    )
            elif item.action == CREATE_RUN_EVENT and item.payload.get("id") not in known:
                events.append(RunEvent.from_record(item.payload))
        return run, events

    def resume_for_job(self, job_id: str) -> InterpreterState | None:
        run = self.find_in_progress_run(job_id)
        return self.resume_run(run.run_id) if run is not None else None

    def _restore_from_events(self, state: InterpreterState, events: list[RunEvent]) -> None:
        for event in events:
            created = parse_timestamp(event.created_at) if event.created_at else None
            match event.event_type:
                case RunEventType.STEP_STARTED if event.node_id == state.current_node_id:
                    state.step_started_at = created
                    state.repair_started_at = None
                case RunEventType.REPAIR_STARTED if event.node_id == state.current_node_id:
                    state.repair_started_at = created
                case RunEventType.REPAIR_COMPLETED if event.node_id == state.current_node_id:
                    state.repair_started_at = None
                case RunEventType.STEP_COMPLETED:
                    state.last_outcome = event.payload.get("outcome")
                case RunEventType.PHOTO_ADDED:
                    state.photos.append(
                        {
                            "node_id": event.node_id,
                            "url": event.payload.get("url"),
                            "kind": event.payload.get("kind", "photo"),
                        }
                    )
                case RunEventType.NON_INVENTORY_PART:
                    state.misc_parts.append(
                        {"name": event.payload.get("name"), "qty": event.payload.get("qty") or 1}
                    )
        if state.step_started_at is None:
            state.step_started_at = self._clock()
