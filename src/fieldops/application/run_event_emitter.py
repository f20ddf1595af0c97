"""Diagnostic run event emission service."""

from __future__ import annotations

import uuid
from collections.abc import Callable
from datetime import datetime
from typing import TYPE_CHECKING, Any

from fieldops.application.action_handlers import CREATE_RUN_EVENT
from fieldops.domain.diagnostics import RunEvent, RunEventType
from fieldops.domain.models import ExecutionResult, utc_now

if TYPE_CHECKING:
    from fieldops.application.orchestrator import OfflineOrchestrator


class RunEventEmitter:
    """Emits run events through the orchestrator.

    Provides one method per run event type, handling ID generation and
    timestamps. Events are queued like any other action when offline, and
    every emitted event is also kept locally so durations can be computed
    without a round trip.
    """

    def __init__(
        self,
        orchestrator: OfflineOrchestrator,
        run_id: str,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._orchestrator = orchestrator
        self._run_id = run_id
        self._clock = clock
        self.events: list[RunEvent] = []

    @property
    def run_id(self) -> str:
        return self._run_id

    def _emit(
        self,
        event_type: RunEventType,
        node_id: str | None,
        payload: dict[str, Any] | None = None,
    ) -> ExecutionResult:
        event = RunEvent(
            event_id=str(uuid.uuid4()),
            run_id=self._run_id,
            event_type=event_type,
            node_id=node_id,
            payload=payload or {},
            created_at=self._now(),
        )
        result = self._orchestrator.execute_or_queue(CREATE_RUN_EVENT, event.to_record())
        if not result.failed:
            self.events.append(event)
        return result

    def _now(self) -> str:
        return self._clock().isoformat()

    def workflow_started(
        self, node_id: str, workflow_id: str, brand_id: str, version_hash: str
    ) -> ExecutionResult:
        """Emit WORKFLOW_STARTED when a run is created."""
        return self._emit(
            RunEventType.WORKFLOW_STARTED,
            node_id,
            {
                "workflow_id": workflow_id,
                "brand_id": brand_id,
                "workflow_version_hash": version_hash,
            },
        )

    def step_started(self, node_id: str, node_type: str) -> ExecutionResult:
        """Emit STEP_STARTED when a node is entered."""
        return self._emit(RunEventType.STEP_STARTED, node_id, {"node_type": node_type})

    def readings_recorded(
        self,
        node_id: str,
        entries: dict[str, Any],
        results: dict[str, bool | None],
        outcome: bool,
    ) -> ExecutionResult:
        """Emit READINGS_RECORDED with raw entries and per-reading results."""
        return self._emit(
            RunEventType.READINGS_RECORDED,
            node_id,
            {
                "readings": {k: None if v is None else str(v) for k, v in entries.items()},
                "results": results,
                "outcome": "good" if outcome else "bad",
            },
        )

    def step_completed(
        self, node_id: str, outcome: str, duration_seconds: int, manual: bool = False
    ) -> ExecutionResult:
        """Emit STEP_COMPLETED with the decided outcome and time on step."""
        return self._emit(
            RunEventType.STEP_COMPLETED,
            node_id,
            {"outcome": outcome, "duration_seconds": duration_seconds, "manual": manual},
        )

    def photo_added(self, node_id: str | None, url: str, kind: str = "photo") -> ExecutionResult:
        return self._emit(RunEventType.PHOTO_ADDED, node_id, {"url": url, "kind": kind})

    def part_added(
        self, node_id: str | None, part_id: str, product_id: str, qty: int
    ) -> ExecutionResult:
        return self._emit(
            RunEventType.PART_ADDED,
            node_id,
            {"part_id": part_id, "product_id": product_id, "qty": qty},
        )

    def non_inventory_part(self, node_id: str | None, name: str, qty: int) -> ExecutionResult:
        return self._emit(RunEventType.NON_INVENTORY_PART, node_id, {"name": name, "qty": qty})

    def repair_started(self, node_id: str) -> ExecutionResult:
        return self._emit(RunEventType.REPAIR_STARTED, node_id)

    def repair_completed(self, node_id: str, duration_seconds: int) -> ExecutionResult:
        return self._emit(
            RunEventType.REPAIR_COMPLETED, node_id, {"duration_seconds": duration_seconds}
        )

    def workflow_completed(
        self,
        node_id: str,
        reason: str,
        resolved: bool,
        follow_up: str = "",
        office_notes: str = "",
    ) -> ExecutionResult:
        """Emit WORKFLOW_COMPLETED with the closure form."""
        return self._emit(
            RunEventType.WORKFLOW_COMPLETED,
            node_id,
            {
                "reason": reason,
                "resolved": resolved,
                "follow_up": follow_up,
                "office_notes": office_notes,
            },
        )
