"""
Application layer for field operations.

Contains the use cases that coordinate domain rules, the offline queue and
the remote store.
"""

from fieldops.application.action_handlers import build_action_handlers
from fieldops.application.interpreter import (
    DiagnosticInterpreter,
    InterpreterPhase,
    InterpreterState,
)
from fieldops.application.inventory import InventoryService, RestockLine
from fieldops.application.job_service import FINAL_CHECKLIST, JobLifecycleService
from fieldops.application.orchestrator import OfflineOrchestrator, SyncReport
from fieldops.application.reports import ReportService
from fieldops.application.run_event_emitter import RunEventEmitter
from fieldops.application.session import SessionContext

__all__ = [
    "build_action_handlers",
    "DiagnosticInterpreter",
    "FINAL_CHECKLIST",
    "InterpreterPhase",
    "InterpreterState",
    "InventoryService",
    "JobLifecycleService",
    "OfflineOrchestrator",
    "ReportService",
    "RestockLine",
    "RunEventEmitter",
    "SessionContext",
    "SyncReport",
]
