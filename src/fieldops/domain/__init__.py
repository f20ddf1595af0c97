"""
Domain layer for field operations.

Contains job lifecycle rules, diagnostic graph semantics and ports, with no
dependencies on the application or infrastructure layers.
"""

from fieldops.domain.diagnostics import (
    CheckNode,
    DiagnosticEdge,
    DiagnosticWorkflow,
    EdgeCondition,
    EndNode,
    Reading,
    ReadingOperator,
    RepairNode,
    RollupLogic,
    RunEvent,
    RunEventType,
    RunStatus,
    WorkflowBrand,
    WorkflowRun,
)
from fieldops.domain.exceptions import (
    ActionInProgress,
    ConfigurationError,
    FieldOpsError,
    GatewayConnectionError,
    GatewayError,
    GraphDefinitionError,
    IndeterminateEvaluation,
    InvalidTransition,
    RemoteProcedureMissing,
    RunConflict,
    ValidationError,
    WorkflowIntegrityError,
)
from fieldops.domain.graph import WorkflowGraph, compute_graph_hash
from fieldops.domain.interfaces import (
    ActionQueueInterface,
    ConnectivityInterface,
    DataGatewayInterface,
    NotifierInterface,
    ReportRendererInterface,
    SessionStoreInterface,
)
from fieldops.domain.job_state import JobStateMachine, StatusChange
from fieldops.domain.models import (
    ExecutionResult,
    ExecutionStatus,
    Job,
    JobPart,
    JobStatus,
    JobStatusEvent,
    QueuedAction,
    QueuedActionStatus,
    ReportDocument,
    ReportSection,
    TruckInventoryItem,
)

__all__ = [
    # Models
    "Job",
    "JobStatus",
    "JobStatusEvent",
    "JobPart",
    "TruckInventoryItem",
    "QueuedAction",
    "QueuedActionStatus",
    "ExecutionResult",
    "ExecutionStatus",
    "ReportDocument",
    "ReportSection",
    # Job lifecycle
    "JobStateMachine",
    "StatusChange",
    # Diagnostics
    "CheckNode",
    "RepairNode",
    "EndNode",
    "Reading",
    "ReadingOperator",
    "RollupLogic",
    "DiagnosticEdge",
    "EdgeCondition",
    "DiagnosticWorkflow",
    "WorkflowBrand",
    "WorkflowRun",
    "RunStatus",
    "RunEvent",
    "RunEventType",
    "WorkflowGraph",
    "compute_graph_hash",
    # Interfaces
    "DataGatewayInterface",
    "ActionQueueInterface",
    "ConnectivityInterface",
    "NotifierInterface",
    "SessionStoreInterface",
    "ReportRendererInterface",
    # Exceptions
    "FieldOpsError",
    "ValidationError",
    "IndeterminateEvaluation",
    "InvalidTransition",
    "GatewayError",
    "GatewayConnectionError",
    "RemoteProcedureMissing",
    "RunConflict",
    "ActionInProgress",
    "GraphDefinitionError",
    "WorkflowIntegrityError",
    "ConfigurationError",
]
