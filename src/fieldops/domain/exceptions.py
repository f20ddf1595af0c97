"""
Domain exceptions for field operations.

These represent business rule violations and typed remote failures.
Every exception carries a human-readable message suitable for a toast.
"""

from typing import Any


class FieldOpsError(Exception):
    """Base class for all fieldops errors."""


class ValidationError(FieldOpsError):
    """
    Raised when required input is missing or invalid.

    Validation happens locally, before any remote call or queue write,
    so no state has changed when this is raised.
    """


class IndeterminateEvaluation(ValidationError):
    """
    Raised when a check node's rollup cannot be determined.

    The technician must correct the readings; no transition occurs.
    """

    def __init__(self, message: str, results: dict[str, bool | None]):
        """
        Args:
            message: Human-readable error message
            results: Per-reading results (None marks an unusable entry)
        """
        super().__init__(message)
        self.results = results

    @property
    def invalid_readings(self) -> tuple[str, ...]:
        return tuple(rid for rid, result in self.results.items() if result is None)


class InvalidTransition(FieldOpsError):
    """Raised when a job status change is not permitted."""

    def __init__(self, current: str, target: str):
        super().__init__(f"Cannot move job from '{current}' to '{target}'")
        self.current = current
        self.target = target


class GatewayError(FieldOpsError):
    """
    Typed failure from the remote data store.

    Attributes:
        operation: Human label of the failed operation (e.g. "Load jobs")
        code: Store-specific error code, if any
    """

    def __init__(
        self,
        message: str,
        operation: str = "",
        code: str | None = None,
        details: Any = None,
    ):
        full = f"{operation}: {message}" if operation else message
        super().__init__(full)
        self.operation = operation
        self.code = code
        self.details = details


class RemoteProcedureMissing(GatewayError):
    """Raised when the store does not expose a remote procedure."""


class GatewayConnectionError(GatewayError):
    """Raised when the store cannot be reached (transport error or timeout)."""


class RunConflict(GatewayError):
    """Raised when a job already has an in-progress diagnostic run."""

    def __init__(self, job_id: str, run_id: str | None = None):
        super().__init__(
            f"Job {job_id} already has a diagnostics run in progress",
            operation="Create diagnostic run",
            code="run_conflict",
        )
        self.job_id = job_id
        self.run_id = run_id


class ActionInProgress(FieldOpsError):
    """Raised when a second action starts before the first one resolved."""


class GraphDefinitionError(FieldOpsError):
    """Raised when a diagnostic workflow graph is malformed."""


class WorkflowIntegrityError(FieldOpsError):
    """Raised when a resumed run no longer lines up with the live graph."""


class ConfigurationError(FieldOpsError):
    """Raised when configuration is invalid or missing."""


class ReportRenderError(FieldOpsError):
    """Raised when a report cannot be laid out or encoded."""
