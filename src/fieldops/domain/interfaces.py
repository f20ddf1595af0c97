"""
Domain interfaces (Ports) for field operations.

These abstract base classes define the contracts that adapters must satisfy.
They have no external dependencies and represent the core domain boundaries.
"""

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Callable

    from fieldops.domain.diagnostics import (
        DiagnosticWorkflow,
        RunEvent,
        WorkflowBrand,
        WorkflowRun,
    )
    from fieldops.domain.models import (
        Job,
        JobPart,
        JobStatus,
        JobStatusEvent,
        QueuedAction,
        ReportDocument,
        TruckInventoryItem,
    )


class DataGatewayInterface(ABC):
    """
    Port for the remote relational store.

    Every operation either returns its result or raises a GatewayError
    subclass carrying a human-readable message. Callers never inspect
    store-specific error codes.

    Note (Atomic side effects):
        ``set_job_status`` closes the job's active JobStatusEvent and opens
        one for the new status together with the status write.
        ``add_job_part`` / ``remove_job_part`` move quantity between the job
        and truck ledgers in one step. Implementations must not expose a
        half-applied state.
    """

    # ----- jobs -------------------------------------------------------------

    @abstractmethod
    def list_jobs(self, filters: dict[str, Any] | None = None) -> list["Job"]:
        """
        List jobs, newest first.

        Args:
            filters: Column equality filters (e.g. ``{"status": "open"}``)
        """
        pass

    @abstractmethod
    def get_job(self, job_id: str) -> "Job":
        """
        Raises:
            GatewayError: If the job does not exist
        """
        pass

    @abstractmethod
    def create_job(self, payload: dict[str, Any]) -> "Job":
        """
        Insert a job in ``open`` status and open its first status event.

        A client-supplied ``id`` in the payload is honored, so actions queued
        offline can refer to the job before it reaches the store.
        """
        pass

    @abstractmethod
    def update_job(self, job_id: str, payload: dict[str, Any]) -> "Job":
        pass

    @abstractmethod
    def set_job_status(
        self,
        job_id: str,
        status: "JobStatus",
        notes: str | None = None,
        last_active_status: "JobStatus | None" = None,
    ) -> "Job":
        """
        Write a status change and advance the time-in-status log.

        Args:
            job_id: Job to change
            status: New status
            notes: Reason recorded on the new status event (pause/cancel)
            last_active_status: Status to resume into, set when pausing

        Returns:
            The updated job
        """
        pass

    @abstractmethod
    def cancel_job(self, job_id: str, reason: str) -> "Job":
        pass

    @abstractmethod
    def mark_job_invoiced(self, job_id: str) -> "Job":
        pass

    @abstractmethod
    def list_job_events(self, job_id: str) -> list["JobStatusEvent"]:
        """Status events of a job, oldest first."""
        pass

    # ----- shop timers ------------------------------------------------------

    @abstractmethod
    def start_shop_timer(self, tech_id: str) -> dict[str, Any]:
        pass

    @abstractmethod
    def stop_shop_timer(self, tech_id: str) -> dict[str, Any] | None:
        """
        Close the technician's running in-shop timer.

        Returns:
            The closed timer record, or None when no timer was running
        """
        pass

    # ----- diagnostics ------------------------------------------------------

    @abstractmethod
    def list_diagnostic_workflows(self) -> list["DiagnosticWorkflow"]:
        pass

    @abstractmethod
    def list_diagnostic_workflow_brands(self, workflow_id: str) -> list["WorkflowBrand"]:
        """Published brands of a workflow; drafts are never returned."""
        pass

    @abstractmethod
    def list_diagnostic_nodes(self, brand_id: str) -> list[dict[str, Any]]:
        """Raw node records of a brand graph, in authoring order."""
        pass

    @abstractmethod
    def list_diagnostic_edges(self, brand_id: str) -> list[dict[str, Any]]:
        pass

    @abstractmethod
    def create_diagnostic_workflow_run(self, payload: dict[str, Any]) -> "WorkflowRun":
        """
        Create a run for a job.

        Raises:
            RunConflict: If the job already has an ``in_progress`` run
        """
        pass

    @abstractmethod
    def update_diagnostic_workflow_run(
        self, run_id: str, payload: dict[str, Any]
    ) -> "WorkflowRun":
        pass

    @abstractmethod
    def get_diagnostic_workflow_run(self, run_id: str) -> "WorkflowRun":
        pass

    @abstractmethod
    def list_diagnostic_workflow_runs(self, job_id: str) -> list["WorkflowRun"]:
        """Runs of a job, newest first."""
        pass

    @abstractmethod
    def create_diagnostic_run_event(self, payload: dict[str, Any]) -> "RunEvent":
        """Append a run event. Events are never updated or deleted."""
        pass

    @abstractmethod
    def list_diagnostic_run_events(self, run_id: str) -> list["RunEvent"]:
        """Events of a run in creation order."""
        pass

    # ----- inventory --------------------------------------------------------

    @abstractmethod
    def list_truck_inventory(self, truck_id: str) -> list["TruckInventoryItem"]:
        pass

    @abstractmethod
    def upsert_truck_inventory(self, payload: dict[str, Any]) -> "TruckInventoryItem":
        """
        Insert or replace the row keyed on (truck_id, product_id).

        Idempotent: applying the same payload twice leaves one row.
        """
        pass

    @abstractmethod
    def add_job_part(
        self,
        job_id: str,
        product_id: str,
        qty: int,
        truck_id: str | None = None,
        part_id: str | None = None,
    ) -> "JobPart":
        """
        Record a part used on a job, debiting the truck's stock.

        Args:
            job_id: Job consuming the part
            product_id: Product used
            qty: Quantity (positive)
            truck_id: Truck the part came from; no debit when None
            part_id: Client-supplied id for the ledger row
        """
        pass

    @abstractmethod
    def remove_job_part(self, part_id: str) -> None:
        """Delete a job part, crediting its quantity back to the truck."""
        pass

    @abstractmethod
    def list_job_parts(self, job_id: str) -> list["JobPart"]:
        pass

    @abstractmethod
    def add_job_repair(self, payload: dict[str, Any]) -> dict[str, Any]:
        pass

    @abstractmethod
    def list_job_repairs(self, job_id: str) -> list[dict[str, Any]]:
        pass

    @abstractmethod
    def create_out_of_stock(self, payload: dict[str, Any]) -> dict[str, Any]:
        pass

    # ----- files ------------------------------------------------------------

    @abstractmethod
    def upload_job_photo(self, data: bytes, filename: str, prefix: str = "") -> str:
        """
        Store a photo and return its public URL.

        Args:
            data: Image bytes
            filename: Original file name (extension is kept)
            prefix: Folder inside the photo bucket, usually the job id
        """
        pass

    @abstractmethod
    def upload_report(
        self, job_id: str, filename: str, data: bytes, content_type: str
    ) -> str:
        """Store a rendered report under ``{org}/{job_id}/{filename}``."""
        pass

    @abstractmethod
    def add_attachment(self, payload: dict[str, Any]) -> dict[str, Any]:
        """Link a stored file to a job (``job_id``, ``attachment_type``, ``file_url``)."""
        pass

    @abstractmethod
    def list_attachments(self, job_id: str) -> list[dict[str, Any]]:
        pass

    # ----- reference data ---------------------------------------------------

    @abstractmethod
    def get_boot_data(self) -> dict[str, Any]:
        """Reference data the technician app caches (products, trucks, job types...)."""
        pass


class ActionQueueInterface(ABC):
    """
    Port for the on-device durable queue of deferred mutations.

    Ids auto-increment, so listing in id order is FIFO order. Contents
    survive process restarts; each operation is atomic at the storage layer.
    """

    @abstractmethod
    def enqueue(self, action: str, payload: dict[str, Any]) -> "QueuedAction":
        pass

    @abstractmethod
    def list_all(self) -> list["QueuedAction"]:
        """All queued actions, oldest first (dead-lettered ones included)."""
        pass

    @abstractmethod
    def get(self, action_id: int) -> "QueuedAction | None":
        pass

    @abstractmethod
    def delete(self, action_id: int) -> None:
        pass

    @abstractmethod
    def record_failure(
        self, action_id: int, error: str, dead_letter: bool = False
    ) -> "QueuedAction":
        """
        Count a failed replay attempt.

        Args:
            action_id: Queued action that failed
            error: Failure message, kept for the operator
            dead_letter: Move the action to the dead-letter state

        Returns:
            The updated action
        """
        pass

    @abstractmethod
    def reset(self, action_id: int) -> "QueuedAction":
        """Return a dead-lettered action to pending with a fresh retry budget."""
        pass


class ConnectivityInterface(ABC):
    """Port answering whether the remote store is currently reachable."""

    @abstractmethod
    def is_online(self) -> bool:
        pass

    @abstractmethod
    def add_reconnect_listener(self, callback: "Callable[[], None]") -> None:
        """Call ``callback`` whenever the store becomes reachable again."""
        pass


class NotifierInterface(ABC):
    """Port for transient user-facing messages (toasts)."""

    @abstractmethod
    def notify(self, message: str, level: str = "info") -> None:
        """
        Args:
            message: Text shown to the user
            level: "info", "success", "warning" or "error"
        """
        pass


class SessionStoreInterface(ABC):
    """Port persisting the technician session between reloads."""

    @abstractmethod
    def load(self) -> dict[str, Any] | None:
        """Saved session state, or None when nothing was saved."""
        pass

    @abstractmethod
    def save(self, state: dict[str, Any]) -> None:
        pass

    @abstractmethod
    def clear(self) -> None:
        pass


class ReportRendererInterface(ABC):
    """Port turning report content into a file."""

    content_type: str = "application/octet-stream"
    extension: str = "bin"

    @abstractmethod
    def render(self, report: "ReportDocument") -> bytes:
        """
        Raises:
            ReportRenderError: If the document cannot be rendered
        """
        pass
