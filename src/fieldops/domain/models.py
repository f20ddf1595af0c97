"""
Domain models for jobs, status events, parts ledgers and queued actions.

Models are immutable (frozen dataclasses). Records coming from the remote
store are plain dicts; ``from_record`` converts them and ignores joined
relations the core does not use.
"""

from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any


def utc_now() -> datetime:
    """Current wall-clock time in UTC."""
    return datetime.now(UTC)


def parse_timestamp(value: str) -> datetime:
    """Parse an ISO 8601 timestamp, assuming UTC when no offset is given."""
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


# =============================================================================
# JOB
# =============================================================================


class JobStatus(str, Enum):
    """Lifecycle states of a work order."""

    OPEN = "open"
    ON_THE_WAY = "on_the_way"
    ON_SITE_DIAGNOSTICS = "on_site_diagnostics"
    ON_SITE_REPAIR = "on_site_repair"
    PAUSED = "paused"
    FINISHED = "finished"
    INVOICED = "invoiced"
    CANCELED = "canceled"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.INVOICED, JobStatus.CANCELED)

    @property
    def is_on_site(self) -> bool:
        return self in (JobStatus.ON_SITE_DIAGNOSTICS, JobStatus.ON_SITE_REPAIR)


def _helpers(value: Any) -> tuple[str, ...]:
    if not value:
        return ()
    if isinstance(value, str):
        return tuple(part.strip() for part in value.split(",") if part.strip())
    return tuple(str(v) for v in value)


@dataclass(frozen=True)
class Job:
    """One field-service work order."""

    job_id: str
    status: JobStatus
    customer_id: str | None = None
    field_id: str | None = None
    job_type_id: str | None = None
    truck_id: str | None = None
    tech_id: str | None = None
    helpers: tuple[str, ...] = ()
    description: str = ""
    office_notes: str = ""
    problem_description: str = ""
    repair_description: str = ""
    last_active_status: JobStatus | None = None  # Status to resume after a pause
    created_at: str = ""
    on_the_way_at: str | None = None
    arrived_at: str | None = None
    finished_at: str | None = None
    invoiced_at: str | None = None
    canceled_at: str | None = None

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> "Job":
        last_active = record.get("last_active_status")
        return cls(
            job_id=str(record["id"]),
            status=JobStatus(record.get("status") or JobStatus.OPEN.value),
            customer_id=record.get("customer_id"),
            field_id=record.get("field_id"),
            job_type_id=record.get("job_type_id"),
            truck_id=record.get("truck_id"),
            tech_id=record.get("tech_id"),
            helpers=_helpers(record.get("helpers")),
            description=record.get("description") or "",
            office_notes=record.get("office_notes") or "",
            problem_description=record.get("problem_description") or "",
            repair_description=record.get("repair_description") or "",
            last_active_status=JobStatus(last_active) if last_active else None,
            created_at=record.get("created_at") or "",
            on_the_way_at=record.get("on_the_way_at"),
            arrived_at=record.get("arrived_at"),
            finished_at=record.get("finished_at"),
            invoiced_at=record.get("invoiced_at"),
            canceled_at=record.get("canceled_at"),
        )

    def to_record(self) -> dict[str, Any]:
        record = asdict(self)
        record["id"] = record.pop("job_id")
        record["status"] = self.status.value
        record["helpers"] = list(self.helpers)
        record["last_active_status"] = (
            self.last_active_status.value if self.last_active_status else None
        )
        return record


@dataclass(frozen=True)
class JobStatusEvent:
    """
    Append-only entry of the time-in-status log.

    At most one event per job is active (``ended_at`` is None); closed
    events are never mutated.
    """

    event_id: str
    job_id: str
    event_type: str
    started_at: str
    ended_at: str | None = None
    duration_seconds: int | None = None
    notes: str | None = None

    @property
    def is_active(self) -> bool:
        return self.ended_at is None

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> "JobStatusEvent":
        duration = record.get("duration_seconds")
        return cls(
            event_id=str(record["id"]),
            job_id=str(record["job_id"]),
            event_type=record["event_type"],
            started_at=record["started_at"],
            ended_at=record.get("ended_at"),
            duration_seconds=int(duration) if duration is not None else None,
            notes=record.get("notes"),
        )

    def to_record(self) -> dict[str, Any]:
        return {
            "id": self.event_id,
            "job_id": self.job_id,
            "event_type": self.event_type,
            "started_at": self.started_at,
            "ended_at": self.ended_at,
            "duration_seconds": self.duration_seconds,
            "notes": self.notes,
        }


# =============================================================================
# INVENTORY LEDGERS
# =============================================================================


@dataclass(frozen=True)
class TruckInventoryItem:
    """Quantity of one product carried on one truck."""

    item_id: str
    truck_id: str
    product_id: str
    qty: int
    min_qty: int | None = None
    origin: str = "permanent"  # "permanent" or "tech_added"
    product_name: str = ""
    product_minimum_qty: int = 0

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> "TruckInventoryItem":
        product = record.get("products") or {}
        min_qty = record.get("min_qty")
        return cls(
            item_id=str(record.get("id", f"{record['truck_id']}:{record['product_id']}")),
            truck_id=str(record["truck_id"]),
            product_id=str(record["product_id"]),
            qty=int(record.get("qty") or 0),
            min_qty=int(min_qty) if min_qty is not None else None,
            origin=record.get("origin") or "permanent",
            product_name=product.get("name", ""),
            product_minimum_qty=int(product.get("minimum_qty") or 0),
        )


@dataclass(frozen=True)
class JobPart:
    """Quantity of one product consumed by one job."""

    part_id: str
    job_id: str
    product_id: str
    qty: int
    truck_id: str | None = None
    product_name: str = ""

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> "JobPart":
        product = record.get("products") or {}
        return cls(
            part_id=str(record["id"]),
            job_id=str(record["job_id"]),
            product_id=str(record["product_id"]),
            qty=int(record.get("qty") or 0),
            truck_id=record.get("truck_id"),
            product_name=product.get("name", ""),
        )


# =============================================================================
# OFFLINE QUEUE
# =============================================================================


class QueuedActionStatus(str, Enum):
    """Replay state of a queued action."""

    PENDING = "pending"
    DEAD_LETTER = "dead_letter"  # Retries exhausted, needs manual resolution


@dataclass(frozen=True)
class QueuedAction:
    """A mutation deferred to local durable storage."""

    action_id: int
    action: str
    payload: dict[str, Any] = field(default_factory=dict)
    created_at: str = ""
    attempts: int = 0
    last_error: str | None = None
    status: QueuedActionStatus = QueuedActionStatus.PENDING

    @property
    def is_dead_letter(self) -> bool:
        return self.status == QueuedActionStatus.DEAD_LETTER


class ExecutionStatus(str, Enum):
    """Outcome of dispatching one action."""

    APPLIED = "applied"  # Executed against the remote store
    QUEUED = "queued"  # Deferred to the local queue
    FAILED = "failed"  # Remote rejection, nothing changed


@dataclass(frozen=True)
class ExecutionResult:
    """
    Result of ``execute_or_queue``.

    Attributes:
        status: Whether the action was applied, queued or rejected
        value: Handler return value (APPLIED only)
        error: Human-readable failure message (FAILED only)
        queued_id: Queue id of the deferred action (QUEUED only)
    """

    status: ExecutionStatus
    value: Any = None
    error: str | None = None
    queued_id: int | None = None

    @property
    def applied(self) -> bool:
        return self.status == ExecutionStatus.APPLIED

    @property
    def queued(self) -> bool:
        return self.status == ExecutionStatus.QUEUED

    @property
    def failed(self) -> bool:
        return self.status == ExecutionStatus.FAILED


# =============================================================================
# REPORTS
# =============================================================================


@dataclass(frozen=True)
class ReportSection:
    heading: str
    rows: tuple[tuple[str, str], ...] = ()  # Label/value pairs
    lines: tuple[str, ...] = ()  # Free text, one paragraph per entry


@dataclass(frozen=True)
class ReportDocument:
    """Renderer-independent content of one job report."""

    kind: str  # "customer", "tech" or "diagnostics"
    title: str
    job_id: str
    sections: tuple[ReportSection, ...] = ()

    @property
    def attachment_type(self) -> str:
        return f"{self.kind}_report"
