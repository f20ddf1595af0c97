"""
Diagnostic workflow definitions and execution records.

Authoring data (nodes, edges) arrives from the remote store as loosely
shaped JSON, so it is parsed with pydantic into a tagged union keyed by
``node_type``: each variant carries its own payload type. Execution
records (runs, run events) are immutable dataclasses like the rest of the
domain.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator, model_validator

# =============================================================================
# CHECK NODE PAYLOAD
# =============================================================================


class ReadingOperator(str, Enum):
    LT = "<"
    LTE = "<="
    GT = ">"
    GTE = ">="
    BETWEEN = "between"


class RollupLogic(str, Enum):
    ALL_GOOD = "all_good"
    ANY_BAD = "any_bad"
    ALL_BAD = "all_bad"
    ANY_GOOD = "any_good"
    CUSTOM = "custom"


class Reading(BaseModel):
    """One numeric measurement a check asks for."""

    model_config = ConfigDict(frozen=True)

    id: str
    label: str = ""
    unit: str = ""
    operator: ReadingOperator
    value: float
    max: float | None = None  # Upper bound for "between", inclusive

    @model_validator(mode="after")
    def _between_needs_bounds(self) -> Reading:
        if self.operator == ReadingOperator.BETWEEN:
            if self.max is None:
                raise ValueError(f"Reading {self.id}: 'between' requires max")
            if self.max < self.value:
                raise ValueError(f"Reading {self.id}: max must be >= value")
        return self


class CheckNodeData(BaseModel):
    model_config = ConfigDict(frozen=True)

    instructions: str = ""
    readings: tuple[Reading, ...] = ()
    rollup_logic: RollupLogic = RollupLogic.ALL_GOOD
    custom_expression: str = ""
    good_explanation: str = ""
    bad_explanation: str = ""

    @model_validator(mode="after")
    def _custom_needs_expression(self) -> CheckNodeData:
        if self.rollup_logic == RollupLogic.CUSTOM and not self.custom_expression.strip():
            raise ValueError("custom rollup requires custom_expression")
        return self

    @property
    def is_manual(self) -> bool:
        """Checks without readings are marked Good/Bad by hand."""
        return not self.readings


# =============================================================================
# REPAIR / END PAYLOADS
# =============================================================================


class StepStyle(str, Enum):
    LIST = "list"
    CHECKBOX = "checkbox"
    GUIDED = "guided"  # One step at a time, in order
    SECTIONED = "sectioned"


class RepairSection(BaseModel):
    model_config = ConfigDict(frozen=True)

    title: str
    steps: tuple[str, ...] = ()


class RepairNodeData(BaseModel):
    model_config = ConfigDict(frozen=True)

    instructions: str = ""
    step_style: StepStyle = StepStyle.LIST
    steps: tuple[str, ...] = ()
    sections: tuple[RepairSection, ...] = ()
    recommended_tools: tuple[str, ...] = ()
    require_before_photo: bool = False
    require_after_photo: bool = False

    def all_steps(self) -> tuple[str, ...]:
        if self.step_style == StepStyle.SECTIONED:
            return tuple(step for section in self.sections for step in section.steps)
        return self.steps


class EndNodeData(BaseModel):
    model_config = ConfigDict(frozen=True)

    instructions: str = ""
    closure_options: tuple[str, ...] = ()
    require_follow_up_notes: bool = False


# =============================================================================
# NODES (tagged union on node_type)
# =============================================================================


class _NodeBase(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    brand_id: str | None = None
    title: str = ""

    @field_validator("data", mode="before", check_fields=False)
    @classmethod
    def _null_data(cls, value: Any) -> Any:
        return {} if value is None else value


class CheckNode(_NodeBase):
    node_type: Literal["check"] = "check"
    data: CheckNodeData = Field(default_factory=CheckNodeData)


class RepairNode(_NodeBase):
    node_type: Literal["repair"] = "repair"
    data: RepairNodeData = Field(default_factory=RepairNodeData)


class EndNode(_NodeBase):
    node_type: Literal["end"] = "end"
    data: EndNodeData = Field(default_factory=EndNodeData)


DiagnosticNode = Annotated[CheckNode | RepairNode | EndNode, Field(discriminator="node_type")]

_NODES = TypeAdapter(list[DiagnosticNode])


class EdgeCondition(str, Enum):
    GOOD = "good"
    BAD = "bad"
    NEXT = "next"


class DiagnosticEdge(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str | None = None
    from_node_id: str
    to_node_id: str
    condition: EdgeCondition = EdgeCondition.NEXT


_EDGES = TypeAdapter(list[DiagnosticEdge])


def parse_nodes(records: list[dict[str, Any]]) -> list[CheckNode | RepairNode | EndNode]:
    """Validate node records from the store into typed variants."""
    return _NODES.validate_python(records)


def parse_edges(records: list[dict[str, Any]]) -> list[DiagnosticEdge]:
    return _EDGES.validate_python(records)


# =============================================================================
# WORKFLOW CATALOG
# =============================================================================


@dataclass(frozen=True)
class DiagnosticWorkflow:
    workflow_id: str
    title: str
    description: str = ""

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> DiagnosticWorkflow:
        return cls(
            workflow_id=str(record["id"]),
            title=record.get("title") or "",
            description=record.get("description") or "",
        )


@dataclass(frozen=True)
class WorkflowBrand:
    """Brand-specific graph of a workflow; only published brands are usable."""

    brand_id: str
    workflow_id: str
    brand_name: str
    status: str = "draft"

    @property
    def is_published(self) -> bool:
        return self.status == "published"

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> WorkflowBrand:
        return cls(
            brand_id=str(record["id"]),
            workflow_id=str(record["workflow_id"]),
            brand_name=record.get("brand_name") or "",
            status=record.get("status") or "draft",
        )


# =============================================================================
# RUNS AND RUN EVENTS
# =============================================================================


class RunStatus(str, Enum):
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


@dataclass(frozen=True)
class WorkflowRun:
    """One execution of a brand graph against a job."""

    run_id: str
    job_id: str
    workflow_id: str
    brand_id: str
    workflow_version_hash: str
    status: RunStatus = RunStatus.IN_PROGRESS
    current_node_id: str | None = None
    created_at: str = ""
    completed_at: str | None = None

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> WorkflowRun:
        return cls(
            run_id=str(record["id"]),
            job_id=str(record["job_id"]),
            workflow_id=str(record["workflow_id"]),
            brand_id=str(record["brand_id"]),
            workflow_version_hash=record.get("workflow_version_hash") or "",
            status=RunStatus(record.get("status") or RunStatus.IN_PROGRESS.value),
            current_node_id=record.get("current_node_id"),
            created_at=record.get("created_at") or "",
            completed_at=record.get("completed_at"),
        )


class RunEventType(str, Enum):
    WORKFLOW_STARTED = "workflow_started"
    STEP_STARTED = "step_started"
    READINGS_RECORDED = "readings_recorded"
    STEP_COMPLETED = "step_completed"
    PHOTO_ADDED = "photo_added"
    PART_ADDED = "part_added"
    NON_INVENTORY_PART = "non_inventory_part"
    REPAIR_STARTED = "repair_started"
    REPAIR_COMPLETED = "repair_completed"
    WORKFLOW_COMPLETED = "workflow_completed"


@dataclass(frozen=True)
class RunEvent:
    """Append-only audit entry of a run; never updated or deleted."""

    event_id: str
    run_id: str
    event_type: RunEventType
    node_id: str | None = None
    payload: dict[str, Any] = field(default_factory=dict)
    created_at: str = ""

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> RunEvent:
        return cls(
            event_id=str(record["id"]),
            run_id=str(record["run_id"]),
            event_type=RunEventType(record["event_type"]),
            node_id=record.get("node_id"),
            payload=dict(record.get("payload") or {}),
            created_at=record.get("created_at") or "",
        )

    def to_record(self) -> dict[str, Any]:
        return {
            "id": self.event_id,
            "run_id": self.run_id,
            "node_id": self.node_id,
            "event_type": self.event_type.value,
            "payload": self.payload,
            "created_at": self.created_at,
        }
