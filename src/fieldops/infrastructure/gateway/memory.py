"""
In-memory implementation of the data gateway.

Single-process and fully atomic: every operation computes its changes
first and applies them only once nothing can fail. Useful for tests, demos
and as the reference behavior of the remote store's procedures.
"""

from __future__ import annotations

import copy
import uuid
from collections.abc import Callable
from datetime import datetime
from typing import Any

from fieldops.domain.diagnostics import (
    DiagnosticWorkflow,
    RunEvent,
    RunStatus,
    WorkflowBrand,
    WorkflowRun,
)
from fieldops.domain.exceptions import GatewayError, RunConflict
from fieldops.domain.interfaces import DataGatewayInterface
from fieldops.domain.job_state import advance_status_events, status_field_updates
from fieldops.domain.models import (
    Job,
    JobPart,
    JobStatus,
    JobStatusEvent,
    TruckInventoryItem,
    parse_timestamp,
    utc_now,
)

REFERENCE_TABLES = (
    "customers",
    "fields",
    "trucks",
    "users",
    "job_types",
    "products",
    "tools",
    "request_types",
    "receipt_types",
)


class InMemoryGateway(DataGatewayInterface):
    """
    Dict-backed store implementing the full gateway contract.

    Failures can be injected per operation with ``fail_on`` to exercise
    offline replay and error paths.
    """

    def __init__(
        self,
        org_id: str = "org-1",
        clock: Callable[[], datetime] = utc_now,
        base_url: str = "memory://fieldops",
    ) -> None:
        self.org_id = org_id
        self._clock = clock
        self._base_url = base_url.rstrip("/")
        self.tables: dict[str, list[dict[str, Any]]] = {t: [] for t in REFERENCE_TABLES}
        self.jobs: dict[str, dict[str, Any]] = {}
        self.job_events: list[JobStatusEvent] = []
        self.shop_timers: list[dict[str, Any]] = []
        self.workflows: dict[str, dict[str, Any]] = {}
        self.brands: dict[str, dict[str, Any]] = {}
        self.nodes: dict[str, list[dict[str, Any]]] = {}
        self.edges: dict[str, list[dict[str, Any]]] = {}
        self.runs: dict[str, dict[str, Any]] = {}
        self.run_events: list[dict[str, Any]] = []
        self.inventory: dict[tuple[str, str], dict[str, Any]] = {}
        self.job_parts: dict[str, dict[str, Any]] = {}
        self.job_repairs: list[dict[str, Any]] = []
        self.out_of_stock: list[dict[str, Any]] = []
        self.attachments: list[dict[str, Any]] = []
        self.files: dict[str, bytes] = {}
        self.calls: list[str] = []
        self._failures: dict[str, tuple[GatewayError, int | None]] = {}

    # =========================================================================
    # TEST SUPPORT
    # =========================================================================

    def fail_on(
        self,
        operation: str,
        error: GatewayError | None = None,
        times: int | None = None,
    ) -> None:
        """
        Make an operation raise.

        Args:
            operation: Gateway method name (e.g. "add_job_part")
            error: Exception to raise; a generic GatewayError by default
            times: Number of calls that fail; every call when None
        """
        self._failures[operation] = (
            error or GatewayError("Injected failure", operation=operation),
            times,
        )

    def clear_failures(self) -> None:
        self._failures.clear()

    def _call(self, operation: str) -> None:
        self.calls.append(operation)
        failure = self._failures.get(operation)
        if failure is None:
            return
        error, times = failure
        if times is not None:
            if times <= 1:
                del self._failures[operation]
            else:
                self._failures[operation] = (error, times - 1)
        raise error

    def _now(self) -> str:
        return self._clock().isoformat()

    def seed(self, table: str, *records: dict[str, Any]) -> None:
        """Add reference records (customers, products, trucks...)."""
        self.tables.setdefault(table, []).extend(copy.deepcopy(r) for r in records)

    def add_workflow(self, workflow_id: str, title: str, description: str = "") -> None:
        self.workflows[workflow_id] = {
            "id": workflow_id,
            "title": title,
            "description": description,
        }

    def add_brand(
        self,
        brand_id: str,
        workflow_id: str,
        brand_name: str,
        nodes: list[dict[str, Any]],
        edges: list[dict[str, Any]],
        status: str = "published",
    ) -> None:
        """Add a brand graph to a workflow."""
        self.brands[brand_id] = {
            "id": brand_id,
            "workflow_id": workflow_id,
            "brand_name": brand_name,
            "status": status,
        }
        self.nodes[brand_id] = [{**copy.deepcopy(n), "brand_id": brand_id} for n in nodes]
        self.edges[brand_id] = copy.deepcopy(edges)

    def _product(self, product_id: str) -> dict[str, Any]:
        for product in self.tables["products"]:
            if product["id"] == product_id:
                return product
        return {}

    # =========================================================================
    # JOBS
    # =========================================================================

    def _job_record(self, job_id: str, operation: str) -> dict[str, Any]:
        record = self.jobs.get(job_id)
        if record is None:
            raise GatewayError(f"Job {job_id} not found", operation=operation)
        return record

    def list_jobs(self, filters: dict[str, Any] | None = None) -> list[Job]:
        self._call("list_jobs")
        filters = filters or {}
        records = [
            r for r in self.jobs.values() if all(r.get(k) == v for k, v in filters.items())
        ]
        records.sort(key=lambda r: r.get("created_at") or "", reverse=True)
        return [Job.from_record(r) for r in records]

    def get_job(self, job_id: str) -> Job:
        self._call("get_job")
        return Job.from_record(self._job_record(job_id, "Load job"))

    def create_job(self, payload: dict[str, Any]) -> Job:
        self._call("create_job")
        job_id = str(payload.get("id") or uuid.uuid4())
        if job_id in self.jobs:
            # Replay of an already-applied creation
            return Job.from_record(self.jobs[job_id])
        now = self._clock()
        record = {
            **copy.deepcopy(payload),
            "id": job_id,
            "org_id": self.org_id,
            "status": payload.get("status") or JobStatus.OPEN.value,
            "created_at": payload.get("created_at") or now.isoformat(),
        }
        change = advance_status_events(
            self.job_events, job_id, JobStatus(record["status"]), now, notes="Created job"
        )
        self.jobs[job_id] = record
        self._apply_events(change.closed, change.opened)
        return Job.from_record(record)

    def update_job(self, job_id: str, payload: dict[str, Any]) -> Job:
        self._call("update_job")
        record = self._job_record(job_id, "Update jobs")
        record.update(copy.deepcopy(payload))
        return Job.from_record(record)

    def _apply_events(
        self, closed: tuple[JobStatusEvent, ...], opened: JobStatusEvent | None
    ) -> None:
        closed_ids = {e.event_id: e for e in closed}
        self.job_events = [closed_ids.get(e.event_id, e) for e in self.job_events]
        if opened is not None:
            self.job_events.append(opened)

    def set_job_status(
        self,
        job_id: str,
        status: JobStatus,
        notes: str | None = None,
        last_active_status: JobStatus | None = None,
    ) -> Job:
        self._call("set_job_status")
        record = self._job_record(job_id, "Set job status")
        now = self._clock()
        job = Job.from_record(record)
        updates = status_field_updates(job, status, now, last_active_status)
        change = advance_status_events(self.job_events, job_id, status, now, notes=notes)
        record.update(updates)
        self._apply_events(change.closed, change.opened)
        return Job.from_record(record)

    def cancel_job(self, job_id: str, reason: str) -> Job:
        self._call("cancel_job")
        self._job_record(job_id, "Cancel job")
        return self.set_job_status(job_id, JobStatus.CANCELED, notes=reason)

    def mark_job_invoiced(self, job_id: str) -> Job:
        self._call("mark_job_invoiced")
        self._job_record(job_id, "Mark invoiced")
        return self.set_job_status(job_id, JobStatus.INVOICED)

    def list_job_events(self, job_id: str) -> list[JobStatusEvent]:
        self._call("list_job_events")
        events = [e for e in self.job_events if e.job_id == job_id]
        return sorted(events, key=lambda e: e.started_at)

    # =========================================================================
    # SHOP TIMERS
    # =========================================================================

    def start_shop_timer(self, tech_id: str) -> dict[str, Any]:
        self._call("start_shop_timer")
        running = self._running_timer(tech_id)
        if running is not None:
            return dict(running)
        timer = {
            "id": str(uuid.uuid4()),
            "tech_id": tech_id,
            "started_at": self._now(),
            "ended_at": None,
            "duration_seconds": None,
        }
        self.shop_timers.append(timer)
        return dict(timer)

    def _running_timer(self, tech_id: str) -> dict[str, Any] | None:
        for timer in self.shop_timers:
            if timer["tech_id"] == tech_id and timer["ended_at"] is None:
                return timer
        return None

    def stop_shop_timer(self, tech_id: str) -> dict[str, Any] | None:
        self._call("stop_shop_timer")
        timer = self._running_timer(tech_id)
        if timer is None:
            return None
        now = self._clock()
        started = parse_timestamp(timer["started_at"])
        timer["ended_at"] = now.isoformat()
        timer["duration_seconds"] = max(0, int((now - started).total_seconds()))
        return dict(timer)

    # =========================================================================
    # DIAGNOSTICS
    # =========================================================================

    def list_diagnostic_workflows(self) -> list[DiagnosticWorkflow]:
        self._call("list_diagnostic_workflows")
        return [DiagnosticWorkflow.from_record(w) for w in self.workflows.values()]

    def list_diagnostic_workflow_brands(self, workflow_id: str) -> list[WorkflowBrand]:
        self._call("list_diagnostic_workflow_brands")
        return [
            WorkflowBrand.from_record(b)
            for b in self.brands.values()
            if b["workflow_id"] == workflow_id and b["status"] == "published"
        ]

    def list_diagnostic_nodes(self, brand_id: str) -> list[dict[str, Any]]:
        self._call("list_diagnostic_nodes")
        return copy.deepcopy(self.nodes.get(brand_id, []))

    def list_diagnostic_edges(self, brand_id: str) -> list[dict[str, Any]]:
        self._call("list_diagnostic_edges")
        return copy.deepcopy(self.edges.get(brand_id, []))

    def create_diagnostic_workflow_run(self, payload: dict[str, Any]) -> WorkflowRun:
        self._call("create_diagnostic_workflow_run")
        job_id = payload["job_id"]
        for run in self.runs.values():
            if run["job_id"] == job_id and run["status"] == RunStatus.IN_PROGRESS.value:
                raise RunConflict(job_id, run["id"])
        run_id = str(payload.get("id") or uuid.uuid4())
        record = {
            "status": RunStatus.IN_PROGRESS.value,
            "created_at": self._now(),
            **copy.deepcopy(payload),
            "id": run_id,
        }
        self.runs[run_id] = record
        return WorkflowRun.from_record(record)

    def _run_record(self, run_id: str, operation: str) -> dict[str, Any]:
        record = self.runs.get(run_id)
        if record is None:
            raise GatewayError(f"Run {run_id} not found", operation=operation)
        return record

    def update_diagnostic_workflow_run(
        self, run_id: str, payload: dict[str, Any]
    ) -> WorkflowRun:
        self._call("update_diagnostic_workflow_run")
        record = self._run_record(run_id, "Update diagnostic run")
        record.update(copy.deepcopy(payload))
        return WorkflowRun.from_record(record)

    def get_diagnostic_workflow_run(self, run_id: str) -> WorkflowRun:
        self._call("get_diagnostic_workflow_run")
        return WorkflowRun.from_record(self._run_record(run_id, "Load diagnostic run"))

    def list_diagnostic_workflow_runs(self, job_id: str) -> list[WorkflowRun]:
        self._call("list_diagnostic_workflow_runs")
        records = [r for r in self.runs.values() if r["job_id"] == job_id]
        records.sort(key=lambda r: r.get("created_at") or "", reverse=True)
        return [WorkflowRun.from_record(r) for r in records]

    def create_diagnostic_run_event(self, payload: dict[str, Any]) -> RunEvent:
        self._call("create_diagnostic_run_event")
        self._run_record(payload["run_id"], "Create diagnostic run event")
        event_id = str(payload.get("id") or uuid.uuid4())
        for existing in self.run_events:
            if existing["id"] == event_id:
                return RunEvent.from_record(existing)
        record = {"created_at": self._now(), **copy.deepcopy(payload), "id": event_id}
        self.run_events.append(record)
        return RunEvent.from_record(record)

    def list_diagnostic_run_events(self, run_id: str) -> list[RunEvent]:
        self._call("list_diagnostic_run_events")
        return [RunEvent.from_record(e) for e in self.run_events if e["run_id"] == run_id]

    # =========================================================================
    # INVENTORY
    # =========================================================================

    def _inventory_item(self, record: dict[str, Any]) -> TruckInventoryItem:
        return TruckInventoryItem.from_record(
            {**record, "products": self._product(record["product_id"])}
        )

    def list_truck_inventory(self, truck_id: str) -> list[TruckInventoryItem]:
        self._call("list_truck_inventory")
        return [self._inventory_item(r) for (t, _), r in self.inventory.items() if t == truck_id]

    def upsert_truck_inventory(self, payload: dict[str, Any]) -> TruckInventoryItem:
        self._call("upsert_truck_inventory")
        key = (payload["truck_id"], payload["product_id"])
        record = self.inventory.get(key)
        if record is None:
            record = {
                "id": str(uuid.uuid4()),
                "truck_id": key[0],
                "product_id": key[1],
                "qty": 0,
                "min_qty": None,
                "origin": "permanent",
            }
        updated = dict(record)
        for field_name in ("qty", "min_qty", "origin"):
            if field_name in payload:
                updated[field_name] = payload[field_name]
        self.inventory[key] = updated
        return self._inventory_item(updated)

    def add_job_part(
        self,
        job_id: str,
        product_id: str,
        qty: int,
        truck_id: str | None = None,
        part_id: str | None = None,
    ) -> JobPart:
        self._call("add_job_part")
        self._job_record(job_id, "Add job part")
        if qty < 1:
            raise GatewayError("Quantity must be positive", operation="Add job part")
        part_id = part_id or str(uuid.uuid4())
        if part_id in self.job_parts:
            # Replay of an already-applied addition
            return self._job_part(self.job_parts[part_id])

        record = {
            "id": part_id,
            "job_id": job_id,
            "product_id": product_id,
            "truck_id": truck_id,
            "qty": qty,
            "created_at": self._now(),
        }
        if truck_id is not None:
            key = (truck_id, product_id)
            stock = dict(self.inventory.get(key) or {
                "id": str(uuid.uuid4()),
                "truck_id": truck_id,
                "product_id": product_id,
                "qty": 0,
                "min_qty": None,
                "origin": "tech_added",
            })
            stock["qty"] = int(stock.get("qty") or 0) - qty
            self.inventory[key] = stock
        self.job_parts[part_id] = record
        return self._job_part(record)

    def _job_part(self, record: dict[str, Any]) -> JobPart:
        return JobPart.from_record({**record, "products": self._product(record["product_id"])})

    def remove_job_part(self, part_id: str) -> None:
        self._call("remove_job_part")
        record = self.job_parts.get(part_id)
        if record is None:
            raise GatewayError(f"Job part {part_id} not found", operation="Remove job part")
        truck_id = record.get("truck_id")
        if truck_id is not None:
            key = (truck_id, record["product_id"])
            stock = self.inventory.get(key)
            if stock is not None:
                self.inventory[key] = {**stock, "qty": int(stock.get("qty") or 0) + record["qty"]}
        del self.job_parts[part_id]

    def list_job_parts(self, job_id: str) -> list[JobPart]:
        self._call("list_job_parts")
        return [self._job_part(r) for r in self.job_parts.values() if r["job_id"] == job_id]

    def add_job_repair(self, payload: dict[str, Any]) -> dict[str, Any]:
        self._call("add_job_repair")
        record = {"created_at": self._now(), **copy.deepcopy(payload)}
        record.setdefault("id", str(uuid.uuid4()))
        if any(r["id"] == record["id"] for r in self.job_repairs):
            return next(r for r in self.job_repairs if r["id"] == record["id"])
        self.job_repairs.append(record)
        return dict(record)

    def list_job_repairs(self, job_id: str) -> list[dict[str, Any]]:
        self._call("list_job_repairs")
        return [dict(r) for r in self.job_repairs if r["job_id"] == job_id]

    def create_out_of_stock(self, payload: dict[str, Any]) -> dict[str, Any]:
        self._call("create_out_of_stock")
        record = {"id": str(uuid.uuid4()), "created_at": self._now(), **copy.deepcopy(payload)}
        self.out_of_stock.append(record)
        return dict(record)

    # =========================================================================
    # FILES
    # =========================================================================

    def upload_job_photo(self, data: bytes, filename: str, prefix: str = "") -> str:
        self._call("upload_job_photo")
        extension = filename.rsplit(".", 1)[-1] if "." in filename else "jpg"
        path = "/".join(p for p in (prefix, f"{uuid.uuid4()}.{extension}") if p)
        self.files[f"job-photos/{path}"] = bytes(data)
        return f"{self._base_url}/job-photos/{path}"

    def upload_report(
        self, job_id: str, filename: str, data: bytes, content_type: str
    ) -> str:
        self._call("upload_report")
        path = f"job_reports/{self.org_id}/{job_id}/{filename}"
        self.files[path] = bytes(data)
        return f"{self._base_url}/{path}"

    def add_attachment(self, payload: dict[str, Any]) -> dict[str, Any]:
        self._call("add_attachment")
        record = {"created_at": self._now(), **copy.deepcopy(payload)}
        record.setdefault("id", str(uuid.uuid4()))
        existing = next((a for a in self.attachments if a["id"] == record["id"]), None)
        if existing is not None:
            existing.update(copy.deepcopy(payload))
            return dict(existing)
        self.attachments.append(record)
        return dict(record)

    def list_attachments(self, job_id: str) -> list[dict[str, Any]]:
        self._call("list_attachments")
        return [dict(a) for a in self.attachments if a["job_id"] == job_id]

    # =========================================================================
    # REFERENCE DATA
    # =========================================================================

    def get_boot_data(self) -> dict[str, Any]:
        self._call("get_boot_data")
        return copy.deepcopy(self.tables)
