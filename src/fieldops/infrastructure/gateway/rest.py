"""
PostgREST/Supabase-style HTTP gateway.

Tables live under ``/rest/v1/{table}``, stored procedures under
``/rest/v1/rpc/{name}`` and files under ``/storage/v1/object/{bucket}``.
Every read, write and procedure call is scoped to the configured organization.
"""

from __future__ import annotations

import logging
import re
import uuid
from typing import TYPE_CHECKING, Any

import httpx

from fieldops.domain.diagnostics import (
    DiagnosticWorkflow,
    RunEvent,
    RunStatus,
    WorkflowBrand,
    WorkflowRun,
)
from fieldops.domain.exceptions import (
    ConfigurationError,
    GatewayConnectionError,
    GatewayError,
    RemoteProcedureMissing,
    RunConflict,
)
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

if TYPE_CHECKING:
    from fieldops.config import FieldOpsConfig

logger = logging.getLogger(__name__)

# PostgREST code for "function not found in the schema cache"
PROCEDURE_MISSING = "PGRST202"

BOOT_TABLES = (
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

_UNSAFE_FILENAME = re.compile(r"[^a-zA-Z0-9._-]+")


class RestGateway(DataGatewayInterface):
    """
    Gateway over the store's REST interface.

    Transport failures and timeouts surface as GatewayConnectionError so
    the orchestrator can queue the action. Any other non-2xx response is a
    GatewayError carrying the store's message and the operation name.

    The ``set_job_status`` procedure may be missing on older databases.
    The first "procedure not found" response downgrades the gateway to a
    client-side status write (job columns plus status events) for the rest
    of its lifetime.
    """

    def __init__(
        self,
        rest_url: str | None,
        api_key: str | None,
        org_id: str | None,
        timeout: float = 15.0,
        photo_bucket: str = "job-photos",
        report_bucket: str = "job_reports",
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        if not rest_url:
            raise ConfigurationError(
                "REST URL missing. Please set rest_url or FIELDOPS_REST_URL."
            )
        if not api_key:
            raise ConfigurationError(
                "API key missing. Please set api_key or FIELDOPS_API_KEY."
            )
        if not org_id:
            raise ConfigurationError("ORG_ID missing. Please set org_id or FIELDOPS_ORG_ID.")

        self.org_id = org_id
        self._base_url = rest_url.rstrip("/")
        self._photo_bucket = photo_bucket
        self._report_bucket = report_bucket
        self._status_rpc_supported: bool | None = None
        self._client = httpx.Client(
            base_url=self._base_url,
            headers={
                "apikey": api_key,
                "Authorization": f"Bearer {api_key}",
            },
            timeout=timeout,
            transport=transport,
        )

    @classmethod
    def from_config(
        cls, config: FieldOpsConfig, transport: httpx.BaseTransport | None = None
    ) -> RestGateway:
        return cls(
            rest_url=config.rest_url,
            api_key=config.api_key,
            org_id=config.org_id,
            timeout=config.request_timeout,
            photo_bucket=config.photo_bucket,
            report_bucket=config.report_bucket,
            transport=transport,
        )

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> RestGateway:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    # =========================================================================
    # TRANSPORT
    # =========================================================================

    def _request(
        self,
        method: str,
        path: str,
        operation: str,
        *,
        params: dict[str, str] | None = None,
        json: Any = None,
        content: bytes | None = None,
        headers: dict[str, str] | None = None,
    ) -> Any:
        try:
            response = self._client.request(
                method, path, params=params, json=json, content=content, headers=headers
            )
        except httpx.TimeoutException as e:
            logger.warning("%s timed out", operation)
            raise GatewayConnectionError("Request timed out.", operation=operation) from e
        except httpx.TransportError as e:
            logger.warning("%s failed to connect: %s", operation, e)
            raise GatewayConnectionError(
                str(e) or "Connection failed.", operation=operation
            ) from e

        if response.is_error:
            raise self._error(response, operation)
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as e:
            logger.error("Store returned a non-JSON body for %s", operation)
            raise GatewayError(
                "Unexpected response from the store.", operation=operation
            ) from e

    @staticmethod
    def _error(response: httpx.Response, operation: str) -> GatewayError:
        try:
            body = response.json()
        except ValueError:
            body = {}
        if not isinstance(body, dict):
            body = {}
        code = body.get("code")
        message = body.get("message") or response.text or f"HTTP {response.status_code}"
        logger.error("Store error in %s: %s (code=%s)", operation, message, code)
        if code == PROCEDURE_MISSING:
            return RemoteProcedureMissing(message, operation=operation, code=code, details=body)
        return GatewayError(message, operation=operation, code=code, details=body)

    def _scope(self, filters: dict[str, Any] | None = None) -> dict[str, str]:
        params = {"org_id": f"eq.{self.org_id}"}
        for key, value in (filters or {}).items():
            params[key] = "is.null" if value is None else f"eq.{value}"
        return params

    def _select(
        self,
        table: str,
        operation: str,
        filters: dict[str, Any] | None = None,
        order: str = "created_at.asc",
        select: str = "*",
    ) -> list[dict[str, Any]]:
        params = {"select": select, **self._scope(filters), "order": order}
        return self._request("GET", f"/rest/v1/{table}", operation, params=params) or []

    def _select_one(
        self, table: str, record_id: str, operation: str, select: str = "*"
    ) -> dict[str, Any]:
        rows = self._select(table, operation, {"id": record_id}, select=select)
        if not rows:
            raise GatewayError(f"{table} {record_id} not found", operation=operation)
        return rows[0]

    def _insert(
        self,
        table: str,
        payload: dict[str, Any],
        operation: str,
        params: dict[str, str] | None = None,
        prefer: str = "return=representation",
    ) -> dict[str, Any]:
        rows = self._request(
            "POST",
            f"/rest/v1/{table}",
            operation,
            params=params,
            json={**payload, "org_id": self.org_id},
            headers={"Prefer": prefer},
        )
        return rows[0] if rows else {}

    def _update(
        self, table: str, record_id: str, payload: dict[str, Any], operation: str
    ) -> dict[str, Any]:
        rows = self._request(
            "PATCH",
            f"/rest/v1/{table}",
            operation,
            params=self._scope({"id": record_id}),
            json=payload,
            headers={"Prefer": "return=representation"},
        )
        if not rows:
            raise GatewayError(f"{table} {record_id} not found", operation=operation)
        return rows[0]

    def _rpc(self, name: str, params: dict[str, Any], operation: str) -> Any:
        return self._request("POST", f"/rest/v1/rpc/{name}", operation, json=params)

    # =========================================================================
    # JOBS
    # =========================================================================

    def list_jobs(self, filters: dict[str, Any] | None = None) -> list[Job]:
        rows = self._select("jobs", "Load jobs", filters, order="created_at.desc")
        return [Job.from_record(r) for r in rows]

    def get_job(self, job_id: str) -> Job:
        return Job.from_record(self._select_one("jobs", job_id, "Load job"))

    def create_job(self, payload: dict[str, Any]) -> Job:
        job_id = str(payload.get("id") or uuid.uuid4())
        status = JobStatus(payload.get("status") or JobStatus.OPEN.value)
        existing = self._select("jobs", "Create job", {"id": job_id})
        if not existing:
            self._insert("jobs", {**payload, "id": job_id, "status": status.value}, "Create job")
            # Opens the initial status event
            return self.set_job_status(job_id, status, notes="Created job")
        return Job.from_record(existing[0])

    def update_job(self, job_id: str, payload: dict[str, Any]) -> Job:
        return Job.from_record(self._update("jobs", job_id, payload, "Update jobs"))

    def set_job_status(
        self,
        job_id: str,
        status: JobStatus,
        notes: str | None = None,
        last_active_status: JobStatus | None = None,
    ) -> Job:
        if self._status_rpc_supported is not False:
            try:
                self._rpc(
                    "set_job_status",
                    {
                        "p_org_id": self.org_id,
                        "p_job_id": job_id,
                        "p_status": status.value,
                        "p_notes": notes,
                        "p_last_active_status": (
                            last_active_status.value if last_active_status else None
                        ),
                    },
                    "Set job status",
                )
                self._status_rpc_supported = True
                return self.get_job(job_id)
            except RemoteProcedureMissing:
                logger.warning(
                    "Missing set_job_status procedure; writing status fields and "
                    "status events directly."
                )
                self._status_rpc_supported = False

        return self._set_job_status_directly(job_id, status, notes, last_active_status)

    def _set_job_status_directly(
        self,
        job_id: str,
        status: JobStatus,
        notes: str | None,
        last_active_status: JobStatus | None,
    ) -> Job:
        """Client-side status write: job columns, then the status event log."""
        now = utc_now()
        job = self.get_job(job_id)
        updated = self.update_job(
            job_id, status_field_updates(job, status, now, last_active_status)
        )
        change = advance_status_events(
            self.list_job_events(job_id), job_id, status, now, notes=notes
        )
        for event in change.closed:
            self._update(
                "job_events",
                event.event_id,
                {"ended_at": event.ended_at, "duration_seconds": event.duration_seconds},
                "Close job event",
            )
        if change.opened is not None:
            self._insert("job_events", change.opened.to_record(), "Open job event")
        return updated

    def cancel_job(self, job_id: str, reason: str) -> Job:
        try:
            self._rpc(
                "cancel_job",
                {"p_org_id": self.org_id, "p_job_id": job_id, "p_reason": reason},
                "Cancel job",
            )
        except RemoteProcedureMissing:
            return self.set_job_status(job_id, JobStatus.CANCELED, notes=reason)
        return self.get_job(job_id)

    def mark_job_invoiced(self, job_id: str) -> Job:
        self._rpc(
            "mark_job_invoiced", {"p_org_id": self.org_id, "p_job_id": job_id}, "Mark invoiced"
        )
        return self.get_job(job_id)

    def list_job_events(self, job_id: str) -> list[JobStatusEvent]:
        rows = self._select(
            "job_events", "Load job events", {"job_id": job_id}, order="started_at.asc"
        )
        return [JobStatusEvent.from_record(r) for r in rows]

    # =========================================================================
    # SHOP TIMERS
    # =========================================================================

    def start_shop_timer(self, tech_id: str) -> dict[str, Any]:
        running = self._select(
            "shop_timers", "Start shop timer", {"tech_id": tech_id, "ended_at": None}
        )
        if running:
            return running[0]
        return self._insert(
            "shop_timers",
            {"tech_id": tech_id, "started_at": utc_now().isoformat()},
            "Start shop timer",
        )

    def stop_shop_timer(self, tech_id: str) -> dict[str, Any] | None:
        running = self._select(
            "shop_timers", "Stop shop timer", {"tech_id": tech_id, "ended_at": None}
        )
        if not running:
            return None
        timer = running[0]
        now = utc_now()
        started = parse_timestamp(timer["started_at"])
        return self._update(
            "shop_timers",
            timer["id"],
            {
                "ended_at": now.isoformat(),
                "duration_seconds": max(0, int((now - started).total_seconds())),
            },
            "Stop shop timer",
        )

    # =========================================================================
    # DIAGNOSTICS
    # =========================================================================

    def list_diagnostic_workflows(self) -> list[DiagnosticWorkflow]:
        rows = self._select("diagnostic_workflows", "Load diagnostic workflows")
        return [DiagnosticWorkflow.from_record(r) for r in rows]

    def list_diagnostic_workflow_brands(self, workflow_id: str) -> list[WorkflowBrand]:
        rows = self._select(
            "diagnostic_workflow_brands",
            "Load workflow brands",
            {"workflow_id": workflow_id, "status": "published"},
        )
        return [WorkflowBrand.from_record(r) for r in rows]

    def list_diagnostic_nodes(self, brand_id: str) -> list[dict[str, Any]]:
        return self._select("diagnostic_nodes", "Load diagnostic nodes", {"brand_id": brand_id})

    def list_diagnostic_edges(self, brand_id: str) -> list[dict[str, Any]]:
        return self._select("diagnostic_edges", "Load diagnostic edges", {"brand_id": brand_id})

    def create_diagnostic_workflow_run(self, payload: dict[str, Any]) -> WorkflowRun:
        job_id = payload["job_id"]
        running = self._select(
            "diagnostic_workflow_runs",
            "Create diagnostic run",
            {"job_id": job_id, "status": RunStatus.IN_PROGRESS.value},
        )
        if running:
            raise RunConflict(job_id, running[0]["id"])
        record = self._insert(
            "diagnostic_workflow_runs",
            {"status": RunStatus.IN_PROGRESS.value, **payload},
            "Create diagnostic run",
        )
        return WorkflowRun.from_record(record)

    def update_diagnostic_workflow_run(
        self, run_id: str, payload: dict[str, Any]
    ) -> WorkflowRun:
        record = self._update("diagnostic_workflow_runs", run_id, payload, "Update diagnostic run")
        return WorkflowRun.from_record(record)

    def get_diagnostic_workflow_run(self, run_id: str) -> WorkflowRun:
        record = self._select_one("diagnostic_workflow_runs", run_id, "Load diagnostic run")
        return WorkflowRun.from_record(record)

    def list_diagnostic_workflow_runs(self, job_id: str) -> list[WorkflowRun]:
        rows = self._select(
            "diagnostic_workflow_runs",
            "Load diagnostic runs",
            {"job_id": job_id},
            order="created_at.desc",
        )
        return [WorkflowRun.from_record(r) for r in rows]

    def create_diagnostic_run_event(self, payload: dict[str, Any]) -> RunEvent:
        # Replays resend the same id; merge-duplicates makes the insert idempotent
        record = self._insert(
            "diagnostic_run_events",
            payload,
            "Create diagnostic run event",
            prefer="resolution=merge-duplicates,return=representation",
        )
        return RunEvent.from_record(record)

    def list_diagnostic_run_events(self, run_id: str) -> list[RunEvent]:
        rows = self._select("diagnostic_run_events", "Load run events", {"run_id": run_id})
        return [RunEvent.from_record(r) for r in rows]

    # =========================================================================
    # INVENTORY
    # =========================================================================

    def list_truck_inventory(self, truck_id: str) -> list[TruckInventoryItem]:
        rows = self._select(
            "truck_inventory",
            "Load truck inventory",
            {"truck_id": truck_id},
            select="*,products(name,minimum_qty)",
        )
        return [TruckInventoryItem.from_record(r) for r in rows]

    def upsert_truck_inventory(self, payload: dict[str, Any]) -> TruckInventoryItem:
        record = self._insert(
            "truck_inventory",
            payload,
            "Update truck inventory",
            params={"on_conflict": "truck_id,product_id"},
            prefer="resolution=merge-duplicates,return=representation",
        )
        return TruckInventoryItem.from_record(record)

    def add_job_part(
        self,
        job_id: str,
        product_id: str,
        qty: int,
        truck_id: str | None = None,
        part_id: str | None = None,
    ) -> JobPart:
        part_id = part_id or str(uuid.uuid4())
        existing = self._select("job_parts", "Add job part", {"id": part_id})
        if not existing:
            self._rpc(
                "add_job_part",
                {
                    "p_org_id": self.org_id,
                    "p_job_id": job_id,
                    "p_product_id": product_id,
                    "p_truck_id": truck_id,
                    "p_qty": qty,
                    "p_job_part_id": part_id,
                },
                "Add job part",
            )
        return JobPart.from_record(
            self._select_one("job_parts", part_id, "Add job part", select="*,products(name)")
        )

    def remove_job_part(self, part_id: str) -> None:
        part = self._select_one("job_parts", part_id, "Remove job part")
        self._rpc(
            "remove_job_part",
            {
                "p_org_id": self.org_id,
                "p_job_part_id": part_id,
                "p_truck_id": part.get("truck_id"),
            },
            "Remove job part",
        )

    def list_job_parts(self, job_id: str) -> list[JobPart]:
        rows = self._select(
            "job_parts", "Load job parts", {"job_id": job_id}, select="*,products(name)"
        )
        return [JobPart.from_record(r) for r in rows]

    def add_job_repair(self, payload: dict[str, Any]) -> dict[str, Any]:
        return self._insert(
            "job_repairs",
            payload,
            "Create job_repairs",
            prefer="resolution=merge-duplicates,return=representation",
        )

    def list_job_repairs(self, job_id: str) -> list[dict[str, Any]]:
        return self._select("job_repairs", "Load repairs", {"job_id": job_id})

    def create_out_of_stock(self, payload: dict[str, Any]) -> dict[str, Any]:
        return self._insert("out_of_stock_flags", payload, "Create out_of_stock_flags")

    # =========================================================================
    # FILES
    # =========================================================================

    def _upload(
        self, bucket: str, path: str, data: bytes, content_type: str, operation: str
    ) -> str:
        self._request(
            "POST",
            f"/storage/v1/object/{bucket}/{path}",
            operation,
            content=data,
            headers={"Content-Type": content_type, "x-upsert": "true"},
        )
        return f"{self._base_url}/storage/v1/object/public/{bucket}/{path}"

    def upload_job_photo(self, data: bytes, filename: str, prefix: str = "") -> str:
        safe_name = _UNSAFE_FILENAME.sub("-", filename) or "photo.jpg"
        path = "/".join(p for p in (prefix, f"{uuid.uuid4()}-{safe_name}") if p)
        extension = safe_name.rsplit(".", 1)[-1].lower() if "." in safe_name else "jpeg"
        content_type = "image/png" if extension == "png" else "image/jpeg"
        return self._upload(self._photo_bucket, path, data, content_type, "Upload photo")

    def upload_report(
        self, job_id: str, filename: str, data: bytes, content_type: str
    ) -> str:
        path = f"{self.org_id}/{job_id}/{filename}"
        return self._upload(self._report_bucket, path, data, content_type, "Upload report")

    def add_attachment(self, payload: dict[str, Any]) -> dict[str, Any]:
        return self._insert(
            "attachments",
            payload,
            "Create attachments",
            prefer="resolution=merge-duplicates,return=representation",
        )

    def list_attachments(self, job_id: str) -> list[dict[str, Any]]:
        return self._select("attachments", "Load attachments", {"job_id": job_id})

    # =========================================================================
    # REFERENCE DATA
    # =========================================================================

    def get_boot_data(self) -> dict[str, Any]:
        return {table: self._select(table, f"Load {table}") for table in BOOT_TABLES}
