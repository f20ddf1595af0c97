"""
Action-key table binding queueable actions to gateway operations.

Each handler takes the JSON payload stored with the action, so the same
function serves the immediate call and the replay of a queued copy.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from fieldops.application.orchestrator import Handler
from fieldops.domain.exceptions import ValidationError
from fieldops.domain.models import JobStatus

if TYPE_CHECKING:
    from fieldops.application.reports import ReportService
    from fieldops.domain.interfaces import DataGatewayInterface

# Action keys
CREATE_JOB = "create_job"
UPDATE_JOB = "update_job"
SET_JOB_STATUS = "set_job_status"
CANCEL_JOB = "cancel_job"
MARK_JOB_INVOICED = "mark_job_invoiced"
STOP_SHOP_TIMER = "stop_shop_timer"
ADD_JOB_PART = "add_job_part"
REMOVE_JOB_PART = "remove_job_part"
ADD_REPAIR = "add_repair"
UPSERT_INVENTORY = "upsert_inventory"
COMMIT_RESTOCK = "commit_restock"
OUT_OF_STOCK = "out_of_stock"
UPDATE_RUN = "update_run"
CREATE_RUN_EVENT = "create_run_event"
ADD_ATTACHMENT = "add_attachment"
GENERATE_REPORTS = "generate_reports"


def _require(payload: dict[str, Any], key: str) -> Any:
    value = payload.get(key)
    if value is None or value == "":
        raise ValidationError(f"Action payload is missing '{key}'")
    return value


def _quantity(payload: dict[str, Any]) -> int:
    value = _require(payload, "qty")
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"Invalid quantity: {value!r}") from None


def _status(value: str | None) -> JobStatus | None:
    if not value:
        return None
    try:
        return JobStatus(value)
    except ValueError:
        raise ValidationError(f"Unknown job status: {value}") from None


def build_action_handlers(
    gateway: DataGatewayInterface,
    reports: ReportService | None = None,
) -> dict[str, Handler]:
    """
    Build the handler table for the orchestrator.

    Args:
        gateway: Remote store the handlers write to
        reports: Report service; ``generate_reports`` is registered only
            when given

    Returns:
        Mapping of action key to handler
    """

    def create_job(payload: dict[str, Any]) -> Any:
        return gateway.create_job(payload)

    def update_job(payload: dict[str, Any]) -> Any:
        return gateway.update_job(_require(payload, "job_id"), dict(payload.get("fields") or {}))

    def set_job_status(payload: dict[str, Any]) -> Any:
        options = payload.get("options") or {}
        status = _status(_require(payload, "status"))
        return gateway.set_job_status(
            _require(payload, "job_id"),
            status,  # type: ignore[arg-type]
            notes=options.get("notes"),
            last_active_status=_status(options.get("last_active_status")),
        )

    def cancel_job(payload: dict[str, Any]) -> Any:
        return gateway.cancel_job(_require(payload, "job_id"), _require(payload, "reason"))

    def mark_job_invoiced(payload: dict[str, Any]) -> Any:
        return gateway.mark_job_invoiced(_require(payload, "job_id"))

    def stop_shop_timer(payload: dict[str, Any]) -> Any:
        return gateway.stop_shop_timer(_require(payload, "tech_id"))

    def add_job_part(payload: dict[str, Any]) -> Any:
        return gateway.add_job_part(
            _require(payload, "job_id"),
            _require(payload, "product_id"),
            _quantity(payload),
            truck_id=payload.get("truck_id"),
            part_id=payload.get("part_id"),
        )

    def remove_job_part(payload: dict[str, Any]) -> Any:
        return gateway.remove_job_part(_require(payload, "part_id"))

    def add_repair(payload: dict[str, Any]) -> Any:
        _require(payload, "job_id")
        return gateway.add_job_repair(payload)

    def upsert_inventory(payload: dict[str, Any]) -> Any:
        _require(payload, "truck_id")
        _require(payload, "product_id")
        return gateway.upsert_truck_inventory(payload)

    def commit_restock(payload: dict[str, Any]) -> Any:
        truck_id = _require(payload, "truck_id")
        return [
            gateway.upsert_truck_inventory({**row, "truck_id": truck_id})
            for row in payload.get("items") or []
        ]

    def out_of_stock(payload: dict[str, Any]) -> Any:
        _require(payload, "product_id")
        return gateway.create_out_of_stock(payload)

    def update_run(payload: dict[str, Any]) -> Any:
        return gateway.update_diagnostic_workflow_run(
            _require(payload, "run_id"), dict(payload.get("fields") or {})
        )

    def create_run_event(payload: dict[str, Any]) -> Any:
        _require(payload, "run_id")
        return gateway.create_diagnostic_run_event(payload)

    def add_attachment(payload: dict[str, Any]) -> Any:
        _require(payload, "job_id")
        return gateway.add_attachment(payload)

    handlers: dict[str, Handler] = {
        CREATE_JOB: create_job,
        UPDATE_JOB: update_job,
        SET_JOB_STATUS: set_job_status,
        CANCEL_JOB: cancel_job,
        MARK_JOB_INVOICED: mark_job_invoiced,
        STOP_SHOP_TIMER: stop_shop_timer,
        ADD_JOB_PART: add_job_part,
        REMOVE_JOB_PART: remove_job_part,
        ADD_REPAIR: add_repair,
        UPSERT_INVENTORY: upsert_inventory,
        COMMIT_RESTOCK: commit_restock,
        OUT_OF_STOCK: out_of_stock,
        UPDATE_RUN: update_run,
        CREATE_RUN_EVENT: create_run_event,
        ADD_ATTACHMENT: add_attachment,
    }

    if reports is not None:

        def generate_reports(payload: dict[str, Any]) -> Any:
            return reports.generate(_require(payload, "job_id"))

        handlers[GENERATE_REPORTS] = generate_reports

    return handlers
