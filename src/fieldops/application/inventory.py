"""Truck stock, restock and out-of-stock use cases."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from typing import TYPE_CHECKING

from fieldops.application.action_handlers import COMMIT_RESTOCK, OUT_OF_STOCK, UPSERT_INVENTORY
from fieldops.domain.exceptions import ValidationError
from fieldops.domain.models import ExecutionResult, TruckInventoryItem, utc_now

if TYPE_CHECKING:
    from fieldops.application.orchestrator import OfflineOrchestrator
    from fieldops.application.session import SessionContext
    from fieldops.domain.interfaces import DataGatewayInterface

TECH_ADDED = "tech_added"


@dataclass(frozen=True)
class RestockLine:
    """A permanent truck item below its minimum."""

    item: TruckInventoryItem
    min_qty: int

    @property
    def needed_qty(self) -> int:
        return max(0, self.min_qty - self.item.qty)


def visible_inventory(items: list[TruckInventoryItem]) -> list[TruckInventoryItem]:
    """Drop tech-added rows that have run out; permanent rows always show."""
    return [i for i in items if i.origin != TECH_ADDED or i.qty > 0]


def restock_lines(items: list[TruckInventoryItem]) -> list[RestockLine]:
    """
    Permanent rows below minimum, sorted by product name.

    The row's own ``min_qty`` wins over the product-wide minimum.
    """
    lines = []
    for item in items:
        if item.origin == TECH_ADDED:
            continue
        minimum = item.min_qty if item.min_qty is not None else item.product_minimum_qty
        line = RestockLine(item=item, min_qty=minimum)
        if line.needed_qty > 0:
            lines.append(line)
    return sorted(lines, key=lambda line: line.item.product_name.lower())


class InventoryService:
    """Stock views read live; every mutation goes through the orchestrator."""

    def __init__(
        self,
        gateway: DataGatewayInterface,
        orchestrator: OfflineOrchestrator,
        session: SessionContext,
    ) -> None:
        self._gateway = gateway
        self._orchestrator = orchestrator
        self._session = session

    def _truck(self, truck_id: str | None) -> str:
        truck = truck_id or self._session.truck_id
        if not truck:
            raise ValidationError("Select a truck.")
        return truck

    def truck_inventory(self, truck_id: str | None = None) -> list[TruckInventoryItem]:
        items = visible_inventory(self._gateway.list_truck_inventory(self._truck(truck_id)))
        return sorted(items, key=lambda i: i.product_name.lower())

    def restock_list(self, truck_id: str | None = None) -> list[RestockLine]:
        return restock_lines(self._gateway.list_truck_inventory(self._truck(truck_id)))

    def commit_restock(
        self, acquired: Mapping[str, int], truck_id: str | None = None
    ) -> ExecutionResult | None:
        """
        Add acquired quantities to the truck.

        Quantities are resolved against the current restock list and sent
        as absolute values, so replaying the action does not double count.

        Args:
            acquired: Product id -> quantity picked up
            truck_id: Defaults to the session's truck

        Returns:
            The dispatch result, or None when nothing was acquired
        """
        truck = self._truck(truck_id)
        lines = {line.item.product_id: line for line in self.restock_list(truck)}
        rows = []
        for product_id, qty in acquired.items():
            if qty is None or qty <= 0:
                continue
            line = lines.get(product_id)
            if line is None:
                raise ValidationError(f"Product {product_id} is not on the restock list.")
            rows.append({"product_id": product_id, "qty": line.item.qty + int(qty)})
        if not rows:
            return None
        return self._orchestrator.execute_or_queue(
            COMMIT_RESTOCK, {"truck_id": truck, "items": rows}
        )

    def add_to_truck(
        self, product_id: str, qty: int, truck_id: str | None = None
    ) -> ExecutionResult:
        """Carry a product the truck does not normally stock."""
        if not product_id or qty < 1:
            raise ValidationError("Select part and quantity.")
        return self._orchestrator.execute_or_queue(
            UPSERT_INVENTORY,
            {
                "truck_id": self._truck(truck_id),
                "product_id": product_id,
                "qty": qty,
                "origin": TECH_ADDED,
            },
        )

    def set_minimum(
        self, product_id: str, min_qty: int, truck_id: str | None = None
    ) -> ExecutionResult:
        if min_qty < 0:
            raise ValidationError("Minimum quantity cannot be negative.")
        return self._orchestrator.execute_or_queue(
            UPSERT_INVENTORY,
            {"truck_id": self._truck(truck_id), "product_id": product_id, "min_qty": min_qty},
        )

    def mark_out_of_stock(
        self, product_id: str, notes: str = "", truck_id: str | None = None
    ) -> ExecutionResult:
        return self._orchestrator.execute_or_queue(
            OUT_OF_STOCK,
            {
                "product_id": product_id,
                "truck_id": self._truck(truck_id),
                "notes": notes or "Marked out of stock from tech restock flow.",
                "created_at": utc_now().isoformat(),
            },
        )
