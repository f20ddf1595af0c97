"""Tests for InventoryService and the restock helpers."""

import pytest

from fieldops.application.inventory import (
    TECH_ADDED,
    InventoryService,
    restock_lines,
    visible_inventory,
)
from fieldops.application.session import SessionContext
from fieldops.domain.exceptions import ValidationError
from fieldops.domain.models import TruckInventoryItem


@pytest.fixture
def inventory(gateway, orchestrator, session) -> InventoryService:
    return InventoryService(gateway, orchestrator, session)


def item(product_id: str, qty: int, **kwargs) -> TruckInventoryItem:
    return TruckInventoryItem(
        item_id=f"i-{product_id}",
        truck_id="truck-1",
        product_id=product_id,
        qty=qty,
        product_name=kwargs.pop("name", product_id),
        **kwargs,
    )


class TestRestockLines:
    """Tests for restock_lines."""

    def test_row_minimum_overrides_product_minimum(self) -> None:
        lines = restock_lines([item("a", 3, min_qty=5, product_minimum_qty=1)])

        assert lines[0].needed_qty == 2

    def test_falls_back_to_product_minimum(self) -> None:
        lines = restock_lines([item("a", 1, product_minimum_qty=4)])

        assert lines[0].min_qty == 4

    def test_stocked_and_tech_added_rows_are_skipped(self) -> None:
        lines = restock_lines(
            [
                item("a", 4, product_minimum_qty=4),
                item("b", 0, product_minimum_qty=9, origin=TECH_ADDED),
            ]
        )

        assert lines == []

    def test_sorted_by_product_name(self) -> None:
        lines = restock_lines(
            [
                item("z", 0, name="zip tie", min_qty=1),
                item("a", 0, name="Anchor", min_qty=1),
            ]
        )

        assert [line.item.product_id for line in lines] == ["a", "z"]

    def test_empty_tech_added_rows_are_hidden(self) -> None:
        items = [item("a", 0, origin=TECH_ADDED), item("b", 0)]

        assert [i.product_id for i in visible_inventory(items)] == ["b"]


class TestInventoryService:
    """Tests for stock views and mutations."""

    def test_truck_inventory_joins_product_names(self, inventory) -> None:
        names = [i.product_name for i in inventory.truck_inventory()]

        assert names == ["Contactor", "Fuse"]

    def test_restock_list(self, inventory) -> None:
        lines = inventory.restock_list()

        assert [(line.item.product_id, line.needed_qty) for line in lines] == [
            ("p-contactor", 2)
        ]

    def test_commit_restock_sends_absolute_quantities(self, inventory, gateway) -> None:
        result = inventory.commit_restock({"p-contactor": 2})

        assert result.applied
        assert gateway.inventory[("truck-1", "p-contactor")]["qty"] == 2
        assert inventory.restock_list() == []

    def test_commit_restock_replay_does_not_double_count(
        self, inventory, gateway, connectivity, orchestrator
    ) -> None:
        connectivity.go_offline()
        inventory.commit_restock({"p-contactor": 1})
        connectivity.go_online()

        orchestrator.sync_outbox()
        orchestrator.execute_or_queue(
            "commit_restock",
            {"truck_id": "truck-1", "items": [{"product_id": "p-contactor", "qty": 1}]},
        )

        assert gateway.inventory[("truck-1", "p-contactor")]["qty"] == 1

    def test_commit_restock_with_nothing_acquired(self, inventory, gateway) -> None:
        assert inventory.commit_restock({"p-contactor": 0}) is None
        assert "upsert_truck_inventory" not in gateway.calls

    def test_commit_restock_rejects_unlisted_product(self, inventory) -> None:
        with pytest.raises(ValidationError, match="not on the restock list"):
            inventory.commit_restock({"p-fuse": 3})

    def test_add_to_truck_marks_row_tech_added(self, inventory, gateway) -> None:
        inventory.add_to_truck("p-wire", 5)

        assert gateway.inventory[("truck-1", "p-wire")]["origin"] == TECH_ADDED
        assert inventory.restock_list()[0].item.product_id == "p-contactor"

    def test_add_to_truck_requires_quantity(self, inventory) -> None:
        with pytest.raises(ValidationError, match="Select part and quantity."):
            inventory.add_to_truck("p-wire", 0)

    def test_set_minimum(self, inventory, gateway) -> None:
        inventory.set_minimum("p-fuse", 12)

        lines = inventory.restock_list()
        assert {line.item.product_id: line.needed_qty for line in lines}["p-fuse"] == 2

    def test_negative_minimum_rejected(self, inventory) -> None:
        with pytest.raises(ValidationError):
            inventory.set_minimum("p-fuse", -1)

    def test_mark_out_of_stock(self, inventory, gateway) -> None:
        inventory.mark_out_of_stock("p-contactor")

        record = gateway.out_of_stock[0]
        assert record["product_id"] == "p-contactor"
        assert record["truck_id"] == "truck-1"
        assert record["notes"] == "Marked out of stock from tech restock flow."

    def test_truck_required(self, gateway, orchestrator) -> None:
        service = InventoryService(gateway, orchestrator, SessionContext())

        with pytest.raises(ValidationError, match="Select a truck."):
            service.restock_list()

    def test_garbled_part_quantity_fails_the_action(self, orchestrator, gateway) -> None:
        result = orchestrator.execute_or_queue(
            "add_job_part", {"job_id": "job-1", "product_id": "p-fuse", "qty": "two"}
        )

        assert result.failed
        assert result.error == "Invalid quantity: 'two'"
        assert "add_job_part" not in gateway.calls

    def test_garbled_queued_quantity_counts_as_a_replay_failure(
        self, orchestrator, queue, connectivity
    ) -> None:
        connectivity.go_offline()
        orchestrator.execute_or_queue(
            "add_job_part", {"job_id": "job-1", "product_id": "p-fuse", "qty": [2]}
        )
        connectivity.go_online()

        report = orchestrator.sync_outbox()

        assert report.remaining == 1
        assert queue.list_all()[0].last_error == "Invalid quantity: [2]"
