"""Shared pytest fixtures for fieldops tests."""

from datetime import UTC, datetime, timedelta

import pytest

from fieldops.application.action_handlers import build_action_handlers
from fieldops.application.interpreter import DiagnosticInterpreter
from fieldops.application.job_service import JobLifecycleService
from fieldops.application.orchestrator import OfflineOrchestrator
from fieldops.application.reports import ReportService
from fieldops.application.session import SessionContext
from fieldops.domain.models import Job, JobStatus
from fieldops.infrastructure.connectivity import ManualConnectivity
from fieldops.infrastructure.gateway.memory import InMemoryGateway
from fieldops.infrastructure.notify import CollectingNotifier
from fieldops.infrastructure.persistence.queue import InMemoryActionQueue
from fieldops.infrastructure.persistence.session import InMemorySessionStore
from fieldops.infrastructure.reports import PlainTextReportRenderer


class FakeClock:
    """Deterministic clock that only moves when told to."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2025, 3, 1, 8, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: int = 0, minutes: int = 0) -> None:
        self.now += timedelta(seconds=seconds, minutes=minutes)


# Voltage check -> repair on bad -> manual verify -> end
PUMP_NODES = [
    {
        "id": "n-voltage",
        "node_type": "check",
        "title": "Check panel voltage",
        "data": {
            "instructions": "Measure L1-L2 at the main disconnect.",
            "readings": [
                {
                    "id": "v_l1_l2",
                    "label": "L1-L2",
                    "unit": "V",
                    "operator": "between",
                    "value": 220,
                    "max": 240,
                },
            ],
            "rollup_logic": "all_good",
        },
    },
    {
        "id": "n-replace-fuse",
        "node_type": "repair",
        "title": "Replace fuse",
        "data": {
            "step_style": "checkbox",
            "steps": ["Lock out power", "Swap fuse", "Restore power"],
            "require_before_photo": True,
            "require_after_photo": False,
        },
    },
    {
        "id": "n-verify",
        "node_type": "check",
        "title": "Tower walks?",
        "data": None,
    },
    {
        "id": "n-end",
        "node_type": "end",
        "title": "Done",
        "data": {
            "closure_options": ["Repaired", "Needs parts"],
            "require_follow_up_notes": True,
        },
    },
]

PUMP_EDGES = [
    {"id": "e1", "from_node_id": "n-voltage", "to_node_id": "n-end", "condition": "good"},
    {"id": "e2", "from_node_id": "n-voltage", "to_node_id": "n-replace-fuse", "condition": "bad"},
    {"id": "e3", "from_node_id": "n-replace-fuse", "to_node_id": "n-verify", "condition": "next"},
    {"id": "e4", "from_node_id": "n-verify", "to_node_id": "n-end", "condition": "good"},
]


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def gateway(clock: FakeClock) -> InMemoryGateway:
    """In-memory store seeded with products, a truck stock and a workflow."""
    gw = InMemoryGateway(clock=clock)
    gw.seed(
        "products",
        {"id": "p-fuse", "name": "Fuse", "minimum_qty": 4},
        {"id": "p-contactor", "name": "Contactor", "minimum_qty": 1},
        {"id": "p-wire", "name": "Wire nut", "minimum_qty": 20},
    )
    gw.seed("customers", {"id": "cust-1", "name": "Acme Farms"})
    gw.seed("trucks", {"id": "truck-1", "name": "Truck 1"})
    gw.upsert_truck_inventory({"truck_id": "truck-1", "product_id": "p-fuse", "qty": 10})
    gw.upsert_truck_inventory(
        {"truck_id": "truck-1", "product_id": "p-contactor", "qty": 0, "min_qty": 2}
    )
    gw.add_workflow("wf-pump", "Pump will not start")
    gw.add_brand("brand-valley", "wf-pump", "Valley", PUMP_NODES, PUMP_EDGES)
    gw.add_brand("brand-draft", "wf-pump", "Zimmatic", PUMP_NODES, PUMP_EDGES, status="draft")
    gw.calls.clear()
    return gw


@pytest.fixture
def queue() -> InMemoryActionQueue:
    return InMemoryActionQueue()


@pytest.fixture
def connectivity() -> ManualConnectivity:
    return ManualConnectivity(online=True)


@pytest.fixture
def notifier() -> CollectingNotifier:
    return CollectingNotifier()


@pytest.fixture
def session_store() -> InMemorySessionStore:
    return InMemorySessionStore()


@pytest.fixture
def session(session_store: InMemorySessionStore) -> SessionContext:
    return SessionContext(store=session_store, tech_id="tech-1", truck_id="truck-1")


@pytest.fixture
def reports(gateway: InMemoryGateway, clock: FakeClock) -> ReportService:
    return ReportService(gateway, PlainTextReportRenderer(), clock)


@pytest.fixture
def orchestrator(
    gateway: InMemoryGateway,
    queue: InMemoryActionQueue,
    connectivity: ManualConnectivity,
    notifier: CollectingNotifier,
    session: SessionContext,
    reports: ReportService,
) -> OfflineOrchestrator:
    return OfflineOrchestrator(
        queue=queue,
        connectivity=connectivity,
        notifier=notifier,
        handlers=build_action_handlers(gateway, reports),
        gateway=gateway,
        session=session,
        max_replay_attempts=3,
    )


@pytest.fixture
def jobs(orchestrator: OfflineOrchestrator, session: SessionContext) -> JobLifecycleService:
    return JobLifecycleService(orchestrator, session)


@pytest.fixture
def interpreter(
    gateway: InMemoryGateway,
    orchestrator: OfflineOrchestrator,
    jobs: JobLifecycleService,
    session: SessionContext,
    clock: FakeClock,
) -> DiagnosticInterpreter:
    return DiagnosticInterpreter(gateway, orchestrator, jobs, session, clock)


@pytest.fixture
def open_job(gateway: InMemoryGateway) -> Job:
    """A job in ``open`` with its initial status event."""
    job = gateway.create_job(
        {
            "id": "job-1",
            "customer_id": "cust-1",
            "field_id": "field-9",
            "truck_id": "truck-1",
            "tech_id": "tech-1",
            "description": "Pivot will not start",
        }
    )
    gateway.calls.clear()
    return job


@pytest.fixture
def diagnostics_job(
    jobs: JobLifecycleService, open_job: Job, session: SessionContext, clock: FakeClock
) -> Job:
    """Job taken and arrived on site, in ``on_site_diagnostics``."""
    on_the_way = jobs.take_job(open_job).value
    clock.advance(minutes=30)
    arrived = jobs.arrive(on_the_way).value
    assert arrived.status == JobStatus.ON_SITE_DIAGNOSTICS
    return arrived
