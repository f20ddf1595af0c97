"""
Technician session context.

Holds what the technician app keeps between actions: who is working, on
which truck, the job and diagnostics run in focus, cached reference data
and the last screen visited. One SessionContext is owned by the services
of a device; nothing is kept in module globals.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from fieldops.domain.interfaces import SessionStoreInterface
from fieldops.domain.models import Job

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LastScreen:
    screen: str
    job_id: str | None = None


class SessionContext:
    """
    Mutable session state with optional persistence.

    Every mutator saves through the store when one is attached, so a reload
    restores the technician's place.
    """

    def __init__(
        self,
        store: SessionStoreInterface | None = None,
        tech_id: str | None = None,
        truck_id: str | None = None,
        helpers: tuple[str, ...] = (),
    ) -> None:
        self._store = store
        self.tech_id = tech_id
        self.truck_id = truck_id
        self.helpers = tuple(helpers)
        self.current_job: Job | None = None
        self.current_run_id: str | None = None
        self.boot_data: dict[str, Any] = {}
        self.last_screen: LastScreen | None = None

    @classmethod
    def restore(cls, store: SessionStoreInterface) -> SessionContext:
        """Rebuild a session from its store, or start empty."""
        session = cls(store=store)
        state = store.load()
        if not state:
            return session
        session.tech_id = state.get("tech_id")
        session.truck_id = state.get("truck_id")
        session.helpers = tuple(state.get("helpers") or ())
        session.current_run_id = state.get("current_run_id")
        session.boot_data = dict(state.get("boot_data") or {})
        job = state.get("current_job")
        session.current_job = Job.from_record(job) if job else None
        screen = state.get("last_screen")
        if screen:
            session.last_screen = LastScreen(screen["screen"], screen.get("job_id"))
        logger.debug("Session restored (tech=%s, job=%s)", session.tech_id, session.job_id)
        return session

    @property
    def job_id(self) -> str | None:
        return self.current_job.job_id if self.current_job else None

    def to_state(self) -> dict[str, Any]:
        return {
            "tech_id": self.tech_id,
            "truck_id": self.truck_id,
            "helpers": list(self.helpers),
            "current_job": self.current_job.to_record() if self.current_job else None,
            "current_run_id": self.current_run_id,
            "boot_data": self.boot_data,
            "last_screen": (
                {"screen": self.last_screen.screen, "job_id": self.last_screen.job_id}
                if self.last_screen
                else None
            ),
        }

    def _save(self) -> None:
        if self._store is not None:
            self._store.save(self.to_state())

    def sign_in(self, tech_id: str, truck_id: str | None, helpers: tuple[str, ...] = ()) -> None:
        self.tech_id = tech_id
        self.truck_id = truck_id
        self.helpers = tuple(helpers)
        self._save()

    def set_job(self, job: Job | None) -> None:
        self.current_job = job
        self._save()

    def set_run(self, run_id: str | None) -> None:
        self.current_run_id = run_id
        self._save()

    def set_boot_data(self, data: dict[str, Any]) -> None:
        self.boot_data = dict(data)
        self._save()

    def save_last_screen(self, screen: str, job_id: str | None = None) -> None:
        self.last_screen = LastScreen(screen, job_id)
        self._save()

    def clear_last_screen(self) -> None:
        self.last_screen = None
        self._save()
