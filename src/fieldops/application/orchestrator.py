"""
Offline orchestration: run an action now, or defer it to the durable queue.

Every mutation a technician triggers goes through ``execute_or_queue``
under an action key. The same action-key table drives replay, so a queued
action is applied exactly as it would have been online.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterator, Mapping
from contextlib import contextmanager
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from fieldops.domain.exceptions import (
    ActionInProgress,
    FieldOpsError,
    GatewayConnectionError,
    GatewayError,
)
from fieldops.domain.models import ExecutionResult, ExecutionStatus, QueuedAction

if TYPE_CHECKING:
    from fieldops.application.session import SessionContext
    from fieldops.domain.interfaces import (
        ActionQueueInterface,
        ConnectivityInterface,
        DataGatewayInterface,
        NotifierInterface,
    )

logger = logging.getLogger(__name__)

Handler = Callable[[dict[str, Any]], Any]

SAVED_OFFLINE = "Saved offline. Will sync when online."
SYNC_FAILED = "Failed to sync offline changes. Will retry."
SYNC_BLOCKED = "An offline change needs attention before sync can continue."


@dataclass(frozen=True)
class SyncReport:
    """
    Outcome of one replay pass.

    Attributes:
        applied: Number of queued actions applied and removed
        remaining: Number of actions still queued afterwards
        stopped_at: Action that halted the pass, if any
        error: Why the pass halted
    """

    applied: int = 0
    remaining: int = 0
    stopped_at: QueuedAction | None = None
    error: str | None = None

    @property
    def complete(self) -> bool:
        return self.remaining == 0


class OfflineOrchestrator:
    """
    Binds user actions to immediate execution or deferred replay.

    Only one action runs at a time; a second one started while the first is
    unresolved raises ActionInProgress.
    """

    def __init__(
        self,
        queue: ActionQueueInterface,
        connectivity: ConnectivityInterface,
        notifier: NotifierInterface,
        handlers: Mapping[str, Handler],
        gateway: DataGatewayInterface | None = None,
        session: SessionContext | None = None,
        max_replay_attempts: int = 5,
    ) -> None:
        """
        Args:
            queue: Durable store for deferred actions
            connectivity: Online/offline source
            notifier: Toast sink
            handlers: Action key -> handler taking the action payload
            gateway: Used to refresh reference data and the current job
            session: Session whose cached data is refreshed after success
            max_replay_attempts: Failed replays before an action is dead-lettered
        """
        if max_replay_attempts < 1:
            raise ValueError("max_replay_attempts must be >= 1")
        self._queue = queue
        self._connectivity = connectivity
        self._notifier = notifier
        self._handlers: dict[str, Handler] = dict(handlers)
        self._gateway = gateway
        self._session = session
        self._max_attempts = max_replay_attempts
        self._busy = False

    @property
    def busy(self) -> bool:
        return self._busy

    def register(self, action_key: str, handler: Handler) -> None:
        self._handlers[action_key] = handler

    def handles(self, action_key: str) -> bool:
        return action_key in self._handlers

    def is_online(self) -> bool:
        return self._connectivity.is_online()

    @contextmanager
    def _exclusive(self) -> Iterator[None]:
        if self._busy:
            raise ActionInProgress("Another action is still in progress")
        self._busy = True
        try:
            yield
        finally:
            self._busy = False

    # =========================================================================
    # DISPATCH
    # =========================================================================

    def execute_or_queue(
        self,
        action_key: str,
        payload: dict[str, Any],
        handler: Handler | None = None,
    ) -> ExecutionResult:
        """
        Apply an action against the remote store, or queue it for replay.

        Args:
            action_key: Registered action key (also used for replay)
            payload: JSON-serializable arguments of the action
            handler: Override for the immediate call; replay always uses
                the registered handler

        Returns:
            ExecutionResult: APPLIED with the handler's value, QUEUED when
            offline (or behind earlier queued work), FAILED when the store
            rejected the action

        Raises:
            ActionInProgress: If another action has not resolved yet
            ValueError: If no handler is registered for ``action_key``
        """
        if action_key not in self._handlers:
            raise ValueError(f"No handler registered for action '{action_key}'")
        handler = handler or self._handlers[action_key]

        with self._exclusive():
            if not self._connectivity.is_online():
                return self._enqueue(action_key, payload)

            if self._queue.list_all():
                report = self._replay()
                if not report.complete:
                    return self._enqueue(action_key, payload)

            try:
                value = handler(payload)
            except GatewayConnectionError as e:
                logger.warning("Connection lost during '%s': %s", action_key, e)
                return self._enqueue(action_key, payload)
            except FieldOpsError as e:
                logger.error("Action '%s' failed: %s", action_key, e)
                self._notifier.notify(str(e), "error")
                return ExecutionResult(status=ExecutionStatus.FAILED, error=str(e))

            self._refresh()
            return ExecutionResult(status=ExecutionStatus.APPLIED, value=value)

    def _enqueue(self, action_key: str, payload: dict[str, Any]) -> ExecutionResult:
        item = self._queue.enqueue(action_key, payload)
        logger.info("Queued '%s' as #%d", action_key, item.action_id)
        self._notifier.notify(SAVED_OFFLINE, "info")
        return ExecutionResult(status=ExecutionStatus.QUEUED, queued_id=item.action_id)

    def _refresh(self) -> None:
        """Reload reference data and the current job after a remote change."""
        if self._gateway is None or self._session is None:
            return
        try:
            self._session.set_boot_data(self._gateway.get_boot_data())
            if self._session.current_job is not None:
                self._session.set_job(self._gateway.get_job(self._session.current_job.job_id))
        except GatewayError as e:
            logger.warning("Refresh after action failed: %s", e)

    # =========================================================================
    # REPLAY
    # =========================================================================

    def start(self) -> SyncReport:
        """
        Replay what an earlier session left queued, then replay again on
        every reconnect.
        """
        self._connectivity.add_reconnect_listener(self._on_reconnect)
        report = self.sync_outbox()
        if report.applied or report.remaining:
            logger.info(
                "Startup sync applied %d, %d still queued", report.applied, report.remaining
            )
        return report

    def _on_reconnect(self) -> None:
        # A running action replays the queue itself before its own call
        if self._busy:
            return
        logger.info("Back online; replaying queued actions")
        self.sync_outbox()

    def sync_outbox(self) -> SyncReport:
        """
        Replay queued actions in FIFO order, stopping at the first failure.

        Failed actions stay in place with their attempt counted; once an
        action reaches the retry limit it is dead-lettered. A dead-lettered
        action keeps blocking everything behind it until it is retried or
        discarded, so a later action never overtakes an earlier one.

        Raises:
            ActionInProgress: If another action has not resolved yet
        """
        with self._exclusive():
            return self._replay()

    def _replay(self) -> SyncReport:
        pending = self._queue.list_all()
        if not pending:
            return SyncReport()
        if not self._connectivity.is_online():
            return SyncReport(remaining=len(pending))

        applied = 0
        for item in pending:
            error = self._replay_one(item)
            if error is not None:
                if applied:
                    self._refresh()
                return SyncReport(
                    applied=applied,
                    remaining=len(pending) - applied,
                    stopped_at=self._queue.get(item.action_id) or item,
                    error=error,
                )
            applied += 1

        logger.info("Replayed %d queued action(s)", applied)
        self._refresh()
        return SyncReport(applied=applied)

    def _replay_one(self, item: QueuedAction) -> str | None:
        """Apply one queued action. Returns an error message on failure."""
        if item.is_dead_letter:
            logger.warning(
                "Replay blocked by dead-lettered #%d '%s': %s",
                item.action_id,
                item.action,
                item.last_error,
            )
            self._notifier.notify(SYNC_BLOCKED, "warning")
            return item.last_error or "dead-lettered"

        handler = self._handlers.get(item.action)
        if handler is None:
            error = f"No handler registered for action '{item.action}'"
            self._queue.record_failure(item.action_id, error, dead_letter=True)
            logger.error("Dead-lettered #%d: %s", item.action_id, error)
            self._notifier.notify(SYNC_BLOCKED, "error")
            return error

        try:
            handler(item.payload)
        except GatewayConnectionError as e:
            # Still offline: not the action's fault, keep its retry budget
            logger.warning("Replay of #%d interrupted: %s", item.action_id, e)
            self._notifier.notify(SYNC_FAILED, "warning")
            return str(e)
        except FieldOpsError as e:
            dead = item.attempts + 1 >= self._max_attempts
            updated = self._queue.record_failure(item.action_id, str(e), dead_letter=dead)
            if dead:
                logger.error(
                    "Dead-lettered #%d '%s' after %d attempts: %s",
                    item.action_id,
                    item.action,
                    updated.attempts,
                    e,
                )
                self._notifier.notify(SYNC_BLOCKED, "error")
            else:
                logger.warning(
                    "Replay of #%d '%s' failed (attempt %d/%d): %s",
                    item.action_id,
                    item.action,
                    updated.attempts,
                    self._max_attempts,
                    e,
                )
                self._notifier.notify(SYNC_FAILED, "warning")
            return str(e)

        self._queue.delete(item.action_id)
        logger.info("Replayed #%d '%s'", item.action_id, item.action)
        return None

    # =========================================================================
    # OPERATOR CONTROLS
    # =========================================================================

    def pending(self) -> list[QueuedAction]:
        return self._queue.list_all()

    def retry_dead_letter(self, action_id: int) -> QueuedAction:
        """Give a dead-lettered action a fresh retry budget."""
        item = self._queue.get(action_id)
        if item is None:
            raise KeyError(f"No queued action #{action_id}")
        reset = self._queue.reset(action_id)
        logger.info("Reset queued action #%d '%s'", action_id, reset.action)
        return reset

    def discard(self, action_id: int) -> QueuedAction:
        """Drop a queued action without applying it."""
        item = self._queue.get(action_id)
        if item is None:
            raise KeyError(f"No queued action #{action_id}")
        self._queue.delete(action_id)
        logger.warning("Discarded queued action #%d '%s'", action_id, item.action)
        return item
