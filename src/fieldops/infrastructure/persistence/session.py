"""
Session store adapters.

The filesystem store writes a single JSON document atomically
(write-to-temp + rename), so a crash mid-write leaves the previous session
intact.
"""

import json
import logging
from pathlib import Path
from typing import Any

from fieldops.domain.interfaces import SessionStoreInterface

logger = logging.getLogger(__name__)


class InMemorySessionStore(SessionStoreInterface):
    """Simple in-memory session store for testing."""

    def __init__(self) -> None:
        self._state: dict[str, Any] | None = None

    def load(self) -> dict[str, Any] | None:
        return json.loads(json.dumps(self._state)) if self._state is not None else None

    def save(self, state: dict[str, Any]) -> None:
        self._state = json.loads(json.dumps(state))

    def clear(self) -> None:
        self._state = None


class FilesystemSessionStore(SessionStoreInterface):
    """Session persisted as one JSON file."""

    def __init__(self, path: str | Path):
        self._path = Path(path)

    def load(self) -> dict[str, Any] | None:
        if not self._path.exists():
            return None
        try:
            with open(self._path) as f:
                data: dict[str, Any] = json.load(f)
        except json.JSONDecodeError as e:
            logger.warning("Ignoring unreadable session file %s: %s", self._path, e)
            return None
        return data

    def save(self, state: dict[str, Any]) -> None:
        """Atomically replace the session file."""
        self._path.parent.mkdir(parents=True, exist_ok=True)
        temp_path = self._path.with_suffix(".tmp")
        with open(temp_path, "w") as f:
            json.dump(state, f, indent=2)
        temp_path.replace(self._path)

    def clear(self) -> None:
        self._path.unlink(missing_ok=True)
