"""Configuration loading for fieldops."""

from __future__ import annotations

import json
import os
from collections.abc import Mapping
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any

from fieldops.domain.exceptions import ConfigurationError

ENV_PREFIX = "FIELDOPS_"


@dataclass(frozen=True)
class FieldOpsConfig:
    """Settings for the gateway, the offline queue and the session store."""

    rest_url: str | None = None
    api_key: str | None = None
    org_id: str | None = None
    queue_path: str = ".fieldops/queue.db"
    session_path: str = ".fieldops/session.json"
    max_replay_attempts: int = 5
    request_timeout: float = 15.0  # Seconds per remote call
    health_url: str | None = None
    photo_bucket: str = "job-photos"
    report_bucket: str = "job_reports"
    log_file: str | None = None

    def __post_init__(self) -> None:
        if self.max_replay_attempts < 1:
            raise ConfigurationError("max_replay_attempts must be at least 1")
        if self.request_timeout <= 0:
            raise ConfigurationError("request_timeout must be positive")


_INT_FIELDS = {"max_replay_attempts"}
_FLOAT_FIELDS = {"request_timeout"}


def _coerce(name: str, value: Any) -> Any:
    if value is None:
        return None
    try:
        if name in _INT_FIELDS:
            return int(value)
        if name in _FLOAT_FIELDS:
            return float(value)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"Invalid value for {name}: {value!r}") from e
    return str(value)


def _load_file(path: Path) -> dict[str, Any]:
    if not path.exists():
        raise ConfigurationError(f"Config file not found: {path}")
    try:
        with open(path) as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        raise ConfigurationError(f"Invalid JSON in {path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigurationError(f"Expected dict in {path}, got {type(data).__name__}")

    known = {f.name for f in fields(FieldOpsConfig)}
    unknown = sorted(set(data) - known)
    if unknown:
        raise ConfigurationError(f"Unknown settings in {path}: {', '.join(unknown)}")
    return data


def load_config(
    path: str | Path | None = None, environ: Mapping[str, str] | None = None
) -> FieldOpsConfig:
    """
    Build the configuration from defaults, an optional JSON file and
    ``FIELDOPS_*`` environment variables, later sources winning.

    Args:
        path: Optional JSON file with any subset of the settings
        environ: Environment to read overrides from (defaults to os.environ)

    Raises:
        ConfigurationError: If the file is missing or invalid, or a value
            cannot be converted
    """
    environ = os.environ if environ is None else environ
    config = FieldOpsConfig()

    if path is not None:
        data = _load_file(Path(path))
        config = replace(config, **{k: _coerce(k, v) for k, v in data.items()})

    overrides = {}
    for f in fields(FieldOpsConfig):
        value = environ.get(f"{ENV_PREFIX}{f.name.upper()}")
        if value:
            overrides[f.name] = _coerce(f.name, value)
    if overrides:
        config = replace(config, **overrides)
    return config
