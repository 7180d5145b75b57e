"""Session configuration for campuspay."""

from __future__ import annotations

import dataclasses
import os
from typing import Any

from campuspay.exceptions import ConfigError

_PLACEHOLDER_KEY_MARKER = "YOUR_API_KEY"


def _env_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "y", "on"}:
        return True
    if normalized in {"0", "false", "no", "n", "off"}:
        return False
    return default


@dataclasses.dataclass(frozen=True)
class CampusConfig:
    """Session configuration.

    Parameters
    ----------
    firestore_project_id : str or None
        Project hosting the durable document store. ``None`` means the
        durable store is unconfigured and the in-memory store is used.
    firestore_api_key : str or None
        Web API key sent with every REST call.
    firestore_base_url : str
        REST root of the document store.
    firestore_database : str
        Database id inside the project.
    id_token : str or None
        Bearer token of the signed-in member, forwarded to the store so
        its security rules can apply.
    probe_timeout : float
        Seconds the start-up probe may take before the session switches
        to the in-memory store for good.
    request_timeout : float
        Total timeout in seconds for a single store request.
    conflict_retries : int
        How many times a read-verify-write cycle is retried after losing
        a conditional write to a concurrent writer.
    sync_poll_interval : float
        Seconds between re-queries of live collections.  ``0`` disables
        polling; snapshots are then only refreshed by local change events.
    seed_sample_data : bool
        Seed the in-memory store with the sample community when it is
        selected.
    store_latency : float
        Artificial delay (seconds) for each in-memory store operation.
    """

    firestore_project_id: str | None = None
    firestore_api_key: str | None = None
    firestore_base_url: str = "https://firestore.googleapis.com/v1"
    firestore_database: str = "(default)"
    id_token: str | None = None
    probe_timeout: float = 3.0
    request_timeout: float = 10.0
    conflict_retries: int = 5
    sync_poll_interval: float = 0.0
    seed_sample_data: bool = True
    store_latency: float = 0.0

    def __post_init__(self) -> None:
        if self.probe_timeout <= 0:
            raise ConfigError("probe_timeout must be positive")
        if self.conflict_retries < 1:
            raise ConfigError("conflict_retries must be at least 1")
        if self.sync_poll_interval < 0:
            raise ConfigError("sync_poll_interval must not be negative")

    @property
    def is_remote_configured(self) -> bool:
        """Whether enough settings are present to try the durable store."""
        if not self.firestore_project_id or not self.firestore_api_key:
            return False
        return _PLACEHOLDER_KEY_MARKER not in self.firestore_api_key

    @classmethod
    def from_env(cls, **overrides: Any) -> CampusConfig:
        """Create configuration from ``CAMPUSPAY_*`` environment variables.

        Explicit keyword arguments override environment values.
        """
        env = os.environ

        _ENV_CONFIG_MAP = {
            "CAMPUSPAY_FIRESTORE_PROJECT_ID": "firestore_project_id",
            "CAMPUSPAY_FIRESTORE_API_KEY": "firestore_api_key",
            "CAMPUSPAY_FIRESTORE_BASE_URL": "firestore_base_url",
            "CAMPUSPAY_FIRESTORE_DATABASE": "firestore_database",
            "CAMPUSPAY_ID_TOKEN": "id_token",
        }
        config_kwargs: dict[str, Any] = {}
        for env_key, field_name in _ENV_CONFIG_MAP.items():
            val = env.get(env_key)
            if val is not None:
                config_kwargs[field_name] = val

        _ENV_FLOAT_MAP = {
            "CAMPUSPAY_PROBE_TIMEOUT": "probe_timeout",
            "CAMPUSPAY_REQUEST_TIMEOUT": "request_timeout",
            "CAMPUSPAY_SYNC_POLL_INTERVAL": "sync_poll_interval",
            "CAMPUSPAY_STORE_LATENCY": "store_latency",
        }
        for env_key, field_name in _ENV_FLOAT_MAP.items():
            val = env.get(env_key)
            if val is not None and field_name not in overrides:
                try:
                    config_kwargs[field_name] = float(val)
                except ValueError as exc:
                    raise ConfigError(f"{env_key} must be a number, got {val!r}") from exc

        retries_env = env.get("CAMPUSPAY_CONFLICT_RETRIES")
        if retries_env is not None and "conflict_retries" not in overrides:
            try:
                config_kwargs["conflict_retries"] = int(retries_env)
            except ValueError as exc:
                raise ConfigError(f"CAMPUSPAY_CONFLICT_RETRIES must be an integer, got {retries_env!r}") from exc

        if "seed_sample_data" not in overrides:
            config_kwargs["seed_sample_data"] = _env_bool(env.get("CAMPUSPAY_SEED_SAMPLE_DATA"), True)

        config_kwargs.update(overrides)

        return cls(**config_kwargs)
