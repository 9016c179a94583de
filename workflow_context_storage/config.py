"""
Configuration for workflow context storage.

Configuration can be provided directly, via environment variables, or from a
YAML settings file:

Environment Variables:
    WORKFLOW_CONTEXT_AUTOSAVE_EVERY: Validations between auto-saves (default: 3)
    WORKFLOW_CONTEXT_CACHE_TTL: Cache entry TTL in seconds (default: 7 days)
    WORKFLOW_CONTEXT_CACHE_BUDGET: Cache size budget in bytes (default: 100 MiB)
    WORKFLOW_CONTEXT_REMOTE_TIMEOUT: Remote operation timeout in seconds (default: 5)
    WORKFLOW_CONTEXT_LOCAL_TIMEOUT: Local operation timeout in seconds (default: 5)
    WORKFLOW_CONTEXT_LOCAL_FALLBACK: Write locally when remote fails (default: true)
    WORKFLOW_CONTEXT_LOCAL_PATH: Local storage root (default: ~/.workflow-context)
    WORKFLOW_CONTEXT_CHECKPOINT_RETENTION: Checkpoints kept per session (default: 50)
    WORKFLOW_CONTEXT_RECONCILE_INTERVAL: Seconds between background sweeps (unset: on demand)
    WORKFLOW_CONTEXT_TENANT: Default tenant id (default: default)
    WORKFLOW_CONTEXT_COSMOS_ENDPOINT: Cosmos DB endpoint URL (unset: local only)
    WORKFLOW_CONTEXT_COSMOS_KEY: Cosmos DB key (if using key auth)
    WORKFLOW_CONTEXT_COSMOS_AUTH_METHOD: 'key' or 'default_credential' (default)
    WORKFLOW_CONTEXT_COSMOS_DATABASE: Database name (default: workflow-context)
    WORKFLOW_CONTEXT_COSMOS_CONTAINER: Container name (default: records)

YAML settings file (``storage`` section):

```yaml
storage:
  auto_save_every_n_validations: 3
  cache_ttl_seconds: 604800
  remote_timeout: 5.0
  cosmos_endpoint: "https://example.documents.azure.com:443/"
```
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field, fields
from datetime import timedelta
from pathlib import Path
from typing import Any

import yaml

from .exceptions import SessionValidationError
from .keys import DEFAULT_TENANT_ID

ENV_PREFIX = "WORKFLOW_CONTEXT_"

DEFAULT_CACHE_TTL_SECONDS = 7 * 24 * 60 * 60
DEFAULT_CACHE_BUDGET_BYTES = 100 * 1024 * 1024

AUTH_KEY = "key"
AUTH_DEFAULT_CREDENTIAL = "default_credential"

_TRUE_VALUES = {"1", "true", "yes", "on"}


def _env_bool(value: str) -> bool:
    return value.strip().lower() in _TRUE_VALUES


@dataclass
class StorageConfig:
    """Configuration for sessions, the documentation cache and both backends.

    Attributes:
        auto_save_every_n_validations: Validation events between auto-saves
        cache_ttl_seconds: Lifetime of a cache entry
        cache_size_budget_bytes: Upper bound on resident cache payload bytes
        remote_timeout: Deadline for each remote backend call (seconds)
        local_timeout: Deadline for each local backend call (seconds)
        local_fallback_enabled: Write locally and mark pending when remote fails
        local_path: Root directory for the local backend and cache
        checkpoint_retention: Maximum checkpoints kept per session
        reconcile_interval: Seconds between background reconciliation sweeps
        default_tenant_id: Tenant used when callers pass none

        cosmos_endpoint: Cosmos DB endpoint URL (None runs local only)
        cosmos_auth_method: 'key' or 'default_credential'
        cosmos_key: Cosmos DB key (only for key auth)
        cosmos_database: Cosmos DB database name
        cosmos_container: Cosmos DB container name

        circuit_failure_threshold: Consecutive remote failures before failing fast
        circuit_reset_timeout: Seconds before a failing remote is tried again
    """

    auto_save_every_n_validations: int = 3
    cache_ttl_seconds: float = DEFAULT_CACHE_TTL_SECONDS
    cache_size_budget_bytes: int = DEFAULT_CACHE_BUDGET_BYTES
    remote_timeout: float = 5.0
    local_timeout: float = 5.0
    local_fallback_enabled: bool = True
    local_path: str | None = None
    checkpoint_retention: int = 50
    reconcile_interval: float | None = None
    default_tenant_id: str = DEFAULT_TENANT_ID

    # Cosmos DB connection settings
    cosmos_endpoint: str | None = None
    cosmos_auth_method: str = AUTH_DEFAULT_CREDENTIAL
    cosmos_key: str | None = None  # Only used if auth_method is key
    cosmos_database: str = "workflow-context"
    cosmos_container: str = "records"

    circuit_failure_threshold: int = 5
    circuit_reset_timeout: float = 30.0

    # Additional options
    options: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.auto_save_every_n_validations < 1:
            raise SessionValidationError(
                "auto_save_every_n_validations must be >= 1", "auto_save_every_n_validations"
            )
        if self.cache_ttl_seconds <= 0:
            raise SessionValidationError("cache_ttl_seconds must be > 0", "cache_ttl_seconds")
        if self.cache_size_budget_bytes < 1:
            raise SessionValidationError(
                "cache_size_budget_bytes must be >= 1", "cache_size_budget_bytes"
            )
        if self.remote_timeout <= 0 or self.local_timeout <= 0:
            raise SessionValidationError("timeouts must be > 0", "remote_timeout")
        if self.checkpoint_retention < 1:
            raise SessionValidationError(
                "checkpoint_retention must be >= 1", "checkpoint_retention"
            )
        if self.cosmos_auth_method not in (AUTH_KEY, AUTH_DEFAULT_CREDENTIAL):
            raise SessionValidationError(
                f"Unsupported cosmos_auth_method: {self.cosmos_auth_method}", "cosmos_auth_method"
            )

    @property
    def cache_ttl(self) -> timedelta:
        return timedelta(seconds=self.cache_ttl_seconds)

    @property
    def base_path(self) -> Path:
        """Local storage root, defaulting to ~/.workflow-context."""
        if self.local_path:
            return Path(self.local_path).expanduser()
        return Path.home() / ".workflow-context"

    @property
    def remote_enabled(self) -> bool:
        return bool(self.cosmos_endpoint)

    @classmethod
    def from_environment(cls, **overrides: Any) -> StorageConfig:
        """Create configuration from environment variables.

        Args:
            **overrides: Field values that take precedence over the environment

        Returns:
            StorageConfig populated from environment variables
        """
        env = os.environ
        values: dict[str, Any] = {}

        def _set(name: str, var: str, convert: Any = str) -> None:
            raw = env.get(ENV_PREFIX + var)
            if raw is not None and raw != "":
                try:
                    values[name] = convert(raw)
                except ValueError as e:
                    raise SessionValidationError(
                        f"Invalid value for {ENV_PREFIX + var}: {raw!r}", name
                    ) from e

        _set("auto_save_every_n_validations", "AUTOSAVE_EVERY", int)
        _set("cache_ttl_seconds", "CACHE_TTL", float)
        _set("cache_size_budget_bytes", "CACHE_BUDGET", int)
        _set("remote_timeout", "REMOTE_TIMEOUT", float)
        _set("local_timeout", "LOCAL_TIMEOUT", float)
        _set("local_fallback_enabled", "LOCAL_FALLBACK", _env_bool)
        _set("local_path", "LOCAL_PATH")
        _set("checkpoint_retention", "CHECKPOINT_RETENTION", int)
        _set("reconcile_interval", "RECONCILE_INTERVAL", float)
        _set("default_tenant_id", "TENANT")
        _set("cosmos_endpoint", "COSMOS_ENDPOINT")
        _set("cosmos_key", "COSMOS_KEY")
        _set("cosmos_auth_method", "COSMOS_AUTH_METHOD", lambda v: v.lower())
        _set("cosmos_database", "COSMOS_DATABASE")
        _set("cosmos_container", "COSMOS_CONTAINER")

        values.update(overrides)
        return cls(**values)

    @classmethod
    def from_yaml(cls, path: Path | str, section: str = "storage") -> StorageConfig:
        """Load configuration from the ``storage`` section of a YAML file.

        Unknown keys are kept in ``options``. A missing file yields defaults.
        """
        config_path = Path(path).expanduser()
        if not config_path.exists():
            return cls()

        loaded = yaml.safe_load(config_path.read_text(encoding="utf-8")) or {}
        raw = loaded.get(section, {}) if isinstance(loaded, dict) else {}
        if not isinstance(raw, dict):
            raise SessionValidationError(f"Section {section!r} in {config_path} is not a mapping")

        known = {f.name for f in fields(cls)} - {"options"}
        values = {k: v for k, v in raw.items() if k in known}
        options = {k: v for k, v in raw.items() if k not in known}
        return cls(**values, options=options)
