"""
Data model for workflow context storage.

Defines the records persisted by the session store and the documentation
cache, together with the small value types returned to callers. Every
persisted type round-trips through ``to_dict()`` / ``from_dict()``; the
dict form is what backends store.
"""

from __future__ import annotations

import copy
import json
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Any

from .exceptions import InvalidStateError


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(UTC)


Clock = Callable[[], datetime]


def _parse_timestamp(value: Any, key: str, field_name: str) -> datetime:
    if isinstance(value, datetime):
        return value
    if not isinstance(value, str):
        raise InvalidStateError(key, f"{field_name} is not a timestamp")
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError as e:
        raise InvalidStateError(key, f"{field_name} is not ISO 8601: {value!r}") from e
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def _require(data: dict[str, Any], name: str, types: type | tuple[type, ...], key: str) -> Any:
    if name not in data:
        raise InvalidStateError(key, f"missing field {name!r}")
    value = data[name]
    # bool is an int subclass; counters must not accept it
    if isinstance(value, bool) and bool not in (types if isinstance(types, tuple) else (types,)):
        raise InvalidStateError(key, f"field {name!r} has type bool")
    if not isinstance(value, types):
        raise InvalidStateError(key, f"field {name!r} has type {type(value).__name__}")
    return value


def _optional(
    data: dict[str, Any], name: str, types: type | tuple[type, ...], default: Any, key: str
) -> Any:
    if name not in data:
        return default
    return _require(data, name, types, key)


def _ttl(data: dict[str, Any], key: str) -> timedelta:
    seconds = _require(data, "ttl_seconds", (int, float), key)
    try:
        ttl = timedelta(seconds=seconds)
    except (OverflowError, ValueError) as e:
        raise InvalidStateError(key, f"field 'ttl_seconds' is out of range: {seconds!r}") from e
    if ttl <= timedelta(0):
        raise InvalidStateError(key, f"field 'ttl_seconds' must be positive: {seconds!r}")
    return ttl


def payload_size(payload: Any) -> int:
    """Serialized byte size of a payload (UTF-8 JSON)."""
    return len(json.dumps(payload, separators=(",", ":"), default=str).encode("utf-8"))


@dataclass(frozen=True)
class Checkpoint:
    """An immutable labeled snapshot of session state.

    Attributes:
        label: Free-text description supplied by the caller
        snapshot_state: Deep copy of the session state at creation time
        created_at: When the checkpoint was taken
        automatic: True when produced by an auto-save trigger
        step_index: Session step index at creation time
    """

    label: str
    snapshot_state: dict[str, Any]
    created_at: datetime
    automatic: bool = False
    step_index: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "label": self.label,
            "snapshot_state": self.snapshot_state,
            "created_at": self.created_at.isoformat(),
            "automatic": self.automatic,
            "step_index": self.step_index,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any], key: str = "<checkpoint>") -> Checkpoint:
        if not isinstance(data, dict):
            raise InvalidStateError(key, "checkpoint is not an object")
        return cls(
            label=_require(data, "label", str, key),
            snapshot_state=_require(data, "snapshot_state", dict, key),
            created_at=_parse_timestamp(data.get("created_at"), key, "checkpoint.created_at"),
            automatic=_optional(data, "automatic", bool, False, key),
            step_index=_optional(data, "step_index", int, 0, key),
        )


@dataclass
class SessionRecord:
    """One in-progress workflow-authoring interaction.

    ``state`` is opaque to the store; only the façade reads conventional
    sub-keys from it (``workflow``, ``validation``).
    """

    session_key: str
    tenant_id: str
    name: str
    intent: str
    state: dict[str, Any] = field(default_factory=dict)
    step_index: int = 0
    estimated_steps: int = 0
    validation_count: int = 0
    token_usage: int = 0
    estimated_cost: float = 0.0
    checkpoints: list[Checkpoint] = field(default_factory=list)
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)
    last_autosave_count: int = 0

    @property
    def progress(self) -> float:
        """Completed fraction of the estimated steps, clamped to [0, 1]."""
        if self.estimated_steps <= 0:
            return 0.0
        return min(1.0, max(0.0, self.step_index / self.estimated_steps))

    @property
    def goal(self) -> str:
        """The draft's declared goal, or the initial intent."""
        workflow = self.state.get("workflow")
        if isinstance(workflow, dict):
            meta = workflow.get("workflow_meta")
            if isinstance(meta, dict) and meta.get("goal"):
                return str(meta["goal"])
        return self.intent

    def summary(self) -> SessionSummary:
        return SessionSummary(
            session_key=self.session_key,
            name=self.name,
            goal=self.goal,
            progress=self.progress,
            step_index=self.step_index,
            estimated_steps=self.estimated_steps,
            updated_at=self.updated_at,
        )

    def copy(self) -> SessionRecord:
        """Deep copy, so callers can never mutate a stored record in place."""
        return copy.deepcopy(self)

    def to_dict(self) -> dict[str, Any]:
        return {
            "session_key": self.session_key,
            "tenant_id": self.tenant_id,
            "name": self.name,
            "intent": self.intent,
            "state": self.state,
            "step_index": self.step_index,
            "estimated_steps": self.estimated_steps,
            "validation_count": self.validation_count,
            "token_usage": self.token_usage,
            "estimated_cost": self.estimated_cost,
            "checkpoints": [c.to_dict() for c in self.checkpoints],
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
            "last_autosave_count": self.last_autosave_count,
        }

    @classmethod
    def from_dict(cls, data: Any, key: str = "<session>") -> SessionRecord:
        """Deserialize a record, raising InvalidStateError on any malformed field."""
        if not isinstance(data, dict):
            raise InvalidStateError(key, "record is not an object")
        checkpoints_raw = _require(data, "checkpoints", list, key)
        return cls(
            session_key=_require(data, "session_key", str, key),
            tenant_id=_require(data, "tenant_id", str, key),
            name=_require(data, "name", str, key),
            intent=_require(data, "intent", str, key),
            state=_require(data, "state", dict, key),
            step_index=_require(data, "step_index", int, key),
            estimated_steps=_require(data, "estimated_steps", int, key),
            validation_count=_require(data, "validation_count", int, key),
            token_usage=_require(data, "token_usage", int, key),
            estimated_cost=float(_require(data, "estimated_cost", (int, float), key)),
            checkpoints=[Checkpoint.from_dict(c, key) for c in checkpoints_raw],
            created_at=_parse_timestamp(data.get("created_at"), key, "created_at"),
            updated_at=_parse_timestamp(data.get("updated_at"), key, "updated_at"),
            last_autosave_count=_optional(data, "last_autosave_count", int, 0, key),
        )


@dataclass
class SessionSummary:
    """Listing view of a session."""

    session_key: str
    name: str
    goal: str
    progress: float
    step_index: int
    estimated_steps: int
    updated_at: datetime

    def to_dict(self) -> dict[str, Any]:
        return {
            "session_key": self.session_key,
            "name": self.name,
            "goal": self.goal,
            "progress": self.progress,
            "step_index": self.step_index,
            "estimated_steps": self.estimated_steps,
            "updated_at": self.updated_at.isoformat(),
        }


@dataclass
class SessionMutation:
    """Caller-supplied partial update to a session.

    Attributes:
        state_patch: Top-level keys merged into ``state`` (shallow)
        step_index: New step index, if the caller advanced
        estimated_steps: Revised step estimate
        tokens_used: Tokens to add to ``token_usage``
        cost: Amount to add to ``estimated_cost``
        validation_event: True when this update records a validation
        state_update: Called with the state after ``state_patch`` is merged,
            under the session lock, for updates that depend on the current state
    """

    state_patch: dict[str, Any] | None = None
    step_index: int | None = None
    estimated_steps: int | None = None
    tokens_used: int = 0
    cost: float = 0.0
    validation_event: bool = False
    state_update: Callable[[dict[str, Any]], None] | None = None


@dataclass
class CacheEntry:
    """A cached lookup result (documentation for one catalog item)."""

    cache_key: str
    payload: Any
    size_bytes: int
    created_at: datetime
    last_accessed_at: datetime
    ttl: timedelta
    pinned: bool = False
    access_count: int = 0

    def is_expired(self, now: datetime) -> bool:
        return now - self.created_at >= self.ttl

    def to_dict(self) -> dict[str, Any]:
        return {
            "cache_key": self.cache_key,
            "payload": self.payload,
            "size_bytes": self.size_bytes,
            "created_at": self.created_at.isoformat(),
            "last_accessed_at": self.last_accessed_at.isoformat(),
            "ttl_seconds": self.ttl.total_seconds(),
            "pinned": self.pinned,
            "access_count": self.access_count,
        }

    @classmethod
    def from_dict(cls, data: Any, key: str = "<entry>") -> CacheEntry:
        if not isinstance(data, dict):
            raise InvalidStateError(key, "entry is not an object")
        if "payload" not in data:
            raise InvalidStateError(key, "missing field 'payload'")
        return cls(
            cache_key=_require(data, "cache_key", str, key),
            payload=data["payload"],
            size_bytes=_require(data, "size_bytes", int, key),
            created_at=_parse_timestamp(data.get("created_at"), key, "created_at"),
            last_accessed_at=_parse_timestamp(
                data.get("last_accessed_at"), key, "last_accessed_at"
            ),
            ttl=_ttl(data, key),
            pinned=_optional(data, "pinned", bool, False, key),
            access_count=_optional(data, "access_count", int, 0, key),
        )


@dataclass
class CacheStats:
    """Point-in-time documentation cache statistics."""

    entry_count: int
    total_bytes: int
    hit_rate: float
    oldest_entry_age: float | None
    hits: int = 0
    misses: int = 0
    requests: int = 0
    evictions: int = 0
    expirations: int = 0
    size_budget_bytes: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "entry_count": self.entry_count,
            "total_bytes": self.total_bytes,
            "hit_rate": self.hit_rate,
            "oldest_entry_age": self.oldest_entry_age,
            "hits": self.hits,
            "misses": self.misses,
            "requests": self.requests,
            "evictions": self.evictions,
            "expirations": self.expirations,
            "size_budget_bytes": self.size_budget_bytes,
        }


@dataclass
class NextStepHint:
    """Suggested next action when resuming a session."""

    action: str
    description: str
    priority: str
    progress: float
    outstanding_issues: int = 0
