"""
Workflow context façade.

Single entry point composing the session store and the documentation cache.

Usage:

    >>> from workflow_context_storage import StorageConfig, ValidationResult, WorkflowContext
    >>> async with await WorkflowContext.from_config(StorageConfig.from_environment()) as ctx:
    ...     key = await ctx.start_session("t1", "wf1", "build alerting", 6)
    ...     outcome = await ctx.record_validation(key, ValidationResult(valid=True))
    ...     resumed = await ctx.resume_session(key)
    ...     print(resumed.hint.action)

Holds no state of its own beyond the composed components; sessions are
always addressed by an explicit key.
"""

from __future__ import annotations

import asyncio
import copy
import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any

from .backends.cosmos import CosmosBackend, CosmosBackendConfig
from .backends.local import LocalFileBackend
from .cache.docs_cache import DocumentationCache
from .cache.prefetch import Resolver
from .config import StorageConfig
from .exceptions import StorageIOError, StorageTimeoutError, WorkflowStorageError
from .keys import DEFAULT_TENANT_ID
from .protocol import (
    CacheStats,
    Checkpoint,
    NextStepHint,
    SessionMutation,
    SessionRecord,
    SessionSummary,
    utc_now,
)
from .sessions.hints import build_next_step_hint
from .sessions.store import SessionStore
from .sync.circuit import CircuitBreaker
from .sync.coordinator import DualBackendCoordinator, ReconcileResult

logger = logging.getLogger(__name__)

VALIDATION_HISTORY_LIMIT = 20

NODE_TYPE_PREFIX = "n8n-"


def documentation_key(node_type: str) -> str:
    """Cache key for a node type, e.g. ``n8n-nodes-base.slack`` -> ``nodes-base.slack``."""
    if node_type.startswith(NODE_TYPE_PREFIX):
        return node_type[len(NODE_TYPE_PREFIX) :]
    return node_type


@dataclass
class ValidationResult:
    """Outcome of validating a workflow draft.

    Attributes:
        valid: Whether the draft passed validation
        issues: Issue dicts; ``docs_key`` or ``node_type`` names related documentation
        workflow: The validated draft, stored as ``state["workflow"]``
        tokens_used: Tokens spent producing this validation
        cost: Estimated cost of this validation
        step_index: Step the author reached, if it advanced
    """

    valid: bool
    issues: list[dict[str, Any]] = field(default_factory=list)
    workflow: dict[str, Any] | None = None
    tokens_used: int = 0
    cost: float = 0.0
    step_index: int | None = None

    def documentation_keys(self) -> list[str]:
        """Cache keys referenced by the issues, deduplicated in order."""
        keys: dict[str, None] = {}
        for issue in self.issues:
            ref = issue.get("docs_key") or issue.get("node_type")
            if isinstance(ref, str) and ref:
                keys.setdefault(documentation_key(ref), None)
        return list(keys)


@dataclass
class ValidationOutcome:
    """Updated session plus the documentation its issues reference."""

    record: SessionRecord
    documentation: dict[str, Any] = field(default_factory=dict)
    missing_documentation: list[str] = field(default_factory=list)


@dataclass
class ResumedSession:
    record: SessionRecord
    hint: NextStepHint


def _validation_state_updater(result: ValidationResult):
    """Build the in-place update recording ``result`` under ``state["validation"]``."""
    checked_at = utc_now().isoformat()
    issues = copy.deepcopy(result.issues)

    def update(state: dict[str, Any]) -> None:
        previous = state.get("validation")
        history = list(previous.get("history", [])) if isinstance(previous, dict) else []
        history.append({"checked_at": checked_at, "valid": result.valid, "issues": len(issues)})
        state["validation"] = {
            "valid": result.valid,
            "issues": issues,
            "checked_at": checked_at,
            "history": history[-VALIDATION_HISTORY_LIMIT:],
        }
        if result.workflow is not None:
            state["workflow"] = copy.deepcopy(result.workflow)

    return update


async def _initialize_remote(remote: CosmosBackend, timeout: float | None) -> None:
    try:
        await asyncio.wait_for(remote.initialize(), timeout)
    except asyncio.TimeoutError as e:
        raise StorageTimeoutError("initialize", None, timeout, remote.name) from e


class WorkflowContext:
    """Session persistence and documentation caching behind one interface."""

    def __init__(
        self,
        session_store: SessionStore,
        cache: DocumentationCache,
        coordinator: DualBackendCoordinator | None = None,
        *,
        default_tenant_id: str = DEFAULT_TENANT_ID,
    ):
        self.sessions = session_store
        self.cache = cache
        self.coordinator = coordinator or session_store.coordinator
        self.default_tenant_id = default_tenant_id

    @classmethod
    async def from_config(cls, config: StorageConfig | None = None) -> WorkflowContext:
        """Build backends, coordinator, store and cache from configuration.

        Without a Cosmos endpoint the coordinator runs local only. A remote
        that cannot be reached at startup is kept and retried on each call
        while local fallback is enabled.
        """
        config = config or StorageConfig.from_environment()
        local = LocalFileBackend(config.base_path)

        remote: CosmosBackend | None = None
        if config.remote_enabled:
            remote = CosmosBackend(CosmosBackendConfig.from_storage_config(config))
            try:
                await _initialize_remote(remote, config.remote_timeout)
            except StorageIOError as e:
                if not config.local_fallback_enabled:
                    raise
                logger.warning(f"Remote backend unavailable at startup, using local fallback: {e}")

        coordinator = DualBackendCoordinator(
            remote,
            local,
            remote_timeout=config.remote_timeout,
            local_timeout=config.local_timeout,
            local_fallback_enabled=config.local_fallback_enabled,
            circuit=CircuitBreaker(
                failure_threshold=config.circuit_failure_threshold,
                reset_timeout=config.circuit_reset_timeout,
            ),
        )
        store = SessionStore(
            coordinator,
            auto_save_every=config.auto_save_every_n_validations,
            checkpoint_retention=config.checkpoint_retention,
        )
        cache = DocumentationCache(
            local,
            ttl=config.cache_ttl,
            size_budget_bytes=config.cache_size_budget_bytes,
            backend_timeout=config.local_timeout,
        )
        try:
            await cache.load()
        except WorkflowStorageError as e:
            logger.warning(f"Could not load documentation cache, starting empty: {e}")

        if config.reconcile_interval:
            coordinator.start_background_sync(config.reconcile_interval)

        return cls(store, cache, coordinator, default_tenant_id=config.default_tenant_id)

    async def __aenter__(self) -> WorkflowContext:
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    # Sessions

    async def start_session(
        self, tenant_id: str | None, name: str, intent: str, estimated_steps: int
    ) -> str:
        """Create a session and return its key. Raises SessionExistsError if it exists."""
        return await self.sessions.create_session(
            tenant_id or self.default_tenant_id, name, intent, estimated_steps
        )

    async def resume_session(self, session_key: str) -> ResumedSession:
        """Load a session together with a hint for what to do next."""
        record = await self.sessions.get_session(session_key)
        return ResumedSession(record=record, hint=build_next_step_hint(record))

    async def record_validation(
        self, session_key: str, result: ValidationResult
    ) -> ValidationOutcome:
        """Record a validation against a session and look up referenced documentation.

        The validation counts towards auto-save; the issues and draft are
        stored in the session state.
        """
        mutation = SessionMutation(
            step_index=result.step_index,
            tokens_used=result.tokens_used,
            cost=result.cost,
            validation_event=True,
            state_update=_validation_state_updater(result),
        )
        record = await self.sessions.update_session(session_key, mutation)

        outcome = ValidationOutcome(record=record)
        for cache_key in result.documentation_keys():
            payload = await self.cache.get(cache_key)
            if payload is None:
                outcome.missing_documentation.append(cache_key)
            else:
                outcome.documentation[cache_key] = payload
        return outcome

    async def checkpoint(self, session_key: str, label: str) -> Checkpoint:
        return await self.sessions.checkpoint(session_key, label)

    async def list_sessions(self, tenant_id: str | None = None) -> list[SessionSummary]:
        """Summaries of a tenant's sessions, most recently updated first."""
        return [s async for s in self.sessions.list_sessions(tenant_id or self.default_tenant_id)]

    async def delete_session(self, session_key: str) -> None:
        await self.sessions.delete_session(session_key)

    # Documentation cache

    async def cache_get(self, cache_key: str) -> Any | None:
        return await self.cache.get(cache_key)

    async def cache_put(self, cache_key: str, payload: Any, *, pinned: bool = False) -> None:
        """Store documentation. Raises CacheEntryTooLargeError if it cannot fit."""
        await self.cache.put(cache_key, payload, pinned=pinned)

    async def prefetch(self, keywords: Iterable[str], resolver: Resolver) -> int:
        """Warm the cache for ``keywords``; returns how many entries were fetched."""
        result = await self.cache.prefetch(keywords, resolver)
        return result.count

    async def cache_stats(self) -> CacheStats:
        return await self.cache.stats()

    # Sync

    async def reconcile(self) -> ReconcileResult:
        """Replay pending local writes against the remote backend."""
        return await self.coordinator.reconcile()

    async def pending_keys(self) -> list[str]:
        return await self.coordinator.pending_keys()

    async def close(self) -> None:
        """Flush the cache, stop background sync and close the backends."""
        await self.cache.close()
        await self.coordinator.close()
