"""
Session store.

Keyed CRUD over session records on top of the dual-backend coordinator.

Contract:
- Inputs: session keys ``{tenant_id}__{slug}``, SessionMutation updates
- Outputs: SessionRecord copies, Checkpoint values, SessionSummary listings
- Side Effects: one coordinator write per mutation, under the per-key lock
- Record path: session/{tenant_id}/{session_key}.record

Every mutation is durable before the call returns. An auto-save (every N
validations, or whenever the workflow nodes change) additionally appends an
automatic checkpoint.
"""

from __future__ import annotations

import copy
import math
import logging
from collections.abc import AsyncIterator

from ..exceptions import (
    InvalidStateError,
    NotFoundError,
    SessionExistsError,
    SessionNotFoundError,
    SessionValidationError,
)
from ..keys import (
    DEFAULT_TENANT_ID,
    make_session_key,
    session_key_from_record_key,
    session_prefix,
    session_record_key,
    validate_tenant_id,
)
from ..locks import KeyedLock
from ..protocol import Checkpoint, Clock, SessionMutation, SessionRecord, SessionSummary, utc_now
from ..sync.coordinator import DualBackendCoordinator
from .autosave import nodes_changed, should_auto_save

logger = logging.getLogger(__name__)

AUTO_SAVE_LABEL_PREFIX = "auto-save: "


def _validate_mutation(session_key: str, mutation: SessionMutation) -> None:
    if mutation.state_patch is not None and not isinstance(mutation.state_patch, dict):
        raise SessionValidationError("state_patch must be a mapping", "state_patch", session_key)
    for name in ("step_index", "estimated_steps"):
        value = getattr(mutation, name)
        if value is not None and (isinstance(value, bool) or not isinstance(value, int)):
            raise SessionValidationError(f"{name} must be an integer", name, session_key)
        if value is not None and value < 0:
            raise SessionValidationError(f"{name} must be >= 0, got {value}", name, session_key)
    if isinstance(mutation.tokens_used, bool) or not isinstance(mutation.tokens_used, int):
        raise SessionValidationError("tokens_used must be an integer", "tokens_used", session_key)
    if mutation.tokens_used < 0:
        raise SessionValidationError(
            f"tokens_used must be >= 0, got {mutation.tokens_used}", "tokens_used", session_key
        )
    if isinstance(mutation.cost, bool) or not isinstance(mutation.cost, (int, float)):
        raise SessionValidationError("cost must be a number", "cost", session_key)
    if not math.isfinite(mutation.cost) or mutation.cost < 0:
        raise SessionValidationError(
            f"cost must be finite and >= 0, got {mutation.cost}", "cost", session_key
        )


class SessionStore:
    """Persistent session records with auto-save and checkpoints."""

    def __init__(
        self,
        coordinator: DualBackendCoordinator,
        *,
        auto_save_every: int = 3,
        checkpoint_retention: int = 50,
        clock: Clock = utc_now,
    ):
        """Initialize the store.

        Args:
            coordinator: Logical store that records are written through
            auto_save_every: Validation events between auto-saves
            checkpoint_retention: Maximum checkpoints kept per session
            clock: Source of the current time
        """
        if auto_save_every < 1:
            raise SessionValidationError("auto_save_every must be >= 1", "auto_save_every")
        if checkpoint_retention < 1:
            raise SessionValidationError(
                "checkpoint_retention must be >= 1", "checkpoint_retention"
            )

        self.coordinator = coordinator
        self.auto_save_every = auto_save_every
        self.checkpoint_retention = checkpoint_retention
        self.clock = clock
        self._locks = KeyedLock()

    # Internal helpers

    @staticmethod
    def _record_key(session_key: str) -> str:
        """Record key for ``session_key``; a key that cannot exist is reported as absent."""
        try:
            return session_record_key(session_key)
        except SessionValidationError as e:
            raise SessionNotFoundError(session_key) from e

    async def _load(self, session_key: str) -> SessionRecord:
        record_key = self._record_key(session_key)
        try:
            data = await self.coordinator.get(record_key)
        except NotFoundError as e:
            raise SessionNotFoundError(session_key) from e
        return SessionRecord.from_dict(data, session_key)

    async def _save(self, record: SessionRecord) -> None:
        await self.coordinator.put(session_record_key(record.session_key), record.to_dict())

    def _prune_checkpoints(self, record: SessionRecord) -> None:
        """Drop the oldest automatic checkpoints first, then the oldest manual ones."""
        while len(record.checkpoints) > self.checkpoint_retention:
            for index, checkpoint in enumerate(record.checkpoints):
                if checkpoint.automatic:
                    del record.checkpoints[index]
                    break
            else:
                del record.checkpoints[0]

    def _append_checkpoint(self, record: SessionRecord, label: str, automatic: bool) -> Checkpoint:
        checkpoint = Checkpoint(
            label=label,
            snapshot_state=copy.deepcopy(record.state),
            created_at=self.clock(),
            automatic=automatic,
            step_index=record.step_index,
        )
        record.checkpoints.append(checkpoint)
        self._prune_checkpoints(record)
        return checkpoint

    # Operations

    async def create_session(
        self,
        tenant_id: str | None,
        name: str,
        initial_intent: str,
        estimated_steps: int,
    ) -> str:
        """Create a new session and return its key.

        Raises:
            SessionExistsError: If a session with the same key exists
            SessionValidationError: If the tenant, name or step estimate is invalid
        """
        tenant = validate_tenant_id(tenant_id or DEFAULT_TENANT_ID)
        session_key = make_session_key(tenant, name)
        if isinstance(estimated_steps, bool) or not isinstance(estimated_steps, int):
            raise SessionValidationError(
                "estimated_steps must be an integer", "estimated_steps", session_key
            )
        if estimated_steps < 0:
            raise SessionValidationError(
                f"estimated_steps must be >= 0, got {estimated_steps}",
                "estimated_steps",
                session_key,
            )

        async with self._locks.hold(session_key):
            try:
                await self.coordinator.get(session_record_key(session_key))
            except NotFoundError:
                pass
            except InvalidStateError as e:
                # A corrupt record still occupies the key
                raise SessionExistsError(session_key) from e
            else:
                raise SessionExistsError(session_key)

            now = self.clock()
            record = SessionRecord(
                session_key=session_key,
                tenant_id=tenant,
                name=name,
                intent=initial_intent,
                estimated_steps=estimated_steps,
                created_at=now,
                updated_at=now,
            )
            await self._save(record)

        logger.info(f"Created session {session_key}")
        return session_key

    async def get_session(self, session_key: str) -> SessionRecord:
        """Load a session record.

        Raises:
            SessionNotFoundError: If the session does not exist
            InvalidStateError: If the stored record is malformed
        """
        async with self._locks.hold(session_key):
            return await self._load(session_key)

    async def exists(self, session_key: str) -> bool:
        try:
            await self.get_session(session_key)
        except SessionNotFoundError:
            return False
        return True

    async def update_session(self, session_key: str, mutation: SessionMutation) -> SessionRecord:
        """Apply ``mutation`` and write the record through.

        Raises:
            SessionNotFoundError: If the session does not exist
            SessionValidationError: If the mutation carries negative counters
        """
        _validate_mutation(session_key, mutation)

        async with self._locks.hold(session_key):
            record = await self._load(session_key)
            before = copy.deepcopy(record.state)

            if mutation.state_patch:
                record.state.update(copy.deepcopy(mutation.state_patch))
            if mutation.state_update is not None:
                mutation.state_update(record.state)
            if mutation.step_index is not None:
                record.step_index = mutation.step_index
            if mutation.estimated_steps is not None:
                record.estimated_steps = mutation.estimated_steps
            record.token_usage += mutation.tokens_used
            record.estimated_cost += mutation.cost
            if mutation.validation_event:
                record.validation_count += 1
            record.updated_at = self.clock()

            decision = should_auto_save(
                record.validation_count,
                record.last_autosave_count,
                self.auto_save_every,
                nodes_did_change=nodes_changed(before, record.state),
            )
            if decision:
                self._append_checkpoint(record, f"{AUTO_SAVE_LABEL_PREFIX}{decision.reason}", True)
                record.last_autosave_count = record.validation_count
                logger.info(
                    f"Auto-saved session {session_key} ({decision.reason}, "
                    f"validation_count={record.validation_count})"
                )

            await self._save(record)
            return record.copy()

    async def checkpoint(self, session_key: str, label: str) -> Checkpoint:
        """Append a manual checkpoint of the current state and persist it.

        Raises:
            SessionNotFoundError: If the session does not exist
        """
        async with self._locks.hold(session_key):
            record = await self._load(session_key)
            checkpoint = self._append_checkpoint(record, label, False)
            record.updated_at = checkpoint.created_at
            await self._save(record)

        logger.debug(f"Checkpoint {label!r} saved for session {session_key}")
        return checkpoint

    async def list_sessions(self, tenant_id: str | None = None) -> AsyncIterator[SessionSummary]:
        """Yield summaries of a tenant's sessions, most recently updated first.

        Unreadable records are logged and skipped.
        """
        tenant = validate_tenant_id(tenant_id or DEFAULT_TENANT_ID)
        records: list[SessionRecord] = []

        for record_key in await self.coordinator.list(session_prefix(tenant)):
            session_key = session_key_from_record_key(record_key)
            if session_key is None:
                continue
            try:
                records.append(await self.get_session(session_key))
            except SessionNotFoundError:
                continue
            except (InvalidStateError, SessionValidationError) as e:
                logger.warning(f"Skipping unreadable session {session_key}: {e}")

        records.sort(key=lambda r: r.updated_at, reverse=True)
        for record in records:
            yield record.summary()

    async def delete_session(self, session_key: str) -> None:
        """Delete a session from both backends. Idempotent."""
        try:
            record_key = self._record_key(session_key)
        except SessionNotFoundError:
            logger.debug(f"Ignoring delete of malformed session key {session_key!r}")
            return
        async with self._locks.hold(session_key):
            await self.coordinator.delete(record_key)
        logger.info(f"Deleted session {session_key}")
