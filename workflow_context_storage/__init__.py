"""
Workflow Context Storage

Session persistence and documentation caching for workflow authoring tools.

Provides:
- Resumable workflow-authoring sessions with auto-save and checkpoints
- Remote-authoritative storage (Cosmos DB) with a local filesystem fallback
- Inspectable pending-sync queue and reconciliation
- TTL + LRU documentation cache with keyword prefetch

Usage:

    >>> from workflow_context_storage import StorageConfig, WorkflowContext
    >>> ctx = await WorkflowContext.from_config(StorageConfig.from_environment())
    >>> key = await ctx.start_session("t1", "slack alerts", "build alerting", 6)
    >>> resumed = await ctx.resume_session(key)
    >>> resumed.hint.action
    'configure_slack_node'

Backend Selection:

    # Local only (no Cosmos endpoint configured)
    from workflow_context_storage.backends import LocalFileBackend

    # Cosmos DB as the authoritative remote store
    from workflow_context_storage.backends import CosmosBackend, CosmosBackendConfig
"""

# Backends
from .backends import BackendAdapter, CosmosBackend, CosmosBackendConfig, LocalFileBackend

# Documentation cache
from .cache import DEFAULT_KEYWORD_MAP, DocumentationCache, PrefetchResult

# Configuration
from .config import StorageConfig

# Exceptions
from .exceptions import (
    AuthenticationError,
    CacheEntryTooLargeError,
    InvalidStateError,
    NotFoundError,
    SessionExistsError,
    SessionNotFoundError,
    SessionValidationError,
    StorageConnectionError,
    StorageIOError,
    StorageTimeoutError,
    WorkflowStorageError,
)

# Façade
from .facade import ResumedSession, ValidationOutcome, ValidationResult, WorkflowContext

# Logging
from .logging_utils import StorageLoggerAdapter, configure_structured_logging, get_storage_logger

# Data model
from .protocol import (
    CacheEntry,
    CacheStats,
    Checkpoint,
    NextStepHint,
    SessionMutation,
    SessionRecord,
    SessionSummary,
)

# Sessions
from .sessions import SessionStore, build_next_step_hint, should_auto_save

# Sync
from .sync import CircuitBreaker, DualBackendCoordinator, ReconcileResult, SyncState

__version__ = "0.1.0"

__all__ = [
    # Version
    "__version__",
    # Logging
    "configure_structured_logging",
    "get_storage_logger",
    "StorageLoggerAdapter",
    # Façade
    "WorkflowContext",
    "ValidationResult",
    "ValidationOutcome",
    "ResumedSession",
    # Configuration
    "StorageConfig",
    # Sessions
    "SessionStore",
    "should_auto_save",
    "build_next_step_hint",
    # Documentation cache
    "DocumentationCache",
    "PrefetchResult",
    "DEFAULT_KEYWORD_MAP",
    # Sync
    "DualBackendCoordinator",
    "ReconcileResult",
    "SyncState",
    "CircuitBreaker",
    # Backends
    "BackendAdapter",
    "LocalFileBackend",
    "CosmosBackend",
    "CosmosBackendConfig",
    # Data model
    "SessionRecord",
    "SessionMutation",
    "SessionSummary",
    "Checkpoint",
    "CacheEntry",
    "CacheStats",
    "NextStepHint",
    # Exceptions
    "WorkflowStorageError",
    "NotFoundError",
    "SessionNotFoundError",
    "SessionExistsError",
    "SessionValidationError",
    "StorageIOError",
    "StorageTimeoutError",
    "StorageConnectionError",
    "AuthenticationError",
    "InvalidStateError",
    "CacheEntryTooLargeError",
]
