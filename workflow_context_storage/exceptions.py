"""
Custom exceptions for workflow context storage.

Every backend, the coordinator, the session store and the documentation
cache raise these exceptions so callers can handle failures uniformly.
Each error carries a ``kind`` (NotFound, AlreadyExists, Timeout, IOError,
TooLarge, InvalidState, Validation) and, where one applies, the failing ``key``.
"""

from __future__ import annotations


class WorkflowStorageError(Exception):
    """Base exception for all workflow context storage errors."""

    kind = "Error"

    def __init__(self, message: str, details: dict | None = None, key: str | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}
        self.key = key
        if key is not None:
            self.details.setdefault("key", key)
        self.details.setdefault("kind", self.kind)


class NotFoundError(WorkflowStorageError):
    """Raised when a key is absent from every backend that was consulted."""

    kind = "NotFound"

    def __init__(self, key: str, backend: str | None = None):
        details = {}
        if backend:
            details["backend"] = backend
        super().__init__(f"Key not found: {key}", details, key=key)
        self.backend = backend


class SessionNotFoundError(NotFoundError):
    """Raised when a session record does not exist."""

    def __init__(self, session_key: str):
        super().__init__(session_key)
        self.message = f"Session not found: {session_key}"
        self.args = (self.message,)
        self.session_key = session_key


class SessionExistsError(WorkflowStorageError):
    """Raised when trying to create a session that already exists."""

    kind = "AlreadyExists"

    def __init__(self, session_key: str):
        super().__init__(f"Session already exists: {session_key}", key=session_key)
        self.session_key = session_key


class SessionValidationError(WorkflowStorageError):
    """Raised when an identifier or a mutation is rejected."""

    kind = "Validation"

    def __init__(self, message: str, field: str | None = None, key: str | None = None):
        details = {}
        if field:
            details["field"] = field
        super().__init__(message, details, key=key)
        self.field = field


class StorageIOError(WorkflowStorageError):
    """Raised when a storage I/O operation fails."""

    kind = "IOError"

    def __init__(
        self,
        operation: str,
        key: str | None = None,
        cause: BaseException | None = None,
        backend: str | None = None,
    ):
        details: dict = {"operation": operation}
        if backend:
            details["backend"] = backend
        if cause:
            details["cause"] = str(cause)
        message = f"Storage I/O error during {operation}"
        if key:
            message += f": {key}"
        if backend:
            message += f" ({backend})"
        super().__init__(message, details, key=key)
        self.operation = operation
        self.cause = cause
        self.backend = backend


class StorageTimeoutError(StorageIOError):
    """Raised when a backend operation exceeds its deadline."""

    kind = "Timeout"

    def __init__(
        self,
        operation: str,
        key: str | None = None,
        timeout: float | None = None,
        backend: str | None = None,
    ):
        super().__init__(operation, key=key, backend=backend)
        self.timeout = timeout
        self.message = f"Storage operation {operation} timed out after {timeout}s"
        if key:
            self.message += f": {key}"
        self.args = (self.message,)
        self.details["timeout"] = timeout


class StorageConnectionError(StorageIOError):
    """Raised when connection to remote storage fails.

    Note: Named StorageConnectionError to avoid shadowing the builtin ConnectionError.
    """

    def __init__(self, endpoint: str, cause: BaseException | None = None):
        super().__init__("connect", cause=cause, backend=endpoint)
        self.endpoint = endpoint
        self.message = f"Connection failed to {endpoint}"
        self.args = (self.message,)


class AuthenticationError(StorageIOError):
    """Raised when authentication to remote storage fails."""

    def __init__(self, endpoint: str, reason: str | None = None):
        super().__init__("authenticate", backend=endpoint)
        if reason:
            self.details["reason"] = reason
        self.endpoint = endpoint
        self.reason = reason
        self.message = f"Authentication failed for {endpoint}"
        self.args = (self.message,)


class InvalidStateError(WorkflowStorageError):
    """Raised when a stored record cannot be deserialized.

    The key is left untouched; no repair is attempted.
    """

    kind = "InvalidState"

    def __init__(self, key: str, reason: str):
        super().__init__(f"Malformed record {key}: {reason}", {"reason": reason}, key=key)
        self.reason = reason


class CacheEntryTooLargeError(WorkflowStorageError):
    """Raised when a cache payload cannot fit in the cache size budget."""

    kind = "TooLarge"

    def __init__(self, cache_key: str, size_bytes: int, max_bytes: int, reason: str | None = None):
        details = {"size_bytes": size_bytes, "max_bytes": max_bytes}
        if reason:
            details["reason"] = reason
        message = f"Cache entry {cache_key} exceeds size budget: {size_bytes} > {max_bytes} bytes"
        if reason:
            message = f"Cache entry {cache_key} does not fit: {reason}"
        super().__init__(message, details, key=cache_key)
        self.size_bytes = size_bytes
        self.max_bytes = max_bytes
        self.reason = reason
