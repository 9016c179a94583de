"""
Backend adapters.

Provides local filesystem storage and Cosmos DB storage behind one
``BackendAdapter`` interface.

Example:
    >>> from workflow_context_storage.backends import CosmosBackend, CosmosBackendConfig
    >>> config = CosmosBackendConfig(endpoint="https://example.documents.azure.com:443/")
    >>> async with CosmosBackend(config) as remote:
    ...     await remote.put("session/t1/t1__wf1.record", {"step_index": 0})
"""

from .base import BackendAdapter
from .cosmos import CosmosBackend, CosmosBackendConfig
from .local import LocalFileBackend

__all__ = [
    "BackendAdapter",
    "LocalFileBackend",
    "CosmosBackend",
    "CosmosBackendConfig",
]
