"""
Cosmos DB backend.

Remote, synchronized key/value store on a single Azure Cosmos DB container.

Container schema:
{
    "id": "{key with '/' encoded as '|'}",
    "partition_key": "{namespace}",      // first key segment: session, cache
    "key": "{key}",
    "value": {...},
    "updated_at": "{iso_timestamp}"
}

Supports key-based authentication and Azure AD via DefaultAzureCredential.
Failures are reported, never retried; retry and fallback belong to the
coordinator.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from azure.cosmos import PartitionKey
from azure.cosmos.aio import ContainerProxy, CosmosClient, DatabaseProxy
from azure.cosmos.exceptions import CosmosHttpResponseError, CosmosResourceNotFoundError
from azure.identity.aio import DefaultAzureCredential

from ..config import AUTH_KEY, StorageConfig
from ..exceptions import (
    AuthenticationError,
    InvalidStateError,
    NotFoundError,
    StorageConnectionError,
    StorageIOError,
)
from ..keys import namespace_of
from .base import BackendAdapter

logger = logging.getLogger(__name__)

PARTITION_KEY_PATH = "/partition_key"


@dataclass
class CosmosBackendConfig:
    """Configuration for the Cosmos DB backend.

    Attributes:
        endpoint: Cosmos DB account endpoint URL
        database_name: Name of the database
        container_name: Name of the container holding all records
        auth_method: Authentication method ('key' or 'default_credential')
        key: Cosmos DB account key (only needed if auth_method='key')
    """

    endpoint: str
    database_name: str = "workflow-context"
    container_name: str = "records"
    auth_method: str = "default_credential"
    key: str | None = None

    @classmethod
    def from_storage_config(cls, config: StorageConfig) -> CosmosBackendConfig:
        if not config.cosmos_endpoint:
            raise AuthenticationError("cosmos", "cosmos_endpoint is not configured")
        if config.cosmos_auth_method == AUTH_KEY and not config.cosmos_key:
            raise AuthenticationError("cosmos", "cosmos_key required when auth_method='key'")
        return cls(
            endpoint=config.cosmos_endpoint,
            database_name=config.cosmos_database,
            container_name=config.cosmos_container,
            auth_method=config.cosmos_auth_method,
            key=config.cosmos_key,
        )


def encode_document_id(key: str) -> str:
    """Cosmos ids may not contain '/', so path separators become '|'."""
    return key.replace("/", "|")


class CosmosBackend(BackendAdapter):
    """Backend adapter over one Cosmos DB container."""

    name = "cosmos"

    def __init__(self, config: CosmosBackendConfig):
        self.config = config
        self._client: CosmosClient | None = None
        self._credential: DefaultAzureCredential | None = None
        self._database: DatabaseProxy | None = None
        self._container: ContainerProxy | None = None
        self._initialized = False

    @classmethod
    async def create(cls, config: CosmosBackendConfig) -> CosmosBackend:
        """Create and initialize a CosmosBackend instance."""
        backend = cls(config)
        await backend.initialize()
        return backend

    async def initialize(self) -> None:
        """Initialize connection and ensure the container exists."""
        if self._initialized:
            return

        try:
            if self.config.auth_method == AUTH_KEY:
                self._client = CosmosClient(self.config.endpoint, credential=self.config.key)
            else:
                self._credential = DefaultAzureCredential()
                self._client = CosmosClient(self.config.endpoint, credential=self._credential)

            self._database = await self._client.create_database_if_not_exists(
                id=self.config.database_name
            )
            self._container = await self._database.create_container_if_not_exists(
                id=self.config.container_name,
                partition_key=PartitionKey(path=PARTITION_KEY_PATH),
            )

            self._initialized = True
            logger.info(f"Cosmos backend initialized: {self.config.endpoint}")

        except CosmosHttpResponseError as e:
            await self.close()
            if e.status_code in (401, 403):
                raise AuthenticationError(self.config.endpoint, str(e)) from e
            raise StorageConnectionError(self.config.endpoint, e) from e
        except Exception as e:
            await self.close()
            raise StorageConnectionError(self.config.endpoint, e) from e

    async def close(self) -> None:
        """Close the connection."""
        if self._client:
            await self._client.close()
            self._client = None

        if self._credential:
            await self._credential.close()
            self._credential = None

        self._database = None
        self._container = None
        self._initialized = False

    async def __aenter__(self) -> CosmosBackend:
        await self.initialize()
        return self

    async def _ensure_container(self) -> ContainerProxy:
        """Return the container, connecting first if the backend is not initialized.

        A backend that could not connect at startup retries on each call.
        """
        if not self._initialized or self._container is None:
            await self.initialize()
        assert self._container is not None
        return self._container

    async def put(self, key: str, value: dict[str, Any]) -> None:
        container = await self._ensure_container()
        doc = {
            "id": encode_document_id(key),
            "partition_key": namespace_of(key),
            "key": key,
            "value": value,
            "updated_at": datetime.now(UTC).isoformat(),
        }
        try:
            await container.upsert_item(body=doc)
        except CosmosHttpResponseError as e:
            raise StorageIOError("put", key, e, self.name) from e

    async def get(self, key: str) -> dict[str, Any]:
        container = await self._ensure_container()
        try:
            doc = await container.read_item(
                item=encode_document_id(key), partition_key=namespace_of(key)
            )
        except CosmosResourceNotFoundError as e:
            raise NotFoundError(key, self.name) from e
        except CosmosHttpResponseError as e:
            raise StorageIOError("get", key, e, self.name) from e

        value = doc.get("value")
        if not isinstance(value, dict):
            raise InvalidStateError(key, "remote document has no object value")
        return value

    async def list(self, prefix: str) -> list[str]:
        container = await self._ensure_container()
        query = "SELECT c.key FROM c WHERE STARTSWITH(c.key, @prefix)"
        parameters: list[dict[str, Any]] = [{"name": "@prefix", "value": prefix}]

        query_options: dict[str, Any] = {}
        namespace = namespace_of(prefix) if "/" in prefix else None
        if namespace:
            query_options["partition_key"] = namespace

        keys: list[str] = []
        try:
            async for item in container.query_items(
                query=query, parameters=parameters, **query_options
            ):
                keys.append(item["key"])
        except CosmosHttpResponseError as e:
            raise StorageIOError("list", prefix, e, self.name) from e
        return keys

    async def delete(self, key: str) -> None:
        container = await self._ensure_container()
        try:
            await container.delete_item(
                item=encode_document_id(key), partition_key=namespace_of(key)
            )
        except CosmosResourceNotFoundError:
            pass
        except CosmosHttpResponseError as e:
            raise StorageIOError("delete", key, e, self.name) from e
