"""
Tests for the Cosmos DB backend adapter.

The Cosmos SDK is mocked; these tests verify document mapping, partition
key routing and error translation.
"""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from azure.cosmos.exceptions import CosmosHttpResponseError, CosmosResourceNotFoundError

from workflow_context_storage.backends import CosmosBackend, CosmosBackendConfig
from workflow_context_storage.backends.cosmos import encode_document_id
from workflow_context_storage.config import StorageConfig
from workflow_context_storage.exceptions import (
    AuthenticationError,
    InvalidStateError,
    NotFoundError,
    StorageConnectionError,
    StorageIOError,
)

RECORD_KEY = "session/t1/t1__wf1.record"


async def _aiter(items):
    for item in items:
        yield item


@pytest.fixture
def config() -> CosmosBackendConfig:
    return CosmosBackendConfig(
        endpoint="https://example.documents.azure.com:443/", auth_method="key", key="secret"
    )


@pytest.fixture
def container() -> MagicMock:
    container = MagicMock()
    container.upsert_item = AsyncMock()
    container.read_item = AsyncMock()
    container.delete_item = AsyncMock()
    return container


@pytest.fixture
def backend(config, container):
    backend = CosmosBackend(config)
    with patch.object(backend, "_ensure_container", AsyncMock(return_value=container)):
        yield backend


class TestDocumentMapping:
    """Tests for key to document mapping."""

    def test_encode_document_id(self):
        assert encode_document_id(RECORD_KEY) == "session|t1|t1__wf1.record"

    @pytest.mark.asyncio
    async def test_put_upserts_document(self, backend, container):
        await backend.put(RECORD_KEY, {"step_index": 1})

        body = container.upsert_item.call_args.kwargs["body"]
        assert body["id"] == "session|t1|t1__wf1.record"
        assert body["partition_key"] == "session"
        assert body["key"] == RECORD_KEY
        assert body["value"] == {"step_index": 1}
        assert "updated_at" in body

    @pytest.mark.asyncio
    async def test_get_returns_value(self, backend, container):
        container.read_item.return_value = {"id": "x", "value": {"step_index": 3}}

        assert await backend.get(RECORD_KEY) == {"step_index": 3}
        container.read_item.assert_awaited_once_with(
            item="session|t1|t1__wf1.record", partition_key="session"
        )

    @pytest.mark.asyncio
    async def test_get_not_found(self, backend, container):
        container.read_item.side_effect = CosmosResourceNotFoundError(
            status_code=404, message="Not found"
        )

        with pytest.raises(NotFoundError) as exc_info:
            await backend.get(RECORD_KEY)
        assert exc_info.value.backend == "cosmos"

    @pytest.mark.asyncio
    async def test_get_malformed_document(self, backend, container):
        container.read_item.return_value = {"id": "x", "value": "not an object"}

        with pytest.raises(InvalidStateError):
            await backend.get(RECORD_KEY)

    @pytest.mark.asyncio
    async def test_get_http_error(self, backend, container):
        container.read_item.side_effect = CosmosHttpResponseError(
            status_code=503, message="Service unavailable"
        )

        with pytest.raises(StorageIOError) as exc_info:
            await backend.get(RECORD_KEY)
        assert exc_info.value.kind == "IOError"

    @pytest.mark.asyncio
    async def test_list_uses_partition(self, backend, container):
        container.query_items = MagicMock(
            return_value=_aiter([{"key": RECORD_KEY}, {"key": "session/t1/t1__wf2.record"}])
        )

        keys = await backend.list("session/t1/")

        assert keys == [RECORD_KEY, "session/t1/t1__wf2.record"]
        kwargs = container.query_items.call_args.kwargs
        assert kwargs["parameters"] == [{"name": "@prefix", "value": "session/t1/"}]
        assert kwargs["partition_key"] == "session"
        assert "STARTSWITH" in kwargs["query"]

    @pytest.mark.asyncio
    async def test_delete_ignores_missing(self, backend, container):
        container.delete_item.side_effect = CosmosResourceNotFoundError(
            status_code=404, message="Not found"
        )
        await backend.delete(RECORD_KEY)

    @pytest.mark.asyncio
    async def test_delete_http_error(self, backend, container):
        container.delete_item.side_effect = CosmosHttpResponseError(
            status_code=500, message="boom"
        )
        with pytest.raises(StorageIOError):
            await backend.delete(RECORD_KEY)


class TestInitialize:
    """Tests for connection setup."""

    @pytest.fixture
    def client(self, container):
        database = MagicMock()
        database.create_container_if_not_exists = AsyncMock(return_value=container)
        client = MagicMock()
        client.create_database_if_not_exists = AsyncMock(return_value=database)
        client.close = AsyncMock()
        return client

    @pytest.mark.asyncio
    async def test_key_auth(self, config, client):
        with patch(
            "workflow_context_storage.backends.cosmos.CosmosClient", return_value=client
        ) as client_cls:
            backend = await CosmosBackend.create(config)

        client_cls.assert_called_once_with(config.endpoint, credential="secret")
        client.create_database_if_not_exists.assert_awaited_once_with(id="workflow-context")
        await backend.close()
        client.close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_unauthorized(self, config, client):
        client.create_database_if_not_exists.side_effect = CosmosHttpResponseError(
            status_code=401, message="Unauthorized"
        )
        with patch("workflow_context_storage.backends.cosmos.CosmosClient", return_value=client):
            backend = CosmosBackend(config)
            with pytest.raises(AuthenticationError):
                await backend.initialize()
        client.close.assert_awaited()

    @pytest.mark.asyncio
    async def test_connection_failure(self, config, client):
        client.create_database_if_not_exists.side_effect = OSError("unreachable")
        with patch("workflow_context_storage.backends.cosmos.CosmosClient", return_value=client):
            with pytest.raises(StorageConnectionError) as exc_info:
                await CosmosBackend.create(config)
        assert isinstance(exc_info.value, StorageIOError)

    def test_config_from_storage_config(self):
        storage_config = StorageConfig(
            cosmos_endpoint="https://example.documents.azure.com:443/",
            cosmos_auth_method="key",
            cosmos_key="secret",
            cosmos_container="ctx",
        )
        config = CosmosBackendConfig.from_storage_config(storage_config)
        assert config.container_name == "ctx"
        assert config.key == "secret"

    def test_key_auth_requires_key(self):
        storage_config = StorageConfig(
            cosmos_endpoint="https://example.documents.azure.com:443/", cosmos_auth_method="key"
        )
        with pytest.raises(AuthenticationError):
            CosmosBackendConfig.from_storage_config(storage_config)
