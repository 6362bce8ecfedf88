"""Cosmos DB document store.

Provides:
- Database and container discovery
- Cursor-paginated listing (default query or raw SQL from the operator)
- Point reads by id + partition key
- Server-side field search (case-insensitive CONTAINS, single bounded batch)

The Cosmos client is created lazily on first use. A missing connection
string raises ConfigurationError at that point rather than at import.
"""

import asyncio
import re
from abc import ABC, abstractmethod
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

from azure.core.exceptions import AzureError
from azure.cosmos.aio import CosmosClient
from azure.cosmos.exceptions import CosmosResourceNotFoundError

from opsconsole.errors import (
    ApiErrorCode,
    ConfigurationError,
    InvalidRequestError,
    MalformedResponseError,
    TransportError,
)
from opsconsole.gateway.types import (
    ContainerInfo,
    ContainerRef,
    Document,
    PageResponse,
    lookup_field,
)
from opsconsole.logging import get_logger

logger = get_logger(__name__)

DEFAULT_QUERY = "SELECT * FROM c"

# Field paths are interpolated into SQL, so only plain identifier paths are accepted
FIELD_PATH_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*(\.[A-Za-z_][A-Za-z0-9_]*)*$")


def validate_field_path(field: str) -> str:
    """Validate a document field path such as "status" or "customer.email".

    Raises:
        InvalidRequestError: If the path is not a dotted identifier path.
    """
    if not FIELD_PATH_PATTERN.match(field):
        raise InvalidRequestError(ApiErrorCode.E_INVALID_FIELD, f"Invalid field name: {field!r}")
    return field


def build_search_query(field: str) -> str:
    """Build the parameterised CONTAINS query for a field search."""
    validate_field_path(field)
    return f"SELECT * FROM c WHERE CONTAINS(c.{field}, @searchValue, true)"


def _ensure_documents(items: list[Any]) -> tuple[Document, ...]:
    for item in items:
        if not isinstance(item, dict):
            raise MalformedResponseError(
                f"Expected JSON objects from Cosmos DB, got {type(item).__name__}"
            )
    return tuple(items)


class DocumentStore(ABC):
    """Abstract base class for document store implementations."""

    @abstractmethod
    async def list_databases(self) -> list[str]:
        """Return database ids in the account."""
        ...

    @abstractmethod
    async def list_containers(self, database: str) -> list[ContainerInfo]:
        """Return containers of a database with their partition key paths."""
        ...

    @abstractmethod
    async def list_page(
        self,
        container: ContainerRef,
        query: str | None,
        cursor: str | None,
        max_count: int,
    ) -> PageResponse:
        """Fetch one page of a query.

        Args:
            container: Container to query.
            query: Raw SQL text, or None for SELECT * FROM c.
            cursor: Continuation token of the previous page, None for the first.
            max_count: Maximum items in the page.

        Returns:
            PageResponse whose next_cursor is set iff more pages may exist.

        Raises:
            TransportError: If the service call fails.
        """
        ...

    @abstractmethod
    async def get_item(
        self, container: ContainerRef, item_id: str, partition_key: str
    ) -> Document | None:
        """Point read. Returns None when the item does not exist."""
        ...

    @abstractmethod
    async def search(
        self, container: ContainerRef, field: str, value: str, max_count: int
    ) -> list[Document]:
        """Case-insensitive substring search on one field.

        Returns a single bounded batch. Continuation tokens are never chained.
        """
        ...

    async def close(self) -> None:
        """Release network resources."""
        return None


class CosmosDocumentStore(DocumentStore):
    """Production Cosmos DB store using the async SDK."""

    def __init__(self, connection_string: str | None):
        self._connection_string = connection_string
        self._client: CosmosClient | None = None

    def _get_client(self) -> CosmosClient:
        if self._client is None:
            if not self._connection_string:
                raise ConfigurationError(
                    "Cosmos DB configuration missing: set COSMOS_DB_CONNECTION_STRING "
                    "or COSMOS-DB-CONNECTION-STRING."
                )
            self._client = CosmosClient.from_connection_string(self._connection_string)
            logger.info("cosmos_client_initialized")
        return self._client

    def _container(self, ref: ContainerRef):
        return (
            self._get_client()
            .get_database_client(ref.database)
            .get_container_client(ref.container)
        )

    @contextmanager
    def _translate_errors(self, operation: str) -> Iterator[None]:
        try:
            yield
        except AzureError as e:
            logger.warning("cosmos_call_failed", operation=operation, error=str(e))
            raise TransportError(f"Cosmos DB {operation} failed: {e}") from e

    async def list_databases(self) -> list[str]:
        with self._translate_errors("list_databases"):
            return [db["id"] async for db in self._get_client().list_databases()]

    async def list_containers(self, database: str) -> list[ContainerInfo]:
        db = self._get_client().get_database_client(database)
        containers = []
        with self._translate_errors("list_containers"):
            async for props in db.list_containers():
                paths = (props.get("partitionKey") or {}).get("paths") or []
                containers.append(
                    ContainerInfo(id=props["id"], partition_key=", ".join(paths) or "Unknown")
                )
        return containers

    async def list_page(
        self,
        container: ContainerRef,
        query: str | None,
        cursor: str | None,
        max_count: int,
    ) -> PageResponse:
        container_client = self._container(container)
        with self._translate_errors("query"):
            pager = container_client.query_items(
                query=query or DEFAULT_QUERY, max_item_count=max_count
            ).by_page(cursor)
            try:
                page = await anext(pager)
            except StopAsyncIteration:
                return PageResponse()
            items = [item async for item in page]
            next_cursor = pager.continuation_token or None

        return PageResponse(items=_ensure_documents(items), next_cursor=next_cursor)

    async def get_item(
        self, container: ContainerRef, item_id: str, partition_key: str
    ) -> Document | None:
        container_client = self._container(container)
        with self._translate_errors("read_item"):
            try:
                return await container_client.read_item(item=item_id, partition_key=partition_key)
            except CosmosResourceNotFoundError:
                return None

    async def search(
        self, container: ContainerRef, field: str, value: str, max_count: int
    ) -> list[Document]:
        sql = build_search_query(field)
        container_client = self._container(container)
        with self._translate_errors("search"):
            pager = container_client.query_items(
                query=sql,
                parameters=[{"name": "@searchValue", "value": value}],
                max_item_count=max_count,
            ).by_page()
            try:
                page = await anext(pager)
            except StopAsyncIteration:
                return []
            items = [item async for item in page]

        return list(_ensure_documents(items[:max_count]))

    async def close(self) -> None:
        if self._client is not None:
            await self._client.close()
            self._client = None
            logger.info("cosmos_client_closed")


class FakeDocumentStore(DocumentStore):
    """In-memory document store for tests and local development.

    Continuation tokens are stringified offsets. Raw SQL is not interpreted:
    register canned results with set_query_result(). A gate event can hold
    every call open to exercise in-flight behaviour.
    """

    def __init__(self):
        self._containers: dict[ContainerRef, tuple[str, list[Document]]] = {}
        self._query_results: dict[tuple[ContainerRef, str], list[Document]] = {}
        self._failures: list[Exception] = []
        self.gate: asyncio.Event | None = None
        self.calls: list[tuple[str, dict[str, Any]]] = []

    async def _enter(self, operation: str, **kwargs: Any) -> None:
        self.calls.append((operation, kwargs))
        if self.gate is not None:
            await self.gate.wait()
        if self._failures:
            raise self._failures.pop(0)

    async def list_databases(self) -> list[str]:
        await self._enter("list_databases")
        return sorted({ref.database for ref in self._containers})

    async def list_containers(self, database: str) -> list[ContainerInfo]:
        await self._enter("list_containers", database=database)
        return [
            ContainerInfo(id=ref.container, partition_key=pk)
            for ref, (pk, _) in self._containers.items()
            if ref.database == database
        ]

    async def list_page(
        self,
        container: ContainerRef,
        query: str | None,
        cursor: str | None,
        max_count: int,
    ) -> PageResponse:
        await self._enter("list_page", container=container, query=query, cursor=cursor)
        docs = self._documents(container, query)
        offset = int(cursor) if cursor else 0
        end = offset + max_count
        next_cursor = str(end) if end < len(docs) else None
        return PageResponse(items=tuple(docs[offset:end]), next_cursor=next_cursor)

    async def get_item(
        self, container: ContainerRef, item_id: str, partition_key: str
    ) -> Document | None:
        await self._enter("get_item", container=container, item_id=item_id)
        pk_path, docs = self._containers.get(container, ("/id", []))
        pk_field = pk_path.lstrip("/").replace("/", ".")
        for doc in docs:
            if doc.get("id") == item_id and str(lookup_field(doc, pk_field)) == partition_key:
                return doc
        return None

    async def search(
        self, container: ContainerRef, field: str, value: str, max_count: int
    ) -> list[Document]:
        validate_field_path(field)
        await self._enter("search", container=container, field=field, value=value)
        needle = value.lower()
        matches = []
        for doc in self._documents(container, None):
            # CONTAINS is undefined for non-string values, so they never match
            candidate = lookup_field(doc, field)
            if isinstance(candidate, str) and needle in candidate.lower():
                matches.append(doc)
        return matches[:max_count]

    def _documents(self, container: ContainerRef, query: str | None) -> list[Document]:
        if query is not None and (container, query) in self._query_results:
            return self._query_results[(container, query)]
        return self._containers.get(container, ("/id", []))[1]

    # Test helper methods

    def add_container(
        self, container: ContainerRef, docs: list[Document], partition_key: str = "/id"
    ) -> None:
        self._containers[container] = (partition_key, list(docs))

    def set_query_result(self, container: ContainerRef, query: str, docs: list[Document]) -> None:
        self._query_results[(container, query)] = list(docs)

    def fail_next(self, exc: Exception) -> None:
        self._failures.append(exc)
