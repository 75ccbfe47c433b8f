from __future__ import annotations

import copy
import logging
from typing import Any, AsyncIterator, Mapping, Optional, Sequence

from docrepo.errors import (
    HTTP_BAD_REQUEST,
    HTTP_CONFLICT,
    HTTP_PRECONDITION_FAILED,
    NotFoundError,
    StoreError,
)
from docrepo.infrastructure.partition_keys import PartitionKey

from .base import (
    ETAG_FIELD,
    ID_FIELD,
    TIMESTAMP_FIELD,
    ContainerHandle,
    DatabaseHandle,
    Document,
    QueryPage,
    StoreClient,
    StoreResponse,
    check_document_key,
    new_etag,
    next_timestamp,
    query_diagnostics,
)
from .query import Query

logger = logging.getLogger(__name__)

READ_CHARGE = 1.0
WRITE_CHARGE = 10.0
QUERY_PAGE_CHARGE = 2.5
QUERY_ITEM_CHARGE = 0.1


def parse_continuation(token: Optional[str]) -> int:
    if token is None:
        return 0
    try:
        offset = int(token)
    except (TypeError, ValueError):
        raise StoreError(f"Invalid continuation token: {token!r}", status_code=HTTP_BAD_REQUEST)
    if offset < 0:
        raise StoreError(f"Invalid continuation token: {token!r}", status_code=HTTP_BAD_REQUEST)
    return offset


class InMemoryContainer(ContainerHandle):
    """Container kept in process memory.

    Documents live in one dict per partition key, so a query without a
    partition key scans every partition and reports it in the diagnostics.
    """

    def __init__(self, name: str, key_paths: Sequence[str]) -> None:
        self.name = name
        self.key_paths = tuple(key_paths)
        self._partitions: dict[PartitionKey, dict[str, Document]] = {}

    def __len__(self) -> int:
        return sum(len(p) for p in self._partitions.values())

    def _require_id(self, document: Mapping[str, Any]) -> str:
        item_id = document.get(ID_FIELD)
        if not item_id:
            raise StoreError("Document is missing an 'id'", status_code=HTTP_BAD_REQUEST)
        return str(item_id)

    def _stamp(self, document: Mapping[str, Any], existing: Optional[Document]) -> Document:
        stored = copy.deepcopy(dict(document))
        previous = int(existing.get(TIMESTAMP_FIELD, 0)) if existing else 0
        stored[ETAG_FIELD] = new_etag()
        stored[TIMESTAMP_FIELD] = next_timestamp(previous)
        return stored

    async def upsert(
        self, document: Mapping[str, Any], partition_key: PartitionKey, *, if_match: Optional[str] = None
    ) -> StoreResponse:
        item_id = self._require_id(document)
        check_document_key(document, partition_key, self.key_paths)
        partition = self._partitions.setdefault(partition_key, {})
        existing = partition.get(item_id)
        if if_match and (existing is None or existing.get(ETAG_FIELD) != if_match):
            raise StoreError(
                f"Precondition failed for item {item_id}: etag {if_match} is not current",
                status_code=HTTP_PRECONDITION_FAILED,
            )
        stored = self._stamp(document, existing)
        partition[item_id] = stored
        return StoreResponse(
            status_code=200 if existing else 201,
            document=copy.deepcopy(stored),
            etag=stored[ETAG_FIELD],
            diagnostics=f"upsert {self.name}/{partition_key}/{item_id}",
            request_charge=WRITE_CHARGE,
        )

    async def read(self, item_id: str, partition_key: PartitionKey) -> StoreResponse:
        stored = self._partitions.get(partition_key, {}).get(item_id)
        if stored is None:
            raise NotFoundError(f"Item {item_id} not found in partition {partition_key}")
        return StoreResponse(
            status_code=200,
            document=copy.deepcopy(stored),
            etag=stored[ETAG_FIELD],
            diagnostics=f"read {self.name}/{partition_key}/{item_id}",
            request_charge=READ_CHARGE,
        )

    async def delete(self, item_id: str, partition_key: PartitionKey) -> StoreResponse:
        partition = self._partitions.get(partition_key, {})
        if item_id not in partition:
            raise NotFoundError(f"Item {item_id} not found in partition {partition_key}")
        del partition[item_id]
        if not partition:
            self._partitions.pop(partition_key, None)
        return StoreResponse(
            status_code=204,
            diagnostics=f"delete {self.name}/{partition_key}/{item_id}",
            request_charge=WRITE_CHARGE,
        )

    async def execute_batch(
        self, documents: Sequence[Mapping[str, Any]], partition_key: PartitionKey
    ) -> StoreResponse:
        # Validate everything first: the batch is all-or-nothing
        for document in documents:
            self._require_id(document)
            check_document_key(document, partition_key, self.key_paths)
        partition = self._partitions.setdefault(partition_key, {})
        written: list[Document] = []
        for document in documents:
            item_id = str(document[ID_FIELD])
            stored = self._stamp(document, partition.get(item_id))
            partition[item_id] = stored
            written.append(copy.deepcopy(stored))
        return StoreResponse(
            status_code=200,
            documents=written,
            diagnostics=f"batch {self.name}/{partition_key} operations={len(written)}",
            request_charge=WRITE_CHARGE * len(written),
        )

    async def query(
        self,
        query: Query,
        partition_key: Optional[PartitionKey] = None,
        *,
        page_size: int = 100,
        continuation_token: Optional[str] = None,
    ) -> AsyncIterator[QueryPage]:
        if page_size < 1:
            raise StoreError("page_size must be positive", status_code=HTTP_BAD_REQUEST)
        offset = parse_continuation(continuation_token)
        if partition_key is None:
            scanned = [p for p in self._partitions.values() if p]
        else:
            scanned = [self._partitions.get(partition_key, {})]
        candidates = [doc for partition in scanned for doc in partition.values()]
        results = [copy.deepcopy(doc) for doc in query.apply(candidates)]
        diagnostics = query_diagnostics(len(scanned), scoped=partition_key is not None)

        while True:
            items = results[offset : offset + page_size]
            offset += len(items)
            token = str(offset) if offset < len(results) else None
            yield QueryPage(
                items=items,
                diagnostics=diagnostics,
                request_charge=QUERY_PAGE_CHARGE + QUERY_ITEM_CHARGE * len(items),
                continuation_token=token,
            )
            if token is None:
                return


class InMemoryDatabase(DatabaseHandle):
    def __init__(self, name: str, throughput: Optional[int] = None) -> None:
        self.name = name
        self.throughput = throughput
        self._containers: dict[str, InMemoryContainer] = {}

    async def list_containers(self) -> list[str]:
        return list(self._containers)

    async def create_container(self, name: str, key_paths: Sequence[str]) -> InMemoryContainer:
        if name in self._containers:
            raise StoreError(f"Container {name} already exists", status_code=HTTP_CONFLICT)
        container = InMemoryContainer(name, key_paths)
        self._containers[name] = container
        logger.info("Created in-memory container %s/%s (%s)", self.name, name, ",".join(key_paths))
        return container

    async def get_container(self, name: str) -> InMemoryContainer:
        try:
            return self._containers[name]
        except KeyError:
            raise NotFoundError(f"Container {name} not found in database {self.name}") from None


class InMemoryStoreClient(StoreClient):
    """Store adapter holding every database in process memory.

    Example:
        >>> import asyncio
        >>> client = InMemoryStoreClient()
        >>> db = asyncio.run(client.create_database("app"))
        >>> asyncio.run(client.list_databases())
        ['app']
    """

    def __init__(self) -> None:
        self._databases: dict[str, InMemoryDatabase] = {}

    async def list_databases(self) -> list[str]:
        return list(self._databases)

    async def create_database(self, name: str, throughput: Optional[int] = None) -> InMemoryDatabase:
        if name in self._databases:
            raise StoreError(f"Database {name} already exists", status_code=HTTP_CONFLICT)
        database = InMemoryDatabase(name, throughput)
        self._databases[name] = database
        return database

    async def get_database(self, name: str) -> InMemoryDatabase:
        try:
            return self._databases[name]
        except KeyError:
            raise NotFoundError(f"Database {name} not found") from None
