"""Abstract interface of the partitioned document store.

The repository engine never talks to a backend directly; it drives the
three handle types below. Adapters (see :mod:`docrepo.store.memory` and
:mod:`docrepo.store.sqlite`) implement them and report failures with
:class:`docrepo.errors.StoreError` subclasses.
"""

from __future__ import annotations

import time
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Mapping, Optional, Sequence

from docrepo.errors import HTTP_BAD_REQUEST, StoreError
from docrepo.infrastructure.partition_keys import PartitionKey

from .query import Query

ID_FIELD = "id"
PARTITION_KEY_FIELD = "pk"
DISCRIMINATOR_FIELD = "discriminator"
ETAG_FIELD = "_etag"
TIMESTAMP_FIELD = "_ts"

CROSS_PARTITION_DIAGNOSTICS = "Query fanned out across multiple partition key ranges (cross partition)"
SINGLE_PARTITION_DIAGNOSTICS = "Query served by a single partition key range"

Document = dict[str, Any]


@dataclass
class StoreResponse:
    status_code: int
    document: Optional[Document] = None
    documents: list[Document] = field(default_factory=list)
    etag: str = ""
    diagnostics: str = ""
    request_charge: float = 0.0

    @property
    def is_success(self) -> bool:
        return 200 <= self.status_code < 300


@dataclass
class QueryPage:
    items: list[Document]
    diagnostics: str = ""
    request_charge: float = 0.0
    continuation_token: Optional[str] = None

    @property
    def has_more(self) -> bool:
        return self.continuation_token is not None


class ContainerHandle(ABC):
    """A container of documents addressed by ``(partition key, id)``."""

    name: str
    key_paths: tuple[str, ...]

    @abstractmethod
    async def upsert(
        self, document: Mapping[str, Any], partition_key: PartitionKey, *, if_match: Optional[str] = None
    ) -> StoreResponse:
        """Insert or replace ``document``; 412 when ``if_match`` is stale."""

    @abstractmethod
    async def read(self, item_id: str, partition_key: PartitionKey) -> StoreResponse:
        """Point read; raises :class:`NotFoundError` when absent."""

    @abstractmethod
    async def delete(self, item_id: str, partition_key: PartitionKey) -> StoreResponse:
        """Remove a document; raises :class:`NotFoundError` when absent."""

    @abstractmethod
    async def execute_batch(
        self, documents: Sequence[Mapping[str, Any]], partition_key: PartitionKey
    ) -> StoreResponse:
        """Upsert all ``documents`` atomically within one partition."""

    @abstractmethod
    def query(
        self,
        query: Query,
        partition_key: Optional[PartitionKey] = None,
        *,
        page_size: int = 100,
        continuation_token: Optional[str] = None,
    ) -> AsyncIterator[QueryPage]:
        """Yield result pages; ``partition_key=None`` queries every partition."""


class DatabaseHandle(ABC):
    name: str

    @abstractmethod
    async def list_containers(self) -> list[str]:
        """Return the names of existing containers."""

    @abstractmethod
    async def create_container(self, name: str, key_paths: Sequence[str]) -> ContainerHandle:
        """Create a container; 409 when it already exists."""

    @abstractmethod
    async def get_container(self, name: str) -> ContainerHandle:
        """Return a handle to an existing container; :class:`NotFoundError` when absent."""


class StoreClient(ABC):
    """Process-wide connection to a store; share one instance."""

    @abstractmethod
    async def list_databases(self) -> list[str]:
        """Return the names of existing databases."""

    @abstractmethod
    async def create_database(self, name: str, throughput: Optional[int] = None) -> DatabaseHandle:
        """Create a database; 409 when it already exists."""

    @abstractmethod
    async def get_database(self, name: str) -> DatabaseHandle:
        """Return a handle to an existing database; :class:`NotFoundError` when absent."""


# ---------------------------------------------------------------------------
# Helpers shared by the adapters
# ---------------------------------------------------------------------------


def new_etag() -> str:
    return f'"{uuid.uuid4()}"'


def next_timestamp(previous: int = 0) -> int:
    """Wall-clock unix seconds, never below the document's ``previous`` stamp."""
    return max(int(time.time()), int(previous))


def document_key(document: Mapping[str, Any], key_paths: Sequence[str]) -> PartitionKey:
    """Extract the partition key of ``document`` following ``key_paths``."""
    values = []
    for path in key_paths:
        value = document.get(path.lstrip("/"))
        values.append("" if value is None else str(value))
    return PartitionKey(tuple(values))


def check_document_key(
    document: Mapping[str, Any], partition_key: PartitionKey, key_paths: Sequence[str]
) -> None:
    """Reject documents whose key fields disagree with ``partition_key``."""
    if len(partition_key) != len(key_paths):
        raise StoreError(
            f"Partition key {partition_key} has {len(partition_key)} segment(s); "
            f"container expects {len(key_paths)}",
            status_code=HTTP_BAD_REQUEST,
        )
    extracted = document_key(document, key_paths)
    if extracted != partition_key:
        raise StoreError(
            f"Partition key {extracted} extracted from document doesn't match {partition_key}",
            status_code=HTTP_BAD_REQUEST,
        )


def query_diagnostics(partitions_touched: int, scoped: bool) -> str:
    if not scoped and partitions_touched > 1:
        return f"{CROSS_PARTITION_DIAGNOSTICS}; ranges={partitions_touched}"
    return SINGLE_PARTITION_DIAGNOSTICS
