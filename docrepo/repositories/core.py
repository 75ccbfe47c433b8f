from __future__ import annotations

import logging
import uuid
from contextlib import aclosing
from dataclasses import dataclass, field
from typing import Any, Callable, Generic, Iterable, Mapping, Optional, TypeVar

from docrepo.config.settings import RepositorySettings
from docrepo.domain.entities.document import Identity
from docrepo.errors import (
    HTTP_PRECONDITION_FAILED,
    BatchOperationError,
    ConfigurationError,
    NotFoundError,
    OptimisticConcurrencyError,
    PartitionKeyMismatchError,
    StoreError,
    ThrottlingError,
)
from docrepo.infrastructure.batching import batch_count, get_batches
from docrepo.infrastructure.partition_keys import PartitionKey, PartitionKeyStrategy
from docrepo.logging_config import RequestChargeStats
from docrepo.store.base import (
    DISCRIMINATOR_FIELD,
    ETAG_FIELD,
    ID_FIELD,
    TIMESTAMP_FIELD,
    ContainerHandle,
    StoreClient,
    StoreResponse,
)
from docrepo.store.query import Query

from .provisioning import ContainerProvisioner

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=Identity)

BATCH_SIZE = 50
CROSS_PARTITION_MARKERS = ("cross partition", "multiple partition key ranges")


@dataclass(frozen=True)
class ScopedQuery:
    """A query plus the partition key it runs against (``None`` = all)."""

    query: Query
    partition_key: Optional[PartitionKey] = None


@dataclass
class PagedResults(Generic[T]):
    items: list[T] = field(default_factory=list)
    continuation_token: Optional[str] = None
    request_charge: float = 0.0

    @property
    def has_more(self) -> bool:
        return self.continuation_token is not None


def default_serializer(item: Any) -> Mapping[str, Any]:
    return item.model_dump(by_alias=True, mode="json")


def is_cross_partition_query(diagnostics: str) -> bool:
    """Best-effort guess from the store's free-text diagnostics.

    Depends entirely on provider wording; use it for logging only.
    """
    text = (diagnostics or "").casefold()
    return any(marker in text for marker in CROSS_PARTITION_MARKERS)


class RepositoryCore(Generic[T]):
    """Typed CRUD and query composition over one shared container.

    Several entity kinds share a container and are told apart by their
    ``discriminator``. ``factory`` turns a stored document into an entity
    and ``serializer`` does the reverse.

    Queries that do not name a partition key (``get_by_id(id)``,
    ``get_all()``, ``delete(id)``) fan out across every partition and
    should be avoided on hot paths.
    """

    def __init__(
        self,
        client: StoreClient,
        settings: RepositorySettings,
        *,
        factory: Callable[[Mapping[str, Any]], T],
        discriminator: str,
        serializer: Optional[Callable[[T], Mapping[str, Any]]] = None,
        provisioner: Optional[ContainerProvisioner] = None,
    ) -> None:
        if not discriminator or not discriminator.strip():
            raise ConfigurationError("discriminator cannot be empty", key="discriminator")
        self._settings = settings
        self._keys = PartitionKeyStrategy(
            settings.partition_key, settings.hierarchical_partition_key
        )
        self._factory = factory
        self._serializer = serializer or default_serializer
        self._discriminator = discriminator
        self._provisioner = provisioner or ContainerProvisioner(
            client, settings, self._keys.container_key_paths
        )
        self.charges = RequestChargeStats()

    @property
    def discriminator(self) -> str:
        return self._discriminator

    @property
    def settings(self) -> RepositorySettings:
        return self._settings

    @property
    def partition_keys(self) -> PartitionKeyStrategy:
        return self._keys

    async def initialize(self) -> ContainerHandle:
        return await self._provisioner.initialize()

    async def get_container(self) -> ContainerHandle:
        return await self._provisioner.initialize()

    def get_partition_key(self, item: T) -> PartitionKey:
        return self._keys.key_for(item)

    def query_description(self, method: str) -> str:
        return f"{type(self).__name__} - {method}"

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def _prepare(self, item: T) -> None:
        if not item.id:
            item.id = str(uuid.uuid4())
        if not item.discriminator:
            item.discriminator = self._discriminator

    def _pending_key(self, item: T) -> PartitionKey:
        """Key ``item`` will be stored under once :meth:`_prepare` has run."""
        return self._keys.build_key(item.owner_id, item.discriminator or self._discriminator)

    def _to_document(self, item: T) -> dict[str, Any]:
        return dict(self._serializer(item))

    def _refresh(self, item: T, document: Optional[Mapping[str, Any]], etag: str = "") -> None:
        if document is not None:
            item.etag = str(document.get(ETAG_FIELD) or etag or item.etag)
            item.timestamp = int(document.get(TIMESTAMP_FIELD) or item.timestamp)
        elif etag:
            item.etag = etag

    def _track(self, operation: str, response: StoreResponse) -> None:
        logger.info("Request charge (%s): %s", operation, response.request_charge)
        logger.debug("Diagnostics (%s): %s", operation, response.diagnostics)
        self.charges.record(operation, response.request_charge)
        if not response.is_success:
            raise StoreError(
                f"Response status code was {response.status_code}",
                status_code=response.status_code,
            )

    async def save(self, item: T) -> T:
        """Insert or replace ``item``.

        A non-empty etag makes the write conditional on the stored version;
        a mismatch raises :class:`OptimisticConcurrencyError`. The item's
        etag and timestamp are refreshed from the store on success.
        """
        container = await self.get_container()
        self._prepare(item)
        partition_key = self.get_partition_key(item)
        try:
            response = await container.upsert(
                self._to_document(item), partition_key, if_match=item.etag or None
            )
        except ThrottlingError:
            raise
        except StoreError as exc:
            logger.error(
                "Error saving %s item %s to container %s in database %s: %s",
                item.discriminator,
                item.id,
                self._settings.container_name,
                self._settings.database_name,
                exc,
            )
            if exc.status_code == HTTP_PRECONDITION_FAILED:
                raise OptimisticConcurrencyError(
                    f"Item {item.id} was modified since etag {item.etag} was read",
                    item_id=item.id,
                    etag=item.etag,
                ) from exc
            raise
        self._track(self.query_description("save"), response)
        self._refresh(item, response.document, response.etag)
        return item

    async def save_batch(self, items: Iterable[T]) -> None:
        """Save ``items`` in transactional chunks of :data:`BATCH_SIZE`.

        Every chunk must share the partition key of its first item; this is
        checked for all chunks before anything is written. Chunks are
        committed one after another, so a rejected chunk leaves the earlier
        ones applied. A rejected key check leaves the items untouched.
        """
        values = list(items)
        if not values:
            return

        batches = get_batches(values, BATCH_SIZE)
        keys: list[PartitionKey] = []
        for number, batch in enumerate(batches, start=1):
            key = self._pending_key(batch[0])
            for position, other in enumerate(batch[1:], start=2):
                other_key = self._pending_key(other)
                if other_key != key:
                    raise PartitionKeyMismatchError(
                        f"Batch {number}: item {other.id or f'#{position}'} has partition key "
                        f"{other_key} but the batch uses {key} from its first item",
                        batch_number=number,
                    )
            keys.append(key)
        for item in values:
            self._prepare(item)

        container = await self.get_container()
        description = self.query_description("save_batch")
        total = batch_count(len(values), BATCH_SIZE)
        logger.debug("%s: %d item(s) in %d batch(es)", description, len(values), total)
        for number, (batch, key) in enumerate(zip(batches, keys), start=1):
            try:
                response = await container.execute_batch(
                    [self._to_document(item) for item in batch], key
                )
            except StoreError as exc:
                logger.error(
                    "Batch %d/%d for partition %s rejected by container %s: %s",
                    number,
                    total,
                    key,
                    self._settings.container_name,
                    exc,
                )
                raise BatchOperationError(
                    number, total, len(batch), str(exc), status_code=exc.status_code
                ) from exc
            if not response.is_success:
                raise BatchOperationError(
                    number,
                    total,
                    len(batch),
                    f"Response status code was {response.status_code}",
                    status_code=response.status_code,
                )
            self._track(description, response)
            for item, document in zip(batch, response.documents):
                self._refresh(item, document)

    async def _delete(self, item: T) -> None:
        container = await self.get_container()
        response = await container.delete(item.id, self.get_partition_key(item))
        self._track(self.query_description("delete"), response)

    async def delete(self, item_id: str) -> None:
        """Delete by id alone: looks the item up across partitions first."""
        item = await RepositoryCore.get_by_id(self, item_id)
        if item is None:
            raise NotFoundError(f"Item with id {item_id} not found.")
        await self._delete(item)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def scoped_query(self, owner_id: Optional[str] = None) -> ScopedQuery:
        """Starting point for custom queries.

        Without an owner the query spans every partition. The discriminator
        filter is left out only when the partition key itself carries it.
        """
        query = Query()
        if owner_id is None:
            return ScopedQuery(query.where(DISCRIMINATOR_FIELD, self._discriminator), None)
        key = self._keys.build_key(owner_id, self._discriminator)
        if not key.is_hierarchical:
            query = query.where(DISCRIMINATOR_FIELD, self._discriminator)
        return ScopedQuery(query, key)

    async def get_results(self, scoped: ScopedQuery, description: str) -> list[T]:
        """Drain every page of ``scoped`` into one list."""
        container = await self.get_container()
        logger.info(
            "%s query %s with partition key %s",
            description,
            scoped.query,
            scoped.partition_key if scoped.partition_key is not None else "<none>",
        )
        items: list[T] = []
        total_charge = 0.0
        async for page in container.query(
            scoped.query, scoped.partition_key, page_size=self._settings.query_page_size
        ):
            logger.info("Request charge (%s): %s", description, page.request_charge)
            logger.debug("Diagnostics (%s): %s", description, page.diagnostics)
            total_charge += page.request_charge
            if is_cross_partition_query(page.diagnostics):
                logger.warning("Cross-partition query for %s", description)
            items.extend(self._factory(document) for document in page.items)
        logger.info("Total request charge (%s): %s", description, total_charge)
        self.charges.record(description, total_charge)
        return items

    async def get_by_id(self, item_id: str) -> Optional[T]:
        """Find an item by id in any partition; ``None`` when absent."""
        scoped = self.scoped_query()
        scoped = ScopedQuery(scoped.query.where(ID_FIELD, item_id), None)
        results = await self.get_results(scoped, self.query_description("get_by_id"))
        return results[0] if results else None

    async def get_all(self) -> list[T]:
        """Every item of this repository's discriminator, across partitions."""
        return await self.get_results(self.scoped_query(), self.query_description("get_all"))

    async def get_paged(
        self, page_size: int = 100, continuation_token: Optional[str] = None
    ) -> PagedResults[T]:
        """One page of :meth:`get_all`, resumable with ``continuation_token``."""
        container = await self.get_container()
        scoped = self.scoped_query()
        description = self.query_description("get_paged")
        pages = container.query(
            scoped.query,
            None,
            page_size=page_size,
            continuation_token=continuation_token,
        )
        async with aclosing(pages):
            page = await anext(pages, None)
        if page is None:
            return PagedResults()
        if is_cross_partition_query(page.diagnostics):
            logger.warning("Cross-partition query for %s", description)
        logger.info("Request charge (%s): %s", description, page.request_charge)
        self.charges.record(description, page.request_charge)
        return PagedResults(
            items=[self._factory(document) for document in page.items],
            continuation_token=page.continuation_token,
            request_charge=page.request_charge,
        )
