from __future__ import annotations

import asyncio
import logging
from typing import Iterable, Optional

from docrepo.errors import NotFoundError
from docrepo.store.base import DISCRIMINATOR_FIELD, TIMESTAMP_FIELD

from .bulk import BulkOperationCoordinator
from .core import RepositoryCore, ScopedQuery, T

logger = logging.getLogger(__name__)


class OwnedItemRepository(RepositoryCore[T]):
    """Repository for entities that belong to one owner.

    The owner id is the first level of the partition key, so every
    owner-scoped call here is a single-partition operation.
    """

    def _coordinator(
        self, max_concurrency: Optional[int], max_retries: Optional[int]
    ) -> BulkOperationCoordinator[T]:
        return BulkOperationCoordinator(
            max_concurrency=(
                self.settings.bulk_max_concurrency if max_concurrency is None else max_concurrency
            ),
            max_retries=self.settings.bulk_max_retries if max_retries is None else max_retries,
            base_delay=self.settings.bulk_base_delay_seconds,
        )

    async def get_all(self, owner_id: Optional[str] = None) -> list[T]:
        """Items of one owner, newest first; all owners when ``owner_id`` is None."""
        if owner_id is None:
            return await super().get_all()
        scoped = self.scoped_query(owner_id)
        scoped = ScopedQuery(
            scoped.query.order_by(TIMESTAMP_FIELD, descending=True), scoped.partition_key
        )
        return await self.get_results(scoped, self.query_description("get_all"))

    async def get_by_id(self, item_id: str, *, owner_id: Optional[str] = None) -> Optional[T]:
        """Point read when ``owner_id`` is given, cross-partition lookup otherwise."""
        if owner_id is None:
            return await super().get_by_id(item_id)
        if not item_id or not owner_id:
            return None

        container = await self.get_container()
        key = self.partition_keys.build_key(owner_id, self.discriminator)
        try:
            response = await container.read(item_id, key)
        except NotFoundError:
            return None
        self._track(self.query_description("get_by_id"), response)
        document = response.document
        # A single-level key does not separate kinds; another kind may share the id
        if document is None or document.get(DISCRIMINATOR_FIELD) != self.discriminator:
            return None
        return self._factory(document)

    async def delete_item(self, item: T) -> None:
        """Delete a loaded item using its own partition key."""
        await self._delete(item)

    async def save_all(
        self,
        items: Iterable[T],
        *,
        max_concurrency: Optional[int] = None,
        max_retries: Optional[int] = None,
        cancel: Optional[asyncio.Event] = None,
    ) -> int:
        """Save every item concurrently, returning how many were saved.

        Raises :class:`~docrepo.errors.AggregateBulkError` listing the items
        that could not be saved.
        """
        coordinator = self._coordinator(max_concurrency, max_retries)
        return await coordinator.run(
            items, self.save, cancel=cancel, description=self.query_description("save_all")
        )

    async def delete_all_by_owner_id(
        self,
        owner_id: str,
        *,
        max_concurrency: Optional[int] = None,
        max_retries: Optional[int] = None,
        cancel: Optional[asyncio.Event] = None,
    ) -> int:
        """Delete every item of ``owner_id`` with this discriminator."""
        items = await self.get_all(owner_id)
        if not items:
            logger.info("No %s items to delete for owner %s", self.discriminator, owner_id)
            return 0
        coordinator = self._coordinator(max_concurrency, max_retries)
        return await coordinator.run(
            items,
            self.delete_item,
            cancel=cancel,
            description=self.query_description("delete_all_by_owner_id"),
        )
