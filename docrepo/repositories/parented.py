from __future__ import annotations

from typing import Optional

from docrepo.store.base import TIMESTAMP_FIELD

from .core import ScopedQuery, T
from .owned import OwnedItemRepository

PARENT_ID_FIELD = "parentId"
PARENT_DISCRIMINATOR_FIELD = "parentDiscriminator"


class ParentedItemRepository(OwnedItemRepository[T]):
    """Owned items that also reference a parent item of the same owner.

    Entities must provide ``parent_id`` and ``parent_discriminator``
    (see :class:`~docrepo.domain.entities.document.HasParent`).
    """

    async def get_all_by_parent_id(
        self, owner_id: str, parent_id: str, parent_discriminator: Optional[str] = None
    ) -> list[T]:
        """Children of one parent, newest first, within the owner's partition."""
        scoped = self.scoped_query(owner_id)
        query = scoped.query.where(PARENT_ID_FIELD, parent_id)
        if parent_discriminator:
            query = query.where(PARENT_DISCRIMINATOR_FIELD, parent_discriminator)
        query = query.order_by(TIMESTAMP_FIELD, descending=True)
        return await self.get_results(
            ScopedQuery(query, scoped.partition_key),
            self.query_description("get_all_by_parent_id"),
        )
