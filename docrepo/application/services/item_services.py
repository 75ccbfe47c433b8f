from __future__ import annotations

from typing import Generic, Optional, Protocol, TypeVar

from docrepo.domain.entities.document import Identity

T = TypeVar("T", bound=Identity)


class _OwnedRepoProto(Protocol[T]):
    async def get_all(self, owner_id: Optional[str] = None) -> list[T]: ...

    async def get_by_id(self, item_id: str, *, owner_id: Optional[str] = None) -> Optional[T]: ...

    async def save(self, item: T) -> T: ...

    async def delete_item(self, item: T) -> None: ...


class _ParentedRepoProto(_OwnedRepoProto[T], Protocol[T]):
    async def get_all_by_parent_id(
        self, owner_id: str, parent_id: str, parent_discriminator: Optional[str] = None
    ) -> list[T]: ...


class OwnedItemService(Generic[T]):
    """Owner-scoped facade over an owned-item repository.

    Every call names the owner, so reads are single-partition.
    """

    def __init__(self, repository: _OwnedRepoProto[T]) -> None:
        self._repository = repository

    async def get_all(self, owner_id: str) -> list[T]:
        return await self._repository.get_all(owner_id)

    async def get_by_id(self, owner_id: str, item_id: str) -> Optional[T]:
        return await self._repository.get_by_id(item_id, owner_id=owner_id)

    async def save(self, item: T) -> T:
        if not item.owner_id:
            raise ValueError("item.owner_id is required")
        return await self._repository.save(item)

    async def delete(self, item: T) -> None:
        await self._repository.delete_item(item)


class ParentedItemService(OwnedItemService[T]):
    def __init__(self, repository: _ParentedRepoProto[T]) -> None:
        super().__init__(repository)
        self._parented = repository

    async def get_all_by_parent_id(
        self, owner_id: str, parent_id: str, parent_discriminator: Optional[str] = None
    ) -> list[T]:
        return await self._parented.get_all_by_parent_id(
            owner_id, parent_id, parent_discriminator
        )
