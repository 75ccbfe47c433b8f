from __future__ import annotations

import asyncio
from pathlib import Path

import pytest
from fakes import Note

from docrepo.config.settings import RepositorySettings
from docrepo.errors import HTTP_CONFLICT, HTTP_PRECONDITION_FAILED, NotFoundError, StoreError
from docrepo.infrastructure.partition_keys import PartitionKey
from docrepo.repositories.owned import OwnedItemRepository
from docrepo.store.sqlite import SqliteStoreClient
from docrepo.store.query import Query

PATHS = ["/pk", "/discriminator"]
KEY = PartitionKey(("u1", "Note"))


def _doc(item_id: str, owner: str = "u1", **extra: object) -> dict:
    return {"id": item_id, "pk": owner, "discriminator": "Note", **extra}


async def _container(client: SqliteStoreClient):
    database = await client.create_database("app", throughput=400)
    return await database.create_container("items", PATHS)


@pytest.mark.asyncio
async def test_upsert_read_delete_roundtrip(tmp_path: Path) -> None:
    client = SqliteStoreClient.connect(tmp_path / "store.sqlite3")
    try:
        container = await _container(client)
        created = await container.upsert(_doc("a", title="hello"), KEY)
        assert created.status_code == 201
        read = await container.read("a", KEY)
        assert read.document["title"] == "hello"
        assert read.etag == created.etag
        deleted = await container.delete("a", KEY)
        assert deleted.status_code == 204
        with pytest.raises(NotFoundError):
            await container.read("a", KEY)
        with pytest.raises(NotFoundError):
            await container.delete("a", KEY)
    finally:
        client.close()


@pytest.mark.asyncio
async def test_stale_etag_is_precondition_failure(tmp_path: Path) -> None:
    client = SqliteStoreClient.connect(tmp_path / "store.sqlite3")
    try:
        container = await _container(client)
        first = await container.upsert(_doc("a"), KEY)
        second = await container.upsert(_doc("a"), KEY, if_match=first.etag)
        assert second.status_code == 200
        with pytest.raises(StoreError) as exc:
            await container.upsert(_doc("a"), KEY, if_match=first.etag)
        assert exc.value.status_code == HTTP_PRECONDITION_FAILED
    finally:
        client.close()


@pytest.mark.asyncio
async def test_duplicate_database_and_container_conflict(tmp_path: Path) -> None:
    client = SqliteStoreClient.connect(tmp_path / "store.sqlite3")
    try:
        database = await client.create_database("app")
        with pytest.raises(StoreError) as exc:
            await client.create_database("app")
        assert exc.value.status_code == HTTP_CONFLICT
        await database.create_container("items", PATHS)
        with pytest.raises(StoreError) as exc:
            await database.create_container("items", PATHS)
        assert exc.value.status_code == HTTP_CONFLICT
        with pytest.raises(NotFoundError):
            await client.get_database("missing")
        with pytest.raises(NotFoundError):
            await database.get_container("missing")
    finally:
        client.close()


@pytest.mark.asyncio
async def test_invalid_batch_writes_nothing(tmp_path: Path) -> None:
    client = SqliteStoreClient.connect(tmp_path / "store.sqlite3")
    try:
        container = await _container(client)
        with pytest.raises(StoreError):
            await container.execute_batch([_doc("a"), _doc("b", owner="u2")], KEY)
        pages = [p async for p in container.query(Query(), None)]
        assert pages[0].items == []
        response = await container.execute_batch([_doc("a"), _doc("b")], KEY)
        assert len(response.documents) == 2
    finally:
        client.close()


@pytest.mark.asyncio
async def test_query_filters_scopes_and_pages(tmp_path: Path) -> None:
    client = SqliteStoreClient.connect(tmp_path / "store.sqlite3")
    try:
        container = await _container(client)
        for i in range(3):
            await container.upsert(_doc(f"a{i}"), KEY)
        other = PartitionKey(("u2", "Note"))
        await container.upsert(_doc("b0", owner="u2"), other)

        scoped = [p async for p in container.query(Query(), KEY, page_size=2)]
        assert [len(p.items) for p in scoped] == [2, 1]
        assert scoped[0].continuation_token == "2"

        unscoped = [p async for p in container.query(Query().where("id", "b0"), None)]
        assert [d["pk"] for d in unscoped[0].items] == ["u2"]
        assert "cross partition" in unscoped[0].diagnostics
    finally:
        client.close()


@pytest.mark.asyncio
async def test_documents_survive_reconnect(tmp_path: Path, ticking_clock: None) -> None:
    path = tmp_path / "store.sqlite3"
    settings = RepositorySettings(database_name="app", container_name="items", create_structures=True)

    client = SqliteStoreClient.connect(path)
    try:
        repo = OwnedItemRepository(client, settings, factory=Note.model_validate, discriminator="Note")
        await repo.save(Note(owner_id="u1", title="first"))
        await repo.save(Note(owner_id="u1", title="second"))
    finally:
        client.close()

    reopened = SqliteStoreClient.connect(path)
    try:
        attach_only = settings.model_copy(update={"create_structures": False})
        repo = OwnedItemRepository(
            reopened, attach_only, factory=Note.model_validate, discriminator="Note"
        )
        loaded = await repo.get_all("u1")
        assert [n.title for n in loaded] == ["second", "first"]
        assert all(n.etag and n.timestamp for n in loaded)
    finally:
        reopened.close()


@pytest.mark.asyncio
async def test_lookups_wait_off_the_event_loop(tmp_path: Path) -> None:
    client = SqliteStoreClient.connect(tmp_path / "store.sqlite3")
    try:
        database = await client.create_database("app")
        await database.create_container("items", PATHS)
        # Another writer holds the connection; the loop must keep running meanwhile
        client._lock.acquire()
        try:
            lookup = asyncio.create_task(client.get_database("app"))
            await asyncio.sleep(0.05)
            assert not lookup.done()
        finally:
            client._lock.release()
        found = await lookup
        container = await found.get_container("items")
        assert container.key_paths == tuple(PATHS)
    finally:
        client.close()
