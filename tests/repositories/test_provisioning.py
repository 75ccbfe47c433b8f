from __future__ import annotations

import logging
from typing import Optional

import pytest
from fakes import CountingClient

from docrepo.config.settings import RepositorySettings
from docrepo.errors import NotFoundError, ProvisioningError, StoreError
from docrepo.repositories.provisioning import ContainerProvisioner
from docrepo.store.memory import InMemoryDatabase, InMemoryStoreClient

PATHS = ["/pk", "/discriminator"]


class _BlindDatabase(InMemoryDatabase):
    """Never lists its containers, like a reader racing another initializer."""

    async def list_containers(self) -> list[str]:
        return []


class _BlindClient(InMemoryStoreClient):
    async def list_databases(self) -> list[str]:
        return []


class _BrokenClient(InMemoryStoreClient):
    async def create_database(self, name: str, throughput: Optional[int] = None):
        raise StoreError("service unavailable", status_code=503)


@pytest.mark.asyncio
async def test_initialize_twice_creates_once(
    client: CountingClient, settings: RepositorySettings
) -> None:
    provisioner = ContainerProvisioner(client, settings, PATHS)
    first = await provisioner.initialize()
    second = await provisioner.initialize()
    assert first is second
    assert provisioner.is_initialized
    assert client.create_database_calls == 1
    assert client.create_container_calls == 1
    assert first.key_paths == tuple(PATHS)


@pytest.mark.asyncio
async def test_existing_structures_are_reused(
    client: CountingClient, settings: RepositorySettings
) -> None:
    await ContainerProvisioner(client, settings, PATHS).initialize()
    again = ContainerProvisioner(client, settings, PATHS)
    await again.initialize()
    assert client.create_database_calls == 1
    assert client.create_container_calls == 1


@pytest.mark.asyncio
async def test_disabled_provisioning_attaches_without_creating(
    client: CountingClient, settings: RepositorySettings
) -> None:
    await ContainerProvisioner(client, settings, PATHS).initialize()
    attach_only = settings.model_copy(update={"create_structures": False})
    container = await ContainerProvisioner(client, attach_only, PATHS).initialize()
    assert container.name == "items"
    assert client.create_database_calls == 1


@pytest.mark.asyncio
async def test_disabled_provisioning_missing_database_fails(
    settings: RepositorySettings, caplog: pytest.LogCaptureFixture
) -> None:
    attach_only = settings.model_copy(update={"create_structures": False})
    provisioner = ContainerProvisioner(InMemoryStoreClient(), attach_only, PATHS)
    with caplog.at_level(logging.ERROR):
        with pytest.raises(ProvisioningError) as exc:
            await provisioner.initialize()
    assert isinstance(exc.value.__cause__, NotFoundError)
    assert (exc.value.database_name, exc.value.container_name) == ("appdb", "items")
    assert not provisioner.is_initialized
    assert any("appdb" in r.getMessage() for r in caplog.records)


@pytest.mark.asyncio
async def test_conflict_on_create_attaches_to_winner(settings: RepositorySettings) -> None:
    client = _BlindClient()
    database = _BlindDatabase("appdb", throughput=400)
    client._databases["appdb"] = database
    existing = await database.create_container("items", PATHS)

    container = await ContainerProvisioner(client, settings, PATHS).initialize()
    assert container is existing


@pytest.mark.asyncio
async def test_other_creation_errors_become_provisioning_error(
    settings: RepositorySettings,
) -> None:
    provisioner = ContainerProvisioner(_BrokenClient(), settings, PATHS)
    with pytest.raises(ProvisioningError, match="service unavailable") as exc:
        await provisioner.initialize()
    assert exc.value.__cause__.status_code == 503


@pytest.mark.asyncio
async def test_database_created_with_configured_throughput(settings: RepositorySettings) -> None:
    client = InMemoryStoreClient()
    await ContainerProvisioner(client, settings.model_copy(update={"database_throughput": 1000}), PATHS).initialize()
    assert (await client.get_database("appdb")).throughput == 1000
