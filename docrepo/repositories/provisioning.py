from __future__ import annotations

import logging
from typing import Optional, Sequence

from docrepo.config.settings import RepositorySettings
from docrepo.errors import HTTP_CONFLICT, ProvisioningError, StoreError
from docrepo.store.base import ContainerHandle, DatabaseHandle, StoreClient

logger = logging.getLogger(__name__)


class ContainerProvisioner:
    """Lazily attach to (and optionally create) the database and container.

    Handles are cached after the first successful :meth:`initialize`.
    Concurrent first calls are not serialized; the existence checks and the
    409 handling below keep redundant provisioning harmless.
    """

    def __init__(
        self, client: StoreClient, settings: RepositorySettings, key_paths: Sequence[str]
    ) -> None:
        self._client = client
        self._settings = settings
        self._key_paths = list(key_paths)
        self._database: Optional[DatabaseHandle] = None
        self._container: Optional[ContainerHandle] = None

    @property
    def is_initialized(self) -> bool:
        return self._database is not None and self._container is not None

    async def initialize(self) -> ContainerHandle:
        if self._database is not None and self._container is not None:
            return self._container

        database_name = self._settings.database_name
        container_name = self._settings.container_name
        try:
            if self._settings.create_structures:
                database = await self._ensure_database()
                container = await self._ensure_container(database)
            else:
                database = await self._client.get_database(database_name)
                container = await database.get_container(container_name)
        except StoreError as exc:
            logger.error(
                "Failed to provision container '%s' in database '%s': %s",
                container_name,
                database_name,
                exc,
            )
            raise ProvisioningError(
                f"Could not initialize container '{container_name}' in database "
                f"'{database_name}': {exc}",
                database_name=database_name,
                container_name=container_name,
            ) from exc

        self._database = database
        self._container = container
        return container

    async def _ensure_database(self) -> DatabaseHandle:
        name = self._settings.database_name
        if name in await self._client.list_databases():
            return await self._client.get_database(name)
        logger.info(
            "Creating database '%s' with throughput %s", name, self._settings.database_throughput
        )
        try:
            return await self._client.create_database(name, self._settings.database_throughput)
        except StoreError as exc:
            if exc.status_code != HTTP_CONFLICT:
                raise
            # Another initializer created it between the list and the create
            return await self._client.get_database(name)

    async def _ensure_container(self, database: DatabaseHandle) -> ContainerHandle:
        name = self._settings.container_name
        if name in await database.list_containers():
            return await database.get_container(name)
        logger.info(
            "Creating container '%s' in database '%s' with partition key '%s'",
            name,
            database.name,
            ",".join(self._key_paths),
        )
        try:
            return await database.create_container(name, self._key_paths)
        except StoreError as exc:
            if exc.status_code != HTTP_CONFLICT:
                raise
            return await database.get_container(name)
