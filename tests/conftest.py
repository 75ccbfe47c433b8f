from __future__ import annotations

import logging
from collections.abc import Generator

import pytest
from fakes import CountingClient, Comment, Note

from docrepo.config.settings import RepositorySettings
from docrepo.logging_config import LOG_NAME
from docrepo.repositories.owned import OwnedItemRepository
from docrepo.repositories.parented import ParentedItemRepository


@pytest.fixture(autouse=True)
def reset_docrepo_logger() -> Generator[None, None, None]:
    """Keep ``docrepo`` records flowing to caplog whatever get_logger() did."""
    logger = logging.getLogger(LOG_NAME)
    yield
    for handler in logger.handlers[:]:
        logger.removeHandler(handler)
        handler.close()
    logger.propagate = True
    logger.setLevel(logging.NOTSET)


@pytest.fixture
def settings() -> RepositorySettings:
    return RepositorySettings(
        database_name="appdb",
        container_name="items",
        create_structures=True,
        bulk_base_delay_seconds=0.0,
    )


@pytest.fixture
def client() -> CountingClient:
    return CountingClient()


@pytest.fixture
def notes(client: CountingClient, settings: RepositorySettings) -> OwnedItemRepository[Note]:
    return OwnedItemRepository(client, settings, factory=Note.model_validate, discriminator="Note")


@pytest.fixture
def comments(
    client: CountingClient, settings: RepositorySettings
) -> ParentedItemRepository[Comment]:
    return ParentedItemRepository(
        client, settings, factory=Comment.model_validate, discriminator="Comment"
    )


class FakeClock:
    """Stands in for the ``time`` module the stores stamp ``_ts`` from."""

    def __init__(self, now: float = 1_700_000_000.0, step: float = 0.0) -> None:
        self.now = now
        self.step = step

    def time(self) -> float:
        current = self.now
        self.now += self.step
        return current

    def advance(self, seconds: float = 1.0) -> None:
        self.now += seconds


@pytest.fixture
def clock(monkeypatch: pytest.MonkeyPatch) -> FakeClock:
    """Frozen wall clock; tests move it with ``advance()``."""
    fake = FakeClock()
    monkeypatch.setattr("docrepo.store.base.time", fake)
    return fake


@pytest.fixture
def ticking_clock(monkeypatch: pytest.MonkeyPatch) -> FakeClock:
    """Wall clock moving one second per write."""
    fake = FakeClock(step=1.0)
    monkeypatch.setattr("docrepo.store.base.time", fake)
    return fake
