from __future__ import annotations

import pytest
from pydantic import ValidationError

from docrepo.config.settings import (
    DEFAULT_BULK_MAX_CONCURRENCY,
    RepositorySettings,
    load_settings,
)
from docrepo.errors import ConfigurationError
from docrepo.infrastructure.partition_keys import DEFAULT_PARTITION_KEY

BASE_ENV = {"DOCREPO_DATABASE_NAME": "appdb", "DOCREPO_CONTAINER_NAME": "items"}


def test_defaults_from_minimal_environment() -> None:
    settings = load_settings(BASE_ENV)
    assert settings.database_name == "appdb"
    assert settings.container_name == "items"
    assert settings.partition_key == DEFAULT_PARTITION_KEY
    assert settings.hierarchical_partition_key is True
    assert settings.create_structures is False
    assert settings.database_throughput == 400
    assert settings.bulk_max_concurrency == DEFAULT_BULK_MAX_CONCURRENCY
    assert settings.bulk_max_retries == 5
    assert settings.bulk_base_delay_seconds == pytest.approx(0.1)


def test_environment_overrides() -> None:
    env = {
        **BASE_ENV,
        "DOCREPO_PARTITION_KEY": "/tenant",
        "DOCREPO_HIERARCHICAL_PARTITION_KEY": "false",
        "DOCREPO_CREATE_STRUCTURES": "yes",
        "DOCREPO_DATABASE_THROUGHPUT": "1000",
        "DOCREPO_QUERY_PAGE_SIZE": "25",
        "DOCREPO_BULK_MAX_CONCURRENCY": "4",
        "DOCREPO_BULK_MAX_RETRIES": "0",
        "DOCREPO_BULK_BASE_DELAY_SECONDS": "0.5",
    }
    settings = load_settings(env)
    assert settings.partition_key == "/tenant"
    assert settings.hierarchical_partition_key is False
    assert settings.create_structures is True
    assert settings.database_throughput == 1000
    assert settings.query_page_size == 25
    assert settings.bulk_max_concurrency == 4
    assert settings.bulk_max_retries == 0
    assert settings.bulk_base_delay_seconds == pytest.approx(0.5)


@pytest.mark.parametrize("missing", ["DOCREPO_DATABASE_NAME", "DOCREPO_CONTAINER_NAME"])
def test_missing_names_raise_configuration_error(missing: str) -> None:
    env = {k: v for k, v in BASE_ENV.items() if k != missing}
    with pytest.raises(ConfigurationError, match=missing):
        load_settings(env)


def test_bad_numbers_raise_configuration_error() -> None:
    with pytest.raises(ConfigurationError, match="DOCREPO_BULK_MAX_RETRIES"):
        load_settings({**BASE_ENV, "DOCREPO_BULK_MAX_RETRIES": "many"})
    with pytest.raises(ConfigurationError, match="DOCREPO_BULK_BASE_DELAY_SECONDS"):
        load_settings({**BASE_ENV, "DOCREPO_BULK_BASE_DELAY_SECONDS": "soon"})


def test_settings_are_immutable_and_validated() -> None:
    settings = RepositorySettings(database_name=" appdb ", container_name="items")
    assert settings.database_name == "appdb"
    with pytest.raises(ValidationError):
        settings.database_name = "other"
    with pytest.raises(ValidationError):
        RepositorySettings(database_name="  ", container_name="items")
    with pytest.raises(ValidationError):
        RepositorySettings(database_name="a", container_name="b", bulk_max_concurrency=0)


def test_reads_process_environment_after_dotenv(monkeypatch: pytest.MonkeyPatch) -> None:
    calls: list[bool] = []

    def fake_load_dotenv() -> bool:
        calls.append(True)
        monkeypatch.setenv("DOCREPO_CONTAINER_NAME", "from-dotenv")
        return True

    monkeypatch.setattr("docrepo.config.settings.load_dotenv", fake_load_dotenv)
    monkeypatch.setenv("DOCREPO_DATABASE_NAME", "from-env")
    monkeypatch.delenv("DOCREPO_CONTAINER_NAME", raising=False)
    settings = load_settings()
    assert calls == [True]
    assert settings.database_name == "from-env"
    assert settings.container_name == "from-dotenv"
