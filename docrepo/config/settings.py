"""Repository settings.

One immutable settings value is passed to every repository at construction.
It can be built directly or from ``DOCREPO_*`` environment variables, which
are loaded from a ``.env`` file using ``python-dotenv``.
"""

from __future__ import annotations

import os
from typing import Mapping, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field, field_validator

from docrepo.errors import ConfigurationError
from docrepo.infrastructure.partition_keys import DEFAULT_PARTITION_KEY

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------
ENV_PREFIX = "DOCREPO_"
DEFAULT_THROUGHPUT = 400
DEFAULT_QUERY_PAGE_SIZE = 100
DEFAULT_BULK_MAX_CONCURRENCY = 10
DEFAULT_BULK_MAX_RETRIES = 5
DEFAULT_BULK_BASE_DELAY_SECONDS = 0.1
_TRUE_SET = {"1", "true", "yes", "on"}


class RepositorySettings(BaseModel):
    """Immutable settings object shared by the repositories of one container."""

    database_name: str
    container_name: str
    partition_key: str = DEFAULT_PARTITION_KEY
    hierarchical_partition_key: bool = True
    create_structures: bool = False
    database_throughput: Optional[int] = Field(default=DEFAULT_THROUGHPUT, ge=1)
    query_page_size: int = Field(default=DEFAULT_QUERY_PAGE_SIZE, ge=1)
    bulk_max_concurrency: int = Field(default=DEFAULT_BULK_MAX_CONCURRENCY, ge=1)
    bulk_max_retries: int = Field(default=DEFAULT_BULK_MAX_RETRIES, ge=0)
    bulk_base_delay_seconds: float = Field(default=DEFAULT_BULK_BASE_DELAY_SECONDS, ge=0)

    model_config = ConfigDict(frozen=True)

    @field_validator("database_name", "container_name")
    @classmethod
    def _not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("name cannot be empty")
        return v.strip()


def _env_flag(value: Optional[str], default: bool) -> bool:
    if value is None:
        return default
    return value.strip().lower() in _TRUE_SET


def _env_int(env: Mapping[str, str], name: str, default: Optional[int]) -> Optional[int]:
    raw = env.get(ENV_PREFIX + name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigurationError(f"expected an integer, got {raw!r}", key=ENV_PREFIX + name) from None


def load_settings(environ: Optional[Mapping[str, str]] = None) -> RepositorySettings:
    """Construct :class:`RepositorySettings` from ``DOCREPO_*`` variables.

    ``environ`` defaults to ``os.environ`` after loading a ``.env`` file.
    """

    if environ is None:
        load_dotenv()
        environ = os.environ
    env = environ

    database_name = env.get(ENV_PREFIX + "DATABASE_NAME", "")
    container_name = env.get(ENV_PREFIX + "CONTAINER_NAME", "")
    if not database_name.strip():
        raise ConfigurationError("database name is required", key=ENV_PREFIX + "DATABASE_NAME")
    if not container_name.strip():
        raise ConfigurationError("container name is required", key=ENV_PREFIX + "CONTAINER_NAME")

    delay_raw = env.get(ENV_PREFIX + "BULK_BASE_DELAY_SECONDS")
    try:
        base_delay = float(delay_raw) if delay_raw else DEFAULT_BULK_BASE_DELAY_SECONDS
    except ValueError:
        raise ConfigurationError(
            f"expected a number, got {delay_raw!r}", key=ENV_PREFIX + "BULK_BASE_DELAY_SECONDS"
        ) from None

    return RepositorySettings(
        database_name=database_name,
        container_name=container_name,
        partition_key=env.get(ENV_PREFIX + "PARTITION_KEY", DEFAULT_PARTITION_KEY),
        hierarchical_partition_key=_env_flag(
            env.get(ENV_PREFIX + "HIERARCHICAL_PARTITION_KEY"), True
        ),
        create_structures=_env_flag(env.get(ENV_PREFIX + "CREATE_STRUCTURES"), False),
        database_throughput=_env_int(env, "DATABASE_THROUGHPUT", DEFAULT_THROUGHPUT),
        query_page_size=_env_int(env, "QUERY_PAGE_SIZE", DEFAULT_QUERY_PAGE_SIZE),
        bulk_max_concurrency=_env_int(env, "BULK_MAX_CONCURRENCY", DEFAULT_BULK_MAX_CONCURRENCY),
        bulk_max_retries=_env_int(env, "BULK_MAX_RETRIES", DEFAULT_BULK_MAX_RETRIES),
        bulk_base_delay_seconds=base_delay,
    )
