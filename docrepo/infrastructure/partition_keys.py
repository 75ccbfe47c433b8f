from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Optional, Protocol

from docrepo.errors import ConfigurationError

DEFAULT_PARTITION_KEY = "/pk,/discriminator"


class _Keyed(Protocol):
    owner_id: str
    discriminator: str


@dataclass(frozen=True)
class PartitionKey:
    """Routing value for a document: one or two string segments."""

    values: tuple[str, ...]

    def __len__(self) -> int:
        return len(self.values)

    @property
    def is_hierarchical(self) -> bool:
        return len(self.values) > 1

    def __str__(self) -> str:
        return json.dumps(list(self.values))


def parse_key_paths(definition: str) -> list[str]:
    """Split a comma-separated key-path definition such as ``/pk,/discriminator``."""
    return [segment.strip() for segment in (definition or "").split(",") if segment.strip()]


class PartitionKeyStrategy:
    """Build one- or two-segment partition keys from owner/discriminator.

    >>> strategy = PartitionKeyStrategy("/pk,/discriminator", hierarchical=True)
    >>> strategy.build_key("owner-1", "Note").values
    ('owner-1', 'Note')
    >>> strategy.build_key("owner-1", "Note", hierarchical=False).values
    ('owner-1',)
    """

    def __init__(self, definition: str = DEFAULT_PARTITION_KEY, hierarchical: bool = True) -> None:
        paths = parse_key_paths(definition)
        if not paths:
            raise ConfigurationError("partition key definition is empty", key="partition_key")
        self._paths = tuple(paths)
        self._hierarchical = bool(hierarchical)

    @property
    def paths(self) -> tuple[str, ...]:
        return self._paths

    @property
    def hierarchical(self) -> bool:
        """True when keys built with the default flag have two segments."""
        return self._hierarchical and len(self._paths) >= 2

    @property
    def container_key_paths(self) -> list[str]:
        """Key paths a container is created with for this strategy."""
        if self.hierarchical:
            return list(self._paths)
        return [self._paths[0]]

    def build_key(
        self, owner_id: str, discriminator: str, hierarchical: Optional[bool] = None
    ) -> PartitionKey:
        use_hierarchy = self._hierarchical if hierarchical is None else hierarchical
        if not use_hierarchy or len(self._paths) == 1:
            return PartitionKey((owner_id,))
        return PartitionKey((owner_id, discriminator))

    def key_for(self, item: _Keyed) -> PartitionKey:
        return self.build_key(item.owner_id, item.discriminator)
