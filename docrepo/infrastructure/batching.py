from __future__ import annotations

from typing import Iterable, TypeVar

T = TypeVar("T")


def batch_count(item_count: int, chunk_size: int) -> int:
    """Return how many chunks ``item_count`` items split into."""
    if chunk_size < 1:
        raise ValueError("chunk_size cannot be less than 1")
    full, leftovers = divmod(item_count, chunk_size)
    return full + (1 if leftovers else 0)


def get_batches(items: Iterable[T], chunk_size: int) -> list[list[T]]:
    """Split ``items`` into ordered chunks of ``chunk_size``.

    The last chunk may be shorter. An empty input yields an empty list.

    >>> [len(b) for b in get_batches(range(120), 50)]
    [50, 50, 20]
    """
    if chunk_size < 1:
        raise ValueError("chunk_size cannot be less than 1")
    values = list(items)
    return [values[start : start + chunk_size] for start in range(0, len(values), chunk_size)]
