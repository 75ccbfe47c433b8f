from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Any, Iterable, Mapping, Optional


@dataclass(frozen=True)
class Filter:
    """Equality predicate on one document field."""

    field: str
    value: Any

    def matches(self, document: Mapping[str, Any]) -> bool:
        return self.field in document and document[self.field] == self.value


@dataclass(frozen=True)
class Ordering:
    field: str
    descending: bool = False


@dataclass(frozen=True)
class Query:
    """Immutable predicate + ordering evaluated by a store adapter.

    Queries are composed by chaining; every call returns a new query.

    >>> q = Query().where("discriminator", "Note").order_by("_ts", descending=True)
    >>> str(q)
    "SELECT * FROM c WHERE c.discriminator = 'Note' ORDER BY c._ts DESC"
    """

    filters: tuple[Filter, ...] = ()
    ordering: Optional[Ordering] = None

    def where(self, field: str, value: Any) -> Query:
        return replace(self, filters=self.filters + (Filter(field, value),))

    def order_by(self, field: str, descending: bool = False) -> Query:
        return replace(self, ordering=Ordering(field, descending))

    def matches(self, document: Mapping[str, Any]) -> bool:
        return all(f.matches(document) for f in self.filters)

    def apply(self, documents: Iterable[Mapping[str, Any]]) -> list[Mapping[str, Any]]:
        """Filter and order ``documents`` the way a store would."""
        selected = [doc for doc in documents if self.matches(doc)]
        if self.ordering is not None:
            key = self.ordering.field
            # Documents missing the field sort as if it were empty
            selected.sort(
                key=lambda doc: (doc.get(key) is not None, doc.get(key) or 0),
                reverse=self.ordering.descending,
            )
        return selected

    def __str__(self) -> str:
        text = "SELECT * FROM c"
        if self.filters:
            clauses = " AND ".join(f"c.{f.field} = {f.value!r}" for f in self.filters)
            text = f"{text} WHERE {clauses}"
        if self.ordering is not None:
            direction = "DESC" if self.ordering.descending else "ASC"
            text = f"{text} ORDER BY c.{self.ordering.field} {direction}"
        return text
