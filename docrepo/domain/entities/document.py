from __future__ import annotations

from datetime import datetime, timezone
from typing import Protocol, runtime_checkable

from pydantic import BaseModel, ConfigDict, Field


@runtime_checkable
class Identity(Protocol):
    """Fields every stored entity carries."""

    id: str
    owner_id: str
    discriminator: str
    etag: str
    timestamp: int


@runtime_checkable
class HasParent(Protocol):
    """Capability of entities owned by another entity (e.g. comments of a note)."""

    parent_id: str
    parent_discriminator: str


class DocumentIdentity(BaseModel):
    """Base model for an owned document.

    Field names follow Python conventions; the aliases are the fixed keys
    used in stored documents (``pk``, ``_etag``, ``_ts``).

    >>> note = DocumentIdentity(owner_id="u1")
    >>> note.model_dump(by_alias=True)["pk"]
    'u1'
    """

    id: str = ""
    owner_id: str = Field(default="", alias="pk")
    discriminator: str = ""
    etag: str = Field(default="", alias="_etag")
    timestamp: int = Field(default=0, alias="_ts")

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    @property
    def partition_key(self) -> str:
        return self.owner_id

    @property
    def modified_at(self) -> datetime | None:
        if not self.timestamp:
            return None
        return datetime.fromtimestamp(self.timestamp, tz=timezone.utc)


class ParentedDocument(DocumentIdentity):
    """Owned document that also points at a parent document."""

    parent_id: str = Field(default="", alias="parentId")
    parent_discriminator: str = Field(default="", alias="parentDiscriminator")
