from enum import Enum

from pydantic import BaseModel


class CollectionState(str, Enum):
    """Resolution state of the cached collection id."""

    UNRESOLVED = "unresolved"
    RESOLVING = "resolving"
    RESOLVED = "resolved"


class Collection(BaseModel):
    """A collection as listed by the vector store. id is assigned by the store."""

    id: str | None = None
    name: str
    metadata: dict | None = None
