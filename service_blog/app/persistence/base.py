"""
Document store interface used by the blog and user services.
"""

import re
import uuid
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

Document = Dict[str, Any]

_ID_PATTERN = re.compile(r"^[0-9a-f]{32}$")


def new_document_id() -> str:
    return uuid.uuid4().hex


def is_valid_document_id(value: str) -> bool:
    return bool(_ID_PATTERN.match(value))


class DocumentStore(ABC):
    """CRUD over JSON documents grouped into named collections.

    Documents carry their identifier under ``id``. Filters are equality
    matches on top-level fields. Implementations raise
    ``ServiceUnavailableError`` when the backing store cannot be reached.
    """

    async def start(self):
        """Open connections and prepare storage."""

    async def stop(self):
        """Release connections."""

    @abstractmethod
    async def ping(self) -> bool:
        """True when the store answers."""

    @abstractmethod
    async def insert(self, collection: str, document: Document) -> Document:
        """Store a new document, assigning an id; returns the stored copy."""

    @abstractmethod
    async def get(self, collection: str, document_id: str) -> Optional[Document]:
        """Fetch a document by id."""

    @abstractmethod
    async def find(self, collection: str, **filters: Any) -> List[Document]:
        """Documents matching every filter, oldest first."""

    async def find_one(self, collection: str, **filters: Any) -> Optional[Document]:
        matches = await self.find(collection, **filters)
        return matches[0] if matches else None

    @abstractmethod
    async def update(self, collection: str, document_id: str, fields: Document) -> Optional[Document]:
        """Merge ``fields`` into a document; None when it does not exist."""

    @abstractmethod
    async def delete(self, collection: str, document_id: str) -> bool:
        """Remove a document; False when it did not exist."""
