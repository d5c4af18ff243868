"""
In-process document store for local runs and tests.
"""

import copy
from collections import OrderedDict
from typing import Any, Dict, List, Optional

from shared.logging import get_logger
from service_blog.app.persistence.base import Document, DocumentStore, new_document_id


class InMemoryDocumentStore(DocumentStore):
    """Dictionary-backed document store. Returned documents are copies."""

    def __init__(self):
        self.logger = get_logger("blog.persistence.memory")
        self._collections: Dict[str, "OrderedDict[str, Document]"] = {}
        self.operation_count = 0

    def _collection(self, name: str) -> "OrderedDict[str, Document]":
        self.operation_count += 1
        return self._collections.setdefault(name, OrderedDict())

    async def start(self):
        self.logger.info("In-memory document store started")

    async def ping(self) -> bool:
        return True

    async def insert(self, collection: str, document: Document) -> Document:
        stored = copy.deepcopy(document)
        stored["id"] = new_document_id()
        self._collection(collection)[stored["id"]] = stored
        return copy.deepcopy(stored)

    async def get(self, collection: str, document_id: str) -> Optional[Document]:
        document = self._collection(collection).get(document_id)
        return copy.deepcopy(document) if document is not None else None

    async def find(self, collection: str, **filters: Any) -> List[Document]:
        return [
            copy.deepcopy(document)
            for document in self._collection(collection).values()
            if all(document.get(field) == value for field, value in filters.items())
        ]

    async def update(self, collection: str, document_id: str, fields: Document) -> Optional[Document]:
        document = self._collection(collection).get(document_id)
        if document is None:
            return None
        document.update(copy.deepcopy({k: v for k, v in fields.items() if k != "id"}))
        return copy.deepcopy(document)

    async def delete(self, collection: str, document_id: str) -> bool:
        return self._collection(collection).pop(document_id, None) is not None
