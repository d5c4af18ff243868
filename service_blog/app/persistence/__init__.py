"""
Document persistence for the Blog API.
"""

from shared.config import BaseConfig
from service_blog.app.persistence.base import DocumentStore, is_valid_document_id
from service_blog.app.persistence.memory import InMemoryDocumentStore


def create_document_store(config: BaseConfig) -> DocumentStore:
    """Build the store selected by ``document_store``."""
    if config.document_store == "postgres":
        from service_blog.app.persistence.postgres import PostgresDocumentStore
        return PostgresDocumentStore(config.postgres_dsn)
    return InMemoryDocumentStore()


__all__ = ["DocumentStore", "InMemoryDocumentStore", "create_document_store", "is_valid_document_id"]
