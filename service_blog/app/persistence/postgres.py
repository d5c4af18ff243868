"""
PostgreSQL document store for the Blog API.
"""

import json
from typing import Any, List, Optional

import asyncpg

from shared.errors import ServiceUnavailableError
from shared.logging import get_logger
from shared.retry import RetryConfig, RetryError, retry_on_exception
from service_blog.app.persistence.base import Document, DocumentStore, new_document_id

STORE_ERRORS = (asyncpg.PostgresError, asyncpg.InterfaceError, OSError)


class PostgresDocumentStore(DocumentStore):
    """Documents stored as JSONB rows keyed by (collection, id)."""

    def __init__(self, dsn: str, min_size: int = 2, max_size: int = 10):
        self.dsn = dsn
        self.min_size = min_size
        self.max_size = max_size
        self.logger = get_logger("blog.persistence.postgres")
        self.pool: Optional[asyncpg.Pool] = None

    async def start(self):
        """Create the pool and the documents table."""
        try:
            self.pool = await self._create_pool()
            await self._create_tables()
        except (RetryError, *STORE_ERRORS) as e:
            self.logger.error("Failed to start PostgreSQL document store", error=str(e))
            raise ServiceUnavailableError("Database unavailable", str(e))

        self.logger.info("PostgreSQL document store started")

    @retry_on_exception(exceptions=STORE_ERRORS, config=RetryConfig(max_attempts=3, base_delay=1.0, max_delay=5.0))
    async def _create_pool(self) -> asyncpg.Pool:
        return await asyncpg.create_pool(
            self.dsn,
            min_size=self.min_size,
            max_size=self.max_size,
            command_timeout=30
        )

    async def stop(self):
        if self.pool:
            await self.pool.close()
            self.pool = None
            self.logger.info("PostgreSQL document store stopped")

    async def _create_tables(self):
        async with self.pool.acquire() as conn:
            await conn.execute("""
                CREATE TABLE IF NOT EXISTS documents (
                    collection VARCHAR(64) NOT NULL,
                    id VARCHAR(32) NOT NULL,
                    body JSONB NOT NULL,
                    created_at TIMESTAMP WITH TIME ZONE NOT NULL DEFAULT NOW(),
                    PRIMARY KEY (collection, id)
                );
            """)
            await conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_documents_body ON documents USING GIN (body);
            """)

    def _unavailable(self, operation: str, error: Exception) -> ServiceUnavailableError:
        self.logger.error("Document store operation failed", operation=operation, error=str(error))
        return ServiceUnavailableError("Database unavailable", "Please try again later")

    @staticmethod
    def _decode(body: Any) -> Document:
        return json.loads(body) if isinstance(body, str) else dict(body)

    async def ping(self) -> bool:
        if self.pool is None:
            return False
        try:
            async with self.pool.acquire() as conn:
                await conn.fetchval("SELECT 1")
            return True
        except STORE_ERRORS as e:
            self.logger.warning("Document store ping failed", error=str(e))
            return False

    async def insert(self, collection: str, document: Document) -> Document:
        stored = dict(document, id=new_document_id())
        try:
            async with self.pool.acquire() as conn:
                await conn.execute(
                    "INSERT INTO documents (collection, id, body) VALUES ($1, $2, $3::jsonb)",
                    collection, stored["id"], json.dumps(stored)
                )
        except STORE_ERRORS as e:
            raise self._unavailable("insert", e)
        return stored

    async def get(self, collection: str, document_id: str) -> Optional[Document]:
        try:
            async with self.pool.acquire() as conn:
                body = await conn.fetchval(
                    "SELECT body FROM documents WHERE collection = $1 AND id = $2",
                    collection, document_id
                )
        except STORE_ERRORS as e:
            raise self._unavailable("get", e)
        return self._decode(body) if body is not None else None

    async def find(self, collection: str, **filters: Any) -> List[Document]:
        try:
            async with self.pool.acquire() as conn:
                rows = await conn.fetch(
                    """
                    SELECT body FROM documents
                    WHERE collection = $1 AND body @> $2::jsonb
                    ORDER BY created_at ASC
                    """,
                    collection, json.dumps(filters)
                )
        except STORE_ERRORS as e:
            raise self._unavailable("find", e)
        return [self._decode(row["body"]) for row in rows]

    async def update(self, collection: str, document_id: str, fields: Document) -> Optional[Document]:
        changes = {k: v for k, v in fields.items() if k != "id"}
        try:
            async with self.pool.acquire() as conn:
                body = await conn.fetchval(
                    """
                    UPDATE documents SET body = body || $3::jsonb
                    WHERE collection = $1 AND id = $2
                    RETURNING body
                    """,
                    collection, document_id, json.dumps(changes)
                )
        except STORE_ERRORS as e:
            raise self._unavailable("update", e)
        return self._decode(body) if body is not None else None

    async def delete(self, collection: str, document_id: str) -> bool:
        try:
            async with self.pool.acquire() as conn:
                result = await conn.execute(
                    "DELETE FROM documents WHERE collection = $1 AND id = $2",
                    collection, document_id
                )
        except STORE_ERRORS as e:
            raise self._unavailable("delete", e)
        return result == "DELETE 1"
