"""
Knowledge document management.

Keeps the document store and the vector index paired: a document id is
either present in both or in neither once an operation returns.
"""

import logging
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError

from saju_rag.cache import QueryCache
from saju_rag.config import settings
from saju_rag.database import DocumentPage, DocumentStore
from saju_rag.errors import DuplicateDocumentError, NotFoundError, RagError
from saju_rag.monitoring import MetricsCollector, get_metrics
from saju_rag.rag.embeddings import BaseEmbedder
from saju_rag.rag.vectorstore import BaseVectorIndex
from saju_rag.timeouts import with_timeout

logger = logging.getLogger(__name__)


class DocumentService:
    """Add, list and delete knowledge documents."""

    def __init__(
        self,
        embedder: BaseEmbedder,
        vector_index: BaseVectorIndex,
        document_store: DocumentStore,
        query_cache: Optional[QueryCache] = None,
        store_timeout: Optional[float] = None,
        metrics: Optional[MetricsCollector] = None,
    ):
        self.embedder = embedder
        self.vector_index = vector_index
        self.document_store = document_store
        self.query_cache = query_cache
        self.store_timeout = settings.STORE_TIMEOUT_SECONDS if store_timeout is None else store_timeout
        self.metrics = metrics or get_metrics()

    async def _knowledge_changed(self):
        if self.query_cache is not None:
            await self.query_cache.bump_version()

    async def add(self, text: str) -> int:
        """
        Store ``text`` and index its embedding.

        Returns:
            The new document id

        Raises:
            DuplicateDocumentError: identical text already stored
            EmbeddingError / RetrievalError: indexing failed; the row is removed
                again (as it is for any other indexing failure)
        """
        doc_id = await with_timeout(
            self.document_store.insert_if_absent(text), self.store_timeout, "document_store"
        )
        if doc_id is None:
            raise DuplicateDocumentError()

        try:
            vector = await self.embedder.embed(text)
            await self.vector_index.upsert(str(doc_id), vector)
        except Exception as e:
            logger.error(f"❌ Indexing document {doc_id} failed, removing row: {e}")
            try:
                await self.document_store.delete(doc_id)
            except (SQLAlchemyError, RagError):
                logger.exception(f"❌ Compensating delete of document {doc_id} failed")
            raise

        self.metrics.increment("documents_added")
        await self._knowledge_changed()
        logger.info(f"📄 Document {doc_id} added and indexed")
        return doc_id

    async def list(self, page: int, page_size: int, search: Optional[str] = None) -> DocumentPage:
        return await with_timeout(
            self.document_store.list(page, page_size, search), self.store_timeout, "document_store"
        )

    async def delete(self, document_id: int) -> None:
        """
        Delete a document row, then its vector.

        Raises:
            NotFoundError: no document with this id
        """
        removed = await with_timeout(
            self.document_store.delete(document_id), self.store_timeout, "document_store"
        )
        if not removed:
            raise NotFoundError("Document not found.")

        await self.vector_index.delete_by_ids([str(document_id)])
        self.metrics.increment("documents_deleted")
        await self._knowledge_changed()
        logger.info(f"🗑️ Document {document_id} deleted")
