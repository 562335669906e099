"""
RAG module: embedding, vector retrieval, document management and orchestration.
"""

from saju_rag.rag.embeddings import BaseEmbedder, LocalEmbedder, WorkersAIEmbedder, create_embedder
from saju_rag.rag.vectorstore import BaseVectorIndex, FaissVectorIndex, VectorizeIndex, create_vector_index
from saju_rag.rag.documents import DocumentService
from saju_rag.rag.ingest import DocumentIngester
from saju_rag.rag.orchestrator import RagOrchestrator, build_context_message

__all__ = [
    "BaseEmbedder",
    "LocalEmbedder",
    "WorkersAIEmbedder",
    "create_embedder",
    "BaseVectorIndex",
    "FaissVectorIndex",
    "VectorizeIndex",
    "create_vector_index",
    "DocumentService",
    "DocumentIngester",
    "RagOrchestrator",
    "build_context_message",
]
