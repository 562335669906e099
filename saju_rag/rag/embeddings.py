"""
Text embedders.

Two backends share one async interface:
- WorkersAIEmbedder: hosted ``@cf/baai/bge-base-en-v1.5`` via Workers AI
- LocalEmbedder: sentence-transformers model loaded once per process

Select one with ``EMBEDDING_BACKEND`` (workers-ai | local).
"""

import asyncio
import logging
import threading
from abc import ABC, abstractmethod
from typing import List, Optional

from saju_rag.config import settings
from saju_rag.errors import EmbeddingError, ModelInvocationError
from saju_rag.llm.models import BaseModelClient
from saju_rag.timeouts import with_timeout

logger = logging.getLogger(__name__)


class BaseEmbedder(ABC):
    """Maps text to a fixed-dimension vector."""

    dimension: int = settings.EMBEDDING_DIMENSION

    @abstractmethod
    async def embed(self, text: str) -> List[float]:
        """Embed a single text. Raises EmbeddingError on failure."""
        pass


class WorkersAIEmbedder(BaseEmbedder):
    """Embedder backed by the Workers AI embedding model."""

    def __init__(
        self,
        model_client: BaseModelClient,
        model_name: Optional[str] = None,
        timeout: Optional[float] = None,
    ):
        self.model_client = model_client
        self.model_name = model_name or settings.EMBEDDING_MODEL_NAME
        self.timeout = settings.EMBEDDING_TIMEOUT_SECONDS if timeout is None else timeout

    async def embed(self, text: str) -> List[float]:
        """
        Embed ``text`` with the hosted model.

        Raises:
            EmbeddingError: the service failed or returned no vector
            StageTimeoutError: the service did not answer in time
        """
        try:
            result = await with_timeout(
                self.model_client.run(self.model_name, {"text": [text]}),
                self.timeout,
                "embedding",
            )
        except ModelInvocationError as e:
            logger.error(f"❌ Embedding request failed: {e}")
            raise EmbeddingError(str(e)) from e

        payload = getattr(result, "payload", None) or {}
        data = payload.get("data") if isinstance(payload, dict) else None
        if not isinstance(data, list) or not data or not data[0]:
            raise EmbeddingError("Embedding service returned no vector")
        vector = data[0]
        if not isinstance(vector, list):
            raise EmbeddingError("Embedding service returned a malformed vector")
        try:
            return [float(v) for v in vector]
        except (TypeError, ValueError) as e:
            raise EmbeddingError("Embedding service returned a malformed vector") from e


class _SentenceTransformerModel:
    """Thread-safe singleton around the local sentence-transformers model."""

    _instance = None
    _lock = threading.Lock()

    def __new__(cls):
        if cls._instance is None:
            with cls._lock:
                if cls._instance is None:
                    instance = super().__new__(cls)
                    instance._initialize()
                    cls._instance = instance
        return cls._instance

    def _initialize(self):
        """Load the embedding model once."""
        from sentence_transformers import SentenceTransformer

        logger.info(f"📦 Loading embedding model: {settings.LOCAL_EMBEDDING_MODEL_NAME}")
        self._model = SentenceTransformer(settings.LOCAL_EMBEDDING_MODEL_NAME)
        logger.info("✅ Embedding model loaded successfully")

    def encode(self, text: str) -> List[float]:
        vector = self._model.encode(text, normalize_embeddings=True, show_progress_bar=False)
        return vector.astype("float32").tolist()


class LocalEmbedder(BaseEmbedder):
    """In-process embedder; encoding runs in a worker thread."""

    def __init__(self, timeout: Optional[float] = None):
        self.timeout = settings.EMBEDDING_TIMEOUT_SECONDS if timeout is None else timeout

    @staticmethod
    def _encode(text: str) -> List[float]:
        # first call loads the model, so it stays off the event loop too
        return _SentenceTransformerModel().encode(text)

    async def embed(self, text: str) -> List[float]:
        try:
            vector = await with_timeout(asyncio.to_thread(self._encode, text), self.timeout, "embedding")
        except (OSError, RuntimeError, ValueError) as e:
            logger.error(f"❌ Local embedding failed: {e}")
            raise EmbeddingError(str(e)) from e
        if not vector:
            raise EmbeddingError("Local model returned no vector")
        return vector


def create_embedder(model_client: Optional[BaseModelClient] = None) -> BaseEmbedder:
    """Build the embedder configured by ``EMBEDDING_BACKEND``."""
    backend = settings.EMBEDDING_BACKEND.lower()
    if backend == "local":
        logger.info("✅ Using local sentence-transformers embedder")
        return LocalEmbedder()
    if model_client is None:
        raise ValueError("workers-ai embedder requires a model client")
    logger.info(f"✅ Using Workers AI embedder: {settings.EMBEDDING_MODEL_NAME}")
    return WorkersAIEmbedder(model_client)
