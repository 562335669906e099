"""
Vector indexes keyed by document id.

- VectorizeIndex: Cloudflare Vectorize (v2 REST API)
- FaissVectorIndex: local FAISS index persisted under VECTORSTORE_DIR

Both store one vector per document id and return ids only; text is
hydrated from the document store.
"""

import asyncio
import json
import logging
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import List, Optional, Sequence

import httpx
import numpy as np

from saju_rag.config import settings
from saju_rag.errors import RetrievalError
from saju_rag.timeouts import with_timeout

logger = logging.getLogger(__name__)


class BaseVectorIndex(ABC):
    """Similarity index over document vectors."""

    @abstractmethod
    async def upsert(self, vector_id: str, values: Sequence[float]) -> None:
        """Insert or replace the vector stored under ``vector_id``."""
        pass

    @abstractmethod
    async def query(self, values: Sequence[float], top_k: int = 5) -> List[str]:
        """Return up to ``top_k`` ids ordered by descending similarity."""
        pass

    @abstractmethod
    async def delete_by_ids(self, ids: Sequence[str]) -> None:
        """Remove vectors by id. Unknown ids are ignored."""
        pass


class VectorizeIndex(BaseVectorIndex):
    """Cloudflare Vectorize index reached over REST."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        base_url: Optional[str] = None,
        api_token: Optional[str] = None,
        timeout: Optional[float] = None,
    ):
        self.client = client
        self.base_url = base_url or settings.vectorize_base
        self.api_token = api_token or settings.CLOUDFLARE_API_TOKEN
        self.timeout = settings.VECTOR_TIMEOUT_SECONDS if timeout is None else timeout

    @property
    def _headers(self) -> dict:
        return {"Authorization": f"Bearer {self.api_token}"}

    async def _post(self, action: str, **kwargs) -> dict:
        try:
            response = await with_timeout(
                self.client.post(f"{self.base_url}/{action}", **kwargs),
                self.timeout,
                "vector",
            )
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"❌ Vectorize {action} failed: {e}")
            raise RetrievalError(f"Vectorize {action} failed") from e

        if isinstance(data, dict) and data.get("success") is False:
            logger.error(f"❌ Vectorize {action} rejected: {data.get('errors')}")
            raise RetrievalError(f"Vectorize {action} rejected")
        return data.get("result") or {}

    async def upsert(self, vector_id: str, values: Sequence[float]) -> None:
        line = json.dumps({"id": str(vector_id), "values": list(values)})
        await self._post(
            "upsert",
            content=(line + "\n").encode("utf-8"),
            headers={**self._headers, "Content-Type": "application/x-ndjson"},
        )

    async def query(self, values: Sequence[float], top_k: int = 5) -> List[str]:
        result = await self._post(
            "query",
            json={
                "vector": list(values),
                "topK": top_k,
                "returnValues": False,
                "returnMetadata": "none",
            },
            headers=self._headers,
        )
        matches = result.get("matches") or []
        # Vectorize already returns matches best-first
        return [str(m["id"]) for m in matches if "id" in m]

    async def delete_by_ids(self, ids: Sequence[str]) -> None:
        if not ids:
            return
        await self._post("delete_by_ids", json={"ids": [str(i) for i in ids]}, headers=self._headers)


class FaissVectorIndex(BaseVectorIndex):
    """
    Local FAISS index with integer ids and on-disk persistence.

    Vectors are L2-normalised so inner product equals cosine similarity.
    """

    def __init__(
        self,
        store_dir: Optional[Path] = None,
        dimension: Optional[int] = None,
        timeout: Optional[float] = None,
    ):
        import faiss

        self._faiss = faiss
        self.store_dir = Path(store_dir or settings.VECTORSTORE_DIR)
        self.index_path = self.store_dir / "faiss.index"
        self.dimension = dimension or settings.EMBEDDING_DIMENSION
        self.timeout = settings.VECTOR_TIMEOUT_SECONDS if timeout is None else timeout
        self._lock = threading.Lock()
        self.index = self._load_or_create()

    def _load_or_create(self):
        """Load existing index or create an empty one."""
        self.store_dir.mkdir(parents=True, exist_ok=True)
        if self.index_path.exists():
            index = self._faiss.read_index(str(self.index_path))
            logger.info(f"✅ Loaded FAISS index ({index.ntotal} vectors)")
            return index
        return self._faiss.IndexIDMap2(self._faiss.IndexFlatIP(self.dimension))

    def _save(self):
        self._faiss.write_index(self.index, str(self.index_path))

    def _as_matrix(self, values: Sequence[float]) -> np.ndarray:
        matrix = np.asarray([values], dtype="float32")
        if matrix.shape[1] != self.dimension:
            raise RetrievalError(f"Expected {self.dimension}-dim vector, got {matrix.shape[1]}")
        self._faiss.normalize_L2(matrix)
        return matrix

    def _upsert_sync(self, vector_id: str, values: Sequence[float]) -> None:
        matrix = self._as_matrix(values)
        ids = np.asarray([int(vector_id)], dtype="int64")
        with self._lock:
            self.index.remove_ids(ids)
            self.index.add_with_ids(matrix, ids)
            self._save()

    def _query_sync(self, values: Sequence[float], top_k: int) -> List[str]:
        with self._lock:
            if self.index.ntotal == 0:
                return []
            k = min(top_k, self.index.ntotal)
            _, found = self.index.search(self._as_matrix(values), k)
        return [str(int(i)) for i in found[0] if i >= 0]

    def _delete_sync(self, ids: Sequence[str]) -> None:
        int_ids = np.asarray([int(i) for i in ids if str(i).isdigit()], dtype="int64")
        if int_ids.size == 0:
            return
        with self._lock:
            self.index.remove_ids(int_ids)
            self._save()

    async def upsert(self, vector_id: str, values: Sequence[float]) -> None:
        await with_timeout(asyncio.to_thread(self._upsert_sync, vector_id, values), self.timeout, "vector")

    async def query(self, values: Sequence[float], top_k: int = 5) -> List[str]:
        return await with_timeout(asyncio.to_thread(self._query_sync, values, top_k), self.timeout, "vector")

    async def delete_by_ids(self, ids: Sequence[str]) -> None:
        await with_timeout(asyncio.to_thread(self._delete_sync, ids), self.timeout, "vector")

    @property
    def vector_count(self) -> int:
        return int(self.index.ntotal)


def create_vector_index(client: Optional[httpx.AsyncClient] = None) -> BaseVectorIndex:
    """Build the index configured by ``VECTOR_BACKEND``."""
    backend = settings.VECTOR_BACKEND.lower()
    if backend == "faiss":
        logger.info(f"✅ Using local FAISS index at {settings.VECTORSTORE_DIR}")
        return FaissVectorIndex()
    if client is None:
        raise ValueError("vectorize index requires an HTTP client")
    logger.info(f"✅ Using Vectorize index: {settings.VECTORIZE_INDEX_NAME}")
    return VectorizeIndex(client)
