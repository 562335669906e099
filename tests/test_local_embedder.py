import asyncio
import threading
import time

import numpy as np
import pytest

from saju_rag.errors import EmbeddingError, StageTimeoutError
from saju_rag.rag import LocalEmbedder
from saju_rag.rag.embeddings import _SentenceTransformerModel


class StubModel:
    def encode(self, text, normalize_embeddings=True, show_progress_bar=False):
        return np.asarray([0.6, 0.8], dtype="float32")


@pytest.fixture(autouse=True)
def unloaded_model(monkeypatch):
    monkeypatch.setattr(_SentenceTransformerModel, "_instance", None)


async def test_model_is_loaded_in_a_worker_thread(monkeypatch):
    loaded_on = []

    def initialize(self):
        loaded_on.append(threading.current_thread())
        self._model = StubModel()

    monkeypatch.setattr(_SentenceTransformerModel, "_initialize", initialize)

    vector = await LocalEmbedder(timeout=0).embed("갑목")

    assert vector == pytest.approx([0.6, 0.8])
    assert loaded_on and loaded_on[0] is not threading.main_thread()


async def test_load_failure_is_an_embedding_error_and_can_be_retried(monkeypatch):
    def missing_weights(self):
        raise OSError("model weights not found")

    monkeypatch.setattr(_SentenceTransformerModel, "_initialize", missing_weights)

    with pytest.raises(EmbeddingError):
        await LocalEmbedder(timeout=0).embed("갑목")
    assert _SentenceTransformerModel._instance is None


async def test_slow_load_is_bounded_by_embedding_timeout(monkeypatch):
    def slow_initialize(self):
        time.sleep(0.3)
        self._model = StubModel()

    monkeypatch.setattr(_SentenceTransformerModel, "_initialize", slow_initialize)

    with pytest.raises(StageTimeoutError):
        await LocalEmbedder(timeout=0.05).embed("갑목")

    # let the worker thread finish before the singleton is reset
    await asyncio.sleep(0.4)
