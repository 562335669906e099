import pytest

pytest.importorskip("faiss")

from saju_rag.rag import FaissVectorIndex  # noqa: E402


@pytest.fixture
def index(tmp_path) -> FaissVectorIndex:
    return FaissVectorIndex(store_dir=tmp_path, dimension=3, timeout=0)


async def test_upsert_same_id_replaces_vector(index: FaissVectorIndex):
    await index.upsert("1", [1.0, 0.0, 0.0])
    await index.upsert("1", [0.0, 1.0, 0.0])

    assert index.vector_count == 1
    assert await index.query([0.0, 1.0, 0.0], top_k=5) == ["1"]


async def test_query_orders_by_similarity(index: FaissVectorIndex):
    await index.upsert("1", [1.0, 0.0, 0.0])
    await index.upsert("2", [0.7, 0.7, 0.0])
    await index.upsert("3", [0.0, 0.0, 1.0])

    assert await index.query([1.0, 0.1, 0.0], top_k=2) == ["1", "2"]


async def test_delete_unknown_ids_is_noop(index: FaissVectorIndex):
    await index.upsert("5", [1.0, 1.0, 1.0])

    await index.delete_by_ids(["99"])
    assert index.vector_count == 1

    await index.delete_by_ids(["5"])
    assert await index.query([1.0, 1.0, 1.0]) == []


async def test_index_persists_across_instances(tmp_path):
    first = FaissVectorIndex(store_dir=tmp_path, dimension=3, timeout=0)
    await first.upsert("8", [0.0, 1.0, 0.0])

    reloaded = FaissVectorIndex(store_dir=tmp_path, dimension=3, timeout=0)

    assert await reloaded.query([0.0, 1.0, 0.0]) == ["8"]
