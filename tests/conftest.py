import uuid
from typing import AsyncIterator, Generator

import pytest
import pytest_asyncio
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from saju_rag.cache import RedisClient
from saju_rag.database import Base, ConversationStore, DocumentStore, create_all_tables
from saju_rag.dependencies import build_services
from saju_rag.monitoring import MetricsCollector

from tests.fakes import FakeEmbedder, FakeModelClient, InMemoryVectorIndex


@pytest_asyncio.fixture
async def session_maker() -> AsyncIterator[async_sessionmaker[AsyncSession]]:
    engine = create_async_engine("sqlite+aiosqlite://", poolclass=StaticPool)
    await create_all_tables(engine)
    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    await engine.dispose()


@pytest.fixture
def document_store(session_maker) -> DocumentStore:
    return DocumentStore(session_maker)


@pytest.fixture
def conversation_store(session_maker) -> ConversationStore:
    return ConversationStore(session_maker)


@pytest.fixture
def embedder() -> FakeEmbedder:
    return FakeEmbedder()


@pytest.fixture
def vector_index() -> InMemoryVectorIndex:
    return InMemoryVectorIndex()


@pytest.fixture
def model_client() -> FakeModelClient:
    return FakeModelClient()


@pytest.fixture
def metrics() -> MetricsCollector:
    return MetricsCollector()


@pytest.fixture
def client(embedder, vector_index, model_client, metrics, tmp_path) -> Generator[TestClient, None, None]:
    from starlette.routing import _DefaultLifespan

    from saju_rag.database import entities  # noqa: F401
    from saju_rag.main import create_app

    db_name = f"saju_test_{uuid.uuid4().hex}"
    shared_memory_uri = f"file:{db_name}?mode=memory&cache=shared&uri=true"
    sync_engine = create_engine(f"sqlite+pysqlite:///{shared_memory_uri}", poolclass=StaticPool)
    Base.metadata.create_all(sync_engine)

    engine = create_async_engine(f"sqlite+aiosqlite:///{shared_memory_uri}", poolclass=StaticPool)
    session_maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    app = create_app()
    app.router.lifespan_context = _DefaultLifespan(app.router)
    app.state.services = build_services(
        session_maker,
        redis_client=RedisClient(),
        model_client=model_client,
        embedder=embedder,
        vector_index=vector_index,
        metrics=metrics,
    )
    app.state.services.ingester.documents_path = tmp_path
    app.state.services.ingester.processed_path = tmp_path / ".processed"

    with TestClient(app) as test_client:
        yield test_client

    sync_engine.dispose()
