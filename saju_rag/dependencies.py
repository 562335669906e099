"""
Service wiring and FastAPI dependencies.

The lifespan builds one ``Services`` container and stores it on
``app.state.services``; route dependencies read from there.
"""

from dataclasses import dataclass
from typing import Optional

import httpx
from fastapi import Header, Request
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from saju_rag.cache import QueryCache, RedisClient
from saju_rag.config import settings
from saju_rag.database import ConversationStore, DocumentStore
from saju_rag.errors import InvalidRequestError
from saju_rag.llm import BaseModelClient, ModelGateway, WorkersAIClient
from saju_rag.monitoring import MetricsCollector, get_metrics
from saju_rag.rag import (
    BaseEmbedder,
    BaseVectorIndex,
    DocumentIngester,
    DocumentService,
    RagOrchestrator,
    create_embedder,
    create_vector_index,
)


@dataclass
class Services:
    model_client: BaseModelClient
    embedder: BaseEmbedder
    vector_index: BaseVectorIndex
    document_store: DocumentStore
    conversation_store: ConversationStore
    gateway: ModelGateway
    orchestrator: RagOrchestrator
    document_service: DocumentService
    ingester: DocumentIngester
    query_cache: QueryCache
    metrics: MetricsCollector


def build_services(
    session_maker: async_sessionmaker[AsyncSession],
    http_client: Optional[httpx.AsyncClient] = None,
    redis_client: Optional[RedisClient] = None,
    model_client: Optional[BaseModelClient] = None,
    embedder: Optional[BaseEmbedder] = None,
    vector_index: Optional[BaseVectorIndex] = None,
    metrics: Optional[MetricsCollector] = None,
) -> Services:
    """Assemble the pipeline. Any collaborator may be passed in to replace the configured one."""
    metrics = metrics or get_metrics()
    if model_client is None:
        model_client = WorkersAIClient(http_client)
    embedder = embedder or create_embedder(model_client)
    vector_index = vector_index or create_vector_index(http_client)

    document_store = DocumentStore(session_maker)
    conversation_store = ConversationStore(session_maker)
    gateway = ModelGateway(model_client, metrics=metrics)
    query_cache = QueryCache(redis_client or RedisClient(), metrics=metrics)

    orchestrator = RagOrchestrator(
        embedder=embedder,
        vector_index=vector_index,
        document_store=document_store,
        conversation_store=conversation_store,
        gateway=gateway,
        metrics=metrics,
    )
    document_service = DocumentService(
        embedder=embedder,
        vector_index=vector_index,
        document_store=document_store,
        query_cache=query_cache,
        metrics=metrics,
    )

    return Services(
        model_client=model_client,
        embedder=embedder,
        vector_index=vector_index,
        document_store=document_store,
        conversation_store=conversation_store,
        gateway=gateway,
        orchestrator=orchestrator,
        document_service=document_service,
        ingester=DocumentIngester(document_service),
        query_cache=query_cache,
        metrics=metrics,
    )


def get_services(request: Request) -> Services:
    return request.app.state.services


def get_orchestrator(request: Request) -> RagOrchestrator:
    return get_services(request).orchestrator


def get_document_service(request: Request) -> DocumentService:
    return get_services(request).document_service


def get_ingester(request: Request) -> DocumentIngester:
    return get_services(request).ingester


def get_query_cache(request: Request) -> QueryCache:
    return get_services(request).query_cache


def get_current_user_id(x_user_id: Optional[str] = Header(default=None)) -> int:
    """
    Resolve the caller's user id.

    Stands in for the authentication layer: the id comes from the
    ``X-User-Id`` header and defaults to DEFAULT_USER_ID.
    """
    if x_user_id is None or not x_user_id.strip():
        return settings.DEFAULT_USER_ID
    if not x_user_id.strip().isdigit():
        raise InvalidRequestError("Invalid X-User-Id header.")
    return int(x_user_id.strip())
