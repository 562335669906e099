"""
FastAPI API routes for the Saju RAG service.
"""

import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, status
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, ConfigDict, Field

from saju_rag.cache import QueryCache
from saju_rag.config import settings
from saju_rag.dependencies import (
    Services,
    get_current_user_id,
    get_document_service,
    get_ingester,
    get_orchestrator,
    get_query_cache,
    get_services,
)
from saju_rag.errors import InvalidRequestError
from saju_rag.llm import GenerationParams, StreamResult
from saju_rag.rag import DocumentIngester, DocumentService, RagOrchestrator

logger = logging.getLogger(__name__)

router = APIRouter()

DEFAULT_PAGE_SIZE = 10
MAX_PAGE_SIZE = 100


def _require_text(value: Optional[str], field: str) -> str:
    if value is None or not value.strip():
        raise InvalidRequestError(f"Invalid request: '{field}' must be a non-empty string.")
    return value


# === Request/Response Models ===

class DocumentRequest(BaseModel):
    """Knowledge document to add."""
    text: Optional[str] = Field(default=None, description="Document text to store and index")


class DocumentCreatedResponse(BaseModel):
    id: int
    message: str


class PaginationInfo(BaseModel):
    totalItems: int
    totalPages: int
    currentPage: int
    pageSize: int


class DocumentListResponse(BaseModel):
    data: List[Dict[str, Any]]
    pagination: PaginationInfo


class QueryRequest(BaseModel):
    query: Optional[str] = Field(default=None, description="Question answered from the knowledge base")


class QueryResponse(BaseModel):
    answer: str
    context: List[str] = Field(default_factory=list, description="Documents placed in the prompt")


class ChatRequest(BaseModel):
    """Conversational chat request."""
    model_config = ConfigDict(populate_by_name=True)

    message: Optional[str] = Field(default=None, description="The user's question")
    system_prompt: Optional[str] = Field(default=None, alias="systemPrompt", description="Optional role definition")


class ChatResponse(BaseModel):
    conversationId: str
    answer: str
    warning: Optional[str] = None


class FortuneTellingRequest(BaseModel):
    """
    Direct model request, optionally augmented with knowledge-base context.

    With ``sajuChart`` set it becomes a structured reading request and
    ``userPrompt`` is not needed.

    Sampling parameters are clamped into their valid ranges before dispatch.
    """
    model_config = ConfigDict(populate_by_name=True, protected_namespaces=())

    user_prompt: Optional[str] = Field(default=None, alias="userPrompt")
    chart: Optional[Dict[str, Any]] = Field(
        default=None,
        alias="sajuChart",
        description="Saju chart (사주원국); when given, a structured five-field reading is returned",
    )
    system_prompt: Optional[str] = Field(default=None, alias="systemPrompt")
    stream: bool = False
    model: Optional[str] = Field(default=None, description="Primary model override")
    max_tokens: Optional[int] = None
    temperature: Optional[float] = None
    top_p: Optional[float] = None
    frequency_penalty: Optional[float] = None
    presence_penalty: Optional[float] = None
    seed: Optional[int] = None
    use_gateway: bool = Field(default=False, alias="useGateway")
    use_rag: bool = Field(default=False, alias="useRag")
    enable_fallback: bool = Field(default=True, alias="enableFallback")

    def generation_params(self) -> GenerationParams:
        return GenerationParams(
            max_tokens=self.max_tokens,
            temperature=self.temperature,
            stream=self.stream,
            top_p=self.top_p,
            frequency_penalty=self.frequency_penalty,
            presence_penalty=self.presence_penalty,
            seed=self.seed,
        )


class IngestResponse(BaseModel):
    processed: List[str]
    skipped: List[str]
    errors: List[Dict[str, str]]
    total_chunks: int
    duplicates: int


class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    redis: str
    embedding_backend: str
    vector_backend: str
    gateway: str


# === Knowledge Documents ===

@router.post(
    "/api/rag/documents",
    response_model=DocumentCreatedResponse,
    status_code=status.HTTP_201_CREATED,
    tags=["RAG"],
)
async def add_document(body: DocumentRequest, service: DocumentService = Depends(get_document_service)):
    """
    Store a knowledge document and index its embedding.

    Identical text is rejected with 409.
    """
    text = _require_text(body.text, "text")
    doc_id = await service.add(text)
    return DocumentCreatedResponse(id=doc_id, message="Document added and indexed successfully.")


@router.get("/api/rag/documents", response_model=DocumentListResponse, tags=["RAG"])
async def list_documents(
    page: int = 1,
    limit: int = DEFAULT_PAGE_SIZE,
    search: Optional[str] = None,
    service: DocumentService = Depends(get_document_service),
):
    """List documents newest first with pagination and substring search."""
    page = max(1, page)
    limit = max(1, min(MAX_PAGE_SIZE, limit))
    result = await service.list(page, limit, search or None)
    return result.to_dict()


@router.delete("/api/rag/documents/{document_id}", tags=["RAG"])
async def delete_document(document_id: str, service: DocumentService = Depends(get_document_service)):
    """Delete a document from the store and the vector index."""
    if not document_id.isdigit():
        raise InvalidRequestError("Invalid document ID.")
    await service.delete(int(document_id))
    return {"message": "Document deleted successfully."}


@router.post("/api/rag/ingest", response_model=IngestResponse, tags=["RAG"])
async def ingest_documents(force: bool = False, ingester: DocumentIngester = Depends(get_ingester)):
    """
    Ingest knowledge files from the documents directory.

    Place .pdf, .txt or .md files in `data/documents/`.
    """
    return await ingester.ingest_all(force=force)


@router.post("/api/rag/query", response_model=QueryResponse, tags=["RAG"])
async def query_knowledge(
    body: QueryRequest,
    orchestrator: RagOrchestrator = Depends(get_orchestrator),
    cache: QueryCache = Depends(get_query_cache),
):
    """Answer a question from the stored knowledge."""
    query = _require_text(body.query, "query")

    version = await cache.current_version()
    cached = await cache.get(query, version=version)
    if cached:
        return cached

    result = await orchestrator.query(query)
    await cache.set(query, result, version=version)
    return result


# === Conversational Chat ===

@router.post("/api/ai/saju-chat", response_model=ChatResponse, response_model_exclude_none=True, tags=["AI"])
async def start_chat(
    body: ChatRequest,
    user_id: int = Depends(get_current_user_id),
    orchestrator: RagOrchestrator = Depends(get_orchestrator),
):
    """Start a new conversation. The response carries the new conversationId."""
    message = _require_text(body.message, "message")
    return await orchestrator.chat(message, user_id, system_prompt=body.system_prompt)


@router.post(
    "/api/ai/saju-chat/{conversation_id}",
    response_model=ChatResponse,
    response_model_exclude_none=True,
    tags=["AI"],
)
async def continue_chat(
    conversation_id: str,
    body: ChatRequest,
    user_id: int = Depends(get_current_user_id),
    orchestrator: RagOrchestrator = Depends(get_orchestrator),
):
    """Continue an existing conversation with its history as context."""
    message = _require_text(body.message, "message")
    return await orchestrator.chat(
        message,
        user_id,
        conversation_id=conversation_id,
        system_prompt=body.system_prompt,
    )


@router.post("/api/ai/detailed-fortune-telling", tags=["AI"])
async def detailed_fortune_telling(
    body: FortuneTellingRequest,
    orchestrator: RagOrchestrator = Depends(get_orchestrator),
):
    """
    Direct model call with fallback.

    Returns the model result plus routing metadata as JSON, or passes the
    model's event stream through when `stream` is set. With `sajuChart`
    the result is a five-field reading (운세, 재물운, 건강운, 애정운,
    종합_조언) plus routing metadata.
    """
    if body.chart is not None:
        if not body.chart:
            raise InvalidRequestError("Invalid request: 'sajuChart' must be a non-empty object.")
        if body.stream:
            raise InvalidRequestError("Structured readings cannot be streamed.")
        reading = await orchestrator.read_fortune(
            body.chart,
            model=body.model,
            use_gateway=body.use_gateway,
            use_rag=body.use_rag,
            enable_fallback=body.enable_fallback,
        )
        return reading.envelope()

    user_prompt = _require_text(body.user_prompt, "userPrompt")
    result = await orchestrator.generate(
        user_prompt,
        system_prompt=body.system_prompt,
        params=body.generation_params(),
        model=body.model,
        use_gateway=body.use_gateway,
        use_rag=body.use_rag,
        enable_fallback=body.enable_fallback,
    )

    if isinstance(result, StreamResult):
        return StreamingResponse(result.body, media_type=result.media_type, headers=result.headers())
    return result.envelope()


# === Metrics & Health ===

@router.get("/metrics", tags=["Monitoring"])
async def get_platform_metrics(services: Services = Depends(get_services)):
    """Get pipeline metrics."""
    return {
        **services.metrics.get_metrics(),
        "cache_enabled": services.query_cache.redis.is_connected,
    }


@router.get("/health", response_model=HealthResponse, tags=["Monitoring"])
async def health_check(services: Services = Depends(get_services)):
    """Health check endpoint."""
    redis_status = "connected" if services.query_cache.redis.is_connected else "disconnected"
    return HealthResponse(
        status="healthy",
        redis=redis_status,
        embedding_backend=settings.EMBEDDING_BACKEND,
        vector_backend=settings.VECTOR_BACKEND,
        gateway="configured" if settings.AI_GATEWAY_ID else "not_configured",
    )
