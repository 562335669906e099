"""
LangGraph-based RAG orchestration.

    load_history -> [embed_query -> retrieve -> hydrate] -> assemble_prompt
                 -> dispatch -> [persist] -> END

Retrieval is skipped for plain generation requests; persistence only runs
for conversational chat.
"""

import logging
from typing import Any, Dict, List, Optional, TypedDict
from uuid import uuid4

from langgraph.graph import END, StateGraph
from sqlalchemy.exc import SQLAlchemyError

from saju_rag.config import settings
from saju_rag.database import ConversationStore, DocumentStore
from saju_rag.errors import EmbeddingError, RagError, RetrievalError, StageTimeoutError
from saju_rag.llm.fallback import GenerationParams, ModelGateway
from saju_rag.llm.fortune import (
    DEFAULT_READING,
    FORTUNE_SYSTEM_PROMPT,
    READING_MAX_TOKENS,
    READING_TEMPERATURE,
    build_fortune_prompt,
    extract_reading,
)
from saju_rag.llm.models import JsonResult, ModelResult
from saju_rag.monitoring import LangSmithTracer, MetricsCollector, get_metrics, get_tracer
from saju_rag.rag.embeddings import BaseEmbedder
from saju_rag.rag.vectorstore import BaseVectorIndex
from saju_rag.timeouts import with_timeout

logger = logging.getLogger(__name__)


# === Constants ===

NO_CONTEXT_MARKER = "No context provided."
CONTEXT_SEPARATOR = "\n---\n"
DEFAULT_QA_SYSTEM_PROMPT = (
    "You are a helpful assistant. Answer the user's question based on the provided context. "
    "If the context doesn't contain the answer, say that you don't know."
)
FALLBACK_ANSWER = "죄송합니다. 답변을 생성할 수 없습니다."
HISTORY_NOT_SAVED = "conversation_history_not_saved"


def build_context_message(docs: List[str], max_chars: int) -> tuple:
    """
    Join retrieved documents into the context message.

    Documents that would push the joined text past ``max_chars`` are
    dropped whole; a first document longer than the budget is truncated.

    Returns:
        (context message, documents actually included)
    """
    if not docs:
        return NO_CONTEXT_MARKER, []

    kept: List[str] = []
    used = 0
    for doc in docs:
        cost = len(doc) + (len(CONTEXT_SEPARATOR) if kept else 0)
        if used + cost <= max_chars:
            kept.append(doc)
            used += cost
        elif not kept:
            kept.append(doc[:max_chars])
            used = max_chars

    return "Context:\n" + CONTEXT_SEPARATOR.join(kept), kept


# === State Definition ===

class RagState(TypedDict, total=False):
    """State passed between nodes in the graph."""
    # Input
    query: str
    user_id: Optional[int]
    conversation_id: Optional[str]
    system_prompt: Optional[str]
    params: GenerationParams
    model: Optional[str]
    use_gateway: bool
    enable_fallback: Optional[bool]
    use_rag: bool
    load_history: bool
    persist: bool

    # Retrieval
    history: List[Dict[str, str]]
    query_vector: List[float]
    doc_ids: List[str]
    context_docs: List[str]

    # Response
    messages: List[Dict[str, str]]
    result: ModelResult
    answer: Optional[str]
    warning: Optional[str]


class RagOrchestrator:
    """Runs the retrieval-augmented chat pipeline over injected collaborators."""

    def __init__(
        self,
        embedder: BaseEmbedder,
        vector_index: BaseVectorIndex,
        document_store: DocumentStore,
        conversation_store: ConversationStore,
        gateway: ModelGateway,
        top_k: Optional[int] = None,
        max_context_chars: Optional[int] = None,
        store_timeout: Optional[float] = None,
        tracer: Optional[LangSmithTracer] = None,
        metrics: Optional[MetricsCollector] = None,
    ):
        self.embedder = embedder
        self.vector_index = vector_index
        self.document_store = document_store
        self.conversation_store = conversation_store
        self.gateway = gateway
        self.top_k = top_k or settings.RETRIEVAL_TOP_K
        self.max_context_chars = max_context_chars or settings.MAX_CONTEXT_CHARS
        self.store_timeout = settings.STORE_TIMEOUT_SECONDS if store_timeout is None else store_timeout
        self.tracer = tracer or get_tracer()
        self.metrics = metrics or get_metrics()
        self.graph = self._build_graph()

    # === Node Functions ===

    async def _load_history(self, state: RagState) -> Dict[str, Any]:
        """Load prior turns for an existing conversation."""
        if not (state.get("load_history") and state.get("conversation_id")):
            return {"history": []}
        with self.tracer.trace_run("load_history", inputs={"conversation_id": state["conversation_id"]}) as run:
            history = await with_timeout(
                self.conversation_store.get_history(state["conversation_id"]),
                self.store_timeout,
                "conversation_store",
            )
            run.set_output(len(history))
        return {"history": history}

    async def _embed_query(self, state: RagState) -> Dict[str, Any]:
        with self.tracer.trace_run("embed_query", run_type="embedding", inputs={"query": state["query"]}):
            try:
                vector = await self.embedder.embed(state["query"])
            except EmbeddingError:
                self.metrics.increment("embedding_failures")
                raise
        return {"query_vector": vector}

    async def _retrieve(self, state: RagState) -> Dict[str, Any]:
        with self.tracer.trace_run("retrieve", run_type="retriever", inputs={"top_k": self.top_k}) as run:
            try:
                ids = await self.vector_index.query(state["query_vector"], self.top_k)
            except RetrievalError:
                self.metrics.increment("retrieval_failures")
                raise
            run.set_output(ids)
        if not ids:
            self.metrics.increment("empty_retrievals")
        return {"doc_ids": ids[: self.top_k]}

    async def _hydrate(self, state: RagState) -> Dict[str, Any]:
        """Resolve matched ids to document text."""
        ids = state.get("doc_ids") or []
        if not ids:
            return {"context_docs": []}
        with self.tracer.trace_run("hydrate", inputs={"ids": ids}):
            try:
                docs = await with_timeout(
                    self.document_store.get_by_ids(ids), self.store_timeout, "document_store"
                )
            except RetrievalError:
                self.metrics.increment("retrieval_failures")
                raise
        return {"context_docs": docs[: self.top_k]}

    async def _assemble_prompt(self, state: RagState) -> Dict[str, Any]:
        """
        Order: [system prompt] -> history -> context -> user query.

        The context message sits directly before the live question.
        """
        messages: List[Dict[str, str]] = []
        if state.get("system_prompt"):
            messages.append({"role": "system", "content": state["system_prompt"]})
        messages.extend(state.get("history") or [])

        context_docs = state.get("context_docs") or []
        if state.get("use_rag"):
            context_message, context_docs = build_context_message(context_docs, self.max_context_chars)
            messages.append({"role": "system", "content": context_message})

        messages.append({"role": "user", "content": state["query"]})
        return {"messages": messages, "context_docs": context_docs}

    async def _dispatch(self, state: RagState) -> Dict[str, Any]:
        model = state.get("model") or self.gateway.primary_model
        with self.tracer.trace_run("dispatch", run_type="llm", inputs={"model": model}) as run:
            result = await self.gateway.invoke(
                state["messages"],
                params=state.get("params"),
                model=state.get("model"),
                use_gateway=state.get("use_gateway", False),
                enable_fallback=state.get("enable_fallback"),
            )
            run.set_output({"model_used": result.model_used, "fallback_used": result.fallback_used})

        answer = None
        if isinstance(result, JsonResult):
            answer = result.answer or FALLBACK_ANSWER
        return {"result": result, "answer": answer}

    async def _persist(self, state: RagState) -> Dict[str, Any]:
        """
        Append the user/assistant round. A failed write keeps the answer
        and reports a warning instead.
        """
        try:
            await with_timeout(
                self.conversation_store.append_round(
                    state["conversation_id"],
                    state["user_id"],
                    state["query"],
                    state["answer"],
                ),
                self.store_timeout,
                "conversation_store",
            )
        except (SQLAlchemyError, RagError):
            logger.exception(f"❌ Failed to save conversation {state['conversation_id']}")
            self.metrics.increment("history_save_failures")
            return {"warning": HISTORY_NOT_SAVED}
        return {"warning": None}

    # === Routing Functions ===

    @staticmethod
    def _route_after_history(state: RagState) -> str:
        return "retrieve" if state.get("use_rag") else "skip"

    @staticmethod
    def _route_after_dispatch(state: RagState) -> str:
        return "persist" if state.get("persist") else "done"

    # === Graph Builder ===

    def _build_graph(self):
        graph = StateGraph(RagState)

        graph.add_node("load_history", self._load_history)
        graph.add_node("embed_query", self._embed_query)
        graph.add_node("retrieve", self._retrieve)
        graph.add_node("hydrate", self._hydrate)
        graph.add_node("assemble_prompt", self._assemble_prompt)
        graph.add_node("dispatch", self._dispatch)
        graph.add_node("persist", self._persist)

        graph.set_entry_point("load_history")

        graph.add_conditional_edges(
            "load_history",
            self._route_after_history,
            {
                "retrieve": "embed_query",
                "skip": "assemble_prompt",
            },
        )
        graph.add_edge("embed_query", "retrieve")
        graph.add_edge("retrieve", "hydrate")
        graph.add_edge("hydrate", "assemble_prompt")
        graph.add_edge("assemble_prompt", "dispatch")
        graph.add_conditional_edges(
            "dispatch",
            self._route_after_dispatch,
            {
                "persist": "persist",
                "done": END,
            },
        )
        graph.add_edge("persist", END)

        return graph.compile()

    async def _run(self, state: RagState) -> RagState:
        self.metrics.increment("requests_total")
        try:
            return await self.graph.ainvoke(state)
        except StageTimeoutError as e:
            self.metrics.increment("timeouts")
            logger.error(f"⏱️ {e}")
            raise

    # === Entry Points ===

    async def query(self, query: str, params: Optional[GenerationParams] = None) -> Dict[str, Any]:
        """
        Answer a single question from the knowledge base.

        Returns:
            {"answer": str, "context": [document text, ...]}
        """
        self.metrics.increment("query_requests")
        params = (params or GenerationParams()).model_copy(update={"stream": False})
        final_state = await self._run(
            {
                "query": query,
                "system_prompt": DEFAULT_QA_SYSTEM_PROMPT,
                "params": params,
                "use_rag": True,
                "load_history": False,
                "persist": False,
            }
        )
        return {"answer": final_state["answer"], "context": final_state.get("context_docs") or []}

    async def chat(
        self,
        message: str,
        user_id: int,
        conversation_id: Optional[str] = None,
        system_prompt: Optional[str] = None,
        params: Optional[GenerationParams] = None,
    ) -> Dict[str, Any]:
        """
        Run one conversational round.

        Args:
            message: The user's question
            user_id: Caller id recorded on both persisted turns
            conversation_id: Existing conversation to continue, or None to start one
            system_prompt: Optional role definition placed first
            params: Sampling parameters

        Returns:
            {"conversationId", "answer"} plus "warning" when history was not saved
        """
        self.metrics.increment("chat_requests")
        params = (params or GenerationParams()).model_copy(update={"stream": False})
        final_state = await self._run(
            {
                "query": message,
                "user_id": user_id,
                "conversation_id": conversation_id or str(uuid4()),
                "system_prompt": system_prompt,
                "params": params,
                "use_rag": True,
                "load_history": conversation_id is not None,
                "persist": True,
            }
        )
        response = {"conversationId": final_state["conversation_id"], "answer": final_state["answer"]}
        if final_state.get("warning"):
            response["warning"] = final_state["warning"]
        return response

    async def generate(
        self,
        user_prompt: str,
        system_prompt: Optional[str] = None,
        params: Optional[GenerationParams] = None,
        model: Optional[str] = None,
        use_gateway: bool = False,
        use_rag: bool = False,
        enable_fallback: Optional[bool] = None,
    ) -> ModelResult:
        """Direct model call, optionally augmented with retrieved context."""
        self.metrics.increment("generate_requests")
        final_state = await self._run(
            {
                "query": user_prompt,
                "system_prompt": system_prompt,
                "params": params or GenerationParams(),
                "model": model,
                "use_gateway": use_gateway,
                "enable_fallback": enable_fallback,
                "use_rag": use_rag,
                "load_history": False,
                "persist": False,
            }
        )
        return final_state["result"]

    async def read_fortune(
        self,
        chart: Dict[str, Any],
        model: Optional[str] = None,
        use_gateway: bool = False,
        use_rag: bool = False,
        enable_fallback: Optional[bool] = None,
    ) -> JsonResult:
        """
        Produce a five-field reading from a Saju chart.

        The model is asked for JSON; when its reply cannot be parsed the
        default reading is returned instead. Routing metadata of the model
        call is kept on the result.
        """
        result = await self.generate(
            build_fortune_prompt(chart),
            system_prompt=FORTUNE_SYSTEM_PROMPT,
            params=GenerationParams(max_tokens=READING_MAX_TOKENS, temperature=READING_TEMPERATURE),
            model=model,
            use_gateway=use_gateway,
            use_rag=use_rag,
            enable_fallback=enable_fallback,
        )

        reading = extract_reading(result.answer)
        if not reading:
            self.metrics.increment("fortune_parse_failures")
            logger.warning(f"⚠️ {result.model_used} reply had no readable JSON, using default reading")
            reading = dict(DEFAULT_READING)

        return JsonResult(
            payload=reading,
            model_used=result.model_used,
            gateway_enabled=result.gateway_enabled,
            fallback_used=result.fallback_used,
        )
