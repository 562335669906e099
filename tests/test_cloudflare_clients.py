import json

import httpx
import pytest

from saju_rag.errors import EmbeddingError, ModelInvocationError, RetrievalError
from saju_rag.llm import JsonResult, StreamResult, WorkersAIClient
from saju_rag.rag import VectorizeIndex, WorkersAIEmbedder

API_BASE = "https://api.test/accounts/acct/ai/run"
GATEWAY_BASE = "https://gateway.test/v1/acct/gw/workers-ai"
VECTORIZE_BASE = "https://api.test/accounts/acct/vectorize/v2/indexes/saju-knowledge"


def make_http_client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


def make_model_client(http_client, gateway_url="") -> WorkersAIClient:
    return WorkersAIClient(http_client, account_id="acct", api_token="token", base_url=API_BASE, gateway_url=gateway_url)


async def test_run_returns_result_object():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["auth"] = request.headers["Authorization"]
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"success": True, "errors": [], "result": {"response": "안녕하세요"}})

    async with make_http_client(handler) as http_client:
        result = await make_model_client(http_client).run("@cf/meta/llama-3.1-8b-instruct", {"messages": []})

    assert isinstance(result, JsonResult)
    assert result.answer == "안녕하세요"
    assert result.gateway_enabled is False
    assert seen["url"] == f"{API_BASE}/@cf/meta/llama-3.1-8b-instruct"
    assert seen["auth"] == "Bearer token"
    assert seen["body"] == {"messages": []}


async def test_gateway_routing_only_when_configured():
    urls = []

    def handler(request: httpx.Request) -> httpx.Response:
        urls.append(str(request.url))
        return httpx.Response(200, json={"success": True, "result": {"response": "ok"}})

    async with make_http_client(handler) as http_client:
        routed = await make_model_client(http_client, gateway_url=GATEWAY_BASE).run("m", {}, use_gateway=True)
        direct = await make_model_client(http_client).run("m", {}, use_gateway=True)

    assert urls == [f"{GATEWAY_BASE}/m", f"{API_BASE}/m"]
    assert routed.gateway_enabled is True
    assert direct.gateway_enabled is False


@pytest.mark.parametrize(
    "response",
    [
        httpx.Response(429, json={"success": False, "errors": [{"message": "rate limited"}]}),
        httpx.Response(200, json={"success": False, "errors": [{"message": "bad input"}]}),
        httpx.Response(200, content=b"not json"),
    ],
)
async def test_run_failures_raise_model_invocation_error(response):
    async with make_http_client(lambda request: response) as http_client:
        with pytest.raises(ModelInvocationError) as exc_info:
            await make_model_client(http_client).run("m", {"messages": []})

    assert exc_info.value.model == "m"


async def test_transport_error_raises_model_invocation_error():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    async with make_http_client(handler) as http_client:
        with pytest.raises(ModelInvocationError):
            await make_model_client(http_client).run("m", {})


async def test_stream_is_returned_unparsed():
    body = b'data: {"response":"a"}\n\ndata: [DONE]\n\n'

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, content=body, headers={"content-type": "text/event-stream"})

    async with make_http_client(handler) as http_client:
        result = await make_model_client(http_client).run("m", {"stream": True})
        assert isinstance(result, StreamResult)
        received = b"".join([chunk async for chunk in result.body])

    assert received == body
    assert result.media_type == "text/event-stream"


async def test_embedder_returns_first_vector():
    def handler(request: httpx.Request) -> httpx.Response:
        assert json.loads(request.content) == {"text": ["갑목"]}
        return httpx.Response(200, json={"success": True, "result": {"shape": [1, 3], "data": [[0.1, 0.2, 0.3]]}})

    async with make_http_client(handler) as http_client:
        embedder = WorkersAIEmbedder(make_model_client(http_client), model_name="@cf/baai/bge-base-en-v1.5")
        assert await embedder.embed("갑목") == [0.1, 0.2, 0.3]


@pytest.mark.parametrize(
    "response",
    [
        httpx.Response(200, json={"success": True, "result": {"data": []}}),
        httpx.Response(200, json={"success": True, "result": {}}),
        httpx.Response(200, json={"success": True, "result": {"data": [0.1, 0.2]}}),
        httpx.Response(200, json={"success": True, "result": {"data": [["x", "y"]]}}),
        httpx.Response(500, json={"success": False}),
    ],
)
async def test_embedder_failures_raise_embedding_error(response):
    async with make_http_client(lambda request: response) as http_client:
        embedder = WorkersAIEmbedder(make_model_client(http_client))
        with pytest.raises(EmbeddingError):
            await embedder.embed("text")


async def test_vectorize_upsert_query_delete():
    requests = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        if request.url.path.endswith("/query"):
            return httpx.Response(
                200,
                json={"success": True, "result": {"count": 2, "matches": [{"id": "7", "score": 0.9}, {"id": "3", "score": 0.4}]}},
            )
        return httpx.Response(200, json={"success": True, "result": {"mutationId": "m-1"}})

    async with make_http_client(handler) as http_client:
        index = VectorizeIndex(http_client, base_url=VECTORIZE_BASE, api_token="token")
        await index.upsert("7", [0.5, 0.5])
        ids = await index.query([0.5, 0.5], top_k=5)
        await index.delete_by_ids(["7"])

    upsert, query, delete = requests
    assert str(upsert.url) == f"{VECTORIZE_BASE}/upsert"
    assert upsert.headers["Content-Type"] == "application/x-ndjson"
    assert json.loads(upsert.content.decode().strip()) == {"id": "7", "values": [0.5, 0.5]}

    assert ids == ["7", "3"]
    assert json.loads(query.content) == {
        "vector": [0.5, 0.5],
        "topK": 5,
        "returnValues": False,
        "returnMetadata": "none",
    }

    assert str(delete.url) == f"{VECTORIZE_BASE}/delete_by_ids"
    assert json.loads(delete.content) == {"ids": ["7"]}


async def test_vectorize_failure_raises_retrieval_error():
    async with make_http_client(lambda request: httpx.Response(503, text="unavailable")) as http_client:
        index = VectorizeIndex(http_client, base_url=VECTORIZE_BASE, api_token="token")
        with pytest.raises(RetrievalError):
            await index.query([0.1], top_k=5)


async def test_bare_text_result_becomes_response_field():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"success": True, "result": "목은 성장을 뜻합니다"})

    async with make_http_client(handler) as http_client:
        result = await make_model_client(http_client).run("m", {"messages": []})

    assert result.answer == "목은 성장을 뜻합니다"
    assert result.envelope()["response"] == "목은 성장을 뜻합니다"


def test_non_object_payloads_are_normalised():
    assert JsonResult(payload="", model_used="m").payload is None
    assert JsonResult(payload=["a", "b"], model_used="m").answer == '["a", "b"]'
