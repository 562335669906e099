from fastapi.testclient import TestClient

from saju_rag.cache import RedisClient

from tests.fakes import FakeRedis, failing

PRIMARY = "@cf/meta/llama-3.1-8b-instruct"


def test_add_document_indexes_vector(client: TestClient, vector_index):
    response = client.post("/api/rag/documents", json={"text": "을목은 화초와 덩굴을 상징한다"})

    assert response.status_code == 201
    body = response.json()
    assert body["message"] == "Document added and indexed successfully."
    assert str(body["id"]) in vector_index.vectors


def test_duplicate_document_is_409_and_not_reindexed(client: TestClient, embedder, vector_index):
    client.post("/api/rag/documents", json={"text": "same text"})
    response = client.post("/api/rag/documents", json={"text": "same text"})

    assert response.status_code == 409
    assert response.json() == {
        "error": "duplicate_document",
        "message": "Document with this text already exists.",
    }
    assert embedder.calls == ["same text"]
    assert len(vector_index.vectors) == 1


def test_failed_indexing_leaves_no_document(client: TestClient, vector_index):
    vector_index.fail_upsert = True

    response = client.post("/api/rag/documents", json={"text": "never stored"})

    assert response.status_code == 500
    assert response.json()["error"] == "retrieval_failed"
    listing = client.get("/api/rag/documents").json()
    assert listing["pagination"]["totalItems"] == 0


def test_blank_or_missing_text_is_400(client: TestClient):
    assert client.post("/api/rag/documents", json={"text": "   "}).status_code == 400
    assert client.post("/api/rag/documents", json={}).status_code == 400
    response = client.post("/api/rag/documents", json={"text": 42})
    assert response.status_code == 400
    assert response.json()["error"] == "invalid_request"


def test_list_documents_paginates_and_clamps_limit(client: TestClient):
    for i in range(3):
        client.post("/api/rag/documents", json={"text": f"knowledge {i}"})

    body = client.get("/api/rag/documents", params={"page": 0, "limit": 500}).json()

    assert body["pagination"] == {"totalItems": 3, "totalPages": 1, "currentPage": 1, "pageSize": 100}
    assert [row["text"] for row in body["data"]] == ["knowledge 2", "knowledge 1", "knowledge 0"]

    searched = client.get("/api/rag/documents", params={"search": "1"}).json()
    assert [row["text"] for row in searched["data"]] == ["knowledge 1"]
    assert searched["pagination"]["pageSize"] == 10


def test_delete_document_removes_row_and_vector(client: TestClient, vector_index):
    doc_id = client.post("/api/rag/documents", json={"text": "short lived"}).json()["id"]

    response = client.delete(f"/api/rag/documents/{doc_id}")

    assert response.status_code == 200
    assert response.json() == {"message": "Document deleted successfully."}
    assert str(doc_id) not in vector_index.vectors
    assert client.delete(f"/api/rag/documents/{doc_id}").status_code == 404


def test_delete_with_invalid_id_is_400(client: TestClient):
    response = client.delete("/api/rag/documents/abc")

    assert response.status_code == 400
    assert response.json() == {"error": "invalid_request", "message": "Invalid document ID."}


def test_query_answers_with_context(client: TestClient):
    client.post("/api/rag/documents", json={"text": "water feeds wood"})

    response = client.post("/api/rag/query", json={"query": "what feeds wood"})

    assert response.status_code == 200
    assert response.json() == {"answer": "fake answer", "context": ["water feeds wood"]}


def test_query_requires_query(client: TestClient):
    assert client.post("/api/rag/query", json={"query": ""}).status_code == 400


def test_chat_round_trip_keeps_conversation(client: TestClient, model_client):
    first = client.post("/api/ai/saju-chat", json={"message": "내 일간은?"})
    assert first.status_code == 200
    conversation_id = first.json()["conversationId"]
    assert "warning" not in first.json()

    second = client.post(
        f"/api/ai/saju-chat/{conversation_id}",
        json={"message": "그럼 용신은?", "systemPrompt": "You are a saju master."},
        headers={"X-User-Id": "42"},
    )

    assert second.status_code == 200
    assert second.json()["conversationId"] == conversation_id
    messages = model_client.last_messages
    assert messages[0] == {"role": "system", "content": "You are a saju master."}
    assert messages[1] == {"role": "user", "content": "내 일간은?"}
    assert messages[2] == {"role": "assistant", "content": "fake answer"}
    assert messages[-1] == {"role": "user", "content": "그럼 용신은?"}


def test_chat_requires_message(client: TestClient):
    response = client.post("/api/ai/saju-chat", json={"systemPrompt": "hi"})

    assert response.status_code == 400


def test_chat_rejects_malformed_user_header(client: TestClient):
    response = client.post("/api/ai/saju-chat", json={"message": "hi"}, headers={"X-User-Id": "abc"})

    assert response.status_code == 400


def test_model_failure_surfaces_as_502(client: TestClient, model_client):
    model_client.outcomes[PRIMARY] = failing(PRIMARY)

    response = client.post("/api/ai/detailed-fortune-telling", json={"userPrompt": "read my chart", "enableFallback": False})

    assert response.status_code == 502
    assert response.json()["error"] == "model_invocation_failed"


def test_fortune_telling_json_envelope(client: TestClient, model_client):
    response = client.post(
        "/api/ai/detailed-fortune-telling",
        json={"userPrompt": "read my chart", "max_tokens": 99999, "temperature": 9, "seed": 7},
    )

    assert response.status_code == 200
    body = response.json()
    assert body["response"] == "fake answer"
    assert body["model_used"] == PRIMARY
    assert body["fallback_used"] is False
    assert body["gateway_enabled"] is False
    payload = model_client.calls[-1]["payload"]
    assert payload["max_tokens"] == 4096
    assert payload["temperature"] == 2.0
    assert payload["seed"] == 7
    assert "top_p" not in payload


def test_fortune_telling_stream_passes_headers(client: TestClient, model_client):
    model_client.outcomes[PRIMARY] = [b"data: first\n\n", b"data: [DONE]\n\n"]

    response = client.post("/api/ai/detailed-fortune-telling", json={"userPrompt": "stream it", "stream": True})

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/event-stream")
    assert response.headers["X-AI-Model"] == PRIMARY
    assert response.headers["X-Stream-Response"] == "true"
    assert response.headers["X-Gateway-Enabled"] == "false"
    assert response.headers["X-Fallback-Used"] == "false"
    assert response.content == b"data: first\n\ndata: [DONE]\n\n"


def test_fortune_telling_requires_user_prompt(client: TestClient):
    assert client.post("/api/ai/detailed-fortune-telling", json={"stream": True}).status_code == 400


def test_health_and_metrics(client: TestClient, metrics):
    client.post("/api/rag/documents", json={"text": "counted"})

    health = client.get("/health").json()
    assert health["status"] == "healthy"
    assert health["redis"] == "disconnected"

    assert client.get("/").json()["health"] == "/health"
    assert metrics.get_metrics()["documents_added"] == 1
    snapshot = client.get("/metrics").json()
    assert snapshot["documents_added"] == 1
    assert snapshot["cache_enabled"] is False


def test_ingest_endpoint_reads_documents_directory(client: TestClient, tmp_path, vector_index):
    (tmp_path / "sipsin.txt").write_text("비견은 일간과 같은 오행, 같은 음양을 가진 글자다.", encoding="utf-8")

    response = client.post("/api/rag/ingest")

    assert response.status_code == 200
    body = response.json()
    assert body["processed"] == ["sipsin.txt"]
    assert body["total_chunks"] == len(vector_index.vectors) == 1
    assert client.post("/api/rag/ingest").json()["skipped"] == ["sipsin.txt"]


def test_query_answer_computed_during_document_change_is_not_served(client: TestClient, model_client, monkeypatch):
    services = client.app.state.services
    services.query_cache.redis = RedisClient(client=FakeRedis())
    answer_query = services.orchestrator.query

    async def query_while_documents_change(query, params=None):
        result = await answer_query(query, params)
        await services.query_cache.bump_version()
        return result

    monkeypatch.setattr(services.orchestrator, "query", query_while_documents_change)

    client.post("/api/rag/query", json={"query": "what is wood"})
    calls_after_first = len(model_client.calls)
    client.post("/api/rag/query", json={"query": "what is wood"})

    assert len(model_client.calls) == calls_after_first + 1


def test_repeated_query_is_served_from_cache(client: TestClient, model_client):
    client.app.state.services.query_cache.redis = RedisClient(client=FakeRedis())

    first = client.post("/api/rag/query", json={"query": "what is fire"}).json()
    calls = len(model_client.calls)
    second = client.post("/api/rag/query", json={"query": "What is  fire"}).json()

    assert second == first
    assert len(model_client.calls) == calls


def test_plain_text_model_reply_is_wrapped_as_response(client: TestClient, model_client):
    model_client.default_payload = "plain text answer"

    generated = client.post("/api/ai/detailed-fortune-telling", json={"userPrompt": "read my chart"})
    chat = client.post("/api/ai/saju-chat", json={"message": "내 일간은?"})

    assert generated.status_code == 200
    assert generated.json()["response"] == "plain text answer"
    assert generated.json()["model_used"] == PRIMARY
    assert chat.json()["answer"] == "plain text answer"


def test_structured_reading_from_chart(client: TestClient, model_client):
    model_client.default_payload = {
        "response": '```json\n{"운세": "좋음", "재물운": "보통", "건강운": "양호", "애정운": "원만", "종합_조언": "꾸준히"}\n```'
    }

    response = client.post(
        "/api/ai/detailed-fortune-telling",
        json={"sajuChart": {"사주": "갑자년 병인월 무진일 경신시", "정보": {"생년월일": "1984-02-15"}}},
    )

    assert response.status_code == 200
    body = response.json()
    assert body["운세"] == "좋음"
    assert body["종합_조언"] == "꾸준히"
    assert body["model_used"] == PRIMARY
    assert body["fallback_used"] is False
    assert "1984-02-15" in model_client.last_messages[-1]["content"]


def test_structured_reading_rejects_streaming_and_empty_chart(client: TestClient):
    streamed = client.post("/api/ai/detailed-fortune-telling", json={"sajuChart": {"사주": "x"}, "stream": True})
    empty = client.post("/api/ai/detailed-fortune-telling", json={"sajuChart": {}})

    assert streamed.status_code == 400
    assert empty.status_code == 400
