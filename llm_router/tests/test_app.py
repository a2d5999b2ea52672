import json

import pytest
from fastapi.testclient import TestClient

from conftest import (
    CHUNKS,
    OPENAI_KEY,
    backend_for,
    disconnect_after_first_chunk,
    make_contexts,
    make_conversation,
    registry_for,
)
from llm_router import __version__
from llm_router.app import create_app


def _client(backend=None, **settings_overrides):
    registry = registry_for(backend or backend_for(CHUNKS), **settings_overrides)
    return TestClient(create_app(registry=registry))


def _chat_body(**kwargs):
    body = {
        "conversation": make_conversation().model_dump(),
        "provider": "OpenAI",
        "providerConfig": {"provider": "OpenAI", "apiKey": OPENAI_KEY},
    }
    body.update(kwargs)
    return body


def test_health_and_version():
    with _client(gemini_api_key="AIzaServerServerServerServer") as client:
        assert client.get("/health").json() == {"status": "ok"}
        info = client.get("/version").json()
        assert info["version"] == __version__
        assert info["providers"]["Gemini"] is True
        assert info["providers"]["Bedrock"] is False


def test_chat_batch_shape():
    with _client(backend_for(["4"])) as client:
        r = client.post("/chat", json=_chat_body(stream=False))
        assert r.status_code == 200
        assert r.json() == {"choices": [{"message": {"content": "4"}}]}


def test_chat_stream_reassembles_batch_text():
    with _client() as client:
        batch = client.post("/chat", json=_chat_body(stream=False)).json()
        r = client.post("/chat", json=_chat_body(stream=True))
        assert r.status_code == 200
        assert r.headers["content-type"].startswith("text/plain")
        assert r.text == batch["choices"][0]["message"]["content"] == "".join(CHUNKS)


def test_chat_without_any_provider():
    with _client() as client:
        body = _chat_body()
        body.pop("provider")
        body.pop("providerConfig")
        r = client.post("/chat", json=body)
        assert r.status_code == 400
        assert r.json()["code"] == 400


def test_chat_empty_conversation():
    with _client() as client:
        body = _chat_body()
        body["conversation"]["messages"] = []
        r = client.post("/chat", json=body)
        assert r.status_code == 400
        assert "empty" in r.json()["error"]


def test_chat_invalid_body_uses_error_shape():
    with _client() as client:
        r = client.post("/chat", json={"provider": "OpenAI"})
        assert r.status_code == 400
        assert set(r.json()) == {"error", "code"}


def test_models_endpoint():
    with _client(gemini_api_key="AIzaServerServerServerServer") as client:
        r = client.get("/chat/gemini/models")
        assert r.status_code == 200
        data = r.json()
        assert data["provider"] == "Gemini"
        assert "gemini-1.5-pro" in [m["id"] for m in data["models"]]

        r = client.get("/chat/bedrock/models")
        assert r.status_code == 500
        assert r.json() == {"error": "AWS credentials not set.", "code": 500}

        r = client.get("/chat/cohere/models")
        assert r.status_code == 400


def test_build_prompt_endpoint_returns_citations():
    contexts = [c.model_dump() for c in make_contexts(2)]
    convo = make_conversation([{"role": "user", "content": "What is in doc 2?", "contexts": contexts}])
    with _client() as client:
        r = client.post("/buildPrompt", json={"conversation": convo.model_dump(), "projectName": "bio101"})
        assert r.status_code == 200
        data = r.json()
        last = data["messages"][-1]
        assert "<PotentiallyRelevantDocuments>" in last["finalPromtEngineeredMessage"]
        assert last["latestSystemMessage"]
        assert data["citations"]["2"]["readable_filename"] == "doc2.pdf"
        assert len(data["messages"]) == 1


@pytest.mark.asyncio
async def test_client_disconnect_stops_upstream_stream():
    backend = backend_for([f"part{i} " for i in range(50)])
    app = create_app(registry=registry_for(backend))
    payload = json.dumps(_chat_body(stream=True)).encode("utf-8")
    scope = {
        "method": "POST",
        "path": "/chat",
        "raw_path": b"/chat",
        "headers": [(b"content-type", b"application/json"), (b"content-length", str(len(payload)).encode())],
    }
    async with app.router.lifespan_context(app):
        sent = await disconnect_after_first_chunk(app, scope, payload)
    assert sent[0]["type"] == "http.response.start"
    assert sent[0]["status"] == 200
    upstream = backend.streams[0]
    assert upstream.closed
    assert upstream.sent < 51


def test_error_body_documented_in_openapi():
    with _client() as client:
        spec = client.get("/openapi.json").json()
    assert "ErrorBody" in spec["components"]["schemas"]
    chat_responses = spec["paths"]["/chat"]["post"]["responses"]
    for status in ("400", "401", "500", "502", "504"):
        ref = chat_responses[status]["content"]["application/json"]["schema"]["$ref"]
        assert ref.endswith("/ErrorBody")
