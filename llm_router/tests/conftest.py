import asyncio
import json
from typing import Any, Callable, Dict, List, Optional

import httpx
import pytest

from llm_router.models import Context, Conversation, LLMModel, Message
from llm_router.providers.registry import ProviderRegistry
from llm_router.settings import Settings


def make_settings(**overrides: Any) -> Settings:
    base: Dict[str, Any] = dict(
        signing_key="test-signing-key",
        shared_openai_api_key=None,
        allow_shared_openai_key=False,
        openai_base_url="https://api.openai.com/v1",
        gemini_api_key=None,
        gemini_base_url="https://generativelanguage.googleapis.com/v1beta",
        ollama_server_url="http://ollama.internal:11434",
        vllm_base_url="http://vllm.internal/v1",
        aws_access_key_id=None,
        aws_secret_access_key=None,
        aws_region=None,
        default_provider=None,
        request_timeout=5.0,
        log_level="DEBUG",
    )
    base.update(overrides)
    return Settings(**base)


def make_conversation(
    messages: Optional[List[Dict[str, Any]]] = None,
    model_id: str = "gpt-4o-mini",
    token_limit: int = 128000,
    **extra: Any,
) -> Conversation:
    if messages is None:
        messages = [{"role": "user", "content": "What is 2+2?"}]
    return Conversation(
        id="conv-1",
        name="test",
        messages=[Message(**m) for m in messages],
        model=LLMModel(id=model_id, name=model_id, tokenLimit=token_limit),
        **extra,
    )


def make_contexts(n: int) -> List[Context]:
    return [
        Context(readable_filename=f"doc{i}.pdf", pagenumber=i, text=f"passage number {i}")
        for i in range(1, n + 1)
    ]


class RecordingStream(httpx.AsyncByteStream):
    """Response body that hands out chunks lazily and records being closed."""

    def __init__(self, chunks: List[bytes]) -> None:
        self.chunks = chunks
        self.sent = 0
        self.closed = False

    async def __aiter__(self):
        for chunk in self.chunks:
            if self.closed:
                break
            self.sent += 1
            yield chunk

    async def aclose(self) -> None:
        self.closed = True


def sse(*events: Any, done: bool = True) -> List[bytes]:
    out = [f"data: {json.dumps(e)}\n\n".encode("utf-8") for e in events]
    if done:
        out.append(b"data: [DONE]\n\n")
    return out


def openai_delta(text: str) -> Dict[str, Any]:
    return {"choices": [{"index": 0, "delta": {"content": text}}]}


class StubBackend:
    """httpx MockTransport wrapper that keeps every request it saw."""

    def __init__(self, handler: Callable[[httpx.Request], httpx.Response]) -> None:
        self.handler = handler
        self.requests: List[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.handler(request)

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self))

    def json_bodies(self) -> List[Dict[str, Any]]:
        return [json.loads(r.content) for r in self.requests]


@pytest.fixture
def settings() -> Settings:
    return make_settings()


OPENAI_KEY = "sk-test-0000000000000000"
CHUNKS = ["The answer ", "is ", "4."]


class FakeEventStream:
    def __init__(self, chunks: List[str]) -> None:
        self.events = (
            [{"messageStart": {"role": "assistant"}}]
            + [{"contentBlockDelta": {"contentBlockIndex": 0, "delta": {"text": c}}} for c in chunks]
            + [{"messageStop": {"stopReason": "end_turn"}}]
        )
        self.closed = False

    def __iter__(self):
        return iter(self.events)

    def close(self) -> None:
        self.closed = True


class FakeBedrockClient:
    def __init__(self, chunks: List[str]) -> None:
        self.chunks = chunks
        self.calls: List[Dict[str, Any]] = []
        self.streams: List[FakeEventStream] = []

    def converse(self, **kwargs):
        self.calls.append(kwargs)
        return {
            "output": {"message": {"role": "assistant", "content": [{"text": "".join(self.chunks)}]}},
            "stopReason": "end_turn",
        }

    def converse_stream(self, **kwargs):
        self.calls.append(kwargs)
        stream = FakeEventStream(self.chunks)
        self.streams.append(stream)
        return {"stream": stream}


def backend_for(chunks: List[str]) -> StubBackend:
    """One stub speaking all four HTTP wire formats, chosen by path."""
    streams: List[RecordingStream] = []

    def handler(request: httpx.Request) -> httpx.Response:
        path = request.url.path
        body = json.loads(request.content) if request.content else {}
        if path.endswith("/chat/completions"):
            if body.get("stream"):
                s = RecordingStream(sse(*[openai_delta(c) for c in chunks]))
                streams.append(s)
                return httpx.Response(200, headers={"content-type": "text/event-stream"}, stream=s)
            return httpx.Response(200, json={"choices": [{"message": {"role": "assistant", "content": "".join(chunks)}}]})
        if path.endswith("/api/chat"):
            lines = [{"message": {"role": "assistant", "content": c}, "done": False} for c in chunks]
            lines.append({"message": {"role": "assistant", "content": ""}, "done": True})
            if body.get("stream"):
                s = RecordingStream([(json.dumps(line) + "\n").encode("utf-8") for line in lines])
                streams.append(s)
                return httpx.Response(200, headers={"content-type": "application/x-ndjson"}, stream=s)
            return httpx.Response(200, json={"message": {"role": "assistant", "content": "".join(chunks)}, "done": True})
        if ":streamGenerateContent" in path:
            events = [{"candidates": [{"content": {"role": "model", "parts": [{"text": c}]}}]} for c in chunks]
            s = RecordingStream(sse(*events, done=False))
            streams.append(s)
            return httpx.Response(200, headers={"content-type": "text/event-stream"}, stream=s)
        return httpx.Response(404, json={"error": {"message": f"no route {path}"}})

    backend = StubBackend(handler)
    backend.streams = streams
    return backend


def registry_for(backend: StubBackend, bedrock: FakeBedrockClient = None, **settings_overrides) -> ProviderRegistry:
    bedrock = bedrock or FakeBedrockClient(CHUNKS)
    return ProviderRegistry(
        make_settings(**settings_overrides),
        client=backend.client(),
        bedrock_client_factory=lambda region, key_id, secret, timeout: bedrock,
    )



async def disconnect_after_first_chunk(app, scope: Optional[Dict[str, Any]] = None, body: bytes = b"") -> List[Dict[str, Any]]:
    """Drive `app` as one ASGI call whose client goes away after the first body chunk.

    Later body sends block until cancelled, like a client that stopped reading.
    Returns the messages the app sent.
    """
    first_chunk = asyncio.Event()
    sent: List[Dict[str, Any]] = []
    request_read = False

    async def receive() -> Dict[str, Any]:
        nonlocal request_read
        if not request_read:
            request_read = True
            return {"type": "http.request", "body": body, "more_body": False}
        await first_chunk.wait()
        return {"type": "http.disconnect"}

    async def send(message: Dict[str, Any]) -> None:
        sent.append(message)
        if message["type"] == "http.response.body" and message.get("body"):
            if first_chunk.is_set():
                await asyncio.Event().wait()
            first_chunk.set()

    full_scope: Dict[str, Any] = {
        "type": "http",
        "asgi": {"version": "3.0"},
        "http_version": "1.1",
        "method": "GET",
        "scheme": "http",
        "path": "/",
        "raw_path": b"/",
        "root_path": "",
        "query_string": b"",
        "headers": [],
        "client": ("testclient", 50000),
        "server": ("testserver", 80),
    }
    full_scope.update(scope or {})
    await asyncio.wait_for(app(full_scope, receive, send), timeout=5)
    return sent
