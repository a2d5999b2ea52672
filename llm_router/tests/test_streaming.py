import asyncio
import json

import pytest
from fastapi.responses import JSONResponse, StreamingResponse
from loguru import logger

from conftest import disconnect_after_first_chunk
from llm_router.errors import ProviderError
from llm_router.providers.types import BatchCompletion, StreamingText
from llm_router.streaming import TEXT_MEDIA_TYPE, collect, completion_body, prime, to_response


class Source:
    """Async chunk source that records how far it was pulled and whether it was closed."""

    def __init__(self, chunks):
        self.chunks = chunks
        self.pulled = 0
        self.closed = False

    async def gen(self):
        try:
            for c in self.chunks:
                self.pulled += 1
                yield c
        finally:
            self.closed = True

    def stream(self) -> StreamingText:
        return StreamingText(self.gen(), provider="Test")


async def _drain(response: StreamingResponse) -> bytes:
    out = b""
    async for part in response.body_iterator:
        out += part
    return out


@pytest.mark.asyncio
async def test_batch_response_shape():
    resp = await to_response(BatchCompletion(content="4", provider="Test"), stream=False)
    assert isinstance(resp, JSONResponse)
    assert json.loads(resp.body) == {"choices": [{"message": {"content": "4"}}]}


@pytest.mark.asyncio
async def test_batch_metadata_logged_at_debug():
    records = []
    sink = logger.add(lambda message: records.append(message.record["message"]), level="DEBUG")
    try:
        completion = BatchCompletion(
            content="4", provider="Test", provider_meta={"latency_ms": 12, "usage": {"total_tokens": 9}}
        )
        await to_response(completion, stream=False)
    finally:
        logger.remove(sink)
    assert any("Test answered" in r and "latency_ms" in r and "total_tokens" in r for r in records)


@pytest.mark.asyncio
async def test_stream_collected_for_batch_request():
    src = Source(["a", "b", "c"])
    resp = await to_response(src.stream(), stream=False)
    assert json.loads(resp.body) == completion_body("abc")
    assert src.closed


@pytest.mark.asyncio
async def test_streaming_response_reassembles_text():
    src = Source(["Hel", "lo ", "wörld"])
    resp = await to_response(src.stream(), stream=True)
    assert isinstance(resp, StreamingResponse)
    assert resp.media_type == TEXT_MEDIA_TYPE
    assert (await _drain(resp)).decode("utf-8") == "Hello wörld"
    assert src.closed


@pytest.mark.asyncio
async def test_batch_completion_streamed_as_single_chunk():
    resp = await to_response(BatchCompletion(content="whole answer"), stream=True)
    assert await _drain(resp) == b"whole answer"


@pytest.mark.asyncio
async def test_empty_stream_is_error_before_headers():
    src = Source([])
    with pytest.raises(ProviderError) as ei:
        await to_response(src.stream(), stream=True)
    assert ei.value.code == 502
    assert src.closed


@pytest.mark.asyncio
async def test_client_disconnect_closes_source():
    src = Source([f"c{i}" for i in range(100)])
    resp = await to_response(src.stream(), stream=True)
    sent = await disconnect_after_first_chunk(resp)
    bodies = [m["body"] for m in sent if m["type"] == "http.response.body" and m.get("body")]
    assert bodies[0] == b"c0"
    # no garbage collection needed: closed as soon as the response call returns
    assert src.closed
    assert src.pulled < 100


@pytest.mark.asyncio
async def test_completed_response_closes_source():
    src = Source(["a", "b"])
    resp = await to_response(src.stream(), stream=True)
    sent = []

    async def receive():
        await asyncio.Event().wait()

    async def send(message):
        sent.append(message)

    await resp({"type": "http", "asgi": {"version": "3.0"}}, receive, send)
    assert b"".join(m.get("body", b"") for m in sent if m["type"] == "http.response.body") == b"ab"
    assert resp.stream.closed
    assert src.closed


@pytest.mark.asyncio
async def test_prime_keeps_order_and_single_use():
    src = Source(["1", "2", "3"])
    primed = await prime(src.stream())
    assert (await collect(primed)).content == "123"
    with pytest.raises(RuntimeError):
        primed.__aiter__()
