"""Turn adapter results into HTTP responses.

Streaming requests get a chunked `text/plain` body whose chunks are the
backend's text deltas in order. Batch requests get an OpenAI-shaped JSON body.
The upstream request is always released when the body finishes, fails or is
abandoned by the client.
"""
from __future__ import annotations
from typing import Any, AsyncIterator, Dict

from fastapi.responses import JSONResponse, StreamingResponse
from loguru import logger

from .errors import empty_response_error
from .providers.types import BatchCompletion, NormalizedResponse, StreamingText

TEXT_MEDIA_TYPE = "text/plain; charset=utf-8"


def completion_body(content: str) -> Dict[str, Any]:
    return {"choices": [{"message": {"content": content}}]}


async def collect(result: NormalizedResponse) -> BatchCompletion:
    if isinstance(result, BatchCompletion):
        return result
    return await result.collect()


async def prime(stream: StreamingText) -> StreamingText:
    """Pull the first chunk before any response headers go out.

    Errors raised while the backend is still answering therefore become
    ordinary error responses, and an empty stream is reported as such.
    """
    iterator = stream.__aiter__()
    try:
        first = await iterator.__anext__()
    except StopAsyncIteration:
        await stream.aclose()
        raise empty_response_error(stream.provider) from None
    except BaseException:
        await stream.aclose()
        raise

    async def _chained() -> AsyncIterator[str]:
        yield first
        async for chunk in iterator:
            yield chunk

    return StreamingText(_chained(), provider=stream.provider, close=stream.aclose)


async def _body(stream: StreamingText) -> AsyncIterator[bytes]:
    async for chunk in stream:
        yield chunk.encode("utf-8")


class TextStreamResponse(StreamingResponse):
    """Chunked text body that always closes its upstream stream.

    A client disconnect cancels the response task wherever it is waiting,
    often inside ``send``, so the body generator is not resumed and its own
    cleanup never runs. The stream is closed once the response call returns,
    however it ended.
    """

    def __init__(self, stream: StreamingText, **kwargs: Any) -> None:
        super().__init__(_body(stream), media_type=TEXT_MEDIA_TYPE, **kwargs)
        self.stream = stream

    async def __call__(self, scope, receive, send) -> None:
        try:
            await super().__call__(scope, receive, send)
        finally:
            await self.stream.aclose()
            logger.debug(f"Stream closed - provider={self.stream.provider}")


async def to_response(result: NormalizedResponse, stream: bool):
    if not stream:
        completion = await collect(result)
        if not completion.content:
            raise empty_response_error(completion.provider)
        if completion.provider_meta:
            logger.debug(f"{completion.provider} answered - {completion.provider_meta}")
        return JSONResponse(completion_body(completion.content))

    if isinstance(result, BatchCompletion):
        result = StreamingText.from_text(result.content, provider=result.provider)
    primed = await prime(result)
    return TextStreamResponse(primed)
