from __future__ import annotations
import asyncio
import json
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator

import httpx
from loguru import logger

from ..errors import ProviderError, ProviderTimeoutError, RouterError


def error_message(body: str) -> str:
    """Best-effort human readable message from a backend error body."""
    try:
        data = json.loads(body)
    except ValueError:
        return (body or "").strip()[:300]
    err = data.get("error") if isinstance(data, dict) else None
    if isinstance(err, dict):
        return str(err.get("message") or err.get("status") or err)[:300]
    if isinstance(err, str):
        return err[:300]
    if isinstance(data, dict) and data.get("message"):
        return str(data["message"])[:300]
    return (body or "").strip()[:300]


def status_error(provider: str, status: int, body: str) -> ProviderError:
    message = error_message(body) or f"HTTP {status}"
    return ProviderError(f"{provider} error ({status}): {message}", code=status)


@asynccontextmanager
async def translate_errors(provider: str) -> AsyncIterator[None]:
    """Turn transport exceptions into router errors at the adapter boundary."""
    try:
        yield
    except RouterError:
        raise
    except (httpx.TimeoutException, asyncio.TimeoutError) as e:
        logger.warning(f"{provider} request timed out: {e.__class__.__name__}")
        raise ProviderTimeoutError(f"{provider} did not respond in time") from e
    except httpx.HTTPError as e:
        logger.warning(f"{provider} transport failure: {e.__class__.__name__}")
        raise ProviderError(f"{provider} request failed: {e.__class__.__name__}", code=502) from e
    except ValueError as e:
        # json decoding of a backend payload
        raise ProviderError(f"{provider} returned a malformed response", code=502) from e


async def request_json(
    client: httpx.AsyncClient,
    method: str,
    url: str,
    *,
    provider: str,
    timeout: float,
    **kwargs: Any,
) -> Any:
    async with translate_errors(provider):
        r = await asyncio.wait_for(client.request(method, url, **kwargs), timeout)
        if r.status_code >= 400:
            raise status_error(provider, r.status_code, r.text)
        return r.json()


async def open_stream(
    client: httpx.AsyncClient,
    method: str,
    url: str,
    *,
    provider: str,
    timeout: float,
    **kwargs: Any,
) -> httpx.Response:
    """Send the request and wait for the response head only.

    Non-2xx responses are read, closed and raised before any chunk is handed out.
    """
    request = client.build_request(method, url, **kwargs)
    async with translate_errors(provider):
        response = await asyncio.wait_for(client.send(request, stream=True), timeout)
        if response.status_code >= 400:
            try:
                body = (await response.aread()).decode("utf-8", errors="replace")
            finally:
                await response.aclose()
            raise status_error(provider, response.status_code, body)
    return response


async def iter_sse_data(response: httpx.Response) -> AsyncIterator[str]:
    """`data:` payloads of a text/event-stream body."""
    async for line in response.aiter_lines():
        line = line.strip()
        if line.startswith("data:"):
            yield line[5:].strip()


async def iter_ndjson(response: httpx.Response) -> AsyncIterator[Any]:
    async for line in response.aiter_lines():
        line = line.strip()
        if line:
            yield json.loads(line)
