from __future__ import annotations
import json
import time
from typing import Any, AsyncIterator, Dict, List, Optional

import httpx
from loguru import logger

from ..credentials import resolve
from ..errors import CredentialError, ProviderError, empty_response_error
from ..log import mask
from ..models import Conversation, LLMModel, OpenAIProviderConfig
from ..schemas import SchemaValidator, get_validator
from ..settings import Settings
from . import catalog
from .conversion import require_messages, to_chat_messages
from .transport import iter_sse_data, open_stream, request_json, translate_errors
from .types import BatchCompletion, NormalizedResponse, ProviderName, StreamingText

ADD_KEY_MESSAGE = "Please add your OpenAI API key on the LLM page in your course settings."
KEY_PREFIX_MESSAGE = 'Invalid API key format. OpenAI API keys should start with "sk-".'


def _headers(api_key: str) -> Dict[str, str]:
    return {
        "Authorization": f"Bearer {api_key}",
        "Content-Type": "application/json",
    }


def _delta_text(chunk: Dict[str, Any]) -> str:
    choices = chunk.get("choices") or []
    if not choices:
        return ""
    delta = (choices[0] or {}).get("delta") or {}
    return delta.get("content") or ""


async def _sse_chunks(response: httpx.Response, provider: str) -> AsyncIterator[str]:
    try:
        async with translate_errors(provider):
            async for data in iter_sse_data(response):
                if data == "[DONE]":
                    break
                chunk = json.loads(data)
                if isinstance(chunk, dict) and chunk.get("error"):
                    err = chunk["error"]
                    message = err.get("message") if isinstance(err, dict) else str(err)
                    raise ProviderError(f"{provider} error: {message}")
                text = _delta_text(chunk)
                if text:
                    yield text
    finally:
        await response.aclose()


async def chat_completions(
    client: httpx.AsyncClient,
    *,
    base_url: str,
    api_key: str,
    payload: Dict[str, Any],
    stream: bool,
    provider: str,
    timeout: float,
    validator: Optional[SchemaValidator] = None,
) -> NormalizedResponse:
    """POST {base_url}/chat/completions for any OpenAI wire compatible backend."""
    url = f"{base_url.rstrip('/')}/chat/completions"
    body = dict(payload, stream=stream)
    if stream:
        response = await open_stream(
            client, "POST", url, provider=provider, timeout=timeout, json=body, headers=_headers(api_key)
        )
        return StreamingText(_sse_chunks(response, provider), provider=provider, close=response.aclose)

    t0 = time.perf_counter()
    data = await request_json(
        client, "POST", url, provider=provider, timeout=timeout, json=body, headers=_headers(api_key)
    )
    (validator or get_validator()).require("openai_completion", data, provider)
    choices = data.get("choices") or []
    content = ((choices[0] or {}).get("message") or {}).get("content") if choices else None
    if not content:
        raise empty_response_error(provider)
    meta = {
        "model": data.get("model"),
        "usage": data.get("usage"),
        "latency_ms": int((time.perf_counter() - t0) * 1000),
    }
    return BatchCompletion(content=content, provider=provider, provider_meta=meta)


async def list_model_ids(
    client: httpx.AsyncClient,
    *,
    base_url: str,
    api_key: str,
    provider: str,
    timeout: float,
    validator: Optional[SchemaValidator] = None,
) -> List[str]:
    url = f"{base_url.rstrip('/')}/models"
    data = await request_json(client, "GET", url, provider=provider, timeout=timeout, headers=_headers(api_key))
    (validator or get_validator()).require("openai_models", data, provider)
    return [item["id"] for item in data.get("data", [])]


class OpenAIAdapter:
    name = ProviderName.OPENAI

    def __init__(
        self,
        client: httpx.AsyncClient,
        settings: Settings,
        validator: Optional[SchemaValidator] = None,
    ) -> None:
        self.client = client
        self.settings = settings
        self.validator = validator

    @property
    def enabled(self) -> bool:
        return bool(self.settings.shared_openai_api_key)

    def _api_key(self, config: Optional[OpenAIProviderConfig], base_url: str) -> str:
        shared = self.settings.shared_openai_api_key
        supplied = ((config.apiKey if config else None) or "").strip()
        if not supplied or supplied == "undefined":
            if self.settings.allow_shared_openai_key and shared:
                logger.info(f"OpenAI: no project key, using the shared key {mask(shared)}")
                return shared
            raise CredentialError(ADD_KEY_MESSAGE)
        # the shared key must never arrive as if it were the project's own
        if shared and supplied == shared:
            raise CredentialError(ADD_KEY_MESSAGE)
        key = resolve(supplied, self.settings.signing_key)
        if shared and key == shared:
            raise CredentialError(ADD_KEY_MESSAGE)
        logger.debug(f"OpenAI: project key {mask(key)}")
        if base_url == self.settings.openai_base_url and not key.startswith("sk-"):
            raise CredentialError(KEY_PREFIX_MESSAGE)
        return key

    def _base_url(self, config: Optional[OpenAIProviderConfig]) -> str:
        if config and config.baseUrl:
            return resolve(config.baseUrl, self.settings.signing_key).rstrip("/")
        return self.settings.openai_base_url

    async def send(self, conversation: Conversation, config: Optional[OpenAIProviderConfig], stream: bool) -> NormalizedResponse:
        require_messages(conversation, self.name.value)
        base_url = self._base_url(config)
        api_key = self._api_key(config, base_url)
        payload = {
            "model": conversation.model.id,
            "messages": to_chat_messages(conversation),
            "temperature": conversation.temperature,
        }
        logger.debug(f"OpenAI: model={conversation.model.id}, stream={stream}, messages={len(payload['messages'])}")
        return await chat_completions(
            self.client,
            base_url=base_url,
            api_key=api_key,
            payload=payload,
            stream=stream,
            provider=self.name.value,
            timeout=self.settings.request_timeout,
            validator=self.validator,
        )

    async def list_models(self) -> List[LLMModel]:
        if not self.enabled:
            raise ProviderError("OpenAI API key not set.", code=500)
        ids = await list_model_ids(
            self.client,
            base_url=self.settings.openai_base_url,
            api_key=self.settings.shared_openai_api_key,
            provider=self.name.value,
            timeout=self.settings.request_timeout,
            validator=self.validator,
        )
        available = set(ids)
        return [m for m in catalog.models_for(self.name.value) if m.id in available]
