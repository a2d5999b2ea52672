from __future__ import annotations
import time
from typing import Any, AsyncIterator, Dict, List, Optional

import httpx
from loguru import logger

from ..credentials import resolve
from ..errors import CredentialError, ProviderError, empty_response_error
from ..models import Conversation, LLMModel, OllamaProviderConfig
from ..schemas import SchemaValidator, get_validator
from ..settings import Settings
from . import catalog
from .conversion import require_messages, to_chat_messages
from .transport import iter_ndjson, open_stream, request_json, translate_errors
from .types import BatchCompletion, NormalizedResponse, ProviderName, StreamingText

MAX_TOKENS = 4096


class OllamaAdapter:
    name = ProviderName.OLLAMA

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
        return bool(self.settings.ollama_server_url)

    def _base_url(self, config: Optional[OllamaProviderConfig]) -> str:
        if config and config.baseUrl:
            return resolve(config.baseUrl, self.settings.signing_key).rstrip("/")
        if self.settings.ollama_server_url:
            return self.settings.ollama_server_url
        raise CredentialError("Ollama base URL is not configured.")

    def _payload(self, conversation: Conversation, stream: bool) -> Dict[str, Any]:
        return {
            "model": conversation.model.id,
            "messages": to_chat_messages(conversation),
            "stream": stream,
            "options": {
                "num_ctx": conversation.model.tokenLimit,
                "num_predict": MAX_TOKENS,
                "temperature": conversation.temperature,
            },
        }

    async def _chunks(self, response: httpx.Response) -> AsyncIterator[str]:
        provider = self.name.value
        validator = self.validator or get_validator()
        try:
            async with translate_errors(provider):
                async for line in iter_ndjson(response):
                    validator.require("ollama_chat", line, provider)
                    if line.get("error"):
                        raise ProviderError(f"Ollama error: {line['error']}")
                    text = (line.get("message") or {}).get("content") or ""
                    if text:
                        yield text
                    if line.get("done"):
                        break
        finally:
            await response.aclose()

    async def send(self, conversation: Conversation, config: Optional[OllamaProviderConfig], stream: bool) -> NormalizedResponse:
        require_messages(conversation, self.name.value)
        url = f"{self._base_url(config)}/api/chat"
        payload = self._payload(conversation, stream)
        logger.debug(f"Ollama: model={conversation.model.id}, stream={stream}, num_ctx={payload['options']['num_ctx']}")
        if stream:
            response = await open_stream(
                self.client, "POST", url, provider=self.name.value, timeout=self.settings.request_timeout, json=payload
            )
            return StreamingText(self._chunks(response), provider=self.name.value, close=response.aclose)

        t0 = time.perf_counter()
        data = await request_json(
            self.client, "POST", url, provider=self.name.value, timeout=self.settings.request_timeout, json=payload
        )
        (self.validator or get_validator()).require("ollama_chat", data, self.name.value)
        content = (data.get("message") or {}).get("content") or ""
        if not content:
            raise empty_response_error(self.name.value)
        meta = {k: data.get(k) for k in ("total_duration", "load_duration", "prompt_eval_count", "eval_count")}
        meta["latency_ms"] = int((time.perf_counter() - t0) * 1000)
        return BatchCompletion(content=content, provider=self.name.value, provider_meta=meta)

    async def list_models(self) -> List[LLMModel]:
        if not self.enabled:
            raise ProviderError("Ollama server URL not set.", code=500)
        data = await request_json(
            self.client,
            "GET",
            f"{self.settings.ollama_server_url}/api/tags",
            provider=self.name.value,
            timeout=self.settings.request_timeout,
        )
        (self.validator or get_validator()).require("ollama_tags", data, self.name.value)
        models = []
        for item in data.get("models", []):
            size = (item.get("details") or {}).get("parameter_size")
            extra = {"parameterSize": size} if size else {}
            models.append(catalog.describe(self.name.value, item["name"], **extra))
        return models
