from __future__ import annotations
import json
from typing import Any, AsyncIterator, Dict, List, Optional

import httpx
from loguru import logger

from ..credentials import resolve
from ..errors import CredentialError, InvalidConversationError, ProviderError, RouterError, empty_response_error
from ..models import Conversation, GeminiProviderConfig, LLMModel
from ..schemas import SchemaValidator, get_validator
from ..settings import Settings
from . import catalog
from .conversion import require_messages, split_system, to_chat_messages
from .transport import iter_sse_data, open_stream, translate_errors
from .types import NormalizedResponse, ProviderName, StreamingText

STREAM_PATH = "/models/{model}:streamGenerateContent?alt=sse"
DEFAULT_TEMPERATURE = 0.7

MISSING_KEY_MESSAGE = "Please add your Gemini API key on the LLM page in your course settings."
MODEL_ACCESS_MESSAGE = (
    "This Gemini API key does not have access to the requested model. "
    "Please verify your API key permissions in the Google AI Studio."
)


def to_contents(messages: List[Dict[str, str]]) -> List[Dict[str, Any]]:
    """Chat turns -> Gemini `contents`; assistant turns become `model` turns."""
    return [
        {"role": "model" if m["role"] == "assistant" else "user", "parts": [{"text": m["content"]}]}
        for m in messages
    ]


def _chunk_text(event: Dict[str, Any]) -> str:
    out = []
    for cand in event.get("candidates") or []:
        for part in ((cand or {}).get("content") or {}).get("parts") or []:
            text = (part or {}).get("text")
            if text:
                out.append(text)
    return "".join(out)


def _translate(e: RouterError) -> RouterError:
    if "Developer instruction is not enabled" in e.message:
        return ProviderError(MODEL_ACCESS_MESSAGE, code=403)
    return e


class GeminiAdapter:
    name = ProviderName.GEMINI

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
        return bool(self.settings.gemini_api_key)

    async def _chunks(self, response: httpx.Response) -> AsyncIterator[str]:
        provider = self.name.value
        validator = self.validator or get_validator()
        try:
            async with translate_errors(provider):
                async for data in iter_sse_data(response):
                    event = validator.require("gemini_chunk", json.loads(data), provider)
                    if event.get("error"):
                        raise _translate(ProviderError(f"Gemini error: {event['error'].get('message', '')}"))
                    text = _chunk_text(event)
                    if text:
                        yield text
        finally:
            await response.aclose()

    async def send(self, conversation: Conversation, config: Optional[GeminiProviderConfig], stream: bool) -> NormalizedResponse:
        require_messages(conversation, self.name.value)
        api_key = resolve(config.apiKey if config else None, self.settings.signing_key)
        if not api_key:
            raise CredentialError(MISSING_KEY_MESSAGE)
        model_id = conversation.model.id
        if catalog.find(self.name.value, model_id) is None:
            raise InvalidConversationError(f"Invalid Gemini model ID: {model_id}")

        system, messages = split_system(to_chat_messages(conversation))
        payload: Dict[str, Any] = {
            "contents": to_contents(messages),
            "generationConfig": {
                "temperature": conversation.temperature if conversation.temperature is not None else DEFAULT_TEMPERATURE,
                "maxOutputTokens": conversation.model.tokenLimit,
            },
        }
        if system:
            payload["systemInstruction"] = {"parts": [{"text": system}]}

        url = self.settings.gemini_base_url + STREAM_PATH.format(model=model_id)
        logger.debug(f"Gemini: model={model_id}, stream={stream}, contents={len(payload['contents'])}")
        try:
            response = await open_stream(
                self.client,
                "POST",
                url,
                provider=self.name.value,
                timeout=self.settings.request_timeout,
                json=payload,
                headers={"x-goog-api-key": api_key, "Content-Type": "application/json"},
            )
        except RouterError as e:
            raise _translate(e) from e

        streaming = StreamingText(self._chunks(response), provider=self.name.value, close=response.aclose)
        if stream:
            return streaming
        # batch requests reuse the streaming endpoint and gather the text
        completion = await streaming.collect()
        if not completion.content:
            raise empty_response_error(self.name.value)
        return completion

    async def list_models(self) -> List[LLMModel]:
        if not self.enabled:
            raise ProviderError("Gemini API key not set.", code=500)
        return catalog.models_for(self.name.value)
