from __future__ import annotations
from typing import List, Optional

import httpx
from loguru import logger

from ..credentials import resolve
from ..errors import CredentialError, ProviderError, RouterError
from ..models import Conversation, LLMModel, VLLMProviderConfig
from ..schemas import SchemaValidator
from ..settings import Settings
from . import catalog
from .conversion import require_messages, to_chat_messages
from .openai import chat_completions, list_model_ids
from .types import NormalizedResponse, ProviderName

# the hosted server does not check keys but the wire format wants one
PLACEHOLDER_API_KEY = "non-empty"
MAX_TOKENS = 8192


class VLLMAdapter:
    """Self-hosted vLLM speaking the OpenAI chat completions protocol."""

    name = ProviderName.VLLM

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
        return bool(self.settings.vllm_base_url)

    def _base_url(self, config: Optional[VLLMProviderConfig]) -> str:
        if config and config.baseUrl:
            return resolve(config.baseUrl, self.settings.signing_key).rstrip("/")
        if self.settings.vllm_base_url:
            return self.settings.vllm_base_url
        raise CredentialError("vLLM base URL is not configured.")

    async def send(self, conversation: Conversation, config: Optional[VLLMProviderConfig], stream: bool) -> NormalizedResponse:
        require_messages(conversation, self.name.value)
        base_url = self._base_url(config)
        payload = {
            "model": conversation.model.id,
            "messages": to_chat_messages(conversation),
            "temperature": conversation.temperature,
            "max_tokens": MAX_TOKENS,
        }
        logger.debug(f"vLLM: model={conversation.model.id}, stream={stream}")
        return await chat_completions(
            self.client,
            base_url=base_url,
            api_key=PLACEHOLDER_API_KEY,
            payload=payload,
            stream=stream,
            provider=self.name.value,
            timeout=self.settings.request_timeout,
            validator=self.validator,
        )

    async def list_models(self) -> List[LLMModel]:
        if not self.enabled:
            raise ProviderError("vLLM base URL not set.", code=500)
        try:
            ids = await list_model_ids(
                self.client,
                base_url=self.settings.vllm_base_url,
                api_key=PLACEHOLDER_API_KEY,
                provider=self.name.value,
                timeout=self.settings.request_timeout,
                validator=self.validator,
            )
        except RouterError as e:
            if e.code == 530:
                raise ProviderError("Model is offline", code=503) from e
            raise
        return [catalog.describe(self.name.value, model_id) for model_id in ids]
