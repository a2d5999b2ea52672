from __future__ import annotations
from typing import Dict, Optional, Union

import httpx

from ..schemas import get_validator
from ..settings import Settings, get_settings
from .bedrock import BedrockAdapter, ClientFactory
from .gemini import GeminiAdapter
from .ollama import OllamaAdapter
from .openai import OpenAIAdapter
from .types import ProviderAdapter, ProviderName
from .vllm import VLLMAdapter


class ProviderRegistry:
    """One adapter per backend, sharing a single pooled HTTP client."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        client: Optional[httpx.AsyncClient] = None,
        bedrock_client_factory: Optional[ClientFactory] = None,
    ) -> None:
        self.settings = settings or get_settings()
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(timeout=httpx.Timeout(self.settings.request_timeout))
        validator = get_validator()
        self._adapters: Dict[ProviderName, ProviderAdapter] = {
            ProviderName.OPENAI: OpenAIAdapter(self.client, self.settings, validator),
            ProviderName.BEDROCK: BedrockAdapter(self.settings, bedrock_client_factory, validator),
            ProviderName.GEMINI: GeminiAdapter(self.client, self.settings, validator),
            ProviderName.OLLAMA: OllamaAdapter(self.client, self.settings, validator),
            ProviderName.VLLM: VLLMAdapter(self.client, self.settings, validator),
        }

    def get(self, provider: Union[str, ProviderName]) -> ProviderAdapter:
        try:
            name = ProviderName.parse(provider)
        except ValueError:
            raise KeyError(f"Unknown provider: {provider}") from None
        return self._adapters[name]

    def enabled(self) -> Dict[str, bool]:
        """Whether each backend has server-side configuration (used by model listing)."""
        return {name.value: bool(getattr(adapter, "enabled", False)) for name, adapter in self._adapters.items()}

    async def aclose(self) -> None:
        if self._owns_client:
            await self.client.aclose()
