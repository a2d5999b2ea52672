from __future__ import annotations
from typing import Any, Optional

from fastapi.responses import JSONResponse
from loguru import logger

from .errors import InvalidConversationError, NoProviderConfiguredError, RouterError
from .models import (
    BedrockProviderConfig,
    ChatRequest,
    Conversation,
    ErrorBody,
    GeminiProviderConfig,
    OllamaProviderConfig,
    OpenAIProviderConfig,
    ProjectSettings,
    VLLMProviderConfig,
)
from .prompt_builder import build_prompt
from .providers.registry import ProviderRegistry
from .providers.types import NormalizedResponse, ProviderName
from .streaming import to_response

UNEXPECTED_ERROR_MESSAGE = "An unexpected error occurred"

_EMPTY_CONFIGS = {
    ProviderName.OPENAI: OpenAIProviderConfig,
    ProviderName.BEDROCK: BedrockProviderConfig,
    ProviderName.GEMINI: GeminiProviderConfig,
    ProviderName.OLLAMA: OllamaProviderConfig,
    ProviderName.VLLM: VLLMProviderConfig,
}


def error_response(error: RouterError) -> JSONResponse:
    return JSONResponse(ErrorBody(**error.to_body()).model_dump(), status_code=error.code)


def _parse(value: str) -> ProviderName:
    try:
        return ProviderName.parse(value)
    except ValueError:
        raise NoProviderConfiguredError(f"Unknown provider: {value}") from None


class ChatRouter:
    """Build the prompt, pick the backend, dispatch, normalize the answer."""

    def __init__(self, registry: ProviderRegistry) -> None:
        self.registry = registry

    def select_provider(self, request: ChatRequest) -> ProviderName:
        if request.provider:
            return _parse(request.provider)
        if request.providerConfig is not None:
            return _parse(request.providerConfig.provider)
        project = request.courseMetadata
        if project is not None and project.defaultProvider:
            return _parse(project.defaultProvider)
        if self.registry.settings.default_provider:
            return _parse(self.registry.settings.default_provider)
        raise NoProviderConfiguredError("No LLM provider is configured for this project.")

    def provider_config(self, name: ProviderName, request: ChatRequest) -> Any:
        config = request.providerConfig
        if config is None:
            config = _project_config(name, request.courseMetadata)
        if config is None:
            return _EMPTY_CONFIGS[name]()
        if ProviderName.parse(config.provider) != name:
            raise InvalidConversationError(
                f"Provider configuration is for {config.provider}, but {name.value} was selected."
            )
        return config

    async def dispatch(self, request: ChatRequest, conversation: Conversation) -> NormalizedResponse:
        name = self.select_provider(request)
        config = self.provider_config(name, request)
        adapter = self.registry.get(name)
        logger.info(
            f"Routing chat - conversation={conversation.id}, provider={name.value}, "
            f"model={conversation.model.id}, stream={request.stream}"
        )
        return await adapter.send(conversation, config, request.stream)

    async def route(self, request: ChatRequest):
        try:
            conversation = build_prompt(request.conversation, request.courseMetadata)
            result = await self.dispatch(request, conversation)
            return await to_response(result, request.stream)
        except RouterError as e:
            logger.warning(f"Chat failed - {e.__class__.__name__} ({e.code}): {e.to_body()['error']}")
            return error_response(e)
        except Exception:
            logger.exception("Unexpected error while routing chat")
            return error_response(RouterError(UNEXPECTED_ERROR_MESSAGE, code=500))


def _project_config(name: ProviderName, project: Optional[ProjectSettings]) -> Optional[Any]:
    if project is None:
        return None
    for key, config in project.llmProviders.items():
        try:
            if ProviderName.parse(key) == name:
                return config
        except ValueError:
            continue
    return None
