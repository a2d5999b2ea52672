from __future__ import annotations
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from loguru import logger

from . import __version__
from .errors import InvalidConversationError, NoProviderConfiguredError, RouterError
from .log import setup_logger
from .models import (
    BuildPromptRequest,
    BuildPromptResponse,
    ChatRequest,
    ErrorBody,
    Health,
    ModelsResponse,
    VersionInfo,
)
from .prompt_builder import build_prompt, citation_map
from .providers.registry import ProviderRegistry
from .router import UNEXPECTED_ERROR_MESSAGE, ChatRouter, error_response
from .settings import Settings, get_settings

APP_VERSION = __version__

ERROR_RESPONSES = {code: {"model": ErrorBody} for code in (400, 401, 500, 502, 504)}


def create_app(settings: Optional[Settings] = None, registry: Optional[ProviderRegistry] = None) -> FastAPI:
    settings = settings or (registry.settings if registry is not None else get_settings())

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        setup_logger(settings.log_level)
        owned = registry is None
        app.state.providers = registry or ProviderRegistry(settings)
        app.state.router = ChatRouter(app.state.providers)
        logger.info(f"LLM router {APP_VERSION} ready - providers={app.state.providers.enabled()}")
        try:
            yield
        finally:
            if owned:
                await app.state.providers.aclose()

    app = FastAPI(title="LLM Router", version=APP_VERSION, lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(RouterError)
    async def _router_error(request: Request, exc: RouterError):
        return error_response(exc)

    @app.exception_handler(RequestValidationError)
    async def _validation_error(request: Request, exc: RequestValidationError):
        errors = exc.errors()
        first = errors[0] if errors else {}
        where = ".".join(str(p) for p in first.get("loc", ()) if p != "body")
        message = f"Invalid request body: {where}: {first.get('msg', 'validation failed')}" if where else "Invalid request body"
        return error_response(InvalidConversationError(message))

    @app.exception_handler(Exception)
    async def _unexpected_error(request: Request, exc: Exception):
        logger.exception(f"Unhandled error on {request.url.path}")
        return error_response(RouterError(UNEXPECTED_ERROR_MESSAGE, code=500))

    @app.get("/health", response_model=Health)
    async def health():
        return Health(status="ok")

    @app.get("/version", response_model=VersionInfo)
    async def version(request: Request):
        return VersionInfo(
            version=APP_VERSION,
            default_provider=settings.default_provider,
            providers=request.app.state.providers.enabled(),
        )

    @app.post("/chat", responses=ERROR_RESPONSES)
    async def chat(body: ChatRequest, request: Request):
        return await request.app.state.router.route(body)

    @app.get("/chat/{provider}/models", response_model=ModelsResponse, responses=ERROR_RESPONSES)
    async def list_models(provider: str, request: Request):
        try:
            adapter = request.app.state.providers.get(provider)
        except KeyError:
            raise NoProviderConfiguredError(f"Unknown provider: {provider}") from None
        models = await adapter.list_models()
        return ModelsResponse(provider=adapter.name.value, models=models)

    @app.post("/buildPrompt", response_model=BuildPromptResponse, responses=ERROR_RESPONSES)
    async def build_prompt_endpoint(body: BuildPromptRequest):
        conversation = build_prompt(body.conversation, body.courseMetadata)
        contexts = conversation.messages[-1].contexts or []
        return BuildPromptResponse(**conversation.model_dump(), citations=citation_map(contexts))

    return app


app = create_app()
