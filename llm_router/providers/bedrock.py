from __future__ import annotations
import asyncio
import time
from contextlib import contextmanager
from typing import Any, AsyncIterator, Callable, Dict, Iterator, List, Optional

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError, ConnectTimeoutError, ReadTimeoutError
from loguru import logger

from ..credentials import resolve
from ..errors import CredentialError, ProviderError, ProviderTimeoutError, RouterError, empty_response_error
from ..log import mask
from ..models import BedrockProviderConfig, Conversation, LLMModel
from ..schemas import SchemaValidator, get_validator
from ..settings import Settings
from . import catalog
from .conversion import require_messages, split_system, to_chat_messages
from .types import BatchCompletion, NormalizedResponse, ProviderName, StreamingText

MAX_TOKENS = 4096
# AWS answers bad or expired credentials with 400/403 and one of these codes
CREDENTIAL_ERROR_CODES = frozenset({
    "UnrecognizedClientException",
    "InvalidSignatureException",
    "InvalidClientTokenId",
    "SignatureDoesNotMatch",
    "ExpiredTokenException",
    "AccessDeniedException",
})
MISSING_CREDENTIALS_MESSAGE = "AWS credentials are missing. Please add them on the LLM page in your course settings."

ClientFactory = Callable[[str, str, str, float], Any]

_END = object()


def default_client_factory(region: str, access_key_id: str, secret_access_key: str, timeout: float) -> Any:
    # credentials are per request, so are clients
    return boto3.client(
        "bedrock-runtime",
        region_name=region,
        aws_access_key_id=access_key_id,
        aws_secret_access_key=secret_access_key,
        config=Config(
            read_timeout=timeout,
            connect_timeout=min(10.0, timeout),
            retries={"max_attempts": 1},
        ),
    )


@contextmanager
def _translate_errors(provider: str) -> Iterator[None]:
    try:
        yield
    except RouterError:
        raise
    except (ReadTimeoutError, ConnectTimeoutError, asyncio.TimeoutError) as e:
        logger.warning(f"{provider} request timed out: {e.__class__.__name__}")
        raise ProviderTimeoutError(f"{provider} did not respond in time") from e
    except ClientError as e:
        err = e.response.get("Error", {})
        status = e.response.get("ResponseMetadata", {}).get("HTTPStatusCode") or 500
        message = err.get("Message") or err.get("Code") or "request rejected"
        if err.get("Code") in CREDENTIAL_ERROR_CODES:
            logger.warning(f"{provider} rejected the credentials: {err.get('Code')}")
            raise CredentialError(f"{provider} rejected the AWS credentials: {message}") from e
        raise ProviderError(f"{provider} error ({status}): {message}", code=status) from e
    except BotoCoreError as e:
        logger.warning(f"{provider} transport failure: {e.__class__.__name__}")
        raise ProviderError(f"{provider} request failed: {e.__class__.__name__}", code=502) from e


def to_converse_messages(messages: List[Dict[str, str]]) -> List[Dict[str, Any]]:
    return [
        {"role": "assistant" if m["role"] == "assistant" else "user", "content": [{"text": m["content"]}]}
        for m in messages
    ]


class BedrockAdapter:
    """AWS Bedrock through the Converse API (boto3, run on worker threads)."""

    name = ProviderName.BEDROCK

    def __init__(
        self,
        settings: Settings,
        client_factory: Optional[ClientFactory] = None,
        validator: Optional[SchemaValidator] = None,
    ) -> None:
        self.settings = settings
        self.client_factory = client_factory or default_client_factory
        self.validator = validator

    @property
    def enabled(self) -> bool:
        return self.settings.aws_configured

    def _client(self, config: Optional[BedrockProviderConfig]) -> Any:
        if not (config and config.accessKeyId and config.secretAccessKey and config.region):
            raise CredentialError(MISSING_CREDENTIALS_MESSAGE)
        signing_key = self.settings.signing_key
        access_key_id = resolve(config.accessKeyId, signing_key)
        logger.debug(f"Bedrock: region={config.region}, access key {mask(access_key_id)}")
        return self.client_factory(
            config.region,
            access_key_id,
            resolve(config.secretAccessKey, signing_key),
            self.settings.request_timeout,
        )

    def _request(self, conversation: Conversation) -> Dict[str, Any]:
        system, messages = split_system(to_chat_messages(conversation))
        request: Dict[str, Any] = {
            "modelId": conversation.model.id,
            "messages": to_converse_messages(messages),
            "inferenceConfig": {"maxTokens": MAX_TOKENS, "temperature": conversation.temperature},
        }
        if system:
            request["system"] = [{"text": system}]
        return request

    async def _chunks(self, event_stream: Any) -> AsyncIterator[str]:
        provider = self.name.value
        timeout = self.settings.request_timeout
        events = iter(event_stream)
        try:
            with _translate_errors(provider):
                while True:
                    event = await asyncio.wait_for(asyncio.to_thread(next, events, _END), timeout)
                    if event is _END:
                        break
                    delta = (event.get("contentBlockDelta") or {}).get("delta") or {}
                    text = delta.get("text")
                    if text:
                        yield text
                    if "messageStop" in event:
                        break
        finally:
            event_stream.close()

    async def send(self, conversation: Conversation, config: Optional[BedrockProviderConfig], stream: bool) -> NormalizedResponse:
        require_messages(conversation, self.name.value)
        client = self._client(config)
        request = self._request(conversation)
        timeout = self.settings.request_timeout
        logger.debug(f"Bedrock: model={request['modelId']}, stream={stream}, messages={len(request['messages'])}")

        if stream:
            with _translate_errors(self.name.value):
                response = await asyncio.wait_for(asyncio.to_thread(client.converse_stream, **request), timeout)
            event_stream = response["stream"]

            async def _close() -> None:
                event_stream.close()

            return StreamingText(self._chunks(event_stream), provider=self.name.value, close=_close)

        t0 = time.perf_counter()
        with _translate_errors(self.name.value):
            data = await asyncio.wait_for(asyncio.to_thread(client.converse, **request), timeout)
        (self.validator or get_validator()).require("bedrock_converse", data, self.name.value)
        parts = ((data.get("output") or {}).get("message") or {}).get("content") or []
        content = "".join(p.get("text", "") for p in parts if isinstance(p, dict))
        if not content:
            raise empty_response_error(self.name.value)
        meta = {
            "usage": data.get("usage"),
            "stopReason": data.get("stopReason"),
            "latency_ms": int((time.perf_counter() - t0) * 1000),
        }
        return BatchCompletion(content=content, provider=self.name.value, provider_meta=meta)

    async def list_models(self) -> List[LLMModel]:
        if not self.enabled:
            raise ProviderError("AWS credentials not set.", code=500)
        return catalog.models_for(self.name.value)
