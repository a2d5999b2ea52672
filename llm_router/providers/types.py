from __future__ import annotations
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Optional, Protocol, Union

from ..models import Conversation, LLMModel


class ProviderName(str, Enum):
    OPENAI = "OpenAI"
    BEDROCK = "Bedrock"
    GEMINI = "Gemini"
    OLLAMA = "Ollama"
    VLLM = "VLLM"

    @classmethod
    def parse(cls, value: Union[str, "ProviderName"]) -> "ProviderName":
        if isinstance(value, ProviderName):
            return value
        key = str(value or "").strip().lower().replace("-", "").replace("_", "")
        aliases = {
            "openai": cls.OPENAI,
            "openaicompatible": cls.OPENAI,
            "bedrock": cls.BEDROCK,
            "gemini": cls.GEMINI,
            "ollama": cls.OLLAMA,
            "vllm": cls.VLLM,
            "ncsahostedvlm": cls.VLLM,
        }
        if key not in aliases:
            raise ValueError(f"Unknown provider: {value}")
        return aliases[key]


@dataclass
class BatchCompletion:
    content: str
    provider: str = ""
    provider_meta: Dict[str, Any] = field(default_factory=dict)


class StreamingText:
    """Lazy, finite, single-use sequence of UTF-8 text chunks.

    Closing it (or stopping iteration early and closing) terminates the
    upstream request.
    """

    def __init__(
        self,
        chunks: AsyncIterator[str],
        *,
        provider: str = "",
        close: Optional[Callable[[], Awaitable[None]]] = None,
    ) -> None:
        self._chunks = chunks
        self._close = close
        self._consumed = False
        self._closed = False
        self.provider = provider

    @classmethod
    def from_text(cls, text: str, provider: str = "") -> "StreamingText":
        async def _one() -> AsyncIterator[str]:
            if text:
                yield text
        return cls(_one(), provider=provider)

    def __aiter__(self) -> AsyncIterator[str]:
        if self._consumed:
            raise RuntimeError("StreamingText can only be consumed once")
        self._consumed = True
        return self._chunks.__aiter__()

    @property
    def closed(self) -> bool:
        return self._closed

    async def aclose(self) -> None:
        if self._closed:
            return
        self._closed = True
        aclose = getattr(self._chunks, "aclose", None)
        try:
            if aclose is not None:
                await aclose()
        finally:
            if self._close is not None:
                await self._close()

    async def collect(self) -> BatchCompletion:
        parts: List[str] = []
        try:
            async for chunk in self:
                parts.append(chunk)
        finally:
            await self.aclose()
        return BatchCompletion(content="".join(parts), provider=self.provider)


NormalizedResponse = Union[StreamingText, BatchCompletion]


class ProviderAdapter(Protocol):
    name: ProviderName

    async def send(self, conversation: Conversation, config: Any, stream: bool) -> NormalizedResponse:
        ...

    async def list_models(self) -> List[LLMModel]:
        ...
