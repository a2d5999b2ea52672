from .registry import ProviderRegistry
from .types import BatchCompletion, NormalizedResponse, ProviderName, StreamingText

__all__ = ["ProviderRegistry", "ProviderName", "StreamingText", "BatchCompletion", "NormalizedResponse"]
