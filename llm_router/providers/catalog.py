from __future__ import annotations
from typing import Dict, List, Optional

from ..models import LLMModel

# Known models per backend. tokenLimit is the context window the prompt
# builder budgets against.

OPENAI_MODELS: List[LLMModel] = [
    LLMModel(id="gpt-4o", name="GPT-4o", tokenLimit=128000),
    LLMModel(id="gpt-4o-mini", name="GPT-4o mini", tokenLimit=128000, default=True),
    LLMModel(id="gpt-4-turbo", name="GPT-4 Turbo", tokenLimit=128000),
    LLMModel(id="gpt-4", name="GPT-4", tokenLimit=8192),
    LLMModel(id="gpt-3.5-turbo", name="GPT-3.5 Turbo", tokenLimit=16385),
]

BEDROCK_MODELS: List[LLMModel] = [
    LLMModel(id="anthropic.claude-3-opus-20240229-v1:0", name="Claude 3 Opus", tokenLimit=200000),
    LLMModel(id="anthropic.claude-3-sonnet-20240229-v1:0", name="Claude 3 Sonnet", tokenLimit=200000),
    LLMModel(id="anthropic.claude-3-haiku-20240307-v1:0", name="Claude 3 Haiku", tokenLimit=200000),
    LLMModel(id="us.anthropic.claude-3-5-sonnet-20241022-v2:0", name="Claude 3.5 Sonnet v2", tokenLimit=200000),
    LLMModel(id="anthropic.claude-3-5-sonnet-20240620-v1:0", name="Claude 3.5 Sonnet", tokenLimit=200000, default=True),
    LLMModel(id="anthropic.claude-3-5-haiku-20241022-v1:0", name="Claude 3.5 Haiku", tokenLimit=200000),
    LLMModel(id="anthropic.claude-v2:1", name="Claude 2.1", tokenLimit=100000),
    LLMModel(id="anthropic.claude-instant-v1", name="Claude Instant", tokenLimit=100000),
    LLMModel(id="amazon.titan-text-express-v1", name="Titan Text Express", tokenLimit=8000),
    LLMModel(id="amazon.titan-text-lite-v1", name="Titan Text Lite", tokenLimit=4000),
    LLMModel(id="meta.llama2-70b-chat-v1", name="Llama 2 70B Chat", tokenLimit=4096),
    LLMModel(id="us.meta.llama3-2-1b-instruct-v1:0", name="Llama 3.2 1B Instruct", tokenLimit=128000),
    LLMModel(id="us.meta.llama3-2-3b-instruct-v1:0", name="Llama 3.2 3B Instruct", tokenLimit=128000),
    LLMModel(id="us.meta.llama3-2-11b-instruct-v1:0", name="Llama 3.2 11B Instruct", tokenLimit=128000),
    LLMModel(id="us.meta.llama3-2-90b-instruct-v1:0", name="Llama 3.2 90B Instruct", tokenLimit=128000),
]

GEMINI_MODELS: List[LLMModel] = [
    LLMModel(id="gemini-2.0-flash-001", name="Gemini 2.0 Flash", tokenLimit=32000),
    LLMModel(id="gemini-1.5-pro", name="Gemini 1.5 Pro", tokenLimit=32000, default=True),
    LLMModel(id="gemini-1.5-pro-latest", name="Gemini 1.5 Pro (latest)", tokenLimit=32000),
    LLMModel(id="gemini-1.5-flash", name="Gemini 1.5 Flash", tokenLimit=32000),
    LLMModel(id="gemini-1.5-flash-latest", name="Gemini 1.5 Flash (latest)", tokenLimit=32000),
    LLMModel(id="gemini-1.5-flash-8b", name="Gemini 1.5 Flash 8B", tokenLimit=32000),
    LLMModel(id="gemini-1.5-flash-8b-latest", name="Gemini 1.5 Flash 8B (latest)", tokenLimit=32000),
]

OLLAMA_MODELS: List[LLMModel] = [
    LLMModel(id="llama3.2:1b-instruct-fp16", name="Llama 3.2 1B", tokenLimit=21760, parameterSize="1B"),
    LLMModel(id="llama3.2:3b-instruct-fp16", name="Llama 3.2 3B", tokenLimit=15500, parameterSize="3B"),
    LLMModel(id="llama3.1:8b-instruct-fp16", name="Llama 3.1 8B", tokenLimit=11500, parameterSize="8B", default=True),
    LLMModel(id="qwen2.5:7b-instruct-fp16", name="Qwen 2.5 7B", tokenLimit=15500, parameterSize="7B"),
    LLMModel(id="qwen2.5:14b-instruct-fp16", name="Qwen 2.5 14B", tokenLimit=6300, parameterSize="14B"),
    LLMModel(id="deepseek-r1:14b-qwen-distill-fp16", name="DeepSeek R1 14B", tokenLimit=6300, parameterSize="14B"),
]

VLLM_MODELS: List[LLMModel] = [
    LLMModel(id="meta-llama/Llama-3.2-11B-Vision-Instruct", name="Llama 3.2 11B Vision", tokenLimit=128000),
    LLMModel(id="allenai/Molmo-7B-D-0924", name="Molmo 7B-D", tokenLimit=4096),
    LLMModel(id="Qwen/Qwen2-VL-72B-Instruct", name="Qwen 2 VL 72B", tokenLimit=8192),
    LLMModel(id="Qwen/Qwen2.5-VL-72B-Instruct", name="Qwen 2.5 VL 72B", tokenLimit=23000, default=True),
]

CATALOG: Dict[str, List[LLMModel]] = {
    "OpenAI": OPENAI_MODELS,
    "Bedrock": BEDROCK_MODELS,
    "Gemini": GEMINI_MODELS,
    "Ollama": OLLAMA_MODELS,
    "VLLM": VLLM_MODELS,
}


def find(provider: str, model_id: str) -> Optional[LLMModel]:
    for m in CATALOG.get(provider, []):
        if m.id == model_id:
            return m
    return None


def models_for(provider: str) -> List[LLMModel]:
    return [m.model_copy() for m in CATALOG.get(provider, [])]


def describe(provider: str, model_id: str, default_limit: int = 4096, **extra) -> LLMModel:
    """Catalog entry for `model_id`, or a bare entry when the backend serves something unlisted."""
    known = find(provider, model_id)
    if known is not None:
        return known.model_copy(update=extra) if extra else known.model_copy()
    return LLMModel(id=model_id, name=model_id, tokenLimit=default_limit, **extra)
