import pytest

from llm_router.errors import ProviderError
from llm_router.schemas import SCHEMA_NAMES, SchemaValidator


def test_all_schemas_load():
    sv = SchemaValidator()
    for name in SCHEMA_NAMES:
        assert isinstance(sv.validate(name, {}), list)


def test_openai_completion_valid():
    sv = SchemaValidator()
    sample = {
        "id": "chatcmpl-1",
        "model": "gpt-4o-mini",
        "choices": [{"index": 0, "message": {"role": "assistant", "content": "4"}, "finish_reason": "stop"}],
        "usage": {"prompt_tokens": 10, "completion_tokens": 1},
    }
    assert sv.validate("openai_completion", sample) == []


def test_openai_completion_missing_choices():
    sv = SchemaValidator()
    errs = sv.validate("openai_completion", {"id": "x"})
    assert errs and "choices" in errs[0]


def test_ollama_tags_valid():
    sv = SchemaValidator()
    sample = {"models": [{"name": "llama3.1:8b-instruct-fp16", "details": {"parameter_size": "8.0B"}}]}
    assert sv.validate("ollama_tags", sample) == []


def test_bedrock_converse_valid():
    sv = SchemaValidator()
    sample = {
        "output": {"message": {"role": "assistant", "content": [{"text": "hello"}]}},
        "stopReason": "end_turn",
        "usage": {"inputTokens": 5, "outputTokens": 1},
    }
    assert sv.validate("bedrock_converse", sample) == []


def test_require_raises_provider_error():
    sv = SchemaValidator()
    with pytest.raises(ProviderError) as ei:
        sv.require("openai_models", {"data": [{"object": "model"}]}, "VLLM")
    assert ei.value.code == 502
    assert ei.value.message.startswith("VLLM returned a malformed response")


def test_unknown_schema():
    with pytest.raises(KeyError):
        SchemaValidator().validate("dataset", {})
