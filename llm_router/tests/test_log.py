import pytest
from loguru import logger

from conftest import OPENAI_KEY, backend_for, make_conversation, registry_for
from llm_router.log import mask
from llm_router.models import OpenAIProviderConfig
from llm_router.prompt_builder import build_prompt


def test_mask_keeps_only_the_ends():
    assert mask("sk-test-0000000000001234") == "sk-t...1234"
    assert mask("short-key") == "***"
    assert mask("") == "<empty>"
    assert mask(None) == "<empty>"


async def _send_and_capture(registry, config):
    records = []
    sink = logger.add(lambda message: records.append(message.record["message"]), level="DEBUG")
    try:
        await registry.get("openai").send(build_prompt(make_conversation()), config, stream=False)
    finally:
        logger.remove(sink)
    return "\n".join(records)


@pytest.mark.asyncio
async def test_shared_key_is_logged_masked():
    shared = "sk-shared-abcdefghijklmnop9999"
    registry = registry_for(backend_for(["ok"]), shared_openai_api_key=shared, allow_shared_openai_key=True)
    logged = await _send_and_capture(registry, OpenAIProviderConfig())
    assert "using the shared key sk-s...9999" in logged
    assert shared not in logged


@pytest.mark.asyncio
async def test_project_key_is_logged_masked():
    registry = registry_for(backend_for(["ok"]))
    logged = await _send_and_capture(registry, OpenAIProviderConfig(apiKey=OPENAI_KEY))
    assert mask(OPENAI_KEY) in logged
    assert OPENAI_KEY not in logged
