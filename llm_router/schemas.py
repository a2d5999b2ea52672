from __future__ import annotations
from functools import lru_cache
from pathlib import Path
import json
from typing import Any

from jsonschema import Draft202012Validator

from .errors import ProviderError

SCHEMAS_DIR = Path(__file__).resolve().parent / "configs" / "schemas"
SCHEMA_NAMES = (
    "openai_completion",
    "openai_models",
    "ollama_chat",
    "ollama_tags",
    "bedrock_converse",
    "gemini_chunk",
)


class SchemaValidator:
    """Shape checks for backend payloads, one JSON schema per payload kind."""

    def __init__(self):
        self._schemas = {}
        for name in SCHEMA_NAMES:
            path = SCHEMAS_DIR / f"{name}.schema.json"
            with open(path, "r", encoding="utf-8") as f:
                schema = json.load(f)
                self._schemas[name] = Draft202012Validator(schema)

    def validate(self, name: str, data: Any) -> list[str]:
        if name not in self._schemas:
            raise KeyError(f"Unknown schema {name}")
        validator = self._schemas[name]
        errors = sorted(validator.iter_errors(data), key=lambda e: [str(p) for p in e.path])
        return [f"{'/'.join(map(str, e.path))}: {e.message}" for e in errors]

    def require(self, name: str, data: Any, provider: str) -> Any:
        """Return `data` unchanged, or raise ProviderError (502) if it is malformed."""
        errors = self.validate(name, data)
        if errors:
            raise ProviderError(f"{provider} returned a malformed response: {errors[0]}", code=502)
        return data


@lru_cache(maxsize=1)
def get_validator() -> SchemaValidator:
    return SchemaValidator()
