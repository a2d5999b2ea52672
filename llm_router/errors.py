from __future__ import annotations
import re
from typing import Any, Dict, Optional


class RouterError(RuntimeError):
    """Base for every error that may cross the adapter boundary.

    `code` is the HTTP status the router answers with.
    """

    default_code = 500

    def __init__(self, message: str, code: Optional[int] = None) -> None:
        super().__init__(message)
        self.message = message
        self.code = code if code is not None else self.default_code

    def to_body(self) -> Dict[str, Any]:
        return {"error": sanitize_message(self.message), "code": self.code}


class InvalidConversationError(RouterError):
    default_code = 400


class CredentialError(RouterError):
    default_code = 401


class NoProviderConfiguredError(RouterError):
    default_code = 400


class ProviderError(RouterError):
    """Backend rejected the request or returned an unusable payload."""

    default_code = 500


class ProviderTimeoutError(RouterError):
    default_code = 504


NO_CONTENT_MESSAGE = "The model returned no content."


def empty_response_error(provider: str) -> ProviderError:
    return ProviderError(f"{provider}: {NO_CONTENT_MESSAGE}", code=502)


_SECRET_PATTERNS = [
    # OpenAI style keys (sk-..., sk-proj-...)
    (re.compile(r"sk-[A-Za-z0-9_\-]{8,}"), "sk-***"),
    # AWS access key ids
    (re.compile(r"\b(?:AKIA|ASIA)[A-Z0-9]{12,}\b"), "AKIA***"),
    # Google API keys
    (re.compile(r"AIza[0-9A-Za-z_\-]{20,}"), "AIza***"),
    (re.compile(r"(?i)bearer\s+[A-Za-z0-9._\-]+"), "Bearer ***"),
    (re.compile(r"(?i)([?&](?:key|api_key|apikey)=)[^&\s]+"), r"\1***"),
    # encrypted credential tokens (<iv>.<ciphertext>)
    (re.compile(r"\b[A-Za-z0-9+/]{16}\.[A-Za-z0-9+/]{24,}={0,2}"), "***"),
]


def sanitize_message(message: str) -> str:
    """Strip anything resembling a credential from a user-visible message."""
    text = str(message or "")
    for pattern, repl in _SECRET_PATTERNS:
        text = pattern.sub(repl, text)
    return text
