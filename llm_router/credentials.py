"""Just-in-time resolution of provider credentials.

Stored credentials (API keys, AWS keys, self-hosted base URLs) may arrive in
plaintext or encrypted with the deployment signing key. Encrypted values are
``<base64 iv>.<base64 ciphertext+tag>`` tokens produced with AES-256-GCM, the
AES key being the SHA-256 digest of the signing key.
"""
from __future__ import annotations
import base64
import binascii
import hashlib
import os
import re
from typing import Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from loguru import logger

from .errors import CredentialError
from .settings import get_settings

PLAINTEXT_PREFIXES = ("sk-", "AKIA", "ASIA", "AIza", "http://", "https://")

_IV_BYTES = 12
_TOKEN_RE = re.compile(r"^[A-Za-z0-9+/]{16}\.[A-Za-z0-9+/]+={0,2}$")

INVALID_FORMAT_MESSAGE = (
    "Invalid API key format. Please re-enter your key on the LLM page in your project settings."
)


def _aes_key(signing_key: str) -> bytes:
    return hashlib.sha256(signing_key.encode("utf-8")).digest()


def _signing_key(signing_key: Optional[str]) -> str:
    key = signing_key if signing_key is not None else get_settings().signing_key
    if not key:
        raise CredentialError(INVALID_FORMAT_MESSAGE)
    return key


def is_encrypted(value: str) -> bool:
    if not value or value.startswith(PLAINTEXT_PREFIXES):
        return False
    return bool(_TOKEN_RE.match(value))


def encrypt(value: str, signing_key: Optional[str] = None) -> str:
    key = _aes_key(_signing_key(signing_key))
    iv = os.urandom(_IV_BYTES)
    ciphertext = AESGCM(key).encrypt(iv, value.encode("utf-8"), None)
    return base64.b64encode(iv).decode("ascii") + "." + base64.b64encode(ciphertext).decode("ascii")


def decrypt(token: str, signing_key: Optional[str] = None) -> str:
    key = _aes_key(_signing_key(signing_key))
    try:
        iv_b64, ct_b64 = token.split(".", 1)
        iv = base64.b64decode(iv_b64, validate=True)
        ciphertext = base64.b64decode(ct_b64, validate=True)
        plaintext = AESGCM(key).decrypt(iv, ciphertext, None)
        return plaintext.decode("utf-8")
    except (ValueError, binascii.Error, InvalidTag, UnicodeDecodeError):
        # never include the token or the cryptographic detail in the error
        logger.warning("Credential decryption failed")
        raise CredentialError(INVALID_FORMAT_MESSAGE) from None


def resolve(value: Optional[str], signing_key: Optional[str] = None) -> str:
    """Return the plaintext form of a stored credential.

    Plaintext input is returned unchanged, so resolving twice is a no-op.
    """
    if not value:
        return ""
    value = value.strip()
    if not is_encrypted(value):
        return value
    return decrypt(value, signing_key)
