from __future__ import annotations
import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Optional

DEFAULT_OPENAI_BASE_URL = "https://api.openai.com/v1"
DEFAULT_GEMINI_BASE_URL = "https://generativelanguage.googleapis.com/v1beta"
DEFAULT_OLLAMA_SERVER_URL = "http://localhost:11434"


def _load_env_from_file(env_path: Optional[Path] = None) -> None:
    """Load KEY=VALUE pairs from a .env file (dev convenience).

    Values already present in the process environment win.
    """
    path = env_path or (Path.cwd() / ".env")
    if not path.exists():
        return
    try:
        text = path.read_text(encoding="utf-8")
    except OSError:
        return
    for line in text.splitlines():
        line = line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        k, v = line.split("=", 1)
        k = k.strip(); v = v.strip().strip('"').strip("'")
        if k and v and k not in os.environ:
            os.environ[k] = v


def _env_flag(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _env_url(name: str, default: Optional[str] = None) -> Optional[str]:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    return raw.rstrip("/")


@dataclass(frozen=True)
class Settings:
    signing_key: Optional[str]
    shared_openai_api_key: Optional[str]
    allow_shared_openai_key: bool
    openai_base_url: str
    gemini_api_key: Optional[str]
    gemini_base_url: str
    ollama_server_url: Optional[str]
    vllm_base_url: Optional[str]
    aws_access_key_id: Optional[str]
    aws_secret_access_key: Optional[str]
    aws_region: Optional[str]
    default_provider: Optional[str]
    request_timeout: float
    log_level: str

    @property
    def aws_configured(self) -> bool:
        return bool(self.aws_access_key_id and self.aws_secret_access_key and self.aws_region)


def load_settings() -> Settings:
    _load_env_from_file()
    return Settings(
        signing_key=os.getenv("SIGNING_KEY") or None,
        shared_openai_api_key=os.getenv("SHARED_OPENAI_API_KEY") or None,
        allow_shared_openai_key=_env_flag("ALLOW_SHARED_OPENAI_KEY", False),
        openai_base_url=_env_url("OPENAI_BASE_URL", DEFAULT_OPENAI_BASE_URL),
        gemini_api_key=os.getenv("GEMINI_API_KEY") or None,
        gemini_base_url=_env_url("GEMINI_BASE_URL", DEFAULT_GEMINI_BASE_URL),
        ollama_server_url=_env_url("OLLAMA_SERVER_URL", DEFAULT_OLLAMA_SERVER_URL),
        vllm_base_url=_env_url("VLLM_BASE_URL"),
        aws_access_key_id=os.getenv("AWS_ACCESS_KEY_ID") or None,
        aws_secret_access_key=os.getenv("AWS_SECRET_ACCESS_KEY") or None,
        aws_region=os.getenv("AWS_REGION") or None,
        default_provider=os.getenv("DEFAULT_PROVIDER") or None,
        request_timeout=float(os.getenv("REQUEST_TIMEOUT_SECONDS", "60")),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    # read once per process; tests call get_settings.cache_clear()
    return load_settings()
