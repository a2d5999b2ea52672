from __future__ import annotations
import argparse
import asyncio
import json
import sys
from pathlib import Path
from typing import List

from pydantic import ValidationError

from .credentials import encrypt
from .errors import RouterError
from .log import setup_logger
from .models import BuildPromptRequest, ChatRequest
from .prompt_builder import build_prompt
from .providers.registry import ProviderRegistry
from .router import ChatRouter
from .settings import get_settings
from .streaming import collect


def _read_json(path: Path):
    try:
        return json.loads(Path(path).read_text(encoding="utf-8"))
    except FileNotFoundError:
        print(f"File not found: {path}", file=sys.stderr)
    except json.JSONDecodeError as e:
        print(f"Invalid JSON: {e}", file=sys.stderr)
    return None


def cmd_serve(host: str, port: int, reload: bool = False) -> int:
    import uvicorn

    uvicorn.run("llm_router.app:app", host=host, port=port, reload=reload, log_level="info")
    return 0


def cmd_prompt(path: Path) -> int:
    data = _read_json(path)
    if data is None:
        return 2
    try:
        body = BuildPromptRequest.model_validate(data)
        conversation = build_prompt(body.conversation, body.courseMetadata)
    except ValidationError as e:
        print(f"Invalid request: {e}", file=sys.stderr)
        return 3
    except RouterError as e:
        print(f"Error ({e.code}): {e.to_body()['error']}", file=sys.stderr)
        return 1
    last = conversation.messages[-1]
    print("=== system ===")
    print(last.latestSystemMessage or "")
    print("=== user ===")
    print(last.finalPromtEngineeredMessage or "")
    return 0


async def _chat(body: ChatRequest) -> int:
    registry = ProviderRegistry(get_settings())
    router = ChatRouter(registry)
    try:
        conversation = build_prompt(body.conversation, body.courseMetadata)
        result = await router.dispatch(body, conversation)
        if not body.stream:
            completion = await collect(result)
            print(completion.content)
            return 0
        try:
            async for chunk in result:
                sys.stdout.write(chunk)
                sys.stdout.flush()
        finally:
            await result.aclose()
        sys.stdout.write("\n")
        return 0
    except RouterError as e:
        print(f"Error ({e.code}): {e.to_body()['error']}", file=sys.stderr)
        return 1
    finally:
        await registry.aclose()


def cmd_chat(path: Path, provider: str | None, no_stream: bool) -> int:
    data = _read_json(path)
    if data is None:
        return 2
    try:
        body = ChatRequest.model_validate(data)
    except ValidationError as e:
        print(f"Invalid request: {e}", file=sys.stderr)
        return 3
    if provider:
        body.provider = provider
    if no_stream:
        body.stream = False
    return asyncio.run(_chat(body))


def cmd_encrypt(value: str) -> int:
    try:
        print(encrypt(value))
    except RouterError as e:
        print(f"Error: {e.message} (is SIGNING_KEY set?)", file=sys.stderr)
        return 1
    return 0


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="llm-router", description="Multi-provider LLM router")
    p.add_argument("command", choices=["serve", "prompt", "chat", "encrypt"], help="CLI command")
    # serve options
    p.add_argument("--host", dest="host", default="127.0.0.1", help="Bind address (for serve)")
    p.add_argument("--port", dest="port", type=int, default=8000, help="Port (for serve)")
    p.add_argument("--reload", dest="reload", action="store_true", help="Auto-reload on code changes (for serve)")
    # prompt / chat options
    p.add_argument("--file", dest="file", default=None, help="Request JSON file (for prompt and chat)")
    p.add_argument("--provider", dest="provider", default=None, help="Override the request's provider (for chat)")
    p.add_argument("--no-stream", dest="no_stream", action="store_true", help="Ask for a single batch answer (for chat)")
    # encrypt options
    p.add_argument("--value", dest="value", default=None, help="Credential to encrypt with SIGNING_KEY (for encrypt)")
    return p


def main(argv: List[str] | None = None) -> int:
    argv = list(sys.argv[1:] if argv is None else argv)
    parser = build_parser()
    args = parser.parse_args(argv)
    setup_logger(get_settings().log_level)
    if args.command == "serve":
        return cmd_serve(args.host, args.port, reload=args.reload)
    if args.command in ("prompt", "chat"):
        if not args.file:
            print(f"--file is required for {args.command}", file=sys.stderr)
            return 2
        if args.command == "prompt":
            return cmd_prompt(Path(args.file))
        return cmd_chat(Path(args.file), args.provider, args.no_stream)
    if args.command == "encrypt":
        if not args.value:
            print("--value is required for encrypt", file=sys.stderr)
            return 2
        return cmd_encrypt(args.value)
    parser.print_help()
    return 2


if __name__ == "__main__":
    raise SystemExit(main())
