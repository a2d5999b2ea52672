import json

from conftest import make_conversation
from llm_router import cli
from llm_router.credentials import decrypt


def test_prompt_command_prints_engineered_prompt(tmp_path, capsys):
    path = tmp_path / "req.json"
    path.write_text(json.dumps({"conversation": make_conversation().model_dump()}), encoding="utf-8")
    assert cli.main(["prompt", "--file", str(path)]) == 0
    out = capsys.readouterr().out
    assert "=== system ===" in out
    assert "<User Query>\nWhat is 2+2?\n</User Query>" in out


def test_missing_file_argument(capsys):
    assert cli.main(["chat"]) == 2
    assert "--file is required" in capsys.readouterr().err


def test_invalid_json(tmp_path, capsys):
    path = tmp_path / "bad.json"
    path.write_text("{not json", encoding="utf-8")
    assert cli.main(["prompt", "--file", str(path)]) == 2


def test_encrypt_round_trip(monkeypatch, capsys):
    from llm_router.settings import get_settings

    monkeypatch.setenv("SIGNING_KEY", "cli-signing-key")
    get_settings.cache_clear()
    try:
        assert cli.main(["encrypt", "--value", "sk-cli-0000000000000"]) == 0
        token = capsys.readouterr().out.strip()
        assert decrypt(token, "cli-signing-key") == "sk-cli-0000000000000"
    finally:
        get_settings.cache_clear()
