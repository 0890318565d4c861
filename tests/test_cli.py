"""Tests for the command-line entry point."""

from __future__ import annotations

import json
import logging
from pathlib import Path

import httpx
import pytest

from replychain import cli
from replychain.client import ReplyChainClient

from tests.helpers import CharCounter, RecordingHandler, completion_chunk, json_response, mock_http, sse_body, stream_response


@pytest.fixture
def log_levels(monkeypatch: pytest.MonkeyPatch) -> list[int]:
    levels: list[int] = []
    monkeypatch.setattr(cli.logging_utils, "setup_logging", lambda level, **_: levels.append(level))
    return levels


def _use_handler(monkeypatch: pytest.MonkeyPatch, handler: RecordingHandler) -> None:
    def _factory(settings, **kwargs) -> ReplyChainClient:
        return ReplyChainClient(settings, http_client=mock_http(handler), token_counter=CharCounter(), **kwargs)

    monkeypatch.setattr(cli, "ReplyChainClient", _factory)


def test_dump_settings_redacts_api_key(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    exit_code = cli.main(
        [
            "--settings-path",
            str(tmp_path / "settings.json"),
            "--set",
            "api_key=sk-supersecret",
            "--set",
            "max_retries=3",
            "--set",
            "completion_params={\"best_of\": 2}",
            "--dump-settings",
        ]
    )

    assert exit_code == 0
    output = json.loads(capsys.readouterr().out)
    assert output["settings"]["api_key"] == "sk**********et"
    assert output["settings"]["max_retries"] == 3
    assert output["settings"]["completion_params"] == {"best_of": 2}
    assert output["meta"]["cli_overrides"] == ["api_key", "completion_params", "max_retries"]


@pytest.mark.parametrize("override", ["model", "unknown=1", "max_retries=many", "debug_logging=maybe"])
def test_invalid_overrides_exit_with_usage_error(override: str, tmp_path: Path) -> None:
    exit_code = cli.main(["--settings-path", str(tmp_path / "settings.json"), "--set", override, "hi"])

    assert exit_code == 2


def test_missing_message_is_a_usage_error(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    exit_code = cli.main(["--settings-path", str(tmp_path / "settings.json")])

    assert exit_code == 2
    assert "MESSAGE is required" in capsys.readouterr().err


def test_streams_reply_and_reports_ids(
    monkeypatch: pytest.MonkeyPatch, tmp_path: Path, capsys: pytest.CaptureFixture[str], log_levels: list[int]
) -> None:
    handler = RecordingHandler([stream_response(sse_body(completion_chunk("Hel"), completion_chunk("lo ")))])
    _use_handler(monkeypatch, handler)

    exit_code = cli.main(
        ["--settings-path", str(tmp_path / "settings.json"), "--conversation", "conv-9", "--debug", "Say", "hello"]
    )

    captured = capsys.readouterr()
    assert exit_code == 0
    assert captured.out == "Hello \n"
    assert "message_id=cmpl-1" in captured.err
    assert "conversation_id=conv-9" in captured.err
    assert handler.bodies[0]["stream"] is True
    assert "User:\n\nSay hello" in handler.bodies[0]["prompt"]
    assert log_levels == [logging.DEBUG]


def test_no_stream_prints_trimmed_reply(
    monkeypatch: pytest.MonkeyPatch, tmp_path: Path, capsys: pytest.CaptureFixture[str], log_levels: list[int]
) -> None:
    handler = RecordingHandler([json_response({"id": "r1", "choices": [{"text": "  Done. "}]})])
    _use_handler(monkeypatch, handler)

    exit_code = cli.main(["--settings-path", str(tmp_path / "settings.json"), "--no-stream", "Go"])

    assert exit_code == 0
    assert capsys.readouterr().out == "Done.\n"
    assert handler.bodies[0]["stream"] is False
    assert log_levels == [logging.WARNING]


def test_upstream_errors_exit_with_failure(
    monkeypatch: pytest.MonkeyPatch, tmp_path: Path, capsys: pytest.CaptureFixture[str], log_levels: list[int]
) -> None:
    handler = RecordingHandler([lambda request: httpx.Response(500, text="overloaded")])
    _use_handler(monkeypatch, handler)

    exit_code = cli.main(["--settings-path", str(tmp_path / "settings.json"), "--no-stream", "Go"])

    assert exit_code == 1
    assert "ReplyChain error 500: overloaded" in capsys.readouterr().err


def test_file_store_lets_later_runs_continue_a_thread(
    monkeypatch: pytest.MonkeyPatch, tmp_path: Path, capsys: pytest.CaptureFixture[str], log_levels: list[int]
) -> None:
    handler = RecordingHandler(
        [
            json_response({"id": "a1", "choices": [{"text": "Paris."}]}),
            json_response({"id": "a2", "choices": [{"text": "About 2 million."}]}),
        ]
    )
    _use_handler(monkeypatch, handler)
    monkeypatch.setenv("REPLYCHAIN_STORE_PATH", str(tmp_path / "messages"))
    settings_path = str(tmp_path / "settings.json")

    assert cli.main(["--settings-path", settings_path, "--no-stream", "Capital of France?"]) == 0
    assert cli.main(["--settings-path", settings_path, "--no-stream", "--parent", "a1", "Population?"]) == 0

    prompt = handler.bodies[1]["prompt"]
    assert "User:\n\nCapital of France?" in prompt
    assert "ChatGPT:\n\nParis." in prompt
    assert (tmp_path / "messages" / "a1.json").exists()

