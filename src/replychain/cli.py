"""Command-line entry point for sending one message of a conversation."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
import sys
from dataclasses import asdict
from pathlib import Path
from typing import Any, Dict, Mapping, Sequence, TextIO, get_args, get_origin, get_type_hints

import httpx

from .client import ReplyChainClient
from .errors import ReplyChainError
from .settings import Settings, SettingsStore, redact_secret
from .store import JsonFileMessageStore
from .types import ChatMessage
from .utils import logging as logging_utils

_LOGGER = logging.getLogger(__name__)
_TRUE_VALUES = {"1", "true", "yes", "on", "debug"}
_FALSE_VALUES = {"0", "false", "no", "off", "disabled"}


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point invoked by the ``replychain`` console script."""

    parser = _build_parser()
    args = parser.parse_args(argv)

    settings_path = args.settings_path or os.environ.get("REPLYCHAIN_SETTINGS_PATH")
    store = SettingsStore(Path(settings_path).expanduser() if settings_path else None)
    try:
        cli_overrides = _coerce_cli_overrides(args.overrides or [])
    except ValueError as exc:
        print(f"Invalid --set override: {exc}", file=sys.stderr)
        return 2
    if args.debug:
        cli_overrides["debug_logging"] = True

    settings = store.load(overrides=cli_overrides or None)
    if args.dump_settings:
        _dump_settings(settings, store, overrides=cli_overrides)
        return 0
    if not args.message:
        parser.print_usage(sys.stderr)
        print("replychain: error: MESSAGE is required", file=sys.stderr)
        return 2

    level = logging.DEBUG if settings.debug_logging else logging.WARNING
    logging_utils.setup_logging(level)

    try:
        reply = asyncio.run(_send(settings, args))
    except ReplyChainError as exc:
        _LOGGER.debug("Request failed: %s", exc.to_dict())
        print(f"error: {exc}", file=sys.stderr)
        return 1
    except httpx.TransportError as exc:
        print(f"error: could not reach {settings.completions_url}: {exc}", file=sys.stderr)
        return 1

    print(f"message_id={reply.id}", file=sys.stderr)
    print(f"conversation_id={reply.conversation_id}", file=sys.stderr)
    return 0


async def _send(settings: Settings, args: argparse.Namespace) -> ChatMessage:
    out = sys.stdout
    message_store = JsonFileMessageStore(settings.message_store_path) if settings.message_store_path else None
    printed = 0

    def _echo(partial: ChatMessage) -> None:
        nonlocal printed
        out.write(partial.text[printed:])
        out.flush()
        printed = len(partial.text)

    async with ReplyChainClient(settings, message_store=message_store) as client:
        reply = await client.send_message(
            " ".join(args.message),
            conversation_id=args.conversation,
            parent_message_id=args.parent,
            on_progress=None if args.no_stream else _echo,
            timeout=args.timeout,
        )
    if args.no_stream or not printed:
        out.write(reply.text)
    out.write("\n")
    out.flush()
    return reply


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="replychain",
        description="Send a message to a completion model, continuing an earlier reply when --parent is given.",
    )
    parser.add_argument("message", nargs="*", metavar="MESSAGE", help="Text to send.")
    parser.add_argument(
        "--settings-path",
        metavar="PATH",
        help="Override the default ~/.replychain/settings.json path.",
    )
    parser.add_argument(
        "--set",
        dest="overrides",
        metavar="KEY=VALUE",
        action="append",
        default=[],
        help="Override persisted settings for this run (repeatable).",
    )
    parser.add_argument("--parent", metavar="ID", help="Id of the message being replied to.")
    parser.add_argument("--conversation", metavar="ID", help="Conversation id to continue.")
    parser.add_argument("--no-stream", action="store_true", help="Wait for the full reply instead of streaming it.")
    parser.add_argument("--timeout", type=float, metavar="SECONDS", help="Abort when no reply arrives in time.")
    parser.add_argument("--debug", action="store_true", help="Log prompts and request payloads.")
    parser.add_argument(
        "--dump-settings",
        action="store_true",
        help="Print the effective settings payload (with secrets redacted) and exit.",
    )
    return parser


def _coerce_cli_overrides(items: Sequence[str]) -> Dict[str, Any]:
    overrides: Dict[str, Any] = {}
    fields = Settings.__dataclass_fields__  # type: ignore[attr-defined]
    type_hints = get_type_hints(Settings)
    for entry in items:
        if "=" not in entry:
            raise ValueError(f"Override '{entry}' must use KEY=VALUE syntax.")
        key, raw_value = entry.split("=", 1)
        key = key.strip()
        if not key:
            raise ValueError("Override is missing a field name.")
        if key not in fields:
            raise ValueError(f"Unknown setting '{key}'.")
        overrides[key] = _coerce_value(type_hints.get(key, fields[key].type), raw_value.strip())
    return overrides


def _coerce_value(annotation: Any, raw_value: str) -> Any:
    optional = type(None) in get_args(annotation)
    target = _resolve_annotation(annotation)
    if optional and raw_value.lower() in {"none", "null"}:
        return None
    if target is str or target is Any:
        return raw_value
    if target is bool:
        return _parse_bool(raw_value)
    if target is int:
        return int(raw_value, 10)
    if target is float:
        return float(raw_value)
    if target is dict:
        try:
            payload = json.loads(raw_value or "{}")
        except json.JSONDecodeError as exc:
            raise ValueError("Dict overrides must be valid JSON objects") from exc
        if not isinstance(payload, dict):
            raise ValueError("Dict overrides must be valid JSON objects")
        return payload
    return raw_value


def _resolve_annotation(annotation: Any) -> Any:
    origin = get_origin(annotation)
    if origin is None:
        return annotation
    if origin is dict:
        return dict
    args = [arg for arg in get_args(annotation) if arg is not type(None)]
    if not args:
        return origin
    return _resolve_annotation(args[0])


def _parse_bool(value: str) -> bool:
    lowered = value.strip().lower()
    if lowered in _TRUE_VALUES:
        return True
    if lowered in _FALSE_VALUES:
        return False
    raise ValueError(f"Cannot coerce '{value}' to a boolean.")


def _dump_settings(
    settings: Settings,
    store: SettingsStore,
    *,
    overrides: Mapping[str, Any],
    stream: TextIO | None = None,
) -> None:
    destination = stream or sys.stdout
    payload = asdict(settings)
    payload["api_key"] = redact_secret(settings.api_key)
    metadata = {
        "path": str(store.path),
        "completions_url": settings.completions_url,
        "cli_overrides": sorted(overrides.keys()),
        "environment_variables": sorted(name for name in os.environ if name.startswith("REPLYCHAIN_")),
    }
    json.dump({"settings": payload, "meta": metadata}, destination, indent=2)
    destination.write("\n")


__all__ = ["main"]
