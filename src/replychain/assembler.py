"""Turns buffered or streamed completion replies into a single assistant message."""

from __future__ import annotations

import asyncio
import inspect
import json
import logging
from typing import Any, Mapping

from .errors import CancellationError, StreamParseError, UpstreamPayloadError
from .transport import CompletionTransport
from .types import ChatMessage, CompletionRequest, ProgressCallback, StreamState

LOGGER = logging.getLogger(__name__)

DONE_SENTINEL = "[DONE]"


class ResponseAssembler:
    """Produces the assistant reply for one request.

    Both strategies fill in the same ``result`` message and yield identical
    final text for the same logical reply: streaming concatenates the
    fragments and trims once at the end, buffering trims the single
    completion.
    """

    def __init__(self, transport: CompletionTransport) -> None:
        self._transport = transport

    async def run(
        self,
        request: CompletionRequest,
        result: ChatMessage,
        *,
        on_progress: ProgressCallback | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> ChatMessage:
        if request.stream:
            return await self.stream(request, result, on_progress=on_progress, cancel_event=cancel_event)
        return await self.complete(request, result)

    async def complete(self, request: CompletionRequest, result: ChatMessage) -> ChatMessage:
        response = await self._transport.post_json(request.to_body())
        LOGGER.debug("Buffered completion response: %s", response)
        payload = response if isinstance(response, Mapping) else {}

        if payload.get("id"):
            result.id = str(payload["id"])
        choices = payload.get("choices")
        if not choices:
            raise UpstreamPayloadError(detail=_describe_missing_choices(payload))

        choice = choices[0] if isinstance(choices, list) else None
        if not isinstance(choice, Mapping):
            raise UpstreamPayloadError(detail="completion choice is not an object")
        result.text = str(choice.get("text") or "").strip()
        result.detail = dict(payload)
        return result

    async def stream(
        self,
        request: CompletionRequest,
        result: ChatMessage,
        *,
        on_progress: ProgressCallback | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> ChatMessage:
        state = StreamState(id=result.id)
        events = self._transport.iter_events(request.to_body())
        try:
            async for data in events:
                if cancel_event is not None and cancel_event.is_set():
                    raise CancellationError()
                if data == DONE_SENTINEL:
                    state.done = True
                    break
                payload = _parse_event(data)
                state.events += 1
                if payload.get("id"):
                    state.id = str(payload["id"])
                    result.id = state.id
                choices = payload.get("choices")
                if not choices:
                    continue
                choice = choices[0] if isinstance(choices, list) else None
                if not isinstance(choice, Mapping):
                    raise StreamParseError(message="Stream event choice is not a JSON object", payload=data)
                state.text += str(choice.get("text") or "")
                state.detail = payload
                result.text = state.text
                result.detail = payload
                if on_progress is not None:
                    await _notify(on_progress, result)
                    if cancel_event is not None and cancel_event.is_set():
                        raise CancellationError()
        finally:
            await events.aclose()

        if not state.done:
            LOGGER.debug("Stream closed without %s after %s event(s)", DONE_SENTINEL, state.events)
        result.text = state.text.strip()
        result.detail = state.detail
        return result


def _parse_event(data: str) -> dict[str, Any]:
    try:
        payload = json.loads(data)
    except json.JSONDecodeError as exc:
        LOGGER.warning("Stream event payload is not valid JSON: %s", exc)
        raise StreamParseError(message=f"Stream event payload is not valid JSON: {exc}", payload=data) from exc
    if not isinstance(payload, dict):
        raise StreamParseError(message="Stream event payload is not a JSON object", payload=data)
    return payload


def _describe_missing_choices(payload: Mapping[str, Any]) -> str:
    detail = payload.get("detail")
    if isinstance(detail, Mapping) and detail.get("message"):
        return str(detail["message"])
    if detail:
        return str(detail)
    return "unknown"


async def _notify(callback: ProgressCallback, message: ChatMessage) -> None:
    outcome = callback(message)
    if inspect.isawaitable(outcome):
        await outcome


__all__ = ["ResponseAssembler", "DONE_SENTINEL"]
