"""Shared test fakes for the completion endpoint and token counting.

Import from here instead of duplicating these helpers in individual test files.
"""

from __future__ import annotations

import asyncio
import json
from typing import Any, AsyncIterator, Callable, Iterable

import httpx


class CharCounter:
    """Counts one token per character so budgets are easy to reason about."""

    model_name = "char-counter"

    def __init__(self) -> None:
        self.calls: list[str] = []

    def count(self, text: str) -> int:
        self.calls.append(text)
        return len(text)

    def estimate(self, text: str) -> int:
        return len(text)


def sse_body(*payloads: Any, done: bool = True, delay: float = 0.0) -> Callable[[], AsyncIterator[bytes]]:
    """Return a factory producing an event-stream body for the given payloads."""

    async def _body() -> AsyncIterator[bytes]:
        for payload in payloads:
            if delay:
                await asyncio.sleep(delay)
            data = payload if isinstance(payload, str) else json.dumps(payload)
            yield f"data: {data}\n\n".encode("utf-8")
        if done:
            yield b"data: [DONE]\n\n"

    return _body


def completion_chunk(text: str, *, id: str = "cmpl-1") -> dict[str, Any]:
    return {"id": id, "object": "text_completion", "choices": [{"text": text, "index": 0}]}


class RecordingHandler:
    """MockTransport handler that records requests and replays canned responses.

    Responses are consumed in order; the last one is repeated for any further
    request.
    """

    def __init__(self, responses: Iterable[Callable[[httpx.Request], httpx.Response]]) -> None:
        self._responses = list(responses)
        self.requests: list[httpx.Request] = []

    @property
    def bodies(self) -> list[dict[str, Any]]:
        return [json.loads(request.content) for request in self.requests]

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        responder = self._responses.pop(0) if len(self._responses) > 1 else self._responses[0]
        return responder(request)


def json_response(payload: Any, status_code: int = 200) -> Callable[[httpx.Request], httpx.Response]:
    return lambda request: httpx.Response(status_code, json=payload)


def stream_response(body: Callable[[], AsyncIterator[bytes]]) -> Callable[[httpx.Request], httpx.Response]:
    return lambda request: httpx.Response(
        200,
        headers={"content-type": "text/event-stream"},
        content=body(),
    )


def mock_http(handler: RecordingHandler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))
