"""HTTP transport for the completion endpoint, buffered or streamed."""

from __future__ import annotations

import json
import logging
from typing import Any, AsyncIterator, Mapping

import httpx
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from .errors import ConfigurationError, UpstreamHttpError, UpstreamPayloadError
from .sse import SSEDecoder

LOGGER = logging.getLogger(__name__)

_RETRYABLE_ERRORS: tuple[type[BaseException], ...] = (httpx.ConnectError, httpx.ConnectTimeout)


class CompletionTransport:
    """Posts completion requests and exposes the reply as JSON or SSE payloads.

    Only connection establishment is ever retried, and only when
    ``max_retries`` is above one; once a response has arrived every failure is
    surfaced to the caller.
    """

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        *,
        url: str,
        headers: Mapping[str, str] | None = None,
        max_retries: int = 1,
        retry_min_seconds: float = 0.5,
        retry_max_seconds: float = 6.0,
    ) -> None:
        for attr in ("build_request", "send"):
            if not callable(getattr(http_client, attr, None)):
                raise ConfigurationError(message=f'Invalid "http_client": {attr}() is not callable')
        self._http = http_client
        self._url = url
        self._headers = dict(headers or {})
        self._max_retries = max(1, int(max_retries))
        self._retry_min_seconds = retry_min_seconds
        self._retry_max_seconds = retry_max_seconds

    @property
    def url(self) -> str:
        return self._url

    async def post_json(self, body: Mapping[str, Any]) -> Any:
        """Send *body* and return the decoded JSON reply."""

        response = await self._send(body, stream=False)
        await self._raise_for_status(response)
        try:
            return response.json()
        except ValueError as exc:
            LOGGER.debug("Completion endpoint returned a non-JSON body: %r", response.text[:200])
            raise UpstreamPayloadError(detail=f"response body is not valid JSON: {exc}") from exc

    async def iter_events(self, body: Mapping[str, Any]) -> AsyncIterator[str]:
        """Send *body* and yield the ``data`` field of every server-sent event.

        The underlying response is closed when iteration finishes, fails or is
        cancelled.
        """

        response = await self._send(body, stream=True)
        try:
            await self._raise_for_status(response)
            decoder = SSEDecoder()
            async for line in response.aiter_lines():
                event = decoder.decode(line)
                if event is not None:
                    yield event.data
        finally:
            await response.aclose()

    async def _send(self, body: Mapping[str, Any], *, stream: bool) -> httpx.Response:
        request = self._http.build_request(
            "POST",
            self._url,
            headers=self._headers,
            content=json.dumps(body).encode("utf-8"),
        )
        async for attempt in self._retrying():
            with attempt:
                return await self._http.send(request, stream=stream)
        raise AssertionError("unreachable")  # pragma: no cover

    async def _raise_for_status(self, response: httpx.Response) -> None:
        if response.is_success:
            return
        await response.aread()
        reason = response.text
        LOGGER.debug("Completion endpoint returned %s: %s", response.status_code, reason)
        raise UpstreamHttpError(
            status_code=response.status_code,
            status_text=response.reason_phrase,
            cause=reason,
        )

    def _retrying(self) -> AsyncRetrying:
        return AsyncRetrying(
            reraise=True,
            stop=stop_after_attempt(self._max_retries),
            wait=wait_exponential(
                multiplier=self._retry_min_seconds,
                max=self._retry_max_seconds,
            ),
            retry=retry_if_exception_type(_RETRYABLE_ERRORS),
        )


__all__ = ["CompletionTransport"]
