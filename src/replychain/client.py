"""Conversation client that simulates multi-turn chat over a completion API."""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
from typing import Any, Awaitable, Callable, Dict

import httpx

from .assembler import ResponseAssembler
from .errors import CancellationError, ResponseTimeoutError
from .model_family import ModelFamily
from .prompt import PromptAssembler
from .settings import Settings
from .store import LRUMessageStore, MessageStore
from .tokens import TokenCounterProtocol, build_token_counter
from .transport import CompletionTransport
from .types import ChatMessage, CompletionRequest, ProgressCallback, new_id

LOGGER = logging.getLogger(__name__)

GetMessageById = Callable[[str], Awaitable["ChatMessage | None"]]
UpsertMessage = Callable[[ChatMessage], Awaitable[None]]


class ReplyChainClient:
    """Sends messages to a completion endpoint with rebuilt conversational context.

    Each call persists the user message, rebuilds a prompt from the parent
    chain, requests a completion and persists the assistant reply once it is
    complete. Reply to the returned message's ``id`` to continue the thread.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        http_client: httpx.AsyncClient | None = None,
        message_store: MessageStore | None = None,
        token_counter: TokenCounterProtocol | None = None,
        get_message_by_id: GetMessageById | None = None,
        upsert_message: UpsertMessage | None = None,
    ) -> None:
        self._settings = settings or Settings()
        self._settings.validate()
        self._completion_params = self._build_completion_params(self._settings)
        self._family = ModelFamily.from_model(str(self._completion_params["model"]))
        self._completion_params.setdefault("stop", self._family.stop_sequences)

        self._owns_http_client = http_client is None
        if http_client is None:
            http_client = httpx.AsyncClient(timeout=self._settings.request_timeout)
        self._http = http_client
        self._store: MessageStore = (
            message_store
            if message_store is not None
            else LRUMessageStore(max_size=self._settings.message_store_max_size)
        )
        self._get_message_by_id = get_message_by_id or self._default_get_message_by_id
        self._upsert_message = upsert_message or self._default_upsert_message
        self._token_counter = token_counter or build_token_counter(str(self._completion_params["model"]))

        self._transport = CompletionTransport(
            self._http,
            url=self._settings.completions_url,
            headers=self._build_headers(self._settings),
            max_retries=self._settings.max_retries,
            retry_min_seconds=self._settings.retry_min_seconds,
            retry_max_seconds=self._settings.retry_max_seconds,
        )
        self._assembler = ResponseAssembler(self._transport)
        self._prompts = PromptAssembler(
            self._get_message_by_id,
            self._token_counter,
            max_model_tokens=self._settings.max_model_tokens,
            max_response_tokens=self._settings.max_response_tokens,
            family=self._family,
            user_label=self._settings.user_label,
            assistant_label=self._settings.assistant_label,
        )

    @property
    def settings(self) -> Settings:
        return self._settings

    @property
    def family(self) -> ModelFamily:
        return self._family

    @property
    def completion_params(self) -> Dict[str, Any]:
        return dict(self._completion_params)

    @property
    def prompts(self) -> PromptAssembler:
        return self._prompts

    async def send_message(
        self,
        text: str,
        *,
        conversation_id: str | None = None,
        parent_message_id: str | None = None,
        message_id: str | None = None,
        prompt_prefix: str | None = None,
        prompt_suffix: str | None = None,
        on_progress: ProgressCallback | None = None,
        timeout: float | None = None,
        cancel_event: asyncio.Event | None = None,
        stream: bool | None = None,
    ) -> ChatMessage:
        """Send *text* and return the assistant's reply.

        Args:
            text: The user message.
            conversation_id: Conversation to continue; a new id is generated when omitted.
            parent_message_id: Message this one replies to; omit to start with no history.
            message_id: Id for the user message; generated when omitted.
            prompt_prefix: Replaces the default instructions preamble.
            prompt_suffix: Replaces the default assistant cue.
            on_progress: Called (or awaited) with the partial reply after every streamed fragment.
            timeout: Wall-clock limit in seconds for the whole call.
            cancel_event: Setting this event aborts the call with :class:`CancellationError`.
            stream: Force streaming on or off; defaults to on when ``on_progress`` is given.

        Returns:
            The persisted assistant message, with the raw upstream payload in ``detail``.
        """

        use_stream = (on_progress is not None) if stream is None else bool(stream)
        conversation_id = conversation_id or new_id()
        message_id = message_id or new_id()
        internal_event = False
        if timeout and cancel_event is None:
            cancel_event = asyncio.Event()
            internal_event = True

        message = ChatMessage(
            id=message_id,
            role="user",
            text=text,
            conversation_id=conversation_id,
            parent_message_id=parent_message_id,
        )
        await self._upsert_message(message)

        call = self._reply_to(
            message,
            prompt_prefix=prompt_prefix,
            prompt_suffix=prompt_suffix,
            on_progress=on_progress,
            cancel_event=cancel_event,
            stream=use_stream,
        )
        if not timeout:
            return await _run_cancellable(call, cancel_event)
        try:
            return await asyncio.wait_for(_run_cancellable(call, cancel_event), timeout=timeout)
        except asyncio.TimeoutError as exc:
            if internal_event and cancel_event is not None:
                cancel_event.set()
            LOGGER.debug("send_message timed out after %ss", timeout)
            raise ResponseTimeoutError(timeout_seconds=timeout) from exc

    async def _reply_to(
        self,
        message: ChatMessage,
        *,
        prompt_prefix: str | None,
        prompt_suffix: str | None,
        on_progress: ProgressCallback | None,
        cancel_event: asyncio.Event | None,
        stream: bool,
    ) -> ChatMessage:
        budget = await self._prompts.build_prompt(
            message.text,
            parent_message_id=message.parent_message_id,
            prompt_prefix=prompt_prefix,
            prompt_suffix=prompt_suffix,
        )
        request = CompletionRequest(
            prompt=budget.prompt,
            max_tokens=budget.max_tokens,
            params=dict(self._completion_params),
            stream=stream,
        )
        if self._settings.debug_logging:
            self._log_request(request, budget.num_tokens)

        result = ChatMessage(
            id=new_id(),
            role="assistant",
            text="",
            conversation_id=message.conversation_id,
            parent_message_id=message.id,
        )
        result = await self._assembler.run(
            request,
            result,
            on_progress=on_progress,
            cancel_event=cancel_event,
        )
        await self._upsert_message(result)
        return result

    async def aclose(self) -> None:
        """Close the HTTP client if this instance created it."""

        if self._owns_http_client:
            await self._http.aclose()

    async def __aenter__(self) -> "ReplyChainClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    async def _default_get_message_by_id(self, message_id: str) -> ChatMessage | None:
        try:
            message = await self._store.get(message_id)
        except (KeyError, asyncio.TimeoutError) as exc:
            LOGGER.debug("Message store lookup for %s failed (%s); treating as missing", message_id, exc)
            return None
        if self._settings.debug_logging:
            LOGGER.debug("getMessageById %s -> %s", message_id, message)
        return message

    async def _default_upsert_message(self, message: ChatMessage) -> None:
        if self._settings.debug_logging:
            LOGGER.debug("upsertMessage %s %s", message.id, message)
        await self._store.put(message)

    @staticmethod
    def _build_completion_params(settings: Settings) -> Dict[str, Any]:
        params: Dict[str, Any] = {
            "model": settings.model,
            "temperature": settings.temperature,
            "top_p": settings.top_p,
            "presence_penalty": settings.presence_penalty,
        }
        params.update(settings.completion_params or {})
        return params

    @staticmethod
    def _build_headers(settings: Settings) -> Dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "Accept": "application/json, text/event-stream",
        }
        if settings.api_key:
            headers["Authorization"] = f"Bearer {settings.api_key}"
        if settings.organization:
            headers["OpenAI-Organization"] = settings.organization
        headers.update(settings.default_headers or {})
        return headers

    def _log_request(self, request: CompletionRequest, num_tokens: int) -> None:
        body = request.to_body()
        try:
            serialized = json.dumps(body, ensure_ascii=False, indent=2)
        except (TypeError, ValueError):
            LOGGER.debug("sendMessage (%s tokens) (unserializable): %s", num_tokens, body)
        else:
            LOGGER.debug("sendMessage (%s tokens):\n%s", num_tokens, serialized)


async def _run_cancellable(call: Awaitable[ChatMessage], cancel_event: asyncio.Event | None) -> ChatMessage:
    """Await *call*, abandoning it as soon as *cancel_event* is set."""

    if cancel_event is None:
        return await call
    if cancel_event.is_set():
        _close_pending(call)
        raise CancellationError()

    task = asyncio.ensure_future(call)
    waiter = asyncio.ensure_future(cancel_event.wait())
    try:
        done, _ = await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
        if task in done:
            return task.result()
        raise CancellationError()
    finally:
        for pending in (task, waiter):
            if not pending.done():
                pending.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await pending


def _close_pending(call: Awaitable[Any]) -> None:
    close = getattr(call, "close", None)
    if callable(close):
        close()


__all__ = ["ReplyChainClient"]
