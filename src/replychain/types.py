"""Shared data model for messages, prompt budgets and stream state."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Literal, Mapping, Union, cast

ChatRole = Literal["user", "assistant"]


def new_id() -> str:
    return str(uuid.uuid4())


@dataclass(slots=True)
class ChatMessage:
    """One turn of a conversation, linked to the turn it replies to."""

    id: str
    role: ChatRole
    text: str
    conversation_id: str
    parent_message_id: str | None = None
    detail: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "id": self.id,
            "role": self.role,
            "text": self.text,
            "conversation_id": self.conversation_id,
            "parent_message_id": self.parent_message_id,
        }
        if self.detail is not None:
            payload["detail"] = self.detail
        return payload

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "ChatMessage":
        role = payload.get("role") or "user"
        if role not in ("user", "assistant"):
            raise ValueError(f"Unsupported message role: {role!r}")
        parent = payload.get("parent_message_id", payload.get("parentMessageId"))
        detail = payload.get("detail")
        return cls(
            id=str(payload["id"]),
            role=cast(ChatRole, role),
            text=str(payload.get("text", "")),
            conversation_id=str(payload.get("conversation_id", payload.get("conversationId", ""))),
            parent_message_id=str(parent) if parent else None,
            detail=dict(detail) if isinstance(detail, Mapping) else None,
        )


@dataclass(slots=True)
class PromptBudget:
    """Prompt text chosen for a request and the reply allowance left over."""

    prompt: str
    max_tokens: int
    num_tokens: int = 0
    history_turns: int = 0


@dataclass(slots=True)
class StreamState:
    """Mutable accumulator for one in-flight streamed reply."""

    text: str = ""
    id: str | None = None
    detail: dict[str, Any] | None = None
    done: bool = False
    events: int = 0


ProgressCallback = Callable[[ChatMessage], Union[None, Awaitable[None]]]


@dataclass(slots=True)
class CompletionRequest:
    """Request body plus the streaming flag handed to the transport."""

    prompt: str
    max_tokens: int
    params: dict[str, Any] = field(default_factory=dict)
    stream: bool = False

    def to_body(self) -> dict[str, Any]:
        body: dict[str, Any] = {"max_tokens": self.max_tokens}
        body.update(self.params)
        body["prompt"] = self.prompt
        body["stream"] = self.stream
        return body


__all__ = [
    "ChatMessage",
    "ChatRole",
    "CompletionRequest",
    "ProgressCallback",
    "PromptBudget",
    "StreamState",
    "new_id",
]
