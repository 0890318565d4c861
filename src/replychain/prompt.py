"""Token-budgeted prompt assembly over a backward chain of messages."""

from __future__ import annotations

import logging
from datetime import date
from typing import Awaitable, Callable

from .errors import ConfigurationError
from .model_family import ModelFamily
from .tokens import TokenCounterProtocol
from .types import ChatMessage, PromptBudget

LOGGER = logging.getLogger(__name__)

USER_LABEL_DEFAULT = "User"
ASSISTANT_LABEL_DEFAULT = "ChatGPT"

MessageLookup = Callable[[str], Awaitable["ChatMessage | None"]]


class PromptAssembler:
    """Builds the largest prompt whose history still fits the context budget.

    The newest message is always included. Ancestors are prepended one at a
    time, newest first, and the walk stops at the first ancestor whose turn
    would push the wrapped prompt past ``max_model_tokens - max_response_tokens``.
    No ancestor is ever skipped to reach an older one, so each accepted prompt
    extends the previous one and the loop ends after at most one lookup per
    ancestor that fit.
    """

    def __init__(
        self,
        lookup: MessageLookup,
        token_counter: TokenCounterProtocol,
        *,
        max_model_tokens: int = 4096,
        max_response_tokens: int = 1000,
        family: ModelFamily = ModelFamily.PLAIN,
        user_label: str = USER_LABEL_DEFAULT,
        assistant_label: str = ASSISTANT_LABEL_DEFAULT,
    ) -> None:
        max_context_tokens = int(max_model_tokens) - int(max_response_tokens)
        if max_context_tokens < 1:
            raise ConfigurationError(
                message=(
                    f"max_model_tokens ({max_model_tokens}) must exceed "
                    f"max_response_tokens ({max_response_tokens})"
                )
            )
        self._lookup = lookup
        self._token_counter = token_counter
        self._max_model_tokens = int(max_model_tokens)
        self._max_response_tokens = int(max_response_tokens)
        self._max_context_tokens = max_context_tokens
        self._family = family
        self._user_label = user_label
        self._assistant_label = assistant_label

    @property
    def max_context_tokens(self) -> int:
        return self._max_context_tokens

    @property
    def family(self) -> ModelFamily:
        return self._family

    def default_prefix(self, today: date | None = None) -> str:
        current_date = (today or date.today()).isoformat()
        return (
            "Instructions:\n"
            f"You are {self._assistant_label}, a large language model trained by OpenAI.\n"
            f"Current date: {current_date}{self._family.sep_token}\n\n"
        )

    def default_suffix(self) -> str:
        return f"\n\n{self._assistant_label}:\n"

    def count_tokens(self, text: str) -> int:
        return self._token_counter.count(self._family.canonicalize(text))

    def format_turn(self, message: ChatMessage) -> str:
        label = self._assistant_label if message.role == "assistant" else self._user_label
        return f"{label}:\n\n{message.text}{self._family.end_token}\n\n"

    async def build_prompt(
        self,
        text: str,
        *,
        parent_message_id: str | None = None,
        prompt_prefix: str | None = None,
        prompt_suffix: str | None = None,
    ) -> PromptBudget:
        prefix = prompt_prefix or self.default_prefix()
        suffix = prompt_suffix or self.default_suffix()

        candidate_body = f"{self._user_label}:\n\n{text}{self._family.end_token}"
        accepted_prompt: str | None = None
        accepted_tokens = 0
        history_turns = 0
        candidate_turns = 0

        while True:
            candidate_prompt = f"{prefix}{candidate_body}{suffix}"
            candidate_tokens = self.count_tokens(candidate_prompt)
            fits = candidate_tokens <= self._max_context_tokens

            if accepted_prompt is not None and not fits:
                LOGGER.debug(
                    "Ancestor %s overflows the budget (%s > %s); keeping %s turn(s) of history",
                    candidate_turns,
                    candidate_tokens,
                    self._max_context_tokens,
                    history_turns,
                )
                break

            accepted_body = candidate_body
            accepted_prompt = candidate_prompt
            accepted_tokens = candidate_tokens
            history_turns = candidate_turns

            if not fits:
                LOGGER.debug(
                    "Newest message alone exceeds the context budget (%s > %s); sending it anyway",
                    candidate_tokens,
                    self._max_context_tokens,
                )
                break
            if not parent_message_id:
                break

            parent = await self._lookup(parent_message_id)
            if parent is None:
                LOGGER.debug("Parent message %s not found; stopping history walk", parent_message_id)
                break

            candidate_body = f"{self.format_turn(parent)}{accepted_body}"
            candidate_turns = history_turns + 1
            parent_message_id = parent.parent_message_id

        max_tokens = max(1, min(self._max_model_tokens - accepted_tokens, self._max_response_tokens))
        return PromptBudget(
            prompt=accepted_prompt,
            max_tokens=max_tokens,
            num_tokens=accepted_tokens,
            history_turns=history_turns,
        )


__all__ = ["PromptAssembler", "MessageLookup", "USER_LABEL_DEFAULT", "ASSISTANT_LABEL_DEFAULT"]
