"""Tests for token-budgeted prompt assembly."""

from __future__ import annotations

from datetime import date

import pytest

from replychain.errors import ConfigurationError
from replychain.model_family import END_OF_TEXT, IM_END, IM_SEP, ModelFamily
from replychain.prompt import PromptAssembler
from replychain.types import ChatMessage

PREFIX = "P\n"
SUFFIX = "\nS"


class _Lookup:
    def __init__(self, *messages: ChatMessage) -> None:
        self.messages = {message.id: message for message in messages}
        self.requested: list[str] = []

    async def __call__(self, message_id: str) -> ChatMessage | None:
        self.requested.append(message_id)
        return self.messages.get(message_id)


def _message(id: str, text: str, *, role: str = "user", parent: str | None = None) -> ChatMessage:
    return ChatMessage(id=id, role=role, text=text, conversation_id="conv", parent_message_id=parent)  # type: ignore[arg-type]


def _user_body(text: str, end: str = END_OF_TEXT) -> str:
    return f"User:\n\n{text}{end}"


def _turn(label: str, text: str, end: str = END_OF_TEXT) -> str:
    return f"{label}:\n\n{text}{end}\n\n"


@pytest.mark.asyncio
async def test_message_without_parent_gets_full_response_allowance(counter) -> None:
    assembler = PromptAssembler(_Lookup(), counter, max_model_tokens=4096, max_response_tokens=1000)

    budget = await assembler.build_prompt("Hi", prompt_prefix=PREFIX, prompt_suffix=SUFFIX)

    assert budget.prompt == f"{PREFIX}User:\n\nHi{END_OF_TEXT}{SUFFIX}"
    assert budget.max_tokens == 1000
    assert budget.num_tokens == len(budget.prompt)
    assert budget.history_turns == 0


@pytest.mark.asyncio
async def test_history_is_prepended_oldest_first_with_role_labels(counter) -> None:
    lookup = _Lookup(
        _message("u1", "What is 2+2?"),
        _message("a1", "4", role="assistant", parent="u1"),
    )
    assembler = PromptAssembler(lookup, counter)

    budget = await assembler.build_prompt(
        "And 3+3?", parent_message_id="a1", prompt_prefix=PREFIX, prompt_suffix=SUFFIX
    )

    expected = PREFIX + _turn("User", "What is 2+2?") + _turn("ChatGPT", "4") + _user_body("And 3+3?") + SUFFIX
    assert budget.prompt == expected
    assert budget.history_turns == 2
    assert lookup.requested == ["a1", "u1"]


@pytest.mark.asyncio
async def test_walk_stops_at_first_overflowing_ancestor(counter) -> None:
    lookup = _Lookup(
        _message("old", "tiny"),
        _message("long", "x" * 200, role="assistant", parent="old"),
        _message("recent", "short", parent="long"),
    )
    fitting = PREFIX + _turn("User", "short") + _user_body("next") + SUFFIX
    assembler = PromptAssembler(
        lookup,
        counter,
        max_model_tokens=len(fitting) + 100,
        max_response_tokens=100,
    )

    budget = await assembler.build_prompt(
        "next", parent_message_id="recent", prompt_prefix=PREFIX, prompt_suffix=SUFFIX
    )

    # exact fit is accepted; the older short ancestor is never reached
    assert budget.prompt == fitting
    assert budget.num_tokens == len(fitting)
    assert budget.history_turns == 1
    assert lookup.requested == ["recent", "long"]
    assert budget.max_tokens == 100


@pytest.mark.asyncio
async def test_cyclic_parent_chain_stops_at_budget(counter) -> None:
    lookup = _Lookup(
        _message("a", "pong", role="assistant", parent="b"),
        _message("b", "ping", parent="a"),
    )
    fitting = PREFIX + (_turn("User", "ping") + _turn("ChatGPT", "pong")) * 2 + _user_body("hi") + SUFFIX
    assembler = PromptAssembler(lookup, counter, max_model_tokens=len(fitting) + 100, max_response_tokens=100)

    budget = await assembler.build_prompt("hi", parent_message_id="a", prompt_prefix=PREFIX, prompt_suffix=SUFFIX)

    assert budget.prompt == fitting
    assert budget.num_tokens <= assembler.max_context_tokens
    assert budget.history_turns == 4
    assert lookup.requested == ["a", "b", "a", "b", "a"]


@pytest.mark.asyncio
async def test_lone_newest_message_is_sent_even_when_over_budget(counter) -> None:
    lookup = _Lookup(_message("parent", "never included"))
    assembler = PromptAssembler(lookup, counter, max_model_tokens=50, max_response_tokens=10)

    budget = await assembler.build_prompt(
        "y" * 80, parent_message_id="parent", prompt_prefix=PREFIX, prompt_suffix=SUFFIX
    )

    assert budget.prompt == PREFIX + _user_body("y" * 80) + SUFFIX
    assert budget.num_tokens > assembler.max_context_tokens
    assert budget.max_tokens == 1
    assert lookup.requested == []


@pytest.mark.asyncio
async def test_response_allowance_shrinks_to_remaining_window(counter) -> None:
    text = "z" * 20
    prompt_length = len(PREFIX + _user_body(text) + SUFFIX)
    assembler = PromptAssembler(
        _Lookup(),
        counter,
        max_model_tokens=prompt_length + 5,
        max_response_tokens=prompt_length,
    )

    budget = await assembler.build_prompt(text, prompt_prefix=PREFIX, prompt_suffix=SUFFIX)

    assert budget.max_tokens == 5


@pytest.mark.asyncio
async def test_unknown_parent_stops_walk_without_error(counter) -> None:
    lookup = _Lookup()
    assembler = PromptAssembler(lookup, counter)

    budget = await assembler.build_prompt(
        "Hello", parent_message_id="missing", prompt_prefix=PREFIX, prompt_suffix=SUFFIX
    )

    assert budget.prompt == PREFIX + _user_body("Hello") + SUFFIX
    assert lookup.requested == ["missing"]


@pytest.mark.asyncio
async def test_lookup_failures_other_than_misses_propagate(counter) -> None:
    async def _broken(message_id: str) -> ChatMessage | None:
        raise RuntimeError("store offline")

    assembler = PromptAssembler(_broken, counter)

    with pytest.raises(RuntimeError, match="store offline"):
        await assembler.build_prompt("Hello", parent_message_id="p1")


@pytest.mark.asyncio
async def test_chat_family_uses_im_delimiters_and_counts_canonical_text(counter) -> None:
    lookup = _Lookup(_message("a1", "Sure.", role="assistant"))
    assembler = PromptAssembler(lookup, counter, family=ModelFamily.CHAT)

    budget = await assembler.build_prompt("Go on", parent_message_id="a1", prompt_suffix=SUFFIX)

    assert budget.prompt.endswith(_turn("ChatGPT", "Sure.", IM_END) + _user_body("Go on", IM_END) + SUFFIX)
    assert IM_SEP in budget.prompt
    assert counter.calls
    assert all(IM_END not in text and IM_SEP not in text for text in counter.calls)


@pytest.mark.asyncio
async def test_empty_overrides_fall_back_to_defaults(counter) -> None:
    assembler = PromptAssembler(_Lookup(), counter, assistant_label="Helper")

    budget = await assembler.build_prompt("Hi", prompt_prefix="", prompt_suffix="")

    assert budget.prompt.startswith("Instructions:\nYou are Helper, a large language model trained by OpenAI.\n")
    assert budget.prompt.endswith("\n\nHelper:\n")


def test_default_prefix_includes_date_and_separator(counter) -> None:
    assembler = PromptAssembler(_Lookup(), counter, family=ModelFamily.CODE)

    prefix = assembler.default_prefix(today=date(2023, 1, 2))

    assert prefix.endswith("Current date: 2023-01-02</code>\n\n")


def test_context_budget_must_be_positive(counter) -> None:
    with pytest.raises(ConfigurationError):
        PromptAssembler(_Lookup(), counter, max_model_tokens=1000, max_response_tokens=1000)
