"""Multi-turn conversations over a stateless text-completion API."""

from .assembler import DONE_SENTINEL, ResponseAssembler
from .client import ReplyChainClient
from .errors import (
    CancellationError,
    ConfigurationError,
    ErrorCode,
    ReplyChainError,
    ResponseTimeoutError,
    StreamParseError,
    UpstreamHttpError,
    UpstreamPayloadError,
)
from .model_family import ModelFamily
from .prompt import PromptAssembler
from .settings import Settings, SettingsStore
from .store import JsonFileMessageStore, LRUMessageStore, MessageStore
from .tokens import ApproxByteCounter, TiktokenCounter, TokenCounterProtocol, build_token_counter
from .transport import CompletionTransport
from .types import ChatMessage, CompletionRequest, PromptBudget, new_id

__all__ = [
    "ApproxByteCounter",
    "CancellationError",
    "ChatMessage",
    "CompletionRequest",
    "CompletionTransport",
    "ConfigurationError",
    "DONE_SENTINEL",
    "ErrorCode",
    "JsonFileMessageStore",
    "LRUMessageStore",
    "MessageStore",
    "ModelFamily",
    "PromptAssembler",
    "PromptBudget",
    "ReplyChainClient",
    "ReplyChainError",
    "ResponseAssembler",
    "ResponseTimeoutError",
    "Settings",
    "SettingsStore",
    "StreamParseError",
    "TiktokenCounter",
    "TokenCounterProtocol",
    "UpstreamHttpError",
    "UpstreamPayloadError",
    "build_token_counter",
    "new_id",
]
