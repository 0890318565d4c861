"""Token counters used to fit conversation history into the model context."""

from __future__ import annotations

import logging
import math
from typing import Any, Protocol

import tiktoken

LOGGER = logging.getLogger(__name__)
_DEFAULT_BYTES_PER_TOKEN = 4
_FALLBACK_ENCODING = "r50k_base"


class TokenCounterProtocol(Protocol):
    """Protocol describing tokenizer implementations."""

    model_name: str | None

    def count(self, text: str) -> int:
        """Return the precise token count for *text*."""
        ...

    def estimate(self, text: str) -> int:
        """Return a cheap deterministic estimate for *text*."""
        ...


class ApproxByteCounter:
    """Deterministic counter that estimates tokens via byte length."""

    def __init__(self, *, model_name: str | None = None, charset: str = "utf-8", bytes_per_token: int = _DEFAULT_BYTES_PER_TOKEN) -> None:
        self.model_name = model_name
        self._charset = charset
        self._bytes_per_token = max(1, int(bytes_per_token))

    def count(self, text: str) -> int:
        return self.estimate(text)

    def estimate(self, text: str) -> int:
        if not text:
            return 0
        data = text.encode(self._charset, errors="ignore")
        return max(1, math.ceil(len(data) / self._bytes_per_token))


class TiktokenCounter:
    """Token counter backed by OpenAI's tiktoken package.

    Special tokens such as ``<|endoftext|>`` are counted as single tokens, so
    prompts that embed turn delimiters are measured the way the model sees them.
    Encoding errors are not caught: a tokenizer failure aborts prompt assembly.
    """

    def __init__(self, model_name: str, *, encoding_name: str | None = None) -> None:
        if not model_name:
            raise ValueError("model_name is required for TiktokenCounter")
        self.model_name = model_name
        self._encoding = self._load_encoding(model_name, encoding_name)
        self._estimator = ApproxByteCounter(model_name=model_name)

    def count(self, text: str) -> int:
        if not text:
            return 0
        return len(self._encoding.encode(text, allowed_special="all"))

    def estimate(self, text: str) -> int:
        return self._estimator.estimate(text)

    def _load_encoding(self, model_name: str, encoding_name: str | None) -> Any:
        if encoding_name:
            return tiktoken.get_encoding(encoding_name)
        try:
            return tiktoken.encoding_for_model(model_name)
        except KeyError:
            LOGGER.debug("No tiktoken mapping for model %s; using %s", model_name, _FALLBACK_ENCODING)
            return tiktoken.get_encoding(_FALLBACK_ENCODING)


def build_token_counter(model_name: str, *, estimate_only: bool = False) -> TokenCounterProtocol:
    """Return the default counter for *model_name*."""

    if estimate_only:
        return ApproxByteCounter(model_name=model_name)
    return TiktokenCounter(model_name)


__all__ = [
    "ApproxByteCounter",
    "TiktokenCounter",
    "TokenCounterProtocol",
    "build_token_counter",
]
