"""Error types raised by the conversation client.

Every failure of :meth:`ReplyChainClient.send_message` surfaces as a subclass
of :class:`ReplyChainError`, each carrying a machine-readable ``error_code`` and
a ``to_dict()`` serializer for logging or API responses.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


class ErrorCode:
    """Constants for error codes carried by :class:`ReplyChainError`."""

    CONFIGURATION = "configuration_error"
    UPSTREAM_HTTP = "upstream_http_error"
    UPSTREAM_PAYLOAD = "upstream_payload_error"
    STREAM_PARSE = "stream_parse_error"
    TIMEOUT = "timeout"
    CANCELLED = "cancelled"


@dataclass
class ReplyChainError(Exception):
    """Base class for all client errors."""

    error_code: str
    message: str

    def __post_init__(self) -> None:
        Exception.__init__(self, self.message)

    def to_dict(self) -> dict[str, Any]:
        return {"error": self.error_code, "message": self.message}

    def __str__(self) -> str:
        return self.message


@dataclass
class ConfigurationError(ReplyChainError):
    """Raised when the client is constructed with unusable settings."""

    error_code: str = field(default=ErrorCode.CONFIGURATION)
    message: str = field(default="Invalid client configuration")


@dataclass
class UpstreamHttpError(ReplyChainError):
    """Raised when the completion endpoint answers with a non-2xx status."""

    error_code: str = field(default=ErrorCode.UPSTREAM_HTTP)
    message: str = field(default="")
    status_code: int | None = field(default=None)
    status_text: str = field(default="")
    cause: str = field(default="")

    def __post_init__(self) -> None:
        if not self.message:
            label = self.status_code or self.status_text
            self.message = f"ReplyChain error {label}: {self.cause}"
        super().__post_init__()

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        result["status_code"] = self.status_code
        result["status_text"] = self.status_text
        result["cause"] = self.cause
        return result


@dataclass
class UpstreamPayloadError(ReplyChainError):
    """Raised when a successful response carries no usable completion choice."""

    error_code: str = field(default=ErrorCode.UPSTREAM_PAYLOAD)
    message: str = field(default="")
    detail: str = field(default="unknown")

    def __post_init__(self) -> None:
        if not self.message:
            self.message = f"ReplyChain error: {self.detail}"
        super().__post_init__()

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        result["detail"] = self.detail
        return result


@dataclass
class StreamParseError(ReplyChainError):
    """Raised when a streamed event payload is not valid JSON."""

    error_code: str = field(default=ErrorCode.STREAM_PARSE)
    message: str = field(default="Stream event payload is not valid JSON")
    payload: str = field(default="")

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        result["payload"] = self.payload
        return result


@dataclass
class ResponseTimeoutError(ReplyChainError):
    """Raised when the whole call exceeds its wall-clock timeout."""

    error_code: str = field(default=ErrorCode.TIMEOUT)
    message: str = field(default="ReplyChain timed out waiting for response")
    timeout_seconds: float | None = field(default=None)

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        if self.timeout_seconds is not None:
            result["timeout_seconds"] = self.timeout_seconds
        return result


@dataclass
class CancellationError(ReplyChainError):
    """Raised when the caller's cancellation signal fires before the reply resolves."""

    error_code: str = field(default=ErrorCode.CANCELLED)
    message: str = field(default="ReplyChain request was cancelled")


__all__ = [
    "ErrorCode",
    "ReplyChainError",
    "ConfigurationError",
    "UpstreamHttpError",
    "UpstreamPayloadError",
    "StreamParseError",
    "ResponseTimeoutError",
    "CancellationError",
]
