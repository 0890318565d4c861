"""Settings dataclass and JSON persistence helpers."""

from __future__ import annotations

import json
import logging
import os
from dataclasses import asdict, dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Dict, Mapping

from .errors import ConfigurationError

__all__ = ["Settings", "SettingsStore", "redact_secret"]

LOGGER = logging.getLogger(__name__)
_SETTINGS_DIR = Path.home() / ".replychain"
_DEFAULT_SETTINGS_PATH = _SETTINGS_DIR / "settings.json"
_SETTINGS_VERSION = 1
_ENV_OVERRIDES: Mapping[str, str] = {
    "REPLYCHAIN_API_BASE_URL": "api_base_url",
    "REPLYCHAIN_COMPLETIONS_PATH": "completions_path",
    "REPLYCHAIN_API_KEY": "api_key",
    "REPLYCHAIN_ORGANIZATION": "organization",
    "REPLYCHAIN_MODEL": "model",
    "REPLYCHAIN_STORE_PATH": "message_store_path",
}
_BOOL_ENV_OVERRIDES: Mapping[str, str] = {
    "REPLYCHAIN_DEBUG_LOGGING": "debug_logging",
}
_FLOAT_ENV_OVERRIDES: Mapping[str, str] = {
    "REPLYCHAIN_REQUEST_TIMEOUT": "request_timeout",
    "REPLYCHAIN_TEMPERATURE": "temperature",
}
_INT_ENV_OVERRIDES: Mapping[str, str] = {
    "REPLYCHAIN_MAX_MODEL_TOKENS": "max_model_tokens",
    "REPLYCHAIN_MAX_RESPONSE_TOKENS": "max_response_tokens",
    "REPLYCHAIN_MAX_RETRIES": "max_retries",
}
_TRUE_VALUES = {"1", "true", "yes", "on", "debug"}


@dataclass(slots=True)
class Settings:
    """User-configurable client settings persisted between runs."""

    api_base_url: str = "https://api.openai.com/v1"
    completions_path: str = "/completions"
    api_key: str = ""
    organization: str | None = None
    model: str = "text-davinci-003"
    temperature: float = 0.8
    top_p: float = 1.0
    presence_penalty: float = 1.0
    completion_params: dict[str, Any] = field(default_factory=dict)
    max_model_tokens: int = 4096
    max_response_tokens: int = 1000
    user_label: str = "User"
    assistant_label: str = "ChatGPT"
    request_timeout: float | None = None
    max_retries: int = 1
    retry_min_seconds: float = 0.5
    retry_max_seconds: float = 6.0
    message_store_max_size: int = 10_000
    message_store_path: str | None = None
    debug_logging: bool = False
    default_headers: dict[str, str] = field(default_factory=dict)

    @property
    def completions_url(self) -> str:
        return f"{self.api_base_url.rstrip('/')}/{self.completions_path.lstrip('/')}"

    def validate(self) -> None:
        """Raise :class:`ConfigurationError` when values cannot produce a working client."""

        if self.max_model_tokens - self.max_response_tokens < 1:
            raise ConfigurationError(
                message=(
                    f"max_model_tokens ({self.max_model_tokens}) must exceed "
                    f"max_response_tokens ({self.max_response_tokens})"
                )
            )
        if self.max_response_tokens < 1:
            raise ConfigurationError(message="max_response_tokens must be at least 1")
        if self.max_retries < 1:
            raise ConfigurationError(message="max_retries must be at least 1")
        if self.message_store_max_size < 1:
            raise ConfigurationError(message="message_store_max_size must be at least 1")
        if self.request_timeout is not None and self.request_timeout <= 0:
            raise ConfigurationError(message="request_timeout must be positive when set")
        if not self.api_base_url:
            raise ConfigurationError(message="api_base_url must not be empty")


class SettingsStore:
    """Persistence adapter for :class:`Settings`."""

    def __init__(self, path: Path | None = None) -> None:
        self._path = Path(path) if path is not None else _DEFAULT_SETTINGS_PATH

    @property
    def path(self) -> Path:
        """Return the resolved path backing this store."""

        return self._path

    def load(self, *, overrides: Mapping[str, Any] | None = None) -> Settings:
        """Load settings from disk, applying CLI/environment overrides when present."""

        payload = self._read_payload()
        settings = Settings()
        if payload:
            data = _filter_fields(payload)
            try:
                settings = Settings(**data)
            except TypeError as exc:
                LOGGER.warning("Settings payload contained unexpected data: %s", exc)
                settings = Settings()
        LOGGER.debug("Settings loaded from %s (model=%s)", self._path, settings.model)

        if overrides:
            settings = self._apply_overrides(settings, overrides, source="CLI")

        return self._apply_env_overrides(settings)

    def save(self, settings: Settings) -> Path:
        """Persist settings to disk with atomic file writes."""

        payload = asdict(settings)
        payload["version"] = _SETTINGS_VERSION
        body = json.dumps(payload, indent=2, sort_keys=True)
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self._path.with_suffix(".tmp")
        tmp_path.write_text(body, encoding="utf-8")
        tmp_path.replace(self._path)
        LOGGER.debug("Settings saved to %s", self._path)
        return self._path

    def _read_payload(self) -> Dict[str, Any]:
        if not self._path.exists():
            return {}
        try:
            text = self._path.read_text(encoding="utf-8")
            payload = json.loads(text)
        except FileNotFoundError:
            return {}
        except json.JSONDecodeError as exc:
            LOGGER.warning("Settings file %s is not valid JSON: %s", self._path, exc)
            return {}
        if not isinstance(payload, dict):
            LOGGER.warning("Settings file %s does not contain a JSON object", self._path)
            return {}
        return payload

    def _apply_overrides(
        self,
        settings: Settings,
        overrides: Mapping[str, Any],
        *,
        source: str = "runtime",
    ) -> Settings:
        allowed = {item.name for item in fields(Settings)}
        filtered: Dict[str, Any] = {}
        for key, value in overrides.items():
            if key not in allowed or value is None:
                continue
            filtered[key] = value
        for name in ("completion_params", "default_headers"):
            extra = filtered.get(name)
            if isinstance(extra, Mapping):
                merged = dict(getattr(settings, name) or {})
                merged.update(extra)
                filtered[name] = merged
        if filtered:
            LOGGER.debug("Applying %s settings overrides: %s", source, sorted(filtered))
            settings = replace(settings, **filtered)
        return settings

    def _apply_env_overrides(self, settings: Settings) -> Settings:
        overrides: Dict[str, Any] = {}
        for env_name, field_name in _ENV_OVERRIDES.items():
            value = os.environ.get(env_name)
            if value is not None:
                overrides[field_name] = value
        for env_name, field_name in _BOOL_ENV_OVERRIDES.items():
            value = os.environ.get(env_name)
            if value is not None:
                overrides[field_name] = value.strip().lower() in _TRUE_VALUES
        for env_name, field_name in _INT_ENV_OVERRIDES.items():
            value = os.environ.get(env_name)
            if value is None:
                continue
            try:
                overrides[field_name] = int(value, 10)
            except ValueError:
                LOGGER.warning(
                    "Environment override %s=%s is not a valid integer",
                    env_name,
                    value,
                )
        for env_name, field_name in _FLOAT_ENV_OVERRIDES.items():
            value = os.environ.get(env_name)
            if value is None:
                continue
            try:
                overrides[field_name] = float(value)
            except ValueError:
                LOGGER.warning(
                    "Environment override %s=%s is not a valid float", env_name, value
                )
        if overrides:
            settings = self._apply_overrides(settings, overrides, source="environment")
        return settings


def _filter_fields(payload: Mapping[str, Any]) -> Dict[str, Any]:
    allowed = {item.name for item in fields(Settings)}
    return {key: value for key, value in payload.items() if key in allowed}


def redact_secret(value: str) -> str:
    stripped = (value or "").strip()
    if not stripped:
        return ""
    if len(stripped) <= 4:
        return "*" * len(stripped)
    return f"{stripped[:2]}{'*' * (len(stripped) - 4)}{stripped[-2:]}"
