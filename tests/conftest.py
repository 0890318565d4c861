"""Shared pytest fixtures."""

from __future__ import annotations

import os

import pytest

from replychain.settings import Settings
from tests.helpers import CharCounter


@pytest.fixture(autouse=True)
def _clear_replychain_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in list(os.environ):
        if name.startswith("REPLYCHAIN_"):
            monkeypatch.delenv(name, raising=False)


@pytest.fixture
def counter() -> CharCounter:
    return CharCounter()


@pytest.fixture
def settings() -> Settings:
    return Settings(api_key="sk-test", api_base_url="https://llm.local/v1")
